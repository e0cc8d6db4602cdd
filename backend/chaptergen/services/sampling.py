"""
Sample planning: which windows of a video get transcribed.

Instead of transcribing a whole video we spread a bounded number of short
windows evenly across it. Pure functions, no I/O.
"""

import math
from typing import List

from chaptergen.models import SampleInterval


MAX_SAMPLES = 15
SAMPLE_LENGTH = 40
MIN_SAMPLE_SECONDS = 5
SHORT_VIDEO_SECONDS = 600


def sample_count(
    total_duration: float,
    max_samples: int = MAX_SAMPLES,
    short_video_seconds: int = SHORT_VIDEO_SECONDS,
) -> int:
    """Short videos get one sample per started minute, up to max_samples."""
    if total_duration < short_video_seconds:
        return min(max_samples, math.ceil(total_duration / 60))
    return max_samples


def plan_samples(
    total_duration: float,
    max_samples: int = MAX_SAMPLES,
    sample_length: int = SAMPLE_LENGTH,
    min_sample_seconds: int = MIN_SAMPLE_SECONDS,
    short_video_seconds: int = SHORT_VIDEO_SECONDS,
) -> List[SampleInterval]:
    """
    Split [0, total_duration) into equal slots and take one window per slot.

    Args:
        total_duration: Video length in seconds
        max_samples: Upper bound on the number of windows
        sample_length: Window length in seconds
        min_sample_seconds: Windows this short or shorter are dropped
        short_video_seconds: Below this length, one window per started minute

    Returns:
        Intervals sorted by start.
    """
    if total_duration <= 0 or max_samples <= 0 or sample_length <= 0:
        return []

    num_samples = sample_count(total_duration, max_samples, short_video_seconds)
    step = total_duration / num_samples

    intervals: List[SampleInterval] = []
    for i in range(num_samples):
        slot_start = i * step
        actual = min(sample_length, total_duration - slot_start)
        if actual <= min_sample_seconds:
            continue

        start = math.floor(slot_start)
        duration = math.ceil(actual)
        intervals.append(SampleInterval(start=start, duration=duration))

    return intervals


def total_sampled_seconds(intervals: List[SampleInterval]) -> int:
    return sum(iv.duration for iv in intervals)
