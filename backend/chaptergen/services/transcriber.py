"""
Batch Transcriber - transcribe every sample clip and merge the results
into one timeline.
"""

import asyncio
from collections import Counter
from typing import List, Optional, Sequence, Tuple

from chaptergen.models import TranscriptSegment, TranscriptionResult
from chaptergen.services.errors import TranscriptionFailed


DEFAULT_LANGUAGE = "en-US"


def merge_segments(per_clip: Sequence[Tuple[float, List[TranscriptSegment]]]) -> List[TranscriptSegment]:
    """
    Shift each clip's segments by its start offset, flatten, sort by time
    (stable), and drop entries whose time equals the previous kept one.
    """
    shifted: List[TranscriptSegment] = []
    for offset, segments in per_clip:
        for seg in segments:
            shifted.append(TranscriptSegment(time=seg.time + offset, text=seg.text))

    shifted.sort(key=lambda s: s.time)

    merged: List[TranscriptSegment] = []
    for seg in shifted:
        if merged and merged[-1].time == seg.time:
            continue
        merged.append(seg)
    return merged


def majority_language(languages: Sequence[Optional[str]], default: str = DEFAULT_LANGUAGE) -> str:
    """Most common non-empty language; ties go to the one seen first."""
    seen = [lang.strip() for lang in languages if lang and lang.strip()]
    if not seen:
        return default
    counts = Counter(seen)
    best = max(counts.values())
    for lang in seen:
        if counts[lang] == best:
            return lang
    return default


class BatchTranscriber:
    """
    Runs one STT request per clip, all at once.

    The client must provide `async transcribe_audio(path) -> (segments, language)`
    with clip-relative segment times.
    """

    def __init__(self, client):
        self.client = client

    async def transcribe_batch(self, samples: Sequence[Tuple[str, float]]) -> TranscriptionResult:
        """
        Args:
            samples: (file_path, start_time) pairs

        Raises:
            TranscriptionFailed: if any single clip fails
        """
        if not samples:
            return TranscriptionResult(segments=[], language=DEFAULT_LANGUAGE)

        print(f"🗣️ Transcribing {len(samples)} clips...", flush=True)

        results = await asyncio.gather(
            *(self.client.transcribe_audio(path) for path, _ in samples),
            return_exceptions=True,
        )

        per_clip: List[Tuple[float, List[TranscriptSegment]]] = []
        languages: List[str] = []
        for (path, start), result in zip(samples, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                print(f"❌ Transcription failed for {path}: {result}", flush=True)
                raise TranscriptionFailed(
                    f"Transcription failed for clip at {start:.0f}s: {result}",
                    detail=repr(result),
                )
            segments, language = result
            per_clip.append((start, segments))
            languages.append(language)

        merged = merge_segments(per_clip)
        language = majority_language(languages)
        print(f"✅ Transcribed {len(merged)} segments (language: {language})", flush=True)
        return TranscriptionResult(segments=merged, language=language)
