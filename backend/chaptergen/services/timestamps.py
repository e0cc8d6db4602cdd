from typing import List, Sequence, Union

from chaptergen.models import Chapter


MIN_CHAPTER_SECONDS = 60


def format_timestamp(seconds: float) -> str:
    """
    Format seconds as a YouTube chapter timestamp.

    0 -> "0:00", 65 -> "1:05", 3661 -> "1:01:01". Hours only appear
    when the value is at least one hour.
    """
    total = max(0, int(seconds))
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def timestamp_to_seconds(timestamp: Union[str, int, float, None]) -> int:
    """
    Convert "MM:SS" / "HH:MM:SS" (or a bare number) to whole seconds.

    Unparseable input returns 0.
    """
    if timestamp is None:
        return 0
    if isinstance(timestamp, (int, float)):
        return max(0, int(timestamp))

    text = str(timestamp).strip()
    if not text:
        return 0

    parts = text.split(":")
    try:
        values = [float(p) for p in parts]
    except ValueError:
        return 0

    if len(values) == 1:
        return max(0, int(values[0]))
    if len(values) == 2:
        return max(0, int(values[0] * 60 + values[1]))
    if len(values) == 3:
        return max(0, int(values[0] * 3600 + values[1] * 60 + values[2]))
    return 0


def validate_chapter_durations(
    chapters: Sequence[Chapter],
    min_duration: int = MIN_CHAPTER_SECONDS,
) -> bool:
    """True if every chapter lasts at least min_duration before the next one starts."""
    seconds: List[int] = [timestamp_to_seconds(c.time) for c in chapters]
    for current, nxt in zip(seconds, seconds[1:]):
        if nxt - current < min_duration:
            return False
    return True
