"""
Parse uploaded transcript files (SRT, VTT, TXT) into timed segments.
"""

import os
import re
from typing import List, Sequence

import srt

from chaptergen.models import TranscriptSegment
from chaptergen.services.errors import TranscriptParseError
from chaptergen.services.timestamps import format_timestamp


SUPPORTED_EXTENSIONS = ("srt", "vtt", "txt")

_VTT_TIME_RE = re.compile(r"(?:(\d+):)?(\d{1,2}):(\d{2})(?:[.,]\d+)?\s*-->")
_WHITESPACE_RE = re.compile(r"\s+")


def _clean(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text.replace("\n", " ")).strip()


def parse_srt(content: str) -> List[TranscriptSegment]:
    try:
        entries = list(srt.parse(content))
    except (srt.SRTParseError, srt.TimestampParseError, ValueError) as e:
        raise TranscriptParseError("Invalid SRT file format", detail=str(e))

    segments: List[TranscriptSegment] = []
    for entry in entries:
        text = _clean(entry.content)
        if text:
            segments.append(TranscriptSegment(time=int(entry.start.total_seconds()), text=text))
    return segments


def parse_vtt(content: str) -> List[TranscriptSegment]:
    """
    WebVTT cues: the start time of each cue, its text lines joined.

    Header, NOTE/STYLE blocks and cue identifiers are skipped.
    """
    blocks = re.split(r"\n\s*\n", content.replace("\r\n", "\n").replace("\r", "\n").lstrip("\ufeff"))
    segments: List[TranscriptSegment] = []

    for block in blocks:
        lines = [ln.strip() for ln in block.split("\n") if ln.strip()]
        if not lines:
            continue
        if lines[0].startswith(("WEBVTT", "NOTE", "STYLE", "REGION")):
            continue

        timing_index = next((i for i, ln in enumerate(lines) if "-->" in ln), None)
        if timing_index is None:
            continue

        match = _VTT_TIME_RE.search(lines[timing_index])
        if not match:
            raise TranscriptParseError("Invalid VTT file format", detail=lines[timing_index][:200])

        hours, minutes, seconds = match.groups()
        start = int(hours or 0) * 3600 + int(minutes) * 60 + int(seconds)
        # Strip inline voice/style tags like <v Speaker> or <c.yellow>
        text = _clean(re.sub(r"<[^>]+>", "", " ".join(lines[timing_index + 1:])))
        if text:
            segments.append(TranscriptSegment(time=start, text=text))

    return segments


def parse_txt(content: str) -> List[TranscriptSegment]:
    """Plain text has no timings: one segment at 0."""
    text = _clean(content)
    return [TranscriptSegment(time=0, text=text)] if text else []


def parse_transcript_file(content: str, filename: str) -> List[TranscriptSegment]:
    """
    Pick a parser by file extension.

    Raises:
        TranscriptParseError: unsupported extension, malformed file, or no text
    """
    extension = os.path.splitext(filename or "")[1].lstrip(".").lower()

    if extension == "srt":
        segments = parse_srt(content)
    elif extension == "vtt":
        segments = parse_vtt(content)
    elif extension == "txt":
        segments = parse_txt(content)
    else:
        raise TranscriptParseError(
            f"Unsupported file format: {extension or 'none'}",
            user_message="Unsupported file format. Please upload TXT, SRT, or VTT file.",
        )

    if not segments:
        raise TranscriptParseError("Transcript file contains no text")
    return segments


def segments_to_text(segments: Sequence[TranscriptSegment]) -> str:
    return _clean(" ".join(s.text for s in segments))


def has_timings(segments: Sequence[TranscriptSegment]) -> bool:
    return any(s.time > 0 for s in segments)


def segments_to_timed_text(segments: Sequence[TranscriptSegment]) -> str:
    """One "[M:SS] text" line per segment, for prompts that need timings."""
    return "\n".join(f"[{format_timestamp(s.time)}] {s.text}" for s in segments)


def transcript_for_prompt(segments: Sequence[TranscriptSegment]) -> str:
    """Timed text when the segments carry timings, plain text otherwise."""
    if has_timings(segments):
        return segments_to_timed_text(segments)
    return segments_to_text(segments)
