"""
Chapter Synthesizer - turn transcript segments (or a full transcript)
into YouTube chapters with Gemini.

Model output is untrusted: the JSON array is located and parsed strictly,
then every element is validated on its own and dropped if unusable.
"""

from typing import List, Optional, Sequence

from chaptergen.config import get_settings
from chaptergen.models import Chapter, ChapterCandidate, TranscriptSegment
from chaptergen.services.errors import (
    AIServiceUnavailable,
    MalformedAIResponse,
    NoChaptersProduced,
)
from chaptergen.services.gemini_client import GeminiError
from chaptergen.services.json_extraction import extract_json_array
from chaptergen.services.prompts import (
    SEGMENTATION_SYSTEM_PROMPT,
    TIMESTAMP_GENERATION_SYSTEM_PROMPT,
    segmentation_user_prompt,
    timestamp_generation_user_prompt,
)
from chaptergen.services.timestamps import format_timestamp, timestamp_to_seconds, validate_chapter_durations


INTRO_TIME = "00:00"


def _as_index(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_title(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def parse_chapter_candidates(items: Sequence) -> List[ChapterCandidate]:
    """Keep elements with an integer segmentIndex and a non-empty title."""
    candidates: List[ChapterCandidate] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        index = _as_index(item.get("segmentIndex"))
        title = _as_title(item.get("title"))
        if index is None or not title:
            continue
        candidates.append(ChapterCandidate(segment_index=index, title=title))
    return candidates


def dedupe_titles(chapters: Sequence[Chapter]) -> List[Chapter]:
    """Exact-match title dedupe, first occurrence wins."""
    seen = set()
    unique: List[Chapter] = []
    for chapter in chapters:
        if chapter.title in seen:
            continue
        seen.add(chapter.title)
        unique.append(chapter)
    return unique


def drop_duplicate_times(chapters: Sequence[Chapter]) -> List[Chapter]:
    """Expects chapters sorted by seconds; keeps the first per second."""
    kept: List[Chapter] = []
    for chapter in chapters:
        if kept and kept[-1].seconds == chapter.seconds:
            continue
        kept.append(chapter)
    return kept


def finalize_chapters(
    candidates: Sequence[ChapterCandidate],
    segments: Sequence[TranscriptSegment],
    max_chapters: int = 15,
    intro_threshold_seconds: int = 10,
    intro_title: str = "Introduction",
) -> List[Chapter]:
    """
    Map candidates onto segment times and enforce the chapter list rules:
    strictly ascending times, first chapter at 0, unique titles, capped size.

    Candidates pointing outside `segments` are dropped.
    """
    chapters: List[Chapter] = []
    for candidate in candidates:
        if not 0 <= candidate.segment_index < len(segments):
            continue
        seconds = int(segments[candidate.segment_index].time)
        chapters.append(Chapter(time=format_timestamp(seconds), title=candidate.title, seconds=seconds))

    if not chapters:
        return []

    chapters.sort(key=lambda c: c.seconds)
    chapters = drop_duplicate_times(chapters)

    if chapters[0].seconds > intro_threshold_seconds:
        chapters.insert(0, Chapter(time=INTRO_TIME, title=intro_title, seconds=0))
    else:
        first = chapters[0]
        chapters[0] = Chapter(time=format_timestamp(0), title=first.title, seconds=0)

    chapters = dedupe_titles(chapters)
    return chapters[:max_chapters]


def finalize_text_chapters(items: Sequence, max_chapters: int = 15) -> List[Chapter]:
    """
    Post-process `[{time, title}]` from the text path.

    Time strings are kept as the model wrote them and only parsed for
    ordering. The first element is forced to start at 00:00.
    """
    chapters: List[Chapter] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        raw_time = item.get("time")
        time = raw_time.strip() if isinstance(raw_time, str) else ""
        title = _as_title(item.get("title"))
        if not time or not title:
            continue
        chapters.append(Chapter(time=time, title=title, seconds=timestamp_to_seconds(time)))

    if not chapters:
        return []

    if chapters[0].time not in ("00:00", "0:00"):
        chapters[0] = Chapter(time=INTRO_TIME, title=chapters[0].title, seconds=0)

    chapters.sort(key=lambda c: c.seconds)
    chapters = drop_duplicate_times(chapters)
    chapters = dedupe_titles(chapters)
    return chapters[:max_chapters]


class ChapterSynthesizer:
    """
    Generates chapters with a text model.

    The client must provide `async generate_text(prompt) -> str`.
    """

    def __init__(self, client):
        self.client = client
        self.settings = get_settings()

    async def _ask(self, prompt: str) -> str:
        try:
            return await self.client.generate_text(prompt)
        except GeminiError as e:
            raise AIServiceUnavailable(f"Chapter generation request failed: {e}", detail=repr(e))

    def _parse_array(self, raw: str) -> list:
        extraction = extract_json_array(raw)
        if not extraction.ok:
            print(f"❌ Malformed AI response ({extraction.status}): {extraction.snippet!r}", flush=True)
            raise MalformedAIResponse(
                f"Could not read chapters from AI response ({extraction.status})",
                detail=extraction.snippet,
            )
        if not extraction.value:
            raise NoChaptersProduced("AI returned an empty chapter list")
        return extraction.value

    async def synthesize(self, segments: Sequence[TranscriptSegment], language: str) -> List[ChapterCandidate]:
        """
        Ask the model where chapters start.

        Only the first `max_prompt_segments` segments are sent; returned
        indices refer to that prefix.

        Raises:
            MalformedAIResponse: no parseable JSON array in the output
            NoChaptersProduced: the array is empty or holds no usable element
        """
        limit = self.settings.chapters.max_prompt_segments
        prompt_segments = list(segments[:limit])
        prompt = f"{SEGMENTATION_SYSTEM_PROMPT}\n\n{segmentation_user_prompt(prompt_segments, language)}"

        print(f"🧠 Requesting chapters for {len(prompt_segments)} segments ({language})", flush=True)
        raw = await self._ask(prompt)

        candidates = parse_chapter_candidates(self._parse_array(raw))
        if not candidates:
            raise NoChaptersProduced("AI returned no usable chapter entries")

        print(f"✅ AI proposed {len(candidates)} chapters", flush=True)
        return candidates

    def finalize(self, candidates: Sequence[ChapterCandidate], segments: Sequence[TranscriptSegment]) -> List[Chapter]:
        cfg = self.settings.chapters
        return finalize_chapters(
            candidates,
            segments,
            max_chapters=cfg.max_chapters,
            intro_threshold_seconds=cfg.intro_threshold_seconds,
            intro_title=cfg.intro_title,
        )

    async def synthesize_from_text(self, transcript: str, language: str) -> List[Chapter]:
        """
        Chapters straight from transcript text (captions or uploaded file).

        Raises:
            MalformedAIResponse: no parseable JSON array in the output
            NoChaptersProduced: nothing usable came back
        """
        prompt = f"{TIMESTAMP_GENERATION_SYSTEM_PROMPT}\n\n{timestamp_generation_user_prompt(transcript, language)}"

        print(f"🧠 Requesting chapters from transcript text ({len(transcript)} chars, {language})", flush=True)
        raw = await self._ask(prompt)

        chapters = finalize_text_chapters(self._parse_array(raw), max_chapters=self.settings.chapters.max_chapters)
        if not chapters:
            raise NoChaptersProduced("AI returned no usable chapter entries")
        if not validate_chapter_durations(chapters):
            print("⚠️ Some chapters are shorter than a minute", flush=True)

        print(f"✅ Generated {len(chapters)} chapters from text", flush=True)
        return chapters
