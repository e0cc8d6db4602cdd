"""
YouTube caption fast path.

When a video already has captions there is no need to extract or
transcribe audio: the caption text goes straight to the text path.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional

from youtube_transcript_api import YouTubeTranscriptApi

from chaptergen.models import TranscriptSegment
from chaptergen.services.transcript_parser import segments_to_text


@dataclass
class CaptionTranscript:
    text: str
    segments: List[TranscriptSegment]
    language: Optional[str] = None


def _snippet_value(snippet, key: str, default=None):
    # fetch() yields objects with attributes; older releases yield dicts
    if isinstance(snippet, dict):
        return snippet.get(key, default)
    return getattr(snippet, key, default)


def fetch_captions_sync(video_id: str) -> Optional[CaptionTranscript]:
    api = YouTubeTranscriptApi()
    transcript_list = api.list(video_id)

    transcript = None
    for candidate in transcript_list:
        if not candidate.is_generated:
            transcript = candidate
            break
        if transcript is None:
            transcript = candidate
    if transcript is None:
        return None

    fetched = transcript.fetch()

    segments: List[TranscriptSegment] = []
    for snippet in fetched:
        text = " ".join(str(_snippet_value(snippet, "text", "")).split())
        if not text:
            continue
        start = float(_snippet_value(snippet, "start", 0.0) or 0.0)
        segments.append(TranscriptSegment(time=int(start), text=text))

    if not segments:
        return None

    return CaptionTranscript(
        text=segments_to_text(segments),
        segments=segments,
        language=getattr(transcript, "language_code", None),
    )


async def fetch_captions(video_id: str) -> Optional[CaptionTranscript]:
    """
    Fetch captions for a video.

    Returns None when the video has no captions or the fetch fails for
    any reason; the caller then falls back to the audio pipeline.
    """
    print(f"💬 Fetching captions for {video_id}", flush=True)
    try:
        captions = await asyncio.to_thread(fetch_captions_sync, video_id)
    except Exception as e:
        print(f"⚠️ Captions unavailable for {video_id}: {e}", flush=True)
        return None

    if captions is None:
        print(f"⚠️ No captions for {video_id}", flush=True)
        return None

    print(f"✅ Captions fetched: {len(captions.segments)} segments, {len(captions.text)} chars", flush=True)
    return captions
