import re
from typing import Optional


YOUTUBE_URL_RE = re.compile(
    r"^(https?://)?(www\.|m\.)?(youtube\.com|youtu\.be)/(watch\?v=|embed/|v/|shorts/|.+\?v=)?([^&=%?/]{11})"
)


def is_valid_youtube_url(url: str) -> bool:
    if not url:
        return False
    return bool(YOUTUBE_URL_RE.match(url.strip()))


def get_youtube_video_id(url: str) -> Optional[str]:
    """Extract the 11-character video id from a YouTube URL."""
    if not url:
        return None
    match = YOUTUBE_URL_RE.match(url.strip())
    return match.group(5) if match else None


def youtube_watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"
