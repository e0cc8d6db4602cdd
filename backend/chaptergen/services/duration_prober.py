"""
Video duration lookup.

Fast path: yt-dlp's Python API, in-process (no subprocess).
Slow path: the yt-dlp binary in --print duration mode with a hard timeout.
"""

import asyncio
import sys
from typing import Callable, Optional

import yt_dlp

from chaptergen.config import get_settings
from chaptergen.services.errors import DurationUnavailable
from chaptergen.services.process_utils import (
    BinaryResolver,
    ProcessError,
    default_binary_resolver,
    run_process,
    sanitize_stderr,
)
from chaptergen.services.youtube_utils import youtube_watch_url


def fetch_metadata_duration(url: str) -> Optional[float]:
    """Read the duration field from yt-dlp metadata without downloading."""
    meta_opts = {
        "quiet": True,
        "no_warnings": True,
        "skip_download": True,
        "noplaylist": True,
    }
    with yt_dlp.YoutubeDL(meta_opts) as ydl:
        info = ydl.extract_info(url, download=False)
    if not info:
        return None
    duration = info.get("duration")
    return float(duration) if duration is not None else None


class DurationProber:
    """
    Resolves total media duration for a video id.

    The binary resolver is called on every fallback attempt so the
    platform-specific yt-dlp build is located at call time.
    """

    def __init__(
        self,
        resolver: Optional[BinaryResolver] = None,
        timeout_seconds: Optional[float] = None,
        metadata_fetcher: Optional[Callable[[str], Optional[float]]] = None,
    ):
        self.settings = get_settings()
        self.resolver = resolver or default_binary_resolver()
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None
            else self.settings.tools.duration_timeout_seconds
        )
        self.metadata_fetcher = metadata_fetcher or fetch_metadata_duration

    async def probe_duration(self, video_id: str) -> float:
        """
        Get video duration in seconds.

        Raises:
            DurationUnavailable: if both the fast and the slow path fail
        """
        url = youtube_watch_url(video_id)

        fast_error = ""
        try:
            duration = await asyncio.to_thread(self.metadata_fetcher, url)
            if duration is not None and duration > 0:
                print(f"⏱️ Duration for {video_id}: {duration:.0f}s (metadata)", flush=True)
                return float(duration)
            fast_error = f"metadata returned non-positive duration: {duration!r}"
        except Exception as e:
            fast_error = str(e)

        print(f"⚠️ Metadata duration lookup failed for {video_id} ({fast_error}); falling back to yt-dlp binary", flush=True)

        try:
            return await self._probe_with_binary(video_id, url)
        except DurationUnavailable as e:
            e.detail = f"fast path: {fast_error}\nslow path: {e.detail or e.message}"
            raise

    async def _probe_with_binary(self, video_id: str, url: str) -> float:
        ytdlp = self.resolver("yt-dlp")
        cmd = [
            ytdlp,
            "--print", "duration",
            "--no-playlist",
            "--no-warnings",
            "--no-check-certificate",
            "--cache-dir", self.settings.tools.ytdlp_cache_dir,
            url,
        ]

        try:
            _, stdout, _ = await run_process(cmd, timeout=self.timeout_seconds, check=True)
        except ProcessError as e:
            raise DurationUnavailable(
                f"yt-dlp duration check failed with code {e.returncode}",
                detail=sanitize_stderr(e.stderr),
            )
        except asyncio.TimeoutError:
            raise DurationUnavailable(
                f"Video duration check timed out after {self.timeout_seconds:.0f} seconds "
                f"(platform: {sys.platform}, binary: {ytdlp})"
            )
        except OSError as e:
            raise DurationUnavailable(
                f"Could not start yt-dlp on platform {sys.platform} ({ytdlp}): {e}"
            )

        lines = [ln.strip() for ln in stdout.splitlines() if ln.strip()]
        try:
            duration = float(lines[-1]) if lines else 0.0
        except ValueError:
            raise DurationUnavailable("Failed to parse video duration", detail=stdout[:200])

        if duration <= 0:
            raise DurationUnavailable(f"yt-dlp reported non-positive duration: {duration}")

        print(f"⏱️ Duration for {video_id}: {duration:.0f}s (yt-dlp binary)", flush=True)
        return duration
