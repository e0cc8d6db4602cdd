"""
Audio Extractor - short WAV clips straight from a YouTube stream.

yt-dlp streams the best audio track to stdout; an OS pipe feeds it into
ffmpeg, which seeks, trims and writes mono 16kHz PCM16 WAV. Nothing is
staged on disk except the final clip.
"""

import asyncio
import os
import uuid
from typing import List, Optional, Sequence

from chaptergen.config import get_settings
from chaptergen.models import AudioClip, SampleInterval
from chaptergen.services.errors import ExtractionFailed
from chaptergen.services.process_utils import (
    BinaryResolver,
    default_binary_resolver,
    error_lines,
    inject_ffmpeg_defaults,
    sanitize_stderr,
)
from chaptergen.services.youtube_utils import youtube_watch_url


class AudioExtractor:
    """
    Extracts sample clips with bounded parallelism.

    At most `max_concurrent` yt-dlp/ffmpeg pairs run at once: a chunk of
    that size is started, awaited as a whole, then the next chunk starts.
    """

    def __init__(
        self,
        resolver: Optional[BinaryResolver] = None,
        output_dir: Optional[str] = None,
        max_concurrent: Optional[int] = None,
    ):
        self.settings = get_settings()
        self.resolver = resolver or default_binary_resolver()
        self.output_dir = output_dir or self.settings.audio_dir
        self.max_concurrent = max(1, max_concurrent or self.settings.extraction.max_concurrent)

    def _ytdlp_cmd(self, url: str) -> List[str]:
        return [
            self.resolver("yt-dlp"),
            "-f", "bestaudio",
            "--no-playlist",
            "--no-warnings",
            "--no-check-certificate",
            "--cache-dir", self.settings.tools.ytdlp_cache_dir,
            "-o", "-",
            url,
        ]

    def _ffmpeg_cmd(self, start: float, duration: Optional[float], output_path: str) -> List[str]:
        extraction = self.settings.extraction
        cmd = [self.resolver("ffmpeg"), "-y", "-loglevel", "error"]
        if start:
            cmd += ["-ss", str(start)]
        cmd += ["-i", "pipe:0"]
        if duration:
            cmd += ["-t", str(duration)]
        cmd += [
            "-vn",
            "-ac", str(extraction.channels),
            "-ar", str(extraction.sample_rate),
            "-c:a", "pcm_s16le",
            "-f", "wav",
            output_path,
        ]
        return inject_ffmpeg_defaults(cmd, threads=extraction.ffmpeg_threads)

    async def _spawn(self, cmd: Sequence[str], *, stdin=None, stdout=None):
        return await asyncio.create_subprocess_exec(
            *cmd,
            stdin=stdin,
            stdout=stdout,
            stderr=asyncio.subprocess.PIPE,
        )

    async def extract_one(
        self,
        video_id: str,
        start: float = 0,
        duration: Optional[float] = None,
    ) -> AudioClip:
        """
        Extract one clip.

        Args:
            video_id: YouTube video id
            start: Seek position in seconds
            duration: Clip length in seconds (None = until the stream ends)

        Returns:
            AudioClip owning a fresh temp WAV file

        Raises:
            ExtractionFailed: if ffmpeg fails or writes no audio
        """
        os.makedirs(self.output_dir, exist_ok=True)
        output_path = os.path.join(self.output_dir, f"audio-{uuid.uuid4()}.wav")
        url = youtube_watch_url(video_id)
        ytdlp_cmd = self._ytdlp_cmd(url)
        ffmpeg_cmd = self._ffmpeg_cmd(start, duration, output_path)

        print(f"🎧 Extracting {video_id} slice start={start}s duration={duration or 'full'}s", flush=True)

        fetcher = None
        transcoder = None
        try:
            read_fd, write_fd = os.pipe()
            try:
                fetcher = await self._spawn(ytdlp_cmd, stdout=write_fd)
                transcoder = await self._spawn(ffmpeg_cmd, stdin=read_fd, stdout=asyncio.subprocess.DEVNULL)
            finally:
                # The children hold their own copies; ffmpeg only sees EOF
                # once every write end, including ours, is closed.
                os.close(write_fd)
                os.close(read_fd)

            (_, ytdlp_err), (_, ffmpeg_err) = await asyncio.gather(
                fetcher.communicate(),
                transcoder.communicate(),
            )
        except OSError as e:
            for proc in (fetcher, transcoder):
                if proc is not None and proc.returncode is None:
                    proc.kill()
                    await proc.wait()
            self._remove_partial(output_path)
            raise ExtractionFailed(f"Extraction failed: could not start {e.filename or 'process'}: {e}")
        except BaseException:
            for proc in (fetcher, transcoder):
                if proc is not None and proc.returncode is None:
                    proc.kill()
                    await asyncio.shield(proc.wait())
            self._remove_partial(output_path)
            raise

        fetch_errors = error_lines((ytdlp_err or b"").decode("utf-8", errors="replace"))
        transcode_stderr = (ffmpeg_err or b"").decode("utf-8", errors="replace")

        if transcoder.returncode != 0:
            self._remove_partial(output_path)
            message = f"Extraction failed: ffmpeg exited with code {transcoder.returncode}"
            if fetch_errors:
                message += f" | {fetch_errors[:500]}"
            raise ExtractionFailed(
                message,
                detail=f"ffmpeg:\n{sanitize_stderr(transcode_stderr)}\nyt-dlp:\n{fetch_errors}",
            )

        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            self._remove_partial(output_path)
            message = "Extraction failed: ffmpeg produced no audio"
            if fetch_errors:
                message += f" | {fetch_errors[:500]}"
            raise ExtractionFailed(message, detail=fetch_errors)

        # ffmpeg closes the pipe once it has enough audio, so yt-dlp
        # commonly exits non-zero here even though the clip is fine.
        if fetcher.returncode not in (0, None):
            print(f"⚠️ yt-dlp exited with code {fetcher.returncode} after ffmpeg finished", flush=True)

        print(f"✅ Extraction complete: {output_path}", flush=True)
        return AudioClip(file_path=output_path, interval_start=start, duration=duration or 0.0)

    async def extract_batch(
        self,
        video_id: str,
        intervals: Sequence[SampleInterval],
        registry: Optional[List[AudioClip]] = None,
    ) -> List[AudioClip]:
        """
        Extract clips for all intervals, chunk by chunk, preserving order.

        Every clip is appended to `registry` as soon as it exists so the
        caller can release it even when a later extraction fails. Without a
        registry, clips created before a failure are cleaned up here.

        Raises:
            ExtractionFailed: first failure of the chunk that failed
        """
        owned: List[AudioClip] = registry if registry is not None else []
        clips: List[AudioClip] = []
        total = len(intervals)

        try:
            for offset in range(0, total, self.max_concurrent):
                chunk = intervals[offset:offset + self.max_concurrent]
                print(f"📦 Extracting samples {offset + 1}-{offset + len(chunk)} of {total}", flush=True)

                results = await asyncio.gather(
                    *(self.extract_one(video_id, iv.start, iv.duration) for iv in chunk),
                    return_exceptions=True,
                )

                first_error: Optional[BaseException] = None
                for result in results:
                    if isinstance(result, AudioClip):
                        owned.append(result)
                        clips.append(result)
                    elif first_error is None:
                        first_error = result

                if first_error is not None:
                    if isinstance(first_error, ExtractionFailed):
                        raise first_error
                    if isinstance(first_error, Exception):
                        raise ExtractionFailed(f"Extraction failed: {first_error}") from first_error
                    raise first_error
        except BaseException:
            if registry is None:
                for clip in owned:
                    clip.cleanup()
            raise

        return clips

    @staticmethod
    def _remove_partial(path: str) -> None:
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError:
            pass
