import asyncio
import os
import shutil
import tempfile
import unittest


from chaptergen.models import AudioClip, SampleInterval
from chaptergen.services.audio_extractor import AudioExtractor
from chaptergen.services.errors import ExtractionFailed


class FakeProcess:
    def __init__(self, returncode=0, stderr=b"", on_finish=None, delay=0.0):
        self._returncode = returncode
        self.returncode = None
        self._stderr = stderr
        self._on_finish = on_finish
        self._delay = delay
        self.killed = False
        self.waited = False

    async def communicate(self):
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._on_finish is not None:
            self._on_finish()
        self.returncode = self._returncode
        return None, self._stderr

    def kill(self):
        self.killed = True

    async def wait(self):
        self.waited = True
        return self.returncode


class ExtractorTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.mkdtemp()
        self.extractor = AudioExtractor(resolver=lambda tool: f"/opt/bin/{tool}", output_dir=self.tmp)

    def tearDown(self) -> None:
        shutil.rmtree(self.tmp, ignore_errors=True)

    def _fake_clip(self, start, duration):
        path = os.path.join(self.tmp, f"clip-{start}.wav")
        with open(path, "wb") as f:
            f.write(b"RIFF")
        return AudioClip(file_path=path, interval_start=start, duration=duration)


class TestExtractOne(ExtractorTestCase):
    def _spawn_factory(self, ytdlp_code=0, ffmpeg_code=0, write_output=True, ytdlp_stderr=b""):
        spawned = []

        async def spawn(cmd, *, stdin=None, stdout=None):
            spawned.append(list(cmd))
            if cmd[0].endswith("yt-dlp"):
                return FakeProcess(returncode=ytdlp_code, stderr=ytdlp_stderr)

            def finish():
                if write_output:
                    with open(cmd[-1], "wb") as f:
                        f.write(b"RIFF....WAVE")

            return FakeProcess(returncode=ffmpeg_code, stderr=b"ffmpeg: invalid data", on_finish=finish)

        return spawn, spawned

    async def test_commands_and_clip(self) -> None:
        spawn, spawned = self._spawn_factory()
        self.extractor._spawn = spawn

        clip = await self.extractor.extract_one("dQw4w9WgXcQ", 120, 40)

        ytdlp_cmd, ffmpeg_cmd = spawned
        self.assertEqual(ytdlp_cmd[0], "/opt/bin/yt-dlp")
        for flag in ("-f", "bestaudio", "--no-playlist", "--no-warnings", "-o", "-"):
            self.assertIn(flag, ytdlp_cmd)
        self.assertEqual(ytdlp_cmd[-1], "https://www.youtube.com/watch?v=dQw4w9WgXcQ")

        self.assertEqual(ffmpeg_cmd[0], "/opt/bin/ffmpeg")
        self.assertEqual(ffmpeg_cmd[1], "-nostdin")
        joined = " ".join(ffmpeg_cmd)
        for part in ("-ss 120", "-i pipe:0", "-t 40", "-ac 1", "-ar 16000", "-c:a pcm_s16le", "-f wav"):
            self.assertIn(part, joined)
        self.assertLess(ffmpeg_cmd.index("-ss"), ffmpeg_cmd.index("-i"))

        self.assertTrue(os.path.exists(clip.file_path))
        self.assertEqual(os.path.dirname(clip.file_path), self.tmp)
        self.assertEqual(clip.interval_start, 120)
        clip.cleanup()
        self.assertFalse(os.path.exists(clip.file_path))

    async def test_unique_filenames(self) -> None:
        spawn, _ = self._spawn_factory()
        self.extractor._spawn = spawn
        a = await self.extractor.extract_one("dQw4w9WgXcQ", 0, 40)
        b = await self.extractor.extract_one("dQw4w9WgXcQ", 0, 40)
        self.assertNotEqual(a.file_path, b.file_path)

    async def test_downloader_exit_after_transcode_is_only_a_warning(self) -> None:
        spawn, _ = self._spawn_factory(ytdlp_code=1)
        self.extractor._spawn = spawn
        clip = await self.extractor.extract_one("dQw4w9WgXcQ", 0, 40)
        self.assertTrue(os.path.exists(clip.file_path))

    async def test_transcoder_failure(self) -> None:
        spawn, _ = self._spawn_factory(ffmpeg_code=1, ytdlp_stderr=b"[youtube] ok\nERROR: Video unavailable\n")
        self.extractor._spawn = spawn
        with self.assertRaises(ExtractionFailed) as ctx:
            await self.extractor.extract_one("dQw4w9WgXcQ", 0, 40)
        self.assertIn("ERROR: Video unavailable", str(ctx.exception))
        self.assertIn("invalid data", ctx.exception.detail)
        self.assertEqual(os.listdir(self.tmp), [])

    async def test_empty_output(self) -> None:
        spawn, _ = self._spawn_factory(write_output=False)
        self.extractor._spawn = spawn
        with self.assertRaises(ExtractionFailed):
            await self.extractor.extract_one("dQw4w9WgXcQ", 0, 40)

    async def test_missing_binary(self) -> None:
        async def spawn(cmd, *, stdin=None, stdout=None):
            raise FileNotFoundError(2, "No such file or directory", cmd[0])

        self.extractor._spawn = spawn
        with self.assertRaises(ExtractionFailed):
            await self.extractor.extract_one("dQw4w9WgXcQ", 0, 40)

    async def test_cancellation_reaps_both_processes(self) -> None:
        procs = []

        async def spawn(cmd, *, stdin=None, stdout=None):
            proc = FakeProcess(delay=30)
            procs.append(proc)
            return proc

        self.extractor._spawn = spawn
        task = asyncio.create_task(self.extractor.extract_one("dQw4w9WgXcQ", 0, 40))
        await asyncio.sleep(0.01)
        task.cancel()

        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertEqual(len(procs), 2)
        self.assertTrue(all(p.killed and p.waited for p in procs))
        self.assertEqual(os.listdir(self.tmp), [])


class TestExtractBatch(ExtractorTestCase):
    async def test_chunks_of_five_in_order(self) -> None:
        active = 0
        peak = 0
        started = []

        async def extract_one(video_id, start, duration):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            started.append(start)
            # later intervals finish first
            await asyncio.sleep(0.001 * (20 - start // 60))
            active -= 1
            return self._fake_clip(start, duration)

        self.extractor.extract_one = extract_one
        intervals = [SampleInterval(start=i * 60, duration=40) for i in range(12)]

        clips = await self.extractor.extract_batch("dQw4w9WgXcQ", intervals)

        self.assertEqual([c.interval_start for c in clips], [iv.start for iv in intervals])
        self.assertLessEqual(peak, 5)
        self.assertEqual(peak, 5)
        self.assertEqual(sorted(started[:5]), [0, 60, 120, 180, 240])

    async def test_failure_registers_partial_clips(self) -> None:
        async def extract_one(video_id, start, duration):
            if start == 360:
                raise ExtractionFailed("Extraction failed: ffmpeg exited with code 1")
            return self._fake_clip(start, duration)

        self.extractor.extract_one = extract_one
        intervals = [SampleInterval(start=i * 60, duration=40) for i in range(10)]
        registry = []

        with self.assertRaises(ExtractionFailed):
            await self.extractor.extract_batch("dQw4w9WgXcQ", intervals, registry=registry)

        # first chunk complete, second chunk minus the failure; third chunk never started
        self.assertEqual(sorted(c.interval_start for c in registry), [0, 60, 120, 180, 240, 300, 420, 480, 540])
        self.assertTrue(all(os.path.exists(c.file_path) for c in registry))
        for clip in registry:
            clip.cleanup()

    async def test_failure_without_registry_cleans_up(self) -> None:
        async def extract_one(video_id, start, duration):
            if start == 60:
                raise RuntimeError("pipe broke")
            return self._fake_clip(start, duration)

        self.extractor.extract_one = extract_one
        intervals = [SampleInterval(start=i * 60, duration=40) for i in range(3)]

        with self.assertRaises(ExtractionFailed):
            await self.extractor.extract_batch("dQw4w9WgXcQ", intervals)

        self.assertEqual(os.listdir(self.tmp), [])


if __name__ == "__main__":
    unittest.main()
