import json
import unittest
from unittest.mock import AsyncMock, MagicMock, patch


from chaptergen.models import Chapter, JobKind, JobStatus, PipelineResult, TranscriptSegment
from chaptergen.services.captions import CaptionTranscript
from chaptergen.services.errors import DurationUnavailable, NoSpeechDetected
from chaptergen.workers.pipeline import CLEANUP_INTERVAL_SECONDS, GENERIC_FAILURE, PipelineWorker, map_pipeline_progress


SRT = """1
00:00:01,000 --> 00:00:04,000
Hola a todos

2
00:01:05,000 --> 00:01:09,000
Vamos a empezar
"""

CHAPTERS_JSON = json.dumps([
    {"time": "00:00", "title": "Bienvenida"},
    {"time": "1:05", "title": "Empezamos"},
])


class TestMapPipelineProgress(unittest.TestCase):
    def test_maps_onto_job_range(self) -> None:
        self.assertEqual(map_pipeline_progress(0), 10)
        self.assertEqual(map_pipeline_progress(100), 95)
        self.assertEqual(map_pipeline_progress(50), 52.5)
        self.assertEqual(map_pipeline_progress(150), 95)


class WorkerTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.jm = MagicMock()
        self.gemini = MagicMock()
        self.gemini.generate_text = AsyncMock()
        self.prober = MagicMock()
        self.prober.probe_duration = AsyncMock(return_value=212.0)
        self.worker = PipelineWorker(job_manager=self.jm, gemini=self.gemini, prober=self.prober)

    def completed_with(self) -> dict:
        self.jm.complete_job_if_not_failed.assert_called_once()
        return self.jm.complete_job_if_not_failed.call_args.kwargs


class TestTranscriptJobs(WorkerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.jm.get_job.return_value = {
            "job_id": "job-1",
            "kind": JobKind.TRANSCRIPT.value,
            "filename": "clase.srt",
            "language": None,
        }
        self.jm.get_transcript.return_value = SRT

    async def test_detects_language_then_completes(self) -> None:
        self.gemini.generate_text.side_effect = [
            '{"language": "Spanish", "languageCode": "es", "confidence": 97, "isMixed": false}',
            CHAPTERS_JSON,
        ]

        await self.worker.process_job("job-1")

        done = self.completed_with()
        self.assertEqual(done["chapters"], [
            {"time": "00:00", "title": "Bienvenida"},
            {"time": "1:05", "title": "Empezamos"},
        ])
        self.assertEqual(done["language"], "es")
        self.assertEqual(done["processed_seconds"], 0)
        self.jm.fail_job_if_not_completed.assert_not_called()

        prompt = self.gemini.generate_text.await_args_list[1].args[0]
        self.assertIn("[1:05] Vamos a empezar", prompt)

    async def test_declared_language_skips_detection(self) -> None:
        self.jm.get_job.return_value["language"] = "es-MX"
        self.gemini.generate_text.return_value = CHAPTERS_JSON

        await self.worker.process_job("job-1")

        self.assertEqual(self.gemini.generate_text.await_count, 1)
        self.assertEqual(self.completed_with()["language"], "es-MX")

    async def test_malformed_output_fails_with_user_message(self) -> None:
        self.jm.get_job.return_value["language"] = "es"
        self.gemini.generate_text.return_value = "Lo siento, no puedo."

        await self.worker.process_job("job-1")

        self.jm.complete_job_if_not_failed.assert_not_called()
        self.jm.fail_job_if_not_completed.assert_called_once_with(
            job_id="job-1",
            error_message="Incomplete response from AI engine.",
            current_step="Failed",
        )


class TestYouTubeJobs(WorkerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.jm.get_job.return_value = {
            "job_id": "job-2",
            "kind": JobKind.YOUTUBE.value,
            "video_id": "dQw4w9WgXcQ",
            "language": None,
        }

    async def test_captions_are_preferred(self) -> None:
        captions = CaptionTranscript(
            text="hello there welcome back",
            segments=[TranscriptSegment(0, "hello there"), TranscriptSegment(65, "welcome back")],
            language="en",
        )
        self.gemini.generate_text.return_value = CHAPTERS_JSON

        with patch("chaptergen.workers.pipeline.fetch_captions", new=AsyncMock(return_value=captions)), \
                patch.object(self.worker, "build_pipeline") as build_pipeline:
            await self.worker.process_job("job-2")

        build_pipeline.assert_not_called()
        done = self.completed_with()
        self.assertEqual(done["language"], "en")
        self.assertEqual(len(done["chapters"]), 2)
        self.assertEqual(done["processed_seconds"], 212.0)

    async def test_unreachable_video_fails_before_captions(self) -> None:
        self.prober.probe_duration.side_effect = DurationUnavailable(
            "yt-dlp duration check failed with code 1",
            detail="ERROR: [youtube] dQw4w9WgXcQ: Video unavailable",
        )
        fetch = AsyncMock()

        with patch("chaptergen.workers.pipeline.fetch_captions", new=fetch):
            await self.worker.process_job("job-2")

        fetch.assert_not_called()
        self.jm.complete_job_if_not_failed.assert_not_called()
        self.assertEqual(
            self.jm.fail_job_if_not_completed.call_args.kwargs["error_message"],
            "Link unreachable. Check the URL.",
        )

    async def test_caption_synthesis_failure_keeps_raw_output_out_of_job(self) -> None:
        captions = CaptionTranscript(
            text="hello there welcome back",
            segments=[TranscriptSegment(0, "hello there"), TranscriptSegment(65, "welcome back")],
            language="en",
        )
        raw = "As an AI I cannot comply SECRET-RAW-OUTPUT"
        self.gemini.generate_text.return_value = raw

        with patch("chaptergen.workers.pipeline.fetch_captions", new=AsyncMock(return_value=captions)):
            await self.worker.process_job("job-2")

        self.jm.complete_job_if_not_failed.assert_not_called()
        failure = self.jm.fail_job_if_not_completed.call_args.kwargs
        self.assertEqual(failure["error_message"], "Incomplete response from AI engine.")
        self.assertNotIn("SECRET-RAW-OUTPUT", failure["error_message"])
        self.assertEqual(failure["current_step"], "Failed")

    async def test_caption_synthesis_with_no_chapters(self) -> None:
        captions = CaptionTranscript(text="hello", segments=[TranscriptSegment(0, "hello")], language="en")
        self.gemini.generate_text.return_value = "[]"

        with patch("chaptergen.workers.pipeline.fetch_captions", new=AsyncMock(return_value=captions)):
            await self.worker.process_job("job-2")

        self.assertEqual(
            self.jm.fail_job_if_not_completed.call_args.kwargs["error_message"],
            "No timestamps were produced by the AI.",
        )

    async def test_falls_back_to_audio_pipeline(self) -> None:
        pipeline = MagicMock()
        pipeline.run = AsyncMock(return_value=PipelineResult(
            video_id="dQw4w9WgXcQ",
            chapters=[Chapter("0:00", "Intro", 0), Chapter("2:00", "Chorus", 120)],
            language="en-US",
            processed_seconds=200,
        ))

        with patch("chaptergen.workers.pipeline.fetch_captions", new=AsyncMock(return_value=None)), \
                patch.object(self.worker, "build_pipeline", return_value=pipeline):
            await self.worker.process_job("job-2")

        pipeline.run.assert_awaited_once()
        self.assertEqual(pipeline.run.await_args.args[0], "dQw4w9WgXcQ")
        self.assertEqual(pipeline.run.await_args.kwargs["duration"], 212.0)
        self.prober.probe_duration.assert_awaited_once_with("dQw4w9WgXcQ")
        done = self.completed_with()
        self.assertEqual(done["chapters"], [{"time": "0:00", "title": "Intro"}, {"time": "2:00", "title": "Chorus"}])
        self.assertEqual(done["processed_seconds"], 200)

    async def test_pipeline_errors_map_to_job_failure(self) -> None:
        pipeline = MagicMock()
        pipeline.run = AsyncMock(side_effect=NoSpeechDetected("no segments"))

        with patch("chaptergen.workers.pipeline.fetch_captions", new=AsyncMock(return_value=None)), \
                patch.object(self.worker, "build_pipeline", return_value=pipeline):
            await self.worker.process_job("job-2")

        self.assertEqual(
            self.jm.fail_job_if_not_completed.call_args.kwargs["error_message"],
            "No speech detected in this video.",
        )

    async def test_unexpected_errors_use_generic_message(self) -> None:
        with patch("chaptergen.workers.pipeline.fetch_captions", new=AsyncMock(side_effect=RuntimeError("boom"))):
            await self.worker.process_job("job-2")

        self.assertEqual(self.jm.fail_job_if_not_completed.call_args.kwargs["error_message"], GENERIC_FAILURE)

    async def test_marks_job_processing_first(self) -> None:
        with patch("chaptergen.workers.pipeline.fetch_captions", new=AsyncMock(side_effect=RuntimeError("boom"))):
            await self.worker.process_job("job-2")

        first = self.jm.update_job.call_args_list[0]
        self.assertEqual(first.kwargs["status"], JobStatus.PROCESSING)


class TestJobCleanup(WorkerTestCase):
    def test_runs_at_most_once_per_interval(self) -> None:
        self.assertTrue(self.worker.cleanup_expired_jobs(now=1000.0))
        self.assertFalse(self.worker.cleanup_expired_jobs(now=1000.0 + CLEANUP_INTERVAL_SECONDS - 1))
        self.assertTrue(self.worker.cleanup_expired_jobs(now=1000.0 + CLEANUP_INTERVAL_SECONDS))

        self.assertEqual(self.jm.cleanup_old_jobs.call_count, 2)
        self.jm.cleanup_old_jobs.assert_called_with(max_age_hours=self.worker.settings.storage.job_retention_hours)


if __name__ == "__main__":
    unittest.main()
