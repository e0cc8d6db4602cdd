import json
from datetime import datetime
import unittest
from unittest.mock import MagicMock


from chaptergen.models import JobKind, JobStatus
from chaptergen.services.job_manager import JobManager


def _job(status=JobStatus.PROCESSING, kind=JobKind.YOUTUBE):
    return {
        "job_id": "job-1",
        "kind": kind.value,
        "video_id": "dQw4w9WgXcQ",
        "youtube_url": "https://youtu.be/dQw4w9WgXcQ",
        "filename": None,
        "title": None,
        "status": status.value,
        "progress": 40,
        "current_step": "Transcribing audio...",
        "error_message": None,
        "chapters": [],
        "language": None,
        "processed_seconds": 0,
        "created_at": "2026-01-01T10:00:00",
        "updated_at": "2026-01-01T10:05:00",
    }


class TestJobManager(unittest.TestCase):
    def setUp(self) -> None:
        self.redis = MagicMock()
        self.pipe = self.redis.pipeline.return_value
        self.jm = JobManager(redis_client=self.redis)

    def _stored(self) -> dict:
        return json.loads(self.pipe.set.call_args.args[1])

    def test_create_youtube_job(self) -> None:
        job_id = self.jm.create_job(JobKind.YOUTUBE, video_id="dQw4w9WgXcQ", youtube_url="https://youtu.be/dQw4w9WgXcQ")

        key, payload = self.redis.set.call_args.args
        data = json.loads(payload)
        self.assertEqual(key, f"job:{job_id}")
        self.assertEqual(data["kind"], "youtube")
        self.assertEqual(data["status"], "pending")
        self.assertEqual(data["chapters"], [])
        self.redis.lpush.assert_called_once_with("chapter_queue", job_id)

    def test_create_transcript_job_stores_content_separately(self) -> None:
        job_id = self.jm.create_job(JobKind.TRANSCRIPT, filename="talk.srt", transcript="1\n...")
        keys = [c.args[0] for c in self.redis.set.call_args_list]
        self.assertEqual(keys, [f"job_transcript:{job_id}", f"job:{job_id}"])
        self.assertNotIn("1\n...", self.redis.set.call_args_list[1].args[1])

    def test_complete_stores_chapters(self) -> None:
        self.pipe.get.return_value = json.dumps(_job())
        chapters = [{"time": "0:00", "title": "Welcome"}]

        applied = self.jm.complete_job_if_not_failed("job-1", chapters=chapters, language="en-US", processed_seconds=200)

        self.assertTrue(applied)
        stored = self._stored()
        self.assertEqual(stored["status"], "completed")
        self.assertEqual(stored["chapters"], chapters)
        self.assertEqual(stored["processed_seconds"], 200)
        self.assertEqual(stored["progress"], 100)
        self.pipe.publish.assert_called_once()
        self.assertEqual(self.pipe.publish.call_args.args[0], "job_updates:job-1")

    def test_terminal_jobs_are_not_updated(self) -> None:
        self.pipe.get.return_value = json.dumps(_job(status=JobStatus.COMPLETED))

        self.assertFalse(self.jm.fail_job_if_not_completed("job-1", error_message="late"))
        self.jm.update_job("job-1", progress=50)
        self.pipe.set.assert_not_called()

    def test_missing_job(self) -> None:
        self.pipe.get.return_value = None
        self.assertFalse(self.jm.complete_job_if_not_failed("nope", chapters=[]))

    def test_progress_and_result(self) -> None:
        job = _job(status=JobStatus.COMPLETED)
        job["chapters"] = [{"time": "00:00", "title": "Introduction"}, {"time": "1:05", "title": "Setup"}]
        job["language"] = "en-US"
        job["processed_seconds"] = 200
        self.redis.get.return_value = json.dumps(job)

        progress = self.jm.get_job_progress("job-1")
        self.assertEqual(progress.kind, JobKind.YOUTUBE)
        self.assertEqual(progress.status, JobStatus.COMPLETED)

        result = self.jm.get_job_result("job-1")
        self.assertEqual([c.title for c in result.chapters], ["Introduction", "Setup"])
        self.assertEqual(result.processed_seconds, 200)
        self.assertEqual(result.video_id, "dQw4w9WgXcQ")

    def test_cleanup_drops_only_old_finished_jobs(self) -> None:
        old_done = _job(status=JobStatus.COMPLETED)
        old_done.update(job_id="old-done", created_at="2020-01-01T00:00:00")
        old_pending = _job(status=JobStatus.PENDING)
        old_pending.update(job_id="old-pending", created_at="2020-01-01T00:00:00")
        fresh_failed = _job(status=JobStatus.FAILED)
        fresh_failed.update(job_id="fresh-failed", created_at=datetime.utcnow().isoformat())
        jobs = {f"job:{j['job_id']}".encode(): json.dumps(j) for j in (old_done, old_pending, fresh_failed)}
        self.redis.scan.return_value = (0, list(jobs))
        self.redis.get.side_effect = jobs.get

        self.jm.cleanup_old_jobs(max_age_hours=24)

        self.redis.delete.assert_called_once_with("job:old-done", "job_transcript:old-done")

    def test_next_job_decodes(self) -> None:
        self.redis.rpop.return_value = b"job-9"
        self.assertEqual(self.jm.get_next_job(), "job-9")
        self.redis.rpop.return_value = None
        self.assertIsNone(self.jm.get_next_job())


if __name__ == "__main__":
    unittest.main()
