"""
Redis-backed smoke test for atomic job status transitions.

Run from repo root:
  python backend/scripts/job_atomic_smoke.py
"""

from __future__ import annotations

import sys
import threading
import time


def main() -> int:
    # Allow `from chaptergen...` imports when running directly from repo root.
    sys.path.insert(0, "backend")

    from chaptergen.services.job_manager import JobManager  # noqa: WPS433
    from chaptergen.models import JobKind, JobStatus  # noqa: WPS433

    jm = JobManager()
    jm.redis.ping()
    print("redis:ping ok")

    chapters = [{"time": "0:00", "title": "Introduction"}]

    # 1) Completed should not flip to failed
    job1 = jm.create_job(JobKind.YOUTUBE, video_id="dQw4w9WgXcQ")
    jm.complete_job_if_not_failed(job_id=job1, chapters=chapters, language="en-US", processed_seconds=200)
    applied = jm.fail_job_if_not_completed(job_id=job1, error_message="late error")
    job1d = jm.get_job(job1)
    print("test1 late-fail-applied", applied)
    print("test1 status", job1d["status"])
    assert job1d["status"] == JobStatus.COMPLETED.value
    assert job1d["chapters"] == chapters
    assert applied is False

    # 2) Failed should not flip to completed
    job2 = jm.create_job(JobKind.TRANSCRIPT, filename="talk.srt", transcript="1\n00:00:01,000 --> 00:00:02,000\nhi\n")
    jm.fail_job_if_not_completed(job_id=job2, error_message="cancelled")
    applied2 = jm.complete_job_if_not_failed(job_id=job2, chapters=chapters)
    job2d = jm.get_job(job2)
    print("test2 complete-after-fail-applied", applied2)
    print("test2 status", job2d["status"])
    assert job2d["status"] == JobStatus.FAILED.value
    assert applied2 is False

    # 3) Concurrency: one completes, one fails; final is terminal and stable.
    job3 = jm.create_job(JobKind.YOUTUBE, video_id="9bZkp7q19f0")
    results = []

    def do_complete() -> None:
        results.append(("complete", jm.complete_job_if_not_failed(job_id=job3, chapters=chapters)))

    def do_fail() -> None:
        time.sleep(0.01)
        results.append(("fail", jm.fail_job_if_not_completed(job_id=job3, error_message="boom")))

    t1 = threading.Thread(target=do_complete)
    t2 = threading.Thread(target=do_fail)
    t1.start()
    t2.start()
    t1.join()
    t2.join()

    job3d = jm.get_job(job3)
    print("test3 results", results)
    print("test3 final status", job3d["status"])
    assert job3d["status"] in (JobStatus.COMPLETED.value, JobStatus.FAILED.value)
    assert sum(1 for _, ok in results if ok) == 1

    # Cleanup
    jm.delete_job(job1)
    jm.delete_job(job2)
    jm.delete_job(job3)

    # Drop the queue entries this script created
    for job_id in (job1, job2, job3):
        jm.redis.lrem(jm.queue_name, 0, job_id)

    print("OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
