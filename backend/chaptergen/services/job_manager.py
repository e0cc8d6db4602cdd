import json
import uuid
from datetime import datetime, timedelta
from typing import Optional, List, Callable, Any, Dict

import redis
from redis.exceptions import WatchError

from chaptergen.config import get_settings
from chaptergen.models import ChapterOut, JobKind, JobStatus, JobProgress, JobResult


class JobManager:
    """
    Manages chaptering job state and progress in Redis.

    Provides methods for creating, updating, and querying jobs.
    """

    def __init__(self, redis_client=None):
        self.settings = get_settings()
        self.redis = redis_client if redis_client is not None else redis.from_url(self.settings.redis_url)
        self.job_prefix = "job:"
        self.transcript_prefix = "job_transcript:"
        self.queue_name = "chapter_queue"

        # Treat COMPLETED/FAILED as terminal states (no further updates).
        self._terminal_statuses = {JobStatus.COMPLETED.value, JobStatus.FAILED.value}

    def _job_key(self, job_id: str) -> str:
        return f"{self.job_prefix}{job_id}"

    def _transcript_key(self, job_id: str) -> str:
        return f"{self.transcript_prefix}{job_id}"

    def _publish_payload(self, job_data: dict) -> str:
        # Keep websocket payload small and consistent.
        return json.dumps(
            {
                "job_id": job_data.get("job_id"),
                "status": job_data.get("status"),
                "progress": job_data.get("progress"),
                "current_step": job_data.get("current_step"),
            }
        )

    def _update_job_atomic(
        self,
        job_id: str,
        apply_fn: Callable[[dict], bool],
        max_retries: int = 10,
    ) -> bool:
        """
        Atomically update a job using Redis WATCH/MULTI.

        Guardrail: once a job is terminal (COMPLETED/FAILED), we ignore all future updates.

        Returns:
            True if an update was applied, False if job missing, terminal, or no-op.
        """
        key = self._job_key(job_id)

        for _ in range(max_retries):
            pipe = self.redis.pipeline()
            try:
                pipe.watch(key)
                raw = pipe.get(key)
                if not raw:
                    pipe.unwatch()
                    return False

                job_data = json.loads(raw)
                if job_data.get("status") in self._terminal_statuses:
                    pipe.unwatch()
                    return False

                changed = apply_fn(job_data)
                if not changed:
                    pipe.unwatch()
                    return False

                job_data["updated_at"] = datetime.utcnow().isoformat()

                pipe.multi()
                pipe.set(key, json.dumps(job_data))
                pipe.publish(f"job_updates:{job_id}", self._publish_payload(job_data))
                pipe.execute()
                print(f"✅ Job {job_id} updated in Redis (status: {job_data.get('status', 'unknown')}, progress: {job_data.get('progress', 0)}%)", flush=True)
                return True
            except WatchError:
                # Another writer updated the key; retry.
                continue
            finally:
                try:
                    pipe.reset()
                except Exception:
                    pass

        return False

    def create_job(
        self,
        kind: JobKind,
        video_id: Optional[str] = None,
        youtube_url: Optional[str] = None,
        filename: Optional[str] = None,
        transcript: Optional[str] = None,
        language: Optional[str] = None,
    ) -> str:
        """
        Create a new chaptering job and queue it.

        Args:
            kind: YOUTUBE (audio/captions) or TRANSCRIPT (uploaded file)
            video_id: YouTube video id for YOUTUBE jobs
            youtube_url: Original URL as submitted
            filename: Uploaded transcript filename for TRANSCRIPT jobs
            transcript: Uploaded transcript content; stored under its own key
            language: Declared language, if the caller knows it

        Returns:
            Job ID
        """
        job_id = str(uuid.uuid4())
        now = datetime.utcnow().isoformat()

        job_data = {
            "job_id": job_id,
            "kind": kind.value,
            "video_id": video_id,
            "youtube_url": youtube_url,
            "filename": filename,
            "title": filename,
            "status": JobStatus.PENDING.value,
            "progress": 0,
            "current_step": "Queued",
            "error_message": None,
            "chapters": [],
            "language": language,
            "processed_seconds": 0,
            "created_at": now,
            "updated_at": now
        }

        if transcript is not None:
            self.redis.set(self._transcript_key(job_id), transcript)

        self.redis.set(self._job_key(job_id), json.dumps(job_data))
        self.redis.lpush(self.queue_name, job_id)
        print(f"📥 Job {job_id} queued ({kind.value})", flush=True)

        return job_id

    def get_job(self, job_id: str) -> Optional[dict]:
        """
        Get job data by ID.

        Args:
            job_id: The job ID

        Returns:
            Job data dict or None
        """
        data = self.redis.get(self._job_key(job_id))
        if data:
            return json.loads(data)
        return None

    def get_transcript(self, job_id: str) -> Optional[str]:
        data = self.redis.get(self._transcript_key(job_id))
        if data is None:
            return None
        return data.decode("utf-8") if isinstance(data, bytes) else data

    def update_job(
        self,
        job_id: str,
        status: Optional[JobStatus] = None,
        progress: Optional[float] = None,
        current_step: Optional[str] = None,
        error_message: Optional[str] = None,
        language: Optional[str] = None,
        title: Optional[str] = None,
    ):
        """
        Update job state.

        Args:
            job_id: The job ID
            status: New status
            progress: Progress percentage (0-100)
            current_step: Description of current step
            error_message: Error message if failed
            language: Detected transcript language
            title: Display title
        """
        def apply(job_data: Dict[str, Any]) -> bool:
            changed = False

            if status is not None and job_data.get("status") != status.value:
                old_status = job_data.get("status", "unknown")
                job_data["status"] = status.value
                print(f"🔄 Job {job_id} status change: {old_status} -> {status.value}", flush=True)
                changed = True
            if progress is not None and job_data.get("progress") != progress:
                job_data["progress"] = progress
                changed = True
            if current_step is not None and job_data.get("current_step") != current_step:
                job_data["current_step"] = current_step
                changed = True
            if error_message is not None and job_data.get("error_message") != error_message:
                job_data["error_message"] = error_message
                changed = True
            if language is not None and job_data.get("language") != language:
                job_data["language"] = language
                changed = True
            if title is not None and job_data.get("title") != title:
                job_data["title"] = title
                changed = True

            return changed

        self._update_job_atomic(job_id, apply_fn=apply)

    def fail_job_if_not_completed(
        self,
        job_id: str,
        error_message: str,
        current_step: str = "Failed",
    ) -> bool:
        """
        Only set FAILED if current status is not COMPLETED.

        Returns True if update applied, False if job missing or already terminal.
        """

        def apply(job_data: Dict[str, Any]) -> bool:
            if job_data.get("status") == JobStatus.COMPLETED.value:
                return False
            job_data["status"] = JobStatus.FAILED.value
            job_data["current_step"] = current_step
            job_data["error_message"] = error_message
            return True

        return self._update_job_atomic(job_id, apply_fn=apply)

    def complete_job_if_not_failed(
        self,
        job_id: str,
        chapters: List[dict],
        language: Optional[str] = None,
        processed_seconds: float = 0,
        progress: float = 100,
        current_step: str = "Complete!",
    ) -> bool:
        """
        Only set COMPLETED if current status is not FAILED.

        Returns True if update applied, False if job missing or already terminal.
        """

        def apply(job_data: Dict[str, Any]) -> bool:
            if job_data.get("status") == JobStatus.FAILED.value:
                return False
            job_data["status"] = JobStatus.COMPLETED.value
            job_data["progress"] = progress
            job_data["current_step"] = current_step
            job_data["chapters"] = chapters
            job_data["processed_seconds"] = processed_seconds
            if language is not None:
                job_data["language"] = language
            return True

        applied = self._update_job_atomic(job_id, apply_fn=apply)
        if applied:
            self.redis.delete(self._transcript_key(job_id))
        return applied

    def get_job_progress(self, job_id: str) -> Optional[JobProgress]:
        """
        Get job progress info.

        Args:
            job_id: The job ID

        Returns:
            JobProgress object or None
        """
        job_data = self.get_job(job_id)
        if not job_data:
            return None

        return JobProgress(
            job_id=job_data["job_id"],
            kind=JobKind(job_data["kind"]),
            status=JobStatus(job_data["status"]),
            progress=job_data["progress"],
            current_step=job_data["current_step"],
            error_message=job_data.get("error_message"),
            created_at=datetime.fromisoformat(job_data["created_at"]),
            updated_at=datetime.fromisoformat(job_data["updated_at"])
        )

    def get_job_result(self, job_id: str) -> Optional[JobResult]:
        """
        Get job result (chapters are empty until the job completes).

        Args:
            job_id: The job ID

        Returns:
            JobResult object or None
        """
        job_data = self.get_job(job_id)
        if not job_data:
            return None

        return JobResult(
            job_id=job_data["job_id"],
            kind=JobKind(job_data["kind"]),
            status=JobStatus(job_data["status"]),
            video_id=job_data.get("video_id"),
            title=job_data.get("title"),
            chapters=[ChapterOut(**c) for c in job_data.get("chapters", [])],
            language=job_data.get("language"),
            processed_seconds=job_data.get("processed_seconds") or 0,
            error_message=job_data.get("error_message")
        )

    def get_next_job(self) -> Optional[str]:
        """
        Get the next job ID from the queue.

        Returns:
            Job ID or None if the queue is empty
        """
        result = self.redis.rpop(self.queue_name)
        if result:
            return result.decode("utf-8") if isinstance(result, bytes) else result
        return None

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        kind: Optional[JobKind] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[dict]:
        """
        List jobs, optionally filtered by status and kind.

        Args:
            status: Optional status filter
            kind: Optional job kind filter
            limit: Maximum number of jobs to return
            offset: Number of jobs to skip (for pagination)

        Returns:
            List of job data dicts, newest first
        """
        jobs = []
        cursor = 0

        while True:
            cursor, keys = self.redis.scan(
                cursor,
                match=f"{self.job_prefix}*",
                count=100
            )

            for key in keys:
                data = self.redis.get(key)
                if data:
                    job_data = json.loads(data)

                    if status is not None and job_data["status"] != status.value:
                        continue
                    if kind is not None and job_data.get("kind") != kind.value:
                        continue

                    jobs.append(job_data)

            if cursor == 0:
                break

        # Sort by created_at descending
        jobs.sort(key=lambda x: x["created_at"], reverse=True)

        return jobs[offset:offset + limit]

    def delete_job(self, job_id: str):
        """
        Delete a job (and any stored transcript) from Redis.

        Args:
            job_id: The job ID to delete
        """
        self.redis.delete(self._job_key(job_id), self._transcript_key(job_id))

    def cleanup_old_jobs(self, max_age_hours: int = 24):
        """
        Clean up old completed/failed jobs.

        Args:
            max_age_hours: Maximum age in hours for jobs to keep
        """
        cutoff = datetime.utcnow() - timedelta(hours=max_age_hours)
        jobs = self.list_jobs(limit=1000)

        for job in jobs:
            if job["status"] in [JobStatus.COMPLETED.value, JobStatus.FAILED.value]:
                created = datetime.fromisoformat(job["created_at"])
                if created < cutoff:
                    self.delete_job(job["job_id"])
