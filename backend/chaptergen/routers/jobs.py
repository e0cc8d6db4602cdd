"""
Job creation, status and management endpoints.
"""

import asyncio
import json
import os
from typing import Optional, List

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, WebSocket, WebSocketDisconnect
import redis

from chaptergen.config import get_settings
from chaptergen.models import (
    JobCreatedResponse,
    JobKind,
    JobProgress,
    JobResult,
    JobStatus,
    YouTubeJobRequest,
)
from chaptergen.services.job_manager import JobManager
from chaptergen.services.transcript_parser import SUPPORTED_EXTENSIONS
from chaptergen.services.youtube_utils import get_youtube_video_id


router = APIRouter()
settings = get_settings()


def get_job_manager() -> JobManager:
    return JobManager()


def _to_progress(job: dict) -> JobProgress:
    return JobProgress(
        job_id=job["job_id"],
        kind=JobKind(job["kind"]),
        status=JobStatus(job["status"]),
        progress=job["progress"],
        current_step=job["current_step"],
        error_message=job.get("error_message"),
        created_at=job["created_at"],
        updated_at=job["updated_at"]
    )


@router.post("/youtube", response_model=JobCreatedResponse)
async def create_youtube_job(
    request: YouTubeJobRequest,
    job_manager: JobManager = Depends(get_job_manager),
):
    """
    Queue chapter generation for a YouTube video.

    Args:
        request: Body with the video URL

    Returns:
        The queued job
    """
    url = request.youtube_url.strip()
    video_id = get_youtube_video_id(url)
    if not video_id:
        raise HTTPException(
            status_code=400,
            detail="Invalid YouTube URL"
        )

    job_id = job_manager.create_job(JobKind.YOUTUBE, video_id=video_id, youtube_url=url)

    return JobCreatedResponse(
        job_id=job_id,
        kind=JobKind.YOUTUBE,
        status=JobStatus.PENDING,
        message="Job queued for chapter generation"
    )


@router.post("/transcript", response_model=JobCreatedResponse)
async def create_transcript_job(
    file: UploadFile = File(...),
    language: Optional[str] = Form(None),
    job_manager: JobManager = Depends(get_job_manager),
):
    """
    Queue chapter generation for an uploaded transcript (TXT, SRT or VTT).

    Args:
        file: Transcript file
        language: Optional language; detected when omitted

    Returns:
        The queued job
    """
    filename = file.filename or ""
    extension = os.path.splitext(filename)[1].lstrip(".").lower()
    if extension not in SUPPORTED_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail="Unsupported file format. Please upload TXT, SRT, or VTT file."
        )

    raw = await file.read()
    max_bytes = int(settings.storage.max_transcript_size_mb * 1024 * 1024)
    if len(raw) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Transcript too large. Max size: {settings.storage.max_transcript_size_mb:g}MB"
        )

    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=400,
            detail="Transcript must be UTF-8 text"
        )

    if not content.strip():
        raise HTTPException(
            status_code=400,
            detail="Transcript file is empty"
        )

    job_id = job_manager.create_job(
        JobKind.TRANSCRIPT,
        filename=filename,
        transcript=content,
        language=(language or "").strip() or None,
    )

    return JobCreatedResponse(
        job_id=job_id,
        kind=JobKind.TRANSCRIPT,
        status=JobStatus.PENDING,
        message="Transcript queued for chapter generation"
    )


@router.get("/", response_model=List[JobProgress])
async def list_jobs(
    status: Optional[str] = None,
    kind: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    job_manager: JobManager = Depends(get_job_manager),
):
    """
    List jobs with optional status and kind filters.

    Args:
        status: Optional status filter
        kind: Optional kind filter ("youtube" or "transcript")
        limit: Maximum number of jobs to return
        offset: Number of jobs to skip (for pagination)

    Returns:
        List of job progress objects
    """
    status_filter = None
    if status:
        try:
            status_filter = JobStatus(status)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid status: {status}"
            )

    kind_filter = None
    if kind:
        try:
            kind_filter = JobKind(kind)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid kind: {kind}"
            )

    jobs = job_manager.list_jobs(status=status_filter, kind=kind_filter, limit=limit, offset=offset)
    return [_to_progress(job) for job in jobs]


@router.get("/{job_id}", response_model=JobProgress)
async def get_job_status(job_id: str, job_manager: JobManager = Depends(get_job_manager)):
    """
    Get the current status and progress of a job.

    Args:
        job_id: The job ID

    Returns:
        Job progress information
    """
    progress = job_manager.get_job_progress(job_id)

    if not progress:
        raise HTTPException(
            status_code=404,
            detail="Job not found"
        )

    return progress


@router.get("/{job_id}/result", response_model=JobResult)
async def get_job_result(job_id: str, job_manager: JobManager = Depends(get_job_manager)):
    """
    Get the chapters of a finished job.

    Args:
        job_id: The job ID

    Returns:
        Job result with chapters, language and processed seconds
    """
    result = job_manager.get_job_result(job_id)

    if not result:
        raise HTTPException(
            status_code=404,
            detail="Job not found"
        )

    if result.status not in [JobStatus.COMPLETED, JobStatus.FAILED]:
        raise HTTPException(
            status_code=400,
            detail="Job is still processing"
        )

    return result


@router.delete("/{job_id}")
async def cancel_job(job_id: str, job_manager: JobManager = Depends(get_job_manager)):
    """
    Cancel a pending or processing job.

    Note: This only marks the job as failed. If the worker
    has already started processing, its result is discarded.

    Args:
        job_id: The job ID to cancel

    Returns:
        Confirmation message
    """
    job = job_manager.get_job(job_id)

    if not job:
        raise HTTPException(
            status_code=404,
            detail="Job not found"
        )

    if job["status"] in [JobStatus.COMPLETED.value, JobStatus.FAILED.value]:
        raise HTTPException(
            status_code=400,
            detail="Cannot cancel completed or failed job"
        )

    # Atomically fail the job unless it completed between our check and this update.
    applied = job_manager.fail_job_if_not_completed(
        job_id=job_id,
        error_message="Cancelled by user",
        current_step="Failed",
    )

    if not applied:
        # Re-check current state to return a truthful response.
        latest = job_manager.get_job(job_id) or {}
        if latest.get("status") == JobStatus.COMPLETED.value:
            raise HTTPException(status_code=409, detail="Job already completed")
        if latest.get("status") == JobStatus.FAILED.value:
            raise HTTPException(status_code=409, detail="Job already failed")

    return {"message": "Job cancelled", "success": True}


@router.post("/{job_id}/retry")
async def retry_job(job_id: str, job_manager: JobManager = Depends(get_job_manager)):
    """
    Retry a failed YouTube job.

    Args:
        job_id: The job ID to retry

    Returns:
        New job information
    """
    job = job_manager.get_job(job_id)

    if not job:
        raise HTTPException(
            status_code=404,
            detail="Job not found"
        )

    if job["status"] != JobStatus.FAILED.value:
        raise HTTPException(
            status_code=400,
            detail="Can only retry failed jobs"
        )

    if job.get("kind") != JobKind.YOUTUBE.value:
        raise HTTPException(
            status_code=400,
            detail="Transcript jobs must be uploaded again"
        )

    new_job_id = job_manager.create_job(
        JobKind.YOUTUBE,
        video_id=job["video_id"],
        youtube_url=job.get("youtube_url"),
    )

    return {
        "message": "Job queued for retry",
        "new_job_id": new_job_id,
        "old_job_id": job_id
    }


@router.websocket("/{job_id}/ws")
async def job_websocket(websocket: WebSocket, job_id: str):
    """
    WebSocket endpoint for real-time job progress updates.

    Args:
        websocket: WebSocket connection
        job_id: The job ID to subscribe to
    """
    await websocket.accept()

    job_manager = JobManager()

    job = job_manager.get_job(job_id)
    if not job:
        await websocket.close(code=4004, reason="Job not found")
        return

    await websocket.send_json({
        "type": "initial",
        "data": job
    })

    if job["status"] in [JobStatus.COMPLETED.value, JobStatus.FAILED.value]:
        await websocket.close(code=1000, reason="Job already complete")
        return

    r = redis.from_url(settings.redis_url)
    pubsub = r.pubsub()
    pubsub.subscribe(f"job_updates:{job_id}")

    try:
        while True:
            message = await asyncio.to_thread(pubsub.get_message, timeout=1.0)

            if message and message["type"] == "message":
                data = json.loads(message["data"])
                await websocket.send_json({
                    "type": "update",
                    "data": data
                })

                if data["status"] in [JobStatus.COMPLETED.value, JobStatus.FAILED.value]:
                    await websocket.send_json({
                        "type": "complete",
                        "data": job_manager.get_job(job_id)
                    })
                    break

            # Detect client disconnect without blocking on the receive
            try:
                await asyncio.wait_for(websocket.receive_text(), timeout=0.05)
            except asyncio.TimeoutError:
                pass
            except WebSocketDisconnect:
                break

    finally:
        pubsub.unsubscribe(f"job_updates:{job_id}")
        pubsub.close()
