"""
Pipeline Worker - chaptering jobs from the Redis queue.

YouTube jobs:
1. Resolve the video duration (unreachable links fail here)
2. Try the video's own captions (fast, no audio work)
3. Otherwise sample the audio, transcribe it and synthesize chapters

Transcript jobs:
1. Parse the uploaded TXT/SRT/VTT file
2. Detect its language
3. Synthesize chapters from the text
"""

import sys
import time
import asyncio
import traceback as tb
from pathlib import Path
from typing import List, Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))


from chaptergen.config import get_settings
from chaptergen.models import Chapter, JobKind, JobStatus
from chaptergen.services.job_manager import JobManager
from chaptergen.services.gemini_client import GeminiClient
from chaptergen.services.chapter_synthesizer import ChapterSynthesizer
from chaptergen.services.stt_pipeline import ChapterPipeline
from chaptergen.services.transcriber import BatchTranscriber
from chaptergen.services.captions import fetch_captions
from chaptergen.services.duration_prober import DurationProber
from chaptergen.services.language import detect_language
from chaptergen.services.transcript_parser import (
    parse_transcript_file,
    segments_to_text,
    transcript_for_prompt,
)
from chaptergen.services.errors import ChapterPipelineError, TranscriptParseError


GENERIC_FAILURE = "Chapter generation failed. Please try again."

# Job percentage range the audio pipeline's 0-100 is mapped onto
PIPELINE_PROGRESS_START = 10
PIPELINE_PROGRESS_END = 95

# How often an idle worker drops expired jobs
CLEANUP_INTERVAL_SECONDS = 3600


def map_pipeline_progress(percent: int) -> float:
    span = PIPELINE_PROGRESS_END - PIPELINE_PROGRESS_START
    return round(PIPELINE_PROGRESS_START + span * max(0, min(100, percent)) / 100, 1)


def chapters_to_dicts(chapters: List[Chapter]) -> List[dict]:
    return [c.to_dict() for c in chapters]


class PipelineWorker:
    """
    Polls the job queue and runs one chaptering job at a time.
    """

    def __init__(
        self,
        job_manager: Optional[JobManager] = None,
        gemini: Optional[GeminiClient] = None,
        prober: Optional[DurationProber] = None,
    ):
        self.settings = get_settings()
        self.job_manager = job_manager or JobManager()
        self.gemini = gemini or GeminiClient()
        self.prober = prober or DurationProber()
        self.synthesizer = ChapterSynthesizer(self.gemini)
        self._last_cleanup: Optional[float] = None

    def build_pipeline(self) -> ChapterPipeline:
        return ChapterPipeline(
            prober=self.prober,
            transcriber=BatchTranscriber(self.gemini),
            synthesizer=self.synthesizer,
        )

    def run(self):
        """Main worker loop."""
        print("🚀 Chapter worker started", flush=True)

        while True:
            try:
                job_id = self.job_manager.get_next_job()

                if job_id:
                    print(f"📦 Processing job: {job_id}", flush=True)
                    asyncio.run(self.process_job(job_id))
                else:
                    self.cleanup_expired_jobs()
                    # No jobs, wait before polling again
                    time.sleep(2)

            except KeyboardInterrupt:
                print("👋 Worker shutting down...", flush=True)
                break
            except Exception as e:
                print(f"❌ Worker error: {e}", flush=True)
                tb.print_exc()
                time.sleep(5)

    def cleanup_expired_jobs(self, now: Optional[float] = None) -> bool:
        """Drop finished jobs older than the retention window, at most once per interval."""
        now = time.monotonic() if now is None else now
        if self._last_cleanup is not None and now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
            return False

        self._last_cleanup = now
        self.job_manager.cleanup_old_jobs(max_age_hours=self.settings.storage.job_retention_hours)
        return True

    async def process_job(self, job_id: str):
        """
        Process a single job.

        Args:
            job_id: The job ID to process
        """
        job_data = self.job_manager.get_job(job_id)
        if not job_data:
            print(f"⚠️ Job {job_id} not found", flush=True)
            return

        self.job_manager.update_job(
            job_id,
            status=JobStatus.PROCESSING,
            progress=1,
            current_step="Initializing job..."
        )

        try:
            if job_data.get("kind") == JobKind.TRANSCRIPT.value:
                chapters, language, processed_seconds = await self._process_transcript(job_id, job_data)
            else:
                chapters, language, processed_seconds = await self._process_youtube(job_id, job_data)

            self.job_manager.complete_job_if_not_failed(
                job_id=job_id,
                chapters=chapters_to_dicts(chapters),
                language=language,
                processed_seconds=processed_seconds,
                progress=100,
                current_step="Complete!",
            )
            print(f"✅ Job {job_id} completed with {len(chapters)} chapters", flush=True)

        except ChapterPipelineError as e:
            # Short message on the job; raw detail only in the logs.
            print(f"❌ Job {job_id} failed ({type(e).__name__}): {e.message}", flush=True)
            if e.detail:
                print(f"--- detail ---\n{e.detail}\n--- end detail ---", flush=True)

            self.job_manager.fail_job_if_not_completed(
                job_id=job_id,
                error_message=e.user_message,
                current_step="Failed",
            )

        except Exception as e:
            print(f"❌ Job {job_id} failed: {e}", flush=True)
            tb.print_exc()

            self.job_manager.fail_job_if_not_completed(
                job_id=job_id,
                error_message=GENERIC_FAILURE,
                current_step="Failed",
            )

    async def _process_youtube(self, job_id: str, job_data: dict):
        video_id = job_data["video_id"]

        # An unreachable link fails here, before any caption or audio work
        self.job_manager.update_job(job_id, progress=2, current_step="Checking video duration...")
        duration = await self.prober.probe_duration(video_id)

        self.job_manager.update_job(job_id, progress=3, current_step="Checking for captions...")
        captions = await fetch_captions(video_id)

        if captions is not None:
            self.job_manager.update_job(job_id, progress=20, current_step="Detecting language...")
            language = captions.language
            if not language:
                language = (await detect_language(captions.text, self.gemini)).language_code

            self.job_manager.update_job(job_id, progress=40, current_step="Generating chapters from captions...")
            chapters = await self.synthesizer.synthesize_from_text(
                transcript_for_prompt(captions.segments),
                language,
            )
            return chapters, language, duration

        print(f"🎙️ No captions for {video_id}; running audio pipeline", flush=True)

        async def on_progress(percent: int, message: str):
            self.job_manager.update_job(
                job_id,
                progress=map_pipeline_progress(percent),
                current_step=message,
            )

        result = await self.build_pipeline().run(video_id, on_progress=on_progress, duration=duration)
        return result.chapters, result.language, result.processed_seconds

    async def _process_transcript(self, job_id: str, job_data: dict):
        content = self.job_manager.get_transcript(job_id)
        if content is None:
            raise TranscriptParseError(f"No transcript stored for job {job_id}")

        self.job_manager.update_job(job_id, progress=10, current_step="Parsing transcript...")
        segments = parse_transcript_file(content, job_data.get("filename") or "")

        transcript = transcript_for_prompt(segments)
        language = job_data.get("language")
        if not language:
            self.job_manager.update_job(job_id, progress=25, current_step="Detecting language...")
            detected = await detect_language(segments_to_text(segments), self.gemini)
            language = detected.language_code
            self.job_manager.update_job(job_id, language=language)

        self.job_manager.update_job(job_id, progress=40, current_step="Generating chapters...")
        chapters = await self.synthesizer.synthesize_from_text(transcript, language)
        return chapters, language, 0


def main():
    """Entry point for the worker."""
    worker = PipelineWorker()
    worker.run()


if __name__ == "__main__":
    main()
