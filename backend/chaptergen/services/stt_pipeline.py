"""
Audio pipeline orchestrator.

video id -> duration -> sample plan -> clips -> transcript -> chapters

Every clip extracted during a run is recorded in a run-scoped registry and
released in `finally`, whichever way the run ends.
"""

from typing import Awaitable, Callable, List, Optional

from chaptergen.config import get_settings
from chaptergen.models import AudioClip, PipelineResult, PipelineStage
from chaptergen.services.errors import NoChaptersProduced, NoSpeechDetected
from chaptergen.services.sampling import plan_samples, total_sampled_seconds


ProgressCallback = Callable[[int, str], Awaitable[None]]


class ProgressReporter:
    """Forwards progress to a callback, never letting the percentage go backwards."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.percent = 0

    async def report(self, percent: int, message: str) -> None:
        self.percent = min(100, max(self.percent, int(percent)))
        if self.callback is not None:
            await self.callback(self.percent, message)


class ChapterPipeline:
    """
    Runs one video through sampling, extraction, transcription and synthesis.

    Collaborators are injected; any left out are built from settings.
    """

    def __init__(self, prober=None, extractor=None, transcriber=None, synthesizer=None):
        self.settings = get_settings()

        if transcriber is None or synthesizer is None:
            from chaptergen.services.gemini_client import GeminiClient
            client = GeminiClient()
        if prober is None:
            from chaptergen.services.duration_prober import DurationProber
            prober = DurationProber()
        if extractor is None:
            from chaptergen.services.audio_extractor import AudioExtractor
            extractor = AudioExtractor()
        if transcriber is None:
            from chaptergen.services.transcriber import BatchTranscriber
            transcriber = BatchTranscriber(client)
        if synthesizer is None:
            from chaptergen.services.chapter_synthesizer import ChapterSynthesizer
            synthesizer = ChapterSynthesizer(client)

        self.prober = prober
        self.extractor = extractor
        self.transcriber = transcriber
        self.synthesizer = synthesizer
        self.stage = PipelineStage.PLANNING

    def _enter(self, stage: PipelineStage) -> None:
        self.stage = stage
        print(f"🔄 Pipeline stage: {stage.value}", flush=True)

    async def run(
        self,
        video_id: str,
        on_progress: Optional[ProgressCallback] = None,
        duration: Optional[float] = None,
    ) -> PipelineResult:
        """
        Generate chapters for a YouTube video.

        A duration the caller already resolved skips the probe.

        Raises:
            ChapterPipelineError subclasses; clips are released before the
            error leaves this method.
        """
        progress = ProgressReporter(on_progress)
        registry: List[AudioClip] = []
        sampling = self.settings.sampling

        try:
            self._enter(PipelineStage.PLANNING)
            await progress.report(0, "Checking video duration...")
            if duration is None:
                duration = await self.prober.probe_duration(video_id)
            intervals = plan_samples(
                duration,
                max_samples=sampling.max_samples,
                sample_length=sampling.sample_length_seconds,
                min_sample_seconds=sampling.min_sample_seconds,
                short_video_seconds=sampling.short_video_seconds,
            )
            if not intervals:
                raise NoSpeechDetected(f"Video is too short to sample ({duration:.0f}s)")
            print(f"📐 Planned {len(intervals)} samples across {duration:.0f}s", flush=True)
            await progress.report(10, f"Planned {len(intervals)} audio samples")

            self._enter(PipelineStage.EXTRACTING)
            await progress.report(10, "Extracting audio...")
            clips = await self.extractor.extract_batch(video_id, intervals, registry=registry)
            await progress.report(30, f"Extracted {len(clips)} audio samples")

            self._enter(PipelineStage.TRANSCRIBING)
            await progress.report(31, "Transcribing audio...")
            transcription = await self.transcriber.transcribe_batch(
                [(clip.file_path, clip.interval_start) for clip in clips]
            )
            for clip in clips:
                clip.cleanup()
            await progress.report(65, f"Transcribed {len(transcription.segments)} segments")

            if not transcription.segments:
                raise NoSpeechDetected("No speech detected in any sampled audio")

            self._enter(PipelineStage.SYNTHESIZING)
            await progress.report(66, "Analyzing topics...")
            candidates = await self.synthesizer.synthesize(transcription.segments, transcription.language)
            await progress.report(90, "Topics identified")

            self._enter(PipelineStage.FINALIZING)
            await progress.report(91, "Finalizing chapters...")
            chapters = self.synthesizer.finalize(candidates, transcription.segments)
            if not chapters:
                raise NoChaptersProduced("No chapter pointed at a known transcript segment")

            result = PipelineResult(
                video_id=video_id,
                chapters=chapters,
                language=transcription.language,
                processed_seconds=total_sampled_seconds(intervals),
            )
            self._enter(PipelineStage.DONE)
            await progress.report(100, "Completed")
            return result

        except BaseException as e:
            failed_in = self.stage
            self._enter(PipelineStage.FAILED)
            print(f"❌ Pipeline failed during {failed_in.value} for {video_id}: {e}", flush=True)
            raise
        finally:
            for clip in registry:
                clip.cleanup()
