from pydantic import BaseModel, Field
from typing import Optional, List
from enum import Enum
from datetime import datetime
from dataclasses import dataclass, field
import os


class JobStatus(str, Enum):
    """Status of a chaptering job."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobKind(str, Enum):
    """Where the job's content comes from."""
    YOUTUBE = "youtube"
    TRANSCRIPT = "transcript"


class PipelineStage(str, Enum):
    """Stages of a single audio pipeline run."""
    PLANNING = "planning"
    EXTRACTING = "extracting"
    TRANSCRIBING = "transcribing"
    SYNTHESIZING = "synthesizing"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


# =============================================================================
# Pipeline data model
# =============================================================================

@dataclass(frozen=True)
class SampleInterval:
    """A window of the source video selected for audio extraction."""
    start: int     # seconds
    duration: int  # seconds

    @property
    def end(self) -> int:
        return self.start + self.duration


@dataclass
class AudioClip:
    """
    Transient local WAV file produced for one sample interval.

    Owned by whoever extracted it until cleanup() runs. cleanup() is
    idempotent so every exit path can call it.
    """
    file_path: str
    interval_start: float
    duration: float = 0.0
    _released: bool = field(default=False, repr=False, compare=False)

    @property
    def released(self) -> bool:
        return self._released

    def cleanup(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            if os.path.exists(self.file_path):
                os.remove(self.file_path)
                print(f"🗑️ Cleaned up temp clip: {self.file_path}", flush=True)
        except OSError as e:
            print(f"⚠️ Failed to remove temp clip {self.file_path}: {e}", flush=True)


@dataclass
class TranscriptSegment:
    """Time-anchored text; time is absolute in the source video's timeline."""
    time: float
    text: str


@dataclass
class TranscriptionResult:
    segments: List[TranscriptSegment]
    language: str


@dataclass
class ChapterCandidate:
    """Raw model output: an index into the segment list plus a title."""
    segment_index: int
    title: str


@dataclass
class Chapter:
    """Final output unit."""
    time: str      # "M:SS", "MM:SS" or "H:MM:SS"
    title: str
    seconds: int = 0

    def to_dict(self) -> dict:
        return {"time": self.time, "title": self.title}


@dataclass
class PipelineResult:
    video_id: str
    chapters: List[Chapter]
    language: str
    processed_seconds: float


# =============================================================================
# API models
# =============================================================================

class ChapterOut(BaseModel):
    time: str
    title: str


class YouTubeJobRequest(BaseModel):
    """Request model for chaptering a YouTube video."""
    youtube_url: str = Field(..., min_length=1)


class JobCreatedResponse(BaseModel):
    job_id: str
    kind: JobKind
    status: JobStatus
    message: str


class JobProgress(BaseModel):
    """Progress information for a job."""
    job_id: str
    kind: JobKind
    status: JobStatus
    progress: float = Field(ge=0, le=100)
    current_step: str
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class JobResult(BaseModel):
    """Result of a finished job."""
    job_id: str
    kind: JobKind
    status: JobStatus
    video_id: Optional[str] = None
    title: Optional[str] = None
    chapters: List[ChapterOut] = []
    language: Optional[str] = None
    processed_seconds: float = 0
    error_message: Optional[str] = None
