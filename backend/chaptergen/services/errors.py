"""
Typed failures of the chaptering pipeline.

Each error carries two texts:
- message / user_message: short, safe to store on the job for end users
- detail: raw stderr or model output, printed to server logs only
"""

from typing import Optional


class ChapterPipelineError(Exception):
    user_message = "Chapter generation failed. Please try again."

    def __init__(self, message: str, *, detail: str = "", user_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail
        if user_message is not None:
            self.user_message = user_message

    def __str__(self) -> str:
        return self.message


class DurationUnavailable(ChapterPipelineError):
    user_message = "Link unreachable. Check the URL."


class ExtractionFailed(ChapterPipelineError):
    user_message = "Could not extract audio from this video."


class TranscriptionFailed(ChapterPipelineError):
    user_message = "Speech-to-text failed. Please try again."


class NoSpeechDetected(ChapterPipelineError):
    user_message = "No speech detected in this video."


class MalformedAIResponse(ChapterPipelineError):
    user_message = "Incomplete response from AI engine."


class NoChaptersProduced(ChapterPipelineError):
    user_message = "No timestamps were produced by the AI."


class TranscriptParseError(ChapterPipelineError):
    user_message = "Unsupported or invalid transcript file. Please upload TXT, SRT, or VTT."


class AIServiceUnavailable(ChapterPipelineError):
    user_message = "AI engine is unavailable right now. Please try again."
