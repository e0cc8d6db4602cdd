"""
Google Gemini API client.

Two jobs for the chaptering pipeline:
- plain text generation (chapter synthesis, language detection)
- audio transcription through the Files API (upload, wait, prompt, delete)
"""

import asyncio
import os
from typing import List, Optional, Tuple

import google.generativeai as genai
from google.generativeai.types import HarmCategory, HarmBlockThreshold

from chaptergen.config import get_settings
from chaptergen.models import TranscriptSegment
from chaptergen.services.json_extraction import extract_json_object


TRANSCRIPTION_PROMPT = """Return a high-accuracy transcription of this audio.
Format your response as a JSON object with a "segments" array.
Each segment must have:
- "time": start time in seconds from the beginning of this audio (as an integer)
- "text": the spoken text
Also include a "language" field with the detected BCP-47 language code (e.g. "en-US", "es-ES").

Ensure timestamps are precise and strictly reflect the audio content.
If there is no speech, return {"segments": [], "language": ""}."""


SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_NONE,
}


class GeminiError(Exception):
    """Gemini request failed after all retries, or returned unusable data."""


class GeminiClient:
    """
    Client for the Google Gemini API.

    Transport errors are retried with linear back-off; callers decide what
    to do with the text they get back.
    """

    def __init__(self, model_name: Optional[str] = None, stt_model_name: Optional[str] = None):
        self.settings = get_settings()

        # Configure the API
        genai.configure(api_key=self.settings.gemini.api_key)

        self.model_name = model_name or self.settings.gemini.model
        self.stt_model_name = stt_model_name or self.settings.gemini.stt_model
        self.model = genai.GenerativeModel(self.model_name, safety_settings=SAFETY_SETTINGS)
        if self.stt_model_name == self.model_name:
            self.stt_model = self.model
        else:
            self.stt_model = genai.GenerativeModel(self.stt_model_name, safety_settings=SAFETY_SETTINGS)

        self.max_retries = max(1, self.settings.gemini.max_retries)
        self.timeout = self.settings.gemini.request_timeout_seconds

    async def _generate(self, model, contents, label: str) -> str:
        last_error = None

        for attempt in range(self.max_retries):
            try:
                response = await model.generate_content_async(
                    contents,
                    request_options={"timeout": self.timeout}
                )
                text = (response.text or "").strip()
                if text:
                    return text
                print(f"⚠️ Empty {label} response, retrying...", flush=True)
                last_error = GeminiError("empty response")
            except Exception as e:
                print(f"⚠️ {label} error (attempt {attempt + 1}/{self.max_retries}): {e}", flush=True)
                last_error = e

            if attempt < self.max_retries - 1:
                await asyncio.sleep(5 * (attempt + 1))

        raise GeminiError(f"{label} failed after {self.max_retries} retries: {last_error}")

    async def generate_text(self, prompt: str) -> str:
        """
        Run a text-only prompt.

        Returns:
            Raw response text (non-empty)

        Raises:
            GeminiError: if every attempt failed or came back empty
        """
        return await self._generate(self.model, prompt, "Generation")

    async def upload_file(self, file_path: str, mime_type: str = "audio/wav"):
        """
        Upload a local file to the Gemini Files API and wait until it is ready.

        Returns:
            The ready genai File object
        """
        print(f"📤 Uploading to Gemini: {file_path}", flush=True)

        uploaded = await asyncio.to_thread(
            genai.upload_file,
            path=file_path,
            mime_type=mime_type,
            display_name=os.path.basename(file_path),
        )

        interval = max(0.1, self.settings.gemini.file_poll_interval_seconds)
        max_wait = self.settings.gemini.file_processing_timeout_seconds
        waited = 0.0
        while uploaded.state.name == "PROCESSING":
            if waited >= max_wait:
                await self.delete_file(uploaded.name)
                raise GeminiError(f"File still processing after {max_wait:.0f}s: {uploaded.name}")
            await asyncio.sleep(interval)
            waited += interval
            uploaded = await asyncio.to_thread(genai.get_file, uploaded.name)

        if uploaded.state.name == "FAILED":
            await self.delete_file(uploaded.name)
            raise GeminiError(f"File processing failed on Gemini servers: {uploaded.name}")

        return uploaded

    async def delete_file(self, name: str) -> bool:
        """Delete an uploaded file. Failures are logged, never raised."""
        try:
            await asyncio.to_thread(genai.delete_file, name)
            print(f"🗑️ Deleted from Gemini: {name}", flush=True)
            return True
        except Exception as e:
            print(f"⚠️ Failed to delete Gemini file {name}: {e}", flush=True)
            return False

    async def transcribe_audio(self, file_path: str) -> Tuple[List[TranscriptSegment], str]:
        """
        Transcribe one audio clip.

        Returns:
            (segments with clip-relative times, detected language or "")

        Raises:
            GeminiError: on upload, generation or response format failure
        """
        uploaded = await self.upload_file(file_path)
        try:
            raw = await self._generate(self.stt_model, [uploaded, TRANSCRIPTION_PROMPT], "Transcription")
        finally:
            await self.delete_file(uploaded.name)

        extraction = extract_json_object(raw)
        if not extraction.ok:
            print(f"❌ Unstructured transcription response: {extraction.snippet}", flush=True)
            raise GeminiError("Gemini failed to return structured transcription data")

        data = extraction.value
        segments: List[TranscriptSegment] = []
        for item in data.get("segments") or []:
            if not isinstance(item, dict):
                continue
            text = str(item.get("text") or "").strip()
            try:
                time = float(item.get("time"))
            except (TypeError, ValueError):
                continue
            if text and time >= 0:
                segments.append(TranscriptSegment(time=time, text=text))

        language = str(data.get("language") or "").strip()
        return segments, language
