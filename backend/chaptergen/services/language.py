from dataclasses import dataclass

from chaptergen.services.json_extraction import extract_json_object
from chaptergen.services.prompts import LANGUAGE_DETECTION_PROMPT


SAMPLE_CHARS = 1000


@dataclass
class DetectedLanguage:
    language: str = "English"
    language_code: str = "en"
    confidence: int = 50
    is_mixed: bool = False


ENGLISH_FALLBACK = DetectedLanguage()


async def detect_language(text: str, client) -> DetectedLanguage:
    """
    Detect the primary language of a transcript with Gemini.

    Only the first 1000 characters are sent. Any failure falls back to English.
    """
    sample = (text or "")[:SAMPLE_CHARS]
    if not sample.strip():
        return ENGLISH_FALLBACK

    try:
        raw = await client.generate_text(LANGUAGE_DETECTION_PROMPT.format(sample=sample))
    except Exception as e:
        print(f"⚠️ Language detection failed, assuming English: {e}", flush=True)
        return ENGLISH_FALLBACK

    extraction = extract_json_object(raw)
    if not extraction.ok:
        print(f"⚠️ Language detection returned no JSON, assuming English: {extraction.snippet!r}", flush=True)
        return ENGLISH_FALLBACK

    data = extraction.value
    try:
        confidence = int(data.get("confidence") or 0)
    except (TypeError, ValueError):
        confidence = 0

    detected = DetectedLanguage(
        language=str(data.get("language") or "Unknown"),
        language_code=str(data.get("languageCode") or "unknown"),
        confidence=confidence,
        is_mixed=bool(data.get("isMixed") or False),
    )
    print(f"🌐 Detected language: {detected.language} ({detected.language_code}, {detected.confidence}%)", flush=True)
    return detected
