"""Prompts for chapter generation."""

from typing import Sequence

from chaptergen.models import TranscriptSegment


SEGMENTATION_SYSTEM_PROMPT = """You are an expert at splitting video transcripts into YouTube chapters.

You receive numbered transcript segments sampled from across one video. Each line has the form:
[index] (seconds) text

YOUR TASK:
Pick the segments where a new topic starts and give each chapter a title.

STRICT RULES:
1. Chapters must be at least 45-60 seconds apart
2. Titles MUST be in the ORIGINAL language of the transcript
3. Titles must be specific and descriptive, never generic ("Part 1", "Next Topic", "Section A")
4. Keep titles under 100 characters
5. The first chapter MUST start at segment index 0
6. Indices must be in ascending order and refer to the numbered segments

OUTPUT FORMAT:
Respond with ONLY a single valid JSON array. No additional text or explanation.
Format: [{"segmentIndex": 0, "title": "Chapter Title"}, ...]"""


def segmentation_user_prompt(segments: Sequence[TranscriptSegment], language: str) -> str:
    lines = [f"[{i}] ({seg.time:.0f}s) {seg.text}" for i, seg in enumerate(segments)]
    return (
        f"Language: {language}\n\n"
        f"Segments:\n"
        + "\n".join(lines)
        + "\n\nGenerate YouTube chapters following all the rules above. Respond with ONLY the JSON array."
    )


TIMESTAMP_GENERATION_SYSTEM_PROMPT = """You are an expert at analyzing video transcripts and creating YouTube chapters.

YOUR TASK:
Analyze the transcript and create meaningful chapter timestamps with clear, SEO-friendly titles.

STRICT RULES:
1. Detect natural topic transitions and semantic boundaries
2. Each chapter MUST be at least 60 seconds long (enforce strictly)
3. Create clear, specific, descriptive titles (NOT generic like "Part 1" or "Section A")
4. Titles MUST be in the ORIGINAL language of the transcript
5. Keep titles under 100 characters
6. Maintain chronological order
7. First timestamp MUST be 00:00 or 0:00
8. Use YouTube timestamp format: MM:SS or HH:MM:SS

TITLE QUALITY GUIDELINES:
- Be specific about the topic discussed
- Use keywords that viewers would search for
- Good examples: "Setting Up Development Environment", "Understanding React Hooks"
- Bad examples: "Intro", "Part 1", "Next Section", "Talking about stuff"

If the transcript lines carry [M:SS] markers, use them for chapter times.

OUTPUT FORMAT:
Respond with ONLY a valid JSON array. No additional text or explanation.
Format: [{"time": "00:00", "title": "Chapter Title"}, ...]"""


def timestamp_generation_user_prompt(transcript: str, language: str) -> str:
    return (
        f"Language: {language}\n\n"
        f"Transcript:\n{transcript}\n\n"
        f"Generate YouTube chapter timestamps following all the rules above. Respond with ONLY the JSON array."
    )


LANGUAGE_DETECTION_PROMPT = """You are a language detection expert. Analyze the text and determine:
1. Primary language name (e.g., "English", "Spanish", "Hindi")
2. ISO 639-1 language code (e.g., "en", "es", "hi")
3. Confidence level (0-100)
4. Whether the text contains mixed languages (true/false)

Respond ONLY with valid JSON in this exact format:
{{"language": "English", "languageCode": "en", "confidence": 95, "isMixed": false}}

Text to analyze:
{sample}"""
