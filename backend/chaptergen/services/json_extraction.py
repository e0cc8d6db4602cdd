"""
Pull a JSON value out of free-form model output.

Models wrap JSON in prose or ```json fences. We take the text between the
first opening bracket and the last closing bracket and parse it strictly;
nothing is repaired or guessed.
"""

import json
from dataclasses import dataclass
from typing import Any


OK = "ok"
NOT_FOUND = "not_found"
PARSE_ERROR = "parse_error"

SNIPPET_CHARS = 300


@dataclass
class JsonExtraction:
    status: str
    value: Any = None
    snippet: str = ""

    @property
    def ok(self) -> bool:
        return self.status == OK


def _extract(text: str, opener: str, closer: str, expected: type) -> JsonExtraction:
    raw = text or ""
    snippet = raw[:SNIPPET_CHARS]

    start = raw.find(opener)
    end = raw.rfind(closer)
    if start == -1 or end == -1 or end < start:
        return JsonExtraction(status=NOT_FOUND, snippet=snippet)

    candidate = raw[start:end + 1]
    try:
        value = json.loads(candidate)
    except json.JSONDecodeError:
        return JsonExtraction(status=PARSE_ERROR, snippet=candidate[:SNIPPET_CHARS])

    if not isinstance(value, expected):
        return JsonExtraction(status=PARSE_ERROR, snippet=candidate[:SNIPPET_CHARS])
    return JsonExtraction(status=OK, value=value, snippet=snippet)


def extract_json_array(text: str) -> JsonExtraction:
    """First '[' to last ']', parsed as a JSON list."""
    return _extract(text, "[", "]", list)


def extract_json_object(text: str) -> JsonExtraction:
    """First '{' to last '}', parsed as a JSON object."""
    return _extract(text, "{", "}", dict)
