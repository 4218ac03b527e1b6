"""
Helpers for turning LLM output into JSON.

Models wrap JSON in markdown fences, escape quotes, or add prose around
the payload. parse_llm_json tries progressively looser strategies and
raises ValueError when none of them work.
"""

import json
import re
import logging
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```json\n?|```\n?")


def clean_json_response(text: str) -> str:
    """Strip markdown code fences and escaped quotes."""
    return _FENCE_RE.sub("", text).replace('\\"', '"').strip()


def extract_json_block(text: str, opener: str = "{") -> str:
    """
    Return the substring from the first opener to the last matching closer.

    Raises:
        ValueError: If no block is found
    """
    closer = "}" if opener == "{" else "]"
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end == -1 or end < start:
        raise ValueError(f"No JSON {'object' if opener == '{' else 'array'} found in response")
    return text[start:end + 1]


def parse_llm_json(text: str, expect: str = "object") -> Any:
    """
    Parse JSON from a model response.

    Tries, in order: the raw text, the fence-cleaned text, and the outermost
    object/array block of the cleaned text.

    Args:
        text: Raw model output
        expect: "object" or "array", used for the block extraction step

    Returns:
        Parsed JSON value

    Raises:
        ValueError: If the response cannot be parsed
    """
    if not text or not text.strip():
        raise ValueError("Empty response")

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    cleaned = clean_json_response(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    opener = "[" if expect == "array" else "{"
    try:
        return json.loads(extract_json_block(cleaned, opener))
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse model JSON: {e}")
        raise ValueError(f"Failed to parse JSON response: {e}") from e
