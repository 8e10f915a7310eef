"""Utility functions for decoding model output."""

import json
from typing import Any, Iterable

from src.errors import InferenceFailed
from src.logger import get_logger

logger = get_logger(__name__)


def extract_json_from_response(
    response: str, expected_keys: Iterable[str] = ()
) -> str:
    """Extract a JSON object from a model response.

    Open-weights models may emit a thinking segment before the answer:
    <unused94>thought\n...thinking...<unused95>...actual JSON...

    This function handles:
    1. Thinking mode (split on <unused95>)
    2. Markdown code fences
    3. JSON embedded in surrounding prose (prefers candidates holding
       ``expected_keys``, then the last balanced object)

    Args:
        response: Raw model output
        expected_keys: Keys a well-formed answer is expected to contain

    Returns:
        Extracted JSON string, or the stripped response if no object found
    """
    response = response or ""
    raw_len = len(response)

    if "<unused95>" in response:
        thinking, remainder = response.split("<unused95>", 1)
        logger.debug(
            "Thinking segment detected (len=%d, raw_len=%d)", len(thinking), raw_len
        )
        response = remainder.strip()

    stripped = response.strip()
    if stripped.startswith("```"):
        lines = stripped.split("\n", 1)
        if len(lines) > 1:
            stripped = lines[1]
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3].rstrip()

    if stripped.startswith("{") and stripped.endswith("}"):
        return stripped

    brace_depth = 0
    json_start = -1
    json_candidates = []

    for i, char in enumerate(stripped):
        if char == "{":
            if brace_depth == 0:
                json_start = i
            brace_depth += 1
        elif char == "}" and brace_depth > 0:
            brace_depth -= 1
            if brace_depth == 0 and json_start != -1:
                json_candidates.append(stripped[json_start : i + 1])
                json_start = -1

    keys = tuple(expected_keys)
    fallback = None
    # Answer usually at end
    for candidate in reversed(json_candidates):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if not isinstance(parsed, dict):
            continue
        if not keys or any(k in parsed for k in keys):
            logger.debug("Extracted JSON candidate (len=%d)", len(candidate))
            return candidate
        if fallback is None:
            fallback = candidate

    if fallback is not None:
        return fallback

    logger.debug("Returning stripped response (len=%d)", len(stripped))
    return stripped


def decode_json_object(
    response: str, expected_keys: Iterable[str] = ()
) -> dict[str, Any]:
    """Decode a model response into a JSON object or raise InferenceFailed."""
    candidate = extract_json_from_response(response, expected_keys)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise InferenceFailed(
            f"Model response is not valid JSON (head={candidate[:120]!r})", exc
        ) from exc
    if not isinstance(data, dict):
        raise InferenceFailed(
            f"Model response is JSON {type(data).__name__}, expected an object"
        )
    return data
