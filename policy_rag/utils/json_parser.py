"""Helpers for pulling JSON out of free-form model output."""

import json
from typing import Any, Dict, Optional

from policy_rag.core.exceptions import MalformedModelOutputError
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)


def find_first_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span in ``text``.

    Models frequently wrap JSON in prose or markdown fences, so the scan skips
    everything before the first opening brace and tracks nesting depth while
    ignoring braces inside string literals.

    Args:
        text: Raw model output

    Returns:
        The matched span, or None when no balanced object exists
    """
    if not text:
        return None

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False

        for idx in range(start, len(text)):
            char = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue

            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:idx + 1]

        # Unbalanced from this opening brace; try the next one
        start = text.find("{", start + 1)

    return None


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse the first JSON object embedded in ``text``.

    Raises:
        MalformedModelOutputError: If no object is present or it does not parse
    """
    span = find_first_json_object(text)
    if span is None:
        raise MalformedModelOutputError("No JSON object found in model output")

    try:
        parsed = json.loads(span)
    except json.JSONDecodeError as e:
        raise MalformedModelOutputError(
            f"Model output contained invalid JSON: {e}", original_error=e
        ) from e

    if not isinstance(parsed, dict):
        raise MalformedModelOutputError("Model output JSON is not an object")
    return parsed
