"""Extraction of JSON objects embedded in free-form model output."""

import json
from typing import Any, Dict, Optional, Union


class Decoded:
    """A JSON object successfully pulled out of text."""

    __slots__ = ("value",)

    def __init__(self, value: Dict[str, Any]):
        self.value = value

    def __repr__(self) -> str:
        return f"Decoded({self.value!r})"


class ParseFailed:
    """No decodable JSON object was found."""

    __slots__ = ("reason",)

    def __init__(self, reason: str):
        self.reason = reason

    def __repr__(self) -> str:
        return f"ParseFailed({self.reason!r})"


def _balanced_object_end(text: str, start: int) -> Optional[int]:
    """Index one past the `}` closing the `{` at `start`, ignoring braces inside strings."""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
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
                return index + 1
    return None


def extract_json_object(text: Optional[str]) -> Union[Decoded, ParseFailed]:
    """
    Find the first balanced `{...}` block in `text` that decodes to a JSON object.

    Handles objects wrapped in markdown fences or surrounded by prose.

    Args:
        text: Raw model output

    Returns:
        Decoded with the parsed mapping, or ParseFailed with a reason
    """
    if not text:
        return ParseFailed("empty input")

    start = text.find("{")
    if start < 0:
        return ParseFailed("no JSON object found")

    last_error = "unbalanced braces"
    while start >= 0:
        end = _balanced_object_end(text, start)
        if end is None:
            break
        try:
            value = json.loads(text[start:end])
        except json.JSONDecodeError as e:
            last_error = f"invalid JSON: {e.msg}"
        else:
            if isinstance(value, dict):
                return Decoded(value)
            last_error = "JSON value is not an object"
        start = text.find("{", start + 1)

    return ParseFailed(last_error)
