"""Turn a model's textual reply into a task payload."""

from __future__ import annotations

import json
import math
import re
from typing import Any, Callable

from cancercompanion.errors import MalformedPayloadError

DefaultFactory = Callable[[str], dict[str, Any]]

_LEADING_FENCE = re.compile(r"^```[a-zA-Z]*[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?```\s*$")


def strip_code_fences(text: str) -> str:
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = _LEADING_FENCE.sub("", cleaned)
    cleaned = _TRAILING_FENCE.sub("", cleaned)
    return cleaned.strip()


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-JSON constant {name}")


def parse_json_reply(text: str) -> Any:
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned, parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        raise MalformedPayloadError(f"reply is not valid JSON: {exc.msg}", raw_text=cleaned) from exc
    except ValueError as exc:
        raise MalformedPayloadError(f"reply is not valid JSON: {exc}", raw_text=cleaned) from exc


def normalize(raw_text: str, task_default: DefaultFactory) -> dict[str, Any]:
    """Parse a reply into a mapping, falling back to the task default.

    The default receives the cleaned text so free-text replies still reach the
    user through the task's summary-like field.
    """
    try:
        parsed = parse_json_reply(raw_text)
    except MalformedPayloadError as exc:
        return task_default(exc.raw_text)
    if isinstance(parsed, dict):
        return parsed
    if isinstance(parsed, str):
        return task_default(parsed)
    return task_default(strip_code_fences(raw_text))


# Field coercion for replies whose optional fields are not guaranteed.


def as_text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def as_optional_text(value: Any) -> str | None:
    text = as_text(value)
    return text or None


def as_text_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    out: list[str] = []
    for item in value:
        text = as_text(item)
        if text:
            out.append(text)
    return out


def as_dict_list(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def as_number(value: Any, default: float | None = None) -> float | None:
    if isinstance(value, bool):
        return default
    number: float | None = None
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            match = re.search(r"-?\d+(?:\.\d+)?", value)
            if match:
                number = float(match.group(0))
    except OverflowError:
        return default
    if number is None or not math.isfinite(number):
        return default
    return number
