"""Coerce raw spreadsheet cells into typed field values."""

from __future__ import annotations

import json
import re
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from urllib.parse import urlparse

TRUE_VALUES = {"true", "yes", "y", "1", "on", "x"}
FALSE_VALUES = {"false", "no", "n", "0", "off"}
URL_HOST_RE = re.compile(r"^[a-z0-9-]+(\.[a-z0-9-]+)+$", re.IGNORECASE)


class CoercionError(ValueError):
    """Raised when a cell cannot be converted to the field's type."""


def clean_text(value: Any) -> str | None:
    """Return a trimmed string, or None for blank cells.

    Spreadsheet engines hand back integral numbers as floats (``7.0``);
    those are rendered without the trailing ``.0``.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    text = str(value).strip()
    return text or None


def to_score(value: Any, low: int = 1, high: int = 10) -> int | None:
    """Parse an integer score within ``low..high``."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise CoercionError(f"expected a number between {low} and {high}")
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    else:
        text = clean_text(value)
        if text is None:
            return None
        try:
            number = float(text)
        except ValueError:
            raise CoercionError(f"'{text}' is not a number") from None
    if not number.is_integer():
        raise CoercionError(f"expected a whole number, got {number:g}")
    score = int(number)
    if not low <= score <= high:
        raise CoercionError(f"{score} is outside {low}..{high}")
    return score


def to_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    text = clean_text(value)
    if text is None:
        return None
    lowered = text.lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise CoercionError(f"'{text}' is not a yes/no value")


def to_string_list(value: Any) -> list[str] | None:
    """Accept a JSON array or a comma/semicolon separated string."""
    text = clean_text(value)
    if text is None:
        return None
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise CoercionError(f"malformed JSON list ({e.msg})") from None
        if not isinstance(parsed, list):
            raise CoercionError("expected a JSON list")
        items = [clean_text(item) for item in parsed]
    else:
        items = [part.strip() for part in re.split(r"[;,]", text)]
    return [item for item in items if item] or None


def to_json_object(value: Any) -> dict[str, Any] | None:
    text = clean_text(value)
    if text is None:
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise CoercionError(f"malformed JSON ({e.msg})") from None
    if not isinstance(parsed, dict):
        raise CoercionError("expected a JSON object")
    return parsed


def to_url(value: Any) -> str | None:
    """Normalise a URL, adding ``https://`` when the scheme is missing."""
    text = clean_text(value)
    if text is None:
        return None
    if not re.match(r"^https?://", text, re.IGNORECASE):
        text = f"https://{text}"
    try:
        host = urlparse(text).hostname or ""
    except ValueError:
        raise CoercionError(f"'{clean_text(value)}' is not a valid URL") from None
    if " " in text or not URL_HOST_RE.match(host):
        raise CoercionError(f"'{clean_text(value)}' is not a valid URL")
    return text


def to_jsonable(value: Any) -> Any:
    """Make a cell safe to store in a JSON column."""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value.strip() if isinstance(value, str) else value
    return str(value)
