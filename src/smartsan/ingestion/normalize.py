"""Normalization helpers.

Centralizes lenient parsing of device and provider payload values.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

# Values devices and the provider use for "not available".
_SENTINELS = frozenset({"", "--", "NaN", "nan", "null"})


def is_sentinel(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and value.strip() in _SENTINELS:
        return True
    return isinstance(value, float) and math.isnan(value)


def safe_float(value: Any) -> float | None:
    if is_sentinel(value) or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def safe_decimal(value: Any) -> Decimal | None:
    if is_sentinel(value) or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def normalize_timestamp_seconds(value: Any) -> float | None:
    """Normalize epoch timestamps to seconds.

    - Empty/missing -> None
    - <= 0 -> None
    - Milliseconds (> 1e11) -> seconds
    """

    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        ts = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if ts <= 0:
        return None
    if ts > 1e11:
        ts /= 1000.0
    return ts


def _from_epoch(seconds: float) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError) as exc:
        raise ValueError(f"epoch timestamp out of range: {seconds!r}") from exc


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an epoch (seconds or milliseconds) or ISO-8601 value to an aware UTC datetime.

    Naive datetimes are assumed to be UTC.  Returns ``None`` when the value
    is missing; raises :class:`ValueError` when it is present but unparseable.
    """
    if is_sentinel(value):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = normalize_timestamp_seconds(value)
        if seconds is None:
            raise ValueError(f"invalid epoch timestamp: {value!r}")
        return _from_epoch(seconds)
    elif isinstance(value, str):
        text = value.strip()
        seconds = normalize_timestamp_seconds(text) if text.replace(".", "", 1).isdigit() else None
        if seconds is not None:
            return _from_epoch(seconds)
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"unsupported timestamp type: {type(value).__name__}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
