"""Helpers for safe debug logging.

Provider traffic carries API keys and payer phone numbers. This module
provides a small utility to redact sensitive fields before emitting
DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "secret_key",
        "secretkey",
        "public_key",
        "publickey",
        "token",
        "authorization",
        "cookie",
        "challenge",
    }
)

# Phone numbers are partially masked so log lines stay correlatable.
_PHONE_KEYS: frozenset[str] = frozenset(
    {
        "phone",
        "phone_number",
        "phonenumber",
        "mpesanumber",
        "mpesa_number",
        "customerphone",
        "account",
    }
)


def mask_phone(value: str) -> str:
    """Keep the last three digits of a phone number."""
    digits = value.strip()
    if len(digits) <= 3:
        return "***"
    return f"{'*' * (len(digits) - 3)}{digits[-3:]}"


def _redact_entry(key: str, value: Any, max_string: int, depth: int) -> Any:
    lowered = key.lower()
    if lowered in _SENSITIVE_VALUE_KEYS:
        return "<redacted>"
    if lowered in _PHONE_KEYS and isinstance(value, str):
        return mask_phone(value)
    return redact_for_log(value, max_string=max_string, _depth=depth + 1)


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* that is safe to put in a DEBUG log line.

    Secrets are replaced, phone numbers masked, long strings truncated and
    unknown objects reduced to their ``repr``.
    """
    if _depth > 20:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    if isinstance(value, Mapping):
        return {str(k): _redact_entry(str(k), v, max_string, _depth) for k, v in value.items()}
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    return repr(value)
