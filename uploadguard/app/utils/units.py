"""
Human-readable byte sizes and durations.

Configuration expresses limits as strings such as ``"50mb"`` or ``"1s"``;
these helpers turn them into integers (bytes) and floats (seconds), and
format byte counts back for error messages. Byte multiples are binary
(1kb == 1024 bytes).
"""

import re
from typing import Union

_BYTE_UNITS = {
    "b": 1,
    "kb": 1 << 10,
    "mb": 1 << 20,
    "gb": 1 << 30,
    "tb": 1 << 40,
    "pb": 1 << 50,
}

_DURATION_UNITS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}

_BYTES_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(b|kb|mb|gb|tb|pb)?\s*$", re.IGNORECASE)
_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$", re.IGNORECASE)


def parse_bytes(value: Union[str, int, float]) -> int:
    """
    Parse a byte size such as ``"50mb"``, ``"1.5kb"`` or ``1024``.

    Bare numbers are bytes.

    Raises:
        ValueError: If the value is not a recognised size
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid byte size: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Byte size cannot be negative: {value!r}")
        return int(value)

    match = _BYTES_RE.match(value)
    if not match:
        raise ValueError(f"Invalid byte size: {value!r}")

    amount, unit = match.groups()
    return int(float(amount) * _BYTE_UNITS[(unit or "b").lower()])


def format_bytes(value: int) -> str:
    """Format a byte count using the largest unit that keeps it >= 1 (e.g. ``4.88KB``)."""
    magnitude = abs(value)
    for unit in ("PB", "TB", "GB", "MB", "KB"):
        size = _BYTE_UNITS[unit.lower()]
        if magnitude >= size:
            text = f"{value / size:.2f}".rstrip("0").rstrip(".")
            return f"{text}{unit}"
    return f"{value}B"


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration such as ``"1s"``, ``"500ms"`` or ``"15m"`` into seconds.

    Bare numbers are milliseconds, matching how the request limit duration
    has always been stored numerically.

    Raises:
        ValueError: If the value is not a recognised duration
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Duration cannot be negative: {value!r}")
        return float(value) / 1000.0

    match = _DURATION_RE.match(value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")

    amount, unit = match.groups()
    if unit is None:
        return float(amount) / 1000.0
    return float(amount) * _DURATION_UNITS[unit.lower()]
