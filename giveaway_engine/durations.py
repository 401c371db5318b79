"""Duration strings such as ``1d2h30m`` or ``01:30:00`` to milliseconds and back."""

from __future__ import annotations

import re
from typing import Optional

SECOND_MS = 1_000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

_UNIT_MS = {"d": DAY_MS, "h": HOUR_MS, "m": MINUTE_MS, "s": SECOND_MS}
_COMPOUND_RE = re.compile(r"^(?:\s*\d+\s*[dhms])+\s*$")
_TOKEN_RE = re.compile(r"(\d+)\s*([dhms])")


def parse_duration(text: str) -> Optional[int]:
    """Parse a duration into milliseconds.

    Accepts compound unit tokens (``1d2h30m``, ``1h 30m``, ``45s``), clock
    notation (``HH:MM:SS`` or ``MM:SS``) and a bare number meaning minutes.
    Returns ``None`` when the input is malformed or not strictly positive.
    """
    if text is None:
        return None
    value = text.strip().lower()
    if not value:
        return None

    if _COMPOUND_RE.match(value):
        total = sum(
            int(amount) * _UNIT_MS[unit] for amount, unit in _TOKEN_RE.findall(value)
        )
        return total if total > 0 else None

    parts = value.split(":")
    if not all(part.strip().isdigit() for part in parts):
        return None
    numbers = [int(part) for part in parts]
    if len(numbers) == 3:
        total = numbers[0] * HOUR_MS + numbers[1] * MINUTE_MS + numbers[2] * SECOND_MS
    elif len(numbers) == 2:
        total = numbers[0] * MINUTE_MS + numbers[1] * SECOND_MS
    elif len(numbers) == 1:
        total = numbers[0] * MINUTE_MS
    else:
        return None
    return total if total > 0 else None


def format_duration(ms: Optional[int]) -> str:
    """Render milliseconds as ``"1d 2h 30m 15s"``, listing every non-zero unit."""
    if not ms or ms <= 0:
        return "Not Set"
    if ms < SECOND_MS:
        return "Less than 1s"

    remaining = ms
    parts: list[str] = []
    for unit in ("d", "h", "m", "s"):
        amount, remaining = divmod(remaining, _UNIT_MS[unit])
        if amount:
            parts.append(f"{amount}{unit}")
    return " ".join(parts)
