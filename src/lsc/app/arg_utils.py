"""Small argument parsing helpers shared by CLI commands."""

from __future__ import annotations

import re

_DURATION_HINT = "duration must be <number><unit>, for example: 30s, 15m, 1h, 7d, 1w"
_MULTIPLIERS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}


def parse_duration_to_seconds(raw: str) -> int:
    """Parse ``<number><unit>`` durations like ``30s`` or ``1w`` to seconds."""
    value = (raw or "").strip().lower()
    if len(value) < 2:
        raise ValueError(_DURATION_HINT)
    unit = value[-1]
    amount_text = value[:-1]
    if not amount_text.isdigit():
        raise ValueError(_DURATION_HINT)
    amount = int(amount_text)
    if amount <= 0:
        raise ValueError("duration must be greater than 0")
    if unit not in _MULTIPLIERS:
        raise ValueError("duration unit must be one of: s, m, h, d, w")
    return amount * _MULTIPLIERS[unit]


def compile_filter(raw: str | None) -> re.Pattern[str] | None:
    """Compile a ``--filter`` regex; ``None`` or blank means no filter."""
    if not raw:
        return None
    try:
        return re.compile(raw)
    except re.error as exc:
        raise ValueError(f"invalid filter regex: {exc}") from exc


if __name__ == "__main__":
    """Run a real-path smoke test for argument parsing helpers."""
    assert parse_duration_to_seconds("30s") == 30
    assert parse_duration_to_seconds("2m") == 120
    assert parse_duration_to_seconds("1h") == 3600
    assert parse_duration_to_seconds("1d") == 86400
    assert parse_duration_to_seconds("1w") == 604800
    assert compile_filter("") is None
    assert compile_filter("battery").search("battery:0 12 low")
