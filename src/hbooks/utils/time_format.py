"""Time formatting helpers for labels and progress display."""

from __future__ import annotations

import math


def format_time_ms(ms: int) -> str:
    """Format milliseconds as M:SS, or H:MM:SS from one hour up."""
    total_seconds = _coerce_ms(ms) // 1000
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def format_time_pair_ms(position_ms: int, duration_ms: int) -> tuple[str, str]:
    """Format position and duration; unknown duration renders as a placeholder."""
    position = format_time_ms(position_ms)
    if duration_ms <= 0:
        return position, "--:--"
    return position, format_time_ms(duration_ms)


def _coerce_ms(value: int) -> int:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(numeric):
        return 0
    return max(0, int(numeric))
