"""Runtime configuration normalization helpers.

These helpers keep CLI flag and settings interpretation deterministic.
"""

from __future__ import annotations

import math

TRANSPORT_NAMES = ("fake",)
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def resolve_log_level(*, verbose: bool, quiet: bool) -> str:
    """Resolve effective log level from CLI flags.

    Precedence is deterministic: --quiet overrides --verbose.
    """
    if quiet:
        return "WARNING"
    if verbose:
        return "DEBUG"
    return "INFO"


def normalize_log_level(value: str, default: str = "INFO") -> str:
    normalized = value.strip().upper()
    if normalized in LOG_LEVELS:
        return normalized
    return default


def normalize_transport_name(value: str) -> str:
    """Normalize a persisted/CLI transport name to a supported one."""
    normalized = value.strip().lower()
    if normalized in TRANSPORT_NAMES:
        return normalized
    return TRANSPORT_NAMES[0]


def normalize_tick_interval(value: float, default: float = 1.0) -> float:
    """Clamp the playback tick interval to 10ms..5s."""
    if not math.isfinite(value) or value <= 0:
        return default
    return max(0.01, min(5.0, value))
