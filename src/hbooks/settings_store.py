"""JSON persistence for local runtime settings.

Loading is tolerant of missing or invalid values so a corrupt file degrades
to defaults instead of aborting startup.
"""

from __future__ import annotations

import json
import logging
import math
from contextlib import suppress
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

from hbooks.runtime_config import (
    normalize_log_level,
    normalize_tick_interval,
    normalize_transport_name,
)
from hbooks.services.catalog_store import CURRENT_BUCKET_HOST, LEGACY_BUCKET_HOST
from hbooks.services.playback_coordinator import AUTO_SAVE_TICKS, PLAYBACK_SPEEDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppSettings:
    """Settings loaded at startup; `document_store_path` None means the default."""

    log_level: str = "INFO"
    transport: str = "fake"
    tick_interval_s: float = 1.0
    auto_save_ticks: int = AUTO_SAVE_TICKS
    legacy_bucket_host: str = LEGACY_BUCKET_HOST
    current_bucket_host: str = CURRENT_BUCKET_HOST
    document_store_path: str | None = None
    default_speed: float = 1.0


def _coerce_settings(data: dict[str, Any]) -> AppSettings:
    def _float_or_default(value: Any, default: float) -> float:
        if isinstance(value, bool):
            return default
        if isinstance(value, (int, float)):
            normalized = float(value)
            if math.isfinite(normalized):
                return normalized
        return default

    def _str_or_default(value: Any, default: str) -> str:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return default

    def _positive_int_or_default(value: Any, default: int) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            return default
        return value

    speed = _float_or_default(data.get("default_speed"), 1.0)
    if not any(abs(speed - allowed) < 0.01 for allowed in PLAYBACK_SPEEDS):
        speed = 1.0
    store_path = data.get("document_store_path")
    return AppSettings(
        log_level=normalize_log_level(_str_or_default(data.get("log_level"), "INFO")),
        transport=normalize_transport_name(
            _str_or_default(data.get("transport"), "fake")
        ),
        tick_interval_s=normalize_tick_interval(
            _float_or_default(data.get("tick_interval_s"), 1.0)
        ),
        auto_save_ticks=_positive_int_or_default(
            data.get("auto_save_ticks"), AUTO_SAVE_TICKS
        ),
        legacy_bucket_host=_str_or_default(
            data.get("legacy_bucket_host"), LEGACY_BUCKET_HOST
        ),
        current_bucket_host=_str_or_default(
            data.get("current_bucket_host"), CURRENT_BUCKET_HOST
        ),
        document_store_path=store_path
        if isinstance(store_path, str) and store_path.strip()
        else None,
        default_speed=speed,
    )


def load_settings_with_notice(path: Path) -> tuple[AppSettings, str | None]:
    """Load settings and return an optional user-facing notice."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug("Settings file missing at %s; using defaults.", path)
        return AppSettings(), None
    except OSError as exc:
        logger.warning("Failed to read settings %s: %s; using defaults.", path, exc)
        return (
            AppSettings(),
            "Settings were reset to defaults.\n"
            "Likely cause: settings file is unreadable due to permissions or IO issues.\n"
            f"Next step: verify access to '{path}' and retry.",
        )

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Settings file at %s is invalid JSON; using defaults.", path)
        return (
            AppSettings(),
            "Settings were reset to defaults.\n"
            "Likely cause: settings file is corrupt or partially written.\n"
            f"Next step: remove or repair '{path}' and retry.",
        )

    if not isinstance(data, dict):
        logger.warning("Settings file at %s is not a JSON object.", path)
        return (
            AppSettings(),
            "Settings were reset to defaults.\n"
            "Likely cause: settings file format is invalid for this version.\n"
            f"Next step: remove '{path}' and retry.",
        )

    return _coerce_settings(data), None


def load_settings(path: Path) -> AppSettings:
    settings, _notice = load_settings_with_notice(path)
    return settings


def save_settings(path: Path, settings: AppSettings) -> None:
    """Persist settings atomically via write-then-replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.{uuid4().hex}.tmp")
    payload = json.dumps(asdict(settings), indent=2, sort_keys=True)
    try:
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(path)
    finally:
        with suppress(OSError):
            tmp_path.unlink()
