"""Tests for time formatting helpers."""

from __future__ import annotations

from hbooks.utils.time_format import format_time_ms, format_time_pair_ms


def test_format_time_ms_minutes_and_hours() -> None:
    assert format_time_ms(0) == "0:00"
    assert format_time_ms(65_000) == "1:05"
    assert format_time_ms(3_599_999) == "59:59"
    assert format_time_ms(3_600_000) == "1:00:00"
    assert format_time_ms(3_725_000) == "1:02:05"


def test_format_time_ms_coerces_invalid_values() -> None:
    assert format_time_ms(-5_000) == "0:00"
    assert format_time_ms(float("nan")) == "0:00"  # type: ignore[arg-type]


def test_format_time_pair_unknown_duration() -> None:
    assert format_time_pair_ms(5_000, 0) == ("0:05", "--:--")
    assert format_time_pair_ms(5_000, 125_000) == ("0:05", "2:05")
