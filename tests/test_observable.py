"""Tests for the observable value primitive."""

from __future__ import annotations

import logging

from hbooks.observable import Observable


def test_set_notifies_only_on_change() -> None:
    observable = Observable(1)
    seen: list[int] = []
    observable.subscribe(seen.append)

    observable.set(1)
    observable.set(2)
    observable.update(lambda value: value + 1)

    assert seen == [2, 3]
    assert observable.value == 3


def test_unsubscribe_stops_notifications() -> None:
    observable: Observable[str] = Observable("a")
    seen: list[str] = []
    unsubscribe = observable.subscribe(seen.append)
    observable.set("b")
    unsubscribe()
    unsubscribe()
    observable.set("c")

    assert seen == ["b"]
    assert observable.subscriber_count == 0


def test_failing_subscriber_does_not_block_others(caplog) -> None:
    observable = Observable(0)
    seen: list[int] = []

    def broken(_value: int) -> None:
        raise RuntimeError("boom")

    observable.subscribe(broken)
    observable.subscribe(seen.append)
    with caplog.at_level(logging.ERROR, logger="hbooks.observable"):
        observable.set(5)

    assert seen == [5]
    assert any("subscriber" in record.message for record in caplog.records)
