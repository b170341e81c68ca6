"""Fake media transport for deterministic testing and the CLI."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field

from .transport import (
    IsPlayingChanged,
    MediaChanged,
    MediaItem,
    PositionUpdated,
    RepeatMode,
    SpeedChanged,
    StateChanged,
    TransportEvent,
    TransportEventHandler,
    TransportStatus,
)

DEFAULT_SEEK_BACK_MS = 10_000
DEFAULT_SEEK_FORWARD_MS = 15_000


@dataclass
class _TransportState:
    status: TransportStatus = "idle"
    playing: bool = False
    item: MediaItem | None = None
    position_ms: int = 0
    duration_ms: int = 0
    speed: float = 1.0
    repeat_mode: RepeatMode = "off"
    shuffle: bool = False
    calls: list[str] = field(default_factory=list)


class FakeTransport:
    """In-memory transport that advances position while playing."""

    def __init__(
        self,
        *,
        tick_interval_ms: int = 250,
        default_duration_ms: int = 3_600_000,
        durations: Mapping[str, int] | None = None,
        seek_back_ms: int = DEFAULT_SEEK_BACK_MS,
        seek_forward_ms: int = DEFAULT_SEEK_FORWARD_MS,
    ) -> None:
        self._tick_interval_ms = tick_interval_ms
        self._default_duration_ms = default_duration_ms
        self._durations = dict(durations or {})
        self._seek_back_ms = seek_back_ms
        self._seek_forward_ms = seek_forward_ms
        self._state = _TransportState()
        self._handler: TransportEventHandler | None = None
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.released = False

    @property
    def calls(self) -> list[str]:
        """Names of commands received, in order."""
        return self._state.calls

    @property
    def item(self) -> MediaItem | None:
        return self._state.item

    @property
    def speed(self) -> float:
        return self._state.speed

    @property
    def repeat_mode(self) -> RepeatMode:
        return self._state.repeat_mode

    @property
    def shuffle(self) -> bool:
        return self._state.shuffle

    @property
    def status(self) -> TransportStatus:
        return self._state.status

    def set_event_handler(self, handler: TransportEventHandler) -> None:
        self._handler = handler

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._ticker_loop())

    async def shutdown(self) -> None:
        self._state.calls.append("shutdown")
        self.released = True
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def prepare(self, item: MediaItem) -> None:
        self._state.calls.append("prepare")
        await self._set_playing(False)
        self._state.status = "preparing"
        await self._emit(StateChanged("preparing"))
        duration = self._durations.get(item.uri, self._default_duration_ms)
        self._state.item = item
        self._state.duration_ms = duration
        self._state.position_ms = 0
        await self._emit(MediaChanged(item, duration))
        self._state.status = "ready"
        await self._emit(StateChanged("ready"))

    async def play(self) -> None:
        self._state.calls.append("play")
        if self._state.status == "ended":
            self._state.position_ms = 0
            self._state.status = "ready"
            await self._emit(StateChanged("ready"))
        if self._state.status != "ready":
            return
        await self._set_playing(True)

    async def pause(self) -> None:
        self._state.calls.append("pause")
        await self._set_playing(False)

    async def stop(self) -> None:
        self._state.calls.append("stop")
        await self._set_playing(False)
        self._state.item = None
        self._state.position_ms = 0
        self._state.duration_ms = 0
        self._state.status = "idle"
        await self._emit(MediaChanged(None, 0))
        await self._emit(StateChanged("idle"))

    async def seek_ms(self, position_ms: int) -> None:
        self._state.calls.append(f"seek:{position_ms}")
        await self._move_to(position_ms)

    async def skip_back(self) -> None:
        self._state.calls.append("skip_back")
        await self._move_to(self._state.position_ms - self._seek_back_ms)

    async def skip_forward(self) -> None:
        self._state.calls.append("skip_forward")
        await self._move_to(self._state.position_ms + self._seek_forward_ms)

    async def set_speed(self, speed: float) -> None:
        self._state.calls.append(f"speed:{speed}")
        self._state.speed = _clamp_float(speed, 0.25, 4.0)
        await self._emit(SpeedChanged(self._state.speed))

    async def set_repeat_mode(self, mode: RepeatMode) -> None:
        self._state.calls.append(f"repeat:{mode}")
        self._state.repeat_mode = mode

    async def set_shuffle(self, enabled: bool) -> None:
        self._state.calls.append(f"shuffle:{enabled}")
        self._state.shuffle = enabled

    async def get_position_ms(self) -> int:
        return self._state.position_ms

    async def get_duration_ms(self) -> int:
        return self._state.duration_ms

    async def is_playing(self) -> bool:
        return self._state.playing

    async def _move_to(self, position_ms: int) -> None:
        upper = self._state.duration_ms if self._state.duration_ms > 0 else 0
        position = _clamp(position_ms, 0, upper)
        self._state.position_ms = position
        await self._emit(PositionUpdated(position, self._state.duration_ms))

    async def _set_playing(self, playing: bool) -> None:
        if self._state.playing == playing:
            return
        self._state.playing = playing
        await self._emit(IsPlayingChanged(playing))

    async def _ticker_loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                await asyncio.sleep(self._tick_interval_ms / 1000)
                await self._tick()
        except asyncio.CancelledError:
            pass

    async def _tick(self) -> None:
        if not self._state.playing:
            return
        duration = self._state.duration_ms
        if duration <= 0:
            return
        next_pos = self._state.position_ms + int(
            self._tick_interval_ms * self._state.speed
        )
        if next_pos < duration:
            self._state.position_ms = next_pos
            return
        if self._state.repeat_mode != "off":
            # Single-item queue: both repeat modes restart the current item.
            self._state.position_ms = 0
            await self._emit(PositionUpdated(0, duration))
            return
        self._state.position_ms = duration
        await self._set_playing(False)
        self._state.status = "ended"
        await self._emit(StateChanged("ended"))

    async def _emit(self, event: TransportEvent) -> None:
        if self._handler is None:
            return
        await self._handler(event)


def _clamp(value: int, min_value: int, max_value: int) -> int:
    return max(min_value, min(value, max_value))


def _clamp_float(value: float, min_value: float, max_value: float) -> float:
    return max(min_value, min(value, max_value))
