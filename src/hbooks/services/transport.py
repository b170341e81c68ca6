"""Media transport contract and event payloads.

`PlaybackCoordinator` depends on this protocol to stay independent of the
media session runtime. Implementations translate engine-specific callbacks
into the shared events below.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal, Protocol

TransportStatus = Literal["idle", "preparing", "ready", "ended", "error"]
RepeatMode = Literal["off", "all", "one"]


@dataclass(frozen=True)
class MediaItem:
    """Playable item tagged with display metadata."""

    media_id: str
    uri: str
    title: str = ""
    artist: str = ""


@dataclass(frozen=True)
class TransportEvent:
    """Marker base type for transport-originated events."""

    pass


@dataclass(frozen=True)
class StateChanged(TransportEvent):
    status: TransportStatus


@dataclass(frozen=True)
class IsPlayingChanged(TransportEvent):
    is_playing: bool


@dataclass(frozen=True)
class PositionUpdated(TransportEvent):
    """Discontinuity (seek, skip, restart) in the transport position."""

    position_ms: int
    duration_ms: int


@dataclass(frozen=True)
class MediaChanged(TransportEvent):
    item: MediaItem | None
    duration_ms: int


@dataclass(frozen=True)
class SpeedChanged(TransportEvent):
    speed: float


@dataclass(frozen=True)
class TransportError(TransportEvent):
    """Transport-reported playback failure."""

    message: str


TransportEventHandler = Callable[[TransportEvent], Awaitable[None]]


class Transport(Protocol):
    """Media session controller consumed by `PlaybackCoordinator`."""

    def set_event_handler(self, handler: TransportEventHandler) -> None: ...

    async def start(self) -> None: ...

    async def shutdown(self) -> None: ...

    async def prepare(self, item: MediaItem) -> None: ...

    async def play(self) -> None: ...

    async def pause(self) -> None: ...

    async def stop(self) -> None: ...

    async def seek_ms(self, position_ms: int) -> None: ...

    async def skip_back(self) -> None: ...

    async def skip_forward(self) -> None: ...

    async def set_speed(self, speed: float) -> None: ...

    async def set_repeat_mode(self, mode: RepeatMode) -> None: ...

    async def set_shuffle(self, enabled: bool) -> None: ...

    async def get_position_ms(self) -> int: ...

    async def get_duration_ms(self) -> int: ...

    async def is_playing(self) -> bool: ...
