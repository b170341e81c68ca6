"""Playback orchestration between listener intent and the media transport.

`PlaybackCoordinator` is the single owner of the active transport. It mirrors
transport events into an observable `PlayerState`, persists resume points,
runs the sleep timer and resolves queue navigation over the catalog order.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Sequence
from contextlib import suppress
from dataclasses import dataclass, replace
from typing import Any, Literal

from hbooks.errors import CatalogError, StorageResolutionError, format_user_error
from hbooks.observable import Observable
from hbooks.services.catalog_store import Book, CatalogStore
from hbooks.services.playlist_store import Playlist, PlaylistStore
from hbooks.services.position_store import PlaybackPositionStore
from hbooks.services.recently_played_store import RecentlyPlayedStore
from hbooks.services.storage_resolver import StorageUrlResolver
from hbooks.services.transport import (
    IsPlayingChanged,
    MediaChanged,
    MediaItem,
    PositionUpdated,
    RepeatMode,
    SpeedChanged,
    StateChanged,
    Transport,
    TransportError,
    TransportEvent,
    TransportStatus,
)

logger = logging.getLogger(__name__)

PlaybackMode = Literal["off", "repeat_all", "repeat_one", "shuffle"]
PLAYBACK_SPEEDS = (0.5, 0.75, 1.0, 1.25, 1.5, 1.75, 2.0)
SPEED_TOLERANCE = 0.01
AUTO_SAVE_TICKS = 10
SLEEP_TIMER_STEP_MS = 1000

_NEXT_MODE: dict[PlaybackMode, PlaybackMode] = {
    "off": "repeat_all",
    "repeat_all": "repeat_one",
    "repeat_one": "shuffle",
    "shuffle": "off",
}
_MODE_SETTINGS: dict[PlaybackMode, tuple[RepeatMode, bool]] = {
    "off": ("off", False),
    "repeat_all": ("all", False),
    "repeat_one": ("one", False),
    "shuffle": ("off", True),
}


@dataclass(frozen=True)
class PlaybackSnapshot:
    """What is playing right now; empty when playback is stopped."""

    current_book: Book | None = None
    is_playing: bool = False
    position_ms: int = 0
    duration_ms: int = 0


@dataclass(frozen=True)
class PlayerState:
    """Observable coordinator state consumed by front ends."""

    current_book: Book | None = None
    is_playing: bool = False
    position_ms: int = 0
    duration_ms: int = 0
    status: TransportStatus = "idle"
    sleep_timer_remaining_ms: int | None = None
    repeat_mode: RepeatMode = "off"
    shuffle: bool = False
    speed: float = 1.0
    error: str | None = None

    @property
    def snapshot(self) -> PlaybackSnapshot:
        return PlaybackSnapshot(
            current_book=self.current_book,
            is_playing=self.is_playing,
            position_ms=self.position_ms,
            duration_ms=self.duration_ms,
        )

    @property
    def playback_mode(self) -> PlaybackMode:
        if self.shuffle:
            return "shuffle"
        if self.repeat_mode == "all":
            return "repeat_all"
        if self.repeat_mode == "one":
            return "repeat_one"
        return "off"


def adjacent_book_id(
    queue: Sequence[str],
    current_id: str | None,
    *,
    forward: bool,
    shuffle: bool = False,
    rng: random.Random | None = None,
) -> str | None:
    """Return the queue entry to move to from `current_id`.

    Shuffle with more than one entry picks uniformly among the other entries.
    Otherwise the neighbour in `forward` direction with wraparound, or the
    first entry when `current_id` is not queued.
    """
    if not queue:
        return None
    index = queue.index(current_id) if current_id in queue else -1
    if shuffle and len(queue) > 1:
        candidates = [i for i in range(len(queue)) if i != index]
        return queue[(rng or random).choice(candidates)]
    if index == -1:
        return queue[0]
    step = 1 if forward else -1
    return queue[(index + step) % len(queue)]


def next_playback_speed(current: float) -> float:
    """Next entry of `PLAYBACK_SPEEDS`, restarting at the slowest speed."""
    for index, speed in enumerate(PLAYBACK_SPEEDS):
        if abs(speed - current) < SPEED_TOLERANCE:
            return PLAYBACK_SPEEDS[(index + 1) % len(PLAYBACK_SPEEDS)]
    return PLAYBACK_SPEEDS[0]


class PlaybackCoordinator:
    """Owns playback state and drives the transport."""

    def __init__(
        self,
        *,
        transport: Transport,
        catalog: CatalogStore,
        resolver: StorageUrlResolver,
        positions: PlaybackPositionStore,
        recently_played: RecentlyPlayedStore,
        playlists: PlaylistStore,
        tick_interval_s: float = 1.0,
        auto_save_ticks: int = AUTO_SAVE_TICKS,
        shuffle_random: random.Random | None = None,
        initial_speed: float = 1.0,
    ) -> None:
        if auto_save_ticks < 1:
            raise ValueError("auto_save_ticks must be >= 1")
        self._transport = transport
        self._catalog = catalog
        self._resolver = resolver
        self._positions = positions
        self._recently_played = recently_played
        self._playlists = playlists
        self._tick_interval_s = max(0.001, float(tick_interval_s))
        self._auto_save_ticks = auto_save_ticks
        self._shuffle_random = shuffle_random or random.Random()
        self._initial_speed = initial_speed
        self._queue: list[str] = []
        self._poll_task: asyncio.Task[None] | None = None
        self._playing_ticks = 0
        self._sleep_task: asyncio.Task[None] | None = None
        self.state: Observable[PlayerState] = Observable(PlayerState())
        self._transport.set_event_handler(self._handle_transport_event)

    @property
    def queue(self) -> list[str]:
        return list(self._queue)

    @property
    def current_book(self) -> Book | None:
        return self.state.value.current_book

    async def start(self) -> None:
        """Start the transport, the position poll loop and load the queue."""
        await self._transport.start()
        await self._transport.set_speed(self._initial_speed)
        self._set(speed=self._initial_speed)
        if self._poll_task is None:
            self._poll_task = asyncio.create_task(self._poll_position())
        await self.refresh_queue()

    async def shutdown(self) -> None:
        """Save the final position, stop background loops and release the transport."""
        try:
            await self._save_position_logged("shutdown")
        finally:
            await self._cancel_sleep_timer()
            self._set(sleep_timer_remaining_ms=None)
            if self._poll_task is not None:
                self._poll_task.cancel()
                with suppress(asyncio.CancelledError):
                    await self._poll_task
                self._poll_task = None
            try:
                await self._transport.shutdown()
            except Exception as exc:
                logger.warning("Transport shutdown failed: %s", exc)

    async def refresh_queue(self) -> bool:
        """Reload the queue from the catalog; keeps the old queue on failure."""
        try:
            books = await self._catalog.list_books()
        except CatalogError as exc:
            logger.error("Unable to load playback queue: %s", exc)
            return False
        self._queue = [book.id for book in books]
        logger.debug("Playback queue holds %d books", len(self._queue))
        return True

    async def play(self, book_id: str) -> None:
        """Switch playback to `book_id`, resuming from its saved position.

        Failures are logged and surface as `PlayerState.error`; nothing is
        raised to the caller.
        """
        await self._save_position_logged("switching books")
        try:
            book = await self._catalog.get_book(book_id)
        except CatalogError as exc:
            logger.error("Unable to start playback for %s: %s", book_id, exc)
            await self._fail(
                format_user_error(
                    what_failed="Failed to load the selected book.",
                    likely_cause="The catalog could not be reached.",
                    next_step="Check the document store and retry playback.",
                    detail=str(exc),
                )
            )
            return
        if book is None:
            logger.error("Book with id %s not found", book_id)
            await self._fail(
                format_user_error(
                    what_failed="Failed to start playback for the selected book.",
                    likely_cause="The book is no longer in the catalog.",
                    next_step="Refresh the catalog and pick another book.",
                ),
            )
            return
        self._set(current_book=book, error=None, position_ms=0, duration_ms=0)
        if not book.audio_url.strip():
            logger.error("Book %s does not contain an audio URL", book.id)
            await self._fail(
                format_user_error(
                    what_failed=f"'{book.title}' cannot be played.",
                    likely_cause="The catalog entry has no audio file.",
                    next_step="Re-seed or fix the catalog entry, then retry.",
                )
            )
            return
        try:
            playback_url = await self._resolver.resolve(book.audio_url)
        except StorageResolutionError as exc:
            logger.error("Unable to resolve audio URL for %s: %s", book.id, exc)
            await self._fail(
                format_user_error(
                    what_failed=f"Could not locate the audio for '{book.title}'.",
                    likely_cause="The storage reference could not be resolved.",
                    next_step="Check the storage configuration and retry.",
                    detail=str(exc),
                )
            )
            return
        self._recently_played.mark_played(book.id)
        saved_position = self._positions.get_position_ms(book.id)
        item = MediaItem(
            media_id=book.id, uri=playback_url, title=book.title, artist=book.author
        )
        try:
            await self._transport.prepare(item)
            if saved_position > 0:
                await self._transport.seek_ms(saved_position)
                logger.debug("Resuming %s from %sms", book.id, saved_position)
            await self._transport.play()
        except Exception as exc:
            logger.exception("Transport failed to start %s", book.id)
            await self._fail(
                format_user_error(
                    what_failed="Failed to start playback.",
                    likely_cause="The media transport could not open the audio.",
                    next_step="Verify the audio URL is reachable, then retry.",
                    detail=str(exc),
                )
            )

    async def on_play_pause(self) -> None:
        if await self._transport.is_playing():
            await self._transport.pause()
            await self._save_current_position()
            return
        await self._transport.play()

    async def on_seek(self, position_ms: int) -> None:
        await self._transport.seek_ms(max(0, position_ms))
        await self._save_current_position()

    async def on_rewind(self) -> None:
        await self._transport.skip_back()

    async def on_fast_forward(self) -> None:
        await self._transport.skip_forward()

    async def on_skip_previous(self) -> None:
        target = await self._adjacent(forward=False)
        if target is None:
            await self._transport.seek_ms(0)
            return
        await self.play(target)

    async def on_skip_next(self) -> None:
        target = await self._adjacent(forward=True)
        if target is not None:
            await self.play(target)

    async def stop(self) -> None:
        """Save the position, stop the transport and clear the snapshot."""
        await self._save_current_position()
        await self._transport.stop()
        self._set(
            current_book=None,
            is_playing=False,
            position_ms=0,
            duration_ms=0,
            status="idle",
            error=None,
        )

    async def cycle_playback_mode(self) -> PlaybackMode:
        """Advance off -> repeat_all -> repeat_one -> shuffle -> off."""
        mode = _NEXT_MODE[self.state.value.playback_mode]
        repeat_mode, shuffle = _MODE_SETTINGS[mode]
        await self._transport.set_shuffle(shuffle)
        await self._transport.set_repeat_mode(repeat_mode)
        self._set(repeat_mode=repeat_mode, shuffle=shuffle)
        return mode

    async def cycle_speed(self) -> float:
        speed = next_playback_speed(self.state.value.speed)
        await self._transport.set_speed(speed)
        self._set(speed=speed)
        return speed

    async def set_sleep_timer(self, minutes: float) -> None:
        """Pause playback after `minutes`, replacing any running timer."""
        await self._cancel_sleep_timer()
        duration_ms = int(minutes * 60_000)
        if duration_ms <= 0:
            self._set(sleep_timer_remaining_ms=None)
            return
        self._set(sleep_timer_remaining_ms=duration_ms)
        self._sleep_task = asyncio.create_task(self._run_sleep_timer(duration_ms))

    async def clear_sleep_timer(self) -> None:
        await self._cancel_sleep_timer()
        self._set(sleep_timer_remaining_ms=None)

    def add_current_book_to_playlist(self, playlist_id: str) -> bool:
        book = self.current_book
        if book is None:
            return False
        return self._playlists.add_book(playlist_id, book.id)

    def create_playlist_and_add(self, name: str) -> Playlist | None:
        """Create a playlist seeded with the current book; `None` when idle."""
        book = self.current_book
        if book is None:
            return None
        return self._playlists.create(name, book.id)

    async def _adjacent(self, *, forward: bool) -> str | None:
        if not self._queue:
            await self.refresh_queue()
        state = self.state.value
        return adjacent_book_id(
            self._queue,
            state.current_book.id if state.current_book else None,
            forward=forward,
            shuffle=state.shuffle,
            rng=self._shuffle_random,
        )

    async def _save_current_position(self) -> bool:
        book = self.current_book
        if book is None:
            return False
        position_ms = await self._transport.get_position_ms()
        duration_ms = await self._transport.get_duration_ms()
        if position_ms <= 0 or duration_ms <= 0:
            return False
        return self._positions.save(book.id, position_ms, duration_ms)

    async def _save_position_logged(self, reason: str) -> None:
        try:
            await self._save_current_position()
        except Exception:
            logger.exception("Failed to save playback position before %s", reason)

    async def _fail(self, message: str) -> None:
        try:
            await self._transport.stop()
        except Exception as exc:
            logger.warning("Transport stop after playback failure failed: %s", exc)
        self._set(is_playing=False, status="error", error=message)

    async def _poll_position(self) -> None:
        while True:
            await asyncio.sleep(self._tick_interval_s)
            try:
                await self._sample_position()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Position poll failed")

    async def _sample_position(self) -> None:
        """One poll tick: publish the position, persist every N playing ticks.

        The tick count restarts whenever playback is not active.
        """
        if not await self._transport.is_playing():
            self._playing_ticks = 0
            return
        position_ms = await self._transport.get_position_ms()
        duration_ms = await self._transport.get_duration_ms()
        self._set(position_ms=position_ms, duration_ms=duration_ms)
        self._playing_ticks += 1
        if self._playing_ticks >= self._auto_save_ticks:
            self._playing_ticks = 0
            await self._save_current_position()

    async def _run_sleep_timer(self, duration_ms: int) -> None:
        remaining = duration_ms
        try:
            while remaining > 0:
                await asyncio.sleep(self._tick_interval_s)
                remaining = max(0, remaining - SLEEP_TIMER_STEP_MS)
                self._set(sleep_timer_remaining_ms=remaining)
            logger.info("Sleep timer elapsed; pausing playback")
            try:
                await self._transport.pause()
                await self._save_current_position()
            except Exception:
                logger.exception("Sleep timer failed to pause playback")
        finally:
            self._sleep_task = None
            self._set(sleep_timer_remaining_ms=None)

    async def _cancel_sleep_timer(self) -> None:
        task = self._sleep_task
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        self._sleep_task = None

    async def _handle_transport_event(self, event: TransportEvent) -> None:
        """Mirror transport callbacks into `PlayerState`."""
        if isinstance(event, IsPlayingChanged):
            self._set(is_playing=event.is_playing)
        elif isinstance(event, PositionUpdated):
            self._set(
                position_ms=max(0, event.position_ms),
                duration_ms=max(0, event.duration_ms),
            )
        elif isinstance(event, MediaChanged):
            self._set(duration_ms=max(0, event.duration_ms))
        elif isinstance(event, StateChanged):
            if event.status == "ready":
                duration_ms = await self._transport.get_duration_ms()
                self._set(status="ready", duration_ms=max(0, duration_ms))
            elif event.status == "ended":
                self._set(status="ended", is_playing=False)
            else:
                self._set(status=event.status)
        elif isinstance(event, SpeedChanged):
            self._set(speed=event.speed)
        elif isinstance(event, TransportError):
            logger.error("Transport reported an error: %s", event.message)
            self._set(
                is_playing=False,
                status="error",
                error=format_user_error(
                    what_failed="Playback stopped unexpectedly.",
                    likely_cause="The media transport reported a failure.",
                    next_step="Check the audio source and retry playback.",
                    detail=event.message,
                ),
            )

    def _set(self, **changes: Any) -> None:
        self.state.set(replace(self.state.value, **changes))
