"""
PlaybackEngine: replays a completed route as a timed animation.

The engine owns a cursor into the route's ordered points. play() starts a
self-rescheduling tick task that advances the cursor by one point per tick
(base interval divided by the speed multiplier) and stops by itself on the
last point. seek()/jump_to_stop() move the cursor directly and pause.

On every cursor change the engine looks for a stop whose mapped point index
lies within the window of the cursor and exposes it as the active stop.

For the same points, stops and sequence of commands the engine visits the
same cursor states; scheduler jitter only shifts when they happen.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import math
from enum import Enum
from typing import Callable, Iterable

from .const import ACTIVE_STOP_WINDOW, DEFAULT_SPEED, PLAYBACK_BASE_INTERVAL, SPEED_PRESETS
from .exceptions import InvalidState, NotFound
from .geodesy import total_distance
from .models import LatLng, Route, RoutePoint, Stop, StopMedia
from .store import RouteStore

_LOGGER = logging.getLogger(__name__)


class StopMapping(str, Enum):
    """How a stop is placed on the point timeline."""

    # Spread stops evenly over the points by their ordinal
    PROPORTIONAL = "proportional"
    # Use the point count captured in the stop's sequence
    SEQUENCE = "sequence"


def stop_point_index(ordinal: int, stop_count: int, point_count: int) -> int:
    """
    Proportional mapping of the ordinal-th stop onto the point indices.

    floor(ordinal / max(stop_count - 1, 1) * (point_count - 1))
    """
    if point_count <= 1:
        return 0
    return math.floor(ordinal / max(stop_count - 1, 1) * (point_count - 1))


@dataclasses.dataclass(frozen=True)
class PlaybackTelemetry:
    """Copy-on-write snapshot of the playback cursor."""

    index: int = 0
    total: int = 0
    playing: bool = False
    speed: int = DEFAULT_SPEED
    active_stop: Stop | None = None
    position: LatLng | None = None

    @property
    def progress(self) -> float:
        """Cursor position as a fraction of the route, 0 when there are fewer than two points."""
        if self.total <= 1:
            return 0.0
        return self.index / (self.total - 1)

    @property
    def progress_percent(self) -> int:
        return round(self.progress * 100)


class PlaybackEngine:
    """
    Transport controls over one route's point sequence.

    One engine per viewing session; discard it (close()) when the view closes.
    """

    def __init__(
        self,
        points: Iterable[RoutePoint],
        stops: Iterable[Stop] = (),
        route: Route | None = None,
        media: dict[str, list[StopMedia]] | None = None,
        base_interval: float = PLAYBACK_BASE_INTERVAL,
        speed: int = DEFAULT_SPEED,
        speed_presets: Iterable[int] = SPEED_PRESETS,
        stop_window: int = ACTIVE_STOP_WINDOW,
        clear_inactive_stop: bool = True,
        stop_mapping: StopMapping = StopMapping.PROPORTIONAL,
    ) -> None:
        self.points: list[RoutePoint] = sorted(points, key=lambda p: p.sequence)
        # Stable sort keeps creation order among stops sharing a sequence
        self.stops: list[Stop] = sorted(stops, key=lambda s: s.sequence)
        self.route = route
        self.media = media or {}

        self._speed_presets = tuple(speed_presets)
        self._check_speed(speed)
        self._base_interval = base_interval
        self._stop_window = stop_window
        self._clear_inactive_stop = clear_inactive_stop
        self._stop_mapping = StopMapping(stop_mapping)

        self._task: asyncio.Task | None = None
        self._closed = False
        self._listeners: list[Callable[[PlaybackTelemetry], None]] = []

        self.data = PlaybackTelemetry(total=len(self.points), speed=speed)
        self._move_to(0)

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def last_index(self) -> int:
        return max(len(self.points) - 1, 0)

    @property
    def path(self) -> list[LatLng]:
        return [p.position for p in self.points]

    @property
    def total_distance(self) -> float:
        """Completed route total when known, otherwise summed from the points."""
        if self.route is not None and self.route.is_completed:
            return self.route.total_distance
        return total_distance(self.points)

    def media_for(self, stop: Stop) -> list[StopMedia]:
        return self.media.get(stop.id, [])

    def stop_index(self, ordinal: int) -> int:
        """Point index the ordinal-th stop maps to."""
        if self._stop_mapping is StopMapping.SEQUENCE:
            return min(max(self.stops[ordinal].sequence, 0), self.last_index)
        return stop_point_index(ordinal, len(self.stops), len(self.points))

    def add_listener(self, callback: Callable[[PlaybackTelemetry], None]) -> Callable[[], None]:
        """Call callback with every new snapshot; returns an unsubscribe function."""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def play(self) -> bool:
        """
        Start the tick loop. Must be called from a running event loop.

        Returns False (and does nothing) when the cursor is already on the
        last point.
        """
        self._check_open()
        if self.data.playing:
            return True
        if self.data.index >= self.last_index:
            _LOGGER.debug("Play ignored: cursor already at the end")
            return False

        self._set_data(playing=True)
        self._task = asyncio.get_running_loop().create_task(self._run())
        _LOGGER.info("Playback started at %s/%s (%sx)", self.data.index, self.data.total, self.data.speed)
        return True

    def pause(self) -> None:
        """Stop the tick loop, keeping the cursor where it is."""
        self._cancel_task()
        if self.data.playing:
            self._set_data(playing=False)
            _LOGGER.info("Playback paused at %s/%s", self.data.index, self.data.total)

    def toggle(self) -> bool:
        """Play when paused, pause when playing; returns the new playing flag."""
        if self.data.playing:
            self.pause()
            return False
        return self.play()

    def seek(self, index: int) -> int:
        """Move the cursor (clamped to the route) and pause; returns the new index."""
        self._check_open()
        self.pause()
        index = min(max(int(index), 0), self.last_index)
        self._move_to(index)
        return index

    def set_speed(self, multiplier: int) -> None:
        """Change the speed used for subsequent ticks."""
        self._check_open()
        self._check_speed(multiplier)
        if multiplier != self.data.speed:
            self._set_data(speed=multiplier)
            _LOGGER.debug("Playback speed set to %sx", multiplier)

    def jump_to_stop(self, ordinal: int) -> int:
        """Pause and seek to the point the ordinal-th stop maps to."""
        if not 0 <= ordinal < len(self.stops):
            raise NotFound("stop", ordinal)
        return self.seek(self.stop_index(ordinal))

    def advance(self) -> bool:
        """
        Move the cursor one point forward.

        Returns True when the last point has been reached, which also clears
        the playing flag. The tick loop calls this once per tick.
        """
        next_index = min(self.data.index + 1, self.last_index)
        if next_index >= self.last_index:
            was_playing = self.data.playing
            self._move_to(next_index, playing=False)
            if was_playing:
                _LOGGER.info("Playback finished (%s points)", self.data.total)
            return True
        self._move_to(next_index)
        return False

    async def wait(self) -> None:
        """Wait until the current tick loop ends (finished or paused)."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    async def close(self) -> None:
        """Cancel the tick loop and refuse further transport commands."""
        if self._closed:
            return
        self._closed = True
        task = self._task
        self._cancel_task()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        if self.data.playing:
            self._set_data(playing=False)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._base_interval / self.data.speed)
                if self.advance():
                    break
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    def _cancel_task(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def _check_open(self) -> None:
        if self._closed:
            raise InvalidState("Playback engine has been closed")

    def _check_speed(self, multiplier) -> None:
        if multiplier not in self._speed_presets:
            raise ValueError(f"Speed must be one of {self._speed_presets}, got {multiplier}")

    def _find_active_stop(self, index: int) -> Stop | None:
        """First stop (in stop order) whose mapped index is within the window."""
        for ordinal, stop in enumerate(self.stops):
            if abs(index - self.stop_index(ordinal)) < self._stop_window:
                return stop
        return None

    def _move_to(self, index: int, **changes) -> None:
        active = self._find_active_stop(index)
        if active is None and not self._clear_inactive_stop:
            active = self.data.active_stop
        position = self.points[index].position if self.points else None
        self._set_data(index=index, position=position, active_stop=active, **changes)

    def _set_data(self, **changes) -> None:
        self.data = dataclasses.replace(self.data, **changes)
        for callback in list(self._listeners):
            try:
                callback(self.data)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Playback listener %s failed", callback)


async def load_playback(store: RouteStore, route_id: str, **engine_kwargs) -> PlaybackEngine:
    """
    Build an engine for a completed route.

    Raises NotFound when the route does not exist and InvalidState when it is
    still being recorded.
    """
    route = await store.get_route(route_id)
    if not route.is_completed:
        raise InvalidState(f"Route {route_id} is {route.status.value}, not completed")

    points, stops, media = await asyncio.gather(
        store.list_points(route_id),
        store.list_stops(route_id),
        store.list_stop_media(route_id),
    )
    _LOGGER.debug("Loaded route %s: %s points, %s stops", route_id, len(points), len(stops))
    return PlaybackEngine(points, stops, route=route, media=media, **engine_kwargs)
