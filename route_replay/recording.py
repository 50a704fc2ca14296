"""
RecordingController: owns one live recording session.

Responsibilities:
- Drive the Idle → Recording ⇄ Paused → Completed state machine and mirror
  status changes into the store.
- Consume the position subscription from a single task: every sample that
  arrives while Recording becomes the next RoutePoint, and the distance to
  the previous accepted point is folded into the running total.
- Run a duration ticker that recomputes elapsed time from the captured start
  instant on every tick.
- Publish RecordingTelemetry snapshots to listeners after every change.

Sensor and per-point persistence failures are absorbed: they are logged,
counted and exposed as last_error while the session keeps going.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import math
import time
from enum import Enum
from typing import Callable

from .const import DEFAULT_STOP_RATING, DURATION_TICK_INTERVAL, MAX_STOP_RATING, MIN_STOP_RATING
from .exceptions import InvalidState, NotFound, PersistenceError, SensorError
from .geodesy import distance, format_distance, format_duration
from .models import LatLng, Route, RoutePoint, RouteStatus, Stop, utcnow
from .sensor import PositionSample, PositionSensor, PositionSubscription
from .store import RouteStore

_LOGGER = logging.getLogger(__name__)


class RecorderState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclasses.dataclass(frozen=True)
class RecordingTelemetry:
    """
    Copy-on-write snapshot of the live session.

    While the route is Recording or Paused these running values, not the
    route row, are the source of truth.
    """

    state: RecorderState = RecorderState.IDLE
    route_id: str | None = None
    distance: float = 0.0
    duration: int = 0
    point_count: int = 0
    stop_count: int = 0
    last_position: LatLng | None = None
    last_error: str | None = None
    sensor_errors: int = 0
    failed_writes: int = 0

    @property
    def formatted_distance(self) -> str:
        return format_distance(self.distance)

    @property
    def formatted_duration(self) -> str:
        return format_duration(self.duration)


class RecordingController:
    """
    One recording session, from start() to finish().

    Instances are independent: create one per session and inject the store
    and sensor it should use.
    """

    def __init__(
        self,
        store: RouteStore,
        sensor: PositionSensor,
        owner: str,
        tick_interval: float = DURATION_TICK_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.sensor = sensor
        self.owner = owner
        self.route: Route | None = None
        self.points: list[RoutePoint] = []
        self.data = RecordingTelemetry()

        self._tick_interval = tick_interval
        self._clock = clock
        self._start_instant: float | None = None
        self._finished_at = None
        self._final_write_pending = False
        self._closed = False

        self._subscription: PositionSubscription | None = None
        self._consumer_task: asyncio.Task | None = None
        self._ticker_task: asyncio.Task | None = None

        # Serialises transport commands against each other
        self._command_lock = asyncio.Lock()
        # Held while a sample is checked and written, so pause/finish never
        # interleave with a half-done append
        self._write_lock = asyncio.Lock()
        self._listeners: list[Callable[[RecordingTelemetry], None]] = []

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecorderState:
        return self.data.state

    @property
    def path(self) -> list[LatLng]:
        """Accepted positions in sequence order, for the rendering surface."""
        return [p.position for p in self.points]

    def add_listener(self, callback: Callable[[RecordingTelemetry], None]) -> Callable[[], None]:
        """Call callback with every new snapshot; returns an unsubscribe function."""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _set_data(self, **changes) -> None:
        self.data = dataclasses.replace(self.data, **changes)
        for callback in list(self._listeners):
            try:
                callback(self.data)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Recording listener %s failed", callback)

    def _elapsed(self) -> int:
        if self._start_instant is None:
            return 0
        return int(self._clock() - self._start_instant)

    def _check_open(self) -> None:
        if self._closed:
            raise InvalidState("Recording controller has been closed")

    # ------------------------------------------------------------------
    # Transport commands
    # ------------------------------------------------------------------

    async def start(self, title: str | None = None) -> Route:
        """Create the route, open the position subscription and start the ticker."""
        async with self._command_lock:
            self._check_open()
            if self.state is not RecorderState.IDLE:
                raise InvalidState(f"Cannot start a recording that is {self.state.value}")

            route = await self.store.create_route(self.owner, title=title)
            self.route = route
            self._start_instant = self._clock()
            self._set_data(state=RecorderState.RECORDING, route_id=route.id)

            self._subscription = self.sensor.subscribe()
            self._consumer_task = asyncio.ensure_future(self._consume(self._subscription))
            self._ticker_task = asyncio.ensure_future(self._tick())
            _LOGGER.info("Started recording route %s", route.id)
            return route

    async def pause(self) -> None:
        """Stop appending samples; the subscription stays open for the live position."""
        async with self._command_lock:
            self._check_open()
            if self.state is not RecorderState.RECORDING:
                raise InvalidState(f"Cannot pause a recording that is {self.state.value}")
            async with self._write_lock:
                self._set_data(state=RecorderState.PAUSED)
            _LOGGER.info("Paused recording route %s", self.data.route_id)
            await self._persist_status(RouteStatus.PAUSED)

    async def resume(self) -> None:
        async with self._command_lock:
            self._check_open()
            if self.state is not RecorderState.PAUSED:
                raise InvalidState(f"Cannot resume a recording that is {self.state.value}")
            async with self._write_lock:
                self._set_data(state=RecorderState.RECORDING)
            _LOGGER.info("Resumed recording route %s", self.data.route_id)
            await self._persist_status(RouteStatus.RECORDING)

    async def finish(self) -> Route:
        """
        Close the session and persist the final totals.

        The subscription and ticker are cancelled before the final write. If
        that write fails, PersistenceError is raised and calling finish()
        again retries only the write.
        """
        async with self._command_lock:
            self._check_open()
            if self.state is RecorderState.COMPLETED and self._final_write_pending:
                return await self._write_final()
            if self.state not in (RecorderState.RECORDING, RecorderState.PAUSED):
                raise InvalidState(f"Cannot finish a recording that is {self.state.value}")

            async with self._write_lock:
                self._set_data(state=RecorderState.COMPLETED)
            await self._teardown()
            self._set_data(duration=self._elapsed())

            self._finished_at = utcnow()
            self._final_write_pending = True
            return await self._write_final()

    async def add_stop(
        self,
        place_name: str,
        notes: str = "",
        rating: int | None = DEFAULT_STOP_RATING,
    ) -> Stop:
        """Annotate the current live position; sequence is the current point count."""
        async with self._command_lock:
            self._check_open()
            if self.state not in (RecorderState.RECORDING, RecorderState.PAUSED):
                raise InvalidState(f"Cannot add a stop to a recording that is {self.state.value}")
            position = self.data.last_position
            if position is None:
                raise InvalidState("No live position available yet")
            if rating is not None and not MIN_STOP_RATING <= rating <= MAX_STOP_RATING:
                raise ValueError(f"Rating must be between {MIN_STOP_RATING} and {MAX_STOP_RATING}")

            try:
                stop = await self.store.create_stop(
                    self.data.route_id,
                    position.lat,
                    position.lng,
                    place_name,
                    notes,
                    rating,
                    self.data.point_count,
                )
            except PersistenceError as exc:
                _LOGGER.warning("Failed to save stop for route %s: %s", self.data.route_id, exc)
                self._set_data(last_error=f"Failed to add stop: {exc}")
                raise

            self._set_data(stop_count=self.data.stop_count + 1)
            _LOGGER.debug("Added stop %s at sequence %s", stop.id, stop.sequence)
            return stop

    async def close(self) -> None:
        """Tear down without finishing (the session is abandoned, e.g. on navigation away)."""
        async with self._command_lock:
            if self._closed:
                return
            self._closed = True
            await self._teardown()
            _LOGGER.debug("Closed recording controller for route %s", self.data.route_id)

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    async def _consume(self, subscription: PositionSubscription) -> None:
        """Process subscription events in arrival order."""
        async for event in subscription:
            if isinstance(event, SensorError):
                _LOGGER.warning("Position error on route %s: %s", self.data.route_id, event)
                self._set_data(last_error=str(event), sensor_errors=self.data.sensor_errors + 1)
                continue

            if not (math.isfinite(event.latitude) and math.isfinite(event.longitude)):
                _LOGGER.warning("Ignoring non-finite position sample: %s", event)
                self._set_data(
                    last_error="Invalid position sample",
                    sensor_errors=self.data.sensor_errors + 1,
                )
                continue

            self._set_data(last_position=event.position)
            async with self._write_lock:
                if self.state is not RecorderState.RECORDING:
                    continue
                try:
                    await self._append(event)
                except Exception as exc:  # noqa: BLE001
                    _LOGGER.exception("Unexpected error saving point for route %s", self.data.route_id)
                    self._set_data(
                        last_error=f"Failed to save point: {exc!r}",
                        failed_writes=self.data.failed_writes + 1,
                    )

    async def _append(self, sample: PositionSample) -> None:
        """Persist one sample as the next point and fold in its distance."""
        sequence = self.data.point_count
        try:
            point = await self.store.append_point(
                self.data.route_id,
                sample.latitude,
                sample.longitude,
                sequence,
                sample.timestamp,
            )
        except (PersistenceError, NotFound) as exc:
            _LOGGER.warning("Failed to save point %s for route %s: %s", sequence, self.data.route_id, exc)
            if await self._resync_points():
                _LOGGER.info("Point %s was stored despite the error, continuing from the store", sequence)
                return
            # Nothing was stored, so the next point reuses the sequence number
            self._set_data(
                last_error=f"Failed to save point: {exc}",
                failed_writes=self.data.failed_writes + 1,
            )
            return

        self._accept(point)

    def _accept(self, point: RoutePoint) -> None:
        added = distance(self.points[-1], point) if self.points else 0.0
        self.points.append(point)
        self._set_data(point_count=point.sequence + 1, distance=self.data.distance + added)
        _LOGGER.debug("Saved point %s (+%.1f m)", point.sequence, added)

    async def _resync_points(self) -> bool:
        """
        Adopt points the store holds beyond the local count.

        A write can fail on the wire after the store committed it; its
        sequence is then taken and every later append would collide with it.
        Returns True when at least one stored point was adopted.
        """
        try:
            stored = await self.store.list_points(self.data.route_id)
        except (PersistenceError, NotFound) as exc:
            _LOGGER.warning("Could not re-read points for route %s: %s", self.data.route_id, exc)
            return False

        adopted = False
        for point in stored:
            if point.sequence == self.data.point_count:
                self._accept(point)
                adopted = True
        return adopted

    async def _tick(self) -> None:
        """Recompute elapsed time from the start instant once per interval."""
        while True:
            await asyncio.sleep(self._tick_interval)
            self._set_data(duration=self._elapsed())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _persist_status(self, status: RouteStatus) -> None:
        try:
            self.route = await self.store.update_route_status(self.data.route_id, status)
        except (PersistenceError, NotFound) as exc:
            _LOGGER.warning("Failed to mark route %s as %s: %s", self.data.route_id, status.value, exc)
            self._set_data(last_error=f"Failed to update route status: {exc}")

    async def _write_final(self) -> Route:
        try:
            route = await self.store.update_route_status(
                self.data.route_id,
                RouteStatus.COMPLETED,
                finished_at=self._finished_at,
                total_distance=self.data.distance,
                total_duration=self.data.duration,
            )
        except PersistenceError as exc:
            _LOGGER.error("Failed to finish route %s: %s", self.data.route_id, exc)
            self._set_data(last_error=f"Failed to finish recording: {exc}")
            raise

        self._final_write_pending = False
        self.route = route
        _LOGGER.info(
            "Finished route %s: %s points, %s in %s",
            route.id, self.data.point_count, self.data.formatted_distance, self.data.formatted_duration,
        )
        return route

    async def _teardown(self) -> None:
        """Close the subscription and cancel both background tasks."""
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

        tasks = [t for t in (self._consumer_task, self._ticker_task) if t is not None]
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                _LOGGER.error("Recording task failed: %s", result)
        self._consumer_task = None
        self._ticker_task = None
