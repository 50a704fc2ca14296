"""
Position-sensing channel.

The platform's position callbacks (push-based, arrival rate outside our
control) are turned into messages on a bounded asyncio queue. The recorder
consumes that queue from a single task, so sample ordering and cancellation
are explicit instead of being spread over a callback graph.

Producer side:  ChannelPositionSensor.publish() / publish_error()
Consumer side:  async for event in subscription: ...
"""
from __future__ import annotations

import abc
import asyncio
import dataclasses
import logging
from datetime import datetime

from .const import SENSOR_QUEUE_SIZE
from .exceptions import SensorError, SensorErrorKind
from .models import LatLng, utcnow

_LOGGER = logging.getLogger(__name__)

# Marks the end of a subscription on the queue
_CLOSED = object()


@dataclasses.dataclass(frozen=True)
class PositionSample:
    """One reading from the position-sensing service."""

    latitude: float
    longitude: float
    timestamp: datetime = dataclasses.field(default_factory=utcnow)

    @property
    def position(self) -> LatLng:
        return LatLng(self.latitude, self.longitude)


class PositionSubscription:
    """
    A live, bounded stream of PositionSample and SensorError events.

    Errors travel on the same queue as samples and never end the stream;
    only close() does. When the queue is full the oldest event is dropped so
    the producer never blocks and the newest position always gets through.
    """

    def __init__(self, maxsize: int = SENSOR_QUEUE_SIZE) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize + 1)
        self._maxsize = maxsize
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def put_nowait(self, event: PositionSample | SensorError) -> bool:
        """Queue an event; returns False if the subscription is closed."""
        if self._closed:
            _LOGGER.debug("Dropping event on closed subscription: %s", event)
            return False
        if self._queue.qsize() >= self._maxsize:
            self._queue.get_nowait()
            self.dropped += 1
            _LOGGER.warning("Position channel full, dropped oldest event (%s dropped so far)", self.dropped)
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        """End the stream; pending events are still delivered before it stops."""
        if self._closed:
            return
        self._closed = True
        # One slot is always reserved for the close marker
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> PositionSample | SensorError:
        event = await self._queue.get()
        if event is _CLOSED:
            raise StopAsyncIteration
        return event


class PositionSensor(abc.ABC):
    """Source of position subscriptions."""

    @abc.abstractmethod
    def subscribe(self) -> PositionSubscription:
        """Open a subscription requesting continuous updates."""


class ChannelPositionSensor(PositionSensor):
    """
    Sensor fed by the host platform.

    The platform calls publish()/publish_error() from its position callbacks;
    every open subscription receives every event.
    """

    def __init__(self, queue_size: int = SENSOR_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscriptions: list[PositionSubscription] = []

    @property
    def subscriber_count(self) -> int:
        self._subscriptions = [s for s in self._subscriptions if not s.closed]
        return len(self._subscriptions)

    def subscribe(self) -> PositionSubscription:
        subscription = PositionSubscription(self._queue_size)
        self._subscriptions.append(subscription)
        return subscription

    def publish(self, latitude: float, longitude: float, timestamp: datetime | None = None) -> None:
        sample = PositionSample(latitude, longitude, timestamp or utcnow())
        self._dispatch(sample)

    def publish_error(self, kind: SensorErrorKind, message: str = "") -> None:
        self._dispatch(SensorError(kind, message))

    def _dispatch(self, event) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.put_nowait(event):
                self._subscriptions.remove(subscription)
