"""
Route store contract and the in-process implementation.

The store is an opaque collaborator keyed by route/point/stop identifiers.
The recorder only appends; the playback side only reads. Implementations
raise PersistenceError for transport/store failures and NotFound for
single-row lookups that miss.
"""
from __future__ import annotations

import abc
import dataclasses
import logging
import uuid
from datetime import datetime

from .const import ROUTE_TITLE_FORMAT
from .exceptions import NotFound, PersistenceError
from .models import MediaType, Route, RoutePoint, RouteStatus, Stop, StopMedia, utcnow

_LOGGER = logging.getLogger(__name__)

# Columns update_route_status() may touch besides status
ROUTE_UPDATE_FIELDS = frozenset({"finished_at", "total_distance", "total_duration", "title", "description"})


def default_title(started_at: datetime) -> str:
    return ROUTE_TITLE_FORMAT.format(date=started_at.date().isoformat())


def check_update_fields(fields: dict) -> None:
    unknown = set(fields) - ROUTE_UPDATE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update route fields: {', '.join(sorted(unknown))}")


class RouteStore(abc.ABC):
    """Persistence contract consumed by the recorder and the playback loader."""

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def create_route(
        self,
        owner: str,
        title: str | None = None,
        started_at: datetime | None = None,
        description: str = "",
    ) -> Route:
        """Create a route with status RECORDING."""

    @abc.abstractmethod
    async def get_route(self, route_id: str) -> Route:
        """Return the route or raise NotFound."""

    @abc.abstractmethod
    async def list_routes(self, owner: str) -> list[Route]:
        """Return the owner's routes, newest first."""

    @abc.abstractmethod
    async def update_route_status(self, route_id: str, status: RouteStatus, **fields) -> Route:
        """Set status plus any of ROUTE_UPDATE_FIELDS; return the updated route."""

    @abc.abstractmethod
    async def delete_route(self, route_id: str) -> None:
        """Delete a route together with its points, stops and media."""

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def append_point(
        self,
        route_id: str,
        latitude: float,
        longitude: float,
        sequence: int,
        recorded_at: datetime,
    ) -> RoutePoint:
        """Persist one position sample."""

    @abc.abstractmethod
    async def list_points(self, route_id: str) -> list[RoutePoint]:
        """Return the route's points ascending by sequence."""

    # ------------------------------------------------------------------
    # Stops and media
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def create_stop(
        self,
        route_id: str,
        latitude: float,
        longitude: float,
        place_name: str,
        notes: str,
        rating: int | None,
        sequence: int,
        recorded_at: datetime | None = None,
    ) -> Stop:
        """Persist one annotation."""

    @abc.abstractmethod
    async def list_stops(self, route_id: str) -> list[Stop]:
        """Return the route's stops ascending by sequence."""

    @abc.abstractmethod
    async def delete_stop(self, stop_id: str) -> None:
        """Delete a stop together with its media."""

    @abc.abstractmethod
    async def add_stop_media(
        self,
        stop_id: str,
        url: str,
        media_type: MediaType,
        caption: str | None = None,
    ) -> StopMedia:
        """Attach a media reference to a stop."""

    @abc.abstractmethod
    async def list_stop_media(self, route_id: str) -> dict[str, list[StopMedia]]:
        """Return the route's media grouped by stop id."""

    async def close(self) -> None:
        """Release any resources held by the store."""


class InMemoryRouteStore(RouteStore):
    """
    Dictionary-backed store.

    Enforces the same constraints a database would: unknown route ids are
    rejected and (route, sequence) pairs are unique.
    """

    def __init__(self) -> None:
        self._routes: dict[str, Route] = {}
        self._points: dict[str, list[RoutePoint]] = {}
        self._stops: dict[str, Stop] = {}
        self._media: dict[str, StopMedia] = {}

    def _require_route(self, route_id: str) -> Route:
        route = self._routes.get(route_id)
        if route is None:
            raise NotFound("route", route_id)
        return route

    async def create_route(self, owner, title=None, started_at=None, description=""):
        started_at = started_at or utcnow()
        route = Route(
            id=str(uuid.uuid4()),
            owner=owner,
            title=title or default_title(started_at),
            description=description,
            status=RouteStatus.RECORDING,
            started_at=started_at,
        )
        self._routes[route.id] = route
        self._points[route.id] = []
        _LOGGER.debug("Created route %s for %s", route.id, owner)
        return route

    async def get_route(self, route_id):
        return self._require_route(route_id)

    async def list_routes(self, owner):
        routes = [r for r in self._routes.values() if r.owner == owner]
        return sorted(routes, key=lambda r: r.started_at, reverse=True)

    async def update_route_status(self, route_id, status, **fields):
        check_update_fields(fields)
        route = self._require_route(route_id)
        updated = dataclasses.replace(route, status=RouteStatus(status), **fields)
        self._routes[route_id] = updated
        return updated

    async def delete_route(self, route_id):
        self._require_route(route_id)
        del self._routes[route_id]
        del self._points[route_id]
        for stop_id in [s.id for s in self._stops.values() if s.route_id == route_id]:
            await self.delete_stop(stop_id)

    async def append_point(self, route_id, latitude, longitude, sequence, recorded_at):
        self._require_route(route_id)
        points = self._points[route_id]
        if any(p.sequence == sequence for p in points):
            raise PersistenceError(f"Duplicate sequence {sequence} for route {route_id}")
        point = RoutePoint(
            id=str(uuid.uuid4()),
            route_id=route_id,
            latitude=latitude,
            longitude=longitude,
            sequence=sequence,
            recorded_at=recorded_at,
        )
        points.append(point)
        return point

    async def list_points(self, route_id):
        self._require_route(route_id)
        return sorted(self._points[route_id], key=lambda p: p.sequence)

    async def create_stop(self, route_id, latitude, longitude, place_name, notes, rating, sequence, recorded_at=None):
        self._require_route(route_id)
        stop = Stop(
            id=str(uuid.uuid4()),
            route_id=route_id,
            latitude=latitude,
            longitude=longitude,
            place_name=place_name,
            notes=notes,
            rating=rating,
            sequence=sequence,
            recorded_at=recorded_at or utcnow(),
        )
        self._stops[stop.id] = stop
        return stop

    async def list_stops(self, route_id):
        self._require_route(route_id)
        # sorted() is stable, so stops sharing a sequence keep creation order
        return sorted(
            (s for s in self._stops.values() if s.route_id == route_id),
            key=lambda s: s.sequence,
        )

    async def delete_stop(self, stop_id):
        if stop_id not in self._stops:
            raise NotFound("stop", stop_id)
        del self._stops[stop_id]
        for media_id in [m.id for m in self._media.values() if m.stop_id == stop_id]:
            del self._media[media_id]

    async def add_stop_media(self, stop_id, url, media_type, caption=None):
        stop = self._stops.get(stop_id)
        if stop is None:
            raise NotFound("stop", stop_id)
        order_index = sum(1 for m in self._media.values() if m.stop_id == stop_id)
        media = StopMedia(
            id=str(uuid.uuid4()),
            stop_id=stop_id,
            route_id=stop.route_id,
            url=url,
            type=MediaType(media_type),
            order_index=order_index,
            caption=caption,
            created_at=utcnow(),
        )
        self._media[media.id] = media
        return media

    async def list_stop_media(self, route_id):
        grouped: dict[str, list[StopMedia]] = {}
        for media in self._media.values():
            if media.route_id == route_id:
                grouped.setdefault(media.stop_id, []).append(media)
        return grouped
