"""
RouteStore backed by a PostgREST-style HTTP API (e.g. a Supabase project).

Thin composition of the row-level calls in route_replay.api; builds the
row payloads and leaves all transport handling to api.rest_call().
"""
from __future__ import annotations

import logging

from .api import RestConnection
from .api.points import fetch_points, insert_point
from .api.routes import fetch_route, fetch_routes, insert_route, patch_route, remove_route
from .api.stops import (
    count_stop_media,
    fetch_stop,
    fetch_stop_media,
    fetch_stops,
    insert_stop,
    insert_stop_media,
    remove_stop,
)
from .const import REQUEST_ATTEMPTS, REQUEST_TIMEOUT
from .models import MediaType, RouteStatus, utcnow
from .store import RouteStore, check_update_fields, default_title

_LOGGER = logging.getLogger(__name__)


class RestRouteStore(RouteStore):
    """Route store talking to <base_url>/rest/v1/<table>."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: int = REQUEST_TIMEOUT,
        attempts: int = REQUEST_ATTEMPTS,
    ) -> None:
        self.conn = RestConnection(base_url, api_key, timeout, attempts)

    async def create_route(self, owner, title=None, started_at=None, description=""):
        started_at = started_at or utcnow()
        route = await insert_route(self.conn, {
            "user_id": owner,
            "title": title or default_title(started_at),
            "description": description,
            "status": RouteStatus.RECORDING.value,
            "started_at": started_at.isoformat(),
        })
        _LOGGER.debug("Created route %s for %s", route.id, owner)
        return route

    async def get_route(self, route_id):
        return await fetch_route(self.conn, route_id)

    async def list_routes(self, owner):
        return await fetch_routes(self.conn, owner)

    async def update_route_status(self, route_id, status, **fields):
        check_update_fields(fields)
        return await patch_route(self.conn, route_id, status, fields)

    async def delete_route(self, route_id):
        await remove_route(self.conn, route_id)

    async def append_point(self, route_id, latitude, longitude, sequence, recorded_at):
        return await insert_point(self.conn, {
            "route_id": route_id,
            "latitude": latitude,
            "longitude": longitude,
            "sequence": sequence,
            "recorded_at": recorded_at.isoformat(),
        })

    async def list_points(self, route_id):
        return await fetch_points(self.conn, route_id)

    async def create_stop(self, route_id, latitude, longitude, place_name, notes, rating, sequence, recorded_at=None):
        return await insert_stop(self.conn, {
            "route_id": route_id,
            "latitude": latitude,
            "longitude": longitude,
            "place_name": place_name,
            "notes": notes,
            "rating": rating,
            "sequence": sequence,
            "recorded_at": (recorded_at or utcnow()).isoformat(),
        })

    async def list_stops(self, route_id):
        return await fetch_stops(self.conn, route_id)

    async def delete_stop(self, stop_id):
        await remove_stop(self.conn, stop_id)

    async def add_stop_media(self, stop_id, url, media_type, caption=None):
        stop = await fetch_stop(self.conn, stop_id)
        order_index = await count_stop_media(self.conn, stop_id)
        return await insert_stop_media(self.conn, {
            "stop_id": stop_id,
            "route_id": stop.route_id,
            "url": url,
            "type": MediaType(media_type).value,
            "caption": caption,
            "order_index": order_index,
        })

    async def list_stop_media(self, route_id):
        return await fetch_stop_media(self.conn, route_id)
