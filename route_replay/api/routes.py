"""
Route rows.

Responsible for:
- Creating a route in RECORDING state
- Reading one route or an owner's routes
- Status/aggregate updates and cascading deletes
"""
import logging

from route_replay.api import RestConnection, eq, parse_row, rest_call, single_row
from route_replay.const import POINTS_TABLE, ROUTES_TABLE, STOP_MEDIA_TABLE, STOPS_TABLE
from route_replay.exceptions import NotFound
from route_replay.models import Route, RouteStatus

_LOGGER = logging.getLogger(__name__)


async def insert_route(conn: RestConnection, row: dict) -> Route:
    """
    Insert a route row and return the stored route.

    Corresponding CURL command:
    curl -X 'POST' '<store>/rest/v1/routes' \\
      -H 'Prefer: return=representation' \\
      -d '{"user_id": "...", "title": "...", "status": "recording", "started_at": "..."}'
    """
    rows = await rest_call(conn, "POST", ROUTES_TABLE, payload=row)
    return parse_row(Route, single_row(rows, ROUTES_TABLE), ROUTES_TABLE)


async def fetch_route(conn: RestConnection, route_id: str) -> Route:
    """Return the route or raise NotFound."""
    rows = await rest_call(conn, "GET", ROUTES_TABLE, params={"id": eq(route_id), "select": "*"})
    if not rows:
        raise NotFound("route", route_id)
    return parse_row(Route, rows[0], ROUTES_TABLE)


async def fetch_routes(conn: RestConnection, owner: str) -> list[Route]:
    rows = await rest_call(
        conn, "GET", ROUTES_TABLE,
        params={"user_id": eq(owner), "select": "*", "order": "started_at.desc"},
    )
    return [parse_row(Route, row, ROUTES_TABLE) for row in rows]


async def patch_route(conn: RestConnection, route_id: str, status: RouteStatus, fields: dict) -> Route:
    """
    Update status (plus extra columns) of a route.

    Corresponding CURL command:
    curl -X 'PATCH' '<store>/rest/v1/routes?id=eq.<id>' -d '{"status": "paused"}'
    """
    payload = {"status": RouteStatus(status).value}
    for key, value in fields.items():
        payload[key] = value.isoformat() if hasattr(value, "isoformat") else value
    rows = await rest_call(conn, "PATCH", ROUTES_TABLE, payload=payload, params={"id": eq(route_id)})
    if not rows:
        raise NotFound("route", route_id)
    return parse_row(Route, rows[0], ROUTES_TABLE)


async def remove_route(conn: RestConnection, route_id: str) -> None:
    """Delete a route, children first so the store never holds orphans."""
    for table in (STOP_MEDIA_TABLE, STOPS_TABLE, POINTS_TABLE):
        await rest_call(conn, "DELETE", table, params={"route_id": eq(route_id)})
    rows = await rest_call(conn, "DELETE", ROUTES_TABLE, params={"id": eq(route_id)})
    if not rows:
        raise NotFound("route", route_id)
    _LOGGER.debug("Deleted route %s", route_id)
