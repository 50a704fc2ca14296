"""
Stop and stop-media rows.

Responsible for:
- Creating stops and reading them in sequence order
- Attaching media references and grouping them per stop
- Deleting a stop together with its media
"""
import logging

from route_replay.api import RestConnection, eq, parse_row, rest_call, single_row
from route_replay.const import STOP_MEDIA_TABLE, STOPS_TABLE
from route_replay.exceptions import NotFound
from route_replay.models import Stop, StopMedia

_LOGGER = logging.getLogger(__name__)


async def insert_stop(conn: RestConnection, row: dict) -> Stop:
    rows = await rest_call(conn, "POST", STOPS_TABLE, payload=row)
    return parse_row(Stop, single_row(rows, STOPS_TABLE), STOPS_TABLE)


async def fetch_stop(conn: RestConnection, stop_id: str) -> Stop:
    rows = await rest_call(conn, "GET", STOPS_TABLE, params={"id": eq(stop_id), "select": "*"})
    if not rows:
        raise NotFound("stop", stop_id)
    return parse_row(Stop, rows[0], STOPS_TABLE)


async def fetch_stops(conn: RestConnection, route_id: str) -> list[Stop]:
    rows = await rest_call(
        conn, "GET", STOPS_TABLE,
        params={"route_id": eq(route_id), "select": "*", "order": "sequence.asc,recorded_at.asc"},
    )
    return [parse_row(Stop, row, STOPS_TABLE) for row in rows]


async def remove_stop(conn: RestConnection, stop_id: str) -> None:
    await rest_call(conn, "DELETE", STOP_MEDIA_TABLE, params={"stop_id": eq(stop_id)})
    rows = await rest_call(conn, "DELETE", STOPS_TABLE, params={"id": eq(stop_id)})
    if not rows:
        raise NotFound("stop", stop_id)


async def insert_stop_media(conn: RestConnection, row: dict) -> StopMedia:
    """
    Attach a media reference to a stop.

    Corresponding CURL command:
    curl -X 'POST' '<store>/rest/v1/stop_media' \\
      -d '{"stop_id": "...", "route_id": "...", "url": "https://...", "type": "image"}'
    """
    rows = await rest_call(conn, "POST", STOP_MEDIA_TABLE, payload=row)
    return parse_row(StopMedia, single_row(rows, STOP_MEDIA_TABLE), STOP_MEDIA_TABLE)


async def fetch_stop_media(conn: RestConnection, route_id: str) -> dict[str, list[StopMedia]]:
    """Return the route's media grouped by stop id, in order_index order."""
    rows = await rest_call(
        conn, "GET", STOP_MEDIA_TABLE,
        params={"route_id": eq(route_id), "select": "*", "order": "order_index.asc"},
    )
    grouped: dict[str, list[StopMedia]] = {}
    for row in rows:
        media = parse_row(StopMedia, row, STOP_MEDIA_TABLE)
        grouped.setdefault(media.stop_id, []).append(media)
    return grouped


async def count_stop_media(conn: RestConnection, stop_id: str) -> int:
    rows = await rest_call(conn, "GET", STOP_MEDIA_TABLE, params={"stop_id": eq(stop_id), "select": "id"})
    _LOGGER.debug("Stop %s has %s media", stop_id, len(rows))
    return len(rows)
