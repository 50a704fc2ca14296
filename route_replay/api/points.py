"""
Route point rows.

Responsible for:
- Appending one position sample
- Reading a route's points in sequence order
"""
from route_replay.api import RestConnection, eq, parse_row, rest_call, single_row
from route_replay.const import POINTS_TABLE
from route_replay.models import RoutePoint


async def insert_point(conn: RestConnection, row: dict) -> RoutePoint:
    """
    Append one point.

    Corresponding CURL command:
    curl -X 'POST' '<store>/rest/v1/route_points' \\
      -d '{"route_id": "...", "latitude": 52.5, "longitude": 13.4, "sequence": 0, "recorded_at": "..."}'
    """
    rows = await rest_call(conn, "POST", POINTS_TABLE, payload=row)
    return parse_row(RoutePoint, single_row(rows, POINTS_TABLE), POINTS_TABLE)


async def fetch_points(conn: RestConnection, route_id: str) -> list[RoutePoint]:
    rows = await rest_call(
        conn, "GET", POINTS_TABLE,
        params={"route_id": eq(route_id), "select": "*", "order": "sequence.asc"},
    )
    return [parse_row(RoutePoint, row, POINTS_TABLE) for row in rows]
