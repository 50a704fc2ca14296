"""
Row-level calls against a PostgREST-style HTTP store.

Every call goes through rest_call(), which turns transport failures and
error responses into PersistenceError so callers see a single failure type.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging

import aiohttp

from ..const import REQUEST_ATTEMPTS, REQUEST_TIMEOUT
from ..exceptions import PersistenceError
from ..requests import ApiResponseError, make_request

_LOGGER = logging.getLogger(__name__)


def get_standard_headers(api_key: str) -> dict:
    """
    Build the standard HTTP headers used by all store requests.

    :param api_key: Key issued by the store; sent both as apikey and bearer token.
    :return: Dictionary of HTTP headers.
    """
    return {
        "accept": "application/json",
        "apikey": api_key,
        "Authorization": f"Bearer {api_key}",
        # Ask the store to echo inserted/updated rows back
        "Prefer": "return=representation",
    }


@dataclasses.dataclass(frozen=True)
class RestConnection:
    """Where and how to reach the store."""

    base_url: str
    api_key: str
    timeout: int = REQUEST_TIMEOUT
    attempts: int = REQUEST_ATTEMPTS

    def table_url(self, table: str) -> str:
        return f"{self.base_url.rstrip('/')}/rest/v1/{table}"

    @property
    def headers(self) -> dict:
        return get_standard_headers(self.api_key)


async def rest_call(
    conn: RestConnection,
    method: str,
    table: str,
    payload=None,
    params: dict | None = None,
) -> list[dict]:
    """
    Run one request against a table and return the rows in the response.

    Raises PersistenceError for every failure mode.
    """
    url = conn.table_url(table)
    try:
        raw_json = await make_request(
            method, url, conn.headers,
            payload=payload, params=params,
            timeout=conn.timeout, max_attempts=conn.attempts,
        )
    except ApiResponseError as e:
        _LOGGER.error("Store rejected %s %s: %s", method, table, e)
        raise PersistenceError(str(e)) from e
    except (asyncio.TimeoutError, TimeoutError) as e:
        raise PersistenceError(f"Timeout on {method} {table}") from e
    except (aiohttp.ClientError, ValueError) as e:
        _LOGGER.warning("Request %s %s failed: %s: %s", method, table, type(e).__name__, e)
        raise PersistenceError(f"{method} {table} failed: {e}") from e

    if raw_json is None:
        return []
    if isinstance(raw_json, dict):
        return [raw_json]
    if not isinstance(raw_json, list):
        _LOGGER.error("Unexpected response format from %s: %s", table, raw_json)
        raise PersistenceError(f"Unexpected response format from {table}")
    return raw_json


def eq(value) -> str:
    """PostgREST equality filter value."""
    return f"eq.{value}"


def single_row(rows: list[dict], table: str) -> dict:
    """Return the single row a write echoed back."""
    if not rows:
        raise PersistenceError(f"Store returned no row for write to {table}")
    return rows[0]


def parse_row(model, row, table: str):
    """Build a model from a store row; a malformed row is a PersistenceError."""
    try:
        return model.from_dict(row)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        _LOGGER.error("Malformed row from %s: %s", table, row)
        raise PersistenceError(f"Malformed row from {table}: {e!r}") from e
