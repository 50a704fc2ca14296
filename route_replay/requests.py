"""
Low-level HTTP request library for the REST route store.
This module handles all HTTP requests with automatic retry logic and proper error handling.
"""
import asyncio
import logging
import aiohttp

from .const import REQUEST_ATTEMPTS, REQUEST_TIMEOUT

_LOGGER = logging.getLogger(__name__)

SUCCESS_STATUSES = (200, 201, 204)


class ApiResponseError(Exception):
    """Exception raised when the store returns an error response."""
    def __init__(self, status: int, error_json: dict):
        self.status = status
        self.error_json = error_json
        super().__init__(f"API Error ({status}): {error_json}")


async def make_request(
    method: str,
    url: str,
    headers: dict,
    payload=None,
    params: dict = None,
    timeout: int = REQUEST_TIMEOUT,
    max_attempts: int = REQUEST_ATTEMPTS,
):
    """
    Make an HTTP request with automatic retry on timeout.

    Args:
        method: HTTP method (GET, POST, PATCH, DELETE)
        url: Target URL for the request
        headers: HTTP headers dictionary
        payload: JSON payload for POST/PATCH requests (optional)
        params: URL query parameters (optional)
        timeout: Base timeout in seconds (multiplied by attempt number for each retry)
        max_attempts: Maximum number of retry attempts

    Returns:
        Parsed JSON response, or None for an empty success response

    Raises:
        asyncio.TimeoutError: If all retry attempts timeout
        ApiResponseError: If the store answers with an error status
        ValueError: If response has unexpected content type
    """
    method = method.upper()
    if method not in ("GET", "POST", "PATCH", "DELETE"):
        raise ValueError(f"Unsupported HTTP method: {method}")

    for attempt in range(max_attempts):
        # Timeout grows with each attempt
        timeout_config = aiohttp.ClientTimeout(total=timeout * (attempt + 1))
        try:
            async with aiohttp.ClientSession(timeout=timeout_config) as session:
                async with session.request(
                    method, url, headers=headers, json=payload, params=params
                ) as response:
                    return await _process_response(response, url)
        except (asyncio.TimeoutError, TimeoutError):
            if attempt < max_attempts - 1:
                _LOGGER.debug("Timeout on %s %s (attempt %s), retrying", method, url, attempt + 1)
                continue
            _LOGGER.warning(
                "Timeout on %s request to %s after %s attempts",
                method, url, max_attempts
            )
            raise
    return None


async def _process_response(response, url: str):
    """
    Process HTTP response and extract JSON data.

    Args:
        response: aiohttp response object
        url: Request URL (for logging)

    Returns:
        Parsed JSON response, or None when the body is empty

    Raises:
        ApiResponseError: For error statuses
        ValueError: If a successful response is not JSON
    """
    content_type = response.headers.get('Content-Type', '')

    if response.status in SUCCESS_STATUSES:
        if response.status == 204:
            return None
        if 'application/json' in content_type:
            return await response.json()
        text = await response.text()
        if not text:
            return None
        _LOGGER.warning(
            "Unexpected content type in successful response: %s (status %s) from %s",
            content_type, response.status, url
        )
        raise ValueError(f"Expected JSON but got {content_type}: {text[:200]}")

    if 'application/json' in content_type:
        error_json = await response.json()
        raise ApiResponseError(response.status, error_json)

    # Non-JSON error response (e.g., HTML error page from a proxy)
    text = await response.text()
    _LOGGER.warning(
        "Received non-JSON error response from %s: status %s, content-type: %s, body preview: %s",
        url, response.status, content_type, text[:200]
    )
    raise ApiResponseError(response.status, {"message": text[:200]})
