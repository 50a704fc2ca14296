"""Configuration loading and validation for route_replay."""
from __future__ import annotations

import dataclasses
import logging
import os
from typing import Any, Mapping

import voluptuous as vol
from dotenv import load_dotenv

from .const import (
    ACTIVE_STOP_WINDOW,
    DURATION_TICK_INTERVAL,
    PLAYBACK_BASE_INTERVAL,
    REQUEST_ATTEMPTS,
    REQUEST_TIMEOUT,
    SENSOR_QUEUE_SIZE,
)
from .sensor import ChannelPositionSensor
from .store import InMemoryRouteStore, RouteStore

_LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "ROUTE_REPLAY_"

# config key → environment variable suffix
ENV_KEYS = {
    "store_url": "STORE_URL",
    "store_api_key": "STORE_API_KEY",
    "request_timeout": "REQUEST_TIMEOUT",
    "request_attempts": "REQUEST_ATTEMPTS",
    "duration_tick_interval": "DURATION_TICK",
    "playback_base_interval": "PLAYBACK_INTERVAL",
    "stop_window": "STOP_WINDOW",
    "sensor_queue_size": "SENSOR_QUEUE_SIZE",
    "clear_inactive_stop": "CLEAR_INACTIVE_STOP",
}

positive_int = vol.All(vol.Coerce(int), vol.Range(min=1))
positive_float = vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False))
url_or_empty = vol.Any("", vol.All(str, vol.Match(r"^https?://")))

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Optional("store_url", default=""): url_or_empty,
        vol.Optional("store_api_key", default=""): str,
        vol.Optional("request_timeout", default=REQUEST_TIMEOUT): positive_int,
        vol.Optional("request_attempts", default=REQUEST_ATTEMPTS): positive_int,
        vol.Optional("duration_tick_interval", default=DURATION_TICK_INTERVAL): positive_float,
        vol.Optional("playback_base_interval", default=PLAYBACK_BASE_INTERVAL): positive_float,
        vol.Optional("stop_window", default=ACTIVE_STOP_WINDOW): positive_int,
        vol.Optional("sensor_queue_size", default=SENSOR_QUEUE_SIZE): positive_int,
        vol.Optional("clear_inactive_stop", default=True): vol.Boolean(),
    }
)


@dataclasses.dataclass(frozen=True)
class RouteReplayConfig:
    store_url: str = ""
    store_api_key: str = ""
    request_timeout: int = REQUEST_TIMEOUT
    request_attempts: int = REQUEST_ATTEMPTS
    duration_tick_interval: float = DURATION_TICK_INTERVAL
    playback_base_interval: float = PLAYBACK_BASE_INTERVAL
    stop_window: int = ACTIVE_STOP_WINDOW
    sensor_queue_size: int = SENSOR_QUEUE_SIZE
    clear_inactive_stop: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RouteReplayConfig":
        """Validate data against CONFIG_SCHEMA; raises voluptuous.Invalid."""
        return cls(**CONFIG_SCHEMA(dict(data)))

    def create_store(self) -> RouteStore:
        """REST store when a URL is configured, in-memory store otherwise."""
        if not self.store_url:
            _LOGGER.debug("No store URL configured, using in-memory store")
            return InMemoryRouteStore()
        # Imported here so the in-memory setup does not pull in aiohttp
        from .rest_store import RestRouteStore
        return RestRouteStore(
            self.store_url,
            self.store_api_key,
            timeout=self.request_timeout,
            attempts=self.request_attempts,
        )

    def create_sensor(self) -> ChannelPositionSensor:
        return ChannelPositionSensor(queue_size=self.sensor_queue_size)

    def recorder_options(self) -> dict:
        return {"tick_interval": self.duration_tick_interval}

    def playback_options(self) -> dict:
        return {
            "base_interval": self.playback_base_interval,
            "stop_window": self.stop_window,
            "clear_inactive_stop": self.clear_inactive_stop,
        }


def load_config(env_file: str | None = None, environ: Mapping[str, str] | None = None) -> RouteReplayConfig:
    """
    Build a config from ROUTE_REPLAY_* environment variables.

    Values from env_file (or a .env found by python-dotenv) are loaded first
    without overriding variables that are already set.
    """
    if environ is None:
        load_dotenv(env_file)
        environ = os.environ

    data = {}
    for key, suffix in ENV_KEYS.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value is not None and value != "":
            data[key] = value
    return RouteReplayConfig.from_mapping(data)
