"""Record a path of positions with annotations and replay it as a timed animation."""
from .config import RouteReplayConfig, load_config
from .const import DOMAIN, VERSION
from .exceptions import InvalidState, NotFound, PersistenceError, RouteReplayError, SensorError, SensorErrorKind
from .geodesy import distance, format_distance, format_duration, total_distance
from .models import LatLng, MediaType, Route, RoutePoint, RouteStatus, Stop, StopMedia
from .playback import PlaybackEngine, PlaybackTelemetry, StopMapping, load_playback, stop_point_index
from .recording import RecorderState, RecordingController, RecordingTelemetry
from .sensor import ChannelPositionSensor, PositionSample, PositionSensor, PositionSubscription
from .store import InMemoryRouteStore, RouteStore

__version__ = VERSION

__all__ = [
    "DOMAIN",
    "ChannelPositionSensor",
    "InMemoryRouteStore",
    "InvalidState",
    "LatLng",
    "MediaType",
    "NotFound",
    "PersistenceError",
    "PlaybackEngine",
    "PlaybackTelemetry",
    "PositionSample",
    "PositionSensor",
    "PositionSubscription",
    "RecorderState",
    "RecordingController",
    "RecordingTelemetry",
    "Route",
    "RoutePoint",
    "RouteReplayConfig",
    "RouteReplayError",
    "RouteStatus",
    "RouteStore",
    "SensorError",
    "SensorErrorKind",
    "Stop",
    "StopMapping",
    "StopMedia",
    "distance",
    "format_distance",
    "format_duration",
    "load_config",
    "load_playback",
    "stop_point_index",
    "total_distance",
]
