"""
Domain models for route recording and playback.

Pure data classes with no dependencies on HTTP, sensors or timers. Rows are
immutable: stores hand out new instances via dataclasses.replace() rather
than mutating in place. to_dict()/from_dict() use the store's row format
(snake_case columns, ISO-8601 timestamps).
"""
from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _format_ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class RouteStatus(str, Enum):
    RECORDING = "recording"
    PAUSED = "paused"
    COMPLETED = "completed"


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


@dataclasses.dataclass(frozen=True)
class LatLng:
    """A bare latitude/longitude pair, as delivered to the rendering surface."""

    lat: float
    lng: float


@dataclasses.dataclass(frozen=True)
class Route:
    """One recording session."""

    id: str
    owner: str
    title: str
    status: RouteStatus
    started_at: datetime
    description: str = ""
    finished_at: datetime | None = None
    # Only authoritative once status is COMPLETED
    total_distance: float = 0.0
    total_duration: int = 0

    @property
    def is_completed(self) -> bool:
        return self.status is RouteStatus.COMPLETED

    @classmethod
    def from_dict(cls, row: dict) -> "Route":
        return cls(
            id=str(row["id"]),
            owner=str(row["user_id"]),
            title=row.get("title") or "",
            description=row.get("description") or "",
            status=RouteStatus(row["status"]),
            started_at=_parse_ts(row["started_at"]),
            finished_at=_parse_ts(row.get("finished_at")),
            total_distance=float(row.get("total_distance") or 0.0),
            total_duration=int(row.get("total_duration") or 0),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.owner,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "started_at": _format_ts(self.started_at),
            "finished_at": _format_ts(self.finished_at),
            "total_distance": self.total_distance,
            "total_duration": self.total_duration,
        }


@dataclasses.dataclass(frozen=True)
class RoutePoint:
    """One accepted position sample. Sequence numbers are 0-based and gapless per route."""

    id: str
    route_id: str
    latitude: float
    longitude: float
    sequence: int
    recorded_at: datetime

    @property
    def position(self) -> LatLng:
        return LatLng(self.latitude, self.longitude)

    @classmethod
    def from_dict(cls, row: dict) -> "RoutePoint":
        return cls(
            id=str(row["id"]),
            route_id=str(row["route_id"]),
            latitude=float(row["latitude"]),
            longitude=float(row["longitude"]),
            sequence=int(row["sequence"]),
            recorded_at=_parse_ts(row["recorded_at"]),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "route_id": self.route_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "sequence": self.sequence,
            "recorded_at": _format_ts(self.recorded_at),
        }


@dataclasses.dataclass(frozen=True)
class Stop:
    """
    A user annotation bound to a moment in the recording.

    sequence is the number of points recorded when the stop was created, so it
    orders stops among points but is not a point index.
    """

    id: str
    route_id: str
    latitude: float
    longitude: float
    place_name: str
    sequence: int
    recorded_at: datetime
    notes: str = ""
    rating: int | None = None

    @property
    def position(self) -> LatLng:
        return LatLng(self.latitude, self.longitude)

    @classmethod
    def from_dict(cls, row: dict) -> "Stop":
        rating = row.get("rating")
        return cls(
            id=str(row["id"]),
            route_id=str(row["route_id"]),
            latitude=float(row["latitude"]),
            longitude=float(row["longitude"]),
            place_name=row.get("place_name") or "",
            notes=row.get("notes") or "",
            rating=int(rating) if rating is not None else None,
            sequence=int(row["sequence"]),
            recorded_at=_parse_ts(row["recorded_at"]),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "route_id": self.route_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "place_name": self.place_name,
            "notes": self.notes,
            "rating": self.rating,
            "sequence": self.sequence,
            "recorded_at": _format_ts(self.recorded_at),
        }


@dataclasses.dataclass(frozen=True)
class StopMedia:
    """A media reference owned by a stop; deleted together with it."""

    id: str
    stop_id: str
    route_id: str
    url: str
    type: MediaType
    order_index: int = 0
    caption: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_dict(cls, row: dict) -> "StopMedia":
        return cls(
            id=str(row["id"]),
            stop_id=str(row["stop_id"]),
            route_id=str(row["route_id"]),
            url=row["url"],
            type=MediaType(row["type"]),
            order_index=int(row.get("order_index") or 0),
            caption=row.get("caption"),
            created_at=_parse_ts(row.get("created_at")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stop_id": self.stop_id,
            "route_id": self.route_id,
            "url": self.url,
            "type": self.type.value,
            "order_index": self.order_index,
            "caption": self.caption,
            "created_at": _format_ts(self.created_at),
        }
