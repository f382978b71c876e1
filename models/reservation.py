"""Domain model for trips and the reservations whose status is kept fresh."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

FLIGHT_TYPE = "flight"
_RESERVATION_TYPES = {"flight", "hotel", "car", "train", "activity", "other"}


def _parse_iso8601(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        cleaned = value.replace("Z", "+00:00")
        parsed = datetime.fromisoformat(cleaned)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        return _parse_iso8601(value)
    return None


@dataclass(slots=True)
class Trip:
    id: str
    owner_id: str
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "owner_id": self.owner_id, "name": self.name}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Trip":
        return cls(
            id=str(payload.get("id") or payload.get("_id")),
            owner_id=str(payload.get("owner_id") or payload.get("user_id")),
            name=payload.get("name"),
        )


@dataclass(slots=True)
class WatchedEntity:
    """A reservation that may carry a cached freshness record in ``details``."""

    id: str
    trip_id: str
    type: str
    start_time: datetime
    end_time: Optional[datetime] = None
    details: Dict[str, Any] = field(default_factory=dict)
    owner_id: Optional[str] = None
    title: Optional[str] = None
    subtitle: Optional[str] = None

    def __post_init__(self) -> None:
        self.type = (self.type or "other").lower().strip()
        if self.type not in _RESERVATION_TYPES:
            self.type = "other"
        start = _coerce_datetime(self.start_time)
        if start is None:
            raise ValueError(f"start_time is required for reservation {self.id}")
        self.start_time = start
        self.end_time = _coerce_datetime(self.end_time)
        if not isinstance(self.details, dict):
            self.details = {}

    @property
    def is_flight(self) -> bool:
        return self.type == FLIGHT_TYPE

    def with_details(self, details: Mapping[str, Any]) -> "WatchedEntity":
        """Return a copy of this entity carrying ``details`` as its attribute bag."""
        return WatchedEntity(
            id=self.id,
            trip_id=self.trip_id,
            type=self.type,
            start_time=self.start_time,
            end_time=self.end_time,
            details=dict(details),
            owner_id=self.owner_id,
            title=self.title,
            subtitle=self.subtitle,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "trip_id": self.trip_id,
            "type": self.type,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "details": dict(self.details),
            "owner_id": self.owner_id,
            "title": self.title,
            "subtitle": self.subtitle,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "WatchedEntity":
        return cls(
            id=str(payload.get("id") or payload.get("_id")),
            trip_id=str(payload.get("trip_id", "")),
            type=str(payload.get("type", "other")),
            start_time=payload.get("start_time"),
            end_time=payload.get("end_time"),
            details=dict(payload.get("details") or {}),
            owner_id=payload.get("owner_id"),
            title=payload.get("title"),
            subtitle=payload.get("subtitle"),
        )


def flights_only(entities: Iterable[WatchedEntity]) -> List[WatchedEntity]:
    return [entity for entity in entities if entity.is_flight]


__all__ = ["FLIGHT_TYPE", "Trip", "WatchedEntity", "flights_only"]
