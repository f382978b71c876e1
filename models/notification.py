"""Inbox notifications and the owner's notification preferences."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

GATE_CHANGE = "gate_change"
DELAY = "delay"
CONFIRMATION = "confirmation"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Notification:
    owner_id: str
    type: str
    title: str
    message: str
    trip_id: Optional[str] = None
    reservation_id: Optional[str] = None
    severity: str = "warning"
    read: bool = False
    created_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "trip_id": self.trip_id,
            "reservation_id": self.reservation_id,
            "severity": self.severity,
            "read": self.read,
            "created_at": self.created_at,
        }


@dataclass(slots=True)
class NotificationPreferences:
    """Missing preferences default to everything enabled."""

    flight_updates: bool = True
    trip_changes: bool = True

    @classmethod
    def from_dict(cls, payload: Optional[Mapping[str, Any]]) -> "NotificationPreferences":
        if not payload:
            return cls()
        return cls(
            flight_updates=bool(payload.get("flight_updates", True)),
            trip_changes=bool(payload.get("trip_changes", True)),
        )


__all__ = ["Notification", "NotificationPreferences", "GATE_CHANGE", "DELAY", "CONFIRMATION"]
