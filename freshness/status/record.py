"""Freshness record stored inside a reservation's ``details`` bag."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from freshness.core.errors import MalformedDataError


class FlightPhase(str, Enum):
    UNKNOWN = "unknown"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    LANDED = "landed"
    CANCELLED = "cancelled"
    DIVERTED = "diverted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES = frozenset({FlightPhase.LANDED, FlightPhase.CANCELLED})

_OPTIONAL_TEXT_FIELDS = (
    "dep_gate",
    "dep_terminal",
    "arr_gate",
    "arr_terminal",
    "flight_iata",
    "arr_baggage",
    "dep_estimated",
    "arr_estimated",
)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True, slots=True)
class FreshnessRecord:
    """Fully-formed snapshot of a flight's live status.

    Every optional text field is either ``None`` or a string; ``last_checked``
    is always timezone-aware. Instances are immutable so a merge can only ever
    replace the whole record.
    """

    status: FlightPhase
    last_checked: datetime
    source: str
    dep_gate: Optional[str] = None
    dep_terminal: Optional[str] = None
    arr_gate: Optional[str] = None
    arr_terminal: Optional[str] = None
    flight_iata: Optional[str] = None
    dep_delay: Optional[int] = None
    arr_baggage: Optional[str] = None
    dep_estimated: Optional[str] = None
    arr_estimated: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.status, FlightPhase):
            object.__setattr__(self, "status", FlightPhase(self.status))
        if self.last_checked.tzinfo is None:
            object.__setattr__(self, "last_checked", self.last_checked.replace(tzinfo=timezone.utc))
        source = self.source.strip() if isinstance(self.source, str) else ""
        if not source:
            raise ValueError("source is required for FreshnessRecord")
        object.__setattr__(self, "source", source)

    def is_newer_than(self, other: Optional["FreshnessRecord"]) -> bool:
        return other is None or self.last_checked >= other.last_checked

    def checked_at(self, timestamp: datetime) -> "FreshnessRecord":
        return replace(self, last_checked=timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "last_checked": self.last_checked.isoformat(),
            "source": self.source,
            "dep_gate": self.dep_gate,
            "dep_terminal": self.dep_terminal,
            "arr_gate": self.arr_gate,
            "arr_terminal": self.arr_terminal,
            "flight_iata": self.flight_iata,
            "dep_delay": self.dep_delay,
            "arr_baggage": self.arr_baggage,
            "dep_estimated": self.dep_estimated,
            "arr_estimated": self.arr_estimated,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "FreshnessRecord":
        """Build a record from its wire/storage shape, rejecting anything partial."""
        if not isinstance(payload, Mapping):
            raise MalformedDataError("freshness record must be a mapping", expected="mapping")

        raw_status = payload.get("status", payload.get("flight_status"))
        try:
            status = FlightPhase(str(raw_status).lower())
        except ValueError as exc:
            raise MalformedDataError(f"unknown flight status {raw_status!r}", field="status") from exc

        last_checked = parse_timestamp(payload.get("last_checked"))
        if last_checked is None:
            raise MalformedDataError("last_checked is missing or invalid", field="last_checked")

        source = payload.get("source", payload.get("provider"))
        if not isinstance(source, str) or not source.strip():
            raise MalformedDataError("source tag is missing", field="source")

        text_fields: Dict[str, Optional[str]] = {}
        for name in _OPTIONAL_TEXT_FIELDS:
            value = payload.get(name)
            if value is not None and not isinstance(value, str):
                raise MalformedDataError(f"{name} must be a string", field=name, expected="str")
            text_fields[name] = value

        delay = payload.get("dep_delay")
        if delay is not None and (isinstance(delay, bool) or not isinstance(delay, int)):
            raise MalformedDataError("dep_delay must be an integer", field="dep_delay", expected="int")

        return cls(
            status=status,
            last_checked=last_checked,
            source=source,
            dep_delay=delay,
            **text_fields,
        )


__all__ = ["FlightPhase", "FreshnessRecord", "TERMINAL_PHASES", "parse_timestamp"]
