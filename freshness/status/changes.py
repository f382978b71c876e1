"""Change detection between two freshness records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from freshness.status.record import FlightPhase, FreshnessRecord, parse_timestamp

INFO = "info"
WARNING = "warning"
CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class FlightChange:
    type: str
    field: str
    old_value: Any
    new_value: Any
    severity: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "severity": self.severity,
            "message": self.message,
        }


def _format_time_short(value: str) -> str:
    parsed = parse_timestamp(value)
    if parsed is None:
        return value
    return parsed.strftime("%I:%M %p").lstrip("0")


def _format_delay(minutes: int) -> str:
    if minutes < 60:
        return f"Flight delayed {minutes} minutes"
    return f"Flight delayed {minutes // 60}h {minutes % 60}m"


def detect_changes(old: Optional[FreshnessRecord], new: FreshnessRecord) -> List[FlightChange]:
    """Compare two snapshots. The first snapshot for a flight reports nothing."""
    changes: List[FlightChange] = []
    if old is None:
        return changes

    if old.dep_gate != new.dep_gate and new.dep_gate:
        changes.append(
            FlightChange(
                "gate_change",
                "dep_gate",
                old.dep_gate,
                new.dep_gate,
                WARNING,
                f"Gate changed from {old.dep_gate} to {new.dep_gate}" if old.dep_gate else f"Gate assigned: {new.dep_gate}",
            )
        )

    if old.dep_terminal != new.dep_terminal and new.dep_terminal:
        changes.append(
            FlightChange(
                "terminal_change",
                "dep_terminal",
                old.dep_terminal,
                new.dep_terminal,
                WARNING,
                f"Terminal changed from {old.dep_terminal} to {new.dep_terminal}"
                if old.dep_terminal
                else f"Terminal assigned: {new.dep_terminal}",
            )
        )

    if old.dep_delay != new.dep_delay and new.dep_delay is not None:
        old_delay = old.dep_delay or 0
        new_delay = new.dep_delay
        if new_delay > old_delay and new_delay > 0:
            severity = CRITICAL if new_delay >= 60 else WARNING if new_delay >= 15 else INFO
            changes.append(FlightChange("delay_change", "dep_delay", old_delay, new_delay, severity, _format_delay(new_delay)))
        elif new_delay < old_delay and old_delay > 0:
            message = "Flight back on schedule" if new_delay <= 0 else f"Delay reduced to {new_delay} minutes"
            changes.append(FlightChange("delay_change", "dep_delay", old_delay, new_delay, INFO, message))

    if old.status != new.status:
        if new.status is FlightPhase.CANCELLED:
            changes.append(
                FlightChange("cancellation", "status", old.status.value, new.status.value, CRITICAL, "Flight has been cancelled")
            )
            return changes
        if new.status is FlightPhase.DIVERTED:
            changes.append(
                FlightChange("diversion", "status", old.status.value, new.status.value, CRITICAL, "Flight has been diverted")
            )
            return changes
        message = {
            FlightPhase.ACTIVE: "Flight has departed",
            FlightPhase.LANDED: "Flight has landed",
        }.get(new.status, f"Flight status: {new.status.value}")
        changes.append(FlightChange("status_change", "status", old.status.value, new.status.value, INFO, message))

    if old.arr_gate != new.arr_gate and new.arr_gate:
        changes.append(
            FlightChange("gate_change", "arr_gate", old.arr_gate, new.arr_gate, INFO, f"Arrival gate: {new.arr_gate}")
        )

    if old.arr_baggage != new.arr_baggage and new.arr_baggage:
        changes.append(
            FlightChange(
                "baggage_update", "arr_baggage", old.arr_baggage, new.arr_baggage, INFO, f"Baggage at carousel {new.arr_baggage}"
            )
        )

    if old.dep_estimated != new.dep_estimated and new.dep_estimated:
        changes.append(
            FlightChange(
                "time_change",
                "dep_estimated",
                old.dep_estimated,
                new.dep_estimated,
                WARNING,
                f"New estimated departure: {_format_time_short(new.dep_estimated)}",
            )
        )

    if old.arr_estimated != new.arr_estimated and new.arr_estimated:
        changes.append(
            FlightChange(
                "time_change",
                "arr_estimated",
                old.arr_estimated,
                new.arr_estimated,
                INFO,
                f"New estimated arrival: {_format_time_short(new.arr_estimated)}",
            )
        )

    return changes


def most_severe(changes: List[FlightChange]) -> Optional[FlightChange]:
    rank = {CRITICAL: 2, WARNING: 1, INFO: 0}
    if not changes:
        return None
    return max(changes, key=lambda change: rank.get(change.severity, 0))


def infer_phase(record: FreshnessRecord, *, now: datetime, scheduled_start: Optional[datetime] = None) -> FlightPhase:
    """Best-effort phase when the reported one is vague.

    Terminal and diverted phases are trusted as reported. An ``unknown`` phase
    for a flight whose departure has not yet passed reads as ``scheduled``.
    """
    if record.status is not FlightPhase.UNKNOWN:
        return record.status
    departure = parse_timestamp(record.dep_estimated) or scheduled_start
    if departure is not None and now < departure:
        return FlightPhase.SCHEDULED
    return FlightPhase.UNKNOWN


__all__ = ["FlightChange", "detect_changes", "most_severe", "infer_phase", "INFO", "WARNING", "CRITICAL"]
