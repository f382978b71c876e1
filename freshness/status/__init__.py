"""Status cache codec: the freshness record, its storage key and the polling cadence."""

from .changes import FlightChange, detect_changes, infer_phase, most_severe
from .codec import RESERVED_KEY, apply, decode, encode, has_record
from .flight_number import extract_flight_number, flight_number_for
from .policy import DEFAULT_TIERS, PollingTiers, horizon_entry, next_interval
from .record import TERMINAL_PHASES, FlightPhase, FreshnessRecord

__all__ = [
    "FlightChange",
    "detect_changes",
    "infer_phase",
    "most_severe",
    "RESERVED_KEY",
    "apply",
    "decode",
    "encode",
    "has_record",
    "extract_flight_number",
    "flight_number_for",
    "DEFAULT_TIERS",
    "PollingTiers",
    "horizon_entry",
    "next_interval",
    "TERMINAL_PHASES",
    "FlightPhase",
    "FreshnessRecord",
]
