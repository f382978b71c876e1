"""Polling cadence derived from how close a flight is to departure."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from freshness.core.config import Config
from freshness.status.record import FlightPhase

_IN_FLIGHT_PHASES = {FlightPhase.ACTIVE, FlightPhase.DIVERTED}


@dataclass(frozen=True, slots=True)
class PollingTiers:
    horizon: timedelta = timedelta(hours=48)
    wide_tier: timedelta = timedelta(hours=6)
    close_tier: timedelta = timedelta(hours=2)
    wide_interval: timedelta = timedelta(hours=6)
    close_interval: timedelta = timedelta(minutes=30)
    boarding_interval: timedelta = timedelta(minutes=5)
    default_flight_duration: timedelta = timedelta(hours=6)

    @classmethod
    def from_config(cls) -> "PollingTiers":
        cfg = Config.get("polling", default={}) or {}
        defaults = cls()
        return cls(
            horizon=timedelta(hours=float(cfg.get("horizon_hours", 48))),
            wide_tier=timedelta(hours=float(cfg.get("wide_tier_hours", 6))),
            close_tier=timedelta(hours=float(cfg.get("close_tier_hours", 2))),
            wide_interval=timedelta(seconds=float(cfg.get("wide_interval_seconds", defaults.wide_interval.total_seconds()))),
            close_interval=timedelta(seconds=float(cfg.get("close_interval_seconds", defaults.close_interval.total_seconds()))),
            boarding_interval=timedelta(
                seconds=float(cfg.get("boarding_interval_seconds", defaults.boarding_interval.total_seconds()))
            ),
            default_flight_duration=timedelta(hours=float(cfg.get("default_flight_hours", 6))),
        )


DEFAULT_TIERS = PollingTiers()


def landing_window_end(
    scheduled_start: datetime,
    scheduled_end: Optional[datetime],
    *,
    tiers: PollingTiers = DEFAULT_TIERS,
) -> datetime:
    return scheduled_end or scheduled_start + tiers.default_flight_duration


def horizon_entry(scheduled_start: datetime, *, tiers: PollingTiers = DEFAULT_TIERS) -> datetime:
    """Moment a flight enters the polling horizon."""
    return scheduled_start - tiers.horizon


def next_interval(
    now: datetime,
    scheduled_start: datetime,
    known_status: Optional[FlightPhase] = None,
    scheduled_end: Optional[datetime] = None,
    *,
    tiers: PollingTiers = DEFAULT_TIERS,
) -> Optional[timedelta]:
    """Return how long to wait before the next poll, or ``None`` to stop polling.

    Exact tier boundaries belong to the tighter tier.
    """
    if known_status is not None and FlightPhase(known_status).is_terminal:
        return None

    if now > landing_window_end(scheduled_start, scheduled_end, tiers=tiers):
        return None

    until_departure = scheduled_start - now
    if until_departure > tiers.horizon:
        return None

    if known_status is not None and FlightPhase(known_status) in _IN_FLIGHT_PHASES:
        return tiers.boarding_interval

    if until_departure <= tiers.close_tier:
        return tiers.boarding_interval
    if until_departure <= tiers.wide_tier:
        return tiers.close_interval
    return tiers.wide_interval


__all__ = ["PollingTiers", "DEFAULT_TIERS", "next_interval", "horizon_entry", "landing_window_end"]
