"""Per-reservation refresh decision used by owner-wide aggregation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from freshness.status.codec import decode
from freshness.status.policy import PollingTiers, next_interval
from models.reservation import WatchedEntity


@dataclass(slots=True)
class DecisionResult:
    should_run: bool
    reason: str


def evaluate_refresh(
    entity: WatchedEntity,
    *,
    now: Optional[datetime] = None,
    tiers: Optional[PollingTiers] = None,
) -> DecisionResult:
    now = now or datetime.now(timezone.utc)
    tiers = tiers or PollingTiers.from_config()

    if not entity.is_flight:
        return DecisionResult(False, f"not tracked type={entity.type}")

    cached = decode(entity)
    known_status = cached.status if cached else None
    interval = next_interval(now, entity.start_time, known_status, entity.end_time, tiers=tiers)
    if interval is None:
        return DecisionResult(False, "outside polling window")

    if cached is None:
        return DecisionResult(True, "never checked")

    elapsed = (now - cached.last_checked).total_seconds()
    required = interval.total_seconds()
    if elapsed >= required:
        return DecisionResult(True, f"stale by {int(elapsed - required)}s")

    return DecisionResult(False, f"fresh (next check in {int(required - elapsed)}s)")


def should_refresh(entity: WatchedEntity, *, now: Optional[datetime] = None) -> bool:
    return evaluate_refresh(entity, now=now).should_run


__all__ = ["DecisionResult", "evaluate_refresh", "should_refresh"]
