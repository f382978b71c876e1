"""Per-owner aggregation entry point.

Every freshness path ends here: client ticks and pull-to-refresh (trip scope),
the server fan-out (user scope) and single-reservation checks. One call looks
up each due flight of the owner, merges the records into storage and reports
what changed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from freshness.core.config import Config
from freshness.core.errors import (
    MalformedDataError,
    NotFoundError,
    TransientUpstreamError,
    UpstreamUnavailableError,
)
from freshness.core.repository import ReservationStore
from freshness.aggregation.providers import FlightStatusProvider
from freshness.refresh.budget import RefreshBudget
from freshness.refresh.cooldown import OwnerCooldown
from freshness.refresh.decision import evaluate_refresh
from freshness.notifications.notifier import ChangeNotifier
from freshness.status.changes import FlightChange, detect_changes, infer_phase
from freshness.status.codec import decode
from freshness.status.flight_number import extract_flight_number, flight_number_for
from freshness.status.policy import PollingTiers
from freshness.status.record import FreshnessRecord
from models.reservation import WatchedEntity

logger = logging.getLogger(__name__)


class ScopeMode(str, Enum):
    TRIP = "trip"
    USER = "user"
    RESERVATION = "reservation"


@dataclass(frozen=True, slots=True)
class AggregationScope:
    mode: ScopeMode
    trip_id: Optional[str] = None
    reservation_id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", ScopeMode(self.mode))
        if self.mode is ScopeMode.TRIP and not self.trip_id:
            raise ValueError("trip scope requires trip_id")
        if self.mode is ScopeMode.RESERVATION and not self.reservation_id:
            raise ValueError("reservation scope requires reservation_id")

    @classmethod
    def trip(cls, trip_id: str) -> "AggregationScope":
        return cls(ScopeMode.TRIP, trip_id=trip_id)

    @classmethod
    def user(cls) -> "AggregationScope":
        return cls(ScopeMode.USER)

    @classmethod
    def reservation(cls, reservation_id: str) -> "AggregationScope":
        return cls(ScopeMode.RESERVATION, reservation_id=reservation_id)

    def to_dict(self) -> Dict[str, Any]:
        return {"mode": self.mode.value, "trip_id": self.trip_id, "reservation_id": self.reservation_id}


@dataclass(slots=True)
class AggregationResult:
    owner_id: str
    checked_at: datetime
    per_entity: Dict[str, FreshnessRecord] = field(default_factory=dict)
    changes: Dict[str, List[FlightChange]] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    has_more: bool = False
    upstream_calls: int = 0
    notifications: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "checked_at": self.checked_at.isoformat(),
            "per_entity": {entity_id: record.to_dict() for entity_id, record in self.per_entity.items()},
            "changes": {
                entity_id: [change.to_dict() for change in changes] for entity_id, changes in self.changes.items()
            },
            "errors": dict(self.errors),
            "has_more": self.has_more,
            "upstream_calls": self.upstream_calls,
            "notifications": self.notifications,
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class FlightValidation:
    valid: bool
    flight_iata: str
    record: Optional[FreshnessRecord] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"valid": self.valid, "flight_iata": self.flight_iata, "error": self.error}
        if self.record is not None:
            payload.update(self.record.to_dict())
            payload["flight_iata"] = self.record.flight_iata or self.flight_iata
        return payload


class AggregationService:
    def __init__(
        self,
        store: ReservationStore,
        provider: FlightStatusProvider,
        *,
        cooldown: Optional[OwnerCooldown] = None,
        max_lookups_per_call: Optional[int] = None,
        look_back: Optional[timedelta] = None,
        look_ahead: Optional[timedelta] = None,
        tiers: Optional[PollingTiers] = None,
        notifier: Optional[ChangeNotifier] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.provider = provider
        self.tiers = tiers or PollingTiers.from_config()
        self.notifier = notifier
        self.cooldown = cooldown or OwnerCooldown(float(Config.get("aggregation", "cooldown_seconds", default=120)))
        self.max_lookups_per_call = (
            max_lookups_per_call
            if max_lookups_per_call is not None
            else int(Config.get("aggregation", "max_lookups_per_call", default=25))
        )
        self.look_back = look_back or timedelta(hours=float(Config.get("fanout", "look_back_hours", default=12)))
        self.look_ahead = look_ahead or timedelta(hours=float(Config.get("fanout", "look_ahead_hours", default=48)))
        self._clock = clock

    async def _resolve_entities(self, owner_id: str, scope: AggregationScope, now: datetime) -> List[WatchedEntity]:
        if scope.mode is ScopeMode.TRIP:
            trip = await self.store.get_trip(scope.trip_id)  # type: ignore[arg-type]
            if trip is None or trip.owner_id != owner_id:
                raise NotFoundError(f"Trip {scope.trip_id} not found", owner_id=owner_id)
            return await self.store.list_flights_for_trip(trip.id)

        if scope.mode is ScopeMode.RESERVATION:
            entity = await self.store.get_reservation(scope.reservation_id)  # type: ignore[arg-type]
            if entity is None or entity.owner_id != owner_id:
                raise NotFoundError(f"Reservation {scope.reservation_id} not found", owner_id=owner_id)
            return [entity] if entity.is_flight else []

        flights = await self.store.list_flights_in_window(
            now - self.look_back,
            now + self.look_ahead,
            owner_id=owner_id,
        )
        due = []
        for entity in flights:
            decision = evaluate_refresh(entity, now=now, tiers=self.tiers)
            if decision.should_run:
                due.append(entity)
            else:
                logger.debug("[aggregate] SKIP %s owner=%s reason=%s", entity.id, owner_id, decision.reason)
        return due

    async def aggregate(self, owner_id: str, scope: AggregationScope) -> AggregationResult:
        """Refresh the owner's flights in ``scope``.

        Raises ``RateLimitedError`` inside the owner's cooldown window,
        ``NotFoundError`` for a trip or reservation the owner does not have, and
        ``UpstreamUnavailableError`` when every upstream lookup failed.
        """
        now = self._clock()
        entities = await self._resolve_entities(owner_id, scope, now)
        self.cooldown.acquire(owner_id)

        result = AggregationResult(owner_id=owner_id, checked_at=now)
        budget = RefreshBudget(self.max_lookups_per_call)
        upstream_failures = 0

        for entity in entities:
            if not budget.allow():
                result.has_more = True
                logger.info("[aggregate] budget exhausted owner=%s max=%d", owner_id, self.max_lookups_per_call)
                break

            flight_iata = flight_number_for(entity)
            if not flight_iata:
                result.errors[entity.id] = "Could not extract flight number from reservation"
                continue

            budget.consume()
            result.upstream_calls += 1
            try:
                record = await self.provider.lookup(flight_iata, scheduled_start=entity.start_time)
            except TransientUpstreamError as exc:
                upstream_failures += 1
                result.errors[entity.id] = exc.message
                logger.warning("[aggregate] upstream failure owner=%s entity=%s: %s", owner_id, entity.id, exc)
                continue
            except MalformedDataError as exc:
                result.errors[entity.id] = exc.message
                logger.warning("[aggregate] malformed upstream data entity=%s: %s", entity.id, exc)
                continue

            if record is None:
                result.errors[entity.id] = "Flight not found"
                continue

            phase = infer_phase(record, now=now, scheduled_start=entity.start_time)
            if phase is not record.status:
                record = replace(record, status=phase)

            previous = decode(entity)
            changes = detect_changes(previous, record)
            await self.store.save_freshness(entity.id, record)
            result.per_entity[entity.id] = record
            if changes:
                result.changes[entity.id] = changes
                logger.info(
                    "[aggregate] %d change(s) for %s (%s): %s",
                    len(changes),
                    entity.id,
                    flight_iata,
                    "; ".join(change.message for change in changes),
                )
                if self.notifier is not None:
                    sent = await self.notifier.notify(owner_id, entity, flight_iata, changes)
                    result.notifications += len(sent)

        if result.upstream_calls and upstream_failures == result.upstream_calls:
            raise UpstreamUnavailableError(
                f"All {upstream_failures} upstream lookup(s) failed",
                owner_id=owner_id,
                phase="aggregate",
                details={"errors": result.errors},
            )

        logger.info(
            "[aggregate] owner=%s scope=%s refreshed=%d errors=%d has_more=%s",
            owner_id,
            scope.mode.value,
            len(result.per_entity),
            len(result.errors),
            result.has_more,
        )
        return result

    async def validate_flight(self, flight_number: str) -> FlightValidation:
        """Look up a flight number typed by the user before it is saved.

        Raises ``ValueError`` when the text is not a flight number at all. Not
        subject to the owner cooldown and never writes to storage.
        """
        flight_iata = extract_flight_number(flight_number)
        if not flight_iata:
            raise ValueError("Invalid flight number format. Use format like AA182 or AA 182.")

        record = await self.provider.lookup(flight_iata)
        if record is None:
            return FlightValidation(False, flight_iata, error="Flight not found. Check the flight number and try again.")
        return FlightValidation(True, flight_iata, record=record)


__all__ = ["ScopeMode", "AggregationScope", "AggregationResult", "AggregationService", "FlightValidation"]
