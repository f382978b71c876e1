"""Client-side poll scheduler.

Keeps every watched flight's cached ``FreshnessRecord`` current by calling the
aggregation entry point on the cadence ``next_interval`` derives from the time
to departure. All polling for one trip is coalesced into a single call, and the
background tick and explicit pull-to-refresh share one in-flight slot per trip.

Background failures are logged and swallowed; only ``refresh_now`` reports
errors, through ``RefreshResult.error``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from freshness.core.errors import FreshnessError, RateLimitedError, TransientUpstreamError
from freshness.status.codec import apply, decode
from freshness.status.policy import PollingTiers, horizon_entry, next_interval
from freshness.status.record import FreshnessRecord
from freshness.client.streams import StatusStream, StatusUpdate
from models.reservation import WatchedEntity, flights_only

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class PollState:
    entity_id: str
    interval: Optional[timedelta]
    next_due: Optional[datetime]


@dataclass(slots=True)
class RefreshResult:
    ok: bool
    updated: Tuple[str, ...] = ()
    discarded: Tuple[str, ...] = ()
    has_more: bool = False
    error: Optional[FreshnessError] = None

    @property
    def retry_after_seconds(self) -> Optional[int]:
        if isinstance(self.error, RateLimitedError):
            return self.error.retry_after_seconds
        return None

    @property
    def message(self) -> Optional[str]:
        if self.error is None:
            return None
        if isinstance(self.error, RateLimitedError):
            return self.error.wait_message
        return self.error.message


@dataclass
class _TripWatch:
    trip_id: str
    entities: Dict[str, WatchedEntity] = field(default_factory=dict)
    streams: List[StatusStream] = field(default_factory=list)
    loop_task: Optional[asyncio.Task] = None
    in_flight: Optional[asyncio.Task] = None
    last_attempt: Optional[datetime] = None


class StatusPoller:
    """Poll scheduler for one signed-in owner.

    ``client`` is anything exposing ``async aggregate_trip(trip_id)`` returning
    an ``AggregationResponse``; normally an ``AggregationClient``.
    """

    def __init__(
        self,
        client,
        *,
        tiers: Optional[PollingTiers] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.client = client
        self.tiers = tiers or PollingTiers.from_config()
        self._clock = clock
        self._records: Dict[str, FreshnessRecord] = {}
        self._trips: Dict[str, _TripWatch] = {}
        self._closed = False

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------
    def watch(self, trip_id: str, entities: Iterable[WatchedEntity]) -> StatusStream:
        """Start (or restart) polling ``trip_id`` and return a stream of its updates."""
        if self._closed:
            raise RuntimeError("StatusPoller is closed")

        watch = self._trips.setdefault(trip_id, _TripWatch(trip_id))
        for entity in flights_only(entities):
            watch.entities[entity.id] = entity
            cached = decode(entity)
            if cached is not None:
                self._store(entity.id, cached)

        stream = StatusStream(trip_id, on_close=self._detach_stream)
        watch.streams.append(stream)
        for entity_id in watch.entities:
            record = self._records.get(entity_id)
            if record is not None:
                stream.push(StatusUpdate(entity_id, record))

        self._restart_loop(watch)
        return stream

    def unwatch(self, trip_id: str) -> None:
        watch = self._trips.pop(trip_id, None)
        if watch is None:
            return
        if watch.loop_task is not None:
            watch.loop_task.cancel()
        for stream in list(watch.streams):
            stream.close()

    async def refresh_now(self, trip_id: str) -> RefreshResult:
        """Refresh ``trip_id`` immediately, ignoring the polling tiers.

        Joins the call already in flight for this trip instead of issuing a
        second one.
        """
        watch = self._trips.setdefault(trip_id, _TripWatch(trip_id))
        return await self._tick(watch)

    def current(self, entity_id: str) -> Optional[FreshnessRecord]:
        return self._records.get(entity_id)

    def poll_states(self, trip_id: str) -> Dict[str, PollState]:
        watch = self._trips.get(trip_id)
        if watch is None:
            return {}
        return self._compute_states(watch, self._clock())

    async def close(self) -> None:
        self._closed = True
        tasks = []
        for trip_id in list(self._trips):
            watch = self._trips[trip_id]
            if watch.loop_task is not None:
                tasks.append(watch.loop_task)
            self.unwatch(trip_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def _restart_loop(self, watch: _TripWatch) -> None:
        if watch.loop_task is not None and not watch.loop_task.done():
            watch.loop_task.cancel()
        watch.loop_task = asyncio.get_running_loop().create_task(
            self._run_loop(watch), name=f"poll-{watch.trip_id}"
        )

    def _known_status(self, entity: WatchedEntity):
        record = self._records.get(entity.id)
        return record.status if record else None

    def _compute_states(self, watch: _TripWatch, now: datetime) -> Dict[str, PollState]:
        states: Dict[str, PollState] = {}
        for entity in watch.entities.values():
            interval = next_interval(
                now,
                entity.start_time,
                self._known_status(entity),
                entity.end_time,
                tiers=self.tiers,
            )
            if interval is None:
                states[entity.id] = PollState(entity.id, None, None)
                continue

            # Last local attempt counts too, so a failing upstream is not re-polled early.
            bases = [moment for moment in (watch.last_attempt,) if moment is not None]
            record = self._records.get(entity.id)
            if record is not None:
                bases.append(record.last_checked)
            next_due = max(bases) + interval if bases else now
            states[entity.id] = PollState(entity.id, interval, next_due)
        return states

    def _next_wake(self, watch: _TripWatch, now: datetime) -> Optional[datetime]:
        states = self._compute_states(watch, now)
        due = [state.next_due for state in states.values() if state.next_due is not None]
        if due:
            return min(due)

        # Nothing pollable yet: sleep until the earliest flight enters the horizon.
        upcoming = []
        for entity in watch.entities.values():
            status = self._known_status(entity)
            if status is not None and status.is_terminal:
                continue
            entry = horizon_entry(entity.start_time, tiers=self.tiers)
            if entry > now:
                upcoming.append(entry)
        return min(upcoming) if upcoming else None

    async def _run_loop(self, watch: _TripWatch) -> None:
        trip_id = watch.trip_id
        try:
            while not self._closed and self._trips.get(trip_id) is watch:
                now = self._clock()
                wake = self._next_wake(watch, now)
                if wake is None:
                    logger.info("[poll] trip=%s has no flights left to poll", trip_id)
                    return

                delay = (wake - now).total_seconds()
                if delay > 0:
                    await asyncio.sleep(delay)

                now = self._clock()
                states = self._compute_states(watch, now)
                if not any(state.next_due is not None and state.next_due <= now for state in states.values()):
                    continue

                result = await self._tick(watch)
                if not result.ok:
                    logger.info("[poll] background tick for trip=%s failed: %s", trip_id, result.message)
        except asyncio.CancelledError:
            logger.debug("[poll] loop for trip=%s cancelled", trip_id)
            raise

    # ------------------------------------------------------------------
    # Network + merge
    # ------------------------------------------------------------------
    async def _tick(self, watch: _TripWatch) -> RefreshResult:
        if watch.in_flight is None or watch.in_flight.done():
            watch.in_flight = asyncio.get_running_loop().create_task(self._fetch(watch))
        # Shielded so a cancelled waiter never aborts the call another caller shares.
        return await asyncio.shield(watch.in_flight)

    async def _fetch(self, watch: _TripWatch) -> RefreshResult:
        watch.last_attempt = self._clock()
        try:
            response = await self.client.aggregate_trip(watch.trip_id)
        except FreshnessError as exc:
            logger.warning("[poll] aggregation failed for trip=%s: %s", watch.trip_id, exc)
            return RefreshResult(ok=False, error=exc)
        except Exception as exc:
            logger.exception("[poll] unexpected aggregation error for trip=%s", watch.trip_id)
            return RefreshResult(ok=False, error=TransientUpstreamError(str(exc) or type(exc).__name__))

        updated, discarded = self._merge(watch, response.per_entity)
        return RefreshResult(
            ok=True,
            updated=tuple(updated),
            discarded=tuple(discarded),
            has_more=response.has_more,
        )

    def _merge(self, watch: _TripWatch, records: Dict[str, FreshnessRecord]) -> Tuple[List[str], List[str]]:
        """Apply one response as a batch; older-than-cached records are dropped."""
        accepted: Dict[str, FreshnessRecord] = {}
        discarded: List[str] = []
        for entity_id, record in records.items():
            cached = self._records.get(entity_id)
            if cached is not None and not record.is_newer_than(cached):
                logger.debug("[poll] discarding stale record for %s", entity_id)
                discarded.append(entity_id)
                continue
            if cached == record:
                continue
            accepted[entity_id] = record

        for entity_id, record in accepted.items():
            self._store(entity_id, record)
            entity = watch.entities.get(entity_id)
            if entity is not None:
                watch.entities[entity_id] = apply(entity, record)
            update = StatusUpdate(entity_id, record)
            for stream in list(watch.streams):
                stream.push(update)

        return list(accepted), discarded

    def _store(self, entity_id: str, record: FreshnessRecord) -> None:
        cached = self._records.get(entity_id)
        if record.is_newer_than(cached):
            self._records[entity_id] = record

    def _detach_stream(self, stream: StatusStream) -> None:
        watch = self._trips.get(stream.trip_id)
        if watch is None or stream not in watch.streams:
            return
        watch.streams.remove(stream)
        if not watch.streams and watch.loop_task is not None:
            # No screen is watching this trip any more.
            watch.loop_task.cancel()
            watch.loop_task = None


__all__ = ["StatusPoller", "PollState", "RefreshResult"]
