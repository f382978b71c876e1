"""Scheduled flight status fan-out.

Every run looks at the flights departing in ``[now - look_back, now + look_ahead]``,
groups them by owner and calls the aggregation entry point once per owner. An
owner's failure is recorded and never stops the others. The run summary is
persisted to the fan-out state file for health checks.

Run once from the command line with ``python -m freshness.jobs.fanout --once``,
or without ``--once`` to keep running on the configured interval.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from freshness.aggregation.service import AggregationScope
from freshness.core.config import Config
from freshness.core.errors import FreshnessError, RateLimitedError
from freshness.core.observability.logger import PhaseTimer
from freshness.core.repository import ReservationStore
from freshness.core.state import write_last_run

logger = logging.getLogger(__name__)

SUCCESS = "success"
FAILED = "failed"
RATE_LIMITED = "rate_limited"


class FanOutConfig:
    def __init__(
        self,
        *,
        look_back: Optional[timedelta] = None,
        look_ahead: Optional[timedelta] = None,
        max_concurrency: Optional[int] = None,
        persist_state: bool = True,
        state_path: Optional[Path] = None,
    ) -> None:
        cfg = Config.get("fanout", default={}) or {}
        self.look_back = look_back or timedelta(hours=float(cfg.get("look_back_hours", 12)))
        self.look_ahead = look_ahead or timedelta(hours=float(cfg.get("look_ahead_hours", 48)))
        self.max_concurrency = max(int(max_concurrency or cfg.get("max_concurrency", 4)), 1)
        self.persist_state = persist_state
        self.state_path = state_path


@dataclass(slots=True)
class OwnerResult:
    owner_id: str
    status: str
    entity_count: int
    refreshed: int = 0
    has_more: bool = False
    error: Optional[str] = None
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "status": self.status,
            "entity_count": self.entity_count,
            "refreshed": self.refreshed,
            "has_more": self.has_more,
            "error": self.error,
            "duration": round(self.duration, 3),
        }


@dataclass(slots=True)
class FanOutReport:
    run_id: str
    started_at: datetime
    window_start: datetime
    window_end: datetime
    results: List[OwnerResult] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    @property
    def calls(self) -> int:
        return len(self.results)

    @property
    def entities(self) -> int:
        return sum(result.entity_count for result in self.results)

    @property
    def failures(self) -> List[str]:
        return [result.owner_id for result in self.results if result.status == FAILED]

    @property
    def status(self) -> str:
        failed = len(self.failures)
        if failed == 0:
            return SUCCESS
        if failed == len(self.results):
            return FAILED
        return "partial"

    def result_for(self, owner_id: str) -> Optional[OwnerResult]:
        return next((result for result in self.results if result.owner_id == owner_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "owners": self.calls,
            "entities": self.entities,
            "failures": self.failures,
            "results": [result.to_dict() for result in self.results],
        }


def group_by_owner(entities) -> Dict[str, Set[str]]:
    """Build the owner -> entity ids batch for one run."""
    batch: Dict[str, Set[str]] = {}
    for entity in entities:
        if not entity.owner_id:
            logger.debug("[fanout] skipping %s with no resolved owner", entity.id)
            continue
        batch.setdefault(entity.owner_id, set()).add(entity.id)
    return batch


class FlightStatusFanOut:
    """``aggregator`` is anything exposing ``async aggregate(owner_id, scope)``."""

    def __init__(self, store: ReservationStore, aggregator, config: Optional[FanOutConfig] = None) -> None:
        self.store = store
        self.aggregator = aggregator
        self.config = config or FanOutConfig()

    async def _run_owner(
        self,
        run_id: str,
        owner_id: str,
        entity_ids: Set[str],
        semaphore: asyncio.Semaphore,
    ) -> OwnerResult:
        result = OwnerResult(owner_id=owner_id, status=SUCCESS, entity_count=len(entity_ids))
        async with semaphore:
            timer = PhaseTimer(logger, "fanout_owner", owner_id=owner_id, run_id=run_id, entities=len(entity_ids))
            try:
                with timer:
                    outcome = await self.aggregator.aggregate(owner_id, AggregationScope.user())
            except RateLimitedError as exc:
                result.status = RATE_LIMITED
                result.error = exc.message
            except FreshnessError as exc:
                result.status = FAILED
                result.error = exc.message
            except Exception as exc:  # noqa: BLE001
                result.status = FAILED
                result.error = str(exc) or exc.__class__.__name__
            else:
                result.refreshed = len(getattr(outcome, "per_entity", {}) or {})
                result.has_more = bool(getattr(outcome, "has_more", False))
            result.duration = timer.duration or 0.0
        return result

    async def run(self, now: Optional[datetime] = None) -> FanOutReport:
        now = now or datetime.now(timezone.utc)
        run_id = uuid.uuid4().hex[:12]
        report = FanOutReport(
            run_id=run_id,
            started_at=datetime.now(timezone.utc),
            window_start=now - self.config.look_back,
            window_end=now + self.config.look_ahead,
        )

        flights = await self.store.list_flights_in_window(report.window_start, report.window_end)
        batch = group_by_owner(flights)
        logger.info(
            "[fanout] run=%s flights=%d owners=%d window=[%s, %s]",
            run_id,
            len(flights),
            len(batch),
            report.window_start.isoformat(),
            report.window_end.isoformat(),
        )

        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        report.results = list(
            await asyncio.gather(
                *(self._run_owner(run_id, owner_id, ids, semaphore) for owner_id, ids in sorted(batch.items()))
            )
        )
        report.finished_at = datetime.now(timezone.utc)

        for result in report.results:
            if result.status != SUCCESS:
                logger.warning("[fanout] owner=%s %s: %s", result.owner_id, result.status, result.error)

        if self.config.persist_state:
            write_last_run(report.to_dict(), self.config.state_path)

        logger.info(
            "[fanout] run=%s finished status=%s calls=%d failures=%d",
            run_id,
            report.status,
            report.calls,
            len(report.failures),
        )
        return report


def build_fanout() -> FlightStatusFanOut:
    """Wire the fan-out against MongoDB and the configured status provider."""
    from freshness.api.app import build_aggregation_service

    service = build_aggregation_service()
    return FlightStatusFanOut(service.store, service)


async def _run_once() -> FanOutReport:
    from freshness.api.app import close_aggregation_service

    fanout = build_fanout()
    try:
        return await fanout.run()
    finally:
        await close_aggregation_service(fanout.aggregator)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Flight status fan-out runner")
    parser.add_argument("--once", action="store_true", help="Run a single fan-out and exit.")
    return parser.parse_args(argv)


async def _run_forever() -> None:
    from freshness.api.app import close_aggregation_service
    from freshness.scheduler.scheduler import start_scheduler

    fanout = build_fanout()
    scheduler = start_scheduler(fanout)
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        await close_aggregation_service(fanout.aggregator)


def main(argv: Optional[List[str]] = None) -> None:
    from dotenv import load_dotenv

    from freshness.core.observability.logger import setup_structured_logging

    load_dotenv()
    setup_structured_logging(Config.get("logging", "level", default="INFO"))
    args = parse_args(argv)

    if args.once:
        report = asyncio.run(_run_once())
        if report.status == FAILED and report.calls:
            raise SystemExit(1)
        return

    asyncio.run(_run_forever())


if __name__ == "__main__":
    main()
