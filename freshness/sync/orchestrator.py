"""
Background Sync Orchestrator

State machine for a user-triggered inbox sync: ``idle -> running -> idle``.

While running, a phase timer walks ``SyncPolicy.phases`` to narrate progress,
independently of the job itself. The job is raced against a client timeout
and a safety timer; whichever settles first finishes the session and every
later settlement is logged and dropped. The remote job is never cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from freshness.core.errors import AuthExpiredError, ClientTimeoutError, RateLimitedError, SyncInProgressError
from freshness.core.repository import LastSyncStore
from freshness.sync.phases import SyncPolicy

logger = logging.getLogger(__name__)

ScanJob = Callable[[str], Awaitable[Any]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMED_OUT = "timed_out"
    RESET = "reset"


@dataclass(frozen=True, slots=True)
class SyncResult:
    outcome: SyncOutcome
    account_id: str
    started_at: datetime
    finished_at: datetime
    data: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        """Soft success: only a settled failure is shown as an error."""
        return self.outcome is not SyncOutcome.FAILURE

    @property
    def needs_reconnect(self) -> bool:
        return isinstance(self.error, AuthExpiredError)

    @property
    def message(self) -> str:
        if self.outcome is SyncOutcome.SUCCESS:
            return "Sync complete"
        if self.outcome in (SyncOutcome.TIMED_OUT, SyncOutcome.RESET):
            return "Sync started and may still be completing"
        if self.needs_reconnect:
            return "Your account connection expired. Reconnect it to keep syncing"
        return str(self.error) if self.error else "Sync failed"


@dataclass(frozen=True, slots=True)
class SyncState:
    is_syncing: bool = False
    phase_message: Optional[str] = None
    phase_index: Optional[int] = None
    account_id: Optional[str] = None


@dataclass
class SyncSession:
    account_id: str
    phase_index: int
    phase_message: str
    started_at: float
    started_at_wall: datetime


class SyncOrchestrator:
    def __init__(
        self,
        scan_job: ScanJob,
        *,
        policy: Optional[SyncPolicy] = None,
        last_sync_store: Optional[LastSyncStore] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._scan_job = scan_job
        self.policy = policy or SyncPolicy.from_config()
        self._last_sync_store = last_sync_store
        self._clock = clock

        self._session: Optional[SyncSession] = None
        self._starting = False
        self._generation = 0
        self._future: Optional[asyncio.Future] = None
        self._handles: List[asyncio.TimerHandle] = []
        self._phase_handle: Optional[asyncio.TimerHandle] = None
        self._last_attempts: Dict[str, datetime] = {}
        self._listeners: List[Callable[[SyncState], None]] = []
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------
    @property
    def state(self) -> SyncState:
        session = self._session
        if session is None:
            return SyncState()
        return SyncState(
            is_syncing=True,
            phase_message=session.phase_message,
            phase_index=session.phase_index,
            account_id=session.account_id,
        )

    @property
    def is_syncing(self) -> bool:
        return self._session is not None

    def subscribe(self, listener: Callable[[SyncState], None]) -> Callable[[], None]:
        """Register ``listener`` for state changes; returns the unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Sync state listener failed")

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------
    async def _last_attempt(self, account_id: str) -> Optional[datetime]:
        moments = [self._last_attempts.get(account_id)]
        if self._last_sync_store is not None:
            moments.append(await self._last_sync_store.get_last_sync(account_id))
        known = [moment for moment in moments if moment is not None]
        return max(known) if known else None

    async def retry_after(self, account_id: str) -> float:
        """Seconds until ``account_id`` may sync again (0 when allowed now)."""
        last = await self._last_attempt(account_id)
        if last is None:
            return 0.0
        elapsed = (self._clock() - last).total_seconds()
        return max(self.policy.min_interval - elapsed, 0.0)

    def _in_progress_error(self) -> SyncInProgressError:
        remaining = self.policy.safety_timeout
        if self._session is not None:
            remaining -= time.monotonic() - self._session.started_at
        return SyncInProgressError(
            "A sync is already in progress",
            retry_after_seconds=max(remaining, 0.0),
            phase="sync",
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start_sync(self, account_id: str) -> SyncResult:
        """Run one sync for ``account_id`` and return how it finished.

        Raises ``SyncInProgressError`` while any session is active and
        ``RateLimitedError`` inside the minimum interval since the account's
        last attempt. A rejected start changes no state.
        """
        if self._session is not None or self._starting:
            raise self._in_progress_error()

        self._starting = True
        try:
            wait = await self.retry_after(account_id)
            if wait > 0:
                minutes = int(math.ceil(wait / 60))
                raise RateLimitedError(
                    f"Please wait {minutes} minute(s) before syncing again",
                    retry_after_seconds=wait,
                    phase="sync",
                    details={"account_id": account_id},
                )
            future = self._begin(account_id)
        finally:
            self._starting = False

        return await asyncio.shield(future)

    def _begin(self, account_id: str) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        self._generation += 1
        generation = self._generation
        first = self.policy.phases[0]

        self._session = SyncSession(
            account_id=account_id,
            phase_index=0,
            phase_message=first.message,
            started_at=time.monotonic(),
            started_at_wall=self._clock(),
        )
        self._future = loop.create_future()
        logger.info("[sync] started account=%s", account_id)

        if first.delay > 0:
            self._phase_handle = loop.call_later(first.delay, self._advance_phase, generation)
        if self.policy.client_timeout is not None:
            self._handles.append(
                loop.call_later(self.policy.client_timeout, self._on_client_timeout, generation)
            )
        self._handles.append(
            loop.call_later(self.policy.safety_timeout, self._finish, generation, SyncOutcome.RESET)
        )
        self._track(loop.create_task(self._run_job(account_id, generation), name=f"sync-{account_id}"))
        self._notify()
        return self._future

    def _advance_phase(self, generation: int) -> None:
        session = self._session
        if session is None or generation != self._generation:
            return
        index = session.phase_index + 1
        if index >= len(self.policy.phases):
            return

        phase = self.policy.phases[index]
        session.phase_index = index
        session.phase_message = phase.message
        self._notify()
        if phase.delay > 0:
            self._phase_handle = asyncio.get_running_loop().call_later(phase.delay, self._advance_phase, generation)

    def _on_client_timeout(self, generation: int) -> None:
        error = ClientTimeoutError(
            "Sync is taking longer than expected",
            timeout_seconds=self.policy.client_timeout,
            phase="sync",
        )
        self._finish(generation, SyncOutcome.TIMED_OUT, error=error)

    async def _run_job(self, account_id: str, generation: int) -> None:
        try:
            data = await self._scan_job(account_id)
        except Exception as exc:
            logger.warning("[sync] job failed account=%s: %s", account_id, exc)
            self._finish(generation, SyncOutcome.FAILURE, error=exc)
        else:
            self._finish(generation, SyncOutcome.SUCCESS, data=data)

    def _finish(
        self,
        generation: int,
        outcome: SyncOutcome,
        *,
        data: Any = None,
        error: Optional[BaseException] = None,
    ) -> None:
        session = self._session
        if session is None or generation != self._generation:
            logger.info("[sync] dropping late %s settlement", outcome.value)
            return

        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        if self._phase_handle is not None:
            self._phase_handle.cancel()
            self._phase_handle = None

        finished_at = self._clock()
        self._session = None
        self._last_attempts[session.account_id] = finished_at
        result = SyncResult(
            outcome=outcome,
            account_id=session.account_id,
            started_at=session.started_at_wall,
            finished_at=finished_at,
            data=data,
            error=error,
        )
        if self._future is not None and not self._future.done():
            self._future.set_result(result)

        logger.info(
            "[sync] finished account=%s outcome=%s after %.1fs",
            session.account_id,
            outcome.value,
            time.monotonic() - session.started_at,
        )
        if self._last_sync_store is not None:
            self._track(asyncio.get_running_loop().create_task(self._stamp(session.account_id, finished_at)))
        self._notify()

    async def _stamp(self, account_id: str, timestamp: datetime) -> None:
        try:
            await self._last_sync_store.set_last_sync(account_id, timestamp)  # type: ignore[union-attr]
        except Exception:
            logger.exception("[sync] failed to record last sync for %s", account_id)

    def _track(self, task: asyncio.Task) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for background work (late job results, last-sync writes)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


def create_sync_orchestrator(
    scan_job,
    *,
    policy: Optional[SyncPolicy] = None,
    last_sync_store: Optional[LastSyncStore] = None,
    clock: Callable[[], datetime] = _utc_now,
) -> SyncOrchestrator:
    """Build an independent orchestrator.

    ``scan_job`` is either an async callable taking the account id or an object
    with an async ``scan(account_id)`` method, such as ``InboxScanClient``.
    """
    job = scan_job.scan if hasattr(scan_job, "scan") else scan_job
    return SyncOrchestrator(job, policy=policy, last_sync_store=last_sync_store, clock=clock)


__all__ = [
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncResult",
    "SyncSession",
    "SyncState",
    "create_sync_orchestrator",
]
