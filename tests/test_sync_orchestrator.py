import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from freshness.core.errors import AuthExpiredError, RateLimitedError, SyncInProgressError
from freshness.core.repository import InMemoryLastSyncStore
from freshness.sync.orchestrator import SyncOutcome, create_sync_orchestrator
from freshness.sync.phases import SYNC_PHASES, SyncPhase, SyncPolicy

FAST_PHASES = (
    SyncPhase("Connecting...", 0.01),
    SyncPhase("Scanning...", 0.01),
    SyncPhase("Almost done...", 0),
)


def fast_policy(**overrides):
    payload = {"min_interval": 300, "client_timeout": 1.0, "safety_timeout": 2.0, "phases": FAST_PHASES}
    payload.update(overrides)
    return SyncPolicy(**payload)


def job_returning(value, delay=0.0):
    async def job(account_id):
        await asyncio.sleep(delay)
        return value

    return job


async def never_resolves(account_id):
    await asyncio.Event().wait()


def test_successful_sync_stamps_last_sync():
    async def main():
        store = InMemoryLastSyncStore()
        orchestrator = create_sync_orchestrator(
            job_returning({"trips_created": 2}, delay=0.01), policy=fast_policy(), last_sync_store=store
        )
        result = await orchestrator.start_sync("acct-1")
        await orchestrator.drain()
        return orchestrator, result, await store.get_last_sync("acct-1")

    orchestrator, result, last_sync = asyncio.run(main())

    assert result.outcome is SyncOutcome.SUCCESS
    assert result.ok
    assert result.data == {"trips_created": 2}
    assert last_sync == result.finished_at
    assert not orchestrator.state.is_syncing


def test_second_start_is_rejected_while_running_and_within_window():
    async def main():
        orchestrator = create_sync_orchestrator(job_returning("done", delay=0.05), policy=fast_policy())
        first = asyncio.create_task(orchestrator.start_sync("acct-1"))
        await asyncio.sleep(0)
        assert orchestrator.is_syncing

        with pytest.raises(SyncInProgressError) as in_progress:
            await orchestrator.start_sync("acct-2")
        assert isinstance(in_progress.value, RateLimitedError)

        await first
        with pytest.raises(RateLimitedError) as limited:
            await orchestrator.start_sync("acct-1")
        return limited.value

    error = asyncio.run(main())

    assert error.retry_after_seconds == 300
    assert error.message == "Please wait 5 minute(s) before syncing again"


def test_rate_limit_reads_persisted_last_sync():
    async def main():
        store = InMemoryLastSyncStore()
        await store.set_last_sync("acct-1", datetime.now(timezone.utc) - timedelta(minutes=4))
        orchestrator = create_sync_orchestrator(job_returning("done"), policy=fast_policy(), last_sync_store=store)
        seen = []
        orchestrator.subscribe(seen.append)
        with pytest.raises(RateLimitedError) as exc:
            await orchestrator.start_sync("acct-1")
        return orchestrator, seen, exc.value

    orchestrator, seen, error = asyncio.run(main())

    assert 0 < error.retry_after_seconds <= 60
    assert error.message == "Please wait 1 minute(s) before syncing again"
    assert seen == []
    assert not orchestrator.is_syncing


def test_safety_timer_resets_exactly_once():
    async def main():
        orchestrator = create_sync_orchestrator(
            never_resolves, policy=fast_policy(client_timeout=None, safety_timeout=0.05)
        )
        states = []
        orchestrator.subscribe(states.append)
        result = await orchestrator.start_sync("acct-1")
        await asyncio.sleep(0.1)
        return orchestrator, states, result

    orchestrator, states, result = asyncio.run(main())

    assert result.outcome is SyncOutcome.RESET
    assert result.ok
    assert [state.is_syncing for state in states].count(False) == 1
    assert states[-1].is_syncing is False
    assert not orchestrator.state.is_syncing


def test_late_success_after_client_timeout_is_ignored():
    async def main():
        store = InMemoryLastSyncStore()
        orchestrator = create_sync_orchestrator(
            job_returning("late", delay=0.1),
            policy=fast_policy(client_timeout=0.03),
            last_sync_store=store,
        )
        states = []
        orchestrator.subscribe(states.append)
        result = await orchestrator.start_sync("acct-1")
        seen_at_timeout = len(states)
        await asyncio.sleep(0.15)
        await orchestrator.drain()
        return orchestrator, states, seen_at_timeout, result, await store.get_last_sync("acct-1")

    orchestrator, states, seen_at_timeout, result, last_sync = asyncio.run(main())

    assert result.outcome is SyncOutcome.TIMED_OUT
    assert result.ok
    assert result.message == "Sync started and may still be completing"
    assert len(states) == seen_at_timeout
    assert not orchestrator.is_syncing
    assert last_sync == result.finished_at


def test_phases_advance_and_final_phase_is_sticky():
    async def main():
        orchestrator = create_sync_orchestrator(job_returning("done", delay=0.1), policy=fast_policy())
        messages = []
        orchestrator.subscribe(lambda state: messages.append(state.phase_message))
        await orchestrator.start_sync("acct-1")
        return messages

    messages = asyncio.run(main())

    assert messages == ["Connecting...", "Scanning...", "Almost done...", None]


def test_auth_expired_failure_asks_for_reconnect():
    async def main():
        async def job(account_id):
            raise AuthExpiredError("token revoked", account_id=account_id)

        store = InMemoryLastSyncStore()
        orchestrator = create_sync_orchestrator(job, policy=fast_policy(), last_sync_store=store)
        result = await orchestrator.start_sync("acct-1")
        await orchestrator.drain()
        return result, await store.get_last_sync("acct-1")

    result, last_sync = asyncio.run(main())

    assert result.outcome is SyncOutcome.FAILURE
    assert not result.ok
    assert result.needs_reconnect
    assert last_sync is not None


def test_orchestrators_are_independent():
    class ScanClient:
        def __init__(self):
            self.accounts = []

        async def scan(self, account_id):
            self.accounts.append(account_id)
            await asyncio.sleep(0.02)
            return account_id

    async def main():
        client = ScanClient()
        first = create_sync_orchestrator(client, policy=fast_policy())
        second = create_sync_orchestrator(client, policy=fast_policy())
        results = await asyncio.gather(first.start_sync("acct-1"), second.start_sync("acct-2"))
        return client, results

    client, results = asyncio.run(main())

    assert sorted(client.accounts) == ["acct-1", "acct-2"]
    assert [result.outcome for result in results] == [SyncOutcome.SUCCESS, SyncOutcome.SUCCESS]


def test_default_phase_script_matches_narration():
    assert [phase.message for phase in SYNC_PHASES][0] == "Connecting to Gmail..."
    assert SYNC_PHASES[-1].delay == 0
    with pytest.raises(ValueError):
        SyncPolicy(phases=(SyncPhase("Forever", 5.0),))
