"""Background inbox sync orchestration."""

from .orchestrator import (
    SyncOrchestrator,
    SyncOutcome,
    SyncResult,
    SyncSession,
    SyncState,
    create_sync_orchestrator,
)
from .phases import SYNC_PHASES, SyncPhase, SyncPolicy

__all__ = [
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncResult",
    "SyncSession",
    "SyncState",
    "create_sync_orchestrator",
    "SYNC_PHASES",
    "SyncPhase",
    "SyncPolicy",
]
