"""Progress narration and timing policy for an inbox sync."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from freshness.core.config import Config


@dataclass(frozen=True, slots=True)
class SyncPhase:
    message: str
    # Seconds this phase stays visible; 0 keeps it until the sync finishes.
    delay: float


SYNC_PHASES: Tuple[SyncPhase, ...] = (
    SyncPhase("Connecting to Gmail...", 3.0),
    SyncPhase("Scanning your inbox...", 7.0),
    SyncPhase("Processing travel emails...", 20.0),
    SyncPhase("Checking for new trips...", 30.0),
    SyncPhase("Almost done...", 0.0),
)


@dataclass(frozen=True, slots=True)
class SyncPolicy:
    min_interval: float = 5 * 60
    client_timeout: Optional[float] = 90.0
    safety_timeout: float = 120.0
    phases: Tuple[SyncPhase, ...] = SYNC_PHASES

    def __post_init__(self) -> None:
        if not self.phases:
            raise ValueError("SyncPolicy requires at least one phase")
        if self.phases[-1].delay != 0:
            raise ValueError("the final sync phase must have delay 0")

    @classmethod
    def from_config(cls) -> "SyncPolicy":
        cfg = Config.get("sync", default={}) or {}
        return cls(
            min_interval=float(cfg.get("min_interval_seconds", 300)),
            client_timeout=float(cfg.get("client_timeout_seconds", 90)),
            safety_timeout=float(cfg.get("safety_timeout_seconds", 120)),
        )


__all__ = ["SyncPhase", "SYNC_PHASES", "SyncPolicy"]
