"""Per-owner cooldown for the aggregation entry point.

A second aggregation for the same owner inside the window is refused with the
remaining wait instead of hitting the upstream API again. Concurrent calls for
one owner are not locked out beyond this; the later writer wins.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Optional

from freshness.core.errors import RateLimitedError

DEFAULT_COOLDOWN_SECONDS = 2 * 60


def next_allowed_time(last_attempt_ts: float, cooldown_seconds: float) -> float:
    return last_attempt_ts + max(cooldown_seconds, 0.0)


def is_in_cooldown(*, last_attempt_ts: Optional[float], now_ts: float, cooldown_seconds: float) -> bool:
    if last_attempt_ts is None:
        return False
    return now_ts < next_allowed_time(last_attempt_ts, cooldown_seconds)


class OwnerCooldown:
    def __init__(
        self,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be non-negative")
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._last_attempt: Dict[str, float] = {}

    def remaining(self, owner_id: str) -> float:
        last = self._last_attempt.get(owner_id)
        now_ts = self._clock()
        if not is_in_cooldown(last_attempt_ts=last, now_ts=now_ts, cooldown_seconds=self.cooldown_seconds):
            return 0.0
        return next_allowed_time(last, self.cooldown_seconds) - now_ts  # type: ignore[arg-type]

    def check(self, owner_id: str) -> None:
        wait = self.remaining(owner_id)
        if wait > 0:
            raise RateLimitedError(retry_after_seconds=wait, owner_id=owner_id, phase="aggregate")

    def acquire(self, owner_id: str) -> None:
        """Check the window and stamp a new attempt for ``owner_id``."""
        self.check(owner_id)
        self._last_attempt[owner_id] = self._clock()

    def reset(self, owner_id: Optional[str] = None) -> None:
        if owner_id is None:
            self._last_attempt.clear()
        else:
            self._last_attempt.pop(owner_id, None)


__all__ = ["OwnerCooldown", "DEFAULT_COOLDOWN_SECONDS", "next_allowed_time", "is_in_cooldown"]
