"""Refresh guards shared by every path into the aggregation entry point."""

from .budget import RefreshBudget
from .cooldown import DEFAULT_COOLDOWN_SECONDS, OwnerCooldown, is_in_cooldown, next_allowed_time
from .decision import DecisionResult, evaluate_refresh, should_refresh

__all__ = [
    "RefreshBudget",
    "DEFAULT_COOLDOWN_SECONDS",
    "OwnerCooldown",
    "is_in_cooldown",
    "next_allowed_time",
    "DecisionResult",
    "evaluate_refresh",
    "should_refresh",
]
