"""
Freshness error hierarchy for clear classification in logs and API responses.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Optional


class FreshnessError(Exception):
    """Base class for all freshness subsystem errors."""

    def __init__(
        self,
        message: str,
        *,
        owner_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        phase: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.owner_id = owner_id
        self.entity_id = entity_id
        self.phase = phase
        self.details = details or {}

    def as_dict(self) -> Dict[str, Any]:
        """Serializable representation for logs/API."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "owner_id": self.owner_id,
            "entity_id": self.entity_id,
            "phase": self.phase,
            "details": self.details,
        }


class TransientUpstreamError(FreshnessError):
    """Third-party hiccup. Retried on the next natural tick, never immediately."""

    def __init__(
        self,
        message: str,
        *,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.source = source
        self.status_code = status_code
        if source is not None:
            self.details["source"] = source
        if status_code is not None:
            self.details["status_code"] = status_code


class UpstreamUnavailableError(TransientUpstreamError):
    """The aggregation entry point could not reach the upstream provider at all."""


class RateLimitedError(FreshnessError):
    """Caller must wait ``retry_after_seconds`` before trying again."""

    def __init__(self, message: Optional[str] = None, *, retry_after_seconds: float, **kwargs) -> None:
        self.retry_after_seconds = max(int(math.ceil(retry_after_seconds)), 0)
        super().__init__(message or f"Please wait {self.retry_after_seconds} seconds", **kwargs)
        self.details["retry_after_seconds"] = self.retry_after_seconds

    @property
    def wait_message(self) -> str:
        seconds = self.retry_after_seconds
        if seconds >= 60:
            minutes = int(math.ceil(seconds / 60))
            return f"Please wait {minutes} minute(s) before trying again"
        return f"Please wait {seconds} second(s) before trying again"


class SyncInProgressError(RateLimitedError):
    """A sync session is already running in this process."""


class AuthExpiredError(FreshnessError):
    """The owner's credential to an external source has lapsed and must be reconnected."""

    def __init__(self, message: str, *, account_id: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.account_id = account_id
        if account_id is not None:
            self.details["account_id"] = account_id


class ClientTimeoutError(FreshnessError):
    """The client stopped waiting. The remote job may still complete."""

    def __init__(self, message: str, *, timeout_seconds: Optional[float] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds
        if timeout_seconds is not None:
            self.details["timeout_seconds"] = timeout_seconds


class MalformedDataError(FreshnessError):
    """Cache or response data that does not parse."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        expected: Optional[Any] = None,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.field = field
        self.expected = expected
        if field is not None:
            self.details["field"] = field
        if expected is not None:
            self.details["expected"] = expected


class NotFoundError(FreshnessError):
    """Requested trip or reservation does not exist for this owner."""


class ConfigError(FreshnessError):
    """Raised on missing/invalid configuration values."""

    def __init__(
        self,
        message: str,
        *,
        key: Optional[str] = None,
        section: Optional[str] = None,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.key = key
        self.section = section
        if key is not None:
            self.details["key"] = key
        if section is not None:
            self.details["section"] = section


__all__ = [
    "FreshnessError",
    "TransientUpstreamError",
    "UpstreamUnavailableError",
    "RateLimitedError",
    "SyncInProgressError",
    "AuthExpiredError",
    "ClientTimeoutError",
    "MalformedDataError",
    "NotFoundError",
    "ConfigError",
]
