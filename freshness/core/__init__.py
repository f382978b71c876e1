"""Core infrastructure shared by the client and server halves."""

from .errors import (
    AuthExpiredError,
    ClientTimeoutError,
    FreshnessError,
    MalformedDataError,
    RateLimitedError,
    SyncInProgressError,
    TransientUpstreamError,
    UpstreamUnavailableError,
)

__all__ = [
    "AuthExpiredError",
    "ClientTimeoutError",
    "FreshnessError",
    "MalformedDataError",
    "RateLimitedError",
    "SyncInProgressError",
    "TransientUpstreamError",
    "UpstreamUnavailableError",
]
