"""Client side of the freshness subsystem: poll scheduler, streams and HTTP transports."""

from .poller import PollState, RefreshResult, StatusPoller
from .streams import StatusStream, StatusUpdate
from .transport import AggregationClient, AggregationResponse, InboxScanClient, ScanSummary

__all__ = [
    "StatusPoller",
    "PollState",
    "RefreshResult",
    "StatusStream",
    "StatusUpdate",
    "AggregationClient",
    "AggregationResponse",
    "InboxScanClient",
    "ScanSummary",
]
