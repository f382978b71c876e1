"""Server-side aggregation entry point and its upstream provider boundary."""

from .providers import FlightStatusProvider, HttpFlightStatusProvider
from .service import AggregationResult, AggregationScope, AggregationService, FlightValidation, ScopeMode

__all__ = [
    "FlightStatusProvider",
    "HttpFlightStatusProvider",
    "AggregationResult",
    "AggregationScope",
    "AggregationService",
    "FlightValidation",
    "ScopeMode",
]
