from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from freshness.aggregation.service import ScopeMode


class AggregateRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)
    scope: ScopeMode = ScopeMode.TRIP
    trip_id: Optional[str] = None
    reservation_id: Optional[str] = None


class AggregateResponse(BaseModel):
    owner_id: str
    checked_at: datetime
    per_entity: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    changes: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    errors: Dict[str, str] = Field(default_factory=dict)
    has_more: bool = False
    upstream_calls: int = 0
    notifications: int = 0


class ValidateRequest(BaseModel):
    flight_iata: str = Field(..., min_length=1)


class ValidateResponse(BaseModel):
    valid: bool
    flight_iata: str
    error: Optional[str] = None
    status: Optional[str] = None
    dep_gate: Optional[str] = None
    dep_terminal: Optional[str] = None
    arr_gate: Optional[str] = None
    arr_terminal: Optional[str] = None
    dep_delay: Optional[int] = None
    dep_estimated: Optional[str] = None
    arr_estimated: Optional[str] = None


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    retry_after_seconds: Optional[int] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str
    last_fanout: Optional[Dict[str, Any]] = None
