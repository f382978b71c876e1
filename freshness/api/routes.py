"""HTTP surface of the aggregation entry point."""

import logging

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from freshness.aggregation.service import AggregationScope, AggregationService
from freshness.api.schemas import (
    AggregateRequest,
    AggregateResponse,
    ErrorResponse,
    HealthResponse,
    ValidateRequest,
    ValidateResponse,
)
from freshness.api.settings import get_api_settings
from freshness.core.errors import (
    FreshnessError,
    NotFoundError,
    RateLimitedError,
    TransientUpstreamError,
)
from freshness.core.state import load_last_run

logger = logging.getLogger(__name__)

router = APIRouter(tags=["aggregation"])
limiter = Limiter(key_func=get_remote_address)


def get_aggregation_service(request: Request) -> AggregationService:
    service = getattr(request.app.state, "aggregation_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Aggregation service not initialised")
    return service


def require_service_access(request: Request, settings=Depends(get_api_settings)) -> None:
    if settings.admin_key_configured:
        api_key = request.headers.get("x-api-key")
        if api_key != settings.admin_api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")


def _error_response(status_code: int, exc: FreshnessError, headers=None) -> JSONResponse:
    body = ErrorResponse(
        error_type=exc.__class__.__name__,
        message=exc.message,
        retry_after_seconds=getattr(exc, "retry_after_seconds", None),
        details=exc.details,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


async def rate_limited_handler(request: Request, exc: RateLimitedError) -> JSONResponse:
    return _error_response(429, exc, headers={"Retry-After": str(exc.retry_after_seconds)})


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error_response(404, exc)


async def upstream_handler(request: Request, exc: TransientUpstreamError) -> JSONResponse:
    logger.warning("Upstream unavailable for %s: %s", request.url.path, exc)
    return _error_response(503, exc)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RateLimitedError, rate_limited_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(TransientUpstreamError, upstream_handler)


@router.post("/aggregate", response_model=AggregateResponse)
@limiter.limit(lambda: get_api_settings().aggregate_rate_limit)
async def aggregate(
    request: Request,
    payload: AggregateRequest,
    service: AggregationService = Depends(get_aggregation_service),
    _: None = Depends(require_service_access),
):
    try:
        scope = AggregationScope(payload.scope, trip_id=payload.trip_id, reservation_id=payload.reservation_id)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    result = await service.aggregate(payload.owner_id, scope)
    return result.to_dict()


@router.post("/validate", response_model=ValidateResponse)
@limiter.limit(lambda: get_api_settings().aggregate_rate_limit)
async def validate(
    request: Request,
    payload: ValidateRequest,
    service: AggregationService = Depends(get_aggregation_service),
    _: None = Depends(require_service_access),
):
    try:
        validation = await service.validate_flight(payload.flight_iata)
    except ValueError as exc:
        body = ValidateResponse(valid=False, flight_iata=payload.flight_iata, error=str(exc))
        return JSONResponse(status_code=400, content=body.model_dump())
    return validation.to_dict()


@router.get("/health", response_model=HealthResponse)
def health():
    return {"status": "ok", "last_fanout": load_last_run()}
