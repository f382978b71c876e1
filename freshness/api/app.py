import logging
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from freshness import __version__
from freshness.aggregation.service import AggregationService
from freshness.api.routes import limiter, register_error_handlers, router
from freshness.api.settings import get_api_settings
from freshness.core.config import Config
from freshness.core.observability.logger import setup_structured_logging

logger = logging.getLogger(__name__)


def build_aggregation_service() -> AggregationService:
    """Production wiring: MongoDB reservations, the HTTP status relay and change notifications."""
    from freshness.aggregation.providers import HttpFlightStatusProvider
    from freshness.core.db import get_db
    from freshness.core.repository import MongoNotificationStore, MongoReservationStore
    from freshness.notifications import ChangeNotifier, ExpoPushClient
    from freshness.refresh.cooldown import OwnerCooldown

    settings = get_api_settings()
    provider = HttpFlightStatusProvider(
        settings.require_provider(),
        settings.status_provider_api_key,
        timeout=float(Config.get("aggregation", "lookup_timeout_seconds", default=15)),
    )
    push = None
    if settings.push_enabled:
        push = ExpoPushClient(
            settings.push_api_url,
            access_token=settings.push_access_token,
            timeout=float(Config.get("notifications", "push_timeout_seconds", default=10)),
        )
    db = get_db()
    return AggregationService(
        MongoReservationStore(db),
        provider,
        cooldown=OwnerCooldown(settings.aggregation_cooldown_seconds),
        notifier=ChangeNotifier(MongoNotificationStore(db), push),
    )


async def close_aggregation_service(service: AggregationService) -> None:
    from freshness.core.db import close_client

    await service.provider.close()
    if service.notifier is not None:
        await service.notifier.close()
    await close_client()


def create_app(
    service: Optional[AggregationService] = None,
    *,
    run_scheduler: bool = False,
) -> FastAPI:
    app = FastAPI(
        title="Itinerary Freshness API",
        description="Per-owner flight status aggregation for watched reservations",
        version=__version__,
    )
    app.state.limiter = limiter
    app.state.aggregation_service = service
    app.state.scheduler = None
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_error_handlers(app)

    @app.on_event("startup")
    async def startup_event():
        if app.state.aggregation_service is None:
            from freshness.core.db import init_indexes

            try:
                await init_indexes()
            except Exception as exc:
                logger.error("Index initialization failed: %s", exc)
            app.state.aggregation_service = build_aggregation_service()

        if run_scheduler:
            from freshness.jobs.fanout import FlightStatusFanOut
            from freshness.scheduler.scheduler import start_scheduler

            service = app.state.aggregation_service
            app.state.scheduler = start_scheduler(FlightStatusFanOut(service.store, service))

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.scheduler is not None:
            from freshness.scheduler.scheduler import stop_scheduler

            stop_scheduler(app.state.scheduler)
        service = app.state.aggregation_service
        if service is not None:
            await close_aggregation_service(service)

    allowed = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:8081").split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


def get_app() -> FastAPI:
    """Entry point for ``uvicorn --factory freshness.api.app:get_app``."""
    load_dotenv()
    setup_structured_logging(Config.get("logging", "level", default="INFO"))
    return create_app(run_scheduler=os.getenv("RUN_FANOUT_SCHEDULER", "false").lower() == "true")
