#!/usr/bin/env python3
"""
Floor Monitor FastAPI Server

Endpoints:
- /health                                                  : database health
- /api/machines/{id}/production/current-shift              : server shift summary
- /api/machines/{id}/production/popups                     : active popups
- /api/machines/{id}/production/popups/{popup_id}/acknowledge
- /api/machines/{id}/production/increment                  : count products
- /api/machines/{id}/production/reset                      : reset today's counter
- /api/users/{user_id}/alert-channels                      : channel preferences
- /docs                                                    : Swagger UI
"""

import uuid
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from core.exceptions import BusinessRuleViolation, FloorMonitorError, ResourceNotFound
from database import check_database_health, get_db, init_database, shutdown_database
from db.notification_store import SqlNotificationStore
from db.production_store import SqlCounterStore, SqlMachineStore, SqlThresholdStore
from logger import RequestContextMiddleware, configure_logging, get_logger
from schemas.notification import AlertChannelPreference, ChannelPreferenceUpdate
from schemas.production import AcknowledgeRequest, IncrementRequest, ProductionPopup, ShiftSummary
from services.channel_senders import build_senders
from services.notification_dispatcher import NotificationDispatcher
from services.production_counter_service import ProductionCounterService
from services.production_summary_service import ProductionSummaryService
from services.shift_clock import ShiftClock
from services.threshold_evaluator import ThresholdEvaluator

settings = get_settings()
configure_logging(environment=settings.environment, log_level=settings.log.level,
                  json_format=settings.log.format == "json")
logger = get_logger(__name__)


class AppState:
    http_client: httpx.AsyncClient | None = None


state = AppState()


# =============================================================================
# LIFESPAN (Startup/Shutdown)
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup, cleanup on shutdown."""
    logger.info("Floor Monitor API starting", environment=settings.environment)
    await init_database()
    state.http_client = httpx.AsyncClient(timeout=settings.notification.send_timeout_seconds)

    yield

    logger.info("Floor Monitor API shutting down")
    await state.http_client.aclose()
    state.http_client = None
    await shutdown_database()


app = FastAPI(
    title="Floor Monitor API",
    description="Production accounting and threshold alerting for the industrial floor dashboard.",
    version=settings.app_version,
    lifespan=lifespan,
)


# =============================================================================
# GLOBAL EXCEPTION HANDLERS
# =============================================================================
@app.exception_handler(ResourceNotFound)
async def not_found_handler(request: Request, exc: ResourceNotFound):
    return JSONResponse(status_code=404, content=exc.to_dict())


@app.exception_handler(BusinessRuleViolation)
async def conflict_handler(request: Request, exc: BusinessRuleViolation):
    return JSONResponse(status_code=409, content=exc.to_dict())


@app.exception_handler(FloorMonitorError)
async def domain_error_handler(request: Request, exc: FloorMonitorError):
    logger.warning("Unhandled domain error", error_type=type(exc).__name__, error=exc.message)
    return JSONResponse(status_code=422, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log the trace, return a reference id without internals."""
    error_id = str(uuid.uuid4())
    logger.exception("Unhandled error", error_id=error_id, path=request.url.path, method=request.method)
    return JSONResponse(
        status_code=500,
        content={"detail": f"An internal error occurred. Reference ID: {error_id}"},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestContextMiddleware)


# =============================================================================
# SERVICE DEPENDENCIES
# =============================================================================
def get_clock() -> ShiftClock:
    return ShiftClock.from_settings(settings.production)


def get_dispatcher(db: AsyncSession = Depends(get_db)) -> NotificationDispatcher:
    return NotificationDispatcher(
        SqlNotificationStore(db),
        build_senders(settings.notification, state.http_client),
        duplicate_check_timeout=settings.production.duplicate_check_timeout_seconds,
        send_timeout=settings.notification.send_timeout_seconds,
    )


def get_counter_service(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ProductionCounterService:
    evaluator = ThresholdEvaluator(SqlThresholdStore(db), dispatcher)
    return ProductionCounterService(SqlCounterStore(db), SqlMachineStore(db), evaluator)


def get_summary_service(
    db: AsyncSession = Depends(get_db),
    clock: ShiftClock = Depends(get_clock),
) -> ProductionSummaryService:
    return ProductionSummaryService(SqlMachineStore(db), clock)


# =============================================================================
# REST ENDPOINTS
# =============================================================================
@app.get("/health", tags=["System"])
async def health_check():
    health = await check_database_health()
    status_code = 200 if health["status"] == "healthy" else 503
    return JSONResponse(content=health, status_code=status_code)


@app.get("/api/machines/{machine_id}/production/current-shift", response_model=ShiftSummary, tags=["Production"])
async def current_shift(
    machine_id: int,
    summaries: ProductionSummaryService = Depends(get_summary_service),
):
    return await summaries.current_shift(machine_id)


@app.get("/api/machines/{machine_id}/production/popups", response_model=list[ProductionPopup], tags=["Production"])
async def list_popups(machine_id: int, counters: ProductionCounterService = Depends(get_counter_service)):
    return await counters.check_production_popups(machine_id)


@app.post(
    "/api/machines/{machine_id}/production/popups/{popup_id}/acknowledge",
    response_model=ProductionPopup,
    tags=["Production"],
)
async def acknowledge_popup(
    machine_id: int,
    popup_id: int,
    body: AcknowledgeRequest,
    counters: ProductionCounterService = Depends(get_counter_service),
):
    return await counters.acknowledge_popup(machine_id, popup_id, body.acknowledged_by)


@app.post("/api/machines/{machine_id}/production/increment", tags=["Production"])
async def increment_count(
    machine_id: int,
    body: IncrementRequest,
    counters: ProductionCounterService = Depends(get_counter_service),
):
    counter, result = await counters.increment_product_count(machine_id, body.quantity)
    return {
        "machine_id": machine_id,
        "day": counter.day.isoformat(),
        "count": counter.count,
        "popup": result.popup.value,
        "alert": result.alert.value,
        "popup_id": result.popup_id,
        "alert_id": result.alert_id,
    }


@app.post("/api/machines/{machine_id}/production/reset", tags=["Production"])
async def reset_count(machine_id: int, counters: ProductionCounterService = Depends(get_counter_service)):
    counter = await counters.reset_production_counter(machine_id)
    return {"machine_id": machine_id, "day": counter.day.isoformat(), "count": counter.count}


@app.get("/api/users/{user_id}/alert-channels", response_model=AlertChannelPreference, tags=["Notifications"])
async def get_alert_channels(user_id: int, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    return await dispatcher.ensure_channel_preference(user_id)


@app.put("/api/users/{user_id}/alert-channels", response_model=AlertChannelPreference, tags=["Notifications"])
async def update_alert_channels(
    user_id: int,
    body: ChannelPreferenceUpdate,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return await dispatcher.update_channel_preference(user_id, body)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api_server:app", host="0.0.0.0", port=8000)
