import asyncio
import logging
import os

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as SA_TimeoutError
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models  # noqa: F401  registers every table on Base.metadata
from .api import (
    api_applications,
    api_bookings,
    api_contracts,
    api_negotiations,
    api_ops,
    api_opportunities,
    api_payment,
    api_users,
)
from .core.config import settings
from .core.observability import setup_logging
from .database import Base, SessionLocal, engine
from .services.ops_scheduler import run_maintenance
from .utils.errors import (
    BookingFlowError,
    ConcurrencyError,
    ConflictError,
    EscrowIntegrityError,
)
from .utils.notifications import alert_scheduler_failure
from .utils.status_logger import register_status_listeners

setup_logging()
register_status_listeners()
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="GigFlow API", default_response_class=ORJSONResponse)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.rstrip("/") for o in settings.CORS_ORIGINS],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
logger.info("CORS origins set to: %s", settings.CORS_ORIGINS)


@app.middleware("http")
async def catch_exceptions(request: Request, call_next):
    """Return JSON responses for unexpected errors and log them."""
    try:
        response = await call_next(request)
    except StarletteHTTPException as exc:  # return the original status and detail
        logger.error("HTTP error %s at %s: %s", exc.status_code, request.url.path, exc.detail)
        response = ORJSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    except SA_TimeoutError as exc:  # DB pool timeout -> 503 to reduce retry storms
        logger.error("DB timeout at %s: %s", request.url.path, str(exc))
        response = ORJSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Database busy, please retry"},
        )
    except Exception as exc:  # pragma: no cover - generic handler
        logger.exception("Unhandled error: %s", exc)
        response = ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal Server Error"},
        )
    return response


def _flow_error_response(exc: BookingFlowError) -> ORJSONResponse:
    return ORJSONResponse(status_code=exc.http_status, content={"detail": exc.to_detail()})


@app.exception_handler(BookingFlowError)
async def booking_flow_exception_handler(request: Request, exc: BookingFlowError):
    if isinstance(exc, EscrowIntegrityError):
        logger.error("Escrow integrity failure at %s: %s %s", request.url.path, exc.message, exc.field_errors)
    else:
        logger.warning("%s at %s: %s %s", exc.code, request.url.path, exc.message, exc.field_errors)
    return _flow_error_response(exc)


@app.exception_handler(StaleDataError)
async def stale_data_exception_handler(request: Request, exc: StaleDataError):
    # version counter mismatch: someone else committed first
    logger.info("Concurrent modification at %s: %s", request.url.path, exc)
    return _flow_error_response(ConcurrencyError("Record was modified concurrently; reload and retry"))


@app.exception_handler(IntegrityError)
async def integrity_exception_handler(request: Request, exc: IntegrityError):
    logger.warning("Integrity error at %s: %s", request.url.path, exc.orig)
    return _flow_error_response(ConflictError("Conflicting record already exists"))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return validation errors in the same envelope as other 422s."""
    errors = exc.errors()
    logger.warning("Validation error at %s: %s", request.url.path, errors)
    field_errors = {".".join(str(p) for p in err.get("loc", ()) if p != "body"): err.get("msg", "") for err in errors}
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": {
                "message": "Invalid request",
                "code": "validation_error",
                "field_errors": field_errors,
            }
        },
    )


api_prefix = settings.API_V1_STR  # usually something like "/api/v1"

app.include_router(api_users.router, prefix=api_prefix)
app.include_router(api_opportunities.router, prefix=api_prefix)
app.include_router(api_applications.router, prefix=api_prefix)
app.include_router(api_negotiations.router, prefix=api_prefix)
app.include_router(api_contracts.router, prefix=api_prefix)
app.include_router(api_bookings.router, prefix=api_prefix)
app.include_router(api_payment.router, prefix=api_prefix)
app.include_router(api_ops.router, prefix=api_prefix)


def _db_ping_sync() -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


@app.get("/healthz", tags=["health"])
async def healthz():
    try:
        await asyncio.to_thread(_db_ping_sync)
    except OperationalError as exc:
        logger.warning("Health check DB ping failed: %s", exc)
        return ORJSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "degraded", "db": "unreachable"},
        )
    return {"status": "ok", "db": "ok"}


# Warn if the payment gateway URL is not configured
@app.on_event("startup")
def check_payment_gateway_url() -> None:
    """Log a warning when PAYMENT_GATEWAY_URL uses the default placeholder."""
    if settings.PAYMENT_GATEWAY_URL == "https://example.com":
        logger.warning(
            "PAYMENT_GATEWAY_URL is set to the default placeholder; update .env to your gateway URL"
        )


def _run_maintenance_once() -> dict:
    with SessionLocal() as db:
        return run_maintenance(db)


async def ops_maintenance_loop() -> None:
    """Periodic sweeps: expiries, overdue payments, event start, completion window, outbox."""
    while True:
        await asyncio.sleep(settings.MAINTENANCE_INTERVAL_SECONDS)
        # Retry with backoff on transient DB failures
        delay = 5
        max_retries = 5
        for attempt in range(max_retries):
            try:
                summary = await asyncio.to_thread(_run_maintenance_once)
                logger.info("Maintenance summary: %s", summary)
                break
            except OperationalError as exc:  # pragma: no cover - transient DB outage
                alert_scheduler_failure(exc)
                if attempt < max_retries - 1:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, 60)
                    continue
                else:
                    # Give up for this cycle; try again next tick
                    break
            except Exception as exc:  # pragma: no cover - continue running
                alert_scheduler_failure(exc)
                break


@app.on_event("startup")
async def start_background_tasks() -> None:
    """Launch the maintenance loop unless disabled (tests, external cron)."""
    if os.getenv("PYTEST_RUN") == "1" or not settings.ENABLE_MAINTENANCE_LOOP:
        logger.info("Maintenance loop disabled")
        return
    asyncio.create_task(ops_maintenance_loop())


@app.get("/")
async def root():
    return {"message": "GigFlow booking API"}
