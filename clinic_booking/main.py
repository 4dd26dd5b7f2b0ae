# clinic_booking/main.py
from __future__ import annotations

# Load .env early so settings and os.getenv agree
from dotenv import load_dotenv
load_dotenv()

from contextlib import asynccontextmanager

import sqlalchemy as sa
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.config import settings
from clinic_booking.core.errors import BookingError
from clinic_booking.core.logging import LoggingMiddleware, get_logger, setup_logging
from clinic_booking.db.base import init_db
from clinic_booking.db.session import get_session
from clinic_booking.services.query_cache import build_query_cache

# Routers
from clinic_booking.api.routes.appointments import router as appointments_router
from clinic_booking.api.routes.availability import router as availability_router
from clinic_booking.api.routes.patients import router as patients_router
from clinic_booking.api.routes.schedule import router as schedule_router

setup_logging(debug=settings.is_development, max_log_length=settings.MAX_LOG_LENGTH, level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.is_development:
        # Local runs skip alembic
        await init_db()
    app.state.query_cache = build_query_cache(settings)
    logger.info("app_started", env=settings.APP_ENV)
    yield
    redis_client = app.state.query_cache.redis
    if redis_client is not None:
        await redis_client.aclose()


app = FastAPI(
    title="Clinic Booking",
    description="Appointment availability, booking and patient identity for dental clinics",
    lifespan=lifespan,
)

app.middleware("http")(LoggingMiddleware(
    log_requests=settings.LOG_REQUESTS,
    log_responses=settings.LOG_RESPONSES,
    slow_threshold=settings.SLOW_REQUEST_THRESHOLD,
))


# -------- Error translation (single place) --------
@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error("booking_error", error=exc.message, error_type=type(exc).__name__,
                     path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# -------- Health / readiness (public) --------
@app.get("/healthz", include_in_schema=False)
async def healthz():
    return {"ok": True}

@app.get("/readyz", include_in_schema=False)
async def readyz(db: AsyncSession = Depends(get_session)):
    await db.execute(sa.text("SELECT 1"))
    return {"db": "ok"}


app.include_router(availability_router)
app.include_router(appointments_router)
app.include_router(schedule_router)
app.include_router(patients_router)
