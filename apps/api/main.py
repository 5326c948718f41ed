"""
What If Generator - Sharing & Moderation API
Main application entry point with health check and API routing.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from config import settings, validate_security_settings
from database import Base, async_session_maker, engine
import models  # noqa: F401
from routers import health, reporting, sharing
from services.share_store import reap_expired_shares

logger = logging.getLogger(__name__)


async def _periodic_share_reaper() -> None:
    interval_minutes = max(int(settings.SHARE_REAPER_INTERVAL_MINUTES), 0)
    if interval_minutes <= 0:
        return
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            async with async_session_maker() as db:
                reaped = await reap_expired_shares(db)
            if reaped:
                print(f"🧹 Share reaper: deactivated={reaped}")
        except SQLAlchemyError as exc:
            print(f"⚠️ Share reaper tick failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting What If Sharing API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except SQLAlchemyError as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        async with async_session_maker() as db:
            reaped = await reap_expired_shares(db)
        if reaped:
            print(f"♻️ Deactivated {reaped} expired shares after startup.")
    except SQLAlchemyError as exc:
        print(f"⚠️ Startup share reap skipped: {exc}")
    reaper_task = None
    if int(settings.SHARE_REAPER_INTERVAL_MINUTES) > 0:
        reaper_task = asyncio.create_task(_periodic_share_reaper())
        print(
            "📅 Share reaper loop enabled "
            f"(every {int(settings.SHARE_REAPER_INTERVAL_MINUTES)} min)."
        )
    yield
    # Shutdown
    if reaper_task is not None:
        reaper_task.cancel()
        try:
            await reaper_task
        except asyncio.CancelledError:
            pass
    print("👋 Shutting down API...")


app = FastAPI(
    title="What If Sharing API",
    description="Share generated scenarios publicly and moderate reported content",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    location = errors[0].get("loc", ()) if errors else ()
    field = str(location[-1]) if location else None
    logger.info("Rejected %s %s: %s", request.method, request.url.path, errors)
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "code": "validation_error",
                "message": "Validation failed",
                "field": field,
                "errors": [
                    {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
                    for error in errors
                ],
            }
        },
    )


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(sharing.router, prefix="/sharing", tags=["Sharing"])
app.include_router(reporting.router, prefix="/reporting", tags=["Reporting"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "What If Sharing API",
        "version": "0.1.0",
        "status": "running"
    }
