"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from tcbf.config import settings
from tcbf.db.engine import engine
from tcbf.db.models import Base

from tcbf.api.debug import router as debug_router
from tcbf.api.entries import router as entries_router
from tcbf.api.expiry import router as expiry_router

from tcbf.utils.logger import setup_logger
setup_logger(log_format=settings.LOG_FORMAT, log_level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL)
logger = logging.getLogger("tcbf.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.is_sqlite:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    # else: for PostgreSQL, run `alembic upgrade head` before starting the server

    from tcbf.runtime.scheduler import expiry_scheduler
    if settings.ENTRY_EXPIRY_SCHEDULER_ENABLED:
        expiry_scheduler.start()
    else:
        logger.info("Entry expiry scheduler disabled (ENTRY_EXPIRY_SCHEDULER_ENABLED=false)")

    logger.info("Application lifespan startup complete, entering serve loop")
    try:
        yield
    finally:
        if settings.ENTRY_EXPIRY_SCHEDULER_ENABLED:
            expiry_scheduler.stop()
        await engine.dispose()


app = FastAPI(
    title="TC Booking Flow",
    description="Booking entry lifecycle and abandoned-cart expiry",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(entries_router, prefix="/api/entries", tags=["entries"])
app.include_router(expiry_router, prefix="/api/expiry", tags=["expiry"])
app.include_router(debug_router, prefix="/api/debug", tags=["debug"])


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/metrics", response_class=PlainTextResponse)
async def prometheus_metrics():
    from tcbf.utils.metrics import to_prometheus_text
    return to_prometheus_text()


from tcbf.utils.tracing import setup_telemetry
setup_telemetry(
    app,
    otlp_endpoint=settings.OTLP_ENDPOINT,
    otlp_logs_endpoint=settings.OTLP_LOGS_ENDPOINT,
    environment=settings.ENVIRONMENT,
)
