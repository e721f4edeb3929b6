"""
FastAPI Application — entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trendlog.config import settings
from trendlog.database import close_db, init_db
from trendlog.errors import TrendlogError
from trendlog.routes import router
from trendlog.services.registry import build_services

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hook."""
    logger.info("🚀 Starting T3000 Trendlog Store v%s", VERSION)
    await init_db()
    logger.info("✅ Databases ready (app + time-series)")

    services = build_services(settings=settings)
    app.state.services = services

    if settings.scheduler_enabled:
        services.scheduler.start()
    else:
        logger.info("ℹ️ Trendlog scheduler disabled")

    yield

    # Shutdown
    await services.scheduler.stop()
    await close_db()
    logger.info("👋 Shutdown complete")


app = FastAPI(
    title="T3000 Trendlog Store",
    description="Partitioned trend-log ingestion, query and retention for T3000 controllers.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TrendlogError)
async def trendlog_error_handler(request: Request, exc: TrendlogError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "T3000 Trendlog Store",
        "version": VERSION,
        "docs": "/docs",
    }
