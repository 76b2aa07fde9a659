"""
FastAPI application entry point.

Run with:
    uvicorn weather_compare.app.main:app --reload --port 8000
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from fastapi.middleware.cors import CORSMiddleware

# ── Core infrastructure ──
from weather_compare.app.core.config import settings
from weather_compare.app.core.logging_config import setup_logging, get_logger
from weather_compare.app.core.errors import register_error_handlers
from weather_compare.app.core.middleware import RequestLoggingMiddleware
from weather_compare.app.core.health import HealthStatus, run_health_check

# ── API routers ──
from weather_compare.app.api.v1.climate import (
    get_acquisition_service,
    router as climate_router,
    shutdown_acquisition_service,
)

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def _resolve_service(app: FastAPI):
    provider = app.dependency_overrides.get(get_acquisition_service, get_acquisition_service)
    return provider()


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Sweep stale cache entries on startup; stop the throttle and HTTP client on shutdown."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    service = _resolve_service(app)
    swept = service.cache.clear_expired()
    if swept:
        logger.info("Removed %d expired cache entries at startup", swept)
    yield
    await shutdown_acquisition_service()
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Ten-year weather comparisons for a point: yearly, monthly and "
        "seasonal statistics, rain-day percentiles, streak-based extreme "
        "events and linear trends, computed from the Open-Meteo archive "
        "behind a quota-aware request throttle and a temporal cache."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(climate_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/docs",
    }


async def _health_report():
    service = _resolve_service(app)
    return await run_health_check(service.cache, service.throttle)


@app.get("/health", tags=["health"])
async def health_check():
    """Deep health probe: cache store, throttle, archive configuration."""
    report = await _health_report()
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Liveness probe: is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness():
    """Readiness probe: can we serve traffic?"""
    report = await _health_report()
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
