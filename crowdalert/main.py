"""
FastAPI application entry point.

Run with:
    uvicorn crowdalert.main:app --reload --port 8000
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from crowdalert.core.config import settings
from crowdalert.core.logging_config import setup_logging
from crowdalert.core.errors import register_error_handlers
from crowdalert.core.middleware import RequestLoggingMiddleware
from crowdalert.core.health import HealthStatus, run_health_check
from crowdalert.core.cache import close_redis
from crowdalert.core.database import close_db, get_session_factory

# ── Pipeline ──
from crowdalert.alerts.channels.sms_gateway import build_messenger
from crowdalert.alerts.directory import SqlUserDirectory
from crowdalert.alerts.orchestrator import build_orchestrator

# ── API routers ──
from crowdalert.api.v1.reports import router as reports_router

# ── Initialise logging ──
setup_logging()
logger = logging.getLogger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared clients and the orchestrator; close them on shutdown."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    http_client = httpx.AsyncClient(follow_redirects=True)
    messenger = build_messenger()
    directory = SqlUserDirectory(get_session_factory())
    app.state.orchestrator = build_orchestrator(http_client, messenger, directory)
    try:
        yield
    finally:
        logger.info("Shutting down %s", settings.APP_NAME)
        await messenger.close()
        await http_client.aclose()
        await close_redis()
        await close_db()


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Crowd-sourced disaster alerting. "
        "Verifies user-submitted disaster reports against their photo or "
        "video evidence, finds registered users within the alert radius "
        "by postal code, and sends them an SMS alert."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (order matters — outermost first) ──

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
app.include_router(reports_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "report-verification",
            "audience-selection",
            "alert-dispatch",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Deep health probe — checks all subsystems."""
    report = await run_health_check()
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness():
    """Kubernetes readiness probe — can we serve traffic?"""
    report = await run_health_check()
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
