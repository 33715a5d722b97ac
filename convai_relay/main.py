"""Main FastAPI application - ConvAI relay server"""

import logging
import time
import warnings

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import JSONResponse

from convai_relay import models  # noqa: F401
from convai_relay.api import analytics, auth, chat, feedback, session, widget_configs
from convai_relay.config import get_settings
from convai_relay.database import AsyncSessionLocal, close_db, init_db
from convai_relay.services.elevenlabs import close_shared_client

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "convai-relay"
VERSION = "0.1.0"

# Initialize Sentry if DSN is provided
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        release=VERSION,
        integrations=[FastApiIntegration()],
    )
    logger.info("Sentry initialized for environment: %s", settings.SENTRY_ENVIRONMENT)
else:
    logger.info("Sentry disabled (no DSN configured)")

# Route templates only; never raw paths with ids.
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)

app = FastAPI(
    title="ConvAI Relay API",
    description="Real-time relay between chat widgets and a hosted conversational AI agent",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Catch-all for unhandled exceptions: log, report to Sentry, clean 500."""
    logger.exception("Unhandled exception: %s %s", request.method, request.url)
    if settings.SENTRY_DSN:
        import sentry_sdk
        sentry_sdk.capture_exception(exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


@app.on_event("startup")
async def validate_secrets():
    if settings.SECRET_KEY in ("change-me-in-production", "test-secret-key"):
        warnings.warn(
            "SECURITY WARNING: SECRET_KEY is using a default/weak value! Generate a secure key for production.",
            stacklevel=2,
        )
    if settings.RATE_LIMIT_STORAGE.lower() != "redis":
        logger.info("Signed URL rate limiter is process-local; run a single worker or set RATE_LIMIT_STORAGE=redis")


@app.on_event("startup")
async def startup_event():
    logger.info("Starting ConvAI relay...")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[-1]}")  # Hide credentials in logs

    # Development convenience; production schemas come from Alembic
    try:
        await init_db()
    except SQLAlchemyError as exc:
        logger.warning("create_all failed (harmless if tables exist): %s", exc)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down ConvAI relay...")
    await close_shared_client()
    await close_db()


@app.middleware("http")
async def prometheus_http_middleware(request, call_next):
    """Record request metrics with low-cardinality path templates."""
    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = getattr(response, "status_code", 500) or 500
        return response
    finally:
        route = request.scope.get("route")
        path = getattr(route, "path", None) or "unmatched"
        if path not in {"/api/metrics", "/metrics"}:
            HTTP_REQUESTS_TOTAL.labels(
                method=request.method,
                path=path,
                status_code=str(status_code),
            ).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(
                method=request.method,
                path=path,
            ).observe(time.perf_counter() - start)


@app.get("/health")
async def health_check():
    """Health check endpoint - verifies DB connectivity."""
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        return {"status": "healthy", "service": SERVICE_NAME, "version": VERSION}
    except SQLAlchemyError as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "service": SERVICE_NAME, "error": str(e)}
        )


@app.get("/api/health")
async def health_check_api():
    """Health check endpoint (API namespace, for reverse proxies)."""
    return await health_check()


@app.get("/api/metrics")
async def prometheus_metrics():
    """
    Prometheus scrape endpoint.

    Intended to be scraped from the same host; do not expose publicly.
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(session.router, prefix="/api")
app.include_router(chat.router, prefix="/api")
app.include_router(analytics.router, prefix="/api")
app.include_router(feedback.router, prefix="/api")
app.include_router(auth.router, prefix="/api")
app.include_router(widget_configs.router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "signed_url": "/api/get-signed-url",
            "chat": "/api/chat",
            "analytics": "/api/analytics/metrics",
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "convai_relay.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
