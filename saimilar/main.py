"""Main FastAPI application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from saimilar import __version__
from saimilar.api import api_router
from saimilar.api.sessions import orchestrators
from saimilar.config import get_settings
from saimilar.constants import SESSION_COOKIE_NAME, SESSION_TIMEOUT_DAYS
from saimilar.db import async_session_maker, init_db
from saimilar.services.errors import AuthRequiredError, OverlayStoreError
from saimilar.utils.cache import cache
from saimilar.utils.http_client import close_all_clients
from saimilar.utils.logging import get_logger, setup_logging

settings = get_settings()
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    await init_db()
    logger.info("Database initialized")

    if await cache.connect():
        logger.info("Redis cache connected")
    else:
        logger.warning("Redis cache unavailable - running without caching")

    yield

    # Cancel in-flight model comparison runs before the clients go away
    await orchestrators.aclose()
    logger.info("Chat sessions closed")

    await cache.close()
    logger.info("Redis cache closed")

    await close_all_clients()
    logger.info("HTTP clients closed")

    logger.info("Application shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=__version__,
    lifespan=lifespan,
)

# CORS for the browser UI; preflight OPTIONS requests are answered by the middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.add_middleware(
    SessionMiddleware,
    secret_key=settings.app_secret_key,
    session_cookie=SESSION_COOKIE_NAME,
    max_age=60 * 60 * 24 * SESSION_TIMEOUT_DAYS,
    same_site="lax",
    https_only=settings.is_production,
)

app.include_router(api_router)


@app.exception_handler(AuthRequiredError)
async def auth_required_handler(request: Request, exc: AuthRequiredError) -> JSONResponse:
    return JSONResponse(status_code=401, content={"detail": str(exc)})


@app.exception_handler(OverlayStoreError)
async def overlay_store_handler(request: Request, exc: OverlayStoreError) -> JSONResponse:
    logger.error(f"Library update failed: {exc}")
    return JSONResponse(
        status_code=502,
        content={"detail": str(exc), "failed": [operation for operation, _ in exc.failures]},
    )


# Store app start time for uptime tracking
_app_start_time = datetime.now(UTC)


@app.get("/health", include_in_schema=True, tags=["monitoring"])
async def health_check() -> JSONResponse:
    """Health check endpoint for monitoring and load balancers.

    Returns:
        JSONResponse with status, uptime, and service health checks.
    """
    from sqlalchemy import text

    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "uptime_seconds": (datetime.now(UTC) - _app_start_time).total_seconds(),
        "version": __version__,
        "checks": {},
    }

    try:
        async with async_session_maker() as db:
            await db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = {"status": "healthy"}
    except Exception:
        health_status["checks"]["database"] = {"status": "unhealthy"}
        health_status["status"] = "degraded"

    # Redis is optional; without it the app only loses caching
    try:
        redis_ok = cache.connected and await cache.ping()
    except Exception:
        redis_ok = False
    health_status["checks"]["redis"] = {"status": "healthy" if redis_ok else "unavailable"}
    health_status["checks"]["chat_sessions"] = {"active": len(orchestrators)}

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JSONResponse(content=health_status, status_code=status_code)
