"""
RWA Investment Platform API — Application entry-point.

Initializes the FastAPI application, registers middleware, exception handlers,
routers, and manages the application lifecycle (DB table creation, minting
adapter and e-mail dispatcher construction on startup).
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from sqlalchemy import text
from sqlmodel import SQLModel

from investment_platform.api.v1.api import api_router
from investment_platform.core.config import settings
from investment_platform.core.exceptions import add_exception_handlers
from investment_platform.core.logging import setup_logging
from investment_platform.core.resilience import db_circuit_breaker
from investment_platform.db.session import AsyncSessionLocal, engine
from investment_platform.middleware import RequestIDMiddleware, RequestTimingMiddleware
from investment_platform.services.minting import build_minting_adapter
from investment_platform.services.notifications import build_notification_dispatcher

setup_logging()
logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────
# Application lifespan
# ────────────────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Manages startup / shutdown lifecycle events.

    Startup:
      - Creates tables, retrying with exponential back-off.  If the database
        stays unreachable the app starts in degraded mode (``/health``
        reports ``database: false``).
      - Builds the minting adapter and notification dispatcher once and puts
        them on ``app.state``; ``None`` when the feature is disabled.

    Shutdown:
      - Closes the minting adapter's HTTP client and disposes the pool.
    """
    import investment_platform.db.base  # noqa: F401  (populates SQLModel.metadata)

    max_retries = 5
    retry_delay = 2  # seconds (doubles each attempt)

    for attempt in range(1, max_retries + 1):
        try:
            logger.info("Connecting to database (attempt %d/%d)…", attempt, max_retries)
            async with engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
            logger.info("Database tables ready")
            break
        except Exception as exc:
            if attempt < max_retries:
                logger.warning(
                    "Database connection failed (attempt %d/%d): %s — retrying in %ds…",
                    attempt,
                    max_retries,
                    exc,
                    retry_delay,
                )
                await asyncio.sleep(retry_delay)
                retry_delay *= 2
            else:
                logger.error(
                    "Could not connect to database after %d attempts. "
                    "Starting in DEGRADED mode; database-dependent endpoints "
                    "will fail until it becomes available. Last error: %s",
                    max_retries,
                    exc,
                )

    app.state.minting_adapter = build_minting_adapter(settings)
    app.state.notifier = build_notification_dispatcher(settings)
    logger.info(
        "Minting %s (%s), e-mail %s",
        "enabled" if app.state.minting_adapter else "disabled",
        settings.BLOCKCHAIN_NETWORK,
        "enabled" if app.state.notifier else "disabled",
    )

    yield

    logger.info("Shutting down — closing clients and disposing connection pool")
    if app.state.minting_adapter is not None:
        await app.state.minting_adapter.aclose()
    await engine.dispose()


# ────────────────────────────────────────────────────────────────────────────
# FastAPI application instance
# ────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description=(
        "Admin API for confirming and cancelling investments into RWA bond "
        "opportunities: funding ledger, bond assets and on-chain minting."
    ),
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)


# ── Middleware (order matters: outermost = first to execute) ──
app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Global error handlers ──
add_exception_handlers(app)

# ── API routers ──
app.include_router(api_router, prefix=settings.API_V1_STR)


# ── Health check ──


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Liveness / readiness probe with database connectivity check.

    Runs ``SELECT 1`` so a pod that has lost its database stops receiving
    traffic, and reports the circuit breaker and which optional
    collaborators (minting, e-mail) are switched on.
    """
    db_healthy = True
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check: database unreachable", exc_info=True)
        db_healthy = False

    status = "ok" if db_healthy else "degraded"
    return {
        "status": status,
        "version": "1.0.0",
        "database": db_healthy,
        "circuit_breaker": db_circuit_breaker.get_status(),
        "minting_enabled": settings.BLOCKCHAIN_ENABLED,
        "email_enabled": settings.EMAIL_ENABLED,
    }
