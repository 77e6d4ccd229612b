"""
Interceptor Response Core — Application Entry Point.

Creates the FastAPI application, wires up the response service, and
mounts middleware (CORS, rate limiting).

Supports two run modes (controlled by ``RUN_MODE`` setting):
  - ``api``    — REST API with the response service in its lifespan (default)
  - ``daemon`` — standalone event-driven daemon, no HTTP surface
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router, set_service
from config.settings import get_settings
from daemon.response_service import ResponseService
from security.rate_limiter import RateLimiter

# ── Logging setup ───────────────────────────────────────────────────────

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)-35s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)

logger = logging.getLogger("interceptor")


# ── Application factory ────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan — start and stop the response service."""
    current = get_settings()
    logger.info("═══ Starting %s ═══", current.APP_NAME)
    logger.info(
        "Environment: %s | Run Mode: %s | State store: %s",
        current.ENVIRONMENT,
        current.RUN_MODE,
        current.STATE_STORE_PATH,
    )

    service = ResponseService()
    set_service(service)
    await service.start()

    logger.info("All dependencies wired. System ready.")
    yield

    # ── Cleanup ──────────────────────────────────────────────────────
    await service.stop()
    set_service(None)
    logger.info("═══ Shutting down %s ═══", current.APP_NAME)


app = FastAPI(
    title="Interceptor Response Core",
    description=(
        "Classifies Cowrie honeypot events, aggregates detection stats and "
        "evaluates automated-response rules that block attacking addresses "
        "for a bounded time."
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── Middleware ──────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RateLimiter)

# ── Routes ──────────────────────────────────────────────────────────────

app.include_router(router)


# ── CLI entry point ─────────────────────────────────────────────────────

if __name__ == "__main__":
    run_mode = settings.RUN_MODE.lower()

    if run_mode == "daemon":
        from daemon.response_service import _run_daemon

        asyncio.run(_run_daemon(simulate="--simulate" in sys.argv))

    else:
        import uvicorn

        uvicorn.run(
            "main:app",
            host=settings.API_HOST,
            port=settings.API_PORT,
            reload=settings.DEBUG,
            log_level=settings.LOG_LEVEL.lower(),
        )
