"""
ceremony.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn ceremony.api.main:app --port 8000

or ``python -m ceremony``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from ceremony.api.deps import build_runtime, get_config, get_engine  # noqa: E402
from ceremony.api.routes.trigger import router as trigger_router  # noqa: E402
from ceremony.database.engine import run_db  # noqa: E402
from ceremony.errors import CeremonyError  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the cache, start background work."""
    engine = get_engine()
    cfg = get_config()
    runtime = build_runtime(engine, cfg)

    try:
        await run_db(runtime.cache.initialize)
        warmed = True
    except Exception:
        # Serve with an empty cache; the refresh loop retries right away.
        logger.exception("Initial trigger cache load failed")
        warmed = False

    runtime.cache.start_refresh_loop(run_immediately=not warmed)
    app.state.runtime = runtime
    logger.info(
        "Ceremony API started — engine ready (%s), zone %s, SLA %dms",
        engine.url.database, cfg.timezone, cfg.sla_threshold_ms,
    )
    yield
    logger.info("Ceremony API shutting down")
    runtime.cache.stop_refresh_loop()
    runtime.telemetry.shutdown()
    app.state.runtime = None


app = FastAPI(
    title="Ceremony Trigger API",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS — kiosk players and the admin frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(trigger_router, prefix="/api")


@app.exception_handler(CeremonyError)
async def ceremony_error_handler(request: Request, exc: CeremonyError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.get("/api/health")
def health():
    return {"status": "ok"}
