"""
ceremony.api.routes.trigger — NFC trigger endpoints
====================================================

Mounted under ``/api/nfc-trigger``.  Every success body is
``{"success": true, "data": ...}``; domain errors are rendered by the
:class:`~ceremony.errors.CeremonyError` handler in :mod:`ceremony.api.main`.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ceremony.api.deps import Runtime, get_current_admin, get_runtime
from ceremony.database.engine import ping, run_db, run_db_with_timeout
from ceremony.errors import InvalidRequest
from ceremony.services.performance_monitor import load_video_statistics
from ceremony.services.trigger_service import load_preload_videos

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/nfc-trigger", tags=["nfc-trigger"])


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class TriggerBody(BaseModel):
    # Optional so a missing id surfaces as invalid_request rather than 422
    nfc_card_id: str | None = None
    device_info: dict[str, Any] | None = None


class PreloadBody(BaseModel):
    video_ids: list[int] = Field(default_factory=list)


class CompleteBody(BaseModel):
    trigger_id: int
    actual_duration: int = Field(ge=0, description="Milliseconds actually played")
    completed: bool = False


# ---------------------------------------------------------------------------
# POST /trigger
# ---------------------------------------------------------------------------
@router.post("/trigger")
async def trigger(body: TriggerBody, runtime: Runtime = Depends(get_runtime)):
    """Resolve a scanned card to the video to play."""
    result = await runtime.handler.handle(body.nfc_card_id, body.device_info)
    return {"success": True, "data": result.to_dict()}


# ---------------------------------------------------------------------------
# POST /preload
# ---------------------------------------------------------------------------
@router.post("/preload")
async def preload(body: PreloadBody, runtime: Runtime = Depends(get_runtime)):
    if not body.video_ids:
        raise InvalidRequest("video_ids must be a non-empty list")
    data = await run_db(load_preload_videos, runtime.engine, body.video_ids)
    return {"success": True, "data": data}


# ---------------------------------------------------------------------------
# POST /complete
# ---------------------------------------------------------------------------
@router.post("/complete")
async def complete(body: CompleteBody, runtime: Runtime = Depends(get_runtime)):
    await run_db(
        runtime.telemetry.complete, body.trigger_id, body.actual_duration, body.completed,
    )
    return {"success": True, "message": "Playback recorded"}


# ---------------------------------------------------------------------------
# GET /performance
# ---------------------------------------------------------------------------
@router.get("/performance")
async def performance(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    runtime: Runtime = Depends(get_runtime),
):
    report = await run_db(runtime.monitor.report, start_date, end_date)
    data = report.to_dict()
    data["live"] = runtime.monitor.snapshot().to_dict()
    data["cache_status"] = {f"{name}_size": size for name, size in runtime.cache.sizes().items()}
    return {"success": True, "data": data}


# ---------------------------------------------------------------------------
# POST /cache/clear (admin)
# ---------------------------------------------------------------------------
@router.post("/cache/clear")
async def clear_cache(
    runtime: Runtime = Depends(get_runtime),
    admin: dict = Depends(get_current_admin),
):
    logger.info("Trigger cache clear requested by %s", admin.get("username") or admin.get("sub"))
    runtime.cache.clear()
    await run_db(runtime.cache.initialize)
    return {"success": True, "data": {"cache_status": runtime.cache.sizes()}}


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------
@router.get("/health")
async def health(runtime: Runtime = Depends(get_runtime)):
    timeout_ms = runtime.config.health_timeout_ms
    try:
        await run_db_with_timeout(timeout_ms / 1000, ping, runtime.engine)
    except TimeoutError:
        logger.warning("Health probe timed out after %dms", timeout_ms)
        return JSONResponse(
            status_code=503,
            content={"success": False, "status": "unhealthy", "error": "database timeout"},
        )
    except Exception as exc:
        logger.warning("Health probe failed: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"success": False, "status": "unhealthy", "error": str(exc)},
        )

    return {
        "success": True,
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "cache_status": runtime.cache.sizes(),
    }


# ---------------------------------------------------------------------------
# GET /videos/{video_id}/statistics
# ---------------------------------------------------------------------------
@router.get("/videos/{video_id}/statistics")
async def video_statistics(
    video_id: int,
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    runtime: Runtime = Depends(get_runtime),
):
    rows = await run_db(load_video_statistics, runtime.engine, video_id, start_date, end_date)
    return {"success": True, "data": {"video_id": video_id, "statistics": rows}}
