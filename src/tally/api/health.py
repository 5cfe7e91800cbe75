"""Health check endpoints."""

from __future__ import annotations

import time
from typing import Any

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

router = APIRouter(tags=["health"])

_START_TIME = time.monotonic()


@router.get("/api/health")
async def health() -> dict[str, str]:
    """Liveness only; touches nothing."""
    return {"status": "ok"}


@router.get("/api/health/detailed")
async def health_detailed(request: Request) -> dict[str, Any]:
    """Database reachability plus the reasoning engines that are configured."""
    from tally import __version__

    checks: dict[str, Any] = {
        "status": "ok",
        "version": __version__,
        "uptime_seconds": round(time.monotonic() - _START_TIME, 1),
        "components": {},
    }

    try:
        async with request.app.state.db_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["components"]["database"] = {"status": "ok"}
    except (SQLAlchemyError, OSError) as e:
        checks["components"]["database"] = {"status": "error", "detail": str(e)}
        checks["status"] = "degraded"

    pm = getattr(request.app.state, "provider_manager", None)
    if pm is not None:
        checks["components"]["providers"] = {
            "configured": pm.provider_ids,
            "models": [m.model_ref for m in pm.list_all_models()],
        }
        if not pm.provider_ids:
            checks["status"] = "degraded"

    return checks
