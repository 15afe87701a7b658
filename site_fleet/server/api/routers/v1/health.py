"""Liveness and readiness probes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from site_fleet.server.dependencies import get_engine
from site_fleet.services import SimulationEngine

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def live() -> dict:
    return {"status": "ok"}


@router.get("/ready")
async def ready(engine: SimulationEngine = Depends(get_engine)) -> dict:
    return {
        "status": "ready",
        "run_status": engine.status.value,
        "tick": engine.tick_count,
        "loop_running": engine.loop_running,
    }
