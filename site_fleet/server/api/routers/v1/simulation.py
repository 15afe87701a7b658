"""Simulation control, query and streaming endpoints."""

from __future__ import annotations

import asyncio
import json
from contextlib import suppress
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from site_fleet.enterprise.core import EventType, WorldSnapshot
from site_fleet.server.api.errors import submit_or_raise
from site_fleet.server.api.schemas.simulation import (
    AppConfigSchema,
    CommandAcceptedSchema,
    EventSchema,
    SiteStatusSchema,
    SpeedRequestSchema,
    StepResultSchema,
)
from site_fleet.server.dependencies import get_app_settings, get_engine
from site_fleet.services import AdmissionError, QueueSubscriber, SimulationEngine
from site_fleet.services.commands import PauseCommand, ResetCommand, SetSpeedCommand, StartCommand, StopCommand

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/simulation", tags=["simulation"])


@router.get("/state", response_model=WorldSnapshot)
async def get_simulation_state(engine: SimulationEngine = Depends(get_engine)) -> WorldSnapshot:
    return engine.snapshot()


@router.get("/status", response_model=SiteStatusSchema)
async def get_site_status(engine: SimulationEngine = Depends(get_engine)) -> SiteStatusSchema:
    return SiteStatusSchema.from_snapshot(engine.snapshot())


@router.get("/config", response_model=AppConfigSchema)
async def get_configuration(settings=Depends(get_app_settings)) -> AppConfigSchema:
    return AppConfigSchema.from_settings(settings)


@router.get("/events", response_model=List[EventSchema])
async def get_recent_events(
    limit: int = Query(50, ge=1, le=500),
    event_type: Optional[EventType] = Query(None, alias="type"),
    engine: SimulationEngine = Depends(get_engine),
) -> List[EventSchema]:
    return [EventSchema.from_domain(event) for event in engine.events(limit, event_type)]


def _accepted(engine: SimulationEngine, command) -> CommandAcceptedSchema:
    return CommandAcceptedSchema.from_receipt(submit_or_raise(engine, command))


@router.post("/start", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def start_simulation(engine: SimulationEngine = Depends(get_engine)) -> CommandAcceptedSchema:
    return _accepted(engine, StartCommand())


@router.post("/pause", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def pause_simulation(engine: SimulationEngine = Depends(get_engine)) -> CommandAcceptedSchema:
    return _accepted(engine, PauseCommand())


@router.post("/stop", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def stop_simulation(engine: SimulationEngine = Depends(get_engine)) -> CommandAcceptedSchema:
    return _accepted(engine, StopCommand())


@router.post("/reset", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def reset_simulation(engine: SimulationEngine = Depends(get_engine)) -> CommandAcceptedSchema:
    return _accepted(engine, ResetCommand())


@router.post("/speed", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def set_speed(
    payload: SpeedRequestSchema,
    engine: SimulationEngine = Depends(get_engine),
) -> CommandAcceptedSchema:
    return _accepted(engine, SetSpeedCommand(multiplier=payload.multiplier))


@router.post("/commands", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def submit_command(
    payload: Dict[str, Any] = Body(...),
    engine: SimulationEngine = Depends(get_engine),
) -> CommandAcceptedSchema:
    return _accepted(engine, payload)


@router.post("/step", response_model=StepResultSchema)
async def step_simulation(
    ticks: int = Query(1, ge=1, le=1000),
    engine: SimulationEngine = Depends(get_engine),
) -> StepResultSchema:
    """Advance a paused deployment by hand; refused while the background loop ticks."""

    if engine.loop_running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Manual stepping is unavailable while the simulation loop is running.",
        )
    for _ in range(ticks):
        engine.tick()
    return StepResultSchema.from_snapshot(ticks, engine.snapshot(), engine.queue_depth)


async def _pump(websocket: WebSocket, subscriber: QueueSubscriber) -> None:
    with suppress(WebSocketDisconnect):
        while True:
            message = await subscriber.get()
            await websocket.send_json(message.to_dict())


@router.websocket("/stream")
async def simulation_stream(websocket: WebSocket) -> None:
    engine = get_engine()
    await websocket.accept()
    subscriber = QueueSubscriber(maxsize=engine.settings.engine.subscriber_queue_size)
    subscriber.push("snapshot", engine.snapshot().model_dump(mode="json"))
    engine.subscribe(subscriber)
    sender = asyncio.create_task(_pump(websocket, subscriber))
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                subscriber.push("error", {"code": AdmissionError.INVALID, "message": "message is not valid JSON"})
                continue
            if not isinstance(payload, dict):
                subscriber.push("error", {"code": AdmissionError.INVALID, "message": "command must be a JSON object"})
                continue
            try:
                receipt = engine.submit(payload)
            except AdmissionError as exc:
                subscriber.push("error", {"code": exc.code, "message": exc.message})
                continue
            subscriber.push("ack", receipt.model_dump(mode="json"))
    except WebSocketDisconnect:
        logger.debug("stream_client_disconnected", dropped=subscriber.dropped)
    finally:
        engine.unsubscribe(subscriber)
        sender.cancel()
        with suppress(asyncio.CancelledError):
            await sender
