"""Robot telemetry and control endpoints."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from site_fleet.enterprise.core import RobotTelemetry
from site_fleet.server.api.errors import submit_or_raise
from site_fleet.server.api.schemas.robots import RobotHealthSchema, RobotMoveSchema, RobotSpawnSchema
from site_fleet.server.api.schemas.simulation import CommandAcceptedSchema
from site_fleet.server.dependencies import get_engine
from site_fleet.services import SimulationEngine
from site_fleet.services.commands import RecoverRobotCommand, StopRobotCommand

router = APIRouter(prefix="/robots", tags=["robots"])


def _accepted(engine: SimulationEngine, command) -> CommandAcceptedSchema:
    return CommandAcceptedSchema.from_receipt(submit_or_raise(engine, command))


@router.get("", response_model=List[RobotTelemetry])
async def list_robots(engine: SimulationEngine = Depends(get_engine)) -> List[RobotTelemetry]:
    return engine.snapshot().robots


@router.post("", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def spawn_robot(payload: RobotSpawnSchema, engine: SimulationEngine = Depends(get_engine)) -> CommandAcceptedSchema:
    return _accepted(engine, payload.to_command())


@router.get("/health", response_model=List[RobotHealthSchema])
async def robot_health(engine: SimulationEngine = Depends(get_engine)) -> List[RobotHealthSchema]:
    statuses = engine.robot_health()
    return [RobotHealthSchema.from_status(status) for status in statuses.values()]


@router.get("/{robot_id}", response_model=RobotTelemetry)
async def get_robot(robot_id: str, engine: SimulationEngine = Depends(get_engine)) -> RobotTelemetry:
    robot = engine.snapshot().find_robot(robot_id)
    if robot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Robot not found")
    return robot


@router.post("/{robot_id}/move", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def move_robot(
    robot_id: str,
    payload: RobotMoveSchema,
    engine: SimulationEngine = Depends(get_engine),
) -> CommandAcceptedSchema:
    return _accepted(engine, payload.to_command(robot_id))


@router.post("/{robot_id}/stop", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def stop_robot(robot_id: str, engine: SimulationEngine = Depends(get_engine)) -> CommandAcceptedSchema:
    return _accepted(engine, StopRobotCommand(robot_id=robot_id))


@router.post("/{robot_id}/recover", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def recover_robot(robot_id: str, engine: SimulationEngine = Depends(get_engine)) -> CommandAcceptedSchema:
    return _accepted(engine, RecoverRobotCommand(robot_id=robot_id))
