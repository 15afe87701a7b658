"""Objects and layout endpoints."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from site_fleet.enterprise.core import ConstructionObject, ObjectStatus, Obstacle, Zone
from site_fleet.server.api.errors import submit_or_raise
from site_fleet.server.api.schemas.simulation import CommandAcceptedSchema
from site_fleet.server.api.schemas.site import ObjectSpawnSchema, ObstacleCreateSchema, ZoneLayoutSchema
from site_fleet.server.dependencies import get_engine
from site_fleet.services import SimulationEngine
from site_fleet.services.commands import RemoveObstacleCommand

router = APIRouter(prefix="/site", tags=["site"])


@router.get("/objects", response_model=List[ConstructionObject])
async def list_objects(
    object_status: Optional[ObjectStatus] = Query(None, alias="status"),
    zone_id: Optional[str] = None,
    engine: SimulationEngine = Depends(get_engine),
) -> List[ConstructionObject]:
    objects = engine.snapshot().objects
    if object_status is not None:
        objects = [obj for obj in objects if obj.status == object_status]
    if zone_id is not None:
        objects = [obj for obj in objects if obj.zone_id == zone_id]
    return objects


@router.post("/objects", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def spawn_object(payload: ObjectSpawnSchema, engine: SimulationEngine = Depends(get_engine)) -> CommandAcceptedSchema:
    return CommandAcceptedSchema.from_receipt(submit_or_raise(engine, payload.to_command()))


@router.get("/zones", response_model=List[Zone])
async def list_zones(engine: SimulationEngine = Depends(get_engine)) -> List[Zone]:
    return engine.snapshot().zones


@router.put("/zones", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def replace_zones(payload: ZoneLayoutSchema, engine: SimulationEngine = Depends(get_engine)) -> CommandAcceptedSchema:
    return CommandAcceptedSchema.from_receipt(submit_or_raise(engine, payload.to_command()))


@router.get("/obstacles", response_model=List[Obstacle])
async def list_obstacles(engine: SimulationEngine = Depends(get_engine)) -> List[Obstacle]:
    return engine.snapshot().obstacles


@router.post("/obstacles", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def add_obstacle(
    payload: ObstacleCreateSchema,
    engine: SimulationEngine = Depends(get_engine),
) -> CommandAcceptedSchema:
    return CommandAcceptedSchema.from_receipt(submit_or_raise(engine, payload.to_command()))


@router.delete("/obstacles/{obstacle_id}", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def remove_obstacle(obstacle_id: str, engine: SimulationEngine = Depends(get_engine)) -> CommandAcceptedSchema:
    return CommandAcceptedSchema.from_receipt(
        submit_or_raise(engine, RemoveObstacleCommand(obstacle_id=obstacle_id))
    )
