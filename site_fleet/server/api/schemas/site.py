"""Request schemas for objects and layout endpoints."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel

from site_fleet.enterprise.core import Bounds, MaterialType, ObstacleType, Zone
from site_fleet.services.commands import AddObstacleCommand, SpawnObjectCommand, UpdateZonesCommand
from site_fleet.site_world import ObjectBatch


class ObjectSpawnSchema(BaseModel):
    material: MaterialType
    zone_id: str
    object_id: Optional[str] = None

    def to_command(self) -> SpawnObjectCommand:
        return SpawnObjectCommand(material=self.material, zone_id=self.zone_id, object_id=self.object_id)


class ObstacleCreateSchema(BaseModel):
    bounds: Bounds
    obstacle_type: ObstacleType = ObstacleType.BARRIER
    obstacle_id: Optional[str] = None
    temporary: bool = True

    def to_command(self) -> AddObstacleCommand:
        return AddObstacleCommand(**self.model_dump(exclude_none=True))


class ZoneLayoutSchema(BaseModel):
    zones: List[Zone]
    object_batches: Optional[List[ObjectBatch]] = None

    def to_command(self) -> UpdateZonesCommand:
        return UpdateZonesCommand(zones=self.zones, object_batches=self.object_batches)
