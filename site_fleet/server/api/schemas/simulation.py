"""Pydantic schemas for simulation API requests and responses."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from site_fleet.enterprise.config.settings import AppSettings
from site_fleet.enterprise.core import EngineEvent, FleetMetrics, WorldSnapshot
from site_fleet.services import CommandReceipt


class CommandAcceptedSchema(BaseModel):
    command_id: str
    type: str
    queued: int
    tick: int
    task_id: Optional[str] = None

    @classmethod
    def from_receipt(cls, receipt: CommandReceipt) -> "CommandAcceptedSchema":
        return cls(
            command_id=receipt.command_id,
            type=receipt.type,
            queued=receipt.queued,
            tick=receipt.tick,
            task_id=receipt.task_id,
        )


class SpeedRequestSchema(BaseModel):
    multiplier: float = Field(..., description="Simulated seconds per wall-clock second.")


class StepResultSchema(BaseModel):
    ticks: int
    tick: int
    sim_time: float
    status: str
    queued: int

    @classmethod
    def from_snapshot(cls, ticks: int, snapshot: WorldSnapshot, queued: int) -> "StepResultSchema":
        return cls(
            ticks=ticks,
            tick=snapshot.tick,
            sim_time=snapshot.sim_time,
            status=snapshot.status.value,
            queued=queued,
        )


class EventSchema(BaseModel):
    id: int
    type: str
    tick: int
    created_at: datetime
    payload: dict

    @classmethod
    def from_domain(cls, event: EngineEvent) -> "EventSchema":
        return cls(
            id=event.id,
            type=event.type.value,
            tick=event.tick,
            created_at=event.created_at,
            payload=event.payload,
        )


class ZoneStatusSchema(BaseModel):
    id: str
    type: str
    occupancy: int
    capacity: int


class SiteStatusSchema(BaseModel):
    """Counts for dashboards that do not need the full snapshot."""

    tick: int
    status: str
    time_multiplier: float
    sim_time: float
    robots: Dict[str, int]
    tasks: Dict[str, int]
    objects: Dict[str, int]
    zones: List[ZoneStatusSchema]
    metrics: FleetMetrics

    @classmethod
    def from_snapshot(cls, snapshot: WorldSnapshot) -> "SiteStatusSchema":
        return cls(
            tick=snapshot.tick,
            status=snapshot.status.value,
            time_multiplier=snapshot.time_multiplier,
            sim_time=snapshot.sim_time,
            robots=dict(Counter(robot.state.value for robot in snapshot.robots)),
            tasks=dict(Counter(task.status.value for task in snapshot.tasks)),
            objects=dict(Counter(obj.status.value for obj in snapshot.objects)),
            zones=[
                ZoneStatusSchema(id=zone.id, type=zone.type.value, occupancy=zone.occupancy, capacity=zone.capacity)
                for zone in snapshot.zones
            ],
            metrics=snapshot.metrics,
        )


class AppConfigSchema(BaseModel):
    environment: str
    grid: dict
    timing: dict
    fleet: dict
    tasks: dict
    engine: dict
    mqtt: dict
    telemetry: dict

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "AppConfigSchema":
        return cls(
            environment=settings.environment,
            grid=settings.grid.model_dump(),
            timing=settings.timing.model_dump(),
            fleet=settings.fleet.model_dump(),
            tasks=settings.tasks.model_dump(mode="json"),
            engine=settings.engine.model_dump(),
            mqtt=settings.mqtt.model_dump(exclude_none=True, exclude={"password"}),
            telemetry=settings.telemetry.model_dump(),
        )
