"""Command models accepted by the simulation engine.

Every mutation of the world travels through one of these models: the HTTP
API, the gRPC bridge, the message bus listener and the auto-scheduler all
build commands and hand them to :meth:`SimulationEngine.submit`.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from site_fleet.enterprise.core import (
    Bounds,
    MaterialType,
    ObstacleType,
    RobotCategory,
    TaskKind,
    TaskPriority,
    Zone,
)
from site_fleet.site_world import ObjectBatch


def _command_id() -> str:
    return uuid.uuid4().hex


def _task_id() -> str:
    return f"task-{uuid.uuid4().hex[:12]}"


class BaseCommand(BaseModel):
    command_id: str = Field(default_factory=_command_id, description="Client supplied or generated identifier.")


class StartCommand(BaseCommand):
    type: Literal["start"] = "start"


class PauseCommand(BaseCommand):
    type: Literal["pause"] = "pause"


class StopCommand(BaseCommand):
    type: Literal["stop"] = "stop"


class ResetCommand(BaseCommand):
    type: Literal["reset"] = "reset"


class SetSpeedCommand(BaseCommand):
    type: Literal["set-speed"] = "set-speed"
    multiplier: float = Field(..., description="Simulated seconds per wall-clock second.")


class CreateTaskCommand(BaseCommand):
    type: Literal["create-task"] = "create-task"
    task_id: str = Field(default_factory=_task_id)
    object_id: str
    target_zone_id: str
    kind: TaskKind = TaskKind.PICK_AND_PLACE
    priority: TaskPriority = TaskPriority.NORMAL
    robot_id: Optional[str] = Field(None, description="Assign immediately to this robot.")


class CreateTaskBulkCommand(BaseCommand):
    type: Literal["create-task-bulk"] = "create-task-bulk"
    object_ids: List[str] = Field(..., min_length=1)
    target_zone_id: str
    kind: TaskKind = TaskKind.PICK_AND_PLACE
    priority: TaskPriority = TaskPriority.NORMAL
    auto_assign: bool = Field(True, description="Pair each new task with the nearest eligible robot.")


class CreateAssemblyCommand(BaseCommand):
    type: Literal["create-assembly"] = "create-assembly"
    object_ids: List[str] = Field(..., min_length=2)
    zone_id: str


class AssignTaskCommand(BaseCommand):
    type: Literal["assign-task"] = "assign-task"
    task_id: str
    robot_id: str


class CancelTaskCommand(BaseCommand):
    type: Literal["cancel-task"] = "cancel-task"
    task_id: str


class MoveRobotCommand(BaseCommand):
    type: Literal["move-robot"] = "move-robot"
    robot_id: str
    x: float
    y: float
    teleport: bool = False


class StopRobotCommand(BaseCommand):
    type: Literal["stop-robot"] = "stop-robot"
    robot_id: str


class RecoverRobotCommand(BaseCommand):
    type: Literal["recover-robot"] = "recover-robot"
    robot_id: str


class SpawnRobotCommand(BaseCommand):
    type: Literal["spawn-robot"] = "spawn-robot"
    robot_id: str = Field(default_factory=lambda: f"robot-{uuid.uuid4().hex[:6]}")
    name: Optional[str] = None
    category: RobotCategory
    x: float
    y: float
    heading: float = 0.0


class SpawnObjectCommand(BaseCommand):
    type: Literal["spawn-object"] = "spawn-object"
    material: MaterialType
    zone_id: str
    object_id: Optional[str] = None


class AddObstacleCommand(BaseCommand):
    type: Literal["add-obstacle"] = "add-obstacle"
    obstacle_id: str = Field(default_factory=lambda: f"obstacle-{uuid.uuid4().hex[:6]}")
    obstacle_type: ObstacleType = ObstacleType.BARRIER
    bounds: Bounds
    temporary: bool = True


class RemoveObstacleCommand(BaseCommand):
    type: Literal["remove-obstacle"] = "remove-obstacle"
    obstacle_id: str


class UpdateZonesCommand(BaseCommand):
    """Replace the zone layout; active tasks fail and the site is restocked."""

    type: Literal["update-zones"] = "update-zones"
    zones: List[Zone] = Field(..., min_length=1)
    object_batches: Optional[List[ObjectBatch]] = Field(
        None, description="Objects to stock the new zones with; storage and staging are half-filled when omitted."
    )


class RequestAutoScheduleCommand(BaseCommand):
    type: Literal["request-auto-schedule"] = "request-auto-schedule"


Command = Annotated[
    Union[
        StartCommand,
        PauseCommand,
        StopCommand,
        ResetCommand,
        SetSpeedCommand,
        CreateTaskCommand,
        CreateTaskBulkCommand,
        CreateAssemblyCommand,
        AssignTaskCommand,
        CancelTaskCommand,
        MoveRobotCommand,
        StopRobotCommand,
        RecoverRobotCommand,
        SpawnRobotCommand,
        SpawnObjectCommand,
        AddObstacleCommand,
        RemoveObstacleCommand,
        UpdateZonesCommand,
        RequestAutoScheduleCommand,
    ],
    Field(discriminator="type"),
]

_COMMAND_ADAPTER: TypeAdapter[Command] = TypeAdapter(Command)


class AdmissionError(Exception):
    """Raised when a command is refused before or while being applied."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID = "invalid"
    QUEUE_FULL = "queue_full"

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class CommandReceipt(BaseModel):
    """Acknowledgement returned for an accepted command."""

    command_id: str
    type: str
    queued: int = Field(..., description="Commands waiting for the next tick, this one included.")
    tick: int = Field(..., description="Tick counter at submission time.")
    task_id: Optional[str] = None


def parse_command(data: Dict[str, Any]) -> Command:
    """Validate a raw mapping into a typed command."""

    try:
        return _COMMAND_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise AdmissionError(AdmissionError.INVALID, f"malformed command: {exc.errors()[0]['msg']}") from exc
