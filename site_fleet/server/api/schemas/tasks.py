"""Request schemas for task management endpoints."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from site_fleet.enterprise.core import TaskKind, TaskPriority
from site_fleet.services.commands import (
    AssignTaskCommand,
    CreateAssemblyCommand,
    CreateTaskBulkCommand,
    CreateTaskCommand,
)


class TaskCreateSchema(BaseModel):
    object_id: str
    target_zone_id: str
    kind: TaskKind = TaskKind.PICK_AND_PLACE
    priority: TaskPriority = TaskPriority.NORMAL
    robot_id: Optional[str] = None
    task_id: Optional[str] = None

    def to_command(self) -> CreateTaskCommand:
        fields = self.model_dump(exclude_none=True)
        return CreateTaskCommand(**fields)


class TaskBulkCreateSchema(BaseModel):
    object_ids: List[str] = Field(..., min_length=1)
    target_zone_id: str
    kind: TaskKind = TaskKind.PICK_AND_PLACE
    priority: TaskPriority = TaskPriority.NORMAL
    auto_assign: bool = True

    def to_command(self) -> CreateTaskBulkCommand:
        return CreateTaskBulkCommand(**self.model_dump())


class AssemblyCreateSchema(BaseModel):
    object_ids: List[str] = Field(..., min_length=2)
    zone_id: str

    def to_command(self) -> CreateAssemblyCommand:
        return CreateAssemblyCommand(object_ids=self.object_ids, zone_id=self.zone_id)


class TaskAssignSchema(BaseModel):
    robot_id: str

    def to_command(self, task_id: str) -> AssignTaskCommand:
        return AssignTaskCommand(task_id=task_id, robot_id=self.robot_id)
