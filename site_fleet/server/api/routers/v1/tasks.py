"""Task creation, assignment and cancellation endpoints."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from site_fleet.enterprise.core import Task, TaskStatus
from site_fleet.server.api.errors import submit_or_raise
from site_fleet.server.api.schemas.simulation import CommandAcceptedSchema
from site_fleet.server.api.schemas.tasks import (
    AssemblyCreateSchema,
    TaskAssignSchema,
    TaskBulkCreateSchema,
    TaskCreateSchema,
)
from site_fleet.server.dependencies import get_engine
from site_fleet.services import SimulationEngine
from site_fleet.services.commands import CancelTaskCommand, RequestAutoScheduleCommand

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _accepted(engine: SimulationEngine, command) -> CommandAcceptedSchema:
    return CommandAcceptedSchema.from_receipt(submit_or_raise(engine, command))


@router.get("", response_model=List[Task])
async def list_tasks(
    task_status: Optional[TaskStatus] = Query(None, alias="status"),
    engine: SimulationEngine = Depends(get_engine),
) -> List[Task]:
    tasks = engine.snapshot().tasks
    if task_status is not None:
        tasks = [task for task in tasks if task.status == task_status]
    return tasks


@router.post("", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def create_task(payload: TaskCreateSchema, engine: SimulationEngine = Depends(get_engine)) -> CommandAcceptedSchema:
    return _accepted(engine, payload.to_command())


@router.post("/bulk", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def create_tasks_bulk(
    payload: TaskBulkCreateSchema,
    engine: SimulationEngine = Depends(get_engine),
) -> CommandAcceptedSchema:
    return _accepted(engine, payload.to_command())


@router.post("/assembly", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def create_assembly(
    payload: AssemblyCreateSchema,
    engine: SimulationEngine = Depends(get_engine),
) -> CommandAcceptedSchema:
    return _accepted(engine, payload.to_command())


@router.post("/auto-schedule", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def request_auto_schedule(engine: SimulationEngine = Depends(get_engine)) -> CommandAcceptedSchema:
    return _accepted(engine, RequestAutoScheduleCommand())


@router.get("/{task_id}", response_model=Task)
async def get_task(task_id: str, engine: SimulationEngine = Depends(get_engine)) -> Task:
    task = engine.snapshot().find_task(task_id)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return task


@router.post("/{task_id}/assign", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def assign_task(
    task_id: str,
    payload: TaskAssignSchema,
    engine: SimulationEngine = Depends(get_engine),
) -> CommandAcceptedSchema:
    return _accepted(engine, payload.to_command(task_id))


@router.post("/{task_id}/cancel", response_model=CommandAcceptedSchema, status_code=status.HTTP_202_ACCEPTED)
async def cancel_task(task_id: str, engine: SimulationEngine = Depends(get_engine)) -> CommandAcceptedSchema:
    return _accepted(engine, CancelTaskCommand(task_id=task_id))
