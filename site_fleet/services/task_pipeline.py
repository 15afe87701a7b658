"""Task construction and step lifecycle bookkeeping."""

from __future__ import annotations

import enum
import itertools
from typing import List, Literal, Optional

import structlog

from site_fleet.enterprise.config.settings import TaskSettings
from site_fleet.enterprise.core import StepType, Task, TaskKind, TaskPriority, TaskStatus, TaskStep

logger = structlog.get_logger(__name__)


class StepOutcome(str, enum.Enum):
    """Result of closing out a step."""

    ADVANCED = "advanced"
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"


def build_steps(kind: TaskKind, object_id: str, zone_id: str, final_inspection: bool = False) -> List[TaskStep]:
    """Ordered primitive steps for a task of ``kind``.

    Inspect tasks examine the object where it lies; sort tasks inspect it
    before picking; every other kind is a plain pick-carry-place sequence.
    ``final_inspection`` appends an inspection of the target zone, used for
    the last part of an assembly.
    """

    if kind == TaskKind.INSPECT:
        return [
            TaskStep(type=StepType.MOVE_TO_PICKUP, target_id=object_id),
            TaskStep(type=StepType.INSPECTING, target_id=object_id),
        ]

    steps = [TaskStep(type=StepType.MOVE_TO_PICKUP, target_id=object_id)]
    if kind == TaskKind.SORT:
        steps.append(TaskStep(type=StepType.INSPECTING, target_id=object_id))
    steps.extend(
        [
            TaskStep(type=StepType.PICKING, target_id=object_id),
            TaskStep(type=StepType.MOVE_TO_DROP, target_id=zone_id),
            TaskStep(type=StepType.PLACING, target_id=zone_id),
        ]
    )
    if final_inspection:
        steps.append(TaskStep(type=StepType.INSPECTING, target_id=zone_id))
    return steps


class TaskPipeline:
    """Owns task state transitions; robots and objects are handled by the controller."""

    def __init__(self, settings: TaskSettings) -> None:
        self.settings = settings
        self._sequence = itertools.count(1)

    def create(
        self,
        kind: TaskKind,
        object_id: str,
        zone_id: str,
        priority: TaskPriority = TaskPriority.NORMAL,
        sim_time: float = 0.0,
        task_id: Optional[str] = None,
        final_inspection: bool = False,
    ) -> Task:
        fields = dict(
            kind=kind,
            priority=priority,
            object_id=object_id,
            zone_id=zone_id,
            steps=build_steps(kind, object_id, zone_id, final_inspection),
            max_retries=self.settings.max_retries,
            created_at=sim_time,
            sequence=next(self._sequence),
        )
        if task_id:
            fields["id"] = task_id
        return Task(**fields)

    def assign(self, task: Task, robot_id: str) -> None:
        task.status = TaskStatus.ASSIGNED
        task.robot_id = robot_id

    def begin(self, task: Task, sim_time: float) -> None:
        task.status = TaskStatus.IN_PROGRESS
        if task.started_at is None:
            task.started_at = sim_time

    def ready(self, task: Task, sim_time: float) -> bool:
        """False while a failed step is backing off."""

        return task.retry_at is None or sim_time >= task.retry_at

    def start_step(self, task: Task, sim_time: float) -> TaskStep:
        step = task.steps[task.current_step]
        step.started = True
        step.started_at = sim_time
        task.retry_at = None
        return step

    def complete_step(self, task: Task, sim_time: float) -> StepOutcome:
        step = task.steps[task.current_step]
        step.completed = True
        step.completed_at = sim_time
        next_index = task.current_step + 1
        while next_index < len(task.steps) and task.steps[next_index].completed:
            next_index += 1
        task.current_step = next_index
        if next_index >= len(task.steps):
            task.status = TaskStatus.COMPLETED
            task.completed_at = sim_time
            return StepOutcome.COMPLETED
        return StepOutcome.ADVANCED

    def record_failure(self, task: Task, reason: str, sim_time: float) -> StepOutcome:
        """Count a step failure and schedule a retry or fail the task."""

        task.retry_count += 1
        step = task.active_step
        if step is not None:
            step.started = False
            step.target = None
        if task.retry_count < task.max_retries:
            task.retry_at = sim_time + self.settings.retry_backoff_seconds * task.retry_count
            logger.info(
                "task_step_retry",
                task_id=task.id,
                step=step.type.value if step else None,
                retry_count=task.retry_count,
                retry_at=round(task.retry_at, 3),
                reason=reason,
            )
            return StepOutcome.RETRY
        self.fail(task, reason, sim_time)
        return StepOutcome.FAILED

    def fail(self, task: Task, reason: str, sim_time: float) -> None:
        task.status = TaskStatus.FAILED
        task.failure_reason = reason
        task.completed_at = sim_time
        task.retry_at = None
        logger.warning("task_failed", task_id=task.id, robot_id=task.robot_id, reason=reason)

    def cancel(self, task: Task, sim_time: float) -> None:
        task.status = TaskStatus.CANCELLED
        task.completed_at = sim_time
        task.retry_at = None

    def requeue(self, task: Task, policy: Literal["resume", "restart"] = "resume") -> int:
        """Return ``task`` to PENDING and rewind it; returns the step it resumes at.

        ``resume`` keeps completed work and rewinds to the most recent movement
        step so the next robot travels to the right place first. ``restart``
        clears every step, unless the object has already been placed, in which
        case starting over would try to pick a placed object and it resumes.
        """

        task.status = TaskStatus.PENDING
        task.robot_id = None
        task.retry_at = None
        placed = any(step.type == StepType.PLACING and step.completed for step in task.steps)
        restart = policy == "restart" and not placed
        if restart:
            resume_at = 0
        else:
            resume_at = 0
            for index in range(min(task.current_step, len(task.steps) - 1), -1, -1):
                if task.steps[index].type.is_motion:
                    resume_at = index
                    break
        for index, step in enumerate(task.steps):
            if index < resume_at:
                continue
            if restart or index == resume_at or not step.completed:
                step.started = False
                step.completed = False
                step.started_at = None
                step.completed_at = None
                step.target = None
        task.current_step = resume_at
        return resume_at
