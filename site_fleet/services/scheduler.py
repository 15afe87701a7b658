"""Task scheduling utilities for multi-robot coordination."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Collection, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from site_fleet.enterprise.core import (
    CATEGORY_PROFILES,
    ConstructionObject,
    RobotCategory,
    RobotState,
    RobotTelemetry,
    Task,
    TaskKind,
    TaskStatus,
)

_GRIPPER = frozenset({RobotCategory.PICK_PLACE, RobotCategory.HEAVY_LIFT})

CAPABLE_CATEGORIES: Dict[TaskKind, FrozenSet[RobotCategory]] = {
    TaskKind.PICK_AND_PLACE: _GRIPPER,
    TaskKind.SORT: _GRIPPER,
    TaskKind.ASSEMBLE: _GRIPPER,
    TaskKind.TRANSPORT: frozenset({RobotCategory.TRANSPORT, RobotCategory.HEAVY_LIFT}),
    TaskKind.INSPECT: frozenset(RobotCategory),
}


@dataclass
class AssignmentRecord:
    robot_id: str
    task_id: str
    distance: float


class TaskScheduler:
    """Priority-ordered scheduler matching pending tasks to the nearest capable robot."""

    def __init__(self, battery_floor: float = 30.0) -> None:
        self.battery_floor = battery_floor

    def robot_error(self, robot: RobotTelemetry) -> Optional[str]:
        """Why ``robot`` cannot take any task right now, or ``None``."""

        if robot.state != RobotState.IDLE or robot.task_id is not None:
            return f"robot {robot.robot_id} is busy ({robot.state.value})"
        if robot.manual_control:
            return f"robot {robot.robot_id} is under manual control"
        if robot.needs_charge:
            return f"robot {robot.robot_id} must recharge first"
        if robot.battery <= self.battery_floor:
            return f"robot {robot.robot_id} battery {robot.battery:.1f}% is at or below the assignment floor"
        return None

    def capability_error(
        self,
        robot: RobotTelemetry,
        kind: TaskKind,
        obj: Optional[ConstructionObject],
    ) -> Optional[str]:
        if robot.category not in CAPABLE_CATEGORIES[kind]:
            return f"robot {robot.robot_id} ({robot.category.value}) cannot perform {kind.value} tasks"
        if kind != TaskKind.INSPECT and obj is not None:
            payload = CATEGORY_PROFILES[robot.category].payload_kg
            if obj.weight > payload:
                return f"object {obj.id} weighs {obj.weight:g} kg, above the {payload:g} kg payload of {robot.robot_id}"
        return None

    def eligibility_error(
        self,
        robot: RobotTelemetry,
        kind: TaskKind,
        obj: Optional[ConstructionObject],
    ) -> Optional[str]:
        return self.robot_error(robot) or self.capability_error(robot, kind, obj)

    def is_available(self, robot: RobotTelemetry) -> bool:
        return self.robot_error(robot) is None

    def select_robot(
        self,
        kind: TaskKind,
        obj: Optional[ConstructionObject],
        robots: Sequence[RobotTelemetry],
        exclude: Collection[str] = (),
    ) -> Optional[RobotTelemetry]:
        """Nearest eligible robot to ``obj``, ties broken by robot id."""

        candidates = [
            robot
            for robot in robots
            if robot.robot_id not in exclude and self.eligibility_error(robot, kind, obj) is None
        ]
        if not candidates:
            return None
        if obj is None:
            return min(candidates, key=lambda robot: robot.robot_id)
        return min(candidates, key=lambda robot: (self._distance(robot, obj), robot.robot_id))

    @staticmethod
    def _distance(robot: RobotTelemetry, obj: ConstructionObject) -> float:
        return math.hypot(robot.pose.x - obj.pose.x, robot.pose.y - obj.pose.y)

    @staticmethod
    def order_pending(tasks: Sequence[Task]) -> List[Task]:
        """Pending tasks, highest priority first then oldest first."""

        pending = [task for task in tasks if task.status == TaskStatus.PENDING]
        return sorted(pending, key=lambda task: (-task.priority.rank, task.sequence, task.id))

    def plan_assignments(
        self,
        tasks: Sequence[Task],
        robots: Sequence[RobotTelemetry],
        objects: Mapping[str, ConstructionObject],
    ) -> List[Tuple[Task, AssignmentRecord]]:
        """Greedy assignment of pending tasks in priority order."""

        taken: set[str] = set()
        plan: List[Tuple[Task, AssignmentRecord]] = []
        for task in self.order_pending(tasks):
            obj = objects.get(task.object_id)
            robot = self.select_robot(task.kind, obj, robots, exclude=taken)
            if robot is None:
                continue
            taken.add(robot.robot_id)
            distance = self._distance(robot, obj) if obj is not None else 0.0
            plan.append((task, AssignmentRecord(robot_id=robot.robot_id, task_id=task.id, distance=distance)))
        return plan
