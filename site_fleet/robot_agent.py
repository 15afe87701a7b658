"""Robot agent model integrated with the enterprise domain layer."""

from __future__ import annotations

import math
from typing import Callable, List, Optional, Tuple

import structlog

from site_fleet.enterprise.core import (
    CATEGORY_PROFILES,
    Pose,
    RobotCategory,
    RobotState,
    RobotTelemetry,
    SensorReading,
    Vector2D,
)

logger = structlog.get_logger(__name__)

Point = Tuple[float, float]

_EPSILON = 1e-9


class RobotAgent:
    """Mobile construction robot: kinematics, battery and action timers.

    The agent only knows how to move along a path, spend energy and count
    down gripper actions. Which step it is executing, and what happens to the
    objects it touches, is decided by the robot controller.
    """

    def __init__(
        self,
        agent_id: str,
        category: RobotCategory,
        start_pose: Pose,
        name: Optional[str] = None,
        battery: float = 100.0,
        speed: Optional[float] = None,
        drain_per_unit: Optional[float] = None,
        action_drain_per_second: Optional[float] = None,
    ) -> None:
        profile = CATEGORY_PROFILES[category]
        self.id = agent_id
        self.name = name or agent_id
        self.category = category
        self.pose = start_pose.model_copy()
        self.speed = speed if speed is not None else profile.speed
        self.drain_per_unit = drain_per_unit if drain_per_unit is not None else profile.drain_per_unit
        self.action_drain_per_second = (
            action_drain_per_second if action_drain_per_second is not None else profile.action_drain_per_second
        )
        self.payload_kg = profile.payload_kg
        self.has_gripper = profile.has_gripper
        self.battery = min(100.0, max(0.0, float(battery)))
        self.state = RobotState.IDLE

        self.held_object: Optional[str] = None
        self.task_id: Optional[str] = None
        self.path: List[Point] = []
        self.path_index: int = 0
        self.path_version: Optional[int] = None
        self.destination: Optional[Point] = None
        self.action_remaining: float = 0.0

        self.manual_control = False
        self.needs_charge = False
        self.charging_zone: Optional[str] = None
        self.rerouting = False
        self.reroute_attempts = 0
        self.fault_reason: Optional[str] = None

        self.tasks_completed = 0
        self.distance_traveled = 0.0
        self.pick_attempts = 0
        self.pick_successes = 0
        self.sensors: Optional[SensorReading] = None

    @property
    def position(self) -> Point:
        return (self.pose.x, self.pose.y)

    @property
    def pick_success_ratio(self) -> float:
        if not self.pick_attempts:
            return 0.0
        return self.pick_successes / self.pick_attempts

    @property
    def is_available(self) -> bool:
        return (
            self.state == RobotState.IDLE
            and self.task_id is None
            and not self.manual_control
            and not self.needs_charge
        )

    def distance_to(self, point: Point) -> float:
        return math.hypot(point[0] - self.pose.x, point[1] - self.pose.y)

    def set_path(self, path: List[Point], version: Optional[int] = None) -> None:
        self.path = list(path)
        self.path_index = 0
        self.path_version = version
        self.destination = self.path[-1] if self.path else None

    def clear_path(self) -> None:
        self.path = []
        self.path_index = 0
        self.path_version = None
        self.destination = None
        self.rerouting = False

    def has_path(self) -> bool:
        return self.path_index < len(self.path)

    def remaining_path(self) -> List[Point]:
        return self.path[self.path_index:]

    def advance(
        self,
        dt: float,
        epsilon: float,
        blocked: Optional[Callable[[float, float], bool]] = None,
    ) -> Tuple[float, bool]:
        """Move along the cached path for ``dt`` simulated seconds.

        Returns the distance covered and whether motion stopped because
        ``blocked`` refused the next position.
        """

        budget = self.speed * dt
        moved = 0.0
        stopped = False
        while budget > _EPSILON and self.has_path():
            tx, ty = self.path[self.path_index]
            dx, dy = tx - self.pose.x, ty - self.pose.y
            remaining = math.hypot(dx, dy)
            if remaining <= epsilon or remaining <= budget:
                nx, ny, step, reached = tx, ty, remaining, True
            else:
                ratio = budget / remaining
                nx, ny, step, reached = self.pose.x + dx * ratio, self.pose.y + dy * ratio, budget, False

            if blocked is not None and blocked(nx, ny):
                stopped = True
                break
            if remaining > _EPSILON:
                self.pose.heading = math.degrees(math.atan2(dy, dx)) % 360.0
            self.pose.x, self.pose.y = nx, ny
            moved += step
            budget -= step
            if reached:
                self.path_index += 1

        self.distance_traveled += moved
        return moved, stopped

    def drain(self, distance: float, action_seconds: float = 0.0) -> float:
        amount = distance * self.drain_per_unit + action_seconds * self.action_drain_per_second
        self.battery = max(0.0, self.battery - amount)
        return amount

    def charge(self, amount: float) -> bool:
        self.battery = min(100.0, self.battery + amount)
        return self.battery >= 100.0

    def begin_action(self, seconds: float, state: RobotState) -> None:
        self.clear_path()
        self.action_remaining = seconds
        self.state = state

    def tick_action(self, dt: float) -> Tuple[float, bool]:
        """Count down the running action; returns ``(seconds spent, done)``."""

        spent = min(dt, max(self.action_remaining, 0.0))
        self.action_remaining -= dt
        return spent, self.action_remaining <= _EPSILON

    def attach_task(self, task_id: str) -> None:
        self.task_id = task_id
        self.reroute_attempts = 0

    def detach_task(self) -> None:
        self.task_id = None
        self.action_remaining = 0.0
        self.reroute_attempts = 0
        self.clear_path()
        if self.state != RobotState.ERROR:
            self.state = RobotState.IDLE

    def mark_faulted(self, reason: str) -> Optional[str]:
        task_id = self.task_id
        self.task_id = None
        self.clear_path()
        self.action_remaining = 0.0
        self.manual_control = False
        self.charging_zone = None
        self.fault_reason = reason
        self.state = RobotState.ERROR
        logger.warning("robot_faulted", robot_id=self.id, reason=reason, battery=round(self.battery, 2))
        return task_id

    def recover(self) -> bool:
        if self.state != RobotState.ERROR:
            return False
        # Recovery is an operator intervention that includes a battery swap.
        self.battery = 100.0
        self.needs_charge = False
        self.fault_reason = None
        self.reroute_attempts = 0
        self.state = RobotState.IDLE
        return True

    def telemetry(self) -> RobotTelemetry:
        return RobotTelemetry(
            robot_id=self.id,
            name=self.name,
            category=self.category,
            state=self.state,
            pose=self.pose.model_copy(),
            battery=self.battery,
            speed=self.speed,
            held_object=self.held_object,
            task_id=self.task_id,
            path=[Vector2D(x=x, y=y) for x, y in self.remaining_path()],
            rerouting=self.rerouting,
            manual_control=self.manual_control,
            needs_charge=self.needs_charge,
            fault_reason=self.fault_reason,
            tasks_completed=self.tasks_completed,
            distance_traveled=self.distance_traveled,
            pick_success_ratio=self.pick_success_ratio,
            sensors=self.sensors.model_copy(deep=True) if self.sensors else None,
        )
