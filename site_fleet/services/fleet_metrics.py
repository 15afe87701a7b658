"""Run-level counters aggregated into :class:`FleetMetrics`."""

from __future__ import annotations

from typing import Iterable

from site_fleet.enterprise.core import FleetMetrics, RobotState, Task
from site_fleet.observability.metrics import ROBOT_STATE_GAUGE, record_task_outcome
from site_fleet.robot_agent import RobotAgent

_BUSY_STATES = frozenset(
    {
        RobotState.MOVING,
        RobotState.PICKING,
        RobotState.CARRYING,
        RobotState.PLACING,
        RobotState.INSPECTING,
    }
)


class FleetMetricsTracker:
    """Accumulates task outcomes and robot utilisation for the current run."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.created = 0
        self.completed = 0
        self.failed = 0
        self.cancelled = 0
        self._duration_total = 0.0
        self._duration_count = 0
        self._busy_ticks = 0
        self._robot_ticks = 0

    def record_created(self, count: int = 1) -> None:
        self.created += count
        for _ in range(count):
            record_task_outcome("created")

    def record_completed(self, task: Task) -> None:
        self.completed += 1
        if task.duration is not None:
            self._duration_total += task.duration
            self._duration_count += 1
        record_task_outcome("completed")

    def record_failed(self, task: Task) -> None:
        self.failed += 1
        record_task_outcome("failed")

    def record_cancelled(self, task: Task) -> None:
        self.cancelled += 1
        record_task_outcome("cancelled")

    def observe_tick(self, robots: Iterable[RobotAgent]) -> None:
        """Sample robot activity once per running tick; faulted robots are excluded."""

        for robot in robots:
            if robot.state == RobotState.ERROR:
                continue
            self._robot_ticks += 1
            if robot.state in _BUSY_STATES or robot.task_id is not None:
                self._busy_ticks += 1

    def snapshot(self, robots: Iterable[RobotAgent]) -> FleetMetrics:
        robot_list = list(robots)
        counts = {state: 0 for state in RobotState}
        for robot in robot_list:
            counts[robot.state] += 1
        for state, count in counts.items():
            ROBOT_STATE_GAUGE.labels(state=state.value).set(count)

        attempts = sum(robot.pick_attempts for robot in robot_list)
        successes = sum(robot.pick_successes for robot in robot_list)
        return FleetMetrics(
            tasks_created=self.created,
            tasks_completed=self.completed,
            tasks_failed=self.failed,
            tasks_cancelled=self.cancelled,
            completion_rate=self.completed / self.created if self.created else 0.0,
            average_task_duration=self._duration_total / self._duration_count if self._duration_count else 0.0,
            fleet_utilization=self._busy_ticks / self._robot_ticks if self._robot_ticks else 0.0,
            pick_success_rate=successes / attempts if attempts else 0.0,
            total_distance=sum(robot.distance_traveled for robot in robot_list),
            active_robots=sum(1 for robot in robot_list if robot.state in _BUSY_STATES),
            idle_robots=counts[RobotState.IDLE],
            charging_robots=counts[RobotState.CHARGING],
            faulted_robots=counts[RobotState.ERROR],
        )
