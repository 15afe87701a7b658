"""Robot health monitoring utilities."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

Point = Tuple[float, float]

_MOTION_TOLERANCE = 1e-6


@dataclass
class RobotHealthStatus:
    """Tracks stall metrics for a single robot."""

    robot_id: str
    stalled_ticks: int = 0
    faulted: bool = False
    last_position: Optional[Point] = None


class RobotHealthMonitor:
    """Detects robots that want to move but make no progress for too many ticks."""

    def __init__(self, max_stalled_ticks: int = 100) -> None:
        self.max_stalled_ticks = max_stalled_ticks
        self._statuses: Dict[str, RobotHealthStatus] = {}

    def observe(self, robot_id: str, position: Point, wants_motion: bool) -> RobotHealthStatus:
        status = self._statuses.get(robot_id)
        if status is None:
            status = RobotHealthStatus(robot_id=robot_id, last_position=position)
            self._statuses[robot_id] = status
            return status

        last = status.last_position
        stationary = last is not None and math.hypot(position[0] - last[0], position[1] - last[1]) <= _MOTION_TOLERANCE
        if stationary and wants_motion:
            status.stalled_ticks += 1
        else:
            status.stalled_ticks = 0
            status.faulted = False

        status.last_position = position
        if status.stalled_ticks >= self.max_stalled_ticks:
            status.faulted = True

        return status

    def clear_fault(self, robot_id: str) -> None:
        status = self._statuses.get(robot_id)
        if status:
            status.faulted = False
            status.stalled_ticks = 0

    def status(self, robot_id: str) -> Optional[RobotHealthStatus]:
        return self._statuses.get(robot_id)

    def statuses(self) -> Dict[str, RobotHealthStatus]:
        return dict(self._statuses)

    def reset(self) -> None:
        self._statuses.clear()
