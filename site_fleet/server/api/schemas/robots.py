"""Pydantic schemas for robot endpoints."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from site_fleet.enterprise.core import RobotCategory
from site_fleet.services.commands import MoveRobotCommand, SpawnRobotCommand
from site_fleet.services.health import RobotHealthStatus


class RobotHealthSchema(BaseModel):
    robot_id: str
    stalled_ticks: int
    faulted: bool

    @classmethod
    def from_status(cls, status: RobotHealthStatus) -> "RobotHealthSchema":
        return cls(
            robot_id=status.robot_id,
            stalled_ticks=status.stalled_ticks,
            faulted=status.faulted,
        )


class RobotMoveSchema(BaseModel):
    x: float
    y: float
    teleport: bool = False

    def to_command(self, robot_id: str) -> MoveRobotCommand:
        return MoveRobotCommand(robot_id=robot_id, x=self.x, y=self.y, teleport=self.teleport)


class RobotSpawnSchema(BaseModel):
    category: RobotCategory
    x: float
    y: float
    heading: float = 0.0
    robot_id: Optional[str] = None
    name: Optional[str] = None

    def to_command(self) -> SpawnRobotCommand:
        return SpawnRobotCommand(**self.model_dump(exclude_none=True))
