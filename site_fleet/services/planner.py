"""Heuristic auto-scheduling planner.

The planner never touches the engine's state: it reads a snapshot and
answers with ordinary commands, which go through admission like any other
client's.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

import structlog

from site_fleet.enterprise.core import (
    ConstructionObject,
    EngineEvent,
    EventType,
    ObjectStatus,
    TaskKind,
    WorldSnapshot,
    Zone,
    ZoneType,
)
from site_fleet.services.broadcast import SnapshotSubscriber
from site_fleet.services.commands import AdmissionError, AssignTaskCommand, Command, CreateTaskCommand
from site_fleet.services.scheduler import TaskScheduler

if TYPE_CHECKING:
    from site_fleet.services.simulation import SimulationEngine

logger = structlog.get_logger(__name__)

TARGET_ZONE_TYPES = (ZoneType.ASSEMBLY, ZoneType.STAGING, ZoneType.WORK)


class HeuristicPlanner:
    """Proposes commands for an auto-schedule request.

    With pending tasks it pairs them with the nearest eligible idle robots.
    Otherwise it creates pick-and-place tasks that move available objects
    into the least loaded assembly, staging or work zone other than the one
    they sit in, one per idle robot.
    """

    def __init__(self, scheduler: TaskScheduler) -> None:
        self.scheduler = scheduler

    def propose(self, snapshot: WorldSnapshot) -> List[Command]:
        idle = [robot for robot in snapshot.robots if self.scheduler.is_available(robot)]
        if not idle:
            return []
        objects = {obj.id: obj for obj in snapshot.objects}

        pending = self.scheduler.order_pending(snapshot.tasks)
        if pending:
            return self._assign_pending(pending, idle, objects)
        return self._create_tasks(snapshot, idle)

    def _assign_pending(self, pending, idle, objects: Dict[str, ConstructionObject]) -> List[Command]:
        commands: List[Command] = []
        taken: set = set()
        for task in pending:
            robot = self.scheduler.select_robot(task.kind, objects.get(task.object_id), idle, exclude=taken)
            if robot is None:
                continue
            taken.add(robot.robot_id)
            commands.append(AssignTaskCommand(task_id=task.id, robot_id=robot.robot_id))
        return commands

    def _create_tasks(self, snapshot: WorldSnapshot, idle) -> List[Command]:
        targets = [zone for zone in snapshot.zones if zone.type in TARGET_ZONE_TYPES]
        if not targets:
            return []
        claimed = {task.object_id for task in snapshot.tasks if not task.status.terminal}
        candidates = sorted(
            (obj for obj in snapshot.objects if obj.status == ObjectStatus.AVAILABLE and obj.id not in claimed),
            key=lambda obj: obj.id,
        )
        planned: Counter = Counter()
        commands: List[Command] = []
        taken: set = set()
        for obj in candidates:
            if len(taken) >= len(idle):
                break
            zone = self._choose_zone(obj, targets, planned)
            if zone is None:
                continue
            robot = self.scheduler.select_robot(TaskKind.PICK_AND_PLACE, obj, idle, exclude=taken)
            if robot is None:
                continue
            taken.add(robot.robot_id)
            planned[zone.id] += 1
            commands.append(
                CreateTaskCommand(object_id=obj.id, target_zone_id=zone.id, robot_id=robot.robot_id)
            )
        return commands

    @staticmethod
    def _choose_zone(obj: ConstructionObject, targets: Sequence[Zone], planned: Counter) -> Optional[Zone]:
        options = [zone for zone in targets if zone.id != obj.zone_id]
        if not options:
            return None
        return min(options, key=lambda zone: ((zone.occupancy + planned[zone.id]) / zone.capacity, zone.id))


class AutoScheduler(SnapshotSubscriber):
    """Answers ``auto-schedule-requested`` events with planner commands."""

    wants_snapshots = False

    def __init__(self, engine: "SimulationEngine", planner: HeuristicPlanner) -> None:
        self.engine = engine
        self.planner = planner

    def on_event(self, event: EngineEvent) -> None:
        if event.type != EventType.AUTO_SCHEDULE_REQUESTED:
            return
        commands = self.planner.propose(self.engine.snapshot())
        accepted = 0
        for command in commands:
            try:
                self.engine.submit(command)
            except AdmissionError as exc:
                logger.info("auto_schedule_command_rejected", type=command.type, code=exc.code, reason=exc.message)
                continue
            accepted += 1
        logger.info("auto_schedule_planned", proposed=len(commands), accepted=accepted)
