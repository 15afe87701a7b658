"""Authoritative tick loop and command router of the site simulation."""

from __future__ import annotations

import asyncio
import random
import threading
import time
from collections import deque
from contextlib import suppress
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

import structlog

from site_fleet.enterprise.config.settings import AppSettings, get_settings
from site_fleet.enterprise.core import (
    EngineEvent,
    EventType,
    Obstacle,
    ObjectStatus,
    RobotState,
    RunStatus,
    TaskKind,
    TaskPriority,
    TaskStatus,
    WorldSnapshot,
)
from site_fleet.observability.metrics import SIMULATION_TICK_GAUGE, TICK_DURATION, record_command
from site_fleet.observability.tracing import get_tracer
from site_fleet.robot_agent import RobotAgent
from site_fleet.sensors import sample_sensors
from site_fleet.services.broadcast import EventLog, SnapshotBroadcaster, SnapshotSubscriber
from site_fleet.services.commands import (
    AddObstacleCommand,
    AdmissionError,
    AssignTaskCommand,
    CancelTaskCommand,
    Command,
    CommandReceipt,
    CreateAssemblyCommand,
    CreateTaskBulkCommand,
    CreateTaskCommand,
    MoveRobotCommand,
    PauseCommand,
    RecoverRobotCommand,
    RemoveObstacleCommand,
    RequestAutoScheduleCommand,
    ResetCommand,
    SetSpeedCommand,
    SpawnObjectCommand,
    SpawnRobotCommand,
    StartCommand,
    StopCommand,
    StopRobotCommand,
    UpdateZonesCommand,
    parse_command,
)
from site_fleet.services.fleet_metrics import FleetMetricsTracker
from site_fleet.services.health import RobotHealthMonitor, RobotHealthStatus
from site_fleet.services.reservations import ReservationManager
from site_fleet.services.robot_controller import RobotController, TickContext
from site_fleet.services.scheduler import TaskScheduler
from site_fleet.services.task_pipeline import TaskPipeline
from site_fleet.site_world import RobotSpec, SiteWorld, WorldConfig, default_world_config

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)


def load_world_config(settings: AppSettings) -> WorldConfig:
    """World described by ``engine.world_file``, or the built-in default site."""

    if settings.engine.world_file:
        return WorldConfig.from_yaml(Path(settings.engine.world_file))
    return default_world_config()


class SimulationEngine:
    """Single owner of the mutable world.

    Callers never touch the world directly: they :meth:`submit` commands,
    which are validated immediately and applied at the start of the next
    :meth:`tick`, and they read :class:`WorldSnapshot` copies produced by
    :meth:`snapshot` or pushed to subscribers.
    """

    def __init__(self, settings: Optional[AppSettings] = None, world_config: Optional[WorldConfig] = None) -> None:
        self.settings = settings or get_settings()
        self.world_config = world_config or load_world_config(self.settings)
        self.scheduler = TaskScheduler(battery_floor=self.settings.fleet.assignment_battery_floor)
        self.reservations = ReservationManager()
        self.health_monitor = RobotHealthMonitor(max_stalled_ticks=self.settings.fleet.max_stalled_ticks)
        self.tracker = FleetMetricsTracker()
        self.broadcaster = SnapshotBroadcaster()
        self.event_log = self.broadcaster.subscribe(EventLog(self.settings.engine.event_log_size))

        self.status = RunStatus.STOPPED
        self.tick_count = 0
        self.sim_time = 0.0
        self.time_multiplier = self.settings.timing.default_time_multiplier

        self._queue: Deque[Command] = deque()
        self._queue_lock = threading.Lock()
        self._rejections: Deque[EngineEvent] = deque()
        self._pending_events: List[EngineEvent] = []
        self._event_seq = 0
        self._loop_task: Optional[asyncio.Task] = None

        self._handlers: Dict[str, Callable[[Any, TickContext], None]] = {
            "start": self._apply_start,
            "pause": self._apply_pause,
            "stop": self._apply_stop,
            "reset": self._apply_reset,
            "set-speed": self._apply_set_speed,
            "create-task": self._apply_create_task,
            "create-task-bulk": self._apply_create_task_bulk,
            "create-assembly": self._apply_create_assembly,
            "assign-task": self._apply_assign_task,
            "cancel-task": self._apply_cancel_task,
            "move-robot": self._apply_move_robot,
            "stop-robot": self._apply_stop_robot,
            "recover-robot": self._apply_recover_robot,
            "spawn-robot": self._apply_spawn_robot,
            "spawn-object": self._apply_spawn_object,
            "add-obstacle": self._apply_add_obstacle,
            "remove-obstacle": self._apply_remove_obstacle,
            "update-zones": self._apply_update_zones,
            "request-auto-schedule": self._apply_request_auto_schedule,
        }
        self._build_world()

    def _build_world(self) -> None:
        seed = self.settings.engine.random_seed
        self._world = SiteWorld(
            self.world_config,
            cell_size=self.settings.grid.cell_size,
            inflation=self.settings.grid.obstacle_inflation,
            rng=random.Random(seed),
        )
        self.pipeline = TaskPipeline(self.settings.tasks)
        self.reservations.reset()
        self.health_monitor.reset()
        self.tracker.reset()
        self.controller = RobotController(
            self._world, self.pipeline, self.reservations, self.tracker, self.settings
        )

    # ------------------------------------------------------------- admission
    def submit(self, command: Union[Command, Dict[str, Any]]) -> CommandReceipt:
        """Validate ``command`` and queue it for the next tick.

        Raises :class:`AdmissionError` without touching the world when the
        command is malformed, refers to unknown entities, violates a
        precondition or the queue is full.
        """

        command_type = command.get("type", "unknown") if isinstance(command, dict) else command.type
        try:
            if isinstance(command, dict):
                command = parse_command(command)
            self._validate(command)
            with self._queue_lock:
                if len(self._queue) >= self.settings.engine.command_queue_size:
                    raise AdmissionError(AdmissionError.QUEUE_FULL, "command queue is full")
                self._queue.append(command)
                queued = len(self._queue)
        except AdmissionError as exc:
            record_command(str(command_type), accepted=False)
            self._reject(command, str(command_type), exc)
            raise
        record_command(command.type, accepted=True)
        return CommandReceipt(
            command_id=command.command_id,
            type=command.type,
            queued=queued,
            tick=self.tick_count,
            task_id=getattr(command, "task_id", None),
        )

    def _reject(self, command: Any, command_type: str, exc: AdmissionError) -> None:
        command_id = command.get("command_id") if isinstance(command, dict) else command.command_id
        logger.info("command_rejected", type=command_type, code=exc.code, reason=exc.message)
        event = EngineEvent(
            type=EventType.COMMAND_REJECTED,
            tick=self.tick_count,
            payload={"command_id": command_id, "type": command_type, "code": exc.code, "reason": exc.message},
        )
        with self._queue_lock:
            self._rejections.append(event)

    def _validate(self, command: Command) -> None:
        validator = getattr(self, f"_validate_{command.type.replace('-', '_')}", None)
        if validator is not None:
            validator(command)

    def _robot(self, robot_id: str) -> RobotAgent:
        robot = self._world.robots.get(robot_id)
        if robot is None:
            raise AdmissionError(AdmissionError.NOT_FOUND, f"robot {robot_id} not found")
        return robot

    def _task(self, task_id: str):
        task = self._world.tasks.get(task_id)
        if task is None:
            raise AdmissionError(AdmissionError.NOT_FOUND, f"task {task_id} not found")
        return task

    def _zone(self, zone_id: str):
        zone = self._world.zones.get(zone_id)
        if zone is None:
            raise AdmissionError(AdmissionError.NOT_FOUND, f"zone {zone_id} not found")
        return zone

    def _claimable_object(self, object_id: str):
        obj = self._world.objects.get(object_id)
        if obj is None:
            raise AdmissionError(AdmissionError.NOT_FOUND, f"object {object_id} not found")
        if obj.status != ObjectStatus.AVAILABLE:
            raise AdmissionError(AdmissionError.CONFLICT, f"object {object_id} is {obj.status.value}")
        if object_id in self._world.active_object_ids():
            raise AdmissionError(AdmissionError.CONFLICT, f"object {object_id} is already claimed by an active task")
        return obj

    def _check_eligible(self, robot: RobotAgent, kind: TaskKind, obj) -> None:
        reason = self.scheduler.eligibility_error(robot.telemetry(), kind, obj)
        if reason is not None:
            raise AdmissionError(AdmissionError.CONFLICT, reason)

    def _check_free_point(self, x: float, y: float) -> None:
        if not self._world.dimensions.contains(x, y):
            raise AdmissionError(AdmissionError.INVALID, f"point ({x}, {y}) is outside the site")
        if self._world.grid.is_blocked_point(x, y):
            raise AdmissionError(AdmissionError.CONFLICT, f"point ({x}, {y}) is inside an obstacle")

    def _validate_set_speed(self, command: SetSpeedCommand) -> None:
        timing = self.settings.timing
        if not timing.min_time_multiplier <= command.multiplier <= timing.max_time_multiplier:
            raise AdmissionError(
                AdmissionError.INVALID,
                f"multiplier must be within [{timing.min_time_multiplier}, {timing.max_time_multiplier}]",
            )

    def _validate_create_task(self, command: CreateTaskCommand) -> None:
        if command.task_id in self._world.tasks:
            raise AdmissionError(AdmissionError.CONFLICT, f"task {command.task_id} already exists")
        obj = self._claimable_object(command.object_id)
        self._zone(command.target_zone_id)
        if command.robot_id is not None:
            self._check_eligible(self._robot(command.robot_id), command.kind, obj)

    def _validate_create_task_bulk(self, command: CreateTaskBulkCommand) -> None:
        self._zone(command.target_zone_id)

    def _validate_create_assembly(self, command: CreateAssemblyCommand) -> None:
        self._zone(command.zone_id)
        if len(self._eligible_objects(command.object_ids)) < 2:
            raise AdmissionError(AdmissionError.CONFLICT, "an assembly needs at least two available parts")

    def _validate_assign_task(self, command: AssignTaskCommand) -> None:
        task = self._task(command.task_id)
        if task.status != TaskStatus.PENDING:
            raise AdmissionError(AdmissionError.CONFLICT, f"task {task.id} is {task.status.value}")
        self._check_eligible(self._robot(command.robot_id), task.kind, self._world.objects.get(task.object_id))

    def _validate_cancel_task(self, command: CancelTaskCommand) -> None:
        task = self._task(command.task_id)
        if task.status.terminal:
            raise AdmissionError(AdmissionError.CONFLICT, f"task {task.id} is already {task.status.value}")

    def _validate_move_robot(self, command: MoveRobotCommand) -> None:
        self._check_controllable(self._robot(command.robot_id))
        self._check_free_point(command.x, command.y)

    def _validate_stop_robot(self, command: StopRobotCommand) -> None:
        self._check_controllable(self._robot(command.robot_id))

    @staticmethod
    def _check_controllable(robot: RobotAgent) -> None:
        if robot.manual_control or (robot.state == RobotState.IDLE and robot.task_id is None):
            return
        raise AdmissionError(AdmissionError.CONFLICT, f"robot {robot.id} is {robot.state.value}")

    def _validate_recover_robot(self, command: RecoverRobotCommand) -> None:
        robot = self._robot(command.robot_id)
        if robot.state != RobotState.ERROR:
            raise AdmissionError(AdmissionError.CONFLICT, f"robot {robot.id} is not faulted")

    def _validate_spawn_robot(self, command: SpawnRobotCommand) -> None:
        if command.robot_id in self._world.robots:
            raise AdmissionError(AdmissionError.CONFLICT, f"robot {command.robot_id} already exists")
        self._check_free_point(command.x, command.y)

    def _validate_spawn_object(self, command: SpawnObjectCommand) -> None:
        self._zone(command.zone_id)
        if command.object_id and command.object_id in self._world.objects:
            raise AdmissionError(AdmissionError.CONFLICT, f"object {command.object_id} already exists")

    def _validate_add_obstacle(self, command: AddObstacleCommand) -> None:
        if command.obstacle_id in self._world.obstacles:
            raise AdmissionError(AdmissionError.CONFLICT, f"obstacle {command.obstacle_id} already exists")

    def _validate_remove_obstacle(self, command: RemoveObstacleCommand) -> None:
        if command.obstacle_id not in self._world.obstacles:
            raise AdmissionError(AdmissionError.NOT_FOUND, f"obstacle {command.obstacle_id} not found")

    def _validate_update_zones(self, command: UpdateZonesCommand) -> None:
        zone_ids = [zone.id for zone in command.zones]
        if len(set(zone_ids)) != len(zone_ids):
            raise AdmissionError(AdmissionError.INVALID, "zone ids must be unique")
        dimensions = self._world.dimensions
        for zone in command.zones:
            bounds = zone.bounds
            if bounds.x < 0 or bounds.y < 0 or bounds.right > dimensions.width or bounds.bottom > dimensions.height:
                raise AdmissionError(AdmissionError.INVALID, f"zone {zone.id} extends outside the site")
        for batch in command.object_batches or []:
            if batch.zone_id not in zone_ids:
                raise AdmissionError(AdmissionError.NOT_FOUND, f"zone {batch.zone_id} not found")

    def _eligible_objects(self, object_ids: List[str]) -> List[str]:
        eligible = []
        for object_id in dict.fromkeys(object_ids):
            try:
                self._claimable_object(object_id)
            except AdmissionError:
                continue
            eligible.append(object_id)
        return eligible

    # ------------------------------------------------------------------- tick
    def _context(self) -> TickContext:
        return TickContext(
            tick=self.tick_count,
            sim_time=self.sim_time,
            dt=self.settings.timing.tick_seconds * self.time_multiplier,
            emit=self._emit,
        )

    def _emit(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        self._event_seq += 1
        self._pending_events.append(
            EngineEvent(id=self._event_seq, type=event_type, tick=self.tick_count, payload=payload)
        )

    def _drain(self) -> Tuple[List[Command], List[EngineEvent]]:
        with self._queue_lock:
            commands = list(self._queue)
            self._queue.clear()
            rejections = list(self._rejections)
            self._rejections.clear()
        return commands, rejections

    def tick(self) -> Optional[WorldSnapshot]:
        """Advance the simulation by one tick and publish the result.

        Returns the published snapshot, or ``None`` when nothing was published
        or no subscriber asked for snapshots.
        """

        started = time.perf_counter()
        with tracer.start_as_current_span("simulation.tick") as span:
            commands, rejections = self._drain()
            for event in rejections:
                self._event_seq += 1
                self._pending_events.append(event.model_copy(update={"id": self._event_seq}))
            for command in commands:
                self._apply(command)

            running = self.status == RunStatus.RUNNING
            if running:
                self.tick_count += 1
                self.sim_time += self.settings.timing.tick_seconds * self.time_multiplier
                self._advance(self._context())

            self._world.recompute_occupancy()
            if running:
                self.tracker.observe_tick(self._world.robots.values())

            snapshot = None
            if running or commands or self._pending_events:
                snapshot = self._publish()

            span.set_attribute("simulation.tick", self.tick_count)
            span.set_attribute("simulation.commands", len(commands))
        SIMULATION_TICK_GAUGE.set(self.tick_count)
        TICK_DURATION.observe(time.perf_counter() - started)
        return snapshot

    def _apply(self, command: Command) -> None:
        ctx = self._context()
        try:
            self._validate(command)
            self._handlers[command.type](command, ctx)
        except AdmissionError as exc:
            logger.info("command_dropped", type=command.type, code=exc.code, reason=exc.message)
            self._emit(
                EventType.COMMAND_REJECTED,
                {"command_id": command.command_id, "type": command.type, "code": exc.code, "reason": exc.message},
            )

    def _advance(self, ctx: TickContext) -> None:
        robots = list(self._world.iter_robots())
        collision_avoidance = self.settings.fleet.collision_avoidance
        if collision_avoidance:
            for robot in robots:
                self.reservations.claim(robot.id, self._world.grid.cell_of(*robot.position), ctx.tick)

        if self.settings.tasks.auto_assign:
            self._dispatch(ctx)

        for robot in robots:
            try:
                self.controller.advance(robot, ctx)
            except Exception:
                logger.exception("robot_advance_failed", robot_id=robot.id, tick=ctx.tick)
                if robot.state != RobotState.ERROR:
                    self.controller.fault(robot, "internal error while advancing robot", ctx)
            if collision_avoidance:
                self.reservations.claim(robot.id, self._world.grid.cell_of(*robot.position), ctx.tick)

        for robot in robots:
            if robot.state == RobotState.ERROR:
                continue
            wants_motion = robot.state == RobotState.MOVING and robot.has_path()
            status = self.health_monitor.observe(robot.id, robot.position, wants_motion)
            if status.faulted:
                self.controller.fault(robot, "persistent obstruction", ctx)
                self.health_monitor.clear_fault(robot.id)

        sensors = self.settings.sensors
        if sensors.enabled and ctx.tick % sensors.every_n_ticks == 0:
            obstacles = list(self._world.obstacles.values())
            objects = list(self._world.objects.values())
            for robot in robots:
                robot.sensors = sample_sensors(robot.pose, self._world.grid, obstacles, objects, sensors, ctx.tick)

    def _dispatch(self, ctx: TickContext) -> None:
        pending = [task for task in self._world.tasks.values() if task.status == TaskStatus.PENDING]
        if not pending:
            return
        candidates = [robot.telemetry() for robot in self._world.iter_robots() if robot.is_available]
        if not candidates:
            return
        for task, record in self.scheduler.plan_assignments(pending, candidates, self._world.objects):
            self.controller.assign(task, self._world.robots[record.robot_id], ctx)

    def _publish(self) -> Optional[WorldSnapshot]:
        events, self._pending_events = self._pending_events, []
        snapshot = self.snapshot() if self.broadcaster.wants_snapshots else None
        self.broadcaster.publish(snapshot, events)
        return snapshot

    # ------------------------------------------------------------ run status
    def _set_status(self, status: RunStatus, ctx: TickContext) -> None:
        previous = self.status
        self.status = status
        ctx.emit(EventType.RUN_STATUS_CHANGED, {"from": previous.value, "to": status.value})
        logger.info("run_status_changed", previous=previous.value, status=status.value)

    def _apply_start(self, command: StartCommand, ctx: TickContext) -> None:
        if self.status != RunStatus.RUNNING:
            self._set_status(RunStatus.RUNNING, ctx)

    def _apply_pause(self, command: PauseCommand, ctx: TickContext) -> None:
        if self.status == RunStatus.RUNNING:
            self._set_status(RunStatus.PAUSED, ctx)

    def _apply_stop(self, command: StopCommand, ctx: TickContext) -> None:
        if self.status == RunStatus.STOPPED:
            return
        self._set_status(RunStatus.STOPPED, ctx)
        for task in self._world.tasks.values():
            if task.retry_at is not None:
                task.retry_at = max(0.0, task.retry_at - self.sim_time)
        self.tick_count = 0
        self.sim_time = 0.0
        self.tracker.reset()
        self.reservations.reset()

    def _apply_reset(self, command: ResetCommand, ctx: TickContext) -> None:
        previous = self.status
        self._build_world()
        self.tick_count = 0
        self.sim_time = 0.0
        self.time_multiplier = self.settings.timing.default_time_multiplier
        self.status = RunStatus.STOPPED
        if previous != RunStatus.STOPPED:
            ctx.emit(EventType.RUN_STATUS_CHANGED, {"from": previous.value, "to": RunStatus.STOPPED.value})
        ctx.emit(EventType.WORLD_RESET, {"robots": len(self._world.robots), "objects": len(self._world.objects)})
        logger.info("world_reset", robots=len(self._world.robots), objects=len(self._world.objects))

    def _apply_set_speed(self, command: SetSpeedCommand, ctx: TickContext) -> None:
        if command.multiplier == self.time_multiplier:
            return
        previous = self.time_multiplier
        self.time_multiplier = command.multiplier
        ctx.emit(EventType.SPEED_CHANGED, {"from": previous, "to": command.multiplier})

    # ------------------------------------------------------------------ tasks
    def _create_task(
        self,
        ctx: TickContext,
        kind: TaskKind,
        object_id: str,
        zone_id: str,
        priority: TaskPriority,
        task_id: Optional[str] = None,
        final_inspection: bool = False,
    ):
        task = self.pipeline.create(
            kind,
            object_id,
            zone_id,
            priority=priority,
            sim_time=self.sim_time,
            task_id=task_id,
            final_inspection=final_inspection,
        )
        self._world.tasks[task.id] = task
        self.tracker.record_created()
        ctx.emit(
            EventType.TASK_CREATED,
            {
                "task_id": task.id,
                "kind": task.kind.value,
                "priority": task.priority.value,
                "object_id": object_id,
                "zone_id": zone_id,
            },
        )
        logger.info("task_created", task_id=task.id, kind=kind.value, object_id=object_id, zone_id=zone_id)
        return task

    def _apply_create_task(self, command: CreateTaskCommand, ctx: TickContext) -> None:
        task = self._create_task(
            ctx, command.kind, command.object_id, command.target_zone_id, command.priority, task_id=command.task_id
        )
        if command.robot_id is not None:
            self.controller.assign(task, self._world.robots[command.robot_id], ctx)

    def _apply_create_task_bulk(self, command: CreateTaskBulkCommand, ctx: TickContext) -> None:
        taken: set = set()
        for object_id in self._eligible_objects(command.object_ids):
            task = self._create_task(ctx, command.kind, object_id, command.target_zone_id, command.priority)
            if not command.auto_assign:
                continue
            candidates = [robot.telemetry() for robot in self._world.iter_robots() if robot.is_available]
            choice = self.scheduler.select_robot(task.kind, self._world.objects[object_id], candidates, exclude=taken)
            if choice is not None:
                taken.add(choice.robot_id)
                self.controller.assign(task, self._world.robots[choice.robot_id], ctx)

    def _apply_create_assembly(self, command: CreateAssemblyCommand, ctx: TickContext) -> None:
        parts = self._eligible_objects(command.object_ids)
        for index, object_id in enumerate(parts):
            final = index == len(parts) - 1
            self._create_task(
                ctx,
                TaskKind.ASSEMBLE,
                object_id,
                command.zone_id,
                TaskPriority.HIGH if final else TaskPriority.NORMAL,
                final_inspection=final,
            )

    def _apply_assign_task(self, command: AssignTaskCommand, ctx: TickContext) -> None:
        self.controller.assign(self._world.tasks[command.task_id], self._world.robots[command.robot_id], ctx)

    def _apply_cancel_task(self, command: CancelTaskCommand, ctx: TickContext) -> None:
        self.controller.cancel(self._world.tasks[command.task_id], ctx)

    # ----------------------------------------------------------------- robots
    def _apply_move_robot(self, command: MoveRobotCommand, ctx: TickContext) -> None:
        robot = self._world.robots[command.robot_id]
        if command.teleport:
            self.controller.teleport(robot, (command.x, command.y))
            self.health_monitor.clear_fault(robot.id)
            return
        if not self.controller.move_manual(robot, (command.x, command.y)):
            raise AdmissionError(AdmissionError.CONFLICT, f"no path for {robot.id} to ({command.x}, {command.y})")

    def _apply_stop_robot(self, command: StopRobotCommand, ctx: TickContext) -> None:
        self.controller.stop_manual(self._world.robots[command.robot_id])

    def _apply_recover_robot(self, command: RecoverRobotCommand, ctx: TickContext) -> None:
        robot = self._world.robots[command.robot_id]
        robot.recover()
        self.health_monitor.clear_fault(robot.id)
        ctx.emit(EventType.ROBOT_RECOVERED, {"robot_id": robot.id})
        logger.info("robot_recovered", robot_id=robot.id)

    def _apply_spawn_robot(self, command: SpawnRobotCommand, ctx: TickContext) -> None:
        robot = self._world.spawn_robot(
            RobotSpec(
                id=command.robot_id,
                name=command.name,
                category=command.category,
                x=command.x,
                y=command.y,
                heading=command.heading,
            )
        )
        ctx.emit(EventType.ROBOT_SPAWNED, {"robot_id": robot.id, "category": robot.category.value})

    # ------------------------------------------------------ objects and layout
    def _apply_spawn_object(self, command: SpawnObjectCommand, ctx: TickContext) -> None:
        obj = self._world.spawn_object(command.material, command.zone_id, object_id=command.object_id)
        ctx.emit(
            EventType.OBJECT_SPAWNED,
            {"object_id": obj.id, "material": obj.material.value, "zone_id": command.zone_id},
        )

    def _apply_add_obstacle(self, command: AddObstacleCommand, ctx: TickContext) -> None:
        self._world.add_obstacle(
            Obstacle(
                id=command.obstacle_id,
                type=command.obstacle_type,
                bounds=command.bounds,
                temporary=command.temporary,
            )
        )
        ctx.emit(
            EventType.LAYOUT_CHANGED,
            {"added": command.obstacle_id, "layout_version": self._world.layout_version},
        )

    def _apply_remove_obstacle(self, command: RemoveObstacleCommand, ctx: TickContext) -> None:
        self._world.remove_obstacle(command.obstacle_id)
        ctx.emit(
            EventType.LAYOUT_CHANGED,
            {"removed": command.obstacle_id, "layout_version": self._world.layout_version},
        )

    def _apply_update_zones(self, command: UpdateZonesCommand, ctx: TickContext) -> None:
        reason = "zone layout replaced"
        for task in sorted(self._world.tasks.values(), key=lambda t: t.sequence):
            if not task.status.terminal:
                self.controller.abort(task, reason, ctx)
        for robot in self._world.iter_robots():
            self.controller.settle(robot)
        self._world.replace_zones(command.zones, command.object_batches)
        ctx.emit(
            EventType.LAYOUT_CHANGED,
            {
                "zones": len(self._world.zones),
                "objects": len(self._world.objects),
                "layout_version": self._world.layout_version,
            },
        )
        logger.info("zones_replaced", zones=len(self._world.zones), objects=len(self._world.objects))

    def _apply_request_auto_schedule(self, command: RequestAutoScheduleCommand, ctx: TickContext) -> None:
        pending = sum(1 for task in self._world.tasks.values() if task.status == TaskStatus.PENDING)
        ctx.emit(EventType.AUTO_SCHEDULE_REQUESTED, {"command_id": command.command_id, "pending_tasks": pending})

    # ---------------------------------------------------------------- queries
    def snapshot(self) -> WorldSnapshot:
        world = self._world
        robots = list(world.iter_robots())
        return WorldSnapshot(
            tick=self.tick_count,
            status=self.status,
            time_multiplier=self.time_multiplier,
            sim_time=self.sim_time,
            layout_version=world.layout_version,
            dimensions=world.dimensions.model_copy(),
            robots=[robot.telemetry() for robot in robots],
            objects=[world.objects[key].model_copy(deep=True) for key in sorted(world.objects)],
            zones=[world.zones[key].model_copy(deep=True) for key in sorted(world.zones)],
            obstacles=[world.obstacles[key].model_copy(deep=True) for key in sorted(world.obstacles)],
            tasks=[task.model_copy(deep=True) for task in sorted(world.tasks.values(), key=lambda t: t.sequence)],
            metrics=self.tracker.snapshot(robots),
        )

    def events(self, limit: int = 50, event_type: Optional[EventType] = None) -> List[EngineEvent]:
        return self.event_log.recent(limit, event_type)

    def robot_health(self) -> Dict[str, RobotHealthStatus]:
        return self.health_monitor.statuses()

    @property
    def queue_depth(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    def subscribe(self, subscriber: SnapshotSubscriber) -> SnapshotSubscriber:
        return self.broadcaster.subscribe(subscriber)

    def unsubscribe(self, subscriber: SnapshotSubscriber) -> None:
        self.broadcaster.unsubscribe(subscriber)

    # ------------------------------------------------------------------- loop
    @property
    def loop_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def run(self) -> None:
        """Tick at ``timing.tick_rate_hz`` until cancelled."""

        interval = self.settings.timing.tick_seconds
        loop = asyncio.get_running_loop()
        logger.info("simulation_loop_started", tick_rate_hz=self.settings.timing.tick_rate_hz)
        while True:
            started = loop.time()
            try:
                self.tick()
            except Exception:
                logger.exception("simulation_tick_failed", tick=self.tick_count)
            await asyncio.sleep(max(0.0, interval - (loop.time() - started)))

    def start_background(self) -> asyncio.Task:
        if not self.loop_running:
            self._loop_task = asyncio.get_running_loop().create_task(self.run())
        return self._loop_task

    async def shutdown(self) -> None:
        if self._loop_task is None:
            return
        self._loop_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._loop_task
        self._loop_task = None
        logger.info("simulation_loop_stopped", tick=self.tick_count)
