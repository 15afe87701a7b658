"""Per-tick behaviour of robots: task steps, charging, manual moves and faults."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from site_fleet.enterprise.config.settings import AppSettings
from site_fleet.enterprise.core import (
    EventType,
    ObjectStatus,
    RobotState,
    StepType,
    Task,
    TaskStatus,
    TaskStep,
    Vector2D,
    ZoneType,
)
from site_fleet.observability.metrics import PATHFINDING_DURATION, record_task_outcome
from site_fleet.pathfinding import find_path
from site_fleet.robot_agent import RobotAgent
from site_fleet.services.fleet_metrics import FleetMetricsTracker
from site_fleet.services.reservations import ReservationManager
from site_fleet.services.task_pipeline import StepOutcome, TaskPipeline
from site_fleet.site_world import SiteWorld

logger = structlog.get_logger(__name__)

Point = Tuple[float, float]
Emit = Callable[[EventType, Dict[str, Any]], None]


@dataclass
class TickContext:
    tick: int
    sim_time: float
    dt: float
    emit: Emit


class RobotController:
    """Advances one robot by one tick.

    The controller is the only place where robot state, object state and task
    steps change together, which keeps those three views consistent: an
    object is PICKED or CARRIED exactly while some robot holds it.
    """

    def __init__(
        self,
        world: SiteWorld,
        pipeline: TaskPipeline,
        reservations: ReservationManager,
        tracker: FleetMetricsTracker,
        settings: AppSettings,
    ) -> None:
        self.world = world
        self.pipeline = pipeline
        self.reservations = reservations
        self.tracker = tracker
        self.fleet = settings.fleet
        self.task_settings = settings.tasks
        self.max_expansions = settings.engine.max_path_expansions

    # ------------------------------------------------------------- planning
    def plan(self, robot: RobotAgent, goal: Point, avoid_robots: bool = False) -> Optional[List[Point]]:
        grid = self.world.grid
        if avoid_robots and self.fleet.collision_avoidance:
            others = self.reservations.cells(exclude_robot=robot.id)
            others.discard(grid.cell_of(*robot.position))
            others.discard(grid.cell_of(*goal))
            grid = grid.with_blocked(others)
        started = time.perf_counter()
        try:
            return find_path(robot.position, goal, grid, max_expansions=self.max_expansions)
        finally:
            PATHFINDING_DURATION.observe(time.perf_counter() - started)

    def _blocked_check(self, robot: RobotAgent) -> Optional[Callable[[float, float], bool]]:
        if not self.fleet.collision_avoidance:
            return None
        grid = self.world.grid
        own = grid.cell_of(*robot.position)
        goal = grid.cell_of(*robot.destination) if robot.destination else None

        def blocked(x: float, y: float) -> bool:
            cell = grid.cell_of(x, y)
            if cell == own or cell == goal:
                return False
            return self.reservations.is_reserved(cell, exclude_robot=robot.id)

        return blocked

    def _drive(self, robot: RobotAgent, ctx: TickContext) -> Tuple[bool, Optional[str]]:
        """Move along the cached path; returns ``(arrived, failure reason)``."""

        robot.rerouting = False
        if robot.has_path() and robot.path_version != self.world.layout_version:
            robot.rerouting = True
            path = self.plan(robot, robot.destination, avoid_robots=True)
            if path is None:
                return False, f"no path to {robot.destination} after layout change"
            robot.set_path(path, self.world.layout_version)

        moved, stopped = robot.advance(ctx.dt, self.fleet.arrival_epsilon, self._blocked_check(robot))
        self._spend(robot, distance=moved)
        if stopped:
            robot.rerouting = True
            path = self.plan(robot, robot.destination, avoid_robots=True)
            if path is not None:
                robot.set_path(path, self.world.layout_version)
            else:
                robot.reroute_attempts += 1
                if robot.reroute_attempts >= self.fleet.max_reroute_attempts:
                    return False, f"path blocked by other robots after {robot.reroute_attempts} reroute attempts"
            logger.debug("robot_rerouted", robot_id=robot.id, found=path is not None, failures=robot.reroute_attempts)
        return not robot.has_path(), None

    def _spend(self, robot: RobotAgent, distance: float = 0.0, action_seconds: float = 0.0) -> None:
        robot.drain(distance, action_seconds)
        if not robot.needs_charge and robot.battery < self.fleet.charge_threshold:
            robot.needs_charge = True
            logger.info("robot_needs_charge", robot_id=robot.id, battery=round(robot.battery, 2))

    # ------------------------------------------------------------- entry point
    def advance(self, robot: RobotAgent, ctx: TickContext) -> None:
        if robot.state == RobotState.ERROR:
            return
        if robot.state == RobotState.CHARGING:
            self._charge(robot, ctx)
            return

        task = self.world.tasks.get(robot.task_id) if robot.task_id else None
        if task is not None and not task.status.terminal:
            self._advance_task(robot, task, ctx)
        elif robot.task_id is not None:
            robot.detach_task()
        elif robot.charging_zone is not None:
            self._advance_charging_trip(robot, ctx)
        elif robot.manual_control:
            self._advance_manual(robot, ctx)
        elif robot.needs_charge:
            self._start_charging_trip(robot, ctx)

        if robot.state != RobotState.ERROR and robot.battery <= 0.0:
            self.fault(robot, "battery depleted", ctx)

    # ------------------------------------------------------------------ tasks
    def assign(self, task: Task, robot: RobotAgent, ctx: TickContext) -> None:
        self.pipeline.assign(task, robot.id)
        robot.attach_task(task.id)
        ctx.emit(EventType.TASK_ASSIGNED, {"task_id": task.id, "robot_id": robot.id})
        logger.info("task_assigned", task_id=task.id, robot_id=robot.id, kind=task.kind.value)

    def cancel(self, task: Task, ctx: TickContext) -> None:
        robot = self.world.robots.get(task.robot_id) if task.robot_id else None
        if robot is not None and robot.task_id == task.id:
            self._drop_held(robot)
            robot.detach_task()
        self.world.release_slot(task.id)
        self.pipeline.cancel(task, ctx.sim_time)
        self.tracker.record_cancelled(task)
        ctx.emit(EventType.TASK_CANCELLED, {"task_id": task.id, "robot_id": task.robot_id})

    def abort(self, task: Task, reason: str, ctx: TickContext) -> None:
        """Fail ``task`` at once, without retry, and free its robot."""

        robot = self.world.robots.get(task.robot_id) if task.robot_id else None
        if robot is not None and robot.task_id == task.id:
            self._drop_held(robot)
            robot.detach_task()
        self.world.release_slot(task.id)
        self.pipeline.fail(task, reason, ctx.sim_time)
        self.tracker.record_failed(task)
        ctx.emit(
            EventType.TASK_FAILED,
            {"task_id": task.id, "robot_id": task.robot_id, "reason": reason, "retry_count": task.retry_count},
        )

    def _advance_task(self, robot: RobotAgent, task: Task, ctx: TickContext) -> None:
        if task.status == TaskStatus.ASSIGNED:
            self.pipeline.begin(task, ctx.sim_time)
            ctx.emit(EventType.TASK_STARTED, {"task_id": task.id, "robot_id": robot.id})
        if not self.pipeline.ready(task, ctx.sim_time):
            return

        step = task.active_step
        if step is None:
            self._finish_completed(robot, task, ctx)
            return
        if not step.started and not self._enter_step(robot, task, step, ctx):
            return
        if step.type.is_motion:
            if robot.has_path() and robot.path_version != self.world.layout_version:
                if not self._refresh_goal(robot, task, step, ctx):
                    return
            arrived, failure = self._drive(robot, ctx)
            if failure is not None:
                self._step_failed(robot, task, failure, ctx)
            elif arrived:
                self._complete_step(robot, task, step, ctx)
        else:
            self._progress_action(robot, task, step, ctx)

    def _enter_step(self, robot: RobotAgent, task: Task, step: TaskStep, ctx: TickContext) -> bool:
        self.pipeline.start_step(task, ctx.sim_time)
        robot.reroute_attempts = 0

        if step.type.is_motion:
            goal = self._motion_goal(robot, task, step)
            if isinstance(goal, str):
                self._step_failed(robot, task, goal, ctx)
                return False
            step.target = Vector2D.from_tuple(goal)
            path = self.plan(robot, goal, avoid_robots=True)
            if path is None:
                self._step_failed(robot, task, f"no path to {step.target_id}", ctx)
                return False
            robot.set_path(path, self.world.layout_version)
            robot.state = RobotState.MOVING
            if robot.held_object:
                held = self.world.objects.get(robot.held_object)
                if held is not None:
                    held.status = ObjectStatus.CARRIED
            return True

        if step.type == StepType.PICKING:
            obj = self.world.objects.get(step.target_id)
            robot.pick_attempts += 1
            if obj is None:
                self._step_failed(robot, task, f"object {step.target_id} no longer exists", ctx)
                return False
            if obj.status != ObjectStatus.AVAILABLE or obj.holder is not None:
                self._step_failed(robot, task, f"object {obj.id} is {obj.status.value}", ctx)
                return False
            if robot.distance_to(obj.pose.to_tuple()) > self.task_settings.pick_reach:
                self._step_failed(robot, task, f"object {obj.id} is out of reach", ctx)
                return False
            obj.status = ObjectStatus.PICKED
            obj.holder = robot.id
            obj.zone_id = None
            robot.held_object = obj.id
            robot.begin_action(self.task_settings.gripper_action_seconds, RobotState.PICKING)
        elif step.type == StepType.PLACING:
            if robot.held_object is None:
                self._step_failed(robot, task, "nothing to place", ctx)
                return False
            robot.begin_action(self.task_settings.gripper_action_seconds, RobotState.PLACING)
        else:
            robot.begin_action(self.task_settings.inspection_seconds, RobotState.INSPECTING)
        return True

    def _motion_goal(self, robot: RobotAgent, task: Task, step: TaskStep):
        if step.type == StepType.MOVE_TO_PICKUP:
            obj = self.world.objects.get(step.target_id)
            if obj is None:
                return f"object {step.target_id} no longer exists"
            if obj.held and obj.holder != robot.id:
                return f"object {obj.id} is held by {obj.holder}"
            return obj.pose.to_tuple()
        zone = self.world.zones.get(step.target_id)
        if zone is None:
            return f"zone {step.target_id} no longer exists"
        return self.world.claim_slot(zone, task.id)

    def _refresh_goal(self, robot: RobotAgent, task: Task, step: TaskStep, ctx: TickContext) -> bool:
        """Resolve the goal of a motion step again after the layout changed."""

        goal = self._motion_goal(robot, task, step)
        if isinstance(goal, str):
            self._step_failed(robot, task, goal, ctx)
            return False
        step.target = Vector2D.from_tuple(goal)
        robot.destination = goal
        return True

    def _progress_action(self, robot: RobotAgent, task: Task, step: TaskStep, ctx: TickContext) -> None:
        spent, done = robot.tick_action(ctx.dt)
        self._spend(robot, action_seconds=spent)
        if not done:
            return

        if step.type == StepType.PICKING:
            robot.pick_successes += 1
            robot.state = RobotState.CARRYING
        elif step.type == StepType.PLACING:
            obj = self.world.objects.get(robot.held_object) if robot.held_object else None
            if obj is not None:
                self.world.release_object(obj, robot.position, ObjectStatus.PLACED)
            robot.held_object = None
            self.world.release_slot(task.id)
        elif step.type == StepType.INSPECTING:
            obj = self.world.objects.get(step.target_id)
            if obj is not None:
                obj.inspected = True
        self._complete_step(robot, task, step, ctx)

    def _complete_step(self, robot: RobotAgent, task: Task, step: TaskStep, ctx: TickContext) -> None:
        robot.reroute_attempts = 0
        if step.type.is_motion:
            robot.clear_path()
        outcome = self.pipeline.complete_step(task, ctx.sim_time)
        if outcome is StepOutcome.COMPLETED:
            self._finish_completed(robot, task, ctx)
            return
        if robot.needs_charge and robot.held_object is None:
            self._interrupt_for_charge(robot, task, ctx)

    def _finish_completed(self, robot: RobotAgent, task: Task, ctx: TickContext) -> None:
        robot.tasks_completed += 1
        robot.detach_task()
        self.world.release_slot(task.id)
        self.tracker.record_completed(task)
        ctx.emit(
            EventType.TASK_COMPLETED,
            {"task_id": task.id, "robot_id": robot.id, "object_id": task.object_id, "duration": task.duration},
        )
        logger.info("task_completed", task_id=task.id, robot_id=robot.id, duration=task.duration)

    def _step_failed(self, robot: RobotAgent, task: Task, reason: str, ctx: TickContext) -> None:
        robot.clear_path()
        robot.action_remaining = 0.0
        outcome = self.pipeline.record_failure(task, reason, ctx.sim_time)
        if outcome is StepOutcome.RETRY:
            return
        self._finish_failed(robot, task, reason, ctx)

    def _finish_failed(self, robot: RobotAgent, task: Task, reason: str, ctx: TickContext) -> None:
        self._drop_held(robot)
        robot.detach_task()
        self.world.release_slot(task.id)
        self.tracker.record_failed(task)
        ctx.emit(
            EventType.TASK_FAILED,
            {"task_id": task.id, "robot_id": robot.id, "reason": reason, "retry_count": task.retry_count},
        )

    def _drop_held(self, robot: RobotAgent) -> None:
        if robot.held_object is None:
            return
        obj = self.world.objects.get(robot.held_object)
        if obj is not None:
            self.world.release_object(obj, robot.position, ObjectStatus.AVAILABLE)
        robot.held_object = None

    # --------------------------------------------------------------- charging
    def _interrupt_for_charge(self, robot: RobotAgent, task: Task, ctx: TickContext) -> None:
        robot.detach_task()
        self.world.release_slot(task.id)
        reason = "battery below charging threshold"
        if self.task_settings.charge_interrupt_policy == "requeue":
            resume_at = self.pipeline.requeue(task, self.task_settings.requeue_resume)
            record_task_outcome("requeued")
            ctx.emit(
                EventType.TASK_REQUEUED,
                {"task_id": task.id, "robot_id": robot.id, "reason": reason, "resume_step": resume_at},
            )
            logger.info("task_requeued", task_id=task.id, robot_id=robot.id, resume_step=resume_at)
        else:
            self.pipeline.fail(task, reason, ctx.sim_time)
            self.tracker.record_failed(task)
            ctx.emit(
                EventType.TASK_FAILED,
                {"task_id": task.id, "robot_id": robot.id, "reason": reason, "retry_count": task.retry_count},
            )
        self._start_charging_trip(robot, ctx)

    def _start_charging_trip(self, robot: RobotAgent, ctx: TickContext) -> None:
        zones = sorted(
            self.world.zones_of_type(ZoneType.CHARGING),
            key=lambda zone: (robot.distance_to(zone.bounds.center().to_tuple()), zone.id),
        )
        for zone in zones:
            if zone.contains(*robot.position):
                robot.charging_zone = zone.id
                robot.clear_path()
                robot.state = RobotState.CHARGING
                ctx.emit(EventType.ROBOT_CHARGING, {"robot_id": robot.id, "zone_id": zone.id})
                return
            goal = self.world.claim_slot(zone, robot.id)
            path = self.plan(robot, goal, avoid_robots=True)
            if path is None:
                self.world.release_slot(robot.id)
                continue
            robot.charging_zone = zone.id
            robot.reroute_attempts = 0
            robot.set_path(path, self.world.layout_version)
            robot.state = RobotState.MOVING
            ctx.emit(EventType.ROBOT_CHARGING, {"robot_id": robot.id, "zone_id": zone.id})
            logger.info("robot_heading_to_charger", robot_id=robot.id, zone_id=zone.id, battery=round(robot.battery, 2))
            return
        self.fault(robot, "no reachable charging zone", ctx)

    def _advance_charging_trip(self, robot: RobotAgent, ctx: TickContext) -> None:
        arrived, failure = self._drive(robot, ctx)
        if failure is not None:
            # Abandon this trip; the next tick plans a fresh one.
            logger.info("charging_trip_replanned", robot_id=robot.id, reason=failure)
            self.world.release_slot(robot.id)
            robot.charging_zone = None
            robot.clear_path()
            robot.state = RobotState.IDLE
            return
        if arrived:
            robot.clear_path()
            robot.state = RobotState.CHARGING

    def _charge(self, robot: RobotAgent, ctx: TickContext) -> None:
        if robot.charge(self.fleet.charge_rate_per_second * ctx.dt):
            robot.needs_charge = False
            robot.charging_zone = None
            robot.state = RobotState.IDLE
            self.world.release_slot(robot.id)
            logger.info("robot_charged", robot_id=robot.id)

    # ----------------------------------------------------------------- manual
    def move_manual(self, robot: RobotAgent, goal: Point) -> bool:
        path = self.plan(robot, goal, avoid_robots=True)
        if path is None:
            return False
        robot.manual_control = True
        robot.reroute_attempts = 0
        robot.set_path(path, self.world.layout_version)
        robot.state = RobotState.MOVING
        return True

    def teleport(self, robot: RobotAgent, point: Point) -> None:
        robot.pose.x, robot.pose.y = point
        self.stop_manual(robot)

    def settle(self, robot: RobotAgent) -> None:
        """Halt ``robot`` where it stands, dropping manual moves and charging trips."""

        self.world.release_slot(robot.id)
        robot.charging_zone = None
        self.stop_manual(robot)

    def stop_manual(self, robot: RobotAgent) -> None:
        robot.clear_path()
        robot.manual_control = False
        if robot.state != RobotState.ERROR:
            robot.state = RobotState.IDLE

    def _advance_manual(self, robot: RobotAgent, ctx: TickContext) -> None:
        arrived, failure = self._drive(robot, ctx)
        if failure is not None:
            logger.info("manual_move_aborted", robot_id=robot.id, reason=failure)
            self.stop_manual(robot)
        elif arrived:
            self.stop_manual(robot)

    # ----------------------------------------------------------------- faults
    def fault(self, robot: RobotAgent, reason: str, ctx: TickContext) -> None:
        """Put ``robot`` in ERROR, failing its task without retry."""

        task = self.world.tasks.get(robot.task_id) if robot.task_id else None
        self._drop_held(robot)
        self.world.release_slot(robot.id)
        if task is not None and not task.status.terminal:
            self.world.release_slot(task.id)
            self.pipeline.fail(task, reason, ctx.sim_time)
            self.tracker.record_failed(task)
            ctx.emit(
                EventType.TASK_FAILED,
                {"task_id": task.id, "robot_id": robot.id, "reason": reason, "retry_count": task.retry_count},
            )
        robot.mark_faulted(reason)
        ctx.emit(
            EventType.ROBOT_FAULTED,
            {"robot_id": robot.id, "reason": reason, "task_id": task.id if task else None},
        )
