import pytest

from site_fleet.enterprise.core import (
    Bounds,
    EventType,
    MaterialType,
    ObjectStatus,
    Obstacle,
    ObstacleType,
    RobotCategory,
    RobotState,
    RunStatus,
    TaskStatus,
    Zone,
    ZoneType,
)
from site_fleet.services.broadcast import SnapshotSubscriber
from site_fleet.services.commands import (
    AddObstacleCommand,
    AdmissionError,
    AssignTaskCommand,
    CancelTaskCommand,
    CreateAssemblyCommand,
    CreateTaskCommand,
    MoveRobotCommand,
    PauseCommand,
    RecoverRobotCommand,
    RemoveObstacleCommand,
    ResetCommand,
    SetSpeedCommand,
    SpawnObjectCommand,
    StartCommand,
    StopCommand,
    UpdateZonesCommand,
)
from site_fleet.site_world import ObjectBatch, ObjectSpec, RobotSpec

from conftest import enclosure, placed_object, run_until, small_site


class Recorder(SnapshotSubscriber):
    wants_snapshots = False

    def __init__(self):
        self.events = []

    def on_event(self, event):
        self.events.append(event)

    def of(self, event_type):
        return [event for event in self.events if event.type == event_type]


def _recording(engine) -> Recorder:
    return engine.subscribe(Recorder())


def _task(engine, task_id):
    return engine.snapshot().find_task(task_id)


def _assert_holders_consistent(engine):
    snapshot = engine.snapshot()
    holders = {robot.held_object: robot.robot_id for robot in snapshot.robots if robot.held_object}
    for obj in snapshot.objects:
        if obj.status in (ObjectStatus.PICKED, ObjectStatus.CARRIED):
            assert holders.get(obj.id) == obj.holder
        else:
            assert obj.holder is None
            assert obj.id not in holders


def test_pick_and_place_task_runs_to_completion(make_engine):
    engine = make_engine()
    recorder = _recording(engine)
    occupancy_before = engine.snapshot().find_zone("assembly").occupancy

    engine.submit(CreateTaskCommand(task_id="task-a", object_id="box-1", target_zone_id="assembly"))
    engine.tick()

    first = _task(engine, "task-a")
    assert first.robot_id == "mm-1"
    assert first.status == TaskStatus.IN_PROGRESS
    assigned = recorder.of(EventType.TASK_ASSIGNED)
    assert [event.tick for event in assigned] == [engine.snapshot().tick]

    def done():
        _assert_holders_consistent(engine)
        return _task(engine, "task-a").status.terminal

    run_until(engine, done)
    snapshot = engine.snapshot()
    task = snapshot.find_task("task-a")
    obj = snapshot.find_object("box-1")
    robot = snapshot.find_robot("mm-1")

    assert task.status == TaskStatus.COMPLETED
    assert task.robot_id == "mm-1"
    assert all(step.completed for step in task.steps)
    assert obj.status == ObjectStatus.PLACED
    assert obj.zone_id == "assembly"
    assert "box-1" in snapshot.find_zone("assembly").objects
    assert snapshot.find_zone("assembly").occupancy == occupancy_before + 1
    assert "box-1" not in snapshot.find_zone("storage").objects
    assert robot.state == RobotState.IDLE
    assert robot.task_id is None
    assert robot.tasks_completed == 1
    assert snapshot.metrics.tasks_completed == 1
    assert snapshot.metrics.completion_rate == 1.0
    assert snapshot.metrics.pick_success_rate == 1.0

    lifecycle = [
        event.type
        for event in recorder.events
        if event.type.value.startswith("task-") and event.payload.get("task_id") == "task-a"
    ]
    assert lifecycle == [
        EventType.TASK_CREATED,
        EventType.TASK_ASSIGNED,
        EventType.TASK_STARTED,
        EventType.TASK_COMPLETED,
    ]


def test_placed_objects_cannot_be_claimed(make_engine):
    engine = make_engine(small_site(objects=[placed_object("done-1", 14.0, 3.0)]))

    with pytest.raises(AdmissionError) as excinfo:
        engine.submit(CreateTaskCommand(object_id="done-1", target_zone_id="storage"))

    assert excinfo.value.code == AdmissionError.CONFLICT
    engine.tick()
    assert engine.snapshot().tasks == []


def test_unknown_references_are_not_found(make_engine):
    engine = make_engine()

    with pytest.raises(AdmissionError) as excinfo:
        engine.submit(CreateTaskCommand(object_id="box-1", target_zone_id="nowhere"))
    assert excinfo.value.code == AdmissionError.NOT_FOUND

    with pytest.raises(AdmissionError) as excinfo:
        engine.submit({"type": "create-task", "object_id": "box-1"})
    assert excinfo.value.code == AdmissionError.INVALID


def test_second_claim_on_same_object_is_rejected_when_applied(make_engine):
    engine = make_engine()
    recorder = _recording(engine)

    engine.submit(CreateTaskCommand(task_id="first", object_id="box-1", target_zone_id="assembly"))
    engine.submit(CreateTaskCommand(task_id="second", object_id="box-1", target_zone_id="assembly"))
    engine.tick()

    assert [task.id for task in engine.snapshot().tasks] == ["first"]
    rejected = recorder.of(EventType.COMMAND_REJECTED)
    assert len(rejected) == 1
    assert rejected[0].payload["code"] == AdmissionError.CONFLICT


def _low_battery_site():
    return small_site(
        robots=[
            RobotSpec(id="mm-1", category=RobotCategory.PICK_PLACE, x=3.0, y=8.0, battery=21.0, drain_per_unit=0.5)
        ]
    )


def test_low_battery_requeues_task_and_charges(make_engine):
    engine = make_engine(_low_battery_site(), fleet={"assignment_battery_floor": 10.0})
    recorder = _recording(engine)
    engine.submit(CreateTaskCommand(task_id="task-a", object_id="box-1", target_zone_id="assembly"))

    run_until(engine, lambda: recorder.of(EventType.TASK_REQUEUED))
    requeued = recorder.of(EventType.TASK_REQUEUED)[0]
    assert requeued.payload["resume_step"] == 0
    assert requeued.payload["reason"] == "battery below charging threshold"
    task = _task(engine, "task-a")
    assert task.status == TaskStatus.PENDING
    assert task.robot_id is None
    robot = engine.snapshot().find_robot("mm-1")
    assert robot.needs_charge
    assert robot.held_object is None
    assert recorder.of(EventType.ROBOT_CHARGING)

    previous = engine.snapshot().find_robot("mm-1")

    def completed():
        nonlocal previous
        current = engine.snapshot().find_robot("mm-1")
        if previous.state == RobotState.CHARGING:
            assert current.battery >= previous.battery
        else:
            assert current.battery <= previous.battery
        previous = current
        return _task(engine, "task-a").status.terminal

    run_until(engine, completed, max_ticks=3000)

    assert _task(engine, "task-a").status == TaskStatus.COMPLETED
    assert engine.snapshot().find_object("box-1").zone_id == "assembly"


def test_low_battery_fails_task_under_fail_policy(make_engine):
    engine = make_engine(
        _low_battery_site(),
        fleet={"assignment_battery_floor": 10.0},
        tasks={"charge_interrupt_policy": "fail"},
    )
    recorder = _recording(engine)
    engine.submit(CreateTaskCommand(task_id="task-a", object_id="box-1", target_zone_id="assembly"))

    run_until(engine, lambda: _task(engine, "task-a").status.terminal)

    task = _task(engine, "task-a")
    assert task.status == TaskStatus.FAILED
    assert task.failure_reason == "battery below charging threshold"
    assert recorder.of(EventType.TASK_FAILED)[0].payload["reason"] == "battery below charging threshold"
    assert engine.snapshot().metrics.tasks_failed == 1
    assert engine.snapshot().find_object("box-1").status == ObjectStatus.AVAILABLE


def test_unreachable_object_fails_after_retries(make_engine):
    world = small_site(
        objects=[ObjectSpec(id="box-1", material=MaterialType.TOOL_BOX, x=8.5, y=4.5)],
        obstacles=enclosure(7.0, 3.0),
    )
    engine = make_engine(world)
    recorder = _recording(engine)
    engine.submit(CreateTaskCommand(task_id="task-a", object_id="box-1", target_zone_id="assembly"))

    ticks = run_until(engine, lambda: _task(engine, "task-a").status.terminal)

    task = _task(engine, "task-a")
    assert task.status == TaskStatus.FAILED
    assert task.failure_reason.startswith("no path to")
    assert task.retry_count == 3
    # backoff of 1 s then 2 s at ten ticks per simulated second
    assert ticks >= 30
    failed = recorder.of(EventType.TASK_FAILED)
    assert failed[0].payload["retry_count"] == 3
    robot = engine.snapshot().find_robot("mm-1")
    assert robot.state == RobotState.IDLE
    assert robot.task_id is None


def test_battery_depletion_faults_robot_and_recover_restores_it(make_engine):
    world = small_site(
        robots=[
            RobotSpec(id="mm-1", category=RobotCategory.PICK_PLACE, x=3.0, y=8.0, battery=21.0, drain_per_unit=5.0)
        ]
    )
    engine = make_engine(world, fleet={"assignment_battery_floor": 10.0})
    recorder = _recording(engine)
    engine.submit(CreateTaskCommand(task_id="task-a", object_id="box-1", target_zone_id="assembly"))

    run_until(engine, lambda: recorder.of(EventType.ROBOT_FAULTED))

    robot = engine.snapshot().find_robot("mm-1")
    assert robot.state == RobotState.ERROR
    assert robot.fault_reason == "battery depleted"
    assert _task(engine, "task-a").status == TaskStatus.FAILED
    assert engine.snapshot().metrics.faulted_robots == 1

    engine.submit(RecoverRobotCommand(robot_id="mm-1"))
    engine.tick()

    robot = engine.snapshot().find_robot("mm-1")
    assert robot.state == RobotState.IDLE
    assert robot.battery == 100.0
    assert recorder.of(EventType.ROBOT_RECOVERED)


def test_recover_requires_a_faulted_robot(make_engine):
    engine = make_engine()
    with pytest.raises(AdmissionError) as excinfo:
        engine.submit(RecoverRobotCommand(robot_id="mm-1"))
    assert excinfo.value.code == AdmissionError.CONFLICT


def test_cancel_returns_held_object(make_engine):
    engine = make_engine()
    recorder = _recording(engine)
    engine.submit(CreateTaskCommand(task_id="task-a", object_id="box-1", target_zone_id="assembly"))
    run_until(engine, lambda: engine.snapshot().find_object("box-1").status == ObjectStatus.CARRIED)

    engine.submit(CancelTaskCommand(task_id="task-a"))
    engine.tick()

    snapshot = engine.snapshot()
    assert snapshot.find_task("task-a").status == TaskStatus.CANCELLED
    obj = snapshot.find_object("box-1")
    assert obj.status == ObjectStatus.AVAILABLE
    assert obj.holder is None
    assert snapshot.find_robot("mm-1").state == RobotState.IDLE
    assert recorder.of(EventType.TASK_CANCELLED)

    with pytest.raises(AdmissionError):
        engine.submit(CancelTaskCommand(task_id="task-a"))


def test_manual_assignment_when_auto_assign_is_off(make_engine):
    engine = make_engine(tasks={"auto_assign": False})
    engine.submit(CreateTaskCommand(task_id="task-a", object_id="box-1", target_zone_id="assembly"))
    for _ in range(5):
        engine.tick()
    assert _task(engine, "task-a").status == TaskStatus.PENDING

    engine.submit(AssignTaskCommand(task_id="task-a", robot_id="mm-1"))
    engine.tick()

    task = _task(engine, "task-a")
    assert task.status == TaskStatus.IN_PROGRESS
    assert task.robot_id == "mm-1"
    with pytest.raises(AdmissionError):
        engine.submit(AssignTaskCommand(task_id="task-a", robot_id="mm-1"))


def test_assembly_creates_one_task_per_part(make_engine):
    world = small_site(
        objects=[
            ObjectSpec(id="box-1", material=MaterialType.TOOL_BOX, x=2.0, y=2.0),
            ObjectSpec(id="box-2", material=MaterialType.TOOL_BOX, x=3.5, y=2.0),
        ]
    )
    engine = make_engine(world, tasks={"auto_assign": False})
    engine.submit(CreateAssemblyCommand(object_ids=["box-1", "box-2", "missing"], zone_id="assembly"))
    engine.tick()

    tasks = engine.snapshot().tasks
    assert [task.object_id for task in tasks] == ["box-1", "box-2"]
    assert tasks[-1].priority.value == "HIGH"
    assert tasks[-1].steps[-1].target_id == "assembly"
    assert len(tasks[0].steps) == 4


def test_pause_is_idempotent_and_freezes_time(make_engine):
    engine = make_engine()
    recorder = _recording(engine)

    engine.submit(PauseCommand())
    engine.submit(PauseCommand())
    engine.tick()
    frozen = (engine.tick_count, engine.sim_time)
    for _ in range(5):
        engine.tick()

    assert engine.status == RunStatus.PAUSED
    assert (engine.tick_count, engine.sim_time) == frozen
    assert len(recorder.of(EventType.RUN_STATUS_CHANGED)) == 1

    engine.submit(StartCommand())
    engine.tick()
    assert engine.tick_count == frozen[0] + 1


def test_stop_resets_the_clock(make_engine):
    engine = make_engine()
    for _ in range(4):
        engine.tick()

    engine.submit(StopCommand())
    engine.tick()

    assert engine.status == RunStatus.STOPPED
    assert engine.tick_count == 0
    assert engine.sim_time == 0.0


def test_set_speed_bounds_and_scaling(make_engine):
    engine = make_engine()
    recorder = _recording(engine)

    with pytest.raises(AdmissionError) as excinfo:
        engine.submit(SetSpeedCommand(multiplier=50.0))
    assert excinfo.value.code == AdmissionError.INVALID

    engine.submit(SetSpeedCommand(multiplier=1.0))
    engine.tick()
    assert recorder.of(EventType.SPEED_CHANGED) == []

    engine.submit(SetSpeedCommand(multiplier=2.0))
    before = engine.sim_time
    engine.tick()
    assert engine.sim_time - before == pytest.approx(0.2)
    assert len(recorder.of(EventType.SPEED_CHANGED)) == 1


def test_reset_rebuilds_the_world(make_engine):
    engine = make_engine()
    recorder = _recording(engine)
    engine.submit(CreateTaskCommand(task_id="task-a", object_id="box-1", target_zone_id="assembly"))
    for _ in range(10):
        engine.tick()

    engine.submit(ResetCommand())
    engine.tick()

    snapshot = engine.snapshot()
    assert snapshot.status == RunStatus.STOPPED
    assert snapshot.tasks == []
    assert snapshot.find_robot("mm-1").pose.x == 3.0
    assert snapshot.find_object("box-1").status == ObjectStatus.AVAILABLE
    assert recorder.of(EventType.WORLD_RESET)


def test_manual_move_and_teleport(make_engine):
    engine = make_engine()

    engine.submit(MoveRobotCommand(robot_id="mm-1", x=6.0, y=8.0))
    run_until(engine, lambda: not engine.snapshot().find_robot("mm-1").manual_control)
    robot = engine.snapshot().find_robot("mm-1")
    assert (robot.pose.x, robot.pose.y) == (6.0, 8.0)
    assert robot.state == RobotState.IDLE

    engine.submit(MoveRobotCommand(robot_id="mm-1", x=1.0, y=10.0, teleport=True))
    engine.tick()
    robot = engine.snapshot().find_robot("mm-1")
    assert (robot.pose.x, robot.pose.y) == (1.0, 10.0)


def test_move_into_obstacle_is_rejected(make_engine):
    engine = make_engine(small_site(obstacles=enclosure(7.0, 3.0)))

    with pytest.raises(AdmissionError) as excinfo:
        engine.submit(MoveRobotCommand(robot_id="mm-1", x=7.2, y=3.2))
    assert excinfo.value.code == AdmissionError.CONFLICT

    with pytest.raises(AdmissionError) as excinfo:
        engine.submit(MoveRobotCommand(robot_id="mm-1", x=40.0, y=3.0))
    assert excinfo.value.code == AdmissionError.INVALID


def test_layout_changes_bump_version(make_engine):
    engine = make_engine()
    recorder = _recording(engine)

    engine.submit(
        AddObstacleCommand(obstacle_id="barrier-1", bounds=Bounds(x=6.0, y=6.0, width=1.0, height=1.0))
    )
    engine.tick()
    assert engine.snapshot().layout_version == 1

    with pytest.raises(AdmissionError):
        engine.submit(AddObstacleCommand(obstacle_id="barrier-1", bounds=Bounds(x=0.0, y=0.0, width=1.0, height=1.0)))

    engine.submit(RemoveObstacleCommand(obstacle_id="barrier-1"))
    engine.tick()
    assert engine.snapshot().layout_version == 2
    assert engine.snapshot().obstacles == []
    assert len(recorder.of(EventType.LAYOUT_CHANGED)) == 2


def _drop_started(engine):
    task = _task(engine, "task-a")
    return task.current_step == 2 and task.steps[2].started


def test_blocked_drop_slot_is_replaced_by_a_free_one(make_engine):
    engine = make_engine()
    engine.submit(CreateTaskCommand(task_id="task-a", object_id="box-1", target_zone_id="assembly"))
    run_until(engine, lambda: _drop_started(engine))
    assert _task(engine, "task-a").steps[2].target.to_tuple() == (12.75, 1.75)

    engine.submit(
        AddObstacleCommand(
            obstacle_id="pallet-1",
            obstacle_type=ObstacleType.EQUIPMENT,
            bounds=Bounds(x=12.5, y=1.5, width=0.5, height=0.5),
        )
    )
    engine.tick()
    assert _task(engine, "task-a").steps[2].target.to_tuple() == (14.25, 1.75)

    run_until(engine, lambda: _task(engine, "task-a").status.terminal)
    task = _task(engine, "task-a")
    obj = engine.snapshot().find_object("box-1")
    assert task.status == TaskStatus.COMPLETED
    assert task.retry_count == 0
    assert obj.pose.to_tuple() == (14.25, 1.75)
    assert obj.zone_id == "assembly"


def test_obstacle_across_cached_path_reroutes_robot(make_engine):
    engine = make_engine()
    engine.submit(CreateTaskCommand(task_id="task-a", object_id="box-1", target_zone_id="assembly"))
    run_until(engine, lambda: _drop_started(engine))
    assert all(point.y < 6.0 for point in engine.snapshot().find_robot("mm-1").path)

    engine.submit(AddObstacleCommand(obstacle_id="fence-1", bounds=Bounds(x=7.75, y=0.0, width=0.5, height=6.0)))
    engine.tick()
    robot = engine.snapshot().find_robot("mm-1")
    assert robot.rerouting
    assert max(point.y for point in robot.path) > 6.0

    def done():
        pose = engine.snapshot().find_robot("mm-1").pose
        assert not (7.75 <= pose.x <= 8.25 and pose.y < 6.0)
        return _task(engine, "task-a").status.terminal

    run_until(engine, done)
    task = _task(engine, "task-a")
    assert task.status == TaskStatus.COMPLETED
    assert task.retry_count == 0
    assert not engine.snapshot().find_robot("mm-1").rerouting


def _gated_site():
    """A wall down the middle of the small site with a single open cell at (8.25, 8.25)."""

    robots = [
        RobotSpec(id="mm-1", category=RobotCategory.PICK_PLACE, x=3.0, y=8.0),
        RobotSpec(id="tr-1", category=RobotCategory.TRANSPORT, x=5.0, y=10.5),
    ]
    walls = [
        Obstacle(id="fence-north", type=ObstacleType.WALL, bounds=Bounds(x=8.0, y=0.0, width=0.5, height=8.0)),
        Obstacle(id="fence-south", type=ObstacleType.WALL, bounds=Bounds(x=8.0, y=8.5, width=0.5, height=3.5)),
    ]
    return small_site(robots=robots, obstacles=walls)


def test_robot_blocked_in_corridor_fails_step_into_retry(make_engine):
    engine = make_engine(_gated_site())
    engine.submit(CreateTaskCommand(task_id="task-a", object_id="box-1", target_zone_id="assembly"))
    run_until(engine, lambda: _drop_started(engine))

    engine.submit(MoveRobotCommand(robot_id="tr-1", x=8.25, y=8.25, teleport=True))
    rerouting_ticks = 0
    for _ in range(500):
        engine.tick()
        if engine.snapshot().find_robot("mm-1").rerouting:
            rerouting_ticks += 1
        if _task(engine, "task-a").retry_count == 1:
            break
    assert rerouting_ticks == 5

    task = _task(engine, "task-a")
    assert task.status == TaskStatus.IN_PROGRESS
    assert task.current_step == 2
    assert task.retry_at is not None
    assert not task.steps[2].started
    assert engine.snapshot().find_robot("mm-1").held_object == "box-1"
    assert engine.snapshot().find_object("box-1").status == ObjectStatus.CARRIED

    engine.submit(MoveRobotCommand(robot_id="tr-1", x=5.0, y=10.5, teleport=True))
    run_until(engine, lambda: _task(engine, "task-a").status.terminal)
    task = _task(engine, "task-a")
    assert task.status == TaskStatus.COMPLETED
    assert task.retry_count == 1


def _replacement_zones():
    return [
        Zone(
            id="yard",
            name="Yard",
            type=ZoneType.STORAGE,
            bounds=Bounds(x=1.0, y=1.0, width=6.0, height=4.0),
            capacity=6,
        ),
        Zone(
            id="pad",
            name="Pad",
            type=ZoneType.ASSEMBLY,
            bounds=Bounds(x=10.0, y=1.0, width=5.0, height=5.0),
            capacity=4,
        ),
    ]


def test_update_zones_replaces_layout_and_fails_active_tasks(make_engine):
    engine = make_engine()
    recorder = _recording(engine)
    engine.submit(CreateTaskCommand(task_id="task-a", object_id="box-1", target_zone_id="assembly"))
    run_until(engine, lambda: engine.snapshot().find_robot("mm-1").held_object == "box-1")
    version = engine.snapshot().layout_version

    engine.submit(UpdateZonesCommand(zones=_replacement_zones()))
    engine.tick()

    snapshot = engine.snapshot()
    task = snapshot.find_task("task-a")
    assert task.status == TaskStatus.FAILED
    assert task.failure_reason == "zone layout replaced"
    assert recorder.of(EventType.TASK_FAILED)[-1].payload["reason"] == "zone layout replaced"

    assert sorted(zone.id for zone in snapshot.zones) == ["pad", "yard"]
    assert snapshot.find_zone("yard").occupancy == 3
    assert snapshot.find_zone("pad").occupancy == 0
    assert len(snapshot.objects) == 3
    assert all(obj.zone_id == "yard" and obj.status == ObjectStatus.AVAILABLE for obj in snapshot.objects)
    assert snapshot.layout_version == version + 1

    robot = snapshot.find_robot("mm-1")
    assert robot.state == RobotState.IDLE
    assert robot.task_id is None
    assert robot.held_object is None
    assert recorder.of(EventType.LAYOUT_CHANGED)[-1].payload["zones"] == 2


def test_update_zones_validation(make_engine):
    engine = make_engine()
    outside = Zone(
        id="far",
        name="Far",
        type=ZoneType.STAGING,
        bounds=Bounds(x=18.0, y=1.0, width=5.0, height=2.0),
        capacity=2,
    )

    with pytest.raises(AdmissionError) as excinfo:
        engine.submit(UpdateZonesCommand(zones=[outside]))
    assert excinfo.value.code == AdmissionError.INVALID

    zones = _replacement_zones()
    with pytest.raises(AdmissionError) as excinfo:
        engine.submit(UpdateZonesCommand(zones=[zones[0], zones[0]]))
    assert excinfo.value.code == AdmissionError.INVALID

    with pytest.raises(AdmissionError) as excinfo:
        engine.submit(UpdateZonesCommand(zones=zones, object_batches=[ObjectBatch(zone_id="storage", count=1)]))
    assert excinfo.value.code == AdmissionError.NOT_FOUND

    engine.tick()
    assert sorted(zone.id for zone in engine.snapshot().zones) == ["assembly", "charger", "storage"]


def test_spawned_object_lands_in_zone(make_engine):
    engine = make_engine()
    engine.submit(SpawnObjectCommand(material=MaterialType.CEMENT_BAG, zone_id="storage", object_id="bag-1"))
    engine.tick()

    obj = engine.snapshot().find_object("bag-1")
    assert obj.zone_id == "storage"
    assert obj.weight == 50
    assert engine.snapshot().find_zone("storage").occupancy == 2


def test_queue_limit_rejects_commands(make_engine):
    engine = make_engine(engine={"random_seed": 7, "command_queue_size": 1})
    recorder = _recording(engine)

    engine.submit(PauseCommand())
    with pytest.raises(AdmissionError) as excinfo:
        engine.submit(StartCommand())
    assert excinfo.value.code == AdmissionError.QUEUE_FULL

    engine.tick()
    assert recorder.of(EventType.COMMAND_REJECTED)[0].payload["code"] == AdmissionError.QUEUE_FULL


def test_snapshots_are_built_only_for_interested_subscribers(make_engine):
    engine = make_engine()
    assert engine.tick() is None

    class Watcher(SnapshotSubscriber):
        def __init__(self):
            self.snapshots = []

        def on_snapshot(self, snapshot):
            self.snapshots.append(snapshot)

    watcher = engine.subscribe(Watcher())
    snapshot = engine.tick()

    assert snapshot is not None
    assert watcher.snapshots == [snapshot]
    assert snapshot.tick == engine.tick_count
