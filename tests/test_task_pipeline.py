from site_fleet.enterprise.config.settings import TaskSettings
from site_fleet.enterprise.core import StepType, TaskKind, TaskPriority, TaskStatus
from site_fleet.services.task_pipeline import StepOutcome, TaskPipeline, build_steps


def _pipeline(**overrides) -> TaskPipeline:
    return TaskPipeline(TaskSettings(**overrides))


def _types(steps):
    return [step.type for step in steps]


def test_build_steps_per_kind():
    assert _types(build_steps(TaskKind.PICK_AND_PLACE, "obj", "zone")) == [
        StepType.MOVE_TO_PICKUP,
        StepType.PICKING,
        StepType.MOVE_TO_DROP,
        StepType.PLACING,
    ]
    assert _types(build_steps(TaskKind.SORT, "obj", "zone"))[:3] == [
        StepType.MOVE_TO_PICKUP,
        StepType.INSPECTING,
        StepType.PICKING,
    ]
    assert _types(build_steps(TaskKind.INSPECT, "obj", "zone")) == [StepType.MOVE_TO_PICKUP, StepType.INSPECTING]

    assembly = build_steps(TaskKind.ASSEMBLE, "obj", "zone", final_inspection=True)
    assert assembly[-1].type == StepType.INSPECTING
    assert assembly[-1].target_id == "zone"


def test_create_assigns_sequence_and_retry_limit():
    pipeline = _pipeline(max_retries=5)

    first = pipeline.create(TaskKind.PICK_AND_PLACE, "a", "zone", priority=TaskPriority.HIGH, sim_time=2.0)
    second = pipeline.create(TaskKind.TRANSPORT, "b", "zone", task_id="custom")

    assert first.status == TaskStatus.PENDING
    assert first.max_retries == 5
    assert first.created_at == 2.0
    assert second.sequence == first.sequence + 1
    assert second.id == "custom"


def test_complete_steps_until_task_completes():
    pipeline = _pipeline()
    task = pipeline.create(TaskKind.INSPECT, "obj", "zone")
    pipeline.assign(task, "robot-1")
    pipeline.begin(task, 1.0)

    pipeline.start_step(task, 1.0)
    assert pipeline.complete_step(task, 3.0) is StepOutcome.ADVANCED
    pipeline.start_step(task, 3.0)
    assert pipeline.complete_step(task, 5.0) is StepOutcome.COMPLETED

    assert task.status == TaskStatus.COMPLETED
    assert task.duration == 4.0
    assert task.active_step is None


def test_failures_back_off_then_fail():
    pipeline = _pipeline(max_retries=3, retry_backoff_seconds=2.0)
    task = pipeline.create(TaskKind.PICK_AND_PLACE, "obj", "zone")
    pipeline.begin(task, 0.0)
    pipeline.start_step(task, 0.0)

    assert pipeline.record_failure(task, "blocked", 10.0) is StepOutcome.RETRY
    assert task.retry_at == 12.0
    assert not pipeline.ready(task, 11.0)
    assert pipeline.ready(task, 12.0)
    assert task.active_step.started is False

    assert pipeline.record_failure(task, "blocked", 12.0) is StepOutcome.RETRY
    assert task.retry_at == 16.0
    assert pipeline.record_failure(task, "still blocked", 16.0) is StepOutcome.FAILED

    assert task.status == TaskStatus.FAILED
    assert task.failure_reason == "still blocked"
    assert task.retry_count == 3
    assert task.retry_at is None


def _advance_to(pipeline, task, index):
    for _ in range(index):
        pipeline.start_step(task, 0.0)
        pipeline.complete_step(task, 0.0)


def test_requeue_resume_rewinds_to_last_motion_step():
    pipeline = _pipeline()
    task = pipeline.create(TaskKind.PICK_AND_PLACE, "obj", "zone")
    pipeline.assign(task, "robot-1")
    _advance_to(pipeline, task, 3)  # move, pick and move-to-drop done; placing next

    resume_at = pipeline.requeue(task, "resume")

    assert resume_at == 2
    assert task.status == TaskStatus.PENDING
    assert task.robot_id is None
    assert task.current_step == 2
    assert [step.completed for step in task.steps] == [True, True, False, False]


def test_requeue_restart_clears_every_step():
    pipeline = _pipeline()
    task = pipeline.create(TaskKind.PICK_AND_PLACE, "obj", "zone")
    _advance_to(pipeline, task, 1)

    assert pipeline.requeue(task, "restart") == 0
    assert not any(step.completed or step.started for step in task.steps)


def test_requeue_restart_resumes_once_object_was_placed():
    pipeline = _pipeline()
    task = pipeline.create(TaskKind.ASSEMBLE, "obj", "zone", final_inspection=True)
    _advance_to(pipeline, task, 4)  # inspection of the zone remains

    resume_at = pipeline.requeue(task, "restart")

    assert resume_at == 2
    assert task.steps[3].completed
    pipeline.start_step(task, 0.0)
    assert pipeline.complete_step(task, 0.0) is StepOutcome.ADVANCED
    assert task.current_step == 4
