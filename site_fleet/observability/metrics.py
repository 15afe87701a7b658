"""Prometheus metrics utilities."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

metrics_registry = CollectorRegistry()

REQUEST_COUNTER = Counter(
    "site_fleet_api_requests_total",
    "Total number of API requests handled",
    registry=metrics_registry,
)

SIMULATION_TICK_GAUGE = Gauge(
    "site_fleet_simulation_tick",
    "Current simulation tick",
    registry=metrics_registry,
)

TICK_DURATION = Histogram(
    "site_fleet_tick_seconds",
    "Wall-clock duration of a simulation tick",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5),
    registry=metrics_registry,
)

TASK_OUTCOME_COUNTER = Counter(
    "site_fleet_tasks_total",
    "Tasks reaching a lifecycle milestone",
    labelnames=("outcome",),
    registry=metrics_registry,
)

COMMAND_COUNTER = Counter(
    "site_fleet_commands_total",
    "Commands submitted to the engine",
    labelnames=("type", "accepted"),
    registry=metrics_registry,
)

ROBOT_STATE_GAUGE = Gauge(
    "site_fleet_robots",
    "Robots per behavioural state",
    labelnames=("state",),
    registry=metrics_registry,
)

PATHFINDING_DURATION = Histogram(
    "site_fleet_pathfinding_seconds",
    "Duration of pathfinding computations",
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5),
    registry=metrics_registry,
)


def record_task_outcome(outcome: str) -> None:
    """Record a task milestone (created, completed, failed, cancelled, requeued)."""

    TASK_OUTCOME_COUNTER.labels(outcome=outcome).inc()


def record_command(command_type: str, accepted: bool) -> None:
    COMMAND_COUNTER.labels(type=command_type, accepted=str(accepted).lower()).inc()
