"""Core domain package for the construction site fleet simulator."""

from .models import (
    CATEGORY_PROFILES,
    MATERIAL_CATALOG,
    Bounds,
    CategoryProfile,
    ConstructionObject,
    Detection,
    EngineEvent,
    EventType,
    FleetMetrics,
    LidarPoint,
    LidarScan,
    MaterialSpec,
    MaterialType,
    Obstacle,
    ObstacleType,
    ObjectStatus,
    Pose,
    ProximityReading,
    Reservation,
    RobotCategory,
    RobotState,
    RobotTelemetry,
    RunStatus,
    SensorReading,
    SiteDimensions,
    StepType,
    Task,
    TaskKind,
    TaskPriority,
    TaskStatus,
    TaskStep,
    Vector2D,
    WorldSnapshot,
    Zone,
    ZoneType,
)

__all__ = [
    "CATEGORY_PROFILES",
    "MATERIAL_CATALOG",
    "Bounds",
    "CategoryProfile",
    "ConstructionObject",
    "Detection",
    "EngineEvent",
    "EventType",
    "FleetMetrics",
    "LidarPoint",
    "LidarScan",
    "MaterialSpec",
    "MaterialType",
    "Obstacle",
    "ObstacleType",
    "ObjectStatus",
    "Pose",
    "ProximityReading",
    "Reservation",
    "RobotCategory",
    "RobotState",
    "RobotTelemetry",
    "RunStatus",
    "SensorReading",
    "SiteDimensions",
    "StepType",
    "Task",
    "TaskKind",
    "TaskPriority",
    "TaskStatus",
    "TaskStep",
    "Vector2D",
    "WorldSnapshot",
    "Zone",
    "ZoneType",
]
