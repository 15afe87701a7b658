"""Domain models for the construction site fleet simulator.

These models provide a typed representation of the entities that exist on
the simulated site. They are intentionally framework-agnostic so they can be
reused by the engine, the API layer and the message bus bridge.

Coordinates are world units (meters) with the origin at the top-left corner
of the site and ``y`` growing downward. Headings are degrees.
"""

from __future__ import annotations

import enum
import math
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field, NonNegativeFloat, NonNegativeInt, PositiveFloat, PositiveInt


class Vector2D(BaseModel):
    """Point in world coordinates."""

    x: float
    y: float

    @classmethod
    def from_tuple(cls, point: Sequence[float]) -> "Vector2D":
        return cls(x=float(point[0]), y=float(point[1]))

    def to_tuple(self) -> tuple[float, float]:
        return (self.x, self.y)

    def distance_to(self, other: "Vector2D") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


class Pose(Vector2D):
    """Position plus heading in degrees."""

    heading: float = 0.0


class Bounds(BaseModel):
    """Axis-aligned rectangle anchored at its top-left corner."""

    x: float
    y: float
    width: PositiveFloat
    height: PositiveFloat

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def center(self) -> Vector2D:
        return Vector2D(x=self.x + self.width / 2.0, y=self.y + self.height / 2.0)

    def contains(self, x: float, y: float) -> bool:
        return self.x <= x <= self.right and self.y <= y <= self.bottom

    def nearest_point(self, x: float, y: float) -> tuple[float, float]:
        """Closest point of the rectangle to ``(x, y)``."""

        return (min(max(x, self.x), self.right), min(max(y, self.y), self.bottom))

    def distance_to(self, x: float, y: float) -> float:
        nx, ny = self.nearest_point(x, y)
        return math.hypot(x - nx, y - ny)

    def inflate(self, margin: float) -> "Bounds":
        if margin <= 0:
            return self
        return Bounds(
            x=self.x - margin,
            y=self.y - margin,
            width=self.width + 2 * margin,
            height=self.height + 2 * margin,
        )


class SiteDimensions(BaseModel):
    """Extent of the simulated site."""

    width: PositiveFloat
    height: PositiveFloat
    cell_size: PositiveFloat = Field(..., description="Occupancy grid cell edge in world units.")

    def contains(self, x: float, y: float) -> bool:
        return 0.0 <= x < self.width and 0.0 <= y < self.height


class ZoneType(str, enum.Enum):
    """Enumerates the supported site zone categories."""

    STORAGE = "storage"
    ASSEMBLY = "assembly"
    STAGING = "staging"
    CHARGING = "charging"
    WORK = "work"
    INSPECTION = "inspection"
    HOME = "home"


class Zone(BaseModel):
    """Rectangular area of the site with a semantic purpose.

    ``capacity`` is a soft limit: occupancy may exceed it and tasks may
    still target a full zone.
    """

    id: str
    name: str
    type: ZoneType
    bounds: Bounds
    capacity: PositiveInt
    occupancy: NonNegativeInt = 0
    objects: List[str] = Field(default_factory=list, description="Ids of objects resting inside the zone.")
    color: str = "#95a5a6"

    def contains(self, x: float, y: float) -> bool:
        return self.bounds.contains(x, y)

    @property
    def over_capacity(self) -> bool:
        return self.occupancy > self.capacity


class ObstacleType(str, enum.Enum):
    WALL = "wall"
    PILLAR = "pillar"
    EQUIPMENT = "equipment"
    SCAFFOLDING = "scaffolding"
    BARRIER = "barrier"


class Obstacle(BaseModel):
    """Blocking rectangle that robots must route around."""

    id: str
    type: ObstacleType
    bounds: Bounds
    temporary: bool = False


class MaterialType(str, enum.Enum):
    """Catalogue of movable construction materials."""

    STEEL_BEAM = "steel_beam"
    CONCRETE_BLOCK = "concrete_block"
    PIPE_SECTION = "pipe_section"
    ELECTRICAL_PANEL = "electrical_panel"
    HVAC_UNIT = "hvac_unit"
    TOOL_BOX = "tool_box"
    SAFETY_EQUIPMENT = "safety_equipment"
    SCAFFOLDING_PART = "scaffolding_part"
    CEMENT_BAG = "cement_bag"
    SAND_BAG = "sand_bag"
    CARDBOARD_BOX = "cardboard_box"
    BRICK_PALLET = "brick_pallet"
    GRAVEL_BAG = "gravel_bag"
    TILE_STACK = "tile_stack"
    WOOD_PLANK = "wood_plank"
    REBAR_BUNDLE = "rebar_bundle"
    MIXED_MATERIAL = "mixed_material"


class MaterialSpec(BaseModel):
    """Nominal physical properties of a material kind."""

    weight: PositiveFloat = Field(..., description="Nominal weight in kilograms.")
    width: PositiveFloat
    height: PositiveFloat
    color: str


MATERIAL_CATALOG: Dict[MaterialType, MaterialSpec] = {
    MaterialType.STEEL_BEAM: MaterialSpec(weight=50, width=2.0, height=0.3, color="#7f8c8d"),
    MaterialType.CONCRETE_BLOCK: MaterialSpec(weight=30, width=0.6, height=0.6, color="#95a5a6"),
    MaterialType.PIPE_SECTION: MaterialSpec(weight=15, width=1.5, height=0.3, color="#34495e"),
    MaterialType.ELECTRICAL_PANEL: MaterialSpec(weight=20, width=0.8, height=0.5, color="#f39c12"),
    MaterialType.HVAC_UNIT: MaterialSpec(weight=40, width=1.0, height=1.0, color="#3498db"),
    MaterialType.TOOL_BOX: MaterialSpec(weight=10, width=0.5, height=0.3, color="#e74c3c"),
    MaterialType.SAFETY_EQUIPMENT: MaterialSpec(weight=5, width=0.4, height=0.4, color="#f1c40f"),
    MaterialType.SCAFFOLDING_PART: MaterialSpec(weight=25, width=1.8, height=0.2, color="#d35400"),
    MaterialType.CEMENT_BAG: MaterialSpec(weight=50, width=0.7, height=0.4, color="#bdc3c7"),
    MaterialType.SAND_BAG: MaterialSpec(weight=30, width=0.6, height=0.4, color="#e6b87d"),
    MaterialType.CARDBOARD_BOX: MaterialSpec(weight=8, width=0.6, height=0.6, color="#c19a6b"),
    MaterialType.BRICK_PALLET: MaterialSpec(weight=45, width=1.0, height=1.0, color="#b03a2e"),
    MaterialType.GRAVEL_BAG: MaterialSpec(weight=25, width=0.6, height=0.4, color="#7b7d7d"),
    MaterialType.TILE_STACK: MaterialSpec(weight=35, width=0.6, height=0.6, color="#a3e4d7"),
    MaterialType.WOOD_PLANK: MaterialSpec(weight=12, width=2.4, height=0.2, color="#a0522d"),
    MaterialType.REBAR_BUNDLE: MaterialSpec(weight=60, width=3.0, height=0.3, color="#5d6d7e"),
    MaterialType.MIXED_MATERIAL: MaterialSpec(weight=20, width=0.8, height=0.8, color="#8e44ad"),
}


class ObjectStatus(str, enum.Enum):
    """Lifecycle states for a construction object."""

    AVAILABLE = "AVAILABLE"
    PICKED = "PICKED"
    CARRIED = "CARRIED"
    PLACED = "PLACED"


class ConstructionObject(BaseModel):
    """Movable unit of construction material."""

    id: str = Field(default_factory=lambda: f"obj-{uuid.uuid4().hex[:8]}")
    name: str = ""
    material: MaterialType
    weight: PositiveFloat
    status: ObjectStatus = ObjectStatus.AVAILABLE
    pose: Vector2D
    holder: Optional[str] = Field(None, description="Robot currently holding the object.")
    zone_id: Optional[str] = Field(None, description="Zone whose bounds contain the object, if any.")
    inspected: bool = False
    color: str = "#8e44ad"

    @property
    def held(self) -> bool:
        return self.status in (ObjectStatus.PICKED, ObjectStatus.CARRIED)


class RobotCategory(str, enum.Enum):
    """Capability classes of site robots."""

    PICK_PLACE = "pick_place"
    HEAVY_LIFT = "heavy_lift"
    TRANSPORT = "transport"


class CategoryProfile(BaseModel):
    """Default kinematics and energy model for a robot category."""

    speed: PositiveFloat = Field(..., description="Travel speed in world units per second.")
    drain_per_unit: NonNegativeFloat = Field(..., description="Battery percent consumed per unit travelled.")
    action_drain_per_second: NonNegativeFloat = Field(..., description="Battery percent consumed per action second.")
    payload_kg: NonNegativeFloat
    has_gripper: bool = True


CATEGORY_PROFILES: Dict[RobotCategory, CategoryProfile] = {
    RobotCategory.PICK_PLACE: CategoryProfile(
        speed=1.5, drain_per_unit=0.05, action_drain_per_second=0.05, payload_kg=50
    ),
    RobotCategory.HEAVY_LIFT: CategoryProfile(
        speed=1.0, drain_per_unit=0.08, action_drain_per_second=0.1, payload_kg=200
    ),
    RobotCategory.TRANSPORT: CategoryProfile(
        speed=2.0, drain_per_unit=0.04, action_drain_per_second=0.02, payload_kg=120, has_gripper=False
    ),
}


class RobotState(str, enum.Enum):
    """Behavioural states for a robot."""

    IDLE = "IDLE"
    MOVING = "MOVING"
    PICKING = "PICKING"
    CARRYING = "CARRYING"
    PLACING = "PLACING"
    INSPECTING = "INSPECTING"
    CHARGING = "CHARGING"
    ERROR = "ERROR"


class LidarPoint(BaseModel):
    angle: float = Field(..., description="Ray angle in degrees.")
    distance: float
    x: float
    y: float
    intensity: float = Field(..., ge=0.0, le=1.0)


class LidarScan(BaseModel):
    max_range: float
    points: List[LidarPoint] = Field(default_factory=list)


class ProximityReading(BaseModel):
    front: float
    back: float
    left: float
    right: float


class Detection(BaseModel):
    id: str
    label: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    distance: float
    bbox: Bounds


class SensorReading(BaseModel):
    """Advisory sensor outputs sampled at ``tick``."""

    tick: NonNegativeInt
    lidar: LidarScan
    proximity: ProximityReading
    detections: List[Detection] = Field(default_factory=list)


class RobotTelemetry(BaseModel):
    """Current snapshot of a robot's key metrics."""

    robot_id: str
    name: str
    category: RobotCategory
    state: RobotState
    pose: Pose
    battery: float = Field(..., ge=0.0, le=100.0, description="Battery percentage (0-100).")
    speed: float
    held_object: Optional[str] = None
    task_id: Optional[str] = None
    path: List[Vector2D] = Field(default_factory=list, description="Remaining waypoints.")
    rerouting: bool = False
    manual_control: bool = False
    needs_charge: bool = False
    fault_reason: Optional[str] = None
    tasks_completed: NonNegativeInt = 0
    distance_traveled: NonNegativeFloat = 0.0
    pick_success_ratio: float = Field(0.0, ge=0.0, le=1.0)
    sensors: Optional[SensorReading] = None


class TaskKind(str, enum.Enum):
    PICK_AND_PLACE = "pick_and_place"
    TRANSPORT = "transport"
    SORT = "sort"
    ASSEMBLE = "assemble"
    INSPECT = "inspect"


class TaskPriority(str, enum.Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.LOW: 0,
    TaskPriority.NORMAL: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.URGENT: 3,
}


class TaskStatus(str, enum.Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class StepType(str, enum.Enum):
    MOVE_TO_PICKUP = "MOVE_TO_PICKUP"
    PICKING = "PICKING"
    MOVE_TO_DROP = "MOVE_TO_DROP"
    PLACING = "PLACING"
    INSPECTING = "INSPECTING"

    @property
    def is_motion(self) -> bool:
        return self in (StepType.MOVE_TO_PICKUP, StepType.MOVE_TO_DROP)


class TaskStep(BaseModel):
    """Primitive action within a task."""

    type: StepType
    target_id: str = Field(..., description="Object or zone the step acts on.")
    target: Optional[Vector2D] = Field(None, description="Resolved goal point for motion steps.")
    started: bool = False
    completed: bool = False
    started_at: Optional[float] = None
    completed_at: Optional[float] = None


class Task(BaseModel):
    """Unit of work executed by a single robot.

    Timestamps are simulated seconds since the run started.
    """

    id: str = Field(default_factory=lambda: f"task-{uuid.uuid4().hex[:12]}")
    kind: TaskKind = TaskKind.PICK_AND_PLACE
    priority: TaskPriority = TaskPriority.NORMAL
    object_id: str
    zone_id: str
    steps: List[TaskStep] = Field(default_factory=list)
    current_step: NonNegativeInt = 0
    status: TaskStatus = TaskStatus.PENDING
    robot_id: Optional[str] = None
    retry_count: NonNegativeInt = 0
    max_retries: PositiveInt = 3
    retry_at: Optional[float] = Field(None, description="Simulated time when a backed-off step may resume.")
    failure_reason: Optional[str] = None
    created_at: float = 0.0
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    sequence: NonNegativeInt = Field(0, description="Creation order, used as a scheduling tie-break.")

    @property
    def active_step(self) -> Optional[TaskStep]:
        if self.current_step >= len(self.steps):
            return None
        return self.steps[self.current_step]

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return self.completed_at - self.started_at


class RunStatus(str, enum.Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"


class FleetMetrics(BaseModel):
    """Aggregate counters for the current run."""

    tasks_created: NonNegativeInt = 0
    tasks_completed: NonNegativeInt = 0
    tasks_failed: NonNegativeInt = 0
    tasks_cancelled: NonNegativeInt = 0
    completion_rate: float = Field(0.0, description="Completed tasks over created tasks.")
    average_task_duration: float = Field(0.0, description="Mean simulated seconds from start to completion.")
    fleet_utilization: float = Field(0.0, description="Share of robot ticks spent busy.")
    pick_success_rate: float = 0.0
    total_distance: float = 0.0
    active_robots: NonNegativeInt = 0
    idle_robots: NonNegativeInt = 0
    charging_robots: NonNegativeInt = 0
    faulted_robots: NonNegativeInt = 0


class WorldSnapshot(BaseModel):
    """Read-only view of the whole site published to observers."""

    timestamp: datetime = Field(default_factory=datetime.utcnow)
    tick: NonNegativeInt
    status: RunStatus
    time_multiplier: float
    sim_time: float
    layout_version: NonNegativeInt
    dimensions: SiteDimensions
    robots: List[RobotTelemetry] = Field(default_factory=list)
    objects: List[ConstructionObject] = Field(default_factory=list)
    zones: List[Zone] = Field(default_factory=list)
    obstacles: List[Obstacle] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    metrics: FleetMetrics = Field(default_factory=FleetMetrics)

    def find_robot(self, robot_id: str) -> Optional[RobotTelemetry]:
        return next((robot for robot in self.robots if robot.robot_id == robot_id), None)

    def find_task(self, task_id: str) -> Optional[Task]:
        return next((task for task in self.tasks if task.id == task_id), None)

    def find_object(self, object_id: str) -> Optional[ConstructionObject]:
        return next((obj for obj in self.objects if obj.id == object_id), None)

    def find_zone(self, zone_id: str) -> Optional[Zone]:
        return next((zone for zone in self.zones if zone.id == zone_id), None)


class EventType(str, enum.Enum):
    """Discrete notifications published alongside snapshots."""

    TASK_CREATED = "task-created"
    TASK_ASSIGNED = "task-assigned"
    TASK_STARTED = "task-started"
    TASK_COMPLETED = "task-completed"
    TASK_FAILED = "task-failed"
    TASK_CANCELLED = "task-cancelled"
    TASK_REQUEUED = "task-requeued"
    RUN_STATUS_CHANGED = "run-status-changed"
    SPEED_CHANGED = "speed-changed"
    ROBOT_SPAWNED = "robot-spawned"
    ROBOT_FAULTED = "robot-faulted"
    ROBOT_RECOVERED = "robot-recovered"
    ROBOT_CHARGING = "robot-charging"
    OBJECT_SPAWNED = "object-spawned"
    LAYOUT_CHANGED = "layout-changed"
    WORLD_RESET = "world-reset"
    COMMAND_REJECTED = "command-rejected"
    AUTO_SCHEDULE_REQUESTED = "auto-schedule-requested"


class EngineEvent(BaseModel):
    """Notification emitted by the engine during a tick."""

    id: int = 0
    type: EventType
    tick: NonNegativeInt
    created_at: datetime = Field(default_factory=datetime.utcnow)
    payload: Dict[str, Any] = Field(default_factory=dict)


class Reservation(BaseModel):
    """Temporary claim on a grid cell by a robot to avoid collisions."""

    robot_id: str
    cell: tuple[int, int]
    created_tick: NonNegativeInt
    ttl_ticks: PositiveInt = Field(3, description="Ticks the claim survives without being refreshed.")

    @property
    def expires_at_tick(self) -> int:
        return self.created_tick + self.ttl_ticks

    def is_expired(self, tick: int) -> bool:
        return tick >= self.expires_at_tick
