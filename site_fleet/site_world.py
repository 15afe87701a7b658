"""Manages the construction site environment using domain models."""

from __future__ import annotations

import itertools
import math
import random
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import structlog
from pydantic import BaseModel, Field, NonNegativeInt, PositiveFloat

from site_fleet.enterprise.config.settings import load_yaml_file
from site_fleet.enterprise.core import (
    MATERIAL_CATALOG,
    Bounds,
    ConstructionObject,
    MaterialType,
    Obstacle,
    ObstacleType,
    ObjectStatus,
    Pose,
    RobotCategory,
    SiteDimensions,
    Task,
    Vector2D,
    Zone,
    ZoneType,
)
from site_fleet.grid import OccupancyGrid
from site_fleet.robot_agent import RobotAgent

logger = structlog.get_logger(__name__)

Point = Tuple[float, float]

SLOT_SPACING = 1.5
SLOT_MARGIN = 0.75
_SLOT_CLEARANCE = 0.5


class RobotSpec(BaseModel):
    """Initial placement and tuning of a robot."""

    id: str
    name: Optional[str] = None
    category: RobotCategory
    x: float
    y: float
    heading: float = 0.0
    battery: float = Field(100.0, ge=0.0, le=100.0)
    speed: Optional[PositiveFloat] = None
    drain_per_unit: Optional[float] = Field(None, ge=0.0)
    action_drain_per_second: Optional[float] = Field(None, ge=0.0)


class ObjectSpec(BaseModel):
    """Explicitly positioned construction object."""

    id: str
    material: MaterialType
    x: float
    y: float
    weight: Optional[PositiveFloat] = None
    status: ObjectStatus = ObjectStatus.AVAILABLE


class ObjectBatch(BaseModel):
    """Objects laid out on the slot grid of a zone."""

    zone_id: str
    count: NonNegativeInt
    materials: List[MaterialType] = Field(
        default_factory=list,
        description="Materials to draw from; every catalogued material when empty.",
    )


class WorldConfig(BaseModel):
    """Static description of a site used to (re)build the world."""

    name: str = "construction-site"
    width: PositiveFloat
    height: PositiveFloat
    zones: List[Zone] = Field(default_factory=list)
    obstacles: List[Obstacle] = Field(default_factory=list)
    robots: List[RobotSpec] = Field(default_factory=list)
    objects: List[ObjectSpec] = Field(default_factory=list)
    object_batches: List[ObjectBatch] = Field(default_factory=list)

    @classmethod
    def from_yaml(cls, path: Path) -> "WorldConfig":
        data = load_yaml_file(path)
        if not data:
            raise FileNotFoundError(f"world file {path} is missing or empty")
        return cls.model_validate(data)


STOCKED_ZONE_TYPES = (ZoneType.STORAGE, ZoneType.STAGING)


def stock_batches(zones: Iterable[Zone]) -> List[ObjectBatch]:
    """Half-fill every storage and staging zone, at least one object each."""

    return [
        ObjectBatch(zone_id=zone.id, count=max(1, zone.capacity // 2))
        for zone in sorted(zones, key=lambda z: z.id)
        if zone.type in STOCKED_ZONE_TYPES
    ]


def _zone(zone_id: str, name: str, zone_type: ZoneType, x: float, y: float, w: float, h: float, cap: int, color: str) -> Zone:
    return Zone(
        id=zone_id,
        name=name,
        type=zone_type,
        bounds=Bounds(x=x, y=y, width=w, height=h),
        capacity=cap,
        color=color,
    )


def default_world_config() -> WorldConfig:
    """The stock 50 x 40 m site with six zones and four robots."""

    zones = [
        _zone("zone-material-storage", "Material Storage", ZoneType.STORAGE, 2.5, 2.5, 10.0, 7.5, 20, "#3498db"),
        _zone("zone-assembly", "Assembly Area", ZoneType.ASSEMBLY, 20.0, 15.0, 12.5, 10.0, 10, "#e67e22"),
        _zone("zone-staging", "Staging Area", ZoneType.STAGING, 35.0, 5.0, 9.0, 7.5, 15, "#9b59b6"),
        _zone("zone-charging", "Charging Station", ZoneType.CHARGING, 40.0, 30.0, 7.5, 7.5, 4, "#2ecc71"),
        _zone("zone-work-1", "Work Zone 1", ZoneType.WORK, 10.0, 25.0, 10.0, 7.5, 8, "#f1c40f"),
        _zone("zone-inspection", "Quality Inspection", ZoneType.INSPECTION, 25.0, 30.0, 5.0, 5.0, 5, "#1abc9c"),
    ]
    obstacles = [
        Obstacle(id="wall-1", type=ObstacleType.WALL, bounds=Bounds(x=17.25, y=5.0, width=0.5, height=10.0)),
        Obstacle(id="pillar-1", type=ObstacleType.PILLAR, bounds=Bounds(x=24.0, y=6.5, width=2.0, height=2.0)),
        Obstacle(id="pillar-2", type=ObstacleType.PILLAR, bounds=Bounds(x=24.0, y=24.0, width=2.0, height=2.0)),
        Obstacle(
            id="scaffolding-1",
            type=ObstacleType.SCAFFOLDING,
            bounds=Bounds(x=30.0, y=18.5, width=5.0, height=3.0),
            temporary=True,
        ),
        Obstacle(
            id="equipment-1",
            type=ObstacleType.EQUIPMENT,
            bounds=Bounds(x=5.5, y=16.0, width=4.0, height=3.0),
            temporary=True,
        ),
    ]
    robots = [
        RobotSpec(id="robot-mm-01", name="Mobile Manipulator 01", category=RobotCategory.PICK_PLACE, x=5.0, y=12.5),
        RobotSpec(
            id="robot-mm-02",
            name="Mobile Manipulator 02",
            category=RobotCategory.PICK_PLACE,
            x=15.0,
            y=22.5,
            heading=90.0,
            battery=85.0,
        ),
        RobotSpec(
            id="robot-forklift-01",
            name="Forklift 01",
            category=RobotCategory.HEAVY_LIFT,
            x=30.0,
            y=12.5,
            heading=180.0,
            battery=90.0,
        ),
        RobotSpec(
            id="robot-transport-01",
            name="Transport 01",
            category=RobotCategory.TRANSPORT,
            x=37.5,
            y=20.0,
            heading=270.0,
            battery=75.0,
        ),
    ]
    batches = [
        ObjectBatch(zone_id="zone-material-storage", count=30),
        ObjectBatch(zone_id="zone-staging", count=10),
        ObjectBatch(zone_id="zone-work-1", count=5),
    ]
    return WorldConfig(
        name="default-site",
        width=50.0,
        height=40.0,
        zones=zones,
        obstacles=obstacles,
        robots=robots,
        object_batches=batches,
    )


class SiteWorld:
    """Central keeper of site layout, robots, objects and tasks.

    The world owns mutable state only; deciding what happens on a tick is the
    job of the services layer.
    """

    def __init__(
        self,
        config: WorldConfig,
        cell_size: float,
        inflation: float = 0.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config
        self.dimensions = SiteDimensions(width=config.width, height=config.height, cell_size=cell_size)
        self.inflation = inflation
        self.rng = rng or random.Random()
        self.zones: Dict[str, Zone] = {zone.id: zone.model_copy(deep=True) for zone in config.zones}
        self.obstacles: Dict[str, Obstacle] = {obs.id: obs.model_copy(deep=True) for obs in config.obstacles}
        self.robots: Dict[str, RobotAgent] = {}
        self.objects: Dict[str, ConstructionObject] = {}
        self.tasks: Dict[str, Task] = {}
        self.layout_version = 0
        self.grid = self._build_grid()
        self._slot_claims: Dict[str, Point] = {}
        self._object_ids = itertools.count(1)
        self._populate()

    def _build_grid(self) -> OccupancyGrid:
        return OccupancyGrid.from_obstacles(
            self.dimensions.width,
            self.dimensions.height,
            self.dimensions.cell_size,
            (obstacle.bounds for obstacle in self.obstacles.values()),
            inflation=self.inflation,
        )

    def _populate(self) -> None:
        for spec in self.config.robots:
            self.spawn_robot(spec)
        for obj_spec in self.config.objects:
            self._add_object(
                obj_spec.material,
                (obj_spec.x, obj_spec.y),
                object_id=obj_spec.id,
                weight=obj_spec.weight,
                status=obj_spec.status,
            )
        self._stock(self.config.object_batches)
        self.recompute_occupancy()

    def _stock(self, batches: Iterable[ObjectBatch]) -> None:
        for batch in batches:
            zone = self.zones.get(batch.zone_id)
            if zone is None:
                raise ValueError(f"object batch references unknown zone {batch.zone_id}")
            materials = batch.materials or list(MaterialType)
            for _ in range(batch.count):
                self.spawn_object(self.rng.choice(materials), zone.id)

    # ------------------------------------------------------------------ robots
    def spawn_robot(self, spec: RobotSpec) -> RobotAgent:
        if spec.id in self.robots:
            raise ValueError(f"robot {spec.id} already exists")
        robot = RobotAgent(
            spec.id,
            spec.category,
            Pose(x=spec.x, y=spec.y, heading=spec.heading),
            name=spec.name,
            battery=spec.battery,
            speed=spec.speed,
            drain_per_unit=spec.drain_per_unit,
            action_drain_per_second=spec.action_drain_per_second,
        )
        self.robots[robot.id] = robot
        return robot

    # ----------------------------------------------------------------- objects
    def _add_object(
        self,
        material: MaterialType,
        point: Point,
        object_id: Optional[str] = None,
        weight: Optional[float] = None,
        status: ObjectStatus = ObjectStatus.AVAILABLE,
    ) -> ConstructionObject:
        spec = MATERIAL_CATALOG[material]
        if object_id is None:
            object_id = self._next_object_id()
        if object_id in self.objects:
            raise ValueError(f"object {object_id} already exists")
        zone = self.zone_at(*point)
        obj = ConstructionObject(
            id=object_id,
            name=material.value.replace("_", " ").title(),
            material=material,
            weight=weight or spec.weight,
            status=status,
            pose=Vector2D.from_tuple(point),
            zone_id=zone.id if zone else None,
            color=spec.color,
        )
        self.objects[obj.id] = obj
        return obj

    def _next_object_id(self) -> str:
        while True:
            candidate = f"obj-{next(self._object_ids):03d}"
            if candidate not in self.objects:
                return candidate

    def spawn_object(
        self,
        material: MaterialType,
        zone_id: str,
        object_id: Optional[str] = None,
    ) -> ConstructionObject:
        """Place a new AVAILABLE object on a free slot of ``zone_id``.

        When every slot is taken the object lands on a random free point of
        the zone; capacity is not enforced.
        """

        zone = self.zones[zone_id]
        point = self.free_slot(zone)
        if point is None:
            point = self._random_point(zone)
        obj = self._add_object(material, point, object_id=object_id)
        if zone.occupancy + 1 > zone.capacity:
            logger.warning("zone_over_capacity", zone_id=zone.id, occupancy=zone.occupancy + 1, capacity=zone.capacity)
        return obj

    def _random_point(self, zone: Zone) -> Point:
        bounds = zone.bounds
        for _ in range(32):
            point = (
                self.rng.uniform(bounds.x + 0.25, bounds.right - 0.25),
                self.rng.uniform(bounds.y + 0.25, bounds.bottom - 0.25),
            )
            if not self.grid.is_blocked_point(*point):
                return point
        center = bounds.center()
        return (center.x, center.y)

    def release_object(self, obj: ConstructionObject, point: Point, status: ObjectStatus) -> None:
        obj.status = status
        obj.holder = None
        obj.pose = Vector2D.from_tuple(point)
        zone = self.zone_at(*point)
        obj.zone_id = zone.id if zone else None

    # ------------------------------------------------------------------- zones
    def zone_at(self, x: float, y: float) -> Optional[Zone]:
        for zone in sorted(self.zones.values(), key=lambda z: z.id):
            if zone.contains(x, y):
                return zone
        return None

    def zones_of_type(self, zone_type: ZoneType) -> List[Zone]:
        return sorted((zone for zone in self.zones.values() if zone.type == zone_type), key=lambda z: z.id)

    def zone_slots(self, zone: Zone) -> List[Point]:
        """Row-major slot centres inside ``zone`` that are not blocked."""

        bounds = zone.bounds
        cols = max(1, int((bounds.width - 2 * SLOT_MARGIN) / SLOT_SPACING + 1e-9) + 1)
        rows = max(1, int((bounds.height - 2 * SLOT_MARGIN) / SLOT_SPACING + 1e-9) + 1)
        slots = []
        for row in range(rows):
            for col in range(cols):
                x = min(bounds.x + SLOT_MARGIN + col * SLOT_SPACING, bounds.right - 0.25)
                y = min(bounds.y + SLOT_MARGIN + row * SLOT_SPACING, bounds.bottom - 0.25)
                if not self.grid.is_blocked_point(x, y):
                    slots.append((x, y))
        return slots

    def _resting_points(self) -> List[Point]:
        return [obj.pose.to_tuple() for obj in self.objects.values() if not obj.held]

    def free_slot(self, zone: Zone, claimant: Optional[str] = None) -> Optional[Point]:
        """First slot of ``zone`` clear of resting objects and other claims."""

        taken = self._resting_points()
        taken.extend(point for owner, point in self._slot_claims.items() if owner != claimant)
        for slot in self.zone_slots(zone):
            if all(math.hypot(slot[0] - x, slot[1] - y) >= _SLOT_CLEARANCE for x, y in taken):
                return slot
        return None

    def claim_slot(self, zone: Zone, claimant: str) -> Point:
        """Reserve a drop or parking point in ``zone`` for ``claimant``.

        An earlier claim is kept while it stays inside ``zone`` and off the
        obstacle grid. Falls back to the free cell nearest the zone centre
        once the slots run out.
        """

        existing = self._slot_claims.get(claimant)
        if existing is not None and zone.contains(*existing) and not self.grid.is_blocked_point(*existing):
            return existing
        point = self.free_slot(zone, claimant)
        if point is None:
            center = zone.bounds.center()
            cell = self.grid.nearest_free(self.grid.cell_of(center.x, center.y)) or self.grid.cell_of(center.x, center.y)
            point = self.grid.center_of(cell)
        self._slot_claims[claimant] = point
        return point

    def release_slot(self, claimant: str) -> None:
        self._slot_claims.pop(claimant, None)

    def recompute_occupancy(self) -> None:
        """Derive zone membership lists from resting object positions."""

        members: Dict[str, List[str]] = {zone_id: [] for zone_id in self.zones}
        for obj in sorted(self.objects.values(), key=lambda o: o.id):
            if obj.held:
                obj.zone_id = None
                continue
            zone = self.zone_at(obj.pose.x, obj.pose.y)
            obj.zone_id = zone.id if zone else None
            if zone is not None:
                members[zone.id].append(obj.id)
        for zone_id, zone in self.zones.items():
            zone.objects = members[zone_id]
            zone.occupancy = len(zone.objects)

    # ------------------------------------------------------------------ layout
    def add_obstacle(self, obstacle: Obstacle) -> None:
        if obstacle.id in self.obstacles:
            raise ValueError(f"obstacle {obstacle.id} already exists")
        self.obstacles[obstacle.id] = obstacle
        self._layout_changed()

    def remove_obstacle(self, obstacle_id: str) -> Obstacle:
        obstacle = self.obstacles.pop(obstacle_id)
        self._layout_changed()
        return obstacle

    def replace_zones(self, zones: Iterable[Zone], batches: Optional[List[ObjectBatch]] = None) -> None:
        """Swap in a new zone layout and restock it.

        Every object and slot claim is discarded. Without ``batches`` the
        storage and staging zones are stocked to half their capacity. Tasks
        and robots must be settled by the caller beforehand.
        """

        self.zones = {zone.id: zone.model_copy(deep=True, update={"occupancy": 0, "objects": []}) for zone in zones}
        self.objects = {}
        self._slot_claims = {}
        self._stock(batches if batches is not None else stock_batches(self.zones.values()))
        self.recompute_occupancy()
        self._layout_changed()

    def _layout_changed(self) -> None:
        self.grid = self._build_grid()
        self.layout_version += 1
        logger.info("layout_changed", layout_version=self.layout_version, obstacles=len(self.obstacles))

    def active_object_ids(self) -> set:
        """Objects referenced by tasks that have not reached a terminal status."""

        return {task.object_id for task in self.tasks.values() if not task.status.terminal}

    def iter_robots(self) -> Iterable[RobotAgent]:
        return (self.robots[robot_id] for robot_id in sorted(self.robots))
