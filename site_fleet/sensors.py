"""Synthetic sensor readings generated from a robot pose.

Every function here is stateless: callers pass the pose and the current
obstacle model on each invocation. Outputs are observational only and are
never consulted by path planning.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional

from site_fleet.enterprise.core import (
    Bounds,
    ConstructionObject,
    Detection,
    LidarPoint,
    LidarScan,
    Obstacle,
    ObjectStatus,
    Pose,
    ProximityReading,
    SensorReading,
)
from site_fleet.enterprise.config.settings import SensorSettings
from site_fleet.grid import OccupancyGrid

# Heading offsets (degrees) of the proximity sensors. With y growing downward
# a positive offset turns clockwise on screen, i.e. to the robot's right.
_PROXIMITY_OFFSETS = {"front": 0.0, "right": 90.0, "back": 180.0, "left": -90.0}


def _angle_delta(a: float, b: float) -> float:
    """Smallest signed difference between two angles in degrees."""

    return (a - b + 180.0) % 360.0 - 180.0


def lidar_scan(
    pose: Pose,
    grid: OccupancyGrid,
    num_rays: int = 36,
    max_range: float = 10.0,
    step: Optional[float] = None,
) -> LidarScan:
    """Cast ``num_rays`` equally spaced rays starting at the robot heading.

    Each ray marches outward in fixed increments (half a grid cell unless
    ``step`` is given) and stops at the first blocked cell.
    """

    increment = step or grid.cell_size / 2.0
    points: List[LidarPoint] = []
    for index in range(num_rays):
        angle = (pose.heading + index * 360.0 / num_rays) % 360.0
        radians = math.radians(angle)
        cos_a, sin_a = math.cos(radians), math.sin(radians)

        distance = max_range
        travelled = increment
        while travelled <= max_range:
            if grid.is_blocked_point(pose.x + cos_a * travelled, pose.y + sin_a * travelled):
                distance = travelled
                break
            travelled += increment

        points.append(
            LidarPoint(
                angle=angle,
                distance=distance,
                x=pose.x + cos_a * distance,
                y=pose.y + sin_a * distance,
                intensity=max(0.0, 1.0 - distance / max_range),
            )
        )
    return LidarScan(max_range=max_range, points=points)


def proximity_readings(
    pose: Pose,
    obstacles: Iterable[Obstacle],
    max_range: float = 5.0,
    cone_degrees: float = 45.0,
) -> ProximityReading:
    """Nearest obstacle distance inside each of four directional cones."""

    readings = {name: max_range for name in _PROXIMITY_OFFSETS}
    for obstacle in obstacles:
        nx, ny = obstacle.bounds.nearest_point(pose.x, pose.y)
        distance = math.hypot(nx - pose.x, ny - pose.y)
        if distance > max_range:
            continue
        if distance == 0.0:
            # Robot footprint overlaps the obstacle: every sensor reads zero.
            return ProximityReading(front=0.0, back=0.0, left=0.0, right=0.0)
        bearing = math.degrees(math.atan2(ny - pose.y, nx - pose.x))
        for name, offset in _PROXIMITY_OFFSETS.items():
            if abs(_angle_delta(bearing, pose.heading + offset)) <= cone_degrees:
                readings[name] = min(readings[name], distance)
    return ProximityReading(**readings)


def detect_obstacles(
    pose: Pose,
    obstacles: Iterable[Obstacle],
    objects: Iterable[ConstructionObject] = (),
    radius: float = 10.0,
) -> List[Detection]:
    """Labelled detections for obstacles and loose objects within ``radius``.

    Confidence decays linearly from 0.95 at contact to 0.85 at the edge of
    the radius, so results are reproducible for a given pose.
    """

    detections: List[Detection] = []
    for obstacle in obstacles:
        distance = obstacle.bounds.distance_to(pose.x, pose.y)
        if distance <= radius:
            detections.append(
                Detection(
                    id=obstacle.id,
                    label=obstacle.type.value,
                    confidence=_confidence(distance, radius),
                    distance=distance,
                    bbox=obstacle.bounds,
                )
            )
    for obj in objects:
        if obj.status != ObjectStatus.AVAILABLE:
            continue
        distance = math.hypot(obj.pose.x - pose.x, obj.pose.y - pose.y)
        if distance <= radius:
            detections.append(
                Detection(
                    id=obj.id,
                    label=obj.material.value,
                    confidence=_confidence(distance, radius),
                    distance=distance,
                    bbox=Bounds(x=obj.pose.x - 0.25, y=obj.pose.y - 0.25, width=0.5, height=0.5),
                )
            )
    detections.sort(key=lambda detection: (detection.distance, detection.id))
    return detections


def _confidence(distance: float, radius: float) -> float:
    return round(0.95 - 0.1 * min(distance / radius, 1.0), 4)


def sample_sensors(
    pose: Pose,
    grid: OccupancyGrid,
    obstacles: Iterable[Obstacle],
    objects: Iterable[ConstructionObject],
    settings: SensorSettings,
    tick: int,
) -> SensorReading:
    obstacle_list = list(obstacles)
    return SensorReading(
        tick=tick,
        lidar=lidar_scan(pose, grid, num_rays=settings.lidar_rays, max_range=settings.lidar_max_range),
        proximity=proximity_readings(
            pose,
            obstacle_list,
            max_range=settings.proximity_max_range,
            cone_degrees=settings.proximity_cone_degrees,
        ),
        detections=detect_obstacles(pose, obstacle_list, objects, radius=settings.detection_radius),
    )
