import pytest

from site_fleet.enterprise.config.settings import SensorSettings
from site_fleet.enterprise.core import (
    Bounds,
    ConstructionObject,
    MaterialType,
    ObjectStatus,
    Obstacle,
    ObstacleType,
    Pose,
    Vector2D,
)
from site_fleet.grid import OccupancyGrid
from site_fleet.sensors import detect_obstacles, lidar_scan, proximity_readings, sample_sensors

WALL = Obstacle(id="wall", type=ObstacleType.WALL, bounds=Bounds(x=7.0, y=0.0, width=0.5, height=10.0))


def _grid(*obstacles: Obstacle) -> OccupancyGrid:
    return OccupancyGrid.from_obstacles(10.0, 10.0, 0.5, [obstacle.bounds for obstacle in obstacles])


def test_lidar_ray_stops_at_first_blocked_cell():
    scan = lidar_scan(Pose(x=5.0, y=5.0, heading=0.0), _grid(WALL), num_rays=4, max_range=3.0)

    assert [point.angle for point in scan.points] == [0.0, 90.0, 180.0, 270.0]
    east = scan.points[0]
    assert east.distance == pytest.approx(2.0)
    assert east.x == pytest.approx(7.0)
    assert east.intensity == pytest.approx(1.0 - 2.0 / 3.0)
    assert scan.points[2].distance == 3.0
    assert scan.points[2].intensity == 0.0


def test_proximity_cones_follow_heading():
    facing_wall = proximity_readings(Pose(x=5.0, y=5.0, heading=0.0), [WALL], max_range=5.0)
    assert facing_wall.front == pytest.approx(2.0)
    assert facing_wall.back == 5.0

    # Facing down the screen, the wall on the east side is to the robot's left.
    facing_down = proximity_readings(Pose(x=5.0, y=5.0, heading=90.0), [WALL], max_range=5.0)
    assert facing_down.left == pytest.approx(2.0)
    assert facing_down.front == 5.0
    assert facing_down.right == 5.0


def test_proximity_reads_zero_inside_obstacle():
    reading = proximity_readings(Pose(x=7.2, y=5.0), [WALL])
    assert (reading.front, reading.back, reading.left, reading.right) == (0.0, 0.0, 0.0, 0.0)


def test_detections_sorted_and_skip_held_objects():
    loose = ConstructionObject(id="loose", material=MaterialType.TOOL_BOX, weight=10, pose=Vector2D(x=5.0, y=6.0))
    held = ConstructionObject(
        id="held",
        material=MaterialType.TOOL_BOX,
        weight=10,
        pose=Vector2D(x=5.0, y=5.5),
        status=ObjectStatus.CARRIED,
    )

    detections = detect_obstacles(Pose(x=5.0, y=5.0), [WALL], [loose, held], radius=10.0)

    assert [d.id for d in detections] == ["loose", "wall"]
    assert detections[0].label == "tool_box"
    assert 0.85 <= detections[1].confidence <= 0.95
    assert detections[0].confidence > detections[1].confidence


def test_sample_sensors_uses_settings():
    settings = SensorSettings(lidar_rays=8, lidar_max_range=4.0, detection_radius=1.0)

    reading = sample_sensors(Pose(x=5.0, y=5.0), _grid(WALL), [WALL], [], settings, tick=42)

    assert reading.tick == 42
    assert len(reading.lidar.points) == 8
    assert reading.lidar.max_range == 4.0
    assert reading.detections == []
