"""Shared fixtures: a compact deterministic site and an engine factory."""

from __future__ import annotations

from typing import Callable, List, Optional

import pytest

from site_fleet.enterprise.config.settings import AppSettings, get_settings
from site_fleet.enterprise.core import (
    Bounds,
    MaterialType,
    ObjectStatus,
    Obstacle,
    ObstacleType,
    RobotCategory,
    Zone,
    ZoneType,
)
from site_fleet.services import SimulationEngine
from site_fleet.services.commands import StartCommand
from site_fleet.site_world import ObjectSpec, RobotSpec, WorldConfig


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def small_site(
    robots: Optional[List[RobotSpec]] = None,
    objects: Optional[List[ObjectSpec]] = None,
    obstacles: Optional[List[Obstacle]] = None,
) -> WorldConfig:
    """20 x 12 m site with storage on the left, assembly top right and a charger bottom right."""

    zones = [
        Zone(
            id="storage",
            name="Storage",
            type=ZoneType.STORAGE,
            bounds=Bounds(x=1.0, y=1.0, width=4.0, height=4.0),
            capacity=10,
        ),
        Zone(
            id="assembly",
            name="Assembly",
            type=ZoneType.ASSEMBLY,
            bounds=Bounds(x=12.0, y=1.0, width=5.0, height=5.0),
            capacity=10,
        ),
        Zone(
            id="charger",
            name="Charger",
            type=ZoneType.CHARGING,
            bounds=Bounds(x=12.0, y=7.0, width=5.0, height=4.0),
            capacity=4,
        ),
    ]
    if robots is None:
        robots = [RobotSpec(id="mm-1", category=RobotCategory.PICK_PLACE, x=3.0, y=8.0)]
    if objects is None:
        objects = [ObjectSpec(id="box-1", material=MaterialType.TOOL_BOX, x=2.0, y=2.0)]
    return WorldConfig(
        name="test-site",
        width=20.0,
        height=12.0,
        zones=zones,
        obstacles=obstacles or [],
        robots=robots,
        objects=objects,
    )


def enclosure(x: float, y: float, size: float = 3.0) -> List[Obstacle]:
    """Four walls boxing in the square of side ``size`` whose top-left corner is ``(x, y)``."""

    thickness = 0.5
    return [
        Obstacle(id="wall-top", type=ObstacleType.WALL, bounds=Bounds(x=x, y=y, width=size, height=thickness)),
        Obstacle(
            id="wall-bottom",
            type=ObstacleType.WALL,
            bounds=Bounds(x=x, y=y + size - thickness, width=size, height=thickness),
        ),
        Obstacle(id="wall-left", type=ObstacleType.WALL, bounds=Bounds(x=x, y=y, width=thickness, height=size)),
        Obstacle(
            id="wall-right",
            type=ObstacleType.WALL,
            bounds=Bounds(x=x + size - thickness, y=y, width=thickness, height=size),
        ),
    ]


def placed_object(object_id: str, x: float, y: float) -> ObjectSpec:
    return ObjectSpec(id=object_id, material=MaterialType.TOOL_BOX, x=x, y=y, status=ObjectStatus.PLACED)


@pytest.fixture
def make_engine() -> Callable[..., SimulationEngine]:
    """Build an engine on ``world`` with nested settings overrides, sensors off by default."""

    def factory(world: Optional[WorldConfig] = None, start: bool = True, **sections) -> SimulationEngine:
        sections.setdefault("sensors", {"enabled": False})
        sections.setdefault("engine", {"random_seed": 7})
        engine = SimulationEngine(AppSettings(**sections), world_config=world or small_site())
        if start:
            engine.submit(StartCommand())
            engine.tick()
        return engine

    return factory


def run_until(engine: SimulationEngine, predicate: Callable[[], bool], max_ticks: int = 2000) -> int:
    """Tick until ``predicate`` holds; returns the ticks spent or fails the test."""

    for spent in range(1, max_ticks + 1):
        engine.tick()
        if predicate():
            return spent
    pytest.fail(f"condition not reached within {max_ticks} ticks")
