"""Dependency providers for the API layer."""

from __future__ import annotations

from functools import lru_cache

from site_fleet.enterprise.config.settings import AppSettings, get_settings
from site_fleet.services import AutoScheduler, HeuristicPlanner, SimulationEngine

__all__ = [
    "get_app_settings",
    "get_engine",
    "reset_engine",
]


@lru_cache(maxsize=1)
def _get_engine_singleton() -> SimulationEngine:
    engine = SimulationEngine(get_settings())
    engine.subscribe(AutoScheduler(engine, HeuristicPlanner(engine.scheduler)))
    return engine


def get_engine() -> SimulationEngine:
    """Return the shared :class:`SimulationEngine` instance."""

    return _get_engine_singleton()


def reset_engine() -> None:
    """Drop the cached engine so the next request builds a fresh world (useful for tests)."""

    _get_engine_singleton.cache_clear()


def get_app_settings() -> AppSettings:
    return get_settings()
