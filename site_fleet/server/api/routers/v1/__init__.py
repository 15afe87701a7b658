"""Versioned API routers."""

from .health import router as health
from .observability import router as observability
from .robots import router as robots
from .simulation import router as simulation
from .site import router as site
from .tasks import router as tasks

__all__ = ["health", "observability", "robots", "simulation", "site", "tasks"]
