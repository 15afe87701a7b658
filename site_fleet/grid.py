"""Occupancy grid derived from the site's obstacle rectangles."""

from __future__ import annotations

import math
from typing import FrozenSet, Iterable, Optional, Tuple

from site_fleet.enterprise.core import Bounds

Cell = Tuple[int, int]


class OccupancyGrid:
    """Quantised view of the site answering "is this cell blocked" in O(1).

    The grid is immutable: layout changes produce a new instance through
    :meth:`from_obstacles`, and temporary blockers are layered on with
    :meth:`with_blocked`.
    """

    def __init__(self, width: float, height: float, cell_size: float, blocked: Iterable[Cell] = ()) -> None:
        if cell_size <= 0:
            raise ValueError("cell_size must be positive")
        self.width = width
        self.height = height
        self.cell_size = cell_size
        self.cols = max(1, math.ceil(width / cell_size))
        self.rows = max(1, math.ceil(height / cell_size))
        self._blocked: FrozenSet[Cell] = frozenset(cell for cell in blocked if self.in_bounds(cell))

    @classmethod
    def from_obstacles(
        cls,
        width: float,
        height: float,
        cell_size: float,
        rectangles: Iterable[Bounds],
        inflation: float = 0.0,
    ) -> "OccupancyGrid":
        blocked: set[Cell] = set()
        for rect in rectangles:
            blocked.update(rasterize(rect.inflate(inflation), cell_size))
        return cls(width, height, cell_size, blocked)

    @property
    def blocked_cells(self) -> FrozenSet[Cell]:
        return self._blocked

    def cell_of(self, x: float, y: float) -> Cell:
        return (math.floor(x / self.cell_size), math.floor(y / self.cell_size))

    def center_of(self, cell: Cell) -> Tuple[float, float]:
        return ((cell[0] + 0.5) * self.cell_size, (cell[1] + 0.5) * self.cell_size)

    def in_bounds(self, cell: Cell) -> bool:
        return 0 <= cell[0] < self.cols and 0 <= cell[1] < self.rows

    def is_blocked(self, cell: Cell) -> bool:
        return not self.in_bounds(cell) or cell in self._blocked

    def is_blocked_point(self, x: float, y: float) -> bool:
        return self.is_blocked(self.cell_of(x, y))

    def with_blocked(self, extra: Iterable[Cell]) -> "OccupancyGrid":
        extra_cells = set(extra)
        if not extra_cells:
            return self
        return OccupancyGrid(self.width, self.height, self.cell_size, self._blocked | extra_cells)

    def nearest_free(self, cell: Cell, max_radius: int = 3) -> Optional[Cell]:
        """Return the closest unblocked cell within ``max_radius`` rings."""

        if not self.is_blocked(cell):
            return cell
        for radius in range(1, max_radius + 1):
            ring = [
                (cell[0] + dx, cell[1] + dy)
                for dx in range(-radius, radius + 1)
                for dy in range(-radius, radius + 1)
                if max(abs(dx), abs(dy)) == radius
            ]
            free = [candidate for candidate in ring if not self.is_blocked(candidate)]
            if free:
                return min(free, key=lambda c: (math.hypot(c[0] - cell[0], c[1] - cell[1]), c))
        return None


def rasterize(rect: Bounds, cell_size: float) -> set[Cell]:
    """Cells whose area overlaps ``rect``."""

    first_col = math.floor(rect.x / cell_size)
    first_row = math.floor(rect.y / cell_size)
    last_col = max(first_col, math.ceil(rect.right / cell_size) - 1)
    last_row = max(first_row, math.ceil(rect.bottom / cell_size) - 1)
    return {
        (col, row)
        for col in range(first_col, last_col + 1)
        for row in range(first_row, last_row + 1)
    }
