"""Pathfinding algorithms for the simulation."""

from __future__ import annotations

import heapq
import math
from typing import Dict, List, Optional, Sequence, Tuple

from site_fleet.grid import Cell, OccupancyGrid

Point = Tuple[float, float]

SQRT2 = math.sqrt(2.0)

_NEIGHBOURS: Tuple[Tuple[int, int, float], ...] = (
    (1, 0, 1.0),
    (-1, 0, 1.0),
    (0, 1, 1.0),
    (0, -1, 1.0),
    (1, 1, SQRT2),
    (1, -1, SQRT2),
    (-1, 1, SQRT2),
    (-1, -1, SQRT2),
)


def octile(a: Cell, b: Cell) -> float:
    dx = abs(a[0] - b[0])
    dy = abs(a[1] - b[1])
    return (dx + dy) + (SQRT2 - 2.0) * min(dx, dy)


def find_path_astar(
    start: Cell,
    end: Cell,
    grid: OccupancyGrid,
    max_expansions: Optional[int] = None,
) -> Optional[List[Cell]]:
    """8-connected A* over ``grid`` returning the cell sequence or ``None``.

    Diagonal moves may not squeeze between two blocked orthogonal cells.
    Frontier ties are broken by lower total cost, then by fewer steps. The
    start cell is allowed to be blocked so a robot standing inside a freshly
    added obstacle can still leave it.
    """

    if grid.is_blocked(end):
        return None
    if start == end:
        return [start]

    open_set: list[Tuple[float, int, float, Cell]] = []
    heapq.heappush(open_set, (octile(start, end), 0, 0.0, start))
    g_score: Dict[Cell, float] = {start: 0.0}
    came_from: Dict[Cell, Cell] = {}
    closed: set[Cell] = set()
    expansions = 0

    while open_set:
        _score, steps, cost, node = heapq.heappop(open_set)
        if node in closed:
            continue
        if node == end:
            return _reconstruct(came_from, node)
        closed.add(node)

        expansions += 1
        if max_expansions is not None and expansions > max_expansions:
            return None

        for dx, dy, step_cost in _NEIGHBOURS:
            nxt = (node[0] + dx, node[1] + dy)
            if nxt in closed or grid.is_blocked(nxt):
                continue
            if dx and dy and (grid.is_blocked((node[0] + dx, node[1])) or grid.is_blocked((node[0], node[1] + dy))):
                continue

            new_cost = cost + step_cost
            if new_cost >= g_score.get(nxt, math.inf):
                continue
            g_score[nxt] = new_cost
            came_from[nxt] = node
            heapq.heappush(open_set, (new_cost + octile(nxt, end), steps + 1, new_cost, nxt))

    return None


def _reconstruct(came_from: Dict[Cell, Cell], node: Cell) -> List[Cell]:
    path = [node]
    while node in came_from:
        node = came_from[node]
        path.append(node)
    path.reverse()
    return path


def _collapse_collinear(cells: Sequence[Cell]) -> List[Cell]:
    if len(cells) <= 2:
        return list(cells)
    kept: List[Cell] = []
    for index in range(1, len(cells) - 1):
        prev_dir = (cells[index][0] - cells[index - 1][0], cells[index][1] - cells[index - 1][1])
        next_dir = (cells[index + 1][0] - cells[index][0], cells[index + 1][1] - cells[index][1])
        if prev_dir != next_dir:
            kept.append(cells[index])
    kept.append(cells[-1])
    return kept


def find_path(
    start: Point,
    goal: Point,
    grid: OccupancyGrid,
    max_expansions: Optional[int] = None,
    simplify: bool = True,
) -> Optional[List[Point]]:
    """Plan from world point ``start`` to ``goal``.

    Returns world-space waypoints excluding the start, ending exactly on
    ``goal``, or ``None`` when the goal is unreachable.
    """

    start_cell = grid.cell_of(*start)
    goal_cell = grid.cell_of(*goal)
    cells = find_path_astar(start_cell, goal_cell, grid, max_expansions=max_expansions)
    if cells is None:
        return None

    route = _collapse_collinear(cells) if simplify else cells[1:]
    if simplify and route and route[0] == start_cell:
        route = route[1:]
    waypoints = [grid.center_of(cell) for cell in route]
    if waypoints:
        waypoints[-1] = (float(goal[0]), float(goal[1]))
    else:
        waypoints = [(float(goal[0]), float(goal[1]))]
    return waypoints


def path_length(start: Point, waypoints: Sequence[Point]) -> float:
    total = 0.0
    previous = start
    for point in waypoints:
        total += math.hypot(point[0] - previous[0], point[1] - previous[1])
        previous = point
    return total
