import math

from site_fleet.enterprise.core import Bounds
from site_fleet.grid import OccupancyGrid
from site_fleet.pathfinding import find_path, find_path_astar, octile, path_length


def test_straight_path_is_simplified_to_goal():
    grid = OccupancyGrid(10.0, 10.0, 0.5)

    path = find_path((0.25, 0.25), (4.75, 0.25), grid)

    assert path == [(4.75, 0.25)]


def test_path_ends_exactly_on_goal_point():
    grid = OccupancyGrid(10.0, 10.0, 0.5)

    path = find_path((1.0, 1.0), (7.3, 4.1), grid)

    assert path is not None
    assert path[-1] == (7.3, 4.1)


def test_path_detours_around_wall_within_bound_of_optimum():
    wall = Bounds(x=5.0, y=0.0, width=0.5, height=8.0)
    grid = OccupancyGrid.from_obstacles(10.0, 10.0, 0.5, [wall])
    start, goal = (2.25, 2.25), (8.25, 2.25)

    path = find_path(start, goal, grid)

    assert path is not None
    for x, y in path:
        assert not grid.is_blocked_point(x, y)
    # Continuous optimum hugs the bottom end of the wall at y = 8.
    optimum = 2 * math.hypot(2.75, 5.75) + 0.5
    assert optimum <= path_length(start, path) <= optimum * 1.25


def test_cell_path_cost_matches_octile_on_open_grid():
    grid = OccupancyGrid(10.0, 10.0, 1.0)

    cells = find_path_astar((0, 0), (6, 3), grid)

    assert cells[0] == (0, 0) and cells[-1] == (6, 3)
    cost = sum(octile(a, b) for a, b in zip(cells, cells[1:]))
    assert math.isclose(cost, octile((0, 0), (6, 3)))


def test_diagonal_moves_do_not_cut_corners():
    grid = OccupancyGrid(3.0, 3.0, 1.0, blocked={(1, 0), (0, 1)})

    assert find_path_astar((0, 0), (1, 1), grid) is None


def test_unreachable_goal_returns_none():
    walls = [
        Bounds(x=6.0, y=6.0, width=3.0, height=0.5),
        Bounds(x=6.0, y=8.5, width=3.0, height=0.5),
        Bounds(x=6.0, y=6.0, width=0.5, height=3.0),
        Bounds(x=8.5, y=6.0, width=0.5, height=3.0),
    ]
    grid = OccupancyGrid.from_obstacles(12.0, 12.0, 0.5, walls)

    assert find_path((1.0, 1.0), (7.5, 7.5), grid) is None
    assert find_path((1.0, 1.0), (6.2, 6.2), grid) is None


def test_expansion_budget_bounds_search():
    grid = OccupancyGrid(50.0, 50.0, 0.5)

    assert find_path((0.25, 0.25), (49.75, 49.75), grid, max_expansions=10) is None
    assert find_path((0.25, 0.25), (49.75, 49.75), grid, max_expansions=50_000) is not None
