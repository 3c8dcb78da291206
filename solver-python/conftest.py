"""Shared pytest fixtures for river planner tests."""

import pytest

from river_grid import GRID_HEIGHT, GRID_WIDTH, Coordinate, Grid, TileType, grid_with_roads


def road_block(cx, cy, radius=1):
    """Square block of road tiles centered on (cx, cy)."""
    return [Coordinate(x, y)
            for y in range(cy - radius, cy + radius + 1)
            for x in range(cx - radius, cx + radius + 1)]


@pytest.fixture
def empty_grid():
    return Grid()


@pytest.fixture
def center_block_grid():
    """3x3 road block centered at (10, 6) with its forbidden ring."""
    return grid_with_roads(road_block(10, 6))


@pytest.fixture
def edge_block_grid():
    """3x3 road block touching the top border, centered at (10, 1)."""
    return grid_with_roads(road_block(10, 1))


@pytest.fixture
def left_start():
    """Non-corner tile on the left border."""
    return Coordinate(0, 5)


def assert_orthogonal_path(path):
    for a, b in zip(path, path[1:]):
        assert abs(a.x - b.x) + abs(a.y - b.y) == 1, f"{a} -> {b} is not a single orthogonal step"


@pytest.fixture
def pocket_grid():
    """Everything FORBIDDEN except a 4x3 pocket on the left border (x 0-3, y 4-6)."""
    cells = [[TileType.FORBIDDEN] * GRID_WIDTH for _ in range(GRID_HEIGHT)]
    for y in range(4, 7):
        for x in range(0, 4):
            cells[y][x] = TileType.EMPTY
    return Grid(cells)
