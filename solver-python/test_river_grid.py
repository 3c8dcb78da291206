"""
Unit tests for the grid model.
"""

import pytest

from river_grid import (
    GRID_HEIGHT, GRID_WIDTH, Coordinate, Grid, TileType,
    is_border, is_corner, orthogonal_neighbors, parse_coordinate,
)

ALL_BORDER_STARTS = 2 * (GRID_WIDTH - 2) + 2 * (GRID_HEIGHT - 2)


class TestCoordinates:
    """Border, corner and neighbour helpers."""

    def test_corner_is_border(self):
        assert is_corner((0, 0))
        assert is_border((0, 0))

    def test_edge_tile_is_not_corner(self):
        assert is_border((0, 5))
        assert not is_corner((0, 5))

    def test_interior(self):
        assert not is_border((10, 6))

    def test_neighbors_clip_to_grid(self):
        assert orthogonal_neighbors((0, 0)) == [Coordinate(0, 1), Coordinate(1, 0)]

    def test_neighbors_interior_order(self):
        assert orthogonal_neighbors((5, 5)) == [(5, 4), (5, 6), (4, 5), (6, 5)]

    def test_parse_coordinate_forms(self):
        assert parse_coordinate([3, 4]) == Coordinate(3, 4)
        assert parse_coordinate((3, 4)) == Coordinate(3, 4)
        assert parse_coordinate({'x': 3, 'y': 4}) == Coordinate(3, 4)

    def test_parse_coordinate_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_coordinate(['a', 1])


class TestRoads:
    """Road placement and forbidden zones."""

    def test_forbidden_ring_around_block(self, center_block_grid):
        grid = center_block_grid
        assert grid.count(TileType.ROAD) == 9
        # Orthogonal ring only: 3 tiles per side
        assert grid.count(TileType.FORBIDDEN) == 12
        assert grid[(8, 6)] == TileType.FORBIDDEN
        assert grid[(8, 4)] == TileType.EMPTY  # diagonal to the block

    def test_set_road_replaces_previous_layout(self, center_block_grid):
        grid = center_block_grid
        grid.set_road([(2, 2)])
        assert grid.road_tiles() == [Coordinate(2, 2)]
        assert grid.count(TileType.FORBIDDEN) == 4
        assert grid[(10, 6)] == TileType.EMPTY

    def test_out_of_range_roads_ignored(self, empty_grid):
        empty_grid.set_road([(-1, 0), (GRID_WIDTH, 3), (4, 4)])
        assert empty_grid.road_tiles() == [Coordinate(4, 4)]

    def test_toggle_adds_then_removes(self, empty_grid):
        assert empty_grid.toggle_road((4, 4))
        assert empty_grid[(4, 4)] == TileType.ROAD
        assert empty_grid[(4, 5)] == TileType.FORBIDDEN
        assert empty_grid.toggle_road((4, 4))
        assert empty_grid == Grid()

    def test_toggle_on_forbidden_tile_places_road(self, empty_grid):
        empty_grid.toggle_road((4, 4))
        assert empty_grid.toggle_road((4, 5))
        assert empty_grid[(4, 5)] == TileType.ROAD

    def test_toggle_off_grid(self, empty_grid):
        assert not empty_grid.toggle_road((30, 30))


class TestValidRiverStarts:
    """Border starts, corners excluded."""

    def test_empty_grid(self, empty_grid):
        starts = empty_grid.valid_river_starts()
        assert len(starts) == ALL_BORDER_STARTS
        assert not any(is_corner(s) for s in starts)
        assert all(is_border(s) for s in starts)

    def test_interior_block_excludes_nothing(self, center_block_grid):
        starts = center_block_grid.valid_river_starts()
        assert len(starts) == ALL_BORDER_STARTS
        assert all(center_block_grid[s] == TileType.EMPTY for s in starts)

    def test_edge_block_excludes_road_and_forbidden(self, edge_block_grid):
        starts = edge_block_grid.valid_river_starts()
        for x in range(8, 13):
            assert Coordinate(x, 0) not in starts
        assert Coordinate(7, 0) in starts
        assert len(starts) == ALL_BORDER_STARTS - 5

    def test_idempotent(self, edge_block_grid):
        assert edge_block_grid.valid_river_starts() == edge_block_grid.valid_river_starts()

    def test_order_top_bottom_then_sides(self, empty_grid):
        starts = empty_grid.valid_river_starts()
        assert starts[:4] == [(1, 0), (1, GRID_HEIGHT - 1), (2, 0), (2, GRID_HEIGHT - 1)]
        assert starts[-1] == (GRID_WIDTH - 1, GRID_HEIGHT - 2)

    def test_is_valid_river_start(self, edge_block_grid):
        assert edge_block_grid.is_valid_river_start((0, 5))
        assert not edge_block_grid.is_valid_river_start((0, 0))
        assert not edge_block_grid.is_valid_river_start((5, 5))
        assert not edge_block_grid.is_valid_river_start((10, 0))
        assert not edge_block_grid.is_valid_river_start((-1, 5))


class TestTextEncoding:
    """Row encoding used by the API and CLIs."""

    def test_rows_round_trip(self, center_block_grid):
        rows = center_block_grid.to_rows()
        assert len(rows) == GRID_HEIGHT
        assert all(len(r) == GRID_WIDTH for r in rows)
        assert Grid.from_rows(rows) == center_block_grid

    def test_from_rows_unknown_symbol(self):
        rows = ['.' * GRID_WIDTH] * (GRID_HEIGHT - 1) + ['?' * GRID_WIDTH]
        with pytest.raises(ValueError, match="unknown tile symbol"):
            Grid.from_rows(rows)

    def test_wrong_dimensions(self):
        with pytest.raises(ValueError):
            Grid([[TileType.EMPTY] * 3])

    def test_copy_is_independent(self, empty_grid):
        clone = empty_grid.copy()
        clone[(3, 3)] = TileType.RIVER
        assert empty_grid[(3, 3)] == TileType.EMPTY
