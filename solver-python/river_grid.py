"""
Grid model for the river planner.

The board is a fixed 21x12 matrix of tiles. Roads are placed by the caller,
and every empty tile orthogonally next to a road becomes FORBIDDEN (no river,
no forest). A river must start on an empty border tile that is not a corner.
"""

from enum import IntEnum
from typing import Dict, Iterable, List, NamedTuple, Optional

# =============================================================================
# DOMAIN DEFINITIONS
# =============================================================================

GRID_WIDTH = 21
GRID_HEIGHT = 12


class TileType(IntEnum):
    EMPTY = 0
    ROAD = 1
    RIVER = 2
    FOREST = 3
    FORBIDDEN = 4


TILE_SYMBOLS: Dict[TileType, str] = {
    TileType.EMPTY: '.',
    TileType.ROAD: 'R',
    TileType.RIVER: '~',
    TileType.FOREST: 'F',
    TileType.FORBIDDEN: 'X',
}
SYMBOL_TILES: Dict[str, TileType] = {sym: tile for tile, sym in TILE_SYMBOLS.items()}


class Coordinate(NamedTuple):
    """Grid position. x is the column, y is the row."""
    x: int
    y: int


# Up, down, left, right
NEIGHBOR_OFFSETS = ((0, -1), (0, 1), (-1, 0), (1, 0))


def is_valid_coordinate(c: Coordinate) -> bool:
    return 0 <= c[0] < GRID_WIDTH and 0 <= c[1] < GRID_HEIGHT


def is_border(c: Coordinate) -> bool:
    return c[0] == 0 or c[0] == GRID_WIDTH - 1 or c[1] == 0 or c[1] == GRID_HEIGHT - 1


def is_corner(c: Coordinate) -> bool:
    return c[0] in (0, GRID_WIDTH - 1) and c[1] in (0, GRID_HEIGHT - 1)


def orthogonal_neighbors(c: Coordinate) -> List[Coordinate]:
    """In-range orthogonal neighbours, in up/down/left/right order."""
    x, y = c
    neighbors = []
    for dx, dy in NEIGHBOR_OFFSETS:
        nx, ny = x + dx, y + dy
        if 0 <= nx < GRID_WIDTH and 0 <= ny < GRID_HEIGHT:
            neighbors.append(Coordinate(nx, ny))
    return neighbors


def parse_coordinate(value) -> Coordinate:
    """Accept [x, y], (x, y) or {"x": .., "y": ..}."""
    if isinstance(value, dict):
        return Coordinate(int(value['x']), int(value['y']))
    x, y = value
    return Coordinate(int(x), int(y))


# =============================================================================
# GRID
# =============================================================================

class Grid:
    """Tile matrix indexed by Coordinate. Rows are stored as cells[y][x]."""

    def __init__(self, cells: Optional[List[List[TileType]]] = None):
        if cells is None:
            cells = [[TileType.EMPTY] * GRID_WIDTH for _ in range(GRID_HEIGHT)]
        if len(cells) != GRID_HEIGHT or any(len(row) != GRID_WIDTH for row in cells):
            raise ValueError(f"grid must be {GRID_WIDTH}x{GRID_HEIGHT}")
        self.cells = cells

    def __getitem__(self, c: Coordinate) -> TileType:
        return self.cells[c[1]][c[0]]

    def __setitem__(self, c: Coordinate, tile: TileType):
        self.cells[c[1]][c[0]] = tile

    def __eq__(self, other):
        if not isinstance(other, Grid):
            return NotImplemented
        return self.cells == other.cells

    def __repr__(self):
        return f"Grid(\n{self.render()}\n)"

    def copy(self) -> 'Grid':
        return Grid([row[:] for row in self.cells])

    def is_valid_coordinate(self, c: Coordinate) -> bool:
        return is_valid_coordinate(c)

    def coordinates(self) -> Iterable[Coordinate]:
        for y in range(GRID_HEIGHT):
            for x in range(GRID_WIDTH):
                yield Coordinate(x, y)

    def tiles_of(self, tile_type: TileType) -> List[Coordinate]:
        return [c for c in self.coordinates() if self[c] == tile_type]

    def count(self, tile_type: TileType) -> int:
        return sum(row.count(tile_type) for row in self.cells)

    # -------------------------------------------------------------------------
    # Roads
    # -------------------------------------------------------------------------

    def set_road(self, road_tiles: Iterable[Coordinate]):
        """
        Replace the road layout.

        Existing ROAD and FORBIDDEN tiles are cleared first so removals work,
        then the new roads are placed and their empty orthogonal neighbours
        become FORBIDDEN. Out-of-range coordinates are ignored.
        """
        for row in self.cells:
            for x, tile in enumerate(row):
                if tile == TileType.ROAD or tile == TileType.FORBIDDEN:
                    row[x] = TileType.EMPTY

        placed = []
        for road_tile in road_tiles:
            road_tile = Coordinate(*road_tile)
            if is_valid_coordinate(road_tile):
                self[road_tile] = TileType.ROAD
                placed.append(road_tile)

        for road_tile in placed:
            for adj in orthogonal_neighbors(road_tile):
                if self[adj] == TileType.EMPTY:
                    self[adj] = TileType.FORBIDDEN

    def road_tiles(self) -> List[Coordinate]:
        return self.tiles_of(TileType.ROAD)

    def toggle_road(self, c: Coordinate) -> bool:
        """
        Add a road tile on an EMPTY or FORBIDDEN cell, or remove an existing
        one. Returns False when the cell cannot hold a road.
        """
        c = Coordinate(*c)
        if not is_valid_coordinate(c):
            return False
        roads = self.road_tiles()
        if self[c] == TileType.ROAD:
            roads.remove(c)
        elif self[c] in (TileType.EMPTY, TileType.FORBIDDEN):
            roads.append(c)
        else:
            return False
        self.set_road(roads)
        return True

    # -------------------------------------------------------------------------
    # River sources
    # -------------------------------------------------------------------------

    def valid_river_starts(self) -> List[Coordinate]:
        """Empty border tiles, corners excluded."""
        starts = []
        for x in range(1, GRID_WIDTH - 1):
            if self.cells[0][x] == TileType.EMPTY:
                starts.append(Coordinate(x, 0))
            if self.cells[GRID_HEIGHT - 1][x] == TileType.EMPTY:
                starts.append(Coordinate(x, GRID_HEIGHT - 1))
        for y in range(1, GRID_HEIGHT - 1):
            if self.cells[y][0] == TileType.EMPTY:
                starts.append(Coordinate(0, y))
            if self.cells[y][GRID_WIDTH - 1] == TileType.EMPTY:
                starts.append(Coordinate(GRID_WIDTH - 1, y))
        return starts

    def is_valid_river_start(self, c: Coordinate) -> bool:
        return (is_valid_coordinate(c) and is_border(c) and not is_corner(c)
                and self[c] == TileType.EMPTY)

    # -------------------------------------------------------------------------
    # Text encoding
    # -------------------------------------------------------------------------

    def to_rows(self) -> List[str]:
        return [''.join(TILE_SYMBOLS[tile] for tile in row) for row in self.cells]

    @classmethod
    def from_rows(cls, rows: List[str]) -> 'Grid':
        """Build a grid from rows of tile symbols (whitespace is ignored)."""
        cells = []
        for row in rows:
            symbols = ''.join(row.split())
            try:
                cells.append([SYMBOL_TILES[sym] for sym in symbols])
            except KeyError as e:
                raise ValueError(f"unknown tile symbol {e.args[0]!r}") from None
        return cls(cells)

    def render(self) -> str:
        return '\n'.join(' '.join(row) for row in self.to_rows())


def grid_with_roads(road_tiles: Iterable[Coordinate]) -> Grid:
    grid = Grid()
    grid.set_road(road_tiles)
    return grid
