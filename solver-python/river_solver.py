"""
River path search with automatic forest placement.

The solver walks every simple path of empty tiles from a border start, up to a
maximum length, and scores each finished path:
1. Every EMPTY tile orthogonally next to the river becomes FOREST
2. Each forest tile earns 2% per adjacent river tile, doubled (0.02 * 2 * k)
3. Total profit is the sum over all forest tiles

KEY INSIGHT: forests are not a choice. Once the river is fixed the forest ring
is fully determined, so the search only has to enumerate river paths. The
search is pruned (interior continuations always beat border ones), so it is
exhaustive only within that pruned space.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from river_grid import (
    GRID_HEIGHT, GRID_WIDTH, Coordinate, Grid, TileType,
    is_border, is_valid_coordinate, orthogonal_neighbors,
)

logger = logging.getLogger(__name__)

# =============================================================================
# DOMAIN DEFINITIONS
# =============================================================================

MIN_RIVER_LENGTH = 5
MAX_RIVER_LENGTH_CAP = 35
DEFAULT_RIVER_LENGTH = 35

FOREST_BASE_PROFIT = 0.02  # 2% attack speed per forest tile
RIVER_ADJACENCY_MULTIPLIER = 2  # each adjacent river tile doubles the base

NO_PROFIT = -1.0  # sentinel: nothing found yet


class InvalidStartError(ValueError):
    """The requested river start is off the grid or not EMPTY."""

    def __init__(self, start: Coordinate, tile: Optional[TileType] = None):
        self.start = start
        self.tile = tile
        if tile is None:
            msg = f"river start ({start[0]}, {start[1]}) is outside the grid"
        else:
            msg = f"river start ({start[0]}, {start[1]}) is not Empty (found {tile.name})"
        super().__init__(msg)


class SearchStatus(str, Enum):
    COMPLETE = 'complete'
    NO_SOLUTION = 'no_solution'
    CANCELLED = 'cancelled'


def validate_max_length(max_length) -> int:
    if isinstance(max_length, bool) or not isinstance(max_length, int):
        raise ValueError(f"max_length must be an integer, got {max_length!r}")
    if not MIN_RIVER_LENGTH <= max_length <= MAX_RIVER_LENGTH_CAP:
        raise ValueError(
            f"max_length must be between {MIN_RIVER_LENGTH} and {MAX_RIVER_LENGTH_CAP}, got {max_length}"
        )
    return max_length


def clamp_max_length(max_length: int) -> int:
    return max(MIN_RIVER_LENGTH, min(MAX_RIVER_LENGTH_CAP, int(max_length)))


# =============================================================================
# SOLUTIONS
# =============================================================================

@dataclass
class RiverPathSolution:
    path: Tuple[Coordinate, ...]
    profit: float
    grid: Grid  # snapshot with River and Forest tiles baked in

    @classmethod
    def empty(cls, grid: Optional[Grid] = None) -> 'RiverPathSolution':
        return cls(path=(), profit=NO_PROFIT, grid=grid.copy() if grid is not None else Grid())

    @property
    def found(self) -> bool:
        return self.profit >= 0 and len(self.path) > 0

    @property
    def start(self) -> Optional[Coordinate]:
        return self.path[0] if self.path else None

    def copy(self) -> 'RiverPathSolution':
        return RiverPathSolution(path=tuple(self.path), profit=self.profit, grid=self.grid.copy())

    def to_dict(self) -> dict:
        return {
            'profit': self.profit,
            'profit_percent': round(max(self.profit, 0.0) * 100, 2),
            'length': len(self.path),
            'path': [{'x': c.x, 'y': c.y} for c in self.path],
            'grid': self.grid.to_rows(),
            'forest_count': self.grid.count(TileType.FOREST),
        }


@dataclass
class SearchResult:
    status: SearchStatus
    solution: RiverPathSolution
    start: Coordinate
    max_length: int

    @property
    def cancelled(self) -> bool:
        return self.status == SearchStatus.CANCELLED


@dataclass(frozen=True)
class SearchContext:
    max_length: int
    disable_cross_adjacency: bool = False
    cancel_event: Optional[threading.Event] = None

    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass
class ScoredMove:
    coord: Coordinate
    is_straight: bool
    adjacency_bonus: int
    new_forest_tiles: int

    def sort_key(self):
        # Descending on bonus and forest count; turns before straights.
        return (-self.adjacency_bonus, -self.new_forest_tiles, self.is_straight)


# =============================================================================
# PROFIT
# =============================================================================

def profit_from_adjacency(total_adjacent_rivers: int) -> float:
    return FOREST_BASE_PROFIT * RIVER_ADJACENCY_MULTIPLIER * total_adjacent_rivers


def grid_profit(grid: Grid) -> float:
    """Profit of a grid snapshot: every FOREST tile pays per adjacent RIVER tile."""
    cells = grid.cells
    total = 0
    for y in range(GRID_HEIGHT):
        row = cells[y]
        for x in range(GRID_WIDTH):
            if row[x] != TileType.FOREST:
                continue
            if y > 0 and cells[y - 1][x] == TileType.RIVER:
                total += 1
            if y < GRID_HEIGHT - 1 and cells[y + 1][x] == TileType.RIVER:
                total += 1
            if x > 0 and row[x - 1] == TileType.RIVER:
                total += 1
            if x < GRID_WIDTH - 1 and row[x + 1] == TileType.RIVER:
                total += 1
    return profit_from_adjacency(total)


def place_forests(grid: Grid, river_path) -> Grid:
    """Copy of grid with every EMPTY neighbour of the river marked FOREST."""
    forest_grid = grid.copy()
    for river_tile in river_path:
        for adj in orthogonal_neighbors(river_tile):
            if forest_grid[adj] == TileType.EMPTY:
                forest_grid[adj] = TileType.FOREST
    return forest_grid


def calculate_profit_and_place_forests(grid_with_river: Grid, river_path) -> Tuple[float, Grid]:
    """
    Place forests around an already-marked river and score the result.

    The input grid is not modified; the returned grid is a fresh copy.
    """
    forest_grid = place_forests(grid_with_river, river_path)
    return grid_profit(forest_grid), forest_grid


# =============================================================================
# SEARCH
# =============================================================================

class _PathSearch:
    """Backtracking state for one (start, max_length) search."""

    def __init__(self, grid: Grid, context: SearchContext,
                 on_solution: Optional[Callable[[RiverPathSolution], None]]):
        self.grid = grid  # private working copy
        self.context = context
        self.on_solution = on_solution
        self.path: List[Coordinate] = []
        self.best = RiverPathSolution.empty(grid)
        self.leaves_evaluated = 0

    def explore(self, tile: Coordinate, depth: int):
        ctx = self.context
        if ctx.cancelled():
            return
        if depth >= ctx.max_length:
            return
        original = self.grid[tile]
        if original != TileType.EMPTY:
            return

        self.grid[tile] = TileType.RIVER
        self.path.append(tile)
        try:
            made_recursive_call = False
            if len(self.path) < ctx.max_length:
                moves = self.candidate_moves(tile)
                if ctx.cancelled():
                    return
                for move in moves:
                    self.explore(move.coord, depth + 1)
                    made_recursive_call = True

            if ctx.cancelled():
                return
            if not made_recursive_call or len(self.path) == ctx.max_length:
                self.evaluate_leaf()
        finally:
            self.path.pop()
            self.grid[tile] = original

    def candidate_moves(self, current: Coordinate) -> List[ScoredMove]:
        grid = self.grid
        path = self.path
        grandparent = path[-2] if len(path) >= 2 else None

        interior = []
        border = []
        for next_tile in orthogonal_neighbors(current):
            if next_tile == grandparent:
                continue
            if self.context.disable_cross_adjacency and self._touches_river(next_tile, current):
                continue
            if grid[next_tile] != TileType.EMPTY:
                continue
            if is_border(next_tile):
                border.append(next_tile)
            else:
                interior.append(next_tile)

        # Border continuations only when nothing interior is legal
        choices = interior if interior else border
        if not choices:
            return []

        prev_direction = None
        if grandparent is not None:
            prev_direction = (current.x - grandparent.x, current.y - grandparent.y)

        moves = []
        for choice in choices:
            is_straight = prev_direction is not None and \
                (choice.x - current.x, choice.y - current.y) == prev_direction

            adjacency_bonus = 0
            new_forest_tiles = 0
            for spot in orthogonal_neighbors(choice):
                if grid[spot] != TileType.EMPTY:
                    continue
                new_forest_tiles += 1
                for river_tile in path:
                    if abs(spot.x - river_tile.x) + abs(spot.y - river_tile.y) == 1:
                        adjacency_bonus += 1

            moves.append(ScoredMove(choice, is_straight, adjacency_bonus, new_forest_tiles))

        moves.sort(key=ScoredMove.sort_key)
        return moves

    def _touches_river(self, tile: Coordinate, current: Coordinate) -> bool:
        for adj in orthogonal_neighbors(tile):
            if adj == current:
                continue
            if self.grid[adj] == TileType.RIVER:
                return True
        return False

    def evaluate_leaf(self):
        self.leaves_evaluated += 1
        profit, forest_grid = calculate_profit_and_place_forests(self.grid, self.path)
        if profit > self.best.profit:
            if self.context.cancelled():
                return
            self.best = RiverPathSolution(path=tuple(self.path), profit=profit, grid=forest_grid)
            if self.on_solution:
                self.on_solution(self.best.copy())


def find_optimal_river(
    grid: Grid,
    start: Coordinate,
    max_length: int,
    on_solution: Optional[Callable[[RiverPathSolution], None]] = None,
    cancel_event: Optional[threading.Event] = None,
    disable_cross_adjacency: bool = False,
) -> SearchResult:
    """
    Search river paths of at most max_length tiles from start.

    Args:
        grid: Road-placed grid. Never modified; the search works on a copy.
        start: River source. Must be on the grid and EMPTY.
        max_length: Maximum number of river tiles (5-35).
        on_solution: Called with a copy of each strictly better solution.
        cancel_event: Checked throughout; when set the search unwinds and
            returns the best solution found so far.
        disable_cross_adjacency: Forbid the river from touching itself
            except between consecutive tiles.

    Raises:
        InvalidStartError: start is off the grid or not EMPTY.
    """
    start = Coordinate(*start)
    if not is_valid_coordinate(start):
        raise InvalidStartError(start)
    if grid[start] != TileType.EMPTY:
        raise InvalidStartError(start, grid[start])
    validate_max_length(max_length)

    context = SearchContext(
        max_length=max_length,
        disable_cross_adjacency=disable_cross_adjacency,
        cancel_event=cancel_event,
    )
    logger.debug("Searching from (%d, %d), max length %d, cross adjacency disabled: %s",
                 start.x, start.y, max_length, disable_cross_adjacency)

    search = _PathSearch(grid.copy(), context, on_solution)
    search.explore(start, 0)

    if context.cancelled():
        logger.info("Search from (%d, %d) stopped at max length %d", start.x, start.y, max_length)
        return SearchResult(SearchStatus.CANCELLED, search.best, start, max_length)

    if search.best.profit < 0:
        return SearchResult(SearchStatus.NO_SOLUTION, RiverPathSolution.empty(grid), start, max_length)

    logger.debug("Search complete from (%d, %d): profit %.2f%% with %d tiles (%d leaves)",
                 start.x, start.y, search.best.profit * 100, len(search.best.path),
                 search.leaves_evaluated)
    return SearchResult(SearchStatus.COMPLETE, search.best, start, max_length)
