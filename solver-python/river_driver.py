#!/usr/bin/env python3
"""
Concurrent sweep driver for the river solver.

A sweep runs the path search for every length from MIN_RIVER_LENGTH up to the
requested maximum, for one start (selected start scan) or for every valid
river start at once (global scan, one worker thread per start). All workers
of a sweep share one cancellation event and one SolutionAggregator.

Each launch gets a generation id. A newer launch (or a reset) makes older
generations stale: their workers stop publishing immediately, without
waiting for them to notice the cancellation.
"""

import json
import logging
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence, Tuple

from river_grid import Coordinate, Grid, TileType, grid_with_roads, parse_coordinate
from river_solver import (
    DEFAULT_RIVER_LENGTH, MIN_RIVER_LENGTH, InvalidStartError, RiverPathSolution,
    SearchResult, SearchStatus, find_optimal_river, validate_max_length,
)

logger = logging.getLogger(__name__)


# =============================================================================
# SOLUTION AGGREGATOR
# =============================================================================

class SolutionAggregator:
    """
    Best solution across all workers of one sweep, plus progress counters.

    offer() only accepts strictly better profits, so the best never goes down
    and the first of several equal solutions wins.
    """

    def __init__(self, grid: Optional[Grid] = None):
        self._lock = threading.Lock()
        self._best = RiverPathSolution.empty(grid)
        self._improvements = 0
        self._lengths_tested = 0
        self._workers_started = 0
        self._workers_finished = 0
        self._testing: Dict[Coordinate, int] = {}  # start -> length in progress

    def offer(self, candidate: RiverPathSolution) -> bool:
        with self._lock:
            if candidate.profit > self._best.profit:
                self._best = candidate.copy()
                self._improvements += 1
                return True
            return False

    def snapshot(self) -> RiverPathSolution:
        with self._lock:
            return self._best.copy()

    @property
    def best_profit(self) -> float:
        with self._lock:
            return self._best.profit

    def worker_started(self, start: Coordinate):
        with self._lock:
            self._workers_started += 1

    def length_started(self, start: Coordinate, length: int):
        with self._lock:
            self._testing[start] = length

    def length_finished(self, start: Coordinate):
        with self._lock:
            self._lengths_tested += 1

    def worker_finished(self, start: Coordinate):
        with self._lock:
            self._workers_finished += 1
            self._testing.pop(start, None)

    def progress(self) -> dict:
        with self._lock:
            return {
                'improvements': self._improvements,
                'lengths_tested': self._lengths_tested,
                'workers_started': self._workers_started,
                'workers_finished': self._workers_finished,
                'testing': dict(self._testing),
                'best_profit': self._best.profit,
                'best_length': len(self._best.path),
                'best_start': self._best.start,
            }


# =============================================================================
# SINGLE-START SWEEP
# =============================================================================

def sweep_lengths(
    grid: Grid,
    start: Coordinate,
    max_length: int,
    disable_cross_adjacency: bool = False,
    cancel_event: Optional[threading.Event] = None,
    on_improvement: Optional[Callable[[RiverPathSolution, int], None]] = None,
    should_continue: Optional[Callable[[int], bool]] = None,
    on_length_done: Optional[Callable[[SearchResult], None]] = None,
    min_length: int = MIN_RIVER_LENGTH,
) -> SearchResult:
    """
    Test every length from min_length to max_length from one start.

    Lengths run in increasing order and the per-length best is reset each
    time. The returned solution is the best over all tested lengths; on a
    tie the earlier (shorter) one is kept.

    Args:
        on_improvement: Called with (solution, length) whenever the best for
            the length being tested improves.
        should_continue: Called with the next length before it is tested;
            returning False ends the sweep early (reported as CANCELLED).
        on_length_done: Called with each per-length SearchResult.

    Raises:
        InvalidStartError: start is off the grid or not EMPTY.
    """
    start = Coordinate(*start)
    validate_max_length(max_length)
    overall = RiverPathSolution.empty(grid)
    status = SearchStatus.COMPLETE

    for length in range(min_length, max_length + 1):
        if cancel_event is not None and cancel_event.is_set():
            status = SearchStatus.CANCELLED
            break
        if should_continue is not None and not should_continue(length):
            status = SearchStatus.CANCELLED
            break

        length_best = [RiverPathSolution.empty(grid)]

        def on_solution(solution, length=length):
            if solution.profit > length_best[0].profit:
                length_best[0] = solution
                if on_improvement:
                    on_improvement(solution, length)

        result = find_optimal_river(
            grid, start, length,
            on_solution=on_solution,
            cancel_event=cancel_event,
            disable_cross_adjacency=disable_cross_adjacency,
        )
        if on_length_done:
            on_length_done(result)

        if result.status != SearchStatus.NO_SOLUTION and length_best[0].profit > overall.profit:
            overall = length_best[0]

        if result.cancelled:
            status = SearchStatus.CANCELLED
            break

    if status == SearchStatus.COMPLETE and not overall.found:
        status = SearchStatus.NO_SOLUTION
    return SearchResult(status, overall, start, max_length)


# =============================================================================
# DRIVER
# =============================================================================

@dataclass
class SweepProgress:
    generation: int
    start: Coordinate
    length: int
    solution: RiverPathSolution


@dataclass
class SweepOutcome:
    generation: int
    solution: RiverPathSolution  # sentinel (profit -1, no path) when nothing was found
    completed: bool  # False when stopped early
    max_length: int
    starts: Tuple[Coordinate, ...]
    disable_cross_adjacency: bool
    elapsed_seconds: float

    @property
    def stopped_early(self) -> bool:
        return not self.completed

    @property
    def found(self) -> bool:
        return self.solution.found

    def to_dict(self) -> dict:
        return {
            'generation': self.generation,
            'completed': self.completed,
            'stopped_early': self.stopped_early,
            'found': self.found,
            'max_length': self.max_length,
            'starts': [{'x': s.x, 'y': s.y} for s in self.starts],
            'disable_cross_adjacency': self.disable_cross_adjacency,
            'elapsed_seconds': round(self.elapsed_seconds, 2),
            'solution': self.solution.to_dict(),
        }


@dataclass
class _SweepRun:
    generation: int
    grid: Grid
    starts: Tuple[Coordinate, ...]
    max_length: int
    disable_cross_adjacency: bool
    aggregator: SolutionAggregator
    cancel_event: threading.Event = field(default_factory=threading.Event)
    publish_lock: threading.Lock = field(default_factory=threading.Lock)
    workers_joined: threading.Event = field(default_factory=threading.Event)
    done: threading.Event = field(default_factory=threading.Event)
    started_at: float = field(default_factory=time.time)
    launched_all: bool = False
    worker_statuses: Dict[Coordinate, SearchStatus] = field(default_factory=dict)
    outcome: Optional[SweepOutcome] = None

    def ran_to_completion(self) -> bool:
        """True when every start was launched and no worker was cut short."""
        return self.launched_all and SearchStatus.CANCELLED not in self.worker_statuses.values()


class OptimizationDriver:
    """
    Launches sweeps, tracks the current generation and collects results.

    on_progress(SweepProgress) fires whenever the sweep's overall best
    improves; profits seen by it are non-decreasing within one generation.
    on_finished(SweepOutcome) fires once per generation that is still
    current when its workers have all returned.
    """

    def __init__(self,
                 on_progress: Optional[Callable[[SweepProgress], None]] = None,
                 on_finished: Optional[Callable[[SweepOutcome], None]] = None,
                 min_length: int = MIN_RIVER_LENGTH):
        self.on_progress = on_progress
        self.on_finished = on_finished
        self.min_length = min_length
        self._lock = threading.Lock()
        self._generation_counter = 0
        self._run: Optional[_SweepRun] = None
        self._last_outcome: Optional[SweepOutcome] = None

    # -------------------------------------------------------------------------
    # Launching
    # -------------------------------------------------------------------------

    def start_single(self, grid: Grid, start: Coordinate, max_length: int = DEFAULT_RIVER_LENGTH,
                     disable_cross_adjacency: bool = False) -> int:
        """
        Sweep all lengths from one start. Returns the generation id.

        Raises:
            InvalidStartError: start is off the grid or not EMPTY. Nothing is
                launched and the running sweep (if any) is left alone.
        """
        start = Coordinate(*start)
        if not grid.is_valid_coordinate(start):
            raise InvalidStartError(start)
        if grid[start] != TileType.EMPTY:
            raise InvalidStartError(start, grid[start])
        return self._launch(grid, [start], max_length, disable_cross_adjacency)

    def start_all(self, grid: Grid, max_length: int = DEFAULT_RIVER_LENGTH,
                  disable_cross_adjacency: bool = False) -> int:
        """Sweep all lengths from every valid river start concurrently."""
        return self._launch(grid, grid.valid_river_starts(), max_length, disable_cross_adjacency)

    def _launch(self, grid: Grid, starts: Sequence[Coordinate], max_length: int,
                disable_cross_adjacency: bool) -> int:
        validate_max_length(max_length)
        grid = grid.copy()

        with self._lock:
            if self._run is not None:
                self._run.cancel_event.set()
            self._generation_counter += 1
            run = _SweepRun(
                generation=self._generation_counter,
                grid=grid,
                starts=tuple(starts),
                max_length=max_length,
                disable_cross_adjacency=disable_cross_adjacency,
                aggregator=SolutionAggregator(grid),
            )
            self._run = run
            self._last_outcome = None

        logger.info("Launching sweep %d: %d start(s), max length %d, cross adjacency disabled: %s",
                    run.generation, len(run.starts), max_length, disable_cross_adjacency)
        master = threading.Thread(target=self._run_master, args=(run,), daemon=True,
                                  name=f"river-sweep-{run.generation}")
        master.start()
        return run.generation

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    def stop(self) -> bool:
        """Signal the current sweep to stop. Returns False if nothing is left running."""
        with self._lock:
            run = self._run
            if run is None or run.workers_joined.is_set():
                return False
            run.cancel_event.set()
        logger.info("Stopping sweep %d", run.generation)
        return True

    def reset(self):
        """Cancel and forget the current sweep; its results will be dropped."""
        with self._lock:
            run = self._run
            self._run = None
            self._last_outcome = None
        if run is not None:
            run.cancel_event.set()
            logger.info("Reset: sweep %d invalidated", run.generation)

    def wait(self, timeout: Optional[float] = None) -> Optional[SweepOutcome]:
        """Block until the current sweep finishes. None on timeout or if nothing ran."""
        with self._lock:
            run = self._run
            last = self._last_outcome
        if run is None:
            return last
        if not run.done.wait(timeout):
            return None
        return run.outcome

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return self._run is not None and self._run.generation == generation

    @property
    def current_generation(self) -> int:
        with self._lock:
            return self._run.generation if self._run is not None else 0

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._run is not None and not self._run.done.is_set()

    @property
    def last_outcome(self) -> Optional[SweepOutcome]:
        with self._lock:
            return self._last_outcome

    def snapshot(self) -> Optional[RiverPathSolution]:
        """Best solution of the current sweep so far (or None when idle)."""
        with self._lock:
            run = self._run
        if run is None:
            return None
        return run.aggregator.snapshot()

    def status_text(self) -> str:
        with self._lock:
            run = self._run
        if run is None:
            return "Idle"

        progress = run.aggregator.progress()
        scan_type = "Selected Start Scan" if len(run.starts) == 1 else "Global Scan"
        lines = [
            f"{scan_type} (Max {run.max_length}):",
            f"Scanning {len(run.starts)} start(s) (Adj: {run.disable_cross_adjacency})",
        ]
        if len(run.starts) == 1 and progress['testing']:
            start, length = next(iter(progress['testing'].items()))
            lines.append(f"Testing length {length} from ({start.x},{start.y})")
        elif progress['testing']:
            lines.append(f"Workers running: {len(progress['testing'])}")
        if progress['best_profit'] >= 0 and progress['best_length'] > 0:
            best_start = progress['best_start']
            lines.append(f"Best Found: {progress['best_profit'] * 100:.2f}% (Path {progress['best_length']})")
            lines.append(f"From Start: ({best_start.x},{best_start.y})")
        else:
            lines.append("Best Found: None yet")
        elapsed = (run.outcome.elapsed_seconds if run.outcome else time.time() - run.started_at)
        lines.append(f"({elapsed:.1f}s)")
        return '\n'.join(lines)

    # -------------------------------------------------------------------------
    # Threads
    # -------------------------------------------------------------------------

    def _run_master(self, run: _SweepRun):
        workers = []
        try:
            for start in run.starts:
                if run.cancel_event.is_set():
                    logger.info("Sweep %d: stop signal before worker for %s", run.generation, start)
                    break
                worker = threading.Thread(target=self._run_worker, args=(run, start), daemon=True,
                                          name=f"river-worker-{run.generation}-{start.x}-{start.y}")
                worker.start()
                workers.append(worker)
            else:
                run.launched_all = True
            for worker in workers:
                worker.join()
        finally:
            run.workers_joined.set()
            self._finalize(run)

    def _run_worker(self, run: _SweepRun, start: Coordinate):
        aggregator = run.aggregator
        aggregator.worker_started(start)

        def should_continue(length):
            if not self.is_current(run.generation):
                logger.info("Worker %s: sweep %d is outdated, exiting before length %d",
                            start, run.generation, length)
                return False
            aggregator.length_started(start, length)
            return True

        def on_improvement(solution, length):
            with run.publish_lock:
                if not self.is_current(run.generation):
                    return
                if aggregator.offer(solution) and self.on_progress:
                    self.on_progress(SweepProgress(run.generation, start, length, solution))

        def on_length_done(result):
            aggregator.length_finished(start)

        try:
            result = sweep_lengths(
                run.grid, start, run.max_length,
                disable_cross_adjacency=run.disable_cross_adjacency,
                cancel_event=run.cancel_event,
                on_improvement=on_improvement,
                should_continue=should_continue,
                on_length_done=on_length_done,
                min_length=self.min_length,
            )
            with run.publish_lock:
                run.worker_statuses[start] = result.status
            logger.debug("Worker %s finished sweep %d: %s, profit %.2f%%",
                         start, run.generation, result.status.value, max(result.solution.profit, 0) * 100)
        except InvalidStartError as e:
            logger.warning("Worker %s skipped in sweep %d: %s", start, run.generation, e)
        finally:
            aggregator.worker_finished(start)

    def _finalize(self, run: _SweepRun):
        try:
            best = run.aggregator.snapshot()
            if not best.found:
                best = RiverPathSolution.empty(run.grid)
            run.outcome = SweepOutcome(
                generation=run.generation,
                solution=best,
                completed=run.ran_to_completion(),
                max_length=run.max_length,
                starts=run.starts,
                disable_cross_adjacency=run.disable_cross_adjacency,
                elapsed_seconds=time.time() - run.started_at,
            )
            with self._lock:
                current = self._run is run
                if current:
                    self._last_outcome = run.outcome
            if not current:
                logger.info("Sweep %d finished after being superseded; result dropped", run.generation)
                return

            logger.info("Sweep %d %s: profit %.2f%%, path length %d",
                        run.generation, "completed" if run.outcome.completed else "stopped",
                        max(best.profit, 0) * 100, len(best.path))
            if self.on_finished:
                self.on_finished(run.outcome)
        finally:
            run.done.set()


def run_sweep(
    grid: Grid,
    start: Optional[Coordinate] = None,
    max_length: int = DEFAULT_RIVER_LENGTH,
    disable_cross_adjacency: bool = False,
    max_time_seconds: Optional[float] = None,
    on_progress: Optional[Callable[[SweepProgress], None]] = None,
) -> SweepOutcome:
    """Run one sweep to completion (or until max_time_seconds) and return its outcome."""
    driver = OptimizationDriver(on_progress=on_progress)
    if start is None:
        driver.start_all(grid, max_length, disable_cross_adjacency)
    else:
        driver.start_single(grid, start, max_length, disable_cross_adjacency)

    outcome = driver.wait(max_time_seconds)
    if outcome is None:
        driver.stop()
        outcome = driver.wait()
    return outcome


# =============================================================================
# CLI INTERFACE
# =============================================================================

def main():
    """Read JSON from stdin, sweep, write JSON to stdout."""

    if len(sys.argv) > 1 and sys.argv[1] == '--help':
        print("""
River Planner - length/start sweep

Usage: echo '{"roads": [[10, 5], [10, 6]], "max_length": 8}' | python river_driver.py

Input JSON:
{
    "roads": [[x, y], ...],            // Optional: road tiles
    "start": [x, y],                   // Optional: single start (default: all valid starts)
    "max_length": 35,                  // Optional: 5-35, default 35
    "disable_cross_adjacency": false,  // Optional: default false
    "max_time_seconds": 60             // Optional: stop after this long
}

Output JSON:
{
    "success": true,
    "completed": true,
    "solution": {"profit": 0.72, "path": [...], "grid": [...]}
}
        """)
        return

    try:
        input_json = json.load(sys.stdin)
    except json.JSONDecodeError as e:
        print(json.dumps({"success": False, "error": f"Invalid JSON: {e}"}))
        sys.exit(1)

    try:
        grid = grid_with_roads(parse_coordinate(c) for c in input_json.get('roads', []))
        start = parse_coordinate(input_json['start']) if input_json.get('start') is not None else None
        outcome = run_sweep(
            grid,
            start=start,
            max_length=input_json.get('max_length', DEFAULT_RIVER_LENGTH),
            disable_cross_adjacency=input_json.get('disable_cross_adjacency', False),
            max_time_seconds=input_json.get('max_time_seconds'),
        )
    except (ValueError, TypeError, KeyError) as e:  # InvalidStartError is a ValueError
        print(json.dumps({"success": False, "error": str(e)}))
        sys.exit(1)

    output = {"success": outcome.found}
    output.update(outcome.to_dict())
    if not outcome.found:
        output["error"] = "No profitable river configuration found"
    print(json.dumps(output, indent=2))


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, stream=sys.stderr,
                        format="%(asctime)s %(levelname)s %(threadName)s %(message)s")
    main()
