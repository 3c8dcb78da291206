#!/usr/bin/env python3
"""
Flask API server for the River Planner.

One planner session per server process, following the original planner's
flow: place roads, finalize them, pick a river source (or scan every source),
calculate, then read the result. Calculations run in background threads;
poll /best while they run and POST /stop to end them early.

Run with: python server.py
Production: gunicorn -c ../deploy/gunicorn.conf.py server:app
"""

import os
import threading
import time
from typing import List, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from river_driver import OptimizationDriver, SweepOutcome, SweepProgress
from river_grid import Coordinate, Grid, parse_coordinate
from river_solver import (
    DEFAULT_RIVER_LENGTH, MAX_RIVER_LENGTH_CAP, MIN_RIVER_LENGTH,
    RiverPathSolution, clamp_max_length,
)

# =============================================================================
# Configuration
# =============================================================================

DEFAULT_MAX_LENGTH = clamp_max_length(int(os.environ.get('DEFAULT_MAX_LENGTH', DEFAULT_RIVER_LENGTH)))
MAX_SOLVE_TIME = float(os.environ.get('MAX_SOLVE_TIME', 3600))  # seconds, 0 = no limit

# Session states
PLACING_ROAD = 'placing_road'
PLACING_SOURCE = 'placing_source'
CALCULATING = 'calculating'
SHOWING_RESULT = 'showing_result'

RESET_MODES = ('full', 'source', 'road')

# =============================================================================
# App Setup
# =============================================================================

app = Flask(__name__)

default_origins = 'http://localhost:5173,http://localhost:3000'
allowed_origins = os.environ.get('ALLOWED_ORIGINS', default_origins)
if allowed_origins != '*':
    allowed_origins = [o.strip() for o in allowed_origins.split(',')]
CORS(app, origins=allowed_origins)


class SessionError(Exception):
    """Request not allowed in the current session state."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# Planner Session
# =============================================================================

class PlannerSession:
    """
    Road layout, selected source, settings and the running calculation.

    All fields are guarded by self.lock. Driver callbacks arrive on worker
    threads and take the same lock.
    """

    def __init__(self, max_solve_time: float = MAX_SOLVE_TIME):
        self.lock = threading.Lock()
        self.max_solve_time = max_solve_time
        self.road_layout = Grid()  # roads and forbidden tiles only
        self.grid = Grid()  # what is displayed: layout, live best, or final result
        self.state = PLACING_ROAD
        self.max_length = DEFAULT_MAX_LENGTH
        self.length_used = DEFAULT_MAX_LENGTH
        self.disable_cross_adjacency = False
        self.selected_start: Optional[Coordinate] = None
        self.valid_starts: List[Coordinate] = []
        self.final_solution = RiverPathSolution.empty()
        self.outcome: Optional[SweepOutcome] = None
        self.generation = 0
        self.started_at: Optional[float] = None
        self._timer: Optional[threading.Timer] = None
        self.driver = OptimizationDriver(on_progress=self._on_progress, on_finished=self._on_finished)

    # -------------------------------------------------------------------------
    # Road layout
    # -------------------------------------------------------------------------

    def set_road(self, tiles):
        with self.lock:
            self._require(PLACING_ROAD)
            self.road_layout.set_road(tiles)
            self.grid = self.road_layout.copy()
            self.final_solution = RiverPathSolution.empty(self.road_layout)

    def toggle_road(self, tile: Coordinate) -> bool:
        with self.lock:
            self._require(PLACING_ROAD)
            changed = self.road_layout.toggle_road(tile)
            self.grid = self.road_layout.copy()
            return changed

    def finalize_road(self):
        with self.lock:
            self._require(PLACING_ROAD)
            self.state = PLACING_SOURCE
            self.grid = self.road_layout.copy()
            self.valid_starts = self.road_layout.valid_river_starts()
            self.selected_start = None
        app.logger.info(f"Road layout finalized: {len(self.road_layout.road_tiles())} road tiles, "
                        f"{len(self.valid_starts)} valid river starts")

    # -------------------------------------------------------------------------
    # Settings and source
    # -------------------------------------------------------------------------

    def update_settings(self, max_length=None, disable_cross_adjacency=None):
        with self.lock:
            if max_length is not None:
                self.max_length = clamp_max_length(max_length)
            if disable_cross_adjacency is not None:
                self.disable_cross_adjacency = bool(disable_cross_adjacency)

    def select_start(self, start: Coordinate):
        with self.lock:
            self._require(PLACING_SOURCE)
            if not self.road_layout.is_valid_river_start(start):
                raise SessionError(f"({start.x}, {start.y}) is not a valid river start")
            self.selected_start = start

    # -------------------------------------------------------------------------
    # Calculation
    # -------------------------------------------------------------------------

    def launch(self, scope: str, max_length=None, disable_cross_adjacency=None) -> int:
        """
        Start a calculation. max_length and disable_cross_adjacency override
        the session settings and are kept only if the launch succeeds.
        """
        with self.lock:
            self._require(PLACING_SOURCE, SHOWING_RESULT)
            length = self.max_length if max_length is None else clamp_max_length(max_length)
            disable = (self.disable_cross_adjacency if disable_cross_adjacency is None
                       else bool(disable_cross_adjacency))
            if scope == 'selected':
                if self.selected_start is None:
                    raise SessionError("No river start selected")
                generation = self.driver.start_single(self.road_layout, self.selected_start, length, disable)
            elif scope == 'all':
                self.valid_starts = self.road_layout.valid_river_starts()
                generation = self.driver.start_all(self.road_layout, length, disable)
            else:
                raise SessionError(f"Unknown scope: {scope}")

            self.max_length = length
            self.disable_cross_adjacency = disable
            self.state = CALCULATING
            self.generation = generation
            self.length_used = self.max_length
            self.started_at = time.time()
            self.grid = self.road_layout.copy()
            self.final_solution = RiverPathSolution.empty(self.road_layout)
            self.outcome = None
            self._arm_timer()
        app.logger.info(f"[{generation}] Calculation launched: scope={scope}, max_length={self.length_used}, "
                        f"disable_cross_adjacency={self.disable_cross_adjacency}")
        return generation

    def stop(self) -> bool:
        with self.lock:
            if self.state != CALCULATING:
                return False
        return self.driver.stop()

    def reset(self, mode: str = 'full'):
        if mode not in RESET_MODES:
            raise SessionError(f"Unknown reset mode: {mode}")
        if mode == 'source':
            with self.lock:
                # The road layout must be finalized before a source can be picked
                self._require(PLACING_SOURCE, CALCULATING, SHOWING_RESULT)
        self.driver.reset()
        with self.lock:
            self._cancel_timer()
            self.final_solution = RiverPathSolution.empty(self.road_layout)
            self.outcome = None
            self.selected_start = None
            self.started_at = None
            if mode == 'full':
                self.road_layout = Grid()
                self.grid = Grid()
                self.final_solution = RiverPathSolution.empty()
                self.state = PLACING_ROAD
                self.max_length = DEFAULT_MAX_LENGTH
                self.length_used = DEFAULT_MAX_LENGTH
                self.disable_cross_adjacency = False
                self.valid_starts = []
            elif mode == 'source':
                self.grid = self.road_layout.copy()
                self.state = PLACING_SOURCE
                self.valid_starts = self.road_layout.valid_river_starts()
            else:
                self.grid = self.road_layout.copy()
                self.state = PLACING_ROAD
                self.valid_starts = []
        app.logger.info(f"Session reset ({mode})")

    def _on_progress(self, update: SweepProgress):
        with self.lock:
            if update.generation != self.generation or self.state != CALCULATING:
                return
            self.grid = update.solution.grid.copy()
        app.logger.info(f"[{update.generation}] New best: profit={update.solution.profit * 100:.2f}%, "
                        f"length={len(update.solution.path)}, start={tuple(update.start)}")

    def _on_finished(self, outcome: SweepOutcome):
        with self.lock:
            if outcome.generation != self.generation or self.state != CALCULATING:
                return
            self._cancel_timer()
            self.state = SHOWING_RESULT
            self.outcome = outcome
            self.final_solution = outcome.solution
            if outcome.found:
                self.grid = outcome.solution.grid.copy()
            else:
                self.grid = self.road_layout.copy()
        app.logger.info(f"[{outcome.generation}] Calculation {'complete' if outcome.completed else 'stopped'}: "
                        f"profit={max(outcome.solution.profit, 0) * 100:.2f}%")

    def _arm_timer(self):
        self._cancel_timer()
        if self.max_solve_time and self.max_solve_time > 0:
            self._timer = threading.Timer(self.max_solve_time, self.driver.stop)
            self._timer.daemon = True
            self._timer.start()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _require(self, *states):
        if self.state not in states:
            raise SessionError(f"Not allowed while {self.state}", 409)

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def status_text(self) -> str:
        with self.lock:
            state = self.state
            max_length = self.max_length
            selected = self.selected_start
            final = self.final_solution
        adjuster = f"Max Len: {max_length} ({MIN_RIVER_LENGTH}-{MAX_RIVER_LENGTH_CAP})"
        if state == PLACING_ROAD:
            return adjuster
        if state == PLACING_SOURCE:
            if selected is not None:
                return f"{adjuster}.\nSelected Start: ({selected.x}, {selected.y})"
            return f"{adjuster}.\nPick a valid border tile for the river source."
        if state == CALCULATING:
            return self.driver.status_text()
        profit = max(final.profit, 0.0)
        return (f"Result Profit: {profit * 100:.2f}%\n(Path: {len(final.path)}, Used MaxLen: {self.length_used}).\n"
                f"Adj. {adjuster}.")

    def to_dict(self) -> dict:
        text = self.status_text()
        with self.lock:
            return {
                'state': self.state,
                'status_text': text,
                'max_length': self.max_length,
                'disable_cross_adjacency': self.disable_cross_adjacency,
                'selected_start': _coord_dict(self.selected_start),
                'generation': self.generation,
                'valid_start_count': len(self.valid_starts),
            }


def _coord_dict(c: Optional[Coordinate]):
    return {'x': c.x, 'y': c.y} if c is not None else None


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


session = PlannerSession()


@app.errorhandler(SessionError)
def handle_session_error(e):
    return jsonify({"success": False, "error": str(e)}), e.status_code


# =============================================================================
# Routes
# =============================================================================

@app.route('/health', methods=['GET'])
def health():
    """Health check endpoint."""
    return jsonify({"status": "ok", "calculating": session.driver.is_running})


@app.route('/status', methods=['GET'])
def status():
    """Session state and display text."""
    return jsonify(session.to_dict())


@app.route('/grid', methods=['GET'])
def grid():
    """Displayed grid, road layout and valid river starts."""
    with session.lock:
        return jsonify({
            "state": session.state,
            "grid": session.grid.to_rows(),
            "road_layout": session.road_layout.to_rows(),
            "valid_starts": [_coord_dict(c) for c in session.valid_starts],
            "selected_start": _coord_dict(session.selected_start),
        })


@app.route('/road', methods=['POST'])
def set_road():
    """Replace the road layout. Body: {"tiles": [[x, y], ...]}"""
    data = _json_body()
    try:
        tiles = [parse_coordinate(t) for t in data.get('tiles', [])]
    except (ValueError, TypeError, KeyError) as e:
        return jsonify({"success": False, "error": f"Invalid tiles: {e}"}), 400
    session.set_road(tiles)
    return jsonify({"success": True, "road_tiles": len(session.road_layout.road_tiles())})


@app.route('/road/toggle', methods=['POST'])
def toggle_road():
    """Add or remove one road tile. Body: {"x": .., "y": ..}"""
    try:
        tile = parse_coordinate(_json_body())
    except (ValueError, TypeError, KeyError) as e:
        return jsonify({"success": False, "error": f"Invalid tile: {e}"}), 400
    changed = session.toggle_road(tile)
    return jsonify({"success": changed})


@app.route('/finalize-road', methods=['POST'])
def finalize_road():
    """Lock in the road layout and list valid river starts."""
    session.finalize_road()
    with session.lock:
        starts = [_coord_dict(c) for c in session.valid_starts]
    return jsonify({"success": True, "valid_starts": starts})


@app.route('/settings', methods=['POST'])
def settings():
    """Body: {"max_length": 5-35, "disable_cross_adjacency": bool} (both optional)"""
    data = _json_body()
    try:
        session.update_settings(
            max_length=data.get('max_length'),
            disable_cross_adjacency=data.get('disable_cross_adjacency'),
        )
    except (ValueError, TypeError) as e:
        return jsonify({"success": False, "error": str(e)}), 400
    return jsonify({"success": True, **session.to_dict()})


@app.route('/select-start', methods=['POST'])
def select_start():
    """Pick the river source for a selected-start scan. Body: {"x": .., "y": ..}"""
    try:
        start = parse_coordinate(_json_body())
    except (ValueError, TypeError, KeyError) as e:
        return jsonify({"success": False, "error": f"Invalid start: {e}"}), 400
    session.select_start(start)
    return jsonify({"success": True, "selected_start": _coord_dict(start)})


@app.route('/solve', methods=['POST'])
def solve():
    """
    Launch a calculation. Returns immediately with the generation id.

    Request JSON:
    {
        "scope": "all",                   // "all" valid starts or the "selected" start
        "max_length": 35,                 // Optional: overrides the session setting
        "disable_cross_adjacency": false  // Optional: overrides the session setting
    }
    """
    data = _json_body()
    try:
        generation = session.launch(
            data.get('scope', 'all'),
            max_length=data.get('max_length'),
            disable_cross_adjacency=data.get('disable_cross_adjacency'),
        )
    except SessionError:
        raise
    except ValueError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception as e:
        app.logger.error(f"Error launching calculation: {e}")
        import traceback
        traceback.print_exc()
        return jsonify({"success": False, "error": str(e)}), 500

    return jsonify({
        "success": True,
        "generation": generation,
        "status": CALCULATING,
        "message": "Calculation started. Poll /best for progress.",
    })


@app.route('/best', methods=['GET'])
def best():
    """Current best solution: live while calculating, final afterwards."""
    with session.lock:
        state = session.state
        started_at = session.started_at
        outcome = session.outcome
        generation = session.generation

    if state == CALCULATING:
        solution = session.driver.snapshot()
        elapsed = time.time() - started_at if started_at else 0
        return jsonify({
            "status": "solving" if solution is not None and solution.found else "searching",
            "generation": generation,
            "elapsed_seconds": round(elapsed, 1),
            "status_text": session.driver.status_text(),
            "solution": solution.to_dict() if solution is not None and solution.found else None,
        })
    if state == SHOWING_RESULT and outcome is not None:
        response = {"status": "done"}
        response.update(outcome.to_dict())
        if not outcome.found:
            response["message"] = "No profitable river configuration found"
        return jsonify(response)
    return jsonify({"status": "idle", "solution": None})


@app.route('/stop', methods=['POST'])
def stop():
    """Stop the running calculation; the best found so far becomes the result."""
    stopped = session.stop()
    if not stopped:
        return jsonify({"success": False, "error": "No calculation running"}), 400
    return jsonify({"success": True, "message": "Stopping calculation"})


@app.route('/reset', methods=['POST'])
def reset():
    """Body: {"mode": "full" | "source" | "road"} (default "full")"""
    session.reset(_json_body().get('mode', 'full'))
    return jsonify({"success": True, **session.to_dict()})


# =============================================================================
# Main
# =============================================================================

if __name__ == '__main__':
    print("=" * 60)
    print("River Planner - API Server")
    print("=" * 60)
    print(f"Default max length: {DEFAULT_MAX_LENGTH}")
    print(f"Max solve time: {MAX_SOLVE_TIME}s")
    print()
    print("Endpoints:")
    print("  GET  /health         - Health check")
    print("  GET  /status         - Session state")
    print("  GET  /grid           - Grid, road layout, valid starts")
    print("  POST /road           - Replace road layout")
    print("  POST /road/toggle    - Toggle one road tile")
    print("  POST /finalize-road  - Finish road placement")
    print("  POST /settings       - Max length / cross adjacency")
    print("  POST /select-start   - Pick river source")
    print("  POST /solve          - Start calculation")
    print("  GET  /best           - Poll best solution")
    print("  POST /stop           - Stop calculation")
    print("  POST /reset          - Reset session")
    print("=" * 60)

    app.run(host='0.0.0.0', port=5000, debug=True, threaded=True)
