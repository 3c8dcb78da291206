#!/usr/bin/env python3
"""
Benchmark the river sweep on random road layouts.
Runs a global scan on random closed road loops and saves (layout, result) records.

Usage:
  python benchmark_layouts.py --count 20 --max-length 12 --max-time 30 --output benchmarks.json
"""

import argparse
import json
import random
import time
from pathlib import Path

from river_driver import run_sweep
from river_grid import GRID_HEIGHT, GRID_WIDTH, grid_with_roads
from river_solver import DEFAULT_RIVER_LENGTH, clamp_max_length


def rectangle_loop(x1, y1, x2, y2):
    """Road tiles along the perimeter of the rectangle (x1, y1)-(x2, y2)."""
    tiles = []
    for x in range(x1, x2 + 1):
        tiles.append((x, y1))
        tiles.append((x, y2))
    for y in range(y1 + 1, y2):
        tiles.append((x1, y))
        tiles.append((x2, y))
    return tiles


def random_road_loop(rng, min_size=4):
    """A random closed rectangular road loop somewhere on the grid."""
    width = rng.randint(min_size, GRID_WIDTH - 1)
    height = rng.randint(min_size, GRID_HEIGHT - 1)
    x1 = rng.randint(0, GRID_WIDTH - width)
    y1 = rng.randint(0, GRID_HEIGHT - height)
    return rectangle_loop(x1, y1, x1 + width - 1, y1 + height - 1)


def random_layout(rng, max_loops=2):
    """One or more overlapping road loops, de-duplicated."""
    roads = []
    seen = set()
    for _ in range(rng.randint(1, max_loops)):
        for tile in random_road_loop(rng):
            if tile not in seen:
                seen.add(tile)
                roads.append(tile)
    return roads


def run_sample(sample_id, roads, max_length, max_time, disable_cross_adjacency=False):
    """Sweep one layout. Returns None if no river fits."""
    grid = grid_with_roads(roads)
    start_count = len(grid.valid_river_starts())
    if start_count == 0:
        return None

    start = time.time()
    outcome = run_sweep(
        grid,
        max_length=max_length,
        disable_cross_adjacency=disable_cross_adjacency,
        max_time_seconds=max_time,
    )
    solve_time = time.time() - start

    if not outcome.found:
        return None

    solution = outcome.solution
    return {
        'id': sample_id,
        'input': {
            'roads': [list(t) for t in roads],
            'max_length': max_length,
            'disable_cross_adjacency': disable_cross_adjacency,
            'valid_starts': start_count,
        },
        'output': {
            'profit': solution.profit,
            'path': [{'x': c.x, 'y': c.y} for c in solution.path],
            'grid': solution.grid.to_rows(),
            'completed': outcome.completed,
        },
        'meta': {
            'solve_time': round(solve_time, 2),
        },
    }


def save(samples, output):
    with open(output, 'w') as f:
        json.dump(samples, f, indent=2)


def main():
    parser = argparse.ArgumentParser(description='Benchmark the river planner on random road layouts')
    parser.add_argument('--count', type=int, default=20, help='Number of layouts to run')
    parser.add_argument('--output', type=str, default='benchmarks.json', help='Output file')
    parser.add_argument('--max-length', type=int, default=DEFAULT_RIVER_LENGTH, help='Max river length (5-35)')
    parser.add_argument('--max-time', type=float, default=30, help='Max sweep time per layout (seconds)')
    parser.add_argument('--append', action='store_true', help='Append to existing file')
    parser.add_argument('--seed', type=int, default=None, help='Random seed for reproducible layouts')
    parser.add_argument('--disable-cross-adjacency', action='store_true',
                        help='Forbid the river from touching itself')
    args = parser.parse_args()

    rng = random.Random(args.seed)
    max_length = clamp_max_length(args.max_length)

    samples = []
    start_id = 0
    if args.append and Path(args.output).exists():
        with open(args.output) as f:
            samples = json.load(f)
        if samples:
            start_id = max(s['id'] for s in samples) + 1
        print(f"Loaded {len(samples)} existing samples, starting from ID {start_id}")

    print(f"Running {args.count} layouts...")
    print(f"Max length: {max_length}, max sweep time: {args.max_time}s per layout")
    print()

    success = 0
    failed = 0
    total_time = 0

    for i in range(args.count):
        sample_id = start_id + i
        roads = random_layout(rng)
        print(f"[{i+1}/{args.count}] Layout {sample_id} ({len(roads)} road tiles)...", end=' ', flush=True)

        sample = run_sample(sample_id, roads, max_length, args.max_time, args.disable_cross_adjacency)
        if sample:
            samples.append(sample)
            success += 1
            total_time += sample['meta']['solve_time']
            status = 'OK' if sample['output']['completed'] else 'STOPPED'
            print(f"{status} (profit={sample['output']['profit'] * 100:.2f}%, "
                  f"length={len(sample['output']['path'])}, time={sample['meta']['solve_time']}s)")
        else:
            failed += 1
            print("FAILED (no river fits)")

        # Save periodically
        if (i + 1) % 10 == 0:
            save(samples, args.output)
            print(f"  Saved {len(samples)} samples to {args.output}")

    save(samples, args.output)

    print()
    print(f"Done! {success} layouts solved, {failed} without a river")
    print(f"Total sweep time: {total_time:.1f}s, avg: {total_time/max(success,1):.1f}s")
    print(f"Saved to {args.output}")


if __name__ == '__main__':
    main()
