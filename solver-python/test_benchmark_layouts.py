"""
Tests for the random layout benchmark script.
"""

import json
import random
import sys

import benchmark_layouts
from benchmark_layouts import random_layout, rectangle_loop, run_sample
from river_grid import GRID_HEIGHT, GRID_WIDTH, is_valid_coordinate

WAIT = 60


# =============================================================================
# Layout generation
# =============================================================================

class TestRectangleLoop:
    """Road tiles around a rectangle."""

    def test_perimeter_only(self):
        tiles = rectangle_loop(2, 2, 5, 4)
        assert len(tiles) == 10
        assert len(set(tiles)) == len(tiles)
        assert (3, 3) not in tiles
        assert (2, 3) in tiles and (5, 3) in tiles

    def test_full_grid_loop_covers_border(self):
        tiles = set(rectangle_loop(0, 0, GRID_WIDTH - 1, GRID_HEIGHT - 1))
        assert len(tiles) == 2 * GRID_WIDTH + 2 * (GRID_HEIGHT - 2)


class TestRandomLayout:
    """Seeded random road loops."""

    def test_tiles_in_range_and_unique(self):
        rng = random.Random(3)
        for _ in range(25):
            roads = random_layout(rng)
            assert roads
            assert len(set(roads)) == len(roads)
            assert all(is_valid_coordinate(t) for t in roads)

    def test_same_seed_same_layout(self):
        first = [random_layout(random.Random(42)) for _ in range(3)]
        second = [random_layout(random.Random(42)) for _ in range(3)]
        assert first == second


# =============================================================================
# Samples
# =============================================================================

class TestRunSample:
    """One timed sweep per layout."""

    def test_record_shape(self):
        sample = run_sample(3, [(10, 5), (10, 6)], max_length=5, max_time=WAIT)
        assert sample['id'] == 3
        assert sample['input']['roads'] == [[10, 5], [10, 6]]
        assert sample['input']['max_length'] == 5
        assert sample['input']['valid_starts'] == 2 * (GRID_WIDTH - 2) + 2 * (GRID_HEIGHT - 2)
        assert sample['output']['completed'] is True
        assert sample['output']['profit'] > 0
        assert len(sample['output']['path']) == 5
        assert len(sample['output']['grid']) == GRID_HEIGHT
        assert sample['meta']['solve_time'] >= 0

    def test_no_valid_starts(self):
        border_loop = rectangle_loop(0, 0, GRID_WIDTH - 1, GRID_HEIGHT - 1)
        assert run_sample(0, border_loop, max_length=5, max_time=WAIT) is None


class TestMain:
    """Command line runs and the output file."""

    def run_main(self, monkeypatch, *args):
        monkeypatch.setattr(benchmark_layouts, 'random_layout', lambda rng: [(10, 5), (10, 6)])
        monkeypatch.setattr(sys, 'argv', ['benchmark_layouts.py', *args])
        benchmark_layouts.main()

    def test_writes_samples(self, monkeypatch, tmp_path, capsys):
        output = tmp_path / 'bench.json'
        self.run_main(monkeypatch, '--count', '2', '--max-length', '5', '--output', str(output), '--seed', '1')
        samples = json.loads(output.read_text())
        assert [s['id'] for s in samples] == [0, 1]
        assert 'Done! 2 layouts solved, 0 without a river' in capsys.readouterr().out

    def test_append_continues_ids(self, monkeypatch, tmp_path, capsys):
        output = tmp_path / 'bench.json'
        output.write_text(json.dumps([{'id': 7}, {'id': 2}]))
        self.run_main(monkeypatch, '--count', '1', '--max-length', '5', '--output', str(output), '--append')
        samples = json.loads(output.read_text())
        assert [s['id'] for s in samples] == [7, 2, 8]
        assert 'Loaded 2 existing samples, starting from ID 8' in capsys.readouterr().out

    def test_without_append_overwrites(self, monkeypatch, tmp_path):
        output = tmp_path / 'bench.json'
        output.write_text(json.dumps([{'id': 7}]))
        self.run_main(monkeypatch, '--count', '1', '--max-length', '5', '--output', str(output))
        assert [s['id'] for s in json.loads(output.read_text())] == [0]
