"""
Tests for corner → grid interpolation.
"""

import numpy as np
import pytest

from go_overlay.errors import InvalidInput, PreconditionError
from go_overlay.models.grid_mapper import GridMapper, compute_grid


SKEWED = [[103.4, 51.2], [612.0, 77.9], [655.3, 590.1], [80.2, 560.6]]


class TestComputeGrid:
    """Pure interpolation function."""

    @pytest.mark.parametrize("size", [2, 9, 13, 19])
    def test_shape_and_corners(self, size):
        """Grid is N×N and its four corners are the input corners (rounded)."""
        grid = compute_grid(np.array(SKEWED), size)

        assert grid.shape == (size, size, 2)
        expected = np.floor(np.array(SKEWED) + 0.5).astype(int)
        assert tuple(grid[0, 0]) == tuple(expected[0])
        assert tuple(grid[0, size - 1]) == tuple(expected[1])
        assert tuple(grid[size - 1, size - 1]) == tuple(expected[2])
        assert tuple(grid[size - 1, 0]) == tuple(expected[3])

    def test_square_board_is_evenly_spaced(self, corners):
        grid = compute_grid(np.array(corners), 19)

        assert tuple(grid[0, 1]) == (40, 20)
        assert tuple(grid[3, 3]) == (80, 80)
        assert tuple(grid[9, 9]) == (200, 200)

    def test_deterministic(self):
        a = compute_grid(np.array(SKEWED), 19)
        b = compute_grid(np.array(SKEWED), 19)
        assert np.array_equal(a, b)

    def test_size_below_two_rejected(self, corners):
        with pytest.raises(InvalidInput):
            compute_grid(np.array(corners), 1)


class TestGridMapper:
    """Stateful mapper around the interpolation."""

    def test_wrong_corner_count_rejected(self, corners):
        mapper = GridMapper()
        mapper.set_corners(corners)

        with pytest.raises(InvalidInput):
            mapper.set_corners(corners[:3])
        with pytest.raises(InvalidInput):
            mapper.set_corners(corners + [[0, 0]])

        # Previous corners survive a rejected call
        assert np.array_equal(mapper.corners, np.array(corners, dtype=float))

    def test_malformed_points_rejected(self):
        mapper = GridMapper()
        with pytest.raises(InvalidInput):
            mapper.set_corners([[0, 0], [1, 0], [1, 1], [0]])
        assert not mapper.is_complete

    def test_grid_before_corners_fails(self):
        with pytest.raises(PreconditionError):
            GridMapper().compute_grid()

    def test_corner_change_recomputes_grid(self, corners):
        mapper = GridMapper()
        mapper.set_corners(corners)
        first = mapper.compute_grid()

        mapper.set_corners([[x + 10, y] for x, y in corners])
        second = mapper.compute_grid()

        assert tuple(second[0, 0]) == (first[0, 0, 0] + 10, first[0, 0, 1])

    def test_returned_grid_is_a_copy(self, corners):
        mapper = GridMapper()
        mapper.set_corners(corners)
        grid = mapper.compute_grid()
        grid[0, 0] = (-1, -1)

        assert tuple(mapper.compute_grid()[0, 0]) == (20, 20)

    def test_nearest_intersection(self, corners):
        mapper = GridMapper()
        mapper.set_corners(corners)

        assert mapper.nearest_intersection((21, 19)) == (0, 0)
        assert mapper.nearest_intersection((83, 77)) == (3, 3)
        assert mapper.nearest_intersection((1000, -50)) == (18, 0)

    def test_point_at(self, corners):
        mapper = GridMapper()
        mapper.set_corners(corners)

        assert mapper.point_at(15, 3) == (320, 80)
        with pytest.raises(InvalidInput):
            mapper.point_at(19, 0)
        with pytest.raises(InvalidInput):
            mapper.point_at(0, -1)

    def test_reset(self, corners):
        mapper = GridMapper()
        mapper.set_corners(corners)
        mapper.reset()

        assert not mapper.is_complete
        with pytest.raises(PreconditionError):
            mapper.compute_grid()
