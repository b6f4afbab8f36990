"""
Tests for brightness classification and temporal smoothing.

Tests:
- Per-reading thresholds and confidences
- Weighted voting and hysteresis
- Calibration lifecycle and failure atomicity
- Sampling from real (synthetic) frames
"""

import numpy as np
import pytest

from go_overlay.errors import InvalidInput, PreconditionError
from go_overlay.models.grid_mapper import compute_grid
from go_overlay.models.stone_classifier import (
    FrameSampler,
    Stone,
    StoneClassifier,
    classify_difference,
    format_board,
    sample_brightness,
)

SAMPLE_RADIUS = 4
UNIT_CORNERS = [[0, 0], [100, 0], [100, 100], [0, 100]]


def _cycle(size, value, at=(0, 0)):
    """Difference matrix that is zero except for one intersection."""
    d = np.zeros((size, size))
    d[at] = value
    return d


class _Flat:
    """Frame source with the same colour everywhere."""

    def __init__(self, level):
        self.level = level

    def mean_rgb(self, center, radius):
        return self.level, self.level, self.level


def _calibrated(size, **kwargs):
    """Classifier calibrated on a black frame, so differences equal brightness."""
    clf = StoneClassifier(size=size, **kwargs)
    clf.calibrate(_Flat(0), compute_grid(np.array(UNIT_CORNERS), size))
    return clf


class TestClassifyDifference:
    """Single-reading rule."""

    def test_dark_is_black(self):
        stone, conf = classify_difference(-40)
        assert stone == Stone.BLACK
        assert conf == pytest.approx(0.8)

    def test_bright_is_white(self):
        stone, conf = classify_difference(45)
        assert stone == Stone.WHITE
        assert conf == pytest.approx(0.9)

    def test_confidence_saturates(self):
        assert classify_difference(-200)[1] == 1.0
        assert classify_difference(120)[1] == 1.0

    def test_small_difference_is_empty(self):
        stone, conf = classify_difference(6)
        assert stone == Stone.EMPTY
        assert conf == pytest.approx(0.8)

    def test_threshold_boundary_is_empty(self):
        """Exactly ±30 is not a stone, and carries no confidence."""
        assert classify_difference(-30) == (Stone.EMPTY, 0.0)
        assert classify_difference(30) == (Stone.EMPTY, 0.0)


class TestConstruction:
    """Parameter validation."""

    @pytest.mark.parametrize("kwargs", [
        {"threshold": 0.0},
        {"threshold": -5.0},
        {"confidence_scale": 0.0},
        {"vote_threshold": 0.0},
        {"vote_threshold": 1.0},
        {"history_length": 0},
        {"radius": -1},
    ])
    def test_invalid_parameters_rejected(self, kwargs):
        with pytest.raises(InvalidInput):
            StoneClassifier(size=3, **kwargs)


class TestVoting:
    """Weighted vote and hysteresis over recorded cycles."""

    def test_empty_history_is_unset(self):
        clf = StoneClassifier(size=5)
        assert clf.resolved_state(2, 2) == Stone.UNSET
        assert np.all(clf.resolved_board() == Stone.UNSET)

    def test_constant_dark_becomes_black(self):
        clf = _calibrated(size=5, history_length=10)
        for _ in range(10):
            clf.record(_cycle(5, -40))

        assert clf.resolved_state(0, 0) == Stone.BLACK
        assert clf.last_stable(0, 0) == Stone.BLACK
        assert clf.resolved_state(1, 1) == Stone.EMPTY

    def test_single_frame_flicker_is_suppressed(self):
        """One bright reading after nine dark ones keeps BLACK."""
        clf = _calibrated(size=3, history_length=10)
        for _ in range(9):
            clf.record(_cycle(3, -40))
        clf.record(_cycle(3, 40))

        assert clf.resolved_state(0, 0) == Stone.BLACK

    def test_no_majority_keeps_last_stable(self):
        """Oscillation with no category above 60 % keeps the old state."""
        clf = _calibrated(size=3, history_length=4)
        for _ in range(4):
            clf.record(_cycle(3, 40))
        assert clf.resolved_state(0, 0) == Stone.WHITE

        # History becomes [empty, black, empty, black]:
        # empty 1.0 / black 1.2 of 2.2 – neither exceeds 0.6
        for value in (0, -40, 0, -40):
            clf.record(_cycle(3, value))

        assert clf.resolved_state(0, 0) == Stone.WHITE
        assert clf.resolved_board()[0, 0] == Stone.WHITE

    def test_zero_confidence_never_establishes_state(self):
        """Zero-confidence readings never establish a state."""
        clf = _calibrated(size=3, history_length=3)
        for _ in range(3):
            clf.record(_cycle(3, 30))  # boundary: EMPTY with confidence 0

        assert clf.resolved_state(0, 0) == Stone.UNSET

    def test_recent_readings_win(self):
        """A sustained change overturns the previous state."""
        clf = _calibrated(size=3, history_length=10)
        for _ in range(10):
            clf.record(_cycle(3, -40))
        assert clf.resolved_state(0, 0) == Stone.BLACK

        for _ in range(6):
            clf.record(_cycle(3, 0))
        assert clf.resolved_state(0, 0) == Stone.EMPTY

    def test_board_and_single_state_agree(self):
        clf = _calibrated(size=4, history_length=5)
        rng = np.random.default_rng(7)
        for _ in range(8):
            clf.record(rng.uniform(-80, 80, size=(4, 4)))

        board = clf.resolved_board()
        for row in range(4):
            for col in range(4):
                assert clf.resolved_state(row, col) == board[row, col]


class TestHistory:
    """Ring-buffer behaviour."""

    def test_oldest_reading_evicted(self):
        clf = _calibrated(size=2, history_length=3)
        for value in range(5):
            clf.record(_cycle(2, float(value)), timestamp=float(value))

        readings = clf.history(0, 0)
        assert [r.difference for r in readings] == [2.0, 3.0, 4.0]
        assert [r.timestamp for r in readings] == [2.0, 3.0, 4.0]
        assert clf.cycles == 3

    def test_reading_fields(self):
        clf = _calibrated(size=2, history_length=3)
        clf.record(_cycle(2, -60), brightness=np.full((2, 2), 50.0), timestamp=12.5)

        reading = clf.history(0, 0)[0]
        assert reading.stone == Stone.BLACK
        assert reading.confidence == 1.0
        assert reading.brightness == 50.0
        assert reading.timestamp == 12.5

    def test_wrong_shape_rejected(self):
        clf = _calibrated(size=3)
        with pytest.raises(InvalidInput):
            clf.record(np.zeros((2, 2)))
        assert clf.cycles == 0

    def test_record_before_calibrate(self):
        clf = StoneClassifier(size=3)
        with pytest.raises(PreconditionError):
            clf.record(_cycle(3, -40))
        assert clf.cycles == 0

    def test_out_of_range_intersection(self):
        clf = StoneClassifier(size=3)
        with pytest.raises(InvalidInput):
            clf.resolved_state(3, 0)


class TestFrameSampling:
    """Calibration and classification against images."""

    def test_mean_rgb_returns_rgb_order(self):
        image = np.zeros((20, 20, 3), dtype=np.uint8)
        image[:, :] = (10, 20, 30)  # BGR
        r, g, b = FrameSampler(image).mean_rgb((10, 10), 3)

        assert (r, g, b) == pytest.approx((30, 20, 10))
        assert sample_brightness(FrameSampler(image), (10, 10), 3) == pytest.approx(20)

    def test_window_outside_frame_rejected(self):
        sampler = FrameSampler(np.zeros((20, 20, 3), dtype=np.uint8))
        with pytest.raises(InvalidInput):
            sampler.mean_rgb((100, 100), 3)

    def test_classify_before_calibrate(self, empty_board, corners):
        clf = StoneClassifier(radius=SAMPLE_RADIUS)
        grid = compute_grid(np.array(corners), 19)

        with pytest.raises(PreconditionError):
            clf.classify(empty_board, grid)
        assert clf.cycles == 0

    def test_detects_stones(self, empty_board, board_with_stones, corners):
        clf = StoneClassifier(radius=SAMPLE_RADIUS)
        grid = compute_grid(np.array(corners), 19)
        clf.calibrate(empty_board, grid)

        frame = board_with_stones({(3, 3): 1, (15, 3): -1})
        for _ in range(3):
            clf.classify(frame, grid)
        board = clf.resolved_board()

        assert board[3, 3] == Stone.BLACK
        assert board[3, 15] == Stone.WHITE
        assert np.count_nonzero(board == Stone.EMPTY) == 19 * 19 - 2

    def test_failed_sample_appends_nothing(self, empty_board, corners):
        clf = StoneClassifier(radius=SAMPLE_RADIUS)
        grid = compute_grid(np.array(corners), 19)
        clf.calibrate(empty_board, grid)
        clf.classify(empty_board, grid)

        bad = grid.copy()
        bad[18, 18] = (5000, 5000)
        with pytest.raises(InvalidInput):
            clf.classify(empty_board, bad)
        assert clf.cycles == 1

    def test_recalibration_discards_history(self, empty_board, corners):
        clf = StoneClassifier(radius=SAMPLE_RADIUS)
        grid = compute_grid(np.array(corners), 19)
        clf.calibrate(empty_board, grid)
        clf.classify(empty_board, grid)
        clf.resolved_board()

        clf.calibrate(empty_board, grid)

        assert clf.cycles == 0
        assert clf.resolved_state(0, 0) == Stone.UNSET

    def test_recalibration_can_keep_history(self, empty_board, corners):
        clf = StoneClassifier(radius=SAMPLE_RADIUS, reset_history_on_calibrate=False)
        grid = compute_grid(np.array(corners), 19)
        clf.calibrate(empty_board, grid)
        clf.classify(empty_board, grid)

        clf.calibrate(empty_board, grid)

        assert clf.cycles == 1

    def test_custom_frame_source(self, corners):
        """Any object with ``mean_rgb`` can stand in for an image."""
        clf = StoneClassifier(size=19)
        grid = compute_grid(np.array(corners), 19)
        clf.calibrate(_Flat(200), grid)
        clf.classify(_Flat(100), grid)

        assert np.all(clf.resolved_board() == Stone.BLACK)


def test_format_board():
    board = np.array([[1, 0], [-1, 2]])
    assert format_board(board) == "X .\nO ?"
