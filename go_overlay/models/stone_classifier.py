"""
Stone Classifier – Brightness Contrast + Temporal Voting
=========================================================

Architectural decisions:
  • No learned model.  A stone is detected purely by how much darker or
    brighter the pixels around an intersection are than the same pixels on
    the empty board (the *calibration baseline*).
  • Every classification cycle appends one ``BrightnessReading`` per
    intersection to a bounded history (default 10).  The reported state is
    a recency-weighted vote over that history.
  • A vote must exceed 60 % of the total weight to change the reported
    state; otherwise the last confident answer is kept (hysteresis).  This
    suppresses flicker from hands passing over the board.
  • Histories live in an arena of fixed-size ring buffers – one
    ``(N, N, H)`` numpy array per field – indexed by (row, col).

Class values:
  The three physical states reuse the rule-engine board convention
  (+1 black, −1 white, 0 empty) so detected and authoritative boards can
  be compared element-wise.  ``UNSET`` only ever appears as a resolved
  state before the first confident vote.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Protocol, Sequence, Tuple, Union

import cv2
import numpy as np

from go_overlay.errors import InvalidInput, PreconditionError
from go_overlay.models.grid_mapper import DEFAULT_BOARD_SIZE

log = logging.getLogger(__name__)


# ── Tunables ───────────────────────────────────────────────────────────

DEFAULT_HISTORY: int = 10       # Readings kept per intersection
SAMPLE_RADIUS: int = 10         # Half-width of the sampling window (px)
STONE_THRESHOLD: float = 30.0   # |difference| beyond this → stone candidate
CONFIDENCE_SCALE: float = 50.0  # |difference| at which a stone is 100 % sure
VOTE_THRESHOLD: float = 0.6     # Normalised vote needed to change state


class Stone(IntEnum):
    """Per-intersection state."""
    EMPTY = 0
    BLACK = 1
    WHITE = -1
    UNSET = 2


STONE_LABELS: dict[Stone, str] = {
    Stone.EMPTY: ".",
    Stone.BLACK: "X",
    Stone.WHITE: "O",
    Stone.UNSET: "?",
}


@dataclass(frozen=True)
class BrightnessReading:
    """One sample of one intersection."""
    timestamp: float
    brightness: float
    difference: float            # brightness − baseline
    stone: Stone                 # BLACK | WHITE | EMPTY
    confidence: float            # 0–1


# ── Frame source ───────────────────────────────────────────────────────

class FrameSource(Protocol):
    """Anything that can average pixel colours around a point."""

    def mean_rgb(self, center: Sequence[float], radius: int) -> Tuple[float, float, float]:
        ...


class FrameSampler:
    """``FrameSource`` over a BGR image (OpenCV convention).

    The window is the axis-aligned square ``[x-r, x+r] × [y-r, y+r]``
    clipped to the image.  A window that falls completely outside the image
    raises ``InvalidInput``.
    """

    def __init__(self, image: np.ndarray) -> None:
        if image is None or image.ndim not in (2, 3):
            raise InvalidInput("Frame must be a 2-D grayscale or 3-D BGR image")
        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        self.image = image

    @property
    def shape(self) -> Tuple[int, int]:
        h, w = self.image.shape[:2]
        return h, w

    def mean_rgb(self, center: Sequence[float], radius: int) -> Tuple[float, float, float]:
        h, w = self.shape
        cx, cy = int(round(center[0])), int(round(center[1]))
        x1, x2 = max(0, cx - radius), min(w, cx + radius + 1)
        y1, y2 = max(0, cy - radius), min(h, cy + radius + 1)
        if x1 >= x2 or y1 >= y2:
            raise InvalidInput(
                f"Sample window at ({cx}, {cy}) r={radius} lies outside the {w}×{h} frame"
            )
        b, g, r, _ = cv2.mean(self.image[y1:y2, x1:x2])
        return r, g, b


FrameLike = Union[FrameSource, np.ndarray]


def as_frame_source(frame: FrameLike) -> FrameSource:
    """Wrap a raw image in a ``FrameSampler``; pass real sources through."""
    if isinstance(frame, np.ndarray):
        return FrameSampler(frame)
    return frame


def sample_brightness(frame: FrameSource, point: Sequence[float], radius: int = SAMPLE_RADIUS) -> float:
    """Mean of the R, G and B channel means in the window around *point*."""
    r, g, b = frame.mean_rgb(point, radius)
    return (r + g + b) / 3.0


# ── Per-reading rule ───────────────────────────────────────────────────

def classify_difference(
    difference: float,
    threshold: float = STONE_THRESHOLD,
    scale: float = CONFIDENCE_SCALE,
) -> Tuple[Stone, float]:
    """Map one brightness difference to ``(candidate, confidence)``."""
    magnitude = abs(difference)
    if difference < -threshold:
        return Stone.BLACK, min(1.0, magnitude / scale)
    if difference > threshold:
        return Stone.WHITE, min(1.0, magnitude / scale)
    return Stone.EMPTY, float(np.clip(1.0 - magnitude / threshold, 0.0, 1.0))


def _classify_array(
    differences: np.ndarray, threshold: float, scale: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorised ``classify_difference`` over an N×N matrix."""
    magnitude = np.abs(differences)
    stones = np.full(differences.shape, int(Stone.EMPTY), dtype=np.int8)
    stones[differences < -threshold] = int(Stone.BLACK)
    stones[differences > threshold] = int(Stone.WHITE)

    confidence = np.clip(1.0 - magnitude / threshold, 0.0, 1.0)
    is_stone = stones != int(Stone.EMPTY)
    confidence[is_stone] = np.minimum(1.0, magnitude[is_stone] / scale)
    return stones, confidence


# ── Classifier ─────────────────────────────────────────────────────────

class StoneClassifier:
    """Temporal per-intersection stone classifier.

    Parameters
    ----------
    size : int
        Board size *N*.
    history_length : int
        Ring-buffer capacity *H* per intersection.
    radius : int
        Sampling window half-width in pixels.
    threshold : float
        Brightness difference beyond which a reading counts as a stone.
    confidence_scale : float
        Difference at which a stone reading reaches full confidence.
    vote_threshold : float
        Share of the weighted vote a category needs to win.
    reset_history_on_calibrate : bool
        Whether ``calibrate`` discards readings taken against the previous
        baseline.  Old differences are meaningless against a new baseline,
        so this defaults to *True*.
    """

    def __init__(
        self,
        size: int = DEFAULT_BOARD_SIZE,
        history_length: int = DEFAULT_HISTORY,
        radius: int = SAMPLE_RADIUS,
        threshold: float = STONE_THRESHOLD,
        confidence_scale: float = CONFIDENCE_SCALE,
        vote_threshold: float = VOTE_THRESHOLD,
        reset_history_on_calibrate: bool = True,
    ) -> None:
        if size < 1:
            raise InvalidInput(f"Board size must be positive, got {size}")
        if history_length < 1:
            raise InvalidInput(f"History length must be positive, got {history_length}")
        if radius < 0:
            raise InvalidInput(f"Sample radius must be non-negative, got {radius}")
        if threshold <= 0:
            raise InvalidInput(f"Stone threshold must be positive, got {threshold}")
        if confidence_scale <= 0:
            raise InvalidInput(f"Confidence scale must be positive, got {confidence_scale}")
        if not 0 < vote_threshold < 1:
            raise InvalidInput(f"Vote threshold must lie in (0, 1), got {vote_threshold}")

        self.size = size
        self.history_length = history_length
        self.radius = radius
        self.threshold = threshold
        self.confidence_scale = confidence_scale
        self.vote_threshold = vote_threshold
        self.reset_history_on_calibrate = reset_history_on_calibrate

        self.baseline: Optional[np.ndarray] = None
        self._allocate()

    def _allocate(self) -> None:
        shape = (self.size, self.size, self.history_length)
        self._timestamps = np.zeros(shape, dtype=np.float64)
        self._brightness = np.zeros(shape, dtype=np.float64)
        self._differences = np.zeros(shape, dtype=np.float64)
        self._stones = np.zeros(shape, dtype=np.int8)
        self._confidence = np.zeros(shape, dtype=np.float64)
        # Every cycle writes all N² slots, so one cursor serves the arena.
        self._head = 0
        self._count = 0
        self._last_stable = np.full((self.size, self.size), int(Stone.UNSET), dtype=np.int8)

    # ── Lifecycle ──────────────────────────────────────────────────────

    @property
    def is_calibrated(self) -> bool:
        return self.baseline is not None

    @property
    def cycles(self) -> int:
        """Readings currently held per intersection."""
        return self._count

    def reset(self) -> None:
        """Drop baseline, histories and stable states."""
        self.baseline = None
        self._allocate()
        log.info("Stone classifier reset")

    def clear_history(self) -> None:
        """Drop histories and stable states but keep the baseline."""
        self._allocate()

    def _sample_board(self, frame: FrameLike, grid: np.ndarray) -> np.ndarray:
        grid = np.asarray(grid)
        if grid.shape != (self.size, self.size, 2):
            raise InvalidInput(
                f"Grid shape {grid.shape} does not match board size {self.size}"
            )
        source = as_frame_source(frame)
        values = np.zeros((self.size, self.size), dtype=np.float64)
        for row in range(self.size):
            for col in range(self.size):
                values[row, col] = sample_brightness(source, grid[row, col], self.radius)
        return values

    def calibrate(self, frame: FrameLike, grid: np.ndarray) -> np.ndarray:
        """Sample the empty board and store it as the baseline.

        Returns the new ``(N, N)`` baseline.  Nothing changes if sampling
        fails part-way.
        """
        baseline = self._sample_board(frame, grid)
        self.baseline = baseline
        if self.reset_history_on_calibrate:
            self.clear_history()
        log.info(
            "Calibrated  size=%d  radius=%d  mean=%.1f  history=%s",
            self.size, self.radius, float(baseline.mean()),
            "discarded" if self.reset_history_on_calibrate else "kept",
        )
        return baseline.copy()

    # ── Sampling ───────────────────────────────────────────────────────

    def classify(
        self,
        frame: FrameLike,
        grid: np.ndarray,
        timestamp: Optional[float] = None,
    ) -> np.ndarray:
        """Take one reading per intersection and append it to the history.

        Returns the ``(N, N)`` matrix of per-reading candidates (not the
        smoothed state – use ``resolved_board`` for that).
        """
        if self.baseline is None:
            raise PreconditionError("classify() called before calibrate()")

        brightness = self._sample_board(frame, grid)
        return self.record(brightness - self.baseline, brightness, timestamp)

    def record(
        self,
        differences: np.ndarray,
        brightness: Optional[np.ndarray] = None,
        timestamp: Optional[float] = None,
    ) -> np.ndarray:
        """Append one cycle of precomputed brightness differences.

        Replay hook for readings that were sampled elsewhere (a recorded
        session, another frame source).  Same calibration requirement as
        ``classify``; *brightness* defaults to ``baseline + differences``.
        """
        if self.baseline is None:
            raise PreconditionError("record() called before calibrate()")
        differences = np.asarray(differences, dtype=np.float64)
        if differences.shape != (self.size, self.size):
            raise InvalidInput(
                f"Difference matrix shape {differences.shape} does not match board size {self.size}"
            )
        if brightness is None:
            brightness = differences + self.baseline

        stones, confidence = _classify_array(differences, self.threshold, self.confidence_scale)

        slot = self._head
        self._timestamps[:, :, slot] = time.time() if timestamp is None else timestamp
        self._brightness[:, :, slot] = brightness
        self._differences[:, :, slot] = differences
        self._stones[:, :, slot] = stones
        self._confidence[:, :, slot] = confidence
        self._head = (slot + 1) % self.history_length
        self._count = min(self._count + 1, self.history_length)

        log.debug(
            "Cycle recorded  black=%d  white=%d  history=%d/%d",
            int((stones == Stone.BLACK).sum()), int((stones == Stone.WHITE).sum()),
            self._count, self.history_length,
        )
        return stones.astype(np.int8)

    # ── History access ─────────────────────────────────────────────────

    def _order(self) -> np.ndarray:
        """Slot indices oldest → newest."""
        start = (self._head - self._count) % self.history_length
        return (start + np.arange(self._count)) % self.history_length

    def history(self, row: int, col: int) -> List[BrightnessReading]:
        """Readings for one intersection, oldest first."""
        self._check_coord(row, col)
        return [
            BrightnessReading(
                timestamp=float(self._timestamps[row, col, i]),
                brightness=float(self._brightness[row, col, i]),
                difference=float(self._differences[row, col, i]),
                stone=Stone(int(self._stones[row, col, i])),
                confidence=float(self._confidence[row, col, i]),
            )
            for i in self._order()
        ]

    def latest_readings(self) -> Optional[List[List[BrightnessReading]]]:
        """Newest reading of every intersection, or *None* before any cycle."""
        if self._count == 0:
            return None
        return [[self.history(r, c)[-1] for c in range(self.size)] for r in range(self.size)]

    def last_stable(self, row: int, col: int) -> Stone:
        self._check_coord(row, col)
        return Stone(int(self._last_stable[row, col]))

    def _check_coord(self, row: int, col: int) -> None:
        if not (0 <= row < self.size and 0 <= col < self.size):
            raise InvalidInput(f"Intersection ({row}, {col}) outside 0..{self.size - 1}")

    # ── Voting ─────────────────────────────────────────────────────────

    def _vote(self, stones: np.ndarray, confidence: np.ndarray, last: np.ndarray) -> np.ndarray:
        """Weighted vote along the last axis (oldest → newest).

        Reading *i* of *L* is weighted ``confidence × (i + 1) / L``.  A
        category above ``vote_threshold`` of the total wins; otherwise the
        previous stable state is returned.
        """
        length = stones.shape[-1]
        recency = np.arange(1, length + 1, dtype=np.float64) / length
        weights = confidence * recency
        total = weights.sum(axis=-1)

        result = np.array(last, dtype=np.int8)
        safe_total = np.where(total > 0, total, 1.0)
        for category in (Stone.BLACK, Stone.WHITE, Stone.EMPTY):
            share = np.where(stones == int(category), weights, 0.0).sum(axis=-1) / safe_total
            result = np.where((total > 0) & (share > self.vote_threshold), int(category), result)
        return result.astype(np.int8)

    def resolved_state(self, row: int, col: int) -> Stone:
        """Smoothed state of one intersection; updates its sticky state."""
        self._check_coord(row, col)
        if self._count == 0:
            return Stone.UNSET

        order = self._order()
        state = self._vote(
            self._stones[row, col, order],
            self._confidence[row, col, order],
            self._last_stable[row, col],
        )
        self._last_stable[row, col] = state
        return Stone(int(state))

    def resolved_board(self) -> np.ndarray:
        """``(N, N)`` int8 matrix of smoothed states (``Stone`` values)."""
        if self._count == 0:
            return np.full((self.size, self.size), int(Stone.UNSET), dtype=np.int8)

        order = self._order()
        board = self._vote(
            self._stones[:, :, order],
            self._confidence[:, :, order],
            self._last_stable,
        )
        self._last_stable = board.copy()
        return board


def format_board(board: np.ndarray) -> str:
    """Text diagram of a board matrix (``X`` black, ``O`` white)."""
    lines = []
    for row in np.asarray(board):
        lines.append(" ".join(STONE_LABELS.get(Stone(int(v)), "?") for v in row))
    return "\n".join(lines)
