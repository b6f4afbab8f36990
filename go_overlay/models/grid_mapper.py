"""
Grid Mapping – Four Corners → N×N Intersections
================================================

Strategy:
  The user clicks the four board corners in a fixed order (top-left,
  top-right, bottom-right, bottom-left).  Every intersection is found by
  bilinear interpolation:

    • For row *y*, ``t = y / (N-1)`` slides down the left edge
      (TL → BL) and the right edge (TR → BR).
    • For column *x*, ``s = x / (N-1)`` slides across between those two
      edge points.

  The result is rounded to whole pixels.  This is not a true homography
  (foreshortening is ignored) but for a board filling most of the frame
  the error is well below one stone radius.

Design notes:
  • Corner order is an invariant of the interpolation – the mapper never
    reorders points.  ``grid[0][0]`` is always the first corner.
  • The grid is cached per board size and dropped whenever the corners
    change.  Calibration done against an old grid is *not* refreshed here;
    callers must recalibrate.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

import numpy as np

from go_overlay.errors import InvalidInput, PreconditionError

log = logging.getLogger(__name__)


DEFAULT_BOARD_SIZE: int = 19
CORNER_NAMES: Tuple[str, ...] = ("top-left", "top-right", "bottom-right", "bottom-left")


# ── Geometry helpers ───────────────────────────────────────────────────

def _lerp(p1: np.ndarray, p2: np.ndarray, t: float) -> np.ndarray:
    return p1 + (p2 - p1) * t


def _round_half_up(values: np.ndarray) -> np.ndarray:
    """Round to the nearest integer with exact halves going up."""
    return np.floor(values + 0.5).astype(np.int32)


def compute_grid(corners: np.ndarray, size: int = DEFAULT_BOARD_SIZE) -> np.ndarray:
    """Interpolate an ``(size, size, 2)`` array of ``(x, y)`` pixel points.

    Parameters
    ----------
    corners : np.ndarray
        4×2 corners ordered TL, TR, BR, BL.
    size : int
        Lines per side (19, 13, 9 ...).

    Returns
    -------
    np.ndarray
        int32 array; ``grid[row, col] == (x, y)``.
    """
    if size < 2:
        raise InvalidInput(f"Board size must be at least 2, got {size}")

    c = np.asarray(corners, dtype=np.float64)
    grid = np.zeros((size, size, 2), dtype=np.float64)

    for y in range(size):
        t = y / (size - 1)
        left_edge = _lerp(c[0], c[3], t)
        right_edge = _lerp(c[1], c[2], t)
        for x in range(size):
            s = x / (size - 1)
            grid[y, x] = _lerp(left_edge, right_edge, s)

    return _round_half_up(grid)


# ── Mapper ─────────────────────────────────────────────────────────────

class GridMapper:
    """Holds the user's corner clicks and derives the intersection grid.

    Parameters
    ----------
    size : int
        Board size *N* (default 19).
    """

    def __init__(self, size: int = DEFAULT_BOARD_SIZE) -> None:
        if size < 2:
            raise InvalidInput(f"Board size must be at least 2, got {size}")
        self.size = size
        self._corners: Optional[np.ndarray] = None
        self._grid: Optional[np.ndarray] = None

    # ── Corners ────────────────────────────────────────────────────────

    def set_corners(self, points: Sequence[Sequence[float]]) -> None:
        """Replace all four corners (TL, TR, BR, BL).

        Raises ``InvalidInput`` without touching the current corners when
        the count is not exactly four or a point is not an ``(x, y)`` pair.
        """
        if len(points) != 4:
            raise InvalidInput(f"Expected 4 corner points, got {len(points)}")
        try:
            arr = np.array(points, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"Corner points must be numeric (x, y) pairs: {exc}") from exc
        if arr.shape != (4, 2) or not np.all(np.isfinite(arr)):
            raise InvalidInput(f"Corner points must be finite (x, y) pairs, got shape {arr.shape}")

        self._corners = arr
        self._grid = None
        log.info(
            "Corners set  %s",
            "  ".join(f"{name}=({x:.0f},{y:.0f})" for name, (x, y) in zip(CORNER_NAMES, arr)),
        )

    def reset(self) -> None:
        """Forget corners and the derived grid."""
        self._corners = None
        self._grid = None
        log.info("Corners reset")

    @property
    def corners(self) -> Optional[np.ndarray]:
        return None if self._corners is None else self._corners.copy()

    @property
    def is_complete(self) -> bool:
        return self._corners is not None

    # ── Grid ───────────────────────────────────────────────────────────

    def compute_grid(self, size: Optional[int] = None) -> np.ndarray:
        """Return the ``(N, N, 2)`` grid for the current corners.

        The default-size grid is cached until the corners change; a copy is
        returned so callers cannot corrupt the cache.
        """
        if self._corners is None:
            raise PreconditionError("Corners must be set before computing the grid")

        n = self.size if size is None else size
        if n != self.size:
            return compute_grid(self._corners, n)

        if self._grid is None:
            self._grid = compute_grid(self._corners, n)
            log.debug("Grid computed  size=%d", n)
        return self._grid.copy()

    def point_at(self, col: int, row: int) -> Tuple[int, int]:
        """Board coordinate → screen pixel."""
        if not (0 <= col < self.size and 0 <= row < self.size):
            raise InvalidInput(
                f"Board coordinate ({col}, {row}) outside 0..{self.size - 1}"
            )
        x, y = self.compute_grid()[row, col]
        return int(x), int(y)

    def nearest_intersection(self, point: Sequence[float]) -> Tuple[int, int]:
        """Screen pixel → ``(col, row)`` of the closest intersection.

        Plain linear scan; for N ≤ 19 that is at most 361 distances.
        """
        grid = self.compute_grid()
        px, py = float(point[0]), float(point[1])

        best: Tuple[int, int] = (0, 0)
        best_dist = float("inf")
        for row in range(self.size):
            for col in range(self.size):
                gx, gy = grid[row, col]
                dist = float(np.hypot(gx - px, gy - py))
                if dist < best_dist:
                    best_dist = dist
                    best = (col, row)
        return best
