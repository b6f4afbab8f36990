"""
Overlay Renderer – OpenCV render sink
=====================================

Draws onto a BGR canvas the same size as the camera frame.  The canvas can
start as a copy of the frame (debug / CLI output) or as a black image to be
alpha-blended over live video by the caller.

Render-sink contract used by the reconciliation step:
  ``draw_grid_lines(grid)``, ``draw_stone(point, color)``,
  ``draw_corners(points)``, ``clear()``.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from go_overlay.models.stone_classifier import BrightnessReading, Stone

log = logging.getLogger(__name__)


GRID_COLOR: Tuple[int, int, int] = (0, 0, 255)        # BGR red
CORNER_COLOR: Tuple[int, int, int] = (0, 0, 255)
LABEL_COLOR: Tuple[int, int, int] = (255, 255, 255)
REMOVE_COLOR: Tuple[int, int, int] = (0, 0, 255)
DEBUG_COLORS = {
    Stone.BLACK: (0, 0, 255),     # red
    Stone.WHITE: (255, 0, 0),     # blue
    Stone.EMPTY: (0, 200, 0),     # green
}


class OverlayRenderer:
    """OpenCV implementation of the render sink.

    Parameters
    ----------
    background : np.ndarray
        BGR image the overlay is drawn on; ``clear()`` restores it.
    stone_radius : int
        Radius used until ``draw_grid_lines`` measures the real spacing.
    """

    def __init__(self, background: np.ndarray, stone_radius: int = 10) -> None:
        if background.ndim == 2:
            background = cv2.cvtColor(background, cv2.COLOR_GRAY2BGR)
        self.background = background.copy()
        self.image = background.copy()
        self.stone_radius = stone_radius

    def clear(self) -> None:
        self.image = self.background.copy()

    def fit_to_grid(self, grid: np.ndarray) -> int:
        """Set the stone radius to half the smaller grid spacing at TL."""
        grid = np.asarray(grid)
        if grid.shape[0] < 2:
            return self.stone_radius
        dx = abs(int(grid[0, 1, 0]) - int(grid[0, 0, 0]))
        dy = abs(int(grid[1, 0, 1]) - int(grid[0, 0, 1]))
        self.stone_radius = max(1, int(min(dx, dy) * 0.5))
        return self.stone_radius

    def draw_grid_lines(self, grid: np.ndarray, thickness: int = 2) -> None:
        grid = np.asarray(grid, dtype=np.int32)
        self.fit_to_grid(grid)
        for row in range(grid.shape[0]):
            cv2.polylines(self.image, [grid[row, :, :].reshape(-1, 1, 2)], False, GRID_COLOR, thickness)
        for col in range(grid.shape[1]):
            cv2.polylines(self.image, [grid[:, col, :].reshape(-1, 1, 2)], False, GRID_COLOR, thickness)

    def draw_corners(self, points: Sequence[Sequence[float]]) -> None:
        for index, (x, y) in enumerate(points):
            center = (int(round(x)), int(round(y)))
            cv2.circle(self.image, center, 5, CORNER_COLOR, -1)
            cv2.putText(
                self.image, str(index + 1),
                (center[0] + 10, center[1] + 10),
                cv2.FONT_HERSHEY_SIMPLEX, 0.6, LABEL_COLOR, 2,
            )

    def draw_stone(self, point: Sequence[int], color: int) -> None:
        """Draw a black or white stone; ``EMPTY`` marks a stone to remove."""
        center = (int(point[0]), int(point[1]))
        r = self.stone_radius

        if color == Stone.BLACK:
            cv2.circle(self.image, center, r, (0, 0, 0), -1, cv2.LINE_AA)
            cv2.circle(self.image, (center[0] - r // 3, center[1] - r // 3),
                       max(1, r // 4), (102, 102, 102), -1, cv2.LINE_AA)
        elif color == Stone.WHITE:
            cv2.circle(self.image, center, r, (221, 221, 221), -1, cv2.LINE_AA)
            cv2.circle(self.image, (center[0] - r // 3, center[1] - r // 3),
                       max(1, r // 4), (255, 255, 255), -1, cv2.LINE_AA)
        else:
            # Physical stone that the record says should not be there
            d = int(r * 0.7)
            cv2.line(self.image, (center[0] - d, center[1] - d),
                     (center[0] + d, center[1] + d), REMOVE_COLOR, 2, cv2.LINE_AA)
            cv2.line(self.image, (center[0] - d, center[1] + d),
                     (center[0] + d, center[1] - d), REMOVE_COLOR, 2, cv2.LINE_AA)

    def draw_debug(
        self,
        grid: np.ndarray,
        readings: Optional[List[List[BrightnessReading]]],
        radius: int = 10,
    ) -> None:
        """Outline each sample window, coloured by its latest candidate,
        with the reading's confidence printed beside it."""
        if readings is None:
            return
        grid = np.asarray(grid, dtype=np.int32)
        for row in range(grid.shape[0]):
            for col in range(grid.shape[1]):
                x, y = int(grid[row, col, 0]), int(grid[row, col, 1])
                current = readings[row][col]
                color = DEBUG_COLORS.get(current.stone, (0, 200, 0))
                thickness = max(1, int(round(current.confidence * 3)))
                cv2.rectangle(self.image, (x - radius, y - radius), (x + radius, y + radius),
                              color, thickness)
                cv2.putText(
                    self.image, f"{current.confidence:.0%}",
                    (x + radius + 2, y),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.3, (0, 255, 255), 1,
                )

    def save(self, path: str) -> None:
        cv2.imwrite(path, self.image)
        log.info("Saved overlay image to %s", path)
