"""
Pytest fixtures for overlay tests.

Synthetic frames: a 400×400 "wooden" board whose 19×19 grid runs from
(20, 20) to (380, 380), i.e. one line every 20 px.
"""

from typing import Callable, Dict, List, Tuple

import cv2
import numpy as np
import pytest

BOARD_RGB = (220, 200, 180)
BOARD_CORNERS = [[20, 20], [380, 20], [380, 380], [20, 380]]
SPACING = 20
STONE_RADIUS = 8


def _pixel(col: int, row: int) -> Tuple[int, int]:
    return 20 + col * SPACING, 20 + row * SPACING


@pytest.fixture
def corners() -> List[List[int]]:
    return [list(p) for p in BOARD_CORNERS]


@pytest.fixture
def empty_board() -> np.ndarray:
    """BGR image of an empty board."""
    r, g, b = BOARD_RGB
    return np.full((400, 400, 3), (b, g, r), dtype=np.uint8)


@pytest.fixture
def board_with_stones(empty_board: np.ndarray) -> Callable[[Dict[Tuple[int, int], int]], np.ndarray]:
    """Factory: ``{(col, row): +1 | -1}`` → BGR image with stones drawn."""

    def _make(stones: Dict[Tuple[int, int], int]) -> np.ndarray:
        image = empty_board.copy()
        for (col, row), color in stones.items():
            fill = (0, 0, 0) if color == 1 else (255, 255, 255)
            cv2.circle(image, _pixel(col, row), STONE_RADIUS, fill, -1)
        return image

    return _make


class RecordingSink:
    """Render sink that remembers every call."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def clear(self) -> None:
        self.calls.append(("clear",))

    def draw_grid_lines(self, grid) -> None:
        self.calls.append(("grid", np.asarray(grid).shape))

    def draw_corners(self, points) -> None:
        self.calls.append(("corners", len(points)))

    def draw_stone(self, point, color) -> None:
        self.calls.append(("stone", (int(point[0]), int(point[1])), int(color)))

    @property
    def stones(self) -> List[tuple]:
        return [c for c in self.calls if c[0] == "stone"]


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
