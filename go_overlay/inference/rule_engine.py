"""
Rule Engine – the authoritative board behind the move stream
============================================================

The move decoder never interprets Go rules itself; it only drives an
engine through four calls (``play``, ``pass_turn``, ``clear``,
``snapshot``).  Any object with that shape can be plugged in.

``SimpleGoEngine`` is the default:
  • Black moves first; colours alternate, a pass also hands over the turn.
  • Opponent groups left without liberties are removed.
  • A move onto an occupied point is ignored (logged) – reviews may contain
    edits the engine cannot follow, and the next full reset repairs it.
  • No ko or suicide checks.
"""

from __future__ import annotations

import logging
from typing import List, Protocol, Set, Tuple

import numpy as np

from go_overlay.errors import InvalidInput
from go_overlay.models.grid_mapper import DEFAULT_BOARD_SIZE

log = logging.getLogger(__name__)


BLACK: int = 1
WHITE: int = -1
EMPTY: int = 0


class RuleEngine(Protocol):
    """Interface the move decoder drives."""

    size: int

    def play(self, row: int, col: int) -> None:
        ...

    def pass_turn(self) -> None:
        ...

    def clear(self) -> None:
        ...

    def snapshot(self) -> List[int]:
        """Flattened row-major board of length N² (+1 / −1 / 0)."""
        ...


class SimpleGoEngine:
    """Minimal stone-placement engine with captures."""

    def __init__(self, size: int = DEFAULT_BOARD_SIZE) -> None:
        if size < 1:
            raise InvalidInput(f"Board size must be positive, got {size}")
        self.size = size
        self.grid = np.zeros((size, size), dtype=np.int8)
        self.turn = BLACK
        self.move_number = 0

    def clear(self) -> None:
        self.grid[:] = EMPTY
        self.turn = BLACK
        self.move_number = 0

    def pass_turn(self) -> None:
        self.turn = -self.turn
        self.move_number += 1

    def play(self, row: int, col: int) -> None:
        if not (0 <= row < self.size and 0 <= col < self.size):
            raise InvalidInput(f"Move ({row}, {col}) outside 0..{self.size - 1}")
        if self.grid[row, col] != EMPTY:
            log.warning(
                "Ignoring move %d at occupied point row=%d col=%d",
                self.move_number + 1, row, col,
            )
            return

        color = self.turn
        self.grid[row, col] = color
        captured = 0
        for nr, nc in self._neighbours(row, col):
            if self.grid[nr, nc] == -color:
                group, liberties = self._group(nr, nc)
                if not liberties:
                    for gr, gc in group:
                        self.grid[gr, gc] = EMPTY
                    captured += len(group)

        if captured:
            log.debug("Move at row=%d col=%d captured %d stone(s)", row, col, captured)
        self.turn = -color
        self.move_number += 1

    def snapshot(self) -> List[int]:
        return [int(v) for v in self.grid.reshape(-1)]

    # ── Group helpers ──────────────────────────────────────────────────

    def _neighbours(self, row: int, col: int) -> List[Tuple[int, int]]:
        out = []
        for dr, dc in ((-1, 0), (1, 0), (0, -1), (0, 1)):
            r, c = row + dr, col + dc
            if 0 <= r < self.size and 0 <= c < self.size:
                out.append((r, c))
        return out

    def _group(self, row: int, col: int) -> Tuple[Set[Tuple[int, int]], Set[Tuple[int, int]]]:
        """Flood-fill the group at (row, col); return (stones, liberties)."""
        color = self.grid[row, col]
        stones: Set[Tuple[int, int]] = {(row, col)}
        liberties: Set[Tuple[int, int]] = set()
        stack = [(row, col)]
        while stack:
            r, c = stack.pop()
            for nr, nc in self._neighbours(r, c):
                value = self.grid[nr, nc]
                if value == EMPTY:
                    liberties.add((nr, nc))
                elif value == color and (nr, nc) not in stones:
                    stones.add((nr, nc))
                    stack.append((nr, nc))
        return stones, liberties
