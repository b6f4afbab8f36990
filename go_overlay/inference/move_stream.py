"""
Move Stream – Decoding & Authoritative Board
============================================

Responsibilities:
  1. Encode / decode two-letter move coordinates (``"pd"`` → col 15,
     row 3) with a reserved ``".."`` pass sentinel.
  2. Turn each update of the remote review's concatenated move string into
     rule-engine calls, applying only the new suffix when the update extends
     what we already have.
  3. Publish the resulting N×N board to subscribers (``BoardChanged``).

Update protocol:
  • **Incremental** – the new string starts with the cursor (last applied
    string): only the remaining characters are decoded and played.
  • **Full reset** – anything else (a rewind, a branch switch, a fresh
    review) clears the engine and replays the whole string.  Divergence is
    normal operation, not an error.

  The string to apply is decoded completely *before* the engine is touched,
  so a ``DecodeError`` leaves both engine and cursor as they were.  A
  rule-engine error part-way through drops the cursor instead, and the
  next update takes the full-reset path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Tuple

import numpy as np

from go_overlay.errors import DecodeError, InvalidInput
from go_overlay.inference.rule_engine import RuleEngine, SimpleGoEngine

log = logging.getLogger(__name__)


BASE_LETTER: str = "a"
PASS_SENTINEL: str = ".."
LEGACY_PASS_SENTINELS: Tuple[str, ...] = ("!1",)
CHUNK: int = 2

# A decoded move is (col, row), or None for a pass.
Move = Optional[Tuple[int, int]]


# ── Coordinate codec ───────────────────────────────────────────────────

def encode(col: int, row: int, size: int = 19) -> str:
    """``(col, row)`` → two-letter move (``encode(3, 3) == "dd"``)."""
    if not (0 <= col < size and 0 <= row < size):
        raise InvalidInput(f"Board coordinate ({col}, {row}) outside 0..{size - 1}")
    base = ord(BASE_LETTER)
    return chr(base + col) + chr(base + row)


def is_pass(chunk: str) -> bool:
    return chunk == PASS_SENTINEL or chunk in LEGACY_PASS_SENTINELS


def decode(chunk: str, size: int = 19) -> Tuple[int, int]:
    """Two-letter move → ``(col, row)``.

    Raises ``DecodeError`` for anything that is not exactly two characters
    landing on the board.  Pass sentinels are rejected here; use
    ``decode_moves`` for full strings.
    """
    if len(chunk) != CHUNK:
        raise DecodeError(f"Move chunk must be {CHUNK} characters, got {chunk!r}")
    if is_pass(chunk):
        raise DecodeError(f"{chunk!r} is a pass, not a coordinate")

    base = ord(BASE_LETTER)
    col = ord(chunk[0]) - base
    row = ord(chunk[1]) - base
    if not (0 <= col < size and 0 <= row < size):
        raise DecodeError(
            f"Move {chunk!r} decodes to ({col}, {row}), outside 0..{size - 1}"
        )
    return col, row


def decode_moves(moves: str, size: int = 19) -> List[Move]:
    """Split a concatenated move string into decoded moves (``None`` = pass)."""
    if len(moves) % CHUNK:
        raise DecodeError(
            f"Move string length {len(moves)} is not a multiple of {CHUNK}: {moves!r}"
        )
    decoded: List[Move] = []
    for i in range(0, len(moves), CHUNK):
        chunk = moves[i:i + CHUNK]
        decoded.append(None if is_pass(chunk) else decode(chunk, size))
    return decoded


def encode_moves(moves: List[Move], size: int = 19) -> str:
    """Inverse of ``decode_moves``."""
    return "".join(PASS_SENTINEL if m is None else encode(m[0], m[1], size) for m in moves)


# ── Events ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BoardChanged:
    """Emitted after every processed update."""
    board: np.ndarray              # (N, N) int8, +1 black / −1 white / 0 empty
    moves: str                     # cursor after the update
    reset: bool                    # True if the engine was cleared and replayed
    applied: int                   # number of chunks played this update


BoardListener = Callable[[BoardChanged], None]


# ── Decoder ────────────────────────────────────────────────────────────

class MoveStreamDecoder:
    """Keeps the authoritative board in step with a remote move string.

    Parameters
    ----------
    size : int
        Board size *N*.
    engine : RuleEngine, optional
        Rule engine to drive; defaults to ``SimpleGoEngine(size)``.
    """

    def __init__(self, size: int = 19, engine: Optional[RuleEngine] = None) -> None:
        self.size = size
        self.engine: RuleEngine = engine if engine is not None else SimpleGoEngine(size)
        if self.engine.size != size:
            raise InvalidInput(
                f"Rule engine size {self.engine.size} does not match decoder size {size}"
            )
        # None forces the next update to replay from scratch
        self.cursor: Optional[str] = ""
        self._listeners: List[BoardListener] = []

    def subscribe(self, listener: BoardListener) -> None:
        self._listeners.append(listener)

    @property
    def board(self) -> np.ndarray:
        """Current authoritative board, reshaped row-major to ``(N, N)``."""
        snapshot = np.asarray(self.engine.snapshot(), dtype=np.int8)
        if snapshot.size != self.size * self.size:
            raise InvalidInput(
                f"Rule engine snapshot has {snapshot.size} cells, expected {self.size ** 2}"
            )
        return snapshot.reshape(self.size, self.size)

    def on_update(self, raw_moves: str) -> BoardChanged:
        """Apply one move-string update and emit ``BoardChanged``.

        If the rule engine raises part-way through, the cursor is dropped so
        the next update clears the engine and replays from scratch.
        """
        if self.cursor is not None and raw_moves.startswith(self.cursor):
            pending = raw_moves[len(self.cursor):]
            reset = False
        else:
            pending = raw_moves
            reset = True

        moves = decode_moves(pending, self.size)

        try:
            if reset:
                log.info(
                    "Move stream diverged (had %s moves, got %d) – replaying from scratch",
                    "?" if self.cursor is None else len(self.cursor) // CHUNK,
                    len(raw_moves) // CHUNK,
                )
                self.engine.clear()
            for move in moves:
                if move is None:
                    self.engine.pass_turn()
                else:
                    col, row = move
                    self.engine.play(row, col)
        except Exception:
            log.error("Rule engine rejected update – board will be rebuilt on the next one")
            self.cursor = None
            raise

        self.cursor = raw_moves
        log.debug("Applied %d move(s)  reset=%s  total=%d", len(moves), reset, len(raw_moves) // CHUNK)
        return self._emit(reset=reset, applied=len(moves))

    def on_payload(self, payload: Mapping[str, Any]) -> BoardChanged:
        """Move-stream source adapter.

        Payloads without a ``"moves"`` string re-emit the current board.
        """
        moves = payload.get("moves")
        if moves is None:
            return self._emit(reset=False, applied=0)
        if not isinstance(moves, str):
            raise DecodeError(f"Payload 'moves' must be a string, got {type(moves).__name__}")
        return self.on_update(moves)

    def _emit(self, reset: bool, applied: int) -> BoardChanged:
        event = BoardChanged(board=self.board, moves=self.cursor or "", reset=reset, applied=applied)
        for listener in self._listeners:
            listener(event)
        return event
