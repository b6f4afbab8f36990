"""
Overlay Pipeline – Detected vs. Authoritative → Draw Instructions
=================================================================

This is the single entry point tying the core together.

Per reconciliation:
  1. Resample     – one classification cycle on the current frame
  2. Resolve      – smoothed N×N detected board (voting + hysteresis)
  3. Diff         – compare against the latest authoritative board
  4. Render       – clear the sink and draw only the differing stones

Diff rule (row-major order):
  • detected empty (or not yet known), record has a stone → draw it
  • detected stone differs from the record              → draw the record
  • otherwise                                            → nothing

Event delivery:
  Camera frames, corner clicks and remote move updates are posted as
  messages onto a queue and drained synchronously by ``OverlaySession``;
  each handler runs to completion before the next message is taken, so
  the core works under any event loop or thread that owns the session.
"""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Union

import numpy as np

from go_overlay.errors import InvalidInput, PreconditionError
from go_overlay.inference.move_stream import BoardChanged, MoveStreamDecoder
from go_overlay.inference.rule_engine import RuleEngine
from go_overlay.models.grid_mapper import DEFAULT_BOARD_SIZE, GridMapper
from go_overlay.models.stone_classifier import (
    DEFAULT_HISTORY,
    SAMPLE_RADIUS,
    FrameLike,
    Stone,
    StoneClassifier,
)

log = logging.getLogger(__name__)


# ── Render sink ────────────────────────────────────────────────────────

class RenderSink(Protocol):
    def draw_grid_lines(self, grid: np.ndarray) -> None: ...
    def draw_stone(self, point: Sequence[int], color: int) -> None: ...
    def draw_corners(self, points: Sequence[Sequence[float]]) -> None: ...
    def clear(self) -> None: ...


# ── Diff ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DrawInstruction:
    """Place the record's stone at one intersection."""
    board_x: int                   # column
    board_y: int                   # row
    color: Stone                   # BLACK | WHITE | EMPTY (remove)


def reconcile(detected: np.ndarray, authoritative: np.ndarray) -> List[DrawInstruction]:
    """Minimal draw instructions turning *detected* into *authoritative*."""
    detected = np.asarray(detected)
    authoritative = np.asarray(authoritative)
    if detected.shape != authoritative.shape:
        raise InvalidInput(
            f"Detected board {detected.shape} and record {authoritative.shape} differ in shape"
        )

    instructions: List[DrawInstruction] = []
    for row in range(detected.shape[0]):
        for col in range(detected.shape[1]):
            seen = int(detected[row, col])
            truth = int(authoritative[row, col])
            if seen in (Stone.EMPTY, Stone.UNSET):
                if truth == Stone.EMPTY:
                    continue
            elif seen == truth:
                continue
            instructions.append(DrawInstruction(board_x=col, board_y=row, color=Stone(truth)))
    return instructions


# ── Coordinator ────────────────────────────────────────────────────────

class ReconciliationCoordinator:
    """Runs resample → diff → render on demand.

    Parameters
    ----------
    mapper : GridMapper
        Provides the intersection grid.
    classifier : StoneClassifier
        Must be calibrated before the first reconciliation.
    sink : RenderSink, optional
        Receives ``clear()`` and one ``draw_stone`` per instruction.
    """

    def __init__(
        self,
        mapper: GridMapper,
        classifier: StoneClassifier,
        sink: Optional[RenderSink] = None,
    ) -> None:
        if mapper.size != classifier.size:
            raise InvalidInput(
                f"Mapper size {mapper.size} does not match classifier size {classifier.size}"
            )
        self.mapper = mapper
        self.classifier = classifier
        self.sink = sink
        self.frame: Optional[FrameLike] = None
        self.authoritative = np.zeros((mapper.size, mapper.size), dtype=np.int8)
        self.last_instructions: List[DrawInstruction] = []

    def update_frame(self, frame: FrameLike) -> None:
        self.frame = frame

    def on_board_changed(self, event: BoardChanged) -> List[DrawInstruction]:
        self.authoritative = event.board.copy()
        return self.resample()

    def resample(self, frame: Optional[FrameLike] = None) -> List[DrawInstruction]:
        """Classify *frame* (or the latest one) and redraw the differences."""
        if frame is not None:
            self.frame = frame
        if self.frame is None:
            raise PreconditionError("No camera frame available to resample")

        grid = self.mapper.compute_grid()
        self.classifier.classify(self.frame, grid)
        detected = self.classifier.resolved_board()
        instructions = reconcile(detected, self.authoritative)

        if self.sink is not None:
            self.sink.clear()
            for ins in instructions:
                self.sink.draw_stone(grid[ins.board_y, ins.board_x], ins.color)

        log.info(
            "Reconciled  differences=%d  record_stones=%d",
            len(instructions), int(np.count_nonzero(self.authoritative)),
        )
        self.last_instructions = instructions
        return instructions


# ── Messages ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SetCorners:
    points: Sequence[Sequence[float]]


@dataclass(frozen=True)
class ResetCorners:
    pass


@dataclass(frozen=True)
class FrameArrived:
    frame: FrameLike


@dataclass(frozen=True)
class Calibrate:
    frame: Optional[FrameLike] = None


@dataclass(frozen=True)
class MovesArrived:
    payload: Mapping[str, Any]


@dataclass(frozen=True)
class Resample:
    pass


Message = Union[SetCorners, ResetCorners, FrameArrived, Calibrate, MovesArrived, Resample]


# ── Session ────────────────────────────────────────────────────────────

class OverlaySession:
    """Owns the core components and serialises every input through a queue.

    Parameters
    ----------
    size : int
        Board size *N*.
    sink : RenderSink, optional
        Where draw instructions go.
    engine : RuleEngine, optional
        Rule engine behind the move decoder.
    history_length, radius, reset_history_on_calibrate
        Passed through to ``StoneClassifier``.
    """

    def __init__(
        self,
        size: int = DEFAULT_BOARD_SIZE,
        sink: Optional[RenderSink] = None,
        engine: Optional[RuleEngine] = None,
        history_length: int = DEFAULT_HISTORY,
        radius: int = SAMPLE_RADIUS,
        reset_history_on_calibrate: bool = True,
    ) -> None:
        self.mapper = GridMapper(size)
        self.classifier = StoneClassifier(
            size=size,
            history_length=history_length,
            radius=radius,
            reset_history_on_calibrate=reset_history_on_calibrate,
        )
        self.decoder = MoveStreamDecoder(size, engine=engine)
        self.coordinator = ReconciliationCoordinator(self.mapper, self.classifier, sink)
        self.sink = sink
        self._inbox: "queue.Queue[Message]" = queue.Queue()
        self.decoder.subscribe(self._on_board_changed)

    # ── Queue ──────────────────────────────────────────────────────────

    def post(self, message: Message) -> None:
        self._inbox.put(message)

    def process_pending(self) -> List[DrawInstruction]:
        """Handle every queued message in order.

        Returns the instructions from the last reconciliation that ran
        during this call (empty if none ran).  An exception stops the drain
        and propagates; messages behind it stay queued.
        """
        latest: List[DrawInstruction] = []
        while True:
            try:
                message = self._inbox.get_nowait()
            except queue.Empty:
                break
            result = self.handle(message)
            if result is not None:
                latest = result
        return latest

    @property
    def pending(self) -> int:
        return self._inbox.qsize()

    # ── Handlers ───────────────────────────────────────────────────────

    def handle(self, message: Message) -> Optional[List[DrawInstruction]]:
        if isinstance(message, SetCorners):
            self._set_corners(message.points)
        elif isinstance(message, ResetCorners):
            self.mapper.reset()
            if self.sink is not None:
                self.sink.clear()
        elif isinstance(message, FrameArrived):
            self.coordinator.update_frame(message.frame)
        elif isinstance(message, Calibrate):
            self._calibrate(message.frame)
        elif isinstance(message, MovesArrived):
            self.decoder.on_payload(message.payload)
            return self.coordinator.last_instructions if self.ready else None
        elif isinstance(message, Resample):
            return self.coordinator.resample()
        else:
            raise InvalidInput(f"Unknown message type: {type(message).__name__}")
        return None

    @property
    def ready(self) -> bool:
        """Corners set, classifier calibrated and a frame available."""
        return (
            self.mapper.is_complete
            and self.classifier.is_calibrated
            and self.coordinator.frame is not None
        )

    def _set_corners(self, points: Sequence[Sequence[float]]) -> None:
        self.mapper.set_corners(points)
        grid = self.mapper.compute_grid()
        if self.classifier.is_calibrated:
            log.warning("Corners changed – calibration is stale until recalibrated")
        if self.sink is not None:
            self.sink.clear()
            self.sink.draw_grid_lines(grid)
            self.sink.draw_corners(points)

    def _calibrate(self, frame: Optional[FrameLike]) -> None:
        if frame is not None:
            self.coordinator.update_frame(frame)
        if self.coordinator.frame is None:
            raise PreconditionError("No camera frame available to calibrate on")
        self.classifier.calibrate(self.coordinator.frame, self.mapper.compute_grid())

    def _on_board_changed(self, event: BoardChanged) -> None:
        if not self.ready:
            self.coordinator.authoritative = event.board.copy()
            log.info("Record updated (%d moves); overlay waits for calibration", len(event.moves) // 2)
            return
        self.coordinator.on_board_changed(event)
