"""
Go Board Overlay – Main Entry Point
===================================

Commands:

  1. **Grid**     – Interpolate the intersection grid from four corners and
                    print it (optionally drawn over an image).
  2. **Decode**   – Replay a review move string through the rule engine and
                    print the resulting board.
  3. **Overlay**  – Calibrate on an empty-board photo, classify one or more
                    photos of the physical board, compare against a move
                    string and draw what is missing or wrong.

Corners are given as ``"x,y;x,y;x,y;x,y"`` (top-left, top-right,
bottom-right, bottom-left) or as a path to a JSON file holding
``[[x, y], ...]``.

Usage examples
--------------

**Grid**::

    python go_overlay.py grid --corners "102,88;918,95;930,905;95,899" \\
        --image board.png --save-debug grid.png

**Decode**::

    python go_overlay.py decode --moves pddpqqdd

**Overlay**::

    python go_overlay.py overlay \\
        --empty empty.png \\
        --image frame1.png frame2.png frame3.png \\
        --corners corners.json \\
        --moves pddpqqdd \\
        --save-debug overlay.png
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

import cv2
import numpy as np

from go_overlay.errors import InvalidInput, OverlayError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("go_overlay")


def parse_corners(text: str) -> List[List[float]]:
    """Inline ``"x,y;x,y;..."`` or a JSON file path → list of points."""
    path = Path(text)
    if path.suffix == ".json" or path.is_file():
        with open(path) as f:
            points = json.load(f)
    else:
        points = []
        for pair in text.split(";"):
            pair = pair.strip()
            if not pair:
                continue
            try:
                x, y = pair.split(",")
                points.append([float(x), float(y)])
            except ValueError as exc:
                raise InvalidInput(f"Bad corner {pair!r}, expected \"x,y\"") from exc
    return points


def _read_image(path: str) -> np.ndarray:
    image = cv2.imread(path)
    if image is None:
        log.error("Could not read image: %s", path)
        sys.exit(1)
    return image


# ═══════════════════════════════════════════════════════════════════════
# Grid
# ═══════════════════════════════════════════════════════════════════════

def cmd_grid(args: argparse.Namespace) -> None:
    """Print the interpolated grid."""
    from go_overlay.models.grid_mapper import GridMapper

    mapper = GridMapper(args.size)
    mapper.set_corners(parse_corners(args.corners))
    grid = mapper.compute_grid()

    print(json.dumps(grid.tolist()))

    if args.image:
        from go_overlay.inference.overlay import OverlayRenderer

        renderer = OverlayRenderer(_read_image(args.image))
        renderer.draw_grid_lines(grid)
        renderer.draw_corners(mapper.corners)
        if args.save_debug:
            renderer.save(args.save_debug)


# ═══════════════════════════════════════════════════════════════════════
# Decode
# ═══════════════════════════════════════════════════════════════════════

def cmd_decode(args: argparse.Namespace) -> None:
    """Replay a move string and print the board."""
    from go_overlay.inference.move_stream import MoveStreamDecoder
    from go_overlay.models.stone_classifier import format_board

    decoder = MoveStreamDecoder(args.size)
    event = decoder.on_update(args.moves)

    print(f"\nMoves: {len(event.moves) // 2}\n")
    print(format_board(event.board))
    print()


# ═══════════════════════════════════════════════════════════════════════
# Overlay
# ═══════════════════════════════════════════════════════════════════════

def cmd_overlay(args: argparse.Namespace) -> None:
    """Calibrate, classify, reconcile and draw."""
    from go_overlay.inference.overlay import OverlayRenderer
    from go_overlay.inference.pipeline import (
        Calibrate,
        FrameArrived,
        MovesArrived,
        OverlaySession,
        Resample,
        SetCorners,
    )
    from go_overlay.models.stone_classifier import format_board

    empty = _read_image(args.empty)
    frames = [_read_image(p) for p in args.image]

    renderer = OverlayRenderer(frames[-1])
    session = OverlaySession(
        size=args.size,
        sink=renderer,
        history_length=args.history,
        radius=args.radius,
        reset_history_on_calibrate=not args.keep_history,
    )

    session.post(SetCorners(parse_corners(args.corners)))
    session.post(Calibrate(empty))
    # All but the last frame only build up history
    for frame in frames[:-1]:
        session.post(FrameArrived(frame))
        session.post(Resample())
    session.post(FrameArrived(frames[-1]))
    session.post(MovesArrived({"moves": args.moves}))
    instructions = session.process_pending()

    print("\n" + "=" * 60)
    print("  DETECTED BOARD")
    print("=" * 60)
    print(format_board(session.classifier.resolved_board()))
    print("=" * 60)
    print(f"  Record moves   : {len(session.decoder.cursor or '') // 2}")
    print(f"  Differences    : {len(instructions)}")
    print("=" * 60 + "\n")
    print(json.dumps(
        [{"x": i.board_x, "y": i.board_y, "color": i.color.name.lower()} for i in instructions],
        indent=2,
    ))

    if args.debug_readings:
        renderer.draw_debug(
            session.mapper.compute_grid(),
            session.classifier.latest_readings(),
            radius=args.radius,
        )
    if args.save_debug:
        renderer.save(args.save_debug)


# ═══════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="go_overlay",
        description="Overlay a physical Go board with a remote review record.",
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # ── grid ──
    p_grid = sub.add_parser("grid", help="Compute the intersection grid")
    p_grid.add_argument("--corners", required=True,
                        help='"x,y;x,y;x,y;x,y" or path to a JSON file')
    p_grid.add_argument("--size", type=int, default=19)
    p_grid.add_argument("--image", default=None,
                        help="Draw the grid over this image")
    p_grid.add_argument("--save-debug", default=None,
                        help="Save the drawn grid to path")

    # ── decode ──
    p_dec = sub.add_parser("decode", help="Replay a move string")
    p_dec.add_argument("--moves", required=True,
                       help='Concatenated two-letter moves, ".." for pass')
    p_dec.add_argument("--size", type=int, default=19)

    # ── overlay ──
    p_ov = sub.add_parser("overlay", help="Compare photos against a move string")
    p_ov.add_argument("--empty", required=True,
                      help="Photo of the empty board (calibration)")
    p_ov.add_argument("--image", required=True, nargs="+",
                      help="One or more photos of the board, oldest first")
    p_ov.add_argument("--corners", required=True,
                      help='"x,y;x,y;x,y;x,y" or path to a JSON file')
    p_ov.add_argument("--moves", required=True,
                      help="Review move string")
    p_ov.add_argument("--size", type=int, default=19)
    p_ov.add_argument("--history", type=int, default=10,
                      help="Readings kept per intersection")
    p_ov.add_argument("--radius", type=int, default=10,
                      help="Sampling window half-width in pixels")
    p_ov.add_argument("--keep-history", action="store_true",
                      help="Keep readings across recalibration")
    p_ov.add_argument("--debug-readings", action="store_true",
                      help="Draw sample windows and confidences")
    p_ov.add_argument("--save-debug", default=None,
                      help="Save the overlay image to path")

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    dispatch = {
        "grid": cmd_grid,
        "decode": cmd_decode,
        "overlay": cmd_overlay,
    }

    try:
        dispatch[args.command](args)
    except (OverlayError, OSError, ValueError) as exc:
        log.error("%s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
