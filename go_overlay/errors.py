"""Exception types raised by the overlay core."""

from __future__ import annotations


class OverlayError(Exception):
    """Base class for all overlay errors."""


class InvalidInput(OverlayError, ValueError):
    """Wrong corner count, out-of-range board coordinate, bad frame window."""


class PreconditionError(OverlayError, RuntimeError):
    """An operation was called before the state it depends on exists."""


class DecodeError(OverlayError, ValueError):
    """A move chunk is malformed or decodes outside the board."""
