"""
Go Board Overlay
================

Overlays a camera view of a physical Go board with the authoritative
record of a remote review session and highlights where they disagree.

Architecture:
    1. Grid Mapping      – four clicked corners → N×N intersection pixels
    2. Stone Detection   – brightness vs. empty-board baseline, smoothed
                           over time with weighted voting + hysteresis
    3. Move Decoding     – two-letter move stream → rule engine → board
    4. Reconciliation    – detected vs. authoritative → draw instructions
"""

__version__ = "0.1.0"
