# src/calcorrect/calib/__init__.py
# =============================================================================
# calcorrect — Calibration primitives
# -----------------------------------------------------------------------------
# Pure array-level building blocks; no filesystem access except in `build`:
#
#   • grid      → sampling grids & overlap alignment (GridAligner)
#   • arrays    → ArraySet bundle, provenance stamp, correction result
#   • dark      → dark subtraction with variance / mask propagation
#   • response  → per-slice relative-response division
#   • build     → default master builders (dark stack, response flat)
#
# Example:
#   from calcorrect.calib import grid
#   ref, tgt = grid.align(science_grid, master_grid)
# =============================================================================

from __future__ import annotations

__all__ = [
    "grid",
    "arrays",
    "dark",
    "response",
    "build",
]
