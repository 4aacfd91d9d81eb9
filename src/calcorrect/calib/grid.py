# src/calcorrect/calib/grid.py
# =============================================================================
# calcorrect — Sampling grids & overlap alignment
# -----------------------------------------------------------------------------
# A SamplingGrid maps array index i to a physical coordinate (wavelength):
#
#     coord(i) = origin + i * step,   i = 0 .. length-1
#
# align(reference, target) returns the inclusive index ranges on both axes
# that cover the same physical interval. Both grids must share one step; only
# origin and length may differ. Offsets are rounded half away from zero.
#
#   science  4000 ......... 4009        reference [0, 4]
#   master   3995 ... 4004              target    [5, 9]
# =============================================================================

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple

from ..errors import AlignmentError

__all__ = [
    "SamplingGrid",
    "IndexRange",
    "align",
    "round_half_away",
    "slice_grids",
]

STEP_RTOL = 1e-6


def round_half_away(x: float) -> int:
    """Round to nearest integer, ties away from zero (2.5 → 3, -2.5 → -3)."""
    return int(math.copysign(math.floor(abs(x) + 0.5), x))


@dataclass(frozen=True)
class SamplingGrid:
    origin: float
    step: float
    length: int

    @property
    def end(self) -> float:
        """Coordinate of the last sample."""
        return self.origin + (self.length - 1) * self.step

    def coord(self, index: int) -> float:
        return self.origin + index * self.step

    @classmethod
    def from_header(
        cls,
        header: Mapping,
        length: int,
        *,
        axis: int = 1,
        slice_number: Optional[int] = None,
    ) -> "SamplingGrid":
        """
        Build a grid from linear WCS keywords ``CRVALn``/``CDELTn``/``CRPIXn``.

        ``slice_number`` (1-based) selects a per-slice origin override
        ``SLORGnn`` when the header carries one.
        """
        try:
            crval = float(header[f"CRVAL{axis}"])
            cdelt = float(header.get(f"CDELT{axis}", header.get(f"CD{axis}_{axis}")))
        except (KeyError, TypeError, ValueError) as e:
            raise AlignmentError(f"header lacks a linear spectral WCS on axis {axis}: {e}") from e
        crpix = float(header.get(f"CRPIX{axis}", 1.0))
        origin = crval - (crpix - 1.0) * cdelt
        if slice_number is not None:
            key = f"SLORG{slice_number:02d}"
            if key in header:
                origin = float(header[key])
        return cls(origin=origin, step=cdelt, length=int(length))

    def to_header(self, header, *, axis: int = 1) -> None:
        header[f"CRVAL{axis}"] = self.origin
        header[f"CDELT{axis}"] = self.step
        header[f"CRPIX{axis}"] = 1.0


@dataclass(frozen=True)
class IndexRange:
    """Inclusive [start, end] index range."""
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def as_slice(self) -> slice:
        return slice(self.start, self.end + 1)


def _check(grid: SamplingGrid, label: str) -> None:
    if grid.length < 1:
        raise AlignmentError(f"{label} grid has no samples (length={grid.length})")
    if not (grid.step > 0 and math.isfinite(grid.step)):
        raise AlignmentError(f"{label} grid step must be positive and finite; got {grid.step}")
    if not math.isfinite(grid.origin):
        raise AlignmentError(f"{label} grid origin is not finite: {grid.origin}")


def align(reference: SamplingGrid, target: SamplingGrid) -> Tuple[IndexRange, IndexRange]:
    """
    Overlapping index ranges of two grids sharing one step.

    Returns ``(ref_range, target_range)`` of equal positive length such that
    ``reference.coord(ref_range.start)`` matches ``target.coord(target_range.start)``
    (and likewise at the end) within half a step.

    Raises AlignmentError when steps differ, a grid is degenerate, or the grids
    do not overlap.
    """
    _check(reference, "reference")
    _check(target, "target")
    step = reference.step
    if not math.isclose(step, target.step, rel_tol=STEP_RTOL):
        raise AlignmentError(f"grid steps differ: reference {reference.step} vs target {target.step}")

    # start: the grid beginning at the larger coordinate anchors at its index 0
    start_offset = round_half_away((target.origin - reference.origin) / step)
    if start_offset >= 0:
        ref_start, tgt_start = start_offset, 0
    else:
        ref_start, tgt_start = 0, -start_offset

    # end: the grid ending at the smaller coordinate anchors at its last index
    end_offset = round_half_away((reference.end - target.end) / step)
    if end_offset >= 0:
        ref_end, tgt_end = reference.length - 1 - end_offset, target.length - 1
    else:
        ref_end, tgt_end = reference.length - 1, target.length - 1 + end_offset

    n = min(ref_end - ref_start, tgt_end - tgt_start) + 1
    if n < 1 or ref_start >= reference.length or tgt_start >= target.length:
        raise AlignmentError(
            f"grids do not overlap: reference [{reference.origin}, {reference.end}] "
            f"vs target [{target.origin}, {target.end}]"
        )
    # half-pixel ties can leave the two spans one sample apart; trim to the shorter
    return IndexRange(ref_start, ref_start + n - 1), IndexRange(tgt_start, tgt_start + n - 1)


def slice_grids(header: Mapping, n_slices: int, length: int, *, axis: int = 1) -> List[SamplingGrid]:
    """Per-slice spectral grids (slice numbers are 1-based in ``SLORGnn``)."""
    return [
        SamplingGrid.from_header(header, length, axis=axis, slice_number=s + 1)
        for s in range(n_slices)
    ]
