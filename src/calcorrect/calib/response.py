# src/calcorrect/calib/response.py
# =============================================================================
# calcorrect — Per-slice relative-response correction
# -----------------------------------------------------------------------------
# Science arrays are indexed (slice, spatial, spectral). The master response is
# (slice, spectral) on its own spectral grid per slice.
#
#   1. response[s, :] = SUPPRESSION_FILL on the science spectral grid
#   2. master values <= 0 or non-finite → SUPPRESSION_FILL
#   3. overlap of master and science grids (calib.grid.align) is copied in
#   4. signal'   = signal   / response[s, None, :]    (also every auxiliary)
#      variance' = variance / response[s, None, :]**2
#      mask'     = mask
#
# Samples outside the overlap are divided by SUPPRESSION_FILL and therefore
# driven toward zero instead of being left uncorrected.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

import numpy as np

from ..errors import CorrectionError
from .arrays import ArraySet, CorrectionResult, ProvenanceStamp
from .grid import IndexRange, SamplingGrid, align

__all__ = [
    "SUPPRESSION_FILL",
    "ResponseFrame",
    "guard_response",
    "build_response_vectors",
    "apply_response",
]

logger = logging.getLogger(__name__)

# Divisor used for unmatched spectral samples and invalid response values.
SUPPRESSION_FILL = 1e9


@dataclass(frozen=True)
class ResponseFrame:
    """Master relative response as consumed by ``apply_response``."""
    data: np.ndarray                  # (n_slices, n_spectral)
    grids: Sequence[SamplingGrid]     # one spectral grid per slice
    path: str = ""
    source_frame: str = ""


def guard_response(values: np.ndarray) -> np.ndarray:
    """Replace values <= 0 and non-finite values with SUPPRESSION_FILL."""
    v = np.asarray(values, dtype=np.float64)
    bad = ~np.isfinite(v) | (v <= 0)
    return np.where(bad, SUPPRESSION_FILL, v)


def build_response_vectors(
    master: ResponseFrame,
    science_grids: Sequence[SamplingGrid],
) -> tuple[np.ndarray, List[Dict[str, Any]]]:
    """
    Per-slice response on the science spectral grids.

    Returns ``(response, overlaps)`` where ``response`` has shape
    ``(n_slices, science_length)`` and ``overlaps`` records the matched
    index ranges per slice. Raises AlignmentError if any slice has no overlap.
    """
    n_slices = len(science_grids)
    if master.data.ndim != 2 or master.data.shape[0] != n_slices:
        raise CorrectionError(
            f"master response shape {master.data.shape} does not provide {n_slices} slices"
        )
    if len(master.grids) != n_slices:
        raise CorrectionError(f"master response has {len(master.grids)} grids for {n_slices} slices")

    n_spec = science_grids[0].length
    response = np.full((n_slices, n_spec), SUPPRESSION_FILL, dtype=np.float64)
    overlaps: List[Dict[str, Any]] = []
    for s in range(n_slices):
        sci_rng, mst_rng = align(science_grids[s], master.grids[s])
        guarded = guard_response(master.data[s])
        response[s, sci_rng.as_slice()] = guarded[mst_rng.as_slice()]
        overlaps.append({"slice": s, "science": _pair(sci_rng), "master": _pair(mst_rng)})
    return response, overlaps


def _pair(r: IndexRange) -> List[int]:
    return [r.start, r.end]


def apply_response(
    arrays: ArraySet,
    master: ResponseFrame,
    science_grids: Sequence[SamplingGrid],
) -> CorrectionResult:
    """
    Divide signal and auxiliary arrays by the per-slice response and propagate
    the variance. The mask passes through unchanged.

    Raises CorrectionError (AlignmentError for grid failures) when the master
    cannot be matched to the science arrays.
    """
    shape = arrays.shape
    if len(shape) != 3:
        raise CorrectionError(f"response correction needs (slice, spatial, spectral) arrays; got {shape}")
    if shape[0] != len(science_grids):
        raise CorrectionError(f"science arrays hold {shape[0]} slices but {len(science_grids)} grids were given")
    if any(g.length != shape[2] for g in science_grids):
        raise CorrectionError(f"science spectral grids do not match spectral length {shape[2]}")

    response, overlaps = build_response_vectors(master, science_grids)
    divisor = response[:, None, :]

    def _divide(a: np.ndarray) -> np.ndarray:
        return (a / divisor).astype(np.result_type(a.dtype, np.float32), copy=False)

    def _divide_variance(v: np.ndarray) -> np.ndarray:
        return (v / divisor**2).astype(np.result_type(v.dtype, np.float32), copy=False)

    out = arrays.transform(_divide, variance_fn=_divide_variance)

    suppressed = int(np.count_nonzero(response == SUPPRESSION_FILL))
    if suppressed:
        logger.debug("%d of %d response samples suppressed", suppressed, response.size)

    stamp = ProvenanceStamp(
        keyword="RESP",
        applied=True,
        calibration_file=master.path,
        source_frame=master.source_frame,
        stage="relative response",
    )
    info: Dict[str, Any] = {"overlaps": overlaps, "suppressed": suppressed}
    return CorrectionResult(arrays=out, stamp=stamp, info=info)
