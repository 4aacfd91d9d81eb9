# src/calcorrect/calib/dark.py
# =============================================================================
# calcorrect — Dark subtraction
# -----------------------------------------------------------------------------
# Apply a master dark to a science ArraySet, pixel for pixel:
#
#   scale     = t_science / t_dark     (1.0 when either is unknown or <= 0)
#   signal'   = signal   - dark * scale          (also every auxiliary array)
#   variance' = variance + dark_variance         (dark variance NOT scaled)
#   mask'     = mask     + dark_mask             (defect counts accumulate)
#
# The unscaled dark variance is a deliberate modeling simplification kept for
# compatibility with existing reductions.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np

from ..errors import CorrectionError
from .arrays import ArraySet, CorrectionResult, ProvenanceStamp

__all__ = [
    "DarkFrame",
    "exposure_scale",
    "apply_dark",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DarkFrame:
    """Master dark as consumed by ``apply_dark``."""
    data: np.ndarray
    variance: Optional[np.ndarray] = None
    mask: Optional[np.ndarray] = None
    exposure_time: Optional[float] = None
    path: str = ""
    source_frame: str = ""


def _known_positive(t: Optional[float]) -> bool:
    return t is not None and np.isfinite(t) and t > 0


def exposure_scale(science_time: Optional[float], dark_time: Optional[float]) -> float:
    """Ratio of science to dark exposure time; 1.0 (with a warning) when undefined."""
    if _known_positive(science_time) and _known_positive(dark_time):
        return float(science_time) / float(dark_time)
    logger.warning(
        "exposure times unusable for dark scaling (science=%s, dark=%s); using scale 1.0",
        science_time,
        dark_time,
    )
    return 1.0


def _check_shape(name: str, arr: Optional[np.ndarray], shape) -> None:
    if arr is not None and arr.shape != shape:
        raise CorrectionError(f"master dark {name} shape {arr.shape} does not match science shape {shape}")


def apply_dark(
    arrays: ArraySet,
    dark: DarkFrame,
    *,
    science_time: Optional[float],
) -> CorrectionResult:
    """
    Subtract a (scaled) master dark from signal and auxiliary arrays and
    propagate variance and mask.

    Raises CorrectionError when the master does not match the science shape.
    """
    shape = arrays.shape
    _check_shape("data", dark.data, shape)
    _check_shape("variance", dark.variance, shape)
    _check_shape("mask", dark.mask, shape)

    scale = exposure_scale(science_time, dark.exposure_time)
    scaled = dark.data.astype(np.float64, copy=False) * scale

    def _subtract(a: np.ndarray) -> np.ndarray:
        return (a - scaled).astype(np.result_type(a.dtype, np.float32), copy=False)

    def _add_variance(v: np.ndarray) -> np.ndarray:
        if dark.variance is None:
            return v.copy()
        return (v + dark.variance).astype(np.result_type(v.dtype, np.float32), copy=False)

    def _add_mask(m: np.ndarray) -> np.ndarray:
        if dark.mask is None:
            return m.copy()
        dtype = np.result_type(m.dtype, dark.mask.dtype)
        return m.astype(dtype, copy=False) + dark.mask.astype(dtype, copy=False)

    out = arrays.transform(_subtract, variance_fn=_add_variance, mask_fn=_add_mask)

    info: Dict[str, Any] = {
        "scale": scale,
        "science_time": science_time,
        "dark_time": dark.exposure_time,
    }
    stamp = ProvenanceStamp(
        keyword="DARK",
        applied=True,
        calibration_file=dark.path,
        source_frame=dark.source_frame,
        stage="dark subtraction",
    )
    logger.debug("dark applied (scale=%.6g, source=%s)", scale, dark.source_frame)
    return CorrectionResult(arrays=out, stamp=stamp, info=info)
