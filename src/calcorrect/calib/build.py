# src/calcorrect/calib/build.py
# =============================================================================
# calcorrect — Default master builders
# -----------------------------------------------------------------------------
# The cache calls a builder as  builder(raw_path, master_path, overwrite=...)
# and expects three files afterwards: master, master_var, master_mask.
#
#   build_master_dark      : [N, H, W] stacks → robust median with MAD-based
#                            cosmic-ray rejection; [H, W] frames used as-is
#   build_master_response  : (slice, spatial, spectral) flat → per-slice
#                            spectral response normalized to a global median of 1
#
# Any callable with the same signature can replace these.
# =============================================================================

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Tuple

import numpy as np
from astropy.io import fits

from ..utils.io import read_frame, side_path, write_frame

__all__ = [
    "MasterBuilder",
    "VARIANCE_SUFFIX",
    "MASK_SUFFIX",
    "robust_combine",
    "build_master_dark",
    "build_master_response",
]

logger = logging.getLogger(__name__)

MasterBuilder = Callable[..., Path]

VARIANCE_SUFFIX = "_var"
MASK_SUFFIX = "_mask"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def robust_combine(
    stack: np.ndarray,
    *,
    zmax: float = 6.0,
    iters: int = 1,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Median-combine a [N, H, W] stack with iterative MAD rejection.

    Returns (median, variance_of_median, rejected_count).
    """
    cur = stack.astype(np.float64, copy=True)
    for _ in range(max(1, iters)):
        med = np.nanmedian(cur, axis=0, keepdims=True)
        mad = np.nanmedian(np.abs(cur - med), axis=0, keepdims=True)
        mad = np.where(mad <= 1e-12, 1e-12, mad)
        z = 0.6745 * (cur - med) / mad
        cur[np.abs(z) > zmax] = np.nan

    n_good = np.sum(np.isfinite(cur), axis=0)
    rejected = stack.shape[0] - n_good
    master = np.nanmedian(cur, axis=0)
    resid = cur - master[None, :, :]
    var = np.nanmean(resid**2, axis=0) / np.maximum(n_good, 1)
    return master, var, rejected


def _stamp_master(header: fits.Header, raw_path: Path, kind: str) -> fits.Header:
    out = header.copy()
    out["SRCFRAME"] = raw_path.name
    out["MSTRKIND"] = kind
    out["DATE"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    out.add_history(f"calcorrect: master {kind} built from {raw_path.name}")
    return out


def _write_master(
    master_path: Path,
    data: np.ndarray,
    variance: np.ndarray,
    mask: np.ndarray,
    header: fits.Header,
    overwrite: bool,
) -> Path:
    # Side files first: the master itself is the cache key and must only appear
    # once its companions are on disk.
    write_frame(variance.astype(np.float32), header, side_path(master_path, VARIANCE_SUFFIX), overwrite=overwrite)
    write_frame(mask.astype(np.int16), header, side_path(master_path, MASK_SUFFIX), overwrite=overwrite)
    write_frame(data.astype(np.float32), header, master_path, overwrite=overwrite)
    return master_path



# -----------------------------------------------------------------------------
# Dark
# -----------------------------------------------------------------------------

def build_master_dark(
    raw_path: Path,
    master_path: Path,
    *,
    overwrite: bool = False,
    hot_sigma: float = 8.0,
) -> Path:
    """
    Build and persist a master dark from ``raw_path``.

    A 3-D input is treated as a stack of dark frames; a 2-D input is a single
    dark whose variance is taken as its absolute level (unit gain). Mask counts
    non-finite pixels, hot pixels and, for stacks, rejected samples.
    """
    raw, header = read_frame(raw_path)
    raw = raw.astype(np.float64, copy=False)

    if raw.ndim == 3:
        master, var, rejected = robust_combine(raw)
        mask = (rejected > 0).astype(np.int16)
    elif raw.ndim == 2:
        master = raw.copy()
        var = np.abs(raw)
        mask = np.zeros(raw.shape, dtype=np.int16)
    else:
        raise ValueError(f"{raw_path}: dark input must be 2-D or 3-D; got {raw.shape}")

    bad = ~np.isfinite(master)
    mask = mask + bad.astype(np.int16)
    finite = master[~bad]
    if finite.size:
        level, spread = float(np.median(finite)), float(np.std(finite))
        if spread > 0:
            mask = mask + (np.nan_to_num(master, nan=level) > level + hot_sigma * spread).astype(np.int16)
    master = np.where(bad, 0.0, master)
    var = np.where(np.isfinite(var), var, 0.0)

    logger.info("building master dark %s from %s", master_path.name, raw_path.name)
    return _write_master(master_path, master, var, mask, _stamp_master(header, raw_path, "dark"), overwrite)


# -----------------------------------------------------------------------------
# Relative response
# -----------------------------------------------------------------------------

def build_master_response(
    raw_path: Path,
    master_path: Path,
    *,
    overwrite: bool = False,
) -> Path:
    """
    Build and persist a per-slice relative response from a flat exposure
    shaped (slice, spatial, spectral).

    The spatial axis is collapsed by nanmedian and the result divided by its
    global median, so the mean slice has unit response. Spectral WCS keywords
    (including per-slice SLORGnn origins) are carried over from the input.
    """
    raw, header = read_frame(raw_path)
    if raw.ndim != 3:
        raise ValueError(f"{raw_path}: response input must be (slice, spatial, spectral); got {raw.shape}")

    collapsed = np.nanmedian(raw.astype(np.float64, copy=False), axis=1)
    counts = np.sum(np.isfinite(raw), axis=1)
    positive = collapsed[np.isfinite(collapsed) & (collapsed > 0)]
    norm = float(np.median(positive)) if positive.size else 1.0
    response = collapsed / norm

    resid = raw / norm - response[:, None, :]
    var = np.nanmean(resid**2, axis=1) / np.maximum(counts, 1)
    mask = (~np.isfinite(response) | (response <= 0)).astype(np.int16)
    response = np.where(np.isfinite(response), response, 0.0)
    var = np.where(np.isfinite(var), var, 0.0)

    out_header = _stamp_master(header, raw_path, "response")
    out_header["RESPNORM"] = norm
    logger.info("building master response %s from %s (norm=%.6g)", master_path.name, raw_path.name, norm)
    return _write_master(master_path, response, var, mask, out_header, overwrite)
