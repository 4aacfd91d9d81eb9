# src/calcorrect/pipeline/cache.py
# =============================================================================
# calcorrect — Master calibration cache
# -----------------------------------------------------------------------------
# resolve(calibration_id) → MasterProduct | None
#
#   None id                → None (no calibration for this exposure)
#   master file on disk    → load it (plus _var / _mask side files if present)
#   otherwise              → find the raw calibration input (most-processed
#                            stage first), run the builder, load the result
#   no raw input           → None, with a warning
#
# Presence of the master file is the only cache key: no staleness check and no
# lock. Two runs building the same id concurrently will both write it; each
# file is published by rename, so readers see a complete file either way.
# Within one process every id is resolved at most once (in-memory memo).
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import numpy as np
from astropy.io import fits

from ..calib.build import MASK_SUFFIX, VARIANCE_SUFFIX, MasterBuilder
from ..calib.dark import DarkFrame
from ..calib.grid import slice_grids
from ..calib.response import ResponseFrame
from ..utils.io import ProductNaming, first_existing, read_frame, side_path

__all__ = ["MasterProduct", "MasterCalibrationCache"]

logger = logging.getLogger(__name__)


@dataclass
class MasterProduct:
    calibration_id: int
    kind: str
    path: Path
    data: np.ndarray
    header: fits.Header
    variance: Optional[np.ndarray] = None
    mask: Optional[np.ndarray] = None
    built: bool = False

    @property
    def source_frame(self) -> str:
        return str(self.header.get("SRCFRAME", self.path.name))

    @property
    def built_at(self) -> Optional[str]:
        value = self.header.get("DATE")
        return str(value) if value is not None else None

    @property
    def exposure_time(self) -> Optional[float]:
        value = self.header.get("EXPTIME")
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    def as_dark(self) -> DarkFrame:
        return DarkFrame(
            data=self.data,
            variance=self.variance,
            mask=self.mask,
            exposure_time=self.exposure_time,
            path=str(self.path),
            source_frame=self.source_frame,
        )

    def as_response(self, n_slices: int) -> ResponseFrame:
        return ResponseFrame(
            data=self.data,
            grids=slice_grids(self.header, n_slices, self.data.shape[-1]),
            path=str(self.path),
            source_frame=self.source_frame,
        )


@dataclass
class MasterCalibrationCache:
    """
    Resolve calibration ids to master products, building them on first use.

    builder is called as ``builder(raw_path, master_path, overwrite=True)`` and
    must leave the master and its side files on disk.
    """
    naming: ProductNaming
    master_dir: Path
    calib_dir: Path
    kind: str
    calib_stages: Sequence[str]
    builder: MasterBuilder
    built: int = 0
    reused: int = 0
    unavailable: int = 0
    _memo: Dict[int, Optional[MasterProduct]] = field(default_factory=dict, repr=False)

    def master_path(self, calibration_id: int) -> Path:
        return Path(self.master_dir) / self.naming.master_name(self.kind, calibration_id)

    def resolve(self, calibration_id: Optional[int]) -> Optional[MasterProduct]:
        if calibration_id is None:
            return None
        if calibration_id in self._memo:
            return self._memo[calibration_id]
        product = self._resolve_uncached(calibration_id)
        self._memo[calibration_id] = product
        return product

    def _resolve_uncached(self, calibration_id: int) -> Optional[MasterProduct]:
        path = self.master_path(calibration_id)
        if path.exists():
            logger.debug("reusing master %s", path.name)
            product = self._load_or_none(calibration_id, path, built=False)
            if product is not None:
                self.reused += 1
            return product

        raw = first_existing(self.naming.candidates(self.calib_dir, calibration_id, self.calib_stages))
        if raw is None:
            logger.warning(
                "no raw calibration input for %s %d in %s (tried stages %s); correction skipped",
                self.kind,
                calibration_id,
                self.calib_dir,
                list(self.calib_stages),
            )
            self.unavailable += 1
            return None

        try:
            self.builder(raw, path, overwrite=True)
        except (OSError, ValueError) as e:
            logger.error("building master %s from %s failed: %s", path.name, raw.name, e)
            self.unavailable += 1
            return None
        product = self._load_or_none(calibration_id, path, built=True)
        if product is not None:
            self.built += 1
        return product

    def _load_or_none(self, calibration_id: int, path: Path, *, built: bool) -> Optional[MasterProduct]:
        try:
            return self._load(calibration_id, path, built=built)
        except (OSError, ValueError) as e:
            logger.warning("master %s is unreadable (%s); correction skipped", path.name, e)
            self.unavailable += 1
            return None

    def _load(self, calibration_id: int, path: Path, *, built: bool) -> MasterProduct:
        data, header = read_frame(path)
        return MasterProduct(
            calibration_id=calibration_id,
            kind=self.kind,
            path=path,
            data=data,
            header=header,
            variance=self._load_side(path, VARIANCE_SUFFIX),
            mask=self._load_side(path, MASK_SUFFIX),
            built=built,
        )

    @staticmethod
    def _load_side(path: Path, suffix: str) -> Optional[np.ndarray]:
        side = side_path(path, suffix)
        if not side.exists():
            logger.debug("master side file %s not found", side.name)
            return None
        data, _ = read_frame(side)
        return data

    def stats(self) -> Dict[str, Any]:
        return {"built": self.built, "reused": self.reused, "unavailable": self.unavailable}
