# src/calcorrect/pipeline/exposure.py
# =============================================================================
# calcorrect — Per-exposure processing
# -----------------------------------------------------------------------------
# PENDING → SKIPPED_NO_INPUT | SKIPPED_EXISTS | SKIPPED_NO_CAL
#         | SKIPPED_BAD_GRID | SKIPPED_WRITE_FAILED | CORRECTED  (all terminal)
#
#   1. primary input: first existing input stage (most-processed first)
#   2. any output of the set already present without clobber → skip
#   3. variance / mask side files, or placeholders with a warning
#   4. auxiliary arrays that exist (sky / object sub-exposures)
#   5. master product from the cache; none → skip
#   6. dark subtraction or relative-response division
#   7. provenance stamp on every output header; side and auxiliary outputs
#      first, the primary signal last (its presence marks a complete set)
#
# Every skip is an outcome with a reason string, never an exception.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from astropy.io import fits

from ..calib.arrays import ArraySet, CorrectionResult, placeholder_like
from ..calib.build import MASK_SUFFIX, VARIANCE_SUFFIX
from ..calib.dark import apply_dark
from ..calib.grid import slice_grids
from ..calib.response import apply_response
from ..config import CorrectionConfig, RunPaths
from ..errors import CorrectionError
from ..utils.io import ProductNaming, read_frame, write_frame
from ..utils.timer import Timer
from .cache import MasterCalibrationCache, MasterProduct

__all__ = [
    "NO_CALIBRATION",
    "ExposureState",
    "ExposureRecord",
    "ExposureOutcome",
    "ExposureProcessor",
    "normalize_calibration_id",
]

logger = logging.getLogger(__name__)

NO_CALIBRATION: Optional[int] = None


def normalize_calibration_id(value: Any) -> Optional[int]:
    """Map missing and negative (legacy "none") calibration ids to NO_CALIBRATION."""
    if value is None:
        return NO_CALIBRATION
    ident = int(value)
    return NO_CALIBRATION if ident < 0 else ident


class ExposureState(str, Enum):
    PENDING = "pending"
    SKIPPED_NO_INPUT = "skipped_no_input"
    SKIPPED_EXISTS = "skipped_exists"
    SKIPPED_NO_CAL = "skipped_no_cal"
    SKIPPED_BAD_GRID = "skipped_bad_grid"
    SKIPPED_WRITE_FAILED = "skipped_write_failed"
    CORRECTED = "corrected"

    @property
    def skipped(self) -> bool:
        return self.value.startswith("skipped")


@dataclass(frozen=True)
class ExposureRecord:
    exposure_id: int
    calibration_id: Optional[int] = NO_CALIBRATION
    variants: Tuple[str, ...] = ()          # empty → configured input stages
    exposure_time: Optional[float] = None   # None → EXPTIME of the input header


@dataclass
class ExposureOutcome:
    exposure_id: int
    state: ExposureState
    reason: str = ""
    input_path: Optional[str] = None
    outputs: List[str] = field(default_factory=list)
    info: Dict[str, Any] = field(default_factory=dict)
    elapsed_s: float = 0.0
    arrays: Optional[ArraySet] = field(default=None, repr=False)
    header: Optional[fits.Header] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exposure_id": self.exposure_id,
            "state": self.state.value,
            "reason": self.reason,
            "input_path": self.input_path,
            "outputs": list(self.outputs),
            "info": dict(self.info),
            "elapsed_s": self.elapsed_s,
        }


@dataclass
class _Loaded:
    arrays: ArraySet
    header: fits.Header
    side_headers: Dict[str, fits.Header]


def _header_float(header: fits.Header, key: str) -> Optional[float]:
    value = header.get(key)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class ExposureProcessor:
    """Runs one exposure through the correction state machine."""

    def __init__(
        self,
        cfg: CorrectionConfig,
        paths: RunPaths,
        cache: MasterCalibrationCache,
        naming: Optional[ProductNaming] = None,
    ) -> None:
        self.cfg = cfg
        self.paths = paths
        self.cache = cache
        self.naming = naming or ProductNaming(cfg.naming.prefix, cfg.naming.width)
        self.output_stage = cfg.resolved_output_stage

    # ---- paths ----------------------------------------------------------------

    def output_path(self, exposure_id: int, product: str = "") -> Path:
        return self.naming.path(self.paths.out_dir, exposure_id, stage=self.output_stage, product=product)

    def _find_input(self, record: ExposureRecord) -> Tuple[Optional[Path], str, List[str]]:
        stages = list(record.variants or self.cfg.input_stages)
        for stage in stages:
            candidate = self.naming.path(self.paths.data_dir, record.exposure_id, stage=stage)
            if candidate.exists():
                return candidate, stage, stages
        return None, "", stages

    # ---- main entry -----------------------------------------------------------

    def process(self, record: ExposureRecord) -> ExposureOutcome:
        with Timer(f"exposure {record.exposure_id}", log_fn=logger.debug) as timer:
            outcome = self._process(record, timer)
        outcome.elapsed_s = timer.elapsed or 0.0
        if timer.record is not None:
            outcome.info["timing"] = timer.record.to_dict()
        if outcome.state.skipped:
            logger.warning("exposure %d skipped (%s): %s", record.exposure_id, outcome.state.value, outcome.reason)
        else:
            logger.info("exposure %d corrected → %s", record.exposure_id, outcome.outputs[0])
        return outcome

    def _process(self, record: ExposureRecord, timer: Timer) -> ExposureOutcome:
        eid = record.exposure_id
        input_path, stage, stages = self._find_input(record)
        if input_path is None:
            return ExposureOutcome(
                eid,
                ExposureState.SKIPPED_NO_INPUT,
                reason=f"no input file for stages {stages} in {self.paths.data_dir}",
            )

        existing = [] if self.cfg.clobber else [o for o in self._planned_outputs(eid, stage) if o.exists()]
        if existing:
            return ExposureOutcome(
                eid,
                ExposureState.SKIPPED_EXISTS,
                reason=f"output {existing[0].name} exists and clobber is off",
                input_path=str(input_path),
            )

        try:
            loaded = self._load(eid, input_path, stage)
        except (OSError, ValueError) as e:
            return ExposureOutcome(
                eid,
                ExposureState.SKIPPED_NO_INPUT,
                reason=f"unreadable input {input_path.name}: {e}",
                input_path=str(input_path),
            )
        timer.lap("load")

        product = self.cache.resolve(record.calibration_id)
        if product is None:
            if record.calibration_id is NO_CALIBRATION:
                reason = "no calibration associated with this exposure"
            else:
                reason = f"calibration {record.calibration_id} unavailable"
            return ExposureOutcome(
                eid,
                ExposureState.SKIPPED_NO_CAL,
                reason=reason,
                input_path=str(input_path),
                arrays=loaded.arrays,
                header=loaded.header,
            )
        timer.lap("resolve")

        try:
            result = self._correct(record, loaded, product)
        except CorrectionError as e:
            return ExposureOutcome(
                eid,
                ExposureState.SKIPPED_BAD_GRID,
                reason=str(e),
                input_path=str(input_path),
            )
        timer.lap("correct")

        try:
            outputs, header = self._write(eid, loaded, result)
        except FileExistsError as e:
            return ExposureOutcome(eid, ExposureState.SKIPPED_EXISTS, reason=str(e), input_path=str(input_path))
        except OSError as e:
            return ExposureOutcome(
                eid,
                ExposureState.SKIPPED_WRITE_FAILED,
                reason=f"writing outputs failed: {e}",
                input_path=str(input_path),
            )
        timer.lap("write")
        info = {k: v for k, v in result.info.items() if k != "overlaps"}
        info["calibration_file"] = result.stamp.calibration_file
        info["master_built"] = product.built
        return ExposureOutcome(
            eid,
            ExposureState.CORRECTED,
            input_path=str(input_path),
            outputs=[str(o) for o in outputs],
            info=info,
            arrays=result.arrays,
            header=header,
        )

    # ---- steps ----------------------------------------------------------------

    def _load(self, eid: int, input_path: Path, stage: str) -> _Loaded:
        signal, header = read_frame(input_path)
        side_headers: Dict[str, fits.Header] = {}

        def _side(product: str, dtype: Any) -> np.ndarray:
            path = self.naming.path(self.paths.data_dir, eid, stage=stage, product=product)
            if not path.exists():
                logger.warning("exposure %d: %s missing, using placeholder", eid, path.name)
                return placeholder_like(signal, dtype)
            data, hdr = read_frame(path)
            side_headers[product] = hdr
            return data

        variance = _side(VARIANCE_SUFFIX, np.float32)
        mask = _side(MASK_SUFFIX, np.int16)

        auxiliary: Dict[str, np.ndarray] = {}
        for product in self.cfg.auxiliary:
            path = self.naming.path(self.paths.data_dir, eid, stage=stage, product=product)
            if path.exists():
                data, hdr = read_frame(path)
                auxiliary[product] = data
                side_headers[product] = hdr

        arrays = ArraySet(signal=signal, variance=variance, mask=mask, auxiliary=auxiliary)
        return _Loaded(arrays=arrays, header=header, side_headers=side_headers)

    def _correct(self, record: ExposureRecord, loaded: _Loaded, product: MasterProduct) -> CorrectionResult:
        arrays = loaded.arrays
        if self.cfg.mode == "dark":
            science_time = record.exposure_time
            if science_time is None:
                science_time = _header_float(loaded.header, "EXPTIME")
            return apply_dark(arrays, product.as_dark(), science_time=science_time)

        if arrays.signal.ndim != 3:
            raise CorrectionError(f"response correction needs a 3-D cube; got shape {arrays.shape}")
        n_slices = arrays.shape[0]
        if n_slices != self.cfg.n_slices:
            raise CorrectionError(f"cube has {n_slices} slices; configured for {self.cfg.n_slices}")
        grids = slice_grids(loaded.header, n_slices, arrays.shape[-1])
        return apply_response(arrays, product.as_response(n_slices), grids)

    def _planned_outputs(self, eid: int, stage: str) -> List[Path]:
        """Every output this exposure would produce, primary signal first."""
        products = ["", VARIANCE_SUFFIX, MASK_SUFFIX]
        products += [
            product
            for product in self.cfg.auxiliary
            if self.naming.path(self.paths.data_dir, eid, stage=stage, product=product).exists()
        ]
        return [self.output_path(eid, product) for product in products]

    def _write(self, eid: int, loaded: _Loaded, result: CorrectionResult) -> Tuple[List[Path], fits.Header]:
        stamp = result.stamp
        clobber = self.cfg.clobber

        def _stamped(header: Optional[fits.Header]) -> fits.Header:
            return stamp.apply((header if header is not None else loaded.header).copy())

        header = _stamped(loaded.header)
        out = result.arrays
        sides: List[Tuple[str, np.ndarray]] = [(VARIANCE_SUFFIX, out.variance), (MASK_SUFFIX, out.mask)]
        sides += list(out.auxiliary.items())

        written: List[Path] = []
        try:
            for product, data in sides:
                written.append(
                    write_frame(
                        data,
                        _stamped(loaded.side_headers.get(product)),
                        self.output_path(eid, product),
                        overwrite=clobber,
                    )
                )
            primary = write_frame(out.signal, header, self.output_path(eid), overwrite=clobber)
        except OSError:
            for path in written:
                path.unlink(missing_ok=True)
            raise
        return [primary, *written], header

