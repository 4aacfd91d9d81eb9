from __future__ import annotations

"""
calcorrect — Pipeline
=====================

Filesystem-facing layer on top of ``calcorrect.calib``:

- cache     → MasterCalibrationCache (resolve calibration id → master product)
- exposure  → ExposureProcessor (one exposure, terminal outcome state)
- runner    → BatchRunner, BatchReport, association helpers, build_runner

Usage
-----
>>> from calcorrect.config import load_config
>>> from calcorrect.pipeline import build_runner, associations_from_lists
>>> runner = build_runner(load_config("configs/dark.yaml"))
>>> report = runner.run(associations_from_lists([12, 13], [3, -1]))
"""

from .cache import MasterCalibrationCache, MasterProduct
from .exposure import (
    NO_CALIBRATION,
    ExposureOutcome,
    ExposureProcessor,
    ExposureRecord,
    ExposureState,
    normalize_calibration_id,
)
from .runner import (
    BatchReport,
    BatchRunner,
    associations_from_lists,
    build_runner,
    records_from_table,
)

__all__ = [
    "MasterCalibrationCache",
    "MasterProduct",
    "NO_CALIBRATION",
    "ExposureOutcome",
    "ExposureProcessor",
    "ExposureRecord",
    "ExposureState",
    "normalize_calibration_id",
    "BatchReport",
    "BatchRunner",
    "associations_from_lists",
    "build_runner",
    "records_from_table",
]
