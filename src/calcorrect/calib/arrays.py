# src/calcorrect/calib/arrays.py
# =============================================================================
# calcorrect — Array bundles & provenance
# -----------------------------------------------------------------------------
# ArraySet keeps signal, variance, mask and auxiliary (nod-and-shuffle sky /
# object) arrays together. Corrections go through ArraySet.transform so that a
# signal transform always reaches every auxiliary array as well.
#
# ProvenanceStamp is the history record written into every output header.
# =============================================================================

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import numpy as np

__all__ = [
    "PLACEHOLDER_MARK",
    "ArraySet",
    "ProvenanceStamp",
    "CorrectionResult",
    "placeholder_like",
]

# Value of the single nonzero element in a synthesized variance/mask array.
PLACEHOLDER_MARK = 1

ArrayFn = Callable[[np.ndarray], np.ndarray]


def placeholder_like(signal: np.ndarray, dtype: Any) -> np.ndarray:
    """Zeros shaped like ``signal`` with one nonzero element at the first pixel."""
    out = np.zeros(signal.shape, dtype=dtype)
    if out.size:
        out.flat[0] = PLACEHOLDER_MARK
    return out


@dataclass(frozen=True)
class ArraySet:
    signal: np.ndarray
    variance: np.ndarray
    mask: np.ndarray
    auxiliary: Dict[str, np.ndarray] = field(default_factory=dict)

    def __post_init__(self) -> None:
        shape = self.signal.shape
        if self.variance.shape != shape:
            raise ValueError(f"variance shape {self.variance.shape} != signal shape {shape}")
        if self.mask.shape != shape:
            raise ValueError(f"mask shape {self.mask.shape} != signal shape {shape}")
        for name, arr in self.auxiliary.items():
            if arr.shape != shape:
                raise ValueError(f"auxiliary {name!r} shape {arr.shape} != signal shape {shape}")

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.signal.shape

    def transform(
        self,
        signal_fn: ArrayFn,
        *,
        variance_fn: Optional[ArrayFn] = None,
        mask_fn: Optional[ArrayFn] = None,
    ) -> "ArraySet":
        """
        Return a new ArraySet with ``signal_fn`` applied to the signal and to
        every auxiliary array, ``variance_fn`` to the variance and ``mask_fn``
        to the mask. Omitted transforms pass a copy through.
        """
        return ArraySet(
            signal=signal_fn(self.signal),
            variance=variance_fn(self.variance) if variance_fn else self.variance.copy(),
            mask=mask_fn(self.mask) if mask_fn else self.mask.copy(),
            auxiliary={name: signal_fn(arr) for name, arr in self.auxiliary.items()},
        )


@dataclass(frozen=True)
class ProvenanceStamp:
    """
    Header record of one applied correction.

    keyword         : flag prefix, e.g. "DARK" → DARKCORR / DARKFILE / DARKSRC
    applied         : correction-applied flag
    calibration_file: master product path used
    source_frame    : identifier of the raw frame the master was built from
    stage           : stage label used in the HISTORY line
    """
    keyword: str
    applied: bool
    calibration_file: str
    source_frame: str
    stage: str
    run_time: str = field(default_factory=lambda: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S"))

    @property
    def history(self) -> str:
        return f"calcorrect {self.stage}: applied {self.run_time} UTC"

    def cards(self) -> Dict[str, Any]:
        k = self.keyword
        return {
            f"{k}CORR": self.applied,
            f"{k}FILE": os.path.basename(self.calibration_file),
            f"{k}SRC": self.source_frame,
        }

    def apply(self, header: Any) -> Any:
        """Write the stamp into a FITS header (or any mutable mapping) in place."""
        for key, value in self.cards().items():
            header[key] = value
        if hasattr(header, "add_history"):
            header.add_history(self.history)
        else:
            header.setdefault("HISTORY", []).append(self.history)
        return header


@dataclass
class CorrectionResult:
    arrays: ArraySet
    stamp: ProvenanceStamp
    info: Mapping[str, Any] = field(default_factory=dict)
