# src/calcorrect/pipeline/runner.py
from __future__ import annotations

"""
Batch runner: feeds exposure records through one ExposureProcessor in order,
collects outcomes into a JSON-serializable BatchReport and always ends with a
summary, whether or not anything was corrected.

Fatal conditions (bad configuration, missing directories, mismatched
association lists) raise before the first exposure is touched.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from rich.console import Console
from rich.table import Table

from ..calib.build import MasterBuilder, build_master_dark, build_master_response
from ..config import CorrectionConfig, RunPaths, resolve_directories
from ..errors import ConfigurationError
from ..logging.events import EventLogger
from ..utils.io import ProductNaming
from ..utils.timer import Timer, format_duration
from .cache import MasterCalibrationCache
from .exposure import (
    ExposureOutcome,
    ExposureProcessor,
    ExposureRecord,
    ExposureState,
    normalize_calibration_id,
)

LOGGER = logging.getLogger("calcorrect.pipeline")

DEFAULT_BUILDERS: Dict[str, MasterBuilder] = {
    "dark": build_master_dark,
    "response": build_master_response,
}


@dataclass
class BatchReport:
    outcomes: List[ExposureOutcome] = field(default_factory=list)
    elapsed_s: float = 0.0
    masters_built: int = 0
    masters_reused: int = 0

    @property
    def counts(self) -> Dict[str, int]:
        c = Counter(o.state.value for o in self.outcomes)
        return {s.value: c.get(s.value, 0) for s in ExposureState if s is not ExposureState.PENDING}

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def corrected(self) -> int:
        return sum(1 for o in self.outcomes if o.state is ExposureState.CORRECTED)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.state.skipped)

    def summary(self) -> str:
        return (
            f"{self.attempted} exposure(s): {self.corrected} corrected, {self.skipped} skipped; "
            f"masters built={self.masters_built} reused={self.masters_reused}; "
            f"elapsed {format_duration(self.elapsed_s)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "corrected": self.corrected,
            "skipped": self.skipped,
            "counts": self.counts,
            "masters_built": self.masters_built,
            "masters_reused": self.masters_reused,
            "elapsed_s": self.elapsed_s,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def associations_from_lists(
    exposures: Sequence[int],
    calibrations: Sequence[Optional[int]],
    *,
    variants: Sequence[str] = (),
) -> List[ExposureRecord]:
    """Pair two parallel id lists. Negative calibration ids mean "none"."""
    if len(exposures) != len(calibrations):
        raise ConfigurationError(
            f"exposure and calibration lists differ in length: {len(exposures)} vs {len(calibrations)}"
        )
    return [
        ExposureRecord(
            exposure_id=int(e),
            calibration_id=normalize_calibration_id(c),
            variants=tuple(variants),
        )
        for e, c in zip(exposures, calibrations)
    ]


def records_from_table(
    pairs: Iterable[Tuple[int, Optional[int]]],
    *,
    variants: Sequence[str] = (),
) -> List[ExposureRecord]:
    return [
        ExposureRecord(exposure_id=int(e), calibration_id=normalize_calibration_id(c), variants=tuple(variants))
        for e, c in pairs
    ]


class BatchRunner:
    """Sequential batch over ExposureRecords sharing one cache and one event log."""

    def __init__(
        self,
        processor: ExposureProcessor,
        *,
        events: Optional[EventLogger] = None,
        display: int = 0,
        console: Optional[Console] = None,
    ) -> None:
        self.processor = processor
        self.events = events
        self.display = display
        self.console = console or Console()

    @property
    def cache(self) -> MasterCalibrationCache:
        return self.processor.cache

    def run(self, records: Sequence[ExposureRecord]) -> BatchReport:
        report = BatchReport()
        started = time.time()
        LOGGER.info("==> batch of %d exposure(s), mode=%s", len(records), self.processor.cfg.mode)
        if self.events is not None:
            self.events.info("batch/start", data={"exposures": len(records), "mode": self.processor.cfg.mode})

        with Timer("batch", log_fn=LOGGER.debug) as timer:
            for record in records:
                outcome = self.processor.process(record)
                report.outcomes.append(outcome)
                if self.events is not None:
                    self._emit_outcome(outcome)

        report.elapsed_s = timer.elapsed or (time.time() - started)
        report.masters_built = self.cache.built
        report.masters_reused = self.cache.reused

        LOGGER.info("batch finished: %s", report.summary())
        if self.events is not None:
            self.events.info("batch/end", message=report.summary(), data=report.to_dict())
        if self.display > 0:
            self.console.print(render_report(report))
        return report

    def _emit_outcome(self, outcome: ExposureOutcome) -> None:
        message = outcome.reason or None
        if outcome.state is ExposureState.SKIPPED_WRITE_FAILED:
            self.events.error("exposure/end", message=message, data=outcome.to_dict())
        elif outcome.state.skipped:
            self.events.warn("exposure/end", message=message, data=outcome.to_dict())
        else:
            self.events.info("exposure/end", data=outcome.to_dict())
        for out in outcome.outputs:
            self.events.artifact(
                "exposure/output",
                path=Path(out),
                kind="fits",
                data={"exposure_id": outcome.exposure_id},
            )


def render_report(report: BatchReport) -> Table:
    table = Table(title="calcorrect batch", show_lines=False)
    table.add_column("exposure", justify="right")
    table.add_column("state")
    table.add_column("time", justify="right")
    table.add_column("detail")
    for o in report.outcomes:
        style = "green" if o.state is ExposureState.CORRECTED else "yellow"
        detail = o.reason if o.state.skipped else (o.outputs[0] if o.outputs else "")
        table.add_row(str(o.exposure_id), f"[{style}]{o.state.value}[/{style}]", format_duration(o.elapsed_s), detail)
    table.caption = report.summary()
    return table


def build_runner(
    cfg: CorrectionConfig,
    *,
    paths: Optional[RunPaths] = None,
    builder: Optional[MasterBuilder] = None,
    events: Optional[EventLogger] = None,
    console: Optional[Console] = None,
) -> BatchRunner:
    """
    Assemble cache, processor and runner for ``cfg``.

    Directories are resolved (and validated) unless ``paths`` is given; the
    default builder for the configured mode is used unless ``builder`` is given.
    """
    if paths is None:
        paths = resolve_directories(cfg)
    naming = ProductNaming(prefix=cfg.naming.prefix, width=cfg.naming.width)
    cache = MasterCalibrationCache(
        naming=naming,
        master_dir=paths.master_dir,
        calib_dir=paths.calib_dir,
        kind=cfg.master_kind,
        calib_stages=list(cfg.calib_stages),
        builder=builder or DEFAULT_BUILDERS[cfg.mode],
    )
    processor = ExposureProcessor(cfg, paths, cache, naming)
    return BatchRunner(processor, events=events, display=cfg.display, console=console)
