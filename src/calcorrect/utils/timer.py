"""
calcorrect — Timer Utility
--------------------------
Monotonic wall/CPU timing for per-exposure and whole-batch reporting.

Examples
--------
from calcorrect.utils.timer import Timer

with Timer("exposure 0042", log_fn=logger.debug) as t:
    resolve_inputs()
    t.lap("resolve")
    apply_correction()
    t.lap("correct")
print(t.elapsed)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

__all__ = [
    "Timer",
    "TimerRecord",
    "format_duration",
]

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------------------
# Utilities
# --------------------------------------------------------------------------------------
def format_duration(seconds: float) -> str:
    """Humanize a duration (seconds) using adaptive units with 3 sig figs."""
    if seconds < 1e-6:
        return f"{seconds*1e9:.3g} ns"
    if seconds < 1e-3:
        return f"{seconds*1e6:.3g} μs"
    if seconds < 1.0:
        return f"{seconds*1e3:.3g} ms"
    mins, sec = divmod(seconds, 60.0)
    if mins < 1:
        return f"{sec:.3g} s"
    hrs, mins = divmod(int(mins), 60)
    if hrs < 24:
        return f"{hrs:d}h {mins:d}m {sec:0.3f}s"
    days, hrs = divmod(hrs, 24)
    return f"{days:d}d {hrs:d}h {mins:d}m {sec:0.3f}s"


def _now_wall_ns() -> int:
    return time.perf_counter_ns()


def _now_cpu_ns() -> int:
    return time.process_time_ns()


# --------------------------------------------------------------------------------------
# Data structures
# --------------------------------------------------------------------------------------
@dataclass
class Lap:
    name: str
    t_ns: int


@dataclass
class TimerRecord:
    label: str
    start_ns: int
    end_ns: int
    cpu_start_ns: int
    cpu_end_ns: int
    laps: List[Lap] = field(default_factory=list)
    ok: bool = True
    error: Optional[str] = None

    @property
    def wall_seconds(self) -> float:
        return max(0.0, (self.end_ns - self.start_ns) / 1e9)

    @property
    def cpu_seconds(self) -> float:
        return max(0.0, (self.cpu_end_ns - self.cpu_start_ns) / 1e9)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "ok": self.ok,
            "error": self.error,
            "wall_s": self.wall_seconds,
            "cpu_s": self.cpu_seconds,
            "laps": [{"name": l.name, "t_s": (l.t_ns - self.start_ns) / 1e9} for l in self.laps],
        }


# --------------------------------------------------------------------------------------
# Timer
# --------------------------------------------------------------------------------------
LogFn = Optional[Callable[[str], None]]


class Timer:
    """Context manager for timing a block and recording named laps.

    Parameters
    ----------
    label : str
        A friendly label for logs.
    log_fn : Callable[[str], None] | None
        Custom sink. Defaults to ``logger.debug``.
    """

    def __init__(self, label: str = "", *, log_fn: LogFn = None) -> None:
        self.label = label or "timer"
        self._log: Callable[[str], None] = log_fn or logger.debug
        self._start_ns: Optional[int] = None
        self._end_ns: Optional[int] = None
        self._cpu_start_ns: int = 0
        self._laps: List[Lap] = []
        self._exc: Optional[BaseException] = None
        self.record: Optional[TimerRecord] = None

    # ---- lifecycle ---------------------------------------------------------
    def __enter__(self) -> "Timer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._exc = exc
        self.stop()
        return None

    # ---- core API ----------------------------------------------------------
    def start(self) -> None:
        self._start_ns = _now_wall_ns()
        self._cpu_start_ns = _now_cpu_ns()
        self._log(f"[Timer] {self.label} started")

    def lap(self, name: str) -> None:
        if self._start_ns is None:
            raise RuntimeError("Timer.lap() called before start")
        l = Lap(name=name, t_ns=_now_wall_ns())
        self._laps.append(l)
        self._log(f"[Timer] {self.label} lap '{name}' at {format_duration((l.t_ns - self._start_ns) / 1e9)}")

    def stop(self) -> TimerRecord:
        if self._start_ns is None:
            raise RuntimeError("Timer.stop() called before start")
        self._end_ns = _now_wall_ns()
        rec = TimerRecord(
            label=self.label,
            start_ns=self._start_ns,
            end_ns=self._end_ns,
            cpu_start_ns=self._cpu_start_ns,
            cpu_end_ns=_now_cpu_ns(),
            laps=self._laps[:],
            ok=self._exc is None,
            error=None if self._exc is None else f"{type(self._exc).__name__}: {self._exc}",
        )
        status = "finished" if rec.ok else "failed"
        self._log(
            f"[Timer] {self.label}: {len(self._laps)} laps, {status} in "
            f"{format_duration(rec.wall_seconds)} (wall), {format_duration(rec.cpu_seconds)} (cpu)"
        )
        self.record = rec
        return rec

    # ---- properties --------------------------------------------------------
    @property
    def elapsed(self) -> Optional[float]:
        """Elapsed wall-clock seconds so far (None if not started)."""
        if self._start_ns is None:
            return None
        end = _now_wall_ns() if self._end_ns is None else self._end_ns
        return (end - self._start_ns) / 1e9
