# src/calcorrect/logging/events.py
from __future__ import annotations

import json
import os
import socket
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, TextIO

__all__ = ["Event", "EventLogger", "default_events_path"]


# -----------------------------------------------------------------------------
# Utilities
# -----------------------------------------------------------------------------

def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _safe_json_dumps(obj: Any) -> str:
    """Reliable JSON encoding for arbitrary payloads (falls back to str())."""
    def _default(o: Any) -> Any:
        try:
            return asdict(o)
        except TypeError:
            return str(o)
    return json.dumps(obj, default=_default, ensure_ascii=False)


# -----------------------------------------------------------------------------
# Event model
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Event:
    """
    Structured JSONL event.

    Fields:
      ts      : ISO-8601 UTC timestamp
      level   : "DEBUG" | "INFO" | "WARN" | "ERROR"
      event   : short machine-readable key, e.g. "exposure/end"
      message : optional human-readable message
      run_id  : run correlation id
      stage   : pipeline stage, e.g. "dark" or "response"
      data    : free-form dict payload
      tags    : string tags (e.g. ["artifact"])
      pid     : process id
      host    : hostname
    """
    ts: str
    level: str
    event: str
    message: Optional[str] = None
    run_id: Optional[str] = None
    stage: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    tags: Iterable[str] = field(default_factory=list)
    pid: int = field(default_factory=os.getpid)
    host: str = field(default_factory=socket.gethostname)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return _safe_json_dumps(self.to_dict())


# -----------------------------------------------------------------------------
# Event Logger
# -----------------------------------------------------------------------------

class EventLogger:
    """
    Append-only JSONL event writer shared by every exposure of one run.

    Typical usage:
        with EventLogger.for_run(stage="dark", run_id="20261016T101500") as events:
            events.info("batch/start", data={"exposures": 12})
            ...
            events.info("batch/end", data=report.to_dict())

    Lines are flushed immediately so a crashed batch still leaves a usable trail.
    """

    def __init__(
        self,
        path: Path,
        *,
        stage: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh: TextIO = open(self.path, "a", encoding="utf-8")
        self.stage = stage
        self.run_id = run_id

    # ---- factories -----------------------------------------------------------

    @classmethod
    def for_run(
        cls,
        *,
        stage: str,
        run_id: str,
        root: Optional[Path] = None,
    ) -> "EventLogger":
        """
        Construct an EventLogger using the conventional path
        ``{root}/{stage}/{run_id}.jsonl`` (root defaults to ``logs/events``).
        """
        return cls(
            path=default_events_path(stage, run_id, root),
            stage=stage,
            run_id=run_id,
        )

    # ---- core write ----------------------------------------------------------

    def log(
        self,
        level: str,
        event: str,
        *,
        message: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Event:
        """Create and persist a structured event."""
        e = Event(
            ts=_utc_now_iso(),
            level=level.upper(),
            event=event,
            message=message,
            run_id=self.run_id,
            stage=self.stage,
            data=data or {},
            tags=list(tags or []),
        )
        line = e.to_json()
        self._fh.write(line + "\n")
        self._fh.flush()
        return e

    # ---- convenience levels --------------------------------------------------

    def info(self, event: str, **kwargs: Any) -> Event:
        return self.log("INFO", event, **kwargs)

    def warn(self, event: str, **kwargs: Any) -> Event:
        return self.log("WARN", event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> Event:
        return self.log("ERROR", event, **kwargs)

    def artifact(
        self,
        event: str,
        *,
        path: Path,
        kind: str = "file",
        description: Optional[str] = None,
        **kwargs: Any,
    ) -> Event:
        """Log a written file for lineage."""
        data = dict(kwargs.pop("data", {}) or {})
        exists = path.exists()
        data["artifact"] = {
            "path": str(path),
            "kind": kind,
            "exists": exists,
            "size": path.stat().st_size if exists and path.is_file() else None,
            "description": description,
        }
        tags = set(kwargs.pop("tags", []) or [])
        tags.add("artifact")
        return self.info(event, data=data, tags=sorted(tags), **kwargs)

    # ---- lifecycle -----------------------------------------------------------

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.flush()
            self._fh.close()

    def __enter__(self) -> "EventLogger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# -----------------------------------------------------------------------------
# Module-level helpers
# -----------------------------------------------------------------------------

def default_events_path(stage: str, run_id: str, root: Optional[Path] = None) -> Path:
    """Conventional JSONL path for events of a specific run."""
    root = Path(root) if root is not None else Path("logs") / "events"
    return root / stage / f"{run_id}.jsonl"
