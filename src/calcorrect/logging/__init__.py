"""
calcorrect — Logging Package
============================

Structured JSONL run events next to the Rich console logger returned by
``calcorrect.get_logger``.
"""

from __future__ import annotations

from .events import Event, EventLogger, default_events_path

__all__ = [
    "Event",
    "EventLogger",
    "default_events_path",
]
