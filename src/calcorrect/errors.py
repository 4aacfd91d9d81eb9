"""Exception hierarchy shared by the correction stage."""
from __future__ import annotations

__all__ = [
    "CalCorrectError",
    "ConfigurationError",
    "DirectoryError",
    "CorrectionError",
    "AlignmentError",
]


class CalCorrectError(RuntimeError):
    """Fatal, run-aborting failure."""


class ConfigurationError(CalCorrectError):
    """Invalid or inconsistent run configuration."""


class DirectoryError(CalCorrectError):
    """A required input directory could not be resolved."""


class CorrectionError(ValueError):
    """A correction could not be applied to one exposure (recoverable)."""


class AlignmentError(CorrectionError):
    """Two sampling grids are incompatible or do not overlap."""
