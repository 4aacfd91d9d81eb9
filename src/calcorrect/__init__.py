"""
calcorrect — calibration-correction stage for instrument data reduction.

Resolves each science exposure's master calibration product (dark frame or
per-slice relative response), builds it on demand, aligns it to the exposure's
spectral grid and applies it to signal, variance, mask and auxiliary arrays.

Public API
----------
- __version__: str         → package version from installed metadata (or fallback)
- get_version(): str       → safe accessor for the version
- get_logger(name): Logger → project-scoped logger (Rich console; idempotent)
- set_verbosity(level)     → map the run's verbosity setting onto the package logger
"""
from __future__ import annotations

import logging as _logging
import os
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from typing import Optional

from rich.logging import RichHandler

__all__ = [
    "__version__",
    "get_version",
    "get_logger",
    "set_verbosity",
    "PKG_DIST_NAME",
]

# --------------------------------------------------------------------------------------
# Package & version resolution
# --------------------------------------------------------------------------------------
# Keep this aligned with pyproject.toml [project].name
PKG_DIST_NAME = "calcorrect"


def _resolve_version() -> str:
    # 1) Installed metadata (wheel/sdist/editable)
    try:
        return _pkg_version(PKG_DIST_NAME)
    except PackageNotFoundError:
        pass
    # 2) Explicit env override
    v = os.environ.get("CALCORRECT_VERSION")
    if v:
        return v
    # 3) Last resort—keep in sync with pyproject
    return "0.3.0"


__version__ = _resolve_version()


def get_version() -> str:
    """Return the best-known package version."""
    return __version__


# --------------------------------------------------------------------------------------
# Logging (Rich console), idempotent configuration
# --------------------------------------------------------------------------------------
_LOGGER_CONFIGURED = False

_LEVELS = {
    "CRITICAL": _logging.CRITICAL,
    "ERROR": _logging.ERROR,
    "WARN": _logging.WARNING,
    "WARNING": _logging.WARNING,
    "INFO": _logging.INFO,
    "DEBUG": _logging.DEBUG,
}


def _desired_level_from_env(default: str = "INFO") -> int:
    level_str = os.environ.get("CALCORRECT_LOGLEVEL", default).upper()
    return _LEVELS.get(level_str, _logging.INFO)


def _configure_logging_once() -> None:
    """
    Configure logging exactly once.

    - If the root logger already has handlers (pytest, host application),
      only set the package level and do not add handlers.
    - Otherwise install a RichHandler on the root logger.
    - Honors env CALCORRECT_LOGLEVEL.
    """
    global _LOGGER_CONFIGURED
    if _LOGGER_CONFIGURED:
        return

    level = _desired_level_from_env()
    root = _logging.getLogger()
    pkg = _logging.getLogger("calcorrect")
    pkg.setLevel(level)
    if not root.handlers:
        handler = RichHandler(
            show_time=True,
            show_path=False,
            rich_tracebacks=False,
            markup=False,
        )
        _logging.basicConfig(level=level, format="%(message)s", handlers=[handler])
    pkg.addHandler(_logging.NullHandler())
    _LOGGER_CONFIGURED = True


def get_logger(name: Optional[str] = None) -> _logging.Logger:
    """
    Return a namespaced logger configured for calcorrect.

    Parameters
    ----------
    name : str | None
        Logger name. If None, returns the package-root logger.
    """
    _configure_logging_once()
    return _logging.getLogger(name or "calcorrect")


def set_verbosity(verbose: int) -> int:
    """
    Map a run verbosity (0 quiet, 1 normal, >=2 debug) to a logging level on the
    package logger. Returns the level applied.
    """
    _configure_logging_once()
    if verbose <= 0:
        level = _logging.WARNING
    elif verbose == 1:
        level = _logging.INFO
    else:
        level = _logging.DEBUG
    _logging.getLogger("calcorrect").setLevel(level)
    return level
