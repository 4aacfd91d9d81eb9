# src/calcorrect/config.py
# =============================================================================
# calcorrect — Run configuration
# -----------------------------------------------------------------------------
# Structured OmegaConf config with three layers, later layers winning:
#
#   defaults (dataclasses below) → optional YAML file → dotlist overrides
#
#   cfg = load_config("configs/dark.yaml", ["clobber=true", "paths.out_dir=/tmp/out"])
#   paths = resolve_directories(cfg)
#
# The core only reads the config; nothing downstream mutates it.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union

from omegaconf import OmegaConf
from omegaconf.errors import OmegaConfBaseException

from .errors import ConfigurationError, DirectoryError
from .utils.io import ensure_dir, p

__all__ = [
    "MODES",
    "PathsConfig",
    "NamingConfig",
    "CorrectionConfig",
    "RunPaths",
    "load_config",
    "resolve_directories",
]

# mode → (master kind used in master file names, default output stage suffix)
MODES = {
    "dark": ("dark", "_dk"),
    "response": ("resp", "_rr"),
}


@dataclass
class PathsConfig:
    data_dir: str = "data/reduced"     # science exposures and their side products
    calib_dir: str = "data/raw"        # raw calibration inputs for the master builder
    master_dir: str = "data/masters"   # persisted master products (the cache)
    out_dir: str = "data/corrected"
    events_dir: str = "logs/events"


@dataclass
class NamingConfig:
    prefix: str = "frame"
    width: int = 4


@dataclass
class CorrectionConfig:
    mode: str = "dark"
    paths: PathsConfig = field(default_factory=PathsConfig)
    naming: NamingConfig = field(default_factory=NamingConfig)
    # most-processed first, raw frame last
    input_stages: List[str] = field(default_factory=lambda: ["_cr", "_ov", ""])
    calib_stages: List[str] = field(default_factory=lambda: ["_cr", "_ov", ""])
    output_stage: Optional[str] = None
    auxiliary: List[str] = field(default_factory=lambda: ["_sky", "_obj"])
    n_slices: int = 24
    clobber: bool = False
    verbose: int = 1
    display: int = 0
    events: bool = True

    @property
    def master_kind(self) -> str:
        return MODES[self.mode][0]

    @property
    def resolved_output_stage(self) -> str:
        return self.output_stage if self.output_stage is not None else MODES[self.mode][1]


@dataclass(frozen=True)
class RunPaths:
    data_dir: Path
    calib_dir: Path
    master_dir: Path
    out_dir: Path
    events_dir: Path


def load_config(
    path: Optional[Union[str, Path]] = None,
    overrides: Iterable[str] = (),
) -> CorrectionConfig:
    """
    Compose and validate a run configuration.

    Raises ConfigurationError for unreadable files, unknown keys, type
    mismatches and invalid values.
    """
    try:
        cfg = OmegaConf.structured(CorrectionConfig)
        if path is not None:
            src = p(path)
            if not src.exists():
                raise ConfigurationError(f"config file not found: {src}")
            cfg = OmegaConf.merge(cfg, OmegaConf.load(src))
        dotlist = [str(o).strip() for o in overrides if str(o).strip()]
        if dotlist:
            cfg = OmegaConf.merge(cfg, OmegaConf.from_dotlist(dotlist))
        obj = OmegaConf.to_object(cfg)
    except OmegaConfBaseException as e:
        raise ConfigurationError(f"invalid configuration: {e}") from e

    _validate(obj)
    return obj  # type: ignore[return-value]


def _validate(cfg: CorrectionConfig) -> None:
    problems: List[str] = []
    if cfg.mode not in MODES:
        problems.append(f"mode must be one of {sorted(MODES)}; got {cfg.mode!r}")
    if not cfg.input_stages:
        problems.append("input_stages must list at least one stage suffix")
    if not cfg.calib_stages:
        problems.append("calib_stages must list at least one stage suffix")
    if cfg.n_slices < 1:
        problems.append(f"n_slices must be >= 1; got {cfg.n_slices}")
    if cfg.naming.width < 1:
        problems.append(f"naming.width must be >= 1; got {cfg.naming.width}")
    if cfg.output_stage is not None and cfg.output_stage in cfg.input_stages:
        problems.append(f"output_stage {cfg.output_stage!r} collides with an input stage")
    if problems:
        raise ConfigurationError("; ".join(problems))


def resolve_directories(cfg: CorrectionConfig) -> RunPaths:
    """
    Resolve run directories. Input directories must exist; master, output and
    event directories are created.
    """
    data_dir = p(cfg.paths.data_dir)
    calib_dir = p(cfg.paths.calib_dir)
    for label, d in (("data_dir", data_dir), ("calib_dir", calib_dir)):
        if not d.is_dir():
            raise DirectoryError(f"{label} does not exist or is not a directory: {d}")
    try:
        master_dir = ensure_dir(cfg.paths.master_dir)
        out_dir = ensure_dir(cfg.paths.out_dir)
        events_dir = ensure_dir(cfg.paths.events_dir)
    except OSError as e:
        raise DirectoryError(f"cannot create output directories: {e}") from e
    return RunPaths(
        data_dir=data_dir,
        calib_dir=calib_dir,
        master_dir=master_dir,
        out_dir=out_dir,
        events_dir=events_dir,
    )
