# tests/conftest.py
# =============================================================================
# calcorrect — Test Bootstrap (pytest)
# -----------------------------------------------------------------------------
# Goals
#   • Deterministic tests (seeded numpy RNG, hash seed, thread caps)
#   • Safe tmp workdirs (no accidental writes into the repo)
#   • On-disk FITS factories for exposures, side files and raw calibrations
#   • Run configurations pointing at the per-test directory tree
#   • CLI runner for the `calcorrect` Typer app
#
# Usage
#   pytest -q
#   pytest -q -m "not integration"
# =============================================================================

from __future__ import annotations

import os
import random
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

import numpy as np
import pytest
from astropy.io import fits

from calcorrect.config import CorrectionConfig, load_config, resolve_directories


def _pin_threads() -> None:
    os.environ.setdefault("OMP_NUM_THREADS", "1")
    os.environ.setdefault("MKL_NUM_THREADS", "1")
    os.environ.setdefault("OPENBLAS_NUM_THREADS", "1")


_pin_threads()


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────
def write_fits(path: Path, data: np.ndarray, cards: Optional[Mapping[str, object]] = None) -> Path:
    """Write ``data`` (primary HDU) with extra header cards; parents are created."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    header = fits.Header()
    for key, value in (cards or {}).items():
        header[key] = value
    fits.PrimaryHDU(data=np.asarray(data), header=header).writeto(path, overwrite=True)
    return path


def spectral_cards(origin: float, step: float = 1.0) -> Dict[str, object]:
    return {"CRVAL1": origin, "CDELT1": step, "CRPIX1": 1.0}


# ──────────────────────────────────────────────────────────────────────────────
# Function-scoped fixtures
# ──────────────────────────────────────────────────────────────────────────────
@pytest.fixture
def rng_seed() -> int:
    return int(os.environ.get("CALCORRECT_TEST_SEED", "1337"))


@pytest.fixture(autouse=True)
def seeded(rng_seed: int) -> None:
    random.seed(rng_seed)
    np.random.seed(rng_seed)
    os.environ["PYTHONHASHSEED"] = str(rng_seed)


@pytest.fixture
def rng(rng_seed: int) -> np.random.Generator:
    return np.random.default_rng(rng_seed)


@pytest.fixture
def tmp_workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Per-test isolated working directory (chdir'd) with the default data layout."""
    monkeypatch.chdir(tmp_path)
    for d in ["data/reduced", "data/raw", "logs"]:
        (tmp_path / d).mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture
def run_dirs(tmp_workdir: Path) -> Dict[str, Path]:
    return {
        "data": tmp_workdir / "data" / "reduced",
        "calib": tmp_workdir / "data" / "raw",
        "masters": tmp_workdir / "data" / "masters",
        "out": tmp_workdir / "data" / "corrected",
        "events": tmp_workdir / "logs" / "events",
    }


@pytest.fixture
def make_config(run_dirs: Dict[str, Path]) -> Callable[..., CorrectionConfig]:
    """
    Build a validated CorrectionConfig rooted in the per-test tree.

        cfg = make_config("response", "n_slices=2", "clobber=true")
    """
    def _make(mode: str = "dark", *overrides: str) -> CorrectionConfig:
        base = [
            f"mode={mode}",
            f"paths.data_dir={run_dirs['data']}",
            f"paths.calib_dir={run_dirs['calib']}",
            f"paths.master_dir={run_dirs['masters']}",
            f"paths.out_dir={run_dirs['out']}",
            f"paths.events_dir={run_dirs['events']}",
        ]
        return load_config(None, [*base, *overrides])

    return _make


@pytest.fixture
def run_paths(make_config):
    return resolve_directories(make_config())


@pytest.fixture
def make_exposure(run_dirs: Dict[str, Path]) -> Callable[..., Path]:
    """
    Write a science exposure (and optional side products) into the data dir.

        make_exposure(12, signal, stage="_cr", variance=var, auxiliary={"_sky": sky},
                      cards={"EXPTIME": 100.0})
    """
    def _make(
        exposure_id: int,
        signal: np.ndarray,
        *,
        stage: str = "",
        variance: Optional[np.ndarray] = None,
        mask: Optional[np.ndarray] = None,
        auxiliary: Optional[Mapping[str, np.ndarray]] = None,
        cards: Optional[Mapping[str, object]] = None,
        prefix: str = "frame",
    ) -> Path:
        stem = f"{prefix}{exposure_id:04d}{stage}"
        path = write_fits(run_dirs["data"] / f"{stem}.fits", signal, cards)
        if variance is not None:
            write_fits(run_dirs["data"] / f"{stem}_var.fits", variance, cards)
        if mask is not None:
            write_fits(run_dirs["data"] / f"{stem}_mask.fits", mask, cards)
        for product, data in (auxiliary or {}).items():
            write_fits(run_dirs["data"] / f"{stem}{product}.fits", data, cards)
        return path

    return _make


@pytest.fixture
def make_raw_calibration(run_dirs: Dict[str, Path]) -> Callable[..., Path]:
    """Write a raw calibration frame into the raw-calibration dir."""
    def _make(
        calibration_id: int,
        data: np.ndarray,
        *,
        stage: str = "",
        cards: Optional[Mapping[str, object]] = None,
        prefix: str = "frame",
    ) -> Path:
        return write_fits(run_dirs["calib"] / f"{prefix}{calibration_id:04d}{stage}.fits", data, cards)

    return _make


@pytest.fixture
def cli_runner():
    """
    Typer CLI runner bound to the `calcorrect` app.

        result = cli_runner.invoke(["version"])
        assert result.exit_code == 0
    """
    from typer.testing import CliRunner

    from calcorrect.cli import app

    runner = CliRunner()

    class _Runner:
        def invoke(self, args, **kwargs):
            return runner.invoke(app, [str(a) for a in args], **kwargs)

    return _Runner()
