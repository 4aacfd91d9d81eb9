"""
calcorrect — I/O Utilities
--------------------------
Path helpers, product naming, FITS frame read/write and association tables.

- Path utils: expand env/user, ensure directories
- Product naming: ``{prefix}{id:04d}{stage}{product}.fits`` and master names
- Frames: read (array, header) pairs; write through a temp file + rename so a
  reader never observes a partially written product
- Association tables: two-column ``exposure,calibration`` CSV link files
"""

from __future__ import annotations

import csv
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

import numpy as np
from astropy.io import fits

__all__ = [
    "p",
    "ensure_dir",
    "ProductNaming",
    "side_path",
    "first_existing",
    "read_frame",
    "write_frame",
    "read_association_table",
]

PathLike = Union[str, os.PathLike]


# -------------------------------------------------------------------
# Path helpers
# -------------------------------------------------------------------

def p(path: PathLike) -> Path:
    """Normalize a path: expand env vars and ~, return Path."""
    return Path(os.path.expandvars(os.path.expanduser(str(path)))).resolve()


def ensure_dir(path: PathLike) -> Path:
    """Ensure directory exists; returns the directory as Path."""
    d = p(path)
    d.mkdir(parents=True, exist_ok=True)
    return d


def side_path(path: Path, product: str) -> Path:
    """Derive a side-file path: ``frame0042.fits`` + ``_var`` → ``frame0042_var.fits``."""
    return path.with_name(f"{path.stem}{product}{path.suffix}")


def first_existing(paths: Iterable[Path]) -> Optional[Path]:
    """Return the first path that exists on disk, in iteration order."""
    for candidate in paths:
        if candidate.exists():
            return candidate
    return None


# -------------------------------------------------------------------
# Naming
# -------------------------------------------------------------------

@dataclass(frozen=True)
class ProductNaming:
    """
    Canonical file names for exposures, their side products and masters.

    >>> ProductNaming("frame").name(42, stage="_cr", product="_var")
    'frame0042_cr_var.fits'
    >>> ProductNaming("frame").master_name("dark", 7)
    'framedark0007.fits'
    """

    prefix: str = "frame"
    width: int = 4
    extension: str = ".fits"

    def stem(self, frame_id: int) -> str:
        return f"{self.prefix}{int(frame_id):0{self.width}d}"

    def name(self, frame_id: int, *, stage: str = "", product: str = "") -> str:
        return f"{self.stem(frame_id)}{stage}{product}{self.extension}"

    def path(self, directory: Path, frame_id: int, *, stage: str = "", product: str = "") -> Path:
        return Path(directory) / self.name(frame_id, stage=stage, product=product)

    def candidates(self, directory: Path, frame_id: int, stages: Iterable[str]) -> List[Path]:
        """Candidate paths for ``frame_id`` in stage-preference order."""
        return [self.path(directory, frame_id, stage=s) for s in stages]

    def master_name(self, kind: str, calibration_id: int) -> str:
        return f"{self.prefix}{kind}{int(calibration_id):0{self.width}d}{self.extension}"


# -------------------------------------------------------------------
# FITS frames
# -------------------------------------------------------------------

def read_frame(path: PathLike) -> Tuple[np.ndarray, fits.Header]:
    """Read the primary array and header of a FITS file."""
    with fits.open(p(path), memmap=False) as hdul:
        hdu = hdul[0]
        if hdu.data is None:
            raise ValueError(f"{path}: primary HDU holds no data")
        data = np.array(hdu.data)
        header = hdu.header.copy()
    return data, header


def write_frame(
    array: np.ndarray,
    header: Optional[fits.Header],
    path: PathLike,
    *,
    overwrite: bool = False,
) -> Path:
    """
    Write ``array`` with ``header`` to ``path``.

    The file is written next to the destination and renamed into place.
    Raises FileExistsError when the destination exists and ``overwrite`` is off.
    """
    dest = p(path)
    if dest.exists() and not overwrite:
        raise FileExistsError(f"refusing to overwrite existing product: {dest}")
    ensure_dir(dest.parent)

    hdu = fits.PrimaryHDU(data=np.asarray(array), header=header.copy() if header is not None else None)
    fd, tmp_name = tempfile.mkstemp(prefix=dest.name + ".", suffix=".tmp", dir=dest.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        hdu.writeto(tmp_path, overwrite=True)
        tmp_path.replace(dest)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return dest


# -------------------------------------------------------------------
# Association tables
# -------------------------------------------------------------------

def _parse_id(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    return int(float(value))


def read_association_table(path: PathLike) -> List[Tuple[int, Optional[int]]]:
    """
    Read an ``exposure,calibration`` CSV link table into ordered pairs.

    Blank calibration cells are returned as None. Lines starting with ``#`` are
    ignored. Row order is preserved.
    """
    src = p(path)
    pairs: List[Tuple[int, Optional[int]]] = []
    with src.open("r", encoding="utf-8", newline="") as f:
        rows = (line for line in f if line.strip() and not line.lstrip().startswith("#"))
        reader = csv.DictReader(rows)
        missing = {"exposure", "calibration"} - set(reader.fieldnames or [])
        if missing:
            raise ValueError(f"{src}: association table lacks column(s) {sorted(missing)}")
        for row in reader:
            exposure = _parse_id(row["exposure"])
            if exposure is None:
                raise ValueError(f"{src}: row without exposure id: {row}")
            pairs.append((exposure, _parse_id(row["calibration"])))
    return pairs
