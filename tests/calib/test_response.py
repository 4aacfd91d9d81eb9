from __future__ import annotations

import numpy as np
import pytest

from calcorrect.calib.arrays import ArraySet
from calcorrect.calib.grid import SamplingGrid
from calcorrect.calib.response import (
    SUPPRESSION_FILL,
    ResponseFrame,
    apply_response,
    build_response_vectors,
    guard_response,
)
from calcorrect.errors import AlignmentError, CorrectionError

N_SLICES, N_SPATIAL, N_SPEC = 2, 3, 10


def _cube(value: float = 6.0, **aux) -> ArraySet:
    shape = (N_SLICES, N_SPATIAL, N_SPEC)
    return ArraySet(
        signal=np.full(shape, value),
        variance=np.full(shape, 4.0),
        mask=np.zeros(shape, dtype=np.int16),
        auxiliary={k: np.full(shape, float(v)) for k, v in aux.items()},
    )


def _grids(origin: float, n: int = N_SLICES, length: int = N_SPEC):
    return [SamplingGrid(origin, 1.0, length) for _ in range(n)]


def _master(values, origin: float = 3995.0) -> ResponseFrame:
    data = np.asarray(values, dtype=float)
    return ResponseFrame(
        data=data,
        grids=_grids(origin, n=data.shape[0], length=data.shape[1]),
        path="/m/frameresp0007.fits",
        source_frame="frame0007.fits",
    )


# ----------------------------------------------------------------------------- #
# Guarding & vectors
# ----------------------------------------------------------------------------- #
def test_guard_replaces_non_positive_and_non_finite() -> None:
    out = guard_response(np.array([1.5, 0.0, -2.0, np.nan, np.inf, 0.25]))
    assert out.tolist() == [1.5, SUPPRESSION_FILL, SUPPRESSION_FILL, SUPPRESSION_FILL, SUPPRESSION_FILL, 0.25]


def test_every_divisor_is_strictly_positive(rng: np.random.Generator) -> None:
    values = rng.normal(0.0, 1.0, size=(N_SLICES, N_SPEC))
    values[0, 3] = np.nan
    response, _ = build_response_vectors(_master(values, origin=3998.0), _grids(4000.0))
    assert response.shape == (N_SLICES, N_SPEC)
    assert np.all(np.isfinite(response))
    assert np.all(response > 0)


def test_overlap_is_copied_and_the_rest_filled() -> None:
    master = _master(np.full((N_SLICES, N_SPEC), 2.0), origin=3995.0)
    response, overlaps = build_response_vectors(master, _grids(4000.0))
    assert np.all(response[:, :5] == 2.0)
    assert np.all(response[:, 5:] == SUPPRESSION_FILL)
    assert overlaps[0] == {"slice": 0, "science": [0, 4], "master": [5, 9]}


def test_per_slice_grids_are_aligned_independently() -> None:
    values = np.arange(1, N_SPEC + 1, dtype=float)[None, :].repeat(N_SLICES, axis=0)
    master = ResponseFrame(data=values, grids=[SamplingGrid(4000.0, 1.0, N_SPEC), SamplingGrid(3998.0, 1.0, N_SPEC)])
    response, _ = build_response_vectors(master, _grids(4000.0))
    assert response[0].tolist() == values[0].tolist()
    assert response[1, :8].tolist() == values[1, 2:].tolist()
    assert np.all(response[1, 8:] == SUPPRESSION_FILL)


# ----------------------------------------------------------------------------- #
# Application
# ----------------------------------------------------------------------------- #
def test_signal_and_variance_divided_mask_unchanged() -> None:
    arrays = _cube(6.0)
    arrays.mask[0, 0, 0] = 3
    out = apply_response(arrays, _master(np.full((N_SLICES, N_SPEC), 2.0)), _grids(4000.0))
    sig, var = out.arrays.signal, out.arrays.variance
    assert np.allclose(sig[..., :5], 3.0)
    assert np.allclose(var[..., :5], 1.0)
    assert np.array_equal(out.arrays.mask, arrays.mask)


def test_samples_outside_overlap_are_suppressed() -> None:
    out = apply_response(_cube(6.0), _master(np.full((N_SLICES, N_SPEC), 2.0)), _grids(4000.0))
    assert np.allclose(out.arrays.signal[..., 5:], 6.0 / SUPPRESSION_FILL)
    assert np.allclose(out.arrays.variance[..., 5:], 4.0 / SUPPRESSION_FILL**2)
    assert out.info["suppressed"] == N_SLICES * 5


def test_invalid_master_values_suppress_instead_of_blowing_up() -> None:
    values = np.full((N_SLICES, N_SPEC), 2.0)
    values[:, 5] = 0.0     # → science index 0
    values[:, 6] = np.nan  # → science index 1
    out = apply_response(_cube(6.0), _master(values), _grids(4000.0))
    sig = out.arrays.signal
    assert np.all(np.isfinite(sig))
    assert np.allclose(sig[..., 0], 6.0 / SUPPRESSION_FILL)
    assert np.allclose(sig[..., 1], 6.0 / SUPPRESSION_FILL)
    assert np.allclose(sig[..., 2:5], 3.0)


def test_auxiliary_arrays_share_the_division() -> None:
    out = apply_response(_cube(6.0, _sky=4.0, _obj=8.0), _master(np.full((N_SLICES, N_SPEC), 2.0)), _grids(4000.0))
    assert np.allclose(out.arrays.auxiliary["_sky"][..., :5], 2.0)
    assert np.allclose(out.arrays.auxiliary["_obj"][..., :5], 4.0)
    assert np.allclose(out.arrays.auxiliary["_sky"][..., 5:], 4.0 / SUPPRESSION_FILL)


def test_stamp_identifies_response() -> None:
    out = apply_response(_cube(), _master(np.ones((N_SLICES, N_SPEC))), _grids(4000.0))
    assert out.stamp.cards() == {"RESPCORR": True, "RESPFILE": "frameresp0007.fits", "RESPSRC": "frame0007.fits"}


# ----------------------------------------------------------------------------- #
# Failures
# ----------------------------------------------------------------------------- #
def test_no_overlap_raises_alignment_error() -> None:
    with pytest.raises(AlignmentError):
        apply_response(_cube(), _master(np.ones((N_SLICES, N_SPEC)), origin=5000.0), _grids(4000.0))


def test_slice_count_mismatch_raises() -> None:
    with pytest.raises(CorrectionError, match="slices"):
        apply_response(_cube(), _master(np.ones((3, N_SPEC))), _grids(4000.0))


def test_two_dimensional_arrays_are_rejected() -> None:
    flat = ArraySet(signal=np.ones((3, 4)), variance=np.ones((3, 4)), mask=np.zeros((3, 4), dtype=np.int16))
    with pytest.raises(CorrectionError, match="slice, spatial, spectral"):
        apply_response(flat, _master(np.ones((N_SLICES, 4))), _grids(4000.0, length=4))


def test_grid_length_must_match_spectral_axis() -> None:
    with pytest.raises(CorrectionError, match="spectral length"):
        apply_response(_cube(), _master(np.ones((N_SLICES, N_SPEC))), _grids(4000.0, length=N_SPEC - 1))
