from __future__ import annotations

import logging

import numpy as np
import pytest

from calcorrect.calib.arrays import ArraySet
from calcorrect.calib.dark import DarkFrame, apply_dark, exposure_scale
from calcorrect.errors import CorrectionError


def _science(shape=(4,), signal=10.0, variance=4.0, **aux) -> ArraySet:
    return ArraySet(
        signal=np.full(shape, signal),
        variance=np.full(shape, variance),
        mask=np.zeros(shape, dtype=np.int16),
        auxiliary={k: np.full(shape, float(v)) for k, v in aux.items()},
    )


# ----------------------------------------------------------------------------- #
# Scaling
# ----------------------------------------------------------------------------- #
def test_scale_is_ratio_of_exposure_times() -> None:
    assert exposure_scale(100.0, 50.0) == pytest.approx(2.0)


@pytest.mark.parametrize("science, dark", [(None, 50.0), (100.0, None), (0.0, 50.0), (100.0, -1.0), (float("nan"), 1.0)])
def test_unusable_times_fall_back_to_unit_scale(science, dark, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        assert exposure_scale(science, dark) == 1.0
    assert "scale 1.0" in caplog.text


@pytest.mark.parametrize("k", [2.0, 4.0, 0.5])
def test_subtracted_amount_scales_inversely_with_dark_time(k: float) -> None:
    arrays = _science(signal=100.0)
    dark = np.full((4,), 3.0)
    base = apply_dark(arrays, DarkFrame(dark, exposure_time=10.0), science_time=20.0)
    slower = apply_dark(arrays, DarkFrame(dark, exposure_time=10.0 * k), science_time=20.0)
    removed_base = 100.0 - base.arrays.signal
    removed_slower = 100.0 - slower.arrays.signal
    assert np.allclose(removed_slower, removed_base / k)
    assert slower.info["scale"] == pytest.approx(base.info["scale"] / k)


# ----------------------------------------------------------------------------- #
# Propagation
# ----------------------------------------------------------------------------- #
def test_signal_subtraction_with_scale() -> None:
    out = apply_dark(_science(), DarkFrame(np.full((4,), 2.0), exposure_time=50.0), science_time=100.0)
    assert np.allclose(out.arrays.signal, 6.0)


def test_variance_adds_dark_variance() -> None:
    dark = DarkFrame(np.zeros(4), variance=np.ones(4))
    out = apply_dark(_science(variance=4.0), dark, science_time=None)
    assert np.array_equal(out.arrays.variance, np.full(4, 5.0))


def test_dark_variance_is_not_rescaled_by_exposure_ratio() -> None:
    # signal sees scale=3, variance does not see scale**2
    dark = DarkFrame(np.ones(4), variance=np.ones(4), exposure_time=10.0)
    out = apply_dark(_science(signal=10.0, variance=4.0), dark, science_time=30.0)
    assert out.info["scale"] == pytest.approx(3.0)
    assert np.allclose(out.arrays.signal, 7.0)
    assert np.allclose(out.arrays.variance, 5.0)


def test_mask_counts_accumulate() -> None:
    arrays = ArraySet(
        signal=np.zeros(3),
        variance=np.zeros(3),
        mask=np.array([1, 0, 2], dtype=np.int16),
    )
    dark = DarkFrame(np.zeros(3), mask=np.array([1, 1, 0], dtype=np.int16))
    out = apply_dark(arrays, dark, science_time=None)
    assert out.arrays.mask.tolist() == [2, 1, 2]
    assert out.arrays.mask.dtype == np.int16


def test_narrow_science_mask_is_promoted_before_summing() -> None:
    arrays = ArraySet(
        signal=np.zeros(2),
        variance=np.zeros(2),
        mask=np.array([200, 1], dtype=np.uint8),
    )
    dark = DarkFrame(np.zeros(2), mask=np.array([100, 0], dtype=np.int16))
    out = apply_dark(arrays, dark, science_time=None)
    assert out.arrays.mask.tolist() == [300, 1]
    assert out.arrays.mask.dtype == np.int16



def test_missing_dark_variance_and_mask_contribute_nothing() -> None:
    arrays = _science(variance=4.0)
    out = apply_dark(arrays, DarkFrame(np.ones(4)), science_time=None)
    assert np.array_equal(out.arrays.variance, arrays.variance)
    assert np.array_equal(out.arrays.mask, arrays.mask)


def test_auxiliary_arrays_receive_identical_subtraction() -> None:
    arrays = _science(signal=10.0, _sky=8.0, _obj=12.0)
    out = apply_dark(arrays, DarkFrame(np.full(4, 2.0), exposure_time=1.0), science_time=2.0)
    assert np.allclose(out.arrays.signal, 6.0)
    assert np.allclose(out.arrays.auxiliary["_sky"], 4.0)
    assert np.allclose(out.arrays.auxiliary["_obj"], 8.0)


def test_input_arrays_are_not_modified() -> None:
    arrays = _science()
    apply_dark(arrays, DarkFrame(np.ones(4), variance=np.ones(4)), science_time=None)
    assert np.all(arrays.signal == 10.0)
    assert np.all(arrays.variance == 4.0)


@pytest.mark.parametrize("field", ["data", "variance", "mask"])
def test_shape_mismatch_raises(field: str) -> None:
    parts = {"data": np.zeros(4), "variance": None, "mask": None}
    parts[field] = np.zeros(5)
    with pytest.raises(CorrectionError, match=field):
        apply_dark(_science(), DarkFrame(**parts), science_time=None)


def test_stamp_identifies_dark() -> None:
    dark = DarkFrame(np.zeros(4), path="/m/framedark0003.fits", source_frame="frame0003.fits")
    out = apply_dark(_science(), dark, science_time=None)
    cards = out.stamp.cards()
    assert cards == {"DARKCORR": True, "DARKFILE": "framedark0003.fits", "DARKSRC": "frame0003.fits"}
