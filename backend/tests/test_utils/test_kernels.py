"""Tests for Gaussian kernels and numeric helpers."""

from __future__ import annotations

import numpy as np
import pytest

from glyphsight.utils.kernels import KernelNormalization, gaussian_kernel
from glyphsight.utils.math_helpers import inverse_logistic, minmax_unit, round_to, zscore


@pytest.mark.parametrize("width,height", [(1, 1), (4, 4), (3, 7), (8, 2), (16, 16)])
def test_mass_kernel_sums_to_one(width, height):
    kernel = gaussian_kernel(width, height, 1.5)
    assert kernel.shape == (width * height,)
    assert np.all(kernel >= 0)
    assert kernel.sum() == pytest.approx(1.0)


def test_peak_kernel_max_is_one():
    kernel = gaussian_kernel(5, 5, 1.0, KernelNormalization.PEAK)
    assert kernel.max() == pytest.approx(1.0)
    # Odd window: the single centre cell is the peak
    assert np.argmax(kernel) == 12


def test_even_window_has_four_equal_centre_cells():
    kernel = gaussian_kernel(4, 4, 1.5).reshape(4, 4)
    centre = kernel[1:3, 1:3]
    assert np.allclose(centre, centre[0, 0])
    assert centre[0, 0] > kernel[0, 0]


def test_kernel_is_symmetric():
    kernel = gaussian_kernel(6, 4, 2.0).reshape(4, 6)
    assert np.allclose(kernel, kernel[::-1, :])
    assert np.allclose(kernel, kernel[:, ::-1])


def test_kernel_is_memoized_and_read_only():
    a = gaussian_kernel(4, 4, 1.5)
    b = gaussian_kernel(4, 4, 1.5)
    assert a is b
    with pytest.raises(ValueError):
        a[0] = 1.0


def test_kernel_rejects_bad_arguments():
    with pytest.raises(ValueError):
        gaussian_kernel(0, 4, 1.0)
    with pytest.raises(ValueError):
        gaussian_kernel(4, 4, 0.0)


def test_zscore_constant_input_unchanged():
    values = np.full(5, 0.3)
    assert np.array_equal(zscore(values), values)


def test_zscore_standardizes():
    out = zscore(np.array([1.0, 2.0, 3.0, 4.0]))
    assert out.mean() == pytest.approx(0.0)
    assert out.std() == pytest.approx(1.0)


def test_minmax_unit():
    assert np.allclose(minmax_unit(np.array([2.0, 4.0, 3.0])), [0.0, 1.0, 0.5])
    assert np.allclose(minmax_unit(np.array([7.0, 7.0])), [0.5, 0.5])


def test_inverse_logistic_falls():
    out = inverse_logistic(np.array([0.0, 0.5, 1.0]), center=0.5, steepness=4.0)
    assert out[0] > out[1] > out[2]
    assert out[1] == pytest.approx(0.5)


def test_round_to_folds_negative_zero():
    out = round_to(np.array([-0.00000001, 0.123456789]), 7)
    assert str(out[0]) == "0.0"
    assert out[1] == pytest.approx(0.1234568)
