"""
Tests for reference fitting and tracking errors.
"""

import math

import pytest
import numpy as np

from control.errors import FitError
from trajectory.utils import (
    compute_tracking_errors,
    polyderiv_eval,
    polyeval,
    polyfit,
    sample_reference_line,
)


def _rss(x, y, coeffs):
    return float(np.sum((polyeval(coeffs, np.asarray(x)) - np.asarray(y)) ** 2))


class TestPolyfit:
    """Least-squares polynomial fit."""

    def test_recovers_exact_cubic(self):
        true = np.array([1.5, -0.2, 0.03, -0.001])
        x = np.linspace(-5.0, 60.0, 8)
        y = polyeval(true, x)
        coeffs = polyfit(x, y, 3)
        np.testing.assert_allclose(coeffs, true, rtol=1e-6, atol=1e-8)

    def test_interpolates_when_points_equal_degree_plus_one(self):
        x = [0.0, 10.0, 25.0, 40.0]
        y = [1.0, -2.0, 3.0, 0.5]
        coeffs = polyfit(x, y, 3)
        np.testing.assert_allclose(polyeval(coeffs, np.array(x)), y, atol=1e-8)

    def test_residual_not_larger_than_lower_degree(self):
        rng = np.random.default_rng(3)
        x = np.linspace(0.0, 80.0, 12)
        y = 0.002 * x ** 2 + rng.normal(0.0, 0.3, size=x.size)
        rss = [_rss(x, y, polyfit(x, y, order)) for order in (1, 2, 3)]
        assert rss[1] <= rss[0] + 1e-9
        assert rss[2] <= rss[1] + 1e-9

    def test_matches_numpy_least_squares(self):
        rng = np.random.default_rng(11)
        x = rng.uniform(0.0, 90.0, size=6)
        y = rng.uniform(-5.0, 5.0, size=6)
        coeffs = polyfit(x, y, 3)
        expected = np.polynomial.polynomial.polyfit(x, y, 3)
        np.testing.assert_allclose(polyeval(coeffs, x), polyeval(expected, x), atol=1e-6)

    def test_deterministic(self):
        x = [0.0, 25.0, 50.0, 75.0, 90.0]
        y = [0.0, 1.0, 4.0, 9.0, 12.0]
        np.testing.assert_array_equal(polyfit(x, y, 3), polyfit(x, y, 3))

    def test_length_mismatch_raises(self):
        with pytest.raises(FitError):
            polyfit([0.0, 1.0, 2.0, 3.0], [0.0, 1.0, 2.0], 3)

    def test_too_few_points_raises(self):
        """Degree must never be lowered silently."""
        with pytest.raises(FitError):
            polyfit([0.0, 1.0, 2.0], [0.0, 1.0, 4.0], 3)

    def test_invalid_order_raises(self):
        with pytest.raises(FitError):
            polyfit([0.0, 1.0, 2.0, 3.0], [0.0, 1.0, 2.0, 3.0], 0)

    def test_repeated_x_values_raise(self):
        with pytest.raises(FitError):
            polyfit([5.0, 5.0, 5.0, 5.0], [0.0, 1.0, 2.0, 3.0], 3)

    def test_non_finite_points_raise(self):
        with pytest.raises(FitError):
            polyfit([0.0, 1.0, float("nan"), 3.0], [0.0, 1.0, 2.0, 3.0], 3)


class TestPolyeval:
    def test_scalar(self):
        assert polyeval([1.0, 2.0, 3.0, 4.0], 2.0) == pytest.approx(1 + 4 + 12 + 32)

    def test_array(self):
        np.testing.assert_allclose(polyeval([0.0, 1.0], np.array([1.0, 2.0])), [1.0, 2.0])

    def test_derivative(self):
        assert polyderiv_eval([1.0, 2.0, 3.0, 4.0], 1.0) == pytest.approx(2 + 6 + 12)


class TestTrackingErrors:
    def test_cte_is_constant_term(self):
        coeffs = [0.731, -0.25, 0.004, -0.0001]
        cte, _ = compute_tracking_errors(coeffs)
        assert cte == 0.731

    def test_heading_error_uses_linear_coefficient_only(self):
        coeffs = [0.0, 0.5, 10.0, -3.0]
        _, epsi = compute_tracking_errors(coeffs)
        assert epsi == pytest.approx(-math.atan(0.5))

    def test_straight_reference_has_no_error(self):
        cte, epsi = compute_tracking_errors([0.0, 0.0, 0.0, 0.0])
        assert cte == 0.0
        assert epsi == 0.0


class TestReferenceLine:
    def test_default_sampling(self):
        xs, ys = sample_reference_line([1.0, 0.1, 0.0, 0.0])
        assert len(xs) == 25
        assert len(ys) == 25
        assert xs[0] == 0.0
        assert xs[1] == pytest.approx(2.5)
        assert xs[-1] == pytest.approx(60.0)
        assert ys[4] == pytest.approx(1.0 + 0.1 * 10.0)

    def test_custom_sampling(self):
        xs, ys = sample_reference_line([0.0, 0.0, 0.0, 0.0], num_points=3, spacing=1.0)
        assert xs == [0.0, 1.0, 2.0]
        assert ys == [0.0, 0.0, 0.0]
