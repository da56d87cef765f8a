from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np
from scipy.linalg import solve_triangular

from control.errors import FitError


def world_to_vehicle_frame(
    ptsx: Sequence[float],
    ptsy: Sequence[float],
    px: float,
    py: float,
    psi: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Express world-frame points in the vehicle frame.

    The vehicle frame has its origin at (px, py) and its x-axis along the
    heading psi, so points ahead of the car have positive x.
    """
    dx = np.asarray(ptsx, dtype=np.float64) - px
    dy = np.asarray(ptsy, dtype=np.float64) - py
    cos_psi = math.cos(psi)
    sin_psi = math.sin(psi)
    x_car = dx * cos_psi + dy * sin_psi
    y_car = dy * cos_psi - dx * sin_psi
    return x_car, y_car


def vehicle_to_world_frame(
    x_car: Sequence[float],
    y_car: Sequence[float],
    px: float,
    py: float,
    psi: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Inverse of world_to_vehicle_frame."""
    bx = np.asarray(x_car, dtype=np.float64)
    by = np.asarray(y_car, dtype=np.float64)
    cos_psi = math.cos(psi)
    sin_psi = math.sin(psi)
    wx = bx * cos_psi - by * sin_psi + px
    wy = bx * sin_psi + by * cos_psi + py
    return wx, wy


def polyfit(xvals: Sequence[float], yvals: Sequence[float], order: int) -> np.ndarray:
    """
    Least-squares polynomial fit, coefficients in ascending powers.

    Solves the Vandermonde system with a Householder QR instead of the normal
    equations, which stay well conditioned when the x-values are clustered.
    """
    x = np.asarray(xvals, dtype=np.float64).ravel()
    y = np.asarray(yvals, dtype=np.float64).ravel()
    if x.size != y.size:
        raise FitError(f"x/y length mismatch: {x.size} != {y.size}")
    if order < 1:
        raise FitError(f"polynomial order must be >= 1, got {order}")
    if x.size <= order:
        raise FitError(f"need at least {order + 1} points for order {order}, got {x.size}")
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise FitError("reference points contain non-finite values")

    A = np.empty((x.size, order + 1), dtype=np.float64)
    A[:, 0] = 1.0
    for i in range(order):
        A[:, i + 1] = A[:, i] * x

    Q, R = np.linalg.qr(A, mode="reduced")
    if np.any(np.abs(np.diag(R)) < 1e-12 * max(1.0, np.abs(R).max())):
        # Fewer distinct x-values than coefficients.
        raise FitError("reference points are degenerate (repeated x-values)")
    return solve_triangular(R, Q.T @ y, lower=False)


def polyeval(coeffs: Sequence[float], x):
    """Evaluate ascending-power coefficients at x (scalar or array)."""
    result = 0.0 * np.asarray(x, dtype=np.float64)
    for i, c in enumerate(coeffs):
        result = result + c * np.power(x, i)
    if np.ndim(result) == 0:
        return float(result)
    return result


def polyderiv_eval(coeffs: Sequence[float], x):
    """Evaluate the first derivative of the polynomial at x."""
    result = 0.0 * np.asarray(x, dtype=np.float64)
    for i in range(1, len(coeffs)):
        result = result + i * coeffs[i] * np.power(x, i - 1)
    if np.ndim(result) == 0:
        return float(result)
    return result


def compute_tracking_errors(coeffs: Sequence[float]) -> Tuple[float, float]:
    """
    Cross-track and heading error at the vehicle origin.

    cte is the fit evaluated at x=0. Heading error uses only the linear
    coefficient, -atan(c1), i.e. the tangent of the fit at the origin.
    """
    cte = polyeval(coeffs, 0.0)
    epsi = -math.atan(coeffs[1])
    return float(cte), float(epsi)


def sample_reference_line(
    coeffs: Sequence[float],
    num_points: int = 25,
    spacing: float = 2.5,
) -> Tuple[list[float], list[float]]:
    """Sample the fitted curve ahead of the car for visualization."""
    xs = [spacing * i for i in range(num_points)]
    ys = [float(polyeval(coeffs, x)) for x in xs]
    return xs, ys
