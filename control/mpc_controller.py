"""
MPC (Model Predictive Control) controller.

MPCController is the typed boundary around a trajectory optimizer. Any backend
with a solve(state, coeffs) method can sit behind it; ScipyMPCSolver is the
default receding-horizon solver.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import numpy as np
from scipy.optimize import minimize

from control.errors import EncodeError, OptimizerFailure
from control.vehicle_model import KinematicBicycleModel
from data.formats.data_format import OptimizerResult

logger = logging.getLogger(__name__)

STATE_SIZE = 6


class Optimizer(Protocol):
    """Trajectory optimizer backend."""

    def solve(self, state: np.ndarray, coeffs: np.ndarray) -> Sequence[float]:
        """
        Return [steering, throttle, x1, y1, x2, y2, ...].

        Raises OptimizerFailure when no valid solution is found.
        """
        ...


@dataclass
class MPCConfig:
    """Configuration for the receding-horizon solver."""

    horizon: int = 10  # Number of states in the prediction (N)
    dt: float = 0.1  # s
    ref_v: float = 40.0  # Reference speed
    # Cost weights
    cte_weight: float = 2000.0
    epsi_weight: float = 2000.0
    v_weight: float = 1.0
    steering_weight: float = 5.0
    throttle_weight: float = 5.0
    steering_rate_weight: float = 200.0
    throttle_rate_weight: float = 10.0
    # Solver
    method: str = "L-BFGS-B"
    max_iterations: int = 200
    tolerance: float = 1e-6
    throttle_limit: float = 1.0


class ScipyMPCSolver:
    """
    Kinematic-model MPC solved with scipy.optimize.minimize.

    Decision variables are the N-1 steering and N-1 throttle values; states
    are obtained by rolling the bicycle model forward (single shooting), so
    the only constraints are box bounds on the actuators.
    """

    def __init__(self, config: Optional[MPCConfig] = None,
                 model: Optional[KinematicBicycleModel] = None) -> None:
        self.config = config or MPCConfig()
        self.model = model or KinematicBicycleModel()
        if self.config.horizon < 2:
            raise ValueError(f"MPC horizon must be >= 2, got {self.config.horizon}")

    @property
    def num_controls(self) -> int:
        return self.config.horizon - 1

    def _split(self, u: np.ndarray):
        n = self.num_controls
        return u[:n], u[n:]

    def _cost(self, u: np.ndarray, state: np.ndarray, coeffs: np.ndarray) -> float:
        cfg = self.config
        steering, throttle = self._split(u)
        states = self.model.rollout(state, steering, throttle, coeffs, cfg.dt)

        cost = 0.0
        cost += cfg.cte_weight * float(np.sum(states[:, 4] ** 2))
        cost += cfg.epsi_weight * float(np.sum(states[:, 5] ** 2))
        cost += cfg.v_weight * float(np.sum((states[:, 3] - cfg.ref_v) ** 2))
        cost += cfg.steering_weight * float(np.sum(steering ** 2))
        cost += cfg.throttle_weight * float(np.sum(throttle ** 2))
        cost += cfg.steering_rate_weight * float(np.sum(np.diff(steering) ** 2))
        cost += cfg.throttle_rate_weight * float(np.sum(np.diff(throttle) ** 2))
        return cost

    def solve(self, state: np.ndarray, coeffs: np.ndarray) -> list[float]:
        cfg = self.config
        n = self.num_controls
        steer_limit = self.model.steering_limit
        bounds = [(-steer_limit, steer_limit)] * n + [(-cfg.throttle_limit, cfg.throttle_limit)] * n
        u0 = np.zeros(2 * n, dtype=np.float64)

        try:
            res = minimize(
                self._cost,
                u0,
                args=(np.asarray(state, dtype=np.float64), np.asarray(coeffs, dtype=np.float64)),
                method=cfg.method,
                bounds=bounds,
                tol=cfg.tolerance,
                options={"maxiter": cfg.max_iterations},
            )
        except (ValueError, ArithmeticError) as e:
            raise OptimizerFailure(f"solver raised: {e}") from e

        if not res.success:
            raise OptimizerFailure(f"solver did not converge: {res.message}")
        if not np.all(np.isfinite(res.x)) or not math.isfinite(float(res.fun)):
            raise OptimizerFailure("solver returned non-finite solution")

        steering, throttle = self._split(res.x)
        states = self.model.rollout(state, steering, throttle, coeffs, cfg.dt)
        logger.debug("MPC solved: cost=%.3f iterations=%s", float(res.fun), getattr(res, "nit", "n/a"))

        result = [float(steering[0]), float(throttle[0])]
        for x, y in states[1:, :2]:
            result.append(float(x))
            result.append(float(y))
        return result


class MPCController:
    """
    Typed boundary between the control cycle and an optimizer backend.
    """

    def __init__(self, optimizer: Optimizer, polynomial_degree: int = 3):
        """
        Initialize MPC controller.

        Args:
            optimizer: Backend implementing solve(state, coeffs)
            polynomial_degree: Degree of the reference polynomial
        """
        self.optimizer = optimizer
        self.polynomial_degree = polynomial_degree

    def solve(self, state: np.ndarray, coeffs: np.ndarray) -> OptimizerResult:
        """
        Solve for the next actuation.

        Args:
            state: [x, y, psi, v, cte, epsi] after latency compensation
            coeffs: Reference polynomial coefficients (ascending powers)

        Returns:
            OptimizerResult with the first actuation and predicted path

        Raises:
            OptimizerFailure: backend did not produce a solution
            EncodeError: backend output cannot be paired into (x, y) points
        """
        state = np.asarray(state, dtype=np.float64).ravel()
        coeffs = np.asarray(coeffs, dtype=np.float64).ravel()
        if state.size != STATE_SIZE:
            raise ValueError(f"state must have {STATE_SIZE} entries, got {state.size}")
        if coeffs.size != self.polynomial_degree + 1:
            raise ValueError(
                f"expected {self.polynomial_degree + 1} coefficients, got {coeffs.size}"
            )

        try:
            values = self.optimizer.solve(state, coeffs)
        except (OptimizerFailure, EncodeError):
            raise
        except Exception as e:
            raise OptimizerFailure(f"{type(e).__name__}: {e}") from e

        if values is None:
            raise OptimizerFailure("optimizer returned no result")
        return OptimizerResult.from_flat(values)


def build_mpc_controller(mpc_cfg: dict, model: KinematicBicycleModel,
                         polynomial_degree: int = 3) -> MPCController:
    """Build an MPCController with the scipy backend from a config dictionary."""
    config = MPCConfig(
        horizon=int(mpc_cfg.get("horizon", 10)),
        dt=float(mpc_cfg.get("dt", 0.1)),
        ref_v=float(mpc_cfg.get("ref_v", 40.0)),
        cte_weight=float(mpc_cfg.get("cte_weight", 2000.0)),
        epsi_weight=float(mpc_cfg.get("epsi_weight", 2000.0)),
        v_weight=float(mpc_cfg.get("v_weight", 1.0)),
        steering_weight=float(mpc_cfg.get("steering_weight", 5.0)),
        throttle_weight=float(mpc_cfg.get("throttle_weight", 5.0)),
        steering_rate_weight=float(mpc_cfg.get("steering_rate_weight", 200.0)),
        throttle_rate_weight=float(mpc_cfg.get("throttle_rate_weight", 10.0)),
        method=str(mpc_cfg.get("method", "L-BFGS-B")),
        max_iterations=int(mpc_cfg.get("max_iterations", 200)),
        tolerance=float(mpc_cfg.get("tolerance", 1e-6)),
        throttle_limit=float(mpc_cfg.get("throttle_limit", 1.0)),
    )
    return MPCController(ScipyMPCSolver(config, model), polynomial_degree=polynomial_degree)
