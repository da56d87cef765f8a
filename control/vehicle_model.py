"""
Vehicle kinematics (bicycle model).
Used for latency compensation and for the MPC rollout.
"""

import math
import numpy as np
from typing import Sequence, Tuple

from data.formats.data_format import ControlState
from trajectory.utils import polyeval, polyderiv_eval


class KinematicBicycleModel:
    """
    Kinematic bicycle model in the vehicle frame.
    Simplified 2D model: no slip, no roll or pitch.
    """

    def __init__(self, wheelbase: float = 2.67, max_steering_angle: float = math.radians(25.0)):
        """
        Initialize bicycle model.

        Args:
            wheelbase: Distance from the front axle to the center of gravity (Lf)
            max_steering_angle: Maximum steering angle (radians)
        """
        self.wheelbase = wheelbase
        self.max_steering_angle = max_steering_angle

    @property
    def steering_limit(self) -> float:
        """Optimizer steering bound (max steering angle scaled by Lf)."""
        return self.max_steering_angle * self.wheelbase

    def normalize_steering(self, steering: float) -> float:
        """
        Convert optimizer steering to the actuator's [-1, 1] command.

        The optimizer treats positive steering as a left turn; the actuator
        treats it as a right turn, hence the sign flip.
        """
        return -steering / (self.max_steering_angle * self.wheelbase)

    def compensate_latency(
        self,
        speed: float,
        cte: float,
        epsi: float,
        steering: float,
        throttle: float,
        latency: float,
    ) -> ControlState:
        """
        Predict the vehicle-frame state after the actuation latency.

        The car sits at the origin with zero heading when the telemetry is
        sampled. Steering and throttle are the actuator values still applied
        during the delay; throttle stands in for acceleration.

        Args:
            speed: Current speed
            cte: Cross-track error at sample time
            epsi: Heading error at sample time
            steering: Applied steering command (actuator range)
            throttle: Applied throttle command
            latency: Actuation delay (seconds)

        Returns:
            ControlState at t + latency
        """
        yaw_delta = speed * steering / self.wheelbase * latency
        return ControlState(
            x=speed * latency,
            y=0.0,
            psi=-yaw_delta,
            v=speed + throttle * latency,
            cte=cte + speed * math.sin(epsi) * latency,
            epsi=epsi - yaw_delta,
        )

    def step(
        self,
        state: Sequence[float],
        steering: float,
        throttle: float,
        coeffs: Sequence[float],
        dt: float,
    ) -> Tuple[float, float, float, float, float, float]:
        """
        Advance [x, y, psi, v, cte, epsi] by one optimizer step.

        Steering follows the optimizer convention (positive turns left).
        """
        x, y, psi, v, _, epsi = state
        psi_des = math.atan(polyderiv_eval(coeffs, x))
        yaw_rate = v * steering / self.wheelbase
        return (
            x + v * math.cos(psi) * dt,
            y + v * math.sin(psi) * dt,
            psi + yaw_rate * dt,
            v + throttle * dt,
            (polyeval(coeffs, x) - y) + v * math.sin(epsi) * dt,
            (psi - psi_des) + yaw_rate * dt,
        )

    def rollout(
        self,
        state: Sequence[float],
        steering: Sequence[float],
        throttle: Sequence[float],
        coeffs: Sequence[float],
        dt: float,
    ) -> np.ndarray:
        """
        Roll the model forward under a control sequence.

        Returns:
            Array of shape (len(steering) + 1, 6), first row is the initial state
        """
        states = np.empty((len(steering) + 1, 6), dtype=np.float64)
        states[0] = state
        for k in range(len(steering)):
            states[k + 1] = self.step(states[k], steering[k], throttle[k], coeffs, dt)
        return states
