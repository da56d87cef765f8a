"""
Turn optimizer output into the outbound steer command.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from control.vehicle_model import KinematicBicycleModel
from data.formats.data_format import OptimizerResult, SteerCommand
from trajectory.utils import sample_reference_line


@dataclass
class ReferenceLineConfig:
    """Sampling of the fitted reference line sent back for display."""

    num_points: int = 25
    spacing: float = 2.5


def build_steer_command(
    result: OptimizerResult,
    coeffs: Sequence[float],
    model: KinematicBicycleModel,
    reference: Optional[ReferenceLineConfig] = None,
) -> SteerCommand:
    """
    Build the steer command for one cycle.

    Steering is sign-flipped and scaled into the actuator range; throttle is
    passed through. The predicted path keeps the optimizer's point order. The
    reference line is sampled from the fitted polynomial, independent of the
    optimizer output.
    """
    reference = reference or ReferenceLineConfig()
    next_x, next_y = sample_reference_line(coeffs, reference.num_points, reference.spacing)
    return SteerCommand(
        steering_angle=model.normalize_steering(result.steering),
        throttle=result.throttle,
        mpc_x=[float(x) for x in result.trajectory[:, 0]],
        mpc_y=[float(y) for y in result.trajectory[:, 1]],
        next_x=next_x,
        next_y=next_y,
    )


def neutral_steer_command(
    coeffs: Optional[Sequence[float]] = None,
    reference: Optional[ReferenceLineConfig] = None,
) -> SteerCommand:
    """Fail-safe command: no steering, no throttle, no predicted path."""
    command = SteerCommand(steering_angle=0.0, throttle=0.0)
    if coeffs is not None:
        reference = reference or ReferenceLineConfig()
        command.next_x, command.next_y = sample_reference_line(
            coeffs, reference.num_points, reference.spacing
        )
    return command
