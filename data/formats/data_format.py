"""
Data format definitions for the MPC bridge.
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Sequence
import numpy as np

from control.errors import EncodeError


@dataclass(frozen=True)
class TelemetrySample:
    """One telemetry snapshot from the simulator (world frame)."""
    ptsx: tuple  # Reference waypoints x (world coords)
    ptsy: tuple  # Reference waypoints y (world coords)
    x: float
    y: float
    psi: float  # Heading (radians)
    speed: float
    steering_angle: float  # Current actuator steering, -1.0 to 1.0
    throttle: float  # Current actuator throttle, -1.0 to 1.0


@dataclass
class ControlState:
    """Latency-compensated vehicle state in the body frame."""
    x: float
    y: float
    psi: float
    v: float
    cte: float  # Cross-track error
    epsi: float  # Heading error

    def as_array(self) -> np.ndarray:
        """Return [x, y, psi, v, cte, epsi]."""
        return np.array([self.x, self.y, self.psi, self.v, self.cte, self.epsi], dtype=np.float64)


@dataclass
class OptimizerResult:
    """First actuation of the optimal plan plus the predicted (x, y) path."""
    steering: float
    throttle: float
    trajectory: np.ndarray  # shape (K, 2)

    @classmethod
    def from_flat(cls, values: Sequence[float]) -> "OptimizerResult":
        """
        Decode a flat optimizer vector.

        Layout is [steering, throttle, x1, y1, x2, y2, ...]: entries after the
        first two alternate x (even index) and y (odd index).
        """
        flat = np.asarray(values, dtype=np.float64).ravel()
        if flat.size < 2:
            raise EncodeError(f"optimizer result needs at least 2 values, got {flat.size}")
        if flat.size % 2 != 0:
            raise EncodeError(
                f"optimizer result has odd length {flat.size}; trailing x/y values cannot be paired"
            )
        return cls(
            steering=float(flat[0]),
            throttle=float(flat[1]),
            trajectory=flat[2:].reshape(-1, 2),
        )


@dataclass
class SteerCommand:
    """Outbound "steer" event payload."""
    steering_angle: float  # Normalized to the actuator's -1.0 to 1.0 range
    throttle: float
    mpc_x: List[float] = field(default_factory=list)  # Predicted trajectory (green line)
    mpc_y: List[float] = field(default_factory=list)
    next_x: List[float] = field(default_factory=list)  # Reference line (yellow line)
    next_y: List[float] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "steering_angle": float(self.steering_angle),
            "throttle": float(self.throttle),
            "mpc_x": [float(v) for v in self.mpc_x],
            "mpc_y": [float(v) for v in self.mpc_y],
            "next_x": [float(v) for v in self.next_x],
            "next_y": [float(v) for v in self.next_y],
        }


# Cycle status codes (stored as integers in recordings)
STATUS_OK = 0
STATUS_OPTIMIZER_FAILURE = 1


@dataclass
class CycleOutput:
    """Everything one telemetry cycle produced (for logging and recording)."""
    timestamp: float
    sample: TelemetrySample
    coeffs: np.ndarray
    cte: float
    epsi: float
    state: ControlState
    command: SteerCommand
    status: int = STATUS_OK
    solve_time: float = 0.0
    connection_id: str = ""
    failure_reason: Optional[str] = None
