"""
MPC stack: telemetry-to-control cycle for the simulator bridge.
Connects frame transform, reference fitting, latency compensation, the
optimizer, and response encoding.
"""

import time
import math
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from bridge.protocol import (
    MANUAL_EVENT,
    MANUAL_REPLY,
    STEER_EVENT,
    TELEMETRY_EVENT,
    decode_telemetry,
    encode_event,
    parse_frame,
)
from control.actuation import ReferenceLineConfig, build_steer_command, neutral_steer_command
from control.errors import OptimizerFailure
from control.mpc_controller import MPCController, build_mpc_controller
from control.vehicle_model import KinematicBicycleModel
from data.formats.data_format import (
    CycleOutput,
    STATUS_OK,
    STATUS_OPTIMIZER_FAILURE,
    TelemetrySample,
)
from data.recorder import CycleRecorder
from trajectory.utils import compute_tracking_errors, polyfit, world_to_vehicle_frame

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config" / "mpc_config.yaml"


@dataclass
class StackConfig:
    """Configuration for the MPC stack."""
    wheelbase: float = 2.67  # Lf
    max_steering_angle_deg: float = 25.0
    # Latency assumed by the compensator; also the dispatch delay.
    latency_s: float = 0.1
    polynomial_degree: int = 3
    reference_points: int = 25
    reference_spacing: float = 2.5
    mpc: dict = field(default_factory=dict)
    host: str = "127.0.0.1"
    port: int = 4567
    optimizer_timeout_s: float = 1.0
    slow_cycle_s: float = 0.5
    record: bool = False
    recording_dir: str = "data/recordings"
    recording_flush_every: int = 30
    log_dir: str = "tmp/logs"
    log_level: str = "INFO"

    @property
    def max_steering_angle(self) -> float:
        return math.radians(self.max_steering_angle_deg)

    def validate(self) -> "StackConfig":
        if self.latency_s < 0.0:
            raise ValueError(f"latency_s must be >= 0, got {self.latency_s}")
        if self.polynomial_degree < 1:
            raise ValueError(f"polynomial_degree must be >= 1, got {self.polynomial_degree}")
        if self.reference_points < 1:
            raise ValueError(f"reference_points must be >= 1, got {self.reference_points}")
        if int(self.mpc.get("horizon", 10)) < 2:
            raise ValueError("mpc.horizon must be >= 2")
        if self.optimizer_timeout_s <= 0.0:
            raise ValueError(f"optimizer_timeout_s must be > 0, got {self.optimizer_timeout_s}")
        return self


def load_config(config_path: Optional[str] = None) -> dict:
    """Load configuration from YAML file or use defaults."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        return config
    else:
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return {}


def build_stack_config(config: dict) -> StackConfig:
    """Build a StackConfig from the loaded configuration dictionary."""
    vehicle_cfg = config.get("vehicle", {}) or {}
    latency_cfg = config.get("latency", {}) or {}
    trajectory_cfg = config.get("trajectory", {}) or {}
    bridge_cfg = config.get("bridge", {}) or {}
    recording_cfg = config.get("recording", {}) or {}
    logging_cfg = config.get("logging", {}) or {}

    return StackConfig(
        wheelbase=float(vehicle_cfg.get("wheelbase", 2.67)),
        max_steering_angle_deg=float(vehicle_cfg.get("max_steering_angle_deg", 25.0)),
        latency_s=float(latency_cfg.get("latency_s", 0.1)),
        polynomial_degree=int(trajectory_cfg.get("polynomial_degree", 3)),
        reference_points=int(trajectory_cfg.get("reference_points", 25)),
        reference_spacing=float(trajectory_cfg.get("reference_spacing", 2.5)),
        mpc=dict(config.get("mpc", {}) or {}),
        host=str(bridge_cfg.get("host", "127.0.0.1")),
        port=int(bridge_cfg.get("port", 4567)),
        optimizer_timeout_s=float(bridge_cfg.get("optimizer_timeout_s", 1.0)),
        slow_cycle_s=float(bridge_cfg.get("slow_cycle_s", 0.5)),
        record=bool(recording_cfg.get("enabled", False)),
        recording_dir=str(recording_cfg.get("recording_dir", "data/recordings")),
        recording_flush_every=int(recording_cfg.get("flush_every", 30)),
        log_dir=str(logging_cfg.get("log_dir", "tmp/logs")),
        log_level=str(logging_cfg.get("level", "INFO")),
    ).validate()


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """Send root logging to stderr and, if log_dir is given, tmp/logs/mpc_stack.log."""
    handlers = [logging.StreamHandler()]
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_path / "mpc_stack.log")))
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


IDLE = "idle"
PROCESSING = "processing"


class ControlSession:
    """
    Per-connection cycle state.

    Holds the actuator values applied before the current cycle (used for
    latency compensation) and the last command sent. One session per
    connection; cycles of one session never run concurrently.
    """

    def __init__(self, connection_id: str = ""):
        self.connection_id = connection_id
        self.state = IDLE
        self.previous_steering = 0.0
        self.previous_throttle = 0.0
        self.last_command = None
        self.current_coeffs = None  # fit of the cycle in progress, for the timeout reply
        self.cycle_count = 0
        self.optimizer_failures = 0
        self.aborted_cycles = 0
        self._lock = threading.Lock()

    def begin_cycle(self) -> None:
        if not self._lock.acquire(blocking=False):
            raise RuntimeError(f"session {self.connection_id!r} already processing a cycle")
        self.state = PROCESSING

    def end_cycle(self) -> None:
        self.state = IDLE
        self._lock.release()

    def observe_actuators(self, sample: TelemetrySample) -> None:
        """Take the actuator values reported with the telemetry as the applied ones."""
        self.previous_steering = sample.steering_angle
        self.previous_throttle = sample.throttle


class MPCStack:
    """Runs the telemetry-to-control cycle."""

    def __init__(self, config: Optional[StackConfig] = None,
                 controller: Optional[MPCController] = None,
                 recorder: Optional[CycleRecorder] = None):
        """
        Initialize the MPC stack.

        Args:
            config: Stack configuration (defaults if None)
            controller: Optimizer boundary (scipy MPC built from config if None)
            recorder: Optional cycle recorder
        """
        self.config = config or StackConfig()
        self.model = KinematicBicycleModel(
            wheelbase=self.config.wheelbase,
            max_steering_angle=self.config.max_steering_angle,
        )
        self.controller = controller or build_mpc_controller(
            self.config.mpc, self.model, self.config.polynomial_degree
        )
        self.reference = ReferenceLineConfig(
            num_points=self.config.reference_points,
            spacing=self.config.reference_spacing,
        )
        self.recorder = recorder

    def run_cycle(self, sample: TelemetrySample, session: ControlSession) -> CycleOutput:
        """
        One control cycle on a decoded telemetry sample.

        Raises:
            FitError: waypoints cannot support the polynomial degree
            EncodeError: optimizer output cannot be decoded
        OptimizerFailure is absorbed: the cycle returns the neutral command.
        """
        start = time.time()
        session.begin_cycle()
        try:
            session.current_coeffs = None
            session.observe_actuators(sample)

            x_car, y_car = world_to_vehicle_frame(sample.ptsx, sample.ptsy, sample.x, sample.y, sample.psi)
            coeffs = polyfit(x_car, y_car, self.config.polynomial_degree)
            session.current_coeffs = coeffs
            cte, epsi = compute_tracking_errors(coeffs)

            state = self.model.compensate_latency(
                speed=sample.speed,
                cte=cte,
                epsi=epsi,
                steering=session.previous_steering,
                throttle=session.previous_throttle,
                latency=self.config.latency_s,
            )

            status = STATUS_OK
            failure_reason = None
            solve_start = time.time()
            try:
                result = self.controller.solve(state.as_array(), coeffs)
                command = build_steer_command(result, coeffs, self.model, self.reference)
            except OptimizerFailure as e:
                session.optimizer_failures += 1
                status = STATUS_OPTIMIZER_FAILURE
                failure_reason = str(e)
                logger.warning(
                    "[OPTIMIZER_FAILURE] connection=%s cycle=%d: %s; sending neutral command",
                    session.connection_id, session.cycle_count, e,
                )
                command = neutral_steer_command(coeffs, self.reference)
            solve_time = time.time() - solve_start

            session.last_command = command
            session.cycle_count += 1
        finally:
            session.end_cycle()

        cycle = CycleOutput(
            timestamp=start,
            sample=sample,
            coeffs=coeffs,
            cte=cte,
            epsi=epsi,
            state=state,
            command=command,
            status=status,
            solve_time=solve_time,
            connection_id=session.connection_id,
            failure_reason=failure_reason,
        )

        duration = time.time() - start
        if duration > self.config.slow_cycle_s:
            logger.warning(
                "[SLOW] cycle connection=%s duration=%.3fs solve=%.3fs",
                session.connection_id, duration, solve_time,
            )
        logger.debug(
            "cycle connection=%s cte=%.4f epsi=%.4f steer=%.4f throttle=%.4f",
            session.connection_id, cte, epsi, command.steering_angle, command.throttle,
        )

        if self.recorder is not None:
            self.recorder.record_cycle(cycle)
        return cycle

    def fail_safe_reply(self, session: ControlSession) -> str:
        """
        Neutral steer frame used when a cycle cannot finish in time.

        Carries the reference line of the session's current fit, so a timed-out
        cycle replies with the same payload as an optimizer failure inside it.
        """
        command = neutral_steer_command(session.current_coeffs, self.reference)
        return encode_event(STEER_EVENT, command.to_payload())

    def process_message(self, frame: str, session: ControlSession) -> Optional[str]:
        """
        Handle one inbound frame.

        Returns:
            The reply frame, or None when nothing should be sent

        Raises:
            DecodeError, FitError, EncodeError: the cycle is aborted
        """
        event = parse_frame(frame)
        if event is None:
            return None
        if event.name != TELEMETRY_EVENT or event.data is None:
            if event.name != MANUAL_EVENT:
                logger.debug("Non-telemetry event %r, replying manual", event.name)
            return MANUAL_REPLY

        sample = decode_telemetry(event.data)
        cycle = self.run_cycle(sample, session)
        return encode_event(STEER_EVENT, cycle.command.to_payload())

    def close(self) -> None:
        if self.recorder is not None:
            self.recorder.close()


def build_stack(config: StackConfig, record: Optional[bool] = None,
                recording_dir: Optional[str] = None) -> MPCStack:
    """Build an MPCStack (and recorder, when enabled) from a StackConfig."""
    recorder = None
    enabled = config.record if record is None else record
    if enabled:
        recorder = CycleRecorder(
            recording_dir or config.recording_dir,
            coeff_count=config.polynomial_degree + 1,
            flush_every=config.recording_flush_every,
        )
    return MPCStack(config=config, recorder=recorder)


def main():
    """Main entry point."""
    import argparse
    import uvicorn
    from bridge.server import create_app

    parser = argparse.ArgumentParser(description='Run MPC bridge')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to configuration YAML file (default: config/mpc_config.yaml)')
    parser.add_argument('--host', type=str, default=None,
                        help='Interface to bind (default from config)')
    parser.add_argument('--port', type=int, default=None,
                        help='Port to listen on (default: 4567)')
    parser.add_argument('--record', action='store_true', default=None,
                        help='Record cycles to HDF5')
    parser.add_argument('--recording_dir', type=str, default=None,
                        help='Directory for recordings')
    parser.add_argument('--log-level', type=str, default=None,
                        help='Logging level (default from config)')

    args = parser.parse_args()

    config = build_stack_config(load_config(args.config))
    configure_logging(args.log_level or config.log_level, config.log_dir)

    stack = build_stack(config, record=args.record, recording_dir=args.recording_dir)
    app = create_app(stack)
    host = args.host or config.host
    port = args.port or config.port
    logger.info("Listening to port %d", port)
    try:
        uvicorn.run(app, host=host, port=port, log_level=(args.log_level or config.log_level).lower())
    finally:
        stack.close()


if __name__ == "__main__":
    main()
