"""
Cycle recorder for the MPC bridge.
Records telemetry, fitted reference, compensated state, and commands per cycle.
"""

import h5py
import numpy as np
import json
import threading
import logging
from pathlib import Path
from typing import Optional, List
from datetime import datetime

from .formats.data_format import CycleOutput

logger = logging.getLogger(__name__)


class CycleRecorder:
    """Records control cycles to HDF5 format."""

    def __init__(self, output_dir: str, recording_name: Optional[str] = None,
                 coeff_count: int = 4, flush_every: int = 30):
        """
        Initialize cycle recorder.

        Args:
            output_dir: Directory to save recordings
            recording_name: Name for this recording (default: timestamp)
            coeff_count: Number of polynomial coefficients per cycle
            flush_every: Buffered cycles before writing to disk
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        if recording_name is None:
            recording_name = f"recording_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        self.recording_name = recording_name
        self.output_file = self.output_dir / f"{recording_name}.h5"
        self.coeff_count = coeff_count
        self.flush_every = max(1, int(flush_every))

        self.h5_file = h5py.File(self.output_file, 'w')
        self._create_datasets()

        self.buffer: List[CycleOutput] = []
        self.lock = threading.Lock()
        self.cycle_count = 0
        self.closed = False

        self.metadata = {
            "recording_start_time": datetime.now().isoformat(),
            "recording_name": recording_name,
            "coeff_count": coeff_count,
        }

    def _create_datasets(self):
        """Create extensible HDF5 datasets."""
        max_shape = (None,)
        float_vlen = h5py.vlen_dtype(np.float64)

        def scalar(name, dtype=np.float64):
            self.h5_file.create_dataset(name, shape=(0,), maxshape=max_shape, dtype=dtype)

        def vector(name, width):
            self.h5_file.create_dataset(name, shape=(0, width), maxshape=(None, width), dtype=np.float64)

        scalar("cycle/timestamps")
        self.h5_file.create_dataset(
            "cycle/connection_id", shape=(0,), maxshape=max_shape, dtype=h5py.string_dtype()
        )
        scalar("cycle/status", np.int8)
        scalar("cycle/solve_time")

        self.h5_file.create_dataset("vehicle/ptsx", shape=(0,), maxshape=max_shape, dtype=float_vlen)
        self.h5_file.create_dataset("vehicle/ptsy", shape=(0,), maxshape=max_shape, dtype=float_vlen)
        vector("vehicle/position", 2)
        scalar("vehicle/psi")
        scalar("vehicle/speed")
        scalar("vehicle/steering_angle")
        scalar("vehicle/throttle")

        vector("trajectory/coeffs", self.coeff_count)
        scalar("trajectory/cte")
        scalar("trajectory/epsi")

        vector("control/state", 6)
        scalar("control/steering_angle")
        scalar("control/throttle")
        self.h5_file.create_dataset("control/mpc_x", shape=(0,), maxshape=max_shape, dtype=float_vlen)
        self.h5_file.create_dataset("control/mpc_y", shape=(0,), maxshape=max_shape, dtype=float_vlen)

    def record_cycle(self, cycle: CycleOutput):
        """Buffer one cycle; flushes every flush_every cycles."""
        with self.lock:
            if self.closed:
                logger.warning("Dropping cycle: recorder %s is closed", self.recording_name)
                return
            self.buffer.append(cycle)
            if len(self.buffer) >= self.flush_every:
                self._flush_locked()

    def flush(self):
        """Write buffered cycles to disk."""
        with self.lock:
            self._flush_locked()

    def _append(self, name: str, values):
        dataset = self.h5_file[name]
        start = dataset.shape[0]
        dataset.resize(start + len(values), axis=0)
        dataset[start:] = values

    def _append_vlen(self, name: str, rows):
        dataset = self.h5_file[name]
        start = dataset.shape[0]
        dataset.resize(start + len(rows), axis=0)
        for i, row in enumerate(rows):
            dataset[start + i] = np.asarray(row, dtype=np.float64)

    def _flush_locked(self):
        if not self.buffer:
            return
        cycles = self.buffer
        self.buffer = []

        self._append("cycle/timestamps", np.array([c.timestamp for c in cycles], dtype=np.float64))
        self._append(
            "cycle/connection_id",
            np.array([c.connection_id for c in cycles], dtype=h5py.string_dtype()),
        )
        self._append("cycle/status", np.array([c.status for c in cycles], dtype=np.int8))
        self._append("cycle/solve_time", np.array([c.solve_time for c in cycles], dtype=np.float64))

        self._append_vlen("vehicle/ptsx", [c.sample.ptsx for c in cycles])
        self._append_vlen("vehicle/ptsy", [c.sample.ptsy for c in cycles])
        self._append("vehicle/position", np.array([[c.sample.x, c.sample.y] for c in cycles]))
        self._append("vehicle/psi", np.array([c.sample.psi for c in cycles]))
        self._append("vehicle/speed", np.array([c.sample.speed for c in cycles]))
        self._append("vehicle/steering_angle", np.array([c.sample.steering_angle for c in cycles]))
        self._append("vehicle/throttle", np.array([c.sample.throttle for c in cycles]))

        self._append("trajectory/coeffs", np.array([np.asarray(c.coeffs) for c in cycles]))
        self._append("trajectory/cte", np.array([c.cte for c in cycles]))
        self._append("trajectory/epsi", np.array([c.epsi for c in cycles]))

        self._append("control/state", np.array([c.state.as_array() for c in cycles]))
        self._append("control/steering_angle", np.array([c.command.steering_angle for c in cycles]))
        self._append("control/throttle", np.array([c.command.throttle for c in cycles]))
        self._append_vlen("control/mpc_x", [c.command.mpc_x for c in cycles])
        self._append_vlen("control/mpc_y", [c.command.mpc_y for c in cycles])

        self.cycle_count += len(cycles)
        self.h5_file.flush()

    def close(self):
        """Flush remaining cycles and close the file."""
        with self.lock:
            if self.closed:
                return
            self._flush_locked()
            self.metadata["recording_end_time"] = datetime.now().isoformat()
            self.metadata["cycle_count"] = self.cycle_count
            self.h5_file.attrs["metadata"] = json.dumps(self.metadata)
            self.h5_file.close()
            self.closed = True
        logger.info("Recording saved: %s (%d cycles)", self.output_file, self.cycle_count)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
