"""
Replay utility for MPC bridge recordings.
"""

import json
import h5py
import numpy as np
from pathlib import Path
from typing import Iterator


class CycleReplay:
    """Replay recorded control cycles."""

    def __init__(self, recording_file: str):
        """
        Initialize cycle replay.

        Args:
            recording_file: Path to HDF5 recording file
        """
        self.recording_file = Path(recording_file)
        if not self.recording_file.exists():
            raise FileNotFoundError(f"Recording file not found: {recording_file}")

        self.h5_file = h5py.File(self.recording_file, 'r')
        self._load_metadata()

    def _load_metadata(self):
        if "metadata" in self.h5_file.attrs:
            self.metadata = json.loads(self.h5_file.attrs["metadata"])
        else:
            self.metadata = {}

    def __len__(self) -> int:
        if "cycle/timestamps" not in self.h5_file:
            return 0
        return len(self.h5_file["cycle/timestamps"])

    def get_cycles(self) -> Iterator[dict]:
        """
        Get recorded cycles iterator.

        Yields:
            Dictionary with one cycle's data
        """
        f = self.h5_file
        connection_ids = f["cycle/connection_id"]
        for i in range(len(self)):
            connection_id = connection_ids[i]
            if isinstance(connection_id, bytes):
                connection_id = connection_id.decode("utf-8")
            yield {
                "timestamp": float(f["cycle/timestamps"][i]),
                "connection_id": connection_id,
                "status": int(f["cycle/status"][i]),
                "solve_time": float(f["cycle/solve_time"][i]),
                "ptsx": np.asarray(f["vehicle/ptsx"][i]),
                "ptsy": np.asarray(f["vehicle/ptsy"][i]),
                "position": f["vehicle/position"][i],
                "psi": float(f["vehicle/psi"][i]),
                "speed": float(f["vehicle/speed"][i]),
                "steering_angle_in": float(f["vehicle/steering_angle"][i]),
                "throttle_in": float(f["vehicle/throttle"][i]),
                "coeffs": f["trajectory/coeffs"][i],
                "cte": float(f["trajectory/cte"][i]),
                "epsi": float(f["trajectory/epsi"][i]),
                "state": f["control/state"][i],
                "steering_angle": float(f["control/steering_angle"][i]),
                "throttle": float(f["control/throttle"][i]),
                "mpc_x": np.asarray(f["control/mpc_x"][i]),
                "mpc_y": np.asarray(f["control/mpc_y"][i]),
            }

    def close(self):
        self.h5_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
