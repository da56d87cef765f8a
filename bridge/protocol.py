"""
Socket.IO text framing and payload decoding for the simulator link.

The simulator sends event frames as ``42["<event>", {...}]``: "4" marks an
Engine.IO message and "2" a Socket.IO event. Replies use the same framing.
"""

import json
from dataclasses import dataclass
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from control.errors import DecodeError
from data.formats.data_format import TelemetrySample

EVENT_PREFIX = "42"
TELEMETRY_EVENT = "telemetry"
MANUAL_EVENT = "manual"
STEER_EVENT = "steer"

MIN_WAYPOINTS = 4

MANUAL_REPLY = '42["manual",{}]'


class TelemetryPayload(BaseModel):
    """Telemetry payload from the simulator. Strict: numeric strings and bools are rejected."""
    model_config = ConfigDict(strict=True)

    ptsx: List[float]
    ptsy: List[float]
    x: float
    y: float
    psi: float  # radians
    speed: float
    steering_angle: float  # -1.0 to 1.0
    throttle: float

    @field_validator("ptsx", "ptsy")
    @classmethod
    def _enough_waypoints(cls, value: List[float]) -> List[float]:
        if len(value) < MIN_WAYPOINTS:
            raise ValueError(f"need at least {MIN_WAYPOINTS} waypoints, got {len(value)}")
        return value

    @model_validator(mode="after")
    def _matching_lengths(self) -> "TelemetryPayload":
        if len(self.ptsx) != len(self.ptsy):
            raise ValueError(f"ptsx/ptsy length mismatch: {len(self.ptsx)} != {len(self.ptsy)}")
        return self


@dataclass
class InboundEvent:
    """A decoded Socket.IO event. data is None when the frame carried null."""
    name: str
    data: Optional[Any]


def extract_event_json(frame: str) -> str:
    """
    Return the JSON array of a "42" frame, or "" when there is no data.

    Frames containing null (manual driving) yield "".
    """
    if "null" in frame:
        return ""
    start = frame.find("[")
    end = frame.rfind("}]")
    if start != -1 and end != -1:
        return frame[start:end + 2]
    return ""


def parse_frame(frame: str) -> Optional[InboundEvent]:
    """
    Parse an inbound text frame.

    Returns:
        None for frames that are not Socket.IO events (handshake, ping),
        an InboundEvent otherwise. A "42" frame without data becomes a
        manual event.

    Raises:
        DecodeError: the frame claims to be an event but its JSON is invalid
    """
    if len(frame) <= 2 or not frame.startswith(EVENT_PREFIX):
        return None

    body = extract_event_json(frame)
    if not body:
        return InboundEvent(name=MANUAL_EVENT, data=None)

    try:
        message = json.loads(body)
    except json.JSONDecodeError as e:
        raise DecodeError(f"invalid JSON in event frame: {e}") from e

    if not isinstance(message, list) or not message or not isinstance(message[0], str):
        raise DecodeError("event frame must be a JSON array starting with the event name")
    data = message[1] if len(message) > 1 else None
    return InboundEvent(name=message[0], data=data)


def decode_telemetry(data: Any) -> TelemetrySample:
    """Validate a telemetry payload and convert it to a TelemetrySample."""
    if not isinstance(data, dict):
        raise DecodeError(f"telemetry payload must be an object, got {type(data).__name__}")
    try:
        payload = TelemetryPayload.model_validate(data)
    except ValidationError as e:
        raise DecodeError(f"invalid telemetry payload: {e.error_count()} error(s): {e.errors()[0]['msg']}") from e

    return TelemetrySample(
        ptsx=tuple(payload.ptsx),
        ptsy=tuple(payload.ptsy),
        x=payload.x,
        y=payload.y,
        psi=payload.psi,
        speed=payload.speed,
        steering_angle=payload.steering_angle,
        throttle=payload.throttle,
    )


def encode_event(name: str, payload: dict) -> str:
    """Frame an outbound event."""
    return EVENT_PREFIX + json.dumps([name, payload], separators=(",", ":"))
