"""
Tests for simulator frame parsing and telemetry decoding.
"""

import json

import pytest

from bridge.protocol import (
    MANUAL_EVENT,
    MANUAL_REPLY,
    decode_telemetry,
    encode_event,
    extract_event_json,
    parse_frame,
)
from control.errors import DecodeError


def _telemetry(**overrides):
    data = {
        "ptsx": [-32.16173, -43.49173, -61.09, -78.29172, -93.05002, -107.7717],
        "ptsy": [113.361, 105.941, 92.88499, 78.73102, 65.34102, 50.57938],
        "x": -40.62008,
        "y": 108.7301,
        "psi": 3.733651,
        "speed": 0.4380061,
        "steering_angle": 0.0,
        "throttle": 0.0,
    }
    data.update(overrides)
    return data


def _frame(event, data):
    return "42" + json.dumps([event, data])


class TestFrameParsing:
    def test_telemetry_frame(self):
        event = parse_frame(_frame("telemetry", _telemetry()))
        assert event.name == "telemetry"
        assert event.data["x"] == pytest.approx(-40.62008)

    def test_null_data_is_manual(self):
        event = parse_frame('42["telemetry",null]')
        assert event.name == MANUAL_EVENT
        assert event.data is None

    def test_manual_event(self):
        event = parse_frame('42["manual",{}]')
        assert event.name == "manual"
        assert event.data == {}

    @pytest.mark.parametrize("frame", ["", "4", "42", "0{\"sid\":\"abc\"}", "2", "3probe", "40"])
    def test_non_event_frames_are_ignored(self, frame):
        assert parse_frame(frame) is None

    def test_frame_without_object_is_manual(self):
        event = parse_frame('42["ping"]')
        assert event.name == MANUAL_EVENT

    def test_invalid_json_raises(self):
        with pytest.raises(DecodeError):
            parse_frame('42["telemetry",{"x": }]')

    def test_non_array_body_raises(self):
        with pytest.raises(DecodeError):
            parse_frame('42[{"x": 1}]')

    def test_extract_strips_trailing_noise(self):
        body = extract_event_json('42["telemetry",{"a":1}]')
        assert body == '["telemetry",{"a":1}]'


class TestTelemetryDecoding:
    def test_valid_payload(self):
        sample = decode_telemetry(_telemetry())
        assert len(sample.ptsx) == 6
        assert sample.psi == pytest.approx(3.733651)
        assert sample.steering_angle == 0.0

    def test_integers_accepted_as_reals(self):
        sample = decode_telemetry(_telemetry(ptsx=[0, 25, 50, 75], ptsy=[0, 0, 0, 0], x=0, speed=0))
        assert sample.ptsx == (0.0, 25.0, 50.0, 75.0)

    def test_sample_is_immutable(self):
        sample = decode_telemetry(_telemetry())
        with pytest.raises(AttributeError):
            sample.x = 1.0

    @pytest.mark.parametrize("field", ["ptsx", "ptsy", "x", "y", "psi", "speed", "steering_angle", "throttle"])
    def test_missing_field_raises(self, field):
        data = _telemetry()
        del data[field]
        with pytest.raises(DecodeError):
            decode_telemetry(data)

    @pytest.mark.parametrize("overrides", [
        {"speed": "fast"},
        {"speed": "12.5"},
        {"x": True},
        {"ptsx": ["1", "2", "3", "4", "5", "6"]},
        {"ptsy": 5.0},
    ])
    def test_mistyped_field_raises(self, overrides):
        """Numeric strings and bools are not coerced into reals."""
        with pytest.raises(DecodeError):
            decode_telemetry(_telemetry(**overrides))

    def test_length_mismatch_raises(self):
        with pytest.raises(DecodeError):
            decode_telemetry(_telemetry(ptsx=[0.0, 1.0, 2.0, 3.0, 4.0], ptsy=[0.0, 1.0, 2.0, 3.0]))

    def test_too_few_waypoints_raises(self):
        with pytest.raises(DecodeError):
            decode_telemetry(_telemetry(ptsx=[0.0, 1.0, 2.0], ptsy=[0.0, 1.0, 2.0]))

    def test_non_object_payload_raises(self):
        with pytest.raises(DecodeError):
            decode_telemetry([1, 2, 3])


class TestEncoding:
    def test_encode_event(self):
        frame = encode_event("steer", {"steering_angle": 0.1, "throttle": 0.3})
        assert frame.startswith('42["steer",')
        name, payload = json.loads(frame[2:])
        assert name == "steer"
        assert payload == {"steering_angle": 0.1, "throttle": 0.3}

    def test_manual_reply(self):
        assert MANUAL_REPLY == '42["manual",{}]'
        assert encode_event("manual", {}) == MANUAL_REPLY
