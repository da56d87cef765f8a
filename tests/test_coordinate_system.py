"""
Tests for world-to-vehicle frame conversion.
These tests catch sign and rotation mistakes in the coordinate transform.
"""

import math

import pytest
import numpy as np

from trajectory.utils import world_to_vehicle_frame, vehicle_to_world_frame


class TestWorldToVehicleFrame:
    """Test waypoint conversion into the car's frame."""

    def test_identity_pose_leaves_points_unchanged(self):
        x, y = world_to_vehicle_frame([1.0, 2.0, 3.0], [4.0, 5.0, 6.0], 0.0, 0.0, 0.0)
        np.testing.assert_allclose(x, [1.0, 2.0, 3.0])
        np.testing.assert_allclose(y, [4.0, 5.0, 6.0])

    def test_translation_only(self):
        x, y = world_to_vehicle_frame([10.0], [5.0], 4.0, 2.0, 0.0)
        assert x[0] == pytest.approx(6.0)
        assert y[0] == pytest.approx(3.0)

    def test_point_ahead_along_heading_has_positive_x(self):
        """A point 10m along the heading should land on the body x-axis."""
        psi = math.pi / 2
        x, y = world_to_vehicle_frame([0.0], [10.0], 0.0, 0.0, psi)
        assert x[0] == pytest.approx(10.0)
        assert y[0] == pytest.approx(0.0, abs=1e-12)

    def test_point_to_the_left_has_positive_y(self):
        psi = math.pi / 2
        # Heading north, west is to the left
        x, y = world_to_vehicle_frame([-3.0], [0.0], 0.0, 0.0, psi)
        assert x[0] == pytest.approx(0.0, abs=1e-12)
        assert y[0] == pytest.approx(3.0)

    def test_matches_explicit_formula(self):
        px, py, psi = 12.0, -7.5, 0.7
        wx, wy = 20.0, 3.0
        x, y = world_to_vehicle_frame([wx], [wy], px, py, psi)
        assert x[0] == pytest.approx((wx - px) * math.cos(psi) + (wy - py) * math.sin(psi))
        assert y[0] == pytest.approx((wy - py) * math.cos(psi) - (wx - px) * math.sin(psi))

    def test_vehicle_position_maps_to_origin(self):
        x, y = world_to_vehicle_frame([-40.62], [108.73], -40.62, 108.73, 3.733651)
        assert x[0] == pytest.approx(0.0, abs=1e-12)
        assert y[0] == pytest.approx(0.0, abs=1e-12)

    @pytest.mark.parametrize("psi", [-math.pi, -2.0, -0.5, 0.0, 0.3, 1.5, math.pi])
    def test_round_trip_restores_world_points(self, psi):
        rng = np.random.default_rng(7)
        ptsx = rng.uniform(-200.0, 200.0, size=8)
        ptsy = rng.uniform(-200.0, 200.0, size=8)
        px, py = rng.uniform(-100.0, 100.0, size=2)

        x_car, y_car = world_to_vehicle_frame(ptsx, ptsy, px, py, psi)
        wx, wy = vehicle_to_world_frame(x_car, y_car, px, py, psi)

        np.testing.assert_allclose(wx, ptsx, atol=1e-9)
        np.testing.assert_allclose(wy, ptsy, atol=1e-9)

    def test_distances_preserved(self):
        """Rigid transform: distances between points are unchanged."""
        ptsx = np.array([0.0, 3.0, -4.0])
        ptsy = np.array([0.0, 4.0, 1.0])
        x, y = world_to_vehicle_frame(ptsx, ptsy, 2.0, -1.0, 1.1)
        world_d = np.hypot(np.diff(ptsx), np.diff(ptsy))
        body_d = np.hypot(np.diff(x), np.diff(y))
        np.testing.assert_allclose(body_d, world_d)
