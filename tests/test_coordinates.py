"""
Tests for coordinate system conversions.

This is a HIGH PRIORITY test module - every exported pose and point goes
through these transforms.
"""

import numpy as np
import pytest

from scene2colmap import coordinates
from scene2colmap.coordinates import Rotator


class TestEngineCoordinates:
    """Test coordinate system definitions."""

    def test_axes_are_orthonormal(self):
        """Forward, right and up are unit length and mutually orthogonal."""
        forward = coordinates.EngineCoordinates.FORWARD_AXIS
        right = coordinates.EngineCoordinates.RIGHT_AXIS
        up = coordinates.EngineCoordinates.UP_AXIS

        for axis in (forward, right, up):
            assert np.isclose(np.linalg.norm(axis), 1.0)
        assert np.isclose(np.dot(forward, right), 0.0)
        assert np.isclose(np.dot(forward, up), 0.0)
        assert np.isclose(np.dot(right, up), 0.0)

    def test_axis_swap_flips_handedness(self):
        """Engine is left-handed, COLMAP right-handed."""
        assert np.isclose(np.linalg.det(coordinates.AXIS_SWAP), -1.0)

    def test_axis_swap_inverse(self):
        """INVERSE_AXIS_SWAP undoes AXIS_SWAP."""
        assert np.allclose(coordinates.AXIS_SWAP @ coordinates.INVERSE_AXIS_SWAP, np.eye(3))


class TestRotator:
    """Test engine rotator math."""

    def test_zero_rotator_is_identity(self):
        """Zero rotator is the identity matrix."""
        assert np.allclose(Rotator().to_matrix(), np.eye(3))

    def test_yaw_turns_toward_right(self):
        """Yaw 90 looks down +Y."""
        assert np.allclose(Rotator(0.0, 90.0, 0.0).vector(), [0, 1, 0], atol=1e-12)

    def test_positive_pitch_looks_up(self):
        """Positive pitch tilts the forward vector toward +Z."""
        forward = Rotator(30.0, 0.0, 0.0).vector()
        assert np.allclose(forward, [np.cos(np.radians(30)), 0, 0.5])

    def test_matrix_is_proper_rotation(self):
        """Rotator matrices are orthonormal with determinant 1."""
        R = Rotator(25.0, -70.0, 15.0).to_matrix()
        assert np.allclose(R.T @ R, np.eye(3))
        assert np.isclose(np.linalg.det(R), 1.0)

    def test_from_matrix_roundtrip(self):
        """from_matrix recovers the angles."""
        original = Rotator(20.0, 45.0, 10.0)
        recovered = Rotator.from_matrix(original.to_matrix())
        assert recovered.is_nearly_equal(original, tolerance=1e-6)

    def test_from_quaternion_roundtrip(self):
        """from_quaternion recovers the angles."""
        original = Rotator(-35.0, 160.0, -5.0)
        recovered = Rotator.from_quaternion(original.quaternion())
        assert recovered.is_nearly_equal(original, tolerance=1e-6)

    def test_normalized_wraps_angles(self):
        """Angles wrap into (-180, 180]."""
        r = Rotator(0.0, 370.0, -190.0).normalized()
        assert np.isclose(r.yaw, 10.0)
        assert np.isclose(r.roll, 170.0)

    def test_normalized_keeps_180(self):
        """Wrapped range is (-180, 180]."""
        assert Rotator(0.0, -180.0, 0.0).normalized().yaw == 180.0

    def test_is_nearly_equal_across_wraparound(self):
        """Comparison treats 360 and 0 as equal."""
        assert Rotator(0.0, 359.9995, 0.0).is_nearly_equal(Rotator(0.0, -0.0005, 0.0))
        assert not Rotator(0.0, 10.0, 0.0).is_nearly_equal(Rotator(0.0, 11.0, 0.0))

    def test_from_direction(self):
        """A -Y direction is yaw -90 with no pitch or roll."""
        r = Rotator.from_direction(np.array([0.0, -10.0, 0.0]))
        assert np.isclose(r.yaw, -90.0)
        assert np.isclose(r.pitch, 0.0)
        assert r.roll == 0.0

    def test_from_zero_direction(self):
        """Zero direction gives the zero rotator."""
        assert Rotator.from_direction(np.zeros(3)) == Rotator()


class TestQuaternions:
    """Test rotation matrix <-> quaternion conversion."""

    def test_identity_rotation(self):
        """Identity matrix is the unit quaternion."""
        quat = coordinates.rotation_to_quaternion_wxyz(np.eye(3))
        assert np.allclose(quat, [1, 0, 0, 0])

    def test_90deg_rotation_around_z(self):
        """90 degrees about Z is (cos 45, 0, 0, sin 45)."""
        R = np.array([
            [0, -1, 0],
            [1,  0, 0],
            [0,  0, 1]
        ], dtype=np.float64)

        quat = coordinates.rotation_to_quaternion_wxyz(R)

        sqrt2_over_2 = np.sqrt(2) / 2
        assert np.allclose(quat, [sqrt2_over_2, 0, 0, sqrt2_over_2])

    def test_180deg_rotation_around_x(self):
        """Negative trace takes the non-w branch."""
        quat = coordinates.rotation_to_quaternion_wxyz(np.diag([1.0, -1.0, -1.0]))
        assert np.allclose(np.abs(quat), [0, 1, 0, 0])

    def test_matrix_roundtrip(self):
        """Matrix to quaternion and back is lossless."""
        R = Rotator(10.0, 200.0, 33.0).to_matrix()
        quat = coordinates.rotation_to_quaternion_wxyz(R)
        assert np.allclose(coordinates.quaternion_to_rotation_matrix(quat), R)

    def test_zero_quaternion_normalizes_to_identity(self):
        """Normalizing zero gives the identity quaternion."""
        assert np.allclose(coordinates.normalize_quaternion(np.zeros(4)), [1, 0, 0, 0])

    def test_inverse_composes_to_identity(self):
        """q and its inverse compose to the identity."""
        quat = Rotator(15.0, 75.0, 0.0).quaternion()
        R = coordinates.quaternion_to_rotation_matrix(quat)
        R_inv = coordinates.quaternion_to_rotation_matrix(coordinates.quaternion_inverse(quat))
        assert np.allclose(R @ R_inv, np.eye(3))


class TestPositionConversion:
    """Test engine -> COLMAP position conversion."""

    def test_axis_mapping(self):
        """Forward -> +Z, right -> +X, up -> -Y, cm -> m."""
        assert np.allclose(coordinates.convert_position_to_colmap([100, 0, 0]), [0, 0, 1])
        assert np.allclose(coordinates.convert_position_to_colmap([0, 100, 0]), [1, 0, 0])
        assert np.allclose(coordinates.convert_position_to_colmap([0, 0, 100]), [0, -1, 0])

    def test_batch_shape(self):
        """(N, 3) input keeps its shape."""
        positions = np.random.randn(10, 3) * 100
        result = coordinates.convert_position_to_colmap(positions)
        assert result.shape == (10, 3)

    def test_roundtrip(self):
        """to_colmap then from_colmap returns the original position."""
        position = np.array([123.0, -456.0, 789.0])
        colmap = coordinates.convert_position_to_colmap(position)
        assert np.allclose(coordinates.convert_position_from_colmap(colmap), position)

    def test_homogeneous_matrices(self):
        """4x4 matrices agree with the vector conversion and invert each other."""
        position = np.array([100.0, 200.0, 300.0])
        M = coordinates.get_engine_to_colmap_matrix()
        result = M @ np.append(position, 1.0)
        assert np.allclose(result[:3], coordinates.convert_position_to_colmap(position))
        assert np.allclose(coordinates.get_colmap_to_engine_matrix() @ M, np.eye(4))

    def test_direction_is_unit_and_unscaled(self):
        """Directions are normalized, not scaled to meters."""
        assert np.allclose(coordinates.convert_direction_to_colmap([0, 0, 5]), [0, -1, 0])

    def test_zero_direction_stays_zero(self):
        """Zero direction stays zero."""
        assert np.allclose(coordinates.convert_direction_to_colmap(np.zeros(3)), 0.0)


class TestCameraConversion:
    """Test full camera pose conversion."""

    def test_default_camera_looks_down_colmap_z(self):
        """Engine forward maps onto the OpenCV look axis."""
        quat_c2w = coordinates.convert_rotation_to_colmap(Rotator())
        assert np.allclose(quat_c2w, [1, 0, 0, 0])

    def test_camera_looking_at_origin(self):
        """Origin must land on the +Z axis of the camera frame."""
        position = np.array([500.0, 0.0, 0.0])
        center, quat_w2c = coordinates.convert_camera_to_colmap(position, Rotator(0.0, 180.0, 0.0))

        assert np.allclose(center, [0, 0, 5])

        R_w2c = coordinates.quaternion_to_rotation_matrix(quat_w2c)
        target_cam = R_w2c @ (np.zeros(3) - center)
        assert np.allclose(target_cam, [0, 0, 5])

    def test_camera_up_maps_to_negative_y(self):
        """Engine up is image-up, which is -Y in OpenCV camera space."""
        position = np.array([0.0, 0.0, 0.0])
        _, quat_w2c = coordinates.convert_camera_to_colmap(position, Rotator(0.0, 0.0, 0.0))
        R_w2c = coordinates.quaternion_to_rotation_matrix(quat_w2c)

        world_up = coordinates.convert_direction_to_colmap([0, 0, 1])
        assert np.allclose(R_w2c @ world_up, [0, -1, 0])

    def test_output_quaternion_is_unit(self):
        """World-to-camera quaternions are normalized."""
        _, quat = coordinates.convert_camera_to_colmap(np.array([10.0, 20.0, 30.0]), Rotator(12.0, 34.0, 56.0))
        assert np.isclose(np.linalg.norm(quat), 1.0)

    def test_camera_center_recovery(self):
        """C = -R^T t recovers the converted position."""
        position = np.array([250.0, -100.0, 80.0])
        center, quat_w2c = coordinates.convert_camera_to_colmap(position, Rotator(-10.0, 150.0, 0.0))
        R_w2c = coordinates.quaternion_to_rotation_matrix(quat_w2c)
        translation = -R_w2c @ center

        assert np.allclose(coordinates.compute_camera_center(quat_w2c, translation), center)

    @pytest.mark.parametrize("rotation", [
        Rotator(0.0, 0.0, 0.0),
        Rotator(30.0, 45.0, 0.0),
        Rotator(-60.0, -120.0, 20.0),
        Rotator(10.0, 179.0, -30.0),
    ])
    def test_rotation_roundtrip(self, rotation):
        """Rotation to COLMAP and back recovers the rotator."""
        quat = coordinates.convert_rotation_to_colmap(rotation)
        recovered = coordinates.convert_rotation_from_colmap(quat)
        assert recovered.is_nearly_equal(rotation, tolerance=1e-6)

    def test_quat_and_rotator_paths_agree(self):
        """Quaternion and rotator conversions give the same rotation."""
        rotation = Rotator(22.0, -48.0, 7.0)
        via_quat = coordinates.convert_quat_to_colmap(rotation.quaternion())
        via_rotator = coordinates.convert_rotation_to_colmap(rotation)
        # q and -q describe the same rotation
        assert np.isclose(abs(np.dot(via_quat, via_rotator)), 1.0)


class TestPlyConversion:
    """Test Gaussian attribute conversion for PLY export."""

    def test_identity_rotation(self):
        """Zero rotator is the unit quaternion."""
        assert np.allclose(coordinates.convert_rotation_to_ply(Rotator()), [1, 0, 0, 0])

    def test_rotation_is_unit(self):
        """PLY rotations are normalized."""
        quat = coordinates.convert_rotation_to_ply(Rotator(40.0, 10.0, -20.0))
        assert np.isclose(np.linalg.norm(quat), 1.0)

    def test_scale_axes_and_units(self):
        """Scale axes are permuted and converted to meters."""
        assert np.allclose(coordinates.convert_scale_to_ply([100, 200, 300]), [2, 3, 1])

    def test_position_matches_colmap(self):
        """PLY positions use the COLMAP conversion."""
        position = np.array([10.0, 20.0, 30.0])
        assert np.allclose(
            coordinates.convert_position_to_ply(position),
            coordinates.convert_position_to_colmap(position)
        )


class TestSphericalCoordinates:
    """Test spherical <-> cartesian conversions."""

    def test_azimuth_90_is_right(self):
        """Azimuth 90 points along +Y."""
        position = coordinates.spherical_to_cartesian(100.0, 0.0, 90.0)
        assert np.allclose(position, [0, 100, 0], atol=1e-10)

    def test_elevation_90_is_up(self):
        """Elevation 90 points along +Z."""
        position = coordinates.spherical_to_cartesian(100.0, 90.0, 0.0)
        assert np.allclose(position, [0, 0, 100], atol=1e-10)

    def test_center_offset(self):
        """Results are offset by the center."""
        center = np.array([10.0, 20.0, 30.0])
        position = coordinates.spherical_to_cartesian(50.0, 0.0, 0.0, center)
        assert np.allclose(position, [60, 20, 30])

    def test_roundtrip(self):
        """cartesian_to_spherical inverts spherical_to_cartesian."""
        position = coordinates.spherical_to_cartesian(250.0, 35.0, -110.0)
        radius, elevation, azimuth = coordinates.cartesian_to_spherical(position)
        assert np.isclose(radius, 250.0)
        assert np.isclose(elevation, 35.0)
        assert np.isclose(azimuth, -110.0)

    def test_zero_offset(self):
        """Zero offset is all zeros."""
        assert coordinates.cartesian_to_spherical(np.zeros(3)) == (0.0, 0.0, 0.0)
