"""
Coordinate system definitions and conversion functions.

This module defines the two coordinate systems scene2colmap works with and
provides the conversions between them.

Engine Coordinate System (input, Unreal Engine convention):
    Units: centimeters
    +X: Forward
    +Y: Right
    +Z: Up
    Left-handed. A camera looks down its local +X axis.
    Orientations are (pitch, yaw, roll) rotators in degrees.

COLMAP / 3DGS Coordinate System (output):
    Units: meters
    +X: Right
    +Y: Down
    +Z: Forward
    Right-handed. A camera looks down its local +Z axis (OpenCV).
    Poses are stored world-to-camera as quaternion (w, x, y, z) + translation.

Coordinate conversions happen ONLY at export boundaries:
1. Camera poses: Viewpoint -> ColmapImage (in colmap.py)
2. Geometry: mesh / point cloud samples -> PLY records (in ply.py)
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple
from numpy.typing import NDArray

from .utils import safe_normalize, wrap_angle_deg, angle_difference_deg


CM_TO_METERS = 0.01
METERS_TO_CM = 100.0

# target_X = source_Y, target_Y = -source_Z, target_Z = source_X
AXIS_SWAP = np.array([
    [0.0, 1.0,  0.0],
    [0.0, 0.0, -1.0],
    [1.0, 0.0,  0.0]
], dtype=np.float64)

# source_X = target_Z, source_Y = target_X, source_Z = -target_Y
INVERSE_AXIS_SWAP = np.array([
    [0.0,  0.0, 1.0],
    [1.0,  0.0, 0.0],
    [0.0, -1.0, 0.0]
], dtype=np.float64)

# Engine cameras look down local +X. AXIS_SWAP already carries local +X onto
# the OpenCV +Z look axis, so the look correction is the identity rotation
# built from the engine forward axis.
CAMERA_CORRECTION = np.eye(3, dtype=np.float64)


class EngineCoordinates:
    """
    Documentation of the engine (input) coordinate system.

    - +X: Forward
    - +Y: Right
    - +Z: Up (toward sky)
    - Units: centimeters

    Camera convention:
    - Camera looks down its local +X axis
    - Camera right is local +Y, camera up is local +Z
    """

    FORWARD_AXIS = np.array([1.0, 0.0, 0.0])
    RIGHT_AXIS = np.array([0.0, 1.0, 0.0])
    UP_AXIS = np.array([0.0, 0.0, 1.0])


@dataclass(frozen=True)
class Rotator:
    """
    Engine orientation as (pitch, yaw, roll) in degrees.

    - pitch: rotation about the right axis, positive looks up
    - yaw: rotation about the up axis, positive turns toward +Y
    - roll: rotation about the forward axis

    The rotation matrix returned by to_matrix() is camera-to-world:
    its columns are the local forward, right and up axes in world coords.
    """

    pitch: float = 0.0
    yaw: float = 0.0
    roll: float = 0.0

    def to_matrix(self) -> NDArray[np.float64]:
        """
        Rotation matrix with columns (forward, right, up).

        Returns:
            3x3 rotation matrix (local-to-world)
        """
        p, y, r = np.radians([self.pitch, self.yaw, self.roll])
        sp, cp = np.sin(p), np.cos(p)
        sy, cy = np.sin(y), np.cos(y)
        sr, cr = np.sin(r), np.cos(r)

        forward = [cp * cy, cp * sy, sp]
        right = [sr * sp * cy - cr * sy, sr * sp * sy + cr * cy, -sr * cp]
        up = [-(cr * sp * cy + sr * sy), cy * sr - cr * sp * sy, cr * cp]

        return np.column_stack([forward, right, up]).astype(np.float64)

    def vector(self) -> NDArray[np.float64]:
        """Unit forward (look) direction in world coordinates."""
        return self.to_matrix()[:, 0]

    def quaternion(self) -> NDArray[np.float64]:
        """Rotation as quaternion (w, x, y, z)."""
        return rotation_to_quaternion_wxyz(self.to_matrix())

    def normalized(self) -> "Rotator":
        """Same orientation with every angle wrapped into (-180, 180]."""
        return Rotator(
            wrap_angle_deg(self.pitch),
            wrap_angle_deg(self.yaw),
            wrap_angle_deg(self.roll)
        )

    def is_nearly_equal(self, other: "Rotator", tolerance: float = 1e-3) -> bool:
        """
        Compare two rotators per axis, modulo 360 degree wraparound.

        Args:
            other: Rotator to compare against
            tolerance: Maximum allowed difference per axis in degrees
        """
        return (
            angle_difference_deg(self.pitch, other.pitch) <= tolerance
            and angle_difference_deg(self.yaw, other.yaw) <= tolerance
            and angle_difference_deg(self.roll, other.roll) <= tolerance
        )

    @classmethod
    def from_matrix(cls, R: NDArray[np.float64]) -> "Rotator":
        """
        Recover (pitch, yaw, roll) from a rotation matrix.

        Inverse of to_matrix() for pitch in (-90, 90).

        Args:
            R: 3x3 rotation matrix with columns (forward, right, up)

        Returns:
            Rotator
        """
        R = np.asarray(R, dtype=np.float64)
        forward, right, up = R[:, 0], R[:, 1], R[:, 2]

        pitch = np.degrees(np.arctan2(forward[2], np.hypot(forward[0], forward[1])))
        yaw = np.degrees(np.arctan2(forward[1], forward[0]))

        # Right axis of the roll-free rotator with the same heading
        roll_free_right = cls(float(pitch), float(yaw), 0.0).to_matrix()[:, 1]
        roll = np.degrees(np.arctan2(np.dot(up, roll_free_right), np.dot(right, roll_free_right)))

        return cls(float(pitch), float(yaw), float(roll))

    @classmethod
    def from_quaternion(cls, quat_wxyz: NDArray[np.float64]) -> "Rotator":
        """Recover a Rotator from a quaternion (w, x, y, z)."""
        return cls.from_matrix(quaternion_to_rotation_matrix(quat_wxyz))

    @classmethod
    def from_direction(cls, direction: NDArray[np.float64]) -> "Rotator":
        """
        Heading/pitch of a direction vector, with zero roll.

        A zero vector yields the zero rotator.
        """
        d = safe_normalize(direction)
        if not np.any(d):
            return cls()
        yaw = np.degrees(np.arctan2(d[1], d[0]))
        pitch = np.degrees(np.arctan2(d[2], np.hypot(d[0], d[1])))
        return cls(float(pitch), float(yaw), 0.0)


def rotation_to_quaternion_wxyz(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Convert 3x3 rotation matrix to unit quaternion in (w, x, y, z) order.

    This is the quaternion convention used by COLMAP.

    Args:
        R: 3x3 rotation matrix

    Returns:
        Quaternion as [w, x, y, z]
    """
    trace = R[0, 0] + R[1, 1] + R[2, 2]

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (R[2, 1] - R[1, 2]) * s
        y = (R[0, 2] - R[2, 0]) * s
        z = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        w = (R[2, 1] - R[1, 2]) / s
        x = 0.25 * s
        y = (R[0, 1] + R[1, 0]) / s
        z = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        w = (R[0, 2] - R[2, 0]) / s
        x = (R[0, 1] + R[1, 0]) / s
        y = 0.25 * s
        z = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        w = (R[1, 0] - R[0, 1]) / s
        x = (R[0, 2] + R[2, 0]) / s
        y = (R[1, 2] + R[2, 1]) / s
        z = 0.25 * s

    return normalize_quaternion(np.array([w, x, y, z], dtype=np.float64))


def quaternion_to_rotation_matrix(quat_wxyz: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Convert quaternion (w, x, y, z) to a 3x3 rotation matrix.

    The quaternion is normalized first.
    """
    w, x, y, z = normalize_quaternion(quat_wxyz)
    return np.array([
        [1 - 2 * y * y - 2 * z * z, 2 * x * y - 2 * w * z, 2 * z * x + 2 * w * y],
        [2 * x * y + 2 * w * z, 1 - 2 * x * x - 2 * z * z, 2 * y * z - 2 * w * x],
        [2 * z * x - 2 * w * y, 2 * y * z + 2 * w * x, 1 - 2 * x * x - 2 * y * y]
    ], dtype=np.float64)


def normalize_quaternion(quat_wxyz: NDArray[np.float64]) -> NDArray[np.float64]:
    """Unit quaternion; a zero quaternion becomes identity."""
    q = np.asarray(quat_wxyz, dtype=np.float64)
    norm = np.linalg.norm(q)
    if norm < 1e-12:
        return np.array([1.0, 0.0, 0.0, 0.0])
    return q / norm


def quaternion_inverse(quat_wxyz: NDArray[np.float64]) -> NDArray[np.float64]:
    """Inverse of a unit quaternion (its conjugate)."""
    w, x, y, z = normalize_quaternion(quat_wxyz)
    return np.array([w, -x, -y, -z], dtype=np.float64)


def convert_position_to_colmap(position: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Convert engine position(s) to COLMAP coordinates.

    Applies the axis remap and centimeter -> meter scale.

    Args:
        position: Engine position, shape (3,) or (N, 3), centimeters

    Returns:
        COLMAP position(s) in meters, same shape
    """
    return np.asarray(position, dtype=np.float64) @ AXIS_SWAP.T * CM_TO_METERS


def convert_position_from_colmap(position: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Convert COLMAP position(s) back to engine coordinates (meters -> cm).

    Args:
        position: COLMAP position, shape (3,) or (N, 3)

    Returns:
        Engine position(s) in centimeters
    """
    return np.asarray(position, dtype=np.float64) @ INVERSE_AXIS_SWAP.T * METERS_TO_CM


def convert_direction_to_colmap(direction: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Convert engine direction(s)/normal(s) to COLMAP coordinates.

    Only the axis remap is applied (no scale). The result is renormalized;
    zero vectors stay zero.
    """
    return safe_normalize(np.asarray(direction, dtype=np.float64) @ AXIS_SWAP.T)


def _rotation_matrix_to_colmap(R_engine: NDArray[np.float64]) -> NDArray[np.float64]:
    """Express an engine camera-to-world rotation in the COLMAP frame."""
    return AXIS_SWAP @ R_engine @ INVERSE_AXIS_SWAP @ CAMERA_CORRECTION


def convert_quat_to_colmap(quat_wxyz: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Convert an engine orientation quaternion to the COLMAP frame.

    Args:
        quat_wxyz: Engine camera-to-world rotation as (w, x, y, z)

    Returns:
        Camera-to-world rotation in COLMAP coords, quaternion (w, x, y, z)

    Note:
        The rotation is conjugated by the axis remap (S * R * S^-1), so the
        engine camera's forward/right/up become COLMAP +Z/+X/-Y. The result
        is still camera-to-world; convert_camera_to_colmap() inverts it.
    """
    R_colmap = _rotation_matrix_to_colmap(quaternion_to_rotation_matrix(quat_wxyz))
    return rotation_to_quaternion_wxyz(R_colmap)


def convert_rotation_to_colmap(rotation: Rotator) -> NDArray[np.float64]:
    """
    Convert an engine rotator to a COLMAP-frame quaternion (w, x, y, z).

    See convert_quat_to_colmap().
    """
    return rotation_to_quaternion_wxyz(_rotation_matrix_to_colmap(rotation.to_matrix()))


def convert_rotation_from_colmap(quat_wxyz: NDArray[np.float64]) -> Rotator:
    """
    Convert a COLMAP-frame camera-to-world quaternion back to an engine rotator.

    Exactly undoes convert_rotation_to_colmap().
    """
    R_colmap = quaternion_to_rotation_matrix(quat_wxyz) @ CAMERA_CORRECTION.T
    R_engine = INVERSE_AXIS_SWAP @ R_colmap @ AXIS_SWAP
    return Rotator.from_matrix(R_engine)


def convert_camera_to_colmap(
    position: NDArray[np.float64],
    rotation: Rotator
) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Convert an engine camera transform for a COLMAP image record.

    Args:
        position: Camera position in engine coords (cm)
        rotation: Camera orientation (engine rotator)

    Returns:
        colmap_position: Camera center in COLMAP coords (meters)
        quat_w2c: World-to-camera rotation as (w, x, y, z)

    Note:
        COLMAP stores world-to-camera, so the camera-to-world rotation from
        convert_rotation_to_colmap() is inverted and re-normalized.
    """
    colmap_position = convert_position_to_colmap(position)
    quat_c2w = convert_rotation_to_colmap(rotation)
    quat_w2c = normalize_quaternion(quaternion_inverse(quat_c2w))
    return colmap_position, quat_w2c


def compute_camera_center(
    quat_w2c: NDArray[np.float64],
    translation: NDArray[np.float64]
) -> NDArray[np.float64]:
    """
    Recover the camera center from a COLMAP pose.

    C = -R^T * t, where R is the world-to-camera rotation.
    """
    R = quaternion_to_rotation_matrix(quat_w2c)
    return -R.T @ np.asarray(translation, dtype=np.float64)


def get_engine_to_colmap_matrix() -> NDArray[np.float64]:
    """4x4 homogeneous engine -> COLMAP transform (axis remap and cm -> m)."""
    M = np.eye(4, dtype=np.float64)
    M[:3, :3] = AXIS_SWAP * CM_TO_METERS
    return M


def get_colmap_to_engine_matrix() -> NDArray[np.float64]:
    """4x4 homogeneous COLMAP -> engine transform (axis remap and m -> cm)."""
    M = np.eye(4, dtype=np.float64)
    M[:3, :3] = INVERSE_AXIS_SWAP * METERS_TO_CM
    return M


def convert_position_to_ply(position: NDArray[np.float64]) -> NDArray[np.float64]:
    """3DGS PLY files share the COLMAP frame."""
    return convert_position_to_colmap(position)


def convert_rotation_to_ply(rotation: Rotator) -> NDArray[np.float64]:
    """
    Convert a Gaussian's local orientation to the PLY frame.

    Args:
        rotation: Orientation of the Gaussian ellipsoid in engine coords

    Returns:
        Quaternion (w, x, y, z) in the PLY frame

    Note:
        The vector part is remapped like a direction:
        (x, y, z, w) -> (y, -z, x, w), then normalized.
    """
    w, x, y, z = rotation.quaternion()
    return normalize_quaternion(np.array([w, y, -z, x], dtype=np.float64))


def convert_scale_to_ply(scale: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Convert per-axis Gaussian extents to PLY axes (cm -> m).

    Scales are magnitudes, so the remapped Y axis is not negated.
    """
    s = np.asarray(scale, dtype=np.float64)
    return np.array([s[1], s[2], s[0]], dtype=np.float64) * CM_TO_METERS


def spherical_to_cartesian(
    radius: float,
    elevation_deg: float,
    azimuth_deg: float,
    center: Optional[NDArray[np.float64]] = None
) -> NDArray[np.float64]:
    """
    Convert spherical coordinates to engine Cartesian (Z-up convention).

    Used for generating camera positions on trajectories.

    Args:
        radius: Distance from center
        elevation_deg: Angle above the XY plane (degrees)
                       Positive = up, negative = below
        azimuth_deg: Angle in the XY plane from +X toward +Y (degrees)
        center: Offset added to the result. Default: origin

    Returns:
        Position [x, y, z]

    Note:
        Azimuth 0° = +X (forward)
        Azimuth 90° = +Y (right)
        Elevation 90° = straight up
    """
    elev_rad = np.radians(elevation_deg)
    azim_rad = np.radians(azimuth_deg)
    cos_elev = np.cos(elev_rad)

    local = np.array([
        radius * cos_elev * np.cos(azim_rad),
        radius * cos_elev * np.sin(azim_rad),
        radius * np.sin(elev_rad)
    ], dtype=np.float64)

    if center is None:
        return local
    return np.asarray(center, dtype=np.float64) + local


def cartesian_to_spherical(
    offset: NDArray[np.float64]
) -> Tuple[float, float, float]:
    """
    Convert an engine offset vector to spherical (Z-up convention).

    Inverse of spherical_to_cartesian() with center at origin.

    Returns:
        Tuple of (radius, elevation_deg, azimuth_deg)
    """
    x, y, z = float(offset[0]), float(offset[1]), float(offset[2])
    radius = float(np.sqrt(x * x + y * y + z * z))
    if radius < 1e-10:
        return 0.0, 0.0, 0.0
    elevation_deg = float(np.degrees(np.arcsin(np.clip(z / radius, -1.0, 1.0))))
    azimuth_deg = float(np.degrees(np.arctan2(y, x)))
    return radius, elevation_deg, azimuth_deg
