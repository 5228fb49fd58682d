"""
Pinhole camera intrinsics and the COLMAP camera model taxonomy.

This module provides CameraIntrinsics, which computes focal length and
principal point from a field of view or from physical sensor data, and
serializes them to the parameter vector of a COLMAP camera model.
"""

import numpy as np
from enum import IntEnum
from typing import List, Tuple
from numpy.typing import NDArray


class ColmapCameraModel(IntEnum):
    """
    COLMAP camera models supported for export.

    The integer value is the COLMAP model id written to cameras.bin.
    """

    SIMPLE_PINHOLE = 0
    PINHOLE = 1
    SIMPLE_RADIAL = 2
    RADIAL = 3
    OPENCV = 4
    FULL_OPENCV = 6

    @property
    def num_params(self) -> int:
        """Number of parameters COLMAP expects for this model."""
        return CAMERA_MODEL_NUM_PARAMS[self]

    @classmethod
    def from_name(cls, name: str) -> "ColmapCameraModel":
        """
        Look up a model by its COLMAP name (case-insensitive).

        Raises:
            ValueError: If the name is not a supported model
        """
        try:
            return cls[name.strip().upper()]
        except KeyError:
            valid = ", ".join(m.name for m in cls)
            raise ValueError(f"Unknown camera model: {name}. Use one of: {valid}")


CAMERA_MODEL_NUM_PARAMS = {
    ColmapCameraModel.SIMPLE_PINHOLE: 3,
    ColmapCameraModel.PINHOLE: 4,
    ColmapCameraModel.SIMPLE_RADIAL: 4,
    ColmapCameraModel.RADIAL: 5,
    ColmapCameraModel.OPENCV: 8,
    ColmapCameraModel.FULL_OPENCV: 12,
}


class CameraIntrinsics:
    """
    Pinhole camera intrinsics with optional lens distortion.

    Attributes:
    - width, height: image size in pixels
    - fx, fy: focal length in pixels
    - cx, cy: principal point in pixels
    - k1, k2: radial distortion
    - p1, p2: tangential distortion
    - model: COLMAP camera model used for serialization
    """

    def __init__(
        self,
        width: int = 1920,
        height: int = 1080,
        fx: float = 0.0,
        fy: float = 0.0,
        cx: float = 0.0,
        cy: float = 0.0,
        k1: float = 0.0,
        k2: float = 0.0,
        p1: float = 0.0,
        p2: float = 0.0,
        model: ColmapCameraModel = ColmapCameraModel.PINHOLE
    ):
        """
        Initialize intrinsics.

        Args:
            width: Image width in pixels
            height: Image height in pixels
            fx, fy: Focal length in pixels
            cx, cy: Principal point in pixels
            k1, k2, p1, p2: Distortion coefficients (OpenCV convention)
            model: COLMAP camera model
        """
        self.width = int(width)
        self.height = int(height)
        self.fx = float(fx)
        self.fy = float(fy)
        self.cx = float(cx)
        self.cy = float(cy)
        self.k1 = float(k1)
        self.k2 = float(k2)
        self.p1 = float(p1)
        self.p2 = float(p2)
        self.model = ColmapCameraModel(model)

    @staticmethod
    def focal_from_fov(fov_deg: float, dimension: float) -> float:
        """
        Focal length in pixels for a field of view across one image dimension.

        f = (dimension / 2) / tan(fov / 2)
        """
        return (dimension / 2.0) / np.tan(np.radians(fov_deg) / 2.0)

    @staticmethod
    def fov_from_focal(focal_length: float, dimension: float) -> float:
        """
        Field of view in degrees for a focal length in pixels.

        Exact inverse of focal_from_fov(). Returns 0 for a non-positive focal length.
        """
        if focal_length <= 0:
            return 0.0
        return float(np.degrees(2.0 * np.arctan((dimension / 2.0) / focal_length)))

    @classmethod
    def from_fov(
        cls,
        fov_deg: float,
        width: int = 1920,
        height: int = 1080,
        model: ColmapCameraModel = ColmapCameraModel.PINHOLE
    ) -> "CameraIntrinsics":
        """
        Create intrinsics from a horizontal field of view.

        Assumes square pixels and the principal point at the image center.

        Args:
            fov_deg: Horizontal field of view in degrees
            width: Image width in pixels
            height: Image height in pixels
            model: COLMAP camera model

        Returns:
            CameraIntrinsics instance
        """
        fx = cls.focal_from_fov(fov_deg, width)
        return cls(
            width=width,
            height=height,
            fx=fx,
            fy=fx,
            cx=width / 2.0,
            cy=height / 2.0,
            model=model
        )

    @classmethod
    def from_sensor(
        cls,
        sensor_width_mm: float,
        sensor_height_mm: float,
        focal_length_mm: float,
        width: int,
        height: int
    ) -> "CameraIntrinsics":
        """
        Create intrinsics from physical sensor size and lens focal length.

        focal_px = (focal_mm / sensor_mm) * image_px, independently per axis,
        which supports non-square sensors.
        """
        return cls(
            width=width,
            height=height,
            fx=(focal_length_mm / sensor_width_mm) * width,
            fy=(focal_length_mm / sensor_height_mm) * height,
            cx=width / 2.0,
            cy=height / 2.0,
            model=ColmapCameraModel.PINHOLE
        )

    def is_valid(self) -> bool:
        """All sizes, focal lengths and principal point coordinates are positive."""
        return (
            self.width > 0
            and self.height > 0
            and self.fx > 0
            and self.fy > 0
            and self.cx > 0
            and self.cy > 0
        )

    @property
    def aspect_ratio(self) -> float:
        """Width / height (0 for a zero height)."""
        if self.height <= 0:
            return 0.0
        return self.width / self.height

    @property
    def horizontal_fov(self) -> float:
        """Horizontal field of view in degrees."""
        return self.fov_from_focal(self.fx, self.width)

    @property
    def vertical_fov(self) -> float:
        """Vertical field of view in degrees."""
        return self.fov_from_focal(self.fy, self.height)

    @property
    def model_id(self) -> int:
        """COLMAP model id."""
        return int(self.model)

    @property
    def model_name(self) -> str:
        """COLMAP model name string."""
        return self.model.name

    def intrinsic_matrix(self) -> NDArray[np.float64]:
        """
        Get 3x3 intrinsic matrix K.

        Returns:
            [[fx,  0, cx],
             [ 0, fy, cy],
             [ 0,  0,  1]]
        """
        return np.array([
            [self.fx, 0.0, self.cx],
            [0.0, self.fy, self.cy],
            [0.0, 0.0, 1.0]
        ], dtype=np.float64)

    def colmap_params(self) -> List[float]:
        """
        COLMAP parameter vector for the configured model.

        Returns:
            List with exactly model.num_params values:
            SIMPLE_PINHOLE: f, cx, cy
            PINHOLE: fx, fy, cx, cy
            SIMPLE_RADIAL: f, cx, cy, k1
            RADIAL: f, cx, cy, k1, k2
            OPENCV: fx, fy, cx, cy, k1, k2, p1, p2
            FULL_OPENCV: OPENCV params + k3, k4, k5, k6 (always zero here)
        """
        if self.model == ColmapCameraModel.SIMPLE_PINHOLE:
            return [self.fx, self.cx, self.cy]
        if self.model == ColmapCameraModel.PINHOLE:
            return [self.fx, self.fy, self.cx, self.cy]
        if self.model == ColmapCameraModel.SIMPLE_RADIAL:
            return [self.fx, self.cx, self.cy, self.k1]
        if self.model == ColmapCameraModel.RADIAL:
            return [self.fx, self.cx, self.cy, self.k1, self.k2]

        opencv = [self.fx, self.fy, self.cx, self.cy, self.k1, self.k2, self.p1, self.p2]
        if self.model == ColmapCameraModel.OPENCV:
            return opencv
        return opencv + [0.0, 0.0, 0.0, 0.0]

    def colmap_params_string(self) -> str:
        """Parameter vector as space-separated values with 10 decimals."""
        return " ".join(f"{p:.10f}" for p in self.colmap_params())

    def validate_for_3dgs(self) -> Tuple[bool, List[str]]:
        """
        Check whether these intrinsics suit 3DGS training.

        Returns:
            is_valid: False only when the intrinsics are unusable
            warnings: Human-readable advisory messages

        Note:
            Most checks are advisory and only add warnings. Only zero or
            negative values make the intrinsics invalid.
        """
        warnings = []
        is_valid = True

        if self.width < 800 or self.height < 600:
            warnings.append("Resolution below 800x600 may result in poor 3DGS training quality")
        if self.width > 4096 or self.height > 4096:
            warnings.append("Resolution above 4096 may significantly increase training time")

        if self.fx > 0 and self.width > 0:
            hfov = self.horizontal_fov
            if hfov < 30.0:
                warnings.append(f"Very narrow FOV ({hfov:.1f} deg) may cause sparse coverage")
            elif hfov > 120.0:
                warnings.append(f"Very wide FOV ({hfov:.1f} deg) may cause distortion issues")

        aspect = self.aspect_ratio
        if aspect < 0.5 or aspect > 2.5:
            warnings.append(f"Unusual aspect ratio ({aspect:.2f}) - typical is 1.33-1.78")

        cx_offset = abs(self.cx - self.width / 2.0)
        cy_offset = abs(self.cy - self.height / 2.0)
        if cx_offset > self.width * 0.1 or cy_offset > self.height * 0.1:
            warnings.append("Principal point significantly off-center (>10%)")

        if not self.is_valid():
            warnings.append("Invalid intrinsics: zero or negative values detected")
            is_valid = False

        if self.fy != 0:
            focal_ratio = self.fx / self.fy
            if abs(focal_ratio - 1.0) > 0.01:
                warnings.append(f"Non-square pixels detected (fx/fy = {focal_ratio:.3f})")

        return is_valid, warnings

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"CameraIntrinsics({self.model_name}, size=({self.width}, {self.height}), "
            f"focal=({self.fx:.1f}, {self.fy:.1f}), "
            f"principal=({self.cx:.1f}, {self.cy:.1f}))"
        )
