"""
Depth map extraction and export.

Converts raw reversed-Z depth buffers from the capture callback into
linear depth, post-processes them (unit conversion, gamma, inversion) and
writes them in one of several formats for depth-supervised 3DGS training.

Depth buffer convention (reversed-Z):
    1.0 at the near plane, 0.0 at the far plane
    linear_depth = near / buffer_value
"""

import json
import logging
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Tuple, Union
from numpy.typing import NDArray

from .utils import format_image_index

logger = logging.getLogger(__name__)


class DepthFormat(Enum):
    """On-disk depth format."""

    PNG16 = "png16"
    EXR32 = "exr32"
    NPY = "npy"
    RAW_FLOAT32 = "raw_float32"


# EXR32 is written as .depth.raw + .depth.json next to the requested path
DEPTH_EXTENSIONS = {
    DepthFormat.PNG16: ".png",
    DepthFormat.EXR32: ".exr",
    DepthFormat.NPY: ".npy",
    DepthFormat.RAW_FLOAT32: ".raw",
}

# Turbo colormap anchors at 0, 0.25, 0.5, 0.75, 1
TURBO_BREAKPOINTS = np.array([0.0, 0.25, 0.5, 0.75, 1.0])
TURBO_ANCHORS = np.array([
    [0.18995, 0.07176, 0.23217],
    [0.35238, 0.34290, 0.93411],
    [0.56924, 0.77063, 0.46915],
    [0.94227, 0.89411, 0.10175],
    [0.98644, 0.46916, 0.07991],
])

NPY_MAGIC = b"\x93NUMPY"


@dataclass
class DepthExtractionConfig:
    """Depth post-processing and export options."""
    format: DepthFormat = DepthFormat.EXR32
    near_plane: float = 10.0
    far_plane: float = 100000.0
    export_in_meters: bool = True
    apply_gamma_correction: bool = False
    gamma_value: float = 2.2
    invert_depth: bool = False


@dataclass
class DepthExtractionResult:
    """
    Linear depth for one view.

    depth is stored flat in row-major order; len(depth) == width * height.
    """
    width: int = 0
    height: int = 0
    depth: NDArray[np.float32] = field(default_factory=lambda: np.zeros(0, dtype=np.float32))
    min_depth: float = 0.0
    max_depth: float = 0.0
    near_plane: float = 10.0
    far_plane: float = 100000.0
    is_linear: bool = True
    in_meters: bool = False

    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0 and self.depth.size == self.width * self.height

    def depth_at(self, x: int, y: int) -> float:
        """Depth at pixel (x, y), or -1 outside the image."""
        if 0 <= x < self.width and 0 <= y < self.height:
            return float(self.depth[y * self.width + x])
        return -1.0

    def as_image(self) -> NDArray[np.float32]:
        """(H, W) view of the depth data."""
        return self.depth.reshape(self.height, self.width)

    def convert_to_meters(self) -> None:
        """Scale depth, range and clip planes from cm to meters."""
        self.depth = (self.depth * 0.01).astype(np.float32)
        self.min_depth *= 0.01
        self.max_depth *= 0.01
        self.near_plane *= 0.01
        self.far_plane *= 0.01
        self.in_meters = True


def scene_depth_to_linear(
    scene_depth: Union[float, NDArray[np.float64]],
    near_plane: float,
    far_plane: float
) -> Union[float, NDArray[np.float64]]:
    """
    Convert reversed-Z buffer value(s) to linear depth.

    Args:
        scene_depth: Buffer value(s), 1 at near plane, 0 at far plane
        near_plane: Near clip distance
        far_plane: Far clip distance

    Returns:
        near / scene_depth clamped to [near, far]; exactly near for
        values >= 1 and exactly far for values <= 0
    """
    d = np.asarray(scene_depth, dtype=np.float64)
    safe = np.where((d > 0.0) & (d < 1.0), d, 1.0)
    linear = np.clip(near_plane / safe, near_plane, far_plane)
    linear = np.where(d >= 1.0, near_plane, linear)
    linear = np.where(d <= 0.0, far_plane, linear)

    if linear.ndim == 0:
        return float(linear)
    return linear


def extract_depth(
    raw_depth: NDArray[np.float64],
    config: DepthExtractionConfig
) -> DepthExtractionResult:
    """
    Turn a raw depth buffer into a DepthExtractionResult.

    Steps, in order:
    1. Linearize and clamp to [near, far]
    2. Record min / max
    3. Convert cm -> meters (if export_in_meters)
    4. Gamma remap within [min, max] (if apply_gamma_correction)
    5. Invert d -> 1/d, swapping min/max (if invert_depth)

    Args:
        raw_depth: (H, W) reversed-Z buffer
        config: Extraction options

    Returns:
        DepthExtractionResult with float32 depth
    """
    raw_depth = np.asarray(raw_depth, dtype=np.float64)
    if raw_depth.ndim != 2:
        raise ValueError(f"Expected (H, W) depth buffer, got shape {raw_depth.shape}")

    height, width = raw_depth.shape
    linear = scene_depth_to_linear(raw_depth, config.near_plane, config.far_plane)

    result = DepthExtractionResult(
        width=width,
        height=height,
        depth=linear.astype(np.float32).reshape(-1),
        min_depth=float(np.min(linear)) if linear.size else 0.0,
        max_depth=float(np.max(linear)) if linear.size else 0.0,
        near_plane=config.near_plane,
        far_plane=config.far_plane,
        is_linear=True
    )

    if config.export_in_meters:
        result.convert_to_meters()

    if config.apply_gamma_correction:
        depth_range = result.max_depth - result.min_depth
        if depth_range > 0:
            normalized = np.clip((result.depth - result.min_depth) / depth_range, 0.0, 1.0)
            normalized = np.power(normalized, 1.0 / config.gamma_value)
            result.depth = (result.min_depth + normalized * depth_range).astype(np.float32)

    if config.invert_depth:
        d = result.depth
        result.depth = np.where(d > 1e-4, 1.0 / np.maximum(d, 1e-4), d).astype(np.float32)
        old_min, old_max = result.min_depth, result.max_depth
        result.min_depth = 1.0 / old_max if old_max > 1e-4 else old_max
        result.max_depth = 1.0 / old_min if old_min > 1e-4 else old_min

    return result


def turbo_colormap(value: Union[float, NDArray[np.float64]]) -> NDArray[np.uint8]:
    """
    Turbo colormap approximation (4 linear segments).

    Args:
        value: Normalized value(s), clamped to [0, 1]

    Returns:
        uint8 RGB, shape value.shape + (3,)
    """
    v = np.clip(np.asarray(value, dtype=np.float64), 0.0, 1.0)
    rgb = np.stack([
        np.interp(v, TURBO_BREAKPOINTS, TURBO_ANCHORS[:, channel])
        for channel in range(3)
    ], axis=-1)
    return (rgb * 255.0).astype(np.uint8)


def generate_depth_visualization(
    result: DepthExtractionResult,
    colorize: bool = True
) -> NDArray[np.uint8]:
    """
    Render depth as an RGB preview image.

    Args:
        result: Depth to visualize
        colorize: Turbo colormap if True, grayscale otherwise

    Returns:
        (H, W, 3) uint8 RGB image
    """
    depth_range = result.max_depth - result.min_depth
    if depth_range <= 0:
        depth_range = 1.0

    normalized = np.clip((result.as_image() - result.min_depth) / depth_range, 0.0, 1.0)

    if colorize:
        return turbo_colormap(normalized)

    gray = (normalized * 255.0).astype(np.uint8)
    return np.stack([gray, gray, gray], axis=-1)


def validate_for_training(result: DepthExtractionResult) -> Tuple[bool, List[str]]:
    """
    Check depth data for problems that hurt depth-supervised training.

    Returns:
        is_valid: False for malformed results or NaN values
        warnings: Human-readable messages
    """
    if not result.is_valid():
        return False, ["Invalid depth result dimensions or data"]

    warnings = []
    is_valid = True
    d = result.depth

    nan_count = int(np.sum(np.isnan(d)))
    inf_count = int(np.sum(np.isinf(d)))
    finite = d[np.isfinite(d)]
    invalid_count = int(np.sum(finite <= 0))

    if nan_count > 0:
        warnings.append(f"{nan_count} NaN values detected in depth data")
        is_valid = False

    if inf_count > 0:
        warnings.append(f"{inf_count} infinite values detected in depth data")

    invalid_percent = 100.0 * invalid_count / d.size
    if invalid_percent > 5.0:
        warnings.append(f"{invalid_percent:.1f}% invalid depth values (<=0)")

    if result.max_depth - result.min_depth < 0.1:
        warnings.append("Very narrow depth range (<0.1m). Scene may be flat.")

    if result.max_depth > 1000.0:
        warnings.append("Very large maximum depth (>1km). May affect precision.")

    return is_valid, warnings


def create_npy_header(width: int, height: int) -> bytes:
    """
    NPY v1.0 header for a (height, width) little-endian float32 array.

    Magic, version 1.0, u16 header length, then the dict padded with spaces
    and a trailing newline so the total length is a multiple of 64.
    """
    header_dict = f"{{'descr': '<f4', 'fortran_order': False, 'shape': ({height}, {width}), }}"
    # magic(6) + version(2) + header_len(2) + dict + newline
    pad = (64 - (10 + len(header_dict) + 1) % 64) % 64
    header_dict += " " * pad + "\n"

    return (
        NPY_MAGIC
        + bytes([1, 0])
        + len(header_dict).to_bytes(2, "little")
        + header_dict.encode("ascii")
    )


def depth_filename(index: int, depth_format: DepthFormat) -> str:
    """depth_NNNNN + format extension."""
    return f"depth_{format_image_index(index)}{DEPTH_EXTENSIONS[depth_format]}"


def _write_bytes(filepath: Path, data: bytes) -> bool:
    try:
        with open(filepath, "wb") as f:
            f.write(data)
    except OSError as e:
        logger.error("Failed to write depth file %s: %s", filepath, e)
        return False
    return True


def _imwrite(filepath: Path, image: NDArray[np.uint8]) -> bool:
    """Write an image with OpenCV (expects BGR for color images)."""
    try:
        import cv2
    except ImportError:
        raise ImportError(
            "opencv-python is required for depth image export. "
            "Install with: pip install opencv-python"
        )

    try:
        ok = cv2.imwrite(str(filepath), image)
    except cv2.error as e:
        logger.error("Failed to encode %s: %s", filepath, e)
        return False

    if not ok:
        logger.error("Failed to write image %s", filepath)
    return bool(ok)


def save_depth_png16(result: DepthExtractionResult, filepath: Path) -> bool:
    """
    Save 8-bit grayscale PNG derived from a 16-bit normalization.

    Values are normalized over [min, max] to 16 bits, then the high byte is kept.
    """
    depth_range = result.max_depth - result.min_depth
    if depth_range <= 0:
        depth_range = 1.0

    normalized = np.clip((result.as_image() - result.min_depth) / depth_range, 0.0, 1.0)
    pixels16 = (normalized * 65535.0).astype(np.uint16)
    pixels8 = (pixels16 >> 8).astype(np.uint8)
    return _imwrite(Path(filepath), pixels8)


def save_depth_exr(result: DepthExtractionResult, filepath: Path) -> bool:
    """
    Save float32 depth as .depth.raw with a .depth.json metadata sidecar.

    The requested extension is replaced, e.g. depth_00000.exr ->
    depth_00000.depth.raw + depth_00000.depth.json.
    """
    filepath = Path(filepath)
    raw_path = filepath.with_suffix(".depth.raw")
    metadata_path = filepath.with_suffix(".depth.json")

    if not _write_bytes(raw_path, result.depth.astype("<f4").tobytes()):
        return False

    metadata = {
        "width": result.width,
        "height": result.height,
        "min_depth": round(float(result.min_depth), 6),
        "max_depth": round(float(result.max_depth), 6),
        "format": "float32",
        "units": "meters" if result.in_meters else "centimeters",
    }
    try:
        with open(metadata_path, "w", encoding="utf-8") as f:
            json.dump(metadata, f)
    except OSError as e:
        logger.error("Failed to write depth metadata %s: %s", metadata_path, e)
        return False
    return True


def save_depth_npy(result: DepthExtractionResult, filepath: Path) -> bool:
    """Save as .npy (v1.0 header + row-major float32)."""
    data = create_npy_header(result.width, result.height) + result.depth.astype("<f4").tobytes()
    return _write_bytes(Path(filepath), data)


def save_depth_raw(result: DepthExtractionResult, filepath: Path) -> bool:
    """Save bare row-major float32 data."""
    return _write_bytes(Path(filepath), result.depth.astype("<f4").tobytes())


def save_depth(
    result: DepthExtractionResult,
    filepath: Path,
    config: DepthExtractionConfig
) -> bool:
    """
    Save depth in config.format.

    Returns:
        False for invalid results or write errors
    """
    if not result.is_valid():
        logger.error("Invalid depth result, cannot save")
        return False

    if config.format == DepthFormat.PNG16:
        return save_depth_png16(result, filepath)
    if config.format == DepthFormat.NPY:
        return save_depth_npy(result, filepath)
    if config.format == DepthFormat.RAW_FLOAT32:
        return save_depth_raw(result, filepath)
    return save_depth_exr(result, filepath)


def save_depth_visualization(
    result: DepthExtractionResult,
    filepath: Path,
    colorize: bool = True
) -> bool:
    """Save the depth preview as PNG."""
    if not result.is_valid():
        logger.error("Invalid depth result, cannot save visualization")
        return False

    rgb = generate_depth_visualization(result, colorize)
    return _imwrite(Path(filepath), np.ascontiguousarray(rgb[..., ::-1]))
