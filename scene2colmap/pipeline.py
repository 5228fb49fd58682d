"""
High-level capture pipeline orchestrating all components.

This module provides the CaptureOrchestrator class which ties together:
- Trajectory generation
- Per-viewpoint capture through a caller-supplied callback
- Image and depth export
- COLMAP metadata and placeholder point cloud export

Rendering itself is external: the caller passes a capture function that
returns the pixels (and optionally the raw depth buffer) for a viewpoint.
Without a capture function only the metadata is written, for images
rendered elsewhere.

Example:
    orchestrator = CaptureOrchestrator(config, on_progress=print_progress)
    result = orchestrator.run(render_viewpoint)
"""

import logging
import time
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from numpy.typing import NDArray

from . import coordinates
from .colmap import create_camera, create_directory_structure, create_images_from_viewpoints, write_dataset
from .coordinates import Rotator
from .depth import DepthExtractionConfig, depth_filename, extract_depth, save_depth, validate_for_training
from .intrinsics import CameraIntrinsics, ColmapCameraModel
from .ply import PointCloudPoint, write_point_cloud
from .trajectory import TrajectoryConfig, TrajectoryGenerator, Viewpoint
from .utils import format_image_index

logger = logging.getLogger(__name__)

IMAGE_FORMATS = ("jpg", "png")


class CaptureState(Enum):
    """Orchestrator lifecycle state."""

    IDLE = "idle"
    PREPARING = "preparing"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    EXPORTING = "exporting"
    COMPLETE = "complete"
    ERROR = "error"


ALLOWED_TRANSITIONS = {
    CaptureState.IDLE: {CaptureState.PREPARING},
    CaptureState.PREPARING: {CaptureState.CAPTURING, CaptureState.EXPORTING, CaptureState.ERROR, CaptureState.IDLE},
    CaptureState.CAPTURING: {CaptureState.PROCESSING, CaptureState.EXPORTING, CaptureState.ERROR, CaptureState.IDLE},
    CaptureState.PROCESSING: {CaptureState.CAPTURING, CaptureState.ERROR, CaptureState.IDLE},
    CaptureState.EXPORTING: {CaptureState.COMPLETE, CaptureState.ERROR},
    CaptureState.COMPLETE: {CaptureState.IDLE},
    CaptureState.ERROR: {CaptureState.IDLE},
}


@dataclass
class CaptureConfig:
    """Complete capture job description."""
    output_directory: str = ""
    image_width: int = 1920
    image_height: int = 1080
    field_of_view: float = 90.0
    camera_model: ColmapCameraModel = ColmapCameraModel.PINHOLE
    trajectory: TrajectoryConfig = field(default_factory=TrajectoryConfig)
    capture_depth: bool = True
    depth: DepthExtractionConfig = field(default_factory=DepthExtractionConfig)
    export_point_cloud: bool = True
    image_format: str = "jpg"
    jpeg_quality: int = 95
    binary_colmap: bool = False


@dataclass
class CaptureFrame:
    """
    Output of the capture callback for one viewpoint.

    Attributes:
        pixels: (H, W, 3) uint8 RGB
        depth: Optional (H, W) raw reversed-Z depth buffer
    """
    pixels: NDArray[np.uint8]
    depth: Optional[NDArray[np.float64]] = None


@dataclass
class CaptureResult:
    """Summary of a capture run."""
    success: bool = False
    frames_captured: int = 0
    depth_maps_captured: int = 0
    output_path: str = ""
    total_capture_time: float = 0.0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


CaptureFunction = Callable[[Viewpoint], Optional[CaptureFrame]]
ProgressCallback = Callable[[int, int, float], None]
CompleteCallback = Callable[[bool], None]
ErrorCallback = Callable[[int, str], None]


def image_filename(index: int, image_format: str) -> str:
    """image_NNNNN.{jpg,png}"""
    return f"image_{format_image_index(index)}.{image_format}"


def save_image(
    pixels: NDArray[np.uint8],
    filepath: Path,
    jpeg_quality: int = 95
) -> bool:
    """
    Save an RGB image with OpenCV.

    Args:
        pixels: (H, W, 3) uint8 RGB
        filepath: Target path; the extension selects the encoder
        jpeg_quality: JPEG quality 0-100 (ignored for PNG)

    Returns:
        True if the file was written
    """
    try:
        import cv2
    except ImportError:
        raise ImportError(
            "opencv-python is required for image export. "
            "Install with: pip install opencv-python"
        )

    pixels = np.asarray(pixels)
    if pixels.ndim != 3 or pixels.shape[2] != 3:
        raise ValueError(f"Expected (H, W, 3) RGB image, got shape {pixels.shape}")

    # OpenCV expects BGR
    image_bgr = cv2.cvtColor(pixels.astype(np.uint8), cv2.COLOR_RGB2BGR)

    params = []
    if Path(filepath).suffix.lower() in (".jpg", ".jpeg"):
        params = [cv2.IMWRITE_JPEG_QUALITY, int(jpeg_quality)]

    try:
        ok = cv2.imwrite(str(filepath), image_bgr, params)
    except cv2.error as e:
        logger.error("Failed to encode %s: %s", filepath, e)
        return False
    if not ok:
        logger.error("Failed to write image %s", filepath)
    return bool(ok)


def build_placeholder_point_cloud(
    viewpoints: List[Viewpoint],
    focus_point: NDArray[np.float64]
) -> List[PointCloudPoint]:
    """
    Sparse initialization cloud from camera positions.

    For each viewpoint: a red point at the camera, with the look direction
    as normal, and a white point at the focus point.
    """
    focus_colmap = coordinates.convert_position_to_colmap(focus_point)

    points = []
    for viewpoint in viewpoints:
        points.append(PointCloudPoint(
            position=coordinates.convert_position_to_colmap(viewpoint.position),
            normal=coordinates.convert_direction_to_colmap(viewpoint.forward()),
            color=(255, 0, 0)
        ))
        points.append(PointCloudPoint(
            position=focus_colmap.copy(),
            normal=np.array([0.0, 0.0, 1.0]),
            color=(255, 255, 255)
        ))
    return points


class CaptureOrchestrator:
    """
    Drive a capture job from configuration to exported dataset.

    Stages:
    1. Validate configuration
    2. Generate viewpoints and intrinsics
    3. Capture and save each viewpoint (skipped without capture function)
    4. Export COLMAP metadata and the placeholder point cloud

    Everything runs synchronously. Callbacks are plain callables passed
    at construction; cancel() may be called from any of them.
    """

    def __init__(
        self,
        config: CaptureConfig,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None
    ):
        """
        Initialize orchestrator.

        Args:
            config: Capture job
            on_progress: Called as (current, total, percent) after each viewpoint
            on_complete: Called with the success flag when a run ends
            on_error: Called as (viewpoint_index, message) for per-frame failures
        """
        self.config = config
        self.on_progress = on_progress
        self.on_complete = on_complete
        self.on_error = on_error

        self.state = CaptureState.IDLE
        self.viewpoints: List[Viewpoint] = []
        self.intrinsics: Optional[CameraIntrinsics] = None
        self.current_index = 0
        self._cancel_requested = False

    def _transition(self, new_state: CaptureState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal capture state transition: {self.state.value} -> {new_state.value}"
            )
        logger.debug("Capture state %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    @property
    def progress(self) -> float:
        """Fraction of viewpoints processed, 0-1."""
        if not self.viewpoints:
            return 0.0
        return self.current_index / len(self.viewpoints)

    @property
    def is_running(self) -> bool:
        return self.state in (
            CaptureState.PREPARING, CaptureState.CAPTURING,
            CaptureState.PROCESSING, CaptureState.EXPORTING
        )

    def cancel(self) -> None:
        """Stop after the current viewpoint."""
        if self.is_running:
            self._cancel_requested = True

    def preview_trajectory(
        self,
        trajectory: Optional[TrajectoryConfig] = None
    ) -> List[Tuple[NDArray[np.float64], Rotator]]:
        """
        Viewpoint transforms without capturing anything.

        Args:
            trajectory: Trajectory to preview. Default: the configured one
        """
        return TrajectoryGenerator(trajectory or self.config.trajectory).preview_transforms()

    @staticmethod
    def validate_config(config: CaptureConfig) -> Tuple[bool, List[str]]:
        """
        Check a capture configuration.

        Returns:
            is_valid: False without output directory or with an unknown image format
            warnings: Own warnings followed by trajectory warnings
        """
        warnings = []
        is_valid = True

        if not config.output_directory:
            warnings.append("Output directory not specified")
            is_valid = False

        if config.image_width < 640 or config.image_height < 480:
            warnings.append("Resolution below 640x480 may result in poor training quality")
        if config.image_width > 4096 or config.image_height > 4096:
            warnings.append("Resolution above 4096 may significantly increase capture and training time")

        if config.image_format not in IMAGE_FORMATS:
            warnings.append(f"Unsupported image format: {config.image_format}")
            is_valid = False

        trajectory_valid, trajectory_warnings = TrajectoryGenerator.validate_config(config.trajectory)
        warnings.extend(trajectory_warnings)
        is_valid = is_valid and trajectory_valid

        if config.field_of_view < 45.0 or config.field_of_view > 120.0:
            warnings.append(f"Unusual FOV ({config.field_of_view:.1f}). 60-90 recommended for 3DGS.")

        return is_valid, warnings

    def run(self, capture_fn: Optional[CaptureFunction] = None) -> CaptureResult:
        """
        Run the capture job.

        Args:
            capture_fn: Returns a CaptureFrame for a viewpoint. If None, only
                        COLMAP metadata and the point cloud are written.

        Returns:
            CaptureResult
        """
        result = CaptureResult(output_path=self.config.output_directory)

        if self.state in (CaptureState.COMPLETE, CaptureState.ERROR):
            self._transition(CaptureState.IDLE)
        if self.state != CaptureState.IDLE:
            logger.warning("Capture already in progress")
            result.errors.append("Capture already in progress")
            return result

        self._cancel_requested = False
        self.current_index = 0
        start_time = time.perf_counter()
        self._transition(CaptureState.PREPARING)

        is_valid, warnings = self.validate_config(self.config)
        for warning in warnings:
            logger.warning("Config validation: %s", warning)
        if not is_valid:
            result.errors.extend(warnings)
            return self._fail(result)
        result.warnings.extend(warnings)

        self.viewpoints = TrajectoryGenerator(self.config.trajectory).generate()
        if not self.viewpoints:
            logger.error("Failed to generate viewpoints")
            result.errors.append("Failed to generate camera viewpoints")
            return self._fail(result)
        logger.info("Generated %d viewpoints for capture", len(self.viewpoints))

        self.intrinsics = CameraIntrinsics.from_fov(
            self.config.field_of_view, self.config.image_width, self.config.image_height,
            model=self.config.camera_model
        )

        output_dir = Path(self.config.output_directory)
        if not create_directory_structure(output_dir):
            result.errors.append("Failed to create output directories")
            return self._fail(result)

        if capture_fn is None:
            logger.info("No capture function, writing metadata only")
        else:
            self._transition(CaptureState.CAPTURING)
            try:
                for index, viewpoint in enumerate(self.viewpoints):
                    if self._cancel_requested:
                        return self._cancelled(result)
                    self._capture_viewpoint(index, viewpoint, capture_fn, output_dir, result)
            except Exception:
                # Raised by a progress/error callback or a missing encoder
                self._transition(CaptureState.ERROR)
                raise

            if self._cancel_requested:
                return self._cancelled(result)

        self._transition(CaptureState.EXPORTING)
        result.total_capture_time = time.perf_counter() - start_time

        if not self.export_colmap(output_dir):
            result.warnings.append("Failed to export some COLMAP data")

        if self.config.export_point_cloud and not self.export_point_cloud(output_dir):
            result.warnings.append("Failed to export point cloud")

        self._transition(CaptureState.COMPLETE)
        result.success = not result.errors
        logger.info(
            "Capture finished: %d frames, %d depth maps in %.1fs",
            result.frames_captured, result.depth_maps_captured, result.total_capture_time
        )
        if self.on_complete:
            self.on_complete(result.success)
        return result

    def _capture_viewpoint(
        self,
        index: int,
        viewpoint: Viewpoint,
        capture_fn: CaptureFunction,
        output_dir: Path,
        result: CaptureResult
    ) -> None:
        failure = None
        try:
            frame = capture_fn(viewpoint)
        except Exception as e:
            logger.exception("Capture function failed for viewpoint %d", index)
            frame, failure = None, f"Capture function failed: {e}"

        self._transition(CaptureState.PROCESSING)
        try:
            if failure is not None:
                self._report_error(index, failure)
            elif frame is None:
                self._report_error(index, "Capture function returned no frame")
            else:
                try:
                    self._save_frame(index, frame, output_dir, result)
                except ValueError as e:
                    self._report_error(index, str(e))

            self.current_index = index + 1
            total = len(self.viewpoints)
            if self.on_progress:
                self.on_progress(index + 1, total, 100.0 * (index + 1) / total)
        finally:
            self._transition(CaptureState.CAPTURING)

    def _save_frame(
        self,
        index: int,
        frame: CaptureFrame,
        output_dir: Path,
        result: CaptureResult
    ) -> None:
        """
        Write one frame's image and depth map.

        Raises:
            ValueError: If the frame does not match the configured resolution
                        or is not an RGB image
        """
        expected = (self.config.image_height, self.config.image_width)
        resolution = f"{self.config.image_width}x{self.config.image_height}"

        pixels = np.asarray(frame.pixels)
        if pixels.shape[:2] != expected:
            raise ValueError(f"Frame shape {pixels.shape} does not match capture resolution {resolution}")
        if self.config.capture_depth and frame.depth is not None and np.shape(frame.depth) != expected:
            raise ValueError(
                f"Depth shape {np.shape(frame.depth)} does not match capture resolution {resolution}"
            )

        image_path = output_dir / "images" / image_filename(index, self.config.image_format)
        if save_image(pixels, image_path, self.config.jpeg_quality):
            result.frames_captured += 1
        else:
            self._report_error(index, "Failed to save color image")

        if self.config.capture_depth and frame.depth is not None:
            depth_result = extract_depth(frame.depth, self.config.depth)
            _, depth_warnings = validate_for_training(depth_result)
            for warning in depth_warnings:
                logger.debug("Depth %d: %s", index, warning)

            depth_path = output_dir / "depth" / depth_filename(index, self.config.depth.format)
            if depth_result.is_valid() and save_depth(depth_result, depth_path, self.config.depth):
                result.depth_maps_captured += 1
            else:
                self._report_error(index, "Failed to save depth map")

    def _report_error(self, index: int, message: str) -> None:
        logger.error("Viewpoint %d: %s", index, message)
        if self.on_error:
            self.on_error(index, message)

    def _fail(self, result: CaptureResult) -> CaptureResult:
        self._transition(CaptureState.ERROR)
        result.success = False
        if self.on_complete:
            self.on_complete(False)
        return result

    def _cancelled(self, result: CaptureResult) -> CaptureResult:
        logger.info("Capture cancelled after %d viewpoints", self.current_index)
        result.errors.append("Capture cancelled by user")
        result.success = False
        self._transition(CaptureState.IDLE)
        self._cancel_requested = False
        if self.on_complete:
            self.on_complete(False)
        return result

    def export_colmap(self, output_dir: Path) -> bool:
        """Write sparse/0 for the generated viewpoints (shared camera, no points)."""
        extension = f".{self.config.image_format}"
        images = create_images_from_viewpoints(self.viewpoints, self.intrinsics, "image_", extension)
        return write_dataset(
            output_dir,
            [create_camera(self.intrinsics)],
            images,
            [],
            binary=self.config.binary_colmap
        )

    def export_point_cloud(self, output_dir: Path) -> bool:
        """Write sparse/0/points3D.ply (binary) from camera and focus positions."""
        points = build_placeholder_point_cloud(self.viewpoints, self.config.trajectory.focus_point)
        return write_point_cloud(Path(output_dir) / "sparse" / "0" / "points3D.ply", points, binary=True)
