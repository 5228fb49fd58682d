"""
scene2colmap - Capture trajectories and COLMAP datasets for Gaussian Splatting.

This package turns a 3D scene described in engine coordinates (cm, Z-up) into:
- Camera trajectories (orbital, spherical, spiral, hemisphere, grid, 360, custom)
- COLMAP sparse models (text or binary) with shared pinhole intrinsics
- Depth maps in training-friendly formats
- Point clouds and Gaussian splat PLY files

Rendering is left to the caller, who supplies a capture function.

Example usage:
    from scene2colmap import CaptureConfig, CaptureOrchestrator

    config = CaptureConfig(output_directory="./output")
    orchestrator = CaptureOrchestrator(config)
    result = orchestrator.run(render_viewpoint)
"""

__version__ = "0.1.0"

from .coordinates import Rotator, cartesian_to_spherical, convert_camera_to_colmap, spherical_to_cartesian
from .colmap import ColmapWriter, read_model, validate_dataset, write_dataset
from .depth import DepthExtractionConfig, DepthFormat, extract_depth, save_depth
from .intrinsics import CameraIntrinsics, ColmapCameraModel
from .pipeline import CaptureConfig, CaptureFrame, CaptureOrchestrator, CaptureResult, CaptureState
from .ply import GaussianSplat, PointCloudPoint, read_gaussian_splats, write_gaussian_splats, write_point_cloud
from .trajectory import TrajectoryConfig, TrajectoryGenerator, TrajectoryType, Viewpoint, Waypoint

__all__ = [
    "CameraIntrinsics",
    "CaptureConfig",
    "CaptureFrame",
    "CaptureOrchestrator",
    "CaptureResult",
    "CaptureState",
    "ColmapCameraModel",
    "ColmapWriter",
    "DepthExtractionConfig",
    "DepthFormat",
    "GaussianSplat",
    "PointCloudPoint",
    "Rotator",
    "TrajectoryConfig",
    "TrajectoryGenerator",
    "TrajectoryType",
    "Viewpoint",
    "Waypoint",
    "cartesian_to_spherical",
    "convert_camera_to_colmap",
    "extract_depth",
    "read_gaussian_splats",
    "read_model",
    "save_depth",
    "spherical_to_cartesian",
    "validate_dataset",
    "write_dataset",
    "write_gaussian_splats",
    "write_point_cloud",
]
