"""
Configuration management for scene2colmap.

Handles:
- Command-line argument parsing
- YAML config file loading and saving
- Conversion to the library's runtime configs (TrajectoryConfig,
  CameraIntrinsics, DepthExtractionConfig, CaptureConfig)
"""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List
import argparse

import numpy as np

from .coordinates import Rotator
from .depth import DepthExtractionConfig, DepthFormat
from .intrinsics import CameraIntrinsics, ColmapCameraModel
from .pipeline import CaptureConfig
from .trajectory import TrajectoryConfig, TrajectoryGenerator, TrajectoryType, Waypoint


@dataclass
class CameraSettings:
    """Camera configuration."""
    width: int = 1920
    height: int = 1080
    fov: float = 90.0  # Horizontal, degrees
    model: str = "PINHOLE"


@dataclass
class TrajectorySettings:
    """Trajectory configuration (engine units: cm, degrees)."""
    type: str = "orbital"  # orbital, spherical, spiral, hemisphere, grid, panoramic360, custom
    focus_point: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])
    base_radius: float = 500.0
    num_rings: int = 5
    views_per_ring: int = 36
    min_elevation: float = -30.0
    max_elevation: float = 60.0
    start_azimuth: float = 0.0
    vary_radius_per_ring: bool = True
    radius_variation: float = 0.15
    stagger_rings: bool = True
    look_at_focus_point: bool = True
    pitch_offset: float = 0.0
    # Custom only: [{"position": [x, y, z], "rotation": [pitch, yaw, roll]}, ...]
    waypoints: List[Dict[str, List[float]]] = field(default_factory=list)


@dataclass
class DepthSettings:
    """Depth capture configuration."""
    enabled: bool = True
    format: str = "exr32"  # png16, exr32, npy, raw_float32
    near_plane: float = 10.0
    far_plane: float = 100000.0
    export_in_meters: bool = True
    apply_gamma_correction: bool = False
    gamma_value: float = 2.2
    invert_depth: bool = False


@dataclass
class ExportSettings:
    """Export configuration."""
    output_dir: str = "./output"
    image_format: str = "jpg"
    jpeg_quality: int = 95
    binary_colmap: bool = False
    point_cloud: bool = True


def _load_section(data: Dict[str, Any], name: str, cls):
    """Build a settings dataclass from one YAML section."""
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ValueError(f"Unknown {name} option(s): {', '.join(unknown)}")
    return cls(**section)


@dataclass
class Config:
    """Complete configuration."""
    camera: CameraSettings = field(default_factory=CameraSettings)
    trajectory: TrajectorySettings = field(default_factory=TrajectorySettings)
    depth: DepthSettings = field(default_factory=DepthSettings)
    export: ExportSettings = field(default_factory=ExportSettings)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Config":
        """
        Create config from parsed command-line arguments.

        Loads config file if specified, then applies command-line overrides.

        Args:
            args: Parsed arguments from argparse

        Returns:
            Config instance

        Raises:
            ValueError: For malformed option values
        """
        config = cls.from_yaml(args.config) if args.config else cls()

        if args.output_dir:
            config.export.output_dir = args.output_dir

        # Camera overrides
        if args.resolution:
            try:
                w, h = args.resolution.lower().split('x')
                config.camera.width, config.camera.height = int(w), int(h)
            except ValueError:
                raise ValueError(f"Invalid resolution format: {args.resolution}. Use WxH (e.g., 1920x1080)")
        if args.width is not None:
            config.camera.width = args.width
        if args.height is not None:
            config.camera.height = args.height
        if args.fov is not None:
            config.camera.fov = args.fov
        if args.camera_model:
            config.camera.model = args.camera_model

        # Trajectory overrides
        traj = config.trajectory
        if args.auto_bounds:
            values = [float(v) for v in args.auto_bounds]
            optimal = TrajectoryGenerator.calculate_optimal_config(
                np.array(values[:3]), np.array(values[3:]),
                desired_overlap=args.overlap,
                horizontal_fov=config.camera.fov
            )
            traj.type = TrajectoryType.ORBITAL.value
            traj.focus_point = [float(v) for v in optimal.focus_point]
            traj.base_radius = optimal.base_radius
            traj.num_rings = optimal.num_rings
            traj.views_per_ring = optimal.views_per_ring
            traj.stagger_rings = optimal.stagger_rings
            traj.vary_radius_per_ring = optimal.vary_radius_per_ring
            traj.look_at_focus_point = optimal.look_at_focus_point

        if args.trajectory:
            traj.type = args.trajectory
        if args.focus_point:
            traj.focus_point = [float(v) for v in args.focus_point]
        if args.radius is not None:
            traj.base_radius = args.radius
        if args.rings is not None:
            traj.num_rings = args.rings
        if args.views_per_ring is not None:
            traj.views_per_ring = args.views_per_ring
        if args.min_elevation is not None:
            traj.min_elevation = args.min_elevation
        if args.max_elevation is not None:
            traj.max_elevation = args.max_elevation
        if args.start_azimuth is not None:
            traj.start_azimuth = args.start_azimuth
        if args.radius_variation is not None:
            traj.radius_variation = args.radius_variation
        if args.no_radius_variation:
            traj.vary_radius_per_ring = False
        if args.no_stagger:
            traj.stagger_rings = False
        if args.no_look_at:
            traj.look_at_focus_point = False
        if args.pitch_offset is not None:
            traj.pitch_offset = args.pitch_offset

        # Depth overrides
        if args.no_depth:
            config.depth.enabled = False
        if args.depth_format:
            config.depth.format = args.depth_format
        if args.near_plane is not None:
            config.depth.near_plane = args.near_plane
        if args.far_plane is not None:
            config.depth.far_plane = args.far_plane
        if args.depth_in_cm:
            config.depth.export_in_meters = False
        if args.depth_gamma is not None:
            config.depth.apply_gamma_correction = True
            config.depth.gamma_value = args.depth_gamma
        if args.invert_depth:
            config.depth.invert_depth = True

        # Export overrides
        if args.image_format:
            config.export.image_format = args.image_format
        if args.jpeg_quality is not None:
            config.export.jpeg_quality = args.jpeg_quality
        if args.binary:
            config.export.binary_colmap = True
        if args.no_point_cloud:
            config.export.point_cloud = False

        return config

    @classmethod
    def from_yaml(cls, filepath: str) -> "Config":
        """
        Load config from YAML file.

        Missing sections and options keep their defaults.

        Args:
            filepath: Path to YAML config file

        Returns:
            Config instance

        Raises:
            ValueError: For unknown sections or options
        """
        try:
            import yaml
        except ImportError:
            raise ImportError(
                "PyYAML is required for config files. "
                "Install with: pip install pyyaml"
            )

        with open(filepath, 'r') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Config file {filepath} must contain a mapping")

        unknown = sorted(set(data) - {'camera', 'trajectory', 'depth', 'export'})
        if unknown:
            raise ValueError(f"Unknown config section(s): {', '.join(unknown)}")

        return cls(
            camera=_load_section(data, 'camera', CameraSettings),
            trajectory=_load_section(data, 'trajectory', TrajectorySettings),
            depth=_load_section(data, 'depth', DepthSettings),
            export=_load_section(data, 'export', ExportSettings)
        )

    def to_yaml(self, filepath: str) -> None:
        """
        Save config to YAML file.

        Args:
            filepath: Path to save YAML config file
        """
        try:
            import yaml
        except ImportError:
            raise ImportError(
                "PyYAML is required for config files. "
                "Install with: pip install pyyaml"
            )

        data = asdict(self)
        data['trajectory']['focus_point'] = [float(v) for v in self.trajectory.focus_point]

        with open(filepath, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def to_trajectory_config(self) -> TrajectoryConfig:
        """
        Raises:
            ValueError: For an unknown trajectory type or malformed waypoints
        """
        traj = self.trajectory
        try:
            trajectory_type = TrajectoryType(traj.type.lower())
        except ValueError:
            valid = ", ".join(t.value for t in TrajectoryType)
            raise ValueError(f"Invalid trajectory type: {traj.type}. Use one of: {valid}")

        waypoints = []
        for i, wp in enumerate(traj.waypoints):
            try:
                position = np.array(wp['position'], dtype=np.float64).reshape(3)
                rotation = Rotator(*[float(v) for v in wp.get('rotation', [0.0, 0.0, 0.0])])
            except (KeyError, TypeError, ValueError):
                raise ValueError(
                    f"Invalid waypoint {i}: expected {{position: [x, y, z], rotation: [pitch, yaw, roll]}}"
                )
            waypoints.append(Waypoint(position=position, rotation=rotation))

        return TrajectoryConfig(
            trajectory_type=trajectory_type,
            focus_point=np.array(traj.focus_point, dtype=np.float64).reshape(3),
            base_radius=float(traj.base_radius),
            num_rings=int(traj.num_rings),
            views_per_ring=int(traj.views_per_ring),
            min_elevation=float(traj.min_elevation),
            max_elevation=float(traj.max_elevation),
            start_azimuth=float(traj.start_azimuth),
            vary_radius_per_ring=bool(traj.vary_radius_per_ring),
            radius_variation=float(traj.radius_variation),
            stagger_rings=bool(traj.stagger_rings),
            look_at_focus_point=bool(traj.look_at_focus_point),
            pitch_offset=float(traj.pitch_offset),
            custom_waypoints=waypoints
        )

    def to_intrinsics(self) -> CameraIntrinsics:
        """
        Raises:
            ValueError: For an unknown camera model
        """
        return CameraIntrinsics.from_fov(
            self.camera.fov,
            self.camera.width,
            self.camera.height,
            model=ColmapCameraModel.from_name(self.camera.model)
        )

    def to_depth_config(self) -> DepthExtractionConfig:
        """
        Raises:
            ValueError: For an unknown depth format
        """
        try:
            depth_format = DepthFormat(self.depth.format.lower())
        except ValueError:
            valid = ", ".join(f.value for f in DepthFormat)
            raise ValueError(f"Invalid depth format: {self.depth.format}. Use one of: {valid}")

        return DepthExtractionConfig(
            format=depth_format,
            near_plane=float(self.depth.near_plane),
            far_plane=float(self.depth.far_plane),
            export_in_meters=bool(self.depth.export_in_meters),
            apply_gamma_correction=bool(self.depth.apply_gamma_correction),
            gamma_value=float(self.depth.gamma_value),
            invert_depth=bool(self.depth.invert_depth)
        )

    def to_capture_config(self) -> CaptureConfig:
        """Assemble the orchestrator config."""
        return CaptureConfig(
            output_directory=self.export.output_dir,
            image_width=int(self.camera.width),
            image_height=int(self.camera.height),
            field_of_view=float(self.camera.fov),
            camera_model=ColmapCameraModel.from_name(self.camera.model),
            trajectory=self.to_trajectory_config(),
            capture_depth=bool(self.depth.enabled),
            depth=self.to_depth_config(),
            export_point_cloud=bool(self.export.point_cloud),
            image_format=self.export.image_format.lower(),
            jpeg_quality=int(self.export.jpeg_quality),
            binary_colmap=bool(self.export.binary_colmap)
        )

    @staticmethod
    def generate_default_config_template() -> str:
        """
        Generate a default configuration template with comments.

        Returns:
            YAML string with comments explaining each option
        """
        return """# scene2colmap Configuration File
#
# Configures camera trajectory generation and 3DGS dataset export.
# Command-line arguments override values specified here.
# Engine units: centimeters, degrees. Engine axes: X forward, Y right, Z up.

# Camera configuration
camera:
  # Output resolution in pixels
  width: 1920
  height: 1080

  # Horizontal field of view in degrees (60-90 recommended)
  fov: 90.0

  # COLMAP camera model: SIMPLE_PINHOLE, PINHOLE, SIMPLE_RADIAL, RADIAL, OPENCV, FULL_OPENCV
  model: "PINHOLE"

# Camera trajectory configuration
trajectory:
  # Type: orbital, spherical, spiral, hemisphere, grid, panoramic360, custom
  type: "orbital"

  # Point the cameras orbit around [x, y, z] in cm
  focus_point: [0.0, 0.0, 0.0]

  # Orbit radius in cm
  base_radius: 500.0

  # Rings at different elevations and views per ring (36 = 10 degree steps)
  num_rings: 5
  views_per_ring: 36

  # Elevation range in degrees
  min_elevation: -30.0
  max_elevation: 60.0

  # Azimuth of the first view in degrees
  start_azimuth: 0.0

  # Vary radius per ring by up to radius_variation (fraction)
  vary_radius_per_ring: true
  radius_variation: 0.15

  # Offset alternate rings by half a step
  stagger_rings: true

  # Point cameras at the focus point (otherwise along the orbit tangent)
  look_at_focus_point: true
  pitch_offset: 0.0

  # Custom trajectory waypoints (type: custom, at least 3)
  # - position: [x, y, z]
  #   rotation: [pitch, yaw, roll]
  waypoints: []

# Depth configuration
depth:
  # Capture depth maps when the renderer provides them
  enabled: true

  # Format: png16, exr32 (raw float32 + JSON sidecar), npy, raw_float32
  format: "exr32"

  # Clip planes in cm
  near_plane: 10.0
  far_plane: 100000.0

  # Convert depth from cm to meters
  export_in_meters: true

  # Gamma remap of the depth range
  apply_gamma_correction: false
  gamma_value: 2.2

  # Store 1/depth instead of depth
  invert_depth: false

# Export configuration
export:
  # Output directory for images, depth maps and COLMAP files
  output_dir: "./output"

  # Image format: jpg, png
  image_format: "jpg"
  jpeg_quality: 95

  # Write COLMAP .bin files instead of .txt
  binary_colmap: false

  # Write placeholder sparse/0/points3D.ply
  point_cloud: true
"""


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create command-line argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="scene2colmap",
        description="Generate 3DGS capture trajectories and export COLMAP datasets",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        epilog="Configuration file (YAML) can be used to set all options. Command-line arguments override config file values."
    )

    parser.add_argument(
        "--config", "-c",
        help="Path to YAML configuration file"
    )
    parser.add_argument(
        "--output-dir", "-o",
        help="Directory for images, depth maps and COLMAP files"
    )
    parser.add_argument(
        "--save-config",
        metavar="PATH",
        help="Save default configuration to YAML file and exit"
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Print the generated viewpoints instead of exporting"
    )
    parser.add_argument(
        "--inspect",
        metavar="DIR",
        help="Validate an existing dataset directory and exit"
    )

    # Camera options
    camera_group = parser.add_argument_group("Camera Options")
    camera_group.add_argument(
        "--resolution",
        type=str,
        metavar="WxH",
        help="Image resolution (e.g., 1920x1080)"
    )
    camera_group.add_argument(
        "--width",
        type=int,
        metavar="PIXELS",
        help="Image width in pixels (alternative to --resolution)"
    )
    camera_group.add_argument(
        "--height",
        type=int,
        metavar="PIXELS",
        help="Image height in pixels (alternative to --resolution)"
    )
    camera_group.add_argument(
        "--fov",
        type=float,
        metavar="DEGREES",
        help="Horizontal field of view (default: 90)"
    )
    camera_group.add_argument(
        "--camera-model",
        choices=[m.name for m in ColmapCameraModel],
        help="COLMAP camera model"
    )

    # Trajectory options
    trajectory_group = parser.add_argument_group("Trajectory Options")
    trajectory_group.add_argument(
        "--trajectory",
        choices=[t.value for t in TrajectoryType],
        help="Trajectory type"
    )
    trajectory_group.add_argument(
        "--focus-point",
        type=float,
        nargs=3,
        metavar=("X", "Y", "Z"),
        help="Focus point in cm (e.g., 0 0 100)"
    )
    trajectory_group.add_argument(
        "--radius",
        type=float,
        metavar="CM",
        help="Base orbit radius in cm"
    )
    trajectory_group.add_argument(
        "--rings",
        type=int,
        metavar="N",
        help="Number of elevation rings"
    )
    trajectory_group.add_argument(
        "--views-per-ring",
        type=int,
        metavar="N",
        help="Views per ring"
    )
    trajectory_group.add_argument(
        "--min-elevation",
        type=float,
        metavar="DEGREES",
        help="Lowest ring elevation"
    )
    trajectory_group.add_argument(
        "--max-elevation",
        type=float,
        metavar="DEGREES",
        help="Highest ring elevation"
    )
    trajectory_group.add_argument(
        "--start-azimuth",
        type=float,
        metavar="DEGREES",
        help="Azimuth of the first view"
    )
    trajectory_group.add_argument(
        "--radius-variation",
        type=float,
        metavar="FRACTION",
        help="Per-ring radius variation"
    )
    trajectory_group.add_argument(
        "--no-radius-variation",
        action="store_true",
        help="Use the same radius for every ring"
    )
    trajectory_group.add_argument(
        "--no-stagger",
        action="store_true",
        help="Do not offset alternate rings"
    )
    trajectory_group.add_argument(
        "--no-look-at",
        action="store_true",
        help="Face along the orbit instead of at the focus point"
    )
    trajectory_group.add_argument(
        "--pitch-offset",
        type=float,
        metavar="DEGREES",
        help="Pitch added to look-at orientations"
    )
    trajectory_group.add_argument(
        "--auto-bounds",
        type=float,
        nargs=6,
        metavar=("MINX", "MINY", "MINZ", "MAXX", "MAXY", "MAXZ"),
        help="Compute an orbital trajectory covering this bounding box (cm)"
    )
    trajectory_group.add_argument(
        "--overlap",
        type=float,
        default=0.7,
        metavar="FRACTION",
        help="Desired view overlap for --auto-bounds"
    )

    # Depth options
    depth_group = parser.add_argument_group("Depth Options")
    depth_group.add_argument(
        "--no-depth",
        action="store_true",
        help="Skip depth export"
    )
    depth_group.add_argument(
        "--depth-format",
        choices=[f.value for f in DepthFormat],
        help="Depth file format"
    )
    depth_group.add_argument(
        "--near-plane",
        type=float,
        metavar="CM",
        help="Near clip plane"
    )
    depth_group.add_argument(
        "--far-plane",
        type=float,
        metavar="CM",
        help="Far clip plane"
    )
    depth_group.add_argument(
        "--depth-in-cm",
        action="store_true",
        help="Keep depth in centimeters"
    )
    depth_group.add_argument(
        "--depth-gamma",
        type=float,
        metavar="GAMMA",
        help="Apply gamma remap to depth"
    )
    depth_group.add_argument(
        "--invert-depth",
        action="store_true",
        help="Store inverse depth"
    )

    # Export options
    export_group = parser.add_argument_group("Export Options")
    export_group.add_argument(
        "--image-format",
        choices=["jpg", "png"],
        help="Image file format"
    )
    export_group.add_argument(
        "--jpeg-quality",
        type=int,
        metavar="Q",
        help="JPEG quality 0-100"
    )
    export_group.add_argument(
        "--binary",
        action="store_true",
        help="Write COLMAP binary files"
    )
    export_group.add_argument(
        "--no-point-cloud",
        action="store_true",
        help="Skip points3D.ply"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output"
    )

    return parser
