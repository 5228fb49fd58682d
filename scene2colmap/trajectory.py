"""
Camera trajectory generation for 3DGS capture.

This module provides the TrajectoryGenerator class which generates ordered
camera viewpoints following various patterns (orbital rings, Fibonacci
sphere, spiral, hemisphere, grid, panoramic, custom waypoints).

All positions and orientations are in engine coordinates (centimeters,
Z-up, see coordinates.py). Conversion to COLMAP happens at export time.

Defaults follow common 3DGS capture practice:
- 3-5 orbital rings at different elevations
- 24-36 views per ring for 60-80% image overlap
- 100-180 views in total for typical scenes
- Alternate rings staggered by half a step for better coverage
"""

import math
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple
from numpy.typing import NDArray

from . import coordinates
from .coordinates import Rotator


class TrajectoryType(Enum):
    """Trajectory algorithm."""

    ORBITAL = "orbital"
    SPHERICAL = "spherical"
    SPIRAL = "spiral"
    HEMISPHERE = "hemisphere"
    GRID = "grid"
    PANORAMIC_360 = "panoramic360"
    CUSTOM = "custom"


# Cube-map style look directions used at every panoramic capture position
PANORAMIC_DIRECTIONS = (
    Rotator(0.0, 0.0, 0.0),     # Forward
    Rotator(0.0, 90.0, 0.0),    # Right
    Rotator(0.0, 180.0, 0.0),   # Back
    Rotator(0.0, 270.0, 0.0),   # Left
    Rotator(-90.0, 0.0, 0.0),   # Up
    Rotator(90.0, 0.0, 0.0),    # Down
)

GOLDEN_RATIO = (1.0 + math.sqrt(5.0)) / 2.0


@dataclass
class Waypoint:
    """Explicit camera transform for custom trajectories."""
    position: NDArray[np.float64]
    rotation: Rotator = field(default_factory=Rotator)


@dataclass(frozen=True, eq=False)
class Viewpoint:
    """
    Single camera viewpoint produced by the generator.

    Attributes:
        position: Camera position in engine coords (cm)
        rotation: Camera orientation (engine rotator)
        viewpoint_id: Sequence index in capture order
        ring_index: Ring / row / position index for structured trajectories
        ring_position: Fractional position within the ring, in [0, 1)
        distance: Distance from the focus point
        elevation: Elevation angle above the horizontal plane (degrees)
        azimuth: Azimuth angle within the horizontal plane (degrees)
    """
    position: NDArray[np.float64]
    rotation: Rotator
    viewpoint_id: int
    ring_index: int = 0
    ring_position: float = 0.0
    distance: float = 0.0
    elevation: float = 0.0
    azimuth: float = 0.0

    def transform(self) -> Tuple[NDArray[np.float64], Rotator]:
        """Engine transform as (position, rotation)."""
        return self.position, self.rotation

    def forward(self) -> NDArray[np.float64]:
        """Unit look direction in engine coords."""
        return self.rotation.vector()

    def get_c2w(self) -> NDArray[np.float64]:
        """
        Get camera-to-world transform in engine coords.

        Returns:
            4x4 matrix, columns of the rotation block are the camera's
            forward, right and up axes
        """
        c2w = np.eye(4, dtype=np.float64)
        c2w[:3, :3] = self.rotation.to_matrix()
        c2w[:3, 3] = self.position
        return c2w


@dataclass
class TrajectoryConfig:
    """Trajectory generation parameters (engine units: cm, degrees)."""
    trajectory_type: TrajectoryType = TrajectoryType.ORBITAL
    focus_point: NDArray[np.float64] = field(default_factory=lambda: np.zeros(3))
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
    custom_waypoints: List[Waypoint] = field(default_factory=list)

    def expected_viewpoint_count(self) -> int:
        """
        Number of viewpoints the configured trajectory is expected to produce.

        Note:
            Spherical is an upper bound, since points outside the
            elevation range are discarded.
        """
        total = self.num_rings * self.views_per_ring
        if self.trajectory_type == TrajectoryType.SPIRAL:
            return self.views_per_ring * 3
        if self.trajectory_type == TrajectoryType.GRID:
            side = math.isqrt(max(total, 0))
            return side * side
        if self.trajectory_type == TrajectoryType.PANORAMIC_360:
            return 6 * self.views_per_ring
        if self.trajectory_type == TrajectoryType.CUSTOM:
            return len(self.custom_waypoints)
        return total


class TrajectoryGenerator:
    """
    Generate camera viewpoints around a focus point.

    Supports multiple trajectory patterns:
    - Orbital: Rings of cameras at evenly spaced elevations
    - Spherical: Fibonacci sphere, filtered by elevation
    - Spiral: Three full turns descending from max to min elevation
    - Hemisphere: Orbital rings restricted to the upper hemisphere
    - Grid: Regular elevation x azimuth lattice
    - Panoramic360: Six axis-aligned views at points along a line
    - Custom: Explicit waypoints

    Generation is deterministic and has no side effects.
    """

    def __init__(self, config: TrajectoryConfig):
        """
        Initialize TrajectoryGenerator.

        Args:
            config: Trajectory parameters
        """
        self.config = config
        self.focus_point = np.asarray(config.focus_point, dtype=np.float64)

    def generate(self) -> List[Viewpoint]:
        """
        Generate viewpoints for the configured trajectory type.

        Returns:
            Ordered list of Viewpoint objects
        """
        trajectory_type = self.config.trajectory_type

        if trajectory_type == TrajectoryType.SPHERICAL:
            return self.spherical()
        if trajectory_type == TrajectoryType.SPIRAL:
            return self.spiral()
        if trajectory_type == TrajectoryType.HEMISPHERE:
            return self.hemisphere()
        if trajectory_type == TrajectoryType.GRID:
            return self.grid()
        if trajectory_type == TrajectoryType.PANORAMIC_360:
            return self.panoramic()
        if trajectory_type == TrajectoryType.CUSTOM:
            return self.custom()
        return self.orbital()

    def orbital(self) -> List[Viewpoint]:
        """
        Generate orbital rings.

        Ring i sits at elevation min + i * range / (rings - 1). With radius
        variation enabled, ring radius is base * (1 + variation * sin(i * pi / rings)).
        With staggering enabled, odd rings are rotated by half the angular step.

        Returns:
            num_rings * views_per_ring viewpoints, ring by ring
        """
        return self._orbital_rings(self.config.min_elevation, self.config.max_elevation)

    def hemisphere(self) -> List[Viewpoint]:
        """
        Generate orbital rings over the upper hemisphere.

        Elevations are clamped to [max(0, min_elevation), min(85, max_elevation)].
        """
        return self._orbital_rings(
            max(0.0, self.config.min_elevation),
            min(85.0, self.config.max_elevation)
        )

    def _orbital_rings(self, min_elevation: float, max_elevation: float) -> List[Viewpoint]:
        cfg = self.config
        if cfg.num_rings <= 0 or cfg.views_per_ring <= 0:
            return []

        elevation_step = 0.0
        if cfg.num_rings > 1:
            elevation_step = (max_elevation - min_elevation) / (cfg.num_rings - 1)
        angular_step = 360.0 / cfg.views_per_ring

        viewpoints = []
        for ring_idx in range(cfg.num_rings):
            elevation = min_elevation + elevation_step * ring_idx

            ring_radius = cfg.base_radius
            if cfg.vary_radius_per_ring:
                variation = math.sin(ring_idx * math.pi / cfg.num_rings)
                ring_radius *= 1.0 + cfg.radius_variation * variation

            azimuth_offset = cfg.start_azimuth
            if cfg.stagger_rings:
                azimuth_offset += (ring_idx % 2) * (angular_step / 2.0)

            for view_idx in range(cfg.views_per_ring):
                azimuth = azimuth_offset + view_idx * angular_step
                position = coordinates.spherical_to_cartesian(
                    ring_radius, elevation, azimuth, self.focus_point
                )

                viewpoints.append(Viewpoint(
                    position=position,
                    rotation=self._ring_rotation(position, elevation, azimuth),
                    viewpoint_id=len(viewpoints),
                    ring_index=ring_idx,
                    ring_position=view_idx / cfg.views_per_ring,
                    distance=ring_radius,
                    elevation=elevation,
                    azimuth=azimuth
                ))

        return viewpoints

    def _ring_rotation(
        self,
        position: NDArray[np.float64],
        elevation: float,
        azimuth: float
    ) -> Rotator:
        """Look at the focus point, or face along the ring tangent."""
        if self.config.look_at_focus_point:
            return self.look_at_rotation(position, self.focus_point, self.config.pitch_offset)
        return Rotator(-elevation, azimuth + 90.0, 0.0)

    def spherical(self) -> List[Viewpoint]:
        """
        Generate an even distribution over a sphere (Fibonacci lattice).

        num_rings * views_per_ring candidates are generated at base_radius;
        candidates outside [min_elevation, max_elevation] are discarded.

        Returns:
            At most num_rings * views_per_ring viewpoints
        """
        cfg = self.config
        total_points = cfg.num_rings * cfg.views_per_ring

        viewpoints = []
        for i in range(max(total_points, 0)):
            position = self.fibonacci_sphere_point(i, total_points, cfg.base_radius, self.focus_point)
            offset = position - self.focus_point
            _, elevation, azimuth = coordinates.cartesian_to_spherical(offset)

            if elevation < cfg.min_elevation or elevation > cfg.max_elevation:
                continue

            if cfg.look_at_focus_point:
                rotation = self.look_at_rotation(position, self.focus_point, cfg.pitch_offset)
            else:
                rotation = Rotator.from_direction(offset)

            viewpoints.append(Viewpoint(
                position=position,
                rotation=rotation,
                viewpoint_id=len(viewpoints),
                distance=cfg.base_radius,
                elevation=elevation,
                azimuth=azimuth
            ))

        return viewpoints

    def spiral(self) -> List[Viewpoint]:
        """
        Generate a descending spiral.

        Three full turns (views_per_ring * 3 points). Elevation goes linearly
        from max to min, azimuth sweeps 3 x 360° from start_azimuth, and radius
        optionally varies as base * (1 + variation * sin(2 * pi * t)).

        Returns:
            views_per_ring * 3 viewpoints
        """
        cfg = self.config
        total_points = cfg.views_per_ring * 3
        elevation_range = cfg.max_elevation - cfg.min_elevation

        viewpoints = []
        for i in range(max(total_points, 0)):
            t = i / (total_points - 1) if total_points > 1 else 0.0

            elevation = cfg.max_elevation - t * elevation_range
            azimuth = cfg.start_azimuth + t * 360.0 * 3.0

            radius = cfg.base_radius
            if cfg.vary_radius_per_ring:
                radius *= 1.0 + cfg.radius_variation * math.sin(t * math.pi * 2.0)

            position = coordinates.spherical_to_cartesian(radius, elevation, azimuth, self.focus_point)

            rotation = Rotator()
            if cfg.look_at_focus_point:
                rotation = self.look_at_rotation(position, self.focus_point, cfg.pitch_offset)

            viewpoints.append(Viewpoint(
                position=position,
                rotation=rotation,
                viewpoint_id=i,
                distance=radius,
                elevation=elevation,
                azimuth=math.fmod(azimuth, 360.0)
            ))

        return viewpoints

    def grid(self) -> List[Viewpoint]:
        """
        Generate a regular elevation x azimuth lattice.

        side = floor(sqrt(num_rings * views_per_ring)); rows are evenly spaced
        elevations from min to max, columns evenly spaced azimuths over 360°.

        Returns:
            side * side viewpoints, row by row
        """
        cfg = self.config
        side = math.isqrt(max(cfg.num_rings * cfg.views_per_ring, 0))
        if side == 0:
            return []

        elevation_step = 0.0
        if side > 1:
            elevation_step = (cfg.max_elevation - cfg.min_elevation) / (side - 1)

        viewpoints = []
        for row in range(side):
            elevation = cfg.min_elevation + elevation_step * row
            for col in range(side):
                azimuth = cfg.start_azimuth + col * 360.0 / side
                position = coordinates.spherical_to_cartesian(
                    cfg.base_radius, elevation, azimuth, self.focus_point
                )

                viewpoints.append(Viewpoint(
                    position=position,
                    rotation=self._ring_rotation(position, elevation, azimuth),
                    viewpoint_id=len(viewpoints),
                    ring_index=row,
                    ring_position=col / side,
                    distance=cfg.base_radius,
                    elevation=elevation,
                    azimuth=azimuth
                ))

        return viewpoints

    def panoramic(self) -> List[Viewpoint]:
        """
        Generate cube-map style captures along a line through the focus point.

        views_per_ring positions are spread over a segment of length
        2 * base_radius along engine X, centered on the focus point. Each
        position is captured in the six PANORAMIC_DIRECTIONS.

        Returns:
            6 * views_per_ring viewpoints
        """
        cfg = self.config
        num_positions = cfg.views_per_ring
        if num_positions <= 0:
            return []

        path_length = cfg.base_radius * 2.0
        step = path_length / (num_positions - 1) if num_positions > 1 else 0.0
        start = -path_length / 2.0 if num_positions > 1 else 0.0

        viewpoints = []
        for pos_idx in range(num_positions):
            offset = np.array([start + step * pos_idx, 0.0, 0.0])
            position = self.focus_point + offset

            for dir_idx, direction in enumerate(PANORAMIC_DIRECTIONS):
                viewpoints.append(Viewpoint(
                    position=position.copy(),
                    rotation=direction,
                    viewpoint_id=len(viewpoints),
                    ring_index=pos_idx,
                    ring_position=dir_idx / len(PANORAMIC_DIRECTIONS),
                    distance=float(abs(offset[0]))
                ))

        return viewpoints

    def custom(self) -> List[Viewpoint]:
        """
        One viewpoint per custom waypoint, in order, with no synthesis.

        Distance and angles are reported relative to the focus point.
        """
        viewpoints = []
        for i, waypoint in enumerate(self.config.custom_waypoints):
            position = np.asarray(waypoint.position, dtype=np.float64)
            distance, elevation, azimuth = coordinates.cartesian_to_spherical(position - self.focus_point)
            viewpoints.append(Viewpoint(
                position=position,
                rotation=waypoint.rotation,
                viewpoint_id=i,
                distance=distance,
                elevation=elevation,
                azimuth=azimuth
            ))
        return viewpoints

    def preview_transforms(self) -> List[Tuple[NDArray[np.float64], Rotator]]:
        """Generate viewpoints and return only their (position, rotation) pairs."""
        return [(vp.position, vp.rotation) for vp in self.generate()]

    @staticmethod
    def look_at_rotation(
        camera_position: NDArray[np.float64],
        target_position: NDArray[np.float64],
        pitch_offset: float = 0.0
    ) -> Rotator:
        """
        Orientation of a camera at camera_position looking at target_position.

        Args:
            camera_position: Camera position (engine coords)
            target_position: Point to look at (engine coords)
            pitch_offset: Degrees added to the resulting pitch

        Returns:
            Rotator with zero roll
        """
        direction = np.asarray(target_position, dtype=np.float64) - np.asarray(camera_position, dtype=np.float64)
        rotation = Rotator.from_direction(direction)
        return Rotator(rotation.pitch + pitch_offset, rotation.yaw, rotation.roll)

    @staticmethod
    def fibonacci_sphere_point(
        index: int,
        total: int,
        radius: float,
        center: Optional[NDArray[np.float64]] = None
    ) -> NDArray[np.float64]:
        """
        Point index of total on a Fibonacci sphere.

        z = 1 - 2 * index / (total - 1), r = sqrt(1 - z^2),
        theta = 2 * pi * index / golden_ratio.

        Note:
            With total <= 1 the single point is the top of the sphere.
        """
        z = 1.0 - 2.0 * index / (total - 1) if total > 1 else 1.0
        ring_radius = math.sqrt(max(0.0, 1.0 - z * z))
        theta = 2.0 * math.pi * index / GOLDEN_RATIO

        local = np.array([
            ring_radius * math.cos(theta) * radius,
            ring_radius * math.sin(theta) * radius,
            z * radius
        ], dtype=np.float64)

        if center is None:
            return local
        return np.asarray(center, dtype=np.float64) + local

    @staticmethod
    def calculate_optimal_config(
        bounds_min: NDArray[np.float64],
        bounds_max: NDArray[np.float64],
        desired_overlap: float = 0.7,
        horizontal_fov: float = 90.0
    ) -> TrajectoryConfig:
        """
        Compute an orbital configuration covering a bounding box.

        Args:
            bounds_min: Minimum corner of the subject's bounding box (cm)
            bounds_max: Maximum corner of the subject's bounding box (cm)
            desired_overlap: Target overlap between adjacent views, 0-1
            horizontal_fov: Camera horizontal field of view in degrees

        Returns:
            TrajectoryConfig centered on the box

        Note:
            radius = max_half_extent / tan(fov / 2) * 1.3 (30% margin).
            views per ring = ceil(360 / (fov * (1 - overlap))), clamped to [12, 72].
            Rings use the vertical FOV of a 16:9 frame, clamped to [3, 8].
        """
        bounds_min = np.asarray(bounds_min, dtype=np.float64)
        bounds_max = np.asarray(bounds_max, dtype=np.float64)

        config = TrajectoryConfig(trajectory_type=TrajectoryType.ORBITAL)
        config.focus_point = (bounds_min + bounds_max) / 2.0

        max_extent = float(np.max((bounds_max - bounds_min) / 2.0))
        min_distance = max_extent / math.tan(math.radians(horizontal_fov) / 2.0)
        config.base_radius = min_distance * 1.3

        angular_step = horizontal_fov * (1.0 - desired_overlap)
        views = math.ceil(360.0 / angular_step) if angular_step > 0 else 72
        config.views_per_ring = int(np.clip(views, 12, 72))

        vertical_fov = horizontal_fov / (16.0 / 9.0)
        vertical_step = vertical_fov * (1.0 - desired_overlap)
        elevation_range = config.max_elevation - config.min_elevation
        rings = math.ceil(elevation_range / vertical_step) if vertical_step > 0 else 8
        config.num_rings = int(np.clip(rings, 3, 8))

        config.stagger_rings = True
        config.vary_radius_per_ring = True
        config.look_at_focus_point = True
        return config

    @staticmethod
    def validate_config(config: TrajectoryConfig) -> Tuple[bool, List[str]]:
        """
        Check a trajectory configuration for plausibility.

        Returns:
            is_valid: False when the trajectory cannot be generated
            warnings: Human-readable messages

        Note:
            Radius checks assume centimeter input.
        """
        warnings = []
        is_valid = True

        total_views = config.expected_viewpoint_count()
        if total_views < 50:
            warnings.append(
                f"Low viewpoint count ({total_views}). "
                f"100-180 recommended for quality 3DGS training."
            )
        elif total_views > 500:
            warnings.append(
                f"High viewpoint count ({total_views}). "
                f"May significantly increase capture and training time."
            )

        if config.base_radius < 100.0:
            warnings.append("Very small radius (<1m). May cause near-plane clipping issues.")
        elif config.base_radius > 10000.0:
            warnings.append("Very large radius (>100m). May affect depth precision.")

        if config.max_elevation - config.min_elevation < 30.0:
            warnings.append("Narrow elevation range (<30°). May result in incomplete vertical coverage.")

        if config.views_per_ring > 0:
            angular_step = 360.0 / config.views_per_ring
            if angular_step > 30.0:
                warnings.append(
                    f"Angular step ({angular_step:.1f}°) may result in insufficient overlap with 90° FOV."
                )
        elif config.trajectory_type != TrajectoryType.CUSTOM:
            warnings.append("views_per_ring must be positive.")
            is_valid = False

        if config.trajectory_type == TrajectoryType.CUSTOM and len(config.custom_waypoints) < 3:
            warnings.append("Custom trajectory requires at least 3 waypoints.")
            is_valid = False

        return is_valid, warnings

    @staticmethod
    def average_overlap(viewpoints: List[Viewpoint], horizontal_fov: float) -> float:
        """
        Estimate mean overlap between consecutive viewpoints.

        For each adjacent pair (wrapping around), overlap is
        clamp(1 - angle_between_forward_vectors / fov, 0, 1).

        Returns:
            Mean overlap in [0, 1]; 0 for fewer than two viewpoints
            or a non-positive FOV
        """
        if len(viewpoints) < 2 or horizontal_fov <= 0:
            return 0.0

        total = 0.0
        for i, viewpoint in enumerate(viewpoints):
            following = viewpoints[(i + 1) % len(viewpoints)]
            cos_angle = float(np.clip(np.dot(viewpoint.forward(), following.forward()), -1.0, 1.0))
            angle = math.degrees(math.acos(cos_angle))
            total += min(max(1.0 - angle / horizontal_fov, 0.0), 1.0)

        return total / len(viewpoints)


def generate_viewpoints(config: TrajectoryConfig) -> List[Viewpoint]:
    """Convenience wrapper: TrajectoryGenerator(config).generate()."""
    return TrajectoryGenerator(config).generate()
