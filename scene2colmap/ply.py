"""
PLY serialization for point clouds and 3D Gaussian splats.

Two layouts are supported:

Point cloud (initialization cloud for 3DGS training):
    x y z nx ny nz (float32) red green blue (uchar), 27 bytes/point

Gaussian splat (3DGS scene):
    x y z, nx ny nz, f_dc_0..2, f_rest_0..44, opacity, scale_0..2,
    rot_0..3 (quaternion x, y, z, w), 62 float32 properties

Both are written in COLMAP/3DGS coordinates (meters, Y-down). Conversion
from engine coordinates happens in create_point_cloud_from_mesh() and
GaussianSplat.from_engine().
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
from numpy.typing import NDArray

from . import coordinates
from .coordinates import Rotator
from .utils import safe_normalize

logger = logging.getLogger(__name__)

# Zeroth real spherical harmonic basis value, 1 / (2 * sqrt(pi))
SH_C0 = 0.28209479177387814

NUM_SH_REST = 45

# Bytes per splat for the 3DGS attributes
# Position: 12, Normal: 12, SH DC: 12, SH rest: 180, Opacity: 4, Scale: 12, Rotation: 16
# counted without the normal, which 3DGS trainers ignore
SPLAT_MEMORY_BYTES = 236

POINT_CLOUD_DTYPE = np.dtype([
    ("x", "<f4"), ("y", "<f4"), ("z", "<f4"),
    ("nx", "<f4"), ("ny", "<f4"), ("nz", "<f4"),
    ("red", "u1"), ("green", "u1"), ("blue", "u1"),
])

GAUSSIAN_PROPERTIES = (
    ["x", "y", "z", "nx", "ny", "nz", "f_dc_0", "f_dc_1", "f_dc_2"]
    + [f"f_rest_{i}" for i in range(NUM_SH_REST)]
    + ["opacity", "scale_0", "scale_1", "scale_2", "rot_0", "rot_1", "rot_2", "rot_3"]
)

GAUSSIAN_DTYPE = np.dtype([(name, "<f4") for name in GAUSSIAN_PROPERTIES])

GAUSSIAN_MARKER_PROPERTIES = ("f_dc_0", "opacity", "scale_0")

PLY_TYPE_NAMES = {"u1": "uchar", "f4": "float"}


def color_to_sh_dc(color: Sequence[int]) -> NDArray[np.float64]:
    """
    Convert 8-bit RGB to DC spherical harmonic coefficients.

    SH = (channel / 255 - 0.5) / C0
    """
    return (np.asarray(color, dtype=np.float64) / 255.0 - 0.5) / SH_C0


def sh_dc_to_color(sh_dc: Sequence[float]) -> Tuple[int, int, int]:
    """
    Inverse of color_to_sh_dc(), rounded to nearest and clamped to [0, 255].
    """
    values = np.clip(np.rint((np.asarray(sh_dc, dtype=np.float64) * SH_C0 + 0.5) * 255.0), 0, 255)
    return int(values[0]), int(values[1]), int(values[2])


@dataclass
class PointCloudPoint:
    """Initialization point: position, normal, color (COLMAP coords)."""
    position: NDArray[np.float64]
    normal: NDArray[np.float64] = field(default_factory=lambda: np.array([0.0, 0.0, 1.0]))
    color: Tuple[int, int, int] = (255, 255, 255)


@dataclass
class GaussianSplat:
    """
    Single 3D Gaussian (COLMAP coords).

    Attributes:
        position: Center in meters
        normal: Unused by 3DGS trainers, kept for tooling
        sh_dc: DC spherical harmonic coefficients (RGB)
        sh_rest: 45 higher-order SH coefficients (degree 3)
        opacity: Opacity in [0, 1]
        scale: Per-axis scale, log-space
        rotation: Unit quaternion (w, x, y, z)
        color: 8-bit RGB the DC coefficients were derived from
    """
    position: NDArray[np.float64]
    normal: NDArray[np.float64] = field(default_factory=lambda: np.array([0.0, 0.0, 1.0]))
    sh_dc: NDArray[np.float64] = field(default_factory=lambda: np.full(3, 0.5))
    sh_rest: NDArray[np.float64] = field(default_factory=lambda: np.zeros(NUM_SH_REST))
    opacity: float = 1.0
    scale: NDArray[np.float64] = field(default_factory=lambda: np.full(3, -5.0))
    rotation: NDArray[np.float64] = field(default_factory=lambda: np.array([1.0, 0.0, 0.0, 0.0]))
    color: Tuple[int, int, int] = (255, 255, 255)

    @classmethod
    def from_position_color(
        cls,
        position: NDArray[np.float64],
        color: Tuple[int, int, int],
        normal: Optional[NDArray[np.float64]] = None
    ) -> "GaussianSplat":
        """Create splat whose SH DC encodes color."""
        splat = cls(
            position=np.asarray(position, dtype=np.float64),
            sh_dc=color_to_sh_dc(color),
            color=tuple(int(c) for c in color)
        )
        if normal is not None:
            splat.normal = safe_normalize(normal)
        return splat

    @classmethod
    def from_engine(
        cls,
        position: NDArray[np.float64],
        rotation: Rotator,
        scale: NDArray[np.float64],
        color: Tuple[int, int, int] = (255, 255, 255),
        opacity: float = 1.0
    ) -> "GaussianSplat":
        """
        Create splat from an engine-space ellipsoid.

        Args:
            position: Center in engine coords (cm)
            rotation: Ellipsoid orientation (engine rotator)
            scale: Per-axis extent in cm (engine axes)
            color: 8-bit RGB
            opacity: Opacity in [0, 1]

        Returns:
            GaussianSplat in PLY coords with log-space scale
        """
        scale_m = np.maximum(coordinates.convert_scale_to_ply(scale), 1e-7)
        return cls(
            position=coordinates.convert_position_to_ply(position),
            sh_dc=color_to_sh_dc(color),
            opacity=float(opacity),
            scale=np.log(scale_m),
            rotation=coordinates.convert_rotation_to_ply(rotation),
            color=tuple(int(c) for c in color)
        )


@dataclass
class PlyHeader:
    """Parsed PLY header: vertex count, encoding and property names in order."""
    num_vertices: int
    is_binary: bool
    properties: List[str]

    @property
    def is_gaussian(self) -> bool:
        return any(name in self.properties for name in GAUSSIAN_MARKER_PROPERTIES)


def _generate_header(dtype: np.dtype, num_vertices: int, binary: bool) -> str:
    lines = [
        "ply",
        "format binary_little_endian 1.0" if binary else "format ascii 1.0",
        f"element vertex {num_vertices}",
    ]
    for name in dtype.names:
        type_name = PLY_TYPE_NAMES[dtype.fields[name][0].str[1:]]
        lines.append(f"property {type_name} {name}")
    lines.append("end_header")
    return "\n".join(lines) + "\n"


def generate_point_cloud_header(num_points: int, binary: bool = True) -> str:
    """Header for the 9-property point cloud layout."""
    return _generate_header(POINT_CLOUD_DTYPE, num_points, binary)


def generate_gaussian_header(num_splats: int, binary: bool = True) -> str:
    """Header for the 62-property Gaussian splat layout."""
    return _generate_header(GAUSSIAN_DTYPE, num_splats, binary)


def _points_to_array(points: List[PointCloudPoint]) -> np.ndarray:
    data = np.empty(len(points), dtype=POINT_CLOUD_DTYPE)
    positions = np.array([p.position for p in points], dtype=np.float32).reshape(-1, 3)
    normals = np.array([p.normal for p in points], dtype=np.float32).reshape(-1, 3)
    colors = np.array([p.color for p in points], dtype=np.uint8).reshape(-1, 3)

    for i, axis in enumerate("xyz"):
        data[axis] = positions[:, i]
        data[f"n{axis}"] = normals[:, i]
    data["red"], data["green"], data["blue"] = colors[:, 0], colors[:, 1], colors[:, 2]
    return data


def _splats_to_array(splats: List[GaussianSplat]) -> np.ndarray:
    """Flatten splats into the 62-float record; rotation stored x, y, z, w."""
    rows = np.zeros((len(splats), len(GAUSSIAN_PROPERTIES)), dtype=np.float32)
    for i, splat in enumerate(splats):
        sh_rest = np.zeros(NUM_SH_REST)
        rest = np.asarray(splat.sh_rest, dtype=np.float64)[:NUM_SH_REST]
        sh_rest[:len(rest)] = rest
        w, x, y, z = splat.rotation
        rows[i] = np.concatenate([
            splat.position, splat.normal, splat.sh_dc, sh_rest,
            [splat.opacity], splat.scale, [x, y, z, w]
        ])
    return rows.view(GAUSSIAN_DTYPE).reshape(-1)


def _write_ply(filepath: Path, header: str, data: np.ndarray, binary: bool) -> bool:
    try:
        if binary:
            with open(filepath, "wb") as f:
                f.write(header.encode("ascii"))
                f.write(data.tobytes())
        else:
            with open(filepath, "w", encoding="ascii", newline="\n") as f:
                f.write(header)
                for record in data:
                    f.write(" ".join(
                        str(int(v)) if data.dtype.fields[name][0].kind == "u" else f"{float(v):.6f}"
                        for name, v in zip(data.dtype.names, record)
                    ))
                    f.write("\n")
    except OSError as e:
        logger.error("Failed to write PLY %s: %s", filepath, e)
        return False
    return True


def write_point_cloud(filepath: Path, points: List[PointCloudPoint], binary: bool = True) -> bool:
    """
    Write point cloud PLY.

    Args:
        filepath: Output path
        points: Points in COLMAP coords
        binary: Binary little-endian (27 bytes/point) or ASCII

    Returns:
        False for an empty point list or an I/O error
    """
    if not points:
        logger.warning("Empty point cloud, nothing to write")
        return False
    data = _points_to_array(points)
    return _write_ply(Path(filepath), generate_point_cloud_header(len(points), binary), data, binary)


def write_gaussian_splats(filepath: Path, splats: List[GaussianSplat], binary: bool = True) -> bool:
    """
    Write Gaussian splat PLY.

    Args:
        filepath: Output path
        splats: Splats in COLMAP coords
        binary: Binary little-endian (62 float32 per splat) or ASCII

    Returns:
        False for an empty splat list or an I/O error
    """
    if not splats:
        logger.warning("Empty splat array, nothing to write")
        return False
    data = _splats_to_array(splats)
    return _write_ply(Path(filepath), generate_gaussian_header(len(splats), binary), data, binary)


def parse_ply_header(content: str) -> Optional[PlyHeader]:
    """
    Parse header text line by line up to end_header.

    Args:
        content: File content (at least the whole header)

    Returns:
        PlyHeader, or None when the content is not a well-formed PLY header
    """
    lines = content.splitlines()
    if not lines or not lines[0].startswith("ply"):
        logger.error("Not a valid PLY file")
        return None

    num_vertices = 0
    is_binary = False
    properties = []
    for line in lines[1:]:
        if line.startswith("format") and "binary" in line:
            is_binary = True
        elif line.startswith("element vertex"):
            parts = line.split()
            if len(parts) >= 3:
                try:
                    num_vertices = int(parts[2])
                except ValueError:
                    logger.error("Malformed PLY vertex element: %s", line.strip())
                    return None
                if num_vertices < 0:
                    logger.error("Negative PLY vertex count: %d", num_vertices)
                    return None
        elif line.startswith("property"):
            parts = line.split()
            if len(parts) >= 3:
                properties.append(parts[-1])
        elif line.startswith("end_header"):
            break

    return PlyHeader(num_vertices=num_vertices, is_binary=is_binary, properties=properties)


def _read_header_text(filepath: Path) -> str:
    """Read raw bytes up to and including end_header, decoded as ASCII."""
    chunks = []
    with open(filepath, "rb") as f:
        for line in f:
            chunks.append(line.decode("ascii", errors="replace"))
            if line.startswith(b"end_header"):
                break
    return "".join(chunks)


def get_ply_info(filepath: Path) -> Optional[PlyHeader]:
    """
    Header summary of a PLY file (vertex count, binary flag, Gaussian flag).

    Returns:
        PlyHeader, or None if the file cannot be read or is not PLY
    """
    try:
        return parse_ply_header(_read_header_text(Path(filepath)))
    except (OSError, ValueError) as e:
        logger.error("Failed to read PLY header %s: %s", filepath, e)
        return None


def _load_vertices(filepath: Path) -> Optional[np.ndarray]:
    """Vertex element as a structured array, or None on failure."""
    try:
        from plyfile import PlyData, PlyParseError
    except ImportError:
        raise ImportError(
            "plyfile is required for loading PLY files. "
            "Install with: pip install plyfile"
        )

    try:
        plydata = PlyData.read(str(filepath))
        vertex = plydata["vertex"]
    except (OSError, ValueError, KeyError, PlyParseError) as e:
        logger.error("Failed to load PLY file %s: %s", filepath, e)
        return None

    if vertex.count == 0:
        logger.warning("PLY file %s has no vertices", filepath)
        return None
    return vertex.data


def _stack(data: np.ndarray, names: Sequence[str], default: Sequence[float]) -> NDArray[np.float64]:
    """Stack named columns, or repeat default when any column is missing."""
    if all(name in data.dtype.names for name in names):
        return np.stack([data[name] for name in names], axis=-1).astype(np.float64)
    return np.tile(np.asarray(default, dtype=np.float64), (len(data), 1))


def read_point_cloud(filepath: Path) -> List[PointCloudPoint]:
    """
    Read point cloud PLY (ASCII or binary).

    Properties are looked up by name, so any declared order is accepted.
    Missing normals default to (0, 0, 1), missing colors to white.

    Returns:
        Points, or an empty list on failure
    """
    data = _load_vertices(Path(filepath))
    if data is None:
        return []

    positions = _stack(data, ("x", "y", "z"), (0.0, 0.0, 0.0))
    normals = _stack(data, ("nx", "ny", "nz"), (0.0, 0.0, 1.0))
    colors = _stack(data, ("red", "green", "blue"), (255, 255, 255)).astype(np.int64)

    return [
        PointCloudPoint(position=positions[i], normal=normals[i], color=tuple(int(c) for c in colors[i]))
        for i in range(len(data))
    ]


def read_gaussian_splats(filepath: Path) -> List[GaussianSplat]:
    """
    Read Gaussian splat PLY (ASCII or binary).

    Returns:
        Splats, or an empty list on failure or for non-Gaussian files
    """
    data = _load_vertices(Path(filepath))
    if data is None:
        return []

    names = data.dtype.names
    if not any(name in names for name in GAUSSIAN_MARKER_PROPERTIES):
        logger.warning("PLY file does not appear to contain gaussian splat data")
        return []

    positions = _stack(data, ("x", "y", "z"), (0.0, 0.0, 0.0))
    normals = _stack(data, ("nx", "ny", "nz"), (0.0, 0.0, 1.0))
    sh_dc = _stack(data, ("f_dc_0", "f_dc_1", "f_dc_2"), (0.5, 0.5, 0.5))
    scales = _stack(data, ("scale_0", "scale_1", "scale_2"), (-5.0, -5.0, -5.0))
    rot_xyzw = _stack(data, ("rot_0", "rot_1", "rot_2", "rot_3"), (0.0, 0.0, 0.0, 1.0))
    opacities = np.asarray(data["opacity"], dtype=np.float64) if "opacity" in names else np.ones(len(data))

    sh_rest = np.zeros((len(data), NUM_SH_REST))
    for i in range(NUM_SH_REST):
        if f"f_rest_{i}" in names:
            sh_rest[:, i] = data[f"f_rest_{i}"]

    splats = []
    for i in range(len(data)):
        x, y, z, w = rot_xyzw[i]
        splats.append(GaussianSplat(
            position=positions[i],
            normal=normals[i],
            sh_dc=sh_dc[i],
            sh_rest=sh_rest[i],
            opacity=float(opacities[i]),
            scale=scales[i],
            rotation=np.array([w, x, y, z]),
            color=sh_dc_to_color(sh_dc[i])
        ))

    logger.info("Gaussian splat file contains %d splats", len(splats))
    return splats


def estimate_memory_usage(num_splats: int) -> int:
    """Bytes needed to hold num_splats splats (236 bytes each)."""
    return int(num_splats) * SPLAT_MEMORY_BYTES


def validate_splats(splats: List[GaussianSplat]) -> Tuple[bool, List[str]]:
    """
    Sanity-check splats before writing.

    Returns:
        is_valid: False for an empty list or any non-finite position
        warnings: Counts of invalid opacity, scale and rotation values
                  plus advisory count warnings
    """
    if not splats:
        return False, ["Empty splat array"]

    positions = np.array([s.position for s in splats], dtype=np.float64)
    opacities = np.array([s.opacity for s in splats], dtype=np.float64)
    scale_x = np.array([s.scale[0] for s in splats], dtype=np.float64)
    rotation_norms = np.linalg.norm(np.array([s.rotation for s in splats], dtype=np.float64), axis=1)

    invalid_pos = int(np.sum(~np.all(np.isfinite(positions), axis=1)))
    invalid_opacity = int(np.sum((opacities < 0.0) | (opacities > 1.0)))
    invalid_scale = int(np.sum((scale_x > 10.0) | (scale_x < -20.0)))
    invalid_rotation = int(np.sum(np.abs(rotation_norms - 1.0) > 0.01))

    warnings = []
    if invalid_pos > 0:
        warnings.append(f"{invalid_pos} splats have invalid positions")
    if invalid_opacity > 0:
        warnings.append(f"{invalid_opacity} splats have invalid opacity values")
    if invalid_scale > 0:
        warnings.append(f"{invalid_scale} splats have extreme scale values")
    if invalid_rotation > 0:
        warnings.append(f"{invalid_rotation} splats have non-unit rotation quaternions")

    if len(splats) < 1000:
        warnings.append(f"Low splat count ({len(splats)}). 10K-1M typical for quality scenes.")
    elif len(splats) > 10_000_000:
        warnings.append(f"Very high splat count ({len(splats)}). May impact performance.")

    return invalid_pos == 0, warnings


def create_point_cloud_from_mesh(
    vertices: NDArray[np.float64],
    normals: Optional[NDArray[np.float64]] = None,
    colors: Optional[NDArray[np.uint8]] = None
) -> List[PointCloudPoint]:
    """
    Convert engine mesh vertices to COLMAP-space point cloud points.

    Args:
        vertices: (N, 3) engine positions in cm
        normals: Optional (N, 3) engine normals, used only if N matches
        colors: Optional (N, 3) RGB, used only if N matches

    Returns:
        N points with default normal (0, 0, 1) and white color where
        normals / colors were not supplied
    """
    vertices = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
    positions = coordinates.convert_position_to_colmap(vertices)

    has_normals = normals is not None and len(normals) == len(vertices)
    has_colors = colors is not None and len(colors) == len(vertices)
    if has_normals:
        converted_normals = coordinates.convert_direction_to_colmap(np.asarray(normals, dtype=np.float64))

    points = []
    for i in range(len(vertices)):
        point = PointCloudPoint(position=positions[i])
        if has_normals:
            point.normal = converted_normals[i]
        if has_colors:
            point.color = tuple(int(c) for c in colors[i])
        points.append(point)
    return points


def create_splats_from_point_cloud(
    points: List[PointCloudPoint],
    initial_scale: float = -5.0
) -> List[GaussianSplat]:
    """
    Initialize splats at point cloud points.

    Opacity 1, identity rotation, uniform log-scale initial_scale,
    SH DC from the point color.
    """
    return [
        GaussianSplat(
            position=np.asarray(p.position, dtype=np.float64),
            normal=np.asarray(p.normal, dtype=np.float64),
            sh_dc=color_to_sh_dc(p.color),
            opacity=1.0,
            scale=np.full(3, float(initial_scale)),
            rotation=np.array([1.0, 0.0, 0.0, 0.0]),
            color=tuple(int(c) for c in p.color)
        )
        for p in points
    ]
