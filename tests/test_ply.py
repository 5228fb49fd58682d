"""
Tests for point cloud and Gaussian splat PLY serialization.
"""

import numpy as np
import pytest

from scene2colmap import coordinates
from scene2colmap.coordinates import Rotator
from scene2colmap.ply import (
    GAUSSIAN_PROPERTIES,
    SH_C0,
    GaussianSplat,
    PointCloudPoint,
    color_to_sh_dc,
    create_point_cloud_from_mesh,
    create_splats_from_point_cloud,
    estimate_memory_usage,
    generate_gaussian_header,
    generate_point_cloud_header,
    get_ply_info,
    parse_ply_header,
    read_gaussian_splats,
    read_point_cloud,
    sh_dc_to_color,
    validate_splats,
    write_gaussian_splats,
    write_point_cloud,
)


@pytest.fixture
def points():
    return [
        PointCloudPoint(np.array([0.0, 0.0, 0.0])),
        PointCloudPoint(np.array([1.0, -2.0, 3.5]), np.array([0.0, -1.0, 0.0]), (255, 0, 128)),
        PointCloudPoint(np.array([-0.25, 0.5, 10.0]), np.array([1.0, 0.0, 0.0]), (1, 2, 3)),
    ]


@pytest.fixture
def splats():
    splat = GaussianSplat.from_position_color(np.array([1.0, 2.0, 3.0]), (200, 100, 50))
    splat.rotation = np.array([0.5, 0.5, 0.5, 0.5])
    splat.scale = np.array([-3.0, -4.0, -5.0])
    splat.opacity = 0.75
    splat.sh_rest = np.arange(45, dtype=np.float64) * 0.01
    return [splat, GaussianSplat(position=np.zeros(3))]


class TestSphericalHarmonics:
    """Test color <-> SH DC conversion."""

    def test_mid_gray_is_zero(self):
        """Mid-gray maps to a zero DC coefficient."""
        assert np.allclose(color_to_sh_dc((127.5, 127.5, 127.5)), 0.0)

    def test_white(self):
        """White maps to 0.5 / C0."""
        assert np.allclose(color_to_sh_dc((255, 255, 255)), 0.5 / SH_C0)

    @pytest.mark.parametrize("color", [(0, 0, 0), (255, 255, 255), (12, 200, 99)])
    def test_roundtrip(self, color):
        """8-bit colors survive conversion to SH and back."""
        assert sh_dc_to_color(color_to_sh_dc(color)) == color

    def test_clamped(self):
        """Out-of-range coefficients clamp to 0..255."""
        assert sh_dc_to_color([100.0, -100.0, 0.0]) == (255, 0, 128)


class TestHeaders:
    """Test header generation and parsing."""

    def test_point_cloud_header(self):
        """Point cloud header lists the 9 properties in order."""
        header = generate_point_cloud_header(42)
        lines = header.splitlines()

        assert lines[0] == "ply"
        assert lines[1] == "format binary_little_endian 1.0"
        assert lines[2] == "element vertex 42"
        assert lines[3] == "property float x"
        assert lines[9] == "property uchar red"
        assert lines[-1] == "end_header"
        assert header.endswith("end_header\n")

    def test_ascii_header(self):
        """binary=False declares the ASCII format."""
        assert "format ascii 1.0" in generate_point_cloud_header(1, binary=False)

    def test_gaussian_header_property_count(self):
        """Gaussian header declares 62 float properties ending in rot_3."""
        lines = generate_gaussian_header(3).splitlines()
        properties = [line for line in lines if line.startswith("property")]

        assert len(properties) == 62
        assert all(line.startswith("property float ") for line in properties)
        assert properties[-1] == "property float rot_3"

    def test_parse_header(self):
        """Parsed Gaussian header reports count, format and properties."""
        header = parse_ply_header(generate_gaussian_header(7))

        assert header.num_vertices == 7
        assert header.is_binary
        assert header.properties == list(GAUSSIAN_PROPERTIES)
        assert header.is_gaussian

    def test_parse_point_cloud_header_not_gaussian(self):
        """A point cloud header is not a Gaussian header."""
        header = parse_ply_header(generate_point_cloud_header(3, binary=False))
        assert not header.is_binary
        assert not header.is_gaussian

    def test_parse_not_ply(self):
        """Non-PLY text parses to None."""
        assert parse_ply_header("solid cube\nfacet normal 0 0 1\n") is None

    def test_parse_malformed_vertex_count(self):
        """A non-integer vertex count parses to None."""
        assert parse_ply_header("ply\nformat ascii 1.0\nelement vertex abc\nend_header\n") is None

    def test_parse_negative_vertex_count(self):
        """A negative vertex count parses to None."""
        assert parse_ply_header("ply\nformat ascii 1.0\nelement vertex -3\nend_header\n") is None

    def test_get_ply_info_malformed(self, tmp_path):
        """get_ply_info returns None for a malformed header file."""
        path = tmp_path / "bad.ply"
        path.write_text("ply\nformat ascii 1.0\nelement vertex 1.5\nproperty float x\nend_header\n")
        assert get_ply_info(path) is None


class TestPointCloud:
    """Test point cloud write/read."""

    def test_binary_size(self, tmp_path, points):
        """Binary records are 27 bytes each after the header."""
        path = tmp_path / "points.ply"
        assert write_point_cloud(path, points)

        header = generate_point_cloud_header(len(points))
        assert path.stat().st_size == len(header) + 27 * len(points)

    @pytest.mark.parametrize("binary", [True, False])
    def test_roundtrip(self, tmp_path, points, binary):
        """Positions, normals and colors read back."""
        path = tmp_path / "points.ply"
        write_point_cloud(path, points, binary=binary)

        loaded = read_point_cloud(path)

        assert len(loaded) == len(points)
        for original, point in zip(points, loaded):
            assert np.allclose(point.position, original.position, atol=1e-6)
            assert np.allclose(point.normal, original.normal, atol=1e-6)
            assert point.color == original.color

    def test_ascii_number_format(self, tmp_path, points):
        """ASCII floats use six decimals."""
        path = tmp_path / "points.ply"
        write_point_cloud(path, points[1:2], binary=False)

        last = path.read_text().splitlines()[-1]
        assert last == "1.000000 -2.000000 3.500000 0.000000 -1.000000 0.000000 255 0 128"

    def test_empty_write(self, tmp_path):
        """Writing no points fails without creating a file."""
        path = tmp_path / "empty.ply"
        assert not write_point_cloud(path, [])
        assert not path.exists()

    def test_any_property_order(self, tmp_path):
        """Properties are read by name; missing normals default to +Z."""
        path = tmp_path / "reordered.ply"
        path.write_text(
            "ply\n"
            "format ascii 1.0\n"
            "element vertex 1\n"
            "property uchar red\n"
            "property uchar green\n"
            "property uchar blue\n"
            "property float z\n"
            "property float y\n"
            "property float x\n"
            "end_header\n"
            "10 20 30 3.0 2.0 1.0\n"
        )

        loaded = read_point_cloud(path)

        assert len(loaded) == 1
        assert np.allclose(loaded[0].position, [1, 2, 3])
        assert np.allclose(loaded[0].normal, [0, 0, 1])
        assert loaded[0].color == (10, 20, 30)

    def test_missing_file(self, tmp_path):
        """Missing file reads as an empty list."""
        assert read_point_cloud(tmp_path / "missing.ply") == []

    def test_not_a_ply(self, tmp_path):
        """Non-PLY file reads as an empty list."""
        path = tmp_path / "garbage.ply"
        path.write_bytes(b"not a ply file\n")
        assert read_point_cloud(path) == []


class TestGaussianSplats:
    """Test Gaussian splat write/read."""

    def test_binary_record_size(self, tmp_path, splats):
        """Binary records are 62 float32 values each."""
        path = tmp_path / "splats.ply"
        assert write_gaussian_splats(path, splats)

        header = generate_gaussian_header(len(splats))
        assert path.stat().st_size == len(header) + 62 * 4 * len(splats)

    @pytest.mark.parametrize("binary", [True, False])
    def test_roundtrip(self, tmp_path, splats, binary):
        """Every splat attribute reads back."""
        path = tmp_path / "splats.ply"
        write_gaussian_splats(path, splats, binary=binary)

        loaded = read_gaussian_splats(path)

        assert len(loaded) == 2
        first = loaded[0]
        assert np.allclose(first.position, [1, 2, 3])
        assert np.allclose(first.rotation, [0.5, 0.5, 0.5, 0.5])
        assert np.allclose(first.scale, [-3, -4, -5])
        assert np.isclose(first.opacity, 0.75)
        assert np.allclose(first.sh_rest, splats[0].sh_rest, atol=1e-6)
        assert first.color == (200, 100, 50)

    def test_rotation_stored_xyzw(self, tmp_path):
        """wxyz rotation is written as x, y, z, w."""
        splat = GaussianSplat(position=np.zeros(3), rotation=np.array([0.1, 0.2, 0.3, 0.4]))
        path = tmp_path / "splat.ply"
        write_gaussian_splats(path, [splat], binary=False)

        values = [float(v) for v in path.read_text().splitlines()[-1].split()]
        assert np.allclose(values[-4:], [0.2, 0.3, 0.4, 0.1])

    def test_point_cloud_is_not_gaussian(self, tmp_path, points):
        """Reading splats from a point cloud gives nothing."""
        path = tmp_path / "points.ply"
        write_point_cloud(path, points)
        assert read_gaussian_splats(path) == []

    def test_empty_write(self, tmp_path):
        """Writing no splats fails."""
        assert not write_gaussian_splats(tmp_path / "empty.ply", [])

    def test_get_ply_info(self, tmp_path, splats):
        """Header summary of a written splat file."""
        path = tmp_path / "splats.ply"
        write_gaussian_splats(path, splats)

        info = get_ply_info(path)

        assert info.num_vertices == 2
        assert info.is_binary
        assert info.is_gaussian

    def test_get_ply_info_missing(self, tmp_path):
        """Missing file has no header summary."""
        assert get_ply_info(tmp_path / "missing.ply") is None


class TestSplatConstruction:
    """Test splat factories."""

    def test_defaults(self):
        """Default splat is gray, opaque, small and unrotated."""
        splat = GaussianSplat(position=np.zeros(3))

        assert np.allclose(splat.sh_dc, 0.5)
        assert splat.sh_rest.shape == (45,)
        assert splat.opacity == 1.0
        assert np.allclose(splat.scale, -5.0)
        assert np.allclose(splat.rotation, [1, 0, 0, 0])

    def test_from_position_color_normalizes_normal(self):
        """Normals are normalized on construction."""
        splat = GaussianSplat.from_position_color(np.zeros(3), (0, 0, 0), normal=np.array([0.0, 0.0, 5.0]))
        assert np.allclose(splat.normal, [0, 0, 1])

    def test_from_engine(self):
        """Engine position, rotation and scale convert to COLMAP log-scale."""
        splat = GaussianSplat.from_engine(
            np.array([100.0, 0.0, 0.0]),
            Rotator(),
            np.array([10.0, 20.0, 30.0]),
            color=(255, 255, 255),
            opacity=0.5
        )

        assert np.allclose(splat.position, [0, 0, 1])
        assert np.allclose(splat.scale, np.log([0.2, 0.3, 0.1]))
        assert np.allclose(splat.rotation, [1, 0, 0, 0])
        assert splat.opacity == 0.5

    def test_from_engine_clamps_zero_scale(self):
        """Zero engine scale stays finite after the log."""
        splat = GaussianSplat.from_engine(np.zeros(3), Rotator(), np.zeros(3))
        assert np.all(np.isfinite(splat.scale))

    def test_splats_from_point_cloud(self, points):
        """Point cloud conversion keeps position and color."""
        splats = create_splats_from_point_cloud(points, initial_scale=-4.0)

        assert len(splats) == 3
        assert np.allclose(splats[1].position, points[1].position)
        assert np.allclose(splats[1].scale, -4.0)
        assert splats[1].color == (255, 0, 128)
        assert sh_dc_to_color(splats[1].sh_dc) == (255, 0, 128)


class TestMeshConversion:
    """Test engine mesh -> point cloud conversion."""

    def test_positions_converted(self):
        """Engine cm vertices become COLMAP meters."""
        vertices = np.array([[100.0, 0.0, 0.0], [0.0, 0.0, 200.0]])
        points = create_point_cloud_from_mesh(vertices)

        assert np.allclose(points[0].position, [0, 0, 1])
        assert np.allclose(points[1].position, [0, -2, 0])
        assert np.allclose(points[0].normal, [0, 0, 1])
        assert points[0].color == (255, 255, 255)

    def test_normals_and_colors(self):
        """Normals are converted as directions; colors pass through."""
        vertices = np.zeros((2, 3))
        normals = np.array([[0.0, 0.0, 1.0], [1.0, 0.0, 0.0]])
        colors = np.array([[1, 2, 3], [4, 5, 6]], dtype=np.uint8)

        points = create_point_cloud_from_mesh(vertices, normals, colors)

        assert np.allclose(points[0].normal, coordinates.convert_direction_to_colmap([0, 0, 1]))
        assert np.allclose(points[1].normal, [0, 0, 1])
        assert points[1].color == (4, 5, 6)

    def test_mismatched_normals_ignored(self):
        """Normals with the wrong count fall back to +Z."""
        points = create_point_cloud_from_mesh(np.zeros((2, 3)), normals=np.ones((3, 3)))
        assert all(np.allclose(p.normal, [0, 0, 1]) for p in points)


class TestValidation:
    """Test splat sanity checks."""

    def test_memory_estimate(self):
        """Memory estimate is 236 bytes per splat."""
        assert estimate_memory_usage(1000) == 236000

    def test_empty(self):
        """An empty list is invalid."""
        assert validate_splats([]) == (False, ["Empty splat array"])

    def test_valid_but_few(self, splats):
        """Few splats are valid with a low-count warning."""
        is_valid, warnings = validate_splats(splats)
        assert is_valid
        assert warnings == ["Low splat count (2). 10K-1M typical for quality scenes."]

    def test_invalid_position(self):
        """NaN positions make the set invalid."""
        bad = GaussianSplat(position=np.array([np.nan, 0.0, 0.0]))
        is_valid, warnings = validate_splats([bad])

        assert not is_valid
        assert "1 splats have invalid positions" in warnings

    def test_advisory_counts(self):
        """Opacity, scale and rotation problems are counted as warnings."""
        bad = GaussianSplat(
            position=np.zeros(3),
            opacity=1.5,
            scale=np.array([15.0, 0.0, 0.0]),
            rotation=np.array([2.0, 0.0, 0.0, 0.0])
        )
        is_valid, warnings = validate_splats([bad])

        assert is_valid
        assert "1 splats have invalid opacity values" in warnings
        assert "1 splats have extreme scale values" in warnings
        assert "1 splats have non-unit rotation quaternions" in warnings
