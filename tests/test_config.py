"""
Tests for YAML / command-line configuration.
"""

import numpy as np
import pytest

from scene2colmap.config import Config, create_argument_parser
from scene2colmap.depth import DepthFormat
from scene2colmap.intrinsics import ColmapCameraModel
from scene2colmap.trajectory import TrajectoryType


def parse(*argv) -> Config:
    args = create_argument_parser().parse_args(list(argv))
    return Config.from_args(args)


class TestDefaults:
    """Test default configuration."""

    def test_capture_config_defaults(self):
        """Defaults describe a 1080p, 5x36 orbital capture with EXR depth."""
        capture = Config().to_capture_config()

        assert capture.output_directory == "./output"
        assert capture.image_width == 1920
        assert capture.image_height == 1080
        assert capture.field_of_view == 90.0
        assert capture.camera_model == ColmapCameraModel.PINHOLE
        assert capture.trajectory.trajectory_type == TrajectoryType.ORBITAL
        assert capture.trajectory.num_rings == 5
        assert capture.depth.format == DepthFormat.EXR32
        assert capture.capture_depth
        assert not capture.binary_colmap

    def test_intrinsics(self):
        """90 degree FOV over 1920 pixels gives f = 960."""
        intrinsics = Config().to_intrinsics()
        assert np.isclose(intrinsics.fx, 960.0)
        assert intrinsics.model == ColmapCameraModel.PINHOLE


class TestFromArgs:
    """Test command-line overrides."""

    def test_no_args_is_default(self):
        """No arguments leaves every default untouched."""
        assert parse() == Config()

    def test_camera_overrides(self):
        """--resolution, --fov and --camera-model reach the camera section."""
        config = parse("--resolution", "1280x720", "--fov", "60", "--camera-model", "OPENCV")

        assert (config.camera.width, config.camera.height) == (1280, 720)
        assert config.camera.fov == 60.0
        assert config.camera.model == "OPENCV"

    def test_width_overrides_resolution(self):
        """--width wins over the width part of --resolution."""
        config = parse("--resolution", "1280x720", "--width", "1000")
        assert (config.camera.width, config.camera.height) == (1000, 720)

    def test_trajectory_overrides(self):
        """Trajectory flags map onto TrajectoryConfig fields."""
        config = parse(
            "--trajectory", "spiral",
            "--focus-point", "1", "2", "3",
            "--radius", "800",
            "--rings", "3",
            "--views-per-ring", "24",
            "--no-stagger",
            "--no-look-at",
            "--no-radius-variation"
        )
        trajectory = config.to_trajectory_config()

        assert trajectory.trajectory_type == TrajectoryType.SPIRAL
        assert np.allclose(trajectory.focus_point, [1, 2, 3])
        assert trajectory.base_radius == 800.0
        assert trajectory.num_rings == 3
        assert trajectory.views_per_ring == 24
        assert not trajectory.stagger_rings
        assert not trajectory.look_at_focus_point
        assert not trajectory.vary_radius_per_ring

    def test_negative_focus_point(self):
        """Negative coordinates are values, not options."""
        config = parse("--focus-point", "-50", "-25.5", "100")
        assert config.trajectory.focus_point == [-50.0, -25.5, 100.0]

    def test_depth_overrides(self):
        """Depth flags map onto DepthExtractionConfig; --depth-gamma enables gamma."""
        config = parse("--depth-format", "npy", "--depth-in-cm", "--depth-gamma", "1.8", "--invert-depth")
        depth = config.to_depth_config()

        assert depth.format == DepthFormat.NPY
        assert not depth.export_in_meters
        assert depth.apply_gamma_correction
        assert depth.gamma_value == 1.8
        assert depth.invert_depth

    def test_export_overrides(self, tmp_path):
        """Export flags map onto CaptureConfig."""
        config = parse("-o", str(tmp_path), "--image-format", "png", "--jpeg-quality", "80",
                       "--binary", "--no-point-cloud", "--no-depth")
        capture = config.to_capture_config()

        assert capture.output_directory == str(tmp_path)
        assert capture.image_format == "png"
        assert capture.jpeg_quality == 80
        assert capture.binary_colmap
        assert not capture.export_point_cloud
        assert not capture.capture_depth

    def test_auto_bounds(self):
        """A box centered on the origin with negative minimum corner sizes the orbit."""
        config = parse("--auto-bounds", "-100", "-100", "0", "100", "100", "200", "--overlap", "0.7")

        assert config.trajectory.type == "orbital"
        assert config.trajectory.focus_point == [0.0, 0.0, 100.0]
        assert np.isclose(config.trajectory.base_radius, 130.0)
        assert config.trajectory.views_per_ring == 14
        assert config.trajectory.num_rings == 6

    def test_explicit_args_override_auto_bounds(self):
        """Explicit trajectory flags are applied after --auto-bounds."""
        config = parse("--auto-bounds", "0", "0", "0", "100", "100", "100", "--rings", "2")
        assert config.trajectory.num_rings == 2

    def test_malformed_resolution(self):
        """Resolution must be WxH."""
        with pytest.raises(ValueError, match="Invalid resolution format"):
            parse("--resolution", "1920by1080")

    @pytest.mark.parametrize("argv", [
        ("--focus-point", "1", "2"),
        ("--focus-point", "a", "b", "c"),
        ("--auto-bounds", "0", "0", "0"),
        ("--auto-bounds", "-1,-1,-1,1,1,1"),
    ])
    def test_malformed_vectors_exit(self, argv):
        """Wrong count or non-numeric vector components are rejected by argparse."""
        with pytest.raises(SystemExit):
            parse(*argv)

    def test_invalid_choice_exits(self):
        """Unknown trajectory names are rejected by argparse."""
        with pytest.raises(SystemExit):
            parse("--trajectory", "zigzag")


class TestYaml:
    """Test YAML loading and saving."""

    def test_template_matches_defaults(self, tmp_path):
        """The commented template loads to the default Config."""
        path = tmp_path / "config.yaml"
        path.write_text(Config.generate_default_config_template())

        assert Config.from_yaml(str(path)) == Config()

    def test_roundtrip(self, tmp_path):
        """to_yaml then from_yaml preserves every section."""
        config = Config()
        config.camera.fov = 75.0
        config.trajectory.type = "grid"
        config.trajectory.focus_point = [10.0, 20.0, 30.0]
        config.depth.format = "png16"
        config.export.binary_colmap = True

        path = tmp_path / "saved.yaml"
        config.to_yaml(str(path))

        assert Config.from_yaml(str(path)) == config

    def test_partial_file_keeps_defaults(self, tmp_path):
        """Options missing from the file keep their defaults."""
        path = tmp_path / "partial.yaml"
        path.write_text("camera:\n  width: 800\n")

        config = Config.from_yaml(str(path))

        assert config.camera.width == 800
        assert config.camera.height == 1080
        assert config.trajectory == Config().trajectory

    def test_empty_file(self, tmp_path):
        """An empty file is the default configuration."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert Config.from_yaml(str(path)) == Config()

    def test_unknown_option(self, tmp_path):
        """Typos inside a section are reported."""
        path = tmp_path / "bad.yaml"
        path.write_text("camera:\n  zoom: 2\n")

        with pytest.raises(ValueError, match="Unknown camera option"):
            Config.from_yaml(str(path))

    def test_unknown_section(self, tmp_path):
        """Unknown top-level sections are reported."""
        path = tmp_path / "bad.yaml"
        path.write_text("render:\n  modes: [mesh]\n")

        with pytest.raises(ValueError, match="Unknown config section"):
            Config.from_yaml(str(path))

    def test_cli_overrides_file(self, tmp_path):
        """Command-line values win over the config file."""
        path = tmp_path / "config.yaml"
        path.write_text("camera:\n  fov: 70.0\n  width: 800\n")

        config = parse("--config", str(path), "--fov", "50")

        assert config.camera.fov == 50.0
        assert config.camera.width == 800

    def test_custom_waypoints(self, tmp_path):
        """Waypoints load as Waypoint objects; rotation defaults to zero."""
        path = tmp_path / "custom.yaml"
        path.write_text(
            "trajectory:\n"
            "  type: custom\n"
            "  waypoints:\n"
            "    - position: [100, 0, 0]\n"
            "      rotation: [0, 180, 0]\n"
            "    - position: [0, 100, 0]\n"
        )

        trajectory = Config.from_yaml(str(path)).to_trajectory_config()

        assert trajectory.trajectory_type == TrajectoryType.CUSTOM
        assert len(trajectory.custom_waypoints) == 2
        assert np.allclose(trajectory.custom_waypoints[0].position, [100, 0, 0])
        assert trajectory.custom_waypoints[0].rotation.yaw == 180.0
        assert trajectory.custom_waypoints[1].rotation.yaw == 0.0


class TestConversionErrors:
    """Test invalid values caught during conversion."""

    def test_bad_trajectory_type(self):
        """Unknown trajectory type raises with the valid choices."""
        config = Config()
        config.trajectory.type = "zigzag"
        with pytest.raises(ValueError, match="Invalid trajectory type: zigzag"):
            config.to_trajectory_config()

    def test_bad_depth_format(self):
        """Unknown depth format raises."""
        config = Config()
        config.depth.format = "tiff"
        with pytest.raises(ValueError, match="Invalid depth format: tiff"):
            config.to_depth_config()

    def test_bad_camera_model(self):
        """Unknown camera model raises."""
        config = Config()
        config.camera.model = "FISHEYE"
        with pytest.raises(ValueError, match="Unknown camera model"):
            config.to_intrinsics()

    def test_bad_waypoint(self):
        """A waypoint without position raises with its index."""
        config = Config()
        config.trajectory.type = "custom"
        config.trajectory.waypoints = [{"rotation": [0, 0, 0]}]
        with pytest.raises(ValueError, match="Invalid waypoint 0"):
            config.to_trajectory_config()

    def test_type_is_case_insensitive(self):
        """Trajectory type names ignore case."""
        config = Config()
        config.trajectory.type = "Panoramic360"
        assert config.to_trajectory_config().trajectory_type == TrajectoryType.PANORAMIC_360
