"""
Command-line interface for scene2colmap.

This module provides the main entry point for the CLI tool.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

import numpy as np

from .colmap import read_model, validate_dataset
from .config import create_argument_parser, Config
from .pipeline import CaptureOrchestrator
from .trajectory import TrajectoryGenerator


def print_progress(current: int, total: int, percent: float) -> None:
    print(f"  [{current}/{total}] {percent:.0f}%")


def inspect_dataset(dataset_dir: Path) -> int:
    """
    Print a summary of an existing dataset and its validation warnings.

    Returns:
        Exit code (0 = valid dataset)
    """
    print("=" * 60)
    print("COLMAP Dataset Inspector")
    print("=" * 60)
    print(f"Directory: {dataset_dir}")

    is_valid, warnings = validate_dataset(dataset_dir)

    try:
        model = read_model(dataset_dir / "sparse" / "0")
    except (FileNotFoundError, ValueError, OSError) as e:
        model = None
        print(f"\n  Could not read model: {e}")

    if model is not None:
        print(f"\nCameras: {len(model.cameras)}")
        for camera in model.cameras.values():
            params = " ".join(f"{p:.4f}" for p in camera.params)
            print(f"  {camera.camera_id}: {camera.model_name} {camera.width}x{camera.height} [{params}]")

        print(f"Images: {len(model.images)}")
        if model.images:
            centers = np.array([image.camera_center() for image in model.images.values()])
            print(f"  Camera centers X: [{centers[:, 0].min():.3f}, {centers[:, 0].max():.3f}]")
            print(f"  Camera centers Y: [{centers[:, 1].min():.3f}, {centers[:, 1].max():.3f}]")
            print(f"  Camera centers Z: [{centers[:, 2].min():.3f}, {centers[:, 2].max():.3f}]")

            norms = [np.linalg.norm(image.qvec) for image in model.images.values()]
            if max(abs(n - 1.0) for n in norms) > 0.01:
                print("  ⚠ Warning: Quaternions not normalized!")

        print(f"Points: {len(model.points3d)}")

    print("\n" + "=" * 60)
    for warning in warnings:
        print(f"  ⚠ {warning}")
    print("✓ Dataset is valid" if is_valid else "✗ Dataset is not valid")
    print("=" * 60)

    return 0 if is_valid else 1


def print_preview(config: Config) -> None:
    trajectory = config.to_trajectory_config()
    viewpoints = TrajectoryGenerator(trajectory).generate()

    print(f"{'ID':>5} {'X':>10} {'Y':>10} {'Z':>10} {'PITCH':>8} {'YAW':>8} {'ROLL':>8} {'DIST':>9} {'ELEV':>7} {'AZ':>7}")
    for viewpoint in viewpoints:
        x, y, z = viewpoint.position
        rot = viewpoint.rotation
        print(
            f"{viewpoint.viewpoint_id:>5} {x:>10.2f} {y:>10.2f} {z:>10.2f} "
            f"{rot.pitch:>8.2f} {rot.yaw:>8.2f} {rot.roll:>8.2f} "
            f"{viewpoint.distance:>9.2f} {viewpoint.elevation:>7.2f} {viewpoint.azimuth:>7.2f}"
        )

    print(f"\n{len(viewpoints)} viewpoints ({trajectory.trajectory_type.value})")
    if viewpoints:
        overlap = TrajectoryGenerator.average_overlap(viewpoints, config.camera.fov)
        print(f"Average neighbour overlap: {overlap:.2f}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for CLI.

    Args:
        argv: Command-line arguments (None = sys.argv)

    Returns:
        Exit code (0 = success, non-zero = error)
    """
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    # Handle --save-config
    if args.save_config:
        template = Config.generate_default_config_template()
        with open(args.save_config, 'w') as f:
            f.write(template)
        print(f"Default configuration saved to: {args.save_config}")
        print(f"Edit this file and use with: scene2colmap --config {args.save_config}")
        return 0

    if args.inspect:
        dataset_dir = Path(args.inspect)
        if not dataset_dir.is_dir():
            print(f"Error: Directory not found: {dataset_dir}", file=sys.stderr)
            return 1
        return inspect_dataset(dataset_dir)

    try:
        config = Config.from_args(args)
        capture_config = config.to_capture_config()
        intrinsics = config.to_intrinsics()
    except (ValueError, FileNotFoundError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        print("\nUse --help for usage information or --save-config to generate a template.", file=sys.stderr)
        return 1

    _, intrinsics_warnings = intrinsics.validate_for_3dgs()
    for warning in intrinsics_warnings:
        print(f"Warning: {warning}", file=sys.stderr)

    if args.preview:
        is_valid, warnings = TrajectoryGenerator.validate_config(capture_config.trajectory)
        for warning in warnings:
            print(f"Warning: {warning}", file=sys.stderr)
        if not is_valid:
            return 1
        print_preview(config)
        return 0

    if args.verbose:
        print("=" * 60)
        print("scene2colmap - 3DGS Capture Dataset Generator")
        print("=" * 60)
        print(f"Output: {config.export.output_dir}")
        print(f"Resolution: {config.camera.width}x{config.camera.height}")
        print(f"Camera: {intrinsics!r}")
        print(f"Trajectory: {config.trajectory.type} ({capture_config.trajectory.expected_viewpoint_count()} views)")
        print("=" * 60)

    orchestrator = CaptureOrchestrator(
        capture_config,
        on_progress=print_progress if args.verbose else None
    )

    try:
        result = orchestrator.run()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for warning in result.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    for error in result.errors:
        print(f"Error: {error}", file=sys.stderr)

    if not result.success:
        return 1

    print(f"✓ Wrote {len(orchestrator.viewpoints)} camera poses to {Path(result.output_path) / 'sparse' / '0'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
