"""
Export to COLMAP sparse reconstruction format.

This module provides:
- COLMAP record types (ColmapCamera, ColmapImage, ColmapPoint3D)
- ColmapWriter for cameras/images/points3D in text or binary format
- Dataset helpers (directory layout, full dataset write, validation)
- Readers for text and binary models, used to inspect written datasets

This is the CAMERA POSE COORDINATE CONVERSION POINT.
Engine viewpoints -> COLMAP world-to-camera poses happens in
create_images_from_viewpoints().
"""

import logging
import struct
import numpy as np
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Tuple
from numpy.typing import NDArray

from . import coordinates
from .intrinsics import CameraIntrinsics, ColmapCameraModel
from .trajectory import Viewpoint
from .utils import format_image_index

logger = logging.getLogger(__name__)

# Unmatched keypoint marker in images.bin (all bits set)
INVALID_POINT3D_ID = 2 ** 64 - 1

IMAGE_EXTENSIONS = (".jpg", ".png")


@dataclass
class ColmapCamera:
    """Row of cameras.txt / record of cameras.bin."""
    camera_id: int
    model: ColmapCameraModel
    width: int
    height: int
    params: List[float]

    @property
    def model_name(self) -> str:
        return self.model.name


@dataclass
class Keypoint:
    """2D observation; point3d_id None means unmatched."""
    x: float
    y: float
    point3d_id: Optional[int] = None


@dataclass
class ColmapImage:
    """
    Registered image with world-to-camera pose.

    Attributes:
        image_id: 1-based image id
        qvec: Rotation quaternion (w, x, y, z), world-to-camera
        tvec: Translation, world-to-camera
        camera_id: Camera model id this image uses
        name: Image filename relative to images/
        keypoints: Optional 2D observations
    """
    image_id: int
    qvec: NDArray[np.float64]
    tvec: NDArray[np.float64]
    camera_id: int
    name: str
    keypoints: List[Keypoint] = field(default_factory=list)

    def rotation_matrix(self) -> NDArray[np.float64]:
        """World-to-camera rotation matrix."""
        return coordinates.quaternion_to_rotation_matrix(self.qvec)

    def camera_center(self) -> NDArray[np.float64]:
        """Camera center in COLMAP world coords."""
        return coordinates.compute_camera_center(self.qvec, self.tvec)


@dataclass
class ColmapPoint3D:
    """Sparse 3D point with its visibility track of (image_id, point2d_idx)."""
    point3d_id: int
    xyz: NDArray[np.float64]
    rgb: Tuple[int, int, int] = (255, 255, 255)
    error: float = 0.0
    track: List[Tuple[int, int]] = field(default_factory=list)


@dataclass
class ColmapModel:
    """Records of one sparse model, keyed by id."""
    cameras: Dict[int, ColmapCamera] = field(default_factory=dict)
    images: Dict[int, ColmapImage] = field(default_factory=dict)
    points3d: Dict[int, ColmapPoint3D] = field(default_factory=dict)


class ColmapWriter:
    """
    Write camera intrinsics, image poses and 3D points in COLMAP format.

    COLMAP format consists of three files:
    - cameras.{txt,bin}: Camera intrinsic parameters
    - images.{txt,bin}: Per-image extrinsic parameters and keypoints
    - points3D.{txt,bin}: Sparse 3D point cloud

    Binary files are little-endian with the layouts COLMAP reads.
    Records are fully built before writing and are not mutated here.
    """

    def __init__(
        self,
        cameras: List[ColmapCamera],
        images: List[ColmapImage],
        points3d: Optional[List[ColmapPoint3D]] = None
    ):
        """
        Initialize COLMAP writer.

        Args:
            cameras: Camera records
            images: Image records (camera_id must refer to a camera)
            points3d: Optional 3D points. Default: none (empty points3D file)
        """
        camera_ids = {cam.camera_id for cam in cameras}
        for image in images:
            if image.camera_id not in camera_ids:
                raise ValueError(
                    f"Image {image.image_id} refers to unknown camera {image.camera_id}"
                )

        self.cameras = cameras
        self.images = images
        self.points3d = points3d if points3d is not None else []

    def write(self, sparse_dir: Path, binary: bool = False) -> bool:
        """
        Write all three model files into sparse_dir.

        Args:
            sparse_dir: Target directory (created if needed)
            binary: Write .bin files instead of .txt

        Returns:
            True if every file was written
        """
        sparse_dir = Path(sparse_dir)
        try:
            sparse_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Failed to create %s: %s", sparse_dir, e)
            return False

        ext = ".bin" if binary else ".txt"

        if not self.write_cameras(sparse_dir / f"cameras{ext}", binary):
            logger.error("Failed to write cameras file")
            return False
        if not self.write_images(sparse_dir / f"images{ext}", binary):
            logger.error("Failed to write images file")
            return False
        if not self.write_points3d(sparse_dir / f"points3D{ext}", binary):
            logger.error("Failed to write points3D file")
            return False

        return True

    def write_cameras(self, filepath: Path, binary: bool = False) -> bool:
        """Write cameras.{txt,bin}; refuses cameras whose params do not match their model."""
        for cam in self.cameras:
            if len(cam.params) != cam.model.num_params:
                logger.error(
                    "Camera %d: %s expects %d params, got %d",
                    cam.camera_id, cam.model_name, cam.model.num_params, len(cam.params)
                )
                return False

        if binary:
            return _write_bytes(filepath, self._cameras_binary())
        return _write_text(filepath, self._cameras_text())

    def write_images(self, filepath: Path, binary: bool = False) -> bool:
        if binary:
            return _write_bytes(filepath, self._images_binary())
        return _write_text(filepath, self._images_text())

    def write_points3d(self, filepath: Path, binary: bool = False) -> bool:
        if binary:
            return _write_bytes(filepath, self._points3d_binary())
        return _write_text(filepath, self._points3d_text())

    def _cameras_text(self) -> str:
        """
        Format: CAMERA_ID MODEL WIDTH HEIGHT PARAMS[]

        Parameters use 10 decimal places.
        """
        lines = [
            "# Camera list with one line of data per camera:",
            "#   CAMERA_ID, MODEL, WIDTH, HEIGHT, PARAMS[]",
            f"# Number of cameras: {len(self.cameras)}",
        ]
        for cam in self.cameras:
            params_str = " ".join(f"{p:.10f}" for p in cam.params)
            lines.append(f"{cam.camera_id} {cam.model_name} {cam.width} {cam.height} {params_str}")
        return "\n".join(lines) + "\n"

    def _images_text(self) -> str:
        """
        Two lines per image:
        IMAGE_ID QW QX QY QZ TX TY TZ CAMERA_ID NAME
        POINTS2D[] as (X, Y, POINT3D_ID)

        The second line is blank when the image has no keypoints.
        Unmatched keypoints are written with POINT3D_ID -1.
        """
        lines = [
            "# Image list with two lines of data per image:",
            "#   IMAGE_ID, QW, QX, QY, QZ, TX, TY, TZ, CAMERA_ID, NAME",
            "#   POINTS2D[] as (X, Y, POINT3D_ID)",
            f"# Number of images: {len(self.images)}",
        ]
        for img in self.images:
            q, t = img.qvec, img.tvec
            lines.append(
                f"{img.image_id} "
                f"{q[0]:.10f} {q[1]:.10f} {q[2]:.10f} {q[3]:.10f} "
                f"{t[0]:.10f} {t[1]:.10f} {t[2]:.10f} "
                f"{img.camera_id} {img.name}"
            )
            lines.append(" ".join(
                f"{kp.x:.6f} {kp.y:.6f} {-1 if kp.point3d_id is None else kp.point3d_id}"
                for kp in img.keypoints
            ))
        return "\n".join(lines) + "\n"

    def _points3d_text(self) -> str:
        """Format: POINT3D_ID X Y Z R G B ERROR TRACK[] as (IMAGE_ID, POINT2D_IDX)"""
        lines = [
            "# 3D point list with one line of data per point:",
            "#   POINT3D_ID, X, Y, Z, R, G, B, ERROR, TRACK[] as (IMAGE_ID, POINT2D_IDX)",
            f"# Number of points: {len(self.points3d)}",
        ]
        for pt in self.points3d:
            line = (
                f"{pt.point3d_id} "
                f"{pt.xyz[0]:.10f} {pt.xyz[1]:.10f} {pt.xyz[2]:.10f} "
                f"{int(pt.rgb[0])} {int(pt.rgb[1])} {int(pt.rgb[2])} "
                f"{pt.error:.6f}"
            )
            track = " ".join(f"{image_id} {point2d_idx}" for image_id, point2d_idx in pt.track)
            if track:
                line += " " + track
            lines.append(line)
        return "\n".join(lines) + "\n"

    def _cameras_binary(self) -> bytes:
        """u64 count, then per camera: u32 id, i32 model, u64 width, u64 height, f64[arity]."""
        chunks = [struct.pack("<Q", len(self.cameras))]
        for cam in self.cameras:
            params = [float(p) for p in cam.params]
            chunks.append(struct.pack("<IiQQ", cam.camera_id, int(cam.model), cam.width, cam.height))
            chunks.append(struct.pack("<" + "d" * len(params), *params))
        return b"".join(chunks)

    def _images_binary(self) -> bytes:
        """
        u64 count, then per image: u32 id, f64 qvec[4], f64 tvec[3], u32 camera id,
        NUL-terminated UTF-8 name, u64 keypoint count, (f64 x, f64 y, u64 point3D id)[].
        """
        chunks = [struct.pack("<Q", len(self.images))]
        for img in self.images:
            chunks.append(struct.pack("<I", img.image_id))
            chunks.append(struct.pack("<dddd", *(float(v) for v in img.qvec)))
            chunks.append(struct.pack("<ddd", *(float(v) for v in img.tvec)))
            chunks.append(struct.pack("<I", img.camera_id))
            chunks.append(img.name.encode("utf-8") + b"\x00")
            chunks.append(struct.pack("<Q", len(img.keypoints)))
            for kp in img.keypoints:
                point3d_id = INVALID_POINT3D_ID if kp.point3d_id is None else kp.point3d_id
                chunks.append(struct.pack("<ddQ", kp.x, kp.y, point3d_id))
        return b"".join(chunks)

    def _points3d_binary(self) -> bytes:
        """
        u64 count, then per point: u64 id, f64 xyz[3], u8 rgb[3], f64 error,
        u64 track length, (u32 image id, u32 point2D idx)[].
        """
        chunks = [struct.pack("<Q", len(self.points3d))]
        for pt in self.points3d:
            chunks.append(struct.pack(
                "<QdddBBBd",
                pt.point3d_id,
                float(pt.xyz[0]), float(pt.xyz[1]), float(pt.xyz[2]),
                int(pt.rgb[0]), int(pt.rgb[1]), int(pt.rgb[2]),
                float(pt.error)
            ))
            chunks.append(struct.pack("<Q", len(pt.track)))
            for image_id, point2d_idx in pt.track:
                chunks.append(struct.pack("<II", image_id, point2d_idx))
        return b"".join(chunks)

    @classmethod
    def from_viewpoints(
        cls,
        viewpoints: List[Viewpoint],
        intrinsics: CameraIntrinsics,
        points3d: Optional[List[ColmapPoint3D]] = None,
        image_prefix: str = "image_",
        image_extension: str = ".jpg"
    ) -> "ColmapWriter":
        """
        Create writer for a single shared camera and one image per viewpoint.

        Args:
            viewpoints: Ordered viewpoints (capture order = image order)
            intrinsics: Shared camera intrinsics
            points3d: Optional sparse points
            image_prefix: Filename prefix for images
            image_extension: Filename extension including the dot

        Returns:
            ColmapWriter instance
        """
        return cls(
            cameras=[create_camera(intrinsics)],
            images=create_images_from_viewpoints(viewpoints, intrinsics, image_prefix, image_extension),
            points3d=points3d
        )


def _write_text(filepath: Path, content: str) -> bool:
    try:
        with open(filepath, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
    except OSError as e:
        logger.error("Failed to write %s: %s", filepath, e)
        return False
    return True


def _write_bytes(filepath: Path, data: bytes) -> bool:
    try:
        with open(filepath, "wb") as f:
            f.write(data)
    except OSError as e:
        logger.error("Failed to write %s: %s", filepath, e)
        return False
    return True


def create_camera(intrinsics: CameraIntrinsics, camera_id: int = 1) -> ColmapCamera:
    """Build a camera record from intrinsics."""
    return ColmapCamera(
        camera_id=camera_id,
        model=intrinsics.model,
        width=intrinsics.width,
        height=intrinsics.height,
        params=intrinsics.colmap_params()
    )


def create_images_from_viewpoints(
    viewpoints: List[Viewpoint],
    intrinsics: CameraIntrinsics,
    image_prefix: str = "image_",
    image_extension: str = ".jpg"
) -> List[ColmapImage]:
    """
    Convert engine viewpoints to COLMAP image records.

    Args:
        viewpoints: Ordered viewpoints
        intrinsics: Shared camera intrinsics (all images use camera 1)
        image_prefix: Filename prefix
        image_extension: Filename extension including the dot

    Returns:
        Images with ids 1..N and names prefix + 5-digit index + extension

    Note:
        COLMAP stores world-to-camera: qvec is the inverted camera
        orientation and tvec = R * (-C), C being the camera center in
        COLMAP coords (meters).
    """
    images = []
    for i, viewpoint in enumerate(viewpoints):
        colmap_position, quat_w2c = coordinates.convert_camera_to_colmap(
            viewpoint.position, viewpoint.rotation
        )
        R_w2c = coordinates.quaternion_to_rotation_matrix(quat_w2c)

        images.append(ColmapImage(
            image_id=i + 1,
            qvec=quat_w2c,
            tvec=R_w2c @ (-colmap_position),
            camera_id=1,
            name=f"{image_prefix}{format_image_index(i)}{image_extension}"
        ))

    logger.debug("Created %d COLMAP images for %r", len(images), intrinsics)
    return images


def create_directory_structure(output_dir: Path) -> bool:
    """
    Create the dataset layout: root, sparse/0, images and depth.

    Returns:
        False if any directory could not be created
    """
    output_dir = Path(output_dir)
    for directory in (output_dir, output_dir / "sparse" / "0", output_dir / "images", output_dir / "depth"):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Failed to create directory %s: %s", directory, e)
            return False
    return True


def write_dataset(
    output_dir: Path,
    cameras: List[ColmapCamera],
    images: List[ColmapImage],
    points3d: Optional[List[ColmapPoint3D]] = None,
    binary: bool = False
) -> bool:
    """
    Create the dataset directories and write the sparse model to sparse/0.

    Returns:
        True on success
    """
    output_dir = Path(output_dir)
    if not create_directory_structure(output_dir):
        logger.error("Failed to create COLMAP directory structure")
        return False

    try:
        writer = ColmapWriter(cameras, images, points3d)
    except ValueError as e:
        logger.error("Invalid COLMAP records: %s", e)
        return False

    if not writer.write(output_dir / "sparse" / "0", binary):
        return False

    logger.info("COLMAP dataset written to %s", output_dir)
    return True


def validate_dataset(output_dir: Path) -> Tuple[bool, List[str]]:
    """
    Check that a directory looks like a trainable COLMAP dataset.

    Returns:
        is_valid: True if camera and image files exist (text or binary)
        warnings: Human-readable messages

    Note:
        When both files exist the model is also parsed and every image
        it references is looked up in images/.
    """
    output_dir = Path(output_dir)
    sparse_dir = output_dir / "sparse" / "0"
    warnings = []

    has_cameras = (sparse_dir / "cameras.txt").exists() or (sparse_dir / "cameras.bin").exists()
    has_images = (sparse_dir / "images.txt").exists() or (sparse_dir / "images.bin").exists()

    if not has_cameras:
        warnings.append("Missing cameras file (cameras.txt or cameras.bin)")
    if not has_images:
        warnings.append("Missing images file (images.txt or images.bin)")

    images_dir = output_dir / "images"
    if not images_dir.is_dir():
        warnings.append("Images directory does not exist")
    else:
        image_files = [p for p in images_dir.iterdir() if p.suffix.lower() in IMAGE_EXTENSIONS]
        if not image_files:
            warnings.append("No image files found in images directory")
        elif len(image_files) < 50:
            warnings.append(
                f"Low image count ({len(image_files)}). 100+ recommended for quality training."
            )

        if has_cameras and has_images:
            try:
                model = read_model(sparse_dir)
            except (OSError, ValueError, struct.error) as e:
                warnings.append(f"Failed to parse COLMAP model: {e}")
            else:
                missing = [img.name for img in model.images.values()
                           if not (images_dir / img.name).exists()]
                if missing:
                    warnings.append(
                        f"{len(missing)} images referenced by the model are missing from images directory"
                    )

    return has_cameras and has_images, warnings


def _read_next_bytes(fid: BinaryIO, num_bytes: int, format_char_sequence: str) -> tuple:
    """Read and unpack little-endian values."""
    data = fid.read(num_bytes)
    if len(data) != num_bytes:
        raise ValueError(f"Unexpected end of file (wanted {num_bytes} bytes, got {len(data)})")
    return struct.unpack("<" + format_char_sequence, data)


def read_cameras_text(path: Path) -> Dict[int, ColmapCamera]:
    cameras = {}
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            elems = line.split()
            camera_id = int(elems[0])
            cameras[camera_id] = ColmapCamera(
                camera_id=camera_id,
                model=ColmapCameraModel.from_name(elems[1]),
                width=int(elems[2]),
                height=int(elems[3]),
                params=[float(p) for p in elems[4:]]
            )
    return cameras


def read_cameras_binary(path: Path) -> Dict[int, ColmapCamera]:
    cameras = {}
    with open(path, "rb") as fid:
        num_cameras = _read_next_bytes(fid, 8, "Q")[0]
        for _ in range(num_cameras):
            camera_id, model_id, width, height = _read_next_bytes(fid, 24, "IiQQ")
            model = ColmapCameraModel(model_id)
            params = _read_next_bytes(fid, 8 * model.num_params, "d" * model.num_params)
            cameras[camera_id] = ColmapCamera(camera_id, model, width, height, list(params))
    return cameras


def read_images_text(path: Path) -> Dict[int, ColmapImage]:
    """
    Parse images.txt.

    Comment lines are skipped, blank keypoint lines are kept so that the
    two-lines-per-image pairing survives.
    """
    with open(path, "r", encoding="utf-8") as f:
        lines = [line.rstrip("\r\n") for line in f if not line.startswith("#")]

    images = {}
    i = 0
    while i < len(lines):
        elems = lines[i].split()
        if not elems:
            i += 1
            continue
        points_elems = lines[i + 1].split() if i + 1 < len(lines) else []
        i += 2

        image_id = int(elems[0])
        keypoints = []
        for j in range(0, len(points_elems) - 2, 3):
            point3d_id = int(points_elems[j + 2])
            keypoints.append(Keypoint(
                float(points_elems[j]),
                float(points_elems[j + 1]),
                None if point3d_id < 0 else point3d_id
            ))

        images[image_id] = ColmapImage(
            image_id=image_id,
            qvec=np.array([float(v) for v in elems[1:5]]),
            tvec=np.array([float(v) for v in elems[5:8]]),
            camera_id=int(elems[8]),
            name=" ".join(elems[9:]),
            keypoints=keypoints
        )
    return images


def read_images_binary(path: Path) -> Dict[int, ColmapImage]:
    images = {}
    with open(path, "rb") as fid:
        num_images = _read_next_bytes(fid, 8, "Q")[0]
        for _ in range(num_images):
            props = _read_next_bytes(fid, 64, "IdddddddI")
            image_id = props[0]

            name_bytes = b""
            current_char = fid.read(1)
            while current_char != b"\x00":
                if not current_char:
                    raise ValueError("Unterminated image name")
                name_bytes += current_char
                current_char = fid.read(1)

            num_points2d = _read_next_bytes(fid, 8, "Q")[0]
            keypoints = []
            if num_points2d:
                values = _read_next_bytes(fid, 24 * num_points2d, "ddQ" * num_points2d)
                for j in range(num_points2d):
                    x, y, point3d_id = values[3 * j:3 * j + 3]
                    keypoints.append(Keypoint(x, y, None if point3d_id == INVALID_POINT3D_ID else point3d_id))

            images[image_id] = ColmapImage(
                image_id=image_id,
                qvec=np.array(props[1:5]),
                tvec=np.array(props[5:8]),
                camera_id=props[8],
                name=name_bytes.decode("utf-8"),
                keypoints=keypoints
            )
    return images


def read_points3d_text(path: Path) -> Dict[int, ColmapPoint3D]:
    points = {}
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            elems = line.split()
            point3d_id = int(elems[0])
            track_elems = [int(v) for v in elems[8:]]
            points[point3d_id] = ColmapPoint3D(
                point3d_id=point3d_id,
                xyz=np.array([float(v) for v in elems[1:4]]),
                rgb=(int(elems[4]), int(elems[5]), int(elems[6])),
                error=float(elems[7]),
                track=list(zip(track_elems[0::2], track_elems[1::2]))
            )
    return points


def read_points3d_binary(path: Path) -> Dict[int, ColmapPoint3D]:
    points = {}
    with open(path, "rb") as fid:
        num_points = _read_next_bytes(fid, 8, "Q")[0]
        for _ in range(num_points):
            props = _read_next_bytes(fid, 43, "QdddBBBd")
            track_length = _read_next_bytes(fid, 8, "Q")[0]
            track_elems = _read_next_bytes(fid, 8 * track_length, "II" * track_length) if track_length else ()
            points[props[0]] = ColmapPoint3D(
                point3d_id=props[0],
                xyz=np.array(props[1:4]),
                rgb=(props[4], props[5], props[6]),
                error=props[7],
                track=list(zip(track_elems[0::2], track_elems[1::2]))
            )
    return points


def read_model(sparse_dir: Path) -> ColmapModel:
    """
    Read a sparse model, preferring binary files over text.

    Raises:
        FileNotFoundError: If neither cameras.bin nor cameras.txt exists
    """
    sparse_dir = Path(sparse_dir)

    if (sparse_dir / "cameras.bin").exists():
        ext = ".bin"
    elif (sparse_dir / "cameras.txt").exists():
        ext = ".txt"
    else:
        raise FileNotFoundError(f"No COLMAP model found in {sparse_dir}")

    model = ColmapModel()
    if ext == ".bin":
        model.cameras = read_cameras_binary(sparse_dir / "cameras.bin")
        model.images = read_images_binary(sparse_dir / "images.bin")
        if (sparse_dir / "points3D.bin").exists():
            model.points3d = read_points3d_binary(sparse_dir / "points3D.bin")
    else:
        model.cameras = read_cameras_text(sparse_dir / "cameras.txt")
        model.images = read_images_text(sparse_dir / "images.txt")
        if (sparse_dir / "points3D.txt").exists():
            model.points3d = read_points3d_text(sparse_dir / "points3D.txt")

    logger.debug(
        "Read %d cameras, %d images, %d points from %s",
        len(model.cameras), len(model.images), len(model.points3d), sparse_dir
    )
    return model
