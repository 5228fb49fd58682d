"""
Utility functions for scene2colmap.

Small numeric and naming helpers shared by the converter, the trajectory
generator and the writers.
"""

import numpy as np
from typing import Union
from numpy.typing import NDArray


def safe_normalize(
    vectors: NDArray[np.float64],
    eps: float = 1e-8
) -> NDArray[np.float64]:
    """
    Normalize vectors along the last axis without producing NaN.

    Args:
        vectors: Array of shape (3,) or (N, 3)
        eps: Length below which a vector is treated as zero

    Returns:
        Array of the same shape with unit-length rows.
        Zero-length rows stay zero.
    """
    vectors = np.asarray(vectors, dtype=np.float64)
    norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
    safe_norms = np.where(norms > eps, norms, 1.0)
    return np.where(norms > eps, vectors / safe_norms, 0.0)


def wrap_angle_deg(angle: Union[float, NDArray[np.float64]]) -> Union[float, NDArray[np.float64]]:
    """
    Wrap angle(s) in degrees into the range (-180, 180].

    Args:
        angle: Angle or array of angles in degrees

    Returns:
        Wrapped angle(s)
    """
    wrapped = np.mod(np.asarray(angle, dtype=np.float64) + 180.0, 360.0) - 180.0
    wrapped = np.where(wrapped <= -180.0, wrapped + 360.0, wrapped)
    if np.ndim(wrapped) == 0:
        return float(wrapped)
    return wrapped


def angle_difference_deg(a: float, b: float) -> float:
    """Smallest absolute difference between two angles in degrees."""
    return abs(wrap_angle_deg(a - b))


def format_image_index(index: int, num_digits: int = 5) -> str:
    """
    Zero-pad an image index.

    Example:
        format_image_index(7) -> "00007"
    """
    return f"{index:0{num_digits}d}"
