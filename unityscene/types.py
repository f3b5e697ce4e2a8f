"""
Shared value types and transform math.

Matrices follow the row-vector convention: a point ``p`` is transformed as
``[x, y, z, 1] @ M`` and the translation lives in the last row.
"""

from dataclasses import dataclass, field

import numpy as np


@dataclass
class Vector:
    """3D Vector."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass
class Quaternion:
    """Rotation quaternion (x, y, z, w)."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0


@dataclass
class Bounds:
    """Axis-aligned bounding box in world space."""
    min: np.ndarray = field(default_factory=lambda: np.zeros(3))
    max: np.ndarray = field(default_factory=lambda: np.zeros(3))

    @property
    def center(self) -> np.ndarray:
        return (self.min + self.max) * 0.5

    @property
    def size(self) -> np.ndarray:
        return self.max - self.min

    @property
    def is_degenerate(self) -> bool:
        return bool(np.all(self.max <= self.min))

    @classmethod
    def at_point(cls, point: np.ndarray) -> "Bounds":
        point = np.asarray(point, dtype=np.float64)
        return cls(point.copy(), point.copy())


def scale_matrix(scale: Vector) -> np.ndarray:
    m = np.identity(4)
    m[0, 0] = scale.x
    m[1, 1] = scale.y
    m[2, 2] = scale.z
    return m


def rotation_matrix(q: Quaternion) -> np.ndarray:
    """Rotation matrix for a unit quaternion (row-vector convention)."""
    x, y, z, w = q.x, q.y, q.z, q.w
    xx, yy, zz = x * x, y * y, z * z
    xy, xz, yz = x * y, x * z, y * z
    wx, wy, wz = w * x, w * y, w * z

    return np.array([
        [1.0 - 2.0 * (yy + zz), 2.0 * (xy + wz), 2.0 * (xz - wy), 0.0],
        [2.0 * (xy - wz), 1.0 - 2.0 * (xx + zz), 2.0 * (yz + wx), 0.0],
        [2.0 * (xz + wy), 2.0 * (yz - wx), 1.0 - 2.0 * (xx + yy), 0.0],
        [0.0, 0.0, 0.0, 1.0],
    ])


def translation_matrix(position: Vector) -> np.ndarray:
    m = np.identity(4)
    m[3, :3] = (position.x, position.y, position.z)
    return m


def trs_matrix(position: Vector, rotation: Quaternion, scale: Vector) -> np.ndarray:
    """Local matrix: scale, then rotation, then translation."""
    return scale_matrix(scale) @ rotation_matrix(rotation) @ translation_matrix(position)


def transform_points(points: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Transform an (N, 3) array of points by a 4x4 row-vector matrix."""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    return points @ matrix[:3, :3] + matrix[3, :3]
