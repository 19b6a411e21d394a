from __future__ import annotations

# Local transform records and 4x4 matrix helpers (column vectors, T * R * S).

import math
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

import numpy as np

Vec3 = Tuple[float, float, float]
Quat = Tuple[float, float, float, float]


def _vec3(value: Sequence[float]) -> Vec3:
    x, y, z = (float(v) for v in value)
    return (x, y, z)


@dataclass
class Transform:
    """Position / rotation / scale of a node relative to its parent.

    ``rotation`` holds Euler angles in radians applied roll (z), pitch (x),
    yaw (y).  When ``rotation_quaternion`` (x, y, z, w) is set it wins.
    """

    position: Vec3 = (0.0, 0.0, 0.0)
    rotation: Vec3 = (0.0, 0.0, 0.0)
    scale: Vec3 = (1.0, 1.0, 1.0)
    rotation_quaternion: Optional[Quat] = None

    def __post_init__(self) -> None:
        self.position = _vec3(self.position)
        self.rotation = _vec3(self.rotation)
        self.scale = _vec3(self.scale)
        if self.rotation_quaternion is not None:
            qx, qy, qz, qw = (float(v) for v in self.rotation_quaternion)
            self.rotation_quaternion = (qx, qy, qz, qw)

    def copy(self) -> "Transform":
        return Transform(
            position=self.position,
            rotation=self.rotation,
            scale=self.scale,
            rotation_quaternion=self.rotation_quaternion,
        )

    def is_identity(self, atol: float = 1e-10) -> bool:
        return bool(np.allclose(self.matrix(), np.eye(4), atol=atol))

    def rotation_matrix(self) -> np.ndarray:
        if self.rotation_quaternion is not None:
            return quaternion_to_matrix(self.rotation_quaternion)
        return euler_to_matrix(self.rotation)

    def matrix(self) -> np.ndarray:
        mat = np.eye(4, dtype=np.float64)
        mat[:3, :3] = self.rotation_matrix() * np.asarray(self.scale, dtype=np.float64)
        mat[:3, 3] = self.position
        return mat

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "position": list(self.position),
            "rotation": list(self.rotation),
            "scale": list(self.scale),
        }
        if self.rotation_quaternion is not None:
            data["rotation_quaternion"] = list(self.rotation_quaternion)
        return data

    @classmethod
    def from_matrix(cls, matrix: np.ndarray) -> "Transform":
        """Decompose an affine matrix into translation, quaternion and scale.

        Exact for matrices without shear; shear is dropped.
        """
        mat = np.asarray(matrix, dtype=np.float64).reshape(4, 4)
        linear = mat[:3, :3].copy()
        scale = np.linalg.norm(linear, axis=0)
        if np.linalg.det(linear) < 0:
            scale[0] = -scale[0]
        safe = np.where(np.abs(scale) > 1e-12, scale, 1.0)
        rot = linear / safe
        return cls(
            position=tuple(mat[:3, 3]),
            scale=tuple(scale),
            rotation_quaternion=matrix_to_quaternion(rot),
        )

    @classmethod
    def from_mapping(cls, data: Optional[dict[str, Any]]) -> "Transform":
        if not data:
            return cls()
        quat = data.get("rotation_quaternion")
        return cls(
            position=data.get("position", (0.0, 0.0, 0.0)),
            rotation=data.get("rotation", (0.0, 0.0, 0.0)),
            scale=data.get("scale", (1.0, 1.0, 1.0)),
            rotation_quaternion=tuple(quat) if quat is not None else None,
        )


def euler_to_matrix(rotation: Sequence[float]) -> np.ndarray:
    """Rotation matrix for yaw (y), pitch (x), roll (z): ``Ry @ Rx @ Rz``."""
    rx, ry, rz = (float(v) for v in rotation)
    cx, sx = math.cos(rx), math.sin(rx)
    cy, sy = math.cos(ry), math.sin(ry)
    cz, sz = math.cos(rz), math.sin(rz)
    rot_x = np.array([[1.0, 0.0, 0.0], [0.0, cx, -sx], [0.0, sx, cx]])
    rot_y = np.array([[cy, 0.0, sy], [0.0, 1.0, 0.0], [-sy, 0.0, cy]])
    rot_z = np.array([[cz, -sz, 0.0], [sz, cz, 0.0], [0.0, 0.0, 1.0]])
    return rot_y @ rot_x @ rot_z


def quaternion_to_matrix(quat: Sequence[float]) -> np.ndarray:
    x, y, z, w = (float(v) for v in quat)
    norm = math.sqrt(x * x + y * y + z * z + w * w)
    if norm <= 1e-12:
        return np.eye(3)
    x, y, z, w = x / norm, y / norm, z / norm, w / norm
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
        ]
    )


def matrix_to_quaternion(rot: np.ndarray) -> Quat:
    """Convert a 3x3 rotation matrix to an (x, y, z, w) quaternion."""
    m = np.asarray(rot, dtype=np.float64)
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0:
        s = math.sqrt(trace + 1.0) * 2
        w = 0.25 * s
        x = (m[2, 1] - m[1, 2]) / s
        y = (m[0, 2] - m[2, 0]) / s
        z = (m[1, 0] - m[0, 1]) / s
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2]) * 2
        w = (m[2, 1] - m[1, 2]) / s
        x = 0.25 * s
        y = (m[0, 1] + m[1, 0]) / s
        z = (m[0, 2] + m[2, 0]) / s
    elif m[1, 1] > m[2, 2]:
        s = math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2]) * 2
        w = (m[0, 2] - m[2, 0]) / s
        x = (m[0, 1] + m[1, 0]) / s
        y = 0.25 * s
        z = (m[1, 2] + m[2, 1]) / s
    else:
        s = math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1]) * 2
        w = (m[1, 0] - m[0, 1]) / s
        x = (m[0, 2] + m[2, 0]) / s
        y = (m[1, 2] + m[2, 1]) / s
        z = 0.25 * s
    return (float(x), float(y), float(z), float(w))


def transform_points(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 4x4 affine matrix to an (N, 3) point array."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if pts.size == 0:
        return pts
    return pts @ matrix[:3, :3].T + matrix[:3, 3]


def transform_normals(matrix: np.ndarray, normals: np.ndarray) -> np.ndarray:
    """Transform (N, 3) normals by the inverse transpose of the linear part and renormalize."""
    vecs = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
    if vecs.size == 0:
        return vecs
    linear = matrix[:3, :3]
    try:
        normal_matrix = np.linalg.inv(linear).T
    except np.linalg.LinAlgError:
        normal_matrix = linear
    out = vecs @ normal_matrix.T
    return _normalize_rows(out)


def transform_directions(matrix: np.ndarray, directions: np.ndarray) -> np.ndarray:
    """Transform (N, 3) direction vectors by the linear part and renormalize."""
    vecs = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
    if vecs.size == 0:
        return vecs
    return _normalize_rows(vecs @ matrix[:3, :3].T)


def _normalize_rows(vecs: np.ndarray) -> np.ndarray:
    lengths = np.linalg.norm(vecs, axis=1, keepdims=True)
    safe = np.where(lengths > 1e-12, lengths, 1.0)
    return vecs / safe


def is_identity(matrix: np.ndarray, atol: float = 1e-10) -> bool:
    return bool(np.allclose(matrix, np.eye(4), atol=atol))


__all__ = [
    "Transform",
    "euler_to_matrix",
    "quaternion_to_matrix",
    "matrix_to_quaternion",
    "transform_points",
    "transform_normals",
    "transform_directions",
    "is_identity",
]
