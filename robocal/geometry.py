"""Rigid-body frames, rotation conversions and plane fitting."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Sequence

import numpy as np

_QUATERNION_TRACE_EPSILON = 1e-12


@dataclass(eq=False)
class Frame:
    """A rigid transform made of a 3x3 rotation and a translation."""

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.rotation = np.array(self.rotation, dtype=float).reshape(3, 3)
        self.position = np.array(self.position, dtype=float).reshape(3)

    @staticmethod
    def identity() -> "Frame":
        """Return the identity transform."""
        return Frame()

    def __mul__(self, other: "Frame") -> "Frame":
        if not isinstance(other, Frame):
            return NotImplemented
        return Frame(
            self.rotation @ other.rotation,
            self.rotation @ other.position + self.position,
        )

    def inverse(self) -> "Frame":
        """Return the transform that undoes this one."""
        rotation_t = self.rotation.T
        return Frame(rotation_t, -(rotation_t @ self.position))

    def transform_point(self, point: Sequence[float]) -> np.ndarray:
        """Map a point expressed in this frame's child into its parent."""
        return self.rotation @ np.asarray(point, dtype=float).reshape(3) + self.position


def rotation_from_rpy(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """Rotation about fixed X, then Y, then Z axes."""
    cr, sr = math.cos(roll), math.sin(roll)
    cp, sp = math.cos(pitch), math.sin(pitch)
    cy, sy = math.cos(yaw), math.sin(yaw)
    return np.array(
        [
            [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr],
            [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr],
            [-sp, cp * sr, cp * cr],
        ]
    )


def rotation_from_quaternion(x: float, y: float, z: float, w: float) -> np.ndarray:
    """Rotation matrix from a (unit) quaternion."""
    x2, y2, z2, w2 = x * x, y * y, z * z, w * w
    return np.array(
        [
            [w2 + x2 - y2 - z2, 2 * x * y - 2 * w * z, 2 * x * z + 2 * w * y],
            [2 * x * y + 2 * w * z, w2 - x2 + y2 - z2, 2 * y * z - 2 * w * x],
            [2 * x * z - 2 * w * y, 2 * y * z + 2 * w * x, w2 - x2 - y2 + z2],
        ]
    )


def quaternion_from_rotation(rotation: np.ndarray) -> tuple[float, float, float, float]:
    """Quaternion (x, y, z, w) of a rotation matrix."""
    m = np.asarray(rotation, dtype=float)
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > _QUATERNION_TRACE_EPSILON:
        s = 0.5 / math.sqrt(trace + 1.0)
        return (
            (m[2, 1] - m[1, 2]) * s,
            (m[0, 2] - m[2, 0]) * s,
            (m[1, 0] - m[0, 1]) * s,
            0.25 / s,
        )
    if m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = 2.0 * math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2])
        return (
            0.25 * s,
            (m[0, 1] + m[1, 0]) / s,
            (m[0, 2] + m[2, 0]) / s,
            (m[2, 1] - m[1, 2]) / s,
        )
    if m[1, 1] > m[2, 2]:
        s = 2.0 * math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2])
        return (
            (m[0, 1] + m[1, 0]) / s,
            0.25 * s,
            (m[1, 2] + m[2, 1]) / s,
            (m[0, 2] - m[2, 0]) / s,
        )
    s = 2.0 * math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1])
    return (
        (m[0, 2] + m[2, 0]) / s,
        (m[1, 2] + m[2, 1]) / s,
        0.25 * s,
        (m[1, 0] - m[0, 1]) / s,
    )


def rotation_from_axis_magnitude(x: float, y: float, z: float) -> np.ndarray:
    """Rotation from an axis whose length is the rotation angle."""
    magnitude = math.sqrt(x * x + y * y + z * z)
    if magnitude == 0.0:
        return rotation_from_quaternion(0.0, 0.0, 0.0, 1.0)
    half_sin = math.sin(magnitude / 2.0)
    return rotation_from_quaternion(
        x / magnitude * half_sin,
        y / magnitude * half_sin,
        z / magnitude * half_sin,
        math.cos(magnitude / 2.0),
    )


def axis_magnitude_from_rotation(rotation: np.ndarray) -> tuple[float, float, float]:
    """Axis scaled by rotation angle, the inverse of rotation_from_axis_magnitude."""
    qx, qy, qz, qw = quaternion_from_rotation(rotation)
    if qw >= 1.0:
        return 0.0, 0.0, 0.0
    magnitude = 2.0 * math.acos(max(-1.0, qw))
    k = math.sqrt(1.0 - qw * qw)
    if k == 0.0:
        return 0.0, 0.0, 0.0
    return (qx / k) * magnitude, (qy / k) * magnitude, (qz / k) * magnitude


def _as_points(points: Iterable[Sequence[float]]) -> np.ndarray:
    array = np.asarray(list(points) if not isinstance(points, np.ndarray) else points,
                       dtype=float)
    if array.size == 0:
        raise ValueError("at least one point is required")
    return array.reshape(-1, 3)


def centroid(points: Iterable[Sequence[float]]) -> np.ndarray:
    """Mean of a set of 3d points given as rows."""
    return _as_points(points).mean(axis=0)


def fit_plane(points: Iterable[Sequence[float]]) -> tuple[np.ndarray, float]:
    """Least-squares plane through 3d points.

    Returns a unit normal and offset d such that normal . p + d == 0.
    """
    array = _as_points(points)
    center = array.mean(axis=0)
    _, _, vt = np.linalg.svd(array - center)
    normal = vt[-1]
    return normal, float(-normal @ center)