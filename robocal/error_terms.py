"""Residual terms for magnetometer fitting, offset restraint and plane agreement."""

from __future__ import annotations

import copy
from typing import Sequence

import numpy as np

from .geometry import axis_magnitude_from_rotation, centroid, fit_plane
from .messages import CalibrationData
from .models import Chain3dModel
from .offsets import OptimizationOffsets


class HardIronOffsetError:
    """Residual of one magnetometer sample against a sphere with an offset centre.

    Parameters are, in order: local field strength, then the x, y and z offsets.
    """

    def __init__(self, x: float, y: float, z: float) -> None:
        self.x = x
        self.y = y
        self.z = z

    def __call__(self, params: Sequence[float]) -> np.ndarray:
        """Squared distance from the centre minus squared field strength."""
        strength, ox, oy, oz = (params[i] for i in range(4))
        residual = (
            (self.x - ox) * (self.x - ox)
            + (self.y - oy) * (self.y - oy)
            + (self.z - oz) * (self.z - oz)
            - strength * strength
        )
        return np.array([residual], dtype=float)


class OutrageousError:
    """Penalty that keeps a joint or frame offset from growing without bound.

    Returns seven residuals: the joint offset, three position offsets and the
    three components of the rotation offset in axis-magnitude form.
    """

    def __init__(
        self,
        offsets: OptimizationOffsets,
        name: str,
        joint_scaling: float,
        position_scaling: float,
        rotation_scaling: float,
    ) -> None:
        self.offsets = offsets
        self.name = name
        self.joint = joint_scaling
        self.position = position_scaling
        self.rotation = rotation_scaling

    def __call__(self, free_params: Sequence[float]) -> np.ndarray:
        """Scaled magnitudes of the offsets for this name."""
        self.offsets.update(free_params)
        residuals = np.zeros(7)
        residuals[0] = self.joint * self.offsets.get(self.name)
        frame = self.offsets.get_frame(self.name)
        if frame is not None:
            residuals[1:4] = self.position * frame.position
            rotation = axis_magnitude_from_rotation(frame.rotation)
            residuals[4:7] = self.rotation * np.abs(np.array(rotation, dtype=float))
        return residuals


def _point_rows(points) -> np.ndarray:
    return np.array([[p.point.x, p.point.y, p.point.z] for p in points],
                    dtype=float).reshape(-1, 3)


class PlaneToPlaneError:
    """Residuals between planes fitted to points projected through two models.

    Three residuals compare the plane normals; the fourth is the distance from
    the centroid of the first point set to the second plane.
    """

    def __init__(
        self,
        model_a: Chain3dModel,
        model_b: Chain3dModel,
        offsets: OptimizationOffsets,
        data: CalibrationData,
        scale_normal: float,
        scale_offset: float,
    ) -> None:
        self.model_a = model_a
        self.model_b = model_b
        self.offsets = offsets
        self.data = copy.deepcopy(data)
        self.scale_normal = scale_normal
        self.scale_offset = scale_offset

    def __call__(self, free_params: Sequence[float]) -> np.ndarray:
        """Four residuals: normal differences and centroid-to-plane distance."""
        self.offsets.update(free_params)

        matrix_a = _point_rows(self.model_a.project(self.data, self.offsets))
        normal_a, _ = fit_plane(matrix_a)

        matrix_b = _point_rows(self.model_b.project(self.data, self.offsets))
        normal_b, d_b = fit_plane(matrix_b)

        residuals = np.empty(4)
        residuals[0:3] = np.abs(normal_a - normal_b) * self.scale_normal
        center_a = centroid(matrix_a)
        residuals[3] = abs(float(normal_b @ center_a) + d_b) * self.scale_offset
        return residuals