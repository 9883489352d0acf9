"""Residual blocks that compare points projected through kinematic chains."""

from __future__ import annotations

import copy
import logging
import math
import sys
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from .messages import CalibrationData
from .models import Chain3dModel
from .offsets import OptimizationOffsets

logger = logging.getLogger(__name__)


def dist_to_line(a: Sequence[float], b: Sequence[float], c: Sequence[float]) -> float:
    """Squared distance from point c to the line segment a-b."""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    c = np.asarray(c, dtype=float)
    ab = b - a
    ac = c - a
    bc = c - b

    e = float(ac @ ab)
    if e <= 0.0:
        # a is the closest point
        return float(ac @ ac)
    f = float(ab @ ab)
    if e >= f:
        # b is the closest point
        return float(bc @ bc)
    return float(ac @ ac) - e * e / f


@dataclass(eq=False)
class Mesh:
    """A triangle mesh: vertex rows and triangles as rows of vertex indices."""

    vertices: np.ndarray = field(default_factory=lambda: np.empty((0, 3)))
    triangles: np.ndarray = field(default_factory=lambda: np.empty((0, 3), dtype=int))

    def __post_init__(self) -> None:
        self.vertices = np.array(self.vertices, dtype=float).reshape(-1, 3)
        self.triangles = np.array(self.triangles, dtype=int).reshape(-1, 3)
        if self.triangles.size and (
            self.triangles.min() < 0 or self.triangles.max() >= len(self.vertices)
        ):
            raise ValueError("triangle refers to a vertex that does not exist")

    @property
    def triangle_count(self) -> int:
        return len(self.triangles)


def _feature_count(data: CalibrationData, model: Chain3dModel) -> int:
    observation = data.observation(model.name)
    if observation is None:
        raise ValueError("Sensor name doesn't match any of the existing finders")
    return len(observation.features)


def _project(
    model: Chain3dModel,
    data: CalibrationData,
    offsets: OptimizationOffsets,
) -> np.ndarray:
    points = model.project(data, offsets)
    return np.array([[p.point.x, p.point.y, p.point.z] for p in points],
                    dtype=float).reshape(-1, 3)


class Chain3dToChain3d:
    """Residuals between the same features projected through two chains."""

    def __init__(
        self,
        a_model: Chain3dModel,
        b_model: Chain3dModel,
        offsets: OptimizationOffsets,
        data: CalibrationData,
    ) -> None:
        self._features = _feature_count(data, a_model)
        self.a_model = a_model
        self.b_model = b_model
        self.offsets = offsets
        self.data = copy.deepcopy(data)

    def __call__(self, free_params: Sequence[float]) -> np.ndarray:
        """Per-feature x, y, z differences, flattened."""
        self.offsets.update(free_params)
        a_pts = self.a_model.project(self.data, self.offsets)
        b_pts = self.b_model.project(self.data, self.offsets)
        if len(a_pts) != len(b_pts):
            raise ValueError("Observations do not match in size.")

        residuals = []
        for a, b in zip(a_pts, b_pts):
            if a.frame_id != b.frame_id:
                logger.warning("Projected observation frame_ids do not match.")
            residuals.extend(
                (a.point.x - b.point.x, a.point.y - b.point.y, a.point.z - b.point.z)
            )
        return np.array(residuals, dtype=float)

    def num_residuals(self) -> int:
        """Three residuals per observed feature."""
        return self._features * 3


class Chain3dToMesh:
    """Residuals as distance from projected points to the edges of a mesh."""

    def __init__(
        self,
        chain_model: Chain3dModel,
        offsets: OptimizationOffsets,
        data: CalibrationData,
        mesh: Mesh,
    ) -> None:
        self._features = _feature_count(data, chain_model)
        self.chain_model = chain_model
        self.offsets = offsets
        self.data = copy.deepcopy(data)
        self.mesh = mesh

    def _distance(self, point: np.ndarray) -> float:
        vertices = self.mesh.vertices
        best = sys.float_info.max
        for a_idx, b_idx, c_idx in self.mesh.triangles:
            a, b, c = vertices[a_idx], vertices[b_idx], vertices[c_idx]
            best = min(
                best,
                dist_to_line(a, b, point),
                dist_to_line(b, c, point),
                dist_to_line(c, a, point),
            )
        return math.sqrt(best)

    def __call__(self, free_params: Sequence[float]) -> np.ndarray:
        """Distance of each projected feature to the nearest mesh edge."""
        self.offsets.update(free_params)
        points = _project(self.chain_model, self.data, self.offsets)
        return np.array([self._distance(p) for p in points], dtype=float)

    def num_residuals(self) -> int:
        """One residual per observed feature."""
        return self._features


class Chain3dToPlane:
    """Residuals as scaled distance from projected points to a plane ax+by+cz+d=0."""

    def __init__(
        self,
        chain_model: Chain3dModel,
        offsets: OptimizationOffsets,
        data: CalibrationData,
        a: float,
        b: float,
        c: float,
        d: float,
        scale: float = 1.0,
    ) -> None:
        self._features = _feature_count(data, chain_model)
        self.chain_model = chain_model
        self.offsets = offsets
        self.data = copy.deepcopy(data)
        self.a, self.b, self.c, self.d = a, b, c, d

        denom = math.sqrt(a * a + b * b + c * c)
        if abs(denom) < 0.1:
            logger.warning("Plane normal is extremely small: %g", denom)
        with np.errstate(divide="ignore", invalid="ignore"):
            self.scale = float(np.float64(scale) / np.float64(denom))

    def __call__(self, free_params: Sequence[float]) -> np.ndarray:
        """Scaled distance of each projected feature to the plane."""
        self.offsets.update(free_params)
        points = _project(self.chain_model, self.data, self.offsets)
        normal = np.array([self.a, self.b, self.c])
        return np.abs(points @ normal + self.d) * self.scale

    def num_residuals(self) -> int:
        """One residual per observed feature."""
        return self._features