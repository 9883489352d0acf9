"""Kinematic chains and the sensor models that project observations through them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

import numpy as np

from .geometry import Frame, rotation_from_axis_magnitude
from .messages import CalibrationData, JointState, Point, PointStamped
from .offsets import OptimizationOffsets

logger = logging.getLogger(__name__)

_FX_INDEX = 0
_CX_INDEX = 2
_FY_INDEX = 5
_CY_INDEX = 6


class JointType(Enum):
    """How a joint moves with its position value."""

    NONE = "none"
    ROTATIONAL = "rotational"
    TRANSLATIONAL = "translational"


@dataclass(frozen=True)
class Joint:
    """A joint with a motion axis expressed in the joint's own frame."""

    name: str
    type: JointType = JointType.NONE
    axis: tuple[float, float, float] = (0.0, 0.0, 1.0)

    def __post_init__(self) -> None:
        if self.type is not JointType.NONE and not np.any(np.asarray(self.axis, dtype=float)):
            raise ValueError(f"joint {self.name} needs a non-zero axis")

    def _motion(self, q: float) -> Frame:
        if self.type is JointType.NONE:
            return Frame.identity()
        axis = np.asarray(self.axis, dtype=float)
        axis = axis / np.linalg.norm(axis)
        if self.type is JointType.ROTATIONAL:
            return Frame(rotation_from_axis_magnitude(*(axis * q)))
        return Frame(position=axis * q)


@dataclass
class Segment:
    """A link hanging off its parent through a joint placed at origin."""

    joint: Joint
    origin: Frame = field(default_factory=Frame.identity)

    def pose(self, q: float) -> Frame:
        """Transform from the parent link to this link at joint position q."""
        return self.origin * self.joint._motion(q)

    def frame_to_tip(self) -> Frame:
        """The fixed transform from the parent link to the joint frame."""
        return self.origin


class KinematicTree:
    """A tree of links connected by segments."""

    def __init__(self, root: str) -> None:
        self.root = root
        self._parents: dict[str, tuple[str, Segment]] = {}

    def _known(self, link: str) -> bool:
        return link == self.root or link in self._parents

    def add_segment(self, parent: str, child: str, segment: Segment) -> None:
        """Attach a new link below an existing one."""
        if not self._known(parent):
            raise ValueError(f"unknown parent link {parent}")
        if self._known(child):
            raise ValueError(f"link {child} already exists")
        self._parents[child] = (parent, segment)

    def get_chain(self, root: str, tip: str) -> list[Segment]:
        """Segments leading from root down to tip, in order."""
        if not self._known(root):
            raise ValueError(f"unknown link {root}")
        if not self._known(tip):
            raise ValueError(f"unknown link {tip}")
        segments: list[Segment] = []
        link = tip
        while link != root:
            if link == self.root:
                raise ValueError(f"{tip} does not descend from {root}")
            link, segment = self._parents[link]
            segments.append(segment)
        segments.reverse()
        return segments


def position_from_msg(name: str, msg: JointState) -> float:
    """Position of a joint in a joint state, 0.0 if it is absent."""
    return msg.position_of(name)


class Chain3dModel:
    """Projects observed points through a kinematic chain into the root frame."""

    model_type = "Chain3dModel"

    def __init__(self, name: str, tree: KinematicTree, root: str, tip: str) -> None:
        self.name = name
        self.root = root
        self.tip = tip
        try:
            self._chain = tree.get_chain(root, tip)
        except ValueError as err:
            raise ValueError(
                f"Failed to build a chain model from {root} to {tip}, check the link names"
            ) from err

    def _stamped(self, position: np.ndarray) -> PointStamped:
        return PointStamped(Point(*(float(v) for v in position)), frame_id=self.root)

    def project(
        self, data: CalibrationData, offsets: OptimizationOffsets
    ) -> list[PointStamped]:
        """Positions of this sensor's observed points in the root frame."""
        observation = data.observation(self.name)
        if observation is None:
            return []
        fk = self.get_chain_fk(offsets, data.joint_states)
        points = []
        for feature in observation.features:
            position = np.array([feature.point.x, feature.point.y, feature.point.z])
            if feature.frame_id != self.tip:
                frame_offset = offsets.get_frame(feature.frame_id)
                if frame_offset is not None:
                    position = frame_offset.transform_point(position)
            points.append(self._stamped(fk.transform_point(position)))
        return points

    def get_chain_fk(self, offsets: OptimizationOffsets, state: JointState) -> Frame:
        """Forward kinematics from root to tip with the offsets applied."""
        p_out = Frame.identity()
        for segment in self._chain:
            name = segment.joint.name
            correction = offsets.get_frame(name) or Frame.identity()
            if segment.joint.type is not JointType.NONE:
                q = position_from_msg(name, state) + offsets.get(name)
            else:
                q = 0.0
            pose = segment.pose(q)
            to_tip = segment.frame_to_tip()
            p_out = p_out * Frame(
                np.eye(3), pose.position + to_tip.rotation @ correction.position
            )
            p_out = p_out * Frame(
                to_tip.rotation @ correction.rotation @ to_tip.rotation.T @ pose.rotation
            )
        return p_out


class Camera3dModel(Chain3dModel):
    """A depth camera on a chain, with calibratable intrinsics."""

    model_type = "Camera3dModel"

    def __init__(
        self, name: str, param_name: str, tree: KinematicTree, root: str, tip: str
    ) -> None:
        super().__init__(name, tree, root, tip)
        self.param_name = param_name

    def project(
        self, data: CalibrationData, offsets: OptimizationOffsets
    ) -> list[PointStamped]:
        """Re-project observed points through calibrated intrinsics, then the chain."""
        observation = data.observation(self.name)
        if observation is None:
            return []

        info = observation.ext_camera_info
        p = info.camera_info.p
        if len(p) != 12:
            logger.warning("Unexpected CameraInfo projection matrix size")
        camera_fx, camera_fy = p[_FX_INDEX], p[_FY_INDEX]
        camera_cx, camera_cy = p[_CX_INDEX], p[_CY_INDEX]

        z_offset = 0.0
        z_scaling = 1.0
        for parameter in info.parameters:
            if parameter.name == "z_scaling":
                z_scaling = parameter.value
            elif parameter.name == "z_offset_mm":
                z_offset = parameter.value / 1000.0

        prefix = self.param_name
        new_fx = camera_fx * (1.0 + offsets.get(prefix + "_fx"))
        new_fy = camera_fy * (1.0 + offsets.get(prefix + "_fy"))
        new_cx = camera_cx * (1.0 + offsets.get(prefix + "_cx"))
        new_cy = camera_cy * (1.0 + offsets.get(prefix + "_cy"))
        new_z_offset = offsets.get(prefix + "_z_offset")
        new_z_scaling = 1.0 + offsets.get(prefix + "_z_scaling")

        fk = self.get_chain_fk(offsets, data.joint_states)
        points = []
        for feature in observation.features:
            x, y, z = feature.point.x, feature.point.y, feature.point.z
            u = x * camera_fx / z + camera_cx
            v = y * camera_fy / z + camera_cy
            depth = z / z_scaling - z_offset

            new_z = (depth + new_z_offset) * new_z_scaling
            position = np.array(
                [
                    (u - new_cx) * new_z / new_fx,
                    (v - new_cy) * new_z / new_fy,
                    new_z,
                ]
            )
            points.append(self._stamped(fk.transform_point(position)))
        return points


def _features(points: Sequence[Sequence[float]], frame_id: str) -> list[PointStamped]:
    return [PointStamped(Point(*p), frame_id=frame_id) for p in points]