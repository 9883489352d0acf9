"""Plain data records exchanged between finders, models and error terms."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class Point:
    """A 3d point."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass
class PointStamped:
    """A point tagged with the frame it is expressed in."""

    point: Point = field(default_factory=Point)
    frame_id: str = ""
    stamp: float = 0.0


@dataclass
class JointState:
    """Joint names with matching positions."""

    name: list[str] = field(default_factory=list)
    position: list[float] = field(default_factory=list)

    def position_of(self, name: str) -> float:
        """Position of the named joint, or 0.0 if it is absent."""
        for joint_name, value in zip(self.name, self.position):
            if joint_name == name:
                return value
        logger.warning("Unable to find %s in joint state", name)
        return 0.0


@dataclass
class CameraInfo:
    """Pinhole camera intrinsics; k is 3x3 and p is 3x4, both row-major."""

    height: int = 0
    width: int = 0
    d: list[float] = field(default_factory=list)
    k: list[float] = field(default_factory=lambda: [0.0] * 9)
    r: list[float] = field(default_factory=lambda: [0.0] * 9)
    p: list[float] = field(default_factory=lambda: [0.0] * 12)


@dataclass
class CameraParameter:
    """A named scalar describing a depth camera."""

    name: str = ""
    value: float = 0.0


@dataclass
class ExtendedCameraInfo:
    """Camera intrinsics together with depth-specific parameters."""

    camera_info: CameraInfo = field(default_factory=CameraInfo)
    parameters: list[CameraParameter] = field(default_factory=list)


@dataclass(eq=False)
class PointCloud:
    """A cloud of xyz points, optionally organized as height x width with colours."""

    points: np.ndarray = field(default_factory=lambda: np.empty((0, 3)))
    colors: Optional[np.ndarray] = None
    height: int = 1
    width: Optional[int] = None
    frame_id: str = ""
    stamp: float = 0.0

    def __post_init__(self) -> None:
        self.points = np.array(self.points, dtype=float).reshape(-1, 3)
        count = len(self.points)
        if self.width is None:
            self.width = count // self.height if self.height else 0
        if self.height * self.width != count:
            raise ValueError(
                f"cloud of {count} points cannot be {self.height} x {self.width}"
            )
        if self.colors is not None:
            self.colors = np.array(self.colors, dtype=np.uint8).reshape(-1, 3)
            if len(self.colors) != count:
                raise ValueError("colours must match points one to one")

    @staticmethod
    def empty(frame_id: str) -> "PointCloud":
        """An empty cloud in the given frame."""
        return PointCloud(frame_id=frame_id)

    def __len__(self) -> int:
        return len(self.points)


@dataclass
class Observation:
    """Features seen by one sensor."""

    sensor_name: str = ""
    features: list[PointStamped] = field(default_factory=list)
    ext_camera_info: ExtendedCameraInfo = field(default_factory=ExtendedCameraInfo)
    cloud: Optional[PointCloud] = None


@dataclass
class CalibrationData:
    """Joint states and all sensor observations captured at one pose."""

    joint_states: JointState = field(default_factory=JointState)
    observations: list[Observation] = field(default_factory=list)

    def sensor_index(self, sensor_name: str) -> Optional[int]:
        """Index of the first observation from the named sensor, or None."""
        return next(
            (i for i, obs in enumerate(self.observations) if obs.sensor_name == sensor_name),
            None,
        )

    def observation(self, sensor_name: str) -> Optional[Observation]:
        """First observation from the named sensor, or None."""
        index = self.sensor_index(sensor_name)
        return None if index is None else self.observations[index]


@dataclass
class LaserScan:
    """A planar laser scan."""

    angle_min: float = 0.0
    angle_increment: float = 0.0
    ranges: list[float] = field(default_factory=list)
    frame_id: str = ""
    stamp: float = 0.0