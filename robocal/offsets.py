"""Calibration offsets: which values are free and what they currently are."""

from __future__ import annotations

from typing import Optional, Sequence

from .geometry import Frame, axis_magnitude_from_rotation, rotation_from_axis_magnitude, rotation_from_rpy

_FRAME_SUFFIXES = ("_x", "_y", "_z", "_a", "_b", "_c")


class OptimizationOffsets:
    """Holds the configuration of what is calibrated and the current offsets.

    Single parameters (such as joint offsets) and frame corrections are stored
    by name. Frame rotations are kept as an axis scaled by the angle. Values
    persist across reset(), so several calibration steps can build on each other.
    """

    def __init__(self) -> None:
        self._values: dict[str, float] = {}
        self._free: list[str] = []
        self._frames: list[str] = []

    def add(self, name: str) -> bool:
        """Make a single parameter free; returns False if it already is."""
        if name in self._free:
            return False
        self._values.setdefault(name, 0.0)
        self._free.append(name)
        return True

    def add_frame(
        self,
        name: str,
        calibrate_x: bool,
        calibrate_y: bool,
        calibrate_z: bool,
        calibrate_roll: bool,
        calibrate_pitch: bool,
        calibrate_yaw: bool,
    ) -> None:
        """Register a frame correction and free the selected degrees of freedom."""
        if name not in self._frames:
            self._frames.append(name)
        flags = (calibrate_x, calibrate_y, calibrate_z,
                 calibrate_roll, calibrate_pitch, calibrate_yaw)
        for suffix, enabled in zip(_FRAME_SUFFIXES, flags):
            if enabled:
                self.add(name + suffix)

    def set(self, name: str, value: float) -> None:
        """Set the value of a known parameter."""
        if name not in self._values:
            raise KeyError(name)
        self._values[name] = value

    def set_frame(
        self, name: str, x: float, y: float, z: float,
        roll: float, pitch: float, yaw: float,
    ) -> None:
        """Set a frame correction; components that are not parameters are ignored."""
        if name not in self._frames:
            raise KeyError(name)
        a, b, c = axis_magnitude_from_rotation(rotation_from_rpy(roll, pitch, yaw))
        for suffix, value in zip(_FRAME_SUFFIXES, (x, y, z, a, b, c)):
            key = name + suffix
            if key in self._values:
                self._values[key] = value

    def initialize(self) -> list[float]:
        """Current values of the free parameters, in free-parameter order."""
        return [self._values[name] for name in self._free]

    def update(self, free_params: Sequence[float]) -> None:
        """Take new values for the free parameters from the optimizer."""
        if len(free_params) < len(self._free):
            raise ValueError(
                f"expected {len(self._free)} free parameters, got {len(free_params)}"
            )
        for name, value in zip(self._free, free_params):
            self._values[name] = float(value)

    def get(self, name: str) -> float:
        """Offset for a parameter, 0.0 if it is not known."""
        return self._values.get(name, 0.0)

    def get_frame(self, name: str) -> Optional[Frame]:
        """Frame correction for a registered frame, or None."""
        if name not in self._frames:
            return None
        x, y, z, a, b, c = (self.get(name + suffix) for suffix in _FRAME_SUFFIXES)
        return Frame(rotation_from_axis_magnitude(a, b, c), [x, y, z])

    def size(self) -> int:
        """Number of free parameters."""
        return len(self._free)

    def reset(self) -> None:
        """Clear the free parameters while keeping their values."""
        self._free.clear()