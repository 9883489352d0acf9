"""Spinning a mobile base in front of a wall to calibrate odometry and gyro."""

from __future__ import annotations

import logging
import math
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TextIO

import numpy as np

from .messages import LaserScan

logger = logging.getLogger(__name__)

PI = 3.14159265359


@dataclass
class BaseCalibrationConfig:
    """Tuning for wall alignment and spinning."""

    min_angle: float = -0.5
    max_angle: float = 0.5
    accel_limit: float = 2.0
    align_velocity: float = 0.2
    align_gain: float = 2.0
    align_tolerance: float = 0.2
    r2_tolerance: float = 0.1


class BaseCalibration:
    """Rotates the base and compares odometry and gyro against a laser-seen wall.

    ``send_velocity`` commands a rotational velocity. ``wait`` must pause for the
    given number of seconds while delivering incoming odometry, imu and scan data
    to the ``on_*`` methods. ``ok`` reports whether to keep running.
    """

    def __init__(
        self,
        send_velocity: Callable[[float], None],
        wait: Callable[[float], None] = time.sleep,
        ok: Callable[[], bool] = lambda: True,
        now: Callable[[], float] = time.monotonic,
        config: Optional[BaseCalibrationConfig] = None,
        output: Optional[TextIO] = None,
    ) -> None:
        self.config = config or BaseCalibrationConfig()
        self._send_velocity = send_velocity
        self._wait = wait
        self._ok = ok
        self._output = output
        self._lock = threading.RLock()

        start = now()
        self.last_odom_stamp = start
        self.last_imu_stamp = start
        self.last_scan_stamp = start

        self.odom_angle = 0.0
        self.imu_angle = 0.0
        self.scan_angle = 0.0
        self.scan_r2 = 0.0
        self.scan_dist = 0.0
        self.ready = False

        self.scan_measurements: list[float] = []
        self.imu_measurements: list[float] = []
        self.odom_measurements: list[float] = []

        self.reset()

    def _print(self, *values: object) -> None:
        print(*values, file=self._output or sys.stdout)

    def clear_messages(self) -> None:
        """Forget all recorded spin measurements."""
        self.scan_measurements.clear()
        self.odom_measurements.clear()
        self.imu_measurements.clear()

    def status(self) -> str:
        """Current r2, imu, odometry and scan angles on one line."""
        return (
            f"{self.scan_r2:g} {self.imu_angle:g} {self.odom_angle:g} {self.scan_angle:g}"
        )

    def calibration_report(
        self, track_width: float = 0.37476, imu_gyro_scale: float = 0.001221729
    ) -> str:
        """Corrected track width and gyro scale from the recorded spins."""
        if not self.scan_measurements:
            raise ValueError("no spin measurements recorded")
        count = len(self.scan_measurements)
        odom_scale = sum(
            (scan - odom) / odom
            for scan, odom in zip(self.scan_measurements, self.odom_measurements)
        ) / count
        imu_scale = sum(
            (scan - imu) / imu
            for scan, imu in zip(self.scan_measurements, self.imu_measurements)
        ) / count
        return (
            f"odom: {track_width * (1.0 + odom_scale):g}\n"
            f"imu: {imu_gyro_scale * (1.0 + imu_scale):g}\n"
        )

    def align(self, angle: float, verbose: bool = False) -> bool:
        """Turn until the wall is seen at the given angle; False if stopped."""
        cfg = self.config
        while not self.ready:
            logger.warning("Not ready!")
            self._wait(0.1)

        self._print("aligning...")

        error = self.scan_angle - angle
        while abs(error) > cfg.align_tolerance or self.scan_r2 < cfg.r2_tolerance:
            if verbose:
                self._print(f"{self.scan_r2:g} {self.scan_angle:g}")

            velocity = min(max(-error * cfg.align_gain, -cfg.align_velocity),
                           cfg.align_velocity)
            self._send_velocity(velocity)
            self._wait(0.02)

            error = self.scan_angle - angle

            if not self._ok():
                self._send_velocity(0.0)
                return False

        self._send_velocity(0.0)
        self._print("...done")
        self._wait(0.25)
        return True

    def spin(self, velocity: float, rotations: int, verbose: bool = False) -> bool:
        """Spin a number of turns and record scan, imu and odometry angles."""
        scan_start = self.scan_angle

        self.align(0.0, verbose)
        self.reset()
        self._print("spin...")

        # Stop early enough to account for deceleration (v^2 / 2a)
        angle = rotations * 2 * PI - (0.5 * velocity * velocity / self.config.accel_limit)

        while abs(self.odom_angle) < angle:
            if verbose:
                self._print(f"{self.scan_angle:g} {self.odom_angle:g} {self.imu_angle:g}")
            self._send_velocity(velocity)
            self._wait(0.02)

            if not self._ok():
                self._send_velocity(0.0)
                return False

        self._send_velocity(0.0)
        self._print("...done")
        self._wait(1.0)

        self.imu_measurements.append(self.imu_angle)
        self.odom_measurements.append(self.odom_angle)
        if velocity > 0:
            self.scan_measurements.append(scan_start + 2 * rotations * PI - self.scan_angle)
        else:
            self.scan_measurements.append(scan_start - 2 * rotations * PI - self.scan_angle)
        return True

    def on_odometry(self, stamp: float, angular_z: float) -> None:
        """Integrate an odometry angular velocity reading."""
        with self._lock:
            self.odom_angle += angular_z * (stamp - self.last_odom_stamp)
            self.last_odom_stamp = stamp

    def on_imu(self, stamp: float, angular_z: float) -> None:
        """Integrate a gyro angular velocity reading."""
        with self._lock:
            self.imu_angle += angular_z * (stamp - self.last_imu_stamp)
            self.last_imu_stamp = stamp

    def on_scan(self, scan: LaserScan) -> None:
        """Fit a line to the wall in front and update its angle."""
        cfg = self.config
        with self._lock:
            angles = [scan.angle_min + i * scan.angle_increment
                      for i in range(len(scan.ranges))]
            valid = [
                (i, a, r)
                for i, (a, r) in enumerate(zip(angles, scan.ranges))
                if cfg.min_angle <= a <= cfg.max_angle and not math.isnan(r)
            ]
            if not valid:
                return

            start = valid[0][0]
            n = len(valid)
            mean_x = sum(math.sin(a) * r for _, a, r in valid) / n
            mean_y = sum(math.cos(a) * r for _, a, r in valid) / n

            x = y = xx = xy = yy = 0.0
            n = 0
            for a, r in zip(angles[start:], scan.ranges[start:]):
                if a > cfg.max_angle:
                    break
                if math.isnan(r):
                    continue
                px = math.sin(a) * r - mean_x
                py = math.cos(a) * r - mean_y
                xx += px * px
                xy += px * py
                x += px
                y += py
                yy += py * py
                n += 1

            with np.errstate(divide="ignore", invalid="ignore"):
                slope = np.float64(n * xy - x * y) / np.float64(n * xx - x * x)
                r2 = np.float64(abs(xy)) / np.float64(xx * yy)

            self.scan_dist = mean_y
            self.scan_angle = math.atan2(float(slope), 1.0)
            self.scan_r2 = float(r2)
            self.last_scan_stamp = scan.stamp
            self.ready = True

    def reset(self) -> None:
        """Zero the accumulated odometry, imu and scan state."""
        with self._lock:
            self.odom_angle = 0.0
            self.imu_angle = 0.0
            self.scan_angle = 0.0
            self.scan_r2 = 0.0