"""Turning a laser scan into a calibration observation."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from .messages import (
    CalibrationData,
    LaserScan,
    Observation,
    Point,
    PointCloud,
    PointStamped,
)

logger = logging.getLogger(__name__)

Transform = Callable[[PointStamped, str], PointStamped]


@dataclass
class ScanFinderConfig:
    """Settings for extracting scan points.

    A transform_frame of "none" keeps points in the sensor frame.
    """

    sensor_name: str = "laser"
    transform_frame: str = "base_link"
    min_x: float = -2.0
    max_x: float = 2.0
    min_y: float = -2.0
    max_y: float = 2.0
    z_repeats: int = 10
    z_offset: float = 0.1
    debug: bool = False


class ScanFinder:
    """Builds an observation from the points of a laser scan.

    ``transform`` maps a stamped point into the named frame and raises
    LookupError when no transform is available. ``publish`` receives the
    visualisation cloud of each observation.
    """

    def __init__(
        self,
        config: Optional[ScanFinderConfig] = None,
        transform: Optional[Transform] = None,
        publish: Optional[Callable[[PointCloud], None]] = None,
        wait: Callable[[float], None] = time.sleep,
        now: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or ScanFinderConfig()
        if self.config.transform_frame != "none" and transform is None:
            raise ValueError("a transform is required unless transform_frame is 'none'")
        self._transform = transform
        self._publish = publish
        self._wait = wait
        self._now = now

    def find(self, scan: Optional[LaserScan], data: CalibrationData) -> bool:
        """Add an observation from the scan to data; False if there is no scan."""
        if scan is None:
            logger.error("No laser scan data")
            return False
        cloud = self.extract_points(scan)
        self.extract_observation(cloud, data)
        return True

    def extract_points(self, scan: LaserScan) -> PointCloud:
        """Valid scan points, repeated along z and transformed if configured."""
        cfg = self.config
        do_transform = cfg.transform_frame != "none"
        frame_id = cfg.transform_frame if do_transform else scan.frame_id

        points: list[tuple[float, float, float]] = []
        for i, distance in enumerate(scan.ranges):
            if not math.isfinite(distance):
                continue
            angle = scan.angle_min + i * scan.angle_increment
            x = math.cos(angle) * distance
            y = math.sin(angle) * distance
            if x < cfg.min_x or x > cfg.max_x or y < cfg.min_y or y > cfg.max_y:
                continue

            for z in range(cfg.z_repeats):
                if do_transform:
                    p = PointStamped(Point(x, y, z * cfg.z_offset), frame_id=scan.frame_id)
                    try:
                        p_out = self._transform(p, cfg.transform_frame)
                    except LookupError as err:
                        logger.error("%s", err)
                        self._wait(1.0)
                        continue
                    points.append((p_out.point.x, p_out.point.y, p_out.point.z))
                else:
                    points.append((x, y, 0.0))

        return PointCloud(
            points=np.array(points, dtype=float).reshape(-1, 3),
            height=1,
            frame_id=frame_id,
            stamp=self._now(),
        )

    def extract_observation(self, cloud: PointCloud, data: CalibrationData) -> None:
        """Append an observation holding every point of the cloud."""
        if len(cloud) == 0:
            logger.warning("No points in observation, skipping")
            return
        logger.info("Got %d points for observation", len(cloud))

        observation = Observation(
            sensor_name=self.config.sensor_name,
            features=[
                PointStamped(Point(float(x), float(y), float(z)))
                for x, y, z in cloud.points
            ],
        )
        if self.config.debug:
            observation.cloud = cloud
        data.observations.append(observation)

        if self._publish is not None:
            self._publish(
                PointCloud(points=cloud.points.copy(), height=1,
                           frame_id=cloud.frame_id, stamp=self._now())
            )