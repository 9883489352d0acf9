"""Finding a plane in a point cloud and sampling observations from it."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from .geometry import fit_plane
from .messages import (
    CalibrationData,
    ExtendedCameraInfo,
    Observation,
    Point,
    PointCloud,
    PointStamped,
)

logger = logging.getLogger(__name__)

Transform = Callable[[PointStamped, str], PointStamped]
Publisher = Callable[[PointCloud], None]


def sample_cloud(
    points: PointCloud,
    sample_distance: float,
    max_points: int,
    sampled_points: list[PointStamped],
) -> int:
    """Append cloud points lying at least sample_distance from every sampled point.

    Stops once sampled_points holds max_points entries and returns its length.
    """
    max_dist_sq = sample_distance * sample_distance
    coords = [(p.point.x, p.point.y, p.point.z) for p in sampled_points]

    for row in points.points:
        x, y, z = (float(v) for v in row)
        too_close = any(
            (sx - x) * (sx - x) + (sy - y) * (sy - y) + (sz - z) * (sz - z) < max_dist_sq
            for sx, sy, sz in coords
        )
        if not too_close:
            sampled_points.append(PointStamped(Point(x, y, z)))
            coords.append((x, y, z))
        if len(sampled_points) >= max_points:
            break

    logger.info(
        "Extracted %d points with sampling distance of %f",
        len(sampled_points), sample_distance,
    )
    return len(sampled_points)


@dataclass
class PlaneFinderConfig:
    """Settings for plane extraction.

    A transform_frame of "none" keeps points in the sensor frame. Leaving the
    normal components at zero disables the check on the plane orientation;
    normal_angle is the allowed deviation from that normal, in radians.
    """

    camera_sensor_name: str = "camera"
    points_max: int = 60
    initial_sample_distance: float = 0.2
    tolerance: float = 0.02
    transform_frame: str = "base_link"
    min_x: float = -2.0
    max_x: float = 2.0
    min_y: float = -2.0
    max_y: float = 2.0
    min_z: float = -2.0
    max_z: float = 2.0
    ransac_iterations: int = 100
    ransac_points: int = 35
    normal_a: float = 0.0
    normal_b: float = 0.0
    normal_c: float = 0.0
    normal_angle: float = 0.349065
    debug: bool = False


class PlaneFinder:
    """Finds the dominant plane in a cloud and turns it into an observation.

    ``transform`` maps a stamped point into the named frame and raises
    LookupError when no transform is available. ``publish`` receives the
    sampled observation points as a cloud.
    """

    def __init__(
        self,
        config: Optional[PlaneFinderConfig] = None,
        transform: Optional[Transform] = None,
        publish: Optional[Publisher] = None,
        wait: Callable[[float], None] = time.sleep,
        now: Callable[[], float] = time.time,
        camera_info: Optional[ExtendedCameraInfo] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.config = config or PlaneFinderConfig()
        if self.config.transform_frame != "none" and transform is None:
            raise ValueError("a transform is required unless transform_frame is 'none'")
        self._transform = transform
        self._publish = publish
        self._wait = wait
        self._now = now
        self._camera_info = camera_info or ExtendedCameraInfo()
        self._rng = rng if rng is not None else np.random.default_rng()
        cfg = self.config
        self._desired_normal = np.array([cfg.normal_a, cfg.normal_b, cfg.normal_c], dtype=float)
        self._cos_normal_angle = math.cos(cfg.normal_angle)

    def find(self, cloud: Optional[PointCloud], data: CalibrationData) -> bool:
        """Append an observation of the plane to data; False if there is no cloud."""
        if cloud is None:
            logger.error("No point cloud data")
            return False
        cfg = self.config
        cloud = self.remove_invalid_points(
            cloud, cfg.min_x, cfg.max_x, cfg.min_y, cfg.max_y, cfg.min_z, cfg.max_z
        )
        plane, _ = self.extract_plane(cloud)
        self.extract_observation(cfg.camera_sensor_name, plane, data)
        return True

    def remove_invalid_points(
        self,
        cloud: PointCloud,
        min_x: float,
        max_x: float,
        min_y: float,
        max_y: float,
        min_z: float,
        max_z: float,
    ) -> PointCloud:
        """Unorganized cloud of the finite, non-zero-depth points inside the box.

        The box is tested in transform_frame; kept points stay in the sensor frame.
        """
        target = self.config.transform_frame
        do_transform = target != "none"
        kept = []
        for row in cloud.points:
            x, y, z = (float(v) for v in row)
            if not (math.isfinite(x) and math.isfinite(y) and math.isfinite(z)):
                continue
            # Some sensors report zeros instead of NaNs
            if z == 0:
                continue

            if do_transform:
                stamped = PointStamped(Point(x, y, z), frame_id=cloud.frame_id, stamp=0.0)
                try:
                    out = self._transform(stamped, target).point
                except LookupError as err:
                    logger.error("%s", err)
                    self._wait(1.0)
                    continue
                tx, ty, tz = out.x, out.y, out.z
            else:
                tx, ty, tz = x, y, z

            if (tx < min_x or tx > max_x or ty < min_y or ty > max_y
                    or tz < min_z or tz > max_z):
                continue
            kept.append((x, y, z))

        return PointCloud(
            points=np.array(kept, dtype=float).reshape(-1, 3),
            height=1,
            frame_id=cloud.frame_id,
            stamp=cloud.stamp,
        )

    def _transform_vector(self, vector: np.ndarray, frame_id: str) -> np.ndarray:
        target = self.config.transform_frame
        origin = self._transform(PointStamped(Point(), frame_id=frame_id), target).point
        tip = self._transform(
            PointStamped(Point(*(float(v) for v in vector)), frame_id=frame_id), target
        ).point
        return np.array([tip.x - origin.x, tip.y - origin.y, tip.z - origin.z])

    def extract_plane(self, cloud: PointCloud) -> tuple[PointCloud, PointCloud]:
        """Split a cloud into the best RANSAC plane and the remaining points."""
        cfg = self.config
        points = cloud.points
        count = len(points)
        if count == 0:
            raise ValueError("no points to fit a plane to")

        best_normal = np.array([0.0, 0.0, 1.0])
        best_d = 0.0
        best_fit = -1
        check_normal = np.linalg.norm(self._desired_normal) > 0.1
        for _ in range(cfg.ransac_iterations):
            sample = points[self._rng.integers(0, count, size=cfg.ransac_points)]
            normal, d = fit_plane(sample)

            if check_normal:
                transformed = normal
                if cfg.transform_frame != "none":
                    try:
                        transformed = self._transform_vector(normal, cloud.frame_id)
                    except LookupError as err:
                        logger.error("%s", err)
                        continue
                angle = (
                    float(transformed @ self._desired_normal)
                    / np.linalg.norm(self._desired_normal)
                    / np.linalg.norm(transformed)
                )
                if abs(angle) < self._cos_normal_angle:
                    continue

            with np.errstate(invalid="ignore"):
                fit = int(np.count_nonzero(np.abs(points @ normal + d) < cfg.tolerance))
            if fit > best_fit:
                best_fit = fit
                best_normal = normal
                best_d = d

        # Parameters are in the cloud's frame, not transform_frame
        logger.info(
            "Found plane with parameters: %f %f %f %f",
            best_normal[0], best_normal[1], best_normal[2], best_d,
        )

        with np.errstate(invalid="ignore"):
            on_plane = np.abs(points @ best_normal + best_d) < cfg.tolerance
        plane = PointCloud(
            points=points[on_plane], height=1, frame_id=cloud.frame_id, stamp=self._now()
        )
        rest = PointCloud(
            points=points[~on_plane], height=1, frame_id=cloud.frame_id, stamp=cloud.stamp
        )
        logger.info("Extracted plane with %d points", len(plane))
        return plane, rest

    def extract_observation(
        self, sensor_name: str, cloud: PointCloud, data: CalibrationData
    ) -> None:
        """Append an observation of up to points_max well-spread cloud points."""
        self._extract_observation(sensor_name, cloud, data, self._publish)

    def _extract_observation(
        self,
        sensor_name: str,
        cloud: PointCloud,
        data: CalibrationData,
        publish: Optional[Publisher],
    ) -> None:
        if len(cloud) == 0:
            logger.warning("No points in observation, skipping")
            return

        points_total = min(self.config.points_max, len(cloud))
        logger.info(
            "Got %d points for observation, using %d", len(cloud), points_total
        )

        sampled: list[PointStamped] = []
        sample_distance = self.config.initial_sample_distance
        while len(sampled) < points_total:
            sample_cloud(cloud, sample_distance, points_total, sampled)
            sample_distance /= 2

        observation = Observation(
            sensor_name=sensor_name,
            features=sampled,
            ext_camera_info=self._camera_info,
        )
        if self.config.debug:
            observation.cloud = cloud
        data.observations.append(observation)

        if publish is not None:
            publish(
                PointCloud(
                    points=np.array(
                        [[p.point.x, p.point.y, p.point.z] for p in sampled], dtype=float
                    ).reshape(-1, 3),
                    height=1,
                    frame_id=cloud.frame_id,
                    stamp=self._now(),
                )
            )


@dataclass
class RobotFinderConfig(PlaneFinderConfig):
    """Plane finder settings plus the box in which the robot itself is seen."""

    robot_sensor_name: str = "camera_robot"
    min_robot_x: float = -2.0
    max_robot_x: float = 2.0
    min_robot_y: float = -2.0
    max_robot_y: float = 2.0
    min_robot_z: float = 0.0
    max_robot_z: float = 2.0


class RobotFinder(PlaneFinder):
    """Observes both the ground plane and the robot body standing on it."""

    def __init__(
        self,
        config: Optional[RobotFinderConfig] = None,
        transform: Optional[Transform] = None,
        publish: Optional[Publisher] = None,
        publish_robot: Optional[Publisher] = None,
        wait: Callable[[float], None] = time.sleep,
        now: Callable[[], float] = time.time,
        camera_info: Optional[ExtendedCameraInfo] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        super().__init__(
            config or RobotFinderConfig(), transform, publish, wait, now, camera_info, rng
        )
        self._publish_robot = publish_robot

    def find(self, cloud: Optional[PointCloud], data: CalibrationData) -> bool:
        """Append plane and robot observations to data; False if there is no cloud."""
        if cloud is None:
            logger.error("No point cloud data")
            return False
        cfg = self.config
        cloud = self.remove_invalid_points(
            cloud, cfg.min_x, cfg.max_x, cfg.min_y, cfg.max_y, cfg.min_z, cfg.max_z
        )
        plane, rest = self.extract_plane(cloud)
        robot = self.remove_invalid_points(
            rest,
            cfg.min_robot_x, cfg.max_robot_x,
            cfg.min_robot_y, cfg.max_robot_y,
            cfg.min_robot_z, cfg.max_robot_z,
        )
        self._extract_observation(cfg.camera_sensor_name, plane, data, self._publish)
        self._extract_observation(cfg.robot_sensor_name, robot, data, self._publish_robot)
        return True