"""Finding LEDs on a gripper by toggling them and differencing coloured clouds."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

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

# Distance assumed for points seen before any point with a valid position
_INITIAL_DISTANCE = 1000.0
# Refined centroid uses points within this distance of the brightest point
_CENTROID_RADIUS = 0.05
# Code that turns every LED off
_OFF_CODE = 0


def distance_points(p1: Point, p2: Point) -> float:
    """Euclidean distance between two points."""
    return math.sqrt(
        (p1.x - p2.x) * (p1.x - p2.x)
        + (p1.y - p2.y) * (p1.y - p2.y)
        + (p1.z - p2.z) * (p1.z - p2.z)
    )


class CloudDifferenceTracker:
    """Accumulates colour changes near the expected pose of one LED.

    Each pixel keeps a score that grows when it brightens as the LED turns on
    and darkens as it turns off. The pixel with the highest score is the LED.
    """

    def __init__(self, frame: str, x: float, y: float, z: float) -> None:
        self.frame = frame
        self.point = Point(x, y, z)
        self.reset(0, 0)

    def reset(self, height: int, width: int) -> None:
        """Clear all scores for a cloud of the given shape."""
        self.height = height
        self.width = width
        self.count = 0
        self.maximum = -1000.0
        self.max_index = -1
        self.diff = np.zeros(height * width)

    def process(
        self,
        cloud: PointCloud,
        prev: PointCloud,
        led_point: Point,
        max_distance: float,
        weight: float,
    ) -> bool:
        """Score the colour change between prev and cloud; weight is +1 or -1.

        Returns False if the cloud no longer matches the tracked size.
        """
        if len(cloud) != len(self.diff):
            logger.error("Cloud size has changed")
            return False
        if cloud.colors is None or prev.colors is None:
            raise ValueError("clouds must carry colours")
        if len(prev) != len(cloud):
            raise ValueError("previous cloud does not match the current one in size")

        target = np.array([led_point.x, led_point.y, led_point.z], dtype=float)
        with np.errstate(invalid="ignore", over="ignore"):
            distances = np.sqrt(((cloud.points - target) ** 2).sum(axis=1))

        # Points without a position (the LED washes them out) take the
        # distance of the most recent point that had one.
        finite = np.isfinite(distances)
        indices = np.where(finite, np.arange(len(distances)), -1)
        last_valid = np.maximum.accumulate(indices) if len(indices) else indices
        fallback = np.where(
            last_valid >= 0, distances[np.maximum(last_valid, 0)], _INITIAL_DISTANCE
        )
        filled = np.where(finite, distances, fallback)
        in_range = filled <= max_distance

        change = cloud.colors.astype(float) - prev.colors.astype(float)
        brighter = np.all(change > 0, axis=1) & (weight > 0)
        darker = np.all(change < 0, axis=1) & (weight < 0)
        update = in_range & (brighter | darker)
        self.diff[update] += change[update].sum(axis=1) * weight

        candidates = np.flatnonzero(in_range)
        if candidates.size:
            best = int(candidates[np.argmax(self.diff[candidates])])
            if self.diff[best] > self.maximum:
                self.maximum = float(self.diff[best])
                self.max_index = best
        self.count += 1
        return True

    def is_found(self, cloud: PointCloud, threshold: float) -> bool:
        """True if the best score reaches threshold at a point with a position."""
        if self.maximum < threshold or self.max_index < 0:
            return False
        return not bool(np.isnan(cloud.points[self.max_index]).any())

    def get_refined_centroid(self, cloud: PointCloud) -> Optional[PointStamped]:
        """Average of the likely LED points around the best one, or None."""
        if self.max_index < 0 or self.max_index >= len(cloud):
            return None
        center = cloud.points[self.max_index]
        if np.isnan(center).any():
            return None

        points = cloud.points
        likely = self.diff[: len(points)] > self.maximum * 0.75
        with np.errstate(invalid="ignore"):
            close = ((points - center) ** 2).sum(axis=1) < _CENTROID_RADIUS ** 2
        chosen = likely & ~np.isnan(points).any(axis=1) & close

        result = center.copy()
        count = int(chosen.sum())
        if count > 0:
            result = (center + points[chosen].sum(axis=0)) / (count + 1)
        return PointStamped(
            Point(*(float(v) for v in result)), frame_id=cloud.frame_id, stamp=cloud.stamp
        )

    def get_image(self) -> np.ndarray:
        """Scores as a height x width x 3 BGR image; the strongest pixels are blue."""
        image = np.zeros((self.height * self.width, 3), dtype=np.uint8)
        strong = self.diff > self.maximum * 0.9
        weak = ~strong & (self.diff > 0)
        image[strong] = (255, 0, 0)
        image[weak] = np.clip(self.diff[weak] / 2.0, 0, 255).astype(np.uint8)[:, None]
        return image.reshape(self.height, self.width, 3)


@dataclass
class LedConfig:
    """One LED: the code that lights it and where it sits in the gripper frame."""

    name: str
    code: int = 0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass
class LedFinderConfig:
    """Settings for LED detection."""

    max_error: float = 0.1
    max_inconsistency: float = 0.01
    threshold: float = 1000.0
    max_iterations: int = 50
    debug: bool = False
    camera_sensor_name: str = "camera"
    chain_sensor_name: str = "arm"
    gripper_led_frame: str = "wrist_roll_link"
    leds: list[LedConfig] = field(default_factory=list)


class LedFinder:
    """Toggles gripper LEDs and locates them in coloured point clouds.

    ``set_led`` switches the LEDs to a code and waits for it to take effect.
    ``get_cloud`` returns a fresh organized, coloured cloud, or None on timeout.
    ``transform`` maps a stamped point into the named frame and raises
    LookupError when no transform is available.
    """

    def __init__(
        self,
        config: LedFinderConfig,
        set_led: Callable[[int], None],
        get_cloud: Callable[[], Optional[PointCloud]],
        transform: Transform,
        publish: Optional[Callable[[PointCloud], None]] = None,
        publish_image: Optional[Callable[[int, np.ndarray], None]] = None,
        camera_info: Optional[ExtendedCameraInfo] = None,
    ) -> None:
        if not config.leds:
            raise ValueError("at least one LED must be configured")
        self.config = config
        self._set_led = set_led
        self._get_cloud = get_cloud
        self._transform = transform
        self._publish = publish
        self._publish_image = publish_image
        self._camera_info = camera_info or ExtendedCameraInfo()

        # Commands alternate on and off for each LED
        self.codes: list[int] = []
        for led in config.leds:
            self.codes.extend((led.code, _OFF_CODE))
        self.trackers = [
            CloudDifferenceTracker(config.gripper_led_frame, led.x, led.y, led.z)
            for led in config.leds
        ]

    def find(self, data: CalibrationData) -> bool:
        """Locate all LEDs and append camera and chain observations to data."""
        cfg = self.config

        self._set_led(_OFF_CODE)
        cloud = self._get_cloud()
        if cloud is None:
            return False
        prev_cloud = cloud

        for tracker in self.trackers:
            tracker.reset(cloud.height, cloud.width)

        # Index starts as an unsigned byte of all ones
        code_idx = 255
        cycles = 0
        while True:
            code_idx = (code_idx + 1) % len(self.codes)
            self._set_led(self.codes[code_idx])

            cloud = self._get_cloud()
            if cloud is None:
                return False

            tracker = self.trackers[code_idx // 2]
            weight = 1.0 if code_idx % 2 == 0 else -1.0

            found = [t.is_found(cloud, cfg.threshold) for t in self.trackers]
            # Only stop while the LED is off, so its pixel is not washed out
            if all(found) and weight == -1.0:
                break

            led = PointStamped(
                Point(tracker.point.x, tracker.point.y, tracker.point.z),
                frame_id=tracker.frame,
            )
            try:
                led = self._transform(led, cloud.frame_id)
            except LookupError:
                logger.error("Failed to transform feature to %s", cloud.frame_id)
                return False

            tracker.process(cloud, prev_cloud, led.point, cfg.max_error, weight)

            cycles += 1
            if cycles > cfg.max_iterations:
                logger.error("Failed to find features before using maximum iterations.")
                return False

            prev_cloud = cloud

            if self._publish_image is not None:
                for index, t in enumerate(self.trackers):
                    self._publish_image(index, t.get_image())

        camera = Observation(sensor_name=cfg.camera_sensor_name)
        chain = Observation(sensor_name=cfg.chain_sensor_name)
        visual: list[tuple[float, float, float]] = []

        for t, tracker in enumerate(self.trackers):
            rgbd_pt = tracker.get_refined_centroid(cloud)
            if rgbd_pt is None:
                logger.error("No centroid for feature %d", t)
                return False

            try:
                world_pt = self._transform(rgbd_pt, tracker.frame)
            except LookupError:
                logger.error("Failed to transform feature to %s", tracker.frame)
                return False
            distance = distance_points(world_pt.point, tracker.point)
            if distance > cfg.max_error:
                logger.error(
                    "Feature was too far away from expected pose in %s: %g",
                    tracker.frame, distance,
                )
                return False

            for t2 in range(t):
                expected = distance_points(self.trackers[t2].point, tracker.point)
                actual = distance_points(camera.features[t2].point, rgbd_pt.point)
                if abs(expected - actual) > cfg.max_inconsistency:
                    logger.error(
                        "Features not internally consistent: %g %g", expected, actual
                    )
                    return False

            camera.features.append(rgbd_pt)
            camera.ext_camera_info = self._camera_info
            visual.append((rgbd_pt.point.x, rgbd_pt.point.y, rgbd_pt.point.z))

            chain.features.append(
                PointStamped(
                    Point(tracker.point.x, tracker.point.y, tracker.point.z),
                    frame_id=tracker.frame,
                )
            )

        if len(camera.features) != len(self.trackers):
            return False

        if cfg.debug:
            camera.cloud = cloud

        data.observations.append(camera)
        data.observations.append(chain)

        if self._publish is not None:
            self._publish(
                PointCloud(
                    points=np.array(visual, dtype=float).reshape(-1, 3),
                    height=1,
                    frame_id=cloud.frame_id,
                    stamp=cloud.stamp,
                )
            )
        return True