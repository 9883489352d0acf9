import math

import numpy as np
import pytest

from robocal.led_finder import (
    CloudDifferenceTracker,
    LedConfig,
    LedFinder,
    LedFinderConfig,
    distance_points,
)
from robocal.messages import CalibrationData, Point, PointCloud, PointStamped


def make_cloud(points, colors, height=1, frame_id="camera_frame"):
    return PointCloud(points=points, colors=colors, height=height, frame_id=frame_id)


def identity_transform(point, frame):
    return PointStamped(Point(point.point.x, point.point.y, point.point.z), frame_id=frame)


POINTS = [[1.0, 0.0, 0.0], [0.0, 0.0, 0.0], [0.0, 1.0, 0.0], [2.0, 2.0, 2.0]]


def test_distance_points_is_symmetric_and_zero_on_self():
    a = Point(1.0, 2.0, 3.0)
    b = Point(-1.0, 0.5, 7.0)
    assert distance_points(a, a) == 0.0
    assert distance_points(a, b) == distance_points(b, a)


def test_distance_points_value():
    assert distance_points(Point(0, 0, 0), Point(3, 4, 0)) == pytest.approx(5.0)


def test_reset_clears_scores():
    tracker = CloudDifferenceTracker("gripper", 0, 0, 0)
    tracker.reset(2, 2)
    assert tracker.diff.tolist() == [0.0, 0.0, 0.0, 0.0]
    assert tracker.max_index == -1
    assert tracker.maximum == -1000.0


def test_process_rejects_changed_size():
    tracker = CloudDifferenceTracker("gripper", 0, 0, 0)
    tracker.reset(1, 3)
    cloud = make_cloud(POINTS, np.zeros((4, 3)), height=2)
    assert tracker.process(cloud, cloud, Point(), 0.1, 1.0) is False


def test_process_requires_colours():
    tracker = CloudDifferenceTracker("gripper", 0, 0, 0)
    tracker.reset(2, 2)
    cloud = PointCloud(points=POINTS, height=2)
    with pytest.raises(ValueError):
        tracker.process(cloud, cloud, Point(), 0.1, 1.0)


def test_process_scores_brightened_pixel_near_led():
    tracker = CloudDifferenceTracker("gripper", 0, 0, 0)
    tracker.reset(2, 2)
    prev = make_cloud(POINTS, np.zeros((4, 3)), height=2)
    colors = np.zeros((4, 3))
    colors[1] = (100, 100, 100)
    colors[0] = (100, 100, 100)  # far from the LED, must be ignored
    cloud = make_cloud(POINTS, colors, height=2)

    assert tracker.process(cloud, prev, Point(0, 0, 0), 0.1, 1.0) is True
    assert tracker.max_index == 1
    assert tracker.diff[0] == 0.0
    assert tracker.diff[1] > 0.0
    assert tracker.is_found(cloud, 1.0)
    assert not tracker.is_found(cloud, 1e6)


def test_process_negative_weight_rewards_darkening():
    tracker = CloudDifferenceTracker("gripper", 0, 0, 0)
    tracker.reset(2, 2)
    colors_on = np.zeros((4, 3))
    colors_on[1] = (50, 60, 70)
    on = make_cloud(POINTS, colors_on, height=2)
    off = make_cloud(POINTS, np.zeros((4, 3)), height=2)

    tracker.process(off, on, Point(0, 0, 0), 0.1, -1.0)
    assert tracker.diff[1] > 0.0
    # brightening under a negative weight changes nothing
    before = tracker.diff.copy()
    tracker.process(on, off, Point(0, 0, 0), 0.1, -1.0)
    assert tracker.diff.tolist() == before.tolist()


def test_nan_point_takes_previous_distance():
    tracker = CloudDifferenceTracker("gripper", 0, 0, 0)
    tracker.reset(1, 3)
    points = [[0.0, 0.0, 0.0], [math.nan, math.nan, math.nan], [5.0, 5.0, 5.0]]
    colors = np.zeros((3, 3))
    colors[1] = (10, 10, 10)
    colors[2] = (10, 10, 10)
    prev = make_cloud(points, np.zeros((3, 3)))
    cloud = make_cloud(points, colors)
    tracker.process(cloud, prev, Point(0, 0, 0), 0.1, 1.0)
    assert tracker.diff[1] > 0.0
    assert tracker.diff[2] == 0.0
    # the best pixel has no position, so the LED is not yet found
    assert tracker.max_index == 1
    assert not tracker.is_found(cloud, 1.0)
    assert tracker.get_refined_centroid(cloud) is None


def test_refined_centroid_of_single_hot_point_is_that_point():
    tracker = CloudDifferenceTracker("gripper", 0, 0, 0)
    tracker.reset(2, 2)
    points = [[1.0, 0.0, 0.0], [0.01, 0.02, 0.03], [0.0, 1.0, 0.0], [2.0, 2.0, 2.0]]
    colors = np.zeros((4, 3))
    colors[1] = (100, 100, 100)
    prev = make_cloud(points, np.zeros((4, 3)), height=2)
    cloud = make_cloud(points, colors, height=2)
    tracker.process(cloud, prev, Point(0, 0, 0), 0.1, 1.0)

    centroid = tracker.get_refined_centroid(cloud)
    assert centroid.frame_id == "camera_frame"
    assert centroid.point.x == pytest.approx(0.01)
    assert centroid.point.y == pytest.approx(0.02)
    assert centroid.point.z == pytest.approx(0.03)


def test_refined_centroid_lies_between_close_hot_points():
    tracker = CloudDifferenceTracker("gripper", 0, 0, 0)
    tracker.reset(1, 3)
    points = [[0.0, 0.0, 0.0], [0.02, 0.0, 0.0], [1.0, 1.0, 1.0]]
    colors = np.zeros((3, 3))
    colors[0] = (100, 100, 100)
    colors[1] = (90, 90, 90)
    tracker.process(make_cloud(points, colors), make_cloud(points, np.zeros((3, 3))),
                    Point(0, 0, 0), 0.1, 1.0)
    centroid = tracker.get_refined_centroid(make_cloud(points, colors))
    assert 0.0 < centroid.point.x < 0.02
    assert centroid.point.y == 0.0


def test_get_image_marks_strongest_pixel():
    tracker = CloudDifferenceTracker("gripper", 0, 0, 0)
    tracker.reset(2, 2)
    colors = np.zeros((4, 3))
    colors[1] = (100, 100, 100)
    tracker.process(make_cloud(POINTS, colors, height=2),
                    make_cloud(POINTS, np.zeros((4, 3)), height=2),
                    Point(0, 0, 0), 0.1, 1.0)
    image = tracker.get_image()
    assert image.shape == (2, 2, 3)
    assert image[0, 1].tolist() == [255, 0, 0]
    assert image[0, 0].tolist() == [0, 0, 0]
    assert image[1, 1].tolist() == [0, 0, 0]


class FakeRobot:
    """An LED at the origin seen as pixel 1 of a 1x3 cloud."""

    def __init__(self, led_code=7):
        self.led_code = led_code
        self.commands = []
        self.state = 0

    def set_led(self, code):
        self.commands.append(code)
        self.state = code

    def get_cloud(self):
        colors = np.zeros((3, 3))
        if self.state == self.led_code:
            colors[1] = (200, 200, 200)
        return make_cloud([[1.0, 0.0, 0.0], [0.0, 0.0, 0.0], [0.0, 1.0, 0.0]], colors)


def make_finder(robot, transform=identity_transform, **overrides):
    config = LedFinderConfig(
        gripper_led_frame="gripper",
        leds=[LedConfig(name="led0", code=robot.led_code)],
        **overrides,
    )
    return LedFinder(config, robot.set_led, robot.get_cloud, transform)


def test_find_locates_led():
    robot = FakeRobot()
    published = []
    config = LedFinderConfig(gripper_led_frame="gripper",
                             leds=[LedConfig(name="led0", code=robot.led_code)])
    finder = LedFinder(config, robot.set_led, robot.get_cloud, identity_transform,
                       publish=published.append)
    data = CalibrationData()

    assert finder.find(data) is True
    assert [o.sensor_name for o in data.observations] == ["camera", "arm"]
    camera, chain = data.observations
    assert len(camera.features) == 1
    assert camera.features[0].point == Point(0.0, 0.0, 0.0)
    assert chain.features[0].frame_id == "gripper"
    assert chain.features[0].point == Point(0.0, 0.0, 0.0)
    assert robot.commands[0] == 0
    assert robot.commands[-1] == 0
    assert robot.led_code in robot.commands
    assert len(published) == 1 and len(published[0]) == 1


def test_find_fails_without_cloud():
    finder = LedFinder(
        LedFinderConfig(leds=[LedConfig(name="led0", code=1)]),
        lambda code: None, lambda: None, identity_transform,
    )
    data = CalibrationData()
    assert finder.find(data) is False
    assert data.observations == []


def test_find_gives_up_after_max_iterations():
    robot = FakeRobot()
    finder = make_finder(robot, threshold=1e9, max_iterations=3)
    data = CalibrationData()
    assert finder.find(data) is False
    assert data.observations == []


def test_find_fails_when_transform_missing():
    def no_transform(point, frame):
        raise LookupError("no transform")

    data = CalibrationData()
    assert make_finder(FakeRobot(), transform=no_transform).find(data) is False
    assert data.observations == []


def test_find_rejects_feature_far_from_expected_pose():
    def shifted(point, frame):
        return PointStamped(Point(point.point.x + 1.0, point.point.y, point.point.z),
                            frame_id=frame)

    data = CalibrationData()
    assert make_finder(FakeRobot(), transform=shifted).find(data) is False
    assert data.observations == []


def test_finder_needs_leds():
    with pytest.raises(ValueError):
        LedFinder(LedFinderConfig(), lambda code: None, lambda: None, identity_transform)


def test_codes_alternate_on_and_off():
    config = LedFinderConfig(leds=[LedConfig("a", code=3), LedConfig("b", code=5)])
    finder = LedFinder(config, lambda code: None, lambda: None, identity_transform)
    assert finder.codes == [3, 0, 5, 0]
    assert len(finder.trackers) == 2