import numpy as np
import pytest

from robocal.messages import (
    CalibrationData,
    CameraInfo,
    JointState,
    LaserScan,
    Observation,
    Point,
    PointCloud,
    PointStamped,
)


def test_position_of_found():
    state = JointState(name=["a", "b", "c"], position=[0.1, -0.8, 0.6])
    assert state.position_of("b") == -0.8
    assert state.position_of("c") == 0.6


def test_position_of_first_duplicate_wins():
    state = JointState(name=["arm_lift_joint", "arm_lift_joint"], position=[0.25, 0.5])
    assert state.position_of("arm_lift_joint") == 0.25


def test_position_of_missing_returns_zero():
    state = JointState(name=["a"], position=[1.0])
    assert state.position_of("missing") == 0.0


def _data():
    return CalibrationData(
        joint_states=JointState(),
        observations=[
            Observation(sensor_name="camera"),
            Observation(sensor_name="arm"),
        ],
    )


def test_sensor_index():
    data = _data()
    assert data.sensor_index("camera") == 0
    assert data.sensor_index("arm") == 1
    assert data.sensor_index("camera2") is None


def test_observation_lookup():
    data = _data()
    assert data.observation("arm") is data.observations[1]
    assert data.observation("nothing") is None


def test_camera_info_projection_matrix_size():
    info = CameraInfo()
    assert len(info.p) == 12
    assert len(info.k) == 9


def test_point_stamped_default_points_independent():
    a = PointStamped()
    b = PointStamped()
    a.point.x = 3.0
    assert b.point == Point()


def test_point_cloud_unorganized_width():
    cloud = PointCloud(points=[[0, 0, 1], [1, 0, 1], [0, 1, 1]], frame_id="cam")
    assert len(cloud) == 3
    assert cloud.height == 1
    assert cloud.width == 3


def test_point_cloud_organized():
    cloud = PointCloud(points=np.zeros((6, 3)), height=2)
    assert cloud.width == 3
    assert cloud.points.shape == (6, 3)


def test_point_cloud_bad_shape_raises():
    with pytest.raises(ValueError):
        PointCloud(points=np.zeros((5, 3)), height=2, width=3)


def test_point_cloud_colors_must_match():
    with pytest.raises(ValueError):
        PointCloud(points=np.zeros((2, 3)), colors=np.zeros((3, 3)))


def test_point_cloud_empty():
    cloud = PointCloud.empty("base_link")
    assert len(cloud) == 0
    assert cloud.frame_id == "base_link"
    assert cloud.height * cloud.width == 0


def test_laser_scan_default_ranges_independent():
    a = LaserScan()
    b = LaserScan()
    a.ranges.append(1.0)
    assert len(b.ranges) == 0