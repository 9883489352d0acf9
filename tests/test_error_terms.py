import pytest

from robocal.error_terms import HardIronOffsetError, OutrageousError, PlaneToPlaneError
from robocal.messages import CalibrationData, Observation, Point, PointStamped
from robocal.models import Chain3dModel, KinematicTree
from robocal.offsets import OptimizationOffsets


def test_hard_iron_zero_on_sphere():
    error = HardIronOffsetError(3.0, 4.0, 0.0)
    assert error([5.0, 0.0, 0.0, 0.0])[0] == pytest.approx(0.0)


def test_hard_iron_zero_on_shifted_sphere():
    error = HardIronOffsetError(4.0, 4.0, 0.0)
    assert error([5.0, 1.0, 0.0, 0.0])[0] == pytest.approx(0.0)


def test_hard_iron_sign_inside_and_outside():
    error = HardIronOffsetError(1.0, 0.0, 0.0)
    assert error([2.0, 0.0, 0.0, 0.0])[0] < 0.0
    assert error([0.5, 0.0, 0.0, 0.0])[0] > 0.0


def test_outrageous_joint_only():
    offsets = OptimizationOffsets()
    offsets.add("joint")
    error = OutrageousError(offsets, "joint", 2.0, 1.0, 1.0)
    residuals = error([0.25])
    assert len(residuals) == 7
    assert residuals[0] == pytest.approx(0.5)
    assert list(residuals[1:]) == [0.0] * 6
    assert offsets.get("joint") == 0.25


def test_outrageous_frame():
    offsets = OptimizationOffsets()
    offsets.add_frame("frame", True, True, True, True, True, True)
    error = OutrageousError(offsets, "frame", 1.0, 0.1, 0.1)
    residuals = error([0.1, -0.2, 0.3, 0.0, 0.0, -0.5])
    assert residuals[0] == 0.0
    assert residuals[1] == pytest.approx(0.1 * 0.1)
    assert residuals[2] == pytest.approx(0.1 * -0.2)
    assert residuals[3] == pytest.approx(0.1 * 0.3)
    assert residuals[4] == pytest.approx(0.0, abs=1e-9)
    assert residuals[5] == pytest.approx(0.0, abs=1e-9)
    assert residuals[6] == pytest.approx(0.1 * 0.5)


def _plane_data(z_a, z_b):
    coords = [(0.0, 0.0), (1.0, 0.0), (0.0, 1.0), (1.0, 1.0), (0.5, 0.3)]
    obs_a = Observation(
        sensor_name="a",
        features=[PointStamped(Point(x, y, z_a), frame_id="base") for x, y in coords],
    )
    obs_b = Observation(
        sensor_name="b",
        features=[PointStamped(Point(x, y, z_b), frame_id="base") for x, y in coords],
    )
    return CalibrationData(observations=[obs_a, obs_b])


def _models():
    tree = KinematicTree("base")
    return Chain3dModel("a", tree, "base", "base"), Chain3dModel("b", tree, "base", "base")


def test_plane_to_plane_identical_planes():
    model_a, model_b = _models()
    offsets = OptimizationOffsets()
    error = PlaneToPlaneError(model_a, model_b, offsets, _plane_data(1.0, 1.0), 1.0, 1.0)
    residuals = error([])
    assert len(residuals) == 4
    assert residuals == pytest.approx([0.0, 0.0, 0.0, 0.0], abs=1e-9)


def test_plane_to_plane_parallel_offset():
    model_a, model_b = _models()
    offsets = OptimizationOffsets()
    error = PlaneToPlaneError(model_a, model_b, offsets, _plane_data(1.0, 2.0), 1.0, 2.0)
    residuals = error([])
    assert residuals[:3] == pytest.approx([0.0, 0.0, 0.0], abs=1e-9)
    assert residuals[3] == pytest.approx(2.0)


def test_plane_to_plane_updates_offsets():
    model_a, model_b = _models()
    offsets = OptimizationOffsets()
    offsets.add("unused")
    error = PlaneToPlaneError(model_a, model_b, offsets, _plane_data(1.0, 1.0), 1.0, 1.0)
    error([0.7])
    assert offsets.get("unused") == 0.7