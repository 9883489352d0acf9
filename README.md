# robocal

robocal holds the building blocks for calibrating a robot that carries 3D
sensors: kinematic chain and depth-camera models, residual terms that compare
what different sensors observe, and finders that turn point clouds and laser
scans into calibration observations.

## Installation

```
pip install robocal
```

The only runtime dependency is numpy.

## What is inside

- `robocal.geometry`: the rigid transform `Frame` (`identity`, `*`,
  `inverse`, `transform_point`) and rotation helpers
  `rotation_from_rpy`, `rotation_from_quaternion`,
  `quaternion_from_rotation`, `rotation_from_axis_magnitude` and
  `axis_magnitude_from_rotation`. `fit_plane` returns a unit normal and
  offset `d` of the least-squares plane through a set of points; `centroid`
  returns their mean.
- `robocal.messages`: data classes `Point`, `PointStamped`, `JointState`,
  `CameraInfo`, `CameraParameter`, `ExtendedCameraInfo`, `Observation`,
  `CalibrationData`, `PointCloud` and `LaserScan`.
- `robocal.offsets`: `OptimizationOffsets` records which single parameters
  (`add`) and frame corrections (`add_frame`) are free, maps a free-parameter
  vector back onto them (`update`, `initialize`), and keeps their values
  across `reset()` so that several calibration steps can build on each other.
- `robocal.models`: `KinematicTree`, `Segment`, `Joint` and `JointType`
  describe a robot; `Chain3dModel` and `Camera3dModel` project a sensor's
  observed features into a common root frame with the current offsets
  applied. Building a model over links that are not connected raises
  `ValueError`.
- `robocal.chain_errors`: `Chain3dToChain3d`, `Chain3dToMesh` (with `Mesh`
  and `dist_to_line`) and `Chain3dToPlane`.
- `robocal.error_terms`: `HardIronOffsetError`, `OutrageousError` and
  `PlaneToPlaneError`.
- `robocal.base_calibration`: `BaseCalibration` aligns a mobile base with a
  wall seen by a laser, spins it, and from the recorded odometry, gyro and
  scan angles reports corrected track-width and gyro-scale values
  (`calibration_report`). Velocity commands, waiting and incoming sensor data
  are supplied by the caller as callables and `on_odometry`, `on_imu` and
  `on_scan` calls.
- `robocal.led_finder`, `robocal.plane_finder`, `robocal.scan_finder`:
  `LedFinder`, `PlaneFinder`, `RobotFinder` and `ScanFinder`, with their
  config data classes. Each appends observations to a `CalibrationData`
  record. Coordinate transforms, LED switching, cloud capture and publishing
  are passed in as callables; a transform signals a missing transform by
  raising `LookupError`.

## Examples

Offsets over several steps:

```python
from robocal.offsets import OptimizationOffsets

offsets = OptimizationOffsets()
offsets.add("first_step_joint1")
offsets.add("first_step_joint2")
offsets.update([0.245, 0.44])

offsets.get("first_step_joint1")   # 0.245
offsets.size()                     # 2

offsets.reset()                    # keep values, clear free parameters
offsets.add("second_step_joint1")
offsets.update([0.49])
offsets.get("first_step_joint1")   # still 0.245
```

A small chain model:

```python
from robocal.geometry import Frame
from robocal.models import Chain3dModel, Joint, JointType, KinematicTree, Segment

tree = KinematicTree("link_0")
tree.add_segment("link_0", "link_1", Segment(Joint("first_joint"), Frame(position=[1, 1, 1])))
tree.add_segment(
    "link_1", "link_2",
    Segment(Joint("second_joint", JointType.ROTATIONAL, (0.0, 0.0, 1.0))),
)

arm = Chain3dModel("arm", tree, "link_0", "link_2")
```

Each residual term is a callable: it takes the free-parameter vector
(`HardIronOffsetError` takes its four own parameters instead) and returns a
numpy array of residuals, ready for a least-squares solver.

## What the package does not do

- It has no optimizer. The residual terms are meant to be handed to a
  least-squares solver of your choice.
- It does not read robot descriptions or mesh files; trees and meshes are
  built in code with `KinematicTree` and `Mesh`.
- It does not talk to sensors, motors or a middleware. Everything that
  captures data, moves the robot or looks up transforms is supplied by the
  caller.
- It has no command-line program.

## Running the tests

```
pip install -e .[test]
pytest
```