"""Kinematic models, residual terms and feature finders for robot calibration."""

__version__ = "0.1.0"