"""Shared pose builders for the test suite."""

import math

import pytest

from rehabright.cv.angle_calculator import JointAngles
from rehabright.cv.landmarks import Landmark, NUM_LANDMARKS, PoseLandmarkIndex as L


# Side view, standing upright, knees in line with ankles
STANDING_POINTS = {
    L.NOSE: (0.55, 0.18),
    L.LEFT_SHOULDER: (0.5434, 0.3038),
    L.RIGHT_SHOULDER: (0.50, 0.30),
    L.LEFT_ELBOW: (0.55, 0.45),
    L.RIGHT_ELBOW: (0.51, 0.45),
    L.LEFT_WRIST: (0.58, 0.58),
    L.RIGHT_WRIST: (0.54, 0.58),
    L.LEFT_HIP: (0.50, 0.55),
    L.RIGHT_HIP: (0.46, 0.55),
    L.LEFT_KNEE: (0.50, 0.75),
    L.RIGHT_KNEE: (0.43, 0.75),
    L.LEFT_ANKLE: (0.50, 0.95),
    L.RIGHT_ANKLE: (0.42, 0.95),
    L.LEFT_FOOT_INDEX: (0.58, 0.95),
    L.RIGHT_FOOT_INDEX: (0.50, 0.95),
}

HIP = STANDING_POINTS[L.LEFT_HIP]
TRUNK_LENGTH = 0.25


def build_pose(points=None, visibility=0.9, hidden=()):
    """33 landmarks; unspecified points sit at the image center."""
    merged = dict(STANDING_POINTS)
    merged.update(points or {})

    landmarks = []
    for index in range(NUM_LANDMARKS):
        x, y = merged.get(index, (0.5, 0.5))
        landmarks.append(Landmark(
            x=x,
            y=y,
            z=0.0,
            visibility=0.0 if index in hidden else visibility,
        ))
    return landmarks


def squat_pose(hip_angle: float, **kwargs):
    """
    Pose whose (left) hip angle equals ``hip_angle``.

    The trunk rotates forward around the hip; the leg stays straight and
    vertical so the knee angle reads 180.
    """
    lean = math.radians(180.0 - hip_angle)
    shoulder = (
        HIP[0] + TRUNK_LENGTH * math.sin(lean),
        HIP[1] - TRUNK_LENGTH * math.cos(lean),
    )
    points = dict(kwargs.pop("points", None) or {})
    points.setdefault(L.LEFT_SHOULDER, shoulder)
    return build_pose(points=points, **kwargs)


def squat_angles(hip: float, knee: float = None, trunk: float = 10.0) -> JointAngles:
    return JointAngles(
        trunk_angle=trunk,
        hip_angle=hip,
        knee_angle=hip + 5.0 if knee is None else knee,
    )


def pullup_angles(elbow: float, shoulder: float = 15.0) -> JointAngles:
    return JointAngles(elbow_angle=elbow, shoulder_angle=shoulder)


@pytest.fixture
def make_pose():
    return build_pose


@pytest.fixture
def make_squat_pose():
    return squat_pose
