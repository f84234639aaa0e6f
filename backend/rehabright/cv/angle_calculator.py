"""
Joint angle computation with temporal smoothing.

Six side-view joint angles are derived from the left side of the body:

    trunk     deviation of hip->shoulder from vertical, 0-90
    hip       trunk vs thigh
    knee      thigh vs shin
    shoulder  trunk vs upper arm
    elbow     upper arm vs forearm
    ankle     shin vs foot

Limb angles use the inverted convention ``180 - acute`` so a fully
extended joint reads ~180 and a deep flexion reads low. Every downstream
threshold is tuned to that convention.

A value of exactly 0 means the angle could not be computed for this frame
(too few landmarks, or a required landmark not visible).

Smoothing memory belongs to one AngleCalculator instance, i.e. one
recording session. Create a new instance (or call ``reset``) whenever a
session starts.
"""

from dataclasses import dataclass, asdict, fields
from typing import Dict, Optional, Sequence

import logging
import numpy as np

from rehabright.cv.landmarks import (
    Landmark,
    NUM_LANDMARKS,
    PoseLandmarkIndex as L,
    get_landmark,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JointAngles:
    """Six joint angles in degrees; 0 means missing."""
    trunk_angle: float = 0.0
    hip_angle: float = 0.0
    knee_angle: float = 0.0
    shoulder_angle: float = 0.0
    elbow_angle: float = 0.0
    ankle_angle: float = 0.0

    @classmethod
    def names(cls):
        return [f.name for f in fields(cls)]

    def get(self, name: str) -> float:
        return getattr(self, name)

    def is_missing(self, name: str) -> bool:
        return self.get(name) == 0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


MISSING_ANGLES = JointAngles()


def angle_between_vectors(v1: np.ndarray, v2: np.ndarray) -> float:
    """Angle between two 2D vectors in degrees, clamped to [0, 180]."""
    mag1 = np.linalg.norm(v1)
    mag2 = np.linalg.norm(v2)
    if mag1 == 0 or mag2 == 0:
        return 0.0

    cos_angle = np.dot(v1, v2) / (mag1 * mag2)
    cos_angle = np.clip(cos_angle, -1.0, 1.0)
    angle = float(np.degrees(np.arccos(cos_angle)))
    return min(180.0, max(0.0, angle))


def _inverted_segment_angle(
    landmarks: Sequence[Landmark],
    first: tuple,
    second: tuple,
) -> float:
    """
    ``180 - acute`` between two segment vectors.

    Each segment is ``(from_index, to_index)``; all four indices must be
    visible or the angle is missing.
    """
    points = {}
    for idx in (*first, *second):
        landmark = get_landmark(landmarks, idx)
        if landmark is None:
            return 0.0
        points[idx] = landmark.to_array()

    v1 = points[first[1]] - points[first[0]]
    v2 = points[second[1]] - points[second[0]]
    return 180.0 - angle_between_vectors(v1, v2)


def trunk_angle(landmarks: Sequence[Landmark]) -> float:
    """Absolute deviation of the hip->shoulder vector from vertical, 0-90."""
    hip = get_landmark(landmarks, L.LEFT_HIP)
    shoulder = get_landmark(landmarks, L.LEFT_SHOULDER)
    if hip is None or shoulder is None:
        return 0.0

    hip_to_shoulder = shoulder.to_array() - hip.to_array()
    # Image y grows downward, so "up" is (0, -1)
    angle = angle_between_vectors(hip_to_shoulder, np.array([0.0, -1.0]))
    return min(90.0, max(0.0, angle))


def hip_angle(landmarks: Sequence[Landmark]) -> float:
    # Trunk continued into the thigh, so an upright stance reads ~180
    return _inverted_segment_angle(
        landmarks, (L.LEFT_SHOULDER, L.LEFT_HIP), (L.LEFT_HIP, L.LEFT_KNEE)
    )


def knee_angle(landmarks: Sequence[Landmark]) -> float:
    return _inverted_segment_angle(
        landmarks, (L.LEFT_HIP, L.LEFT_KNEE), (L.LEFT_KNEE, L.LEFT_ANKLE)
    )


def shoulder_angle(landmarks: Sequence[Landmark]) -> float:
    return _inverted_segment_angle(
        landmarks, (L.LEFT_SHOULDER, L.LEFT_HIP), (L.LEFT_SHOULDER, L.LEFT_ELBOW)
    )


def elbow_angle(landmarks: Sequence[Landmark]) -> float:
    return _inverted_segment_angle(
        landmarks, (L.LEFT_SHOULDER, L.LEFT_ELBOW), (L.LEFT_ELBOW, L.LEFT_WRIST)
    )


def ankle_angle(landmarks: Sequence[Landmark]) -> float:
    return _inverted_segment_angle(
        landmarks, (L.LEFT_KNEE, L.LEFT_ANKLE), (L.LEFT_ANKLE, L.LEFT_FOOT_INDEX)
    )


def compute_raw_angles(landmarks: Sequence[Landmark]) -> JointAngles:
    """Unsmoothed angles for a single frame."""
    if len(landmarks) < NUM_LANDMARKS:
        return MISSING_ANGLES

    return JointAngles(
        trunk_angle=trunk_angle(landmarks),
        hip_angle=hip_angle(landmarks),
        knee_angle=knee_angle(landmarks),
        shoulder_angle=shoulder_angle(landmarks),
        elbow_angle=elbow_angle(landmarks),
        ankle_angle=ankle_angle(landmarks),
    )


class AngleCalculator:
    """
    Session-scoped angle calculator with exponential smoothing.

    ``smoothed = previous * SMOOTHING_FACTOR + raw * (1 - SMOOTHING_FACTOR)``

    The first computed value of each angle passes through unsmoothed.
    A missing (0) raw angle is reported as 0 and does not disturb the
    memory of that angle.
    """

    SMOOTHING_FACTOR = 0.8  # Weight of the previous value

    def __init__(self, smoothing_factor: float = SMOOTHING_FACTOR):
        self.smoothing_factor = smoothing_factor
        self._previous: Dict[str, Optional[float]] = {
            name: None for name in JointAngles.names()
        }
        self.frames_processed = 0

    def calculate(self, landmarks: Sequence[Landmark]) -> JointAngles:
        """Compute smoothed angles for one frame."""
        raw = compute_raw_angles(landmarks)
        self.frames_processed += 1

        smoothed = {}
        for name, value in raw.to_dict().items():
            if value == 0:
                smoothed[name] = 0.0
                continue

            previous = self._previous[name]
            if previous is None:
                result = value
            else:
                result = previous * self.smoothing_factor + value * (1 - self.smoothing_factor)

            self._previous[name] = result
            smoothed[name] = result

        return JointAngles(**smoothed)

    @property
    def has_history(self) -> bool:
        return any(v is not None for v in self._previous.values())

    def reset(self):
        """Drop all smoothing memory."""
        for name in self._previous:
            self._previous[name] = None
        self.frames_processed = 0
        logger.debug("Angle smoothing memory reset")
