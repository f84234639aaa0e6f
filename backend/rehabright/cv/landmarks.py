"""
Body landmark primitives shared by the analysis pipeline.

The pose provider (BlazePose / MediaPipe Pose) emits 33 normalized
landmarks per camera frame. This module gives them a typed shape and
adapts whatever the provider hands us into that shape. Nothing here
mutates provider data.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, List, Optional, Sequence

import numpy as np


# Full-body pose frame size
NUM_LANDMARKS = 33

# Landmark counts as "visible" strictly above this confidence
VISIBILITY_THRESHOLD = 0.5


class PoseLandmarkIndex(IntEnum):
    """BlazePose landmark indices for quick reference."""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


@dataclass(frozen=True)
class Landmark:
    """Single landmark in normalized image space."""
    x: float  # Normalized x coordinate (0-1)
    y: float  # Normalized y coordinate (0-1), grows downward
    z: float = 0.0  # Depth relative to hips
    visibility: Optional[float] = None  # Confidence score (0-1), None = unknown

    @property
    def is_visible(self) -> bool:
        """Check if landmark has sufficient visibility."""
        return self.visibility is not None and self.visibility > VISIBILITY_THRESHOLD

    def to_array(self) -> np.ndarray:
        """Convert to a 2D numpy vector [x, y]."""
        return np.array([self.x, self.y], dtype=float)


def get_landmark(landmarks: Sequence[Landmark], index: int) -> Optional[Landmark]:
    """Return the landmark at ``index`` if present and visible."""
    if index >= len(landmarks):
        return None
    landmark = landmarks[index]
    if landmark is None or not landmark.is_visible:
        return None
    return landmark


def all_visible(landmarks: Sequence[Landmark], *indices: int) -> bool:
    """True when every landmark in ``indices`` exists and is visible."""
    return all(get_landmark(landmarks, i) is not None for i in indices)


def _read_field(raw: Any, name: str, default: Any = None) -> Any:
    if isinstance(raw, dict):
        return raw.get(name, default)
    return getattr(raw, name, default)


def landmarks_from_provider(raw_landmarks: Optional[Sequence[Any]]) -> List[Landmark]:
    """
    Convert a provider frame into a list of ``Landmark``.

    Accepts MediaPipe landmark objects (attributes ``x, y, z, visibility``)
    or plain mappings with the same keys, e.g. a decoded JSON payload.
    A missing visibility stays ``None`` so the landmark is never visible.
    """
    if not raw_landmarks:
        return []

    landmarks = []
    for raw in raw_landmarks:
        visibility = _read_field(raw, "visibility")
        landmarks.append(Landmark(
            x=float(_read_field(raw, "x", 0.0)),
            y=float(_read_field(raw, "y", 0.0)),
            z=float(_read_field(raw, "z", 0.0) or 0.0),
            visibility=float(visibility) if visibility is not None else None,
        ))
    return landmarks


def is_usable_pose(pose_landmark_count: int, face_landmark_count: int = 0) -> bool:
    """
    Decide whether a provider frame carries a usable body pose.

    Frames with no body landmarks, or with fewer body landmarks than face
    landmarks, are dropped before reaching the analysis core.
    """
    if pose_landmark_count <= 0:
        return False
    return pose_landmark_count >= face_landmark_count
