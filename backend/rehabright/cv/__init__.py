"""
Pose analysis core for rehabilitation exercises.

PIPELINE COMPONENTS:
1. landmarks: Provider landmark adapter and frame gating
2. AngleCalculator: Six joint angles with per-session smoothing
3. RepDetector: Self-calibrating hysteresis state machine
4. ExerciseRules: Rule tables, structural checks and per-rep scoring
5. SessionProcessor: Per-session orchestration and sinks
6. VoiceFeedback: Debounced spoken cues, spoken by a shared SpeechWorker
"""

from rehabright.cv.landmarks import (
    Landmark,
    PoseLandmarkIndex,
    landmarks_from_provider,
    is_usable_pose,
)
from rehabright.cv.angle_calculator import AngleCalculator, JointAngles
from rehabright.cv.exercise_rules import (
    ExerciseRules,
    ExerciseType,
    Feedback,
    FeedbackType,
    EvaluationResult,
)
from rehabright.cv.rep_detector import RepDetector, RepDetection, RepPhase
from rehabright.cv.session_processor import (
    FrameResult,
    SessionFeedbackLog,
    SessionProcessor,
    SessionScoreboard,
)
from rehabright.cv.voice import SpeechWorker, VoiceFeedback

__all__ = [
    "Landmark",
    "PoseLandmarkIndex",
    "landmarks_from_provider",
    "is_usable_pose",
    "AngleCalculator",
    "JointAngles",
    "ExerciseRules",
    "ExerciseType",
    "Feedback",
    "FeedbackType",
    "EvaluationResult",
    "RepDetector",
    "RepDetection",
    "RepPhase",
    "FrameResult",
    "SessionFeedbackLog",
    "SessionProcessor",
    "SessionScoreboard",
    "SpeechWorker",
    "VoiceFeedback",
]
