"""
Per-session frame pipeline.

PIPELINE (once per provider frame):
1. Drop frames without a usable body pose
2. Joint angles (session-scoped smoothing)
3. Rep detection (every frame)
4. On a freshly completed rep only:
   - score the rep with the exercise rules
   - emit feedback lines to the feedback sink
   - emit (score, flags) to the score sink
   - voice cues, when enabled

The rep is scored on its deepest frame (lowest primary angle between
STARTING and COMPLETE). Everything here runs synchronously inside the
provider callback; nothing blocks or spawns work except the voice sink's
own debounce timer.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import logging

from rehabright.cv.angle_calculator import AngleCalculator, JointAngles, MISSING_ANGLES
from rehabright.cv.exercise_rules import (
    EvaluationResult,
    ExerciseRules,
    ExerciseType,
    Feedback,
    FeedbackType,
)
from rehabright.cv.landmarks import Landmark, is_usable_pose
from rehabright.cv.rep_detector import RepDetection, RepDetector

logger = logging.getLogger(__name__)


FeedbackSink = Callable[[str, FeedbackType, int, int], Any]
ScoreSink = Callable[[int, List[str]], Any]


class SessionFeedbackLog:
    """
    Ordered feedback for one session.

    The same ``(message, rep_number)`` pair is stored once.
    """

    def __init__(self):
        self._entries: List[Feedback] = []
        self._seen = set()

    def add(
        self,
        message: str,
        type: FeedbackType,
        priority: int = 1,
        rep_number: int = 0,
    ) -> bool:
        key = (message, rep_number)
        if key in self._seen:
            logger.debug(f"Duplicate feedback blocked for rep {rep_number}: {message}")
            return False

        self._seen.add(key)
        self._entries.append(Feedback(message, FeedbackType(type), priority, rep_number))
        return True

    __call__ = add

    @property
    def entries(self) -> List[Feedback]:
        return list(self._entries)

    def for_rep(self, rep_number: int) -> List[Feedback]:
        return [f for f in self._entries if f.rep_number == rep_number]

    def clear(self):
        self._entries.clear()
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._entries)


class SessionScoreboard:
    """Running score statistics for one session."""

    def __init__(self):
        self.rep_count = 0
        self.average_score = 0.0
        self.last_rep_score = 0
        self.flags: List[str] = []

    def record(self, score: int, flags: Sequence[str] = ()):
        if self.rep_count == 0:
            self.average_score = float(score)
        else:
            self.average_score = (
                self.average_score * self.rep_count + score
            ) / (self.rep_count + 1)
        self.rep_count += 1
        self.last_rep_score = score
        for flag in flags:
            if flag not in self.flags:
                self.flags.append(flag)

    __call__ = record

    def clear(self):
        self.rep_count = 0
        self.average_score = 0.0
        self.last_rep_score = 0
        self.flags = []


@dataclass
class FrameResult:
    """Outcome of one processed frame."""
    accepted: bool
    angles: JointAngles
    detection: Optional[RepDetection]
    rep_completed: bool = False
    evaluation: Optional[EvaluationResult] = None
    feedback: List[Feedback] = field(default_factory=list)

    @property
    def score(self) -> Optional[int]:
        return self.evaluation.score.overall if self.evaluation else None

    @property
    def flags(self) -> List[str]:
        return list(self.evaluation.score.flags) if self.evaluation else []


class SessionProcessor:
    """
    Owns the analysis state of exactly one recording session.

    Args:
        exercise: ExerciseType or identifier
        feedback_sink: callable(message, type, priority, rep_number);
            defaults to an internal SessionFeedbackLog
        score_sink: callable(score, flags); defaults to an internal
            SessionScoreboard
        voice: optional VoiceFeedback-like object
        voice_enabled: caller-held toggle for voice cues
        clock: millisecond clock for the rep detector
    """

    def __init__(
        self,
        exercise,
        feedback_sink: Optional[FeedbackSink] = None,
        score_sink: Optional[ScoreSink] = None,
        voice=None,
        voice_enabled: bool = True,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.exercise = ExerciseType.parse(exercise)
        self.angle_calculator = AngleCalculator()
        self.rep_detector = RepDetector(self.exercise, clock=clock)

        self.feedback_log = SessionFeedbackLog()
        self.scoreboard = SessionScoreboard()
        self._feedback_sink = feedback_sink or self.feedback_log
        self._score_sink = score_sink or self.scoreboard

        self.voice = voice
        self.voice_enabled = voice_enabled

        self.frames_received = 0
        self.frames_dropped = 0
        self.last_angles: JointAngles = MISSING_ANGLES
        self.last_detection: Optional[RepDetection] = None
        self.last_evaluation: Optional[EvaluationResult] = None

        self._peak_frame: Optional[Tuple[JointAngles, Sequence[Landmark]]] = None
        self._closed = False

    def process_frame(
        self,
        landmarks: Sequence[Landmark],
        timestamp_ms: Optional[float] = None,
        face_landmark_count: int = 0,
    ) -> FrameResult:
        """Run one provider frame through the pipeline."""
        self.frames_received += 1

        if not is_usable_pose(len(landmarks), face_landmark_count):
            self.frames_dropped += 1
            return FrameResult(
                accepted=False,
                angles=self.last_angles,
                detection=self.last_detection,
            )

        angles = self.angle_calculator.calculate(landmarks)
        self.last_angles = angles

        detection = self.rep_detector.update(angles, landmarks, timestamp_ms)
        self.last_detection = detection

        if self.rep_detector.is_rep_in_progress or detection.rep_completed:
            self._track_peak(angles, landmarks)

        result = FrameResult(accepted=True, angles=angles, detection=detection)

        if detection.rep_completed:
            peak_angles, peak_landmarks = self._peak_frame or (angles, landmarks)
            self._peak_frame = None
            self._on_rep_completed(detection, peak_angles, peak_landmarks, result)
        elif not self.rep_detector.is_rep_in_progress:
            self._peak_frame = None

        return result

    def _track_peak(self, angles: JointAngles, landmarks: Sequence[Landmark]):
        primary = self.rep_detector.profile.primary
        value = angles.get(primary)
        if value == 0:
            return
        if self._peak_frame is None or value < self._peak_frame[0].get(primary):
            self._peak_frame = (angles, list(landmarks))

    def _on_rep_completed(
        self,
        detection: RepDetection,
        angles: JointAngles,
        landmarks: Sequence[Landmark],
        result: FrameResult,
    ):
        rep_number = detection.rep_count
        evaluation = ExerciseRules.evaluate(self.exercise, angles, landmarks)
        self.last_evaluation = evaluation

        logger.info(
            f"Rep {rep_number} scored {evaluation.score.overall} "
            f"flags={evaluation.score.flags}"
        )

        if self.voice_enabled and self.voice is not None:
            self.voice.speak_rep_count(rep_number)

        for item in evaluation.feedback:
            self._feedback_sink(item.message, item.type, item.priority, rep_number)
            if self.voice_enabled and self.voice is not None:
                self.voice.speak_exercise_cue(self.exercise.display_name, item.message)

        self._score_sink(evaluation.score.overall, list(evaluation.score.flags))

        result.rep_completed = True
        result.evaluation = evaluation
        result.feedback = [item.for_rep(rep_number) for item in evaluation.feedback]

    def feature_summary(self) -> Dict[str, Any]:
        """Numeric-only snapshot for the text-generation summary."""
        evaluation = self.last_evaluation
        return {
            "exercise": self.exercise.value,
            "angles": self.last_angles.to_dict(),
            "flags": list(evaluation.score.flags) if evaluation else [],
            "score": evaluation.score.overall if evaluation else 0,
            "rep_count": self.rep_detector.rep_count,
        }

    def reset(self):
        """Start a new recording: no state survives from the previous one."""
        self.angle_calculator.reset()
        self.rep_detector.reset()
        self.feedback_log.clear()
        self.scoreboard.clear()
        self.last_angles = MISSING_ANGLES
        self.last_detection = None
        self.last_evaluation = None
        self._peak_frame = None
        self.frames_received = 0
        self.frames_dropped = 0

    def recalibrate(self):
        self.rep_detector.recalibrate()
        self._peak_frame = None

    def close(self):
        """End the session and stop the voice sink's timer."""
        if self._closed:
            return
        self._closed = True
        if self.voice is not None:
            self.voice.stop()
        logger.info(
            f"Session closed ({self.exercise.value}): {self.rep_detector.rep_count} reps, "
            f"{self.frames_received} frames, {self.frames_dropped} dropped"
        )
