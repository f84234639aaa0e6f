"""
Rule-based form scoring for a completed repetition.

Each exercise is a tagged variant (``ExerciseType``) with an immutable rule
table: one ``ExerciseRule`` per scored quantity, weights summing to 1.0.
Structural checks (knee valgus, chin over bar, swinging) run alongside the
angle rules and read landmark geometry directly.

The engine is stateless: ``ExerciseRules.evaluate`` is invoked once per
completed rep and returns a 0-100 score, a per-rule breakdown, flags and
feedback lines. Deduplication of feedback happens at the session sink.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from rehabright.cv.angle_calculator import JointAngles
from rehabright.cv.landmarks import (
    Landmark,
    PoseLandmarkIndex as L,
    all_visible,
    get_landmark,
)


class ExerciseType(str, Enum):
    """Supported exercises."""
    SQUAT = "squat"
    PULLUP = "pullup"

    @property
    def display_name(self) -> str:
        return "Squat" if self is ExerciseType.SQUAT else "Pull-up"

    @classmethod
    def parse(cls, value) -> "ExerciseType":
        """Accept ``squat``, ``pullup``, ``pull-up`` or ``pull_up``."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "").replace("_", "")
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"exercise must be one of: {[m.value for m in cls]}")


class FeedbackType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Feedback:
    """One coaching line; ``rep_number`` is attached by the session."""
    message: str
    type: FeedbackType
    priority: int
    rep_number: Optional[int] = None

    def for_rep(self, rep_number: int) -> "Feedback":
        return Feedback(self.message, self.type, self.priority, rep_number)


@dataclass(frozen=True)
class FeedbackTrigger:
    """Emit ``message`` when a rule score is below/above a threshold."""
    threshold: float
    message: str
    type: FeedbackType
    priority: int
    above: bool = False

    def fires(self, score: float) -> bool:
        return score > self.threshold if self.above else score < self.threshold


@dataclass(frozen=True)
class ExerciseRule:
    """Static scoring configuration for one quantity."""
    name: str
    description: str
    min: float
    max: float
    optimal: float
    weight: float
    landmarks: Tuple[int, ...] = ()
    triggers: Tuple[FeedbackTrigger, ...] = ()


@dataclass
class ExerciseScore:
    overall: int
    breakdown: Dict[str, float] = field(default_factory=dict)
    flags: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


@dataclass
class EvaluationResult:
    score: ExerciseScore
    feedback: List[Feedback] = field(default_factory=list)


# =========================================================
# Rule tables
# =========================================================

SQUAT_RULES: Mapping[str, ExerciseRule] = MappingProxyType({
    "trunk_angle": ExerciseRule(
        name="Trunk Upright",
        description="Keep your chest up and back straight",
        min=0, max=25, optimal=10,
        weight=0.3,
        landmarks=(L.LEFT_HIP, L.LEFT_SHOULDER),
        triggers=(
            FeedbackTrigger(0.7, "Keep chest up", FeedbackType.WARNING, 2),
        ),
    ),
    "hip_angle": ExerciseRule(
        name="Hip Depth",
        description="Go deep enough to break parallel",
        min=50, max=130, optimal=90,
        weight=0.4,
        landmarks=(L.LEFT_HIP, L.LEFT_KNEE, L.LEFT_SHOULDER),
        triggers=(
            FeedbackTrigger(0.6, "Go deeper", FeedbackType.WARNING, 1),
            FeedbackTrigger(0.9, "Good depth!", FeedbackType.INFO, 3, above=True),
        ),
    ),
    "knee_angle": ExerciseRule(
        name="Knee Position",
        description="Keep knees in line with toes",
        min=60, max=150, optimal=110,
        weight=0.3,
        landmarks=(L.LEFT_HIP, L.LEFT_KNEE, L.LEFT_ANKLE),
        triggers=(
            FeedbackTrigger(0.7, "Push knees out", FeedbackType.WARNING, 2),
        ),
    ),
})

PULLUP_RULES: Mapping[str, ExerciseRule] = MappingProxyType({
    "shoulder_angle": ExerciseRule(
        name="Shoulder Position",
        description="Keep shoulders engaged and stable",
        min=0, max=30, optimal=15,
        weight=0.4,
        landmarks=(L.LEFT_SHOULDER, L.LEFT_ELBOW, L.LEFT_HIP),
        triggers=(
            FeedbackTrigger(0.7, "Keep shoulders engaged", FeedbackType.WARNING, 2),
        ),
    ),
    "elbow_angle": ExerciseRule(
        name="Elbow Flexion",
        description="Pull with your back, not just arms",
        min=60, max=120, optimal=90,
        weight=0.3,
        landmarks=(L.LEFT_SHOULDER, L.LEFT_ELBOW, L.LEFT_WRIST),
        triggers=(
            FeedbackTrigger(0.7, "Pull with your back", FeedbackType.WARNING, 2),
        ),
    ),
    # Scored structurally from nose/shoulder height, not from an angle
    "chin_over_bar": ExerciseRule(
        name="Chin Over Bar",
        description="Pull your chin above the bar",
        min=0, max=5, optimal=2,
        weight=0.3,
        landmarks=(L.NOSE, L.LEFT_SHOULDER, L.RIGHT_SHOULDER),
        triggers=(
            FeedbackTrigger(0.7, "Pull chin over bar", FeedbackType.WARNING, 1),
        ),
    ),
})

RULE_TABLES: Mapping[ExerciseType, Mapping[str, ExerciseRule]] = MappingProxyType({
    ExerciseType.SQUAT: SQUAT_RULES,
    ExerciseType.PULLUP: PULLUP_RULES,
})


# =========================================================
# Scoring
# =========================================================

def evaluate_angle(angle: float, rule: ExerciseRule) -> float:
    """
    Score an angle against a rule, 0-1.

    Inside [min, max]: tiered by distance from optimal relative to half
    the range (<=20% 1.0, <=40% 0.9, <=60% 0.8, <=80% 0.7, else 0.6).
    Outside: 0.5 at the boundary, falling 0.05 per degree, floored at 0.
    """
    if rule.min <= angle <= rule.max:
        max_distance = (rule.max - rule.min) / 2
        distance = abs(angle - rule.optimal)

        if distance <= max_distance * 0.2:
            return 1.0
        if distance <= max_distance * 0.4:
            return 0.9
        if distance <= max_distance * 0.6:
            return 0.8
        if distance <= max_distance * 0.8:
            return 0.7
        return 0.6

    if angle < rule.min:
        distance = rule.min - angle
    else:
        distance = angle - rule.max
    return max(0.0, 0.5 - distance / 10)


class StructuralCheck:
    """Base class for binary form checks on landmark geometry."""

    name: str = "base_check"
    flag: str = ""
    feedback: Optional[Feedback] = None
    required: Tuple[int, ...] = ()

    def applies(self, landmarks: Sequence[Landmark]) -> bool:
        return all_visible(landmarks, *self.required)

    def detect(self, landmarks: Sequence[Landmark]) -> bool:
        raise NotImplementedError


class KneeValgusCheck(StructuralCheck):
    """Knees caving in: knee separation < 80% of ankle separation."""

    name = "knee_valgus"
    flag = "Knee valgus detected"
    feedback = Feedback("Keep knees in line with toes", FeedbackType.ERROR, 1)
    required = (L.LEFT_KNEE, L.RIGHT_KNEE, L.LEFT_ANKLE, L.RIGHT_ANKLE)

    RATIO = 0.8

    def detect(self, landmarks: Sequence[Landmark]) -> bool:
        knee_distance = abs(landmarks[L.LEFT_KNEE].x - landmarks[L.RIGHT_KNEE].x)
        ankle_distance = abs(landmarks[L.LEFT_ANKLE].x - landmarks[L.RIGHT_ANKLE].x)
        return knee_distance < ankle_distance * self.RATIO


class SwingingCheck(StructuralCheck):
    """Hip midpoint drifting far from the frame center."""

    name = "swinging"
    flag = "Swinging detected"
    feedback = Feedback("Control the movement", FeedbackType.ERROR, 1)
    required = (L.LEFT_HIP, L.RIGHT_HIP)

    MAX_OFFSET = 0.3

    def detect(self, landmarks: Sequence[Landmark]) -> bool:
        hip_center = (landmarks[L.LEFT_HIP].x + landmarks[L.RIGHT_HIP].x) / 2
        return abs(hip_center - 0.5) > self.MAX_OFFSET


def chin_over_bar_score(landmarks: Sequence[Landmark]) -> Optional[float]:
    """
    Nose height relative to the shoulder midline.

    Above -> 1.0, less than 0.1 below -> 0.7, further below -> 0.3.
    None when nose or shoulders are not visible.
    """
    nose = get_landmark(landmarks, L.NOSE)
    left = get_landmark(landmarks, L.LEFT_SHOULDER)
    right = get_landmark(landmarks, L.RIGHT_SHOULDER)
    if nose is None or left is None or right is None:
        return None

    shoulder_center = (left.y + right.y) / 2
    if nose.y < shoulder_center:
        return 1.0
    if nose.y < shoulder_center + 0.1:
        return 0.7
    return 0.3


STRUCTURAL_CHECKS: Mapping[ExerciseType, Tuple[StructuralCheck, ...]] = MappingProxyType({
    ExerciseType.SQUAT: (KneeValgusCheck(),),
    ExerciseType.PULLUP: (SwingingCheck(),),
})


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ExerciseRules:
    """Stateless scoring engine over the rule tables."""

    @staticmethod
    def rules_for(exercise) -> Mapping[str, ExerciseRule]:
        return RULE_TABLES[ExerciseType.parse(exercise)]

    @classmethod
    def evaluate(
        cls,
        exercise,
        angles: JointAngles,
        landmarks: Sequence[Landmark],
    ) -> EvaluationResult:
        """
        Score one completed rep.

        A rule whose landmarks are not visible scores 0, is listed in
        ``score.missing`` and emits no feedback. Structural checks whose
        landmarks are not visible are skipped.
        """
        exercise = ExerciseType.parse(exercise)
        rules = RULE_TABLES[exercise]

        breakdown: Dict[str, float] = {}
        missing: List[str] = []
        feedback: List[Feedback] = []
        flags: List[str] = []
        total = 0.0

        for key, rule in rules.items():
            if key == "chin_over_bar":
                score = chin_over_bar_score(landmarks)
            elif all_visible(landmarks, *rule.landmarks):
                score = evaluate_angle(angles.get(key), rule)
            else:
                score = None

            if score is None:
                breakdown[key] = 0.0
                missing.append(key)
                continue

            breakdown[key] = score
            total += score * rule.weight

            for trigger in rule.triggers:
                if trigger.fires(score):
                    feedback.append(Feedback(trigger.message, trigger.type, trigger.priority))
                    break

        for check in STRUCTURAL_CHECKS[exercise]:
            if check.applies(landmarks) and check.detect(landmarks):
                flags.append(check.flag)
                feedback.append(check.feedback)

        return EvaluationResult(
            score=ExerciseScore(
                overall=_round_half_up(total * 100),
                breakdown=breakdown,
                flags=flags,
                missing=missing,
            ),
            feedback=feedback,
        )

    @classmethod
    def evaluate_squat(cls, angles: JointAngles, landmarks: Sequence[Landmark]) -> EvaluationResult:
        return cls.evaluate(ExerciseType.SQUAT, angles, landmarks)

    @classmethod
    def evaluate_pullup(cls, angles: JointAngles, landmarks: Sequence[Landmark]) -> EvaluationResult:
        return cls.evaluate(ExerciseType.PULLUP, angles, landmarks)
