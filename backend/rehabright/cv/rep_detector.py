"""
Repetition detection with self-calibration and hysteresis.

One RepDetector per session. Each processed frame feeds the six joint
angles into a state machine:

    IDLE -> STARTING -> PEAK -> ENDING -> COMPLETE -> IDLE

CALIBRATION (first 25 usable frames):
- Frames 1-15: running mean of the standing primary/secondary angle
  (hip/knee for squats).
- Frames 16-25: when either angle moves more than 15 degrees from the
  standing mean, the observed primary angle updates the depth estimate
  (``depth = 0.8 * depth + 0.2 * observed``).
- Squat sessions with no observed movement fall back to
  ``max(60, standing - 80)``.

Three thresholds follow from calibration, with
``range = standing - depth``:

    standing_threshold = standing - 0.2 * range
    depth_threshold    = depth + 0.2 * range
    mid_threshold      = (standing_threshold + depth_threshold) / 2

Every transition requires 200ms since the previous one. A rep counts only
if STARTING -> COMPLETE took 1-20 seconds; otherwise COMPLETE is still
entered so the machine keeps moving. A phase held for more than 5 seconds
forces a completion attempt.

Pull-ups track elbow flexion with the same hysteresis structure. Their
thresholds come only from calibration data: when no flexion is observed
during calibration, pull-up counting stays disabled until recalibration.
"""

import time
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional, Sequence

import logging
import numpy as np

from rehabright.cv.angle_calculator import JointAngles
from rehabright.cv.exercise_rules import ExerciseType
from rehabright.cv.landmarks import Landmark

logger = logging.getLogger(__name__)


class RepPhase(str, Enum):
    """Phases of a single repetition."""
    IDLE = "idle"
    STARTING = "starting"   # Leaving the start position
    PEAK = "peak"           # At depth / top of the pull
    ENDING = "ending"       # Returning
    COMPLETE = "complete"   # Cycle closed, waiting to re-arm


@dataclass(frozen=True)
class MotionProfile:
    """Which angles drive the state machine for an exercise."""
    primary: str
    secondary: Optional[str] = None
    default_depth: bool = False


MOTION_PROFILES: Dict[ExerciseType, MotionProfile] = {
    ExerciseType.SQUAT: MotionProfile("hip_angle", "knee_angle", default_depth=True),
    ExerciseType.PULLUP: MotionProfile("elbow_angle"),
}


@dataclass
class CalibrationState:
    """Per-session baselines accumulated during the warm-up frames."""
    frames: int = 0
    standing_angle: float = 0.0
    standing_secondary_angle: float = 0.0
    secondary_samples: int = 0
    depth_angle: float = 0.0
    depth_observed: bool = False
    is_calibrated: bool = False

    # Derived on completion
    standing_threshold: float = 0.0
    depth_threshold: float = 0.0
    mid_threshold: float = 0.0

    @property
    def range(self) -> float:
        return self.standing_angle - self.depth_angle

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_calibrated": self.is_calibrated,
            "calibration_frames": self.frames,
            "standing_angle": self.standing_angle,
            "standing_secondary_angle": self.standing_secondary_angle,
            "depth_angle": self.depth_angle,
            "depth_observed": self.depth_observed,
            "standing_threshold": self.standing_threshold,
            "depth_threshold": self.depth_threshold,
            "mid_threshold": self.mid_threshold,
        }


@dataclass(frozen=True)
class RepDetection:
    """Snapshot returned for every frame."""
    phase: RepPhase
    rep_count: int
    confidence: float
    last_transition_time: Optional[float]
    average_tempo_ms: float
    is_calibrated: bool
    counting_supported: bool = True
    rep_completed: bool = False
    forced_completion: bool = False


@dataclass
class RepDetectionState:
    phase: RepPhase = RepPhase.IDLE
    rep_count: int = 0
    confidence: float = 0.0
    consecutive_frames: int = 0
    last_transition_time: Optional[float] = None
    rep_start_time: Optional[float] = None
    tempo_history: Deque[float] = field(default_factory=lambda: deque(maxlen=RepDetector.TEMPO_HISTORY))
    invalid_reps: int = 0
    forced_completions: int = 0
    last_completion_forced: bool = False


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class RepDetector:
    """
    Calibrating, hysteresis-based rep counter.

    ``update`` never raises for bad data: missing angles (0) are skipped and
    the returned RepDetection is always well-formed.
    """

    # Calibration
    CALIBRATION_FRAMES = 25
    STANDING_CALIBRATION_FRAMES = 15
    CALIBRATION_MOVEMENT_DEGREES = 15.0
    DEPTH_SMOOTHING = 0.8          # Weight of the previous depth estimate
    DEFAULT_MIN_DEPTH = 60.0
    DEFAULT_DEPTH_OFFSET = 80.0
    THRESHOLD_FRACTION = 0.2       # Share of the range kept as margin at each end

    # Hysteresis
    PRIMARY_HYSTERESIS = 5.0       # degrees
    SECONDARY_HYSTERESIS = 8.0     # degrees

    # Timing
    UPDATE_THROTTLE_MS = 50
    TRANSITION_DEBOUNCE_MS = 200
    STUCK_STATE_TIMEOUT_MS = 5000
    MIN_REP_DURATION_MS = 1000
    MAX_REP_DURATION_MS = 20000

    # Statistics
    TEMPO_HISTORY = 10
    CONFIDENCE_FRAMES = 15

    def __init__(self, exercise, clock: Optional[Callable[[], float]] = None):
        """
        Args:
            exercise: ExerciseType or its string identifier
            clock: Millisecond clock used when ``update`` gets no timestamp
        """
        self.exercise = ExerciseType.parse(exercise)
        self.profile = MOTION_PROFILES[self.exercise]
        self._clock = clock or _monotonic_ms

        self.calibration = CalibrationState()
        self.state = RepDetectionState()
        self.counting_supported = True

        self._last_update_time: Optional[float] = None
        self._last_detection: Optional[RepDetection] = None
        self._transitioned = False
        self._completed = False

    # =========================================================
    # Public API
    # =========================================================

    def update(
        self,
        angles: JointAngles,
        landmarks: Optional[Sequence[Landmark]] = None,
        timestamp_ms: Optional[float] = None,
    ) -> RepDetection:
        """Process one frame of angles and return the current detection."""
        now = self._clock() if timestamp_ms is None else float(timestamp_ms)

        if self._last_update_time is not None and now < self._last_update_time:
            self._rebase_clock(now)
        elif (
            self._last_update_time is not None
            and self._last_detection is not None
            and now - self._last_update_time < self.UPDATE_THROTTLE_MS
        ):
            return replace(self._last_detection, rep_completed=False)

        self._last_update_time = now
        self._transitioned = False
        self._completed = False

        if not self.calibration.is_calibrated:
            self._calibrate(angles)
        else:
            if self.counting_supported:
                self._update_state(angles, now)
            self._check_for_stuck_state(now)
            self._update_confidence()

        self._last_detection = self._snapshot()
        return self._last_detection

    def reset(self):
        """Return to a freshly constructed, uncalibrated detector."""
        self.calibration = CalibrationState()
        self.state = RepDetectionState()
        self.counting_supported = True
        self._last_update_time = None
        self._last_detection = None
        self._transitioned = False
        self._completed = False
        logger.info(f"Rep detector reset ({self.exercise.value})")

    def recalibrate(self):
        """Re-run calibration on the next frames, keeping the rep count."""
        self.calibration = CalibrationState()
        self.counting_supported = True
        self.state.phase = RepPhase.IDLE
        self.state.rep_start_time = None
        self.state.last_transition_time = None
        self.state.confidence = 0.0
        self.state.consecutive_frames = 0
        logger.info(f"Forcing recalibration ({self.exercise.value})")

    @property
    def phase(self) -> RepPhase:
        return self.state.phase

    @property
    def rep_count(self) -> int:
        return self.state.rep_count

    @property
    def is_calibrated(self) -> bool:
        return self.calibration.is_calibrated

    @property
    def is_rep_in_progress(self) -> bool:
        return self.state.phase in (RepPhase.STARTING, RepPhase.PEAK, RepPhase.ENDING)

    @property
    def average_tempo_ms(self) -> float:
        if not self.state.tempo_history:
            return 0.0
        return float(np.mean(self.state.tempo_history))

    def get_calibration_status(self) -> Dict[str, Any]:
        status = self.calibration.to_dict()
        status["counting_supported"] = self.counting_supported
        return status

    # =========================================================
    # Calibration
    # =========================================================

    def _calibrate(self, angles: JointAngles):
        cal = self.calibration
        primary = angles.get(self.profile.primary)
        secondary = angles.get(self.profile.secondary) if self.profile.secondary else 0.0

        if primary == 0:
            logger.debug("Calibration frame skipped: primary angle missing")
            return

        if cal.frames == 0:
            logger.info(f"Starting calibration ({self.exercise.value})")

        cal.frames += 1

        if cal.frames <= self.STANDING_CALIBRATION_FRAMES:
            n = cal.frames
            cal.standing_angle = (cal.standing_angle * (n - 1) + primary) / n
            if secondary:
                cal.secondary_samples += 1
                m = cal.secondary_samples
                cal.standing_secondary_angle = (
                    cal.standing_secondary_angle * (m - 1) + secondary
                ) / m
            logger.debug(
                f"Calibration frame {cal.frames}/{self.CALIBRATION_FRAMES} - "
                f"standing {self.profile.primary}={cal.standing_angle:.1f}"
            )
        else:
            change = abs(primary - cal.standing_angle)
            secondary_change = 0.0
            if secondary and cal.secondary_samples:
                secondary_change = abs(secondary - cal.standing_secondary_angle)

            if (
                change > self.CALIBRATION_MOVEMENT_DEGREES
                or secondary_change > self.CALIBRATION_MOVEMENT_DEGREES
            ):
                if cal.depth_observed:
                    cal.depth_angle = (
                        cal.depth_angle * self.DEPTH_SMOOTHING
                        + primary * (1 - self.DEPTH_SMOOTHING)
                    )
                else:
                    cal.depth_angle = primary
                    cal.depth_observed = True
                logger.debug(
                    f"Calibration frame {cal.frames}/{self.CALIBRATION_FRAMES} - "
                    f"movement detected, depth={cal.depth_angle:.1f}"
                )

        if cal.frames >= self.CALIBRATION_FRAMES:
            self._finish_calibration()

    def _finish_calibration(self):
        cal = self.calibration

        if not cal.depth_observed:
            if self.profile.default_depth:
                cal.depth_angle = max(
                    self.DEFAULT_MIN_DEPTH, cal.standing_angle - self.DEFAULT_DEPTH_OFFSET
                )
                logger.warning(
                    f"No depth movement during calibration, using default depth "
                    f"{cal.depth_angle:.1f}"
                )
            else:
                self.counting_supported = False
                logger.warning(
                    f"No {self.profile.primary} movement during calibration; "
                    f"{self.exercise.value} rep counting disabled until recalibration"
                )

        span = cal.range
        cal.standing_threshold = cal.standing_angle - span * self.THRESHOLD_FRACTION
        cal.depth_threshold = cal.depth_angle + span * self.THRESHOLD_FRACTION
        cal.mid_threshold = (cal.standing_threshold + cal.depth_threshold) / 2
        cal.is_calibrated = True

        logger.info(
            f"Calibration complete - standing={cal.standing_angle:.1f}, "
            f"depth={cal.depth_angle:.1f}, range={span:.1f}, "
            f"thresholds standing={cal.standing_threshold:.1f} "
            f"mid={cal.mid_threshold:.1f} depth={cal.depth_threshold:.1f}"
        )

    # =========================================================
    # State machine
    # =========================================================

    def _update_state(self, angles: JointAngles, now: float):
        cal = self.calibration
        primary = angles.get(self.profile.primary)
        if primary == 0:
            return

        secondary = None
        if self.profile.secondary and cal.secondary_samples:
            value = angles.get(self.profile.secondary)
            if value:
                secondary = value
        secondary_floor = cal.standing_secondary_angle - self.SECONDARY_HYSTERESIS

        phase = self.state.phase

        if phase == RepPhase.IDLE:
            leaving = primary < cal.standing_threshold or (
                secondary is not None and secondary < secondary_floor
            )
            if leaving:
                self._transition_to(RepPhase.STARTING, now)

        elif phase == RepPhase.STARTING:
            if primary <= cal.depth_threshold:
                self._transition_to(RepPhase.PEAK, now)
            elif primary > cal.standing_threshold + self.PRIMARY_HYSTERESIS:
                self._transition_to(RepPhase.IDLE, now)

        elif phase == RepPhase.PEAK:
            if primary > cal.mid_threshold:
                self._transition_to(RepPhase.ENDING, now)

        elif phase == RepPhase.ENDING:
            returned = primary > cal.standing_threshold or (
                secondary is not None and secondary > secondary_floor
            )
            if returned:
                self._complete_rep(now)
            elif primary <= cal.depth_threshold:
                self._transition_to(RepPhase.PEAK, now)

        elif phase == RepPhase.COMPLETE:
            self._transition_to(RepPhase.IDLE, now)

    def _transition_to(self, new_phase: RepPhase, now: float) -> bool:
        if self.state.phase == new_phase:
            return False

        last = self.state.last_transition_time
        if last is not None and now - last < self.TRANSITION_DEBOUNCE_MS:
            logger.debug(f"Transition to {new_phase.value} blocked - too soon ({now - last:.0f}ms)")
            return False

        logger.debug(f"Phase transition: {self.state.phase.value} -> {new_phase.value}")
        self.state.phase = new_phase
        self.state.last_transition_time = now
        self._transitioned = True

        if new_phase == RepPhase.STARTING:
            self.state.rep_start_time = now
        return True

    def _complete_rep(self, now: float, forced: bool = False):
        if self.state.phase == RepPhase.COMPLETE:
            return
        if not self._transition_to(RepPhase.COMPLETE, now):
            return

        start = self.state.rep_start_time
        self.state.rep_start_time = None
        duration = now - start if start is not None else None

        if duration is not None and self.MIN_REP_DURATION_MS <= duration <= self.MAX_REP_DURATION_MS:
            self.state.rep_count += 1
            self.state.tempo_history.append(duration)
            self.state.last_completion_forced = forced
            self._completed = True
            logger.info(
                f"Rep {self.state.rep_count} completed in {duration:.0f}ms"
                + (" (forced)" if forced else "")
            )
        else:
            self.state.invalid_reps += 1
            logger.info(
                f"Invalid rep duration: {duration}ms (expected "
                f"{self.MIN_REP_DURATION_MS}-{self.MAX_REP_DURATION_MS}ms)"
            )

    def _rebase_clock(self, now: float):
        # Frame clock restarted (e.g. page reload); shift stored times onto it
        offset = now - self._last_update_time
        logger.warning(
            f"Frame clock went backwards by {-offset:.0f}ms, rebasing detector timers"
        )
        if self.state.last_transition_time is not None:
            self.state.last_transition_time += offset
        if self.state.rep_start_time is not None:
            self.state.rep_start_time += offset
        self._last_update_time = now

    def _check_for_stuck_state(self, now: float):
        if self.state.phase in (RepPhase.IDLE, RepPhase.COMPLETE):
            return
        last = self.state.last_transition_time
        if last is None:
            return

        time_in_phase = now - last
        if time_in_phase > self.STUCK_STATE_TIMEOUT_MS:
            logger.warning(
                f"Phase {self.state.phase.value} stuck for {time_in_phase:.0f}ms, forcing completion"
            )
            self.state.forced_completions += 1
            self._complete_rep(now, forced=True)

    def _update_confidence(self):
        if self._transitioned:
            self.state.consecutive_frames = 0
            self.state.confidence = 0.0
            return
        self.state.consecutive_frames += 1
        self.state.confidence = min(1.0, self.state.consecutive_frames / self.CONFIDENCE_FRAMES)

    def _snapshot(self) -> RepDetection:
        return RepDetection(
            phase=self.state.phase,
            rep_count=self.state.rep_count,
            confidence=self.state.confidence,
            last_transition_time=self.state.last_transition_time,
            average_tempo_ms=self.average_tempo_ms,
            is_calibrated=self.calibration.is_calibrated,
            counting_supported=self.counting_supported,
            rep_completed=self._completed,
            forced_completion=self._completed and self.state.last_completion_forced,
        )
