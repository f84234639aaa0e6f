import pytest

from rehabright.cv.exercise_rules import ExerciseRules, FeedbackType
from rehabright.cv.rep_detector import RepPhase
from rehabright.cv.session_processor import (
    SessionFeedbackLog,
    SessionProcessor,
    SessionScoreboard,
)

from conftest import build_pose, squat_pose


class FakeVoice:
    def __init__(self):
        self.calls = []

    def speak_rep_count(self, count):
        self.calls.append(("rep", count))

    def speak_exercise_cue(self, exercise, cue):
        self.calls.append(("cue", f"{exercise}: {cue}"))

    def stop(self):
        self.calls.append(("stop",))


def run_squat_session(processor, start_ms=0):
    """Calibrate standing, then one slow squat; returns every FrameResult."""
    results = []
    t = start_ms
    for _ in range(25):
        results.append(processor.process_frame(squat_pose(170.0), timestamp_ms=t))
        t += 100
    for _ in range(15):
        results.append(processor.process_frame(squat_pose(70.0), timestamp_ms=t))
        t += 100
    for _ in range(15):
        results.append(processor.process_frame(squat_pose(170.0), timestamp_ms=t))
        t += 100
    return results


def test_feedback_log_blocks_duplicates_per_rep():
    log = SessionFeedbackLog()

    assert log.add("Go deeper", FeedbackType.WARNING, 1, rep_number=1)
    assert not log.add("Go deeper", FeedbackType.WARNING, 1, rep_number=1)
    assert log.add("Go deeper", FeedbackType.WARNING, 1, rep_number=2)

    assert len(log) == 2
    assert [f.rep_number for f in log.entries] == [1, 2]
    assert log.for_rep(2)[0].message == "Go deeper"

    log.clear()
    assert len(log) == 0


def test_scoreboard_running_average_and_flags():
    board = SessionScoreboard()

    board.record(80, ["Knee valgus detected"])
    board.record(60, [])
    board.record(100, ["Knee valgus detected", "Swinging detected"])

    assert board.rep_count == 3
    assert board.average_score == pytest.approx(80.0)
    assert board.last_rep_score == 100
    assert board.flags == ["Knee valgus detected", "Swinging detected"]

    board.clear()
    assert board.rep_count == 0
    assert board.average_score == 0.0
    assert board.last_rep_score == 0
    assert board.flags == []

    board.record(50)
    assert board.average_score == pytest.approx(50.0)
    assert board.flags == []


def test_completed_rep_drives_sinks_and_voice():
    feedback_calls = []
    score_calls = []
    voice = FakeVoice()
    processor = SessionProcessor(
        "squat",
        feedback_sink=lambda *args: feedback_calls.append(args),
        score_sink=lambda score, flags: score_calls.append((score, flags)),
        voice=voice,
    )

    results = run_squat_session(processor)

    completed = [r for r in results if r.rep_completed]
    assert len(completed) == 1
    assert processor.rep_detector.rep_count == 1

    result = completed[0]
    assert [f.message for f in result.feedback] == ["Keep chest up", "Push knees out"]
    assert all(f.rep_number == 1 for f in result.feedback)

    assert [(c[0], c[3]) for c in feedback_calls] == [
        ("Keep chest up", 1),
        ("Push knees out", 1),
    ]
    assert len(score_calls) == 1
    assert score_calls[0][0] == result.score
    assert 0 <= result.score <= 100

    assert voice.calls == [
        ("rep", 1),
        ("cue", "Squat: Keep chest up"),
        ("cue", "Squat: Push knees out"),
    ]


def test_rep_is_scored_on_deepest_frame():
    processor = SessionProcessor("squat", voice_enabled=False)

    results = run_squat_session(processor)

    completed = next(r for r in results if r.rep_completed)
    in_rep = [
        r for r in results
        if r.detection and r.detection.phase in (RepPhase.STARTING, RepPhase.PEAK, RepPhase.ENDING)
    ]
    deepest = min(in_rep, key=lambda r: r.angles.hip_angle)
    expected = ExerciseRules.evaluate("squat", deepest.angles, squat_pose(70.0))

    assert completed.angles.hip_angle > deepest.angles.hip_angle
    assert completed.evaluation.score == expected.score
    assert processor.last_evaluation is completed.evaluation


def test_default_sinks_collect_session_results():
    processor = SessionProcessor("squat")

    run_squat_session(processor)

    assert processor.scoreboard.rep_count == 1
    assert [f.message for f in processor.feedback_log.entries] == [
        "Keep chest up",
        "Push knees out",
    ]
    summary = processor.feature_summary()
    assert summary["exercise"] == "squat"
    assert summary["rep_count"] == 1
    assert set(summary["angles"]) == {
        "trunk_angle", "hip_angle", "knee_angle",
        "shoulder_angle", "elbow_angle", "ankle_angle",
    }


def test_voice_disabled_is_silent():
    voice = FakeVoice()
    processor = SessionProcessor("squat", voice=voice, voice_enabled=False)

    run_squat_session(processor)

    assert voice.calls == []


def test_frames_without_usable_pose_are_dropped():
    processor = SessionProcessor("squat")

    empty = processor.process_frame([], timestamp_ms=0)
    face_heavy = processor.process_frame(build_pose(), timestamp_ms=100, face_landmark_count=468)
    accepted = processor.process_frame(build_pose(), timestamp_ms=200)

    assert not empty.accepted
    assert not face_heavy.accepted
    assert accepted.accepted
    assert processor.frames_dropped == 2
    assert processor.frames_received == 3
    assert processor.rep_detector.get_calibration_status()["calibration_frames"] == 1


def test_reset_clears_everything():
    processor = SessionProcessor("squat")
    run_squat_session(processor)

    processor.reset()

    assert processor.rep_detector.rep_count == 0
    assert not processor.rep_detector.is_calibrated
    assert not processor.angle_calculator.has_history
    assert len(processor.feedback_log) == 0
    assert processor.scoreboard.rep_count == 0
    assert processor.last_evaluation is None

    results = run_squat_session(processor, start_ms=20000)
    assert sum(r.rep_completed for r in results) == 1
    assert processor.rep_detector.rep_count == 1


def test_recalibrate_keeps_results():
    processor = SessionProcessor("squat")
    run_squat_session(processor)

    processor.recalibrate()

    assert processor.rep_detector.rep_count == 1
    assert not processor.rep_detector.is_calibrated
    assert processor.scoreboard.rep_count == 1


def test_close_stops_voice_once():
    voice = FakeVoice()
    processor = SessionProcessor("pullup", voice=voice)

    processor.close()
    processor.close()

    assert voice.calls == [("stop",)]


def test_unknown_exercise_rejected():
    with pytest.raises(ValueError):
        SessionProcessor("deadlift")
