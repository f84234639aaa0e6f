import numpy as np
import pytest

from rehabright.cv.angle_calculator import (
    AngleCalculator,
    JointAngles,
    MISSING_ANGLES,
    angle_between_vectors,
    compute_raw_angles,
)
from rehabright.cv.landmarks import PoseLandmarkIndex as L

from conftest import build_pose, squat_pose


def test_too_few_landmarks_gives_all_zero():
    landmarks = build_pose()[:32]

    assert compute_raw_angles(landmarks) == MISSING_ANGLES
    assert AngleCalculator().calculate(landmarks) == MISSING_ANGLES
    assert AngleCalculator().calculate([]) == MISSING_ANGLES


def test_standing_pose_angles():
    angles = compute_raw_angles(build_pose())

    assert angles.hip_angle == pytest.approx(170.0, abs=0.1)
    assert angles.knee_angle == pytest.approx(180.0)
    assert angles.trunk_angle == pytest.approx(10.0, abs=0.1)
    assert angles.ankle_angle == pytest.approx(90.0)


def test_flexed_knee_reads_low():
    landmarks = build_pose(points={
        L.LEFT_HIP: (0.30, 0.70),
        L.LEFT_KNEE: (0.50, 0.70),
        L.LEFT_ANKLE: (0.50, 0.90),
    })
    assert compute_raw_angles(landmarks).knee_angle == pytest.approx(90.0)


@pytest.mark.parametrize("hip", [170.0, 135.0, 90.0, 70.0])
def test_hip_angle_follows_trunk_lean(hip):
    assert compute_raw_angles(squat_pose(hip)).hip_angle == pytest.approx(hip, abs=1e-6)


def test_trunk_angle_clamped_to_90():
    # Shoulder below the hip line
    landmarks = build_pose(points={L.LEFT_SHOULDER: (0.70, 0.70)})
    assert compute_raw_angles(landmarks).trunk_angle == 90.0


def test_angles_stay_in_range_for_random_geometry():
    rng = np.random.default_rng(7)
    for _ in range(200):
        points = {idx: tuple(rng.uniform(0.0, 1.0, size=2)) for idx in L}
        angles = compute_raw_angles(build_pose(points=points))
        for name in JointAngles.names():
            assert 0.0 <= angles.get(name) <= 180.0
        assert angles.trunk_angle <= 90.0


def test_low_visibility_landmark_zeroes_dependent_angles():
    angles = compute_raw_angles(build_pose(hidden=(L.LEFT_KNEE,)))

    assert angles.hip_angle == 0
    assert angles.knee_angle == 0
    assert angles.ankle_angle == 0
    assert angles.trunk_angle > 0
    assert angles.elbow_angle > 0


def test_visibility_at_threshold_is_not_visible():
    angles = compute_raw_angles(build_pose(visibility=0.5))
    assert angles == MISSING_ANGLES


def test_zero_length_vector():
    assert angle_between_vectors(np.zeros(2), np.array([1.0, 0.0])) == 0.0


def test_first_frame_unsmoothed_then_blended():
    calculator = AngleCalculator()

    first = calculator.calculate(squat_pose(170.0))
    second = calculator.calculate(squat_pose(90.0))

    assert first.hip_angle == pytest.approx(170.0)
    assert second.hip_angle == pytest.approx(0.8 * 170.0 + 0.2 * 90.0)
    assert second.knee_angle == pytest.approx(180.0)


def test_missing_angle_does_not_touch_memory():
    calculator = AngleCalculator()
    calculator.calculate(squat_pose(170.0))

    hidden = calculator.calculate(squat_pose(90.0, hidden=(L.LEFT_SHOULDER,)))
    after = calculator.calculate(squat_pose(90.0))

    assert hidden.hip_angle == 0
    assert after.hip_angle == pytest.approx(0.8 * 170.0 + 0.2 * 90.0)


def test_smoothing_memory_is_per_instance():
    first_session = AngleCalculator()
    first_session.calculate(squat_pose(170.0))

    second_session = AngleCalculator()
    angles = second_session.calculate(squat_pose(90.0))

    assert angles.hip_angle == pytest.approx(90.0)


def test_reset_drops_memory():
    calculator = AngleCalculator()
    calculator.calculate(squat_pose(170.0))
    assert calculator.has_history

    calculator.reset()

    assert not calculator.has_history
    assert calculator.frames_processed == 0
    assert calculator.calculate(squat_pose(90.0)).hip_angle == pytest.approx(90.0)
