from __future__ import annotations

import math

import pytest

from pose_builders import CROUCH, frame
from skillgrade.biomechanics.metrics.angles import (
    ANGLE_DEFINITIONS,
    LINE_DEFINITIONS,
    angle_at,
    compute_frame_angles,
    compute_trajectory_angles,
    distance,
    line_angle,
)
from skillgrade.models import Joint


def test_angle_at_right_angle_and_straight_line() -> None:
    assert angle_at((1.0, 0.0), (0.0, 0.0), (0.0, 1.0)) == pytest.approx(90.0)
    assert angle_at((-1.0, 0.0), (0.0, 0.0), (1.0, 0.0)) == pytest.approx(180.0)
    assert angle_at((1.0, 0.0), (0.0, 0.0), (2.0, 0.0)) == pytest.approx(0.0)


@pytest.mark.parametrize(
    "a, b, c",
    [
        ((3.0, 4.0), (0.0, 0.0), (-2.0, 7.5)),
        ((100.0, 250.0), (120.0, 300.0), (90.0, 410.0)),
        ((0.1, 0.9), (0.5, 0.5), (0.95, 0.2)),
    ],
)
def test_angle_at_is_symmetric_and_bounded(a, b, c) -> None:
    forward = angle_at(a, b, c)
    backward = angle_at(c, b, a)
    assert forward == pytest.approx(backward)
    assert 0.0 <= forward <= 180.0


def test_angle_at_zero_length_ray_is_zero() -> None:
    assert angle_at((0.0, 0.0), (0.0, 0.0), (1.0, 1.0)) == 0.0
    assert angle_at((1.0, 1.0), (0.0, 0.0), (0.0, 0.0)) == 0.0


def test_line_angle_uses_screen_convention() -> None:
    # y grows downward, so rising to the right is negative.
    assert line_angle((0.0, 0.0), (1.0, -1.0)) == pytest.approx(-45.0)
    assert line_angle((0.0, 0.0), (1.0, 0.0)) == pytest.approx(0.0)
    assert distance((0.0, 0.0), (3.0, 4.0)) == pytest.approx(5.0)


def test_line_angle_leftward_is_positive_180() -> None:
    assert line_angle((0.0, 0.0), (-1.0, -0.0)) == 180.0
    assert line_angle((0.0, 0.0), (-1.0, 0.0)) == 180.0
    assert line_angle((2.0, -0.0), (1.0, 0.0)) == 180.0


def test_compute_frame_angles_outputs_expected_keys() -> None:
    angles = compute_frame_angles(frame(CROUCH))
    assert set(angles) == set(ANGLE_DEFINITIONS) | set(LINE_DEFINITIONS)
    assert all(entry["valid"] for entry in angles.values())
    assert angles["left_knee"]["value_degrees"] == pytest.approx(100.39, abs=0.01)
    assert angles["right_knee"]["value_degrees"] == pytest.approx(100.39, abs=0.01)
    assert angles["forearm_platform"]["value_degrees"] == pytest.approx(0.0)


def test_compute_frame_angles_marks_low_confidence_invalid() -> None:
    angles = compute_frame_angles(frame(missing=(Joint.LEFT_ANKLE,)))
    assert angles["left_knee"]["valid"] is False
    assert math.isnan(float(angles["left_knee"]["value_degrees"]))
    assert angles["right_knee"]["valid"] is True


def test_compute_trajectory_angles_long_form_table() -> None:
    frames = [frame(timestamp=i / 15.0) for i in range(3)]
    df = compute_trajectory_angles(frames)
    assert list(df.columns) == ["frame", "timestamp_s", "angle_name", "value_degrees", "valid"]
    assert len(df) == 3 * (len(ANGLE_DEFINITIONS) + len(LINE_DEFINITIONS))
    assert df["timestamp_s"].max() == pytest.approx(2 / 15.0)


def test_compute_trajectory_angles_empty_sequence() -> None:
    df = compute_trajectory_angles([])
    assert df.empty
    assert "angle_name" in df.columns
