from __future__ import annotations

import numpy as np
import pytest

from pose_builders import wrist_sequence
from skillgrade.biomechanics.comparison.scoring import (
    DEFAULT_REFERENCE_SCORES,
    compute_reference_scores,
    cumulative_movement,
)
from skillgrade.biomechanics.comparison.similarity import compare_sequences
from skillgrade.models import ComparisonResult, Frame


def _unit_frame(x: float, timestamp: float = 0.0) -> Frame:
    kp = np.full((17, 3), 0.9)
    kp[:, 0] = x
    kp[:, 1] = 0.5
    return Frame.from_keypoints(kp, timestamp, space="normalized")


def test_empty_sequence_returns_defaults() -> None:
    assert compute_reference_scores([]) == DEFAULT_REFERENCE_SCORES
    assert compute_reference_scores([]) is not DEFAULT_REFERENCE_SCORES


def test_cumulative_movement_sums_mean_displacement() -> None:
    frames = [_unit_frame(0.5), _unit_frame(0.6), _unit_frame(0.4)]
    assert cumulative_movement(frames) == pytest.approx(0.3)
    assert cumulative_movement(frames[:1]) == 0.0


def test_scores_without_reference() -> None:
    frames = [_unit_frame(0.5), _unit_frame(0.6)]
    scores = compute_reference_scores(frames)
    # Mean confidence 0.9 -> technique capped at 100.
    assert scores["technique"] == 100
    assert scores["timing"] == 64
    assert scores["power"] == 60
    assert scores["accuracy"] == 90
    assert scores["overall"] == round((100 + 64 + 60 + 90) / 4)


def test_scores_with_identical_reference_are_perfect() -> None:
    frames = wrist_sequence(12, spike_at=6)
    comparison = compare_sequences(frames, frames)
    scores = compute_reference_scores(frames, comparison)
    assert scores == {"technique": 100, "timing": 100, "power": 100, "accuracy": 100, "overall": 100}


def test_scores_with_poor_comparison() -> None:
    comparison = ComparisonResult(
        overall_similarity=0.0,
        phase_scores={"preparation": 0.5, "execution": 0.0, "follow_through": 0.5},
        timing_score=0.5,
        key_point_deviations=(),
    )
    scores = compute_reference_scores(wrist_sequence(3), comparison)
    assert scores["technique"] == 30
    assert scores["timing"] == 70
    assert scores["power"] == 35
    assert scores["accuracy"] == 30
    assert scores["overall"] == round((30 + 70 + 35 + 30) / 4)
    assert all(isinstance(value, int) for value in scores.values())
