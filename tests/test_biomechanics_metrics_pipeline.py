from __future__ import annotations

import json

import pytest

from pose_builders import CROUCH, frame, raised_wrists, wrist_sequence
from skillgrade.biomechanics.metrics.pipeline import analyze_sequence, load_pose_payload
from skillgrade.biomechanics.metrics.skill_metrics import (
    ConstantEstimator,
    RandomEstimator,
    build_estimator,
    extract_metrics,
)
from skillgrade.biomechanics.live.contact import detect_contact_frame
from skillgrade.models import ESTIMATED_METRICS, Joint, MalformedInputError, Skill, Target

LEGS_ONLY_VISIBLE = [
    j
    for j in Joint
    if j
    not in (Joint.LEFT_HIP, Joint.RIGHT_HIP, Joint.LEFT_KNEE, Joint.RIGHT_KNEE, Joint.LEFT_ANKLE, Joint.RIGHT_ANKLE)
]

RIGHT_ANGLE_KNEES = {
    Joint.LEFT_HIP: (300.0, 300.0),
    Joint.RIGHT_HIP: (360.0, 300.0),
    Joint.LEFT_KNEE: (300.0, 400.0),
    Joint.RIGHT_KNEE: (360.0, 400.0),
    Joint.LEFT_ANKLE: (400.0, 400.0),
    Joint.RIGHT_ANKLE: (460.0, 400.0),
}


def test_all_low_confidence_sequence_degrades_to_zero() -> None:
    frames = [frame(confidence=0.1, timestamp=i / 15.0) for i in range(10)]
    result = analyze_sequence(frames, "Digging")
    assert result.metrics.knee_flex == 0.0
    assert result.metrics.elbow_lock is False
    assert result.metrics.detected_frames == 0
    assert result.confidence == pytest.approx(0.0)
    assert result.needs_review is True
    assert result.quality["detection_rate"] == 0.0
    assert result.reference_scores["technique"] == 0
    assert result.reference_scores["timing"] == 80
    assert result.reference_scores["power"] == 50


def test_right_angle_knees_give_fifty_percent_flex() -> None:
    single = [frame(RIGHT_ANGLE_KNEES, missing=LEGS_ONLY_VISIBLE)]
    result = analyze_sequence(single, Skill.DIGGING, reference=list(single))
    assert result.metrics.knee_flex == pytest.approx(50.0)
    assert result.metrics.measured_available == {
        "knee_flex": True,
        "elbow_lock": False,
        "wrist_above_forehead": False,
    }
    assert result.metrics.contact_frame == 0
    assert result.comparison is not None
    # Only preparation is populated; the empty phases score the neutral 0.5.
    assert result.comparison.overall_similarity == pytest.approx(0.2 + 0.6 * 0.5 + 0.2 * 0.5)
    assert result.comparison.timing_score == pytest.approx(1.0)
    # One of three measured metrics plus full detection coverage.
    assert result.confidence == pytest.approx((1.0 + 1.0 / 3.0) / 2.0)


def test_elbow_lock_and_wrists_above_forehead() -> None:
    straight = extract_metrics([frame()], "Digging")
    assert straight.elbow_lock is True
    assert straight.wrist_above_forehead is False

    bent = {Joint.LEFT_WRIST: (320.0, 200.0), Joint.RIGHT_WRIST: (320.0, 200.0)}
    assert extract_metrics([frame(bent)], "Digging").elbow_lock is False

    overhead = {Joint.LEFT_WRIST: (300.0, 50.0), Joint.RIGHT_WRIST: (340.0, 50.0)}
    assert extract_metrics([frame(overhead)], "Setting").wrist_above_forehead is True


def test_estimated_metrics_are_flagged_and_deterministic() -> None:
    frames = [frame(CROUCH)]
    first = extract_metrics(frames, "Setting", "Left", estimator=ConstantEstimator())
    second = extract_metrics(frames, "Setting", "Left", estimator=ConstantEstimator())
    assert first == second
    assert first.estimated == ESTIMATED_METRICS
    assert first.contact_height_rel_torso == pytest.approx(0.9)
    assert first.platform_flatness == pytest.approx(0.0)
    assert first.facing_target == pytest.approx(0.75)
    assert first.stability == pytest.approx(0.75)


def test_random_estimator_is_reproducible_with_seed() -> None:
    a = RandomEstimator(seed=7).estimate(Skill.DIGGING, Target.CENTER, [])
    b = RandomEstimator(seed=7).estimate(Skill.DIGGING, Target.CENTER, [])
    assert a == b
    assert 0.4 <= a.contact_height_rel_torso <= 0.6
    assert 5.0 <= a.platform_flatness <= 25.0
    assert 0.8 <= a.facing_target <= 1.0


def test_build_estimator_by_name() -> None:
    assert isinstance(build_estimator("random", 3), RandomEstimator)
    assert isinstance(build_estimator("constant"), ConstantEstimator)
    assert isinstance(build_estimator("unknown"), ConstantEstimator)


def test_contact_frame_comes_from_wrist_spike() -> None:
    frames = wrist_sequence(10, spike_at=6)
    assert detect_contact_frame(frames) == 6
    assert extract_metrics(frames, "Digging").contact_frame == 6


def test_contact_detection_skips_frames_without_torso() -> None:
    frames = wrist_sequence(8, spike_at=5)
    frames[5] = frame(raised_wrists(100.0), missing=(Joint.LEFT_SHOULDER,), timestamp=frames[5].timestamp)
    # Frame 6 is compared against frame 4, the last frame with a torso.
    assert detect_contact_frame(frames) == 6


def test_no_spike_falls_back_to_midpoint() -> None:
    frames = wrist_sequence(9)
    assert detect_contact_frame(frames) is None
    assert extract_metrics(frames, "Digging").contact_frame == 4


def test_unknown_skill_is_malformed() -> None:
    with pytest.raises(MalformedInputError):
        analyze_sequence([frame()], "Spiking")


def test_analysis_result_is_json_safe() -> None:
    frames = wrist_sequence(12, spike_at=6)
    result = analyze_sequence(frames, "Digging", "Right", reference=frames)
    payload = result.to_dict()
    text = json.dumps(payload)
    assert '"skill": "Digging"' in text
    assert payload["target"] == "Right"
    assert payload["comparison"]["timing_score"] == pytest.approx(1.0)
    assert payload["metrics"]["estimated"] == list(ESTIMATED_METRICS)
    assert set(payload["reference_scores"]) == {"technique", "timing", "power", "accuracy", "overall"}


def test_load_pose_payload_from_file(tmp_path) -> None:
    frames = wrist_sequence(3)
    raw = {
        "skill": "Setting",
        "target": "Left",
        "width": 640,
        "height": 480,
        "coordinate_space": "pixel",
        "fps": 15,
        "frames": [{"keypoints": f.keypoints.tolist(), "timestamp": f.timestamp} for f in frames],
    }
    path = tmp_path / "clip.json"
    path.write_text(json.dumps(raw), encoding="utf-8")
    payload = load_pose_payload(path)
    assert payload.skill is Skill.SETTING
    assert payload.target is Target.LEFT
    assert len(payload.frames) == 3
    assert payload.frames[0].width == pytest.approx(640.0)


def test_load_pose_payload_reports_bad_frame() -> None:
    raw = {"frames": [{"keypoints": [[0.0, 0.0, 0.5]] * 16}]}
    with pytest.raises(MalformedInputError, match="Frame 0"):
        load_pose_payload(raw)
