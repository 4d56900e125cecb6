from __future__ import annotations

import json
from typing import Dict, List

import pytest

from pose_builders import CROUCH, STANDING, frame, raised_wrists, wrist_sequence
from skillgrade.biomechanics.live.tracker import LiveRubricTracker
from skillgrade.biomechanics.rubric.scorer import DIGGING_CRITERIA, SETTING_CRITERIA
from skillgrade.models import Joint, Skill

RAISED_SHOULDERS = {
    Joint.LEFT_SHOULDER: (280.0, 140.0),
    Joint.RIGHT_SHOULDER: (360.0, 140.0),
}


def _dig_sequence() -> List:
    """Crouched ready stance, a wrist spike at frame 4, then standing up with a shoulder lift."""
    frames = []
    lift = 0.0
    for idx in range(4):
        frames.append(frame(raised_wrists(lift, CROUCH), timestamp=idx / 15.0))
        lift += 1.0
    lift += 40.0
    frames.append(frame(raised_wrists(lift, CROUCH), timestamp=4 / 15.0))
    for idx in range(5, 12):
        frames.append(frame(raised_wrists(lift, RAISED_SHOULDERS), timestamp=idx / 15.0))
    return frames


def test_fresh_session_starts_at_floor() -> None:
    tracker = LiveRubricTracker()
    dig = tracker.start_session("Digging")
    assert dig.scores == {name: 1 for name in DIGGING_CRITERIA}
    setting = tracker.start_session(Skill.SETTING)
    assert setting.scores == {name: 1 for name in SETTING_CRITERIA}
    assert dig.contact_detected is False


def test_ready_stance_scores_ready_platform() -> None:
    tracker = LiveRubricTracker()
    session = tracker.start_session("Digging")
    scores = tracker.update(session, frame(CROUCH))
    assert scores["readyPlatform"] == 3
    assert scores["contactAngle"] == 2
    assert scores["legDriveShoulder"] == 1
    assert scores["followThroughControl"] == 1
    assert "readyPlatform" in session.captures


def test_scores_are_monotone_and_contact_latches_once() -> None:
    tracker = LiveRubricTracker()
    session = tracker.start_session("Digging")
    frames = _dig_sequence()
    # A second, larger spike after contact must not move the latch.
    frames.append(frame(raised_wrists(200.0, RAISED_SHOULDERS), timestamp=12 / 15.0))

    previous: Dict[str, int] = dict(session.scores)
    for f in frames:
        current = tracker.update(session, f)
        assert all(current[name] >= previous[name] for name in previous)
        previous = current

    assert session.contact_frame == 4
    assert previous["legDriveShoulder"] == 3
    assert previous["followThroughControl"] == 3

    summary = tracker.finish(session)
    assert summary.contact_frame == 4
    assert summary.contact_detected is True
    assert summary.rubric.total == 3 + 2 + 3 + 3
    assert summary.rubric.grade == "A"


def test_no_spike_keeps_post_contact_criteria_at_floor() -> None:
    tracker = LiveRubricTracker()
    session = tracker.start_session("Digging")
    for f in wrist_sequence(9):
        tracker.update(session, f)
    summary = tracker.finish(session)
    assert summary.contact_detected is False
    assert summary.contact_frame == 4
    assert summary.scores["legDriveShoulder"] == 1
    assert summary.scores["followThroughControl"] == 1


def test_frames_without_torso_are_counted_but_ignored() -> None:
    tracker = LiveRubricTracker()
    session = tracker.start_session("Digging")
    scores = tracker.update(session, frame(CROUCH, missing=(Joint.LEFT_HIP,)))
    assert scores == {name: 1 for name in DIGGING_CRITERIA}
    assert session.frames_seen == 1
    assert session.frames_analyzed == 0
    summary = tracker.finish(session)
    assert summary.confidence == pytest.approx(0.0)
    assert summary.needs_review is True


def test_sessions_are_independent() -> None:
    tracker = LiveRubricTracker()
    first = tracker.start_session("Digging")
    for f in _dig_sequence():
        tracker.update(first, f)
    second = tracker.start_session("Digging")
    assert second.scores == {name: 1 for name in DIGGING_CRITERIA}
    assert second.contact_frame is None
    assert first.contact_frame == 4


def test_capture_callback_runs_once_per_criterion() -> None:
    calls: List[str] = []

    def capture(criterion: str, f, index: int) -> str:
        calls.append(criterion)
        return f"{criterion}@{index}"

    tracker = LiveRubricTracker()
    session = tracker.start_session("Digging")
    for f in _dig_sequence():
        tracker.update(session, f, capture=capture)
    assert sorted(calls) == sorted(set(calls))
    assert set(calls) == set(DIGGING_CRITERIA)
    assert session.captures["readyPlatform"].payload == "readyPlatform@0"


def test_should_sample_throttles_to_target_rate() -> None:
    tracker = LiveRubricTracker(fps=15.0)
    session = tracker.start_session("Digging")
    assert tracker.should_sample(session, 0.0)
    tracker.update(session, frame(timestamp=0.0))
    assert not tracker.should_sample(session, 0.03)
    assert tracker.should_sample(session, 1 / 15.0)


def test_finish_confidence_from_detection_and_wrist_speed() -> None:
    tracker = LiveRubricTracker()
    session = tracker.start_session("Digging")
    for f in wrist_sequence(10, spike_at=5):
        tracker.update(session, f)
    summary = tracker.finish(session)
    # Full detection and a peak wrist speed of 40 px over an 80 px shoulder width.
    assert summary.confidence == pytest.approx(0.5 + 0.5 * 0.5)
    assert summary.needs_review is False
    assert tracker.finish(session, total_frames_estimate=20).confidence == pytest.approx(0.25 + 0.25)


def test_setting_session_scores_at_finish() -> None:
    tracker = LiveRubricTracker()
    session = tracker.start_session("Setting")
    overhead = {Joint.LEFT_WRIST: (300.0, 60.0), Joint.RIGHT_WRIST: (340.0, 60.0), **CROUCH}
    for f in wrist_sequence(20, spike_at=10, base=None):
        tracker.update(session, f)
    for idx in range(20, 26):
        tracker.update(session, frame(overhead, timestamp=idx / 15.0))
    assert session.scores == {name: 1 for name in SETTING_CRITERIA}

    summary = tracker.finish(session)
    assert set(summary.scores) == set(SETTING_CRITERIA)
    assert all(1 <= score <= 3 for score in summary.scores.values())
    assert summary.contact_frame == 10
    assert summary.captures == {}
    assert {"knee_flex", "wrist_above_forehead", "contact_height_rel_torso", "stability"} <= set(summary.metrics)
    json.dumps(summary.to_dict())


def test_setting_ready_footwork_from_pre_contact_knees() -> None:
    tracker = LiveRubricTracker()
    session = tracker.start_session("Setting")
    wide = {
        Joint.LEFT_KNEE: (230.0, 320.0),
        Joint.RIGHT_KNEE: (410.0, 320.0),
        Joint.LEFT_ANKLE: (270.0, 380.0),
        Joint.RIGHT_ANKLE: (370.0, 380.0),
    }
    for f in wrist_sequence(16, spike_at=10, base=wide):
        tracker.update(session, f)
    summary = tracker.finish(session)
    assert summary.scores["readyFootwork"] == 3
    assert summary.metrics["knee_flex"] > 0.0


def test_standing_pose_is_not_a_ready_stance() -> None:
    tracker = LiveRubricTracker()
    session = tracker.start_session("Digging")
    tracker.update(session, frame(STANDING))
    # Straight legs miss the knee bracket but level wrists still earn a 2.
    assert session.scores["readyPlatform"] == 2
