"""Streaming rubric tracker for clips scored while they play.

The tracker itself is stateless; all running state lives in a
:class:`LiveSession` owned by the caller and passed to every call, so
independent sessions never interfere. Frames are expected at roughly
``TARGET_FPS`` evaluations per second (see :meth:`LiveRubricTracker.should_sample`).

Digging criteria update per frame as running maxima. Setting criteria need
the contact moment, so the tracker only records per-frame features and
scores them from pre/contact/post windows in :meth:`LiveRubricTracker.finish`.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence

import numpy as np

from skillgrade.biomechanics import config
from skillgrade.biomechanics.config import BIOMECHANICS_LOGGER as logger, LiveThresholds
from skillgrade.biomechanics.live.contact import has_torso, is_contact_spike, norm_base, wrist_displacement
from skillgrade.biomechanics.metrics.angles import angle_at, clamp, distance, line_angle
from skillgrade.biomechanics.metrics.normalization import to_pixel_keypoints, torso_length, valid_mask
from skillgrade.biomechanics.rubric.scorer import CRITERIA, build_result
from skillgrade.models import Frame, Joint, RubricResult, Skill, parse_skill

CaptureFn = Callable[[str, Frame, int], Any]

J = Joint


@dataclass(frozen=True)
class Capture:
    """Reference snapshot for a criterion (one per criterion per session)."""

    criterion: str
    frame_index: int
    timestamp: float
    payload: Any = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "criterion": self.criterion,
            "frame_index": self.frame_index,
            "timestamp": self.timestamp,
        }
        if isinstance(self.payload, (str, int, float, bool)):
            out["payload"] = self.payload
        return out


@dataclass(frozen=True)
class SettingFeatures:
    """Per-frame features consumed by the windowed setting rules."""

    left_knee_angle: Optional[float]
    right_knee_angle: Optional[float]
    stance_width_norm: Optional[float]
    face_width: Optional[float]
    wrist_sep_to_face: Optional[float]
    wrists_above_shoulder: bool
    wrists_above_forehead: bool
    shoulder_level_dev: Optional[float]
    hip_level_dev: Optional[float]
    torso_angle_deg: float
    left_elbow_angle: Optional[float]
    right_elbow_angle: Optional[float]
    nose_y: Optional[float]
    shoulder_center_y: float
    left_wrist_y: Optional[float]
    right_wrist_y: Optional[float]
    torso_length: float


@dataclass
class LiveSession:
    """Mutable state of one playback session."""

    skill: Skill
    scores: Dict[str, int]
    forearm_angles: Deque[float]
    knee_history: Deque[float]
    frames_seen: int = 0
    frames_analyzed: int = 0
    contact_frame: Optional[int] = None
    contact_knee_angle: Optional[float] = None
    contact_shoulder_y: Optional[float] = None
    prev_keypoints: Optional[np.ndarray] = None
    prev_valid: Optional[np.ndarray] = None
    last_sample_ts: Optional[float] = None
    wrist_speeds: List[float] = field(default_factory=list)
    setting_features: List[SettingFeatures] = field(default_factory=list)
    captures: Dict[str, Capture] = field(default_factory=dict)

    @property
    def contact_detected(self) -> bool:
        return self.contact_frame is not None


@dataclass(frozen=True)
class LiveSummary:
    skill: Skill
    rubric: RubricResult
    contact_frame: int
    contact_detected: bool
    confidence: float
    needs_review: bool
    frames_analyzed: int
    frames_seen: int
    metrics: Mapping[str, Any]
    captures: Mapping[str, Capture]

    @property
    def scores(self) -> Mapping[str, int]:
        return self.rubric.scores

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skill": self.skill.value,
            "scores": dict(self.rubric.scores),
            "total": self.rubric.total,
            "max_total": self.rubric.max_total,
            "grade": self.rubric.grade,
            "contact_frame": self.contact_frame,
            "contact_detected": self.contact_detected,
            "confidence": round(float(self.confidence), 4),
            "needs_review": self.needs_review,
            "frames_analyzed": self.frames_analyzed,
            "frames_seen": self.frames_seen,
            "metrics": dict(self.metrics),
            "captures": {name: cap.to_dict() for name, cap in self.captures.items()},
        }


def _in_range(value: float, bounds: Sequence[float]) -> bool:
    return bounds[0] <= value <= bounds[1]


def _ratio(flags: Sequence[bool]) -> float:
    return sum(1 for flag in flags if flag) / len(flags) if flags else 0.0


class LiveRubricTracker:
    """Incremental rubric scoring driven one frame at a time."""

    def __init__(
        self,
        thresholds: Optional[LiveThresholds] = None,
        *,
        fps: Optional[float] = None,
        confidence_threshold: Optional[float] = None,
    ) -> None:
        self.thresholds = thresholds or config.LIVE_THRESHOLDS
        self.fps = float(fps) if fps else float(config.TARGET_FPS)
        self.confidence_threshold = (
            config.METRIC_CONFIDENCE_THRESHOLD if confidence_threshold is None else float(confidence_threshold)
        )

    @property
    def follow_window(self) -> int:
        t = self.thresholds
        return max(t.follow_window_min, int(math.floor(self.fps * t.follow_window_seconds)))

    def start_session(self, skill: Any) -> LiveSession:
        skill = parse_skill(skill)
        floor = int(self.thresholds.floor_score)
        return LiveSession(
            skill=skill,
            scores={name: floor for name in CRITERIA[skill]},
            forearm_angles=deque(maxlen=self.follow_window),
            knee_history=deque(maxlen=max(1, int(self.thresholds.pre_contact_buffer))),
        )

    def should_sample(self, session: LiveSession, timestamp: float) -> bool:
        """Throttle to ``fps`` evaluations per second of clip time."""
        if session.last_sample_ts is None:
            return True
        # Small tolerance so evenly spaced timestamps are not rejected by rounding.
        return float(timestamp) - session.last_sample_ts >= (1.0 / self.fps) - 1e-6

    # ------------------------------------------------------------------ update

    def _raise(self, session: LiveSession, criterion: str, score: int) -> None:
        session.scores[criterion] = max(session.scores[criterion], int(score))

    def _capture_once(
        self,
        session: LiveSession,
        criterion: str,
        frame: Frame,
        index: int,
        capture: Optional[CaptureFn],
    ) -> None:
        if criterion in session.captures:
            return
        payload = capture(criterion, frame, index) if capture is not None else None
        session.captures[criterion] = Capture(criterion, index, float(frame.timestamp), payload)

    def update(self, session: LiveSession, frame: Frame, capture: Optional[CaptureFn] = None) -> Dict[str, int]:
        """Feed one frame; returns a snapshot of the running scores.

        Frames without a valid torso are counted but otherwise ignored.
        """
        session.frames_seen += 1
        session.last_sample_ts = float(frame.timestamp)
        kp = to_pixel_keypoints(frame)
        ok = valid_mask(kp, self.confidence_threshold)
        if not has_torso(ok):
            logger.debug("Frame %d skipped: torso not visible.", session.frames_seen - 1)
            return dict(session.scores)

        index = session.frames_analyzed
        base = norm_base(kp, ok)
        t = self.thresholds

        move = wrist_displacement(session.prev_keypoints, session.prev_valid, kp, ok, base)
        if move is not None:
            session.wrist_speeds.append(move)
        latched_now = False
        if session.contact_frame is None and is_contact_spike(move, t.contact_spike):
            session.contact_frame = index
            latched_now = True
            session.contact_knee_angle = (
                float(np.mean(session.knee_history)) if session.knee_history else t.leg_drive_nominal_bend
            )
            session.contact_shoulder_y = float((kp[J.LEFT_SHOULDER, 1] + kp[J.RIGHT_SHOULDER, 1]) / 2.0)
            logger.debug("Contact latched at frame %d (wrist speed %.3f).", index, move)

        if session.skill is Skill.DIGGING:
            self._update_digging(session, frame, index, kp, ok, base, latched_now, capture)
        else:
            session.setting_features.append(self._setting_features(kp, ok))

        session.prev_keypoints, session.prev_valid = kp, ok
        session.frames_analyzed += 1
        return dict(session.scores)

    def _knee_angles(self, kp: np.ndarray, ok: np.ndarray) -> Optional[tuple[float, float]]:
        legs = (J.LEFT_KNEE, J.RIGHT_KNEE, J.LEFT_ANKLE, J.RIGHT_ANKLE)
        if not all(ok[int(j)] for j in legs):
            return None
        return (
            angle_at(kp[J.LEFT_HIP], kp[J.LEFT_KNEE], kp[J.LEFT_ANKLE]),
            angle_at(kp[J.RIGHT_HIP], kp[J.RIGHT_KNEE], kp[J.RIGHT_ANKLE]),
        )

    @staticmethod
    def _have_arms(ok: np.ndarray) -> bool:
        return all(ok[int(j)] for j in (J.LEFT_ELBOW, J.RIGHT_ELBOW, J.LEFT_WRIST, J.RIGHT_WRIST))

    def _update_digging(
        self,
        session: LiveSession,
        frame: Frame,
        index: int,
        kp: np.ndarray,
        ok: np.ndarray,
        base: float,
        latched_now: bool,
        capture: Optional[CaptureFn],
    ) -> None:
        t = self.thresholds
        knees = self._knee_angles(kp, ok)
        arms = self._have_arms(ok)

        if knees is not None and session.contact_frame is None:
            session.knee_history.append(sum(knees) / 2.0)

        # Ready position & platform.
        if knees is not None and arms:
            knees_bent = all(_in_range(angle, t.ready_knee_range) for angle in knees)
            wrists_level = abs(kp[J.LEFT_WRIST, 1] - kp[J.RIGHT_WRIST, 1]) / base < t.wrist_level_max
            ready = 3 if knees_bent and wrists_level else 2 if knees_bent or wrists_level else 1
            self._raise(session, "readyPlatform", ready)
            if ready >= t.capture_min_score:
                self._capture_once(session, "readyPlatform", frame, index, capture)

        if latched_now:
            self._capture_once(session, "contactAngle", frame, index, capture)

        # Contact point & platform angle (slightly upward in screen coordinates).
        if arms:
            platform = line_angle(kp[J.LEFT_WRIST], kp[J.RIGHT_WRIST])
            angle_score = (
                3 if _in_range(platform, t.contact_angle_ideal) else 2 if _in_range(platform, t.contact_angle_ok) else 1
            )
            self._raise(session, "contactAngle", angle_score)
            if angle_score >= t.capture_min_score:
                self._capture_once(session, "contactAngle", frame, index, capture)

        if session.contact_frame is None:
            return

        # Leg drive & shoulder lift after contact.
        if knees is not None:
            before = session.contact_knee_angle if session.contact_knee_angle is not None else t.leg_drive_nominal_bend
            knee_extend = sum(knees) / 2.0 - before
            shoulder_y = float((kp[J.LEFT_SHOULDER, 1] + kp[J.RIGHT_SHOULDER, 1]) / 2.0)
            contact_y = session.contact_shoulder_y if session.contact_shoulder_y is not None else shoulder_y
            shoulder_lift = (contact_y - shoulder_y) / base
            if knee_extend > t.leg_drive_extend_strong and shoulder_lift > t.shoulder_lift_min:
                drive = 3
            elif knee_extend > t.leg_drive_extend:
                drive = 2
            else:
                drive = 1
            self._raise(session, "legDriveShoulder", drive)
            if drive >= t.capture_min_score:
                self._capture_once(session, "legDriveShoulder", frame, index, capture)

        # Follow-through: forearm angle steadiness over a short window.
        if arms:
            left = line_angle(kp[J.LEFT_ELBOW], kp[J.LEFT_WRIST])
            right = line_angle(kp[J.RIGHT_ELBOW], kp[J.RIGHT_WRIST])
            session.forearm_angles.append((left + right) / 2.0)
            if len(session.forearm_angles) >= min(t.follow_window_min, self.follow_window):
                spread = float(np.std(np.asarray(session.forearm_angles, dtype=float)))
                follow = 3 if spread < t.follow_std_excellent else 2 if spread < t.follow_std_good else 1
                self._raise(session, "followThroughControl", follow)
                if follow >= t.capture_min_score:
                    self._capture_once(session, "followThroughControl", frame, index, capture)

    def _setting_features(self, kp: np.ndarray, ok: np.ndarray) -> SettingFeatures:
        t = self.thresholds

        def pt(joint: Joint) -> Optional[np.ndarray]:
            return kp[int(joint), :2] if ok[int(joint)] else None

        # Callers only reach here with a valid torso.
        ls, rs = kp[J.LEFT_SHOULDER, :2], kp[J.RIGHT_SHOULDER, :2]
        lh, rh = kp[J.LEFT_HIP, :2], kp[J.RIGHT_HIP, :2]
        lw, rw, nose = pt(J.LEFT_WRIST), pt(J.RIGHT_WRIST), pt(J.NOSE)
        la, ra = pt(J.LEFT_ANKLE), pt(J.RIGHT_ANKLE)

        shoulder_width = distance(ls, rs)
        torso = torso_length(kp, ok)
        shoulder_center = (ls + rs) / 2.0
        hip_center = (lh + rh) / 2.0

        face_width: Optional[float] = None
        if ok[J.LEFT_EYE] and ok[J.RIGHT_EYE]:
            face_width = distance(kp[J.LEFT_EYE], kp[J.RIGHT_EYE])
        elif ok[J.LEFT_EAR] and ok[J.RIGHT_EAR]:
            face_width = distance(kp[J.LEFT_EAR], kp[J.RIGHT_EAR])
        elif shoulder_width > 0:
            face_width = shoulder_width * t.setting_face_width_fallback
        if not face_width:
            face_width = None

        knees = self._knee_angles(kp, ok)
        arms = self._have_arms(ok)
        wrist_sep = distance(lw, rw) if lw is not None and rw is not None else None

        above_forehead = False
        if lw is not None and rw is not None and nose is not None and torso > 0:
            margin = config.WRIST_FOREHEAD_MARGIN
            above_forehead = (nose[1] - lw[1]) / torso > margin and (nose[1] - rw[1]) / torso > margin

        return SettingFeatures(
            left_knee_angle=knees[0] if knees else None,
            right_knee_angle=knees[1] if knees else None,
            stance_width_norm=distance(la, ra) / shoulder_width if la is not None and ra is not None and shoulder_width else None,
            face_width=face_width,
            wrist_sep_to_face=wrist_sep / face_width if wrist_sep and face_width else None,
            wrists_above_shoulder=bool(
                lw is not None and rw is not None and lw[1] < shoulder_center[1] and rw[1] < shoulder_center[1]
            ),
            wrists_above_forehead=bool(above_forehead),
            shoulder_level_dev=abs(ls[1] - rs[1]) / shoulder_width if shoulder_width else None,
            hip_level_dev=abs(lh[1] - rh[1]) / shoulder_width if shoulder_width else None,
            torso_angle_deg=line_angle(hip_center, shoulder_center),
            left_elbow_angle=angle_at(ls, kp[J.LEFT_ELBOW], lw) if arms else None,
            right_elbow_angle=angle_at(rs, kp[J.RIGHT_ELBOW], rw) if arms else None,
            nose_y=float(nose[1]) if nose is not None else None,
            shoulder_center_y=float(shoulder_center[1]),
            left_wrist_y=float(lw[1]) if lw is not None else None,
            right_wrist_y=float(rw[1]) if rw is not None else None,
            torso_length=float(torso),
        )

    # ------------------------------------------------------------------ finish

    def _windows(self, n: int, contact: int) -> tuple[slice, slice, slice]:
        t = self.thresholds
        c = int(clamp(contact, 0, max(0, n - 1)))
        pre_len = max(t.setting_pre_min, int(math.floor(self.fps * t.setting_pre_seconds)))
        post_len = max(t.setting_post_min, int(math.floor(self.fps * t.setting_post_seconds)))
        return (
            slice(max(0, c - pre_len), c),
            slice(max(0, c - 1), min(n, c + 2)),
            slice(c + 1, min(n, c + post_len)),
        )

    def _score_setting(self, series: Sequence[SettingFeatures], contact: int) -> tuple[Dict[str, int], Dict[str, Any]]:
        t = self.thresholds
        pre_sl, contact_sl, post_sl = self._windows(len(series), contact)
        pre, window, post = list(series[pre_sl]), list(series[contact_sl]), list(series[post_sl])
        strong, partial = t.setting_ratio_strong, t.setting_ratio_partial

        # Ready footwork & base.
        pre_knees = [f for f in pre if f.left_knee_angle is not None and f.right_knee_angle is not None]
        knees_bent = _ratio(
            [
                _in_range(f.left_knee_angle, t.setting_knee_range) and _in_range(f.right_knee_angle, t.setting_knee_range)  # type: ignore[arg-type]
                for f in pre_knees
            ]
        )
        stance_wide = _ratio([f.stance_width_norm > t.setting_stance_wide for f in pre if f.stance_width_norm is not None])
        if knees_bent >= strong and stance_wide >= strong:
            ready = 3
        elif knees_bent >= partial or stance_wide >= partial:
            ready = 2
        else:
            ready = 1

        # Hand shape & contact window.
        hand = 1
        if any(f.face_width and f.wrist_sep_to_face is not None for f in window):
            sep_lo, sep_hi = t.setting_wrist_sep_range
            checks = (
                _ratio([f.wrists_above_shoulder for f in window]),
                _ratio([bool(f.face_width) and f.wrist_sep_to_face is not None and sep_lo <= f.wrist_sep_to_face <= sep_hi for f in window]),
                _ratio([f.wrists_above_forehead for f in window]),
            )
            ok_count = sum(1 for ratio in checks if ratio >= strong)
            hand = 3 if ok_count >= 3 else 2 if ok_count >= 2 else 1

        # Alignment & extension: levelness, uprightness and elbow extension.
        level_frames = [f for f in window if f.shoulder_level_dev is not None and f.hip_level_dev is not None]
        levelness = 1
        if level_frames:
            shoulder_dev = float(np.mean([f.shoulder_level_dev for f in level_frames]))
            hip_dev = float(np.mean([f.hip_level_dev for f in level_frames]))
            if shoulder_dev < t.setting_level_excellent and hip_dev < t.setting_level_excellent:
                levelness = 3
            elif shoulder_dev < t.setting_level_good and hip_dev < t.setting_level_good:
                levelness = 2
        upright = 1
        if window:
            lean = float(np.mean([abs(90.0 - abs(f.torso_angle_deg)) for f in window]))
            upright = 3 if lean <= t.setting_upright_excellent else 2 if lean <= t.setting_upright_good else 1

        def elbow_mean(frames: Sequence[SettingFeatures]) -> Optional[float]:
            values = [
                (f.left_elbow_angle + f.right_elbow_angle) / 2.0
                for f in frames
                if f.left_elbow_angle is not None and f.right_elbow_angle is not None
            ]
            return float(np.mean(values)) if values else None

        pre_elbow, post_elbow = elbow_mean(pre), elbow_mean(post)
        elbow_delta = post_elbow - pre_elbow if pre_elbow is not None and post_elbow is not None else 0.0
        extension = (
            3 if elbow_delta > t.setting_elbow_delta_excellent else 2 if elbow_delta > t.setting_elbow_delta_good else 1
        )
        alignment = int(clamp(round((levelness + upright + extension) / 3.0), 1, 3))

        # Follow-through & control after contact.
        post_wrists = [
            f
            for f in post
            if f.left_wrist_y is not None and f.right_wrist_y is not None and f.nose_y is not None and f.torso_length > 0
        ]
        above_ratio = _ratio([f.wrists_above_forehead for f in post_wrists])
        wrist_heights = [((f.left_wrist_y + f.right_wrist_y) / 2.0) / f.torso_length for f in post_wrists]  # type: ignore[operator]
        wrist_std = float(np.std(wrist_heights)) if wrist_heights else 0.0
        if above_ratio >= strong and wrist_std < t.setting_follow_std_excellent:
            follow = 3
        elif above_ratio >= partial and wrist_std < t.setting_follow_std_good:
            follow = 2
        else:
            follow = 1

        knee_means = [(f.left_knee_angle + f.right_knee_angle) / 2.0 for f in pre_knees]  # type: ignore[operator]
        contact_heights = [
            (f.nose_y - (f.left_wrist_y + f.right_wrist_y) / 2.0) / f.torso_length  # type: ignore[operator]
            for f in window
            if f.nose_y is not None and f.left_wrist_y is not None and f.right_wrist_y is not None and f.torso_length > 0
        ]
        metrics = {
            "knee_flex": round((180.0 - float(np.mean(knee_means))) / 180.0 * 100.0, 2) if knee_means else 0.0,
            "wrist_above_forehead": above_ratio >= 0.5,
            "contact_height_rel_torso": round(float(np.mean(contact_heights)), 4) if contact_heights else 0.0,
            "extension_sequence": round(elbow_delta, 2),
            "stability": round(wrist_std, 4),
        }
        scores = {
            "readyFootwork": ready,
            "handShapeContact": hand,
            "alignmentExtension": alignment,
            "followThroughControl": follow,
        }
        return scores, metrics

    def finish(self, session: LiveSession, total_frames_estimate: Optional[int] = None) -> LiveSummary:
        """Summarise the session; safe to call more than once."""
        analyzed = session.frames_analyzed
        contact = session.contact_frame if session.contact_frame is not None else analyzed // 2

        expected = session.frames_seen if total_frames_estimate is None else int(total_frames_estimate)
        detection = clamp(analyzed / expected, 0.0, 1.0) if expected > 0 else 0.0
        peak = max(session.wrist_speeds) if session.wrist_speeds else 0.0
        confidence = clamp(0.5 * detection + 0.5 * clamp(peak, 0.0, 1.0), 0.0, 1.0)
        needs_review = confidence < config.LOW_CONFIDENCE_THRESHOLD
        if needs_review:
            logger.warning("Low live confidence %.2f; the clip should be re-recorded.", confidence)

        metrics: Dict[str, Any] = {
            "frames": analyzed,
            "detected_frames": analyzed,
            "knee_flex": 0.0,
            "elbow_lock": False,
            "wrist_above_forehead": False,
            "contact_height_rel_torso": 0.0,
            "platform_flatness": 0.0,
            "extension_sequence": 0.0,
            "facing_target": 0.0,
            "stability": 0.0,
            "contact_frame": contact,
        }
        if session.skill is Skill.SETTING:
            scores, setting_metrics = self._score_setting(session.setting_features, contact)
            for name, score in scores.items():
                self._raise(session, name, score)
            metrics.update(setting_metrics)

        return LiveSummary(
            skill=session.skill,
            rubric=build_result(session.skill, session.scores),
            contact_frame=contact,
            contact_detected=session.contact_detected,
            confidence=confidence,
            needs_review=needs_review,
            frames_analyzed=analyzed,
            frames_seen=session.frames_seen,
            metrics=metrics,
            captures=dict(session.captures),
        )


__all__ = ["Capture", "SettingFeatures", "LiveSession", "LiveSummary", "LiveRubricTracker"]
