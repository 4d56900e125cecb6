"""Technique metrics for volleyball digging and setting.

Measured from 2-D pose:
- knee_flex: mean knee flexion percentage ``(180 - angle) / 180 * 100``.
- elbow_lock: any frame where every visible arm is straight.
- wrist_above_forehead: any frame with both wrists above the nose line.

Estimated (single-view 2-D pose cannot resolve them):
- contact_height_rel_torso, platform_flatness, extension_sequence,
  facing_target, stability.

Estimated values come from a pluggable :class:`MetricEstimator`; their names
are listed in ``Metrics.estimated`` so callers never mistake them for
measurements.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

import numpy as np

from skillgrade.biomechanics import config
from skillgrade.biomechanics.config import BIOMECHANICS_LOGGER as logger
from skillgrade.biomechanics.live.contact import detect_contact_frame
from skillgrade.biomechanics.metrics.angles import angle_at
from skillgrade.biomechanics.metrics.normalization import normalize_sequence, torso_length
from skillgrade.models import (
    ESTIMATED_METRICS,
    MEASURED_METRICS,
    Frame,
    Joint,
    Metrics,
    NormalizedFrame,
    Skill,
    Target,
    parse_skill,
    parse_target,
)

LEGS = (
    (Joint.LEFT_HIP, Joint.LEFT_KNEE, Joint.LEFT_ANKLE),
    (Joint.RIGHT_HIP, Joint.RIGHT_KNEE, Joint.RIGHT_ANKLE),
)
ARMS = (
    (Joint.LEFT_SHOULDER, Joint.LEFT_ELBOW, Joint.LEFT_WRIST),
    (Joint.RIGHT_SHOULDER, Joint.RIGHT_ELBOW, Joint.RIGHT_WRIST),
)


@dataclass(frozen=True)
class EstimatedMetrics:
    contact_height_rel_torso: float
    platform_flatness: float
    extension_sequence: float
    facing_target: float
    stability: float


class MetricEstimator(Protocol):
    """Supplies the metrics 2-D single-view pose cannot measure."""

    def estimate(self, skill: Skill, target: Target, frames: Sequence[Frame]) -> EstimatedMetrics:
        ...


# (low, high) ranges per estimated metric, keyed by skill or target where they differ.
CONTACT_HEIGHT_RANGES = {Skill.SETTING: (0.85, 0.95), Skill.DIGGING: (0.4, 0.6)}
FLATNESS_RANGES = {Skill.SETTING: (0.0, 0.0), Skill.DIGGING: (5.0, 25.0)}
EXTENSION_RANGE = (0.5, 0.9)
FACING_RANGES = {Target.CENTER: (0.8, 1.0), Target.LEFT: (0.6, 0.9), Target.RIGHT: (0.6, 0.9)}
STABILITY_RANGE = (0.6, 0.9)


class ConstantEstimator:
    """Deterministic skill/target-conditioned midpoints of the estimate ranges."""

    def estimate(self, skill: Skill, target: Target, frames: Sequence[Frame]) -> EstimatedMetrics:
        def mid(bounds: tuple[float, float]) -> float:
            return (bounds[0] + bounds[1]) / 2.0

        return EstimatedMetrics(
            contact_height_rel_torso=mid(CONTACT_HEIGHT_RANGES[skill]),
            platform_flatness=mid(FLATNESS_RANGES[skill]),
            extension_sequence=mid(EXTENSION_RANGE),
            facing_target=mid(FACING_RANGES[target]),
            stability=mid(STABILITY_RANGE),
        )


class RandomEstimator:
    """Uniform draws over the estimate ranges; reproducible only with a seed."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def _draw(self, bounds: tuple[float, float]) -> float:
        low, high = bounds
        if high <= low:
            return float(low)
        return float(self._rng.uniform(low, high))

    def estimate(self, skill: Skill, target: Target, frames: Sequence[Frame]) -> EstimatedMetrics:
        return EstimatedMetrics(
            contact_height_rel_torso=self._draw(CONTACT_HEIGHT_RANGES[skill]),
            platform_flatness=self._draw(FLATNESS_RANGES[skill]),
            extension_sequence=self._draw(EXTENSION_RANGE),
            facing_target=self._draw(FACING_RANGES[target]),
            stability=self._draw(STABILITY_RANGE),
        )


def build_estimator(name: Optional[str] = None, seed: Optional[int] = None) -> MetricEstimator:
    """Estimator selected by name, defaulting to ``ESTIMATOR``/``ESTIMATOR_SEED`` config."""
    key = (name or config.ESTIMATOR or "constant").strip().lower()
    if key == "random":
        return RandomEstimator(seed if seed is not None else config.ESTIMATOR_SEED)
    if key != "constant":
        logger.warning("Unknown estimator %r; using the constant estimator.", key)
    return ConstantEstimator()


def _knee_flex(frames: Sequence[NormalizedFrame]) -> Optional[float]:
    per_frame: List[float] = []
    for frame in frames:
        legs = [
            (180.0 - angle_at(*(frame.xy[int(j)] for j in leg))) / 180.0 * 100.0
            for leg in LEGS
            if all(frame.valid[int(j)] for j in leg)
        ]
        if legs:
            per_frame.append(float(np.mean(legs)))
    if not per_frame:
        return None
    return float(np.mean(per_frame))


def _elbow_lock(frames: Sequence[NormalizedFrame]) -> Optional[bool]:
    seen_arm = False
    for frame in frames:
        arms = [
            angle_at(*(frame.xy[int(j)] for j in arm))
            for arm in ARMS
            if all(frame.valid[int(j)] for j in arm)
        ]
        if not arms:
            continue
        seen_arm = True
        if all(angle > config.ELBOW_LOCK_ANGLE_DEG for angle in arms):
            return True
    return False if seen_arm else None


def _wrists_above_forehead(frame: NormalizedFrame) -> Optional[bool]:
    nose, lw, rw = int(Joint.NOSE), int(Joint.LEFT_WRIST), int(Joint.RIGHT_WRIST)
    if not (frame.valid[nose] and frame.valid[lw] and frame.valid[rw]):
        return None
    torso = torso_length(frame.keypoints, frame.valid)
    if not math.isfinite(torso) or torso <= 0:
        return None
    nose_y = frame.xy[nose, 1]
    margin = config.WRIST_FOREHEAD_MARGIN
    return bool((nose_y - frame.xy[lw, 1]) / torso > margin and (nose_y - frame.xy[rw, 1]) / torso > margin)


def _wrist_above_forehead(frames: Sequence[NormalizedFrame]) -> Optional[bool]:
    seen = False
    for frame in frames:
        result = _wrists_above_forehead(frame)
        if result is None:
            continue
        seen = True
        if result:
            return True
    return False if seen else None


def extract_metrics(
    frames: Sequence[Frame],
    skill: Any,
    target: Any = Target.CENTER,
    *,
    estimator: Optional[MetricEstimator] = None,
    contact_frame: Optional[int] = None,
    detect_contact: bool = True,
    threshold: Optional[float] = None,
) -> Metrics:
    """Compute the :class:`Metrics` bundle for a completed sequence.

    Missing joints degrade to 0/False; only malformed frames raise.
    """
    skill = parse_skill(skill)
    target = parse_target(target)
    thr = config.METRIC_CONFIDENCE_THRESHOLD if threshold is None else float(threshold)
    normalized = normalize_sequence(frames, thr, units="pixel")

    detected = sum(1 for frame in normalized if frame.valid.any())
    knee_flex = _knee_flex(normalized)
    elbow_lock = _elbow_lock(normalized)
    wrist_above = _wrist_above_forehead(normalized)
    available: Dict[str, bool] = {
        "knee_flex": knee_flex is not None,
        "elbow_lock": elbow_lock is not None,
        "wrist_above_forehead": wrist_above is not None,
    }

    if contact_frame is None and detect_contact:
        contact_frame = detect_contact_frame(frames, threshold=thr)
    if contact_frame is None:
        contact_frame = len(frames) // 2

    estimates = (estimator or build_estimator()).estimate(skill, target, frames)
    if not frames:
        logger.warning("No frames supplied; metrics fall back to defaults.")
    elif detected == 0:
        logger.warning("No joint above confidence %.2f in %d frames.", thr, len(frames))

    return Metrics(
        frames=len(frames),
        detected_frames=detected,
        knee_flex=knee_flex if knee_flex is not None else 0.0,
        elbow_lock=bool(elbow_lock),
        wrist_above_forehead=bool(wrist_above),
        contact_height_rel_torso=estimates.contact_height_rel_torso,
        platform_flatness=estimates.platform_flatness,
        extension_sequence=estimates.extension_sequence,
        facing_target=estimates.facing_target,
        stability=estimates.stability,
        contact_frame=int(contact_frame),
        estimated=ESTIMATED_METRICS,
        measured_available={name: available[name] for name in MEASURED_METRICS},
    )


__all__ = [
    "EstimatedMetrics",
    "MetricEstimator",
    "ConstantEstimator",
    "RandomEstimator",
    "build_estimator",
    "extract_metrics",
]
