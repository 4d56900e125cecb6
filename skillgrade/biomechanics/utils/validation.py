"""Detection coverage and confidence helpers."""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from skillgrade.biomechanics import config
from skillgrade.biomechanics.config import BIOMECHANICS_LOGGER as logger
from skillgrade.models import MEASURED_METRICS, Frame, Joint, Metrics

PRESENCE_WARNING_RATIO = 0.9

KEY_JOINTS: Tuple[Joint, ...] = (
    Joint.LEFT_SHOULDER,
    Joint.RIGHT_SHOULDER,
    Joint.LEFT_WRIST,
    Joint.RIGHT_WRIST,
    Joint.LEFT_HIP,
    Joint.RIGHT_HIP,
    Joint.LEFT_KNEE,
    Joint.RIGHT_KNEE,
    Joint.LEFT_ANKLE,
    Joint.RIGHT_ANKLE,
)


def _scores(frames: Sequence[Frame]) -> np.ndarray:
    if not frames:
        return np.zeros((0, len(Joint)), dtype=float)
    return np.stack([frame.scores for frame in frames], axis=0)


def detection_rate(frames: Sequence[Frame], threshold: Optional[float] = None) -> float:
    """Fraction of frames with at least one joint above ``threshold``."""
    if not frames:
        return 0.0
    thr = config.FRAME_CONFIDENCE_THRESHOLD if threshold is None else float(threshold)
    detected = (_scores(frames) > thr).any(axis=1)
    return float(detected.mean())


def metric_availability(available: Mapping[str, bool]) -> float:
    """Fraction of measured (non-estimated) metrics that were computable."""
    if not MEASURED_METRICS:
        return 0.0
    return sum(1 for name in MEASURED_METRICS if available.get(name)) / len(MEASURED_METRICS)


def overall_confidence(frames: Sequence[Frame], metrics: Metrics) -> float:
    """Mean of detection coverage and measured-metric availability, in [0, 1]."""
    coverage = detection_rate(frames)
    availability = metric_availability(metrics.measured_available)
    return float(np.clip((coverage + availability) / 2.0, 0.0, 1.0))


def _presence(scores: np.ndarray, threshold: float) -> Tuple[Dict[str, float], List[str]]:
    presence: Dict[str, float] = {}
    issues: List[str] = []
    for joint in KEY_JOINTS:
        column = scores[:, int(joint)]
        ratio = float(np.mean(column > threshold)) if column.size else 0.0
        presence[joint.label] = ratio
        if ratio < PRESENCE_WARNING_RATIO:
            missing = np.where(column <= threshold)[0]
            if missing.size:
                issues.append(
                    f"{joint.label} confidence <= {threshold:.2f} in frames {missing[0]}-{missing[-1]} "
                    f"({ratio*100:.1f}% present)."
                )
    return presence, issues


def validate_pose_quality(frames: Sequence[Frame], threshold: Optional[float] = None) -> Dict[str, object]:
    """Summarise detection coverage for a sequence (JSON-safe)."""
    if not frames:
        return {"detection_rate": 0.0, "mean_confidence": 0.0, "joint_presence": {}, "issues": ["No frames provided."]}

    thr = config.FRAME_CONFIDENCE_THRESHOLD if threshold is None else float(threshold)
    scores = _scores(frames)
    presence, issues = _presence(scores, thr)
    confidences = [frame.confidence for frame in frames]
    if issues:
        logger.warning("Pose quality issues: %s", "; ".join(issues))
    return {
        "detection_rate": round(detection_rate(frames, thr), 4),
        "mean_confidence": round(float(np.mean(confidences)), 4),
        "joint_presence": {name: round(value, 4) for name, value in presence.items()},
        "issues": issues,
    }


__all__ = ["detection_rate", "metric_availability", "overall_confidence", "validate_pose_quality"]
