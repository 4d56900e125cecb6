"""Coach-facing 0-100 scores for a performance, optionally against a reference.

With a :class:`ComparisonResult` the scores are driven by similarity; without
one they fall back to detection confidence and cumulative movement. These
are presentation numbers, not calibrated measurements.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence

import numpy as np

from skillgrade.biomechanics import config
from skillgrade.biomechanics.metrics.normalization import to_unit_keypoints
from skillgrade.models import ComparisonResult, Frame

DEFAULT_REFERENCE_SCORES: Dict[str, int] = {
    "technique": 70,
    "timing": 75,
    "power": 70,
    "accuracy": 75,
    "overall": 70,
}


def cumulative_movement(frames: Sequence[Frame], threshold: Optional[float] = None) -> float:
    """Sum over frames of the mean unit-space displacement of jointly valid joints."""
    thr = config.FRAME_CONFIDENCE_THRESHOLD if threshold is None else float(threshold)
    total = 0.0
    previous: Optional[np.ndarray] = None
    for frame in frames:
        current = to_unit_keypoints(frame)
        if previous is not None:
            both = (current[:, 2] > thr) & (previous[:, 2] > thr)
            if both.any():
                total += float(np.mean(np.hypot(*(current[both, :2] - previous[both, :2]).T)))
        previous = current
    return total


def compute_reference_scores(
    frames: Sequence[Frame], comparison: Optional[ComparisonResult] = None
) -> Dict[str, int]:
    """Technique / timing / power / accuracy / overall scores (integers, 0-100)."""
    if not frames:
        return dict(DEFAULT_REFERENCE_SCORES)

    mean_confidence = float(np.mean([frame.confidence for frame in frames]))
    technique = min(100.0, mean_confidence * 150.0)

    if comparison is not None:
        technique = min(100.0, 30.0 + comparison.overall_similarity * 70.0)
        timing = min(100.0, 40.0 + comparison.timing_score * 60.0)
        power = min(100.0, 35.0 + float(comparison.phase_scores.get("execution", 0.0)) * 65.0)
        accuracy = min(100.0, 30.0 + comparison.overall_similarity * 70.0)
        return {
            "technique": int(round(technique)),
            "timing": int(round(timing)),
            "power": int(round(power)),
            "accuracy": int(round(accuracy)),
            "overall": int(round((technique + timing + power + accuracy) / 4.0)),
        }

    scores = {
        "technique": int(round(technique)),
        "timing": int(round(min(100.0, 60.0 + min(40.0, len(frames) * 2.0)))),
        "power": int(round(min(100.0, 50.0 + min(50.0, cumulative_movement(frames) * 100.0)))),
    }
    scores["accuracy"] = int(round(scores["technique"] * 0.9))
    scores["overall"] = int(round(sum(scores.values()) / 4.0))
    return scores


__all__ = ["DEFAULT_REFERENCE_SCORES", "cumulative_movement", "compute_reference_scores"]
