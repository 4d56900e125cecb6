"""End-to-end batch analysis of a completed pose sequence.

This module consumes frames (or a pose JSON payload loaded from disk by the
CLI) and computes:
- technique metrics (measured + estimated)
- rubric scores and letter grade
- an overall confidence in [0, 1]
- optionally, similarity against an expert reference and 0-100 scores
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from skillgrade.biomechanics import config
from skillgrade.biomechanics.comparison.scoring import compute_reference_scores
from skillgrade.biomechanics.comparison.similarity import Resampler, compare_sequences
from skillgrade.biomechanics.rubric.scorer import score_rubric
from skillgrade.biomechanics.utils.validation import overall_confidence, validate_pose_quality
from skillgrade.models import (
    ComparisonResult,
    CoordinateSpace,
    Frame,
    MalformedInputError,
    Metrics,
    RubricResult,
    Skill,
    Target,
    parse_skill,
    parse_target,
)

from .skill_metrics import MetricEstimator, extract_metrics

logger = logging.getLogger(__name__)


def _safe_float(value: Any) -> Optional[float]:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(num):
        return None
    return float(num)


def _json_safe(value: Any) -> Any:
    if value is None:
        return None

    if isinstance(value, (Skill, Target, CoordinateSpace)):
        return value.value

    if isinstance(value, (str, bool, int)):
        return value

    if isinstance(value, float):
        return value if math.isfinite(value) else None

    if isinstance(value, Path):
        return str(value)

    if isinstance(value, np.generic):
        return _json_safe(value.item())

    if isinstance(value, pd.DataFrame):
        records = value.to_dict(orient="records")
        return [_json_safe(rec) for rec in records]

    if isinstance(value, np.ndarray):
        return _json_safe(value.tolist())

    if hasattr(value, "to_dict"):
        return _json_safe(value.to_dict())

    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]

    try:
        return _json_safe(asdict(value))  # type: ignore[arg-type]
    except TypeError:
        return str(value)


@dataclass(frozen=True)
class PosePayload:
    """Frames plus clip metadata decoded from a pose JSON payload."""

    frames: List[Frame]
    width: Optional[float] = None
    height: Optional[float] = None
    space: CoordinateSpace = CoordinateSpace.AUTO
    fps: Optional[float] = None
    skill: Optional[Skill] = None
    target: Optional[Target] = None


def _read_payload(source: Any) -> dict[str, Any]:
    if isinstance(source, Mapping):
        return dict(source)
    path = Path(source)
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise MalformedInputError("Pose payload must decode to a JSON object.")
    return payload


def load_pose_payload(source: Any) -> PosePayload:
    """Decode a pose payload from a mapping or a JSON file path.

    Shape::

        {"frames": [{"keypoints": [[x, y, c] * 17], "timestamp": s}, ...],
         "width": W, "height": H, "coordinate_space": "pixel" | "normalized" | "auto",
         "fps": 15, "skill": "Digging", "target": "Center"}
    """
    payload = _read_payload(source)
    meta = payload.get("video_metadata") if isinstance(payload.get("video_metadata"), Mapping) else {}
    width = _safe_float(payload.get("width", meta.get("width")))
    height = _safe_float(payload.get("height", meta.get("height")))
    fps = _safe_float(payload.get("fps", meta.get("fps")))
    space = CoordinateSpace.parse(payload.get("coordinate_space", payload.get("space", "auto")))

    raw_frames = payload.get("frames")
    if not isinstance(raw_frames, list):
        raise MalformedInputError("Pose payload must contain a 'frames' list.")

    frames: List[Frame] = []
    for idx, raw in enumerate(raw_frames):
        if isinstance(raw, Mapping):
            keypoints = raw.get("keypoints", raw.get("landmarks"))
            timestamp = _safe_float(raw.get("timestamp"))
        else:
            keypoints, timestamp = raw, None
        if keypoints is None:
            raise MalformedInputError(f"Frame {idx} has no 'keypoints'.")
        if timestamp is None:
            timestamp = idx / fps if fps else float(idx)
        try:
            frames.append(Frame.from_keypoints(keypoints, timestamp, width=width, height=height, space=space))
        except MalformedInputError as exc:
            raise MalformedInputError(f"Frame {idx}: {exc}") from exc

    skill = parse_skill(payload["skill"]) if payload.get("skill") else None
    target = parse_target(payload["target"]) if payload.get("target") else None
    return PosePayload(frames=frames, width=width, height=height, space=space, fps=fps, skill=skill, target=target)


@dataclass(frozen=True)
class AnalysisResult:
    skill: Skill
    target: Target
    metrics: Metrics
    rubric: RubricResult
    confidence: float
    needs_review: bool
    reference_scores: Mapping[str, int]
    comparison: Optional[ComparisonResult] = None
    quality: Mapping[str, object] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _json_safe(
            {
                "skill": self.skill,
                "target": self.target,
                "metrics": self.metrics.to_dict(),
                "rubric": self.rubric.to_dict(),
                "confidence": round(float(self.confidence), 4),
                "needs_review": self.needs_review,
                "comparison": self.comparison.to_dict() if self.comparison else None,
                "reference_scores": dict(self.reference_scores),
                "quality": dict(self.quality),
            }
        )


def analyze_sequence(
    frames: Sequence[Frame],
    skill: Any,
    target: Any = Target.CENTER,
    *,
    reference: Optional[Sequence[Frame]] = None,
    estimator: Optional[MetricEstimator] = None,
    resampler: Optional[Resampler] = None,
    ladders: Optional[Any] = None,
) -> AnalysisResult:
    """Run metrics, rubric and (optionally) reference comparison for one clip."""
    skill = parse_skill(skill)
    target = parse_target(target)
    frames = list(frames)

    metrics = extract_metrics(frames, skill, target, estimator=estimator)
    rubric = score_rubric(metrics, skill, ladders=ladders)
    confidence = overall_confidence(frames, metrics)

    comparison: Optional[ComparisonResult] = None
    if reference is not None:
        comparison = compare_sequences(frames, list(reference), resampler=resampler)

    needs_review = confidence < config.LOW_CONFIDENCE_THRESHOLD
    if needs_review:
        logger.warning("Low analysis confidence %.2f; flagging for manual review.", confidence)
    logger.info(
        "Analyzed %d frames (%s): total=%d grade=%s confidence=%.2f",
        len(frames),
        skill.value,
        rubric.total,
        rubric.grade,
        confidence,
    )

    return AnalysisResult(
        skill=skill,
        target=target,
        metrics=metrics,
        rubric=rubric,
        confidence=confidence,
        needs_review=needs_review,
        reference_scores=compute_reference_scores(frames, comparison),
        comparison=comparison,
        quality=validate_pose_quality(frames),
    )


__all__ = ["PosePayload", "AnalysisResult", "load_pose_payload", "analyze_sequence"]
