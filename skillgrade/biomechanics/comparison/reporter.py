"""Comparison report generator for candidate-vs-reference analyses.

This module turns an :class:`AnalysisResult` into a compact JSON payload
intended for UI display (overall score, phase breakdown, top deviating
joints, rubric, and a manual-review flag).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from skillgrade.biomechanics import config
from skillgrade.models import ComparisonResult

_JOINT_CUES: Dict[str, str] = {
    "nose": "Keep your head steady and eyes on the ball.",
    "left_shoulder": "Square your shoulders to the target.",
    "right_shoulder": "Square your shoulders to the target.",
    "left_elbow": "Check elbow bend; match the reference arm shape.",
    "right_elbow": "Check elbow bend; match the reference arm shape.",
    "left_wrist": "Hand position differs most from the reference; adjust your contact point.",
    "right_wrist": "Hand position differs most from the reference; adjust your contact point.",
    "left_hip": "Lower your hips and keep your base balanced.",
    "right_hip": "Lower your hips and keep your base balanced.",
    "left_knee": "Bend your knees more in the ready position.",
    "right_knee": "Bend your knees more in the ready position.",
    "left_ankle": "Widen your stance and stay on the balls of your feet.",
    "right_ankle": "Widen your stance and stay on the balls of your feet.",
}

_CRITERION_LABELS: Dict[str, str] = {
    "readyPlatform": "Ready position & platform",
    "contactAngle": "Contact point & platform angle",
    "legDriveShoulder": "Leg drive & shoulder lift",
    "followThroughControl": "Follow-through & control",
    "readyFootwork": "Ready footwork & base",
    "handShapeContact": "Hand shape & contact window",
    "alignmentExtension": "Alignment & extension",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_joint_description(joint_name: str) -> str:
    """Return a coach-friendly cue for a deviating joint."""
    name = (joint_name or "").strip().lower()
    cue = _JOINT_CUES.get(name)
    if cue:
        return cue
    human = name.replace("_", " ").strip() or "this joint"
    return f"Focus on better {human} positioning relative to the expert technique."


def get_criterion_label(criterion: str) -> str:
    return _CRITERION_LABELS.get(criterion, criterion)


def _to_percent(value: float) -> int:
    return int(round(max(0.0, min(1.0, float(value))) * 100.0))


def _comparison_section(comparison: ComparisonResult, top_n: int) -> Dict[str, Any]:
    deviations = list(comparison.key_point_deviations)[: max(0, top_n)]
    return {
        "overall_score": _to_percent(comparison.overall_similarity),
        "timing_score": _to_percent(comparison.timing_score),
        "phase_breakdown": {phase: _to_percent(score) for phase, score in comparison.phase_scores.items()},
        "top_issues": [
            {
                "rank": rank,
                "point": name,
                "deviation": round(float(dev), 4),
                "description": get_joint_description(name),
            }
            for rank, (name, dev) in enumerate(deviations, start=1)
        ],
    }


def generate_comparison_report(
    analysis: Any,
    *,
    athlete_id: Optional[str] = None,
    top_n: Optional[int] = None,
) -> Dict[str, Any]:
    """Build a UI payload from an ``AnalysisResult``.

    Comparison fields are ``None`` when no reference was supplied.
    """
    limit = config.TOP_DEVIATIONS if top_n is None else int(top_n)
    rubric = analysis.rubric
    confidence = float(analysis.confidence)

    criteria: List[Dict[str, Any]] = [
        {"criterion": name, "label": get_criterion_label(name), "score": int(score)}
        for name, score in rubric.scores.items()
    ]

    report: Dict[str, Any] = {
        "athlete_id": (athlete_id or "").strip() or "unknown",
        "generated_at": _now_iso(),
        "skill": analysis.skill.value,
        "target": analysis.target.value,
        "rubric": {
            "criteria": criteria,
            "total": rubric.total,
            "max_total": rubric.max_total,
            "grade": rubric.grade,
        },
        "confidence": round(confidence, 4),
        "needs_review": confidence < config.LOW_CONFIDENCE_THRESHOLD,
        "estimated_metrics": list(analysis.metrics.estimated),
        "reference_scores": dict(analysis.reference_scores),
        "overall_score": None,
        "timing_score": None,
        "phase_breakdown": None,
        "top_issues": [],
    }
    if analysis.comparison is not None:
        report.update(_comparison_section(analysis.comparison, limit))
    return report


__all__ = ["generate_comparison_report", "get_joint_description", "get_criterion_label"]
