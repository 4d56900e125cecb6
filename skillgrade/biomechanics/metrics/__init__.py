"""Metrics computation package for volleyball pose analysis.

This package is intentionally **lazy-imported** so lightweight tooling can use
pure-numpy geometry without importing matplotlib or pandas.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "segment_phases",
    "plot_phase_velocities",
    "distance",
    "angle_at",
    "line_angle",
    "clamp",
    "compute_frame_angles",
    "compute_trajectory_angles",
    "normalize_frame",
    "normalize_sequence",
    "validate_keypoints",
    "extract_metrics",
    "ConstantEstimator",
    "RandomEstimator",
    "analyze_sequence",
    "AnalysisResult",
    "load_pose_payload",
]

_PHASE_EXPORTS = {"segment_phases", "plot_phase_velocities"}
_ANGLE_EXPORTS = {
    "distance",
    "angle_at",
    "line_angle",
    "clamp",
    "compute_frame_angles",
    "compute_trajectory_angles",
}
_NORMALIZATION_EXPORTS = {"normalize_frame", "normalize_sequence", "validate_keypoints"}
_SKILL_EXPORTS = {"extract_metrics", "ConstantEstimator", "RandomEstimator"}
_PIPELINE_EXPORTS = {"analyze_sequence", "AnalysisResult", "load_pose_payload"}


def __getattr__(name: str) -> Any:  # pragma: no cover - exercised indirectly
    if name in _PHASE_EXPORTS:
        from . import phase_detection as _phase_detection

        return getattr(_phase_detection, name)
    if name in _ANGLE_EXPORTS:
        from . import angles as _angles

        return getattr(_angles, name)
    if name in _NORMALIZATION_EXPORTS:
        from . import normalization as _normalization

        return getattr(_normalization, name)
    if name in _SKILL_EXPORTS:
        from . import skill_metrics as _skill_metrics

        return getattr(_skill_metrics, name)
    if name in _PIPELINE_EXPORTS:
        from . import pipeline as _pipeline

        return getattr(_pipeline, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(set(list(globals()) + __all__))
