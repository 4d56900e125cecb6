"""Biomechanics engine for volleyball skill assessment.

This module is intentionally **lazy-imported** so lightweight tooling (like the
CLI `info` command) can be imported without pulling in pandas or matplotlib.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "analyze_sequence",
    "AnalysisResult",
    "compare_sequences",
    "score_rubric",
    "segment_phases",
    "plot_phase_velocities",
    "LiveRubricTracker",
    "LiveSession",
    "LiveSummary",
    "BIOMECHANICS_LOGGER",
    "FRAME_CONFIDENCE_THRESHOLD",
    "METRIC_CONFIDENCE_THRESHOLD",
    "COMPARISON_CONFIDENCE_THRESHOLD",
    "SIMILARITY_RADIUS",
    "PHASE_WEIGHTS",
    "TARGET_FPS",
    "load_config_from_file",
    "validate_config_values",
    "print_config",
]

_CONFIG_EXPORTS = {
    "BIOMECHANICS_LOGGER",
    "FRAME_CONFIDENCE_THRESHOLD",
    "METRIC_CONFIDENCE_THRESHOLD",
    "COMPARISON_CONFIDENCE_THRESHOLD",
    "SIMILARITY_RADIUS",
    "PHASE_WEIGHTS",
    "TARGET_FPS",
    "load_config_from_file",
    "validate_config_values",
    "print_config",
}

_METRICS_EXPORTS = {"analyze_sequence", "AnalysisResult", "segment_phases", "plot_phase_velocities"}
_COMPARISON_EXPORTS = {"compare_sequences"}
_RUBRIC_EXPORTS = {"score_rubric"}
_LIVE_EXPORTS = {"LiveRubricTracker", "LiveSession", "LiveSummary"}


def __getattr__(name: str) -> Any:  # pragma: no cover - exercised indirectly
    if name in _CONFIG_EXPORTS:
        from . import config as _config

        return getattr(_config, name)
    if name in _METRICS_EXPORTS:
        from . import metrics as _metrics

        return getattr(_metrics, name)
    if name in _COMPARISON_EXPORTS:
        from . import comparison as _comparison

        return getattr(_comparison, name)
    if name in _RUBRIC_EXPORTS:
        from . import rubric as _rubric

        return getattr(_rubric, name)
    if name in _LIVE_EXPORTS:
        from . import live as _live

        return getattr(_live, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(set(list(globals()) + __all__))
