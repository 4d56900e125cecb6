"""Rubric ladders and scoring for volleyball skills."""

from __future__ import annotations

from typing import Any

__all__ = [
    "score_rubric",
    "explain_rubric",
    "grade_for_total",
    "default_ladders",
    "evaluate_condition",
    "evaluate_ladder",
    "normalize_ladders",
]

_SCORER_EXPORTS = {"score_rubric", "explain_rubric", "grade_for_total", "default_ladders"}
_RULES_EXPORTS = {"evaluate_condition", "evaluate_ladder", "normalize_ladders"}


def __getattr__(name: str) -> Any:  # pragma: no cover - exercised indirectly
    if name in _SCORER_EXPORTS:
        from . import scorer as _scorer

        return getattr(_scorer, name)
    if name in _RULES_EXPORTS:
        from . import rules as _rules

        return getattr(_rules, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(set(list(globals()) + __all__))
