"""Tools for comparing a performance against an expert reference.

Uses nearest-proportional resampling per movement phase; the resampling
strategy is pluggable.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "compare_sequences",
    "pose_similarity",
    "NearestProportionalResampler",
    "compute_reference_scores",
    "generate_comparison_report",
]

_SIMILARITY_EXPORTS = {"compare_sequences", "pose_similarity", "NearestProportionalResampler"}
_SCORING_EXPORTS = {"compute_reference_scores"}
_REPORT_EXPORTS = {"generate_comparison_report"}


def __getattr__(name: str) -> Any:  # pragma: no cover - exercised indirectly
    if name in _SIMILARITY_EXPORTS:
        from . import similarity as _similarity

        return getattr(_similarity, name)
    if name in _SCORING_EXPORTS:
        from . import scoring as _scoring

        return getattr(_scoring, name)
    if name in _REPORT_EXPORTS:
        from . import reporter as _reporter

        return getattr(_reporter, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(set(list(globals()) + __all__))
