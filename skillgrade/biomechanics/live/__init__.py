"""Streaming rubric tracking for clips analysed while they play."""

from __future__ import annotations

from typing import Any

__all__ = ["LiveRubricTracker", "LiveSession", "LiveSummary", "detect_contact_frame"]

_TRACKER_EXPORTS = {"LiveRubricTracker", "LiveSession", "LiveSummary"}


def __getattr__(name: str) -> Any:  # pragma: no cover - exercised indirectly
    if name in _TRACKER_EXPORTS:
        from . import tracker as _tracker

        return getattr(_tracker, name)
    if name == "detect_contact_frame":
        from .contact import detect_contact_frame

        return detect_contact_frame
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(set(list(globals()) + __all__))
