"""Split a pose sequence into preparation, execution and follow-through.

Uses a single global velocity peak:
- Velocity[i]: mean displacement of joints valid in both frame i-1 and frame i.
- Execution: the peak frame +/- ``EXECUTION_HALF_WINDOW`` frames, clipped.
- Preparation / follow-through: everything before / after that window.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np

from skillgrade.biomechanics import config
from skillgrade.biomechanics.config import BIOMECHANICS_LOGGER as logger
from skillgrade.models import Frame, NormalizedFrame, PhaseSplit

MIN_FRAMES_FOR_PHASES = 3


def _positions(item: Any, threshold: float) -> Tuple[np.ndarray, np.ndarray]:
    if isinstance(item, NormalizedFrame):
        return item.xy, item.valid_mask(threshold)
    if isinstance(item, Frame):
        return item.xy, item.valid_mask(threshold)
    arr = np.asarray(item, dtype=float)
    return arr[:, :2], arr[:, 2] > float(threshold)


def frame_velocities(frames: Sequence[Any], threshold: Optional[float] = None) -> np.ndarray:
    """Per-frame movement velocity (velocity[0] is always 0)."""
    thr = config.COMPARISON_CONFIDENCE_THRESHOLD if threshold is None else float(threshold)
    velocities = np.zeros(len(frames), dtype=float)
    if len(frames) < 2:
        return velocities
    prev_xy, prev_ok = _positions(frames[0], thr)
    for idx in range(1, len(frames)):
        xy, ok = _positions(frames[idx], thr)
        both = prev_ok & ok
        if both.any():
            disp = np.hypot(*(xy[both] - prev_xy[both]).T)
            velocities[idx] = float(disp.mean())
        prev_xy, prev_ok = xy, ok
    return velocities


def segment_phases(frames: Sequence[Any], threshold: Optional[float] = None) -> PhaseSplit:
    """Segment ``frames`` around the single most explosive moment.

    Items (``Frame`` or ``NormalizedFrame``) are returned unchanged; concatenating
    the three phases always reproduces the input.
    """
    items = tuple(frames)
    if len(items) < MIN_FRAMES_FOR_PHASES:
        if items:
            logger.debug("Only %d frame(s); treating the whole sequence as preparation.", len(items))
        return PhaseSplit(preparation=items, execution=(), follow_through=(), peak_index=None)

    velocities = frame_velocities(items, threshold)
    peak = int(np.argmax(velocities))
    half = max(0, int(config.EXECUTION_HALF_WINDOW))
    start = max(0, peak - half)
    end = min(len(items), peak + half + 1)
    logger.debug("Velocity peak at frame %d; execution window [%d, %d).", peak, start, end)
    return PhaseSplit(
        preparation=items[:start],
        execution=items[start:end],
        follow_through=items[end:],
        peak_index=peak,
        velocities=tuple(float(v) for v in velocities),
    )


def plot_phase_velocities(
    split: PhaseSplit,
    fps: Optional[float] = None,
    title: str = "Movement phase segmentation",
) -> plt.Figure:
    """Plot the velocity curve with the execution window shaded for debugging."""
    velocities = np.asarray(split.velocities, dtype=float)
    scale = float(fps) if fps else 1.0
    t = np.arange(len(velocities)) / scale
    fig, ax = plt.subplots()
    ax.plot(t, velocities, label="mean joint displacement")

    start = len(split.preparation)
    end = start + len(split.execution)
    if split.execution:
        ax.axvspan(start / scale, (end - 1) / scale, color="tab:orange", alpha=0.2, label="execution")
    if split.peak_index is not None:
        ax.axvline(split.peak_index / scale, color="tab:red", linestyle="--", alpha=0.7, label="peak")

    ax.set_xlabel("Time (s)" if fps else "Frame")
    ax.set_ylabel("Velocity")
    ax.set_title(title)
    ax.legend()
    ax.grid(True, alpha=0.3)
    return fig


__all__ = ["frame_velocities", "segment_phases", "plot_phase_velocities", "MIN_FRAMES_FOR_PHASES"]
