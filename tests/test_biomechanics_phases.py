from __future__ import annotations

import matplotlib.pyplot as plt
import numpy as np
import pytest

from pose_builders import frame, wrist_sequence
from skillgrade.biomechanics.metrics.phase_detection import (
    frame_velocities,
    plot_phase_velocities,
    segment_phases,
)


@pytest.mark.parametrize("n", list(range(0, 11)))
def test_phase_concatenation_reproduces_input(n: int) -> None:
    rng = np.random.default_rng(n)
    frames = [frame(timestamp=i / 15.0) for i in range(n)]
    # Jitter every joint so the velocity peak lands somewhere arbitrary.
    frames = [
        type(f).from_keypoints(
            np.column_stack([f.xy + rng.normal(0.0, 5.0, size=f.xy.shape), f.scores]),
            f.timestamp,
            width=f.width,
            height=f.height,
        )
        for f in frames
    ]
    split = segment_phases(frames)
    rebuilt = split.concatenated()
    assert len(rebuilt) == n
    assert all(a is b for a, b in zip(rebuilt, frames))


@pytest.mark.parametrize("n", [0, 1, 2])
def test_short_sequences_are_all_preparation(n: int) -> None:
    frames = [frame() for _ in range(n)]
    split = segment_phases(frames)
    assert len(split.preparation) == n
    assert split.execution == ()
    assert split.follow_through == ()
    assert split.peak_index is None


def test_execution_window_surrounds_velocity_peak() -> None:
    frames = wrist_sequence(10, spike_at=5)
    split = segment_phases(frames)
    assert split.peak_index == 5
    assert len(split.preparation) == 3
    assert len(split.execution) == 5
    assert len(split.follow_through) == 2


def test_execution_window_is_clipped_at_sequence_start() -> None:
    frames = wrist_sequence(6, spike_at=1)
    split = segment_phases(frames)
    assert split.peak_index == 1
    assert split.preparation == ()
    assert len(split.execution) == 4


def test_frame_velocities_first_entry_is_zero() -> None:
    velocities = frame_velocities(wrist_sequence(4, step=4.0))
    assert velocities[0] == 0.0
    assert velocities[1] > 0.0


def test_plot_phase_velocities_returns_figure() -> None:
    split = segment_phases(wrist_sequence(10, spike_at=5))
    fig = plot_phase_velocities(split, fps=15.0)
    try:
        ax = fig.axes[0]
        assert ax.get_xlabel() == "Time (s)"
        assert len(ax.lines) == 2
    finally:
        plt.close(fig)
