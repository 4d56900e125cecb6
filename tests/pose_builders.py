"""Synthetic pose builders shared by the test modules."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from skillgrade.models import Frame, Joint

WIDTH, HEIGHT = 640.0, 480.0

# Upright athlete facing the camera, arms hanging straight (pixel coordinates).
STANDING: Dict[Joint, Tuple[float, float]] = {
    Joint.NOSE: (320.0, 100.0),
    Joint.LEFT_EYE: (310.0, 95.0),
    Joint.RIGHT_EYE: (330.0, 95.0),
    Joint.LEFT_EAR: (300.0, 100.0),
    Joint.RIGHT_EAR: (340.0, 100.0),
    Joint.LEFT_SHOULDER: (280.0, 150.0),
    Joint.RIGHT_SHOULDER: (360.0, 150.0),
    Joint.LEFT_ELBOW: (270.0, 200.0),
    Joint.RIGHT_ELBOW: (370.0, 200.0),
    Joint.LEFT_WRIST: (270.0, 250.0),
    Joint.RIGHT_WRIST: (370.0, 250.0),
    Joint.LEFT_HIP: (290.0, 260.0),
    Joint.RIGHT_HIP: (350.0, 260.0),
    Joint.LEFT_KNEE: (290.0, 340.0),
    Joint.RIGHT_KNEE: (350.0, 340.0),
    Joint.LEFT_ANKLE: (290.0, 420.0),
    Joint.RIGHT_ANKLE: (350.0, 420.0),
}

# Knees pushed outward so both knee angles are roughly 100 degrees.
CROUCH: Dict[Joint, Tuple[float, float]] = {
    Joint.LEFT_KNEE: (240.0, 320.0),
    Joint.RIGHT_KNEE: (400.0, 320.0),
    Joint.LEFT_ANKLE: (290.0, 380.0),
    Joint.RIGHT_ANKLE: (350.0, 380.0),
}


def keypoints(
    overrides: Optional[Mapping[Joint, Tuple[float, float]]] = None,
    *,
    confidence: float = 0.9,
    missing: Iterable[Joint] = (),
) -> np.ndarray:
    points = dict(STANDING)
    points.update(overrides or {})
    arr = np.zeros((len(Joint), 3), dtype=float)
    for joint, (x, y) in points.items():
        arr[int(joint)] = (x, y, confidence)
    for joint in missing:
        arr[int(joint), 2] = 0.0
    return arr


def frame(
    overrides: Optional[Mapping[Joint, Tuple[float, float]]] = None,
    *,
    timestamp: float = 0.0,
    confidence: float = 0.9,
    missing: Iterable[Joint] = (),
    sized: bool = True,
) -> Frame:
    return Frame.from_keypoints(
        keypoints(overrides, confidence=confidence, missing=missing),
        timestamp,
        width=WIDTH if sized else None,
        height=HEIGHT if sized else None,
    )


def raised_wrists(lift: float, base: Optional[Mapping[Joint, Tuple[float, float]]] = None) -> Dict[Joint, Tuple[float, float]]:
    """Overrides moving both wrists ``lift`` pixels up from their standing position."""
    out = dict(base or {})
    for joint in (Joint.LEFT_WRIST, Joint.RIGHT_WRIST):
        x, y = STANDING[joint]
        out[joint] = (x, y - lift)
    return out


def wrist_sequence(
    n: int,
    *,
    fps: float = 15.0,
    step: float = 2.0,
    spike_at: Optional[int] = None,
    jump: float = 40.0,
    base: Optional[Mapping[Joint, Tuple[float, float]]] = None,
) -> List[Frame]:
    """Frames whose wrists rise ``step`` px per frame, with one ``jump`` at ``spike_at``."""
    frames: List[Frame] = []
    lift = 0.0
    for idx in range(n):
        if idx > 0:
            lift += jump if idx == spike_at else step
        frames.append(frame(raised_wrists(lift, base), timestamp=idx / fps))
    return frames
