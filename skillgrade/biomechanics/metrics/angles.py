"""Geometry helpers and joint angle computations for 2-D pose keypoints."""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from skillgrade.models import Frame, Joint, NormalizedFrame

DEFAULT_CONFIDENCE_THRESHOLD = 0.3

# Named interior angles: (proximal, vertex, distal).
ANGLE_DEFINITIONS: Dict[str, Tuple[Joint, Joint, Joint]] = {
    "left_elbow": (Joint.LEFT_SHOULDER, Joint.LEFT_ELBOW, Joint.LEFT_WRIST),
    "right_elbow": (Joint.RIGHT_SHOULDER, Joint.RIGHT_ELBOW, Joint.RIGHT_WRIST),
    "left_shoulder": (Joint.LEFT_ELBOW, Joint.LEFT_SHOULDER, Joint.LEFT_HIP),
    "right_shoulder": (Joint.RIGHT_ELBOW, Joint.RIGHT_SHOULDER, Joint.RIGHT_HIP),
    "left_hip": (Joint.LEFT_SHOULDER, Joint.LEFT_HIP, Joint.LEFT_KNEE),
    "right_hip": (Joint.RIGHT_SHOULDER, Joint.RIGHT_HIP, Joint.RIGHT_KNEE),
    "left_knee": (Joint.LEFT_HIP, Joint.LEFT_KNEE, Joint.LEFT_ANKLE),
    "right_knee": (Joint.RIGHT_HIP, Joint.RIGHT_KNEE, Joint.RIGHT_ANKLE),
}

# Directed segments reported as line angles (screen convention).
LINE_DEFINITIONS: Dict[str, Tuple[Joint, Joint]] = {
    "forearm_platform": (Joint.LEFT_WRIST, Joint.RIGHT_WRIST),
    "shoulder_line": (Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER),
    "hip_line": (Joint.LEFT_HIP, Joint.RIGHT_HIP),
}


def _xy(point: Any) -> np.ndarray:
    arr = np.asarray(point, dtype=float).reshape(-1)
    if arr.size < 2:
        return np.array([math.nan, math.nan], dtype=float)
    return arr[:2]


def distance(a: Any, b: Any) -> float:
    """Euclidean distance between two 2-D points."""
    pa, pb = _xy(a), _xy(b)
    return float(math.hypot(pa[0] - pb[0], pa[1] - pb[1]))


def angle_at(a: Any, b: Any, c: Any) -> float:
    """Interior angle (degrees, 0..180) at vertex ``b`` between rays b->a and b->c.

    Returns 0.0 when either ray has zero length.
    """
    pa, pb, pc = _xy(a), _xy(b), _xy(c)
    v1 = pa - pb
    v2 = pc - pb
    norm1 = float(np.hypot(v1[0], v1[1]))
    norm2 = float(np.hypot(v2[0], v2[1]))
    if norm1 == 0.0 or norm2 == 0.0 or not (math.isfinite(norm1) and math.isfinite(norm2)):
        return 0.0
    cosine = float(np.dot(v1, v2) / (norm1 * norm2))
    cosine = float(np.clip(cosine, -1.0, 1.0))
    return float(np.degrees(np.arccos(cosine)))


def line_angle(start: Any, end: Any) -> float:
    """Angle (degrees, -180..180] of the directed segment start->end.

    Image y grows downward, so an upward-sloping segment yields a negative angle.
    """
    p0, p1 = _xy(start), _xy(end)
    angle = math.degrees(math.atan2(p1[1] - p0[1], p1[0] - p0[0]))
    # atan2 gives -180 for a leftward segment with dy == -0.0
    return 180.0 if angle <= -180.0 else float(angle)


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _frame_arrays(frame: Any) -> Tuple[np.ndarray, np.ndarray]:
    if isinstance(frame, NormalizedFrame):
        return frame.xy, frame.keypoints[:, 2]
    if isinstance(frame, Frame):
        return frame.xy, frame.scores
    arr = np.asarray(frame, dtype=float)
    return arr[:, :2], arr[:, 2]


def compute_frame_angles(
    frame: Any, confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
) -> Dict[str, Dict[str, object]]:
    """Compute named joint and segment angles for a single frame.

    Returns:
        {angle_name: {"value_degrees": float, "valid": bool}}
    """
    xy, scores = _frame_arrays(frame)
    ok = scores > float(confidence_threshold)
    results: Dict[str, Dict[str, object]] = {}

    def add(name: str, value: float) -> None:
        results[name] = {"value_degrees": float(value), "valid": bool(math.isfinite(float(value)))}

    for name, joints in ANGLE_DEFINITIONS.items():
        if not all(ok[int(j)] for j in joints):
            add(name, float("nan"))
            continue
        add(name, angle_at(*(xy[int(j)] for j in joints)))

    for name, (start, end) in LINE_DEFINITIONS.items():
        if not (ok[int(start)] and ok[int(end)]):
            add(name, float("nan"))
            continue
        add(name, line_angle(xy[int(start)], xy[int(end)]))

    return results


def _iter_frames(frames: Sequence[Any], fps: Optional[float]) -> Iterable[Tuple[int, float, Any]]:
    for idx, frame in enumerate(frames):
        timestamp = getattr(frame, "timestamp", None)
        if timestamp is None:
            timestamp = idx / float(fps) if fps else float(idx)
        yield idx, float(timestamp), frame


def compute_trajectory_angles(
    frames: Sequence[Any],
    fps: Optional[float] = None,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> pd.DataFrame:
    """Compute angles for an entire sequence and return a long-form DataFrame.

    Output columns:
        frame, timestamp_s, angle_name, value_degrees, valid
    """
    records: list[dict[str, object]] = []
    for idx, timestamp, frame in _iter_frames(frames, fps):
        angles = compute_frame_angles(frame, confidence_threshold=confidence_threshold)
        for angle_name, entry in angles.items():
            records.append(
                {
                    "frame": int(idx),
                    "timestamp_s": float(timestamp),
                    "angle_name": str(angle_name),
                    "value_degrees": float(entry["value_degrees"]),
                    "valid": bool(entry["valid"]),
                }
            )
    return pd.DataFrame.from_records(
        records, columns=["frame", "timestamp_s", "angle_name", "value_degrees", "valid"]
    )


__all__ = [
    "ANGLE_DEFINITIONS",
    "LINE_DEFINITIONS",
    "distance",
    "angle_at",
    "line_angle",
    "clamp",
    "compute_frame_angles",
    "compute_trajectory_angles",
]
