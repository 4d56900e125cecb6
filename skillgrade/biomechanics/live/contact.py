"""Ball-contact detection from wrist-speed spikes."""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from skillgrade.biomechanics import config
from skillgrade.biomechanics.metrics.angles import distance
from skillgrade.biomechanics.metrics.normalization import to_pixel_keypoints, torso_length, valid_mask
from skillgrade.models import Frame, Joint

TORSO_JOINTS = (Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER, Joint.LEFT_HIP, Joint.RIGHT_HIP)


def has_torso(valid: np.ndarray) -> bool:
    return all(bool(valid[int(j)]) for j in TORSO_JOINTS)


def norm_base(keypoints: np.ndarray, valid: np.ndarray) -> float:
    """Body scale: shoulder width, else torso length, else hip width, else 1."""
    ls, rs = int(Joint.LEFT_SHOULDER), int(Joint.RIGHT_SHOULDER)
    lh, rh = int(Joint.LEFT_HIP), int(Joint.RIGHT_HIP)
    shoulder_width = distance(keypoints[ls], keypoints[rs]) if valid[ls] and valid[rs] else 0.0
    if shoulder_width > 0:
        return shoulder_width
    torso = torso_length(keypoints, valid)
    if math.isfinite(torso) and torso > 0:
        return torso
    hip_width = distance(keypoints[lh], keypoints[rh]) if valid[lh] and valid[rh] else 0.0
    if hip_width > 0:
        return hip_width
    return 1.0


def wrist_displacement(
    prev_keypoints: Optional[np.ndarray],
    prev_valid: Optional[np.ndarray],
    keypoints: np.ndarray,
    valid: np.ndarray,
    base: float,
) -> Optional[float]:
    """Mean wrist travel since the previous frame, in body-scale units.

    None when either wrist is missing in either frame.
    """
    if prev_keypoints is None or prev_valid is None:
        return None
    lw, rw = int(Joint.LEFT_WRIST), int(Joint.RIGHT_WRIST)
    if not (valid[lw] and valid[rw] and prev_valid[lw] and prev_valid[rw]):
        return None
    left = distance(keypoints[lw], prev_keypoints[lw]) / base
    right = distance(keypoints[rw], prev_keypoints[rw]) / base
    return (left + right) / 2.0


def is_contact_spike(displacement: Optional[float], spike: Optional[float] = None) -> bool:
    limit = config.LIVE_THRESHOLDS.contact_spike if spike is None else float(spike)
    return displacement is not None and displacement > limit


def detect_contact_frame(
    frames: Sequence[Frame],
    *,
    threshold: Optional[float] = None,
    spike: Optional[float] = None,
) -> Optional[int]:
    """Index of the first frame whose wrist speed spikes, or None.

    Only frames with a valid torso are considered; the previous frame is the
    last such frame.
    """
    thr = config.METRIC_CONFIDENCE_THRESHOLD if threshold is None else float(threshold)
    prev_kp: Optional[np.ndarray] = None
    prev_ok: Optional[np.ndarray] = None
    for idx, frame in enumerate(frames):
        keypoints = to_pixel_keypoints(frame)
        ok = valid_mask(keypoints, thr)
        if not has_torso(ok):
            continue
        move = wrist_displacement(prev_kp, prev_ok, keypoints, ok, norm_base(keypoints, ok))
        if is_contact_spike(move, spike):
            return idx
        prev_kp, prev_ok = keypoints, ok
    return None


__all__ = [
    "TORSO_JOINTS",
    "has_torso",
    "norm_base",
    "wrist_displacement",
    "is_contact_spike",
    "detect_contact_frame",
]
