"""Keypoint validation and body-centred normalization.

Frames arrive from the pose model either in pixel coordinates or in
unit-normalized ``[0, 1]`` coordinates. This module:
- validates raw keypoint arrays (shape, finiteness, confidence range)
- resolves the coordinate convention of a frame (explicit tag first)
- converts keypoints to pixel or frame-relative unit space
- re-expresses joints relative to the hip midpoint
"""

from __future__ import annotations

import math
from typing import Any, List, Mapping, Sequence

import numpy as np

from skillgrade.biomechanics import config
from skillgrade.biomechanics.config import BIOMECHANICS_LOGGER as logger
from skillgrade.models import (
    JOINT_COUNT,
    CoordinateSpace,
    Frame,
    Joint,
    JointSample,
    MalformedInputError,
    NormalizedFrame,
)

UNITS = ("pixel", "unit")


def _row(item: Any) -> Any:
    if isinstance(item, JointSample):
        return [item.x, item.y, item.confidence]
    if isinstance(item, Mapping):
        return _row_from_mapping(item)
    return item


def _row_from_mapping(item: Mapping[str, Any]) -> list[Any]:
    score = item.get("score", item.get("confidence", item.get("c")))
    if score is None or "x" not in item or "y" not in item:
        raise MalformedInputError(
            "Keypoint mappings must provide 'x', 'y' and 'score' (or 'confidence')."
        )
    return [item["x"], item["y"], score]


def validate_keypoints(raw: Any) -> np.ndarray:
    """Return a fresh ``(17, 3)`` float array or raise :class:`MalformedInputError`.

    Accepts an array-like of ``[x, y, confidence]`` rows, a sequence of
    :class:`JointSample`, or mappings with ``x``/``y``/``score`` keys
    (MoveNet's native output).
    """
    if isinstance(raw, np.ndarray):
        rows: Any = raw
    elif isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        rows = [_row(item) for item in raw]
    else:
        raise MalformedInputError(f"Expected a sequence of {JOINT_COUNT} keypoints; got {type(raw).__name__}.")

    try:
        arr = np.array(rows, dtype=float)
    except (TypeError, ValueError) as exc:
        raise MalformedInputError(f"Keypoints are not numeric or are ragged: {exc}") from exc

    if arr.ndim != 2 or arr.shape[0] != JOINT_COUNT:
        raise MalformedInputError(
            f"Expected {JOINT_COUNT} joints per frame; got shape {tuple(arr.shape)}."
        )
    if arr.shape[1] != 3:
        raise MalformedInputError(
            f"Expected 3 channels (x, y, confidence) per joint; got {arr.shape[1]}."
        )
    if not np.all(np.isfinite(arr)):
        bad = [Joint(i).label for i in range(JOINT_COUNT) if not np.all(np.isfinite(arr[i]))]
        raise MalformedInputError(f"Non-finite keypoint values for joints: {', '.join(bad)}.")
    conf = arr[:, 2]
    if np.any(conf < 0.0) or np.any(conf > 1.0):
        raise MalformedInputError("Keypoint confidence must lie within [0, 1].")
    return arr


def valid_mask(keypoints: np.ndarray, threshold: float) -> np.ndarray:
    """Joints whose confidence strictly exceeds ``threshold``."""
    return np.asarray(keypoints, dtype=float)[:, 2] > float(threshold)


def unit_pairs(frame: Frame) -> np.ndarray:
    """Per-joint mask of (x, y) pairs expressed in unit space.

    Tagged frames are uniform. ``AUTO`` frames are classified pair by pair
    so a frame that mixes conventions scales only its unit-valued joints.
    """
    if frame.space is CoordinateSpace.NORMALIZED:
        return np.ones(JOINT_COUNT, dtype=bool)
    if frame.space is CoordinateSpace.PIXEL:
        return np.zeros(JOINT_COUNT, dtype=bool)
    if not config.INFER_COORDINATE_SPACE:
        raise MalformedInputError(
            "Frame has no coordinate_space tag and SKILLGRADE_INFER_COORDINATE_SPACE is disabled."
        )
    limit = float(config.COORDINATE_MAGNITUDE_LIMIT)
    return np.all(np.abs(frame.xy) <= limit, axis=1)


def resolve_space(frame: Frame) -> CoordinateSpace:
    """Return the concrete coordinate space of ``frame`` (never ``AUTO``).

    An explicit tag always wins. An untagged frame is ``NORMALIZED`` only
    when every pair looks unit-valued.
    """
    if frame.space is not CoordinateSpace.AUTO:
        return frame.space
    return CoordinateSpace.NORMALIZED if unit_pairs(frame).all() else CoordinateSpace.PIXEL


def to_pixel_keypoints(frame: Frame) -> np.ndarray:
    """Copy of the frame's keypoints with x/y in pixels (when dimensions are known)."""
    out = np.array(frame.keypoints, dtype=float, copy=True)
    scale = unit_pairs(frame)
    if scale.any():
        if frame.width and frame.height:
            out[scale, 0] *= float(frame.width)
            out[scale, 1] *= float(frame.height)
        else:
            logger.debug("Normalized keypoints without width/height; keeping unit coordinates.")
    return out


def to_unit_keypoints(frame: Frame) -> np.ndarray:
    """Copy of the frame's keypoints with x/y relative to frame size (when known)."""
    out = np.array(frame.keypoints, dtype=float, copy=True)
    scale = ~unit_pairs(frame)
    if scale.any():
        if frame.width and frame.height:
            out[scale, 0] /= float(frame.width)
            out[scale, 1] /= float(frame.height)
        else:
            logger.debug("Pixel keypoints without width/height; keeping pixel coordinates.")
    return out


def normalize_frame(frame: Frame, threshold: float, units: str = "pixel") -> NormalizedFrame:
    """Body-centre ``frame`` on the hip midpoint.

    When either hip is below ``threshold`` the frame is returned un-centred
    (``centered=False``); its ``valid`` mask is still populated so consumers
    needing only raw distances can use it.
    """
    if units not in UNITS:
        raise ValueError(f"units must be one of {UNITS}; got {units!r}")
    keypoints = to_unit_keypoints(frame) if units == "unit" else to_pixel_keypoints(frame)
    valid = valid_mask(keypoints, threshold)

    lh, rh = int(Joint.LEFT_HIP), int(Joint.RIGHT_HIP)
    if not (valid[lh] and valid[rh]):
        keypoints.setflags(write=False)
        return NormalizedFrame(keypoints=keypoints, valid=valid, centered=False, origin=None, source=frame)

    origin = (keypoints[lh, :2] + keypoints[rh, :2]) / 2.0
    keypoints[:, :2] -= origin
    keypoints.setflags(write=False)
    return NormalizedFrame(
        keypoints=keypoints,
        valid=valid,
        centered=True,
        origin=(float(origin[0]), float(origin[1])),
        source=frame,
    )


def normalize_sequence(frames: Sequence[Frame], threshold: float, units: str = "pixel") -> List[NormalizedFrame]:
    normalized = [normalize_frame(frame, threshold, units=units) for frame in frames]
    centred = sum(1 for item in normalized if item.centered)
    if normalized and centred < len(normalized):
        logger.debug(
            "%d/%d frames could not be hip-centred (threshold %.2f).",
            len(normalized) - centred,
            len(normalized),
            threshold,
        )
    return normalized


def torso_length(keypoints: np.ndarray, valid: np.ndarray) -> float:
    """Shoulder-midpoint to hip-midpoint distance; NaN when any of the four is invalid."""
    ls, rs = int(Joint.LEFT_SHOULDER), int(Joint.RIGHT_SHOULDER)
    lh, rh = int(Joint.LEFT_HIP), int(Joint.RIGHT_HIP)
    if not all(valid[i] for i in (ls, rs, lh, rh)):
        return math.nan
    shoulder_mid = (keypoints[ls, :2] + keypoints[rs, :2]) / 2.0
    hip_mid = (keypoints[lh, :2] + keypoints[rh, :2]) / 2.0
    return float(np.hypot(*(shoulder_mid - hip_mid)))


__all__ = [
    "validate_keypoints",
    "valid_mask",
    "resolve_space",
    "unit_pairs",
    "to_pixel_keypoints",
    "to_unit_keypoints",
    "normalize_frame",
    "normalize_sequence",
    "torso_length",
]
