from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

__all__ = [
    "JOINT_COUNT",
    "Joint",
    "JointSample",
    "CoordinateSpace",
    "Skill",
    "Target",
    "Frame",
    "NormalizedFrame",
    "PhaseSplit",
    "Metrics",
    "RubricResult",
    "ComparisonResult",
    "MalformedInputError",
    "MEASURED_METRICS",
    "ESTIMATED_METRICS",
    "parse_skill",
    "parse_target",
]

JOINT_COUNT = 17


class MalformedInputError(ValueError):
    """Raised when pose input has the wrong shape or non-finite values.

    Missing or low-confidence joints are *not* malformed; they are the
    expected common case and degrade to numeric fallbacks instead.
    """


class Joint(enum.IntEnum):
    """COCO/MoveNet single-person keypoint layout."""

    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16

    @property
    def label(self) -> str:
        return self.name.lower()


class CoordinateSpace(str, enum.Enum):
    PIXEL = "pixel"
    NORMALIZED = "normalized"
    AUTO = "auto"

    @classmethod
    def parse(cls, value: Any) -> "CoordinateSpace":
        if isinstance(value, CoordinateSpace):
            return value
        text = str(value or "auto").strip().lower()
        aliases = {"px": "pixel", "pixels": "pixel", "unit": "normalized", "norm": "normalized"}
        text = aliases.get(text, text)
        try:
            return cls(text)
        except ValueError as exc:
            raise MalformedInputError(
                f"coordinate_space must be one of pixel/normalized/auto; received {value!r}."
            ) from exc


class Skill(str, enum.Enum):
    DIGGING = "Digging"
    SETTING = "Setting"


class Target(str, enum.Enum):
    LEFT = "Left"
    CENTER = "Center"
    RIGHT = "Right"


_SKILL_ALIASES = {
    "digging": Skill.DIGGING,
    "dig": Skill.DIGGING,
    "pass": Skill.DIGGING,
    "setting": Skill.SETTING,
    "set": Skill.SETTING,
}


def parse_skill(value: Any) -> Skill:
    """Parse a coach-entered skill label into a :class:`Skill`."""
    if isinstance(value, Skill):
        return value
    key = str(value or "").strip().lower()
    if key not in _SKILL_ALIASES:
        raise MalformedInputError(f"Unknown skill {value!r}; expected Digging or Setting.")
    return _SKILL_ALIASES[key]


def parse_target(value: Any) -> Target:
    if isinstance(value, Target):
        return value
    key = str(value or "center").strip().lower()
    for target in Target:
        if target.value.lower() == key:
            return target
    raise MalformedInputError(f"Unknown target {value!r}; expected Left, Center, or Right.")


@dataclass(frozen=True)
class JointSample:
    x: float
    y: float
    confidence: float

    def is_valid(self, threshold: float) -> bool:
        return self.confidence > threshold

    @property
    def xy(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True, eq=False)
class Frame:
    """One timestamped snapshot of all 17 joints.

    `keypoints` is a read-only ``(17, 3)`` array of ``[x, y, confidence]``.
    Construct through :meth:`from_keypoints` so malformed shapes surface as
    :class:`MalformedInputError`.
    """

    keypoints: np.ndarray
    timestamp: float = 0.0
    width: Optional[float] = None
    height: Optional[float] = None
    space: CoordinateSpace = CoordinateSpace.AUTO

    def __post_init__(self) -> None:
        from skillgrade.biomechanics.metrics.normalization import validate_keypoints

        arr = validate_keypoints(self.keypoints)
        arr.setflags(write=False)
        object.__setattr__(self, "keypoints", arr)
        object.__setattr__(self, "space", CoordinateSpace.parse(self.space))

    @classmethod
    def from_keypoints(
        cls,
        keypoints: Any,
        timestamp: float = 0.0,
        *,
        width: Optional[float] = None,
        height: Optional[float] = None,
        space: Any = CoordinateSpace.AUTO,
    ) -> "Frame":
        return cls(
            keypoints=keypoints,
            timestamp=float(timestamp),
            width=float(width) if width else None,
            height=float(height) if height else None,
            space=CoordinateSpace.parse(space),
        )

    @property
    def xy(self) -> np.ndarray:
        return self.keypoints[:, :2]

    @property
    def scores(self) -> np.ndarray:
        return self.keypoints[:, 2]

    def valid_mask(self, threshold: float) -> np.ndarray:
        return self.scores > float(threshold)

    @property
    def confidence(self) -> float:
        """Mean confidence of the joints accepted at the frame-confidence threshold."""
        from skillgrade.biomechanics.config import FRAME_CONFIDENCE_THRESHOLD

        mask = self.valid_mask(FRAME_CONFIDENCE_THRESHOLD)
        if not mask.any():
            return 0.0
        return float(self.scores[mask].mean())


@dataclass(frozen=True, eq=False)
class NormalizedFrame:
    """Body-centred view of a :class:`Frame` (origin at the hip midpoint)."""

    keypoints: np.ndarray
    valid: np.ndarray
    centered: bool
    origin: Optional[Tuple[float, float]]
    source: Frame

    @property
    def xy(self) -> np.ndarray:
        return self.keypoints[:, :2]

    @property
    def timestamp(self) -> float:
        return self.source.timestamp

    @property
    def usable(self) -> np.ndarray:
        """Joints usable for body-relative geometry (all False when not centred)."""
        if not self.centered:
            return np.zeros_like(self.valid)
        return self.valid

    def valid_mask(self, threshold: float | None = None) -> np.ndarray:
        if threshold is None:
            return self.usable
        return self.usable & (self.keypoints[:, 2] > float(threshold))


@dataclass(frozen=True)
class PhaseSplit:
    preparation: Tuple[Any, ...]
    execution: Tuple[Any, ...]
    follow_through: Tuple[Any, ...]
    peak_index: Optional[int] = None
    velocities: Tuple[float, ...] = ()

    def phases(self) -> Dict[str, Tuple[Any, ...]]:
        return {
            "preparation": self.preparation,
            "execution": self.execution,
            "follow_through": self.follow_through,
        }

    def concatenated(self) -> List[Any]:
        return [*self.preparation, *self.execution, *self.follow_through]


MEASURED_METRICS: Tuple[str, ...] = ("knee_flex", "elbow_lock", "wrist_above_forehead")
ESTIMATED_METRICS: Tuple[str, ...] = (
    "contact_height_rel_torso",
    "platform_flatness",
    "extension_sequence",
    "facing_target",
    "stability",
)


@dataclass(frozen=True)
class Metrics:
    frames: int
    detected_frames: int
    knee_flex: float
    elbow_lock: bool
    wrist_above_forehead: bool
    contact_height_rel_torso: float
    platform_flatness: float
    extension_sequence: float
    facing_target: float
    stability: float
    contact_frame: int
    estimated: Tuple[str, ...] = ESTIMATED_METRICS
    measured_available: Mapping[str, bool] = field(default_factory=dict)

    def as_rule_inputs(self) -> Dict[str, Any]:
        """Flat metric mapping consumed by the rubric rule engine."""
        return {
            "frames": self.frames,
            "detected_frames": self.detected_frames,
            "knee_flex": self.knee_flex,
            "elbow_lock": self.elbow_lock,
            "wrist_above_forehead": self.wrist_above_forehead,
            "contact_height_rel_torso": self.contact_height_rel_torso,
            "platform_flatness": self.platform_flatness,
            "extension_sequence": self.extension_sequence,
            "facing_target": self.facing_target,
            "stability": self.stability,
            "contact_frame": self.contact_frame,
        }

    def to_dict(self) -> Dict[str, Any]:
        out = self.as_rule_inputs()
        out["estimated"] = list(self.estimated)
        out["measured_available"] = dict(self.measured_available)
        return out


@dataclass(frozen=True)
class RubricResult:
    skill: Skill
    scores: Mapping[str, int]
    total: int
    grade: str
    max_total: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skill": self.skill.value,
            "scores": dict(self.scores),
            "total": self.total,
            "max_total": self.max_total,
            "grade": self.grade,
        }


@dataclass(frozen=True)
class ComparisonResult:
    overall_similarity: float
    phase_scores: Mapping[str, float]
    timing_score: float
    key_point_deviations: Sequence[Tuple[str, float]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_similarity": float(self.overall_similarity),
            "phase_scores": {k: float(v) for k, v in self.phase_scores.items()},
            "timing_score": float(self.timing_score),
            "key_point_deviations": [
                {"point": name, "deviation": float(dev)} for name, dev in self.key_point_deviations
            ],
        }
