"""Configuration for the skillgrade analysis engine.

Settings include:
- *_CONFIDENCE_THRESHOLD: Minimum keypoint confidence to accept a joint (per call site).
- INFER_COORDINATE_SPACE: Allow the legacy magnitude heuristic for untagged frames.
- SIMILARITY_RADIUS: Forgiveness radius (frame-relative units) for pose similarity.
- PHASE_WEIGHTS: Weights of preparation / execution / follow-through similarity.
- DIGGING_THRESHOLDS / SETTING_THRESHOLDS: Rubric ladder constants per skill.
- LIVE_THRESHOLDS: Streaming tracker constants (contact spike, brackets, windows).
- ESTIMATOR / ESTIMATOR_SEED: Strategy for metrics 2-D pose cannot measure.

All scalar values can be overridden via SKILLGRADE_* environment variables.
"""

from __future__ import annotations

import json
import logging
import os
import warnings
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from skillgrade.env import env_name, get_env

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback when tomllib missing
    tomllib = None  # type: ignore[assignment]


def _configure_logger() -> logging.Logger:
    logger = logging.getLogger("skillgrade.biomechanics")
    level_name = get_env("LOG_LEVEL") or os.getenv("LOG_LEVEL")
    if level_name:
        level = getattr(logging, level_name.upper(), logging.INFO)
        logger.setLevel(level)
    return logger


BIOMECHANICS_LOGGER = _configure_logger()
logger = BIOMECHANICS_LOGGER


def _get_env_float(key: str, default: float) -> float:
    raw = get_env(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_env_int(key: str, default: int) -> int:
    raw = get_env(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_env_bool(key: str, default: bool) -> bool:
    raw = get_env(key)
    if raw is None:
        return default
    text = raw.strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return default


def _get_env_str(key: str, default: str) -> str:
    raw = get_env(key)
    return raw.strip() if raw and raw.strip() else default


def _get_env_optional_int(key: str) -> Optional[int]:
    raw = get_env(key)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _get_env_range(key: str, default: Tuple[float, float]) -> Tuple[float, float]:
    raw = get_env(key)
    if not raw:
        return default
    return _coerce_range_tuple(raw, default)


def _coerce_range_tuple(value: Any, default: Tuple[float, float]) -> Tuple[float, float]:
    if isinstance(value, (list, tuple)) and len(value) == 2:
        try:
            return float(value[0]), float(value[1])
        except (TypeError, ValueError):
            return default
    if isinstance(value, str):
        # "-" is not a separator here: bracket bounds may be negative angles.
        for sep in (",", ":"):
            if sep in value:
                try:
                    start_str, end_str = value.split(sep)
                    return float(start_str), float(end_str)
                except ValueError:
                    continue
    return default


def _load_toml_file(path: Path) -> Dict[str, Any]:
    if tomllib is None:
        raise ImportError("TOML configuration requires Python 3.11+ (tomllib).")
    with path.open("rb") as handle:
        return tomllib.load(handle)


@dataclass(frozen=True)
class ComparisonWeights:
    """Weights of each phase in the overall similarity score."""

    preparation: float
    execution: float
    follow_through: float

    def as_dict(self) -> Dict[str, float]:
        return {
            "preparation": self.preparation,
            "execution": self.execution,
            "follow_through": self.follow_through,
        }


@dataclass(frozen=True)
class DiggingThresholds:
    """Rubric ladder constants for the forearm platform dig."""

    knee_flex_base: float = 15.0
    knee_flex_strong: float = 25.0
    knee_flex_min: float = 10.0
    contact_height_max: float = 0.6
    flatness_excellent: float = 10.0
    flatness_good: float = 20.0
    flatness_fair: float = 30.0
    stability_excellent: float = 0.8
    stability_good: float = 0.6
    stability_fair: float = 0.4


@dataclass(frozen=True)
class SettingThresholds:
    """Rubric ladder constants for the overhead set."""

    knee_flex_base: float = 15.0
    knee_flex_min: float = 10.0
    contact_height_excellent: float = 0.9
    contact_height_fair: float = 0.7
    extension_excellent: float = 0.7
    extension_good: float = 0.5
    extension_fair: float = 0.3
    facing_min: float = 0.6
    stability_excellent: float = 0.8
    stability_good: float = 0.6
    stability_fair: float = 0.4


@dataclass(frozen=True)
class LiveThresholds:
    """Constants for the streaming rubric tracker (tuned for ~15 evaluations/s)."""

    floor_score: int = 1
    capture_min_score: int = 2
    contact_spike: float = 0.28
    ready_knee_range: Tuple[float, float] = (60.0, 110.0)
    wrist_level_max: float = 0.12
    contact_angle_ideal: Tuple[float, float] = (-25.0, -5.0)
    contact_angle_ok: Tuple[float, float] = (-40.0, 5.0)
    leg_drive_nominal_bend: float = 100.0
    leg_drive_extend_strong: float = 20.0
    leg_drive_extend: float = 10.0
    shoulder_lift_min: float = 0.08
    pre_contact_buffer: int = 8
    follow_window_seconds: float = 0.5
    follow_window_min: int = 5
    follow_std_excellent: float = 5.0
    follow_std_good: float = 10.0
    # Setting windows and ratios (evaluated when the session finishes).
    setting_pre_seconds: float = 0.6
    setting_pre_min: int = 3
    setting_post_seconds: float = 0.8
    setting_post_min: int = 4
    setting_knee_range: Tuple[float, float] = (70.0, 110.0)
    setting_stance_wide: float = 1.0
    setting_ratio_strong: float = 0.6
    setting_ratio_partial: float = 0.4
    setting_wrist_sep_range: Tuple[float, float] = (0.6, 1.2)
    setting_face_width_fallback: float = 0.35
    setting_level_excellent: float = 0.06
    setting_level_good: float = 0.1
    setting_upright_excellent: float = 12.0
    setting_upright_good: float = 20.0
    setting_elbow_delta_excellent: float = 25.0
    setting_elbow_delta_good: float = 12.0
    setting_follow_std_excellent: float = 0.05
    setting_follow_std_good: float = 0.08


# Acceptance thresholds (strictly greater-than) per call site.
FRAME_CONFIDENCE_THRESHOLD: float = _get_env_float("FRAME_CONFIDENCE_THRESHOLD", 0.3)
METRIC_CONFIDENCE_THRESHOLD: float = _get_env_float("METRIC_CONFIDENCE_THRESHOLD", 0.3)
COMPARISON_CONFIDENCE_THRESHOLD: float = _get_env_float("COMPARISON_CONFIDENCE_THRESHOLD", 0.2)

# Legacy compatibility: infer pixel vs unit coordinates from magnitude for untagged frames.
INFER_COORDINATE_SPACE: bool = _get_env_bool("INFER_COORDINATE_SPACE", True)
COORDINATE_MAGNITUDE_LIMIT: float = _get_env_float("COORDINATE_MAGNITUDE_LIMIT", 2.0)

# Sequence comparison.
SIMILARITY_RADIUS: float = _get_env_float("SIMILARITY_RADIUS", 0.5)
MIN_SIMILARITY_JOINTS: int = _get_env_int("MIN_SIMILARITY_JOINTS", 2)
NEUTRAL_PHASE_SCORE: float = _get_env_float("NEUTRAL_PHASE_SCORE", 0.5)
EXECUTION_HALF_WINDOW: int = _get_env_int("EXECUTION_HALF_WINDOW", 2)
TOP_DEVIATIONS: int = _get_env_int("TOP_DEVIATIONS", 5)
PHASE_WEIGHTS = ComparisonWeights(
    preparation=_get_env_float("WEIGHT_PREPARATION", 0.2),
    execution=_get_env_float("WEIGHT_EXECUTION", 0.6),
    follow_through=_get_env_float("WEIGHT_FOLLOW_THROUGH", 0.2),
)

# Metric extraction.
ELBOW_LOCK_ANGLE_DEG: float = _get_env_float("ELBOW_LOCK_ANGLE_DEG", 160.0)
WRIST_FOREHEAD_MARGIN: float = _get_env_float("WRIST_FOREHEAD_MARGIN", 0.05)
ESTIMATOR: str = _get_env_str("ESTIMATOR", "constant").lower()
ESTIMATOR_SEED: Optional[int] = _get_env_optional_int("ESTIMATOR_SEED")

# Streaming cadence and consumer-facing confidence cut.
TARGET_FPS: float = _get_env_float("TARGET_FPS", 15.0)
LOW_CONFIDENCE_THRESHOLD: float = _get_env_float("LOW_CONFIDENCE_THRESHOLD", 0.4)

# Letter grades for the 4-criterion / 12-point rubrics (first cut reached wins).
GRADE_CUTS: Tuple[Tuple[int, str], ...] = ((10, "A"), (8, "B"), (6, "C"))
GRADE_FLOOR = "D"

DIGGING_THRESHOLDS = DiggingThresholds(
    knee_flex_base=_get_env_float("DIG_KNEE_FLEX_BASE", 15.0),
    knee_flex_strong=_get_env_float("DIG_KNEE_FLEX_STRONG", 25.0),
    knee_flex_min=_get_env_float("DIG_KNEE_FLEX_MIN", 10.0),
    contact_height_max=_get_env_float("DIG_CONTACT_HEIGHT_MAX", 0.6),
    flatness_excellent=_get_env_float("DIG_FLATNESS_EXCELLENT", 10.0),
    flatness_good=_get_env_float("DIG_FLATNESS_GOOD", 20.0),
    flatness_fair=_get_env_float("DIG_FLATNESS_FAIR", 30.0),
    stability_excellent=_get_env_float("DIG_STABILITY_EXCELLENT", 0.8),
    stability_good=_get_env_float("DIG_STABILITY_GOOD", 0.6),
    stability_fair=_get_env_float("DIG_STABILITY_FAIR", 0.4),
)

SETTING_THRESHOLDS = SettingThresholds(
    knee_flex_base=_get_env_float("SET_KNEE_FLEX_BASE", 15.0),
    knee_flex_min=_get_env_float("SET_KNEE_FLEX_MIN", 10.0),
    contact_height_excellent=_get_env_float("SET_CONTACT_HEIGHT_EXCELLENT", 0.9),
    contact_height_fair=_get_env_float("SET_CONTACT_HEIGHT_FAIR", 0.7),
    extension_excellent=_get_env_float("SET_EXTENSION_EXCELLENT", 0.7),
    extension_good=_get_env_float("SET_EXTENSION_GOOD", 0.5),
    extension_fair=_get_env_float("SET_EXTENSION_FAIR", 0.3),
    facing_min=_get_env_float("SET_FACING_MIN", 0.6),
    stability_excellent=_get_env_float("SET_STABILITY_EXCELLENT", 0.8),
    stability_good=_get_env_float("SET_STABILITY_GOOD", 0.6),
    stability_fair=_get_env_float("SET_STABILITY_FAIR", 0.4),
)

LIVE_THRESHOLDS = LiveThresholds(
    contact_spike=_get_env_float("LIVE_CONTACT_SPIKE", 0.28),
    ready_knee_range=_get_env_range("LIVE_READY_KNEE_RANGE", (60.0, 110.0)),
    wrist_level_max=_get_env_float("LIVE_WRIST_LEVEL_MAX", 0.12),
    contact_angle_ideal=_get_env_range("LIVE_CONTACT_ANGLE_IDEAL", (-25.0, -5.0)),
    contact_angle_ok=_get_env_range("LIVE_CONTACT_ANGLE_OK", (-40.0, 5.0)),
    follow_std_excellent=_get_env_float("LIVE_FOLLOW_STD_EXCELLENT", 5.0),
    follow_std_good=_get_env_float("LIVE_FOLLOW_STD_GOOD", 10.0),
)

__all__ = [
    "BIOMECHANICS_LOGGER",
    "FRAME_CONFIDENCE_THRESHOLD",
    "METRIC_CONFIDENCE_THRESHOLD",
    "COMPARISON_CONFIDENCE_THRESHOLD",
    "INFER_COORDINATE_SPACE",
    "COORDINATE_MAGNITUDE_LIMIT",
    "SIMILARITY_RADIUS",
    "MIN_SIMILARITY_JOINTS",
    "NEUTRAL_PHASE_SCORE",
    "EXECUTION_HALF_WINDOW",
    "TOP_DEVIATIONS",
    "PHASE_WEIGHTS",
    "ELBOW_LOCK_ANGLE_DEG",
    "WRIST_FOREHEAD_MARGIN",
    "ESTIMATOR",
    "ESTIMATOR_SEED",
    "TARGET_FPS",
    "LOW_CONFIDENCE_THRESHOLD",
    "GRADE_CUTS",
    "GRADE_FLOOR",
    "DIGGING_THRESHOLDS",
    "SETTING_THRESHOLDS",
    "LIVE_THRESHOLDS",
    "ComparisonWeights",
    "DiggingThresholds",
    "SettingThresholds",
    "LiveThresholds",
    "load_config_from_file",
    "validate_config_values",
    "print_config",
]


def _apply_section(default: Any, section: Any, env_prefix: str) -> Any:
    """Overlay a file section onto a thresholds dataclass; env vars still win."""
    if not isinstance(section, dict):
        section = {}
    updates: Dict[str, Any] = {}
    for item in fields(default):
        current = getattr(default, item.name)
        env_key = f"{env_prefix}{item.name.upper()}"
        if isinstance(current, tuple):
            value = _coerce_range_tuple(section.get(item.name), current)
            updates[item.name] = _get_env_range(env_key, value)
        elif isinstance(current, int) and not isinstance(current, bool):
            try:
                value_int = int(section.get(item.name, current))
            except (TypeError, ValueError):
                value_int = current
            updates[item.name] = _get_env_int(env_key, value_int)
        else:
            try:
                value_float = float(section.get(item.name, current))
            except (TypeError, ValueError):
                value_float = current
            updates[item.name] = _get_env_float(env_key, value_float)
    return replace(default, **updates)


def load_config_from_file(config_path: Path) -> Dict[str, Any]:
    """Load engine config from TOML or JSON and apply env var overrides.

    Env vars take precedence over file values. Supports either a root-level
    mapping or a [skillgrade] table/object in the config file.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    if not path.is_file():
        raise ValueError(f"Expected a config file, but got a directory: {path}")

    suffix = path.suffix.lower()
    if suffix == ".toml":
        raw_config = _load_toml_file(path)
    elif suffix == ".json":
        with path.open("r", encoding="utf-8") as handle:
            raw_config = json.load(handle)
    else:
        raise ValueError(f"Unsupported config format for {path}; expected .toml or .json.")

    body = raw_config.get("skillgrade", raw_config) if isinstance(raw_config, dict) else raw_config
    if not isinstance(body, dict):
        raise ValueError("Invalid config structure; expected a dict or a [skillgrade] section.")

    weights = body.get("phase_weights", {}) if isinstance(body.get("phase_weights", {}), dict) else {}
    seed_raw = body.get("estimator_seed", ESTIMATOR_SEED)

    return {
        "FRAME_CONFIDENCE_THRESHOLD": _get_env_float(
            "FRAME_CONFIDENCE_THRESHOLD", float(body.get("frame_confidence_threshold", 0.3))
        ),
        "METRIC_CONFIDENCE_THRESHOLD": _get_env_float(
            "METRIC_CONFIDENCE_THRESHOLD", float(body.get("metric_confidence_threshold", 0.3))
        ),
        "COMPARISON_CONFIDENCE_THRESHOLD": _get_env_float(
            "COMPARISON_CONFIDENCE_THRESHOLD", float(body.get("comparison_confidence_threshold", 0.2))
        ),
        "INFER_COORDINATE_SPACE": _get_env_bool(
            "INFER_COORDINATE_SPACE", bool(body.get("infer_coordinate_space", True))
        ),
        "SIMILARITY_RADIUS": _get_env_float("SIMILARITY_RADIUS", float(body.get("similarity_radius", 0.5))),
        "PHASE_WEIGHTS": ComparisonWeights(
            preparation=_get_env_float("WEIGHT_PREPARATION", float(weights.get("preparation", 0.2))),
            execution=_get_env_float("WEIGHT_EXECUTION", float(weights.get("execution", 0.6))),
            follow_through=_get_env_float("WEIGHT_FOLLOW_THROUGH", float(weights.get("follow_through", 0.2))),
        ),
        "ESTIMATOR": _get_env_str("ESTIMATOR", str(body.get("estimator", "constant"))).lower(),
        "ESTIMATOR_SEED": _get_env_optional_int("ESTIMATOR_SEED")
        if get_env("ESTIMATOR_SEED") is not None
        else (int(seed_raw) if seed_raw is not None else None),
        "TARGET_FPS": _get_env_float("TARGET_FPS", float(body.get("target_fps", 15.0))),
        "DIGGING_THRESHOLDS": _apply_section(DiggingThresholds(), body.get("digging"), "DIG_"),
        "SETTING_THRESHOLDS": _apply_section(SettingThresholds(), body.get("setting"), "SET_"),
        "LIVE_THRESHOLDS": _apply_section(LiveThresholds(), body.get("live"), "LIVE_"),
    }


def _check_thresholds() -> None:
    for name, value in (
        ("FRAME_CONFIDENCE_THRESHOLD", FRAME_CONFIDENCE_THRESHOLD),
        ("METRIC_CONFIDENCE_THRESHOLD", METRIC_CONFIDENCE_THRESHOLD),
        ("COMPARISON_CONFIDENCE_THRESHOLD", COMPARISON_CONFIDENCE_THRESHOLD),
        ("LOW_CONFIDENCE_THRESHOLD", LOW_CONFIDENCE_THRESHOLD),
    ):
        if not 0.0 <= value <= 1.0:
            warnings.warn(
                f"{name}={value} is outside [0,1]; please correct {env_name(name)} or the config file.",
                RuntimeWarning,
                stacklevel=2,
            )
            logger.warning("%s is outside [0,1]: %s", name, value)


def _check_phase_weights() -> None:
    total = PHASE_WEIGHTS.preparation + PHASE_WEIGHTS.execution + PHASE_WEIGHTS.follow_through
    negative = [k for k, v in PHASE_WEIGHTS.as_dict().items() if v < 0]
    if negative:
        warnings.warn(f"Phase weights must be non-negative: {negative}.", RuntimeWarning, stacklevel=2)
        logger.warning("Negative phase weights: %s", negative)
    if not 0.99 <= total <= 1.01:
        warnings.warn(
            f"Phase weights sum to {total:.2f} (expected 1.0); overall similarity will be rescaled.",
            RuntimeWarning,
            stacklevel=2,
        )
        logger.warning("Phase weights sum suspicious: %.2f (expected 1.0)", total)


def _check_positive() -> None:
    for name, value in (
        ("SIMILARITY_RADIUS", SIMILARITY_RADIUS),
        ("TARGET_FPS", TARGET_FPS),
        ("COORDINATE_MAGNITUDE_LIMIT", COORDINATE_MAGNITUDE_LIMIT),
    ):
        if value <= 0:
            warnings.warn(f"{name}={value} must be positive.", RuntimeWarning, stacklevel=2)
            logger.warning("%s is non-positive: %s", name, value)


def _check_estimator() -> None:
    if ESTIMATOR not in {"constant", "random"}:
        warnings.warn(
            f"ESTIMATOR={ESTIMATOR!r} is unknown; falling back to 'constant'.",
            RuntimeWarning,
            stacklevel=2,
        )
        logger.warning("Unknown estimator %r; using 'constant'.", ESTIMATOR)


def validate_config_values() -> None:
    """Validate current config values and emit warnings for suspicious settings."""
    _check_thresholds()
    _check_phase_weights()
    _check_positive()
    _check_estimator()


def print_config() -> None:
    """Print configuration values for debugging purposes."""
    print("skillgrade engine configuration:")
    print(
        "  Confidence thresholds (frame, metric, comparison): "
        f"{FRAME_CONFIDENCE_THRESHOLD}, {METRIC_CONFIDENCE_THRESHOLD}, {COMPARISON_CONFIDENCE_THRESHOLD}"
    )
    print(f"  Infer coordinate space: {INFER_COORDINATE_SPACE} (limit {COORDINATE_MAGNITUDE_LIMIT})")
    print(f"  Similarity radius: {SIMILARITY_RADIUS}")
    print(
        "  Phase weights (preparation, execution, follow-through): "
        f"{PHASE_WEIGHTS.preparation}, {PHASE_WEIGHTS.execution}, {PHASE_WEIGHTS.follow_through}"
    )
    print(f"  Estimator: {ESTIMATOR} (seed={ESTIMATOR_SEED})")
    print(f"  Target FPS: {TARGET_FPS}")
    print(f"  Low-confidence review cut: {LOW_CONFIDENCE_THRESHOLD}")
    print(f"  Digging thresholds: {DIGGING_THRESHOLDS}")
    print(f"  Setting thresholds: {SETTING_THRESHOLDS}")
    print(f"  Live thresholds: {LIVE_THRESHOLDS}")


# Run validation at import to surface misconfigurations early.
validate_config_values()
