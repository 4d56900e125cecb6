"""Rubric scoring for volleyball skills.

Each skill has four criteria scored 0..3 via declarative ladders whose
thresholds come from ``DIGGING_THRESHOLDS`` / ``SETTING_THRESHOLDS``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from skillgrade.biomechanics import config
from skillgrade.biomechanics.config import DiggingThresholds, SettingThresholds
from skillgrade.biomechanics.rubric.rules import MAX_SCORE, evaluate_ladder, normalize_ladders
from skillgrade.models import Metrics, RubricResult, Skill, parse_skill

DIGGING_CRITERIA: Tuple[str, ...] = ("readyPlatform", "contactAngle", "legDriveShoulder", "followThroughControl")
SETTING_CRITERIA: Tuple[str, ...] = ("readyFootwork", "handShapeContact", "alignmentExtension", "followThroughControl")

CRITERIA: Dict[Skill, Tuple[str, ...]] = {
    Skill.DIGGING: DIGGING_CRITERIA,
    Skill.SETTING: SETTING_CRITERIA,
}

Ladder = List[Dict[str, Any]]


def _at_least(metric: str, value: float) -> Dict[str, Any]:
    return {"metric": metric, "op": ">=", "value": value}


def _at_most(metric: str, value: float) -> Dict[str, Any]:
    return {"metric": metric, "op": "<=", "value": value}


def _stability_ladder(excellent: float, good: float, fair: float) -> Ladder:
    return [
        {"score": 3, "when": {"all": [_at_least("stability", good), _at_least("stability", excellent)]}},
        {"score": 2, "when": _at_least("stability", good)},
        {"score": 1, "when": _at_least("stability", fair)},
    ]


def digging_ladders(t: DiggingThresholds) -> Dict[str, Ladder]:
    locked = {"metric": "elbow_lock", "op": "is_true"}
    return {
        "readyPlatform": [
            {"score": 3, "when": {"all": [_at_least("knee_flex", t.knee_flex_base), locked, _at_least("knee_flex", t.knee_flex_strong)]}},
            {"score": 2, "when": {"all": [_at_least("knee_flex", t.knee_flex_base), locked]}},
            {"score": 1, "when": _at_least("knee_flex", t.knee_flex_min)},
        ],
        "contactAngle": [
            {
                "score": 3,
                "when": {
                    "all": [
                        {"metric": "contact_height_rel_torso", "op": "<", "value": t.contact_height_max},
                        _at_most("platform_flatness", t.flatness_excellent),
                    ]
                },
            },
            {"score": 2, "when": _at_most("platform_flatness", t.flatness_good)},
            {"score": 1, "when": _at_most("platform_flatness", t.flatness_fair)},
        ],
        "legDriveShoulder": _stability_ladder(t.stability_excellent, t.stability_good, t.stability_fair),
        "followThroughControl": _stability_ladder(t.stability_excellent, t.stability_good, t.stability_fair),
    }


def setting_ladders(t: SettingThresholds) -> Dict[str, Ladder]:
    wrists_high = {"metric": "wrist_above_forehead", "op": "is_true"}
    return {
        "readyFootwork": [
            {
                "score": 3,
                "when": {
                    "all": [
                        _at_least("knee_flex", t.knee_flex_base),
                        _at_least("stability", t.stability_good),
                        _at_least("stability", t.stability_excellent),
                    ]
                },
            },
            {"score": 2, "when": {"all": [_at_least("knee_flex", t.knee_flex_base), _at_least("stability", t.stability_good)]}},
            {"score": 1, "when": _at_least("knee_flex", t.knee_flex_min)},
        ],
        "handShapeContact": [
            {"score": 3, "when": {"all": [wrists_high, _at_least("contact_height_rel_torso", t.contact_height_excellent)]}},
            {"score": 2, "when": wrists_high},
            {"score": 1, "when": _at_least("contact_height_rel_torso", t.contact_height_fair)},
        ],
        "alignmentExtension": [
            {"score": 3, "when": {"all": [_at_least("extension_sequence", t.extension_excellent), _at_least("facing_target", t.facing_min)]}},
            {"score": 2, "when": _at_least("extension_sequence", t.extension_good)},
            {"score": 1, "when": _at_least("extension_sequence", t.extension_fair)},
        ],
        "followThroughControl": _stability_ladder(t.stability_excellent, t.stability_good, t.stability_fair),
    }


def default_ladders() -> Dict[str, Dict[str, Ladder]]:
    """Ladders built from the currently configured thresholds, keyed by skill value."""
    return {
        Skill.DIGGING.value: digging_ladders(config.DIGGING_THRESHOLDS),
        Skill.SETTING.value: setting_ladders(config.SETTING_THRESHOLDS),
    }


def grade_for_total(total: int) -> str:
    for cut, grade in config.GRADE_CUTS:
        if total >= cut:
            return grade
    return config.GRADE_FLOOR


def _metric_inputs(metrics: Any) -> Mapping[str, Any]:
    if isinstance(metrics, Metrics):
        return metrics.as_rule_inputs()
    if isinstance(metrics, Mapping):
        return metrics
    raise TypeError(f"Expected Metrics or a mapping; got {type(metrics).__name__}.")


def build_result(skill: Skill, scores: Mapping[str, int]) -> RubricResult:
    total = int(sum(scores.values()))
    return RubricResult(
        skill=skill,
        scores=dict(scores),
        total=total,
        grade=grade_for_total(total),
        max_total=MAX_SCORE * len(scores),
    )


def score_rubric(metrics: Any, skill: Any, *, ladders: Optional[Any] = None) -> RubricResult:
    """Score ``metrics`` against the rubric of ``skill``.

    Pure: identical inputs always give identical results. ``ladders`` may
    override the defaults with a ``{skill: {criterion: [steps]}}`` mapping or
    a JSON/TOML path; criteria missing from the override keep their defaults.
    """
    skill = parse_skill(skill)
    inputs = _metric_inputs(metrics)
    table = default_ladders()[skill.value]
    if ladders is not None:
        override = normalize_ladders(ladders)
        table = {**table, **override.get(skill.value, {})}

    scores: Dict[str, int] = {}
    for criterion in CRITERIA[skill]:
        score, _detail = evaluate_ladder(table.get(criterion, []), inputs)
        scores[criterion] = score
    return build_result(skill, scores)


def explain_rubric(metrics: Any, skill: Any) -> Dict[str, Dict[str, object]]:
    """Per-criterion score plus the condition tree that produced it."""
    skill = parse_skill(skill)
    inputs = _metric_inputs(metrics)
    table = default_ladders()[skill.value]
    out: Dict[str, Dict[str, object]] = {}
    for criterion in CRITERIA[skill]:
        score, detail = evaluate_ladder(table[criterion], inputs)
        out[criterion] = {"score": score, "matched": detail}
    return out


__all__ = [
    "DIGGING_CRITERIA",
    "SETTING_CRITERIA",
    "CRITERIA",
    "digging_ladders",
    "setting_ladders",
    "default_ladders",
    "grade_for_total",
    "build_result",
    "score_rubric",
    "explain_rubric",
]
