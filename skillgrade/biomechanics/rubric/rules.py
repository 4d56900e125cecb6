"""Declarative condition and ladder evaluation for rubric scoring.

A ladder is an ordered list of steps; the first step whose condition holds
sets the score, otherwise the fallback (0) applies:

    [
      {"score": 3, "when": {"all": [
          {"metric": "knee_flex", "op": ">=", "value": 15},
          {"metric": "elbow_lock", "op": "is_true"},
          {"metric": "knee_flex", "op": ">=", "value": 25}]}},
      {"score": 2, "when": {"all": [
          {"metric": "knee_flex", "op": ">=", "value": 15},
          {"metric": "elbow_lock", "op": "is_true"}]}},
      {"score": 1, "when": {"metric": "knee_flex", "op": ">=", "value": 10}}
    ]

Condition operators:
  - Comparisons: >, <, >=, <=, ==, !=
  - Range checks: "range" / "between" (inclusive, "min"/"max" or a 2-item "value")
  - Booleans: "is_true" / "is_false"
  - Logic: {"all": [..]} (AND), {"any": [..]} (OR), {"not": {...}}

Metric lookup accepts exact keys or dotted paths into nested mappings.
"""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback when tomllib missing
    tomllib = None  # type: ignore[assignment]

MIN_SCORE = 0
MAX_SCORE = 3

_RANGE_OPS = {"range", "between", "in_range"}
_BOOL_OPS = {"is_true", "is_false"}


def _load_jsonish(value: Any) -> dict:
    if isinstance(value, Mapping):
        return dict(value)
    path = Path(value)
    if path.suffix.lower() == ".toml":
        if tomllib is None:
            raise ImportError("TOML ladders require Python 3.11+ (tomllib).")
        with path.open("rb") as handle:
            payload: Any = tomllib.load(handle)
    else:
        payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Expected a JSON/TOML object at path.")
    return payload


def _coerce_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(num):
        return None
    return float(num)


def _lookup_metric(metrics: Mapping[str, Any], metric_key: str) -> Any:
    if metric_key in metrics:
        return metrics[metric_key]

    current: Any = metrics
    for part in (metric_key or "").split("."):
        if not part:
            return None
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def _coerce_range(condition: Mapping[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    value = condition.get("value")
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)) and len(value) == 2:
        return _coerce_float(value[0]), _coerce_float(value[1])
    return _coerce_float(condition.get("min")), _coerce_float(condition.get("max"))


def _eval_bool(op: str, observed_raw: Any) -> Optional[bool]:
    if isinstance(observed_raw, bool):
        flag = observed_raw
    elif _coerce_float(observed_raw) is not None:
        flag = bool(_coerce_float(observed_raw))
    else:
        return None
    return flag if op == "is_true" else not flag


def _compare(op: str, observed: float, target: Optional[float]) -> bool:
    if target is None:
        return False
    if op in {">", "gt"}:
        return observed > target
    if op in {"<", "lt"}:
        return observed < target
    if op in {">=", "gte"}:
        return observed >= target
    if op in {"<=", "lte"}:
        return observed <= target
    if op in {"==", "eq"}:
        return observed == target
    if op in {"!=", "ne"}:
        return observed != target
    raise ValueError(f"Unsupported rubric operator {op!r}.")


def _eval_atomic(condition: Mapping[str, Any], metrics: Mapping[str, Any]) -> Tuple[bool, Dict[str, object]]:
    metric = str(condition.get("metric") or "").strip()
    op = str(condition.get("op") or "==").strip().lower()
    observed_raw = _lookup_metric(metrics, metric)
    detail: Dict[str, object] = {"type": "atomic", "metric": metric, "op": op, "observed": observed_raw}

    if op in _BOOL_OPS:
        result = _eval_bool(op, observed_raw)
        if result is None:
            detail.update({"result": False, "error": "metric_missing"})
            return False, detail
        detail["result"] = result
        return result, detail

    observed = _coerce_float(observed_raw)
    if observed is None:
        detail.update({"result": False, "error": "metric_missing_or_non_numeric"})
        return False, detail

    if op in _RANGE_OPS:
        lo, hi = _coerce_range(condition)
        detail["target"] = {"min": lo, "max": hi}
        if lo is None or hi is None:
            result = False
        else:
            low, high = (lo, hi) if lo <= hi else (hi, lo)
            result = low <= observed <= high
    else:
        target = _coerce_float(condition.get("value"))
        detail["target"] = target
        result = _compare(op, observed, target)

    detail["result"] = bool(result)
    return bool(result), detail


def explain_condition(condition: Any, metrics: Mapping[str, Any]) -> Tuple[bool, Dict[str, object]]:
    """Evaluate ``condition`` and return ``(matched, detail_tree)``."""
    if condition is True or condition is False:
        return bool(condition), {"type": "constant", "result": bool(condition)}
    if not isinstance(condition, Mapping):
        raise ValueError(f"Rubric condition must be a mapping; got {type(condition).__name__}.")

    for key in ("all", "any"):
        if key in condition:
            raw = condition.get(key)
            if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
                raise ValueError(f"'{key}' must be a list of conditions.")
            evaluated = [explain_condition(item, metrics) for item in raw]
            results = [ok for ok, _detail in evaluated]
            combine = all if key == "all" else any
            out = bool(combine(results)) if results else False
            return out, {"type": key, key: [detail for _ok, detail in evaluated], "result": out}

    if "not" in condition:
        ok, detail = explain_condition(condition.get("not"), metrics)
        return (not ok), {"type": "not", "not": detail, "result": not ok}

    if "metric" in condition:
        return _eval_atomic(condition, metrics)

    raise ValueError(f"Unknown rubric condition shape: {sorted(condition)}.")


def evaluate_condition(condition: Any, metrics: Mapping[str, Any]) -> bool:
    ok, _detail = explain_condition(condition, metrics)
    return ok


def _clamp_score(value: Any) -> int:
    score = int(value)
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise ValueError(f"Rubric scores must lie in [{MIN_SCORE}, {MAX_SCORE}]; got {score}.")
    return score


def evaluate_ladder(
    ladder: Sequence[Mapping[str, Any]],
    metrics: Mapping[str, Any],
    fallback: int = MIN_SCORE,
) -> Tuple[int, Optional[Dict[str, object]]]:
    """First matching step wins; returns ``(score, matched_detail)``."""
    for step in ladder:
        matched, detail = explain_condition(step.get("when", False), metrics)
        if matched:
            return _clamp_score(step.get("score", fallback)), detail
    return _clamp_score(fallback), None


def normalize_ladders(raw: Any) -> Dict[str, Dict[str, List[Dict[str, Any]]]]:
    """Validate a ``{skill: {criterion: [steps]}}`` mapping (path, dict or ``{"ladders": ...}``)."""
    cfg = _load_jsonish(raw)
    body = cfg.get("ladders", cfg)
    if not isinstance(body, Mapping):
        raise ValueError("Ladder config must map skills to criteria.")
    out: Dict[str, Dict[str, List[Dict[str, Any]]]] = {}
    for skill, criteria in body.items():
        if not isinstance(criteria, Mapping):
            raise ValueError(f"Ladders for {skill!r} must map criteria to step lists.")
        out[str(skill)] = {}
        for criterion, steps in criteria.items():
            if not isinstance(steps, Sequence) or isinstance(steps, (str, bytes)):
                raise ValueError(f"Ladder {skill}.{criterion} must be a list of steps.")
            checked: List[Dict[str, Any]] = []
            for step in steps:
                if not isinstance(step, Mapping) or "score" not in step or "when" not in step:
                    raise ValueError(f"Ladder {skill}.{criterion} steps need 'score' and 'when'.")
                checked.append({"score": _clamp_score(step["score"]), "when": step["when"]})
            out[str(skill)][str(criterion)] = checked
    return out


__all__ = [
    "MIN_SCORE",
    "MAX_SCORE",
    "explain_condition",
    "evaluate_condition",
    "evaluate_ladder",
    "normalize_ladders",
]
