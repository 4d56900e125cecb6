from __future__ import annotations

import json

import pytest

from skillgrade.biomechanics import config
from skillgrade.biomechanics.config import (
    ComparisonWeights,
    DiggingThresholds,
    LiveThresholds,
    load_config_from_file,
    print_config,
    validate_config_values,
)
from skillgrade.env import env_name, get_env


def test_defaults_match_documented_values() -> None:
    assert config.COMPARISON_CONFIDENCE_THRESHOLD == pytest.approx(0.2)
    assert config.METRIC_CONFIDENCE_THRESHOLD == pytest.approx(0.3)
    assert config.SIMILARITY_RADIUS == pytest.approx(0.5)
    assert config.PHASE_WEIGHTS == ComparisonWeights(0.2, 0.6, 0.2)
    assert config.LIVE_THRESHOLDS.contact_spike == pytest.approx(0.28)
    assert config.TARGET_FPS == pytest.approx(15.0)


def test_load_config_from_json(tmp_path) -> None:
    path = tmp_path / "skillgrade.json"
    path.write_text(
        json.dumps(
            {
                "skillgrade": {
                    "similarity_radius": 0.4,
                    "phase_weights": {"execution": 0.5, "preparation": 0.25, "follow_through": 0.25},
                    "estimator": "Random",
                    "estimator_seed": 11,
                    "digging": {"knee_flex_base": 12},
                    "live": {"ready_knee_range": [50, 100], "follow_window_min": 4},
                }
            }
        ),
        encoding="utf-8",
    )
    values = load_config_from_file(path)
    assert values["SIMILARITY_RADIUS"] == pytest.approx(0.4)
    assert values["PHASE_WEIGHTS"].execution == pytest.approx(0.5)
    assert values["ESTIMATOR"] == "random"
    assert values["ESTIMATOR_SEED"] == 11
    assert isinstance(values["DIGGING_THRESHOLDS"], DiggingThresholds)
    assert values["DIGGING_THRESHOLDS"].knee_flex_base == pytest.approx(12.0)
    assert values["DIGGING_THRESHOLDS"].knee_flex_strong == pytest.approx(25.0)
    assert isinstance(values["LIVE_THRESHOLDS"], LiveThresholds)
    assert values["LIVE_THRESHOLDS"].ready_knee_range == (50.0, 100.0)
    assert values["LIVE_THRESHOLDS"].follow_window_min == 4


def test_env_overrides_file_values(tmp_path, monkeypatch) -> None:
    path = tmp_path / "skillgrade.json"
    path.write_text(json.dumps({"similarity_radius": 0.4, "digging": {"knee_flex_min": 8}}), encoding="utf-8")
    monkeypatch.setenv("SKILLGRADE_SIMILARITY_RADIUS", "0.7")
    monkeypatch.setenv("SKILLGRADE_DIG_KNEE_FLEX_MIN", "9")
    values = load_config_from_file(path)
    assert values["SIMILARITY_RADIUS"] == pytest.approx(0.7)
    assert values["DIGGING_THRESHOLDS"].knee_flex_min == pytest.approx(9.0)


def test_load_config_from_toml(tmp_path) -> None:
    pytest.importorskip("tomllib")
    path = tmp_path / "skillgrade.toml"
    path.write_text("[skillgrade]\ntarget_fps = 30\n\n[skillgrade.setting]\nfacing_min = 0.5\n", encoding="utf-8")
    values = load_config_from_file(path)
    assert values["TARGET_FPS"] == pytest.approx(30.0)
    assert values["SETTING_THRESHOLDS"].facing_min == pytest.approx(0.5)


def test_load_config_rejects_missing_and_unknown_files(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config_from_file(tmp_path / "missing.json")
    bad = tmp_path / "config.yaml"
    bad.write_text("x: 1", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config_from_file(bad)


def test_validate_config_values_warns_on_bad_weights(monkeypatch) -> None:
    monkeypatch.setattr(config, "PHASE_WEIGHTS", ComparisonWeights(0.5, 0.5, 0.5))
    with pytest.warns(RuntimeWarning, match="Phase weights"):
        validate_config_values()


def test_validate_config_values_warns_on_threshold_range(monkeypatch) -> None:
    monkeypatch.setattr(config, "FRAME_CONFIDENCE_THRESHOLD", 1.5)
    with pytest.warns(RuntimeWarning, match="FRAME_CONFIDENCE_THRESHOLD"):
        validate_config_values()


def test_print_config_lists_settings(capsys) -> None:
    print_config()
    out = capsys.readouterr().out
    assert "Similarity radius" in out
    assert "Live thresholds" in out


def test_env_helpers_use_prefix(monkeypatch) -> None:
    assert env_name("LOG_LEVEL") == "SKILLGRADE_LOG_LEVEL"
    assert env_name("SKILLGRADE_LOG_LEVEL") == "SKILLGRADE_LOG_LEVEL"
    monkeypatch.delenv("SKILLGRADE_EXAMPLE_SETTING", raising=False)
    assert get_env("EXAMPLE_SETTING", "fallback") == "fallback"
    monkeypatch.setenv("SKILLGRADE_EXAMPLE_SETTING", "3")
    assert get_env("EXAMPLE_SETTING") == "3"
    assert get_env("SKILLGRADE_EXAMPLE_SETTING") == "3"
