from __future__ import annotations

import json

from typer.testing import CliRunner

from pose_builders import wrist_sequence
from skillgrade.cli import app


def _write_clip(path, n: int = 12, spike_at: int = 6, skill: str = "Digging") -> None:
    frames = wrist_sequence(n, spike_at=spike_at)
    payload = {
        "skill": skill,
        "width": 640,
        "height": 480,
        "coordinate_space": "pixel",
        "fps": 15,
        "frames": [{"keypoints": f.keypoints.tolist(), "timestamp": f.timestamp} for f in frames],
    }
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_cli_smoke(tmp_path) -> None:
    runner = CliRunner()
    clip = tmp_path / "clip.json"
    expert = tmp_path / "expert.json"
    _write_clip(clip)
    _write_clip(expert, n=15, spike_at=7)

    analyze_result = runner.invoke(app, ["analyze", str(clip)])
    assert analyze_result.exit_code == 0, analyze_result.stdout
    assert "Digging rubric" in analyze_result.stdout
    assert "Grade" in analyze_result.stdout

    out_path = tmp_path / "out" / "analysis.json"
    json_result = runner.invoke(app, ["analyze", str(clip), "--reference", str(expert), "--out", str(out_path)])
    assert json_result.exit_code == 0, json_result.stdout
    written = json.loads(out_path.read_text(encoding="utf-8"))
    assert written["skill"] == "Digging"
    assert written["comparison"]["timing_score"] == 12 / 15

    compare_result = runner.invoke(app, ["compare", str(clip), str(expert), "--json", "--athlete", "kim"])
    assert compare_result.exit_code == 0, compare_result.stdout
    report = json.loads(compare_result.stdout)
    assert report["athlete_id"] == "kim"
    assert report["timing_score"] == 80

    plot_path = tmp_path / "phases.png"
    plot_result = runner.invoke(app, ["compare", str(clip), str(expert), "--plot", str(plot_path)])
    assert plot_result.exit_code == 0, plot_result.stdout
    assert plot_path.exists()
    assert "Overall similarity" in plot_result.stdout

    live_result = runner.invoke(app, ["live", str(clip), "--json"])
    assert live_result.exit_code == 0, live_result.stdout
    summary = json.loads(live_result.stdout)
    assert summary["contact_frame"] == 6
    assert summary["contact_detected"] is True

    csv_path = tmp_path / "angles.csv"
    angles_result = runner.invoke(app, ["angles", str(clip), "--out", str(csv_path)])
    assert angles_result.exit_code == 0, angles_result.stdout
    assert csv_path.read_text(encoding="utf-8").startswith("frame,timestamp_s,angle_name,value_degrees,valid")

    info_result = runner.invoke(app, ["info", "--config"])
    assert info_result.exit_code == 0, info_result.stdout
    assert "skillgrade" in info_result.stdout


def test_cli_rejects_malformed_payload(tmp_path) -> None:
    runner = CliRunner()
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"skill": "Digging", "frames": [{"keypoints": [[1.0, 2.0]] * 17}]}), encoding="utf-8")
    result = runner.invoke(app, ["analyze", str(bad)])
    assert result.exit_code == 1

    missing = runner.invoke(app, ["analyze", str(tmp_path / "nope.json")])
    assert missing.exit_code == 1


def test_cli_live_skill_option_overrides_payload(tmp_path) -> None:
    runner = CliRunner()
    clip = tmp_path / "clip.json"
    _write_clip(clip, skill="Digging")
    result = runner.invoke(app, ["live", str(clip), "--skill", "setting"])
    assert result.exit_code == 0, result.stdout
    assert "Setting rubric" in result.stdout
