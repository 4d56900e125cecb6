from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.progress import Progress

from . import __version__, biomechanics
from .models import MalformedInputError

app = typer.Typer(help="Score volleyball digging and setting technique from pose keypoints.")


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _load(path: Path) -> Any:
    from .biomechanics.metrics.pipeline import load_pose_payload

    try:
        return load_pose_payload(path)
    except FileNotFoundError:
        _fail(f"Pose file not found: {path}")
    except json.JSONDecodeError as exc:
        _fail(f"{path} is not valid JSON: {exc}")
    except MalformedInputError as exc:
        _fail(f"Malformed pose data in {path}: {exc}")


def _resolve_skill(option: Optional[str], payload: Any) -> Any:
    from .models import parse_skill

    if option:
        try:
            return parse_skill(option)
        except MalformedInputError as exc:
            raise typer.BadParameter(str(exc)) from exc
    if payload.skill is not None:
        return payload.skill
    raise typer.BadParameter("Pass --skill or include 'skill' in the pose payload.")


def _emit_json(payload: Any, out: Optional[Path]) -> None:
    from .biomechanics.metrics.pipeline import _json_safe

    text = json.dumps(_json_safe(payload), indent=2)
    if out is None:
        typer.echo(text)
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(text, encoding="utf-8")
    typer.echo(f"Wrote {out}")


def _echo_scores(skill: str, scores: dict[str, int], total: int, max_total: int, grade: str) -> None:
    from .biomechanics.comparison.reporter import get_criterion_label

    typer.echo(f"{skill} rubric:")
    for criterion, score in scores.items():
        typer.echo(f"  {get_criterion_label(criterion):<34} {score}/3")
    typer.echo(f"  Total {total}/{max_total}  Grade {grade}")


def _setup_logging(verbose: bool) -> None:
    if verbose:
        logging.getLogger("skillgrade").setLevel(logging.DEBUG)


@app.command()
def analyze(
    poses: Path = typer.Argument(..., help="Pose JSON payload for the clip."),
    skill: Optional[str] = typer.Option(None, "--skill", "-s", help="Digging or Setting (defaults to payload)."),
    target: Optional[str] = typer.Option(None, "--target", "-t", help="Left, Center or Right."),
    reference: Optional[Path] = typer.Option(None, "--reference", "-r", help="Expert pose payload to compare against."),
    ladders: Optional[Path] = typer.Option(None, "--ladders", help="JSON/TOML rubric ladder overrides."),
    estimator: Optional[str] = typer.Option(None, "--estimator", help="constant or random."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for the random estimator."),
    as_json: bool = typer.Option(False, "--json", help="Print the full analysis as JSON."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write JSON output to this file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """
    Score a recorded clip against the skill rubric.

    Examples:
        skillgrade analyze clip.json --skill digging
        skillgrade analyze clip.json --reference expert.json --json
    """
    from .biomechanics.metrics.pipeline import analyze_sequence
    from .biomechanics.metrics.skill_metrics import build_estimator
    from .models import Target, parse_target

    _setup_logging(verbose)
    payload = _load(poses)
    skill_value = _resolve_skill(skill, payload)
    try:
        target_value = parse_target(target) if target else (payload.target or Target.CENTER)
    except MalformedInputError as exc:
        raise typer.BadParameter(str(exc)) from exc

    ref_frames = _load(reference).frames if reference is not None else None
    try:
        result = analyze_sequence(
            payload.frames,
            skill_value,
            target_value,
            reference=ref_frames,
            estimator=build_estimator(estimator, seed),
            ladders=ladders,
        )
    except MalformedInputError as exc:
        _fail(f"Could not analyze {poses}: {exc}")
    except (OSError, ValueError) as exc:
        _fail(f"Invalid rubric ladders: {exc}")

    if as_json or out is not None:
        _emit_json(result.to_dict(), out)
        return

    rubric = result.rubric
    _echo_scores(skill_value.value, dict(rubric.scores), rubric.total, rubric.max_total, rubric.grade)
    typer.echo(f"Confidence {result.confidence:.2f}" + ("  (needs review)" if result.needs_review else ""))
    if result.metrics.estimated:
        typer.echo("Estimated metrics: " + ", ".join(result.metrics.estimated))
    if result.comparison is not None:
        typer.echo(
            f"Similarity to reference {result.comparison.overall_similarity:.2f} "
            f"(timing {result.comparison.timing_score:.2f})"
        )
    scores = ", ".join(f"{k}={v}" for k, v in result.reference_scores.items())
    typer.echo(f"Scores: {scores}")


@app.command()
def compare(
    candidate: Path = typer.Argument(..., help="Pose JSON payload for the athlete's clip."),
    reference: Path = typer.Argument(..., help="Pose JSON payload for the expert clip."),
    skill: Optional[str] = typer.Option(None, "--skill", "-s", help="Digging or Setting (defaults to payload)."),
    athlete: Optional[str] = typer.Option(None, "--athlete", help="Athlete identifier for the report."),
    top: Optional[int] = typer.Option(None, "--top", help="Number of deviating joints to list."),
    plot: Optional[Path] = typer.Option(None, "--plot", help="Save a phase-velocity debug plot (PNG)."),
    as_json: bool = typer.Option(False, "--json", help="Print the comparison report as JSON."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write JSON output to this file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """
    Compare an athlete's clip against an expert reference.

    Example:
        skillgrade compare me.json expert.json --top 3
    """
    from .biomechanics.comparison.reporter import generate_comparison_report
    from .biomechanics.metrics.pipeline import analyze_sequence

    _setup_logging(verbose)
    cand = _load(candidate)
    ref = _load(reference)
    skill_value = _resolve_skill(skill, cand)
    try:
        result = analyze_sequence(cand.frames, skill_value, cand.target or "Center", reference=ref.frames)
    except MalformedInputError as exc:
        _fail(f"Could not compare clips: {exc}")

    report = generate_comparison_report(result, athlete_id=athlete, top_n=top)

    if plot is not None:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        from .biomechanics.metrics.phase_detection import plot_phase_velocities, segment_phases

        fig = plot_phase_velocities(segment_phases(cand.frames), fps=cand.fps, title=f"{candidate.stem} phases")
        plot.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(plot, dpi=120, bbox_inches="tight")
        plt.close(fig)
        typer.echo(f"Saved plot to {plot}")

    if as_json or out is not None:
        _emit_json(report, out)
        return

    typer.echo(f"Overall similarity: {report['overall_score']}/100 (timing {report['timing_score']}/100)")
    for phase, score in (report["phase_breakdown"] or {}).items():
        typer.echo(f"  {phase:<15} {score}/100")
    if report["top_issues"]:
        typer.echo("Top issues:")
        for issue in report["top_issues"]:
            typer.echo(f"  {issue['rank']}. {issue['point']} ({issue['deviation']:.3f}): {issue['description']}")
    if report["needs_review"]:
        typer.secho("Low confidence; results should be reviewed manually.", fg=typer.colors.YELLOW)


@app.command()
def live(
    poses: Path = typer.Argument(..., help="Pose JSON payload to replay as a live stream."),
    skill: Optional[str] = typer.Option(None, "--skill", "-s", help="Digging or Setting (defaults to payload)."),
    fps: Optional[float] = typer.Option(None, "--fps", help="Evaluation rate (defaults to TARGET_FPS)."),
    as_json: bool = typer.Option(False, "--json", help="Print the live summary as JSON."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write JSON output to this file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """
    Replay a recorded clip through the live rubric tracker.

    Frames are throttled by timestamp to the evaluation rate; nothing sleeps.
    """
    from .biomechanics.live.tracker import LiveRubricTracker

    _setup_logging(verbose)
    payload = _load(poses)
    skill_value = _resolve_skill(skill, payload)
    tracker = LiveRubricTracker(fps=fps)
    session = tracker.start_session(skill_value)

    sampled = 0
    with Progress(transient=True, disable=as_json or out is not None) as progress:
        task = progress.add_task(f"Replaying {poses.name}", total=len(payload.frames) or None)
        for frame in payload.frames:
            if tracker.should_sample(session, frame.timestamp):
                tracker.update(session, frame)
                sampled += 1
            progress.advance(task)

    summary = tracker.finish(session)
    if as_json or out is not None:
        _emit_json(summary.to_dict(), out)
        return

    rubric = summary.rubric
    _echo_scores(skill_value.value, dict(rubric.scores), rubric.total, rubric.max_total, rubric.grade)
    contact = f"frame {summary.contact_frame}" + ("" if summary.contact_detected else " (fallback)")
    typer.echo(f"Contact: {contact}; analysed {summary.frames_analyzed}/{summary.frames_seen} sampled frames")
    typer.echo(f"Confidence {summary.confidence:.2f}" + ("  (re-record suggested)" if summary.needs_review else ""))


@app.command()
def angles(
    poses: Path = typer.Argument(..., help="Pose JSON payload."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write the angle table as CSV."),
) -> None:
    """Export per-frame joint angles as a long-form table."""
    from .biomechanics.metrics.angles import compute_trajectory_angles

    payload = _load(poses)
    table = compute_trajectory_angles(payload.frames, fps=payload.fps)
    if out is None:
        typer.echo(table.to_string(index=False) if not table.empty else "No frames.")
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(out, index=False)
    typer.echo(f"Wrote {len(table)} rows to {out}")


@app.command()
def info(
    show_config: bool = typer.Option(False, "--config", help="Print engine configuration."),
    config_file: Optional[Path] = typer.Option(None, "--config-file", help="Preview values from a TOML/JSON config."),
) -> None:
    """
    Display version and optional configuration details.

    Example:
        skillgrade info --config
    """
    typer.echo(f"skillgrade {__version__}: pose metrics, rubric scoring, reference comparison, live tracking.")
    if show_config:
        biomechanics.print_config()
    if config_file is not None:
        try:
            values = biomechanics.load_config_from_file(config_file)
        except (FileNotFoundError, ValueError) as exc:
            _fail(str(exc))
        from .biomechanics.metrics.pipeline import _json_safe

        typer.echo(json.dumps(_json_safe(values), indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
