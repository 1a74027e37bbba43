from __future__ import annotations

import json
from pathlib import Path

import typer

from .archetypes import ArchetypeId
from .config import ConfigError, DirectorConfig, load_config
from .crand import Crand
from .debug_log import close_director_log, init_director_log
from .formations import Side, pattern_from_name
from .placement import is_outside, place_formation
from .rules import RuleRegistry, default_rules
from .sim import DiversityReport, check_sequence_targets, simulate, simulate_many
from .trace import TraceCodecError, dump_trace_file, load_trace_file


app = typer.Typer(add_completion=False)


def _load(config_path: Path | None) -> DirectorConfig:
    if config_path is None:
        return DirectorConfig()
    try:
        return load_config(config_path)
    except ConfigError as exc:
        typer.echo(f"config error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def _check_stage(stage: int, config: DirectorConfig) -> None:
    if not (1 <= int(stage) <= config.stage_count):
        typer.echo(f"stage must be in 1..{config.stage_count}, got {stage}", err=True)
        raise typer.Exit(code=1)


def _share_rows(report: DiversityReport) -> list[tuple[ArchetypeId, int, float]]:
    counts = report.counts
    shares = report.shares()
    return [(archetype, counts[archetype], shares[archetype]) for archetype in sorted(shares)]


@app.command("rules")
def cmd_rules(
    stage: int | None = typer.Option(None, help="only rules active on this stage"),
    config_path: Path | None = typer.Option(None, "--config", help="TOML or JSON config override"),
) -> None:
    """Dump the spawn rule table."""
    config = _load(config_path)
    registry = RuleRegistry(default_rules(config))
    lines = registry.dump_rules()
    if stage is not None:
        lines = [line for rule, line in zip(registry.rules, lines) if rule.stages(stage)]
    typer.echo(f"{len(lines)} rules")
    for line in lines:
        typer.echo(line)


@app.command("simulate")
def cmd_simulate(
    stage: int = typer.Argument(..., help="stage number (1-based)"),
    runs: int = typer.Option(1, help="number of seeds to run"),
    seed: int = typer.Option(0, help="first seed"),
    as_json: bool = typer.Option(False, "--json", help="print machine-readable output"),
    config_path: Path | None = typer.Option(None, "--config", help="TOML or JSON config override"),
    log_dir: Path | None = typer.Option(None, "--log-dir", help="write a director event log under this directory"),
) -> None:
    """Run headless encounters and print per-archetype spawn shares."""
    config = _load(config_path)
    _check_stage(stage, config)
    if log_dir is not None:
        path = init_director_log(base_dir=log_dir, label="simulate", stage=stage, seed=seed)
        typer.echo(f"log: {path}", err=True)
    try:
        report = simulate_many(stage, runs=runs, seed=seed, config=config)
    finally:
        close_director_log()

    rows = _share_rows(report)
    if as_json:
        payload = {
            "stage": stage,
            "runs": report.runs,
            "total": report.total,
            "hhi": round(report.hhi(), 6),
            "baseline_share": round(report.baseline_share(), 6),
            "completed": all(result.completed for result in report.results),
            "shares": {archetype.code: round(share, 6) for archetype, _count, share in rows},
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    typer.echo(f"stage {stage}: runs={report.runs} spawned={report.total} distinct={report.distinct()}")
    typer.echo(f"hhi={report.hhi():.4f} baseline_share={report.baseline_share():.4f}")
    for archetype, count, share in rows:
        typer.echo(f"{archetype.code} {archetype.name:<14} {count:>6} {share * 100.0:6.2f}%")


@app.command("diversity")
def cmd_diversity(
    runs: int = typer.Option(3, help="number of seeds to run"),
    seed: int = typer.Option(0, help="first seed"),
    config_path: Path | None = typer.Option(None, "--config", help="TOML or JSON config override"),
) -> None:
    """Check quota and diversity targets on the fixed-sequence stage."""
    config = _load(config_path)
    stage = config.fixed_sequence_stage
    _check_stage(stage, config)
    report = simulate_many(stage, runs=runs, seed=seed, config=config)
    typer.echo(f"stage {stage}: runs={report.runs} spawned={report.total} distinct={report.distinct()}")
    typer.echo(f"hhi={report.hhi():.4f} baseline_share={report.baseline_share():.4f}")
    problems = check_sequence_targets(report, config)
    for problem in problems:
        typer.echo(problem, err=True)
    if problems:
        raise typer.Exit(code=1)
    typer.echo("ok")


@app.command("trace")
def cmd_trace(
    stage: int = typer.Argument(..., help="stage number (1-based)"),
    seed: int = typer.Option(0, help="director seed"),
    out: Path = typer.Option(..., "--out", help="output JSON path"),
    config_path: Path | None = typer.Option(None, "--config", help="TOML or JSON config override"),
    check: Path | None = typer.Option(None, "--check", help="compare against an existing trace file"),
) -> None:
    """Write the spawn trace of one seeded encounter."""
    config = _load(config_path)
    _check_stage(stage, config)
    result = simulate(stage, seed=seed, config=config, record_trace=True)
    assert result.trace is not None
    out.parent.mkdir(parents=True, exist_ok=True)
    dump_trace_file(out, result.trace)
    typer.echo(f"wrote {len(result.trace.records)} records to {out}")
    if check is None:
        return
    try:
        expected = load_trace_file(check)
    except (OSError, TraceCodecError) as exc:
        typer.echo(f"cannot read trace {check}: {exc}", err=True)
        raise typer.Exit(code=1) from None
    if expected != result.trace:
        typer.echo(f"trace differs from {check}", err=True)
        raise typer.Exit(code=1)
    typer.echo("trace matches")


@app.command("formation")
def cmd_formation(
    pattern: str = typer.Argument(..., help="pattern name, e.g. v_shape"),
    count: int = typer.Option(6, help="member count"),
    side: str = typer.Option("TOP", help="spawn side, e.g. top_left"),
    seed: int = typer.Option(0, help="seed for randomized patterns"),
) -> None:
    """Print placed member positions for a formation."""
    try:
        formation = pattern_from_name(pattern)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from None
    side_key = side.strip().upper().replace("-", "_")
    if side_key not in Side.__members__:
        available = ", ".join(Side.__members__)
        typer.echo(f"unknown side {side!r}. Available: {available}", err=True)
        raise typer.Exit(code=1)
    if count <= 0:
        typer.echo("count must be positive", err=True)
        raise typer.Exit(code=1)

    config = DirectorConfig()
    placement = place_formation(formation, count, Crand(seed), config, side=Side[side_key])
    typer.echo(
        f"{formation.name} side={placement.side.name} anchor=({placement.anchor.x:.1f}, {placement.anchor.y:.1f}) "
        f"glide=({placement.glide.x:.3f}, {placement.glide.y:.3f})"
    )
    for idx, pos in enumerate(placement.members):
        legal = is_outside(pos, config.width, config.height, config.placement.margin)
        typer.echo(f"{idx:>3} x={pos.x:8.1f} y={pos.y:8.1f} {'ok' if legal else 'INSIDE'}")


def main(argv: list[str] | None = None) -> None:
    app(prog_name="cobalt", args=argv)


if __name__ == "__main__":
    main()
