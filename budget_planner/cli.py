from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from budget_planner.core.calendar.capacity import week_label
from budget_planner.core.config.engine_config import EngineConfigError, load_and_merge
from budget_planner.core.engine import run
from budget_planner.core.errors import (
    InvalidInput,
    PlanError,
    PlanLoadError,
    PlanValidationError,
    RollupRefused,
)
from budget_planner.core.io.load_plan import load_plan, plan_settings
from budget_planner.core.io.snapshot import build_snapshot
from budget_planner.core.lint.lint_tree import lint_tree
from budget_planner.core.model import UNPHASED, PlanSnapshot, Week, week_order
from budget_planner.core.phasing.phase import phase, tasks_for_developer
from budget_planner.core.tree.planning_tree import walk
from budget_planner.core.validate.validate_tree import summarize_tree, validate

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()

FORMATS = ("text", "json")


@app.callback()
def _callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine progress to stderr"),
) -> None:
    """Budget planner CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command("validate")
def validate_cmd(
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    settings_file: Optional[str] = typer.Option(None, "--settings-file", help="YAML file overriding engine settings"),
) -> None:
    """Check a plan's shape and planning-tree invariants."""
    _check_format(format, "validate")

    snapshot, schema_v = _load_snapshot(path, settings_file, format, "validate")
    violations = validate(snapshot)
    if violations:
        if format == "json":
            _emit_json("validate", ok=False, exit_code=2, errors=list(violations), schema_version=schema_v)
        _print_errors(list(violations))
        raise typer.Exit(code=2)

    if format == "text":
        typer.echo(summarize_tree(snapshot.tree))
        return

    counts = Counter([n.kind for n in snapshot.tree.nodes_by_id.values()])
    summary = {
        "node_count": len(snapshot.tree.nodes_by_id),
        "kind_counts": {k: int(v) for k, v in counts.items()},
        "roots": list(snapshot.tree.roots),
        "developers": list(snapshot.developers_by_id),
    }
    _emit_json("validate", ok=True, exit_code=0, errors=[], schema_version=schema_v, summary=summary)


@app.command("lint")
def lint_cmd(
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    settings_file: Optional[str] = typer.Option(None, "--settings-file", help="YAML file overriding engine settings"),
) -> None:
    """Lint a plan (rules beyond the tree invariants)."""
    _check_format(format, "lint")

    snapshot, schema_v = _load_snapshot(path, settings_file, format, "lint")
    errors: list[PlanError] = list(lint_tree(snapshot)) + list(validate(snapshot))

    if format == "text":
        if errors:
            _print_errors(errors)
            raise typer.Exit(code=2)
        typer.echo("OK: lint passed")
        return

    if errors:
        _emit_json("lint", ok=False, exit_code=2, errors=errors, schema_version=schema_v)
    _emit_json("lint", ok=True, exit_code=0, errors=[], schema_version=schema_v)


@app.command("phase")
def phase_cmd(
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    developer: str = typer.Option(..., "--developer", "-d", help="Developer id to phase"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    settings_file: Optional[str] = typer.Option(None, "--settings-file", help="YAML file overriding engine settings"),
) -> None:
    """Phase one developer's tasks week by week."""
    _check_format(format, "phase")

    snapshot, schema_v = _load_snapshot(path, settings_file, format, "phase")
    dev = snapshot.developers_by_id.get(developer)
    if dev is None:
        err = PlanValidationError(
            code="E_PHASE_UNKNOWN_DEVELOPER",
            message=f"--developer references unknown id: {developer}",
            path="developer",
        )
        if format == "json":
            _emit_json("phase", ok=False, exit_code=2, errors=[err], schema_version=schema_v)
        _print_errors([err])
        raise typer.Exit(code=2)

    try:
        result = phase(dev, tasks_for_developer(snapshot.tree, developer), snapshot.config)
    except InvalidInput as e:
        if format == "json":
            _emit_json("phase", ok=False, exit_code=2, errors=[e], schema_version=schema_v)
        _print_errors([e])
        raise typer.Exit(code=2)

    if format == "json":
        payload_extra = {
            "developer": developer,
            "allocations": [
                {"task": t, "week": w, "effort": v}
                for (t, w), v in sorted(result.allocations.items(), key=lambda kv: (kv[0][0], week_order(kv[0][1])))
            ],
            "overflow": dict(sorted(result.overflow.items())),
            "remaining": {str(w): v for w, v in result.remaining.items()},
        }
        _emit_json("phase", ok=True, exit_code=0, errors=[], schema_version=schema_v, **payload_extra)

    table = Table(title=f"{developer}: phased allocation")
    table.add_column("Task")
    weeks = sorted({w for (_, w) in result.allocations}, key=week_order)
    for w in weeks:
        table.add_column(_week_heading(w, snapshot), justify="right")
    tasks = list(dict.fromkeys(t for (t, _) in result.allocations))
    for t in tasks:
        table.add_row(t, *[_fmt(result.allocations.get((t, w), 0.0)) for w in weeks])
    console.print(table)

    if result.overflow:
        for t, v in sorted(result.overflow.items()):
            typer.echo(f"WARN: {t}: {v:g} unphased", err=True)


@app.command("report")
def report_cmd(
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    node: Optional[str] = typer.Option(None, "--node", help="Only report this node (weekly detail in text mode)"),
    workers: Optional[int] = typer.Option(None, "--workers", help="Threads used to phase developers"),
    settings_file: Optional[str] = typer.Option(None, "--settings-file", help="YAML file overriding engine settings"),
) -> None:
    """Phase every developer and roll plan/done/slip up the tree."""
    _check_format(format, "report")

    snapshot, schema_v = _load_snapshot(path, settings_file, format, "report")
    if node is not None and node not in snapshot.tree.nodes_by_id:
        err = PlanValidationError(
            code="E_REPORT_UNKNOWN_NODE",
            message=f"--node references unknown id: {node}",
            path="node",
        )
        if format == "json":
            _emit_json("report", ok=False, exit_code=2, errors=[err], schema_version=schema_v)
        _print_errors([err])
        raise typer.Exit(code=2)

    try:
        result = run(snapshot, workers=workers)
    except RollupRefused as e:
        if format == "json":
            _emit_json("report", ok=False, exit_code=2, errors=list(e.violations), schema_version=schema_v)
        _print_errors(list(e.violations))
        raise typer.Exit(code=2)

    exit_code = 2 if result.errors else 0
    node_ids = [node] if node is not None else [n.id for n in walk(snapshot.tree)]

    if format == "json":
        figures = []
        for nid in node_ids:
            for f in result.rollup.weeks_for(nid):
                figures.append(
                    {"node": nid, "week": f.week, "planned": f.planned, "done": f.done, "slip": f.slip}
                )
        summaries = {
            nid: {
                "planned": s.planned,
                "done": s.done,
                "left": s.left,
                "overflow": s.overflow,
                "notes": s.notes,
            }
            for nid, s in ((nid, result.rollup.summaries[nid]) for nid in node_ids)
        }
        _emit_json(
            "report",
            ok=not result.errors,
            exit_code=exit_code,
            errors=list(result.errors),
            schema_version=schema_v,
            figures=figures,
            summaries=summaries,
        )

    if node is not None:
        _print_weekly(snapshot, result.rollup.weeks_for(node), node)
    else:
        _print_summary(snapshot, result, node_ids)

    if result.errors:
        typer.echo("WARN: some developers could not be phased:", err=True)
        _print_errors(list(result.errors))
        raise typer.Exit(code=exit_code)


def _print_summary(snapshot: PlanSnapshot, result: Any, node_ids: list[str]) -> None:
    depth: dict[str, int] = {}
    table = Table(title="Plan roll-up")
    for col in ("Node", "Who", "Plan", "Done", "Left", "Unphased", "Notes"):
        table.add_column(col, justify="left" if col in ("Node", "Who", "Notes") else "right")

    for nid in node_ids:
        n = snapshot.tree.nodes_by_id[nid]
        depth[nid] = depth[n.parent_id] + 1 if n.parent_id in depth else 0
        s = result.rollup.summaries[nid]
        who = n.assignment.developer_id if n.assignment and n.assignment.developer_id else ""
        table.add_row(
            "  " * depth[nid] + nid,
            who,
            _fmt(s.planned),
            _fmt(s.done),
            _fmt(s.left),
            _fmt(s.overflow),
            "; ".join(s.notes),
        )
    console.print(table)


def _print_weekly(snapshot: PlanSnapshot, figures: list[Any], node_id: str) -> None:
    table = Table(title=f"{node_id}: weekly figures")
    for col in ("Week", "Plan", "Done", "Slip"):
        table.add_column(col, justify="right")
    for f in figures:
        table.add_row(_week_heading(f.week, snapshot), _fmt(f.planned), _fmt(f.done), _fmt(f.slip))
    console.print(table)


def _week_heading(week: Week, snapshot: PlanSnapshot) -> str:
    if week == UNPHASED:
        return UNPHASED
    return week_label(int(week), snapshot.config)


def _fmt(v: float) -> str:
    if abs(v) < 0.005:
        return ""
    return f"{v:.2f}".rstrip("0").rstrip(".")


def _load_snapshot(
    path: str, settings_file: Optional[str], format: str, command: str
) -> tuple[PlanSnapshot, Optional[str]]:
    try:
        plan = load_plan(path)
        settings = plan_settings(plan)
    except PlanLoadError as e:
        if format == "json":
            _emit_json(command, ok=False, exit_code=1, errors=[e], schema_version=None)
        _print_errors([e])
        raise typer.Exit(code=1)

    schema_v = plan.get("schema_version") if isinstance(plan.get("schema_version"), str) else None

    try:
        config = load_and_merge(settings_file, settings)
    except FileNotFoundError:
        err: PlanError = PlanLoadError(
            code="E_SETTINGS_FILE_NOT_FOUND",
            message=f"settings file not found: {settings_file}",
            path="settings_file",
        )
        if format == "json":
            _emit_json(command, ok=False, exit_code=1, errors=[err], schema_version=schema_v)
        _print_errors([err])
        raise typer.Exit(code=1)
    except EngineConfigError as e:
        err = PlanValidationError(
            code="E_SETTINGS_INVALID",
            message=str(e),
            file=plan.get("__file__"),
            path="settings",
        )
        if format == "json":
            _emit_json(command, ok=False, exit_code=2, errors=[err], schema_version=schema_v)
        _print_errors([err])
        raise typer.Exit(code=2)

    snapshot, errors = build_snapshot(plan, config)
    if errors or snapshot is None:
        if format == "json":
            _emit_json(command, ok=False, exit_code=2, errors=list(errors), schema_version=schema_v)
        _print_errors(list(errors))
        raise typer.Exit(code=2)

    return snapshot, schema_v


def _check_format(format: str, command: str) -> None:
    if format not in FORMATS:
        err = PlanValidationError(
            code=f"E_{command.upper()}_UNKNOWN_FORMAT",
            message=f"unknown format: {format} (choose one of: {', '.join(FORMATS)})",
            file=None,
            path="format",
        )
        _print_errors([err])
        raise typer.Exit(code=2)


def _to_item(e: PlanError) -> dict:
    if isinstance(e, PlanLoadError):
        source = "load"
    elif isinstance(e, InvalidInput):
        source = "phase"
    elif e.code.startswith("L_"):
        source = "lint"
    else:
        source = "validate"
    return {
        "code": e.code,
        "message": e.message,
        "file": e.file,
        "path": e.path,
        "node_id": e.node_id,
        "severity": "error",
        "source": source,
    }


def _emit_json(
    command: str,
    *,
    ok: bool,
    exit_code: int,
    errors: list[Any],
    schema_version: Optional[str],
    summary: Optional[dict] = None,
    **extra: Any,
) -> None:
    payload = {
        "tool": "budget-planner",
        "command": command,
        "schema_version": schema_version,
        "ok": ok,
        "error_count": len(errors),
        "errors": [_to_item(e) for e in errors],
        "summary": summary,
    }
    payload.update(extra)
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))
    raise typer.Exit(code=exit_code)


def _print_errors(errors: list[Any]) -> None:
    errors_sorted = sorted(errors, key=lambda e: (e.file or "", e.path or "", e.node_id or "", e.code))
    for e in errors_sorted:
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="budget-planner")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
