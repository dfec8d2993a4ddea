"""CLI command implementations."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from infra_reconciler.cli import app
from infra_reconciler.cli.errors import handle_error

if TYPE_CHECKING:
    from infra_reconciler.config.schema import Config
    from infra_reconciler.engine.executor import ProgressEvent
    from infra_reconciler.engine.types import ExecutionReport, Plan, PlannedOperation

DEFAULT_CONFIG = Path("infra-reconciler.yaml")

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the configuration file."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Skip interactive approval."),
]

NoRefresh = Annotated[
    bool,
    typer.Option("--no-refresh", help="Skip refreshing state from the providers."),
]

Targets = Annotated[
    list[str] | None,
    typer.Option(
        "--target",
        "-t",
        help="Limit the apply to this address and its dependencies (repeatable).",
    ),
]

Parallelism = Annotated[
    int | None,
    typer.Option("--parallelism", "-p", min=1, help="Maximum concurrent provider calls."),
]


def _use_color(no_color: bool) -> bool:
    """Determine whether to use color output."""
    return not (no_color or os.environ.get("NO_COLOR"))


def _apply_with_progress(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    targets: list[str] | None,
    parallelism: int | None,
) -> ExecutionReport:
    """Apply a plan with a Rich progress bar and per-operation status lines."""
    from rich.console import Console
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from infra_reconciler.cli.formatting import _ACTION_STYLES
    from infra_reconciler.config import apply
    from infra_reconciler.engine.executor import select_operations

    console = Console(no_color=not color)
    total = len(select_operations(plan_obj, targets))

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Applying", total=total)

        def on_progress(op: PlannedOperation, event: ProgressEvent) -> None:
            s = _ACTION_STYLES[op.kind]
            label = f"{op.address} (deposed)" if op.deposed else op.address
            if event == "start":
                progress.update(task, description=f"{label}: {s.progress_verb}...")
                return
            if event == "success":
                progress.console.print(f"  {label}: {s.done_verb}")
            else:
                progress.console.print(f"  {label}: {op.kind} {event}")
            progress.advance(task)

        return apply(
            plan_obj, cfg, targets=targets, progress=on_progress, parallelism=parallelism
        )


def _confirm_and_apply(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    auto_approve: bool,
    confirm_msg: str,
    empty_msg: str,
    targets: list[str] | None = None,
    parallelism: int | None = None,
) -> None:
    """Shared flow: show plan -> confirm -> apply with progress -> print report.

    Exits with code 0 if no actionable changes and 1 if any resource did
    not converge.
    """
    from infra_reconciler.cli.formatting import (
        format_apply_summary,
        format_plan,
        format_plan_summary,
        format_report,
        has_actionable_changes,
    )

    if not has_actionable_changes(plan_obj):
        typer.echo(empty_msg)
        raise typer.Exit(0)

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm(confirm_msg, abort=True)
        except typer.Abort as e:
            typer.echo("Apply canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        report = _apply_with_progress(
            plan_obj, cfg, color=color, targets=targets, parallelism=parallelism
        )
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo()
    details = format_report(report, color=color)
    if details:
        typer.echo(details)
        typer.echo()
    typer.echo(format_apply_summary(report, color=color))
    if not report.ok:
        raise typer.Exit(1)


@app.command()
def plan(
    config: ConfigPath = DEFAULT_CONFIG,
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Save plan to file."),
    ] = None,
    destroy: Annotated[
        bool,
        typer.Option("--destroy", help="Plan the destruction of all managed resources."),
    ] = False,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Show changes required by the current configuration.

    Exits 0 when there is nothing to do and 2 when the plan has changes.
    """
    from infra_reconciler.cli.formatting import (
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )
    from infra_reconciler.config import load
    from infra_reconciler.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = plan_fn(cfg, destroy=destroy, refresh=not no_refresh)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))

    if out is not None:
        plan_obj.save(out)
        typer.echo(f"\nPlan saved to {out}")

    if has_actionable_changes(plan_obj):
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    plan_file: Annotated[
        Path | None,
        typer.Argument(help="Saved plan file to apply."),
    ] = None,
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    target: Targets = None,
    parallelism: Parallelism = None,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Apply the changes required by the current configuration."""
    from infra_reconciler.config import load
    from infra_reconciler.config import plan as plan_fn
    from infra_reconciler.engine.types import Plan

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = (
            Plan.load(plan_file) if plan_file is not None else plan_fn(cfg, refresh=not no_refresh)
        )
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        confirm_msg="Do you want to apply these changes?",
        empty_msg="No changes. Resources are up-to-date.",
        targets=target,
        parallelism=parallelism,
    )


@app.command()
def destroy(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    parallelism: Parallelism = None,
    no_color: NoColor = False,
) -> None:
    """Destroy all managed resources."""
    from infra_reconciler.config import load
    from infra_reconciler.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = plan_fn(cfg, destroy=True)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        confirm_msg="Do you really want to destroy all resources?",
        empty_msg="No resources to destroy.",
        parallelism=parallelism,
    )


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Refresh state from the live providers."""
    from infra_reconciler.cli.formatting import (
        changes_summary,
        format_changes,
        format_plan_summary,
    )
    from infra_reconciler.config import load, save_state
    from infra_reconciler.config import refresh as refresh_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        changes, state = refresh_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not changes:
        typer.echo("No changes. State is up-to-date with the providers.")
        raise typer.Exit(0)

    typer.echo(format_changes(changes, color=color))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(changes), color=color, header="Refresh"))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm("Do you want to update the state file?", abort=True)
        except typer.Abort as e:
            typer.echo("Refresh canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        save_state(cfg, state)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc
    count = len(state.resources)
    typer.echo(f"State refreshed. {count} resource{'s' if count != 1 else ''} tracked.")


@app.command()
def drift(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Show drift between state and the live providers."""
    from infra_reconciler.cli.formatting import format_changes
    from infra_reconciler.config import drift as drift_fn
    from infra_reconciler.config import load

    color = _use_color(no_color)
    try:
        cfg = load(config)
        changes = drift_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not changes:
        typer.echo("No drift detected. State is up-to-date with the providers.")
        raise typer.Exit(0)

    typer.echo("Drift detected:\n")
    typer.echo(format_changes(changes, color=color))


@app.command()
def graph(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Print the resource instance graph in DOT format."""
    from infra_reconciler.cli.formatting import format_graph
    from infra_reconciler.config import graph as graph_fn
    from infra_reconciler.config import load

    color = _use_color(no_color)
    try:
        cfg = load(config)
        resource_graph = graph_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_graph(resource_graph))


@app.command()
def validate(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Validate the configuration file."""
    from infra_reconciler.cli.formatting import styler
    from infra_reconciler.config import load
    from infra_reconciler.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_fn(cfg, refresh=False)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(styler(color)("Configuration is valid.", fg="green"))
