"""Plan, apply and graph output rendering (Terraform-style)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from infra_reconciler.engine.types import Action
from infra_reconciler.resources.expressions import UNKNOWN_DISPLAY

if TYPE_CHECKING:
    from collections.abc import Callable

    from infra_reconciler.engine.builder import ResourceGraph
    from infra_reconciler.engine.types import ExecutionReport, Plan, ResourceChange


class _ActionStyle(NamedTuple):
    color: str
    symbol: str
    progress_verb: str
    done_verb: str


_ACTION_STYLES: dict[str, _ActionStyle] = {
    "create": _ActionStyle("green", "+", "Creating", "Creation complete"),
    "update": _ActionStyle("yellow", "~", "Modifying", "Modifications complete"),
    "replace": _ActionStyle("magenta", "-/+", "Replacing", "Replacement complete"),
    "destroy": _ActionStyle("red", "-", "Destroying", "Destruction complete"),
    "no-op": _ActionStyle("bright_black", " ", "", ""),
}

_ACTION_DESC: dict[str, str] = {
    "create": "will be created",
    "update": "will be updated in-place",
    "replace": "must be replaced",
    "destroy": "will be destroyed",
    "no-op": "is up-to-date",
}

_STATUS_COLORS: dict[str, str] = {
    "success": "green",
    "failed": "red",
    "skipped": "yellow",
    "canceled": "yellow",
    "no-op": "bright_black",
}


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


# ── Helpers ─────────────────────────────────────────────────────────


def has_actionable_changes(plan: Plan) -> bool:
    """Return True if the plan contains any non-NOOP changes."""
    return plan.has_changes()


def change_symbol(change: ResourceChange) -> str:
    """``-/+`` for destroy-then-create replacement, ``+/-`` for create-then-destroy."""
    if change.action == Action.REPLACE and change.replace_policy == "create_before_destroy":
        return "+/-"
    return _ACTION_STYLES[change.action.value].symbol


def _align_values(items: dict[str, str]) -> list[tuple[str, str]]:
    """Right-pad keys so ``=`` signs align."""
    if not items:
        return []
    max_key = max(len(k) for k in items)
    return [(k.ljust(max_key), v) for k, v in items.items()]


def _format_value(value: Any) -> str:
    """Format a value for display in a plan diff block."""
    if isinstance(value, str):
        if value == UNKNOWN_DISPLAY:
            return value
        return f'"{value}"'
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ── Plan rendering ──────────────────────────────────────────────────


def _change_attrs(change: ResourceChange) -> dict[str, str]:
    """Extract displayable ``key -> formatted value`` pairs from a change."""
    if change.action == Action.CREATE and change.planned:
        return {k: _format_value(v) for k, v in sorted(change.planned.items())}
    if change.action in (Action.UPDATE, Action.REPLACE) and change.diff:
        forces = set(change.replace_reasons)
        return {
            k: f"{_format_value(d['from'])} -> {_format_value(d['to'])}"
            + (" # forces replacement" if k in forces else "")
            for k, d in sorted(change.diff.items())
        }
    if change.action == Action.DESTROY and change.before:
        return {k: _format_value(v) for k, v in sorted(change.before.attributes.items())}
    return {}


def format_change(change: ResourceChange, *, color: bool = True) -> str:
    """Render a single ResourceChange as a Terraform-style block."""
    style = styler(color)
    action_val = change.action.value
    sc = {"fg": _ACTION_STYLES[action_val].color}
    symbol = change_symbol(change)

    desc = _ACTION_DESC[action_val]
    if change.action == Action.REPLACE and change.replace_policy == "create_before_destroy":
        desc += " (create before destroy)"
    name = change.address.split(".", 1)[1] if "." in change.address else change.address
    lines = [
        style(f"  # {change.address} {desc}", bold=True, **sc),
        style(f'  {symbol} resource "{change.resource_type}" "{name}" {{', **sc),
        *[
            style(f"      {symbol} {k} = {v}", **sc)
            for k, v in _align_values(_change_attrs(change))
        ],
        style("    }", **sc),
    ]
    return "\n".join(lines)


def format_changes(changes: list[ResourceChange], *, color: bool = True) -> str:
    """Render a list of changes as Terraform-style diff blocks."""
    blocks = [format_change(c, color=color) for c in changes if c.action != Action.NOOP]
    if not blocks:
        return "No changes. Resources are up-to-date."
    return "\n\n".join(blocks)


def format_plan(plan: Plan, *, color: bool = True) -> str:
    """Render the full plan output with per-change diff blocks."""
    return format_changes(plan.changes, color=color)


def format_graph(graph: ResourceGraph) -> str:
    """Render the instance graph in Graphviz DOT format."""
    lines = ["digraph {", "  rankdir = LR;"]
    lines.extend(f'  "{addr}";' for addr in graph.addresses())
    # Edges point from the dependent to its dependency, as `terraform graph` does.
    lines.extend(f'  "{after}" -> "{before}";' for before, after in graph.edges)
    lines.append("}")
    return "\n".join(lines)


# ── Summaries ───────────────────────────────────────────────────────

_SUMMARY_KEYS = ("create", "update", "replace", "destroy")
_PLAN_VERBS = ("to add", "to change", "to replace", "to destroy")
_SUMMARY_COLORS = ("green", "yellow", "magenta", "red")


def _format_summary(summary: dict[str, int], verbs: tuple[str, ...], *, color: bool) -> str:
    """Build the ``N verb, N verb, ...`` part of a summary line."""
    style = styler(color)
    counts = tuple(summary.get(k, 0) for k in _SUMMARY_KEYS)
    parts = [
        style(f"{n} {verb}", fg=fg) if n and color else f"{n} {verb}"
        for n, verb, fg in zip(counts, verbs, _SUMMARY_COLORS, strict=True)
    ]
    return ", ".join(parts)


def changes_summary(changes: list[ResourceChange]) -> dict[str, int]:
    """Count changes by action type."""
    summary: dict[str, int] = dict.fromkeys(_SUMMARY_KEYS, 0)
    for c in changes:
        if c.action != Action.NOOP:
            summary[c.action.value] += 1
    return summary


def format_plan_summary(
    summary: dict[str, int], *, color: bool = True, header: str = "Plan"
) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to replace, 0 to destroy.``"""
    return f"{header}: {_format_summary(summary, _PLAN_VERBS, color=color)}."


def format_report(report: ExecutionReport, *, color: bool = True) -> str:
    """Render one status line per resource that was acted on."""
    style = styler(color)
    lines = []
    for address, result in sorted(report.results.items()):
        if result.status == "no-op":
            continue
        line = f"  {address}: {result.action.value} {result.status}"
        if result.error:
            line += f" ({result.error})"
        lines.append(style(line, fg=_STATUS_COLORS[result.status]))
    return "\n".join(lines)


def format_apply_summary(report: ExecutionReport, *, color: bool = True) -> str:
    """Render ``Apply complete! 3 succeeded, 0 failed, 0 skipped, 0 canceled.``"""
    style = styler(color)
    s = report.summary()
    counts = ", ".join(
        f"{s[k]} {label}"
        for k, label in (
            ("success", "succeeded"),
            ("failed", "failed"),
            ("skipped", "skipped"),
            ("canceled", "canceled"),
        )
    )
    if report.ok:
        header = style("Apply complete!", fg="green", bold=True)
    elif report.canceled:
        header = style("Apply canceled.", fg="yellow", bold=True)
    else:
        header = style("Apply finished with errors.", fg="red", bold=True)
    return f"{header} Resources: {counts}."
