"""Plan/apply the example project end to end through the CLI.

Uses the ``local`` provider, so no cloud account is needed.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from typer.testing import CliRunner

from infra_reconciler.cli import app

if TYPE_CHECKING:
    from pathlib import Path

runner = CliRunner()


def _run(*args: str, config: Path):
    return runner.invoke(app, [*args, "--config", str(config), "--no-color"])


def _set_variable(config: Path, old: str, new: str) -> None:
    text = config.read_text()
    assert old in text
    config.write_text(text.replace(old, new))


def test_validate(middleware_project: Path) -> None:
    result = _run("validate", config=middleware_project)
    assert result.exit_code == 0, result.output
    assert "Configuration is valid." in result.stdout


def test_graph_lists_every_instance(middleware_project: Path) -> None:
    result = runner.invoke(app, ["graph", "--config", str(middleware_project)])
    assert result.exit_code == 0, result.output
    assert '"aws_instance.liberty[1]" -> "aws_subnet.app[0]";' in result.stdout
    assert '"aws_cloudwatch_metric_alarm.database_cpu" -> "aws_db_instance.main";' in result.stdout


def test_converge_then_idempotent(middleware_project: Path) -> None:
    first = _run("plan", config=middleware_project)
    assert first.exit_code == 2, first.output
    assert "Plan: 13 to add, 0 to change, 0 to replace, 0 to destroy." in first.stdout
    assert "(known after apply)" in first.stdout

    applied = _run("apply", "--auto-approve", config=middleware_project)
    assert applied.exit_code == 0, applied.output
    assert "Apply complete! Resources: 13 succeeded" in applied.stdout

    state = json.loads((middleware_project.parent / ".reconciler-state.json").read_text())
    resources = state["resources"]
    assert len(resources) == 13
    assert resources["aws_subnet.app[1]"]["attributes"]["cidr_block"] == "10.20.1.0/24"
    assert (
        resources["aws_instance.liberty[1]"]["attributes"]["subnet_id"]
        == resources["aws_subnet.app[1]"]["provider_id"]
    )

    second = _run("plan", config=middleware_project)
    assert second.exit_code == 0, second.output
    assert "No changes" in second.stdout


def test_scale_out_and_replace(middleware_project: Path) -> None:
    assert _run("apply", "--auto-approve", config=middleware_project).exit_code == 0

    _set_variable(middleware_project, "liberty_replicas: 2", "liberty_replicas: 3")
    scaled = _run("plan", config=middleware_project)
    assert scaled.exit_code == 2, scaled.output
    assert "aws_instance.liberty[2] will be created" in scaled.stdout
    assert "aws_cloudwatch_metric_alarm.liberty_cpu[2] will be created" in scaled.stdout
    assert "aws_lb.web will be updated in-place" in scaled.stdout
    assert _run("apply", "--auto-approve", config=middleware_project).exit_code == 0

    _set_variable(middleware_project, "ami-0c55b159cbfafe1f0", "ami-0fedcba9876543210")
    replaced = _run("plan", config=middleware_project)
    assert replaced.exit_code == 2, replaced.output
    assert "aws_instance.liberty[0] must be replaced (create before destroy)" in replaced.stdout
    assert "3 to replace" in replaced.stdout

    applied = _run("apply", "--auto-approve", config=middleware_project)
    assert applied.exit_code == 0, applied.output
    assert "(deposed)" in applied.stdout
    assert _run("plan", config=middleware_project).exit_code == 0


def test_disable_monitoring_destroys_alarms(middleware_project: Path) -> None:
    assert _run("apply", "--auto-approve", config=middleware_project).exit_code == 0

    _set_variable(middleware_project, "enable_monitoring: true", "enable_monitoring: false")
    result = _run("plan", config=middleware_project)
    assert result.exit_code == 2, result.output
    assert "Plan: 0 to add, 0 to change, 0 to replace, 3 to destroy." in result.stdout


def test_drift_detected_and_refreshed(middleware_project: Path) -> None:
    assert _run("apply", "--auto-approve", config=middleware_project).exit_code == 0

    objects_file = middleware_project.parent / ".provider-objects.json"
    data = json.loads(objects_file.read_text())
    db = next(o for o in data["objects"].values() if o["type"] == "aws_db_instance")
    db["attributes"]["multi_az"] = True
    objects_file.write_text(json.dumps(data))

    drift = _run("drift", config=middleware_project)
    assert drift.exit_code == 0, drift.output
    assert "Drift detected" in drift.stdout
    assert "multi_az = false -> true" in drift.stdout

    # The next plan puts the database back to its declared value.
    plan = _run("plan", "--no-refresh", config=middleware_project)
    assert plan.exit_code == 0, plan.output
    plan = _run("plan", config=middleware_project)
    assert plan.exit_code == 2, plan.output
    assert "aws_db_instance.main will be updated in-place" in plan.stdout


def test_destroy_blocked_by_prevent_destroy(middleware_project: Path) -> None:
    assert _run("apply", "--auto-approve", config=middleware_project).exit_code == 0

    result = _run("destroy", "--auto-approve", config=middleware_project)
    assert result.exit_code == 1
    assert "prevent_destroy" in result.output
