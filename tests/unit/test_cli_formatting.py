from __future__ import annotations

import re

from infra_reconciler.cli.formatting import (
    change_symbol,
    changes_summary,
    format_apply_summary,
    format_change,
    format_graph,
    format_plan,
    format_plan_summary,
    format_report,
    has_actionable_changes,
)
from infra_reconciler.core.state import StateEntry
from infra_reconciler.engine.builder import build
from infra_reconciler.engine.types import (
    Action,
    ExecutionReport,
    Plan,
    PlanMetadata,
    ResourceChange,
    ResourceResult,
)
from infra_reconciler.resources.base import ResourceDeclaration

_META = PlanMetadata(
    destroy=False,
    refresh=True,
    state_lineage="lineage-1",
    state_serial=0,
    state_digest="digest",
    config_digest="cdigest",
    engine_version="0.1.0",
)

_VPC_ENTRY = StateEntry(
    address="aws_vpc.main",
    resource_type="aws_vpc",
    provider_id="vpc-1",
    attributes={"cidr_block": "10.0.0.0/16", "id": "vpc-1"},
)


def _strip_ansi(text: str) -> str:
    return re.sub(r"\x1b\[[0-9;]*m", "", text)


def _replace(policy: str) -> ResourceChange:
    return ResourceChange(
        address="aws_vpc.main",
        resource_type="aws_vpc",
        action=Action.REPLACE,
        before=_VPC_ENTRY,
        diff={"cidr_block": {"from": "10.0.0.0/16", "to": "10.1.0.0/16"}},
        replace_reasons=["cidr_block"],
        replace_policy=policy,
    )


class TestFormatPlanSummary:
    def test_all_zeros(self) -> None:
        result = format_plan_summary({}, color=False)
        assert result == "Plan: 0 to add, 0 to change, 0 to replace, 0 to destroy."

    def test_with_counts(self) -> None:
        summary = {"create": 2, "update": 1, "replace": 1, "destroy": 3, "no-op": 5}
        result = format_plan_summary(summary, color=False)
        assert result == "Plan: 2 to add, 1 to change, 1 to replace, 3 to destroy."

    def test_custom_header(self) -> None:
        result = format_plan_summary({"update": 1}, color=False, header="Refresh")
        assert result.startswith("Refresh: 0 to add, 1 to change")

    def test_color_mode_contains_ansi(self) -> None:
        result = format_plan_summary({"create": 1}, color=True)
        assert "\x1b[" in result
        assert _strip_ansi(result) == "Plan: 1 to add, 0 to change, 0 to replace, 0 to destroy."


class TestChangesSummary:
    def test_counts_non_noop(self) -> None:
        changes = [
            ResourceChange(address="a.x", resource_type="a", action=Action.CREATE),
            ResourceChange(address="a.y", resource_type="a", action=Action.NOOP),
            _replace("destroy_before_create"),
        ]
        assert changes_summary(changes) == {"create": 1, "update": 0, "replace": 1, "destroy": 0}


class TestFormatChange:
    def test_create(self) -> None:
        change = ResourceChange(
            address="aws_subnet.app",
            resource_type="aws_subnet",
            action=Action.CREATE,
            planned={"vpc_id": "(known after apply)", "cidr_block": "10.0.1.0/24", "public": False},
        )
        lines = _strip_ansi(format_change(change, color=False)).splitlines()
        assert lines[0] == "  # aws_subnet.app will be created"
        assert lines[1] == '  + resource "aws_subnet" "app" {'
        assert '      + cidr_block = "10.0.1.0/24"' in lines
        assert "      + public     = false" in lines
        assert "      + vpc_id     = (known after apply)" in lines
        assert lines[-1] == "    }"

    def test_update(self) -> None:
        change = ResourceChange(
            address="aws_instance.web[0]",
            resource_type="aws_instance",
            action=Action.UPDATE,
            diff={"instance_type": {"from": "t3.micro", "to": "m5.large"}},
        )
        text = format_change(change, color=False)
        assert "aws_instance.web[0] will be updated in-place" in text
        assert '~ resource "aws_instance" "web[0]"' in text
        assert '~ instance_type = "t3.micro" -> "m5.large"' in text

    def test_replace_destroy_before_create(self) -> None:
        text = format_change(_replace("destroy_before_create"), color=False)
        assert "aws_vpc.main must be replaced" in text
        assert '-/+ resource "aws_vpc" "main"' in text
        assert '"10.0.0.0/16" -> "10.1.0.0/16" # forces replacement' in text

    def test_replace_create_before_destroy(self) -> None:
        change = _replace("create_before_destroy")
        assert change_symbol(change) == "+/-"
        text = format_change(change, color=False)
        assert "(create before destroy)" in text
        assert '+/- resource "aws_vpc" "main"' in text

    def test_destroy_lists_prior_attributes(self) -> None:
        change = ResourceChange(
            address="aws_vpc.main",
            resource_type="aws_vpc",
            action=Action.DESTROY,
            before=_VPC_ENTRY,
        )
        text = format_change(change, color=False)
        assert "aws_vpc.main will be destroyed" in text
        assert '- cidr_block = "10.0.0.0/16"' in text


class TestFormatPlan:
    def test_noop_only(self) -> None:
        plan = Plan(
            metadata=_META,
            changes=[ResourceChange(address="a.x", resource_type="a", action=Action.NOOP)],
        )
        assert format_plan(plan, color=False) == "No changes. Resources are up-to-date."

    def test_skips_noop_blocks(self) -> None:
        plan = Plan(
            metadata=_META,
            changes=[
                ResourceChange(address="a.x", resource_type="a", action=Action.NOOP),
                ResourceChange(address="a.y", resource_type="a", action=Action.CREATE),
            ],
        )
        text = format_plan(plan, color=False)
        assert "a.y will be created" in text
        assert "a.x" not in text


class TestHasActionableChanges:
    def test_noop_plan(self) -> None:
        plan = Plan(
            metadata=_META,
            changes=[ResourceChange(address="a.x", resource_type="a", action=Action.NOOP)],
        )
        assert not has_actionable_changes(plan)

    def test_create_plan(self) -> None:
        plan = Plan(
            metadata=_META,
            changes=[ResourceChange(address="a.x", resource_type="a", action=Action.CREATE)],
        )
        assert has_actionable_changes(plan)


class TestReport:
    def _report(self, **kwargs: object) -> ExecutionReport:
        return ExecutionReport(
            results={
                "aws_vpc.main": ResourceResult(
                    address="aws_vpc.main", action=Action.CREATE, status="failed", error="quota"
                ),
                "aws_subnet.app": ResourceResult(
                    address="aws_subnet.app", action=Action.CREATE, status="skipped"
                ),
                "aws_s3_bucket.logs": ResourceResult(
                    address="aws_s3_bucket.logs", action=Action.NOOP, status="no-op"
                ),
            },
            **kwargs,
        )

    def test_format_report_lists_acted_on_resources(self) -> None:
        lines = format_report(self._report(), color=False).splitlines()
        assert lines == [
            "  aws_subnet.app: create skipped",
            "  aws_vpc.main: create failed (quota)",
        ]

    def test_apply_summary_with_errors(self) -> None:
        text = format_apply_summary(self._report(), color=False)
        assert text == (
            "Apply finished with errors. Resources: 0 succeeded, 1 failed, 1 skipped, 0 canceled."
        )

    def test_apply_summary_canceled(self) -> None:
        text = format_apply_summary(self._report(canceled=True), color=False)
        assert text.startswith("Apply canceled.")

    def test_apply_summary_success(self) -> None:
        report = ExecutionReport(
            results={
                "a.x": ResourceResult(address="a.x", action=Action.CREATE, status="success")
            }
        )
        text = _strip_ansi(format_apply_summary(report, color=True))
        assert text == "Apply complete! Resources: 1 succeeded, 0 failed, 0 skipped, 0 canceled."


def test_format_graph_dot() -> None:
    graph = build(
        [
            ResourceDeclaration(type="aws_vpc", name="main"),
            ResourceDeclaration(
                type="aws_subnet", name="app", attributes={"vpc_id": {"ref": "aws_vpc.main.id"}}
            ),
        ]
    )
    assert format_graph(graph).splitlines() == [
        "digraph {",
        "  rankdir = LR;",
        '  "aws_subnet.app";',
        '  "aws_vpc.main";',
        '  "aws_subnet.app" -> "aws_vpc.main";',
        "}",
    ]
