from __future__ import annotations

import pytest

from infra_reconciler.resources.expressions import (
    UNKNOWN,
    CallExpr,
    CountIndexExpr,
    ExpressionError,
    ExpressionTypeError,
    ListExpr,
    LiteralExpr,
    ObjectExpr,
    RefExpr,
    UnresolvedVariableError,
    VarExpr,
    bind,
    call_function,
    collect_references,
    evaluate,
    fn,
    parse_expression,
    parse_ref,
    render_unknowns,
)


class TestParse:
    def test_plain_values_are_literals(self) -> None:
        assert parse_expression("t3.micro") == LiteralExpr(value="t3.micro")
        assert parse_expression(3) == LiteralExpr(value=3)
        assert parse_expression(None) == LiteralExpr(value=None)

    def test_literal_containers_collapse(self) -> None:
        expr = parse_expression({"Name": "web", "ports": [80, 443]})
        assert expr == LiteralExpr(value={"Name": "web", "ports": [80, 443]})

    def test_ref(self) -> None:
        expr = parse_expression({"ref": "aws_vpc.main.id"})
        assert isinstance(expr, RefExpr)
        assert expr.target == "aws_vpc.main"
        assert expr.attribute == "id"

    def test_indexed_and_splat_refs(self) -> None:
        indexed = parse_ref("aws_subnet.app[1].id")
        assert indexed.index == 1
        assert indexed.target == "aws_subnet.app[1]"

        splat = parse_ref("aws_subnet.app[*].id")
        assert splat.splat is True
        assert splat.target == "aws_subnet.app[*]"
        assert str(splat) == "aws_subnet.app[*].id"

    def test_invalid_ref(self) -> None:
        with pytest.raises(ExpressionError, match="Invalid reference"):
            parse_expression({"ref": "not-a-ref"})

    def test_var_and_count(self) -> None:
        assert parse_expression({"var": "env"}) == VarExpr(name="env")
        assert parse_expression({"count": "index"}) == CountIndexExpr()

    def test_unsupported_count_attribute(self) -> None:
        with pytest.raises(ExpressionError, match="only 'index'"):
            parse_expression({"count": "value"})

    def test_function_call(self) -> None:
        expr = parse_expression({"fn": "format", "args": ["web-{}", {"count": "index"}]})
        assert isinstance(expr, CallExpr)
        assert expr.function == "format"
        assert expr.args[1] == CountIndexExpr()

    def test_unknown_function(self) -> None:
        with pytest.raises(ExpressionError, match="Unknown function"):
            parse_expression({"fn": "nope", "args": []})

    def test_mixed_containers_stay_structured(self) -> None:
        expr = parse_expression({"name": "x", "vpc": {"ref": "aws_vpc.main.id"}})
        assert isinstance(expr, ObjectExpr)
        listed = parse_expression(["a", {"var": "b"}])
        assert isinstance(listed, ListExpr)

    def test_literal_escape_keeps_special_keys(self) -> None:
        assert parse_expression({"literal": {"ref": "x"}}) == LiteralExpr(value={"ref": "x"})


def test_collect_references_depth_first() -> None:
    expr = parse_expression(
        {
            "a": {"ref": "t.one.id"},
            "b": [{"ref": "t.two.id"}, {"fn": "upper", "args": [{"ref": "t.three.name"}]}],
        }
    )
    assert [r.declaration for r in collect_references(expr)] == ["t.one", "t.two", "t.three"]


class TestBind:
    def test_substitutes_variables_and_folds_calls(self) -> None:
        expr = parse_expression(
            {"fn": "format", "args": ["{}-{}", {"var": "env"}, {"count": "index"}]}
        )
        assert bind(expr, variables={"env": "prod"}, count_index=2) == LiteralExpr(value="prod-2")

    def test_undefined_variable(self) -> None:
        with pytest.raises(UnresolvedVariableError):
            bind(VarExpr(name="missing"), variables={})

    def test_count_index_without_count(self) -> None:
        with pytest.raises(ExpressionError, match="without count"):
            bind(CountIndexExpr(), variables={})

    def test_references_survive_binding(self) -> None:
        expr = parse_expression({"fn": "upper", "args": [{"ref": "t.a.name"}]})
        bound = bind(expr, variables={})
        assert isinstance(bound, CallExpr)


class TestEvaluate:
    def test_resolves_refs(self) -> None:
        expr = parse_expression(["x", {"ref": "t.a.id"}])
        assert evaluate(expr, lambda r: f"{r.target}:{r.attribute}") == ["x", "t.a:id"]

    def test_unknown_propagates_through_calls(self) -> None:
        expr = parse_expression({"fn": "upper", "args": [{"ref": "t.a.name"}]})
        assert evaluate(expr, lambda r: UNKNOWN) is UNKNOWN

    def test_render_unknowns(self) -> None:
        assert render_unknowns({"a": [UNKNOWN, 1]}) == {"a": ["(known after apply)", 1]}


class TestFunctions:
    def test_cidrsubnet(self) -> None:
        assert call_function("cidrsubnet", ["10.0.0.0/16", 8, 2]) == "10.0.2.0/24"
        assert call_function("cidrsubnet", ["10.0.0.0/16", 4, 15]) == "10.0.240.0/20"

    def test_cidrsubnet_out_of_range(self) -> None:
        with pytest.raises(ExpressionTypeError, match="out of range"):
            call_function("cidrsubnet", ["10.0.0.0/16", 1, 2])

    def test_join_length_element_lookup(self) -> None:
        assert call_function("join", [",", ["a", "b"]]) == "a,b"
        assert call_function("length", [["a", "b", "c"]]) == 3
        assert call_function("element", [["a", "b"], 3]) == "b"
        assert call_function("lookup", [{"a": 1}, "b", 0]) == 0
        assert call_function("concat", [[1], [2, 3]]) == [1, 2, 3]
        assert call_function("coalesce", [None, "", "x"]) == "x"

    def test_type_errors(self) -> None:
        with pytest.raises(ExpressionTypeError, match="upper"):
            call_function("upper", [3])
        with pytest.raises(ExpressionTypeError):
            call_function("element", [["a"], True])

    def test_lookup_missing_key(self) -> None:
        with pytest.raises(ExpressionTypeError, match="not found"):
            call_function("lookup", [{"a": 1}, "b"])

    def test_fn_helper(self) -> None:
        expr = fn("join", "-", ["a", {"var": "b"}])
        assert bind(expr, variables={"b": "c"}) == LiteralExpr(value="a-c")
