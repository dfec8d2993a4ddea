"""Structured attribute expressions.

Attribute values are a tagged union rather than interpolated strings, so
dependency inference is a static walk over the expression tree:

- ``literal``: a plain JSON value
- ``ref``: another resource's attribute (``aws_vpc.main.id``)
- ``var``: configuration variable, bound at build time
- ``count_index``: index of the instance being expanded, bound at build time
- ``list``/``object``: containers of nested expressions
- ``call``: a built-in function applied to nested expressions

The YAML surface syntax maps one-to-one onto these nodes::

    vpc_id: {ref: aws_vpc.main.id}
    name: {fn: format, args: ["liberty-{}", {count: index}]}
    env: {var: environment}
"""

from __future__ import annotations

import copy
import ipaddress
import re
from typing import TYPE_CHECKING, Annotated, Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Discriminator

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping


class ExpressionError(Exception):
    """Raised when an expression cannot be parsed or evaluated."""


class ExpressionTypeError(ExpressionError):
    """Raised when a function receives an argument of the wrong type."""


class UnresolvedVariableError(ExpressionError):
    """Raised when a ``var`` expression names an undefined variable."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Undefined variable '{name}'")
        self.name = name


class _Unknown:
    """Placeholder for a value that is only known after apply."""

    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return UNKNOWN_DISPLAY

    def __copy__(self) -> _Unknown:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> _Unknown:
        return self


UNKNOWN_DISPLAY = "(known after apply)"
UNKNOWN = _Unknown()


def contains_unknown(value: Any) -> bool:
    """Return True if *value* is, or contains, the ``UNKNOWN`` placeholder."""
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, list | tuple):
        return any(contains_unknown(v) for v in value)
    return False


def render_unknowns(value: Any) -> Any:
    """Replace ``UNKNOWN`` placeholders with a display string (JSON-safe)."""
    if value is UNKNOWN:
        return UNKNOWN_DISPLAY
    if isinstance(value, dict):
        return {k: render_unknowns(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [render_unknowns(v) for v in value]
    return value


# ── Expression nodes ────────────────────────────────────────────────


class _Expr(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class LiteralExpr(_Expr):
    kind: Literal["literal"] = "literal"
    value: Any = None


class RefExpr(_Expr):
    """Reference to an attribute of another declared resource."""

    kind: Literal["ref"] = "ref"
    resource_type: str
    name: str
    index: int | None = None
    splat: bool = False
    attribute: str

    @property
    def declaration(self) -> str:
        return f"{self.resource_type}.{self.name}"

    @property
    def target(self) -> str:
        """The referenced instance (or instance set), without the attribute."""
        if self.splat:
            return f"{self.declaration}[*]"
        if self.index is not None:
            return f"{self.declaration}[{self.index}]"
        return self.declaration

    def __str__(self) -> str:
        return f"{self.target}.{self.attribute}"


class VarExpr(_Expr):
    kind: Literal["var"] = "var"
    name: str


class CountIndexExpr(_Expr):
    kind: Literal["count_index"] = "count_index"


class ListExpr(_Expr):
    kind: Literal["list"] = "list"
    items: list[Expression]


class ObjectExpr(_Expr):
    kind: Literal["object"] = "object"
    items: dict[str, Expression]


class CallExpr(_Expr):
    kind: Literal["call"] = "call"
    function: str
    args: list[Expression] = []


Expression: TypeAlias = Annotated[
    LiteralExpr | RefExpr | VarExpr | CountIndexExpr | ListExpr | ObjectExpr | CallExpr,
    Discriminator("kind"),
]

ListExpr.model_rebuild()
ObjectExpr.model_rebuild()
CallExpr.model_rebuild()


# ── Built-in functions ──────────────────────────────────────────────


def _expect(value: Any, types: type | tuple[type, ...], fn: str, what: str) -> None:
    if not isinstance(value, types) or (isinstance(value, bool) and bool not in _as_tuple(types)):
        raise ExpressionTypeError(
            f"{fn}(): {what} must be {_type_label(types)}, got {_kind(value)}"
        )


def _as_tuple(types: type | tuple[type, ...]) -> tuple[type, ...]:
    return types if isinstance(types, tuple) else (types,)


def _type_label(types: type | tuple[type, ...]) -> str:
    return " or ".join(t.__name__ for t in _as_tuple(types))


def _kind(value: Any) -> str:
    return "null" if value is None else type(value).__name__


def _fn_format(template: Any, *args: Any) -> str:
    _expect(template, str, "format", "template")
    try:
        return template.format(*args)
    except (IndexError, KeyError, ValueError) as exc:
        raise ExpressionTypeError(f"format(): {exc}") from exc


def _fn_join(separator: Any, items: Any) -> str:
    _expect(separator, str, "join", "separator")
    _expect(items, list, "join", "items")
    return separator.join(str(i) for i in items)


def _fn_concat(*lists: Any) -> list[Any]:
    result: list[Any] = []
    for item in lists:
        _expect(item, list, "concat", "every argument")
        result.extend(item)
    return result


def _fn_length(value: Any) -> int:
    _expect(value, (list, dict, str), "length", "argument")
    return len(value)


def _fn_element(items: Any, index: Any) -> Any:
    _expect(items, list, "element", "items")
    _expect(index, int, "element", "index")
    if not items:
        raise ExpressionTypeError("element(): cannot index an empty list")
    return items[index % len(items)]


_MISSING = object()


def _fn_lookup(mapping: Any, key: Any, default: Any = _MISSING) -> Any:
    _expect(mapping, dict, "lookup", "map")
    _expect(key, str, "lookup", "key")
    if key in mapping:
        return mapping[key]
    if default is _MISSING:
        raise ExpressionTypeError(f"lookup(): key '{key}' not found and no default given")
    return default


def _fn_coalesce(*args: Any) -> Any:
    return next((a for a in args if a is not None and a != ""), None)


def _fn_upper(value: Any) -> str:
    _expect(value, str, "upper", "argument")
    return value.upper()


def _fn_lower(value: Any) -> str:
    _expect(value, str, "lower", "argument")
    return value.lower()


def _fn_cidrsubnet(prefix: Any, newbits: Any, netnum: Any) -> str:
    """Terraform-compatible ``cidrsubnet(prefix, newbits, netnum)``."""
    _expect(prefix, str, "cidrsubnet", "prefix")
    _expect(newbits, int, "cidrsubnet", "newbits")
    _expect(netnum, int, "cidrsubnet", "netnum")
    try:
        network = ipaddress.ip_network(prefix, strict=False)
    except ValueError as exc:
        raise ExpressionTypeError(f"cidrsubnet(): {exc}") from exc
    new_prefix = network.prefixlen + newbits
    if newbits < 0 or new_prefix > network.max_prefixlen:
        raise ExpressionTypeError(f"cidrsubnet(): cannot extend /{network.prefixlen} by {newbits}")
    if not 0 <= netnum < 2**newbits:
        raise ExpressionTypeError(f"cidrsubnet(): netnum {netnum} out of range for {newbits} bits")
    size = 2 ** (network.max_prefixlen - new_prefix)
    address = int(network.network_address) + netnum * size
    return str(type(network)((address, new_prefix)))


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "format": _fn_format,
    "join": _fn_join,
    "concat": _fn_concat,
    "length": _fn_length,
    "element": _fn_element,
    "lookup": _fn_lookup,
    "coalesce": _fn_coalesce,
    "upper": _fn_upper,
    "lower": _fn_lower,
    "cidrsubnet": _fn_cidrsubnet,
}


def call_function(name: str, args: list[Any]) -> Any:
    """Apply a built-in function; any unknown argument makes the result unknown."""
    fn = FUNCTIONS.get(name)
    if fn is None:
        raise ExpressionError(f"Unknown function '{name}'")
    if contains_unknown(args):
        return UNKNOWN
    try:
        return fn(*args)
    except TypeError as exc:
        raise ExpressionTypeError(f"{name}(): {exc}") from exc


# ── Parsing ─────────────────────────────────────────────────────────

_REF_PATTERN = re.compile(
    r"^(?P<type>[A-Za-z_][\w-]*)\.(?P<name>[A-Za-z_][\w-]*)"
    r"(?:\[(?P<index>\d+|\*)\])?\.(?P<attr>[A-Za-z_][\w-]*)$"
)


def parse_ref(text: str) -> RefExpr:
    """Parse ``type.name[.index].attribute`` into a :class:`RefExpr`."""
    if not isinstance(text, str):
        raise ExpressionError(f"ref must be a string, got {_kind(text)}")
    match = _REF_PATTERN.match(text.strip())
    if match is None:
        raise ExpressionError(
            f"Invalid reference '{text}': expected 'type.name.attribute', "
            "'type.name[N].attribute' or 'type.name[*].attribute'"
        )
    index = match.group("index")
    return RefExpr(
        resource_type=match.group("type"),
        name=match.group("name"),
        index=int(index) if index is not None and index != "*" else None,
        splat=index == "*",
        attribute=match.group("attr"),
    )


def _parse_special(key: str, value: Any) -> _Expr | None:
    match key:
        case "ref":
            return parse_ref(value)
        case "var":
            if not isinstance(value, str):
                raise ExpressionError(f"var must be a string, got {_kind(value)}")
            return VarExpr(name=value)
        case "count":
            if value != "index":
                raise ExpressionError(f"Unsupported count attribute '{value}' (only 'index')")
            return CountIndexExpr()
        case "literal":
            return LiteralExpr(value=value)
    return None


def parse_expression(raw: Any) -> Expression:
    """Convert the YAML/Python surface syntax into an expression tree.

    Containers whose children are all literal collapse into a single
    ``LiteralExpr`` so plain data stays plain.
    """
    if isinstance(raw, _Expr):
        return raw  # type: ignore[return-value]

    if isinstance(raw, dict):
        if len(raw) == 1:
            ((key, value),) = raw.items()
            special = _parse_special(key, value)
            if special is not None:
                return special  # type: ignore[return-value]
        if "fn" in raw and set(raw) <= {"fn", "args"}:
            name = raw["fn"]
            if name not in FUNCTIONS:
                raise ExpressionError(f"Unknown function '{name}'")
            args = raw.get("args") or []
            if not isinstance(args, list):
                args = [args]
            return CallExpr(function=name, args=[parse_expression(a) for a in args])
        items = {str(k): parse_expression(v) for k, v in raw.items()}
        if all(isinstance(v, LiteralExpr) for v in items.values()):
            return LiteralExpr(value={k: v.value for k, v in items.items()})  # type: ignore[union-attr]
        return ObjectExpr(items=items)

    if isinstance(raw, list | tuple):
        elements = [parse_expression(v) for v in raw]
        if all(isinstance(v, LiteralExpr) for v in elements):
            return LiteralExpr(value=[v.value for v in elements])  # type: ignore[union-attr]
        return ListExpr(items=elements)

    return LiteralExpr(value=raw)


# ── Python builder helpers (for modules) ────────────────────────────


def ref(text: str) -> RefExpr:
    return parse_ref(text)


def var(name: str) -> VarExpr:
    return VarExpr(name=name)


def count_index() -> CountIndexExpr:
    return CountIndexExpr()


def fn(name: str, *args: Any) -> CallExpr:
    if name not in FUNCTIONS:
        raise ExpressionError(f"Unknown function '{name}'")
    return CallExpr(function=name, args=[parse_expression(a) for a in args])


# ── Static analysis & evaluation ────────────────────────────────────


def collect_references(expr: Expression) -> list[RefExpr]:
    """Return every ``RefExpr`` in *expr*, depth-first, in declaration order."""
    match expr:
        case RefExpr():
            return [expr]
        case ListExpr(items=items) | CallExpr(args=items):
            return [r for item in items for r in collect_references(item)]
        case ObjectExpr(items=items):
            return [r for item in items.values() for r in collect_references(item)]
    return []


def is_static(expr: Expression) -> bool:
    """True if *expr* does not depend on any resource attribute."""
    return not collect_references(expr)


def bind(
    expr: Expression,
    *,
    variables: Mapping[str, Any],
    count_index: int | None = None,
) -> Expression:
    """Substitute variables and ``count.index`` and fold constant calls."""
    match expr:
        case VarExpr(name=name):
            if name not in variables:
                raise UnresolvedVariableError(name)
            return LiteralExpr(value=copy.deepcopy(variables[name]))
        case CountIndexExpr():
            if count_index is None:
                raise ExpressionError("count.index used in a resource without count")
            return LiteralExpr(value=count_index)
        case ListExpr(items=items):
            bound = [bind(i, variables=variables, count_index=count_index) for i in items]
            if all(isinstance(b, LiteralExpr) for b in bound):
                return LiteralExpr(value=[b.value for b in bound])  # type: ignore[union-attr]
            return ListExpr(items=bound)
        case ObjectExpr(items=items):
            bound_items = {
                k: bind(v, variables=variables, count_index=count_index) for k, v in items.items()
            }
            if all(isinstance(b, LiteralExpr) for b in bound_items.values()):
                return LiteralExpr(value={k: b.value for k, b in bound_items.items()})  # type: ignore[union-attr]
            return ObjectExpr(items=bound_items)
        case CallExpr(function=function, args=args):
            bound_args = [bind(a, variables=variables, count_index=count_index) for a in args]
            if all(isinstance(b, LiteralExpr) for b in bound_args):
                values = [b.value for b in bound_args]  # type: ignore[union-attr]
                return LiteralExpr(value=call_function(function, values))
            return CallExpr(function=function, args=bound_args)
    return expr


def evaluate(expr: Expression, resolve_ref: Callable[[RefExpr], Any]) -> Any:
    """Evaluate a bound expression, resolving references through *resolve_ref*."""
    match expr:
        case LiteralExpr(value=value):
            return copy.deepcopy(value)
        case RefExpr():
            return resolve_ref(expr)
        case ListExpr(items=items):
            return [evaluate(i, resolve_ref) for i in items]
        case ObjectExpr(items=items):
            return {k: evaluate(v, resolve_ref) for k, v in items.items()}
        case CallExpr(function=function, args=args):
            return call_function(function, [evaluate(a, resolve_ref) for a in args])
        case VarExpr(name=name):
            raise ExpressionError(f"Variable '{name}' was not bound before evaluation")
        case CountIndexExpr():
            raise ExpressionError("count.index was not bound before evaluation")
    raise ExpressionError(f"Unsupported expression: {expr!r}")
