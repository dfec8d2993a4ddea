"""Resource declarations and their expanded instances."""

from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, computed_field

from infra_reconciler.resources.expressions import (
    Expression,
    ExpressionError,
    RefExpr,
    evaluate,
    parse_expression,
)

_IDENTIFIER = r"^[A-Za-z_][A-Za-z0-9_-]*$"


def _parse_attributes(v: Any) -> Any:
    if v is None:
        return {}
    if isinstance(v, dict):
        try:
            return {k: parse_expression(raw) for k, raw in v.items()}
        except ExpressionError as exc:
            raise ValueError(str(exc)) from exc
    return v


def _parse_optional_expression(v: Any) -> Any:
    if v is None or isinstance(v, bool | int):
        return v
    try:
        return parse_expression(v)
    except ExpressionError as exc:
        raise ValueError(str(exc)) from exc


class Lifecycle(BaseModel):
    """Per-declaration lifecycle settings.

    Attributes:
        create_before_destroy: Override the replace policy for this resource
            (``None`` defers to the resource type, then the engine default).
        prevent_destroy: Fail planning if a destroy or replace is required.
        ignore_changes: Attributes excluded from diffing.
    """

    model_config = ConfigDict(extra="forbid")

    create_before_destroy: bool | None = None
    prevent_destroy: bool = False
    ignore_changes: list[str] = Field(default_factory=list)


class ResourceDeclaration(BaseModel):
    """One declared resource, before count and condition expansion.

    Declarations are pure data. The builder expands them into
    :class:`ResourceInstance` objects; provider adapters never see them.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    resource_type: str = Field(alias="type", pattern=_IDENTIFIER)
    name: str = Field(pattern=_IDENTIFIER)
    attributes: Annotated[dict[str, Expression], BeforeValidator(_parse_attributes)] = Field(
        default_factory=dict
    )
    count: Annotated[int | Expression | None, BeforeValidator(_parse_optional_expression)] = None
    condition: Annotated[
        bool | Expression | None, BeforeValidator(_parse_optional_expression)
    ] = None
    depends_on: list[str] = Field(default_factory=list)
    replace_triggers: list[str] = Field(default_factory=list)
    lifecycle: Lifecycle = Field(default_factory=Lifecycle)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def address(self) -> str:
        """Declaration address (e.g., 'aws_instance.liberty')."""
        return f"{self.resource_type}.{self.name}"

    @property
    def is_counted(self) -> bool:
        return self.count is not None


class ResourceInstance(BaseModel):
    """A materialized, indexed declaration (``liberty[0]``, ``liberty[1]``).

    Attributes:
        address: Unique instance address
        resource_type: Type tag selecting the provider adapter
        name: Declaration name
        index: Position for counted declarations, ``None`` otherwise
        attributes: Expressions with variables and ``count.index`` bound
        dependencies: Addresses of instances this one must follow
        reference_targets: Reference target (``type.name[N]``/``[*]``) to the
            concrete instance addresses it resolved to; empty when pruned
        replace_triggers: Attributes whose change forces destroy-and-recreate
        lifecycle: Lifecycle settings inherited from the declaration
    """

    address: str
    resource_type: str
    name: str
    index: int | None = None
    attributes: dict[str, Expression] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
    reference_targets: dict[str, list[str]] = Field(default_factory=dict)
    replace_triggers: list[str] = Field(default_factory=list)
    lifecycle: Lifecycle = Field(default_factory=Lifecycle)

    @property
    def declaration(self) -> str:
        return f"{self.resource_type}.{self.name}"

    def resolve_attribute(self, key: str, lookup: Callable[[str, str], Any]) -> Any:
        """Evaluate one attribute; ``lookup(address, attribute)`` reads other instances.

        References to pruned targets resolve to ``None`` (``[]`` for splats).
        """

        def resolve_ref(ref: RefExpr) -> Any:
            targets = self.reference_targets.get(ref.target, [])
            if ref.splat:
                return [lookup(t, ref.attribute) for t in targets]
            if not targets:
                return None
            return lookup(targets[0], ref.attribute)

        return evaluate(self.attributes[key], resolve_ref)

    def resolve_attributes(self, lookup: Callable[[str, str], Any]) -> dict[str, Any]:
        return {k: self.resolve_attribute(k, lookup) for k in self.attributes}
