"""Configuration models for YAML-based reconciliation."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PrivateAttr

from infra_reconciler.config.modules import ModuleSpec  # noqa: TC001
from infra_reconciler.engine.registry import AttributeKind, ReplacePolicy  # noqa: TC001
from infra_reconciler.engine.settings import EngineSettings
from infra_reconciler.resources.base import ResourceDeclaration


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


def _none_to_dict(v: Any) -> Any:
    return v if v is not None else {}


class ProviderSpec(BaseModel):
    """A provider adapter factory and its keyword arguments.

    ``call`` is a built-in name (``memory``, ``local``), an entry point in the
    ``infra_reconciler.providers`` group, or ``module.path:factory``.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    call: str
    with_: Annotated[dict[str, Any], BeforeValidator(_none_to_dict)] = Field(
        default_factory=dict, alias="with"
    )


def _default_providers() -> dict[str, ProviderSpec]:
    return {"default": ProviderSpec(call="local", with_={"path": ".reconciler-provider.json"})}


class ResourceTypeConfig(BaseModel):
    """Per resource type behaviour."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    provider: str = "default"
    replace_triggers: Annotated[list[str], BeforeValidator(_none_to_list)] = []
    replace_policy: ReplacePolicy | None = None
    timeout_seconds: float | None = Field(default=None, gt=0)
    attribute_schema: Annotated[dict[str, AttributeKind], BeforeValidator(_none_to_dict)] = Field(
        default_factory=dict, alias="schema"
    )


class Config(BaseModel):
    """Reconciliation configuration; validates YAML structure directly."""

    model_config = ConfigDict(extra="forbid")

    settings: EngineSettings = Field(default_factory=EngineSettings)
    state_path: Path = Path(".reconciler-state.json")
    variables: Annotated[dict[str, Any], BeforeValidator(_none_to_dict)] = {}
    providers: Annotated[dict[str, ProviderSpec], BeforeValidator(_none_to_dict)] = Field(
        default_factory=_default_providers
    )
    resource_types: Annotated[
        dict[str, ResourceTypeConfig], BeforeValidator(_none_to_dict)
    ] = {}
    resources: Annotated[list[ResourceDeclaration], BeforeValidator(_none_to_list)] = []
    modules: Annotated[list[ModuleSpec], BeforeValidator(_none_to_list)] = []
    config_dir: Path = Path()

    _module_declarations: list[ResourceDeclaration] = PrivateAttr(default_factory=list)

    @property
    def declarations(self) -> list[ResourceDeclaration]:
        """YAML resources followed by module-generated ones; order is not significant."""
        return [*self.resources, *self._module_declarations]
