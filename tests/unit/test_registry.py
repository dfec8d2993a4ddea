from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from infra_reconciler.config import ConfigError, reconciler_from_config
from infra_reconciler.config.registry import (
    ProviderResolutionError,
    build_registry,
    create_provider,
)
from infra_reconciler.config.schema import ProviderSpec
from infra_reconciler.engine.errors import UnknownResourceTypeError
from infra_reconciler.engine.registry import ResourceTypeRegistry, value_matches_kind
from infra_reconciler.providers import InMemoryProvider, LocalProvider

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from infra_reconciler.config.schema import Config


# ── Engine registry ─────────────────────────────────────────────────


class TestResourceTypeRegistry:
    def test_register_and_get(self) -> None:
        adapter = InMemoryProvider()
        registry = ResourceTypeRegistry()
        registry.register(
            "aws_vpc",
            adapter,
            replace_triggers=["cidr_block"],
            replace_policy="create_before_destroy",
            timeout_seconds=30,
            schema={"cidr_block": "string"},
        )

        reg = registry.get("aws_vpc")
        assert reg.adapter is adapter
        assert reg.replace_triggers == frozenset({"cidr_block"})
        assert reg.replace_policy == "create_before_destroy"
        assert reg.timeout_seconds == 30
        assert reg.schema == {"cidr_block": "string"}
        assert "aws_vpc" in registry
        assert registry.registered_types() == ["aws_vpc"]

    def test_unknown_type_without_default(self) -> None:
        registry = ResourceTypeRegistry()
        assert "aws_vpc" not in registry
        with pytest.raises(UnknownResourceTypeError, match="aws_vpc"):
            registry.get("aws_vpc")

    def test_default_adapter_fallback(self) -> None:
        adapter = InMemoryProvider()
        registry = ResourceTypeRegistry(default_adapter=adapter)

        reg = registry.get("aws_lb")
        assert reg.adapter is adapter
        assert reg.replace_triggers == frozenset()
        assert reg.schema == {}
        assert "aws_lb" in registry
        assert registry.registered_types() == []

    def test_duplicate_registration_rejected(self) -> None:
        registry = ResourceTypeRegistry()
        registry.register("aws_vpc", InMemoryProvider())
        with pytest.raises(ValueError, match="already registered"):
            registry.register("aws_vpc", InMemoryProvider())

    @pytest.mark.parametrize("timeout", [0, -1.5])
    def test_non_positive_timeout_rejected(self, timeout: float) -> None:
        with pytest.raises(ValueError, match="timeout_seconds"):
            ResourceTypeRegistry().register("aws_vpc", InMemoryProvider(), timeout_seconds=timeout)

    def test_empty_type_rejected(self) -> None:
        with pytest.raises(ValueError, match="non-empty"):
            ResourceTypeRegistry().register("", InMemoryProvider())


@pytest.mark.parametrize(
    ("value", "kind", "expected"),
    [
        ("10.0.0.0/16", "string", True),
        (3, "string", False),
        (3, "number", True),
        (2.5, "number", True),
        (True, "number", False),
        (False, "bool", True),
        (["a"], "list", True),
        ({"k": "v"}, "map", True),
        ({"k": "v"}, "list", False),
        (None, "string", True),
        (object(), "any", True),
    ],
)
def test_value_matches_kind(value: object, kind: str, expected: bool) -> None:
    assert value_matches_kind(value, kind) is expected  # type: ignore[arg-type]


# ── Config-driven providers ─────────────────────────────────────────


class TestCreateProvider:
    def test_builtin_memory(self, tmp_path: Path) -> None:
        adapter = create_provider("default", ProviderSpec(call="memory"), tmp_path)
        assert type(adapter) is InMemoryProvider

    def test_local_path_resolved_against_config_dir(self, tmp_path: Path) -> None:
        spec = ProviderSpec.model_validate({"call": "local", "with": {"path": "objs.json"}})
        adapter = create_provider("default", spec, tmp_path)
        assert isinstance(adapter, LocalProvider)
        assert adapter.path == tmp_path / "objs.json"

    def test_absolute_path_kept(self, tmp_path: Path) -> None:
        target = tmp_path / "elsewhere" / "objs.json"
        spec = ProviderSpec.model_validate({"call": "local", "with": {"path": str(target)}})
        adapter = create_provider("default", spec, tmp_path / "config")
        assert adapter.path == target  # type: ignore[attr-defined]

    def test_local_factory_module(self, tmp_path: Path) -> None:
        (tmp_path / "site_cloud.py").write_text(
            "from infra_reconciler.providers import InMemoryProvider\n"
            "\n"
            "def make(region):\n"
            "    p = InMemoryProvider()\n"
            "    p.region = region\n"
            "    return p\n"
        )
        spec = ProviderSpec.model_validate(
            {"call": "site_cloud:make", "with": {"region": "eu-west-1"}}
        )
        adapter = create_provider("aws", spec, tmp_path)
        assert adapter.region == "eu-west-1"  # type: ignore[attr-defined]

    def test_unresolvable_factory(self, tmp_path: Path) -> None:
        with pytest.raises(ProviderResolutionError, match="No entry point"):
            create_provider("default", ProviderSpec(call="nonexistent"), tmp_path)

    def test_factory_raising(self, tmp_path: Path) -> None:
        spec = ProviderSpec.model_validate({"call": "memory", "with": {"bogus": 1}})
        with pytest.raises(ProviderResolutionError, match=r"Provider 'default' \(memory\) raised"):
            create_provider("default", spec, tmp_path)

    def test_factory_must_return_adapter(self, tmp_path: Path) -> None:
        (tmp_path / "bad_factory.py").write_text("def make():\n    return object()\n")
        with pytest.raises(ProviderResolutionError, match="must return a ProviderAdapter"):
            create_provider("default", ProviderSpec(call="bad_factory:make"), tmp_path)


class TestBuildRegistry:
    def test_types_bound_to_named_providers(self, make_config: Callable[..., Config]) -> None:
        config = make_config(
            "providers:\n"
            "  default:\n"
            "    call: memory\n"
            "  files:\n"
            "    call: local\n"
            "    with:\n"
            "      path: objs.json\n"
            "resource_types:\n"
            "  aws_s3_bucket:\n"
            "    provider: files\n"
            "    replace_triggers: [bucket]\n"
            "    timeout_seconds: 5\n"
        )
        registry = build_registry(config)

        bucket = registry.get("aws_s3_bucket")
        assert isinstance(bucket.adapter, LocalProvider)
        assert bucket.replace_triggers == frozenset({"bucket"})
        assert bucket.timeout_seconds == 5
        assert type(registry.get("aws_vpc").adapter) is InMemoryProvider

    def test_unknown_provider_name(self, make_config: Callable[..., Config]) -> None:
        config = make_config(
            "providers:\n  default:\n    call: memory\n"
            "resource_types:\n  aws_vpc:\n    provider: gcp\n"
        )
        with pytest.raises(ProviderResolutionError, match="unknown provider 'gcp'"):
            build_registry(config)

    def test_no_default_provider_means_no_fallback(
        self, make_config: Callable[..., Config]
    ) -> None:
        config = make_config(
            "providers:\n  aws:\n    call: memory\n"
            "resource_types:\n  aws_vpc:\n    provider: aws\n"
        )
        registry = build_registry(config)
        assert "aws_vpc" in registry
        with pytest.raises(UnknownResourceTypeError):
            registry.get("aws_lb")

    def test_reconciler_wraps_resolution_errors(
        self, make_config: Callable[..., Config]
    ) -> None:
        config = make_config("providers:\n  default:\n    call: nowhere:make\n")
        with pytest.raises(ConfigError, match="nowhere"):
            reconciler_from_config(config)
