from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from infra_reconciler.core.provider import ProviderAdapter
from infra_reconciler.engine.errors import NotFoundError, ProviderError
from infra_reconciler.providers import InMemoryProvider, LocalProvider

if TYPE_CHECKING:
    from pathlib import Path


class TestInMemoryProvider:
    def test_create_assigns_sequential_ids_per_type(self) -> None:
        provider = InMemoryProvider()
        vpc_id, observed = provider.create("aws_vpc", {"cidr_block": "10.0.0.0/16"})
        second_id, _ = provider.create("aws_vpc", {"cidr_block": "10.1.0.0/16"})
        subnet_id, _ = provider.create("aws_subnet", {})

        assert vpc_id == "aws_vpc-0001"
        assert second_id == "aws_vpc-0002"
        assert subnet_id == "aws_subnet-0001"
        assert observed == {"cidr_block": "10.0.0.0/16", "id": "aws_vpc-0001"}

    def test_read_returns_copy(self) -> None:
        provider = InMemoryProvider()
        pid, _ = provider.create("aws_s3_bucket", {"tags": {"env": "prod"}})

        observed = provider.read("aws_s3_bucket", pid)
        observed["tags"]["env"] = "mutated"

        assert provider.read("aws_s3_bucket", pid)["tags"] == {"env": "prod"}

    def test_update_replaces_attributes(self) -> None:
        provider = InMemoryProvider()
        pid, _ = provider.create("aws_instance", {"instance_type": "t3.micro", "ami": "ami-1"})

        observed = provider.update("aws_instance", pid, {"instance_type": "m5.large"})

        assert observed == {"instance_type": "m5.large", "id": pid}
        assert provider.read("aws_instance", pid) == observed

    def test_destroy_then_read_raises_not_found(self) -> None:
        provider = InMemoryProvider()
        pid, _ = provider.create("aws_vpc", {})
        provider.destroy("aws_vpc", pid)

        with pytest.raises(NotFoundError) as exc_info:
            provider.read("aws_vpc", pid)
        assert exc_info.value.provider_id == pid
        assert isinstance(exc_info.value, ProviderError)

    def test_wrong_type_is_not_found(self) -> None:
        provider = InMemoryProvider()
        pid, _ = provider.create("aws_vpc", {})

        with pytest.raises(NotFoundError):
            provider.read("aws_subnet", pid)
        with pytest.raises(NotFoundError):
            provider.destroy("aws_subnet", pid)

    def test_calls_are_recorded(self) -> None:
        provider = InMemoryProvider()
        pid, _ = provider.create("aws_vpc", {})
        provider.read("aws_vpc", pid)
        provider.update("aws_vpc", pid, {"enable_dns": True})
        provider.destroy("aws_vpc", pid)

        assert provider.calls == [
            ("create", "aws_vpc", pid),
            ("read", "aws_vpc", pid),
            ("update", "aws_vpc", pid),
            ("destroy", "aws_vpc", pid),
        ]
        assert provider.objects == {}


def test_base_adapter_methods_are_abstract() -> None:
    adapter = ProviderAdapter()
    with pytest.raises(NotImplementedError):
        adapter.create("aws_vpc", {})
    with pytest.raises(NotImplementedError):
        adapter.read("aws_vpc", "vpc-1")


class TestLocalProvider:
    def test_persists_after_each_mutation(self, tmp_path: Path) -> None:
        path = tmp_path / "objects.json"
        provider = LocalProvider(path)
        pid, _ = provider.create("aws_vpc", {"cidr_block": "10.0.0.0/16"})

        data = json.loads(path.read_text())
        assert data["objects"][pid]["attributes"]["cidr_block"] == "10.0.0.0/16"
        assert data["counters"] == {"aws_vpc": 1}

    def test_reload_keeps_objects_and_counters(self, tmp_path: Path) -> None:
        path = tmp_path / "objects.json"
        first = LocalProvider(path)
        pid, _ = first.create("aws_vpc", {"cidr_block": "10.0.0.0/16"})

        second = LocalProvider(path)
        assert second.read("aws_vpc", pid)["cidr_block"] == "10.0.0.0/16"
        next_id, _ = second.create("aws_vpc", {})
        assert next_id == "aws_vpc-0002"

    def test_destroy_is_persisted(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "objects.json"
        provider = LocalProvider(path)
        pid, _ = provider.create("aws_vpc", {})
        provider.destroy("aws_vpc", pid)

        assert LocalProvider(path).objects == {}
        assert provider.path == path

    def test_missing_file_starts_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "objects.json"
        provider = LocalProvider(path)

        assert provider.objects == {}
        assert not path.exists()
