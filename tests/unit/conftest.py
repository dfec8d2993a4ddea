"""Shared fixtures for unit tests."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from infra_reconciler.config import load

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from infra_reconciler.config.schema import Config


@pytest.fixture(autouse=True)
def _clean_reconciler_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove RECONCILER_* env vars so unit tests don't leak host config."""
    for var in list(os.environ):
        if var.startswith("RECONCILER_"):
            monkeypatch.delenv(var, raising=False)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "config.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "config.yaml")

    return _make
