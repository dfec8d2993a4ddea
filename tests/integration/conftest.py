"""Fixtures for running the CLI against the bundled example project."""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

EXAMPLES_DIR = Path(__file__).resolve().parents[2] / "examples"


@pytest.fixture
def middleware_project(tmp_path: Path) -> Path:
    """Copy of ``examples/middleware-platform`` in a scratch directory.

    Returns the path of its config file. State and provider objects land
    next to it, so every test starts from an empty account.
    """
    project = tmp_path / "middleware-platform"
    shutil.copytree(
        EXAMPLES_DIR / "middleware-platform",
        project,
        ignore=shutil.ignore_patterns("__pycache__", ".reconciler-state.json*", ".provider-*"),
    )
    return project / "infra-reconciler.yaml"
