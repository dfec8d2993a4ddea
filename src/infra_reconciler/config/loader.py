"""YAML configuration file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from infra_reconciler.config.modules import ModuleExpansionError, expand_modules
from infra_reconciler.config.schema import Config
from infra_reconciler.engine.settings import EngineSettings

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


_ENV_PREFIX = EngineSettings.model_config.get("env_prefix", "RECONCILER_")


def _resolve_settings(raw_settings: dict[str, Any], config_dir: Path) -> EngineSettings:
    """Resolve engine settings from YAML, env vars, and a ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    if not isinstance(raw_settings, dict):
        raise ConfigError("'settings' must be a mapping")

    env_file = config_dir / ".env"
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}

    resolved: dict[str, Any] = dict(raw_settings)
    for field in EngineSettings.model_fields:
        if field in resolved:
            continue
        env_key = f"{_ENV_PREFIX}{field}".upper()
        if env_key in os.environ:
            continue  # read by pydantic-settings itself
        val = dotenv_vals.get(env_key)
        if val is not None:
            resolved[field] = val

    return EngineSettings(**resolved)


def _resolve_path(path: Path, config_dir: Path) -> Path:
    return path if path.is_absolute() else config_dir / path


def load_config(path: Path | str) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    Relative ``state_path`` values are resolved against the config directory.

    Raises:
        ConfigError: On YAML parse errors, invalid sections, or validation failures.
    """
    path = Path(path)

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    try:
        raw["settings"] = _resolve_settings(raw.get("settings") or {}, path.parent)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent
    config.state_path = _resolve_path(config.state_path, config.config_dir)

    if config.modules:
        logger.debug("Expanding %d module(s)", len(config.modules))
        try:
            config._module_declarations = expand_modules(config.modules, config.config_dir)
        except ModuleExpansionError as exc:
            raise ConfigError(str(exc)) from exc

    logger.info("Loaded config from %s (%d declarations)", path, len(config.declarations))
    return config
