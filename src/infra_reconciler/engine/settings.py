"""Engine settings."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from infra_reconciler.engine.registry import ReplacePolicy  # noqa: TC001


class EngineSettings(BaseSettings):
    """Run-level engine settings.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``RECONCILER_`` prefix. Constructor kwargs take precedence.
    """

    model_config = SettingsConfigDict(env_prefix="RECONCILER_", extra="forbid")

    parallelism_limit: int = Field(default=10, ge=1)
    lock_timeout_seconds: float | None = Field(default=30.0, ge=0)
    default_replace_policy: ReplacePolicy = "destroy_before_create"
    default_timeout_seconds: float | None = Field(default=None, gt=0)
