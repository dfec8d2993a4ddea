"""State model for tracking provisioned resources."""

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _canonical_json(obj: Any) -> str:
    # Stable encoding for hashes/digests. `default=str` keeps it robust for
    # datetimes/paths/etc while staying deterministic enough for our use.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """Compute a stable hash for a resource's observed attributes."""
    payload = _canonical_json(attrs)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StateEntry(BaseModel):
    """The last observed provider-side representation of one resource instance.

    Attributes:
        address: Instance address (e.g., "aws_instance.liberty[0]")
        resource_type: Type of the resource (e.g., "aws_instance")
        provider_id: Opaque identifier assigned by the provider
        attributes: Last applied/observed attribute values
        applied_keys: Desired attribute keys sent to the provider by the last
            create or update; a key dropped from the declaration is diffed
            against null
        attributes_hash: SHA256 hash for change detection
        dependencies: Addresses this instance depended on when applied
        deposed: Provider ids of replaced objects still awaiting destruction
        created_at: When the instance was first created
        last_success_at: When an action on the instance last succeeded
    """

    address: str
    resource_type: str
    provider_id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    applied_keys: list[str] = Field(default_factory=list)
    attributes_hash: str = ""
    dependencies: list[str] = Field(default_factory=list)
    deposed: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    last_success_at: datetime = Field(default_factory=_utcnow)

    def value(self, attribute: str) -> Any:
        """Return an observed attribute; ``id`` falls back to the provider id."""
        if attribute == "id":
            return self.attributes.get("id", self.provider_id)
        return self.attributes.get(attribute)


class State(BaseModel):
    """Terraform-style state file for tracking provisioned resources.

    Attributes:
        version: State file format version
        serial: Incremented on every persisted write
        lineage: Identity of this state history (survives serial bumps)
        resources: Mapping of resource addresses to entries
    """

    version: int = 1
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, StateEntry] = Field(default_factory=dict)

    def save(self, path: Path) -> None:
        """Save state to a JSON file.

        - Writes atomically (temp file + rename)
        - Writes a `.backup` copy of the previous state when overwriting
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        # Avoid TOCTOU race between exists() and read_bytes().
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        data = self.model_dump(mode="json")
        atomic_write_text(path, json.dumps(data, indent=2, sort_keys=True) + "\n")
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> "State":
        """Load state from a JSON file."""
        state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        logger.debug("State loaded from %s", path)
        return state

    @classmethod
    def load_or_create(cls, path: Path) -> "State":
        """Load existing state or create a new one."""
        if path.exists():
            return cls.load(path)
        logger.debug("Created new state for %s", path)
        return cls()


def atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* via a synced temp file and rename."""
    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    tmp_file = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        tmp_file.replace(path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            tmp_file.unlink()


def compute_state_digest(state: State) -> str:
    """Compute a stable digest of state content (excluding timestamps).

    Used for stale-plan detection; `created_at`/`last_success_at` are left out
    so that they never force a re-plan.
    """
    resources = []
    for address, entry in sorted(state.resources.items(), key=lambda kv: kv[0]):
        resources.append(
            {
                "address": address,
                "resource_type": entry.resource_type,
                "provider_id": entry.provider_id,
                "attributes_hash": entry.attributes_hash,
                "applied_keys": sorted(entry.applied_keys),
                "dependencies": sorted(entry.dependencies),
                "deposed": sorted(entry.deposed),
            }
        )

    digestable = {
        "version": state.version,
        "lineage": state.lineage,
        "serial": state.serial,
        "resources": resources,
    }
    payload = _canonical_json(digestable)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
