"""Local state file for managed encryption protectors.

The state records, per configured address, the protector settings last read
from Azure. ``lineage`` identifies one state history and ``serial`` counts
writes to it; together with :meth:`State.digest` they let ``apply`` refuse a
plan computed against a different state.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import uuid
from datetime import UTC, datetime
from pathlib import Path
from tempfile import NamedTemporaryFile

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

STATE_FORMAT = 1


def _now() -> datetime:
    return datetime.now(UTC)


def backup_path(path: Path) -> Path:
    return path.with_name(path.name + ".backup")


class ProtectorSnapshot(BaseModel):
    """Encryption protector settings as reported by Azure.

    ``key_vault_key_id`` and ``auto_rotation_enabled`` are only populated for
    Key Vault protectors; a service-managed protector reports ``""`` and
    ``False``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    managed_instance_id: str
    server_key_type: str
    server_key_name: str = ""
    key_vault_key_id: str = ""
    auto_rotation_enabled: bool = False

    @property
    def instance_key(self) -> str:
        """Case-insensitive identity of the managed instance."""
        return self.managed_instance_id.casefold()


class TrackedProtector(BaseModel):
    """A protector recorded in state under its configured address."""

    address: str
    name: str
    protector: ProtectorSnapshot
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class State(BaseModel):
    format: int = STATE_FORMAT
    workspace: str
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    serial: int = 0
    protectors: dict[str, TrackedProtector] = Field(default_factory=dict)

    def track(self, address: str, name: str, snapshot: ProtectorSnapshot) -> TrackedProtector:
        """Record *snapshot* under *address*, keeping the first-seen time of an existing entry."""
        previous = self.protectors.get(address)
        entry = TrackedProtector(
            address=address,
            name=name,
            protector=snapshot,
            created_at=previous.created_at if previous is not None else _now(),
        )
        self.protectors[address] = entry
        return entry

    def owner_of(self, instance_key: str) -> TrackedProtector | None:
        """The entry tracking the protector of the given managed instance, if any."""
        for entry in self.protectors.values():
            if entry.protector.instance_key == instance_key:
                return entry
        return None

    def digest(self) -> str:
        """Hash of everything but timestamps."""
        content = {
            "format": self.format,
            "workspace": self.workspace,
            "lineage": self.lineage,
            "serial": self.serial,
            "protectors": {
                address: {"name": entry.name, **entry.protector.model_dump()}
                for address, entry in sorted(self.protectors.items())
            },
        }
        encoded = json.dumps(content, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()

    def write(self, path: Path) -> None:
        """Replace *path* atomically; the previous file is kept as ``<path>.backup``."""
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            shutil.copyfile(path, backup_path(path))

        tmp_path: Path | None = None
        try:
            with NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{path.name}.",
                delete=False,
            ) as tmp:
                tmp_path = Path(tmp.name)
                tmp.write(self.model_dump_json(indent=2) + "\n")
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("Wrote state serial %d to %s", self.serial, path)

    @classmethod
    def read(cls, path: Path) -> State:
        return cls.model_validate_json(path.read_text(encoding="utf-8"))

    @classmethod
    def open(cls, path: Path, workspace: str) -> State:
        """Read *path*, or start an empty state for *workspace* if it does not exist yet."""
        if path.exists():
            state = cls.read(path)
            logger.debug("Read state serial %d from %s", state.serial, path)
            return state
        logger.debug("No state at %s; starting empty for workspace %s", path, workspace)
        return cls(workspace=workspace)
