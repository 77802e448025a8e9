"""Plans, planned changes and apply results."""

from __future__ import annotations

from collections import Counter
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from sqlmi_provisioner.core.state import ProtectorSnapshot


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "no-op"


class FieldChange(BaseModel):
    before: Any = None
    after: Any = None
    forces_replacement: bool = False


class ProtectorChange(BaseModel):
    """One planned change to a configured protector.

    ``handover_to`` names the configured resource that targets the prior
    managed instance after this change. When it is set, a delete or replace
    leaves the prior protector alone instead of resetting it.
    """

    address: str
    action: Action
    desired: dict[str, Any] | None = None
    prior: ProtectorSnapshot | None = None
    changes: dict[str, FieldChange] = Field(default_factory=dict)
    key_type: str = ""
    key_name: str = ""
    handover_to: str | None = None

    @property
    def name(self) -> str:
        return self.address.partition(".")[2]

    @property
    def replace_fields(self) -> list[str]:
        return [field for field, change in self.changes.items() if change.forces_replacement]

    @property
    def resets_instance(self) -> bool:
        """Whether applying this change sets the prior instance back to the service-managed key."""
        return (
            self.action in (Action.DELETE, Action.REPLACE)
            and self.prior is not None
            and self.handover_to is None
        )


class Plan(BaseModel):
    workspace: str
    destroy: bool = False
    lineage: str
    serial: int
    state_digest: str
    changes: list[ProtectorChange] = Field(default_factory=list)

    @property
    def actionable(self) -> list[ProtectorChange]:
        return [c for c in self.changes if c.action is not Action.NOOP]

    def summary(self) -> Counter[Action]:
        return Counter(c.action for c in self.changes)


class ApplyResult(BaseModel):
    applied: list[ProtectorChange] = Field(default_factory=list)

    def summary(self) -> Counter[Action]:
        return Counter(c.action for c in self.applied)
