"""Plan/apply driver for managed instance encryption protectors."""

from __future__ import annotations

import contextlib
import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

from sqlmi_provisioner.core.state import State
from sqlmi_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    ResourceImportError,
    StalePlanError,
    StateWorkspaceMismatchError,
    ValidationError,
)
from sqlmi_provisioner.engine.lock import StateLock
from sqlmi_provisioner.engine.planner import apply_order, drift, plan_changes, plan_destroy
from sqlmi_provisioner.engine.types import Action, ApplyResult, Plan, ProtectorChange
from sqlmi_provisioner.resources.base import NAME_PATTERN
from sqlmi_provisioner.resources.tde import TransparentDataEncryptionResource

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from sqlmi_provisioner.core.state import TrackedProtector
    from sqlmi_provisioner.engine.tde_handler import TransparentDataEncryptionHandler

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProtectorChange, Literal["start", "done"]], None]

RESOURCE_TYPE = TransparentDataEncryptionResource.resource_type


class ProvisionEngine:
    """Plans and applies protector changes against a local state file.

    Each protector belongs to its own managed instance, so there is no
    dependency graph: deletes run first, then the remaining changes in
    address order. State is written after every change.
    """

    def __init__(
        self,
        handler: TransparentDataEncryptionHandler,
        *,
        workspace: str,
        state_path: Path,
        lock_timeout: float = 30.0,
    ) -> None:
        self._handler = handler
        self._workspace = workspace
        self._state_path = state_path
        self._lock_timeout = lock_timeout

    @property
    def workspace(self) -> str:
        return self._workspace

    @property
    def state_path(self) -> Path:
        return self._state_path

    # -- state ------------------------------------------------------------

    def _lock(self) -> StateLock:
        return StateLock(self._state_path, timeout=self._lock_timeout)

    def _open_state(self) -> State:
        state = State.open(self._state_path, self._workspace)
        if state.workspace != self._workspace:
            raise StateWorkspaceMismatchError(self._workspace, state.workspace)
        return state

    def _save(self, state: State) -> None:
        state.serial += 1
        state.write(self._state_path)

    def _refresh_in_place(self, state: State) -> bool:
        changed = False
        for address, entry in list(state.protectors.items()):
            current = self._handler.read(entry.protector.id)
            if current is None:
                logger.info("%s: protector is gone, dropping it from state", address)
                del state.protectors[address]
                changed = True
            elif current != entry.protector:
                logger.info("%s: protector changed outside of this tool", address)
                entry.protector = current
                entry.updated_at = datetime.now(UTC)
                changed = True
        return changed

    def refresh(self, *, persist: bool = False) -> tuple[State, list[ProtectorChange]]:
        """Re-read every tracked protector; returns the refreshed state and the drift found."""
        with self._lock():
            state = self._open_state()
            before = state.model_copy(deep=True)
            if self._refresh_in_place(state) and persist:
                self._save(state)
        return state, drift(before, state)

    # -- plan -------------------------------------------------------------

    def validate(self, resources: Sequence[TransparentDataEncryptionResource]) -> None:
        """Raise ``ValidationError`` listing every problem in *resources*."""
        errors: list[str] = []
        seen: set[str] = set()
        for r in resources:
            if r.address in seen:
                errors.append(f"Duplicate resource address: {r.address}")
            seen.add(r.address)
            errors.extend(self._handler.validate(r))
        errors.extend(self._handler.validate_plan(resources))
        if errors:
            raise ValidationError(errors)

    def plan(
        self,
        resources: Sequence[TransparentDataEncryptionResource],
        *,
        destroy: bool = False,
        refresh: bool = True,
    ) -> Plan:
        logger.info(
            "Planning %d protector(s) (destroy=%s, refresh=%s)", len(resources), destroy, refresh
        )
        # Without a refresh nothing is written, so no lock is needed.
        with self._lock() if refresh else contextlib.nullcontext():
            state = self._open_state()
            if refresh and self._refresh_in_place(state):
                self._save(state)

            if destroy:
                changes = plan_destroy(state)
            else:
                self.validate(resources)
                changes = plan_changes(resources, state)

        return Plan(
            workspace=self._workspace,
            destroy=destroy,
            lineage=state.lineage,
            serial=state.serial,
            state_digest=state.digest(),
            changes=changes,
        )

    # -- apply ------------------------------------------------------------

    def _state_for(self, plan: Plan) -> State:
        if plan.workspace != self._workspace:
            raise StateWorkspaceMismatchError(self._workspace, plan.workspace)
        if not self._state_path.exists():
            # Planned against an empty state that was never written.
            return State(workspace=self._workspace, lineage=plan.lineage, serial=plan.serial)
        state = self._open_state()
        if state.lineage != plan.lineage:
            raise StalePlanError("state lineage changed since the plan was made; re-run plan")
        if state.serial != plan.serial:
            raise StalePlanError(
                f"state serial is {state.serial}, the plan was made at {plan.serial}; re-run plan"
            )
        if state.digest() != plan.state_digest:
            raise StalePlanError("state content changed since the plan was made; re-run plan")
        return state

    def _release(self, change: ProtectorChange, state: State) -> None:
        if change.resets_instance and change.prior is not None:
            self._handler.delete(change.prior)
        elif change.handover_to is not None:
            logger.info(
                "%s: leaving the protector to %s without a reset",
                change.address,
                change.handover_to,
            )
        state.protectors.pop(change.address, None)

    def _configure(self, change: ProtectorChange, state: State) -> None:
        if change.desired is None:
            raise ValueError(f"{change.address}: {change.action.value} without desired settings")
        desired = TransparentDataEncryptionResource.model_validate(change.desired)
        if desired.address != change.address:
            raise ValueError(f"{change.address}: planned settings belong to {desired.address}")

        if change.action is Action.UPDATE and change.prior is not None:
            snapshot = self._handler.update(desired, change.prior)
        else:
            snapshot = self._handler.create(desired)
        state.track(change.address, desired.name, snapshot)

    def _apply_change(self, change: ProtectorChange, state: State) -> None:
        if change.action in (Action.DELETE, Action.REPLACE):
            self._release(change, state)
        if change.action in (Action.CREATE, Action.UPDATE, Action.REPLACE):
            self._configure(change, state)

    def apply(self, plan: Plan, *, progress: ProgressCallback | None = None) -> ApplyResult:
        with self._lock():
            state = self._state_for(plan)
            ordered = apply_order(plan.changes)
            logger.info("Applying %d change(s)", len(ordered))

            applied: list[ProtectorChange] = []
            for change in ordered:
                if progress:
                    progress(change, "start")
                digest = state.digest()
                try:
                    self._apply_change(change, state)
                except (Exception, KeyboardInterrupt) as exc:
                    # Keep what already happened, e.g. the reset half of a replace.
                    if state.digest() != digest:
                        self._save(state)
                    partial = ApplyResult(applied=applied)
                    if isinstance(exc, KeyboardInterrupt):
                        raise ApplyCanceled(partial, change.address, "canceled") from exc
                    raise ApplyError(partial, change.address, str(exc)) from exc
                self._save(state)
                applied.append(change)
                if progress:
                    progress(change, "done")

            return ApplyResult(applied=applied)

    # -- import -----------------------------------------------------------

    def import_resource(self, address: str, resource_id: str) -> TrackedProtector:
        """Start tracking an existing protector under *address*."""
        kind, _, name = address.partition(".")
        if kind != RESOURCE_TYPE:
            raise ResourceImportError(
                f"Cannot import into {address!r}: expected {RESOURCE_TYPE}.<name>"
            )
        if not re.fullmatch(NAME_PATTERN, name):
            raise ResourceImportError(f"Invalid resource name {name!r} in address {address!r}")

        with self._lock():
            state = self._open_state()
            if address in state.protectors:
                raise ResourceImportError(f"{address} is already managed in state")

            snapshot = self._handler.import_protector(resource_id)
            owner = state.owner_of(snapshot.instance_key)
            if owner is not None:
                raise ResourceImportError(
                    f"{snapshot.managed_instance_id} is already managed as {owner.address}"
                )

            entry = state.track(address, name, snapshot)
            self._save(state)
        logger.info("Imported %s as %s", snapshot.id, address)
        return entry
