"""Change planning for encryption protectors.

A managed instance has exactly one protector, so a reset is planned per
instance rather than per address: when a resource leaves the configuration,
or is replaced onto another instance, its old instance is reset to the
service-managed key only if no configured resource targets that instance any
more. Otherwise the change records a handover and the protector keeps its
key. This covers renaming a resource and moving a resource onto an instance
another resource is leaving.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlmi_provisioner.engine.tde_handler import protector_key
from sqlmi_provisioner.engine.types import Action, FieldChange, ProtectorChange
from sqlmi_provisioner.resources.markers import (
    CompareStrategy,
    collect_compare_strategies,
    collect_force_new,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlmi_provisioner.core.state import ProtectorSnapshot, State, TrackedProtector
    from sqlmi_provisioner.resources.tde import TransparentDataEncryptionResource

logger = logging.getLogger(__name__)


def values_differ(desired: Any, prior: Any, *, strategy: CompareStrategy | None = None) -> bool:
    """``casefold`` compares strings case-insensitively; anything else is strict equality."""
    if strategy == "casefold" and isinstance(desired, str) and isinstance(prior, str):
        return desired.casefold() != prior.casefold()
    return desired != prior


def _field_changes(
    resource: TransparentDataEncryptionResource, prior: ProtectorSnapshot
) -> dict[str, FieldChange]:
    strategies = collect_compare_strategies(resource)
    force_new = collect_force_new(resource)
    recorded = prior.model_dump()
    return {
        field: FieldChange(
            before=recorded.get(field), after=value, forces_replacement=field in force_new
        )
        for field, value in resource.settings().items()
        if values_differ(value, recorded.get(field), strategy=strategies.get(field))
    }


def _classify(
    resource: TransparentDataEncryptionResource,
    tracked: TrackedProtector | None,
    claimed: dict[str, str],
) -> ProtectorChange:
    key = protector_key(resource.key_vault_key_id)
    change = ProtectorChange(
        address=resource.address,
        action=Action.CREATE,
        desired=resource.model_dump(exclude={"address"}),
        key_type=key.server_key_type.value,
        key_name=key.server_key_name,
    )
    if tracked is None:
        return change

    prior = tracked.protector
    changes = _field_changes(resource, prior)
    if any(c.forces_replacement for c in changes.values()):
        action = Action.REPLACE
    elif changes:
        action = Action.UPDATE
    else:
        action = Action.NOOP
    return change.model_copy(
        update={
            "action": action,
            "prior": prior,
            "changes": changes,
            # The old instance only matters when the resource moves away from it.
            "handover_to": claimed.get(prior.instance_key) if action is Action.REPLACE else None,
        }
    )


def plan_changes(
    resources: Sequence[TransparentDataEncryptionResource], state: State
) -> list[ProtectorChange]:
    """Changes that bring *state* in line with *resources*, ordered by address.

    Assumes at most one resource per managed instance.
    """
    claimed = {r.instance_key: r.address for r in resources}
    desired = {r.address: r for r in resources}

    changes = [
        _classify(desired[address], state.protectors.get(address), claimed)
        for address in sorted(desired)
    ]
    for address in sorted(set(state.protectors) - set(desired)):
        prior = state.protectors[address].protector
        changes.append(
            ProtectorChange(
                address=address,
                action=Action.DELETE,
                prior=prior,
                handover_to=claimed.get(prior.instance_key),
            )
        )

    for c in changes:
        if c.handover_to is not None and c.prior is not None:
            logger.info(
                "%s: protector of %s stays as is, %s takes it over",
                c.address,
                c.prior.managed_instance_id,
                c.handover_to,
            )
    return changes


def plan_destroy(state: State) -> list[ProtectorChange]:
    return [
        ProtectorChange(address=address, action=Action.DELETE, prior=entry.protector)
        for address, entry in sorted(state.protectors.items())
    ]


def apply_order(changes: Iterable[ProtectorChange]) -> list[ProtectorChange]:
    """Actionable changes with deletes first, then address order."""
    actionable = [c for c in changes if c.action is not Action.NOOP]
    return sorted(actionable, key=lambda c: (c.action is not Action.DELETE, c.address))


def drift(before: State, after: State) -> list[ProtectorChange]:
    """Differences a refresh found between recorded and live protectors.

    Entries whose protector vanished come back as ``DELETE``; changed
    settings as ``UPDATE`` with per-field changes.
    """
    found: list[ProtectorChange] = []
    for address, entry in sorted(before.protectors.items()):
        current = after.protectors.get(address)
        if current is None:
            found.append(
                ProtectorChange(address=address, action=Action.DELETE, prior=entry.protector)
            )
            continue
        was = entry.protector.model_dump()
        now = current.protector.model_dump()
        changes = {
            field: FieldChange(before=was[field], after=now[field])
            for field in was
            if was[field] != now[field]
        }
        if changes:
            found.append(
                ProtectorChange(
                    address=address,
                    action=Action.UPDATE,
                    prior=entry.protector,
                    changes=changes,
                )
            )
    return found
