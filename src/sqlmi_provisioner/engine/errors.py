"""Errors raised while planning, applying or importing protectors."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlmi_provisioner.engine.types import ApplyResult


class ProvisionError(Exception):
    """Base class for errors reported by the provisioning engine."""


class StateLockError(ProvisionError):
    """The state lock could not be taken within the configured timeout."""


class StateWorkspaceMismatchError(ProvisionError):
    def __init__(self, expected: str, found: str) -> None:
        super().__init__(f"state belongs to workspace {found!r}, configuration uses {expected!r}")
        self.expected = expected
        self.found = found


class StalePlanError(ProvisionError):
    """The state changed between ``plan`` and ``apply``."""


class ValidationError(ProvisionError):
    """The configuration cannot be planned; ``errors`` holds one message per problem."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class OperationTimeoutError(ProvisionError):
    def __init__(self, description: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:g}s waiting for {description}")
        self.description = description
        self.timeout = timeout


class ResourceImportError(ProvisionError):
    """An existing protector could not be adopted into state."""


class ApplyError(ProvisionError):
    """A change failed; ``result`` lists the changes applied before it.

    The underlying error is chained as ``__cause__``.
    """

    def __init__(self, result: ApplyResult, address: str, message: str) -> None:
        super().__init__(f"{address}: {message}")
        self.result = result
        self.address = address


class ApplyCanceled(ApplyError):
    """Apply was interrupted; state holds whatever completed."""
