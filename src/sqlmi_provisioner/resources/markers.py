"""Field markers that tell the planner how to diff a protector setting.

Attach them with ``Annotated``::

    managed_instance_id: Annotated[str, Compare("casefold"), ForceNew()]
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, TypeAlias, TypeVar

M = TypeVar("M")
CompareStrategy: TypeAlias = Literal["exact", "casefold"]


@dataclass(frozen=True, slots=True)
class Compare:
    """``"casefold"`` compares strings case-insensitively, as Azure does for resource IDs."""

    strategy: CompareStrategy


@dataclass(frozen=True, slots=True)
class ForceNew:
    """A new value moves the protector to another instance instead of updating it."""


def _markers(model: Any, kind: type[M]) -> dict[str, M]:
    cls = model if isinstance(model, type) else type(model)
    found: dict[str, M] = {}
    for field, info in cls.model_fields.items():
        marker = next((m for m in info.metadata if isinstance(m, kind)), None)
        if marker is not None:
            found[field] = marker
    return found


def collect_compare_strategies(resource_or_cls: Any) -> dict[str, CompareStrategy]:
    return {field: m.strategy for field, m in _markers(resource_or_cls, Compare).items()}


def collect_force_new(resource_or_cls: Any) -> frozenset[str]:
    """Fields whose change plans a replace."""
    return frozenset(_markers(resource_or_cls, ForceNew))
