"""Waiting on Azure long-running operations."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from sqlmi_provisioner.engine.errors import OperationTimeoutError

if TYPE_CHECKING:
    from azure.core.polling import LROPoller

logger = logging.getLogger(__name__)

T = TypeVar("T")

_HOUR = 60 * 60


class Timeouts(BaseModel):
    """Per-operation deadlines in seconds."""

    model_config = ConfigDict(extra="forbid")

    create: float = Field(default=24 * _HOUR, gt=0)
    read: float = Field(default=5 * 60, gt=0)
    update: float = Field(default=24 * _HOUR, gt=0)
    delete: float = Field(default=24 * _HOUR, gt=0)


def wait_for_completion(poller: LROPoller[T], timeout: float, description: str) -> T:
    """Block until *poller* finishes and return its result.

    Raises:
        OperationTimeoutError: If the operation is still running after *timeout* seconds.
        azure.core.exceptions.HttpResponseError: If the operation failed.
    """
    started = time.monotonic()
    logger.debug("Waiting up to %gs for %s", timeout, description)
    poller.wait(timeout=timeout)
    if not poller.done():
        raise OperationTimeoutError(description, timeout)
    result = poller.result()
    logger.debug("%s finished in %.1fs", description, time.monotonic() - started)
    return result
