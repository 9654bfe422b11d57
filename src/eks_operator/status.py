"""Status updates for long-running operations.

Callers inject a StatusSink through the ReconcileContext; nothing here is
global. Sending never blocks the reconciler.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100


class StatusLevel(str, Enum):
    """Severity of a status update."""

    INFO = "info"
    PROGRESS = "progress"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class StatusUpdate:
    """A single human-readable progress message.

    Builder methods return copies, so a base update can be reused.
    """

    level: StatusLevel
    message: str
    resource: str | None = None
    action: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def with_resource(self, resource: str) -> StatusUpdate:
        return replace(self, resource=resource)

    def with_action(self, action: str) -> StatusUpdate:
        return replace(self, action=action)

    def with_metadata(self, key: str, value: Any) -> StatusUpdate:
        return replace(self, metadata={**self.metadata, key: value})


class StatusSink(Protocol):
    """Anything that accepts status updates."""

    def send(self, update: StatusUpdate) -> None: ...


class NullStatusSink:
    """Discards every update."""

    def send(self, update: StatusUpdate) -> None:
        pass


_LOG_LEVELS = {
    StatusLevel.INFO: logging.INFO,
    StatusLevel.PROGRESS: logging.INFO,
    StatusLevel.SUCCESS: logging.INFO,
    StatusLevel.WARNING: logging.WARNING,
    StatusLevel.ERROR: logging.ERROR,
}


class LoggingStatusSink:
    """Writes updates into the structured log stream."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._logger = log or logger

    def send(self, update: StatusUpdate) -> None:
        self._logger.log(
            _LOG_LEVELS[update.level],
            update.message,
            extra={
                "status_level": update.level.value,
                "resource": update.resource,
                "action": update.action,
                **{f"meta_{key}": value for key, value in update.metadata.items()},
            },
        )


class QueueStatusSink:
    """Buffers updates in an asyncio.Queue for a consumer task.

    When the queue is full the update is dropped rather than blocking the
    sender.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self.queue: asyncio.Queue[StatusUpdate] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def send(self, update: StatusUpdate) -> None:
        try:
            self.queue.put_nowait(update)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Status queue full, dropping update", extra={"status_message": update.message})

    def drain(self) -> list[StatusUpdate]:
        """Remove and return every buffered update."""
        updates: list[StatusUpdate] = []
        while not self.queue.empty():
            updates.append(self.queue.get_nowait())
        return updates


class RecordingStatusSink:
    """Keeps every update in memory for later inspection."""

    def __init__(self) -> None:
        self.updates: list[StatusUpdate] = []

    def send(self, update: StatusUpdate) -> None:
        self.updates.append(update)


class FanOutStatusSink:
    """Forwards each update to several sinks."""

    def __init__(self, *sinks: StatusSink) -> None:
        self._sinks = sinks

    def send(self, update: StatusUpdate) -> None:
        for sink in self._sinks:
            sink.send(update)
