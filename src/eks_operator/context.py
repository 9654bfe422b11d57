"""Per-pass reconciliation context.

A single ReconcileContext is threaded through every reconciler call. It
carries the cloud clients, the injected status sink and the one
cancellation event that governs the whole pass.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from .clients import AWSClients
from .config import Timeouts
from .errors import OperationCancelledError
from .status import NullStatusSink, StatusLevel, StatusSink, StatusUpdate
from .tags import ResourceType, resource_tags


@dataclass
class ReconcileContext:
    """Everything a reconciler needs besides desired and actual state."""

    cluster_name: str
    region: str
    clients: AWSClients
    status: StatusSink = field(default_factory=NullStatusSink)
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    timeouts: Timeouts = field(default_factory=Timeouts)
    user_tags: dict[str, str] = field(default_factory=dict)

    def check_cancelled(self) -> None:
        """Raise OperationCancelledError if the pass has been cancelled."""
        if self.cancel.is_set():
            raise OperationCancelledError(f"reconciliation of {self.cluster_name} cancelled")

    async def sleep(self, seconds: float) -> None:
        """Sleep, waking early and raising if the pass is cancelled."""
        try:
            await asyncio.wait_for(self.cancel.wait(), timeout=seconds)
        except TimeoutError:
            return
        raise OperationCancelledError(f"reconciliation of {self.cluster_name} cancelled")

    def tags(self, resource_type: ResourceType, node_pool: str | None = None) -> dict[str, str]:
        """User tags merged with this cluster's ownership tags."""
        return resource_tags(self.cluster_name, resource_type, self.user_tags, node_pool)

    def report(
        self,
        level: StatusLevel,
        message: str,
        resource: str | None = None,
        action: str | None = None,
        **metadata: Any,
    ) -> None:
        """Send a status update through the injected sink."""
        self.status.send(
            StatusUpdate(
                level=level,
                message=message,
                resource=resource,
                action=action,
                metadata=metadata,
            )
        )
