"""Polling until a cloud resource reaches a terminal state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .context import ReconcileContext
from .errors import WaitTimeoutError

logger = logging.getLogger(__name__)


async def wait_until(
    ctx: ReconcileContext,
    check: Callable[[], Awaitable[bool]],
    *,
    description: str,
    timeout: float,
    interval: float | None = None,
) -> None:
    """Poll check() until it returns True.

    check() should raise for failure states (e.g. CREATE_FAILED) so the
    wait ends immediately instead of running into the timeout.

    Raises:
        WaitTimeoutError: If check() is still False after timeout seconds.
        OperationCancelledError: As soon as the pass is cancelled.
    """
    poll = interval if interval is not None else ctx.timeouts.poll_interval
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        ctx.check_cancelled()
        if await check():
            return

        remaining = deadline - loop.time()
        if remaining <= 0:
            logger.warning(
                "Timed out waiting",
                extra={"description": description, "timeout_seconds": timeout},
            )
            raise WaitTimeoutError(description, timeout)

        await ctx.sleep(min(poll, remaining))
