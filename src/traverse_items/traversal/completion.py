"""End-of-run detection across all users' queues."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from traverse_items.traversal.registry import UserContext, UserRegistry

logger = logging.getLogger(__name__)

Finalizer = Callable[[], Awaitable[None]]


class CompletionTracker:
    """Fires the finalizer exactly once, after the last user drains.

    Users are tracked as their traversals start. The tracker is sealed once no
    more users can be added; finalization requires the seal, so a fast first
    user cannot end the run while later users are still being enumerated.
    """

    def __init__(self, registry: UserRegistry, finalizer: Finalizer | None = None) -> None:
        self._registry = registry
        self._finalizer = finalizer
        self._sealed = False
        self._finalized = False
        self._done = asyncio.Event()
        self._error: Exception | None = None

    @property
    def finalized(self) -> bool:
        return self._finalized

    async def track(self, owner: UserContext) -> None:
        """Wait for ``owner``'s queue to drain, then check global completion.

        A fresh idle signal is awaited after every drain; the queue state is
        re-checked after yielding once, so work queued by a task's completion
        keeps the user processing.
        """
        while True:
            await owner.queue.on_idle()
            await asyncio.sleep(0)
            if owner.queue.is_idle:
                break
        owner.is_processing = False
        logger.info(
            "[track] user queue drained; action:FINISHED_TASK_QUEUE;user_id:%s;"
            "remaining_users:%d",
            owner.user_id,
            len(self._registry.active_processing_users()),
        )
        await self._check_complete()

    async def seal(self) -> None:
        """Mark user enumeration finished and finalize if nothing is left."""
        self._sealed = True
        await self._check_complete()

    async def wait(self) -> None:
        """Block until finalization has run.

        Raises:
            Exception: Whatever the finalizer raised, re-raised here because
                finalization may run inside a user's task.
        """
        await self._done.wait()
        if self._error is not None:
            raise self._error

    async def _check_complete(self) -> None:
        if not self._sealed or self._finalized:
            return
        if self._registry.active_processing_users():
            return
        self._finalized = True
        logger.info("[_check_complete] all user queues drained; finalizing run")
        try:
            if self._finalizer is not None:
                await self._finalizer()
        except Exception as exc:
            self._error = exc
        finally:
            self._done.set()
