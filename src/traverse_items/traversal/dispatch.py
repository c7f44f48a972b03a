"""Queues the user-defined action for each accepted item."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from traverse_items.graph.models import Item
from traverse_items.traversal.errors import record_error
from traverse_items.traversal.interfaces import UserDefinedAction
from traverse_items.traversal.registry import UserContext

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """Runs the user-defined action off the discovery path.

    Actions are always added to the owner's queue, never run inline. A failing
    action is recorded and contained so it cannot stall folder discovery.
    """

    def __init__(self, action: UserDefinedAction) -> None:
        self._action = action
        self.dispatched = 0
        self.completed = 0
        self.failed = 0

    def enqueue_action(self, owner: UserContext, item: Item, execution_id: str) -> asyncio.Future[Any]:
        self.dispatched += 1
        logger.debug(
            "[enqueue_action] action queued; action:ADD_TO_QUEUE;item_id:%s;item_type:%s;"
            "queue_size:%d;execution_id:%s",
            item.id,
            item.type.value,
            owner.queue.size,
            execution_id,
        )
        return owner.queue.add(lambda: self._perform(owner, item, execution_id))

    async def _perform(self, owner: UserContext, item: Item, execution_id: str) -> None:
        try:
            await self._action(owner, item, execution_id)
        except Exception as exc:
            self.failed += 1
            record_error(
                exc,
                "perform_action",
                f"user-defined action failed for {item.type.value} {item.id}",
                execution_id,
            )
        else:
            self.completed += 1
