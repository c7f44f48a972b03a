"""Template action: logs every item it receives.

Copy this module as a starting point for custom per-item logic. Branch on
``config.policy.modify_data`` to separate changes from their simulation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from traverse_items.graph.models import Item

if TYPE_CHECKING:
    from traverse_items.config import AppConfig
    from traverse_items.traversal.interfaces import AuditRecorder, UserDefinedAction
    from traverse_items.traversal.registry import UserContext

logger = logging.getLogger(__name__)


def make_action(config: AppConfig, recorder: AuditRecorder) -> UserDefinedAction:
    mode = "modify" if config.policy.modify_data else "simulate"

    async def log_item(owner: UserContext, item: Item, execution_id: str) -> None:
        logger.debug(
            "[log_item] performing user defined action; action:PREPARE_USER_DEFINED_ACTION;"
            "mode:%s;item_id:%s;item_type:%s;path:%s;user_id:%s;execution_id:%s",
            mode,
            item.id,
            item.type.value,
            item.path_by_name,
            owner.user_id,
            execution_id,
        )

    return log_item
