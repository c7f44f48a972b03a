"""Rewrites shared links of one access level to another.

Options (``userDefinedConfigs``):
    matchSharedLinkAccessLevel: Access level to look for (default ``anonymous``).
    newSharedLinkAccessLevel: Access level to apply (default ``organization``).

With ``modifyData`` off the change is only recorded as a simulation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from traverse_items.config import ConfigError
from traverse_items.graph.models import Item

if TYPE_CHECKING:
    from traverse_items.config import AppConfig
    from traverse_items.traversal.interfaces import AuditRecorder, UserDefinedAction
    from traverse_items.traversal.registry import UserContext

logger = logging.getLogger(__name__)

AUDIT_MODIFY = "MODIFY_SHARED_LINK"
AUDIT_SIMULATE = "SIMULATE_MODIFY_SHARED_LINK"

ACCESS_LEVELS = ("anonymous", "organization", "users")
DEFAULT_MATCH_ACCESS = "anonymous"
DEFAULT_NEW_ACCESS = "organization"


def _access_option(options: dict[str, object], key: str, default: str) -> str:
    value = str(options.get(key, default)).lower()
    if value not in ACCESS_LEVELS:
        raise ConfigError(f'"{key}" must be one of {", ".join(ACCESS_LEVELS)}; got "{value}"')
    return value


def make_action(config: AppConfig, recorder: AuditRecorder) -> UserDefinedAction:
    options = dict(config.action_options)
    match_access = _access_option(options, "matchSharedLinkAccessLevel", DEFAULT_MATCH_ACCESS)
    new_access = _access_option(options, "newSharedLinkAccessLevel", DEFAULT_NEW_ACCESS)
    fields = config.item_fields
    modify = config.policy.modify_data

    async def modify_shared_link(owner: UserContext, item: Item, execution_id: str) -> None:
        link = item.shared_link
        if link is None or link.access.lower() != match_access:
            return

        if not modify:
            message = (
                f"Would have modified link {link.url} from {link.access.upper()}"
                f" to {new_access.upper()}"
            )
            logger.info(
                "[modify_shared_link] %s; action:%s;item_id:%s;execution_id:%s",
                message,
                AUDIT_SIMULATE,
                item.id,
                execution_id,
            )
            recorder.record(AUDIT_SIMULATE, item, message, execution_id)
            return

        updated = await owner.client.update_shared_link(item, new_access, fields)
        updated = updated.with_path(item.path_collection)
        new_link = updated.shared_link
        message = (
            f"Modified link {link.url} from {link.access.upper()}"
            f" to {(new_link.access if new_link else new_access).upper()}"
        )
        logger.info(
            "[modify_shared_link] %s; action:%s;item_id:%s;execution_id:%s",
            message,
            AUDIT_MODIFY,
            item.id,
            execution_id,
        )
        recorder.record(AUDIT_MODIFY, updated, message, execution_id)

    return modify_shared_link
