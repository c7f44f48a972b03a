"""Pluggable per-item actions.

An action module exposes a factory ``make_action(config, recorder)`` that
returns an async callable ``action(owner, item, execution_id)``. Built-in
actions are selected by name; anything else is imported from a
``module:factory`` reference.
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from traverse_items.config import ConfigError

if TYPE_CHECKING:
    from traverse_items.config import AppConfig
    from traverse_items.traversal.interfaces import AuditRecorder, UserDefinedAction

logger = logging.getLogger(__name__)

BUILTIN_ACTIONS = {
    "log_item": "traverse_items.actions.log_item:make_action",
    "shared_links": "traverse_items.actions.shared_links:make_action",
}


class ActionLoadError(ConfigError):
    """Raised when the configured action cannot be imported or built."""


def load_action(config: AppConfig, recorder: AuditRecorder) -> UserDefinedAction:
    """Resolve and build the configured action.

    Args:
        config: Application configuration; ``config.action`` names a built-in
            action or a ``module:factory`` reference.
        recorder: Audit sink handed to the factory.

    Returns:
        The action callable.

    Raises:
        ActionLoadError: If the reference is malformed, the module cannot be
            imported, or the factory is missing.
    """
    reference = BUILTIN_ACTIONS.get(config.action, config.action)
    module_name, sep, factory_name = reference.partition(":")
    if not sep or not module_name or not factory_name:
        raise ActionLoadError(
            f'Action "{config.action}" is neither a built-in action nor a "module:factory" reference'
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ActionLoadError(f"Could not import action module {module_name}: {exc}") from exc
    factory = getattr(module, factory_name, None)
    if not callable(factory):
        raise ActionLoadError(f"Action factory {reference} is not callable")
    logger.info("[load_action] loaded action; action:%s;reference:%s", config.action, reference)
    return factory(config, recorder)  # type: ignore[no-any-return]
