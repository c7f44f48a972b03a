"""Per-user processing contexts for one run."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from traverse_items.graph.models import User
from traverse_items.traversal.interfaces import DriveClient
from traverse_items.traversal.queue import RateLimitedQueue

logger = logging.getLogger(__name__)


class UserNotFoundError(LookupError):
    """Raised when a user id has no registry entry."""


@dataclass(eq=False)
class UserContext:
    """Everything a task needs to act for one user.

    The queue belongs to this context alone; tasks for the user are always
    added here, whoever owns the item being processed.
    """

    user_id: str
    client: DriveClient
    profile: User
    queue: RateLimitedQueue
    is_processing: bool = True


class UserRegistry:
    """Process-wide table of user id to UserContext."""

    def __init__(self, tasks_per_second: int = 16) -> None:
        self._tasks_per_second = tasks_per_second
        self._users: dict[str, UserContext] = {}

    def __len__(self) -> int:
        return len(self._users)

    def add_user(self, profile: User | None, client: DriveClient | None) -> UserContext:
        """Register a user, or return the existing entry for the same id.

        Args:
            profile: The user's profile; must carry an id.
            client: Client authenticated for that user.

        Returns:
            The user's context. The first registration for an id wins; later
            calls leave the entry and its queue untouched.

        Raises:
            ValueError: If the profile, its id, or the client is missing.
        """
        if profile is None or not profile.id:
            raise ValueError("A user profile with an id is required")
        if client is None:
            raise ValueError(f"A client handle is required for user {profile.id}")

        existing = self._users.get(profile.id)
        if existing is not None:
            logger.debug("[add_user] user already registered; user_id:%s", profile.id)
            return existing

        context = UserContext(
            user_id=profile.id,
            client=client,
            profile=profile,
            queue=RateLimitedQueue(
                tasks_per_interval=self._tasks_per_second, name=f"user-{profile.id}"
            ),
        )
        self._users[profile.id] = context
        logger.info(
            "[add_user] registered user; action:INITIALIZE_TASK_QUEUE;user_id:%s;login:%s",
            profile.id,
            profile.login,
        )
        return context

    def get_user(self, user_id: str) -> UserContext:
        try:
            return self._users[user_id]
        except KeyError:
            raise UserNotFoundError(f"User {user_id} is not registered") from None

    def check_user(self, user_id: str) -> bool:
        return user_id in self._users

    def active_processing_users(self) -> list[str]:
        return [user_id for user_id, context in self._users.items() if context.is_processing]

    def users(self) -> list[UserContext]:
        return list(self._users.values())
