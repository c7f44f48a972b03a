"""Capabilities the traversal engine consumes from its collaborators."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

from traverse_items.graph.models import Item, Page, User

if TYPE_CHECKING:
    from traverse_items.traversal.registry import UserContext


class DriveClient(Protocol):
    """Item access on behalf of one user, with that user's rate budget."""

    @property
    def user_id(self) -> str: ...

    async def get_current_user(self) -> User: ...

    async def get_folder(self, folder_id: str, fields: Sequence[str]) -> Item: ...

    async def get_file(self, file_id: str, fields: Sequence[str]) -> Item: ...

    async def get_web_link(self, web_link_id: str, fields: Sequence[str]) -> Item: ...

    async def list_folder_children(
        self,
        folder_id: str,
        fields: Sequence[str],
        page_size: int,
        page_token: str | None = None,
    ) -> Page[Item]: ...

    async def update_shared_link(self, item: Item, access: str, fields: Sequence[str]) -> Item: ...


class Directory(Protocol):
    """Tenant-wide user listing and per-user authentication."""

    async def list_enterprise_users(self, page_token: str | None = None) -> Page[User]: ...

    def authenticate_as_user(self, user_id: str) -> DriveClient: ...


class AuditRecorder(Protocol):
    def record(self, action: str, item: Item | None, message: str, execution_id: str) -> None: ...


class UserDefinedAction(Protocol):
    """Per-item business logic invoked once for every accepted item."""

    async def __call__(self, owner: UserContext, item: Item, execution_id: str) -> None: ...
