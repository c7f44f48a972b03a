"""Async user-scoped drive and directory views over the Graph client."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from traverse_items.graph.client import GraphClient, relative_path
from traverse_items.graph.models import (
    FIELD_ACCOUNT_ENABLED,
    FIELD_CREATED,
    FIELD_CREATED_BY,
    FIELD_DISPLAY_NAME,
    FIELD_EMAIL,
    FIELD_FIELDS,
    FIELD_FOLDER,
    FIELD_ID,
    FIELD_LIST_ITEM,
    FIELD_MAIL,
    FIELD_METADATA,
    FIELD_MODIFIED,
    FIELD_NAME,
    FIELD_OWNER,
    FIELD_REMOTE_ITEM,
    FIELD_SCOPE,
    FIELD_SHARED,
    FIELD_SIZE,
    FIELD_USER,
    FIELD_USER_PRINCIPAL_NAME,
    FIELD_WEB_URL,
    ODATA_NEXT_LINK,
    ODATA_VALUE,
    ROOT_FOLDER_ID,
    USER_FIELDS,
    USER_STATUS_ACTIVE,
    USER_STATUS_INACTIVE,
    Item,
    ItemOwner,
    ItemType,
    Page,
    SharedLink,
    User,
)

logger = logging.getLogger(__name__)

# Graph caps /users pages at 999 entries
DIRECTORY_PAGE_SIZE = 999
SHARING_LINK_TYPE = "view"
# Custom column values live on the backing SharePoint list item
METADATA_EXPAND = f"{FIELD_LIST_ITEM}($expand={FIELD_FIELDS})"
FIELD_LINK = "link"


def _identity_user(container: dict[str, Any] | None, *keys: str) -> dict[str, Any]:
    """Walk ``keys`` into ``container`` and return the ``user`` identity found there."""
    node: Any = container or {}
    for key in keys:
        node = node.get(key) if isinstance(node, dict) else None
        if not node:
            return {}
    user = node.get(FIELD_USER) if isinstance(node, dict) else None
    return user or {}


def parse_item(raw: dict[str, Any]) -> Item:
    """Map a raw Graph driveItem dict to an Item.

    Shortcuts to content in another drive (``remoteItem``) are treated as
    web-links: they point elsewhere and are never recursed into.
    """
    remote = raw.get(FIELD_REMOTE_ITEM)
    if FIELD_FOLDER in raw:
        item_type = ItemType.FOLDER
    elif remote is not None:
        item_type = ItemType.WEB_LINK
    else:
        item_type = ItemType.FILE

    owner = (
        _identity_user(raw, FIELD_SHARED, FIELD_OWNER)
        or _identity_user(remote, FIELD_SHARED, FIELD_OWNER)
        or _identity_user(remote, FIELD_CREATED_BY)
        or _identity_user(raw, FIELD_CREATED_BY)
    )

    shared_link = None
    shared = raw.get(FIELD_SHARED) or {}
    if shared.get(FIELD_SCOPE):
        shared_link = SharedLink(url=raw.get(FIELD_WEB_URL, ""), access=shared[FIELD_SCOPE])

    metadata = raw.get(FIELD_METADATA)
    list_item_fields = (raw.get(FIELD_LIST_ITEM) or {}).get(FIELD_FIELDS)
    if metadata is None and list_item_fields:
        metadata = {FIELD_LIST_ITEM: {FIELD_FIELDS: list_item_fields}}

    return Item(
        id=raw.get(FIELD_ID, ""),
        type=item_type,
        name=raw.get(FIELD_NAME, ""),
        owned_by=ItemOwner(
            id=owner.get(FIELD_ID, ""),
            login=owner.get(FIELD_EMAIL) or owner.get(FIELD_DISPLAY_NAME, ""),
        ),
        created_at=raw.get(FIELD_CREATED, ""),
        modified_at=raw.get(FIELD_MODIFIED, ""),
        size=int(raw.get(FIELD_SIZE) or 0),
        shared_link=shared_link,
        metadata=metadata,
    )


def parse_user(raw: dict[str, Any]) -> User:
    """Map a raw Graph user dict to a User."""
    enabled = raw.get(FIELD_ACCOUNT_ENABLED, True)
    return User(
        id=raw.get(FIELD_ID, ""),
        name=raw.get(FIELD_DISPLAY_NAME) or "",
        login=raw.get(FIELD_USER_PRINCIPAL_NAME) or raw.get(FIELD_MAIL) or "",
        status=USER_STATUS_ACTIVE if enabled is not False else USER_STATUS_INACTIVE,
    )


def _select(fields: Sequence[str]) -> str:
    return ",".join(fields)


def _item_query(fields: Sequence[str]) -> str:
    return f"$select={_select(fields)}&$expand={METADATA_EXPAND}"


class UserDrive:
    """One user's OneDrive, addressed with the application credential.

    Every method is a suspension point: the blocking Graph request runs in a
    worker thread so the event loop keeps interleaving other users' tasks.
    """

    def __init__(self, graph_client: GraphClient, user_id: str) -> None:
        self._graph = graph_client
        self._user_id = user_id

    @property
    def user_id(self) -> str:
        return self._user_id

    def _item_path(self, item_id: str) -> str:
        if item_id == ROOT_FOLDER_ID:
            return f"/users/{self._user_id}/drive/root"
        return f"/users/{self._user_id}/drive/items/{item_id}"

    async def _get(self, path: str) -> dict[str, Any]:
        return await asyncio.to_thread(self._graph.get, path)

    async def get_current_user(self) -> User:
        raw = await self._get(f"/users/{self._user_id}?$select={_select(USER_FIELDS)}")
        return parse_user(raw)

    async def _get_item(self, item_id: str, fields: Sequence[str]) -> Item:
        raw = await self._get(f"{self._item_path(item_id)}?{_item_query(fields)}")
        return parse_item(raw)

    async def get_folder(self, folder_id: str, fields: Sequence[str]) -> Item:
        return await self._get_item(folder_id, fields)

    async def get_file(self, file_id: str, fields: Sequence[str]) -> Item:
        return await self._get_item(file_id, fields)

    async def get_web_link(self, web_link_id: str, fields: Sequence[str]) -> Item:
        return await self._get_item(web_link_id, fields)

    async def list_folder_children(
        self,
        folder_id: str,
        fields: Sequence[str],
        page_size: int,
        page_token: str | None = None,
    ) -> Page[Item]:
        """Fetch one page of a folder's children.

        Args:
            folder_id: Folder to list; ``"0"`` addresses the drive root.
            fields: Properties to project with ``$select``; list item fields
                are always expanded so metadata columns can be reported.
            page_size: Requested page size (``$top``).
            page_token: Relative ``@odata.nextLink`` path from the previous page.

        Returns:
            The page's items and the next page token, or ``None`` on the last page.
        """
        path = page_token or (
            f"{self._item_path(folder_id)}/children?{_item_query(fields)}&$top={page_size}"
        )
        response = await self._get(path)
        next_link = response.get(ODATA_NEXT_LINK)
        return Page(
            entries=[parse_item(raw) for raw in response.get(ODATA_VALUE, [])],
            next_page_token=relative_path(next_link) if next_link else None,
        )

    async def update_shared_link(self, item: Item, access: str, fields: Sequence[str]) -> Item:
        """Replace the item's sharing link with one of scope ``access``.

        Graph's createLink adds a link alongside existing ones, so after the
        new link exists every link permission with the item's previous scope
        is deleted.

        Args:
            item: Item whose ``shared_link`` carries the scope being replaced.
            access: New link scope (``anonymous``, ``organization`` or ``users``).
            fields: Properties to project when re-fetching the item.

        Returns:
            The item as Graph reports it after the change.
        """
        item_path = self._item_path(item.id)
        await asyncio.to_thread(
            self._graph.post,
            f"{item_path}/createLink",
            {"type": SHARING_LINK_TYPE, "scope": access},
        )
        old_access = item.shared_link.access.lower() if item.shared_link else None
        if old_access and old_access != access.lower():
            permissions = await self._get(f"{item_path}/permissions")
            for permission in permissions.get(ODATA_VALUE, []):
                link = permission.get(FIELD_LINK) or {}
                if str(link.get(FIELD_SCOPE, "")).lower() != old_access:
                    continue
                await asyncio.to_thread(
                    self._graph.delete, f"{item_path}/permissions/{permission[FIELD_ID]}"
                )
                logger.debug(
                    "[update_shared_link] link removed; item_id:%s;permission_id:%s;scope:%s",
                    item.id,
                    permission[FIELD_ID],
                    old_access,
                )
        logger.debug(
            "[update_shared_link] link scope replaced; item_id:%s;from:%s;to:%s",
            item.id,
            old_access,
            access,
        )
        return await self._get_item(item.id, fields)


class Directory:
    """Tenant user directory, read with the application (service account) credential."""

    def __init__(self, graph_client: GraphClient) -> None:
        self._graph = graph_client

    async def list_enterprise_users(self, page_token: str | None = None) -> Page[User]:
        path = page_token or f"/users?$select={_select(USER_FIELDS)}&$top={DIRECTORY_PAGE_SIZE}"
        response = await asyncio.to_thread(self._graph.get, path)
        next_link = response.get(ODATA_NEXT_LINK)
        return Page(
            entries=[parse_user(raw) for raw in response.get(ODATA_VALUE, [])],
            next_page_token=relative_path(next_link) if next_link else None,
        )

    def authenticate_as_user(self, user_id: str) -> UserDrive:
        return UserDrive(self._graph, user_id)
