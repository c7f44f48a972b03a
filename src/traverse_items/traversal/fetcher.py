"""Paginated item retrieval over a DriveClient."""

from __future__ import annotations

from collections.abc import Sequence

from traverse_items.graph.models import DEFAULT_ITEM_FIELDS, Item, ItemType
from traverse_items.traversal.errors import FetchError
from traverse_items.traversal.interfaces import DriveClient


class ItemFetcher:
    """Fetches single items and complete folder listings.

    Client failures are re-raised as FetchError; logging is left to the caller,
    which knows whether the failure will be retried.
    """

    def __init__(self, fields: Sequence[str] = DEFAULT_ITEM_FIELDS, page_size: int = 1000) -> None:
        self._fields = tuple(fields)
        self._page_size = page_size

    @property
    def fields(self) -> tuple[str, ...]:
        return self._fields

    async def list_folder_items(self, client: DriveClient, folder_id: str) -> list[Item]:
        """Return every child of a folder, following pages until none remain.

        Args:
            client: Client of the traversal owner.
            folder_id: Folder to list.

        Returns:
            All children, in the order the tenant returned them.

        Raises:
            FetchError: If any page request fails.
        """
        items: list[Item] = []
        page_token = None
        while True:
            try:
                page = await client.list_folder_children(
                    folder_id, self._fields, self._page_size, page_token
                )
            except Exception as exc:
                raise FetchError.wrap(exc, f"Listing folder {folder_id} failed") from exc
            items.extend(page.entries)
            page_token = page.next_page_token
            if page_token is None:
                return items

    async def fetch_item(self, client: DriveClient, item_id: str, item_type: ItemType) -> Item:
        """Return one item's metadata.

        Raises:
            FetchError: If the request fails.
        """
        if item_type is ItemType.FOLDER:
            getter = client.get_folder
        elif item_type is ItemType.WEB_LINK:
            getter = client.get_web_link
        else:
            getter = client.get_file
        try:
            return await getter(item_id, self._fields)
        except Exception as exc:
            raise FetchError.wrap(exc, f"Fetching {item_type.value} {item_id} failed") from exc
