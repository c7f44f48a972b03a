"""Data models for tenant items, users and paginated listings."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Generic, TypeVar

# Tenant-neutral id of a user's root folder
ROOT_FOLDER_ID = "0"
ROOT_FOLDER_NAME = "All Files"

# Graph API JSON field names
FIELD_ID = "id"
FIELD_NAME = "name"
FIELD_SIZE = "size"
FIELD_FOLDER = "folder"
FIELD_FILE = "file"
FIELD_REMOTE_ITEM = "remoteItem"
FIELD_SHARED = "shared"
FIELD_SCOPE = "scope"
FIELD_OWNER = "owner"
FIELD_USER = "user"
FIELD_EMAIL = "email"
FIELD_DISPLAY_NAME = "displayName"
FIELD_CREATED_BY = "createdBy"
FIELD_CREATED = "createdDateTime"
FIELD_MODIFIED = "lastModifiedDateTime"
FIELD_WEB_URL = "webUrl"
FIELD_LIST_ITEM = "listItem"
FIELD_FIELDS = "fields"
FIELD_METADATA = "metadata"
FIELD_USER_PRINCIPAL_NAME = "userPrincipalName"
FIELD_MAIL = "mail"
FIELD_ACCOUNT_ENABLED = "accountEnabled"

# OData response keys
ODATA_NEXT_LINK = "@odata.nextLink"
ODATA_VALUE = "value"

DEFAULT_ITEM_FIELDS: tuple[str, ...] = (
    FIELD_ID,
    FIELD_NAME,
    FIELD_SIZE,
    FIELD_FOLDER,
    FIELD_FILE,
    FIELD_REMOTE_ITEM,
    FIELD_SHARED,
    FIELD_CREATED_BY,
    FIELD_CREATED,
    FIELD_MODIFIED,
    FIELD_WEB_URL,
)

USER_FIELDS: tuple[str, ...] = (
    FIELD_ID,
    FIELD_DISPLAY_NAME,
    FIELD_USER_PRINCIPAL_NAME,
    FIELD_MAIL,
    FIELD_ACCOUNT_ENABLED,
)

USER_STATUS_ACTIVE = "active"
USER_STATUS_INACTIVE = "inactive"

T = TypeVar("T")


class ItemType(str, Enum):
    """Kinds of item a tenant can hold."""

    FILE = "file"
    FOLDER = "folder"
    WEB_LINK = "web_link"


@dataclass(frozen=True)
class ItemOwner:
    id: str
    login: str = ""


@dataclass(frozen=True)
class SharedLink:
    url: str
    access: str


@dataclass(frozen=True)
class PathEntry:
    id: str
    name: str


ROOT_PATH_ENTRY = PathEntry(id=ROOT_FOLDER_ID, name=ROOT_FOLDER_NAME)


@dataclass(frozen=True)
class Item:
    """Immutable snapshot of a file, folder or web-link fetched from the tenant."""

    id: str
    type: ItemType
    name: str
    owned_by: ItemOwner
    created_at: str = ""
    modified_at: str = ""
    size: int = 0
    shared_link: SharedLink | None = None
    path_collection: tuple[PathEntry, ...] = ()
    metadata: Mapping[str, Any] | None = None

    @property
    def is_folder(self) -> bool:
        return self.type is ItemType.FOLDER

    @property
    def path_by_name(self) -> str:
        """Path to the item as slash-separated names, e.g. ``/All Files/Docs/a.txt``."""
        return "".join(f"/{entry.name}" for entry in self.path_collection) + f"/{self.name}"

    @property
    def path_by_id(self) -> str:
        """Path to the item as slash-separated ids, e.g. ``/0/100/200``."""
        return "".join(f"/{entry.id}" for entry in self.path_collection) + f"/{self.id}"

    def with_path(self, path_collection: tuple[PathEntry, ...]) -> Item:
        return replace(self, path_collection=path_collection)


@dataclass(frozen=True)
class User:
    """A tenant member as returned by the directory."""

    id: str
    name: str = ""
    login: str = ""
    status: str = USER_STATUS_ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == USER_STATUS_ACTIVE


@dataclass
class Page(Generic[T]):
    """One page of a paginated listing.

    ``next_page_token`` is opaque to callers: an offset, a marker or a
    follow-up URL. ``None`` means the server has no further pages.
    """

    entries: list[T] = field(default_factory=list)
    next_page_token: Any = None


def flatten_metadata(metadata: Mapping[str, Any]) -> dict[str, Any]:
    """Collapse a ``{scope: {template: {...}}}`` metadata wrapper to its instance fields.

    Args:
        metadata: Metadata as delivered by the tenant, nested under a scope key
            and a template key.

    Returns:
        The flat key-value map of the first template instance, or an empty
        dict when the wrapper is empty or malformed.
    """
    if not metadata:
        return {}
    scope = next(iter(metadata.values()))
    if not isinstance(scope, Mapping) or not scope:
        return {}
    instance = next(iter(scope.values()))
    if not isinstance(instance, Mapping):
        return {}
    return dict(instance)


def with_flat_metadata(item: Item) -> Item:
    """Return ``item`` with its metadata wrapper flattened, or unchanged if it has none."""
    if not item.metadata:
        return item
    return replace(item, metadata=flatten_metadata(item.metadata))
