"""Recursive folder traversal over per-user rate-limited queues.

Every unit of work is a task on the traversal owner's queue:

* ``traverse_folder`` lists one folder completely, evaluates each child and
  queues an action per accepted child plus a traversal per accepted
  sub-folder.
* ``fetch_item_and_act`` fetches one item by id and queues its action.

Failed folder listings are re-queued with the same arguments; failed item
fetches are re-queued only when the tenant rate-limited the request. A
re-queued task waits out its backoff inside its own queue slot, so the queue
never looks idle while a retry is pending.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from traverse_items.config import TraversalPolicy
from traverse_items.graph.models import (
    ROOT_FOLDER_ID,
    ROOT_FOLDER_NAME,
    Item,
    ItemType,
    PathEntry,
    with_flat_metadata,
)
from traverse_items.logging_config import NO_EXECUTION_ID, new_execution_id
from traverse_items.traversal.dispatch import ActionDispatcher
from traverse_items.traversal.errors import FetchError, record_error
from traverse_items.traversal.fetcher import ItemFetcher
from traverse_items.traversal.interfaces import AuditRecorder
from traverse_items.traversal.registry import UserContext

logger = logging.getLogger(__name__)

AUDIT_GET_ITEM = "GET_ITEM"
AUDIT_SKIP_ITEM = "SKIP_ITEM"

MAX_RETRY_DELAY_SECONDS = 60.0


@dataclass(frozen=True)
class FolderRef:
    """A folder to traverse and the ancestry leading to it."""

    id: str
    name: str = ""
    path: tuple[PathEntry, ...] = ()

    @classmethod
    def root(cls) -> FolderRef:
        return cls(id=ROOT_FOLDER_ID, name=ROOT_FOLDER_NAME)

    @classmethod
    def from_item(cls, item: Item) -> FolderRef:
        return cls(id=item.id, name=item.name, path=item.path_collection)

    @property
    def is_root(self) -> bool:
        return self.id == ROOT_FOLDER_ID

    @property
    def child_path(self) -> tuple[PathEntry, ...]:
        return self.path + (PathEntry(id=self.id, name=self.name),)


class TraversalEngine:
    """Discovers items folder by folder and decides what happens to each."""

    def __init__(
        self,
        policy: TraversalPolicy,
        fetcher: ItemFetcher,
        dispatcher: ActionDispatcher,
        recorder: AuditRecorder,
        max_retries: int = 5,
        retry_backoff_seconds: float = 1.0,
    ) -> None:
        """Initialise the engine.

        Args:
            policy: Run-scoped allow/deny and audit rules.
            fetcher: Paginated item retrieval.
            dispatcher: Queues the user-defined action per accepted item.
            recorder: Audit report sink.
            max_retries: Re-queues allowed per failed task.
            retry_backoff_seconds: Base delay for exponential backoff when the
                tenant gives no Retry-After.
        """
        self._policy = policy
        self._fetcher = fetcher
        self._dispatcher = dispatcher
        self._recorder = recorder
        self._max_retries = max_retries
        self._retry_backoff_seconds = retry_backoff_seconds
        self.folders_listed = 0
        self.items_evaluated = 0
        self.tasks_abandoned = 0

    # ------------------------------------------------------------------
    # Task submission
    # ------------------------------------------------------------------

    def enqueue_traversal(
        self,
        owner: UserContext,
        folder: FolderRef,
        *,
        follow_children: bool = True,
        first_iteration: bool = False,
        parent_execution_id: str = NO_EXECUTION_ID,
        attempt: int = 0,
        delay: float = 0.0,
    ) -> asyncio.Future[Any]:
        logger.debug(
            "[enqueue_traversal] traversal queued; action:ADD_TO_QUEUE;folder_id:%s;"
            "user_id:%s;queue_size:%d;execution_id:%s",
            folder.id,
            owner.user_id,
            owner.queue.size,
            parent_execution_id,
        )
        return owner.queue.add(
            lambda: self._contain(
                "traverse_folder",
                self.traverse_folder(
                    owner,
                    folder,
                    follow_children=follow_children,
                    first_iteration=first_iteration,
                    parent_execution_id=parent_execution_id,
                    attempt=attempt,
                    delay=delay,
                ),
            )
        )

    def enqueue_fetch(
        self,
        owner: UserContext,
        item_id: str,
        item_type: ItemType,
        *,
        parent_execution_id: str = NO_EXECUTION_ID,
        attempt: int = 0,
        delay: float = 0.0,
    ) -> asyncio.Future[Any]:
        logger.debug(
            "[enqueue_fetch] item fetch queued; action:ADD_TO_QUEUE;item_id:%s;item_type:%s;"
            "user_id:%s;execution_id:%s",
            item_id,
            item_type.value,
            owner.user_id,
            parent_execution_id,
        )
        return owner.queue.add(
            lambda: self._contain(
                "fetch_item_and_act",
                self.fetch_item_and_act(
                    owner,
                    item_id,
                    item_type,
                    parent_execution_id=parent_execution_id,
                    attempt=attempt,
                    delay=delay,
                ),
            )
        )

    async def _contain(self, origin: str, coro: Any) -> None:
        # A failing task never reaches sibling tasks or the queue.
        try:
            await coro
        except Exception as exc:
            self.tasks_abandoned += 1
            record_error(exc, origin, "task failed unexpectedly", NO_EXECUTION_ID)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def traverse_folder(
        self,
        owner: UserContext,
        folder: FolderRef,
        *,
        follow_children: bool = True,
        first_iteration: bool = False,
        parent_execution_id: str = NO_EXECUTION_ID,
        attempt: int = 0,
        delay: float = 0.0,
    ) -> None:
        """List a folder and evaluate every child.

        On the first iteration from a non-root folder, the folder's own
        metadata is fetched and acted on before its children are listed.

        Args:
            owner: Context of the traversal owner.
            folder: Folder to list.
            follow_children: Queue a traversal for every accepted sub-folder.
            first_iteration: True for the seed folder of a traversal.
            parent_execution_id: Correlation id of the task that queued this one.
            attempt: Number of previous failed attempts.
            delay: Seconds to wait before the first request.
        """
        execution_id = new_execution_id()
        if delay > 0:
            await asyncio.sleep(delay)

        if first_iteration and not folder.is_root:
            try:
                folder_item = await self._fetcher.fetch_item(
                    owner.client, folder.id, ItemType.FOLDER
                )
            except FetchError as exc:
                self._retry_folder(
                    owner, folder, exc, attempt, execution_id, follow_children, first_iteration
                )
                return
            folder_item = with_flat_metadata(folder_item)
            if not folder_item.path_collection and folder.path:
                folder_item = folder_item.with_path(folder.path)
            folder = FolderRef.from_item(folder_item)
            logger.info(
                "[traverse_folder] prepared root item; action:PREPARE_ROOT_ITEMS;folder_id:%s;"
                "user_id:%s;execution_id:%s;parent_execution_id:%s",
                folder.id,
                owner.user_id,
                execution_id,
                parent_execution_id,
            )
            self._accept(owner, folder_item, execution_id)

        logger.debug(
            "[traverse_folder] retrieving child items; action:RETRIEVE_CHILD_ITEMS;folder_id:%s;"
            "user_id:%s;attempt:%d;execution_id:%s;parent_execution_id:%s",
            folder.id,
            owner.user_id,
            attempt,
            execution_id,
            parent_execution_id,
        )
        try:
            children = await self._fetcher.list_folder_items(owner.client, folder.id)
        except FetchError as exc:
            # The seed folder, if any, has been acted on; the retry only lists.
            self._retry_folder(owner, folder, exc, attempt, execution_id, follow_children, False)
            return

        self.folders_listed += 1
        logger.info(
            "[traverse_folder] retrieved child items; action:RETRIEVE_CHILD_ITEMS;folder_id:%s;"
            "item_count:%d;user_id:%s;execution_id:%s",
            folder.id,
            len(children),
            owner.user_id,
            execution_id,
        )
        child_path = folder.child_path
        for child in children:
            if not child.path_collection:
                child = child.with_path(child_path)
            self._evaluate(owner, folder, child, follow_children, execution_id)

    async def fetch_item_and_act(
        self,
        owner: UserContext,
        item_id: str,
        item_type: ItemType,
        *,
        parent_execution_id: str = NO_EXECUTION_ID,
        attempt: int = 0,
        delay: float = 0.0,
    ) -> None:
        """Fetch one item by id and queue its action.

        Only rate-limited fetches are retried; any other failure abandons the
        item.
        """
        execution_id = new_execution_id()
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            item = await self._fetcher.fetch_item(owner.client, item_id, item_type)
        except FetchError as exc:
            record_error(
                exc,
                "fetch_item_and_act",
                f"could not fetch {item_type.value} {item_id}; queue_size:{owner.queue.size}",
                execution_id,
            )
            if exc.rate_limited and attempt < self._max_retries:
                self.enqueue_fetch(
                    owner,
                    item_id,
                    item_type,
                    parent_execution_id=execution_id,
                    attempt=attempt + 1,
                    delay=self._retry_delay(exc, attempt + 1),
                )
            else:
                self._abandon(item_type.value, item_id, attempt, execution_id)
            return

        item = with_flat_metadata(item)
        logger.debug(
            "[fetch_item_and_act] retrieved item; action:GET_ITEM;item_id:%s;user_id:%s;"
            "execution_id:%s;parent_execution_id:%s",
            item.id,
            owner.user_id,
            execution_id,
            parent_execution_id,
        )
        self._accept(owner, item, execution_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _evaluate(
        self,
        owner: UserContext,
        folder: FolderRef,
        item: Item,
        follow_children: bool,
        execution_id: str,
    ) -> None:
        self.items_evaluated += 1
        if folder.is_root and item.owned_by.id != owner.user_id and self._policy.skip_non_owned:
            logger.info(
                "[traverse_folder] skipping item not owned by user; action:IGNORE_NONOWNED_ITEM;"
                "item_id:%s;owned_by:%s;user_id:%s;execution_id:%s",
                item.id,
                item.owned_by.id,
                owner.user_id,
                execution_id,
            )
            if self._policy.audit_non_owned:
                self._recorder.record(
                    AUDIT_SKIP_ITEM,
                    item,
                    f"Skipped {item.type.value} owned by {item.owned_by.login or item.owned_by.id}",
                    execution_id,
                )
            return

        if item.is_folder and self._policy.folder_denied(item.id):
            logger.info(
                "[traverse_folder] skipping deny-listed folder; action:IGNORE_DENYLIST_ITEM;"
                "item_id:%s;user_id:%s;execution_id:%s",
                item.id,
                owner.user_id,
                execution_id,
            )
            return

        item = with_flat_metadata(item)
        self._accept(owner, item, execution_id)
        if item.is_folder and follow_children:
            self.enqueue_traversal(
                owner,
                FolderRef.from_item(item),
                follow_children=True,
                parent_execution_id=execution_id,
            )

    def _accept(self, owner: UserContext, item: Item, execution_id: str) -> None:
        if self._policy.audit_traversal:
            self._recorder.record(
                AUDIT_GET_ITEM,
                item,
                f"Retrieved {item.type.value} {item.name!r}",
                execution_id,
            )
        self._dispatcher.enqueue_action(owner, item, execution_id)

    def _retry_folder(
        self,
        owner: UserContext,
        folder: FolderRef,
        exc: FetchError,
        attempt: int,
        execution_id: str,
        follow_children: bool,
        first_iteration: bool,
    ) -> None:
        record_error(
            exc,
            "traverse_folder",
            f"could not list folder {folder.id}; queue_size:{owner.queue.size}",
            execution_id,
        )
        if attempt >= self._max_retries:
            self._abandon("folder", folder.id, attempt, execution_id)
            return
        delay = self._retry_delay(exc, attempt + 1)
        logger.info(
            "[traverse_folder] re-queueing folder; action:ADD_TO_QUEUE;folder_id:%s;attempt:%d;"
            "delay:%.2f;execution_id:%s",
            folder.id,
            attempt + 1,
            delay,
            execution_id,
        )
        self.enqueue_traversal(
            owner,
            folder,
            follow_children=follow_children,
            first_iteration=first_iteration,
            parent_execution_id=execution_id,
            attempt=attempt + 1,
            delay=delay,
        )

    def _retry_delay(self, exc: FetchError, attempt: int) -> float:
        if exc.retry_after is not None:
            return min(exc.retry_after, MAX_RETRY_DELAY_SECONDS)
        return min(self._retry_backoff_seconds * 2 ** (attempt - 1), MAX_RETRY_DELAY_SECONDS)

    def _abandon(self, kind: str, item_id: str, attempt: int, execution_id: str) -> None:
        self.tasks_abandoned += 1
        logger.error(
            "[traverse] abandoning task; action:KILL_TASK;item_type:%s;item_id:%s;attempts:%d;"
            "execution_id:%s",
            kind,
            item_id,
            attempt + 1,
            execution_id,
        )
