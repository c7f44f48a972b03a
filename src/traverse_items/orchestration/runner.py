"""Traversal runner: enumerates users, drives their traversals, finalizes the run."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from traverse_items.actions.loader import load_action
from traverse_items.audit.report import AuditReport, audit_report_from_config
from traverse_items.audit.upload import ReportUploader, report_uploader_from_config
from traverse_items.config import MODE_ALLOWLIST, MODE_CSV
from traverse_items.graph.client import graph_client_from_config
from traverse_items.graph.drive import Directory as GraphDirectory
from traverse_items.graph.models import ROOT_FOLDER_ID, ItemType, User
from traverse_items.inputs.csv_input import read_csv_rows
from traverse_items.logging_config import new_execution_id
from traverse_items.traversal.completion import CompletionTracker
from traverse_items.traversal.dispatch import ActionDispatcher
from traverse_items.traversal.engine import FolderRef, TraversalEngine
from traverse_items.traversal.errors import record_error
from traverse_items.traversal.fetcher import ItemFetcher
from traverse_items.traversal.queue import UsersTaskQueue
from traverse_items.traversal.registry import UserRegistry

if TYPE_CHECKING:
    from traverse_items.config import AppConfig
    from traverse_items.traversal.interfaces import Directory, UserDefinedAction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FolderSeed:
    folder_id: str
    follow_children: bool = True


@dataclass(frozen=True)
class ItemSeed:
    item_id: str
    item_type: ItemType


@dataclass
class UserPlan:
    """Starting points for one user's traversal."""

    user_id: str
    folders: list[FolderSeed] = field(default_factory=list)
    items: list[ItemSeed] = field(default_factory=list)


@dataclass(frozen=True)
class RunSummary:
    users_processed: int
    users_skipped: int
    folders_listed: int
    items_evaluated: int
    actions_dispatched: int
    actions_failed: int
    tasks_abandoned: int
    audit_rows: int
    report_path: Path


class TraversalRunner:
    """Runs one complete traversal for the configured enumeration mode."""

    def __init__(
        self,
        config: AppConfig,
        directory: Directory,
        report: AuditReport,
        action: UserDefinedAction | None = None,
        uploader: ReportUploader | None = None,
    ) -> None:
        """Initialise the runner.

        Args:
            config: Application configuration.
            directory: Tenant directory used to list and authenticate users.
            report: Open audit report; closed when the run finalizes.
            action: Per-item action; defaults to the configured one.
            uploader: Uploads the report after the run, if given.
        """
        self._config = config
        self._directory = directory
        self._report = report
        self._uploader = uploader
        self.registry = UserRegistry(tasks_per_second=config.max_queue_tasks_per_second)
        self.dispatcher = ActionDispatcher(action or load_action(config, report))
        self.engine = TraversalEngine(
            policy=config.policy,
            fetcher=ItemFetcher(config.item_fields, config.page_size),
            dispatcher=self.dispatcher,
            recorder=report,
            max_retries=config.max_retries,
            retry_backoff_seconds=config.retry_backoff_seconds,
        )
        self.users_queue = UsersTaskQueue(config.max_concurrent_users)
        self.tracker = CompletionTracker(self.registry, self._finalize)
        self.skipped_users: list[str] = []

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def plan(self) -> dict[str, UserPlan]:
        """Build the per-user starting points for the configured mode."""
        mode = self._config.mode
        logger.info("[plan] enumerating users; mode:%s", mode)
        if mode == MODE_CSV:
            return await self._plan_csv()
        if mode == MODE_ALLOWLIST:
            return self._plan_allowlist()
        return await self._plan_all_users()

    async def _enterprise_users(self) -> list[User]:
        users: list[User] = []
        page_token = None
        while True:
            page = await self._directory.list_enterprise_users(page_token)
            users.extend(page.entries)
            page_token = page.next_page_token
            if page_token is None:
                logger.info("[_enterprise_users] listed enterprise users; user_count:%d", len(users))
                return users

    def _plan_allowlist(self) -> dict[str, UserPlan]:
        policy = self._config.policy
        plans: dict[str, UserPlan] = {}
        for entry in policy.allowlist:
            plan = plans.setdefault(entry.owner_id, UserPlan(entry.owner_id))
            for folder_id in entry.folder_ids:
                if policy.folder_denied(folder_id):
                    logger.info(
                        "[_plan_allowlist] skipping deny-listed folder; action:IGNORE_DENYLIST_ITEM;"
                        "folder_id:%s;user_id:%s",
                        folder_id,
                        entry.owner_id,
                    )
                    continue
                plan.folders.append(FolderSeed(folder_id, entry.follow_all_child_items))
        return {user_id: plan for user_id, plan in plans.items() if plan.folders}

    async def _plan_all_users(self) -> dict[str, UserPlan]:
        plans: dict[str, UserPlan] = {}
        for user in await self._enterprise_users():
            if self._config.policy.user_denied(user.id):
                logger.info(
                    "[_plan_all_users] skipping deny-listed user; action:IGNORE_USER;user_id:%s",
                    user.id,
                )
                continue
            if not user.is_active:
                self._skip_inactive(user)
                continue
            plans[user.id] = UserPlan(user.id, folders=[FolderSeed(ROOT_FOLDER_ID)])
        return plans

    async def _plan_csv(self) -> dict[str, UserPlan]:
        rows = read_csv_rows(self._config.csv.file_path, self._config.csv)
        users_by_login = {user.login.lower(): user for user in await self._enterprise_users()}
        plans: dict[str, UserPlan] = {}
        for row in rows:
            user = users_by_login.get(row.owner_login.lower())
            if user is None:
                logger.warning(
                    "[_plan_csv] owner not found; action:IGNORE_USER;login:%s;line:%d",
                    row.owner_login,
                    row.line_number,
                )
                self.skipped_users.append(row.owner_login)
                continue
            if not user.is_active:
                self._skip_inactive(user)
                continue
            plan = plans.setdefault(user.id, UserPlan(user.id))
            plan.items.append(ItemSeed(row.item_id, row.item_type))
        return plans

    def _skip_inactive(self, user: User) -> None:
        logger.warning(
            "[plan] skipping inactive user; action:NON_ACTIVE_USER;user_id:%s;login:%s",
            user.id,
            user.login,
        )
        self.skipped_users.append(user.id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run(self) -> RunSummary:
        """Traverse every planned user and wait for finalization.

        Returns:
            Counters describing the finished run.
        """
        plans = await self.plan()
        logger.info("[run] queueing users; user_count:%d", len(plans))
        for plan in plans.values():
            self.users_queue.add(lambda plan=plan: self._run_user(plan))
        await self.users_queue.on_idle()
        await self.tracker.seal()
        await self.tracker.wait()
        return self.summary()

    async def _run_user(self, plan: UserPlan) -> None:
        execution_id = new_execution_id()
        try:
            client = self._directory.authenticate_as_user(plan.user_id)
            profile = await client.get_current_user()
        except Exception as exc:
            record_error(exc, "run_user", f"could not authenticate user {plan.user_id}", execution_id)
            self.skipped_users.append(plan.user_id)
            return
        if not profile.is_active:
            self._skip_inactive(profile)
            return

        owner = self.registry.add_user(profile, client)
        # A login and an id entry can resolve to a context an earlier plan already drained
        owner.is_processing = True
        for folder_seed in plan.folders:
            folder = (
                FolderRef.root()
                if folder_seed.folder_id == ROOT_FOLDER_ID
                else FolderRef(folder_seed.folder_id)
            )
            self.engine.enqueue_traversal(
                owner,
                folder,
                follow_children=folder_seed.follow_children,
                first_iteration=True,
                parent_execution_id=execution_id,
            )
        for item_seed in plan.items:
            self.engine.enqueue_fetch(
                owner, item_seed.item_id, item_seed.item_type, parent_execution_id=execution_id
            )
        logger.info(
            "[run_user] seeded traversal; user_id:%s;login:%s;folders:%d;items:%d;execution_id:%s",
            owner.user_id,
            profile.login,
            len(plan.folders),
            len(plan.items),
            execution_id,
        )
        # Holds this user's slot until the user's own queue drains.
        await self.tracker.track(owner)

    async def _finalize(self) -> None:
        self._report.close()
        if self._uploader is not None:
            await asyncio.to_thread(self._uploader.upload, self._report.path)
        summary = self.summary()
        logger.info(
            "[_finalize] run complete; users_processed:%d;users_skipped:%d;folders_listed:%d;"
            "items_evaluated:%d;actions_dispatched:%d;actions_failed:%d;tasks_abandoned:%d;"
            "audit_rows:%d;report:%s",
            summary.users_processed,
            summary.users_skipped,
            summary.folders_listed,
            summary.items_evaluated,
            summary.actions_dispatched,
            summary.actions_failed,
            summary.tasks_abandoned,
            summary.audit_rows,
            summary.report_path,
        )

    def summary(self) -> RunSummary:
        return RunSummary(
            users_processed=len(self.registry),
            users_skipped=len(self.skipped_users),
            folders_listed=self.engine.folders_listed,
            items_evaluated=self.engine.items_evaluated,
            actions_dispatched=self.dispatcher.dispatched,
            actions_failed=self.dispatcher.failed,
            tasks_abandoned=self.engine.tasks_abandoned,
            audit_rows=self._report.row_count,
            report_path=self._report.path,
        )


def runner_from_config(config: AppConfig) -> TraversalRunner:
    """Construct a TraversalRunner backed by Microsoft Graph.

    Args:
        config: Application configuration instance.

    Returns:
        Configured TraversalRunner with an open audit report.
    """
    directory = GraphDirectory(graph_client_from_config(config))
    report = audit_report_from_config(config)
    uploader = report_uploader_from_config(config) if config.audit_report.upload else None
    return TraversalRunner(config, directory, report, uploader=uploader)
