"""Unit tests for orchestration/runner.py: user enumeration and whole-run completion."""

import asyncio
import csv
from dataclasses import replace
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from fakes import FakeDirectory, FakeDrive, RecordingAction, make_file, make_folder

from traverse_items.audit.report import AuditReport
from traverse_items.config import (
    AllowlistEntry,
    AppConfig,
    AuditReportConfig,
    CsvInputConfig,
    TraversalPolicy,
)
from traverse_items.graph.drive import Directory as GraphDirectory
from traverse_items.graph.models import ItemType
from traverse_items.orchestration.runner import (
    FolderSeed,
    ItemSeed,
    TraversalRunner,
    runner_from_config,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _config(tmp_path: Path, **overrides) -> AppConfig:
    config = AppConfig(
        client_id="cid",
        client_secret="secret",
        tenant_id="tid",
        audit_report=AuditReportConfig(directory=str(tmp_path / "auditLogs")),
        max_queue_tasks_per_second=1000,
        max_concurrent_users=2,
        retry_backoff_seconds=0.0,
    )
    return replace(config, **overrides)


def _allowlist(*entries: AllowlistEntry, **policy) -> TraversalPolicy:
    return TraversalPolicy(allowlist_enabled=True, allowlist=entries, **policy)


def _runner(
    tmp_path: Path,
    config: AppConfig,
    directory: FakeDirectory,
    action: RecordingAction | None = None,
    uploader=None,
) -> TraversalRunner:
    report = AuditReport(tmp_path / "report.csv")
    return TraversalRunner(
        config, directory, report, action=action or RecordingAction(), uploader=uploader
    )


def _audit_actions(path: Path) -> list[str]:
    with path.open(newline="", encoding="utf-8") as handle:
        return [row["ACTION"] for row in csv.DictReader(handle)]


async def _run(runner: TraversalRunner):
    return await asyncio.wait_for(runner.run(), timeout=5)


# ---------------------------------------------------------------------------
# Allowlist mode
# ---------------------------------------------------------------------------


class TestAllowlistMode:
    @pytest.mark.asyncio
    async def test_traverses_seed_folder_subtree(self, tmp_path: Path) -> None:
        drive = FakeDrive(
            "U1",
            folders={
                "100": [make_file("200"), make_folder("300")],
                "300": [make_file("301")],
            },
            items={"100": make_folder("100", "Docs")},
        )
        action = RecordingAction()
        config = _config(tmp_path, policy=_allowlist(AllowlistEntry("U1", ("100",))))
        runner = _runner(tmp_path, config, FakeDirectory([drive]), action)

        summary = await _run(runner)

        assert sorted(action.item_ids) == ["100", "200", "300", "301"]
        assert action.item("301").path_by_name == "/Docs/300/301.txt"
        assert summary.users_processed == 1
        assert summary.users_skipped == 0
        assert summary.folders_listed == 2
        assert summary.items_evaluated == 3
        assert summary.actions_dispatched == 4
        assert summary.actions_failed == 0
        assert summary.audit_rows == 4
        assert _audit_actions(summary.report_path) == ["GET_ITEM"] * 4
        assert runner.tracker.finalized

    @pytest.mark.asyncio
    async def test_plan_groups_entries_per_owner(self, tmp_path: Path) -> None:
        policy = _allowlist(
            AllowlistEntry("U1", ("100",)),
            AllowlistEntry("U1", ("300", "999"), follow_all_child_items=False),
            AllowlistEntry("U2", ("999",)),
            denylist_enabled=True,
            denied_folders=frozenset({"999"}),
        )
        runner = _runner(tmp_path, _config(tmp_path, policy=policy), FakeDirectory([]))

        plans = await runner.plan()

        assert list(plans) == ["U1"]
        assert plans["U1"].folders == [FolderSeed("100", True), FolderSeed("300", False)]

    @pytest.mark.asyncio
    async def test_unknown_user_is_skipped_and_run_completes(self, tmp_path: Path) -> None:
        config = _config(tmp_path, policy=_allowlist(AllowlistEntry("U9", ("0",))))
        directory = FakeDirectory([])
        runner = _runner(tmp_path, config, directory)

        summary = await _run(runner)

        assert directory.authenticated == ["U9"]
        assert runner.skipped_users == ["U9"]
        assert summary.users_processed == 0
        assert runner.tracker.finalized

    @pytest.mark.asyncio
    async def test_same_user_by_login_and_id_stays_processing(self, tmp_path: Path) -> None:
        drive = FakeDrive(
            "U1",
            folders={"100": [make_file("101")], "300": [make_file("301")]},
            items={"100": make_folder("100"), "300": make_folder("300")},
        )
        active_during_action: dict[str, list[str]] = {}

        async def action(owner, item, execution_id) -> None:
            active_during_action[item.id] = runner.registry.active_processing_users()

        policy = _allowlist(
            AllowlistEntry("u1@contoso.com", ("100",)), AllowlistEntry("U1", ("300",))
        )
        config = _config(tmp_path, policy=policy, max_concurrent_users=1)
        runner = TraversalRunner(
            config, FakeDirectory([drive]), AuditReport(tmp_path / "report.csv"), action=action
        )

        summary = await _run(runner)

        assert sorted(active_during_action) == ["100", "101", "300", "301"]
        assert all(active == ["U1"] for active in active_during_action.values())
        assert runner.registry.active_processing_users() == []
        assert summary.users_processed == 1
        assert runner.tracker.finalized

    @pytest.mark.asyncio
    async def test_failed_actions_are_counted(self, tmp_path: Path) -> None:
        drive = FakeDrive("U1", folders={"0": [make_file("200"), make_file("201")]})
        config = _config(tmp_path, policy=_allowlist(AllowlistEntry("U1", ("0",))))
        runner = _runner(tmp_path, config, FakeDirectory([drive]), RecordingAction({"200"}))

        summary = await _run(runner)

        assert summary.actions_dispatched == 2
        assert summary.actions_failed == 1


# ---------------------------------------------------------------------------
# All-users / denylist mode
# ---------------------------------------------------------------------------


class TestAllUsersMode:
    @pytest.mark.asyncio
    async def test_denied_and_inactive_users_are_skipped(self, tmp_path: Path) -> None:
        active = FakeDrive(
            "U1", folders={"0": [make_file("U1-a"), make_file("U1-b", owner="OTHER")]}
        )
        denied = FakeDrive("U2", folders={"0": [make_file("U2-a", owner="U2")]})
        inactive = FakeDrive("U3", status="inactive")
        policy = TraversalPolicy(denylist_enabled=True, denied_users=frozenset({"U2"}))
        directory = FakeDirectory([active, denied, inactive])
        action = RecordingAction()
        runner = _runner(tmp_path, _config(tmp_path, policy=policy), directory, action)

        summary = await _run(runner)

        assert directory.authenticated == ["U1"]
        assert action.item_ids == ["U1-a"]
        assert runner.skipped_users == ["U3"]
        assert summary.users_processed == 1
        assert summary.items_evaluated == 2

    @pytest.mark.asyncio
    async def test_every_user_traversed_from_root(self, tmp_path: Path) -> None:
        drives = [
            FakeDrive(user_id, folders={"0": [make_file(f"{user_id}-a", owner=user_id)]})
            for user_id in ("U1", "U2", "U3")
        ]
        action = RecordingAction()
        runner = _runner(tmp_path, _config(tmp_path), FakeDirectory(drives), action)

        summary = await _run(runner)

        assert sorted(action.item_ids) == ["U1-a", "U2-a", "U3-a"]
        assert summary.users_processed == 3
        assert all(owner.is_processing is False for owner in runner.registry.users())

    @pytest.mark.asyncio
    async def test_no_users_still_finalizes(self, tmp_path: Path) -> None:
        runner = _runner(tmp_path, _config(tmp_path), FakeDirectory([]))

        summary = await _run(runner)

        assert summary.users_processed == 0
        assert summary.audit_rows == 0
        assert runner.tracker.finalized


# ---------------------------------------------------------------------------
# CSV mode
# ---------------------------------------------------------------------------


class TestCsvMode:
    @pytest.mark.asyncio
    async def test_fetches_listed_items_for_known_owners(self, tmp_path: Path) -> None:
        input_path = tmp_path / "items.csv"
        input_path.write_text(
            "owner_login,item_id,type\n"
            "U1@contoso.com,200,file\n"
            "unknown@contoso.com,9,file\n"
            "u1@contoso.com,100,folder\n",
            encoding="utf-8",
        )
        drive = FakeDrive("U1", items={"200": make_file("200"), "100": make_folder("100")})
        config = _config(tmp_path, csv=CsvInputConfig(enabled=True, file_path=str(input_path)))
        action = RecordingAction()
        runner = _runner(tmp_path, config, FakeDirectory([drive]), action)

        plans = await runner.plan()
        assert plans["U1"].items == [ItemSeed("200", ItemType.FILE), ItemSeed("100", ItemType.FOLDER)]

        runner.skipped_users.clear()
        summary = await _run(runner)

        assert sorted(action.item_ids) == ["100", "200"]
        assert runner.skipped_users == ["unknown@contoso.com"]
        assert summary.folders_listed == 0
        assert sorted(drive.get_calls) == ["100", "200"]


# ---------------------------------------------------------------------------
# Finalization
# ---------------------------------------------------------------------------


class TestFinalization:
    @pytest.mark.asyncio
    async def test_report_uploaded_after_close(self, tmp_path: Path) -> None:
        drive = FakeDrive("U1", folders={"0": [make_file("200")]})
        uploader = MagicMock()
        closed_at_upload: list[bool] = []
        config = _config(tmp_path, policy=_allowlist(AllowlistEntry("U1", ("0",))))
        runner = _runner(tmp_path, config, FakeDirectory([drive]), uploader=uploader)
        uploader.upload.side_effect = lambda path: closed_at_upload.append(runner._report.closed)

        summary = await _run(runner)

        uploader.upload.assert_called_once_with(summary.report_path)
        assert closed_at_upload == [True]

    @pytest.mark.asyncio
    async def test_upload_failure_propagates_from_run(self, tmp_path: Path) -> None:
        uploader = MagicMock()
        uploader.upload.side_effect = OSError("network down")
        runner = _runner(tmp_path, _config(tmp_path), FakeDirectory([]), uploader=uploader)

        with pytest.raises(OSError, match="network down"):
            await _run(runner)


# ---------------------------------------------------------------------------
# runner_from_config
# ---------------------------------------------------------------------------


class TestRunnerFromConfig:
    def test_builds_graph_backed_runner_with_uploader(self, tmp_path: Path) -> None:
        config = _config(
            tmp_path,
            audit_report=AuditReportConfig(
                directory=str(tmp_path / "auditLogs"),
                upload=True,
                upload_folder_id="0",
                upload_user="admin@contoso.com",
            ),
        )
        with (
            patch("traverse_items.orchestration.runner.graph_client_from_config") as runner_graph,
            patch("traverse_items.audit.upload.graph_client_from_config") as upload_graph,
        ):
            runner = runner_from_config(config)

        runner_graph.assert_called_once_with(config)
        upload_graph.assert_called_once_with(config)
        assert isinstance(runner._directory, GraphDirectory)
        assert runner._uploader is not None
        assert runner._report.path.parent == tmp_path / "auditLogs"
        runner._report.close()

    def test_no_uploader_unless_enabled(self, tmp_path: Path) -> None:
        with patch("traverse_items.orchestration.runner.graph_client_from_config"):
            runner = runner_from_config(_config(tmp_path))

        assert runner._uploader is None
        runner._report.close()
