"""Smoke tests: validate the command line works end-to-end against an in-memory tenant."""

import csv
import json
from pathlib import Path
from unittest.mock import patch

import pytest
from fakes import FakeDirectory, FakeDrive, make_file, make_folder

from traverse_items.cli import EXIT_OK, main
from traverse_items.graph.models import SharedLink


@pytest.fixture(autouse=True)
def _clear_credential_env(monkeypatch) -> None:
    for name in ("TI_CLIENT_ID", "TI_CLIENT_SECRET", "TI_TENANT_ID"):
        monkeypatch.delenv(name, raising=False)


def test_shared_link_simulation_run_writes_audit_report(tmp_path: Path) -> None:
    """A full run visits the tree, simulates link changes and closes the report."""
    public = SharedLink(url="https://share/200", access="anonymous")
    drive = FakeDrive(
        "U1",
        folders={
            "0": [make_file("200", shared_link=public), make_folder("300")],
            "300": [make_file("301")],
        },
    )
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "appSettings": {"clientID": "cid", "clientSecret": "cs", "tenantID": "tid"},
                "maxQueueTasksPerSecond": 1000,
                "auditReport": {"directory": str(tmp_path / "auditLogs")},
                "logDirectory": str(tmp_path / "runtimeLogs"),
                "action": "shared_links",
            }
        ),
        encoding="utf-8",
    )

    with (
        patch("traverse_items.orchestration.runner.graph_client_from_config"),
        patch(
            "traverse_items.orchestration.runner.GraphDirectory",
            return_value=FakeDirectory([drive]),
        ),
    ):
        assert main(["--config", str(config_path)]) == EXIT_OK

    [report] = (tmp_path / "auditLogs").glob("*_Results.csv")
    with report.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))
    actions = sorted((row["ACTION"], row["ITEM_ID"]) for row in rows)
    assert actions == [
        ("GET_ITEM", "200"),
        ("GET_ITEM", "300"),
        ("GET_ITEM", "301"),
        ("SIMULATE_MODIFY_SHARED_LINK", "200"),
    ]
    assert drive.shared_link_updates == []
    assert (tmp_path / "runtimeLogs" / "scriptLog-combined.log").exists()
