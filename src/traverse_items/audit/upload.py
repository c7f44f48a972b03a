"""Uploads the finished audit report back to the tenant."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from traverse_items.graph.client import GraphClient, graph_client_from_config
from traverse_items.graph.models import ROOT_FOLDER_ID

if TYPE_CHECKING:
    from traverse_items.config import AppConfig

logger = logging.getLogger(__name__)

# Graph accepts simple uploads up to 4 MiB
SIMPLE_UPLOAD_LIMIT = 4 * 1024 * 1024
# Upload session chunks must be a multiple of 320 KiB
UPLOAD_CHUNK_SIZE = 12 * 320 * 1024
CONFLICT_BEHAVIOR = "rename"


class ReportUploadError(Exception):
    """Raised when an upload session returns no upload URL."""


class ReportUploader:
    """Puts a local file into a folder of one user's drive."""

    def __init__(self, graph_client: GraphClient, user_id: str, folder_id: str) -> None:
        self._graph = graph_client
        self._user_id = user_id
        self._folder_id = folder_id

    def _target(self, file_name: str) -> str:
        if self._folder_id == ROOT_FOLDER_ID:
            parent = f"/users/{self._user_id}/drive/root"
        else:
            parent = f"/users/{self._user_id}/drive/items/{self._folder_id}"
        return f"{parent}:/{quote(file_name)}:"

    def upload(self, path: str | Path) -> dict[str, Any]:
        """Upload a file, switching to an upload session above 4 MiB.

        Args:
            path: Local file to upload; its name is kept.

        Returns:
            The created driveItem as returned by Graph.

        Raises:
            GraphAuthError: If token acquisition fails.
            GraphApiError: If any upload request fails.
            ReportUploadError: If the upload session cannot be created.
        """
        file_path = Path(path)
        content = file_path.read_bytes()
        target = self._target(file_path.name)

        if len(content) <= SIMPLE_UPLOAD_LIMIT:
            created = self._graph.put_content(f"{target}/content", content)
            logger.info(
                "[upload] uploaded report; file:%s;size:%d;item_id:%s",
                file_path.name,
                len(content),
                created.get("id", ""),
            )
            return created

        session = self._graph.post(
            f"{target}/createUploadSession",
            {"item": {"@microsoft.graph.conflictBehavior": CONFLICT_BEHAVIOR}},
        )
        upload_url = session.get("uploadUrl")
        if not upload_url:
            raise ReportUploadError(f"No upload URL returned for {file_path.name}")

        total = len(content)
        result: dict[str, Any] = {}
        for start in range(0, total, UPLOAD_CHUNK_SIZE):
            chunk = content[start : start + UPLOAD_CHUNK_SIZE]
            result = self._graph.upload_chunk(upload_url, chunk, start, total)
            logger.debug(
                "[upload] uploaded chunk; file:%s;start:%d;length:%d;total:%d",
                file_path.name,
                start,
                len(chunk),
                total,
            )
        logger.info(
            "[upload] uploaded report in chunks; file:%s;size:%d;item_id:%s",
            file_path.name,
            total,
            result.get("id", ""),
        )
        return result


def report_uploader_from_config(config: AppConfig) -> ReportUploader:
    """Construct a ReportUploader for the configured upload folder."""
    return ReportUploader(
        graph_client=graph_client_from_config(config),
        user_id=config.audit_report.upload_user,
        folder_id=config.audit_report.upload_folder_id,
    )
