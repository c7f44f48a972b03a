"""CSV audit report of every visited, skipped or modified item."""

from __future__ import annotations

import csv
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from traverse_items.graph.models import Item

if TYPE_CHECKING:
    from traverse_items.config import AppConfig

logger = logging.getLogger(__name__)

REPORT_FILENAME_FORMAT = "%m-%d-%Y_%H-%M_Results.csv"

AUDIT_COLUMNS: tuple[str, ...] = (
    "TIMESTAMP",
    "ACTION",
    "EXECUTION_ID",
    "ITEM_ID",
    "ITEM_NAME",
    "ITEM_TYPE",
    "OWNED_BY_EMAIL",
    "OWNED_BY_ID",
    "PATH_BY_NAME",
    "PATH_BY_ID",
    "ITEM_CREATED_AT",
    "ITEM_MODIFIED_AT",
    "ITEM_SIZE_BYTES",
    "ITEM_LINK",
    "LINK_ACCESS_LEVEL",
    "DETAILS",
)


class AuditReport:
    """Appends one CSV row per audit event.

    The header is written when the report is created. Metadata columns, when
    configured, are appended after the fixed columns and filled from the
    item's flattened metadata.
    """

    def __init__(self, path: str | Path, metadata_columns: Sequence[str] = ()) -> None:
        self._path = Path(path)
        self._metadata_columns = tuple(metadata_columns)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._path.open("w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._file, quoting=csv.QUOTE_ALL)
        self._writer.writerow(AUDIT_COLUMNS + self._metadata_columns)
        self.row_count = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._file.closed

    def record(self, action: str, item: Item | None, message: str, execution_id: str) -> None:
        """Write one audit row.

        Args:
            action: Audit action tag, e.g. ``GET_ITEM`` or ``SKIP_ITEM``.
            item: The item concerned; ``None`` leaves item columns blank.
            message: Free-text detail.
            execution_id: Correlation id of the recording task.

        Raises:
            ValueError: If the report has been closed.
        """
        timestamp = datetime.now(UTC).isoformat()
        self._writer.writerow(
            [timestamp, action.upper(), execution_id]
            + self._item_columns(item)
            + [message]
            + self._metadata_values(item)
        )
        self.row_count += 1

    @staticmethod
    def _item_columns(item: Item | None) -> list[Any]:
        if item is None:
            return [""] * 12
        link = item.shared_link
        return [
            item.id,
            item.name,
            item.type.value,
            item.owned_by.login,
            item.owned_by.id,
            item.path_by_name,
            item.path_by_id,
            item.created_at,
            item.modified_at,
            item.size,
            link.url if link else "",
            link.access if link else "",
        ]

    def _metadata_values(self, item: Item | None) -> list[Any]:
        metadata = item.metadata if item is not None and item.metadata else {}
        return [metadata.get(column, "") for column in self._metadata_columns]

    def flush(self) -> None:
        self._file.flush()

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()
            logger.info(
                "[close] audit report closed; path:%s;row_count:%d", self._path, self.row_count
            )

    def __enter__(self) -> AuditReport:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def audit_report_from_config(config: AppConfig, now: datetime | None = None) -> AuditReport:
    """Create the run's audit report under the configured directory.

    Args:
        config: Application configuration instance.
        now: Timestamp for the file name; defaults to the current local time.

    Returns:
        An open AuditReport.
    """
    stamp = (now or datetime.now()).strftime(REPORT_FILENAME_FORMAT)
    return AuditReport(
        Path(config.audit_report.directory) / stamp,
        metadata_columns=config.audit_report.metadata_columns,
    )
