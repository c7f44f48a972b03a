"""Item list input for file-driven traversal.

Each row names an owner login, an item id and either an item type or a path
from which the type is inferred. Several spellings of each column are
accepted, matching common tenant export formats.
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from traverse_items.config import ConfigError, CsvInputConfig
from traverse_items.graph.models import ItemType

logger = logging.getLogger(__name__)


class CsvInputError(ConfigError):
    """Raised when the input file cannot be read or parsed."""


@dataclass(frozen=True)
class CsvItemRow:
    owner_login: str
    item_id: str
    item_type: ItemType
    line_number: int


def infer_item_type(type_or_path: str) -> ItemType:
    """Resolve an explicit type, or infer one from a path or URL.

    ``http...`` values are web-links, values ending in ``/`` are folders, and
    anything else is a file.
    """
    value = type_or_path.strip()
    for item_type in ItemType:
        if value == item_type.value:
            return item_type
    if value.startswith("http"):
        return ItemType.WEB_LINK
    if value.endswith("/"):
        return ItemType.FOLDER
    return ItemType.FILE


def _first_value(row: Mapping[str, str | None], columns: Sequence[str]) -> str:
    for column in columns:
        value = row.get(column)
        if value and value.strip():
            return value.strip()
    return ""


def normalize_row(
    row: Mapping[str, str | None], config: CsvInputConfig, line_number: int
) -> CsvItemRow | None:
    """Validate one row and map it to a CsvItemRow.

    Returns:
        The normalized row, or ``None`` (with a warning logged) when any
        required column is missing or empty.
    """
    owner_login = _first_value(row, config.owner_columns)
    item_id = _first_value(row, config.item_id_columns)
    type_or_path = _first_value(row, config.type_columns)

    missing = [
        " OR ".join(f'"{c}"' for c in columns)
        for value, columns in (
            (owner_login, config.owner_columns),
            (item_id, config.item_id_columns),
            (type_or_path, config.type_columns),
        )
        if not value
    ]
    if missing:
        logger.warning(
            "[normalize_row] row failed validation; line:%d;missing:%s",
            line_number,
            ", ".join(missing),
        )
        return None

    return CsvItemRow(
        owner_login=owner_login,
        item_id=item_id,
        item_type=infer_item_type(type_or_path),
        line_number=line_number,
    )


def read_csv_rows(path: str | Path, config: CsvInputConfig) -> list[CsvItemRow]:
    """Parse the input file into validated rows.

    Empty lines are skipped. Rows failing validation are logged and dropped;
    repeated (owner, item) pairs are kept once.

    Args:
        path: CSV file with a header row.
        config: Column aliases.

    Returns:
        Valid rows in file order.

    Raises:
        CsvInputError: If the file cannot be read or parsed.
    """
    csv_path = Path(path)
    try:
        with csv_path.open(newline="", encoding="utf-8-sig") as handle:
            raw_rows = list(csv.DictReader(handle))
    except (OSError, csv.Error) as exc:
        raise CsvInputError(f"Could not read CSV file {csv_path}: {exc}") from exc

    rows: list[CsvItemRow] = []
    seen: set[tuple[str, str]] = set()
    # Line 1 is the header
    for line_number, raw in enumerate(raw_rows, start=2):
        row = normalize_row(raw, config, line_number)
        if row is None:
            continue
        key = (row.owner_login.lower(), row.item_id)
        if key in seen:
            logger.debug(
                "[read_csv_rows] duplicate row skipped; line:%d;item_id:%s", line_number, row.item_id
            )
            continue
        seen.add(key)
        rows.append(row)

    logger.info(
        "[read_csv_rows] parsed input file; path:%s;row_count:%d;valid_rows:%d",
        csv_path,
        len(raw_rows),
        len(rows),
    )
    return rows
