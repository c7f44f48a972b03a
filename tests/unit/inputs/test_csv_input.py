"""Unit tests for inputs/csv_input.py: item list parsing."""

import logging
from pathlib import Path

import pytest

from traverse_items.config import ConfigError, CsvInputConfig
from traverse_items.graph.models import ItemType
from traverse_items.inputs.csv_input import (
    CsvInputError,
    CsvItemRow,
    infer_item_type,
    normalize_row,
    read_csv_rows,
)

_CONFIG = CsvInputConfig(enabled=True, file_path="items.csv")


def _write(tmp_path: Path, text: str, encoding: str = "utf-8") -> Path:
    path = tmp_path / "items.csv"
    path.write_text(text, encoding=encoding)
    return path


class TestInferItemType:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("file", ItemType.FILE),
            ("folder", ItemType.FOLDER),
            ("web_link", ItemType.WEB_LINK),
            ("https://contoso.sharepoint.com/x", ItemType.WEB_LINK),
            ("/All Files/Docs/", ItemType.FOLDER),
            ("/All Files/Docs/a.txt", ItemType.FILE),
        ],
    )
    def test_inference(self, value: str, expected: ItemType) -> None:
        assert infer_item_type(value) is expected


class TestNormalizeRow:
    def test_primary_column_names(self) -> None:
        row = {"owner_login": "ada@contoso.com", "item_id": "200", "type": "file"}
        assert normalize_row(row, _CONFIG, 2) == CsvItemRow(
            owner_login="ada@contoso.com", item_id="200", item_type=ItemType.FILE, line_number=2
        )

    def test_export_column_aliases(self) -> None:
        row = {"Owner Login": " ada@contoso.com ", "Folder/File ID": "100", "Path": "/All Files/Docs/"}
        result = normalize_row(row, _CONFIG, 3)

        assert result is not None
        assert result.owner_login == "ada@contoso.com"
        assert result.item_type is ItemType.FOLDER

    def test_missing_columns_are_reported(self, caplog) -> None:
        row = {"owner_login": "ada@contoso.com", "item_id": " "}

        with caplog.at_level(logging.WARNING, logger="traverse_items.inputs.csv_input"):
            assert normalize_row(row, _CONFIG, 7) is None

        message = caplog.records[0].getMessage()
        assert "line:7" in message
        assert '"item_id" OR "Folder/File ID"' in message
        assert '"type" OR "path" OR "Path"' in message


class TestReadCsvRows:
    def test_reads_valid_rows_in_order(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "owner_login,item_id,type\n"
            "ada@contoso.com,200,file\n"
            "bob@contoso.com,100,folder\n",
        )

        rows = read_csv_rows(path, _CONFIG)

        assert [(r.owner_login, r.item_id, r.item_type, r.line_number) for r in rows] == [
            ("ada@contoso.com", "200", ItemType.FILE, 2),
            ("bob@contoso.com", "100", ItemType.FOLDER, 3),
        ]

    def test_invalid_rows_are_dropped(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "owner_login,item_id,type\n"
            ",200,file\n"
            "ada@contoso.com,201,file\n",
        )

        assert [r.item_id for r in read_csv_rows(path, _CONFIG)] == ["201"]

    def test_duplicates_kept_once_case_insensitively(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "owner_login,item_id,type\n"
            "ada@contoso.com,200,file\n"
            "ADA@contoso.com,200,file\n"
            "bob@contoso.com,200,file\n",
        )

        rows = read_csv_rows(path, _CONFIG)

        assert [(r.owner_login, r.line_number) for r in rows] == [
            ("ada@contoso.com", 2),
            ("bob@contoso.com", 4),
        ]

    def test_byte_order_mark_is_ignored(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "owner_login,item_id,type\nada@contoso.com,200,file\n", "utf-8-sig")

        assert len(read_csv_rows(path, _CONFIG)) == 1

    def test_custom_column_names(self, tmp_path: Path) -> None:
        config = CsvInputConfig(
            enabled=True,
            file_path="items.csv",
            owner_columns=("Owner",),
            item_id_columns=("Id",),
            type_columns=("Kind",),
        )
        path = _write(tmp_path, "Owner,Id,Kind\nada@contoso.com,300,web_link\n")

        rows = read_csv_rows(path, config)

        assert rows[0].item_type is ItemType.WEB_LINK

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(CsvInputError, match="Could not read CSV file"):
            read_csv_rows(tmp_path / "absent.csv", _CONFIG)

    def test_input_error_is_a_config_error(self) -> None:
        assert issubclass(CsvInputError, ConfigError)
