"""Application configuration loaded from a JSON file and environment variables."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from traverse_items.graph.models import DEFAULT_ITEM_FIELDS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.json"

MODE_CSV = "csv"
MODE_ALLOWLIST = "allowlist"
MODE_DENYLIST = "denylist"
MODE_ALL_USERS = "all"

DEFAULT_OWNER_COLUMNS = ("owner_login", "Owner Login")
DEFAULT_ITEM_ID_COLUMNS = ("item_id", "Folder/File ID")
DEFAULT_TYPE_COLUMNS = ("type", "path", "Path")


class ConfigError(Exception):
    """Raised when the configuration is missing, unreadable or inconsistent."""


@dataclass(frozen=True)
class AllowlistEntry:
    """One allow-listed owner and the folders to start traversal from."""

    owner_id: str
    folder_ids: tuple[str, ...]
    follow_all_child_items: bool = True


@dataclass(frozen=True)
class TraversalPolicy:
    """Run-scoped, read-only rules deciding what the traversal visits."""

    allowlist_enabled: bool = False
    allowlist: tuple[AllowlistEntry, ...] = ()
    denylist_enabled: bool = False
    denied_users: frozenset[str] = frozenset()
    denied_folders: frozenset[str] = frozenset()
    skip_non_owned: bool = True
    audit_non_owned: bool = False
    audit_traversal: bool = True
    modify_data: bool = False

    def user_denied(self, user_id: str) -> bool:
        return self.denylist_enabled and user_id in self.denied_users

    def folder_denied(self, folder_id: str) -> bool:
        return self.denylist_enabled and folder_id in self.denied_folders


@dataclass(frozen=True)
class CsvInputConfig:
    """File-driven traversal input and its accepted column-name aliases."""

    enabled: bool = False
    file_path: str = ""
    owner_columns: tuple[str, ...] = DEFAULT_OWNER_COLUMNS
    item_id_columns: tuple[str, ...] = DEFAULT_ITEM_ID_COLUMNS
    type_columns: tuple[str, ...] = DEFAULT_TYPE_COLUMNS


@dataclass(frozen=True)
class AuditReportConfig:
    """Where the audit report is written and whether it is uploaded at run end."""

    directory: str = "auditLogs"
    upload: bool = False
    upload_folder_id: str = ""
    upload_user: str = ""
    metadata_columns: tuple[str, ...] = ()


@dataclass(frozen=True)
class AppConfig:
    """Centralized application configuration.

    Credentials have no defaults; everything else mirrors the defaults of
    the shipped ``config.example.json``.
    """

    # Required, no defaults; parse_config fails if missing
    client_id: str
    client_secret: str
    tenant_id: str

    policy: TraversalPolicy = field(default_factory=TraversalPolicy)
    csv: CsvInputConfig = field(default_factory=CsvInputConfig)
    audit_report: AuditReportConfig = field(default_factory=AuditReportConfig)

    max_queue_tasks_per_second: int = 16
    max_concurrent_users: int = 5
    item_fields: tuple[str, ...] = DEFAULT_ITEM_FIELDS
    page_size: int = 1000
    max_retries: int = 5
    retry_backoff_seconds: float = 1.0

    log_level: str = "info"
    log_directory: str = "runtimeLogs"

    action: str = "log_item"
    action_options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def mode(self) -> str:
        """Which user enumeration drives the run."""
        if self.csv.enabled:
            return MODE_CSV
        if self.policy.allowlist_enabled:
            return MODE_ALLOWLIST
        if self.policy.denylist_enabled:
            return MODE_DENYLIST
        return MODE_ALL_USERS


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f'Configuration section "{key}" must be an object')
    return value


def _string_tuple(values: Any, key: str) -> tuple[str, ...]:
    if values is None:
        return ()
    if not isinstance(values, list):
        raise ConfigError(f'Configuration value "{key}" must be a list')
    return tuple(str(v) for v in values)


def _positive_int(raw: Mapping[str, Any], key: str, default: int) -> int:
    value = raw.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ConfigError(f'Configuration value "{key}" must be a positive integer')
    return value


def _parse_allowlist(section: Mapping[str, Any]) -> tuple[AllowlistEntry, ...]:
    entries: list[AllowlistEntry] = []
    for raw_entry in section.get("items") or []:
        owner_id = raw_entry.get("ownerID")
        if not owner_id:
            raise ConfigError('Every allowlist item needs an "ownerID"')
        entries.append(
            AllowlistEntry(
                owner_id=str(owner_id),
                folder_ids=_string_tuple(raw_entry.get("folderIDs", ["0"]), "folderIDs"),
                follow_all_child_items=bool(raw_entry.get("followAllChildItems", True)),
            )
        )
    return tuple(entries)


def parse_config(raw: Mapping[str, Any], environ: Mapping[str, str] | None = None) -> AppConfig:
    """Build an AppConfig from a decoded config document.

    Environment variables override the credentials in ``appSettings``:
        TI_CLIENT_ID: Azure AD application (client) ID.
        TI_CLIENT_SECRET: Azure AD application client secret.
        TI_TENANT_ID: Azure AD tenant ID.

    Args:
        raw: Decoded JSON configuration.
        environ: Environment mapping; defaults to ``os.environ``.

    Returns:
        Validated AppConfig instance.

    Raises:
        ConfigError: If credentials are missing, values have the wrong shape,
            or mutually exclusive features are enabled together.
    """
    env = os.environ if environ is None else environ
    app_settings = _section(raw, "appSettings")
    client_id = env.get("TI_CLIENT_ID") or app_settings.get("clientID", "")
    client_secret = env.get("TI_CLIENT_SECRET") or app_settings.get("clientSecret", "")
    tenant_id = env.get("TI_TENANT_ID") or app_settings.get("tenantID", "")
    missing = [
        name
        for name, value in (
            ("clientID", client_id),
            ("clientSecret", client_secret),
            ("tenantID", tenant_id),
        )
        if not value
    ]
    if missing:
        raise ConfigError(f"Missing application credentials: {', '.join(missing)}")

    csv_section = _section(raw, "csv")
    allowlist_section = _section(raw, "allowlist")
    denylist_section = _section(raw, "denylist")
    non_owned = _section(raw, "nonOwnedItems")
    report_section = _section(raw, "auditReport")

    csv_enabled = bool(csv_section.get("enabled", False))
    allowlist_enabled = bool(allowlist_section.get("enabled", False))
    denylist_enabled = bool(denylist_section.get("enabled", False))

    if csv_enabled and (allowlist_enabled or denylist_enabled):
        raise ConfigError(
            'The "allowlist" and "denylist" features cannot be used while the "csv" feature'
            " is enabled"
        )
    if csv_enabled and not csv_section.get("filePath"):
        raise ConfigError('The "csv" feature requires "filePath"')

    policy = TraversalPolicy(
        allowlist_enabled=allowlist_enabled,
        allowlist=_parse_allowlist(allowlist_section) if allowlist_enabled else (),
        denylist_enabled=denylist_enabled,
        denied_users=frozenset(_string_tuple(denylist_section.get("users"), "users")),
        denied_folders=frozenset(_string_tuple(denylist_section.get("folders"), "folders")),
        skip_non_owned=bool(non_owned.get("skip", True)),
        audit_non_owned=bool(non_owned.get("audit", False)),
        audit_traversal=bool(raw.get("auditTraversal", True)),
        modify_data=bool(raw.get("modifyData", False)),
    )
    if allowlist_enabled and denylist_enabled and policy.denied_users:
        logger.warning(
            "[parse_config] denylist users are ignored when allowlist is enabled;"
            " denied_user_count:%d",
            len(policy.denied_users),
        )

    csv_config = CsvInputConfig(
        enabled=csv_enabled,
        file_path=str(csv_section.get("filePath", "")),
        owner_columns=_string_tuple(csv_section.get("ownerColumns"), "ownerColumns")
        or DEFAULT_OWNER_COLUMNS,
        item_id_columns=_string_tuple(csv_section.get("itemIdColumns"), "itemIdColumns")
        or DEFAULT_ITEM_ID_COLUMNS,
        type_columns=_string_tuple(csv_section.get("typeColumns"), "typeColumns")
        or DEFAULT_TYPE_COLUMNS,
    )

    audit_report = AuditReportConfig(
        directory=str(report_section.get("directory", "auditLogs")),
        upload=bool(report_section.get("uploadToTenant", False)),
        upload_folder_id=str(report_section.get("uploadFolderId", "")),
        upload_user=str(report_section.get("uploadUser", "")),
        metadata_columns=_string_tuple(report_section.get("metadataColumns"), "metadataColumns"),
    )
    if audit_report.upload and not (audit_report.upload_folder_id and audit_report.upload_user):
        raise ConfigError('"uploadToTenant" requires "uploadFolderId" and "uploadUser"')

    action_options = raw.get("userDefinedConfigs") or {}
    if not isinstance(action_options, Mapping):
        raise ConfigError('Configuration value "userDefinedConfigs" must be an object')

    try:
        backoff = float(raw.get("retryBackoffSeconds", 1.0))
    except (TypeError, ValueError) as exc:
        raise ConfigError('Configuration value "retryBackoffSeconds" must be a number') from exc

    return AppConfig(
        client_id=client_id,
        client_secret=client_secret,
        tenant_id=tenant_id,
        policy=policy,
        csv=csv_config,
        audit_report=audit_report,
        max_queue_tasks_per_second=_positive_int(raw, "maxQueueTasksPerSecond", 16),
        max_concurrent_users=_positive_int(raw, "maxConcurrentUsers", 5),
        item_fields=_string_tuple(raw.get("itemFields"), "itemFields") or DEFAULT_ITEM_FIELDS,
        page_size=_positive_int(raw, "pageSize", 1000),
        max_retries=_positive_int(raw, "maxRetries", 5),
        retry_backoff_seconds=max(0.0, backoff),
        log_level=str(raw.get("logLevel", "info")),
        log_directory=str(raw.get("logDirectory", "runtimeLogs")),
        action=str(raw.get("action", "log_item")),
        action_options=dict(action_options),
    )


def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    """Read and validate the JSON configuration file.

    Args:
        path: Path to the configuration file.

    Returns:
        Configured AppConfig instance.

    Raises:
        ConfigError: If the file cannot be read, is not valid JSON, or fails
            validation.
    """
    config_path = Path(path)
    try:
        content = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not read configuration file {config_path}: {exc}") from exc
    try:
        raw = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Could not parse configuration file {config_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a JSON object")
    return parse_config(raw)
