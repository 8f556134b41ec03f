"""Configuration loading and validation for the migration tools."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import fields
from pathlib import Path

import keyring
from keyring.errors import KeyringError

from dwmigrate.exceptions import ConfigError
from dwmigrate.models import MigrationConfig, SourceConfig

logger = logging.getLogger(__name__)

DOCUWARE_SERVICE_NAME = "dwmigrate-docuware"
SOURCE_SERVICE_NAME = "dwmigrate-source"

DEFAULT_CONFIG_PATH = Path("config/migration_config.json")
DEFAULT_SOURCE_CONFIG_PATH = Path("config/source_config.json")

# Environment variable -> MigrationConfig field
_MIGRATION_ENV = {
    "DW_PLATFORM_URL": "base_url",
    "DW_USERNAME": "username",
    "DW_ORGANIZATION_NAME": "organization",
    "SQLITE_DB_NAME": "db_path",
    "LOOP_PAUSE_MS": "loop_pause_ms",
}

# Environment variable -> SourceConfig field
_SOURCE_ENV = {
    "PG_HOST": "host",
    "PG_PORT": "port",
    "PG_USER": "user",
    "PG_DATABASE": "database",
    "SQL_FILTER_CREATED_DATE": "created_since",
    "CQ_PATH_PREFIX_DOCS": "docs_prefix",
    "CQ_PATH_PREFIX_D": "d_prefix",
}

_INT_FIELDS = {"loop_pause_ms", "port"}


def _read_json(config_path: Path) -> dict:
    if not config_path.exists():
        return {}
    try:
        with open(config_path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a JSON object")
    return data


def _merge(data: dict, dataclass_type: type, env_map: dict[str, str]) -> dict:
    """Keep recognised fields from *data*, then apply environment overrides."""
    field_names = {f.name for f in fields(dataclass_type)}
    kwargs = {k: v for k, v in data.items() if k in field_names}

    for env_name, field_name in env_map.items():
        value = os.environ.get(env_name)
        if value:
            kwargs[field_name] = value

    for name in _INT_FIELDS & kwargs.keys():
        try:
            kwargs[name] = int(kwargs[name])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{name} must be an integer, got {kwargs[name]!r}") from e
    return kwargs


def lookup_keyring_password(service: str, key: str) -> str | None:
    try:
        return keyring.get_password(service, key)
    except KeyringError:
        logger.debug("No usable keyring backend for %s", service, exc_info=True)
        return None


def get_docuware_password(username: str) -> str:
    """Get the DocuWare password: system keyring first, then DW_PASSWORD env var.

    Raises:
        ConfigError: If no password is found anywhere, with setup instructions.
    """
    password = lookup_keyring_password(DOCUWARE_SERVICE_NAME, username)
    if password:
        return password

    password = os.environ.get("DW_PASSWORD")
    if password:
        return password

    raise ConfigError(
        f"DocuWare password for {username!r} not found.\n"
        f"Set it with: dwmigrate config set-password {username}\n"
        "Or: export DW_PASSWORD=your-password"
    )


def get_source_password(user: str) -> str | None:
    """PostgreSQL password from keyring, then PG_PASSWORD (may be None for trust auth)."""
    return lookup_keyring_password(SOURCE_SERVICE_NAME, user) or os.environ.get("PG_PASSWORD")


def validate_migration_config(config: MigrationConfig) -> MigrationConfig:
    """Check required fields and ranges.

    Raises:
        ConfigError: On the first problem found.
    """
    missing = [
        name
        for name in ("base_url", "username", "organization")
        if not getattr(config, name)
    ]
    if missing:
        raise ConfigError(
            "Missing DocuWare settings: "
            + ", ".join(missing)
            + " (set them in the config file or via DW_PLATFORM_URL, "
            "DW_USERNAME, DW_ORGANIZATION_NAME)"
        )
    if not config.base_url.startswith(("http://", "https://")):
        raise ConfigError(f"base_url must be an http(s) URL, got {config.base_url!r}")
    if config.loop_pause_ms < 0:
        raise ConfigError(f"loop_pause_ms must be >= 0, got {config.loop_pause_ms}")
    return config


def load_migration_config(
    config_path: Path | None = None,
    require_password: bool = True,
) -> MigrationConfig:
    """Load the DocuWare upload configuration.

    Reads ``config/migration_config.json`` when *config_path* is ``None``
    (a missing file is fine), applies ``DW_*`` / ``SQLITE_DB_NAME`` /
    ``LOOP_PAUSE_MS`` environment overrides, then resolves the password.

    Args:
        config_path: Optional explicit path to the JSON config file.
        require_password: Resolve the password (keyring or ``DW_PASSWORD``).
            ``dry-run`` and ``config show`` pass False.

    Returns:
        A validated MigrationConfig.

    Raises:
        ConfigError: If required settings are missing or invalid.
    """
    data = _read_json(config_path or DEFAULT_CONFIG_PATH)
    kwargs = _merge(data, MigrationConfig, _MIGRATION_ENV)
    kwargs.setdefault("base_url", "")
    kwargs.setdefault("username", "")
    kwargs.setdefault("organization", "")

    config = validate_migration_config(MigrationConfig(**kwargs))

    if require_password and not config.password:
        config.password = get_docuware_password(config.username)
    return config


def load_source_config(config_path: Path | None = None) -> SourceConfig:
    """Load the PostgreSQL source configuration.

    Same layering as :func:`load_migration_config`: JSON file, then
    ``PG_*`` / ``SQL_FILTER_CREATED_DATE`` / ``CQ_PATH_PREFIX_*`` env vars,
    then keyring (service ``dwmigrate-source``) or ``PG_PASSWORD``.
    """
    data = _read_json(config_path or DEFAULT_SOURCE_CONFIG_PATH)
    config = SourceConfig(**_merge(data, SourceConfig, _SOURCE_ENV))

    if not config.document_cabinet_id:
        raise ConfigError("document_cabinet_id is required in the source config")
    if not config.email_cabinet_id:
        logger.warning("email_cabinet_id not set; .msg documents go to the document cabinet")
        config.email_cabinet_id = config.document_cabinet_id

    if config.password is None:
        config.password = get_source_password(config.user)
    return config
