from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..masks.registry import VARIANT_MASKS

"""Config loader.

Responsibilities:
- Load YAML config (config/import.yml by default)
- Validate it against the bundled JSON schema (import_schema.json)
- Apply defaults for everything that is optional
"""

__all__ = [
    "ConfigError",
    "DatabaseConfig",
    "LimitsConfig",
    "ImportConfig",
    "SCHEMA_PATH",
    "DEFAULT_CONFIG_PATH",
    "load_config",
]

SCHEMA_PATH = Path(__file__).with_name("import_schema.json")
DEFAULT_CONFIG_PATH = Path("config/import.yml")

DEFAULT_MAX_FILE_BYTES = 5 * 1024 * 1024
DEFAULT_MAX_ROWS = 5000


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    """Fallback connection settings; environment variables take precedence."""
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None
    payments_table: str = "payments"


@dataclass(frozen=True)
class LimitsConfig:
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    max_rows: int = DEFAULT_MAX_ROWS


@dataclass(frozen=True)
class ImportConfig:
    default_variant: str = "generic"
    variants: dict[str, dict[str, str]] = field(default_factory=dict)  # variant -> field -> mask id
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    null_sentinels: tuple[str, ...] = ()
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing / not JSON, or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config validation failed: top level must be a mapping")

    _validate_config_schema(data)

    variants = {name: dict(masks or {}) for name, masks in (data.get("variants") or {}).items()}
    default_variant = data.get("default_variant", "generic")
    if default_variant not in variants and default_variant not in VARIANT_MASKS:
        raise ConfigError(f"default_variant '{default_variant}' is not defined under variants")

    limits_raw = data.get("limits", {})
    limits = LimitsConfig(
        max_file_bytes=limits_raw.get("max_file_bytes", DEFAULT_MAX_FILE_BYTES),
        max_rows=limits_raw.get("max_rows", DEFAULT_MAX_ROWS),
    )
    db_raw = data.get("database", {})
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
        payments_table=db_raw.get("payments_table", "payments"),
    )
    return ImportConfig(
        default_variant=default_variant,
        variants=variants,
        limits=limits,
        null_sentinels=tuple(s.strip().upper() for s in data.get("null_sentinels", [])),
        database=db,
    )
