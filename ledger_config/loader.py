"""
Configuration loader (``ledger_config.loader``).

Responsibility
--------------
Reads one YAML file and parses it into ``ledger_config.schema`` frozen
dataclasses.  Runtime callers go through ``ledger_config.get_active_config()``.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong shape or value  -> ``ValueError`` naming the offending key.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
    NumberFormatOverride,
    NumberingConfig,
    ScopedNumbering,
)
from ledger_kernel.domain.numbering import document_type_for

DATABASE_URL_ENV = "LEDGER_DATABASE_URL"
CONFIG_PATH_ENV = "LEDGER_CONFIG_PATH"

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization; identical data, identical checksum."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def _typed(data: dict[str, Any], key: str, kind: type, path: str, default: Any) -> Any:
    if key not in data or data[key] is None:
        return default
    value = data[key]
    # bool is an int subclass; refuse it for numeric fields.
    if kind is not bool and isinstance(value, bool):
        raise ValueError(f"'{path}.{key}' must be {kind.__name__}, got bool")
    if kind is float and isinstance(value, int):
        return float(value)
    if not isinstance(value, kind):
        raise ValueError(f"'{path}.{key}' must be {kind.__name__}, got {type(value).__name__}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    defaults = DatabaseConfig()
    return DatabaseConfig(
        url=_typed(data, "url", str, "database", defaults.url),
        echo=_typed(data, "echo", bool, "database", defaults.echo),
        pool_size=_typed(data, "pool_size", int, "database", defaults.pool_size),
        max_overflow=_typed(data, "max_overflow", int, "database", defaults.max_overflow),
        pool_timeout=_typed(data, "pool_timeout", int, "database", defaults.pool_timeout),
        sqlite_busy_timeout=_typed(
            data, "sqlite_busy_timeout", float, "database", defaults.sqlite_busy_timeout
        ),
    )


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    level = str(_typed(data, "level", str, "logging", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"'logging.level' must be one of {sorted(_LOG_LEVELS)}, got {level!r}")
    return LoggingConfig(level=level)


def parse_format_override(data: Any, path: str) -> NumberFormatOverride:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a mapping, got {type(data).__name__}")
    unknown = set(data) - {"prefix", "include_year", "include_month", "padding"}
    if unknown:
        raise ValueError(f"'{path}' has unknown keys: {sorted(unknown)}")

    padding = _typed(data, "padding", int, path, None)
    if padding is not None and padding < 1:
        raise ValueError(f"'{path}.padding' must be >= 1, got {padding}")
    prefix = _typed(data, "prefix", str, path, None)
    if prefix is not None and not prefix.strip():
        raise ValueError(f"'{path}.prefix' must not be empty")

    return NumberFormatOverride(
        prefix=prefix,
        include_year=_typed(data, "include_year", bool, path, None),
        include_month=_typed(data, "include_month", bool, path, None),
        padding=padding,
    )


def _parse_formats(data: dict[str, Any], path: str) -> dict[str, NumberFormatOverride]:
    return {
        document_type_for(doc_type): parse_format_override(fmt, f"{path}.{doc_type}")
        for doc_type, fmt in data.items()
    }


def parse_scoped(data: Any, path: str) -> ScopedNumbering:
    """An organization or branch block: document types plus an optional ``branches`` map."""
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a mapping, got {type(data).__name__}")
    formats = {k: v for k, v in data.items() if k != "branches"}
    branches = _section(data, "branches")
    return ScopedNumbering(
        formats=_parse_formats(formats, path),
        branches={
            str(branch_id): parse_scoped(block, f"{path}.branches.{branch_id}")
            for branch_id, block in branches.items()
        },
    )


def parse_numbering(data: dict[str, Any]) -> NumberingConfig:
    return NumberingConfig(
        defaults=_parse_formats(_section(data, "defaults"), "numbering.defaults"),
        organizations={
            str(org_id): parse_scoped(block, f"numbering.organizations.{org_id}")
            for org_id, block in _section(data, "organizations").items()
        },
    )


def parse_config(data: dict[str, Any], source_path: str | None = None) -> LedgerConfig:
    """
    Build a ``LedgerConfig`` from an already-loaded mapping.

    ``LEDGER_DATABASE_URL`` in the environment replaces ``database.url``.
    The checksum covers the file contents, not the override.
    """
    database = parse_database(_section(data, "database"))
    env_url = os.environ.get(DATABASE_URL_ENV)
    if env_url:
        database = DatabaseConfig(
            url=env_url,
            echo=database.echo,
            pool_size=database.pool_size,
            max_overflow=database.max_overflow,
            pool_timeout=database.pool_timeout,
            sqlite_busy_timeout=database.sqlite_busy_timeout,
        )

    return LedgerConfig(
        database=database,
        logging=parse_logging(_section(data, "logging")),
        numbering=parse_numbering(_section(data, "numbering")),
        checksum=compute_checksum(data),
        source_path=source_path,
    )


def load_config(path: Path) -> LedgerConfig:
    return parse_config(load_yaml_file(path), source_path=str(path))
