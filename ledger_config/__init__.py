"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    ``get_active_config()`` is the runtime way to obtain configuration.
    It reads one YAML file (PyYAML ``safe_load``), applies environment
    overrides and returns a frozen ``LedgerConfig``.

Architecture position:
    Configuration.  This package sits above ``ledger_kernel``: it may
    import kernel value types (``NumberFormat``), the kernel never imports
    from here.  Callers hand ``config.database`` to
    ``init_engine_from_config`` and ``config.numbering`` to
    ``PostingEngine(number_formats=...)``.

File selection:
    explicit ``path`` argument, else ``LEDGER_CONFIG_PATH``, else the
    bundled ``sets/default.yaml``.

Failure modes:
    - ``FileNotFoundError`` -- the selected file does not exist.
    - ``ValueError`` -- a section or value has the wrong shape; the
      message names the key.

Audit relevance:
    Every successful call emits a ``ledger_config_loaded`` log entry with
    the source path and the SHA-256 checksum of the file contents.
"""

from __future__ import annotations

import os
from pathlib import Path

from ledger_config.loader import CONFIG_PATH_ENV, compute_checksum, load_config
from ledger_config.schema import (
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
    NumberFormatOverride,
    NumberingConfig,
    ScopedNumbering,
)
from ledger_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def resolve_config_path(path: Path | str | None = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return _DEFAULT_CONFIG_FILE


def get_active_config(path: Path | str | None = None) -> LedgerConfig:
    """
    Load and return the active configuration.

    Not cached: callers hold the returned object for as long as they need it.

    Raises:
        FileNotFoundError: If the selected file does not exist.
        ValueError: If validation fails.
    """
    config_path = resolve_config_path(path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Ledger configuration not found: {config_path}")

    config = load_config(config_path)

    _logger.info(
        "ledger_config_loaded",
        extra={
            "config_path": str(config_path),
            "checksum": config.checksum,
            "database_backend": config.database.url.split(":", 1)[0],
            "numbering_defaults": len(config.numbering.defaults),
            "numbering_organizations": len(config.numbering.organizations),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "resolve_config_path",
    "compute_checksum",
    "LedgerConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "NumberingConfig",
    "NumberFormatOverride",
    "ScopedNumbering",
]
