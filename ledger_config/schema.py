"""
Ledger configuration schema.

YAML files are parsed by the loader into these frozen dataclasses.  The
kernel never reads them directly: ``LedgerConfig.numbering`` is handed to
the PostingEngine as its number-format resolver, and ``LedgerConfig.database``
to ``init_engine_from_config``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from ledger_kernel.domain.numbering import NumberFormat, default_prefix, document_type_for

# ---------------------------------------------------------------------------
# Database / logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings consumed by ``ledger_kernel.db.engine``."""

    url: str = "sqlite:///ledger.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    sqlite_busy_timeout: float = 30.0


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NumberFormatOverride:
    """Partial format; unset fields fall through to the next level."""

    prefix: str | None = None
    include_year: bool | None = None
    include_month: bool | None = None
    padding: int | None = None

    def apply_to(self, base: NumberFormat) -> NumberFormat:
        return NumberFormat(
            prefix=self.prefix if self.prefix is not None else base.prefix,
            include_year=self.include_year if self.include_year is not None else base.include_year,
            include_month=(
                self.include_month if self.include_month is not None else base.include_month
            ),
            padding=self.padding if self.padding is not None else base.padding,
        )


@dataclass(frozen=True)
class ScopedNumbering:
    """Per-document-type overrides for one organization or branch."""

    formats: dict[str, NumberFormatOverride] = field(default_factory=dict)
    branches: dict[str, ScopedNumbering] = field(default_factory=dict)


@dataclass(frozen=True)
class NumberingConfig:
    """
    Number-format resolution.

    Resolution order for a document type: branch override, organization
    override, configured default, built-in prefix.  Each level only
    replaces the fields it sets.
    """

    defaults: dict[str, NumberFormatOverride] = field(default_factory=dict)
    organizations: dict[str, ScopedNumbering] = field(default_factory=dict)

    def format_for(
        self,
        organization_id: UUID,
        branch_id: UUID | None,
        document_type: str,
    ) -> NumberFormat:
        doc_type = document_type_for(document_type)
        number_format = NumberFormat(prefix=default_prefix(doc_type))

        layers = [self.defaults.get(doc_type)]
        org = self.organizations.get(str(organization_id))
        if org is not None:
            layers.append(org.formats.get(doc_type))
            if branch_id is not None:
                branch = org.branches.get(str(branch_id))
                if branch is not None:
                    layers.append(branch.formats.get(doc_type))

        for layer in layers:
            if layer is not None:
                number_format = layer.apply_to(number_format)
        return number_format


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfig:
    """Parsed configuration file."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    numbering: NumberingConfig = field(default_factory=NumberingConfig)
    checksum: str = ""
    source_path: str | None = None
