"""
Numbering -- pure formatting of document numbers and numbering scopes.

Document numbers read ``PREFIX[-YYYY][-MM]-NNNN``:

    INV-2024-0001        include_year, padding 4
    JRN-2024-03-000017   include_year, include_month, padding 6
    PAY-0042             neither

A numbering scope is (organization, branch, document type, year, month).
The same scope always renders to the same ``scope_key``, which is what the
document_sequences table keys its counters on.  Absent parts render as
``*`` so the key is never NULL.
"""

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from uuid import UUID

DEFAULT_PREFIXES: dict[str, str] = {
    "INVOICE": "INV",
    "BILL": "BILL",
    "JOURNAL": "JRN",
    "CREDIT_NOTE": "CN",
    "DEBIT_NOTE": "DN",
    "PAYMENT": "PAY",
    "RECEIPT": "REC",
    "ADJUSTMENT": "ADJ",
    "BANK_TRANSFER": "TRF",
    "DEPRECIATION": "DEP",
    "OPENING_BALANCE": "OB",
    "CLOSING_ENTRY": "CE",
    "CUSTOMER": "CUST",
    "VENDOR": "VEND",
    "TRANSACTION": "TXN",
}

FALLBACK_PREFIX = "DOC"


def document_type_for(value: Enum | str) -> str:
    """Canonical document type name: ``TransactionType.CREDIT_NOTE`` -> ``"CREDIT_NOTE"``."""
    if isinstance(value, Enum):
        return value.name
    return str(value).strip().upper()


def default_prefix(document_type: str) -> str:
    return DEFAULT_PREFIXES.get(document_type_for(document_type), FALLBACK_PREFIX)


@dataclass(frozen=True)
class NumberFormat:
    """How numbers for one document type are rendered and partitioned."""

    prefix: str
    include_year: bool = True
    include_month: bool = False
    padding: int = 4

    def __post_init__(self) -> None:
        if not self.prefix:
            raise ValueError("NumberFormat.prefix must not be empty")
        if self.padding < 1:
            raise ValueError(f"NumberFormat.padding must be >= 1, got {self.padding}")

    @classmethod
    def default_for(cls, document_type: str) -> "NumberFormat":
        return cls(prefix=default_prefix(document_type))


@dataclass(frozen=True)
class SequenceScope:
    """Partition key for a document counter (document type is passed separately)."""

    organization_id: UUID
    branch_id: UUID | None = None
    year: int | None = None
    month: int | None = None

    def __post_init__(self) -> None:
        if self.month is not None and not 1 <= self.month <= 12:
            raise ValueError(f"month must be 1..12, got {self.month}")

    @classmethod
    def for_date(
        cls,
        organization_id: UUID,
        branch_id: UUID | None,
        on_date: date,
        number_format: NumberFormat,
    ) -> "SequenceScope":
        """Fill year/month from ``on_date`` as the format requires."""
        return cls(
            organization_id=organization_id,
            branch_id=branch_id,
            year=on_date.year if number_format.include_year else None,
            month=on_date.month if number_format.include_month else None,
        )

    def without_branch(self) -> "SequenceScope":
        return replace(self, branch_id=None)

    def scope_key(self, document_type: str) -> str:
        return "|".join((
            str(self.organization_id),
            str(self.branch_id) if self.branch_id is not None else "*",
            document_type_for(document_type),
            str(self.year) if self.year is not None else "*",
            f"{self.month:02d}" if self.month is not None else "*",
        ))


def format_number(
    number: int,
    number_format: NumberFormat,
    year: int | None = None,
    month: int | None = None,
) -> str:
    """
    Render a counter value.

    Year and month appear only when the format includes them and a value
    is supplied; the numeric part is zero-padded but never truncated.
    """
    if number < 1:
        raise ValueError(f"document numbers start at 1, got {number}")

    parts = [number_format.prefix]
    if number_format.include_year and year is not None:
        parts.append(f"{year:04d}")
    if number_format.include_month and month is not None:
        parts.append(f"{month:02d}")
    parts.append(str(number).zfill(number_format.padding))
    return "-".join(parts)
