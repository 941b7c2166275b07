"""
Module: ledger_kernel.models.transaction
Responsibility: ORM persistence for ledger transactions and their entry
    lines, plus the closed status enum and its transition table.
Architecture position: Kernel > Models.  May import from db/ and
    exceptions only.

Invariants enforced:
    - Status moves only along VALID_TRANSITIONS (validate_transition here,
      and the ORM listener in db/immutability.py for every flush).
    - A POSTED-or-later transaction owns >= 2 lines whose debit and credit
      totals are equal (checked by the validator before the row exists).
    - reference is unique per organization (uq_transaction_org_reference).
    - Entry lines are never updated or deleted.

Failure modes:
    - InvalidStateError on a transition outside the table.
    - IntegrityError on a duplicate (organization_id, reference).

Audit relevance:
    A transaction row plus its lines is the authoritative financial record.
    Corrections are new rows linked through reversal_of_id and metadata,
    never edits of historical ones.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.exceptions import InvalidStateError

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account


class TransactionStatus(str, Enum):
    """Lifecycle status of a ledger transaction."""

    DRAFT = "draft"
    POSTED = "posted"
    VOIDED = "voided"
    REVERSED = "reversed"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "TransactionStatus | str") -> bool:
        return TransactionStatus(target) in VALID_TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self]


VALID_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.DRAFT: frozenset({
        TransactionStatus.POSTED, TransactionStatus.CANCELLED,
    }),
    TransactionStatus.POSTED: frozenset({
        TransactionStatus.VOIDED, TransactionStatus.REVERSED,
    }),
    # Terminal states
    TransactionStatus.VOIDED: frozenset(),
    TransactionStatus.REVERSED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
}

# Statuses whose lines have moved account running balances
BALANCE_AFFECTING_STATUSES: frozenset[TransactionStatus] = frozenset({
    TransactionStatus.POSTED,
    TransactionStatus.REVERSED,
    TransactionStatus.VOIDED,
})


def validate_transition(
    transaction_id: UUID | str,
    current: TransactionStatus | str,
    requested: TransactionStatus | str,
) -> None:
    """
    Raise InvalidStateError unless current -> requested is in the table.

    Accepts either enum members or their stored string values.
    """
    current_status = TransactionStatus(current)
    requested_status = TransactionStatus(requested)
    if not current_status.can_transition_to(requested_status):
        raise InvalidStateError(
            transaction_id=str(transaction_id),
            current_status=current_status.value,
            requested_status=requested_status.value,
        )


class TransactionType(str, Enum):
    """Business kind of a ledger transaction."""

    JOURNAL = "journal"
    INVOICE = "invoice"
    BILL = "bill"
    PAYMENT = "payment"
    RECEIPT = "receipt"
    ADJUSTMENT = "adjustment"
    CREDIT_NOTE = "credit_note"
    DEBIT_NOTE = "debit_note"
    BANK_TRANSFER = "bank_transfer"
    DEPRECIATION = "depreciation"
    OPENING_BALANCE = "opening_balance"
    CLOSING_ENTRY = "closing_entry"


class EntryType(str, Enum):
    """Which side of the transaction a line is on."""

    DEBIT = "debit"
    CREDIT = "credit"

    def opposite(self) -> "EntryType":
        return EntryType.CREDIT if self is EntryType.DEBIT else EntryType.DEBIT


class Transaction(TrackedBase):
    """
    Ledger transaction header.

    Contract:
        Created either as DRAFT (no reference, no balance effect) or
        directly as POSTED by the posting engine together with its lines.
        After leaving DRAFT only status, transaction_metadata and the
        updated_* audit columns may change.

    Guarantees:
        - reference is assigned by the sequence allocator exactly once.
        - reversal_of_id is set only on the offsetting transaction.
    """

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        UniqueConstraint("organization_id", "reference", name="uq_transaction_org_reference"),
        Index("idx_transaction_org_date", "organization_id", "transaction_date"),
        Index("idx_transaction_org_status", "organization_id", "status"),
        Index("idx_transaction_reversal_of", "reversal_of_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    branch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    transaction_type: Mapped[TransactionType] = mapped_column(
        String(30),
        nullable=False,
    )

    # Accounting date; drives the numbering period
    transaction_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )

    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Allocated document number; null while DRAFT
    reference: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    status: Mapped[TransactionStatus] = mapped_column(
        String(12),
        default=TransactionStatus.DRAFT,
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
    )

    approved_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    # Source document link (e.g. "INVOICE" + invoice id, "REVERSAL" + original id)
    source_type: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    source_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_transactions.id"),
        nullable=True,
    )

    posted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Named transaction_metadata because "metadata" is reserved by SQLAlchemy
    transaction_metadata: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    entries: Mapped[list["LedgerEntry"]] = relationship(
        back_populates="transaction",
        cascade="all",
        lazy="selectin",
        order_by="LedgerEntry.line_no",
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.reference or self.id} status={self.status}>"

    @property
    def created_by(self) -> UUID:
        return self.created_by_id

    @property
    def is_draft(self) -> bool:
        return self.status == TransactionStatus.DRAFT

    @property
    def is_posted(self) -> bool:
        return self.status == TransactionStatus.POSTED

    @property
    def total_debits(self) -> Decimal:
        return sum(
            (e.amount for e in self.entries if e.entry_type == EntryType.DEBIT),
            Decimal("0"),
        )

    @property
    def total_credits(self) -> Decimal:
        return sum(
            (e.amount for e in self.entries if e.entry_type == EntryType.CREDIT),
            Decimal("0"),
        )

    @property
    def is_balanced(self) -> bool:
        """Read-side check; enforcement happens before the row is written."""
        return len(self.entries) >= 2 and self.total_debits == self.total_credits


class LedgerEntry(TrackedBase):
    """
    One debit or credit line of a transaction.

    Contract:
        Written in the same unit of work as its transaction.  Never updated,
        never deleted.  amount is non-negative; entry_type gives the side.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        Index("idx_entry_transaction", "transaction_id"),
        Index("idx_entry_account", "account_id"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_transactions.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    entry_type: Mapped[EntryType] = mapped_column(
        String(10),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
    )

    # Opaque; stored and propagated, never used for conversion
    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(38, 18),
        default=Decimal("1"),
        nullable=False,
    )

    amount_in_base: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    line_no: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    transaction: Mapped["Transaction"] = relationship(
        back_populates="entries",
    )

    account: Mapped["Account"] = relationship()

    def __repr__(self) -> str:
        return f"<LedgerEntry {self.line_no} {self.entry_type} {self.amount}>"
