"""Domain models for the ledger kernel."""

from ledger_kernel.models.account import (
    Account,
    AccountType,
    NormalBalance,
    normal_balance_for,
    suggested_account_type,
)
from ledger_kernel.models.document_sequence import DocumentSequence
from ledger_kernel.models.transaction import (
    BALANCE_AFFECTING_STATUSES,
    VALID_TRANSITIONS,
    EntryType,
    LedgerEntry,
    Transaction,
    TransactionStatus,
    TransactionType,
    validate_transition,
)

__all__ = [
    "Account",
    "AccountType",
    "NormalBalance",
    "normal_balance_for",
    "suggested_account_type",
    "DocumentSequence",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "EntryType",
    "LedgerEntry",
    "VALID_TRANSITIONS",
    "BALANCE_AFFECTING_STATUSES",
    "validate_transition",
]
