"""Selectors for the ledger kernel (read side)."""

from ledger_kernel.selectors.ledger_selector import (
    AccountActivitySummary,
    ActivityLine,
    BalanceDiscrepancy,
    LedgerSelector,
)
from ledger_kernel.selectors.transaction_selector import (
    TransactionFilters,
    TransactionPage,
    TransactionSelector,
)

__all__ = [
    "TransactionSelector",
    "TransactionFilters",
    "TransactionPage",
    "LedgerSelector",
    "ActivityLine",
    "AccountActivitySummary",
    "BalanceDiscrepancy",
]
