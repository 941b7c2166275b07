"""
Ledger Kernel - general-ledger posting core

Records financial transactions as balanced sets of debit/credit lines:
- Gap-tolerant, never-duplicated document numbering per scope
- Pure balance and account-reference validation
- Atomic posting with running account balances
- Append-only corrections via void and reversal
"""

__version__ = "0.1.0"
