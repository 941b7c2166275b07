"""Database layer for the ledger kernel."""
