#!/usr/bin/env python3
"""
Compare stored account balances with the sum of their ledger lines.

Prints a per-account table for one organization and exits non-zero if any
running balance disagrees with its lines.

Usage:
    python3 scripts/verify_balances.py <organization_id>
    python3 scripts/verify_balances.py <organization_id> --config ledger.yaml
"""

import argparse
import sys
from decimal import Decimal
from pathlib import Path
from uuid import UUID

from ledger_config import get_active_config
from ledger_kernel.db.engine import get_session_factory, init_engine_from_config, session_scope
from ledger_kernel.selectors.ledger_selector import LedgerSelector

W = 78


def _fmt(v: Decimal) -> str:
    return f"{v:,.2f}"


def main() -> int:
    parser = argparse.ArgumentParser(description="Verify running account balances")
    parser.add_argument("organization_id", type=UUID)
    parser.add_argument("--config", type=Path, help="Ledger YAML config")
    args = parser.parse_args()

    config = get_active_config(args.config)
    init_engine_from_config(config.database)

    with session_scope(get_session_factory()) as session:
        selector = LedgerSelector(session)
        summaries = selector.balances_by_account(args.organization_id)
        discrepancies = {d.account_id: d for d in selector.verify_running_balances(args.organization_id)}

    print("=" * W)
    print(f"  {'CODE':<8} {'NAME':<28} {'DEBITS':>12} {'CREDITS':>12} {'NET':>12}")
    print("-" * W)
    for s in summaries:
        flag = "  !!" if s.account_id in discrepancies else ""
        print(
            f"  {s.account_code:<8} {s.account_name[:28]:<28} "
            f"{_fmt(s.debit_total):>12} {_fmt(s.credit_total):>12} {_fmt(s.net):>12}{flag}"
        )
    print("=" * W)

    if not discrepancies:
        print("  All running balances match their ledger lines.")
        return 0

    for d in discrepancies.values():
        print(
            f"  {d.account_code}: stored {_fmt(d.stored_balance)} "
            f"computed {_fmt(d.computed_balance)} difference {_fmt(d.difference)}"
        )
    return 1


if __name__ == "__main__":
    sys.exit(main())
