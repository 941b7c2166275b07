#!/usr/bin/env python3
"""
Create the ledger schema and optionally load a chart of accounts.

The chart file is YAML:

    organization_id: 6f1c0b0e-2a7e-4c84-9d4e-1f3a9c2d7b10
    accounts:
      - code: "1100"
        name: Cash
      - code: "2100"
        name: Accounts Payable
        account_type: liability
        currency: USD
        is_system: true

account_type may be left out when the code follows the usual numeric ranges.

Usage:
    python3 scripts/init_ledger_db.py
    python3 scripts/init_ledger_db.py --config ledger.yaml
    python3 scripts/init_ledger_db.py --chart chart.yaml --actor <uuid>
    python3 scripts/init_ledger_db.py --drop          # drop tables first
"""

import argparse
import sys
from pathlib import Path
from uuid import UUID

import yaml

from ledger_config import get_active_config
from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_config,
    session_scope,
)
from ledger_kernel.db.immutability import register_immutability_listeners
from ledger_kernel.logging_config import configure_logging
from ledger_kernel.services.account_catalog import SqlAccountCatalog

SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


def load_chart(path: Path) -> tuple[UUID, list[dict]]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if "organization_id" not in data:
        raise ValueError(f"{path}: 'organization_id' is required")
    accounts = data.get("accounts") or []
    if not isinstance(accounts, list):
        raise ValueError(f"{path}: 'accounts' must be a list")
    return UUID(str(data["organization_id"])), accounts


def seed_chart(path: Path, actor_id: UUID) -> int:
    organization_id, accounts = load_chart(path)
    created = 0
    with session_scope(get_session_factory()) as session:
        catalog = SqlAccountCatalog(session)
        for row in accounts:
            code = str(row["code"])
            if catalog.get_by_code(organization_id, code) is not None:
                print(f"  skip {code:<8} already exists")
                continue
            info = catalog.create_account(
                organization_id=organization_id,
                code=code,
                name=row["name"],
                created_by_id=actor_id,
                account_type=row.get("account_type"),
                currency=row.get("currency"),
                description=row.get("description"),
                is_system=bool(row.get("is_system", False)),
            )
            print(f"  add  {info.code:<8} {info.name}  ({info.account_type.value})")
            created += 1
    return created


def main() -> int:
    parser = argparse.ArgumentParser(description="Initialize the ledger database")
    parser.add_argument("--config", type=Path, help="Ledger YAML config (default: LEDGER_CONFIG_PATH or bundled)")
    parser.add_argument("--chart", type=Path, help="Chart of accounts YAML to load")
    parser.add_argument("--actor", type=UUID, default=None, help="created_by_id for seeded accounts")
    parser.add_argument("--drop", action="store_true", help="Drop all ledger tables before creating them")
    args = parser.parse_args()

    config = get_active_config(args.config)
    configure_logging(level=config.logging.level)
    init_engine_from_config(config.database)
    register_immutability_listeners()

    if args.drop:
        drop_tables()
        print("Dropped ledger tables.")
    create_tables()
    print(f"Schema ready on {config.database.url.split('@')[-1]}")

    if args.chart is not None:
        actor_id = args.actor or SYSTEM_ACTOR_ID
        try:
            created = seed_chart(args.chart, actor_id)
        except (OSError, ValueError, KeyError) as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1
        print(f"Loaded {created} account(s) from {args.chart}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
