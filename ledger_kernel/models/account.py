"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the per-organization chart of accounts,
    the target of every ledger entry line.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - code is unique within an organization (uq_account_org_code).
    - balance is written only by the posting engine's atomic increment;
      ORM writes to it are rejected by db/immutability.py.
    - System accounts and accounts referenced by any ledger entry cannot
      be deleted.

Audit relevance:
    account_type fixes the normal balance side, which fixes the sign of
    every running-balance movement.  It is locked once the account has
    entries.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    COST_OF_SALES = "cost_of_sales"
    EXPENSE = "expense"


class NormalBalance(str, Enum):
    """Normal balance side for an account."""

    DEBIT = "debit"
    CREDIT = "credit"


DEBIT_NORMAL_TYPES: frozenset[AccountType] = frozenset({
    AccountType.ASSET,
    AccountType.COST_OF_SALES,
    AccountType.EXPENSE,
})


def normal_balance_for(account_type: AccountType | str) -> NormalBalance:
    """Debit-normal for assets, cost of sales and expenses; credit otherwise."""
    if AccountType(account_type) in DEBIT_NORMAL_TYPES:
        return NormalBalance.DEBIT
    return NormalBalance.CREDIT


def suggested_account_type(code: str) -> AccountType | None:
    """
    Suggest an account type from a conventional numeric account code.

    1xxx asset, 2xxx liability, 3xxx equity, 4xxx revenue, 5xxx cost of
    sales, 6xxx and above expense.  Returns None for non-numeric codes.
    """
    digits = code.strip()
    if not digits or not digits[0].isdigit():
        return None
    leading = int(digits[0])
    if leading == 1:
        return AccountType.ASSET
    if leading == 2:
        return AccountType.LIABILITY
    if leading == 3:
        return AccountType.EQUITY
    if leading == 4:
        return AccountType.REVENUE
    if leading == 5:
        return AccountType.COST_OF_SALES
    if leading >= 6:
        return AccountType.EXPENSE
    return None


class Account(TrackedBase):
    """
    Chart of Accounts entry for one organization.

    Contract:
        (organization_id, code) is unique.  Once referenced by a ledger
        entry, account_type, code and organization_id MUST NOT change.

    Guarantees:
        - balance starts at zero and moves only through posted entries.
        - normal_balance is derived from account_type, never stored.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_account_org_code"),
        Index("idx_account_org_type", "organization_id", "account_type"),
        Index("idx_account_org_active", "organization_id", "is_active"),
    )

    organization_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    account_type: Mapped[AccountType] = mapped_column(
        String(20),
        nullable=False,
    )

    # Null means any currency may be posted
    currency: Mapped[str | None] = mapped_column(
        String(3),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Seeded from the account template catalog; never deletable
    is_system: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Running balance, signed by normal side
    balance: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        default=Decimal("0"),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def normal_balance(self) -> NormalBalance:
        return normal_balance_for(self.account_type)

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    @property
    def is_credit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.CREDIT
