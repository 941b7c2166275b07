"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only account activity, per-account totals and the
    running-balance integrity check.
Architecture position: Kernel > Selectors.

Which lines count:
    Lines of POSTED, REVERSED and VOIDED transactions.  Those are exactly
    the lines that moved accounts.balance when they were posted; a reversal
    offsets them with its own POSTED lines, and voiding leaves balances
    untouched.  DRAFT and CANCELLED lines never moved a balance.

Signed amounts:
    Positive on the account's normal side (debit for asset, cost of sales
    and expense; credit for liability, equity and revenue).
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from ledger_kernel.models.account import Account, AccountType, NormalBalance, normal_balance_for
from ledger_kernel.models.transaction import (
    BALANCE_AFFECTING_STATUSES,
    EntryType,
    LedgerEntry,
    Transaction,
    TransactionStatus,
)
from ledger_kernel.selectors.base import BaseSelector

_COUNTED_STATUSES = [s.value for s in BALANCE_AFFECTING_STATUSES]


def _signed(normal_balance: NormalBalance, debit: Decimal, credit: Decimal) -> Decimal:
    if normal_balance == NormalBalance.DEBIT:
        return debit - credit
    return credit - debit


@dataclass(frozen=True)
class ActivityLine:
    """One line hitting an account, with the running total inside the window."""

    transaction_id: UUID
    reference: str | None
    transaction_date: date
    status: TransactionStatus
    description: str | None
    entry_type: EntryType
    amount: Decimal
    currency: str
    signed_amount: Decimal
    running_balance: Decimal


@dataclass(frozen=True)
class AccountActivitySummary:
    account_id: UUID
    account_code: str
    account_name: str
    account_type: AccountType
    debit_total: Decimal
    credit_total: Decimal

    @property
    def net(self) -> Decimal:
        """Net movement signed by the account's normal side."""
        return _signed(normal_balance_for(self.account_type), self.debit_total, self.credit_total)


@dataclass(frozen=True)
class BalanceDiscrepancy:
    account_id: UUID
    account_code: str
    stored_balance: Decimal
    computed_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.stored_balance - self.computed_balance


class LedgerSelector(BaseSelector[LedgerEntry]):
    """Aggregations over ledger_entries."""

    def __init__(self, session: Session):
        super().__init__(session)

    def account_activity(
        self,
        organization_id: UUID,
        account_id: UUID,
        start: date | None = None,
        end: date | None = None,
    ) -> list[ActivityLine]:
        """Lines on one account ordered by date, posting time and line number."""
        account = self.session.execute(
            select(Account).where(
                Account.id == account_id,
                Account.organization_id == organization_id,
            )
        ).scalar_one_or_none()
        if account is None:
            return []
        normal = normal_balance_for(account.account_type)

        stmt = (
            select(LedgerEntry, Transaction)
            .join(Transaction, LedgerEntry.transaction_id == Transaction.id)
            .where(
                LedgerEntry.account_id == account_id,
                Transaction.organization_id == organization_id,
                Transaction.status.in_(_COUNTED_STATUSES),
            )
        )
        if start is not None:
            stmt = stmt.where(Transaction.transaction_date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.transaction_date <= end)
        stmt = stmt.order_by(
            Transaction.transaction_date,
            Transaction.posted_at,
            Transaction.id,
            LedgerEntry.line_no,
        )

        running = Decimal("0")
        lines: list[ActivityLine] = []
        for entry, txn in self.session.execute(stmt).all():
            entry_type = EntryType(entry.entry_type)
            signed = (
                _signed(normal, entry.amount, Decimal("0"))
                if entry_type == EntryType.DEBIT
                else _signed(normal, Decimal("0"), entry.amount)
            )
            running += signed
            lines.append(
                ActivityLine(
                    transaction_id=txn.id,
                    reference=txn.reference,
                    transaction_date=txn.transaction_date,
                    status=TransactionStatus(txn.status),
                    description=entry.description or txn.description,
                    entry_type=entry_type,
                    amount=entry.amount,
                    currency=entry.currency,
                    signed_amount=signed,
                    running_balance=running,
                )
            )
        return lines

    def balances_by_account(
        self,
        organization_id: UUID,
        start: date | None = None,
        end: date | None = None,
    ) -> list[AccountActivitySummary]:
        """Debit/credit totals for every account of the organization, by code."""
        totals = self._totals_subquery(organization_id, start, end)
        rows = self.session.execute(
            select(
                Account,
                func.coalesce(totals.c.debit_total, 0),
                func.coalesce(totals.c.credit_total, 0),
            )
            .outerjoin(totals, totals.c.account_id == Account.id)
            .where(Account.organization_id == organization_id)
            .order_by(Account.code)
        ).all()

        return [
            AccountActivitySummary(
                account_id=account.id,
                account_code=account.code,
                account_name=account.name,
                account_type=AccountType(account.account_type),
                debit_total=Decimal(debit),
                credit_total=Decimal(credit),
            )
            for account, debit, credit in rows
        ]

    def verify_running_balances(self, organization_id: UUID) -> list[BalanceDiscrepancy]:
        """
        Accounts whose stored balance differs from the sum of their lines.

        An empty list means every running balance is consistent.
        """
        discrepancies = []
        for summary, stored in self._summaries_with_stored(organization_id):
            computed = summary.net
            if stored != computed:
                discrepancies.append(
                    BalanceDiscrepancy(
                        account_id=summary.account_id,
                        account_code=summary.account_code,
                        stored_balance=stored,
                        computed_balance=computed,
                    )
                )
        return discrepancies

    def _summaries_with_stored(self, organization_id: UUID):
        stored = dict(
            self.session.execute(
                select(Account.id, Account.balance).where(
                    Account.organization_id == organization_id
                )
            ).all()
        )
        for summary in self.balances_by_account(organization_id):
            yield summary, Decimal(stored.get(summary.account_id) or 0)

    @staticmethod
    def _totals_subquery(organization_id: UUID, start: date | None, end: date | None):
        debit = case(
            (LedgerEntry.entry_type == EntryType.DEBIT.value, LedgerEntry.amount),
            else_=0,
        )
        credit = case(
            (LedgerEntry.entry_type == EntryType.CREDIT.value, LedgerEntry.amount),
            else_=0,
        )
        stmt = (
            select(
                LedgerEntry.account_id.label("account_id"),
                func.sum(debit).label("debit_total"),
                func.sum(credit).label("credit_total"),
            )
            .join(Transaction, LedgerEntry.transaction_id == Transaction.id)
            .where(
                Transaction.organization_id == organization_id,
                Transaction.status.in_(_COUNTED_STATUSES),
            )
        )
        if start is not None:
            stmt = stmt.where(Transaction.transaction_date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.transaction_date <= end)
        return stmt.group_by(LedgerEntry.account_id).subquery()
