"""
Module: ledger_kernel.selectors.transaction_selector
Responsibility: Read-only lookup and filtered, paginated listing of ledger
    transactions with their lines.
Architecture position: Kernel > Selectors.

List filters:
    start_date / end_date     transaction_date, inclusive
    branch_id, transaction_type, status, created_by
    search                    case-insensitive substring of description,
                              reference or notes
    min_amount / max_amount   at least one line inside the range
Ordering: transaction_date DESC, then created_at DESC, then id.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, func, or_, select
from sqlalchemy.orm import Session, selectinload

from ledger_kernel.domain.dtos import TransactionView
from ledger_kernel.models.transaction import (
    LedgerEntry,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from ledger_kernel.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class TransactionFilters:
    """Optional list filters; None means no restriction."""

    start_date: date | None = None
    end_date: date | None = None
    branch_id: UUID | None = None
    transaction_type: TransactionType | None = None
    status: TransactionStatus | None = None
    created_by: UUID | None = None
    search: str | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None


@dataclass(frozen=True)
class TransactionPage:
    items: tuple[TransactionView, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.total else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


class TransactionSelector(BaseSelector[Transaction]):
    """Queries over ledger_transactions."""

    def __init__(self, session: Session):
        super().__init__(session)

    def get(
        self,
        transaction_id: UUID,
        organization_id: UUID | None = None,
    ) -> TransactionView | None:
        """
        Fetch one transaction with lines and totals.

        With organization_id, a transaction of another organization is
        reported as absent.
        """
        stmt = (
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .options(selectinload(Transaction.entries).selectinload(LedgerEntry.account))
        )
        if organization_id is not None:
            stmt = stmt.where(Transaction.organization_id == organization_id)
        model = self.session.execute(stmt).scalar_one_or_none()
        return TransactionView.from_model(model) if model is not None else None

    def get_by_reference(self, organization_id: UUID, reference: str) -> TransactionView | None:
        model = self.session.execute(
            select(Transaction)
            .where(
                Transaction.organization_id == organization_id,
                Transaction.reference == reference,
            )
            .options(selectinload(Transaction.entries).selectinload(LedgerEntry.account))
        ).scalar_one_or_none()
        return TransactionView.from_model(model) if model is not None else None

    def find_reversal(self, transaction_id: UUID) -> TransactionView | None:
        """The transaction that reverses ``transaction_id``, if any."""
        model = self.session.execute(
            select(Transaction)
            .where(Transaction.reversal_of_id == transaction_id)
            .options(selectinload(Transaction.entries).selectinload(LedgerEntry.account))
        ).scalar_one_or_none()
        return TransactionView.from_model(model) if model is not None else None

    def list(
        self,
        organization_id: UUID,
        filters: TransactionFilters | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> TransactionPage:
        """
        Filtered, paginated listing.

        Raises:
            ValueError: page < 1 or limit outside 1..MAX_PAGE_SIZE.
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be 1..{MAX_PAGE_SIZE}, got {limit}")

        conditions = self._conditions(organization_id, filters or TransactionFilters())

        total = self.session.execute(
            select(func.count()).select_from(Transaction).where(*conditions)
        ).scalar_one()

        rows = self.session.execute(
            select(Transaction)
            .where(*conditions)
            .options(selectinload(Transaction.entries).selectinload(LedgerEntry.account))
            .order_by(
                Transaction.transaction_date.desc(),
                Transaction.created_at.desc(),
                Transaction.id,
            )
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return TransactionPage(
            items=tuple(TransactionView.from_model(m) for m in rows),
            total=total,
            page=page,
            limit=limit,
        )

    @staticmethod
    def _conditions(organization_id: UUID, filters: TransactionFilters):
        conditions = [Transaction.organization_id == organization_id]

        if filters.start_date is not None:
            conditions.append(Transaction.transaction_date >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(Transaction.transaction_date <= filters.end_date)
        if filters.branch_id is not None:
            conditions.append(Transaction.branch_id == filters.branch_id)
        if filters.transaction_type is not None:
            conditions.append(
                Transaction.transaction_type == TransactionType(filters.transaction_type).value
            )
        if filters.status is not None:
            conditions.append(Transaction.status == TransactionStatus(filters.status).value)
        if filters.created_by is not None:
            conditions.append(Transaction.created_by_id == filters.created_by)

        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            conditions.append(
                or_(
                    Transaction.description.ilike(pattern),
                    Transaction.reference.ilike(pattern),
                    Transaction.notes.ilike(pattern),
                )
            )

        if filters.min_amount is not None or filters.max_amount is not None:
            line_conditions = [LedgerEntry.transaction_id == Transaction.id]
            if filters.min_amount is not None:
                line_conditions.append(LedgerEntry.amount >= filters.min_amount)
            if filters.max_amount is not None:
                line_conditions.append(LedgerEntry.amount <= filters.max_amount)
            conditions.append(exists().where(*line_conditions))

        return conditions
