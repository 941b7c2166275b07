"""
DTOs -- immutable data structures crossing the posting core's boundary.

Responsibility:
    Inputs (ActorContext, TransactionDraft, EntryDraft), the account
    snapshot the validator reads (AccountInfo), validation results, and the
    views the engines and selectors return (LineView, TransactionView,
    ReversalResult).

Architecture position:
    Kernel > Domain.  No database access.  from_model() converters exist as
    boundary helpers and are only called from services and selectors.

Invariants enforced:
    - Monetary fields are Decimal; floats raise TypeError at construction.
    - Views are frozen snapshots and never leak ORM instances.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Mapping
from uuid import UUID

from ledger_kernel.exceptions import LedgerKernelError, PermissionDeniedError
from ledger_kernel.models.account import AccountType, normal_balance_for
from ledger_kernel.models.transaction import (
    EntryType,
    TransactionStatus,
    TransactionType,
)

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.transaction import (
        LedgerEntry as LedgerEntryModel,
        Transaction as TransactionModel,
    )


CAN_POST_TRANSACTIONS = "canPostTransactions"
CAN_REVERSE_TRANSACTIONS = "canReverseTransactions"


def _require_decimal(name: str, value: Any, *, optional: bool = False) -> Decimal | None:
    if value is None and optional:
        return None
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"{name} must be Decimal, not {type(value).__name__}")
    if isinstance(value, int):
        return Decimal(value)
    if not isinstance(value, Decimal):
        raise TypeError(f"{name} must be Decimal, not {type(value).__name__}")
    return value


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    return value


@dataclass(frozen=True)
class ActorContext:
    """
    Identity and permission results supplied by the caller.

    The core never authenticates; it trusts this snapshot and checks the
    named permission before acting.
    """

    actor_id: UUID
    organization_id: UUID
    permissions: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not isinstance(self.permissions, frozenset):
            object.__setattr__(self, "permissions", frozenset(self.permissions))

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def require(self, permission: str) -> None:
        if permission not in self.permissions:
            raise PermissionDeniedError(
                actor_id=str(self.actor_id),
                permission=permission,
            )


@dataclass(frozen=True)
class EntryDraft:
    """
    One proposed debit or credit line.

    currency defaults to the transaction currency.  exchange_rate and
    amount_in_base are opaque: stored and propagated, never computed.
    """

    account_id: UUID
    entry_type: EntryType
    amount: Decimal
    currency: str | None = None
    exchange_rate: Decimal = Decimal("1")
    amount_in_base: Decimal | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "entry_type", EntryType(self.entry_type))
        object.__setattr__(self, "amount", _require_decimal("amount", self.amount))
        object.__setattr__(
            self, "exchange_rate", _require_decimal("exchange_rate", self.exchange_rate)
        )
        object.__setattr__(
            self,
            "amount_in_base",
            _require_decimal("amount_in_base", self.amount_in_base, optional=True),
        )

    @classmethod
    def debit(cls, account_id: UUID, amount: Decimal, **kwargs: Any) -> EntryDraft:
        return cls(account_id=account_id, entry_type=EntryType.DEBIT, amount=amount, **kwargs)

    @classmethod
    def credit(cls, account_id: UUID, amount: Decimal, **kwargs: Any) -> EntryDraft:
        return cls(account_id=account_id, entry_type=EntryType.CREDIT, amount=amount, **kwargs)

    def mirrored(self) -> EntryDraft:
        """Same line on the opposite side."""
        return EntryDraft(
            account_id=self.account_id,
            entry_type=self.entry_type.opposite(),
            amount=self.amount,
            currency=self.currency,
            exchange_rate=self.exchange_rate,
            amount_in_base=self.amount_in_base,
            description=self.description,
        )

    @classmethod
    def from_model(cls, model: LedgerEntryModel) -> EntryDraft:
        return cls(
            account_id=model.account_id,
            entry_type=EntryType(model.entry_type),
            amount=model.amount,
            currency=model.currency,
            exchange_rate=model.exchange_rate,
            amount_in_base=model.amount_in_base,
            description=model.description,
        )


@dataclass(frozen=True)
class TransactionDraft:
    """
    Header of a proposed transaction.

    The foreign_* / base_* / compliance_flags values are carried into
    transaction metadata untouched.
    """

    organization_id: UUID
    transaction_type: TransactionType
    transaction_date: date
    description: str
    currency: str
    branch_id: UUID | None = None
    notes: str | None = None
    source_type: str | None = None
    source_id: str | None = None
    approved_by: UUID | None = None
    foreign_amount: Decimal | None = None
    foreign_currency: str | None = None
    base_currency_equivalent: Decimal | None = None
    base_currency: str | None = None
    compliance_flags: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "transaction_type", TransactionType(self.transaction_type)
        )
        object.__setattr__(
            self,
            "foreign_amount",
            _require_decimal("foreign_amount", self.foreign_amount, optional=True),
        )
        object.__setattr__(
            self,
            "base_currency_equivalent",
            _require_decimal(
                "base_currency_equivalent", self.base_currency_equivalent, optional=True
            ),
        )
        object.__setattr__(self, "compliance_flags", tuple(self.compliance_flags))

    def opaque_metadata(self) -> dict[str, Any]:
        """Caller-supplied metadata values, JSON-safe, absent keys omitted."""
        values = {
            "foreign_amount": self.foreign_amount,
            "foreign_currency": self.foreign_currency,
            "base_currency_equivalent": self.base_currency_equivalent,
            "base_currency": self.base_currency,
            "compliance_flags": list(self.compliance_flags) or None,
        }
        return {k: _json_safe(v) for k, v in values.items() if v is not None}

    @classmethod
    def from_model(cls, model: TransactionModel) -> TransactionDraft:
        meta = model.transaction_metadata or {}

        def _dec(key: str) -> Decimal | None:
            raw = meta.get(key)
            return Decimal(raw) if raw is not None else None

        return cls(
            organization_id=model.organization_id,
            transaction_type=TransactionType(model.transaction_type),
            transaction_date=model.transaction_date,
            description=model.description,
            currency=model.currency,
            branch_id=model.branch_id,
            notes=model.notes,
            source_type=model.source_type,
            source_id=model.source_id,
            approved_by=model.approved_by_id,
            foreign_amount=_dec("foreign_amount"),
            foreign_currency=meta.get("foreign_currency"),
            base_currency_equivalent=_dec("base_currency_equivalent"),
            base_currency=meta.get("base_currency"),
            compliance_flags=tuple(meta.get("compliance_flags") or ()),
        )


@dataclass(frozen=True)
class AccountInfo:
    """
    Read-only account snapshot used by the validator.

    The validator never touches the ORM Account; the catalog converts.
    """

    id: UUID
    organization_id: UUID
    code: str
    name: str
    account_type: AccountType
    is_active: bool
    currency: str | None = None
    is_system: bool = False

    @property
    def normal_balance(self) -> str:
        return normal_balance_for(self.account_type).value

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountInfo:
        return cls(
            id=model.id,
            organization_id=model.organization_id,
            code=model.code,
            name=model.name,
            account_type=AccountType(model.account_type),
            is_active=model.is_active,
            currency=model.currency,
            is_system=model.is_system,
        )


@dataclass(frozen=True)
class ValidationIssue:
    """
    A single validation failure.

    Carries the machine-readable code of the exception it was built from.
    """

    code: str
    message: str
    field: str | None = None
    details: dict[str, Any] | None = None

    @classmethod
    def from_exception(cls, exc: LedgerKernelError, field: str | None = None) -> ValidationIssue:
        details = {k: _json_safe(v) for k, v in vars(exc).items() if not k.startswith("_")}
        return cls(code=exc.code, message=str(exc), field=field, details=details or None)


@dataclass(frozen=True)
class ValidationResult:
    """Zero or more issues; bool(result) is True only when there are none."""

    is_valid: bool
    errors: tuple[ValidationIssue, ...] = field(default_factory=tuple)

    @classmethod
    def success(cls) -> ValidationResult:
        return cls(is_valid=True, errors=())

    @classmethod
    def failure(cls, *errors: ValidationIssue) -> ValidationResult:
        return cls(is_valid=False, errors=tuple(errors))

    @property
    def codes(self) -> tuple[str, ...]:
        return tuple(e.code for e in self.errors)

    def __bool__(self) -> bool:
        return self.is_valid


@dataclass(frozen=True)
class LineView:
    """One entry line as returned to callers."""

    id: UUID
    line_no: int
    account_id: UUID
    account_code: str | None
    account_name: str | None
    entry_type: EntryType
    amount: Decimal
    currency: str
    exchange_rate: Decimal
    amount_in_base: Decimal | None
    description: str | None

    @classmethod
    def from_model(cls, model: LedgerEntryModel) -> LineView:
        account = model.account
        return cls(
            id=model.id,
            line_no=model.line_no,
            account_id=model.account_id,
            account_code=account.code if account is not None else None,
            account_name=account.name if account is not None else None,
            entry_type=EntryType(model.entry_type),
            amount=model.amount,
            currency=model.currency,
            exchange_rate=model.exchange_rate,
            amount_in_base=model.amount_in_base,
            description=model.description,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "line_no": self.line_no,
            "account_id": str(self.account_id),
            "account_code": self.account_code,
            "account_name": self.account_name,
            "entry_type": self.entry_type.value,
            "amount": str(self.amount),
            "currency": self.currency,
            "exchange_rate": str(self.exchange_rate),
            "amount_in_base": _json_safe(self.amount_in_base),
            "description": self.description,
        }


@dataclass(frozen=True)
class TransactionView:
    """
    Snapshot of a transaction with its lines and computed totals.

    is_balanced is recomputed from the lines, not read from metadata.
    """

    id: UUID
    organization_id: UUID
    branch_id: UUID | None
    transaction_type: TransactionType
    transaction_date: date
    description: str
    notes: str | None
    reference: str | None
    status: TransactionStatus
    currency: str
    created_by: UUID
    approved_by: UUID | None
    source_type: str | None
    source_id: str | None
    reversal_of_id: UUID | None
    posted_at: datetime | None
    created_at: datetime | None
    metadata: dict[str, Any]
    lines: tuple[LineView, ...]

    @property
    def total_debits(self) -> Decimal:
        return sum(
            (ln.amount for ln in self.lines if ln.entry_type == EntryType.DEBIT),
            Decimal("0"),
        )

    @property
    def total_credits(self) -> Decimal:
        return sum(
            (ln.amount for ln in self.lines if ln.entry_type == EntryType.CREDIT),
            Decimal("0"),
        )

    @property
    def is_balanced(self) -> bool:
        return len(self.lines) >= 2 and self.total_debits == self.total_credits

    @property
    def audit_trail(self) -> dict[str, Any]:
        return dict(self.metadata.get("audit_trail") or {})

    @classmethod
    def from_model(cls, model: TransactionModel) -> TransactionView:
        return cls(
            id=model.id,
            organization_id=model.organization_id,
            branch_id=model.branch_id,
            transaction_type=TransactionType(model.transaction_type),
            transaction_date=model.transaction_date,
            description=model.description,
            notes=model.notes,
            reference=model.reference,
            status=TransactionStatus(model.status),
            currency=model.currency,
            created_by=model.created_by_id,
            approved_by=model.approved_by_id,
            source_type=model.source_type,
            source_id=model.source_id,
            reversal_of_id=model.reversal_of_id,
            posted_at=model.posted_at,
            created_at=model.created_at,
            metadata=dict(model.transaction_metadata or {}),
            lines=tuple(LineView.from_model(e) for e in model.entries),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe mapping for API layers."""
        return {
            "id": str(self.id),
            "organization_id": str(self.organization_id),
            "branch_id": _json_safe(self.branch_id),
            "transaction_type": self.transaction_type.value,
            "transaction_date": self.transaction_date.isoformat(),
            "description": self.description,
            "notes": self.notes,
            "reference": self.reference,
            "status": self.status.value,
            "currency": self.currency,
            "created_by": str(self.created_by),
            "approved_by": _json_safe(self.approved_by),
            "source_type": self.source_type,
            "source_id": self.source_id,
            "reversal_of_id": _json_safe(self.reversal_of_id),
            "posted_at": _json_safe(self.posted_at),
            "created_at": _json_safe(self.created_at),
            "total_debits": str(self.total_debits),
            "total_credits": str(self.total_credits),
            "is_balanced": self.is_balanced,
            "metadata": _json_safe(self.metadata),
            "lines": [ln.to_dict() for ln in self.lines],
        }


@dataclass(frozen=True)
class ReversalResult:
    """The original (now REVERSED) and its offsetting transaction."""

    original: TransactionView
    reversal: TransactionView
