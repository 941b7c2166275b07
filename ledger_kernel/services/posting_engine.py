"""
PostingEngine -- the only writer of POSTED transactions and account balances.

Responsibility:
    Turn a validated proposal into a POSTED transaction, its entry lines and
    the matching running-balance movements, all in one atomic unit of work.

Architecture position:
    Kernel > Services -- imperative shell.  Composes LedgerValidator,
    SqlAccountCatalog and SequenceAllocator.  ReversalEngine composes
    prepare() and write() with its own state change.

Posting pipeline:
    post(actor, draft, entries)
      |
      +-- prepare()                     no write to the ledger tables
      |     1. permission + organization check
      |     2. LedgerValidator.validate()         -> ValidationError
      |     3. SequenceAllocator.allocate()       -> SequenceUnavailableError
      |                                              (own short commit)
      +-- session_scope()               one unit of work
            4. INSERT transaction (POSTED) + entry lines, flush
            5. UPDATE accounts SET balance = balance + delta, per account
            6. COMMIT                              -> PersistenceError on failure

Invariants enforced:
    - A POSTED transaction has >= 2 lines with equal debit and credit totals.
    - Transaction, lines and balance effects commit together or not at all.
    - Balance movements are atomic SQL increments, signed by the account's
      normal side, applied in account-id order.
    - A reference consumed by a failed unit of work is never reused.

Failure modes:
    - PermissionDeniedError: actor lacks canPostTransactions or belongs to
      another organization.
    - ValidationError subclasses from the validator.
    - SequenceUnavailableError from the allocator.
    - PersistenceError when the unit of work fails; nothing was written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.engine import session_scope
from ledger_kernel.db.types import validate_currency
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    CAN_POST_TRANSACTIONS,
    ActorContext,
    EntryDraft,
    TransactionDraft,
    TransactionView,
)
from ledger_kernel.domain.numbering import (
    NumberFormat,
    SequenceScope,
    document_type_for,
)
from ledger_kernel.domain.validator import LedgerValidator, require_storable_amounts
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    PermissionDeniedError,
    PersistenceError,
    TransactionNotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account, NormalBalance, normal_balance_for
from ledger_kernel.models.transaction import (
    EntryType,
    LedgerEntry,
    Transaction,
    TransactionStatus,
    validate_transition,
)
from ledger_kernel.services.account_catalog import SqlAccountCatalog
from ledger_kernel.services.sequence_allocator import SequenceAllocator

logger = get_logger("services.posting_engine")


class NumberFormatResolver(Protocol):
    """Resolves the document-number format for a scope."""

    def format_for(
        self,
        organization_id: UUID,
        branch_id: UUID | None,
        document_type: str,
    ) -> NumberFormat:
        ...


class DefaultNumberFormats:
    """Built-in prefixes, year partition on, month off, padding 4."""

    def format_for(
        self,
        organization_id: UUID,
        branch_id: UUID | None,
        document_type: str,
    ) -> NumberFormat:
        return NumberFormat.default_for(document_type)


@dataclass(frozen=True)
class PreparedPosting:
    """
    A validated proposal holding its allocated reference.

    Nothing in the ledger tables has been written yet.  balance_deltas are
    signed by each account's normal side and ordered by account id.
    """

    actor: ActorContext
    draft: TransactionDraft
    entries: tuple[EntryDraft, ...]
    currency: str
    reference: str
    transaction_id: UUID
    balance_deltas: tuple[tuple[UUID, Decimal], ...]
    metadata: dict[str, Any] = field(default_factory=dict)


def authorize(
    actor: ActorContext,
    organization_id: UUID,
    permission: str = CAN_POST_TRANSACTIONS,
) -> None:
    """Require ``permission`` and membership of ``organization_id``."""
    try:
        actor.require(permission)
        if actor.organization_id != organization_id:
            raise PermissionDeniedError(
                actor_id=str(actor.actor_id),
                permission=f"organization:{organization_id}",
            )
    except PermissionDeniedError as exc:
        logger.warning(
            "permission_denied",
            extra={"permission": exc.permission},
        )
        raise


def signed_delta(normal_balance: NormalBalance, entry_type: EntryType, amount: Decimal) -> Decimal:
    """Positive when the line is on the account's normal side."""
    on_normal_side = (
        (normal_balance == NormalBalance.DEBIT and entry_type == EntryType.DEBIT)
        or (normal_balance == NormalBalance.CREDIT and entry_type == EntryType.CREDIT)
    )
    return amount if on_normal_side else -amount


class PostingEngine:
    """
    Posts balanced transactions.

    Contract:
        post() returns a POSTED TransactionView or raises; on any raise no
        transaction, line or balance change is visible.

    Non-goals:
        - Does NOT convert currencies; exchange rates and base amounts are
          stored as given.
        - Does NOT authenticate; ActorContext is trusted.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        allocator: SequenceAllocator | None = None,
        number_formats: NumberFormatResolver | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._allocator = allocator or SequenceAllocator(session_factory)
        self._number_formats = number_formats or DefaultNumberFormats()
        self._clock = clock or SystemClock()

    @property
    def clock(self) -> Clock:
        return self._clock

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def post(
        self,
        actor: ActorContext,
        draft: TransactionDraft,
        entries: Sequence[EntryDraft],
    ) -> TransactionView:
        """
        Validate, number and persist a transaction as POSTED.

        Raises:
            PermissionDeniedError, ValidationError, SequenceUnavailableError,
            PersistenceError.
        """
        with LogContext.bind(
            correlation_id=str(uuid4()),
            organization_id=str(draft.organization_id),
            actor_id=str(actor.actor_id),
        ):
            logger.info(
                "posting_started",
                extra={
                    "transaction_type": draft.transaction_type.value,
                    "line_count": len(entries),
                },
            )
            prepared = self.prepare(actor, draft, entries)

            with LogContext.bind(
                transaction_id=str(prepared.transaction_id),
                reference=prepared.reference,
            ):
                try:
                    with session_scope(self._session_factory) as session:
                        model = self.write(session, prepared)
                        view = TransactionView.from_model(model)
                except SQLAlchemyError as exc:
                    logger.error(
                        "posting_rolled_back",
                        extra={"operation": "post"},
                        exc_info=True,
                    )
                    raise PersistenceError(operation="post", reason=str(exc)) from exc

                logger.info(
                    "transaction_posted",
                    extra={
                        "total_debits": str(view.total_debits),
                        "currency": view.currency,
                        "line_count": len(view.lines),
                    },
                )
                return view

    def save_draft(
        self,
        actor: ActorContext,
        draft: TransactionDraft,
        entries: Sequence[EntryDraft],
    ) -> TransactionView:
        """
        Persist a DRAFT transaction with its lines.

        Drafts carry no reference and no balance effect; only the currency
        code and the storability of each amount are checked.  Balance is
        checked by post_draft().
        """
        authorize(actor, draft.organization_id)
        currency = validate_currency(draft.currency)
        require_storable_amounts(entries)
        now = self._clock.now()
        try:
            with session_scope(self._session_factory) as session:
                model = Transaction(
                    id=uuid4(),
                    organization_id=draft.organization_id,
                    branch_id=draft.branch_id,
                    transaction_type=draft.transaction_type.value,
                    transaction_date=draft.transaction_date,
                    description=draft.description,
                    notes=draft.notes,
                    status=TransactionStatus.DRAFT.value,
                    currency=currency,
                    approved_by_id=draft.approved_by,
                    source_type=draft.source_type,
                    source_id=draft.source_id,
                    created_by_id=actor.actor_id,
                    transaction_metadata={
                        **draft.opaque_metadata(),
                        "audit_trail": _audit_trail(now, actor.actor_id, 1),
                    },
                    entries=self._build_entries(entries, currency, actor.actor_id),
                )
                session.add(model)
                session.flush()
                view = TransactionView.from_model(model)
        except SQLAlchemyError as exc:
            logger.error("draft_save_failed", exc_info=True)
            raise PersistenceError(operation="save_draft", reason=str(exc)) from exc

        logger.info(
            "draft_saved",
            extra={"transaction_id": str(view.id), "line_count": len(view.lines)},
        )
        return view

    def post_draft(self, actor: ActorContext, transaction_id: UUID) -> TransactionView:
        """
        Post an existing DRAFT through the same validation and numbering.

        Raises:
            TransactionNotFoundError, InvalidStateError, plus everything
            post() raises.
        """
        authorize(actor, actor.organization_id)
        draft, entries = self._load_draft(actor, transaction_id)
        prepared = self.prepare(actor, draft, entries, transaction_id=transaction_id)

        with LogContext.bind(
            transaction_id=str(transaction_id),
            reference=prepared.reference,
        ):
            try:
                with session_scope(self._session_factory) as session:
                    model = session.execute(
                        select(Transaction)
                        .where(Transaction.id == transaction_id)
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    ).scalar_one()
                    validate_transition(model.id, model.status, TransactionStatus.POSTED)

                    version = _audit_version(model.transaction_metadata) + 1
                    model.status = TransactionStatus.POSTED.value
                    model.reference = prepared.reference
                    model.currency = prepared.currency
                    model.posted_at = self._clock.now()
                    model.updated_by_id = actor.actor_id
                    model.transaction_metadata = {
                        **(model.transaction_metadata or {}),
                        **prepared.metadata,
                        "audit_trail": _audit_trail(
                            self._clock.now(), actor.actor_id, version
                        ),
                    }
                    session.flush()
                    self._apply_balance_effects(session, prepared.balance_deltas)
                    view = TransactionView.from_model(model)
            except SQLAlchemyError as exc:
                logger.error(
                    "posting_rolled_back",
                    extra={"operation": "post_draft"},
                    exc_info=True,
                )
                raise PersistenceError(operation="post_draft", reason=str(exc)) from exc

            logger.info("transaction_posted", extra={"from_draft": True})
            return view

    # ------------------------------------------------------------------
    # Composable steps
    # ------------------------------------------------------------------

    def prepare(
        self,
        actor: ActorContext,
        draft: TransactionDraft,
        entries: Sequence[EntryDraft],
        permission: str = CAN_POST_TRANSACTIONS,
        transaction_id: UUID | None = None,
    ) -> PreparedPosting:
        """
        Authorize, validate and allocate a reference.

        The allocated number is committed before this returns.
        """
        authorize(actor, draft.organization_id, permission)
        lines = tuple(entries)

        try:
            with session_scope(self._session_factory) as session:
                catalog = SqlAccountCatalog(session)
                LedgerValidator(catalog).validate(draft, lines)
                deltas: dict[UUID, Decimal] = {}
                for line in lines:
                    account = catalog.get_account(line.account_id)
                    deltas[line.account_id] = deltas.get(line.account_id, Decimal("0")) + signed_delta(
                        normal_balance_for(account.account_type), line.entry_type, line.amount
                    )
        except ValidationError as exc:
            logger.warning(
                "posting_rejected",
                extra={"code": exc.code, "line_count": len(lines)},
            )
            raise
        except SQLAlchemyError as exc:
            logger.error("posting_validation_failed", exc_info=True)
            raise PersistenceError(operation="validate", reason=str(exc)) from exc

        currency = validate_currency(draft.currency)
        doc_type = document_type_for(draft.transaction_type)
        number_format = self._number_formats.format_for(
            draft.organization_id, draft.branch_id, doc_type
        )
        scope = SequenceScope.for_date(
            draft.organization_id, draft.branch_id, draft.transaction_date, number_format
        )
        reference = self._allocator.allocate(scope, doc_type, number_format)

        return PreparedPosting(
            actor=actor,
            draft=draft,
            entries=lines,
            currency=currency,
            reference=reference,
            transaction_id=transaction_id or uuid4(),
            balance_deltas=tuple(sorted(deltas.items(), key=lambda kv: str(kv[0]))),
            metadata={
                "reference": reference,
                "is_balanced": True,
                **draft.opaque_metadata(),
            },
        )

    def write(
        self,
        session: Session,
        prepared: PreparedPosting,
        reversal_of_id: UUID | None = None,
        extra_metadata: dict[str, Any] | None = None,
    ) -> Transaction:
        """
        Insert the POSTED transaction, its lines and balance effects.

        Runs inside the caller's unit of work and never commits.
        """
        draft = prepared.draft
        now = self._clock.now()
        model = Transaction(
            id=prepared.transaction_id,
            organization_id=draft.organization_id,
            branch_id=draft.branch_id,
            transaction_type=draft.transaction_type.value,
            transaction_date=draft.transaction_date,
            description=draft.description,
            notes=draft.notes,
            reference=prepared.reference,
            status=TransactionStatus.POSTED.value,
            currency=prepared.currency,
            approved_by_id=draft.approved_by,
            source_type=draft.source_type,
            source_id=draft.source_id,
            reversal_of_id=reversal_of_id,
            posted_at=now,
            created_by_id=prepared.actor.actor_id,
            transaction_metadata={
                **prepared.metadata,
                **(extra_metadata or {}),
                "audit_trail": _audit_trail(now, prepared.actor.actor_id, 1),
            },
            entries=self._build_entries(
                prepared.entries, prepared.currency, prepared.actor.actor_id
            ),
        )
        session.add(model)
        session.flush()

        self._apply_balance_effects(session, prepared.balance_deltas)
        return model

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_balance_effects(
        self, session: Session, deltas: Sequence[tuple[UUID, Decimal]]
    ) -> None:
        for account_id, delta in deltas:
            if delta == 0:
                continue
            result = session.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(balance=Account.balance + delta)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise AccountNotFoundError(account_id=str(account_id))

    @staticmethod
    def _build_entries(
        entries: Sequence[EntryDraft], currency: str, actor_id: UUID
    ) -> list[LedgerEntry]:
        return [
            LedgerEntry(
                account_id=entry.account_id,
                entry_type=entry.entry_type.value,
                amount=entry.amount,
                currency=(entry.currency or currency).upper().strip(),
                exchange_rate=entry.exchange_rate,
                amount_in_base=entry.amount_in_base,
                description=entry.description,
                line_no=line_no,
                created_by_id=actor_id,
            )
            for line_no, entry in enumerate(entries, start=1)
        ]

    def _load_draft(
        self, actor: ActorContext, transaction_id: UUID
    ) -> tuple[TransactionDraft, tuple[EntryDraft, ...]]:
        try:
            with session_scope(self._session_factory) as session:
                model = session.get(Transaction, transaction_id)
                if model is None or model.organization_id != actor.organization_id:
                    raise TransactionNotFoundError(transaction_id=str(transaction_id))
                validate_transition(model.id, model.status, TransactionStatus.POSTED)
                return (
                    TransactionDraft.from_model(model),
                    tuple(EntryDraft.from_model(e) for e in model.entries),
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(operation="load_draft", reason=str(exc)) from exc


def _audit_trail(when, actor_id: UUID, version: int) -> dict[str, Any]:
    return {
        "last_modified": when.isoformat(),
        "last_modified_by": str(actor_id),
        "version": version,
    }


def _audit_version(metadata: dict | None) -> int:
    trail = (metadata or {}).get("audit_trail") or {}
    return int(trail.get("version", 0))
