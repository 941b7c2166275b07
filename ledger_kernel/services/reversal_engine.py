"""
ReversalEngine -- corrections by new rows and status links, never by edits.

Responsibility:
    void:     POSTED -> VOIDED.  Status and metadata only; lines and
              balances untouched.
    reverse:  POSTED -> REVERSED plus a new POSTED transaction that mirrors
              every line with DEBIT/CREDIT swapped, in one unit of work.
    cancel:   DRAFT -> CANCELLED.

Architecture position:
    Kernel > Services -- imperative shell.  Reuses PostingEngine.prepare()
    and PostingEngine.write() so a reversal is validated, numbered and
    applied to balances exactly like any other posting.

Invariants enforced:
    - Status moves only along VALID_TRANSITIONS; the original row is
      locked with SELECT ... FOR UPDATE and re-checked inside the unit of
      work, so two concurrent reversals cannot both succeed.
    - The original's entry lines are never touched.
    - Reversal and status change commit together.

Failure modes:
    - TransactionNotFoundError: no such id in the actor's organization.
    - InvalidStateError: not in a state that allows the transition.
    - PermissionDeniedError: actor lacks the permission.
    - PersistenceError: unit of work failed and rolled back.  A reversal
      number allocated before the failure is an accepted gap.
"""

from dataclasses import replace
from datetime import date
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.dtos import (
    CAN_POST_TRANSACTIONS,
    CAN_REVERSE_TRANSACTIONS,
    ActorContext,
    EntryDraft,
    ReversalResult,
    TransactionDraft,
    TransactionView,
)
from ledger_kernel.exceptions import PersistenceError, TransactionNotFoundError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.transaction import (
    Transaction,
    TransactionStatus,
    TransactionType,
    validate_transition,
)
from ledger_kernel.services.posting_engine import PostingEngine, authorize

logger = get_logger("services.reversal_engine")

REVERSAL_SOURCE_TYPE = "REVERSAL"


class ReversalEngine:
    """
    Void, reverse and cancel.

    Contract:
        Every operation either commits its full effect or raises with no
        effect.  Metadata dicts are replaced, never mutated in place, so
        the JSON column change is always detected.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        posting_engine: PostingEngine,
    ):
        self._session_factory = session_factory
        self._posting = posting_engine
        self._clock = posting_engine.clock

    def void(self, actor: ActorContext, transaction_id: UUID, reason: str) -> TransactionView:
        """
        Mark a POSTED transaction VOIDED.

        Raises:
            InvalidStateError: Not POSTED (including already VOIDED).
        """
        authorize(actor, actor.organization_id, CAN_REVERSE_TRANSACTIONS)

        with LogContext.bind(
            organization_id=str(actor.organization_id),
            actor_id=str(actor.actor_id),
            transaction_id=str(transaction_id),
        ):
            now = self._clock.now()
            view = self._transition(
                actor,
                transaction_id,
                TransactionStatus.VOIDED,
                "void",
                {
                    "void": {
                        "reason": reason,
                        "voided_at": now.isoformat(),
                        "voided_by": str(actor.actor_id),
                    },
                },
            )
            logger.info(
                "transaction_voided",
                extra={"reference": view.reference, "reason": reason},
            )
            return view

    def cancel(self, actor: ActorContext, transaction_id: UUID, reason: str) -> TransactionView:
        """Mark a DRAFT transaction CANCELLED."""
        authorize(actor, actor.organization_id, CAN_POST_TRANSACTIONS)

        with LogContext.bind(
            organization_id=str(actor.organization_id),
            actor_id=str(actor.actor_id),
            transaction_id=str(transaction_id),
        ):
            now = self._clock.now()
            view = self._transition(
                actor,
                transaction_id,
                TransactionStatus.CANCELLED,
                "cancel",
                {
                    "cancellation": {
                        "reason": reason,
                        "cancelled_at": now.isoformat(),
                        "cancelled_by": str(actor.actor_id),
                    },
                },
            )
            logger.info("transaction_cancelled", extra={"reason": reason})
            return view

    def reverse(
        self,
        actor: ActorContext,
        transaction_id: UUID,
        reason: str,
        reversal_date: date | None = None,
    ) -> ReversalResult:
        """
        Post a mirror-image transaction and mark the original REVERSED.

        The reversal is a JOURNAL with source_type "REVERSAL", source_id
        and reversal_of_id pointing at the original, dated reversal_date
        (default: today on the engine clock).
        """
        authorize(actor, actor.organization_id, CAN_REVERSE_TRANSACTIONS)

        with LogContext.bind(
            correlation_id=str(uuid4()),
            organization_id=str(actor.organization_id),
            actor_id=str(actor.actor_id),
            transaction_id=str(transaction_id),
        ):
            original_ref, draft, mirrored = self._build_reversal(
                actor, transaction_id, reversal_date or self._clock.today()
            )
            prepared = self._posting.prepare(
                actor, draft, mirrored, permission=CAN_REVERSE_TRANSACTIONS
            )

            try:
                with session_scope(self._session_factory) as session:
                    original = self._lock(session, actor, transaction_id)
                    validate_transition(original.id, original.status, TransactionStatus.REVERSED)

                    reversal = self._posting.write(
                        session,
                        prepared,
                        reversal_of_id=original.id,
                        extra_metadata={
                            "reversal_of": {
                                "transaction_id": str(original.id),
                                "reference": original.reference,
                                "reason": reason,
                            },
                        },
                    )

                    now = self._clock.now()
                    self._set_status(
                        original,
                        actor,
                        TransactionStatus.REVERSED,
                        {
                            "reversal": {
                                "reversed_by_transaction_id": str(reversal.id),
                                "reversed_by_reference": reversal.reference,
                                "reason": reason,
                                "reversed_at": now.isoformat(),
                                "reversed_by": str(actor.actor_id),
                            },
                        },
                    )
                    session.flush()
                    result = ReversalResult(
                        original=TransactionView.from_model(original),
                        reversal=TransactionView.from_model(reversal),
                    )
            except SQLAlchemyError as exc:
                logger.error(
                    "posting_rolled_back",
                    extra={"operation": "reverse"},
                    exc_info=True,
                )
                raise PersistenceError(operation="reverse", reason=str(exc)) from exc

            logger.info(
                "transaction_reversed",
                extra={
                    "reference": original_ref,
                    "reversal_reference": result.reversal.reference,
                    "reversal_transaction_id": str(result.reversal.id),
                    "reason": reason,
                },
            )
            return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_reversal(
        self, actor: ActorContext, transaction_id: UUID, reversal_date: date
    ) -> tuple[str | None, TransactionDraft, tuple[EntryDraft, ...]]:
        try:
            with session_scope(self._session_factory) as session:
                original = session.get(Transaction, transaction_id)
                if original is None or original.organization_id != actor.organization_id:
                    raise TransactionNotFoundError(transaction_id=str(transaction_id))
                validate_transition(original.id, original.status, TransactionStatus.REVERSED)

                label = f"Reversal of {original.reference}"
                # Opaque currency values and compliance flags carry over as-is.
                draft = replace(
                    TransactionDraft.from_model(original),
                    transaction_type=TransactionType.JOURNAL,
                    transaction_date=reversal_date,
                    description=f"{label}: {original.description}",
                    notes=f"Reversing transaction for {original.reference}",
                    source_type=REVERSAL_SOURCE_TYPE,
                    source_id=str(original.id),
                    approved_by=None,
                )
                mirrored = tuple(
                    EntryDraft.from_model(entry).mirrored() for entry in original.entries
                )
                return original.reference, draft, mirrored
        except SQLAlchemyError as exc:
            raise PersistenceError(operation="reverse", reason=str(exc)) from exc

    def _transition(
        self,
        actor: ActorContext,
        transaction_id: UUID,
        target: TransactionStatus,
        operation: str,
        metadata_update: dict[str, Any],
    ) -> TransactionView:
        try:
            with session_scope(self._session_factory) as session:
                model = self._lock(session, actor, transaction_id)
                validate_transition(model.id, model.status, target)
                self._set_status(model, actor, target, metadata_update)
                session.flush()
                return TransactionView.from_model(model)
        except SQLAlchemyError as exc:
            logger.error(
                "transition_rolled_back",
                extra={"operation": operation},
                exc_info=True,
            )
            raise PersistenceError(operation=operation, reason=str(exc)) from exc

    @staticmethod
    def _lock(session: Session, actor: ActorContext, transaction_id: UUID) -> Transaction:
        model = session.execute(
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None or model.organization_id != actor.organization_id:
            raise TransactionNotFoundError(transaction_id=str(transaction_id))
        return model

    def _set_status(
        self,
        model: Transaction,
        actor: ActorContext,
        target: TransactionStatus,
        metadata_update: dict[str, Any],
    ) -> None:
        previous = dict(model.transaction_metadata or {})
        trail = dict(previous.get("audit_trail") or {})
        model.status = target.value
        model.updated_by_id = actor.actor_id
        model.transaction_metadata = {
            **previous,
            **metadata_update,
            "audit_trail": {
                "last_modified": self._clock.now().isoformat(),
                "last_modified_by": str(actor.actor_id),
                "version": int(trail.get("version", 0)) + 1,
            },
        }
