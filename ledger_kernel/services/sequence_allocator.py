"""
SequenceAllocator -- document numbers from per-scope counter rows.

Responsibility:
    Hand out the next document number for (organization, branch, document
    type, year, month), formatted as ``PREFIX[-YYYY][-MM]-NNNN``.

Architecture position:
    Kernel > Services -- imperative shell.  Called by PostingEngine.prepare()
    before the posting unit of work opens.

Invariants enforced:
    - Never duplicated: the counter is advanced by a single
      ``UPDATE ... SET current_number = current_number + 1 RETURNING``.
      There is no read-then-write in application code.
    - Branch fallback: with a branch, the branch counter is used when it
      exists, else the organization-wide counter for the same period.
      First use creates the organization-wide counter; branch counters
      exist only through provision(), so every branch without one draws
      from the same organization counter and references never collide.
    - Gap-tolerant: each allocation commits in its own short unit of work.
      A number whose posting later fails stays consumed.

Failure modes:
    - SequenceUnavailableError when the counter store cannot be reached.
      No number is fabricated.
    - Concurrent first-use of a scope: the losing INSERT raises
      IntegrityError inside a SAVEPOINT, which is rolled back before the
      atomic UPDATE is retried.
"""

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.numbering import (
    NumberFormat,
    SequenceScope,
    document_type_for,
    format_number,
)
from ledger_kernel.exceptions import SequenceUnavailableError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.document_sequence import DocumentSequence

logger = get_logger("services.sequence_allocator")

_MAX_CREATE_ATTEMPTS = 3


class SequenceAllocator:
    """
    Allocates document numbers.

    Contract:
        allocate() returns a number strictly greater than every number
        previously returned for the same resolved counter.  Numbers are
        committed before allocate() returns.

    Non-goals:
        - Gap-free numbering.  Failed postings leave holes.
        - Re-issuing or resetting numbers.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def allocate(
        self,
        scope: SequenceScope,
        document_type: str,
        number_format: NumberFormat | None = None,
    ) -> str:
        """
        Advance the counter for ``scope`` and return the formatted number.

        Raises:
            SequenceUnavailableError: Storage unreachable or locked past
                its timeout.  Safe to retry.
        """
        doc_type = document_type_for(document_type)
        fmt = number_format or NumberFormat.default_for(doc_type)
        requested_key = scope.scope_key(doc_type)

        try:
            with session_scope(self._session_factory) as session:
                number, resolved_key = self._advance(session, scope, doc_type)
        except DBAPIError as exc:
            logger.error(
                "sequence_unavailable",
                extra={"scope_key": requested_key, "document_type": doc_type},
                exc_info=True,
            )
            raise SequenceUnavailableError(
                scope_key=requested_key,
                reason=str(exc.orig) if exc.orig is not None else str(exc),
            ) from exc

        reference = format_number(number, fmt, year=scope.year, month=scope.month)
        logger.info(
            "sequence_allocated",
            extra={
                "scope_key": resolved_key,
                "document_type": doc_type,
                "value": number,
                "reference": reference,
            },
        )
        return reference

    def current_number(self, scope: SequenceScope, document_type: str) -> int | None:
        """Current value of the counter ``allocate`` would use; None if none exists."""
        doc_type = document_type_for(document_type)
        try:
            with session_scope(self._session_factory) as session:
                for candidate in self._candidates(scope):
                    value = session.execute(
                        select(DocumentSequence.current_number).where(
                            DocumentSequence.scope_key == candidate.scope_key(doc_type)
                        )
                    ).scalar_one_or_none()
                    if value is not None:
                        return value
        except DBAPIError as exc:
            raise SequenceUnavailableError(
                scope_key=scope.scope_key(doc_type), reason=str(exc)
            ) from exc
        return None

    def peek_next(
        self,
        scope: SequenceScope,
        document_type: str,
        number_format: NumberFormat | None = None,
    ) -> str:
        """Preview the next number without consuming it."""
        doc_type = document_type_for(document_type)
        fmt = number_format or NumberFormat.default_for(doc_type)
        current = self.current_number(scope, doc_type) or 0
        return format_number(current + 1, fmt, year=scope.year, month=scope.month)

    def provision(
        self,
        scope: SequenceScope,
        document_type: str,
        start_at: int = 0,
    ) -> bool:
        """
        Create the counter row for exactly ``scope``; the next number is
        ``start_at + 1``.

        This is the only way a branch-scoped counter comes into existence.
        Branch counters share the organization's reference space, so the
        branch must be given its own prefix in the numbering configuration.

        Returns False when the counter already exists (left unchanged).
        """
        doc_type = document_type_for(document_type)
        if start_at < 0:
            raise ValueError(f"start_at must be >= 0, got {start_at}")
        try:
            with session_scope(self._session_factory) as session:
                return self._create_counter(session, scope, doc_type, start_at)
        except DBAPIError as exc:
            raise SequenceUnavailableError(
                scope_key=scope.scope_key(doc_type), reason=str(exc)
            ) from exc

    @staticmethod
    def _candidates(scope: SequenceScope) -> list[SequenceScope]:
        if scope.branch_id is None:
            return [scope]
        return [scope, scope.without_branch()]

    def _advance(
        self, session: Session, scope: SequenceScope, doc_type: str
    ) -> tuple[int, str]:
        for candidate in self._candidates(scope):
            key = candidate.scope_key(doc_type)
            value = self._increment(session, key)
            if value is not None:
                return value, key

        # First use always creates the organization-wide counter.
        org_scope = scope.without_branch()
        key = org_scope.scope_key(doc_type)
        for attempt in range(_MAX_CREATE_ATTEMPTS):
            if not self._create_counter(session, org_scope, doc_type):
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"scope_key": key, "attempt": attempt + 1},
                )
            value = self._increment(session, key)
            if value is not None:
                return value, key

        raise SequenceUnavailableError(
            scope_key=key, reason="counter row could not be created"
        )

    @staticmethod
    def _create_counter(
        session: Session, scope: SequenceScope, doc_type: str, start_at: int = 0
    ) -> bool:
        key = scope.scope_key(doc_type)
        savepoint = session.begin_nested()
        try:
            session.add(
                DocumentSequence(
                    scope_key=key,
                    organization_id=scope.organization_id,
                    branch_id=scope.branch_id,
                    document_type=doc_type,
                    year=scope.year,
                    month=scope.month,
                    current_number=start_at,
                )
            )
            session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            return False
        logger.info(
            "sequence_counter_created",
            extra={"scope_key": key, "document_type": doc_type, "start_at": start_at},
        )
        return True

    @staticmethod
    def _increment(session: Session, scope_key: str) -> int | None:
        # Row lock is taken by the UPDATE itself and held until commit.
        return session.execute(
            update(DocumentSequence)
            .where(DocumentSequence.scope_key == scope_key)
            .values(current_number=DocumentSequence.current_number + 1)
            .returning(DocumentSequence.current_number)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()
