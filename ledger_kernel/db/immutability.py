"""
ORM-Level Immutability Enforcement for the ledger.

===============================================================================
WHY THIS EXISTS
===============================================================================

Posted transactions cannot be edited, only voided or reversed by new rows
that leave a visible trail.  These listeners catch modifications made
through SQLAlchemy before the SQL reaches the database:

    session.flush()
         |
         v
    [before_flush]  --> _check_account_deletion_before_flush() --+
         |                                                        |
    [before_update] --> _check_*_immutability() ----------------->+--> error
         |                                                        |
    [before_delete] --> _check_*_delete() ----------------------->+
         |
         v
    SQL sent to database (only if checks pass)

The posting engine writes account balances and sequence counters with
Core UPDATE statements, which do not fire mapper events.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | Rule
------------------|-------------------------------------------------------------
Transaction       | DRAFT rows are editable.  After DRAFT only status (along
                  | VALID_TRANSITIONS), transaction_metadata and updated_*
                  | may change; terminal rows only updated_*.  Never deleted.
LedgerEntry       | Never updated, never deleted.
Account           | balance never written through the ORM.  code, account_type
                  | and organization_id locked once referenced.  System or
                  | referenced accounts cannot be deleted.
DocumentSequence  | Never deleted.

===============================================================================
USAGE
===============================================================================

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to plant corrupt rows may unregister and re-register.

===============================================================================
"""

from sqlalchemy import event, exists, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Audit metadata; may change on any row
AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})

# Mutable after a transaction leaves DRAFT (and before it is terminal)
POSTED_MUTABLE_FIELDS = AUDIT_FIELDS | {"status", "transaction_metadata"}

ACCOUNT_STRUCTURAL_FIELDS = frozenset({"account_type", "code", "organization_id"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _account_is_referenced(connection, account_id) -> bool:
    from ledger_kernel.models.transaction import LedgerEntry

    return bool(
        connection.execute(
            select(exists().where(LedgerEntry.account_id == account_id))
        ).scalar()
    )


def _check_account_deletion_before_flush(session, flush_context, instances):
    """
    Block deletion of system accounts and of accounts with ledger entries.

    Runs in before_flush because mapper-level delete events fire after the
    flush plan is fixed.
    """
    from ledger_kernel.models.account import Account

    for obj in list(session.deleted):
        if not isinstance(obj, Account):
            continue

        if obj.is_system:
            raise _blocked(
                "Account", obj.id, "DELETE",
                "System accounts cannot be deleted",
                reason="system_account",
            )

        with session.no_autoflush:
            referenced = _account_is_referenced(session.connection(), obj.id)
        if referenced:
            raise _blocked(
                "Account", obj.id, "DELETE",
                "Accounts with ledger entries cannot be deleted",
                reason="account_has_entries",
            )


def _check_account_immutability(mapper, connection, target):
    """Reject ORM balance writes and structural edits of referenced accounts."""
    insp = inspect(target)

    if insp.attrs.balance.history.has_changes():
        raise _blocked(
            "Account", target.id, "UPDATE",
            "balance is maintained by posting only",
            field="balance",
        )

    changed = [
        name for name in ACCOUNT_STRUCTURAL_FIELDS
        if getattr(insp.attrs, name).history.has_changes()
    ]
    if changed and _account_is_referenced(connection, target.id):
        raise _blocked(
            "Account", target.id, "UPDATE",
            f"Cannot modify '{changed[0]}' on an account with ledger entries",
            field=changed[0],
        )


def _check_transaction_immutability(mapper, connection, target):
    """
    Enforce the status table and freeze non-draft transactions.

    The status the row had before this flush decides which fields may move:
    DRAFT rows are free; POSTED rows may change status and metadata;
    terminal rows may change only audit fields.
    """
    from ledger_kernel.models.transaction import TransactionStatus, validate_transition

    status_history = get_history(target, "status")
    if status_history.deleted:
        previous = TransactionStatus(status_history.deleted[0])
        requested = TransactionStatus(target.status)
        if previous != requested:
            validate_transition(target.id, previous, requested)
    else:
        previous = TransactionStatus(target.status)

    if previous == TransactionStatus.DRAFT:
        return

    allowed = AUDIT_FIELDS if previous.is_terminal else POSTED_MUTABLE_FIELDS
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in allowed:
            continue
        if attr.history.has_changes():
            raise _blocked(
                "Transaction", target.id, "UPDATE",
                f"Cannot modify field '{attr.key}' on a {previous.value} transaction",
                field=attr.key,
            )


def _check_transaction_delete(mapper, connection, target):
    raise _blocked(
        "Transaction", target.id, "DELETE",
        "Ledger transactions cannot be deleted; cancel, void or reverse instead",
    )


def _check_entry_immutability(mapper, connection, target):
    raise _blocked(
        "LedgerEntry", target.id, "UPDATE",
        "Ledger entries cannot be modified",
    )


def _check_entry_delete(mapper, connection, target):
    raise _blocked(
        "LedgerEntry", target.id, "DELETE",
        "Ledger entries cannot be deleted",
    )


def _check_sequence_delete(mapper, connection, target):
    raise _blocked(
        "DocumentSequence", target.id, "DELETE",
        "Document sequences cannot be deleted",
    )


def _listeners():
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.document_sequence import DocumentSequence
    from ledger_kernel.models.transaction import LedgerEntry, Transaction

    return [
        (Session, "before_flush", _check_account_deletion_before_flush),
        (Account, "before_update", _check_account_immutability),
        (Transaction, "before_update", _check_transaction_immutability),
        (Transaction, "before_delete", _check_transaction_delete),
        (LedgerEntry, "before_update", _check_entry_immutability),
        (LedgerEntry, "before_delete", _check_entry_delete),
        (DocumentSequence, "before_delete", _check_sequence_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability event listeners.

    Idempotent.  Call after models are importable and before any writes.
    """
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability event listeners.

    WARNING: Only use this in tests that plant deliberately invalid rows.
    """
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
