"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the posting core (API handlers, batch jobs) must decide whether a
failure is the caller's fault, the infrastructure's fault, or a lifecycle
conflict. Parsing message strings for that is fragile. Every error here:
  1. Has its own class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Has a RETRYABLE attribute (whether re-submitting the same call can help)
  4. Carries structured DATA as attributes

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- ValidationError                      caller data defect, never retried
    |   +-- BalanceError
    |   +-- InsufficientLinesError
    |   +-- InvalidAmountError
    |   +-- CurrencyMismatchError
    |   +-- InvalidCurrencyError
    |   +-- AccountReferenceError
    |       +-- AccountNotFoundError
    |       +-- AccountInactiveError
    |       +-- AccountOrganizationMismatchError
    |
    +-- InvalidStateError                    lifecycle conflict, never retried
    +-- TransactionNotFoundError
    +-- PermissionDeniedError
    +-- ImmutabilityViolationError
    |
    +-- SequenceUnavailableError             infrastructure, safe to retry
    +-- PersistenceError                     infrastructure, safe to retry

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                         | When Raised
----------------|------------------------------|----------------------------------------
Validation      | UNBALANCED_TRANSACTION       | Debits != Credits, or totals are zero
                | INSUFFICIENT_LINES           | Fewer than two entry lines
                | INVALID_AMOUNT               | Negative line amount
                | CURRENCY_MISMATCH            | Line currency != transaction currency
                | INVALID_CURRENCY             | Not an ISO 4217 code
                | ACCOUNT_NOT_FOUND            | Account ID unknown to the catalog
                | ACCOUNT_INACTIVE             | Account is deactivated
                | ACCOUNT_ORGANIZATION_MISMATCH| Account belongs to another organization
----------------|------------------------------|----------------------------------------
Lifecycle       | INVALID_STATE                | Transition not in the status table
                | TRANSACTION_NOT_FOUND        | No such transaction in the organization
                | PERMISSION_DENIED            | Actor lacks the required permission
                | IMMUTABILITY_VIOLATION       | Write to a posted row or entry line
----------------|------------------------------|----------------------------------------
Infrastructure  | SEQUENCE_UNAVAILABLE         | Counter store unreachable
                | PERSISTENCE_ERROR            | Unit of work failed and rolled back

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        view = posting_engine.post(actor, draft, entries)
    except ValidationError as e:
        return reject(400, code=e.code)          # fix the data first
    except InvalidStateError as e:
        return reject(409, code=e.code)
    except LedgerKernelError as e:
        if e.retryable:
            schedule_retry()                     # nothing was committed
        raise

===============================================================================
"""


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    Every subclass defines a `code` class attribute for machine-readable
    identification and a `retryable` class attribute.
    """

    code: str = "LEDGER_KERNEL_ERROR"
    retryable: bool = False


# Validation exceptions


class ValidationError(LedgerKernelError):
    """Proposed transaction data is defective; no row has been written."""

    code: str = "VALIDATION_ERROR"


class BalanceError(ValidationError):
    """Debit and credit totals differ, or both are zero."""

    code: str = "UNBALANCED_TRANSACTION"

    def __init__(self, debits: str, credits: str, currency: str):
        self.debits = debits
        self.credits = credits
        self.currency = currency
        super().__init__(
            f"Unbalanced transaction in {currency}: debits={debits}, credits={credits}"
        )


class InsufficientLinesError(ValidationError):
    """A transaction needs at least two entry lines."""

    code: str = "INSUFFICIENT_LINES"

    def __init__(self, line_count: int, minimum: int = 2):
        self.line_count = line_count
        self.minimum = minimum
        super().__init__(
            f"Transaction has {line_count} entry line(s); at least {minimum} required"
        )


class InvalidAmountError(ValidationError):
    """Entry amount is negative, non-finite or not storable exactly."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, line_no: int, amount: str, reason: str = "must be non-negative"):
        self.line_no = line_no
        self.amount = amount
        self.reason = reason
        super().__init__(f"Line {line_no}: amount {reason}, got {amount}")


class CurrencyMismatchError(ValidationError):
    """Entry currency differs from the transaction currency."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, line_no: int, expected: str, actual: str):
        self.line_no = line_no
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Line {line_no}: currency {actual} does not match transaction currency {expected}"
        )


class InvalidCurrencyError(ValidationError):
    """Invalid ISO 4217 currency code provided."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


class AccountReferenceError(ValidationError):
    """Entry references an account that cannot receive postings."""

    code: str = "ACCOUNT_REFERENCE_ERROR"


class AccountNotFoundError(AccountReferenceError):
    """Account was not found in the catalog."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class AccountInactiveError(AccountReferenceError):
    """Account is not active for posting."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_id: str, account_code: str):
        self.account_id = account_id
        self.account_code = account_code
        super().__init__(f"Account is inactive: {account_code} ({account_id})")


class AccountOrganizationMismatchError(AccountReferenceError):
    """Account belongs to a different organization than the transaction."""

    code: str = "ACCOUNT_ORGANIZATION_MISMATCH"

    def __init__(self, account_id: str, expected_organization_id: str):
        self.account_id = account_id
        self.expected_organization_id = expected_organization_id
        super().__init__(
            f"Account {account_id} does not belong to organization {expected_organization_id}"
        )


# Lifecycle exceptions


class InvalidStateError(LedgerKernelError):
    """Requested status transition is not in the transition table."""

    code: str = "INVALID_STATE"

    def __init__(self, transaction_id: str, current_status: str, requested_status: str):
        self.transaction_id = transaction_id
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Transaction {transaction_id} is {current_status}; "
            f"cannot transition to {requested_status}"
        )


class TransactionNotFoundError(LedgerKernelError):
    """Transaction does not exist in the caller's organization."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class PermissionDeniedError(LedgerKernelError):
    """Actor lacks the permission for the requested operation."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: str, permission: str):
        self.actor_id = actor_id
        self.permission = permission
        super().__init__(f"Actor {actor_id} lacks permission {permission}")


class ImmutabilityViolationError(LedgerKernelError):
    """
    Attempted to modify or delete an immutable record.

    Posted transactions keep their financial fields; entry lines are
    never updated or deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


# Infrastructure exceptions


class SequenceUnavailableError(LedgerKernelError):
    """The document-sequence counter store could not be reached."""

    code: str = "SEQUENCE_UNAVAILABLE"
    retryable: bool = True

    def __init__(self, scope_key: str, reason: str):
        self.scope_key = scope_key
        self.reason = reason
        super().__init__(f"Sequence unavailable for {scope_key}: {reason}")


class PersistenceError(LedgerKernelError):
    """The atomic unit of work failed and was rolled back."""

    code: str = "PERSISTENCE_ERROR"
    retryable: bool = True

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed and was rolled back: {reason}")
