"""Exception hierarchy: codes, retryability and structured attributes."""

import pytest

from ledger_kernel.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    AccountOrganizationMismatchError,
    AccountReferenceError,
    BalanceError,
    CurrencyMismatchError,
    ImmutabilityViolationError,
    InsufficientLinesError,
    InvalidAmountError,
    InvalidCurrencyError,
    InvalidStateError,
    LedgerKernelError,
    PermissionDeniedError,
    PersistenceError,
    SequenceUnavailableError,
    TransactionNotFoundError,
    ValidationError,
)

ALL_ERRORS = [
    (BalanceError("1", "2", "USD"), "UNBALANCED_TRANSACTION"),
    (InsufficientLinesError(1), "INSUFFICIENT_LINES"),
    (InvalidAmountError(1, "-1"), "INVALID_AMOUNT"),
    (CurrencyMismatchError(1, "USD", "EUR"), "CURRENCY_MISMATCH"),
    (InvalidCurrencyError("XXQ"), "INVALID_CURRENCY"),
    (AccountNotFoundError("a"), "ACCOUNT_NOT_FOUND"),
    (AccountInactiveError("a", "4000"), "ACCOUNT_INACTIVE"),
    (AccountOrganizationMismatchError("a", "o"), "ACCOUNT_ORGANIZATION_MISMATCH"),
    (InvalidStateError("t", "posted", "draft"), "INVALID_STATE"),
    (TransactionNotFoundError("t"), "TRANSACTION_NOT_FOUND"),
    (PermissionDeniedError("u", "canPostTransactions"), "PERMISSION_DENIED"),
    (ImmutabilityViolationError("LedgerEntry", "e", "no"), "IMMUTABILITY_VIOLATION"),
    (SequenceUnavailableError("k", "down"), "SEQUENCE_UNAVAILABLE"),
    (PersistenceError("post", "disk full"), "PERSISTENCE_ERROR"),
]


class TestHierarchy:

    @pytest.mark.parametrize("exc,code", ALL_ERRORS)
    def test_codes(self, exc, code):
        assert isinstance(exc, LedgerKernelError)
        assert exc.code == code

    @pytest.mark.parametrize(
        "exc",
        [BalanceError("1", "2", "USD"), InsufficientLinesError(0), InvalidAmountError(1, "-1"),
         CurrencyMismatchError(1, "USD", "EUR"), InvalidCurrencyError("X"), AccountNotFoundError("a")],
    )
    def test_validation_family(self, exc):
        assert isinstance(exc, ValidationError)

    def test_account_reference_family(self):
        for exc in (
            AccountNotFoundError("a"),
            AccountInactiveError("a", "1"),
            AccountOrganizationMismatchError("a", "o"),
        ):
            assert isinstance(exc, AccountReferenceError)

    def test_only_infrastructure_errors_are_retryable(self):
        retryable = {type(exc).__name__ for exc, _ in ALL_ERRORS if exc.retryable}
        assert retryable == {"SequenceUnavailableError", "PersistenceError"}

    def test_state_error_message(self):
        exc = InvalidStateError("t-1", "reversed", "voided")
        assert "t-1" in str(exc)
        assert "reversed" in str(exc)
