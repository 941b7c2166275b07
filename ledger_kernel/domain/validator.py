"""
LedgerValidator -- pure checks on a proposed transaction.

Responsibility:
    Decide whether a TransactionDraft plus its EntryDrafts may be posted.
    Reads only the drafts and a read-only AccountCatalog; writes nothing.

Architecture position:
    Kernel > Domain.  No session, no clock, no logging side effects beyond
    what the catalog implementation does.

Checks, in the order validate() reports them:
    1. At least two lines                       InsufficientLinesError
    2. ISO 4217 transaction currency            InvalidCurrencyError
    3. Per line: finite, non-negative amount    InvalidAmountError
                 storable as Numeric(38, 9)     InvalidAmountError
                 currency == transaction's      CurrencyMismatchError
    4. Per line: account exists                 AccountNotFoundError
                 account in same organization   AccountOrganizationMismatchError
                 account is active              AccountInactiveError
    5. debit total == credit total, both > 0    BalanceError

Balance is exact Decimal equality; there is no rounding tolerance.
"""

from decimal import Decimal, localcontext
from typing import Protocol, Sequence
from uuid import UUID

from ledger_kernel.db.types import validate_currency
from ledger_kernel.domain.dtos import (
    AccountInfo,
    EntryDraft,
    TransactionDraft,
    ValidationIssue,
    ValidationResult,
)
from ledger_kernel.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    AccountOrganizationMismatchError,
    BalanceError,
    CurrencyMismatchError,
    InsufficientLinesError,
    InvalidAmountError,
    InvalidCurrencyError,
    ValidationError,
)
from ledger_kernel.models.transaction import EntryType

MINIMUM_LINES = 2

# Scale and precision of the stored amount columns, Numeric(38, 9).
AMOUNT_SCALE = 9
AMOUNT_MAX_INTEGER_DIGITS = 38 - AMOUNT_SCALE
_TOTALS_PRECISION = 60


def amount_problem(amount: Decimal) -> str | None:
    """Why ``amount`` cannot be stored exactly as a line amount, or None."""
    if not amount.is_finite():
        return "must be a finite number"
    if amount < 0:
        return "must be non-negative"
    _, digits, exponent = amount.as_tuple()
    while digits and digits[-1] == 0 and exponent < -AMOUNT_SCALE:
        digits = digits[:-1]
        exponent += 1
    if digits and exponent < -AMOUNT_SCALE:
        return f"must have at most {AMOUNT_SCALE} decimal places"
    if amount.adjusted() >= AMOUNT_MAX_INTEGER_DIGITS:
        return f"must have at most {AMOUNT_MAX_INTEGER_DIGITS} integer digits"
    return None


def require_storable_amounts(entries: Sequence[EntryDraft]) -> None:
    """Raise InvalidAmountError for the first line whose amount cannot be stored."""
    for line_no, entry in enumerate(entries, start=1):
        problem = amount_problem(entry.amount)
        if problem is not None:
            raise InvalidAmountError(line_no=line_no, amount=str(entry.amount), reason=problem)


class AccountCatalog(Protocol):
    """Read-only account lookup."""

    def get_account(self, account_id: UUID) -> AccountInfo | None:
        ...


class LedgerValidator:
    """Balance, line-count, currency and account-reference validation."""

    def __init__(self, catalog: AccountCatalog):
        self._catalog = catalog

    def validate(self, draft: TransactionDraft, entries: Sequence[EntryDraft]) -> None:
        """
        Raise the first failure, or return None when the proposal is valid.

        Raises:
            ValidationError: One of the subclasses listed in the module doc.
        """
        failures = self._collect(draft, entries)
        if failures:
            raise failures[0][1]

    def check(
        self, draft: TransactionDraft, entries: Sequence[EntryDraft]
    ) -> ValidationResult:
        """Non-raising variant that reports every failure."""
        failures = self._collect(draft, entries)
        if not failures:
            return ValidationResult.success()
        return ValidationResult.failure(
            *(ValidationIssue.from_exception(exc, field=fld) for fld, exc in failures)
        )

    @staticmethod
    def totals(entries: Sequence[EntryDraft]) -> tuple[Decimal, Decimal]:
        """
        (debit_total, credit_total) over the given lines.

        Non-finite amounts are left out; they are reported per line.  Sums
        run at a precision wide enough that no storable amount is rounded.
        """
        debits = Decimal("0")
        credits = Decimal("0")
        with localcontext() as ctx:
            ctx.prec = _TOTALS_PRECISION
            for entry in entries:
                if not entry.amount.is_finite():
                    continue
                if entry.entry_type == EntryType.DEBIT:
                    debits += entry.amount
                else:
                    credits += entry.amount
        return debits, credits

    def _collect(
        self, draft: TransactionDraft, entries: Sequence[EntryDraft]
    ) -> list[tuple[str | None, ValidationError]]:
        failures: list[tuple[str | None, ValidationError]] = []

        if len(entries) < MINIMUM_LINES:
            failures.append(
                ("entries", InsufficientLinesError(line_count=len(entries), minimum=MINIMUM_LINES))
            )

        try:
            currency = validate_currency(draft.currency)
        except InvalidCurrencyError as exc:
            failures.append(("currency", exc))
            currency = str(draft.currency or "")

        checked_accounts: dict[UUID, AccountInfo | None] = {}

        for line_no, entry in enumerate(entries, start=1):
            prefix = f"entries[{line_no - 1}]"

            problem = amount_problem(entry.amount)
            if problem is not None:
                failures.append((
                    f"{prefix}.amount",
                    InvalidAmountError(line_no=line_no, amount=str(entry.amount), reason=problem),
                ))

            line_currency = (entry.currency or currency).upper().strip()
            if line_currency != currency.upper().strip():
                failures.append((
                    f"{prefix}.currency",
                    CurrencyMismatchError(
                        line_no=line_no, expected=currency, actual=entry.currency,
                    ),
                ))

            if entry.account_id not in checked_accounts:
                checked_accounts[entry.account_id] = self._catalog.get_account(entry.account_id)
            account = checked_accounts[entry.account_id]

            if account is None:
                failures.append(
                    (f"{prefix}.account_id", AccountNotFoundError(account_id=str(entry.account_id)))
                )
            elif account.organization_id != draft.organization_id:
                failures.append((
                    f"{prefix}.account_id",
                    AccountOrganizationMismatchError(
                        account_id=str(entry.account_id),
                        expected_organization_id=str(draft.organization_id),
                    ),
                ))
            elif not account.is_active:
                failures.append((
                    f"{prefix}.account_id",
                    AccountInactiveError(account_id=str(entry.account_id), account_code=account.code),
                ))

        debits, credits = self.totals(entries)
        if debits != credits or debits <= 0:
            failures.append(
                ("entries", BalanceError(debits=str(debits), credits=str(credits), currency=currency))
            )

        return failures
