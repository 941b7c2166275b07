"""Tests for the boundary DTOs."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import (
    CAN_POST_TRANSACTIONS,
    CAN_REVERSE_TRANSACTIONS,
    AccountInfo,
    ActorContext,
    EntryDraft,
    TransactionDraft,
    ValidationIssue,
)
from ledger_kernel.exceptions import BalanceError, PermissionDeniedError
from ledger_kernel.models.account import AccountType
from ledger_kernel.models.transaction import EntryType, TransactionType


class TestEntryDraft:

    def test_float_amount_rejected(self):
        with pytest.raises(TypeError):
            EntryDraft.debit(uuid4(), 10.5)

    def test_bool_amount_rejected(self):
        with pytest.raises(TypeError):
            EntryDraft.debit(uuid4(), True)

    def test_int_amount_becomes_decimal(self):
        entry = EntryDraft.credit(uuid4(), 25)
        assert entry.amount == Decimal("25")
        assert isinstance(entry.amount, Decimal)

    def test_entry_type_coerced_from_string(self):
        entry = EntryDraft(account_id=uuid4(), entry_type="debit", amount=Decimal("1"))
        assert entry.entry_type is EntryType.DEBIT

    def test_mirrored_swaps_side_only(self):
        entry = EntryDraft.debit(
            uuid4(),
            Decimal("12.50"),
            currency="EUR",
            exchange_rate=Decimal("1.1"),
            amount_in_base=Decimal("13.75"),
            description="freight",
        )
        mirror = entry.mirrored()
        assert mirror.entry_type is EntryType.CREDIT
        assert (mirror.account_id, mirror.amount, mirror.currency) == (
            entry.account_id, entry.amount, entry.currency,
        )
        assert mirror.exchange_rate == Decimal("1.1")
        assert mirror.amount_in_base == Decimal("13.75")
        assert mirror.description == "freight"
        assert mirror.mirrored() == entry

    def test_frozen(self):
        entry = EntryDraft.debit(uuid4(), Decimal("1"))
        with pytest.raises(AttributeError):
            entry.amount = Decimal("2")


class TestTransactionDraft:

    def _draft(self, **kwargs):
        values = dict(
            organization_id=uuid4(),
            transaction_type=TransactionType.INVOICE,
            transaction_date=date(2024, 1, 15),
            description="Invoice",
            currency="USD",
        )
        values.update(kwargs)
        return TransactionDraft(**values)

    def test_opaque_metadata_omits_absent_values(self):
        assert self._draft().opaque_metadata() == {}

    def test_opaque_metadata_is_json_safe(self):
        draft = self._draft(
            foreign_amount=Decimal("100.00"),
            foreign_currency="EUR",
            base_currency_equivalent=Decimal("108.50"),
            base_currency="USD",
            compliance_flags=["vat_reverse_charge"],
        )
        assert draft.opaque_metadata() == {
            "foreign_amount": "100.00",
            "foreign_currency": "EUR",
            "base_currency_equivalent": "108.50",
            "base_currency": "USD",
            "compliance_flags": ["vat_reverse_charge"],
        }

    def test_float_foreign_amount_rejected(self):
        with pytest.raises(TypeError):
            self._draft(foreign_amount=1.5)

    def test_transaction_type_coerced(self):
        assert self._draft(transaction_type="bill").transaction_type is TransactionType.BILL


class TestActorContext:

    def test_permissions_normalized_to_frozenset(self):
        actor = ActorContext(uuid4(), uuid4(), permissions={CAN_POST_TRANSACTIONS})
        assert isinstance(actor.permissions, frozenset)
        assert actor.has_permission(CAN_POST_TRANSACTIONS)
        assert not actor.has_permission(CAN_REVERSE_TRANSACTIONS)

    def test_require_raises(self):
        actor = ActorContext(uuid4(), uuid4())
        with pytest.raises(PermissionDeniedError) as exc_info:
            actor.require(CAN_REVERSE_TRANSACTIONS)
        assert exc_info.value.permission == "canReverseTransactions"


class TestAccountInfo:

    @pytest.mark.parametrize(
        "account_type,side",
        [
            (AccountType.ASSET, "debit"),
            (AccountType.EXPENSE, "debit"),
            (AccountType.COST_OF_SALES, "debit"),
            (AccountType.LIABILITY, "credit"),
            (AccountType.EQUITY, "credit"),
            (AccountType.REVENUE, "credit"),
        ],
    )
    def test_normal_balance(self, account_type, side):
        info = AccountInfo(uuid4(), uuid4(), "1", "x", account_type, True)
        assert info.normal_balance == side


class TestValidationIssue:

    def test_from_exception_carries_code_and_details(self):
        exc = BalanceError(debits="10", credits="9", currency="USD")
        issue = ValidationIssue.from_exception(exc, field="entries")
        assert issue.code == "UNBALANCED_TRANSACTION"
        assert issue.field == "entries"
        assert issue.details == {"debits": "10", "credits": "9", "currency": "USD"}
