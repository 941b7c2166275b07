"""
LedgerSelector: account activity, per-account totals and the running
balance check.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.dtos import EntryDraft
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.models.transaction import EntryType, TransactionStatus, TransactionType
from ledger_kernel.selectors import LedgerSelector


@pytest.fixture
def ledger_query(session_factory):
    def _query(fn):
        with session_scope(session_factory) as s:
            return fn(LedgerSelector(s))

    return _query


@pytest.fixture
def collect(posting_engine, actor, make_draft, standard_accounts):
    """Invoice 100.00 on Jan 10, then receive 40.00 against it on Jan 20."""
    acc = standard_accounts
    invoice = posting_engine.post(
        actor,
        make_draft(transaction_date=date(2024, 1, 10), description="Invoice"),
        [
            EntryDraft.debit(acc["receivables"].id, Decimal("100.00")),
            EntryDraft.credit(acc["revenue"].id, Decimal("100.00")),
        ],
    )
    receipt = posting_engine.post(
        actor,
        make_draft(
            transaction_type=TransactionType.RECEIPT,
            transaction_date=date(2024, 1, 20),
            description="Customer payment",
        ),
        [
            EntryDraft.debit(acc["cash"].id, Decimal("40.00")),
            EntryDraft.credit(acc["receivables"].id, Decimal("40.00"), description="Partial"),
        ],
    )
    return invoice, receipt


class TestAccountActivity:

    def test_running_balance(self, collect, ledger_query, org_id, standard_accounts):
        invoice, receipt = collect
        lines = ledger_query(
            lambda sel: sel.account_activity(org_id, standard_accounts["receivables"].id)
        )

        assert [ln.transaction_id for ln in lines] == [invoice.id, receipt.id]
        assert [ln.entry_type for ln in lines] == [EntryType.DEBIT, EntryType.CREDIT]
        assert [ln.signed_amount for ln in lines] == [Decimal("100"), Decimal("-40")]
        assert [ln.running_balance for ln in lines] == [Decimal("100"), Decimal("60")]
        assert lines[0].description == "Invoice"
        assert lines[1].description == "Partial"
        assert lines[1].reference == "REC-2024-0001"

    def test_credit_normal_account_signed_positive(self, collect, ledger_query, org_id, standard_accounts):
        lines = ledger_query(
            lambda sel: sel.account_activity(org_id, standard_accounts["revenue"].id)
        )
        assert [ln.signed_amount for ln in lines] == [Decimal("100")]

    def test_date_window(self, collect, ledger_query, org_id, standard_accounts):
        lines = ledger_query(
            lambda sel: sel.account_activity(
                org_id,
                standard_accounts["receivables"].id,
                start=date(2024, 1, 15),
                end=date(2024, 1, 31),
            )
        )
        assert len(lines) == 1
        assert lines[0].running_balance == Decimal("-40")

    def test_drafts_excluded(self, collect, posting_engine, actor, make_draft, standard_accounts, ledger_query, org_id):
        posting_engine.save_draft(
            actor,
            make_draft(),
            [
                EntryDraft.debit(standard_accounts["receivables"].id, Decimal("7")),
                EntryDraft.credit(standard_accounts["revenue"].id, Decimal("7")),
            ],
        )
        lines = ledger_query(
            lambda sel: sel.account_activity(org_id, standard_accounts["receivables"].id)
        )
        assert len(lines) == 2

    def test_void_and_reversal_lines_included(
        self, collect, reversal_engine, actor, ledger_query, org_id, standard_accounts
    ):
        invoice, receipt = collect
        reversal_engine.void(actor, receipt.id, "bounced")
        reversal_engine.reverse(actor, invoice.id, "wrong customer")

        lines = ledger_query(
            lambda sel: sel.account_activity(org_id, standard_accounts["receivables"].id)
        )
        statuses = [ln.status for ln in lines]
        assert statuses == [TransactionStatus.REVERSED, TransactionStatus.POSTED, TransactionStatus.VOIDED]
        assert lines[-1].running_balance == Decimal("-40")

    def test_unknown_or_foreign_account(self, collect, ledger_query, org_id, standard_accounts):
        assert ledger_query(lambda sel: sel.account_activity(org_id, uuid4())) == []
        assert ledger_query(
            lambda sel: sel.account_activity(uuid4(), standard_accounts["receivables"].id)
        ) == []


class TestBalancesByAccount:

    def test_every_account_ordered_by_code(self, collect, ledger_query, org_id):
        summaries = ledger_query(lambda sel: sel.balances_by_account(org_id))
        assert [s.account_code for s in summaries] == [
            "1100", "1200", "2100", "3000", "4000", "5000", "6100",
        ]

    def test_totals_and_net(self, collect, ledger_query, org_id):
        by_code = {s.account_code: s for s in ledger_query(lambda sel: sel.balances_by_account(org_id))}

        receivables = by_code["1200"]
        assert receivables.account_type == AccountType.ASSET
        assert receivables.debit_total == Decimal("100")
        assert receivables.credit_total == Decimal("40")
        assert receivables.net == Decimal("60")

        assert by_code["4000"].net == Decimal("100")
        assert by_code["1100"].net == Decimal("40")

        untouched = by_code["6100"]
        assert untouched.debit_total == untouched.credit_total == Decimal("0")
        assert untouched.net == Decimal("0")

    def test_trial_balance_sums_to_zero(self, collect, ledger_query, org_id):
        summaries = ledger_query(lambda sel: sel.balances_by_account(org_id))
        assert sum(s.debit_total for s in summaries) == sum(s.credit_total for s in summaries)

    def test_window(self, collect, ledger_query, org_id):
        summaries = ledger_query(
            lambda sel: sel.balances_by_account(org_id, start=date(2024, 1, 1), end=date(2024, 1, 15))
        )
        by_code = {s.account_code: s for s in summaries}
        assert by_code["1200"].net == Decimal("100")
        assert by_code["1100"].net == Decimal("0")

    def test_other_organization_accounts_hidden(self, collect, create_account, ledger_query, org_id):
        create_account("1100", "Cash", organization_id=uuid4())
        codes = [s.account_code for s in ledger_query(lambda sel: sel.balances_by_account(org_id))]
        assert codes.count("1100") == 1


class TestVerifyRunningBalances:

    def test_consistent_after_posting(self, collect, ledger_query, org_id):
        assert ledger_query(lambda sel: sel.verify_running_balances(org_id)) == []

    def test_consistent_after_void_and_reverse(self, collect, reversal_engine, actor, ledger_query, org_id):
        invoice, receipt = collect
        reversal_engine.void(actor, receipt.id, "bounced")
        reversal_engine.reverse(actor, invoice.id, "wrong customer")
        assert ledger_query(lambda sel: sel.verify_running_balances(org_id)) == []

    def test_detects_drift(self, collect, session_factory, ledger_query, org_id, standard_accounts):
        cash_id = standard_accounts["cash"].id
        with session_scope(session_factory) as s:
            s.execute(
                update(Account)
                .where(Account.id == cash_id)
                .values(balance=Account.balance + Decimal("5"))
                .execution_options(synchronize_session=False)
            )

        found = ledger_query(lambda sel: sel.verify_running_balances(org_id))
        assert len(found) == 1
        assert found[0].account_id == cash_id
        assert found[0].account_code == "1100"
        assert found[0].stored_balance == Decimal("45")
        assert found[0].computed_balance == Decimal("40")
        assert found[0].difference == Decimal("5")
