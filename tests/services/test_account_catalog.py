"""SqlAccountCatalog: chart-of-accounts maintenance and lookup."""

from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from ledger_kernel.db.engine import session_scope
from ledger_kernel.exceptions import AccountNotFoundError, InvalidCurrencyError
from ledger_kernel.models.account import AccountType, suggested_account_type
from ledger_kernel.services.account_catalog import SqlAccountCatalog


class TestSuggestedAccountType:

    @pytest.mark.parametrize(
        "code,expected",
        [
            ("1000", AccountType.ASSET),
            ("1100", AccountType.ASSET),
            ("2100", AccountType.LIABILITY),
            ("3000", AccountType.EQUITY),
            ("4000", AccountType.REVENUE),
            ("5000", AccountType.COST_OF_SALES),
            ("6100", AccountType.EXPENSE),
            ("9999", AccountType.EXPENSE),
            ("CASH", None),
            ("", None),
            ("0100", None),
        ],
    )
    def test_ranges(self, code, expected):
        assert suggested_account_type(code) == expected


class TestCreateAccount:

    def test_type_inferred_from_code(self, create_account):
        info = create_account("2100", "Accounts Payable")
        assert info.account_type == AccountType.LIABILITY
        assert info.normal_balance == "credit"
        assert info.is_active

    def test_explicit_type_wins(self, create_account):
        info = create_account("1900", "Owner draws", account_type=AccountType.EQUITY)
        assert info.account_type == AccountType.EQUITY

    def test_uninferable_code_rejected(self, session_factory, org_id, test_actor_id):
        with session_scope(session_factory) as s:
            with pytest.raises(ValueError):
                SqlAccountCatalog(s).create_account(org_id, "CASH", "Cash", test_actor_id)

    def test_currency_validated(self, session_factory, org_id, test_actor_id):
        with session_scope(session_factory) as s:
            with pytest.raises(InvalidCurrencyError):
                SqlAccountCatalog(s).create_account(
                    org_id, "1100", "Cash", test_actor_id, currency="DOLLARS"
                )

    def test_currency_normalized(self, create_account):
        assert create_account("1110", "Euro cash", currency="eur").currency == "EUR"

    def test_duplicate_code_in_same_org_rejected(self, create_account):
        create_account("1100", "Cash")
        with pytest.raises(IntegrityError):
            create_account("1100", "Cash again")

    def test_same_code_in_other_org_allowed(self, create_account):
        a = create_account("1100", "Cash")
        b = create_account("1100", "Cash", organization_id=uuid4())
        assert a.id != b.id


class TestLookup:

    def test_get_by_code(self, session_factory, org_id, standard_accounts):
        with session_scope(session_factory) as s:
            info = SqlAccountCatalog(s).get_by_code(org_id, "4000")
        assert info.id == standard_accounts["revenue"].id

    def test_get_missing(self, session_factory):
        with session_scope(session_factory) as s:
            assert SqlAccountCatalog(s).get_account(uuid4()) is None

    def test_list_ordered_by_code_and_filtered(self, session_factory, org_id, standard_accounts):
        with session_scope(session_factory) as s:
            catalog = SqlAccountCatalog(s)
            codes = [a.code for a in catalog.list_accounts(org_id)]
            assets = [a.code for a in catalog.list_accounts(org_id, account_type=AccountType.ASSET)]
        assert codes == sorted(codes)
        assert assets == ["1100", "1200"]

    def test_active_only(self, session_factory, org_id, create_account):
        create_account("1100", "Cash")
        create_account("1150", "Old bank", is_active=False)
        with session_scope(session_factory) as s:
            codes = [a.code for a in SqlAccountCatalog(s).list_accounts(org_id, active_only=True)]
        assert codes == ["1100"]


class TestActivation:

    def test_deactivate_and_reactivate(self, session_factory, create_account, test_actor_id):
        info = create_account("1100", "Cash")
        with session_scope(session_factory) as s:
            catalog = SqlAccountCatalog(s)
            assert not catalog.set_active(info.id, False, test_actor_id).is_active
            assert catalog.set_active(info.id, True, test_actor_id).is_active

    def test_unknown_account(self, session_factory, test_actor_id):
        with session_scope(session_factory) as s:
            with pytest.raises(AccountNotFoundError):
                SqlAccountCatalog(s).set_active(uuid4(), False, test_actor_id)


class TestDelete:

    def test_unreferenced_account_can_be_deleted(self, session_factory, create_account):
        info = create_account("6200", "Unused expense")
        with session_scope(session_factory) as s:
            SqlAccountCatalog(s).delete_account(info.id)
        with session_scope(session_factory) as s:
            assert SqlAccountCatalog(s).get_account(info.id) is None
