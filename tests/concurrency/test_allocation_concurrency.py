"""
Concurrent allocation, posting and status changes.

Threads share one engine and race through a Barrier.  On SQLite every
writer begins IMMEDIATE, so the file lock serializes them; on PostgreSQL
(DATABASE_URL) the atomic counter UPDATE and row locks do.

Run with: pytest tests/concurrency -v
Skip with: pytest -m "not slow_locks"
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.dtos import EntryDraft
from ledger_kernel.domain.numbering import SequenceScope
from ledger_kernel.exceptions import InvalidStateError
from ledger_kernel.models.transaction import TransactionStatus
from ledger_kernel.selectors import LedgerSelector, TransactionSelector

pytestmark = pytest.mark.slow_locks

THREADS = 8


def _race(fn, count=THREADS):
    """Run ``fn(i)`` on ``count`` threads released together; return results or exceptions."""
    barrier = Barrier(count, timeout=30)

    def _worker(i):
        barrier.wait()
        try:
            return fn(i)
        except Exception as exc:  # collected for assertions
            return exc

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(_worker, range(count)))


class TestConcurrentAllocation:

    def test_numbers_never_duplicated(self, allocator, org_id):
        scope = SequenceScope(org_id, year=2024)
        per_thread = 10

        results = _race(
            lambda i: [allocator.allocate(scope, "INVOICE") for _ in range(per_thread)]
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert errors == []
        refs = [ref for batch in results for ref in batch]
        assert len(refs) == len(set(refs)) == THREADS * per_thread
        assert sorted(refs) == [f"INV-2024-{n:04d}" for n in range(1, THREADS * per_thread + 1)]

    def test_each_thread_sees_increasing_numbers(self, allocator, org_id):
        scope = SequenceScope(org_id, year=2024)
        results = _race(lambda i: [allocator.allocate(scope, "BILL") for _ in range(5)])
        for batch in results:
            numbers = [int(ref.rsplit("-", 1)[1]) for ref in batch]
            assert numbers == sorted(numbers)

    def test_first_use_of_scope_races(self, allocator, org_id):
        # Every thread may find no counter row and try to create it.
        scope = SequenceScope(org_id, year=2031)
        results = _race(lambda i: allocator.allocate(scope, "PAYMENT"))
        assert not [r for r in results if isinstance(r, Exception)]
        assert sorted(results) == [f"PAY-2031-{n:04d}" for n in range(1, THREADS + 1)]


class TestConcurrentPosting:

    def test_unique_references_and_exact_balances(
        self, posting_engine, actor, make_draft, standard_accounts, session_factory
    ):
        def _post(i):
            return posting_engine.post(
                actor,
                make_draft(description=f"Sale {i}"),
                [
                    EntryDraft.debit(standard_accounts["receivables"].id, Decimal("10.25")),
                    EntryDraft.credit(standard_accounts["revenue"].id, Decimal("10.25")),
                ],
            )

        results = _race(_post)
        assert not [r for r in results if isinstance(r, Exception)]

        refs = {view.reference for view in results}
        assert len(refs) == THREADS

        with session_scope(session_factory) as s:
            assert LedgerSelector(s).verify_running_balances(actor.organization_id) == []
            page = TransactionSelector(s).list(actor.organization_id, limit=50)
        assert page.total == THREADS

        from_db = {b.account_code: b for b in _balances(session_factory, actor.organization_id)}
        assert from_db["1200"].net == Decimal("10.25") * THREADS
        assert from_db["4000"].net == Decimal("10.25") * THREADS


class TestConcurrentStatusChanges:

    def test_void_exactly_once(self, post_sale, reversal_engine, actor):
        original = post_sale(Decimal("50"))

        results = _race(lambda i: reversal_engine.void(actor, original.id, f"dup {i}"))

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert winners[0].status == TransactionStatus.VOIDED
        assert all(isinstance(r, InvalidStateError) for r in losers)

    def test_reverse_exactly_once(
        self, post_sale, reversal_engine, actor, session_factory, standard_accounts, account_balance
    ):
        original = post_sale(Decimal("50"))

        results = _race(lambda i: reversal_engine.reverse(actor, original.id, f"undo {i}"))

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert all(isinstance(r, InvalidStateError) for r in losers)

        with session_scope(session_factory) as s:
            reversal = TransactionSelector(s).find_reversal(original.id)
        assert reversal is not None
        assert reversal.id == winners[0].reversal.id
        assert account_balance(standard_accounts["receivables"].id) == 0


def _balances(session_factory, organization_id):
    with session_scope(session_factory) as s:
        return LedgerSelector(s).balances_by_account(organization_id)
