"""
test_concurrency.py - Racing writers against one SQLite file

Write sessions serialise on the store, so concurrent requests must never
lose an update, double-spend a holding or pay a bill twice.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date

from errors import AlreadyPaid, EconomyError, InsufficientHoldings
from services.billing import BillingService
from services.ledger import LedgerService
from services.market import MarketService


def _run_all(calls):
    """Run callables on a thread pool; return (results, errors)."""
    results, errors = [], []
    with ThreadPoolExecutor(max_workers=8) as pool:
        futures = [pool.submit(call) for call in calls]
        for future in futures:
            try:
                results.append(future.result())
            except EconomyError as e:
                errors.append(e)
    return results, errors


def test_opposite_transfers_lose_no_updates(economy):
    scope, alice, bob = economy.scope_id, economy.alice.id, economy.bob.id
    total_before = economy.total()

    calls = []
    for _ in range(20):
        calls.append(lambda: LedgerService.transfer(scope, alice, bob, 3))
        calls.append(lambda: LedgerService.transfer(scope, bob, alice, 2))
    results, errors = _run_all(calls)

    assert errors == []
    assert len(results) == 40
    assert economy.balance(economy.alice) == 1000 - 20 * 3 + 20 * 2
    assert economy.balance(economy.bob) == 1000 + 20 * 3 - 20 * 2
    assert economy.total() == total_before


def test_concurrent_spending_never_overdraws(economy):
    scope, alice, bob = economy.scope_id, economy.alice.id, economy.bob.id

    results, errors = _run_all([lambda: LedgerService.transfer(scope, alice, bob, 300) for _ in range(6)])

    assert len(results) == 3
    assert len(errors) == 3
    assert economy.balance(economy.alice) == 100


def test_holding_is_sold_at_most_once(economy):
    scope, alice = economy.scope_id, economy.alice.id
    stock = MarketService.list_instrument(scope, "Lemonade Co", 10)
    MarketService.buy(scope, alice, stock.id, 5)

    results, errors = _run_all([lambda: MarketService.sell(scope, alice, stock.id, 1) for _ in range(10)])

    assert len(results) == 5
    assert all(isinstance(e, InsufficientHoldings) for e in errors)
    assert MarketService.holdings_of(scope, alice) == []


def test_bill_is_paid_exactly_once(economy):
    scope, alice = economy.scope_id, economy.alice.id
    bill = BillingService.issue_bill(scope, "Insurance", 100, date(2025, 3, 31), [alice])

    results, errors = _run_all([lambda: BillingService.pay(scope, alice, bill.id) for _ in range(6)])

    assert len(results) == 1
    assert all(isinstance(e, AlreadyPaid) for e in errors)
    assert economy.balance(economy.alice) == 900
