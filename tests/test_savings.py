"""
test_savings.py - Tests for the savings engine

Tests:
- Product validation
- Join escrow, cancellation refund and maturity payout
- Treasury funding of interest and receipt of penalties
- Maturity sweep idempotency
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from errors import ExceedsMaxAmount, InsufficientFunds, InvalidAmount, InvalidTransition, NotFound, NotOwner
from models import TransactionType
from services.ledger import LedgerService
from services.savings import SavingsService

from conftest import T0


@pytest.fixture
def product(economy):
    return SavingsService.create_product(
        economy.scope_id, "Four-week deposit",
        maturity_days=28, rate="0.05", cancellation_rate="0.01", max_amount=500
    )


class TestProducts:

    def test_create_product(self, economy, product):
        [stored] = SavingsService.products_of(economy.scope_id)
        assert stored.id == product.id
        assert stored.rate == Decimal("0.05")
        assert stored.cancellation_rate == Decimal("0.01")

    @pytest.mark.parametrize("kwargs", [
        dict(maturity_days=0, rate="0.05", cancellation_rate="0", max_amount=100),
        dict(maturity_days=7, rate="0.05", cancellation_rate="0", max_amount=0),
        dict(maturity_days=7, rate="0.05", cancellation_rate="0.06", max_amount=100),
    ])
    def test_invalid_product(self, economy, kwargs):
        with pytest.raises(InvalidAmount):
            SavingsService.create_product(economy.scope_id, "Bad", **kwargs)

    def test_delete_product_refused_while_subscribed(self, economy, product):
        SavingsService.join(economy.scope_id, economy.alice.id, product.id, 100, now=T0)
        with pytest.raises(InvalidTransition):
            SavingsService.delete_products(economy.scope_id, [product.id])

    def test_delete_unused_product(self, economy, product):
        assert SavingsService.delete_products(economy.scope_id, [product.id]) == 1
        assert SavingsService.products_of(economy.scope_id) == []


class TestJoin:

    def test_join_escrows_principal(self, economy, product):
        before = economy.total()
        sub = SavingsService.join(economy.scope_id, economy.alice.id, product.id, 400, now=T0)

        assert economy.balance(economy.alice) == 600
        assert sub.principal == 400
        assert sub.matures_at == T0 + timedelta(days=28)
        assert LedgerService.money_supply(economy.scope_id).savings_escrow == 400
        assert economy.total() == before

        [leg] = LedgerService.get_history(economy.scope_id, economy.alice.id, limit=1)
        assert leg.type == TransactionType.SAVINGS_JOIN
        assert leg.amount == -400

    def test_join_over_maximum(self, economy, product):
        with pytest.raises(ExceedsMaxAmount):
            SavingsService.join(economy.scope_id, economy.alice.id, product.id, 501, now=T0)

    def test_join_without_funds(self, economy, product):
        LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, 900)
        with pytest.raises(InsufficientFunds):
            SavingsService.join(economy.scope_id, economy.alice.id, product.id, 200, now=T0)
        assert SavingsService.subscriptions_of(economy.scope_id, economy.alice.id) == []

    def test_join_invalid_amount(self, economy, product):
        with pytest.raises(InvalidAmount):
            SavingsService.join(economy.scope_id, economy.alice.id, product.id, 0, now=T0)

    def test_join_unknown_product(self, economy):
        with pytest.raises(NotFound):
            SavingsService.join(economy.scope_id, economy.alice.id, 999_999, 10, now=T0)

    def test_enrollees(self, economy, product):
        SavingsService.join(economy.scope_id, economy.alice.id, product.id, 100, now=T0)
        SavingsService.join(economy.scope_id, economy.bob.id, product.id, 200, now=T0 + timedelta(days=1))
        enrollees = SavingsService.enrollees_of(economy.scope_id, product.id)
        assert [(e.display_name, e.principal) for e in enrollees] == [("Alice", 100), ("Bob", 200)]


class TestCancel:

    def test_cancel_refunds_at_cancellation_rate(self, economy, product):
        sub = SavingsService.join(economy.scope_id, economy.alice.id, product.id, 400, now=T0)
        treasury_before = economy.balance(economy.treasury)
        total_before = economy.total()

        leg = SavingsService.cancel(economy.scope_id, economy.alice.id, sub.id, now=T0 + timedelta(days=3))

        assert leg.amount == 404
        assert leg.type == TransactionType.SAVINGS_CANCEL
        assert economy.balance(economy.alice) == 1004
        assert economy.balance(economy.treasury) == treasury_before - 4
        assert economy.total() == total_before
        assert SavingsService.subscriptions_of(economy.scope_id, economy.alice.id) == []

    def test_cancel_rounds_half_up(self, economy, product):
        sub = SavingsService.join(economy.scope_id, economy.alice.id, product.id, 150, now=T0)
        leg = SavingsService.cancel(economy.scope_id, economy.alice.id, sub.id, now=T0 + timedelta(days=1))
        # 150 x 1.01 = 151.5
        assert leg.amount == 152

    def test_negative_cancellation_rate_pays_penalty_to_treasury(self, economy):
        product = SavingsService.create_product(
            economy.scope_id, "Locked", maturity_days=10, rate="0.1", cancellation_rate="-0.1", max_amount=1000
        )
        sub = SavingsService.join(economy.scope_id, economy.alice.id, product.id, 500, now=T0)
        treasury_before = economy.balance(economy.treasury)
        total_before = economy.total()

        SavingsService.cancel(economy.scope_id, economy.alice.id, sub.id, now=T0 + timedelta(days=1))

        assert economy.balance(economy.alice) == 950
        assert economy.balance(economy.treasury) == treasury_before + 50
        assert economy.total() == total_before

    def test_cancel_by_other_account(self, economy, product):
        sub = SavingsService.join(economy.scope_id, economy.alice.id, product.id, 100, now=T0)
        with pytest.raises(NotOwner):
            SavingsService.cancel(economy.scope_id, economy.bob.id, sub.id, now=T0)
        assert len(SavingsService.subscriptions_of(economy.scope_id, economy.alice.id)) == 1

    def test_cancel_twice(self, economy, product):
        sub = SavingsService.join(economy.scope_id, economy.alice.id, product.id, 100, now=T0)
        SavingsService.cancel(economy.scope_id, economy.alice.id, sub.id, now=T0)
        with pytest.raises(NotFound):
            SavingsService.cancel(economy.scope_id, economy.alice.id, sub.id, now=T0)

    def test_cancel_after_maturity_pays_maturity(self, economy, product):
        sub = SavingsService.join(economy.scope_id, economy.alice.id, product.id, 400, now=T0)
        leg = SavingsService.cancel(economy.scope_id, economy.alice.id, sub.id, now=T0 + timedelta(days=30))
        assert leg.amount == 420
        assert leg.type == TransactionType.SAVINGS_MATURITY

    def test_earliest_cancellation_is_two_thirds_of_the_term(self, economy):
        product = SavingsService.create_product(
            economy.scope_id, "Three weeks", maturity_days=21, rate="0.03", cancellation_rate="0", max_amount=100
        )
        sub = SavingsService.join(economy.scope_id, economy.alice.id, product.id, 10, now=T0)
        assert SavingsService.earliest_cancellation(sub) == T0 + timedelta(days=14)


class TestMaturitySweep:

    def test_sweep_pays_matured_subscriptions_once(self, economy, product):
        sub = SavingsService.join(economy.scope_id, economy.alice.id, product.id, 400, now=T0)
        total_before = economy.total()

        early = SavingsService.sweep_maturities(now=T0 + timedelta(days=27))
        assert early.count == 0
        assert economy.balance(economy.alice) == 600

        report = SavingsService.sweep_maturities(now=T0 + timedelta(days=28))
        assert report.settled == [sub.id]
        assert economy.balance(economy.alice) == 1020
        assert economy.total() == total_before

        again = SavingsService.sweep_maturities(now=T0 + timedelta(days=29))
        assert again.count == 0
        assert economy.balance(economy.alice) == 1020

    def test_sweep_defers_when_treasury_cannot_pay_interest(self, economy, product):
        sub = SavingsService.join(economy.scope_id, economy.alice.id, product.id, 400, now=T0)
        treasury_balance = economy.balance(economy.treasury)
        LedgerService.transfer(economy.scope_id, economy.treasury.id, economy.bob.id, treasury_balance)

        report = SavingsService.sweep_maturities(now=T0 + timedelta(days=28))
        assert report.failed == [sub.id]
        assert economy.balance(economy.alice) == 600
        assert LedgerService.money_supply(economy.scope_id).savings_escrow == 400

        LedgerService.transfer(economy.scope_id, economy.bob.id, economy.treasury.id, 100)
        report = SavingsService.sweep_maturities(now=T0 + timedelta(days=28))
        assert report.settled == [sub.id]
        assert economy.balance(economy.alice) == 1020
