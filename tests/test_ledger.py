"""
test_ledger.py - Tests for the ledger core

Tests:
- Transfers (legs, correlation ids, validation, rejection leaves state unchanged)
- Mint and burn
- History ordering and scoping
- Money supply audit
"""

import pytest

from errors import (
    EconomyError,
    InsufficientFunds,
    InvalidAmount,
    UnknownAccount,
    NotFound,
)
from models import AccountRole, TransactionType
from services.classroom import ClassroomService
from services.ledger import LedgerService

from conftest import make_economy


class TestTransfer:

    def test_transfer_moves_money_and_writes_two_legs(self, economy):
        result = LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, 400, memo="Lunch")

        assert economy.balance(economy.alice) == 600
        assert economy.balance(economy.bob) == 1400
        assert result.amount == 400
        assert result.debit.amount == -400
        assert result.credit.amount == 400
        assert result.debit.correlation_id == result.credit.correlation_id == result.correlation_id
        assert result.debit.counterparty_account_id == economy.bob.id
        assert result.credit.counterparty_account_id == economy.alice.id
        assert result.debit.type == TransactionType.TRANSFER
        assert result.debit.description == "Lunch"

    def test_legs_are_found_by_correlation_id(self, economy):
        from repositories import TransactionRepository

        result = LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, 10)
        legs = TransactionRepository.get_by_correlation(result.correlation_id)

        assert sorted(leg.amount for leg in legs) == [-10, 10]

    @pytest.mark.parametrize("amount", [0, -5, 2.5, True, "10"])
    def test_invalid_amount_is_rejected(self, economy, amount):
        with pytest.raises(InvalidAmount):
            LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, amount)

    def test_self_transfer_is_rejected(self, economy):
        with pytest.raises(InvalidAmount):
            LedgerService.transfer(economy.scope_id, economy.alice.id, economy.alice.id, 10)

    def test_insufficient_funds_leaves_state_unchanged(self, economy):
        history_before = LedgerService.get_history(economy.scope_id, economy.alice.id)

        with pytest.raises(InsufficientFunds):
            LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, 1001)

        assert economy.balance(economy.alice) == 1000
        assert economy.balance(economy.bob) == 1000
        assert len(LedgerService.get_history(economy.scope_id, economy.alice.id)) == len(history_before)

    def test_exact_balance_can_be_spent(self, economy):
        LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, 1000)
        assert economy.balance(economy.alice) == 0

    def test_unknown_account(self, economy):
        with pytest.raises(UnknownAccount):
            LedgerService.transfer(economy.scope_id, economy.alice.id, 999_999, 10)

    def test_accounts_of_another_classroom_are_unknown(self, economy):
        other = make_economy()
        with pytest.raises(UnknownAccount):
            LedgerService.transfer(economy.scope_id, economy.alice.id, other.bob.id, 10)
        assert other.balance(other.bob) == 1000

    def test_unknown_account_is_a_not_found(self, economy):
        with pytest.raises(NotFound):
            LedgerService.get_account(economy.scope_id, 999_999)

    def test_errors_carry_kind_and_message(self, economy):
        with pytest.raises(EconomyError) as exc_info:
            LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, 5000)
        assert exc_info.value.kind == "InsufficientFunds"
        assert "5000" in exc_info.value.message
        assert exc_info.value.retryable is False


class TestMintAndBurn:

    def test_mint_creates_money(self, economy):
        before = economy.total()
        leg = LedgerService.mint(economy.scope_id, economy.alice.id, 50)

        assert leg.amount == 50
        assert leg.type == TransactionType.DEPOSIT
        assert leg.counterparty_account_id is None
        assert economy.total() == before + 50

    def test_burn_destroys_money(self, economy):
        before = economy.total()
        leg = LedgerService.burn(economy.scope_id, economy.alice.id, 200)

        assert leg.amount == -200
        assert economy.balance(economy.alice) == 800
        assert economy.total() == before - 200

    def test_burn_cannot_go_negative(self, economy):
        with pytest.raises(InsufficientFunds):
            LedgerService.burn(economy.scope_id, economy.alice.id, 1001)
        assert economy.balance(economy.alice) == 1000


class TestHistory:

    def test_history_is_newest_first_by_default(self, economy):
        LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, 1, memo="first")
        LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, 2, memo="second")

        history = LedgerService.get_history(economy.scope_id, economy.alice.id)
        assert [t.description for t in history[:2]] == ["second", "first"]

        oldest_first = LedgerService.get_history(economy.scope_id, economy.alice.id, newest_first=False)
        assert oldest_first[-1].description == "second"

    def test_history_limit(self, economy):
        for amount in range(1, 6):
            LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, amount)
        assert len(LedgerService.get_history(economy.scope_id, economy.alice.id, limit=3)) == 3

    def test_history_of_foreign_account_is_refused(self, economy):
        other = make_economy()
        with pytest.raises(UnknownAccount):
            LedgerService.get_history(economy.scope_id, other.alice.id)

    def test_every_leg_balances_to_the_account_balance(self, economy):
        LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, 300)
        LedgerService.transfer(economy.scope_id, economy.bob.id, economy.alice.id, 120)

        for account in (economy.alice, economy.bob):
            history = LedgerService.get_history(economy.scope_id, account.id)
            assert sum(t.amount for t in history) == economy.balance(account)


class TestMoneySupply:

    def test_transfers_do_not_change_money_supply(self, economy):
        before = LedgerService.money_supply(economy.scope_id)
        LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, 250)
        after = LedgerService.money_supply(economy.scope_id)

        assert after.total == before.total
        assert after.savings_escrow == 0
        assert after.fund_escrow == 0

    def test_accounts_of_filters_by_role(self, economy):
        students = LedgerService.accounts_of(economy.scope_id, role=AccountRole.STUDENT)
        assert {a.id for a in students} == {economy.alice.id, economy.bob.id}

    def test_treasury_of(self, economy):
        assert LedgerService.treasury_of(economy.scope_id).id == economy.treasury.id

    def test_new_accounts_start_at_zero(self, economy):
        carol = ClassroomService.provision_account(economy.scope_id, "carol", AccountRole.STUDENT, "Carol")
        assert carol.balance == 0
        assert LedgerService.get_history(economy.scope_id, carol.id) == []
