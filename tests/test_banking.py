"""
test_banking.py - Tests for issuance, the bank counter, the mart and
classroom account management
"""

import pytest

from errors import InsufficientFunds, InvalidTransition, NotFound, PermissionDenied, UnknownAccount
from models import AccountRole, TransactionType
from services.banking import BankingService, MartDirection
from services.classroom import ClassroomService
from services.ledger import LedgerService
from services.market import MarketService
from services.savings import SavingsService

from conftest import T0


class TestBanking:

    def test_issue_currency_mints_into_treasury(self, classroom):
        scope_id = classroom.classroom.id
        leg = BankingService.issue_currency(scope_id, 5000)

        assert leg.type == TransactionType.ISSUANCE
        assert LedgerService.get_balance(scope_id, classroom.treasury.id) == 5000
        assert LedgerService.money_supply(scope_id).total == 5000

    def test_banker_deposit_and_withdraw(self, economy):
        before = economy.total()
        BankingService.banker_deposit(economy.scope_id, economy.banker.id, economy.alice.id, 250)
        BankingService.banker_withdraw(economy.scope_id, economy.banker.id, economy.alice.id, 100)

        assert economy.balance(economy.alice) == 1150
        assert economy.total() == before + 150

    def test_only_bankers_work_the_counter(self, economy):
        with pytest.raises(PermissionDenied):
            BankingService.banker_deposit(economy.scope_id, economy.bob.id, economy.alice.id, 10)
        with pytest.raises(PermissionDenied):
            BankingService.banker_withdraw(economy.scope_id, economy.mart.id, economy.alice.id, 10)
        assert economy.balance(economy.alice) == 1000

    def test_withdraw_beyond_balance(self, economy):
        with pytest.raises(InsufficientFunds):
            BankingService.banker_withdraw(economy.scope_id, economy.banker.id, economy.alice.id, 1001)

    def test_mart_purchase_and_refund(self, economy):
        result = BankingService.mart_transfer(
            economy.scope_id, economy.mart.id, economy.alice.id, 80, MartDirection.FROM_STUDENT
        )
        assert result.debit.type == TransactionType.MART
        assert economy.balance(economy.alice) == 920
        assert economy.balance(economy.mart) == 80

        BankingService.mart_transfer(economy.scope_id, economy.mart.id, economy.alice.id, 30, "TO_STUDENT")
        assert economy.balance(economy.alice) == 950
        assert economy.balance(economy.mart) == 50

    def test_mart_role_required(self, economy):
        with pytest.raises(PermissionDenied):
            BankingService.mart_transfer(
                economy.scope_id, economy.bob.id, economy.alice.id, 10, MartDirection.FROM_STUDENT
            )
        assert economy.balance(economy.alice) == 1000


class TestClassroom:

    def test_create_classroom(self, db):
        setup = ClassroomService.create_classroom("Room 7", teacher_user_id="t-7", currency_unit="seed")
        assert setup.classroom.currency_unit == "seed"
        assert setup.treasury.role == AccountRole.TEACHER
        assert ClassroomService.get_classroom(setup.classroom.id).alias == "Room 7"

    def test_default_currency_unit(self, classroom):
        assert classroom.classroom.currency_unit == "coin"

    def test_unknown_classroom(self, db):
        with pytest.raises(NotFound):
            ClassroomService.provision_account("missing", "u", AccountRole.STUDENT, "U")

    @pytest.mark.parametrize("role", [AccountRole.TEACHER, AccountRole.STOCK])
    def test_engine_roles_cannot_be_provisioned(self, classroom, role):
        with pytest.raises(InvalidTransition):
            ClassroomService.provision_account(classroom.classroom.id, "x", role, "X")

    def test_remove_account_sweeps_balance_to_treasury(self, economy):
        treasury_before = economy.balance(economy.treasury)
        total_before = economy.total()

        removed = ClassroomService.remove_account(economy.scope_id, economy.bob.id, now=T0)

        assert removed.removed_at == T0
        assert economy.balance(economy.treasury) == treasury_before + 1000
        assert economy.total() == total_before
        with pytest.raises(UnknownAccount):
            LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, 1)
        students = LedgerService.accounts_of(economy.scope_id, role=AccountRole.STUDENT)
        assert [a.id for a in students] == [economy.alice.id]

    def test_treasury_cannot_be_removed(self, economy):
        with pytest.raises(InvalidTransition):
            ClassroomService.remove_account(economy.scope_id, economy.treasury.id)

    def test_remove_refused_while_holding_stock(self, economy):
        stock = MarketService.list_instrument(economy.scope_id, "Lemonade Co", 10)
        MarketService.buy(economy.scope_id, economy.bob.id, stock.id, 1)
        with pytest.raises(InvalidTransition):
            ClassroomService.remove_account(economy.scope_id, economy.bob.id)

    def test_remove_refused_while_saving(self, economy):
        product = SavingsService.create_product(
            economy.scope_id, "Deposit", maturity_days=7, rate="0.02", cancellation_rate="0", max_amount=500
        )
        SavingsService.join(economy.scope_id, economy.bob.id, product.id, 100, now=T0)
        with pytest.raises(InvalidTransition):
            ClassroomService.remove_account(economy.scope_id, economy.bob.id)
        assert economy.balance(economy.bob) == 900
