"""
conftest.py - Shared pytest fixtures for the classroom economy tests

Every test gets its own SQLite file, so tests never see each other's rows:
- `db`: fresh settings, engine and schema
- `classroom`: a classroom with its treasury
- `funded_classroom`: treasury, two students, a mart and a banker with money issued
"""

from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from config import reload_settings
from db_engine import init_db, reset_engine
from models import Account, AccountRole
from services.banking import BankingService
from services.classroom import ClassroomService, ClassroomSetup
from services.ledger import LedgerService


T0 = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)


@dataclass
class Economy:
    """A populated classroom for tests."""
    scope_id: str
    treasury: Account
    alice: Account
    bob: Account
    mart: Account
    banker: Account

    def balance(self, account: Account) -> int:
        return LedgerService.get_balance(self.scope_id, account.id)

    def total(self) -> int:
        return LedgerService.money_supply(self.scope_id).total


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Point the engine at a temporary SQLite database."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'economy.db'}")
    monkeypatch.setenv("DB_BUSY_TIMEOUT_MS", "10000")
    reload_settings()
    reset_engine()
    init_db()
    yield
    reset_engine()
    reload_settings()


@pytest.fixture
def classroom(db) -> ClassroomSetup:
    return ClassroomService.create_classroom("Class 3-2", teacher_user_id="teacher-1")


def make_economy(treasury_funds: int = 100_000, student_funds: int = 1_000) -> Economy:
    """Create a classroom with students, a mart and a banker, and fund them."""
    setup = ClassroomService.create_classroom("Class 3-2", teacher_user_id="teacher-1")
    scope_id = setup.classroom.id
    alice = ClassroomService.provision_account(scope_id, "alice", AccountRole.STUDENT, "Alice")
    bob = ClassroomService.provision_account(scope_id, "bob", AccountRole.STUDENT, "Bob")
    mart = ClassroomService.provision_account(scope_id, "mart", AccountRole.MART, "School Mart")
    banker = ClassroomService.provision_account(scope_id, "banker", AccountRole.BANKER, "Banker")

    BankingService.issue_currency(scope_id, treasury_funds + 2 * student_funds)
    if student_funds:
        LedgerService.transfer(scope_id, setup.treasury.id, alice.id, student_funds)
        LedgerService.transfer(scope_id, setup.treasury.id, bob.id, student_funds)

    return Economy(
        scope_id=scope_id,
        treasury=setup.treasury,
        alice=alice,
        bob=bob,
        mart=mart,
        banker=banker,
    )


@pytest.fixture
def economy(db) -> Economy:
    return make_economy()
