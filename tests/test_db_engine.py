"""
test_db_engine.py - Tests for store error mapping and the balance
compare-and-swap

Tests:
- A stale revision never overwrites a newer balance
- Constraint violations surface as ConcurrentModification
- An unreachable store surfaces as a retryable Unavailable
- Timestamps are stored and read back as UTC
"""

from datetime import datetime, timedelta

import pytest
from sqlmodel import select

from config import reload_settings
from db_engine import read_session, reset_engine, write_session
from errors import ConcurrentModification, Unavailable
from models import Account, JobAssignment
from repositories import AccountRepository
from services.classroom import ClassroomService
from services.ledger import LedgerService
from services.payroll import PayrollService

from conftest import T0


class TestRevisionCheck:

    def test_stale_revision_is_rejected(self, economy):
        with read_session() as session:
            stale = AccountRepository.get_by_id(economy.alice.id, economy.scope_id, session=session)
        LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, 10)

        with pytest.raises(ConcurrentModification) as excinfo:
            with write_session() as session:
                AccountRepository.apply_delta(session, stale, 500)

        assert excinfo.value.retryable
        assert economy.balance(economy.alice) == 990

    def test_fresh_revision_applies(self, economy):
        with write_session() as session:
            [account] = LedgerService.lock_accounts(session, economy.scope_id, [economy.alice.id]).values()
            revision = account.revision
            AccountRepository.apply_delta(session, account, 5)

        stored = LedgerService.get_account(economy.scope_id, economy.alice.id)
        assert stored.balance == 1005
        assert stored.revision == revision + 1


class TestStoreErrors:

    def test_integrity_error_becomes_concurrent_modification(self, economy):
        job = PayrollService.create_job(economy.scope_id, "Librarian", 30)

        with pytest.raises(ConcurrentModification):
            with write_session() as session:
                session.add(JobAssignment(job_id=job.id, account_id=economy.alice.id))
                session.add(JobAssignment(job_id=job.id, account_id=economy.alice.id))
                session.flush()

        # The whole unit rolled back
        [info] = PayrollService.jobs_of(economy.scope_id)
        assert info.assignee_ids == []

    def test_unreachable_store_is_unavailable(self, db, tmp_path, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'missing' / 'economy.db'}")
        reload_settings()
        reset_engine()

        with pytest.raises(Unavailable) as excinfo:
            with write_session() as session:
                session.exec(select(Account)).all()
        assert excinfo.value.retryable

        with pytest.raises(Unavailable):
            with read_session() as session:
                session.exec(select(Account)).all()


class TestTimestamps:

    def test_naive_clock_is_stored_as_utc(self, economy):
        removed = ClassroomService.remove_account(economy.scope_id, economy.bob.id, now=datetime(2025, 3, 3, 9, 0))
        assert removed.removed_at == T0

        stored = LedgerService.get_account(economy.scope_id, economy.bob.id)
        assert stored.removed_at == T0
        assert stored.removed_at.utcoffset() == timedelta(0)

    def test_default_timestamps_are_aware(self, economy):
        result = LedgerService.transfer(economy.scope_id, economy.alice.id, economy.bob.id, 5)
        [leg] = [t for t in LedgerService.get_history(economy.scope_id, economy.alice.id) if t.id == result.debit.id]
        assert leg.created_at.tzinfo is not None
