"""
Account Repository - data access layer for Account model.
Write helpers take the caller's session and never commit; the service layer
owns transaction boundaries.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import Session, select

from db_engine import read_session
from errors import ConcurrentModification
from models import Account, AccountRole


class AccountRepository:
    """Repository for Account reads, row locks and balance updates."""

    @staticmethod
    def add(
        session: Session,
        scope_id: str,
        user_id: str,
        display_name: str,
        role: AccountRole
    ) -> Account:
        """
        Add a new zero-balance account.

        Args:
            session: Open write session
            scope_id: Classroom the account belongs to
            user_id: Owning user id
            display_name: Name shown in history and holder lists
            role: Account role

        Returns:
            Created Account (flushed, id assigned)
        """
        account = Account(
            scope_id=scope_id,
            user_id=user_id,
            display_name=display_name,
            role=role
        )
        session.add(account)
        session.flush()
        return account

    @staticmethod
    def get_by_id(account_id: int, scope_id: str, session: Optional[Session] = None) -> Optional[Account]:
        """
        Retrieve an account by id, restricted to one scope.

        Args:
            account_id: Account ID to look up
            scope_id: Scope the account must belong to
            session: Optional existing session for transaction reuse

        Returns:
            Account or None if missing or in another scope
        """
        def _get_by_id(sess: Session) -> Optional[Account]:
            statement = select(Account).where(
                Account.id == account_id,
                Account.scope_id == scope_id
            )
            return sess.exec(statement).first()

        if session is not None:
            return _get_by_id(session)
        else:
            with read_session() as session:
                return _get_by_id(session)

    @staticmethod
    def lock(session: Session, scope_id: str, account_ids: Iterable[int]) -> Dict[int, Account]:
        """
        Load accounts FOR UPDATE in ascending id order.

        The fixed order is what keeps two opposite transfers from deadlocking.
        Rows are re-read even if already in the identity map.
        """
        ids = sorted(set(account_ids))
        statement = (
            select(Account)
            .where(Account.id.in_(ids), Account.scope_id == scope_id)
            .order_by(Account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {account.id: account for account in session.exec(statement).all()}

    @staticmethod
    def apply_delta(session: Session, account: Account, delta: int) -> Account:
        """
        Compare-and-swap the balance on the account's revision.

        Raises:
            ConcurrentModification: the row changed since it was loaded
        """
        new_balance = account.balance + delta
        statement = (
            update(Account)
            .where(Account.id == account.id, Account.revision == account.revision)
            .values(balance=new_balance, revision=account.revision + 1)
            .execution_options(synchronize_session=False)
        )
        result = session.exec(statement)
        if result.rowcount != 1:
            raise ConcurrentModification(
                f"Account {account.id} was modified concurrently; retry the request"
            )
        set_committed_value(account, "balance", new_balance)
        set_committed_value(account, "revision", account.revision + 1)
        return account

    @staticmethod
    def list_by_scope(
        scope_id: str,
        role: Optional[AccountRole] = None,
        include_removed: bool = False,
        session: Optional[Session] = None
    ) -> List[Account]:
        """Retrieve the accounts of a scope, optionally filtered by role."""
        def _list(sess: Session) -> List[Account]:
            statement = select(Account).where(Account.scope_id == scope_id)
            if role is not None:
                statement = statement.where(Account.role == role)
            if not include_removed:
                statement = statement.where(Account.removed_at.is_(None))
            return list(sess.exec(statement.order_by(Account.id)).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def get_treasury(scope_id: str, session: Optional[Session] = None) -> Optional[Account]:
        """Retrieve the teacher (treasury) account of a scope."""
        def _get(sess: Session) -> Optional[Account]:
            statement = select(Account).where(
                Account.scope_id == scope_id,
                Account.role == AccountRole.TEACHER,
                Account.removed_at.is_(None)
            )
            return sess.exec(statement).first()

        if session is not None:
            return _get(session)
        else:
            with read_session() as session:
                return _get(session)

    @staticmethod
    def sum_balances(scope_id: str, session: Optional[Session] = None) -> int:
        """Sum every balance in the scope, removed accounts included."""
        def _sum(sess: Session) -> int:
            statement = select(func.coalesce(func.sum(Account.balance), 0)).where(
                Account.scope_id == scope_id
            )
            return int(sess.exec(statement).one())

        if session is not None:
            return _sum(session)
        else:
            with read_session() as session:
                return _sum(session)

    @staticmethod
    def soft_remove(session: Session, account: Account, removed_at: datetime) -> Account:
        """Mark an account removed; history keeps referencing it."""
        account.removed_at = removed_at
        session.add(account)
        session.flush()
        return account
