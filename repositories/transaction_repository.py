"""
Transaction Repository - data access layer for Transaction model.
Transactions are append-only: there is no update or delete here.
"""

from typing import Optional, List
from datetime import datetime, timezone
from sqlmodel import Session, select

from db_engine import read_session
from models import Transaction, TransactionType


class TransactionRepository:
    """Repository for appending and reading ledger legs."""

    @staticmethod
    def append(
        session: Session,
        scope_id: str,
        account_id: int,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        correlation_id: str,
        counterparty_account_id: Optional[int] = None,
        created_at: Optional[datetime] = None
    ) -> Transaction:
        """
        Append one leg to the log.

        Args:
            session: Open write session
            scope_id: Scope of the account
            account_id: Account whose balance moved
            amount: Signed amount (negative for debits)
            transaction_type: Kind of movement
            description: Human-readable description
            correlation_id: Id shared by all legs of the movement
            counterparty_account_id: Other side of a transfer, if any
            created_at: Timestamp override (defaults to now)

        Returns:
            Created Transaction (flushed, id assigned)
        """
        transaction = Transaction(
            scope_id=scope_id,
            account_id=account_id,
            amount=amount,
            type=transaction_type,
            description=description,
            correlation_id=correlation_id,
            counterparty_account_id=counterparty_account_id,
            created_at=created_at or datetime.now(timezone.utc)
        )
        session.add(transaction)
        session.flush()
        return transaction

    @staticmethod
    def get_by_account(
        account_id: int,
        scope_id: str,
        newest_first: bool = True,
        limit: Optional[int] = None,
        session: Optional[Session] = None
    ) -> List[Transaction]:
        """
        Retrieve the history of one account.

        Args:
            account_id: Account ID to look up
            scope_id: Scope filter
            newest_first: Ordering of the result
            limit: Optional maximum number of rows
            session: Optional existing session for transaction reuse

        Returns:
            List of Transaction objects
        """
        def _get_by_account(sess: Session) -> List[Transaction]:
            statement = select(Transaction).where(
                Transaction.account_id == account_id,
                Transaction.scope_id == scope_id
            )
            if newest_first:
                statement = statement.order_by(Transaction.created_at.desc(), Transaction.id.desc())
            else:
                statement = statement.order_by(Transaction.created_at, Transaction.id)
            if limit is not None:
                statement = statement.limit(limit)
            return list(sess.exec(statement).all())

        if session is not None:
            return _get_by_account(session)
        else:
            with read_session() as session:
                return _get_by_account(session)

    @staticmethod
    def get_by_correlation(correlation_id: str, session: Optional[Session] = None) -> List[Transaction]:
        """Retrieve every leg of one movement, in insertion order."""
        def _get(sess: Session) -> List[Transaction]:
            statement = select(Transaction).where(
                Transaction.correlation_id == correlation_id
            ).order_by(Transaction.id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _get(session)
        else:
            with read_session() as session:
                return _get(session)
