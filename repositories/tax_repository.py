"""
Tax Repository - data access layer for TaxBill and TaxRecipient models.
"""

from typing import Optional, List, Iterable, Tuple
from datetime import date, datetime

from sqlalchemy import delete, update
from sqlmodel import Session, select

from db_engine import read_session
from models import TaxBill, TaxRecipient


class TaxRepository:
    """Repository for tax bills and per-recipient payment status."""

    @staticmethod
    def add_bill(
        session: Session,
        scope_id: str,
        name: str,
        amount: int,
        due_date: date,
        account_ids: Iterable[int]
    ) -> TaxBill:
        """
        Create a bill and one unpaid recipient row per account.

        Args:
            session: Open write session
            scope_id: Scope of the bill
            name: Bill name
            amount: Amount each recipient owes
            due_date: Payment due date
            account_ids: Recipients (already validated and de-duplicated)

        Returns:
            Created TaxBill
        """
        bill = TaxBill(scope_id=scope_id, name=name, amount=amount, due_date=due_date)
        session.add(bill)
        session.flush()
        for account_id in account_ids:
            session.add(TaxRecipient(bill_id=bill.id, account_id=account_id))
        session.flush()
        return bill

    @staticmethod
    def get_bill(bill_id: int, scope_id: str, session: Optional[Session] = None) -> Optional[TaxBill]:
        def _get(sess: Session) -> Optional[TaxBill]:
            statement = select(TaxBill).where(TaxBill.id == bill_id, TaxBill.scope_id == scope_id)
            return sess.exec(statement).first()

        if session is not None:
            return _get(session)
        else:
            with read_session() as session:
                return _get(session)

    @staticmethod
    def list_bills(scope_id: str, session: Optional[Session] = None) -> List[TaxBill]:
        def _list(sess: Session) -> List[TaxBill]:
            statement = select(TaxBill).where(
                TaxBill.scope_id == scope_id
            ).order_by(TaxBill.due_date, TaxBill.id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def lock_recipient(session: Session, bill_id: int, account_id: int) -> Optional[TaxRecipient]:
        statement = (
            select(TaxRecipient)
            .where(TaxRecipient.bill_id == bill_id, TaxRecipient.account_id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(statement).first()

    @staticmethod
    def mark_paid(session: Session, recipient: TaxRecipient, paid_at: datetime) -> bool:
        """
        Flip unpaid -> paid. The WHERE clause on is_paid makes the flip happen
        at most once even if two payments race.

        Returns:
            True if this call performed the flip
        """
        result = session.exec(
            update(TaxRecipient)
            .where(TaxRecipient.id == recipient.id, TaxRecipient.is_paid.is_(False))
            .values(is_paid=True, paid_at=paid_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        session.refresh(recipient)
        return True

    @staticmethod
    def recipients_of(bill_id: int, session: Optional[Session] = None) -> List[TaxRecipient]:
        def _list(sess: Session) -> List[TaxRecipient]:
            statement = select(TaxRecipient).where(
                TaxRecipient.bill_id == bill_id
            ).order_by(TaxRecipient.account_id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def unpaid_for(account_id: int, scope_id: str, session: Optional[Session] = None) -> List[Tuple[TaxBill, TaxRecipient]]:
        """Bills the account still owes, earliest due first."""
        def _unpaid(sess: Session) -> List[Tuple[TaxBill, TaxRecipient]]:
            statement = (
                select(TaxBill, TaxRecipient)
                .join(TaxRecipient, TaxRecipient.bill_id == TaxBill.id)
                .where(
                    TaxRecipient.account_id == account_id,
                    TaxRecipient.is_paid.is_(False),
                    TaxBill.scope_id == scope_id
                )
                .order_by(TaxBill.due_date, TaxBill.id)
            )
            return [(bill, recipient) for bill, recipient in sess.exec(statement).all()]

        if session is not None:
            return _unpaid(session)
        else:
            with read_session() as session:
                return _unpaid(session)

    @staticmethod
    def delete_bill(session: Session, bill: TaxBill):
        session.exec(delete(TaxRecipient).where(TaxRecipient.bill_id == bill.id))
        session.delete(bill)
        session.flush()
