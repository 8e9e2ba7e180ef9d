"""
Savings Repository - data access layer for SavingsProduct and SavingsSubscription models.
"""

from decimal import Decimal
from typing import Optional, List, Iterable, Tuple
from datetime import datetime

from sqlalchemy import delete, func
from sqlmodel import Session, select

from db_engine import read_session
from models import SavingsProduct, SavingsSubscription


class SavingsRepository:
    """Repository for savings products and the subscriptions escrowing principal."""

    @staticmethod
    def add_product(
        session: Session,
        scope_id: str,
        name: str,
        maturity_days: int,
        rate: Decimal,
        cancellation_rate: Decimal,
        max_amount: int
    ) -> SavingsProduct:
        product = SavingsProduct(
            scope_id=scope_id,
            name=name,
            maturity_days=maturity_days,
            rate=rate,
            cancellation_rate=cancellation_rate,
            max_amount=max_amount
        )
        session.add(product)
        session.flush()
        return product

    @staticmethod
    def get_product(product_id: int, scope_id: str, session: Optional[Session] = None) -> Optional[SavingsProduct]:
        def _get(sess: Session) -> Optional[SavingsProduct]:
            statement = select(SavingsProduct).where(
                SavingsProduct.id == product_id,
                SavingsProduct.scope_id == scope_id
            )
            return sess.exec(statement).first()

        if session is not None:
            return _get(session)
        else:
            with read_session() as session:
                return _get(session)

    @staticmethod
    def list_products(scope_id: str, session: Optional[Session] = None) -> List[SavingsProduct]:
        def _list(sess: Session) -> List[SavingsProduct]:
            statement = select(SavingsProduct).where(
                SavingsProduct.scope_id == scope_id
            ).order_by(SavingsProduct.id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def count_subscriptions(session: Session, product_ids: Iterable[int]) -> int:
        statement = select(func.count(SavingsSubscription.id)).where(
            SavingsSubscription.product_id.in_(list(product_ids))
        )
        return int(session.exec(statement).one())

    @staticmethod
    def delete_products(session: Session, scope_id: str, product_ids: Iterable[int]) -> int:
        """Delete products of one scope. Returns the number of rows removed."""
        result = session.exec(
            delete(SavingsProduct).where(
                SavingsProduct.id.in_(list(product_ids)),
                SavingsProduct.scope_id == scope_id
            )
        )
        return result.rowcount

    @staticmethod
    def add_subscription(
        session: Session,
        scope_id: str,
        account_id: int,
        product_id: int,
        principal: int,
        joined_at: datetime,
        matures_at: datetime
    ) -> SavingsSubscription:
        subscription = SavingsSubscription(
            scope_id=scope_id,
            account_id=account_id,
            product_id=product_id,
            principal=principal,
            joined_at=joined_at,
            matures_at=matures_at
        )
        session.add(subscription)
        session.flush()
        return subscription

    @staticmethod
    def lock_subscription(session: Session, subscription_id: int, scope_id: str) -> Optional[SavingsSubscription]:
        """Load a subscription FOR UPDATE; None once it has been settled."""
        statement = (
            select(SavingsSubscription)
            .where(
                SavingsSubscription.id == subscription_id,
                SavingsSubscription.scope_id == scope_id
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(statement).first()

    @staticmethod
    def delete_subscription(session: Session, subscription: SavingsSubscription):
        session.delete(subscription)
        session.flush()

    @staticmethod
    def list_by_account(account_id: int, scope_id: str, session: Optional[Session] = None) -> List[SavingsSubscription]:
        def _list(sess: Session) -> List[SavingsSubscription]:
            statement = select(SavingsSubscription).where(
                SavingsSubscription.account_id == account_id,
                SavingsSubscription.scope_id == scope_id
            ).order_by(SavingsSubscription.matures_at)
            return list(sess.exec(statement).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def list_by_product(product_id: int, session: Optional[Session] = None) -> List[SavingsSubscription]:
        def _list(sess: Session) -> List[SavingsSubscription]:
            statement = select(SavingsSubscription).where(
                SavingsSubscription.product_id == product_id
            ).order_by(SavingsSubscription.matures_at)
            return list(sess.exec(statement).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def due(now: datetime, session: Optional[Session] = None) -> List[Tuple[int, str]]:
        """(subscription id, scope id) of every subscription matured by `now`, across scopes."""
        def _due(sess: Session) -> List[Tuple[int, str]]:
            statement = select(SavingsSubscription.id, SavingsSubscription.scope_id).where(
                SavingsSubscription.matures_at <= now
            ).order_by(SavingsSubscription.matures_at, SavingsSubscription.id)
            return [(row[0], row[1]) for row in sess.exec(statement).all()]

        if session is not None:
            return _due(session)
        else:
            with read_session() as session:
                return _due(session)

    @staticmethod
    def sum_principal(scope_id: str, session: Optional[Session] = None) -> int:
        """Total principal currently escrowed in the scope's subscriptions."""
        def _sum(sess: Session) -> int:
            statement = select(func.coalesce(func.sum(SavingsSubscription.principal), 0)).where(
                SavingsSubscription.scope_id == scope_id
            )
            return int(sess.exec(statement).one())

        if session is not None:
            return _sum(session)
        else:
            with read_session() as session:
                return _sum(session)

    @staticmethod
    def count_by_account(session: Session, account_id: int) -> int:
        statement = select(func.count(SavingsSubscription.id)).where(
            SavingsSubscription.account_id == account_id
        )
        return int(session.exec(statement).one())
