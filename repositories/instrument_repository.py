"""
Instrument Repository - data access layer for StockProduct, PriceHistoryPoint
and Holding models.
"""

from decimal import Decimal
from typing import Optional, List, Iterable
from datetime import datetime, timezone

from sqlalchemy import func
from sqlmodel import Session, select

from db_engine import read_session
from models import StockProduct, PriceHistoryPoint, Holding


class InstrumentRepository:
    """Repository for instruments, their price history and holdings."""

    @staticmethod
    def add(
        session: Session,
        scope_id: str,
        name: str,
        price: int,
        volatility: Decimal,
        settlement_account_id: int
    ) -> StockProduct:
        instrument = StockProduct(
            scope_id=scope_id,
            name=name,
            current_price=price,
            volatility=volatility,
            settlement_account_id=settlement_account_id
        )
        session.add(instrument)
        session.flush()
        return instrument

    @staticmethod
    def get_by_id(
        instrument_id: int,
        scope_id: str,
        session: Optional[Session] = None,
        include_delisted: bool = False
    ) -> Optional[StockProduct]:
        """Retrieve an instrument by id within one scope. Delisted ones only on request."""
        def _get_by_id(sess: Session) -> Optional[StockProduct]:
            statement = select(StockProduct).where(
                StockProduct.id == instrument_id,
                StockProduct.scope_id == scope_id
            )
            if not include_delisted:
                statement = statement.where(StockProduct.delisted_at.is_(None))
            return sess.exec(statement).first()

        if session is not None:
            return _get_by_id(session)
        else:
            with read_session() as session:
                return _get_by_id(session)

    @staticmethod
    def lock(session: Session, instrument_id: int, scope_id: str) -> Optional[StockProduct]:
        """Load an instrument FOR UPDATE so its price cannot move mid-trade."""
        statement = (
            select(StockProduct)
            .where(
                StockProduct.id == instrument_id,
                StockProduct.scope_id == scope_id,
                StockProduct.delisted_at.is_(None)
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(statement).first()

    @staticmethod
    def list_by_scope(scope_id: str, session: Optional[Session] = None) -> List[StockProduct]:
        def _list(sess: Session) -> List[StockProduct]:
            statement = select(StockProduct).where(
                StockProduct.scope_id == scope_id,
                StockProduct.delisted_at.is_(None)
            ).order_by(StockProduct.id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def record_price(
        session: Session,
        instrument: StockProduct,
        price: int,
        recorded_at: Optional[datetime] = None
    ) -> PriceHistoryPoint:
        """Set the current price and append the matching history point."""
        instrument.current_price = price
        session.add(instrument)
        point = PriceHistoryPoint(
            instrument_id=instrument.id,
            price=price,
            created_at=recorded_at or datetime.now(timezone.utc)
        )
        session.add(point)
        session.flush()
        return point

    @staticmethod
    def history(instrument_id: int, session: Optional[Session] = None) -> List[PriceHistoryPoint]:
        """Retrieve the price history of an instrument, oldest first."""
        def _history(sess: Session) -> List[PriceHistoryPoint]:
            statement = select(PriceHistoryPoint).where(
                PriceHistoryPoint.instrument_id == instrument_id
            ).order_by(PriceHistoryPoint.created_at, PriceHistoryPoint.id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _history(session)
        else:
            with read_session() as session:
                return _history(session)

    @staticmethod
    def get_holding(session: Session, account_id: int, instrument_id: int) -> Optional[Holding]:
        """Read a holding inside the caller's transaction (always fresh)."""
        statement = (
            select(Holding)
            .where(Holding.account_id == account_id, Holding.instrument_id == instrument_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(statement).first()

    @staticmethod
    def save_holding(session: Session, holding: Holding) -> Holding:
        session.add(holding)
        session.flush()
        return holding

    @staticmethod
    def delete_holding(session: Session, holding: Holding):
        session.delete(holding)
        session.flush()

    @staticmethod
    def holdings_by_account(account_id: int, scope_id: str, session: Optional[Session] = None) -> List[Holding]:
        def _list(sess: Session) -> List[Holding]:
            statement = select(Holding).where(
                Holding.account_id == account_id,
                Holding.scope_id == scope_id,
                Holding.quantity > 0
            ).order_by(Holding.instrument_id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def holdings_by_instrument(instrument_id: int, session: Optional[Session] = None) -> List[Holding]:
        def _list(sess: Session) -> List[Holding]:
            statement = select(Holding).where(
                Holding.instrument_id == instrument_id,
                Holding.quantity > 0
            ).order_by(Holding.quantity.desc(), Holding.account_id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def count_holdings(instrument_ids: Iterable[int], session: Session) -> int:
        statement = select(func.count(Holding.id)).where(
            Holding.instrument_id.in_(list(instrument_ids)),
            Holding.quantity > 0
        )
        return int(session.exec(statement).one())

    @staticmethod
    def delist(session: Session, instrument: StockProduct, delisted_at: datetime) -> StockProduct:
        """Retire an instrument. Its price history stays in place."""
        instrument.delisted_at = delisted_at
        session.add(instrument)
        session.flush()
        return instrument
