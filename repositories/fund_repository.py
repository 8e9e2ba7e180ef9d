"""
Fund Repository - data access layer for Fund and FundInvestment models.
"""

from typing import Optional, List, Dict, Tuple
from datetime import datetime

from sqlalchemy import delete, func, update
from sqlmodel import Session, select

from db_engine import read_session
from models import Fund, FundInvestment, FundStatus


class FundRepository:
    """Repository for funds and the investments they escrow."""

    @staticmethod
    def add(session: Session, fund: Fund) -> Fund:
        session.add(fund)
        session.flush()
        return fund

    @staticmethod
    def get_by_id(fund_id: int, scope_id: str, session: Optional[Session] = None) -> Optional[Fund]:
        def _get(sess: Session) -> Optional[Fund]:
            statement = select(Fund).where(Fund.id == fund_id, Fund.scope_id == scope_id)
            return sess.exec(statement).first()

        if session is not None:
            return _get(session)
        else:
            with read_session() as session:
                return _get(session)

    @staticmethod
    def lock(session: Session, fund_id: int, scope_id: str) -> Optional[Fund]:
        statement = (
            select(Fund)
            .where(Fund.id == fund_id, Fund.scope_id == scope_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(statement).first()

    @staticmethod
    def list_by_scope(scope_id: str, session: Optional[Session] = None) -> List[Fund]:
        def _list(sess: Session) -> List[Fund]:
            statement = select(Fund).where(Fund.scope_id == scope_id).order_by(Fund.created_at.desc(), Fund.id.desc())
            return list(sess.exec(statement).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def set_status(
        session: Session,
        fund: Fund,
        expected: FundStatus,
        status: FundStatus,
        settled_at: Optional[datetime] = None
    ) -> bool:
        """
        Move a fund from `expected` to `status`.

        Returns:
            False if the fund was no longer in the expected status
        """
        values = {"status": status}
        if settled_at is not None:
            values["settled_at"] = settled_at
        result = session.exec(
            update(Fund)
            .where(Fund.id == fund.id, Fund.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        session.refresh(fund)
        return True

    @staticmethod
    def recruiting_past_deadline(now: datetime, session: Optional[Session] = None) -> List[Tuple[int, str]]:
        """(fund id, scope id) of every fund still RECRUITING past its deadline."""
        def _list(sess: Session) -> List[Tuple[int, str]]:
            statement = select(Fund.id, Fund.scope_id).where(
                Fund.status == FundStatus.RECRUITING,
                Fund.recruitment_deadline <= now
            ).order_by(Fund.recruitment_deadline, Fund.id)
            return [(row[0], row[1]) for row in sess.exec(statement).all()]

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def ongoing_past_maturity(now: datetime, session: Optional[Session] = None) -> List[Fund]:
        def _list(sess: Session) -> List[Fund]:
            statement = select(Fund).where(
                Fund.status == FundStatus.ONGOING,
                Fund.maturity_date <= now
            ).order_by(Fund.maturity_date, Fund.id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def delete(session: Session, fund: Fund):
        session.exec(delete(FundInvestment).where(FundInvestment.fund_id == fund.id))
        session.delete(fund)
        session.flush()

    # ==================== Investments ====================

    @staticmethod
    def get_investment(session: Session, fund_id: int, account_id: int) -> Optional[FundInvestment]:
        statement = (
            select(FundInvestment)
            .where(FundInvestment.fund_id == fund_id, FundInvestment.account_id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(statement).first()

    @staticmethod
    def save_investment(session: Session, investment: FundInvestment) -> FundInvestment:
        session.add(investment)
        session.flush()
        return investment

    @staticmethod
    def investments_of(fund_id: int, session: Optional[Session] = None) -> List[FundInvestment]:
        def _list(sess: Session) -> List[FundInvestment]:
            statement = select(FundInvestment).where(
                FundInvestment.fund_id == fund_id
            ).order_by(FundInvestment.account_id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def investments_by_account(account_id: int, scope_id: str, session: Optional[Session] = None) -> List[Tuple[Fund, FundInvestment]]:
        def _list(sess: Session) -> List[Tuple[Fund, FundInvestment]]:
            statement = (
                select(Fund, FundInvestment)
                .join(FundInvestment, FundInvestment.fund_id == Fund.id)
                .where(FundInvestment.account_id == account_id, Fund.scope_id == scope_id)
                .order_by(FundInvestment.invested_at)
            )
            return [(fund, investment) for fund, investment in sess.exec(statement).all()]

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def stats(scope_id: str, session: Optional[Session] = None) -> Dict[int, Tuple[int, int]]:
        """Per fund: (total units invested, investor count)."""
        def _stats(sess: Session) -> Dict[int, Tuple[int, int]]:
            statement = (
                select(
                    FundInvestment.fund_id,
                    func.coalesce(func.sum(FundInvestment.units), 0),
                    func.count(func.distinct(FundInvestment.account_id))
                )
                .join(Fund, Fund.id == FundInvestment.fund_id)
                .where(Fund.scope_id == scope_id)
                .group_by(FundInvestment.fund_id)
            )
            return {row[0]: (int(row[1]), int(row[2])) for row in sess.exec(statement).all()}

        if session is not None:
            return _stats(session)
        else:
            with read_session() as session:
                return _stats(session)

    @staticmethod
    def escrowed(scope_id: str, session: Optional[Session] = None) -> int:
        """Principal held for funds that have not been settled or deleted."""
        def _sum(sess: Session) -> int:
            statement = (
                select(func.coalesce(func.sum(FundInvestment.units * Fund.unit_price), 0))
                .join(Fund, Fund.id == FundInvestment.fund_id)
                .where(
                    Fund.scope_id == scope_id,
                    Fund.status.in_([FundStatus.RECRUITING, FundStatus.ONGOING])
                )
            )
            return int(sess.exec(statement).one())

        if session is not None:
            return _sum(session)
        else:
            with read_session() as session:
                return _sum(session)

    @staticmethod
    def count_open_by_account(session: Session, account_id: int) -> int:
        statement = (
            select(func.count(FundInvestment.id))
            .join(Fund, Fund.id == FundInvestment.fund_id)
            .where(
                FundInvestment.account_id == account_id,
                Fund.status.in_([FundStatus.RECRUITING, FundStatus.ONGOING])
            )
        )
        return int(session.exec(statement).one())
