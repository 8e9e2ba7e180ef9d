"""
Fund Engine - crowdfunding campaigns settled by the teacher.

State machine:
    RECRUITING --(deadline passes)--> ONGOING --(settle)--> SUCCESS | EXCEED | FAIL

Investments are escrowed while the fund is open. Settlement returns the
principal plus the per-unit reward of the outcome; rewards are drawn from
the classroom treasury.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlmodel import Session

from db_engine import write_session, read_session, retry_read, retry_sweep_row
from errors import (
    EconomyError,
    FundClosed,
    InvalidAmount,
    InvalidPrice,
    InvalidQuantity,
    InvalidTransition,
    NotFound,
)
from models import Fund, FundInvestment, FundStatus, TransactionType
from repositories import FundRepository
from services.common import SweepReport, as_utc, current_time, new_correlation_id
from services.ledger import LedgerService

logger = logging.getLogger(__name__)

SETTLEMENT_OUTCOMES = (FundStatus.SUCCESS, FundStatus.EXCEED, FundStatus.FAIL)


@dataclass
class FundSummary:
    fund: Fund
    total_units: int
    investor_count: int

    @property
    def total_invested(self) -> int:
        return self.total_units * self.fund.unit_price

    @property
    def progress_pct(self) -> float:
        if self.fund.target_amount <= 0:
            return 0.0
        return round(self.total_invested / self.fund.target_amount * 100, 2)


@dataclass
class SettlementResult:
    fund_id: int
    outcome: FundStatus
    investor_count: int
    principal_returned: int
    rewards_paid: int


def reward_per_unit(fund: Fund, outcome: FundStatus) -> int:
    """Reward paid per unit on top of the principal for a settlement outcome."""
    if outcome == FundStatus.EXCEED:
        return fund.base_reward + fund.incentive_reward
    if outcome == FundStatus.SUCCESS:
        return fund.base_reward
    return 0


class FundService:

    @staticmethod
    def _lock_fund(session: Session, scope_id: str, fund_id: int) -> Fund:
        fund = FundRepository.lock(session, fund_id, scope_id)
        if fund is None:
            raise NotFound(f"Fund {fund_id} not found")
        return fund

    @staticmethod
    def _release_escrow(
        session: Session,
        fund: Fund,
        per_unit_reward: int,
        transaction_type: TransactionType,
        description: str
    ) -> Tuple[int, int, int]:
        """
        Pay every investor principal + units x per_unit_reward.

        Returns:
            (investor count, principal returned, rewards paid)
        """
        investments = FundRepository.investments_of(fund.id, session=session)
        if not investments:
            return 0, 0, 0

        treasury = LedgerService.require_treasury(session, fund.scope_id)
        accounts = LedgerService.lock_accounts(
            session, fund.scope_id, [treasury.id] + [inv.account_id for inv in investments]
        )
        treasury = accounts[treasury.id]

        principal_total = 0
        reward_total = 0
        for investment in investments:
            principal = investment.units * fund.unit_price
            reward = investment.units * per_unit_reward
            correlation_id = new_correlation_id()
            if reward > 0:
                LedgerService.post_debit(
                    session, treasury, reward, transaction_type,
                    f"{fund.name} reward for {accounts[investment.account_id].display_name}",
                    correlation_id=correlation_id,
                    counterparty_account_id=investment.account_id
                )
            if principal + reward > 0:
                LedgerService.post_credit(
                    session, accounts[investment.account_id], principal + reward,
                    transaction_type, description,
                    correlation_id=correlation_id,
                    counterparty_account_id=treasury.id if reward > 0 else None
                )
            principal_total += principal
            reward_total += reward
        return len(investments), principal_total, reward_total

    # ==================== Campaign management ====================

    @staticmethod
    def create_fund(
        scope_id: str,
        creator_account_id: int,
        name: str,
        unit_price: int,
        target_amount: int,
        recruitment_deadline: datetime,
        maturity_date: datetime,
        base_reward: int = 0,
        incentive_reward: int = 0,
        description: str = ""
    ) -> Fund:
        """
        Open a fund for recruitment.

        Args:
            scope_id: Classroom running the fund
            creator_account_id: Account proposing the fund
            name: Display name
            unit_price: Price of one unit (> 0)
            target_amount: Amount the campaign aims to raise (> 0)
            recruitment_deadline: Recruitment closes at this moment
            maturity_date: When the fund becomes due for settlement
            base_reward: Per-unit reward on SUCCESS or EXCEED
            incentive_reward: Extra per-unit reward on EXCEED
            description: Free text

        Returns:
            Created Fund in RECRUITING status
        """
        if isinstance(unit_price, bool) or not isinstance(unit_price, int) or unit_price <= 0:
            raise InvalidPrice(f"Unit price must be positive, got {unit_price!r}")
        LedgerService._validate_amount(target_amount)
        if base_reward < 0 or incentive_reward < 0:
            raise InvalidAmount("Rewards cannot be negative")
        recruitment_deadline, maturity_date = as_utc(recruitment_deadline), as_utc(maturity_date)
        if recruitment_deadline > maturity_date:
            raise InvalidTransition("Recruitment deadline must not be after the maturity date")

        with write_session() as session:
            LedgerService.lock_accounts(session, scope_id, [creator_account_id])
            fund = FundRepository.add(session, Fund(
                scope_id=scope_id,
                name=name,
                description=description,
                creator_account_id=creator_account_id,
                unit_price=unit_price,
                target_amount=target_amount,
                base_reward=base_reward,
                incentive_reward=incentive_reward,
                recruitment_deadline=recruitment_deadline,
                maturity_date=maturity_date
            ))

        logger.info(f"Created fund {fund.id} ({name}), unit price {unit_price}, target {target_amount}")
        return fund

    @staticmethod
    def invest(
        scope_id: str,
        fund_id: int,
        account_id: int,
        units: int,
        now: Optional[datetime] = None
    ) -> FundInvestment:
        """
        Buy `units` of a recruiting fund. Repeated investments add up.

        Raises:
            InvalidQuantity, NotFound, FundClosed, UnknownAccount, InsufficientFunds
        """
        if isinstance(units, bool) or not isinstance(units, int) or units <= 0:
            raise InvalidQuantity(f"Units must be a positive whole number, got {units!r}")
        now = current_time(now)

        with write_session() as session:
            fund = FundService._lock_fund(session, scope_id, fund_id)
            if fund.status != FundStatus.RECRUITING or now >= fund.recruitment_deadline:
                raise FundClosed(f"Fund {fund.name} is no longer recruiting")

            cost = units * fund.unit_price
            account = LedgerService.lock_accounts(session, scope_id, [account_id])[account_id]
            LedgerService.post_debit(
                session, account, cost, TransactionType.FUND_JOIN,
                f"Invested in {fund.name} ({units} units)"
            )

            investment = FundRepository.get_investment(session, fund_id, account_id)
            if investment is None:
                investment = FundInvestment(fund_id=fund_id, account_id=account_id, units=0, invested_at=now)
            investment.units += units
            FundRepository.save_investment(session, investment)

        logger.info(f"Account {account_id} invested {cost} ({units} units) in fund {fund_id}")
        return investment

    @staticmethod
    @retry_sweep_row
    def _close_recruitment(fund_id: int, scope_id: str, now: datetime) -> bool:
        with write_session() as session:
            fund = FundRepository.lock(session, fund_id, scope_id)
            if fund is None or fund.recruitment_deadline > now:
                return False
            return FundRepository.set_status(session, fund, FundStatus.RECRUITING, FundStatus.ONGOING)

    @staticmethod
    def advance_recruitment(now: Optional[datetime] = None) -> SweepReport:
        """
        Move every recruiting fund past its deadline to ONGOING, across all
        classrooms. One transaction per fund; safe to re-run.
        """
        now = current_time(now)
        report = SweepReport()
        for fund_id, scope_id in FundRepository.recruiting_past_deadline(now):
            try:
                if FundService._close_recruitment(fund_id, scope_id, now):
                    report.settled.append(fund_id)
            except EconomyError as e:
                logger.warning(f"Could not close recruitment of fund {fund_id}: {e}")
                report.failed.append(fund_id)

        if report.settled or report.failed:
            logger.info(f"Recruitment sweep: {report.count} funds now ongoing, {len(report.failed)} deferred")
        return report

    @staticmethod
    def settle(
        scope_id: str,
        fund_id: int,
        outcome: FundStatus,
        now: Optional[datetime] = None
    ) -> SettlementResult:
        """
        Settle an ongoing fund with the outcome decided by the teacher.

        FAIL refunds principal, SUCCESS adds units x base reward, EXCEED adds
        units x (base + incentive) reward. The whole fund settles in one
        transaction, so a treasury shortfall leaves every investor untouched.

        Raises:
            NotFound, FundClosed (already settled), InvalidTransition, InsufficientFunds
        """
        outcome = FundStatus(outcome)
        if outcome not in SETTLEMENT_OUTCOMES:
            raise InvalidTransition(f"{outcome.value} is not a settlement outcome")
        now = current_time(now)

        with write_session() as session:
            fund = FundService._lock_fund(session, scope_id, fund_id)
            if fund.status.is_terminal:
                raise FundClosed(f"Fund {fund.name} was already settled as {fund.status.value}")
            if fund.status != FundStatus.ONGOING:
                raise InvalidTransition(f"Fund {fund.name} is still recruiting")

            count, principal, rewards = FundService._release_escrow(
                session, fund, reward_per_unit(fund, outcome),
                TransactionType.FUND_PAYOUT, f"{fund.name} settled: {outcome.value}"
            )
            if not FundRepository.set_status(session, fund, FundStatus.ONGOING, outcome, settled_at=now):
                raise FundClosed(f"Fund {fund.name} was settled concurrently")

        logger.info(
            f"Settled fund {fund_id} as {outcome.value}: {count} investors, "
            f"principal {principal}, rewards {rewards}"
        )
        return SettlementResult(
            fund_id=fund_id,
            outcome=outcome,
            investor_count=count,
            principal_returned=principal,
            rewards_paid=rewards
        )

    @staticmethod
    def delete_fund(scope_id: str, fund_id: int) -> int:
        """
        Cancel an unsettled fund, refunding every investor's principal.

        Returns:
            Total principal refunded
        """
        with write_session() as session:
            fund = FundService._lock_fund(session, scope_id, fund_id)
            if fund.status.is_terminal:
                raise FundClosed(f"Fund {fund.name} was already settled as {fund.status.value}")
            _, principal, _ = FundService._release_escrow(
                session, fund, 0, TransactionType.FUND_PAYOUT, f"{fund.name} cancelled, refund"
            )
            FundRepository.delete(session, fund)

        logger.info(f"Deleted fund {fund_id}, refunded {principal}")
        return principal

    # ==================== Read projections ====================

    @staticmethod
    @retry_read
    def get_fund(scope_id: str, fund_id: int) -> Fund:
        fund = FundRepository.get_by_id(fund_id, scope_id)
        if fund is None:
            raise NotFound(f"Fund {fund_id} not found")
        return fund

    @staticmethod
    @retry_read
    def funds_of(scope_id: str) -> List[FundSummary]:
        """Funds of the classroom, newest first, with invested totals."""
        with read_session() as session:
            stats = FundRepository.stats(scope_id, session=session)
            summaries = []
            for fund in FundRepository.list_by_scope(scope_id, session=session):
                units, investors = stats.get(fund.id, (0, 0))
                summaries.append(FundSummary(fund=fund, total_units=units, investor_count=investors))
            return summaries

    @staticmethod
    @retry_read
    def investors_of(scope_id: str, fund_id: int) -> List[FundInvestment]:
        with read_session() as session:
            if FundRepository.get_by_id(fund_id, scope_id, session=session) is None:
                raise NotFound(f"Fund {fund_id} not found")
            return FundRepository.investments_of(fund_id, session=session)

    @staticmethod
    @retry_read
    def investments_of(scope_id: str, account_id: int) -> List[Tuple[Fund, FundInvestment]]:
        return FundRepository.investments_by_account(account_id, scope_id)

    @staticmethod
    @retry_read
    def due_for_settlement(now: Optional[datetime] = None) -> List[Fund]:
        """Ongoing funds past their maturity date, awaiting the teacher's decision."""
        return FundRepository.ongoing_past_maturity(current_time(now))
