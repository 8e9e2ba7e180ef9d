"""
Savings Engine - fixed-term deposit products.

Joining moves the principal out of the account into the subscription
(escrow). Cancellation and maturity pay it back with the cancellation or
interest rate applied; the difference is drawn from (or, for a penalty,
returned to) the classroom treasury in the same transaction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlmodel import Session

from config import get_settings
from db_engine import write_session, read_session, retry_read, retry_sweep_row
from errors import (
    EconomyError,
    ExceedsMaxAmount,
    InvalidAmount,
    InvalidTransition,
    NotFound,
    NotOwner,
)
from models import Account, SavingsProduct, SavingsSubscription, Transaction, TransactionType
from repositories import SavingsRepository, AccountRepository
from services.common import SweepReport, apply_rate, current_time, new_correlation_id, to_decimal, Number
from services.ledger import LedgerService

logger = logging.getLogger(__name__)


@dataclass
class EnrolleeInfo:
    subscription_id: int
    account_id: int
    display_name: str
    principal: int
    joined_at: datetime
    matures_at: datetime


class SavingsService:

    # ==================== Products ====================

    @staticmethod
    def create_product(
        scope_id: str,
        name: str,
        maturity_days: int,
        rate: Number,
        cancellation_rate: Number,
        max_amount: int
    ) -> SavingsProduct:
        """
        Create a savings product.

        Args:
            scope_id: Classroom offering the product
            name: Display name
            maturity_days: Term length in days (> 0)
            rate: Interest over the full term, e.g. "0.05"
            cancellation_rate: Rate applied on early cancellation (<= rate, may be negative)
            max_amount: Largest principal accepted per subscription (> 0)
        """
        rate = to_decimal(rate)
        cancellation_rate = to_decimal(cancellation_rate)
        if isinstance(maturity_days, bool) or not isinstance(maturity_days, int) or maturity_days <= 0:
            raise InvalidAmount(f"Maturity must be a positive number of days, got {maturity_days!r}")
        if isinstance(max_amount, bool) or not isinstance(max_amount, int) or max_amount <= 0:
            raise InvalidAmount(f"Maximum amount must be positive, got {max_amount!r}")
        if cancellation_rate > rate:
            raise InvalidAmount("Cancellation rate cannot exceed the maturity rate")

        with write_session() as session:
            product = SavingsRepository.add_product(
                session,
                scope_id=scope_id,
                name=name,
                maturity_days=maturity_days,
                rate=rate,
                cancellation_rate=cancellation_rate,
                max_amount=max_amount
            )

        logger.info(f"Created savings product {product.id} ({name}): {maturity_days} days @ {rate}")
        return product

    @staticmethod
    def delete_products(scope_id: str, product_ids: Iterable[int]) -> int:
        """Delete products nobody is subscribed to. Returns the number removed."""
        ids = sorted(set(product_ids))
        if not ids:
            return 0
        with write_session() as session:
            if SavingsRepository.count_subscriptions(session, ids):
                raise InvalidTransition("Cannot delete a savings product that still has subscribers")
            removed = SavingsRepository.delete_products(session, scope_id, ids)

        logger.info(f"Deleted {removed} savings products from classroom {scope_id}")
        return removed

    # ==================== Subscriptions ====================

    @staticmethod
    def join(
        scope_id: str,
        account_id: int,
        product_id: int,
        amount: int,
        now: Optional[datetime] = None
    ) -> SavingsSubscription:
        """
        Deposit `amount` into a savings product.

        Raises:
            InvalidAmount, ExceedsMaxAmount, NotFound, UnknownAccount, InsufficientFunds
        """
        LedgerService._validate_amount(amount)
        now = current_time(now)
        with write_session() as session:
            product = SavingsRepository.get_product(product_id, scope_id, session=session)
            if product is None:
                raise NotFound(f"Savings product {product_id} not found")
            if amount > product.max_amount:
                raise ExceedsMaxAmount(
                    f"{product.name} accepts at most {product.max_amount}, got {amount}"
                )

            account = LedgerService.lock_accounts(session, scope_id, [account_id])[account_id]
            LedgerService.post_debit(
                session, account, amount, TransactionType.SAVINGS_JOIN,
                f"Joined savings {product.name}"
            )
            subscription = SavingsRepository.add_subscription(
                session,
                scope_id=scope_id,
                account_id=account_id,
                product_id=product.id,
                principal=amount,
                joined_at=now,
                matures_at=now + timedelta(days=product.maturity_days)
            )

        logger.info(f"Account {account_id} joined savings {product_id} with {amount}")
        return subscription

    @staticmethod
    def _pay_out(
        session: Session,
        subscription: SavingsSubscription,
        product: SavingsProduct,
        rate: Decimal,
        transaction_type: TransactionType,
        description: str
    ) -> Transaction:
        """
        Return principal with `rate` applied and release the escrow.
        The treasury funds interest and receives penalties.
        """
        payout = apply_rate(subscription.principal, rate)
        difference = payout - subscription.principal

        treasury = LedgerService.require_treasury(session, subscription.scope_id)
        accounts = LedgerService.lock_accounts(
            session, subscription.scope_id, [subscription.account_id, treasury.id]
        )
        account: Account = accounts[subscription.account_id]
        treasury = accounts[treasury.id]

        correlation_id = new_correlation_id()
        if difference > 0:
            LedgerService.post_debit(
                session, treasury, difference, transaction_type,
                f"Interest on {product.name} for {account.display_name}",
                correlation_id=correlation_id,
                counterparty_account_id=account.id
            )
        leg = None
        if payout > 0:
            leg = LedgerService.post_credit(
                session, account, payout, transaction_type, description,
                correlation_id=correlation_id,
                counterparty_account_id=treasury.id if difference else None
            )
        if difference < 0:
            LedgerService.post_credit(
                session, treasury, -difference, transaction_type,
                f"Cancellation penalty on {product.name} from {account.display_name}",
                correlation_id=correlation_id,
                counterparty_account_id=account.id
            )
        SavingsRepository.delete_subscription(session, subscription)
        return leg

    @staticmethod
    def cancel(
        scope_id: str,
        account_id: int,
        subscription_id: int,
        now: Optional[datetime] = None
    ) -> Transaction:
        """
        Cancel a subscription and refund principal x (1 + cancellation rate).

        A subscription already past its maturity date is settled at the
        maturity rate instead.

        Raises:
            NotFound: subscription or product missing
            NotOwner: subscription belongs to another account
        """
        now = current_time(now)
        with write_session() as session:
            subscription = SavingsRepository.lock_subscription(session, subscription_id, scope_id)
            if subscription is None:
                raise NotFound(f"Savings subscription {subscription_id} not found")
            if subscription.account_id != account_id:
                raise NotOwner(f"Savings subscription {subscription_id} belongs to another account")
            product = SavingsRepository.get_product(subscription.product_id, scope_id, session=session)
            if product is None:
                raise NotFound(f"Savings product {subscription.product_id} not found")

            if subscription.matures_at <= now:
                leg = SavingsService._pay_out(
                    session, subscription, product, product.rate,
                    TransactionType.SAVINGS_MATURITY, f"{product.name} matured"
                )
                outcome = "matured"
            else:
                leg = SavingsService._pay_out(
                    session, subscription, product, product.cancellation_rate,
                    TransactionType.SAVINGS_CANCEL, f"{product.name} cancelled"
                )
                outcome = "cancelled"

        logger.info(f"Savings subscription {subscription_id} {outcome} for account {account_id}")
        return leg

    @staticmethod
    def earliest_cancellation(subscription: SavingsSubscription) -> datetime:
        """
        Earliest time a client should offer cancellation: join time plus the
        configured fraction of the term. Not enforced by `cancel`.
        """
        fraction = get_settings().savings_cancel_notice_fraction
        term = subscription.matures_at - subscription.joined_at
        return subscription.joined_at + term * fraction

    # ==================== Maturity sweep ====================

    @staticmethod
    @retry_sweep_row
    def _mature_one(subscription_id: int, scope_id: str, now: datetime) -> bool:
        with write_session() as session:
            subscription = SavingsRepository.lock_subscription(session, subscription_id, scope_id)
            # Already cancelled or matured by someone else
            if subscription is None or subscription.matures_at > now:
                return False
            product = SavingsRepository.get_product(subscription.product_id, scope_id, session=session)
            if product is None:
                raise NotFound(f"Savings product {subscription.product_id} not found")
            SavingsService._pay_out(
                session, subscription, product, product.rate,
                TransactionType.SAVINGS_MATURITY, f"{product.name} matured"
            )
        return True

    @staticmethod
    def sweep_maturities(now: Optional[datetime] = None) -> SweepReport:
        """
        Pay out every subscription matured by `now`, across all classrooms.
        Each subscription settles in its own transaction; safe to re-run.
        """
        now = current_time(now)
        report = SweepReport()
        for subscription_id, scope_id in SavingsRepository.due(now):
            try:
                if SavingsService._mature_one(subscription_id, scope_id, now):
                    report.settled.append(subscription_id)
            except EconomyError as e:
                logger.warning(f"Could not mature savings subscription {subscription_id}: {e}")
                report.failed.append(subscription_id)

        if report.settled or report.failed:
            logger.info(f"Savings sweep: {report.count} matured, {len(report.failed)} deferred")
        return report

    # ==================== Read projections ====================

    @staticmethod
    @retry_read
    def products_of(scope_id: str) -> List[SavingsProduct]:
        return SavingsRepository.list_products(scope_id)

    @staticmethod
    @retry_read
    def subscriptions_of(scope_id: str, account_id: int) -> List[SavingsSubscription]:
        return SavingsRepository.list_by_account(account_id, scope_id)

    @staticmethod
    @retry_read
    def enrollees_of(scope_id: str, product_id: int) -> List[EnrolleeInfo]:
        """Subscribers of a product, earliest maturity first."""
        with read_session() as session:
            if SavingsRepository.get_product(product_id, scope_id, session=session) is None:
                raise NotFound(f"Savings product {product_id} not found")
            enrollees = []
            for sub in SavingsRepository.list_by_product(product_id, session=session):
                account = AccountRepository.get_by_id(sub.account_id, scope_id, session=session)
                enrollees.append(EnrolleeInfo(
                    subscription_id=sub.id,
                    account_id=sub.account_id,
                    display_name=account.display_name if account else str(sub.account_id),
                    principal=sub.principal,
                    joined_at=sub.joined_at,
                    matures_at=sub.matures_at
                ))
            return enrollees
