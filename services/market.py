"""
Market Engine - classroom stocks, prices, trades and holdings.

Buys and sells settle against each instrument's own stock account through
the ledger. Holdings use average-cost accounting; the sell-side fee grows
with the instrument's volatility coefficient k:

    fee_rate = 10k / (1 + 10k)
    proceeds = quantity x price x (1 - fee_rate) = quantity x price / (1 + 10k)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

import pandas as pd

from db_engine import write_session, read_session, retry_read
from errors import (
    InvalidAmount,
    InvalidPrice,
    InvalidQuantity,
    InsufficientHoldings,
    InvalidTransition,
    NotFound,
    UnknownAccount,
)
from models import (
    AccountRole,
    Holding,
    PriceHistoryPoint,
    StockProduct,
    Transaction,
    TransactionType,
)
from repositories import AccountRepository, InstrumentRepository
from services.common import current_time, new_correlation_id, round_half_up, to_decimal, Number
from services.ledger import LedgerService

logger = logging.getLogger(__name__)

MIN_VOLATILITY = Decimal("0.01")
MAX_VOLATILITY = Decimal("1.0")
FEE_SCALE = Decimal(10)
AVERAGE_PRICE_PLACES = Decimal("0.0001")


@dataclass
class TradeResult:
    """Outcome of a buy or sell."""
    instrument_id: int
    quantity: int
    price: int
    amount: int  # Cost for a buy, net proceeds for a sell
    fee: int  # Always 0 for a buy
    holding_quantity: int  # Quantity left after the trade
    average_price: Decimal
    transaction: Optional[Transaction]  # Account leg; None when nothing was paid out


@dataclass
class HolderInfo:
    account_id: int
    display_name: str
    quantity: int
    average_price: Decimal


@dataclass
class PositionValue:
    """One holding valued at the current price."""
    instrument_id: int
    name: str
    quantity: int
    average_price: Decimal
    current_price: int
    cost_basis: int
    market_value: int
    unrealized_pnl: int
    unrealized_pnl_pct: float


def fee_rate(volatility: Number) -> Decimal:
    """
    Sell-side fee rate for a volatility coefficient.

    Examples:
        >>> fee_rate("0.02")
        Decimal('0.1666666666666666666666666667')
    """
    k = to_decimal(volatility)
    return (FEE_SCALE * k) / (Decimal(1) + FEE_SCALE * k)


def sale_proceeds(quantity: int, price: int, volatility: Number) -> int:
    """
    Net proceeds of selling `quantity` at `price`, rounded half up.

    Examples:
        >>> sale_proceeds(3, 100, "0.02")
        250
    """
    k = to_decimal(volatility)
    gross = Decimal(quantity) * Decimal(price)
    return round_half_up(gross / (Decimal(1) + FEE_SCALE * k))


def average_price_after_buy(old_quantity: int, old_average: Decimal, quantity: int, price: int) -> Decimal:
    """Volume-weighted average purchase price after adding `quantity` at `price`."""
    total_cost = Decimal(old_quantity) * to_decimal(old_average) + Decimal(quantity) * Decimal(price)
    average = total_cost / Decimal(old_quantity + quantity)
    return average.quantize(AVERAGE_PRICE_PLACES, rounding=ROUND_HALF_UP)


class MarketService:
    """
    Service for listing instruments and executing trades.
    Every trade re-reads price and holdings inside its own write session.
    """

    @staticmethod
    def _validate_price(price: int):
        if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
            raise InvalidPrice(f"Price must be a positive whole number, got {price!r}")

    @staticmethod
    def _validate_quantity(quantity: int):
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantity(f"Quantity must be a positive whole number, got {quantity!r}")

    @staticmethod
    def _lock_instrument(session, scope_id: str, instrument_id: int) -> StockProduct:
        instrument = InstrumentRepository.lock(session, instrument_id, scope_id)
        if instrument is None:
            raise NotFound(f"Stock {instrument_id} not found")
        return instrument

    # ==================== Instrument management ====================

    @staticmethod
    def list_instrument(
        scope_id: str,
        name: str,
        initial_price: int,
        volatility: Number = MIN_VOLATILITY,
        now: Optional[datetime] = None
    ) -> StockProduct:
        """
        List a new stock with its own settlement account.

        Args:
            scope_id: Classroom listing the stock
            name: Display name
            initial_price: Listing price (> 0)
            volatility: Coefficient k in [0.01, 1.0]
            now: Listing time

        Returns:
            Created StockProduct
        """
        MarketService._validate_price(initial_price)
        k = to_decimal(volatility)
        if not (MIN_VOLATILITY <= k <= MAX_VOLATILITY):
            raise InvalidAmount(f"Volatility must be between {MIN_VOLATILITY} and {MAX_VOLATILITY}, got {k}")

        with write_session() as session:
            settlement = AccountRepository.add(
                session,
                scope_id=scope_id,
                user_id=f"stock:{name}",
                display_name=f"{name} market",
                role=AccountRole.STOCK
            )
            instrument = InstrumentRepository.add(
                session,
                scope_id=scope_id,
                name=name,
                price=initial_price,
                volatility=k,
                settlement_account_id=settlement.id
            )
            InstrumentRepository.record_price(session, instrument, initial_price, current_time(now))

        logger.info(f"Listed stock {instrument.id} ({name}) at {initial_price}, k={k}")
        return instrument

    @staticmethod
    def set_price(scope_id: str, instrument_id: int, new_price: int, now: Optional[datetime] = None) -> PriceHistoryPoint:
        """Set a new price (teacher action) and append it to the history."""
        MarketService._validate_price(new_price)
        with write_session() as session:
            instrument = MarketService._lock_instrument(session, scope_id, instrument_id)
            old_price = instrument.current_price
            point = InstrumentRepository.record_price(session, instrument, new_price, current_time(now))

        logger.info(f"Stock {instrument_id} price {old_price} -> {new_price}")
        return point

    @staticmethod
    def delist_instruments(scope_id: str, instrument_ids: Iterable[int]) -> int:
        """
        Delist instruments nobody holds. Their price history is kept.

        Whatever the settlement account still holds goes back to the
        treasury before the account is retired.

        Returns:
            Number of instruments removed
        """
        ids = sorted(set(instrument_ids))
        if not ids:
            return 0

        now = current_time()
        with write_session() as session:
            instruments = [MarketService._lock_instrument(session, scope_id, i) for i in ids]
            if InstrumentRepository.count_holdings(ids, session):
                raise InvalidTransition("Cannot delete a stock that students still hold")

            treasury = LedgerService.require_treasury(session, scope_id)
            accounts = LedgerService.lock_accounts(
                session, scope_id,
                [treasury.id] + [i.settlement_account_id for i in instruments]
            )
            for instrument in instruments:
                settlement = accounts[instrument.settlement_account_id]
                if settlement.balance > 0:
                    LedgerService.post_transfer(
                        session, settlement, accounts[treasury.id], settlement.balance,
                        memo=f"{instrument.name} delisted, market balance returned"
                    )
                InstrumentRepository.delist(session, instrument, now)
                AccountRepository.soft_remove(session, settlement, now)

        logger.info(f"Delisted stocks {ids} from classroom {scope_id}")
        return len(ids)

    # ==================== Trading ====================

    @staticmethod
    def buy(scope_id: str, account_id: int, instrument_id: int, quantity: int) -> TradeResult:
        """
        Buy `quantity` shares at the current price.

        Cost = quantity x price, transferred to the instrument's settlement
        account. The holding's average price becomes the volume-weighted
        average of the old position and this fill.

        Raises:
            InvalidQuantity, NotFound, UnknownAccount, InsufficientFunds
        """
        MarketService._validate_quantity(quantity)
        with write_session() as session:
            instrument = MarketService._lock_instrument(session, scope_id, instrument_id)
            price = instrument.current_price
            cost = quantity * price

            accounts = LedgerService.lock_accounts(
                session, scope_id, [account_id, instrument.settlement_account_id]
            )
            buyer = accounts[account_id]
            if buyer.role == AccountRole.STOCK:
                raise UnknownAccount(f"Account {account_id} cannot trade")

            transfer = LedgerService.post_transfer(
                session, buyer, accounts[instrument.settlement_account_id], cost,
                transaction_type=TransactionType.STOCK_BUY,
                memo=f"Bought {quantity} {instrument.name} @ {price}"
            )

            holding = InstrumentRepository.get_holding(session, account_id, instrument_id)
            if holding is None:
                holding = Holding(
                    scope_id=scope_id,
                    account_id=account_id,
                    instrument_id=instrument_id,
                    quantity=0,
                    average_price=Decimal("0")
                )
            holding.average_price = average_price_after_buy(
                holding.quantity, holding.average_price, quantity, price
            )
            holding.quantity += quantity
            InstrumentRepository.save_holding(session, holding)

        logger.info(f"Account {account_id} bought {quantity} x stock {instrument_id} @ {price} for {cost}")
        return TradeResult(
            instrument_id=instrument_id,
            quantity=quantity,
            price=price,
            amount=cost,
            fee=0,
            holding_quantity=holding.quantity,
            average_price=holding.average_price,
            transaction=transfer.debit
        )

    @staticmethod
    def sell(scope_id: str, account_id: int, instrument_id: int, quantity: int) -> TradeResult:
        """
        Sell `quantity` shares at the current price minus the volatility fee.

        Holdings are re-checked inside the transaction. The settlement account
        pays the proceeds and keeps the fee. When it holds less than the
        proceeds (the price rose since the shares were bought) the treasury
        covers the shortfall under the same correlation id. A holding that
        reaches zero is removed. The average price is not affected by sells.

        Raises:
            InvalidQuantity, NotFound, InsufficientHoldings,
            InsufficientFunds (only if the treasury cannot cover a shortfall)
        """
        MarketService._validate_quantity(quantity)
        with write_session() as session:
            instrument = MarketService._lock_instrument(session, scope_id, instrument_id)
            treasury = LedgerService.require_treasury(session, scope_id)
            accounts = LedgerService.lock_accounts(
                session, scope_id, [account_id, instrument.settlement_account_id, treasury.id]
            )

            holding = InstrumentRepository.get_holding(session, account_id, instrument_id)
            held = holding.quantity if holding is not None else 0
            if held < quantity:
                raise InsufficientHoldings(
                    f"Cannot sell {quantity} {instrument.name}: only {held} held"
                )

            price = instrument.current_price
            proceeds = sale_proceeds(quantity, price, instrument.volatility)
            fee = quantity * price - proceeds

            leg = None
            if proceeds > 0:
                settlement = accounts[instrument.settlement_account_id]
                correlation_id = new_correlation_id()
                shortfall = proceeds - settlement.balance
                if shortfall > 0:
                    LedgerService.post_transfer(
                        session, accounts[treasury.id], settlement, shortfall,
                        transaction_type=TransactionType.STOCK_SELL,
                        memo=f"Treasury covers {instrument.name} sale shortfall",
                        correlation_id=correlation_id
                    )
                transfer = LedgerService.post_transfer(
                    session, settlement, accounts[account_id], proceeds,
                    transaction_type=TransactionType.STOCK_SELL,
                    memo=f"Sold {quantity} {instrument.name} @ {price} (fee {fee})",
                    correlation_id=correlation_id
                )
                leg = transfer.credit

            average_price = holding.average_price
            holding.quantity -= quantity
            remaining = holding.quantity
            if remaining == 0:
                InstrumentRepository.delete_holding(session, holding)
            else:
                InstrumentRepository.save_holding(session, holding)

        logger.info(
            f"Account {account_id} sold {quantity} x stock {instrument_id} @ {price}: "
            f"proceeds {proceeds}, fee {fee}"
        )
        return TradeResult(
            instrument_id=instrument_id,
            quantity=quantity,
            price=price,
            amount=proceeds,
            fee=fee,
            holding_quantity=remaining,
            average_price=average_price,
            transaction=leg
        )

    # ==================== Read projections ====================

    @staticmethod
    @retry_read
    def get_instrument(scope_id: str, instrument_id: int) -> StockProduct:
        instrument = InstrumentRepository.get_by_id(instrument_id, scope_id)
        if instrument is None:
            raise NotFound(f"Stock {instrument_id} not found")
        return instrument

    @staticmethod
    @retry_read
    def instruments_of(scope_id: str) -> List[StockProduct]:
        return InstrumentRepository.list_by_scope(scope_id)

    @staticmethod
    @retry_read
    def holders_of(scope_id: str, instrument_id: int) -> List[HolderInfo]:
        """Accounts holding an instrument, largest position first."""
        with read_session() as session:
            if InstrumentRepository.get_by_id(instrument_id, scope_id, session=session) is None:
                raise NotFound(f"Stock {instrument_id} not found")
            holders = []
            for holding in InstrumentRepository.holdings_by_instrument(instrument_id, session=session):
                account = AccountRepository.get_by_id(holding.account_id, scope_id, session=session)
                holders.append(HolderInfo(
                    account_id=holding.account_id,
                    display_name=account.display_name if account else str(holding.account_id),
                    quantity=holding.quantity,
                    average_price=holding.average_price
                ))
            return holders

    @staticmethod
    @retry_read
    def history_of(scope_id: str, instrument_id: int) -> List[PriceHistoryPoint]:
        """Price history, oldest first. Still available after delisting."""
        with read_session() as session:
            if InstrumentRepository.get_by_id(
                instrument_id, scope_id, session=session, include_delisted=True
            ) is None:
                raise NotFound(f"Stock {instrument_id} not found")
            return InstrumentRepository.history(instrument_id, session=session)

    @staticmethod
    def price_history_frame(scope_id: str, instrument_id: int) -> pd.DataFrame:
        """
        Price history as a DataFrame for charting.

        Returns:
            DataFrame indexed by timestamp with 'price' and 'change_pct'
            (percentage change from the previous point, NaN for the first)
        """
        points = MarketService.history_of(scope_id, instrument_id)
        df = pd.DataFrame(
            {"price": [p.price for p in points]},
            index=pd.DatetimeIndex([p.created_at for p in points], name="timestamp"),
        )
        df["change_pct"] = df["price"].pct_change() * 100
        return df

    @staticmethod
    @retry_read
    def holdings_of(scope_id: str, account_id: int) -> List[Holding]:
        return InstrumentRepository.holdings_by_account(account_id, scope_id)

    @staticmethod
    @retry_read
    def portfolio_of(scope_id: str, account_id: int) -> List[PositionValue]:
        """
        Value every holding of an account at the current price.
        Display only: never feed these numbers back into a trade.
        """
        with read_session() as session:
            holdings = InstrumentRepository.holdings_by_account(account_id, scope_id, session=session)
            instruments: Dict[int, StockProduct] = {
                i.id: i for i in InstrumentRepository.list_by_scope(scope_id, session=session)
            }

        positions = []
        for holding in holdings:
            instrument = instruments[holding.instrument_id]
            cost_basis = round_half_up(Decimal(holding.quantity) * to_decimal(holding.average_price))
            market_value = holding.quantity * instrument.current_price
            pnl = market_value - cost_basis
            positions.append(PositionValue(
                instrument_id=instrument.id,
                name=instrument.name,
                quantity=holding.quantity,
                average_price=holding.average_price,
                current_price=instrument.current_price,
                cost_basis=cost_basis,
                market_value=market_value,
                unrealized_pnl=pnl,
                unrealized_pnl_pct=round(pnl / cost_basis * 100, 2) if cost_basis > 0 else 0.0
            ))
        return positions
