"""
Market models - tradable instruments, their price history and holdings.
"""

from decimal import Decimal
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class StockProduct(SQLModel, table=True):
    """A classroom stock. Trades settle against its own stock account."""
    id: Optional[int] = Field(default=None, primary_key=True)
    scope_id: str = Field(foreign_key="classroom.id", index=True)
    name: str
    current_price: int  # Minor units, > 0
    volatility: Decimal = Field(default=Decimal("0.01"), max_digits=6, decimal_places=4)  # k in [0.01, 1.0]
    settlement_account_id: int = Field(foreign_key="account.id")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    delisted_at: Optional[datetime] = Field(default=None)  # History is kept after delisting

    @property
    def is_listed(self) -> bool:
        return self.delisted_at is None


class PriceHistoryPoint(SQLModel, table=True):
    """One row per price change, including the listing price."""
    id: Optional[int] = Field(default=None, primary_key=True)
    instrument_id: int = Field(foreign_key="stockproduct.id", index=True)
    price: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)


class Holding(SQLModel, table=True):
    """Shares of one instrument held by one account, at average cost."""
    __table_args__ = (UniqueConstraint("account_id", "instrument_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    scope_id: str = Field(foreign_key="classroom.id", index=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    instrument_id: int = Field(foreign_key="stockproduct.id", index=True)
    quantity: int = Field(default=0)
    average_price: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=4)
