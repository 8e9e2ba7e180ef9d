"""
Savings models - interest-bearing products and the subscriptions escrowing principal.
"""

from decimal import Decimal
from typing import Optional
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class SavingsProduct(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    scope_id: str = Field(foreign_key="classroom.id", index=True)
    name: str
    maturity_days: int
    rate: Decimal = Field(max_digits=8, decimal_places=4)  # 0.05 == 5% over the term
    cancellation_rate: Decimal = Field(max_digits=8, decimal_places=4)  # <= rate, may be negative
    max_amount: int


class SavingsSubscription(SQLModel, table=True):
    """Principal held in escrow until cancellation or maturity."""
    id: Optional[int] = Field(default=None, primary_key=True)
    scope_id: str = Field(foreign_key="classroom.id", index=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    product_id: int = Field(foreign_key="savingsproduct.id", index=True)
    principal: int
    joined_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    matures_at: datetime = Field(index=True)
