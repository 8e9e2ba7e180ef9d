"""
Tax models - bills issued to a chosen set of accounts.
"""

from typing import Optional
from datetime import date, datetime, timezone
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class TaxBill(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    scope_id: str = Field(foreign_key="classroom.id", index=True)
    name: str  # e.g. "Health insurance"
    amount: int
    due_date: date
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TaxRecipient(SQLModel, table=True):
    """Payment status of one account for one bill. Flips to paid exactly once."""
    __table_args__ = (UniqueConstraint("bill_id", "account_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    bill_id: int = Field(foreign_key="taxbill.id", index=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    is_paid: bool = Field(default=False)
    paid_at: Optional[datetime] = Field(default=None)
