"""
Account model - one participant's wallet inside a classroom.
"""

from enum import Enum
from typing import Optional
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class AccountRole(str, Enum):
    """Who owns the wallet."""
    STUDENT = "student"
    TEACHER = "teacher"  # The classroom treasury
    MART = "mart"
    BANKER = "banker"
    STOCK = "stock"  # Settlement account of a listed instrument


class Account(SQLModel, table=True):
    """
    Wallet with a non-negative integer balance in minor units.
    Balance and revision are only ever changed by the ledger.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    scope_id: str = Field(foreign_key="classroom.id", index=True)
    user_id: str = Field(index=True)
    display_name: str
    role: AccountRole = Field(index=True)
    balance: int = Field(default=0)
    revision: int = Field(default=0)  # Bumped on every balance change
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    removed_at: Optional[datetime] = Field(default=None)  # Soft removal

    @property
    def is_active(self) -> bool:
        return self.removed_at is None
