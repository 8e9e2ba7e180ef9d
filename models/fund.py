"""
Fund models - crowdfunding campaigns and the investments they escrow.
"""

from enum import Enum
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class FundStatus(str, Enum):
    RECRUITING = "RECRUITING"
    ONGOING = "ONGOING"
    SUCCESS = "SUCCESS"
    EXCEED = "EXCEED"
    FAIL = "FAIL"

    @property
    def is_terminal(self) -> bool:
        return self in (FundStatus.SUCCESS, FundStatus.EXCEED, FundStatus.FAIL)


class Fund(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    scope_id: str = Field(foreign_key="classroom.id", index=True)
    name: str
    description: str = Field(default="")
    creator_account_id: int = Field(foreign_key="account.id")
    unit_price: int
    target_amount: int
    base_reward: int = Field(default=0)  # Per unit, paid on SUCCESS and EXCEED
    incentive_reward: int = Field(default=0)  # Per unit, paid on top on EXCEED
    recruitment_deadline: datetime = Field(index=True)
    maturity_date: datetime
    status: FundStatus = Field(default=FundStatus.RECRUITING, index=True)
    settled_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FundInvestment(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("fund_id", "account_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    fund_id: int = Field(foreign_key="fund.id", index=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    units: int
    invested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
