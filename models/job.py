"""
Job models - classroom jobs and the students assigned to them.
"""

from typing import Optional
from datetime import datetime
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class Job(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    scope_id: str = Field(foreign_key="classroom.id", index=True)
    name: str
    description: str = Field(default="")
    salary: int
    incentive: int = Field(default=0)  # Added on top of the salary at each payout
    last_paid_at: Optional[datetime] = Field(default=None)


class JobAssignment(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("job_id", "account_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: int = Field(foreign_key="job.id", index=True)
    account_id: int = Field(foreign_key="account.id", index=True)
