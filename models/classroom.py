"""
Classroom model - the teacher scope every other entity belongs to.
"""

from datetime import datetime, timezone
from uuid import uuid4
from sqlmodel import SQLModel, Field


class Classroom(SQLModel, table=True):
    """One teacher's economy; the tenant boundary for every query."""
    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    alias: str  # Shown to students, e.g. "Ms. Kwon's bank"
    currency_unit: str = Field(default="coin")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
