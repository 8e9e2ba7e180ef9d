"""
Common utilities and shared functions.
Clock access, correlation ids and the integer rounding every payout uses.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Union
from uuid import uuid4

logger = logging.getLogger(__name__)

Number = Union[int, Decimal, str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Normalise a timestamp to aware UTC. Naive values are taken to be UTC already.

    Examples:
        >>> as_utc(datetime(2025, 3, 3, 9, 0))
        datetime.datetime(2025, 3, 3, 9, 0, tzinfo=datetime.timezone.utc)
    """
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def current_time(now: Optional[datetime] = None) -> datetime:
    """Return `now` (as UTC) if given, otherwise the wall clock. Lets callers simulate time."""
    return as_utc(now) if now is not None else utc_now()


def new_correlation_id() -> str:
    """Id shared by every leg of one ledger movement."""
    return uuid4().hex


def to_decimal(value: Number) -> Decimal:
    """
    Convert a rate or coefficient to Decimal without going through float.

    Examples:
        >>> to_decimal("0.05")
        Decimal('0.05')
        >>> to_decimal(3)
        Decimal('3')
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # repr() keeps the shortest round-tripping form, e.g. 0.1 -> "0.1"
        return Decimal(repr(value))
    return Decimal(value)


def round_half_up(value: Decimal) -> int:
    """
    Round a monetary Decimal to whole minor units, halves away from zero.

    Examples:
        >>> round_half_up(Decimal("249.5"))
        250
        >>> round_half_up(Decimal("-0.5"))
        -1
    """
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_rate(principal: int, rate: Number) -> int:
    """principal x (1 + rate), rounded half up."""
    return round_half_up(Decimal(principal) * (Decimal(1) + to_decimal(rate)))


@dataclass
class SweepReport:
    """Outcome of one sweep over due rows."""
    settled: List[int] = field(default_factory=list)  # Row ids processed
    failed: List[int] = field(default_factory=list)  # Row ids left for the next run

    @property
    def count(self) -> int:
        return len(self.settled)
