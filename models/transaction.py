"""
Transaction model - immutable record of one balance-affecting event.
"""

from enum import Enum
from typing import Optional
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class TransactionType(str, Enum):
    DEPOSIT = "Deposit"
    WITHDRAWAL = "Withdrawal"
    TRANSFER = "Transfer"
    MART = "Mart"
    SALARY = "Salary"
    STOCK_BUY = "StockBuy"
    STOCK_SELL = "StockSell"
    SAVINGS_JOIN = "SavingsJoin"
    SAVINGS_CANCEL = "SavingsCancel"
    SAVINGS_MATURITY = "SavingsMaturity"
    TAX = "Tax"
    FUND_JOIN = "FundJoin"
    FUND_PAYOUT = "FundPayout"
    ISSUANCE = "Issuance"


class Transaction(SQLModel, table=True):
    """One leg of a ledger movement. Append-only."""
    id: Optional[int] = Field(default=None, primary_key=True)
    scope_id: str = Field(foreign_key="classroom.id", index=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    amount: int  # Signed: negative for the debit leg
    type: TransactionType
    description: str
    counterparty_account_id: Optional[int] = Field(default=None)
    correlation_id: str = Field(index=True)  # Shared by every leg of one movement
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
