"""
Database models for the classroom economy.
All SQLModel table definitions are centralized here.
"""

from models.classroom import Classroom
from models.account import Account, AccountRole
from models.transaction import Transaction, TransactionType
from models.instrument import StockProduct, PriceHistoryPoint, Holding
from models.savings import SavingsProduct, SavingsSubscription
from models.tax import TaxBill, TaxRecipient
from models.fund import Fund, FundInvestment, FundStatus
from models.job import Job, JobAssignment

__all__ = [
    'Classroom',
    'Account',
    'AccountRole',
    'Transaction',
    'TransactionType',
    'StockProduct',
    'PriceHistoryPoint',
    'Holding',
    'SavingsProduct',
    'SavingsSubscription',
    'TaxBill',
    'TaxRecipient',
    'Fund',
    'FundInvestment',
    'FundStatus',
    'Job',
    'JobAssignment',
]
