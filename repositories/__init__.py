"""
Repositories package for the classroom economy.
Provides the data access layer for all database operations.
"""

from repositories.classroom_repository import ClassroomRepository
from repositories.account_repository import AccountRepository
from repositories.transaction_repository import TransactionRepository
from repositories.instrument_repository import InstrumentRepository
from repositories.savings_repository import SavingsRepository
from repositories.tax_repository import TaxRepository
from repositories.fund_repository import FundRepository
from repositories.job_repository import JobRepository

__all__ = [
    'ClassroomRepository',
    'AccountRepository',
    'TransactionRepository',
    'InstrumentRepository',
    'SavingsRepository',
    'TaxRepository',
    'FundRepository',
    'JobRepository',
]
