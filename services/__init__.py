"""
Services package for the classroom economy.
Provides the business logic on top of the repositories; every balance change
goes through LedgerService.
"""

from services.common import (
    current_time,
    round_half_up,
    apply_rate,
    SweepReport,
)
from services.ledger import LedgerService, TransferResult, MoneySupply
from services.classroom import ClassroomService, ClassroomSetup
from services.banking import BankingService, MartDirection
from services.market import (
    MarketService,
    TradeResult,
    HolderInfo,
    PositionValue,
    fee_rate,
    sale_proceeds,
)
from services.savings import SavingsService, EnrolleeInfo
from services.billing import BillingService, BillSummary
from services.funds import FundService, FundSummary, SettlementResult
from services.payroll import PayrollService, JobInfo, PayrollResult

__all__ = [
    # Common utilities
    'current_time',
    'round_half_up',
    'apply_rate',
    'SweepReport',
    # Ledger
    'LedgerService',
    'TransferResult',
    'MoneySupply',
    # Classroom and banking
    'ClassroomService',
    'ClassroomSetup',
    'BankingService',
    'MartDirection',
    # Market
    'MarketService',
    'TradeResult',
    'HolderInfo',
    'PositionValue',
    'fee_rate',
    'sale_proceeds',
    # Savings, billing, funds, payroll
    'SavingsService',
    'EnrolleeInfo',
    'BillingService',
    'BillSummary',
    'FundService',
    'FundSummary',
    'SettlementResult',
    'PayrollService',
    'JobInfo',
    'PayrollResult',
]
