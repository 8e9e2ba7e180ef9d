"""
Banking service - currency issuance, banker counter operations and mart
settlement. Issuance and banker deposit/withdrawal are the only mint/burn
call sites.
"""

import logging
from enum import Enum

from db_engine import write_session
from errors import PermissionDenied
from models import Account, AccountRole, Transaction, TransactionType
from services.ledger import LedgerService, TransferResult

logger = logging.getLogger(__name__)


class MartDirection(str, Enum):
    FROM_STUDENT = "FROM_STUDENT"  # Student pays the mart
    TO_STUDENT = "TO_STUDENT"  # Mart pays the student (refund, buy-back)


class BankingService:

    @staticmethod
    def _require_role(account: Account, role: AccountRole):
        if account.role != role:
            raise PermissionDenied(f"Account {account.id} is not a {role.value} account")

    @staticmethod
    def issue_currency(scope_id: str, amount: int) -> Transaction:
        """Create new currency in the classroom treasury (central bank issuance)."""
        treasury = LedgerService.treasury_of(scope_id)
        leg = LedgerService.mint(
            scope_id, treasury.id, amount,
            memo=f"Currency issued: {amount}",
            transaction_type=TransactionType.ISSUANCE
        )
        logger.info(f"Issued {amount} into treasury of classroom {scope_id}")
        return leg

    @staticmethod
    def banker_deposit(scope_id: str, banker_account_id: int, account_id: int, amount: int) -> Transaction:
        """Banker takes physical cash and credits the account."""
        banker = LedgerService.get_account(scope_id, banker_account_id)
        BankingService._require_role(banker, AccountRole.BANKER)
        return LedgerService.mint(
            scope_id, account_id, amount,
            memo=f"Deposit at the bank counter ({banker.display_name})",
            transaction_type=TransactionType.DEPOSIT
        )

    @staticmethod
    def banker_withdraw(scope_id: str, banker_account_id: int, account_id: int, amount: int) -> Transaction:
        """Banker hands out physical cash and debits the account."""
        banker = LedgerService.get_account(scope_id, banker_account_id)
        BankingService._require_role(banker, AccountRole.BANKER)
        return LedgerService.burn(
            scope_id, account_id, amount,
            memo=f"Withdrawal at the bank counter ({banker.display_name})",
            transaction_type=TransactionType.WITHDRAWAL
        )

    @staticmethod
    def mart_transfer(
        scope_id: str,
        mart_account_id: int,
        student_account_id: int,
        amount: int,
        direction: MartDirection
    ) -> TransferResult:
        """
        Settle a purchase (FROM_STUDENT) or a refund (TO_STUDENT) at the mart.

        The role check happens inside the same transaction as the money
        movement.
        """
        direction = MartDirection(direction)
        LedgerService._validate_amount(amount)
        with write_session() as session:
            accounts = LedgerService.lock_accounts(session, scope_id, [mart_account_id, student_account_id])
            mart = accounts[mart_account_id]
            student = accounts[student_account_id]
            BankingService._require_role(mart, AccountRole.MART)
            if direction == MartDirection.FROM_STUDENT:
                result = LedgerService.post_transfer(
                    session, student, mart, amount,
                    transaction_type=TransactionType.MART,
                    memo=f"Mart purchase ({mart.display_name})"
                )
            else:
                result = LedgerService.post_transfer(
                    session, mart, student, amount,
                    transaction_type=TransactionType.MART,
                    memo=f"Mart payment ({mart.display_name})"
                )

        logger.info(f"Mart {mart_account_id} {direction.value} {amount} with account {student_account_id}")
        return result
