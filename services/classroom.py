"""
Classroom service - tenant creation and account provisioning.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from config import get_settings
from db_engine import write_session, retry_read
from errors import InvalidTransition, NotFound
from models import Account, AccountRole, Classroom, TransactionType
from repositories import (
    AccountRepository,
    ClassroomRepository,
    InstrumentRepository,
    SavingsRepository,
    FundRepository,
    JobRepository,
)
from services.common import current_time
from services.ledger import LedgerService

logger = logging.getLogger(__name__)


@dataclass
class ClassroomSetup:
    classroom: Classroom
    treasury: Account


class ClassroomService:

    @staticmethod
    def create_classroom(alias: str, teacher_user_id: str, currency_unit: Optional[str] = None) -> ClassroomSetup:
        """
        Create a classroom and its treasury (teacher) account.

        Args:
            alias: Display name of the classroom bank
            teacher_user_id: User id of the teacher owning the treasury
            currency_unit: Currency label, defaults to the configured one

        Returns:
            ClassroomSetup with the classroom and treasury account
        """
        unit = currency_unit or get_settings().currency_unit
        with write_session() as session:
            classroom = ClassroomRepository.add(session, alias=alias, currency_unit=unit)
            treasury = AccountRepository.add(
                session,
                scope_id=classroom.id,
                user_id=teacher_user_id,
                display_name=f"{alias} treasury",
                role=AccountRole.TEACHER
            )

        logger.info(f"Created classroom {classroom.id} ({alias}) with treasury account {treasury.id}")
        return ClassroomSetup(classroom=classroom, treasury=treasury)

    @staticmethod
    @retry_read
    def get_classroom(scope_id: str) -> Classroom:
        classroom = ClassroomRepository.get_by_id(scope_id)
        if classroom is None:
            raise NotFound(f"Classroom {scope_id} not found")
        return classroom

    @staticmethod
    def provision_account(scope_id: str, user_id: str, role: AccountRole, display_name: str) -> Account:
        """Open a zero-balance account for a student, mart or banker."""
        role = AccountRole(role)
        if role in (AccountRole.TEACHER, AccountRole.STOCK):
            raise InvalidTransition(f"{role.value} accounts are created by the engine, not provisioned")

        with write_session() as session:
            if ClassroomRepository.get_by_id(scope_id, session=session) is None:
                raise NotFound(f"Classroom {scope_id} not found")
            account = AccountRepository.add(
                session,
                scope_id=scope_id,
                user_id=user_id,
                display_name=display_name,
                role=role
            )

        logger.info(f"Provisioned {role.value} account {account.id} for user {user_id}")
        return account

    @staticmethod
    def remove_account(scope_id: str, account_id: int, now: Optional[datetime] = None) -> Account:
        """
        Soft-remove an account.

        Refused while the account still holds stock, savings or open fund
        investments. Any remaining balance is moved to the treasury first, so
        removal never destroys money.
        """
        now = current_time(now)
        with write_session() as session:
            treasury = LedgerService.require_treasury(session, scope_id)
            if account_id == treasury.id:
                raise InvalidTransition("The treasury account cannot be removed")

            accounts = LedgerService.lock_accounts(session, scope_id, [account_id, treasury.id])
            account = accounts[account_id]

            if InstrumentRepository.holdings_by_account(account_id, scope_id, session=session):
                raise InvalidTransition(f"Account {account_id} still holds stock")
            if SavingsRepository.count_by_account(session, account_id):
                raise InvalidTransition(f"Account {account_id} still has savings")
            if FundRepository.count_open_by_account(session, account_id):
                raise InvalidTransition(f"Account {account_id} still has open fund investments")

            if account.balance > 0:
                LedgerService.post_transfer(
                    session, account, accounts[treasury.id], account.balance,
                    transaction_type=TransactionType.TRANSFER,
                    memo=f"Closing balance of {account.display_name}"
                )
            JobRepository.unassign_account(session, account_id)
            AccountRepository.soft_remove(session, account, now)

        logger.info(f"Removed account {account_id} from classroom {scope_id}")
        return account
