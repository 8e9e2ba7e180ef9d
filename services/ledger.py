"""
Ledger Core - the only code that changes account balances.

Every other service moves money through the posting helpers here, inside
its own write session, so a balance change, its log rows and any auxiliary
state change commit together or not at all.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlmodel import Session

from db_engine import write_session, read_session, retry_read
from errors import InvalidAmount, InsufficientFunds, InvalidTransition, UnknownAccount, NotFound
from models import Account, AccountRole, Transaction, TransactionType
from repositories import (
    AccountRepository,
    TransactionRepository,
    SavingsRepository,
    FundRepository,
)
from services.common import new_correlation_id

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    """Both legs of one transfer."""
    correlation_id: str
    debit: Transaction
    credit: Transaction

    @property
    def amount(self) -> int:
        return self.credit.amount


@dataclass
class MoneySupply:
    """Where the currency of one scope currently sits."""
    circulating: int  # Sum of account balances
    savings_escrow: int
    fund_escrow: int

    @property
    def total(self) -> int:
        return self.circulating + self.savings_escrow + self.fund_escrow


class LedgerService:
    """
    Atomic debit/credit/transfer primitives and account history.
    Public operations open their own write session; the `post_*` helpers
    run inside a caller's session.
    """

    # ==================== Posting helpers ====================

    @staticmethod
    def _validate_amount(amount: int):
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount(f"Amount must be a whole number of minor units, got {amount!r}")
        if amount <= 0:
            raise InvalidAmount(f"Amount must be positive, got {amount}")

    @staticmethod
    def lock_accounts(session: Session, scope_id: str, account_ids: Iterable[int]) -> Dict[int, Account]:
        """
        Lock every account an operation touches, in one ascending-id pass.

        Raises:
            UnknownAccount: an id is missing, removed or in another scope
        """
        ids = set(account_ids)
        accounts = AccountRepository.lock(session, scope_id, ids)
        for account_id in sorted(ids):
            account = accounts.get(account_id)
            if account is None or not account.is_active:
                raise UnknownAccount(f"Account {account_id} does not exist in this classroom")
        return accounts

    @staticmethod
    def require_members(accounts: Iterable[Account], action: str):
        """Reject the treasury and stock settlement accounts as the party to `action`."""
        for account in accounts:
            if account.role in (AccountRole.TEACHER, AccountRole.STOCK):
                raise InvalidTransition(f"{account.display_name} cannot {action}")

    @staticmethod
    def post_debit(
        session: Session,
        account: Account,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        correlation_id: Optional[str] = None,
        counterparty_account_id: Optional[int] = None
    ) -> Transaction:
        """Debit a locked account and append the debit leg."""
        LedgerService._validate_amount(amount)
        if account.balance < amount:
            raise InsufficientFunds(
                f"Insufficient balance in account {account.id} (needed: {amount}, balance: {account.balance})"
            )
        AccountRepository.apply_delta(session, account, -amount)
        return TransactionRepository.append(
            session,
            scope_id=account.scope_id,
            account_id=account.id,
            amount=-amount,
            transaction_type=transaction_type,
            description=description,
            correlation_id=correlation_id or new_correlation_id(),
            counterparty_account_id=counterparty_account_id
        )

    @staticmethod
    def post_credit(
        session: Session,
        account: Account,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        correlation_id: Optional[str] = None,
        counterparty_account_id: Optional[int] = None
    ) -> Transaction:
        """Credit a locked account and append the credit leg."""
        LedgerService._validate_amount(amount)
        AccountRepository.apply_delta(session, account, amount)
        return TransactionRepository.append(
            session,
            scope_id=account.scope_id,
            account_id=account.id,
            amount=amount,
            transaction_type=transaction_type,
            description=description,
            correlation_id=correlation_id or new_correlation_id(),
            counterparty_account_id=counterparty_account_id
        )

    @staticmethod
    def post_transfer(
        session: Session,
        source: Account,
        target: Account,
        amount: int,
        transaction_type: TransactionType = TransactionType.TRANSFER,
        memo: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> TransferResult:
        """Move money between two locked accounts: two legs, one correlation id."""
        LedgerService._validate_amount(amount)
        if source.id == target.id:
            raise InvalidAmount("Cannot transfer to the same account")
        correlation_id = correlation_id or new_correlation_id()
        debit = LedgerService.post_debit(
            session, source, amount, transaction_type,
            memo or f"Transfer to {target.display_name}",
            correlation_id=correlation_id,
            counterparty_account_id=target.id
        )
        credit = LedgerService.post_credit(
            session, target, amount, transaction_type,
            memo or f"Transfer from {source.display_name}",
            correlation_id=correlation_id,
            counterparty_account_id=source.id
        )
        return TransferResult(correlation_id=correlation_id, debit=debit, credit=credit)

    @staticmethod
    def require_treasury(session: Session, scope_id: str) -> Account:
        """Look up the treasury; lock it together with the other accounts via lock_accounts."""
        treasury = AccountRepository.get_treasury(scope_id, session=session)
        if treasury is None:
            raise NotFound(f"Classroom {scope_id} has no treasury account")
        return treasury

    # ==================== Public operations ====================

    @staticmethod
    def transfer(
        scope_id: str,
        from_account_id: int,
        to_account_id: int,
        amount: int,
        memo: Optional[str] = None,
        transaction_type: TransactionType = TransactionType.TRANSFER
    ) -> TransferResult:
        """
        Transfer money between two accounts of the same classroom.

        Args:
            scope_id: Classroom both accounts must belong to
            from_account_id: Account debited
            to_account_id: Account credited
            amount: Positive amount in minor units
            memo: Optional description used for both legs
            transaction_type: Logged type (Transfer, Mart, ...)

        Returns:
            TransferResult with both legs

        Raises:
            InvalidAmount, UnknownAccount, InsufficientFunds
        """
        LedgerService._validate_amount(amount)
        if from_account_id == to_account_id:
            raise InvalidAmount("Cannot transfer to the same account")

        with write_session() as session:
            accounts = LedgerService.lock_accounts(session, scope_id, [from_account_id, to_account_id])
            result = LedgerService.post_transfer(
                session,
                accounts[from_account_id],
                accounts[to_account_id],
                amount,
                transaction_type=transaction_type,
                memo=memo
            )

        logger.info(
            f"Transferred {amount} from account {from_account_id} to {to_account_id} "
            f"(correlation {result.correlation_id})"
        )
        return result

    @staticmethod
    def mint(
        scope_id: str,
        to_account_id: int,
        amount: int,
        memo: Optional[str] = None,
        transaction_type: TransactionType = TransactionType.DEPOSIT
    ) -> Transaction:
        """Create currency in an account. One of only two places money appears or vanishes."""
        LedgerService._validate_amount(amount)
        with write_session() as session:
            account = LedgerService.lock_accounts(session, scope_id, [to_account_id])[to_account_id]
            leg = LedgerService.post_credit(
                session, account, amount, transaction_type, memo or "Deposit"
            )
        logger.info(f"Minted {amount} into account {to_account_id}")
        return leg

    @staticmethod
    def burn(
        scope_id: str,
        from_account_id: int,
        amount: int,
        memo: Optional[str] = None,
        transaction_type: TransactionType = TransactionType.WITHDRAWAL
    ) -> Transaction:
        """Destroy currency held by an account."""
        LedgerService._validate_amount(amount)
        with write_session() as session:
            account = LedgerService.lock_accounts(session, scope_id, [from_account_id])[from_account_id]
            leg = LedgerService.post_debit(
                session, account, amount, transaction_type, memo or "Withdrawal"
            )
        logger.info(f"Burned {amount} from account {from_account_id}")
        return leg

    # ==================== Read projections ====================

    @staticmethod
    @retry_read
    def get_account(scope_id: str, account_id: int) -> Account:
        account = AccountRepository.get_by_id(account_id, scope_id)
        if account is None:
            raise UnknownAccount(f"Account {account_id} does not exist in this classroom")
        return account

    @staticmethod
    def get_balance(scope_id: str, account_id: int) -> int:
        return LedgerService.get_account(scope_id, account_id).balance

    @staticmethod
    @retry_read
    def get_history(
        scope_id: str,
        account_id: int,
        newest_first: bool = True,
        limit: Optional[int] = None
    ) -> List[Transaction]:
        """Transaction history of one account, newest first by default."""
        with read_session() as session:
            if AccountRepository.get_by_id(account_id, scope_id, session=session) is None:
                raise UnknownAccount(f"Account {account_id} does not exist in this classroom")
            return TransactionRepository.get_by_account(
                account_id, scope_id, newest_first=newest_first, limit=limit, session=session
            )

    @staticmethod
    @retry_read
    def accounts_of(scope_id: str, role: Optional[AccountRole] = None) -> List[Account]:
        return AccountRepository.list_by_scope(scope_id, role=role)

    @staticmethod
    @retry_read
    def treasury_of(scope_id: str) -> Account:
        treasury = AccountRepository.get_treasury(scope_id)
        if treasury is None:
            raise NotFound(f"Classroom {scope_id} has no treasury account")
        return treasury

    @staticmethod
    @retry_read
    def money_supply(scope_id: str) -> MoneySupply:
        """
        Audit where the scope's currency sits.
        The total only changes through mint and burn.
        """
        with read_session() as session:
            return MoneySupply(
                circulating=AccountRepository.sum_balances(scope_id, session=session),
                savings_escrow=SavingsRepository.sum_principal(scope_id, session=session),
                fund_escrow=FundRepository.escrowed(scope_id, session=session)
            )
