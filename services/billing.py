"""
Billing Engine - tax bills issued to a set of accounts and paid into the
classroom treasury, each recipient exactly once.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Optional, Tuple

from db_engine import write_session, read_session, retry_read
from errors import AlreadyPaid, EmptyRecipientSet, NotARecipient, NotFound
from models import TaxBill, TaxRecipient, TransactionType
from repositories import TaxRepository
from services.common import current_time
from services.ledger import LedgerService, TransferResult

logger = logging.getLogger(__name__)


@dataclass
class BillSummary:
    bill: TaxBill
    recipient_count: int
    paid_count: int

    @property
    def collected(self) -> int:
        return self.paid_count * self.bill.amount


class BillingService:

    @staticmethod
    def issue_bill(
        scope_id: str,
        name: str,
        amount: int,
        due_date: date,
        recipient_ids: Iterable[int]
    ) -> TaxBill:
        """
        Issue a bill to every account in `recipient_ids` (duplicates collapse).

        Raises:
            EmptyRecipientSet, InvalidAmount, UnknownAccount,
            InvalidTransition (the treasury or a stock account as recipient)
        """
        ids = sorted(set(recipient_ids))
        if not ids:
            raise EmptyRecipientSet("A bill needs at least one recipient")
        LedgerService._validate_amount(amount)

        with write_session() as session:
            # Validates that every recipient is an active account of this scope
            recipients = LedgerService.lock_accounts(session, scope_id, ids)
            LedgerService.require_members(recipients.values(), "be billed")
            bill = TaxRepository.add_bill(
                session,
                scope_id=scope_id,
                name=name,
                amount=amount,
                due_date=due_date,
                account_ids=ids
            )

        logger.info(f"Issued bill {bill.id} ({name}) of {amount} to {len(ids)} accounts")
        return bill

    @staticmethod
    def pay(
        scope_id: str,
        account_id: int,
        bill_id: int,
        now: Optional[datetime] = None
    ) -> TransferResult:
        """
        Pay a bill from the account to the treasury.

        Raises:
            NotFound, NotARecipient, AlreadyPaid, InsufficientFunds
        """
        now = current_time(now)
        with write_session() as session:
            bill = TaxRepository.get_bill(bill_id, scope_id, session=session)
            if bill is None:
                raise NotFound(f"Bill {bill_id} not found")
            recipient = TaxRepository.lock_recipient(session, bill_id, account_id)
            if recipient is None:
                raise NotARecipient(f"Account {account_id} was not billed for {bill.name}")
            if recipient.is_paid:
                raise AlreadyPaid(f"Account {account_id} already paid {bill.name}")

            treasury = LedgerService.require_treasury(session, scope_id)
            accounts = LedgerService.lock_accounts(session, scope_id, [account_id, treasury.id])
            result = LedgerService.post_transfer(
                session, accounts[account_id], accounts[treasury.id], bill.amount,
                transaction_type=TransactionType.TAX,
                memo=f"Paid {bill.name}"
            )
            if not TaxRepository.mark_paid(session, recipient, now):
                # Rolls back the transfer above
                raise AlreadyPaid(f"Account {account_id} already paid {bill.name}")

        logger.info(f"Account {account_id} paid bill {bill_id} ({bill.amount})")
        return result

    @staticmethod
    def delete_bill(scope_id: str, bill_id: int):
        """Delete a bill. Payments already collected stay in the treasury."""
        with write_session() as session:
            bill = TaxRepository.get_bill(bill_id, scope_id, session=session)
            if bill is None:
                raise NotFound(f"Bill {bill_id} not found")
            TaxRepository.delete_bill(session, bill)
        logger.info(f"Deleted bill {bill_id} from classroom {scope_id}")

    # ==================== Read projections ====================

    @staticmethod
    @retry_read
    def unpaid_for(scope_id: str, account_id: int) -> List[Tuple[TaxBill, TaxRecipient]]:
        return TaxRepository.unpaid_for(account_id, scope_id)

    @staticmethod
    @retry_read
    def recipients_of(scope_id: str, bill_id: int) -> List[TaxRecipient]:
        with read_session() as session:
            if TaxRepository.get_bill(bill_id, scope_id, session=session) is None:
                raise NotFound(f"Bill {bill_id} not found")
            return TaxRepository.recipients_of(bill_id, session=session)

    @staticmethod
    @retry_read
    def bills_of(scope_id: str) -> List[BillSummary]:
        """Every bill of the classroom with how many recipients have paid."""
        with read_session() as session:
            summaries = []
            for bill in TaxRepository.list_bills(scope_id, session=session):
                recipients = TaxRepository.recipients_of(bill.id, session=session)
                summaries.append(BillSummary(
                    bill=bill,
                    recipient_count=len(recipients),
                    paid_count=sum(1 for r in recipients if r.is_paid)
                ))
            return summaries
