"""
Payroll - classroom jobs and salary runs paid from the treasury.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from db_engine import write_session, read_session, retry_read
from errors import EconomyError, InvalidAmount, NotFound
from models import Job, TransactionType
from repositories import JobRepository
from services.common import current_time
from services.ledger import LedgerService

logger = logging.getLogger(__name__)


@dataclass
class JobInfo:
    job: Job
    assignee_ids: List[int]

    @property
    def payout_per_assignee(self) -> int:
        return self.job.salary + self.job.incentive


@dataclass
class PayrollResult:
    job_id: int
    paid_account_ids: List[int]
    amount_per_assignee: int

    @property
    def total(self) -> int:
        return self.amount_per_assignee * len(self.paid_account_ids)


class PayrollService:

    @staticmethod
    def _validate_non_negative(value: int, label: str):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidAmount(f"{label} must be a non-negative whole number, got {value!r}")

    @staticmethod
    def create_job(scope_id: str, name: str, salary: int, description: str = "") -> Job:
        LedgerService._validate_amount(salary)
        with write_session() as session:
            job = JobRepository.add(session, scope_id=scope_id, name=name, description=description, salary=salary)
        logger.info(f"Created job {job.id} ({name}) with salary {salary}")
        return job

    @staticmethod
    def delete_job(scope_id: str, job_id: int):
        with write_session() as session:
            job = JobRepository.lock(session, job_id, scope_id)
            if job is None:
                raise NotFound(f"Job {job_id} not found")
            JobRepository.delete(session, job)
        logger.info(f"Deleted job {job_id}")

    @staticmethod
    def assign(scope_id: str, job_id: int, account_ids: Iterable[int]) -> List[int]:
        """
        Replace the set of accounts holding a job. Returns the new set.
        The treasury and stock accounts cannot hold jobs (InvalidTransition).
        """
        ids = sorted(set(account_ids))
        with write_session() as session:
            job = JobRepository.lock(session, job_id, scope_id)
            if job is None:
                raise NotFound(f"Job {job_id} not found")
            if ids:
                assignees = LedgerService.lock_accounts(session, scope_id, ids)
                LedgerService.require_members(assignees.values(), "hold a job")
            JobRepository.replace_assignments(session, job_id, ids)
        logger.info(f"Job {job_id} assigned to accounts {ids}")
        return ids

    @staticmethod
    def set_incentive(scope_id: str, job_id: int, incentive: int) -> Job:
        """Set the bonus paid on top of the salary at every payout."""
        PayrollService._validate_non_negative(incentive, "Incentive")
        with write_session() as session:
            job = JobRepository.lock(session, job_id, scope_id)
            if job is None:
                raise NotFound(f"Job {job_id} not found")
            job.incentive = incentive
            JobRepository.save(session, job)
        logger.info(f"Job {job_id} incentive set to {incentive}")
        return job

    @staticmethod
    def pay_salary(scope_id: str, job_id: int, now: Optional[datetime] = None) -> PayrollResult:
        """
        Pay salary + incentive from the treasury to every assignee.

        All assignees are paid in one transaction: a treasury shortfall pays
        nobody.

        Raises:
            NotFound, UnknownAccount, InsufficientFunds
        """
        now = current_time(now)
        with write_session() as session:
            job = JobRepository.lock(session, job_id, scope_id)
            if job is None:
                raise NotFound(f"Job {job_id} not found")
            assignee_ids = JobRepository.assignee_ids(job_id, session=session)
            amount = job.salary + job.incentive

            if assignee_ids:
                treasury = LedgerService.require_treasury(session, scope_id)
                accounts = LedgerService.lock_accounts(session, scope_id, [treasury.id] + assignee_ids)
                for account_id in assignee_ids:
                    LedgerService.post_transfer(
                        session, accounts[treasury.id], accounts[account_id], amount,
                        transaction_type=TransactionType.SALARY,
                        memo=f"Salary: {job.name}"
                    )
            job.last_paid_at = now
            JobRepository.save(session, job)

        logger.info(f"Paid job {job_id} salary {amount} to {len(assignee_ids)} accounts")
        return PayrollResult(job_id=job_id, paid_account_ids=assignee_ids, amount_per_assignee=amount)

    @staticmethod
    def pay_all_salaries(scope_id: str, now: Optional[datetime] = None) -> Dict[int, PayrollResult]:
        """
        Run payroll for every job of the classroom, one transaction per job.
        A job that cannot be paid is logged and skipped.
        """
        now = current_time(now)
        results = {}
        for job in JobRepository.list_by_scope(scope_id):
            try:
                results[job.id] = PayrollService.pay_salary(scope_id, job.id, now)
            except EconomyError as e:
                logger.warning(f"Payroll for job {job.id} ({job.name}) failed: {e}")
        return results

    # ==================== Read projections ====================

    @staticmethod
    @retry_read
    def jobs_of(scope_id: str) -> List[JobInfo]:
        with read_session() as session:
            return [
                JobInfo(job=job, assignee_ids=JobRepository.assignee_ids(job.id, session=session))
                for job in JobRepository.list_by_scope(scope_id, session=session)
            ]
