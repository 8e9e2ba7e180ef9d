"""
Job Repository - data access layer for Job and JobAssignment models.
"""

from typing import Optional, List, Iterable

from sqlalchemy import delete
from sqlmodel import Session, select

from db_engine import read_session
from models import Job, JobAssignment


class JobRepository:
    """Repository for jobs and their assignments."""

    @staticmethod
    def add(session: Session, scope_id: str, name: str, description: str, salary: int) -> Job:
        job = Job(scope_id=scope_id, name=name, description=description, salary=salary)
        session.add(job)
        session.flush()
        return job

    @staticmethod
    def get_by_id(job_id: int, scope_id: str, session: Optional[Session] = None) -> Optional[Job]:
        def _get(sess: Session) -> Optional[Job]:
            statement = select(Job).where(Job.id == job_id, Job.scope_id == scope_id)
            return sess.exec(statement).first()

        if session is not None:
            return _get(session)
        else:
            with read_session() as session:
                return _get(session)

    @staticmethod
    def lock(session: Session, job_id: int, scope_id: str) -> Optional[Job]:
        statement = (
            select(Job)
            .where(Job.id == job_id, Job.scope_id == scope_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(statement).first()

    @staticmethod
    def list_by_scope(scope_id: str, session: Optional[Session] = None) -> List[Job]:
        def _list(sess: Session) -> List[Job]:
            statement = select(Job).where(Job.scope_id == scope_id).order_by(Job.id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def save(session: Session, job: Job) -> Job:
        session.add(job)
        session.flush()
        return job

    @staticmethod
    def assignee_ids(job_id: int, session: Optional[Session] = None) -> List[int]:
        def _list(sess: Session) -> List[int]:
            statement = select(JobAssignment.account_id).where(
                JobAssignment.job_id == job_id
            ).order_by(JobAssignment.account_id)
            return list(sess.exec(statement).all())

        if session is not None:
            return _list(session)
        else:
            with read_session() as session:
                return _list(session)

    @staticmethod
    def replace_assignments(session: Session, job_id: int, account_ids: Iterable[int]):
        session.exec(delete(JobAssignment).where(JobAssignment.job_id == job_id))
        for account_id in account_ids:
            session.add(JobAssignment(job_id=job_id, account_id=account_id))
        session.flush()

    @staticmethod
    def unassign_account(session: Session, account_id: int):
        session.exec(delete(JobAssignment).where(JobAssignment.account_id == account_id))

    @staticmethod
    def delete(session: Session, job: Job):
        session.exec(delete(JobAssignment).where(JobAssignment.job_id == job.id))
        session.delete(job)
        session.flush()
