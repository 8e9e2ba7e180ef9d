"""
Classroom Repository - data access layer for Classroom model.
"""

from typing import Optional
from sqlmodel import Session

from db_engine import read_session
from models import Classroom


class ClassroomRepository:

    @staticmethod
    def add(session: Session, alias: str, currency_unit: str) -> Classroom:
        classroom = Classroom(alias=alias, currency_unit=currency_unit)
        session.add(classroom)
        session.flush()
        return classroom

    @staticmethod
    def get_by_id(scope_id: str, session: Optional[Session] = None) -> Optional[Classroom]:
        if session is not None:
            return session.get(Classroom, scope_id)
        else:
            with read_session() as session:
                return session.get(Classroom, scope_id)
