# backend/tutorbook/repositories/tutor_repository.py
"""Tutor profile lookups used by availability and booking services."""

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.tutor import Tutor
from .base_repository import BaseRepository


class TutorRepository(BaseRepository[Tutor]):
    def __init__(self, db: Session):
        super().__init__(db, Tutor)

    def get_active(self, tutor_id: str, *, for_update: bool = False) -> Optional[Tutor]:
        """
        Active tutor by id.

        ``for_update`` takes a row lock on backends that support it, pinning
        the tutor for the rest of the booking transaction.
        """
        try:
            query = self.db.query(Tutor).filter(Tutor.id == tutor_id, Tutor.is_active.is_(True))
            if for_update:
                query = query.populate_existing()
                if self.dialect_name != "sqlite":
                    query = query.with_for_update()
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading tutor {tutor_id}: {str(e)}")
            raise RepositoryException(f"Failed to load tutor: {str(e)}")

    def get_for_update(self, tutor_id: str) -> Optional[Tutor]:
        """Tutor by id, active or not, row-locked where the backend allows it."""
        try:
            query = self.db.query(Tutor).filter(Tutor.id == tutor_id).populate_existing()
            if self.dialect_name != "sqlite":
                query = query.with_for_update()
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking tutor {tutor_id}: {str(e)}")
            raise RepositoryException(f"Failed to load tutor: {str(e)}")

    def get_by_user_id(self, user_id: str) -> Optional[Tutor]:
        try:
            return self.db.query(Tutor).filter(Tutor.user_id == user_id).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading tutor for user {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to load tutor: {str(e)}")
