# backend/tutorbook/repositories/base_repository.py
"""
Base Repository

Shared lookups and inserts for the booking engine's tables. Repositories
flush so generated ids are visible, but commit and rollback belong to the
service that opened the transaction.
"""

import logging
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    """
    Data access shared by every repository.

    Attributes:
        db: Session owned by the calling service
        model: Mapped class this repository reads and writes
    """

    def __init__(self, db: Session, model: Type[ModelT]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        """Backend name; row locks are skipped on ``sqlite``."""
        return str(self.db.get_bind().dialect.name)

    def get_by_id(self, id: str) -> Optional[ModelT]:
        name = self.model.__name__
        try:
            return self.db.get(self.model, id)
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading {name} {id}: {str(e)}")
            raise RepositoryException(f"Failed to load {name}: {str(e)}")

    def create(self, **values: Any) -> ModelT:
        """Add one row and flush it. No commit."""
        name = self.model.__name__
        row = self.model(**values)
        try:
            self.db.add(row)
            self.db.flush()
        except IntegrityError as exc:
            self.logger.error("Constraint rejected new %s: %s", name, exc, exc_info=True)
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error inserting {name}: {str(e)}")
            raise RepositoryException(f"Failed to create {name}: {str(e)}")
        return row

    def flush(self) -> None:
        """Push pending changes so constraint violations surface here. No commit."""
        try:
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error flushing {self.model.__name__} changes: {str(e)}")
            raise RepositoryException(f"Failed to write {self.model.__name__}: {str(e)}")

    def count(self, **criteria: Any) -> int:
        try:
            return self.db.query(self.model).filter_by(**criteria).count()
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting {self.model.__name__} rows: {str(e)}")
            raise RepositoryException(f"Failed to count records: {str(e)}")

    def bulk_create(self, rows: List[Dict[str, Any]]) -> List[ModelT]:
        """Insert many rows with a single flush."""
        if not rows:
            return []
        entities = [self.model(**values) for values in rows]
        try:
            self.db.add_all(entities)
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error inserting {len(rows)} {self.model.__name__} rows: {str(e)}")
            raise RepositoryException(f"Failed to bulk create: {str(e)}")
        return entities
