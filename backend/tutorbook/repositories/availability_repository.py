# backend/tutorbook/repositories/availability_repository.py
"""
Availability Repository

Data access for the weekly template and date overrides. Both are keyed by
tutor, medium and a time-of-week (template) or calendar date (override).
"""

from datetime import date
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability import DateOverride, WeeklyTemplateEntry
from .base_repository import BaseRepository

TemplateKey = Tuple[int, str]
OverrideKey = Tuple[date, str]


class AvailabilityRepository(BaseRepository[WeeklyTemplateEntry]):
    def __init__(self, db: Session):
        super().__init__(db, WeeklyTemplateEntry)

    # Weekly template

    def get_template_entries(
        self, tutor_id: str, medium: Optional[str] = None
    ) -> List[WeeklyTemplateEntry]:
        try:
            query = self.db.query(WeeklyTemplateEntry).filter(
                WeeklyTemplateEntry.tutor_id == tutor_id
            )
            if medium is not None:
                query = query.filter(WeeklyTemplateEntry.medium == medium)
            return query.order_by(
                WeeklyTemplateEntry.day_of_week,
                WeeklyTemplateEntry.start_time,
                WeeklyTemplateEntry.medium,
            ).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading weekly template for {tutor_id}: {str(e)}")
            raise RepositoryException(f"Failed to load weekly template: {str(e)}")

    def get_template_keys(self, tutor_id: str, medium: str) -> Set[TemplateKey]:
        return {
            (entry.day_of_week, entry.start_time)
            for entry in self.get_template_entries(tutor_id, medium)
        }

    def delete_template_entries(self, entries: Iterable[WeeklyTemplateEntry]) -> int:
        removed = 0
        try:
            for entry in entries:
                self.db.delete(entry)
                removed += 1
            self.db.flush()
            return removed
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting weekly template entries: {str(e)}")
            raise RepositoryException(f"Failed to delete weekly template entries: {str(e)}")

    def template_summary(self, tutor_id: str) -> Tuple[int, List[str]]:
        """(entry count, distinct media) for the tutor's weekly template."""
        try:
            rows = (
                self.db.query(WeeklyTemplateEntry.medium, func.count(WeeklyTemplateEntry.id))
                .filter(WeeklyTemplateEntry.tutor_id == tutor_id)
                .group_by(WeeklyTemplateEntry.medium)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error summarising weekly template for {tutor_id}: {str(e)}")
            raise RepositoryException(f"Failed to summarise weekly template: {str(e)}")
        total = sum(int(count) for _, count in rows)
        return total, sorted(medium for medium, _ in rows)

    # Date overrides

    def get_overrides(
        self,
        tutor_id: str,
        start_date: date,
        end_date: date,
        medium: Optional[str] = None,
    ) -> List[DateOverride]:
        try:
            query = self.db.query(DateOverride).filter(
                DateOverride.tutor_id == tutor_id,
                DateOverride.date >= start_date,
                DateOverride.date <= end_date,
            )
            if medium is not None:
                query = query.filter(DateOverride.medium == medium)
            return query.order_by(
                DateOverride.date, DateOverride.start_time, DateOverride.medium
            ).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading overrides for {tutor_id}: {str(e)}")
            raise RepositoryException(f"Failed to load date overrides: {str(e)}")

    def get_override_map(
        self, tutor_id: str, medium: str, start_date: date, end_date: date
    ) -> Dict[OverrideKey, bool]:
        return {
            (override.date, override.start_time): bool(override.is_available)
            for override in self.get_overrides(tutor_id, start_date, end_date, medium)
        }

    def find_override(
        self, tutor_id: str, on_date: date, start_time: str, medium: str
    ) -> Optional[DateOverride]:
        try:
            return (
                self.db.query(DateOverride)
                .filter(
                    DateOverride.tutor_id == tutor_id,
                    DateOverride.date == on_date,
                    DateOverride.start_time == start_time,
                    DateOverride.medium == medium,
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading override for {tutor_id}: {str(e)}")
            raise RepositoryException(f"Failed to load date override: {str(e)}")

    def add_override(self, **kwargs: object) -> DateOverride:
        try:
            override = DateOverride(**kwargs)
            self.db.add(override)
            self.db.flush()
            return override
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating override: {str(e)}")
            raise RepositoryException(f"Failed to create date override: {str(e)}")

    def delete_overrides(self, tutor_id: str, override_ids: Iterable[str]) -> int:
        """Delete the tutor's overrides among ``override_ids``; others are ignored."""
        ids = list(override_ids)
        if not ids:
            return 0
        try:
            deleted = (
                self.db.query(DateOverride)
                .filter(DateOverride.tutor_id == tutor_id, DateOverride.id.in_(ids))
                .delete(synchronize_session=False)
            )
            self.db.flush()
            return int(deleted)
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting overrides for {tutor_id}: {str(e)}")
            raise RepositoryException(f"Failed to delete date overrides: {str(e)}")
