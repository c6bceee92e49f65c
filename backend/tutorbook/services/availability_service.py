# backend/tutorbook/services/availability_service.py
"""
Availability Service

Tutor-facing writes to the weekly template and date overrides.

Replacing the weekly template is a set reconciliation: the requested set is
diffed against what is stored, and only the difference is deleted and
inserted, in one transaction under the tutor's availability lock. Readers
never observe a half-replaced (or empty) template.
"""

from datetime import date
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.enums import SessionMedium
from ..core.exceptions import NotFoundException
from ..core.tutor_lock import tutor_availability_lock
from ..models.tutor import Tutor
from ..repositories.factory import RepositoryFactory
from ..schemas.availability import (
    AvailabilityStatus,
    DateOverrideInput,
    DateOverrideView,
    TemplateReplaceResult,
    WeeklySlotInput,
    WeeklySlotView,
)
from .base import BaseService

TemplateKey = Tuple[int, str, str]


class AvailabilityService(BaseService):
    def __init__(self, db: Session, clock: Optional[Clock] = None):
        super().__init__(db, clock)
        self.tutor_repository = RepositoryFactory.create_tutor_repository(db)
        self.repository = RepositoryFactory.create_availability_repository(db)

    def _get_tutor(self, tutor_id: str) -> Tutor:
        tutor = self.tutor_repository.get_by_id(tutor_id)
        if tutor is None:
            raise NotFoundException(
                "Tutor not found", code="TUTOR_NOT_FOUND", details={"tutor_id": tutor_id}
            )
        return tutor

    def get_weekly_template(self, tutor_id: str) -> List[WeeklySlotView]:
        self._get_tutor(tutor_id)
        return [
            WeeklySlotView(
                id=entry.id,
                day_of_week=entry.day_of_week,
                start_time=entry.start_time,
                medium=SessionMedium(entry.medium),
            )
            for entry in self.repository.get_template_entries(tutor_id)
        ]

    @BaseService.measure_operation("replace_weekly_template")
    def replace_weekly_template(
        self, tutor_id: str, slots: Iterable[WeeklySlotInput]
    ) -> TemplateReplaceResult:
        """Make the stored weekly template equal to ``slots``; duplicates collapse."""
        requested: Set[TemplateKey] = {slot.key for slot in slots}

        with tutor_availability_lock(tutor_id):
            with self.transaction():
                self._get_tutor(tutor_id)
                existing = {entry.key: entry for entry in self.repository.get_template_entries(tutor_id)}

                to_remove = [entry for key, entry in existing.items() if key not in requested]
                to_add = sorted(requested - set(existing))

                removed = self.repository.delete_template_entries(to_remove)
                self.repository.bulk_create(
                    [
                        {
                            "tutor_id": tutor_id,
                            "day_of_week": day,
                            "start_time": start_time,
                            "medium": medium,
                        }
                        for day, start_time, medium in to_add
                    ]
                )

        result = TemplateReplaceResult(
            added=len(to_add), removed=removed, unchanged=len(requested) - len(to_add)
        )
        self.log_operation(
            "replace_weekly_template",
            tutor_id=tutor_id,
            added=result.added,
            removed=result.removed,
            unchanged=result.unchanged,
        )
        return result

    def list_overrides(
        self, tutor_id: str, start_date: date, end_date: date
    ) -> List[DateOverrideView]:
        self._get_tutor(tutor_id)
        return [
            DateOverrideView(
                id=override.id,
                date=override.date,
                start_time=override.start_time,
                medium=SessionMedium(override.medium),
                is_available=override.is_available,
            )
            for override in self.repository.get_overrides(tutor_id, start_date, end_date)
        ]

    @BaseService.measure_operation("upsert_overrides")
    def upsert_overrides(
        self, tutor_id: str, overrides: Iterable[DateOverrideInput]
    ) -> List[DateOverrideView]:
        """Create or update overrides keyed by (date, start_time, medium); last one wins."""
        latest: Dict[Tuple[date, str, str], DateOverrideInput] = {}
        for item in overrides:
            latest[(item.date, item.start_time, SessionMedium(item.medium).value)] = item

        saved = []
        with tutor_availability_lock(tutor_id):
            with self.transaction():
                self._get_tutor(tutor_id)
                for (on_date, start_time, medium), item in latest.items():
                    override = self.repository.find_override(tutor_id, on_date, start_time, medium)
                    if override is None:
                        override = self.repository.add_override(
                            tutor_id=tutor_id,
                            date=on_date,
                            start_time=start_time,
                            medium=medium,
                            is_available=item.is_available,
                        )
                    else:
                        override.is_available = item.is_available
                    saved.append(override)
                self.repository.flush()

        self.log_operation("upsert_overrides", tutor_id=tutor_id, count=len(saved))
        return [
            DateOverrideView(
                id=override.id,
                date=override.date,
                start_time=override.start_time,
                medium=SessionMedium(override.medium),
                is_available=override.is_available,
            )
            for override in saved
        ]

    @BaseService.measure_operation("delete_overrides")
    def delete_overrides(self, tutor_id: str, override_ids: Iterable[str]) -> int:
        """Revert the given dates to the weekly template. Returns rows deleted."""
        ids = list(override_ids)
        with tutor_availability_lock(tutor_id):
            with self.transaction():
                self._get_tutor(tutor_id)
                deleted = self.repository.delete_overrides(tutor_id, ids)
        self.log_operation("delete_overrides", tutor_id=tutor_id, requested=len(ids), deleted=deleted)
        return deleted

    def get_status(self, tutor_id: str) -> AvailabilityStatus:
        """Dashboard summary: is the tutor bookable at all, and in which media."""
        self._get_tutor(tutor_id)
        count, media = self.repository.template_summary(tutor_id)
        return AvailabilityStatus(
            has_weekly_slots=count > 0,
            slot_count=count,
            media_configured=[SessionMedium(medium) for medium in media],
        )
