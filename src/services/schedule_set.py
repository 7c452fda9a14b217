from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable
from zoneinfo import ZoneInfo

from src.core.logging import get_logger
from src.models.schedules import Schedule

log = get_logger(__name__)


@dataclass(frozen=True)
class ScheduleSet:
    """Read-only snapshot of one pet's active treatment schedules."""

    pet_id: str
    fluid_schedule: Schedule | None = None
    medication_schedules: tuple[Schedule, ...] = field(default_factory=tuple)

    @classmethod
    def from_schedules(cls, pet_id: str, schedules: Iterable[Schedule]) -> ScheduleSet:
        active = [schedule for schedule in schedules if schedule.is_active]
        fluids = [schedule for schedule in active if schedule.is_fluid_therapy]
        medications = tuple(schedule for schedule in active if schedule.is_medication)

        fluid: Schedule | None = None
        if fluids:
            fluid = max(fluids, key=_recency)
            if len(fluids) > 1:
                log.warning(
                    "multiple_active_fluid_schedules",
                    pet_id=pet_id,
                    kept=fluid.id,
                    ignored=[schedule.id for schedule in fluids if schedule is not fluid],
                )
        return cls(pet_id=pet_id, fluid_schedule=fluid, medication_schedules=medications)

    @classmethod
    def empty(cls, pet_id: str) -> ScheduleSet:
        return cls(pet_id=pet_id)

    @property
    def schedules(self) -> tuple[Schedule, ...]:
        if self.fluid_schedule is None:
            return self.medication_schedules
        return (self.fluid_schedule, *self.medication_schedules)

    def get(self, schedule_id: str) -> Schedule | None:
        for schedule in self.schedules:
            if schedule.id == schedule_id:
                return schedule
        return None

    def fluid_for(self, day: date, tz: ZoneInfo) -> Schedule | None:
        """The fluid schedule if it has at least one reminder landing on ``day``."""
        if self.fluid_schedule is None or not self.fluid_schedule.has_reminder_on(day, tz):
            return None
        return self.fluid_schedule

    def medications_for(self, day: date, tz: ZoneInfo) -> list[Schedule]:
        """Medication schedules eligible on ``day``: flexible ones always, timed ones when a reminder lands."""
        return [
            schedule
            for schedule in self.medication_schedules
            if schedule.is_flexible or schedule.has_reminder_on(day, tz)
        ]


def _recency(schedule: Schedule) -> tuple[float, float]:
    def _ts(value: datetime | None) -> float:
        return value.timestamp() if value is not None else float("-inf")

    return (_ts(schedule.updated_at), _ts(schedule.created_at))
