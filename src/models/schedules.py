from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.core.clock import at_time_on, to_local


class FluidLocation(str, Enum):
    SHOULDER_BLADE_LEFT = "shoulder_blade_left"
    SHOULDER_BLADE_RIGHT = "shoulder_blade_right"
    SHOULDER_BLADE_MIDDLE = "shoulder_blade_middle"
    HIP_BONES_LEFT = "hip_bones_left"
    HIP_BONES_RIGHT = "hip_bones_right"


class TreatmentType(str, Enum):
    MEDICATION = "medication"
    FLUID_THERAPY = "fluid-therapy"


class TreatmentFrequency(str, Enum):
    ONCE_DAILY = "onceDaily"
    TWICE_DAILY = "twiceDaily"
    THRICE_DAILY = "thriceDaily"
    EVERY_OTHER_DAY = "everyOtherDay"
    EVERY_3_DAYS = "every3Days"

    @property
    def interval_days(self) -> int:
        if self is TreatmentFrequency.EVERY_OTHER_DAY:
            return 2
        if self is TreatmentFrequency.EVERY_3_DAYS:
            return 3
        return 1


_MEDICATION_FIELDS = ("medication_name", "target_dosage", "medication_unit")
_OPTIONAL_MEDICATION_FIELDS = (
    "medication_strength_amount",
    "medication_strength_unit",
    "custom_medication_strength_unit",
)
_FLUID_FIELDS = ("target_volume",)
_OPTIONAL_FLUID_FIELDS = ("preferred_location", "needle_gauge")

_STRENGTH_UNIT_DISPLAY: dict[str, str] = {
    "mg": "mg",
    "mcg": "mcg",
    "g": "g",
    "mgPerMl": "mg/mL",
    "mcgPerMl": "mcg/mL",
    "mgPerG": "mg/g",
    "mcgPerG": "mcg/g",
    "iuPerMl": "IU/mL",
    "percent": "%",
    "iu": "IU",
}


def _parse_time_of_day(value: Any) -> time:
    if isinstance(value, datetime):
        return value.time().replace(tzinfo=None)
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    if isinstance(value, str):
        text = value.strip()
        try:
            return time.fromisoformat(text).replace(tzinfo=None)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text).time().replace(tzinfo=None)
        except ValueError as exc:
            raise ValueError(f"Invalid reminder time: {value!r}") from exc
    raise ValueError(f"Invalid reminder time: expected string, time or datetime, got {type(value).__name__}")


class Schedule(BaseModel):
    """A configured recurring treatment (medication or fluid therapy).

    Reminder times are time-of-day values; an empty list on a medication
    schedule means "flexible", eligible any time during the day.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    treatment_type: TreatmentType
    frequency: TreatmentFrequency = TreatmentFrequency.ONCE_DAILY
    reminder_times: tuple[time, ...] = ()
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    # fluid therapy
    target_volume: float | None = Field(default=None, gt=0)
    preferred_location: FluidLocation | None = None
    needle_gauge: str | None = None

    # medication
    medication_name: str | None = None
    target_dosage: float | None = Field(default=None, gt=0)
    medication_unit: str | None = None
    medication_strength_amount: str | None = None
    medication_strength_unit: str | None = None
    custom_medication_strength_unit: str | None = None

    @field_validator("reminder_times", mode="before")
    @classmethod
    def parse_reminder_times(cls, value: Any) -> tuple[time, ...]:
        if value is None:
            return ()
        if not isinstance(value, (list, tuple)):
            raise ValueError("reminder_times must be a list")
        return tuple(sorted({_parse_time_of_day(item) for item in value}))

    @model_validator(mode="after")
    def check_kind_fields(self) -> Schedule:
        if self.treatment_type is TreatmentType.MEDICATION:
            missing = [name for name in _MEDICATION_FIELDS if getattr(self, name) in (None, "")]
            if missing:
                raise ValueError(f"medication schedule is missing: {', '.join(missing)}")
            stray = [name for name in _FLUID_FIELDS + _OPTIONAL_FLUID_FIELDS if getattr(self, name) is not None]
            if stray:
                raise ValueError(f"medication schedule must not carry fluid fields: {', '.join(stray)}")
            if self.medication_strength_unit == "other" and not self.custom_medication_strength_unit:
                raise ValueError('custom_medication_strength_unit is required when strength unit is "other"')
        else:
            if self.target_volume is None:
                raise ValueError("fluid-therapy schedule is missing: target_volume")
            stray = [
                name
                for name in _MEDICATION_FIELDS + _OPTIONAL_MEDICATION_FIELDS
                if getattr(self, name) is not None
            ]
            if stray:
                raise ValueError(f"fluid-therapy schedule must not carry medication fields: {', '.join(stray)}")

        if self.frequency.interval_days > 1 and self.created_at is None:
            raise ValueError(f"{self.frequency.value} schedules need created_at to anchor the interval")
        return self

    @property
    def is_medication(self) -> bool:
        return self.treatment_type is TreatmentType.MEDICATION

    @property
    def is_fluid_therapy(self) -> bool:
        return self.treatment_type is TreatmentType.FLUID_THERAPY

    @property
    def is_flexible(self) -> bool:
        return not self.reminder_times

    @property
    def formatted_strength(self) -> str | None:
        if not self.medication_strength_amount:
            return None
        if self.medication_strength_unit is None:
            return self.medication_strength_amount
        if self.medication_strength_unit == "other":
            unit = self.custom_medication_strength_unit or "Other"
        else:
            unit = _STRENGTH_UNIT_DISPLAY.get(self.medication_strength_unit, self.medication_strength_unit)
        return f"{self.medication_strength_amount} {unit}"

    def occurs_on(self, day: date, tz: ZoneInfo) -> bool:
        """Whether the recurrence pattern lands on ``day`` (ignores reminder times)."""
        interval = self.frequency.interval_days
        if interval == 1:
            return True
        if self.created_at is None:
            raise ValueError(f"Schedule {self.id} repeats every {interval} days but has no created_at")
        anchor = to_local(self.created_at, tz).date()
        days_since = (day - anchor).days
        return days_since >= 0 and days_since % interval == 0

    def reminder_times_on(self, day: date, tz: ZoneInfo) -> list[datetime]:
        """Concrete reminder timestamps for ``day`` in the pet's zone, in order."""
        if not self.occurs_on(day, tz):
            return []
        return [at_time_on(day, reminder, tz) for reminder in self.reminder_times]

    def has_reminder_on(self, day: date, tz: ZoneInfo) -> bool:
        return bool(self.reminder_times_on(day, tz))
