from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from src.models.schedules import FluidLocation, Schedule

MIN_MEDICATION_NAME_LENGTH = 2
MAX_DOSAGE = 100.0
MIN_FLUID_VOLUME_ML = 1.0
MAX_FLUID_VOLUME_ML = 500.0


class StressLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _new_session_id() -> str:
    return str(uuid.uuid4())


class _SessionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_session_id, min_length=1)
    pet_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    date_time: datetime
    schedule_id: str | None = None
    scheduled_time: datetime | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def match_time(self) -> datetime:
        """The moment a reminder is matched against: the reminder it answers, else when it was logged."""
        return self.scheduled_time or self.date_time


class MedicationSession(_SessionBase):
    kind: Literal["medication"] = "medication"
    medication_name: str = Field(min_length=1)
    dosage_given: float = Field(ge=0)
    dosage_scheduled: float
    medication_unit: str
    completed: bool = True
    medication_strength_amount: str | None = None
    medication_strength_unit: str | None = None
    custom_medication_strength_unit: str | None = None

    @field_validator("medication_name", "medication_unit")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @property
    def is_skip(self) -> bool:
        return not self.completed and self.dosage_given == 0

    @classmethod
    def from_schedule(
        cls,
        schedule: Schedule,
        *,
        pet_id: str,
        user_id: str,
        date_time: datetime,
        scheduled_time: datetime | None,
        skipped: bool = False,
    ) -> MedicationSession:
        """Build a session from the schedule's target values (confirm) or as an explicit skip."""
        if not (schedule.medication_name and schedule.target_dosage and schedule.medication_unit):
            raise ValueError(f"Schedule {schedule.id} is not a medication schedule")
        return cls(
            pet_id=pet_id,
            user_id=user_id,
            date_time=date_time,
            schedule_id=schedule.id,
            scheduled_time=scheduled_time,
            medication_name=schedule.medication_name,
            dosage_given=0 if skipped else schedule.target_dosage,
            dosage_scheduled=schedule.target_dosage,
            medication_unit=schedule.medication_unit,
            completed=not skipped,
            medication_strength_amount=schedule.medication_strength_amount,
            medication_strength_unit=schedule.medication_strength_unit,
            custom_medication_strength_unit=schedule.custom_medication_strength_unit,
            created_at=date_time,
        )

    def validation_errors(self) -> list[dict[str, str]]:
        errors: list[dict[str, str]] = []
        if len(self.medication_name) < MIN_MEDICATION_NAME_LENGTH:
            errors.append({"name": "medication_name", "reason": "Medication name must be at least 2 characters"})
        if not self.medication_unit:
            errors.append({"name": "medication_unit", "reason": "Medication unit is required"})
        if self.dosage_given > MAX_DOSAGE:
            errors.append({"name": "dosage_given", "reason": "Dosage given must be between 0 and 100"})
        if self.dosage_scheduled <= 0:
            errors.append({"name": "dosage_scheduled", "reason": "Scheduled dosage must be greater than 0"})
        if self.medication_strength_unit == "other" and not self.custom_medication_strength_unit:
            errors.append(
                {
                    "name": "custom_medication_strength_unit",
                    "reason": 'Custom strength unit is required when strength unit is "other"',
                }
            )
        return errors


class FluidSession(_SessionBase):
    kind: Literal["fluid"] = "fluid"
    volume_given: float = Field(gt=0)
    injection_site: FluidLocation = FluidLocation.SHOULDER_BLADE_MIDDLE
    stress_level: StressLevel | None = None

    def validation_errors(self) -> list[dict[str, str]]:
        if not MIN_FLUID_VOLUME_ML <= self.volume_given <= MAX_FLUID_VOLUME_ML:
            return [{"name": "volume_given", "reason": "Volume must be between 1 and 500 mL"}]
        return []


LoggedSession = Annotated[Union[MedicationSession, FluidSession], Field(discriminator="kind")]

session_adapter: TypeAdapter[MedicationSession | FluidSession] = TypeAdapter(LoggedSession)
