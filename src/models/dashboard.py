from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from src.models.schedules import Schedule


class PendingMedication(BaseModel):
    """A medication dose still due today.

    For flexible schedules ``scheduled_time`` is the start of the day and the
    instance is never overdue.
    """

    model_config = ConfigDict(frozen=True)

    schedule: Schedule
    scheduled_time: datetime
    is_overdue: bool = False

    @property
    def key(self) -> tuple[str, datetime]:
        return (self.schedule.id, self.scheduled_time)

    @property
    def medication_name(self) -> str:
        return self.schedule.medication_name or ""

    @property
    def is_flexible(self) -> bool:
        return self.schedule.is_flexible

    @property
    def display_time(self) -> str:
        if self.is_flexible:
            return "Any time today"
        return self.scheduled_time.strftime("%H:%M")


class PendingFluid(BaseModel):
    model_config = ConfigDict(frozen=True)

    schedule: Schedule
    remaining_volume: float = Field(gt=0)
    scheduled_times: tuple[datetime, ...]
    has_overdue_times: bool = False


class DashboardState(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str | None = None
    pending_medications: tuple[PendingMedication, ...] = ()
    pending_fluid: PendingFluid | None = None
    is_loading: bool = False
    error_message: str | None = None
    error_code: str | None = None

    @property
    def has_pending(self) -> bool:
        return bool(self.pending_medications) or self.pending_fluid is not None

    @property
    def total_pending(self) -> int:
        return len(self.pending_medications) + (1 if self.pending_fluid is not None else 0)

    def find_medication(self, schedule_id: str, scheduled_time: datetime) -> PendingMedication | None:
        for item in self.pending_medications:
            if item.schedule.id == schedule_id and item.scheduled_time == scheduled_time:
                return item
        return None

    def without_medication(self, key: tuple[str, datetime]) -> DashboardState:
        remaining = tuple(item for item in self.pending_medications if item.key != key)
        return self.model_copy(update={"pending_medications": remaining})

    def without_fluid(self) -> DashboardState:
        return self.model_copy(update={"pending_fluid": None})

    def with_error(self, message: str, code: str | None = None) -> DashboardState:
        return self.model_copy(update={"error_message": message, "error_code": code, "is_loading": False})


class DashboardResponse(BaseModel):
    date: str | None
    pending_medications: list[PendingMedication]
    pending_fluid: PendingFluid | None
    total_pending: int
    error_message: str | None = None
    error_code: str | None = None

    @classmethod
    def from_state(cls, state: DashboardState) -> DashboardResponse:
        return cls(
            date=state.date,
            pending_medications=list(state.pending_medications),
            pending_fluid=state.pending_fluid,
            total_pending=state.total_pending,
            error_message=state.error_message,
            error_code=state.error_code,
        )
