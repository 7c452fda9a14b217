from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from src.models.dashboard import DashboardResponse
from src.models.sessions import LoggedSession

QUEUE_WARNING_MESSAGE = "Several treatments are waiting to sync. Connect to the internet soon."


class MedicationActionRequest(BaseModel):
    schedule_id: str = Field(min_length=1, description="Id of the medication schedule the pending dose belongs to.")
    scheduled_time: datetime = Field(
        description="The pending dose's scheduled time exactly as reported by the dashboard (ISO 8601)."
    )


class SessionEditRequest(BaseModel):
    old: LoggedSession = Field(description="The session as currently stored.")
    new: LoggedSession = Field(description="The replacement; must keep the same id and kind.")


class MutationResponse(BaseModel):
    action: str
    outcome: str
    session_ids: list[str]
    queue_size: int | None = None
    queue_warning: bool = False
    message: str | None = None
    dashboard: DashboardResponse
