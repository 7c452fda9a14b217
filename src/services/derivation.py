"""Pure derivation of today's pending treatments.

``derive_pending`` never raises: any failure while deriving becomes an
error state with the pending medication list emptied.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from src.core.clock import date_key, elapsed_seconds, start_of_day, to_local
from src.core.logging import get_logger
from src.models.dashboard import DashboardState, PendingFluid, PendingMedication
from src.models.schedules import Schedule
from src.services.schedule_set import ScheduleSet
from src.services.summary_cache import DailySummaryCache

log = get_logger(__name__)

DEFAULT_WINDOW = timedelta(hours=2)
DERIVATION_ERROR_MESSAGE = "Unable to load today's treatments. Pull to refresh."


def is_overdue(scheduled: datetime, now: datetime, window: timedelta = DEFAULT_WINDOW) -> bool:
    return elapsed_seconds(scheduled, now) > window.total_seconds()


def _pending_medications(
    schedule: Schedule,
    cache: DailySummaryCache,
    now: datetime,
    tz: ZoneInfo,
    window: timedelta,
) -> list[PendingMedication]:
    name = schedule.medication_name or ""
    if schedule.is_flexible:
        if name in cache.logged_names_today():
            return []
        return [PendingMedication(schedule=schedule, scheduled_time=start_of_day(now), is_overdue=False)]

    pending = []
    for reminder in schedule.reminder_times_on(now.date(), tz):
        if cache.has_completed_near(name, reminder, window):
            continue
        pending.append(
            PendingMedication(schedule=schedule, scheduled_time=reminder, is_overdue=is_overdue(reminder, now, window))
        )
    return pending


def remaining_fluid_volume(schedule: Schedule, cache: DailySummaryCache, now: datetime, tz: ZoneInfo) -> float:
    per_session = schedule.target_volume or 0.0
    reminders = len(schedule.reminder_times_on(now.date(), tz))
    return max(0.0, per_session * reminders - cache.total_fluid_volume_today())


def _pending_fluid(
    schedule: Schedule,
    cache: DailySummaryCache,
    now: datetime,
    tz: ZoneInfo,
    window: timedelta,
) -> PendingFluid | None:
    remaining = remaining_fluid_volume(schedule, cache, now, tz)
    if remaining <= 0:
        return None
    times = tuple(schedule.reminder_times_on(now.date(), tz))
    return PendingFluid(
        schedule=schedule,
        remaining_volume=remaining,
        scheduled_times=times,
        has_overdue_times=any(is_overdue(moment, now, window) for moment in times),
    )


def derive_pending(
    schedule_set: ScheduleSet,
    cache: DailySummaryCache,
    now: datetime,
    tz: ZoneInfo,
    *,
    window: timedelta = DEFAULT_WINDOW,
) -> DashboardState:
    """Compute the pending treatment set for the local day containing ``now``."""
    local_now = to_local(now, tz)
    today = date_key(local_now)
    try:
        if not cache.is_valid_for(today):
            raise ValueError(f"summary for {cache.date} cannot answer for {today}")

        medications: list[PendingMedication] = []
        for schedule in schedule_set.medications_for(local_now.date(), tz):
            medications.extend(_pending_medications(schedule, cache, local_now, tz, window))
        medications.sort(key=lambda item: (item.scheduled_time, item.medication_name))

        fluid_schedule = schedule_set.fluid_for(local_now.date(), tz)
        fluid = _pending_fluid(fluid_schedule, cache, local_now, tz, window) if fluid_schedule else None
    except Exception as exc:
        log.error("derivation_failed", pet_id=schedule_set.pet_id, date=today, error=str(exc), exc_info=True)
        return DashboardState(
            date=today,
            pending_medications=(),
            pending_fluid=None,
            error_message=DERIVATION_ERROR_MESSAGE,
            error_code="DERIVATION_ERROR",
        )

    return DashboardState(date=today, pending_medications=tuple(medications), pending_fluid=fluid)
