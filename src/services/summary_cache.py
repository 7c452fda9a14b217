"""Date-scoped summary of a pet's logged sessions and its Redis-backed collaborator.

The summary answers the three questions the dashboard derivation asks:
which medication names were logged today, whether a completed dose of a
medication sits within the completion window of a reminder, and how much
fluid was given today. It is valid for exactly one local calendar date.
"""

from __future__ import annotations

import bisect
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable, Iterable, Protocol
from zoneinfo import ZoneInfo

from pydantic import BaseModel, PrivateAttr, ValidationError

from src.core import redis as redis_store
from src.core.clock import Clock, date_key, elapsed_seconds, to_local
from src.core.logging import get_logger
from src.models.sessions import FluidSession, LoggedSession, MedicationSession

log = get_logger(__name__)

DAILY_SUMMARY_TTL_SECONDS = 2 * 24 * 60 * 60

CacheListener = Callable[[], Awaitable[None]]


class MedicationEntry(BaseModel):
    session_id: str
    name: str
    time: datetime
    completed: bool
    dosage_given: float


class FluidEntry(BaseModel):
    session_id: str
    time: datetime
    volume: float
    injection_site: str


class DailySummaryCache(BaseModel):
    date: str
    medication_entries: list[MedicationEntry] = []
    fluid_entries: list[FluidEntry] = []

    _timestamps: list[float] = PrivateAttr(default_factory=list)

    def model_post_init(self, __context: object) -> None:
        self.medication_entries.sort(key=lambda entry: entry.time)
        self._timestamps = [entry.time.timestamp() for entry in self.medication_entries]

    @classmethod
    def empty(cls, day: date | str) -> DailySummaryCache:
        return cls(date=day if isinstance(day, str) else date_key(day))

    @classmethod
    def from_sessions(cls, day: date, sessions: Iterable[LoggedSession], tz: ZoneInfo) -> DailySummaryCache:
        cache = cls.empty(day)
        for session in sessions:
            cache = cache.with_session(session, tz)
        return cache

    def is_valid_for(self, day: date | str) -> bool:
        return self.date == (day if isinstance(day, str) else date_key(day))

    @property
    def session_ids(self) -> set[str]:
        return {entry.session_id for entry in self.medication_entries} | {
            entry.session_id for entry in self.fluid_entries
        }

    @property
    def medication_session_count(self) -> int:
        return len(self.medication_entries)

    @property
    def fluid_session_count(self) -> int:
        return len(self.fluid_entries)

    @property
    def total_medication_doses(self) -> float:
        return sum(entry.dosage_given for entry in self.medication_entries if entry.completed)

    @property
    def has_any_sessions(self) -> bool:
        return bool(self.medication_entries or self.fluid_entries)

    def logged_names_today(self) -> set[str]:
        return {entry.name for entry in self.medication_entries}

    def total_fluid_volume_today(self) -> float:
        return sum(entry.volume for entry in self.fluid_entries)

    def completed_near(self, name: str, moment: datetime, window: timedelta) -> list[MedicationEntry]:
        """Completed doses of ``name`` whose match time lies in [moment - window, moment + window]."""
        center = moment.timestamp()
        span = window.total_seconds()
        lo = bisect.bisect_left(self._timestamps, center - span)
        hi = bisect.bisect_right(self._timestamps, center + span)
        return [
            entry
            for entry in self.medication_entries[lo:hi]
            if entry.completed and entry.name == name
        ]

    def has_completed_near(self, name: str, moment: datetime, window: timedelta) -> bool:
        return bool(self.completed_near(name, moment, window))

    def nearest_completed(self, name: str, moment: datetime, window: timedelta) -> MedicationEntry | None:
        candidates = self.completed_near(name, moment, window)
        if not candidates:
            return None
        return min(candidates, key=lambda entry: abs(elapsed_seconds(moment, entry.time)))

    def without_session(self, session_id: str) -> DailySummaryCache:
        return DailySummaryCache(
            date=self.date,
            medication_entries=[e for e in self.medication_entries if e.session_id != session_id],
            fluid_entries=[e for e in self.fluid_entries if e.session_id != session_id],
        )

    def with_session(self, session: LoggedSession, tz: ZoneInfo) -> DailySummaryCache:
        """Fold one session in, replacing any earlier version with the same id.

        Sessions logged on another local date only remove their earlier version.
        """
        base = self.without_session(session.id)
        if date_key(to_local(session.date_time, tz)) != self.date:
            return base

        if isinstance(session, MedicationSession):
            entry = MedicationEntry(
                session_id=session.id,
                name=session.medication_name,
                time=to_local(session.match_time, tz),
                completed=session.completed,
                dosage_given=session.dosage_given,
            )
            return DailySummaryCache(
                date=base.date,
                medication_entries=[*base.medication_entries, entry],
                fluid_entries=base.fluid_entries,
            )

        fluid = FluidEntry(
            session_id=session.id,
            time=to_local(session.date_time, tz),
            volume=session.volume_given,
            injection_site=session.injection_site.value,
        )
        return DailySummaryCache(
            date=base.date,
            medication_entries=base.medication_entries,
            fluid_entries=[*base.fluid_entries, fluid],
        )


class SessionSource(Protocol):
    async def list_sessions(self, pet_id: str, day: date) -> list[LoggedSession]: ...


class PendingSessionSource(Protocol):
    async def pending_sessions(self, day: date, tz: ZoneInfo) -> list[LoggedSession]: ...


def daily_summary_key(user_id: str, pet_id: str, day: date | str) -> str:
    return f"daily_summary:{user_id}:{pet_id}:{day if isinstance(day, str) else date_key(day)}"


def aggregate_keys_for(pet_id: str, session: LoggedSession, tz: ZoneInfo) -> list[str]:
    """Windowed and per-treatment views that key off the same session."""
    local = to_local(session.date_time, tz)
    iso_year, iso_week, _ = local.isocalendar()
    keys = [f"summary:week:{pet_id}:{iso_year}-W{iso_week:02d}"]
    if isinstance(session, MedicationSession):
        keys.append(f"summary:treatment:{pet_id}:{session.medication_name}")
    elif isinstance(session, FluidSession):
        keys.append(f"summary:treatment:{pet_id}:fluid")
        keys.append(f"summary:site:{pet_id}:{session.injection_site.value}")
    return keys


class DailyCacheService:
    """Serves one pet's daily summary: memory, then Redis, then a rebuild from the store."""

    def __init__(
        self,
        *,
        user_id: str,
        pet_id: str,
        sessions: SessionSource,
        pending: PendingSessionSource,
        clock: Clock,
    ) -> None:
        self.user_id = user_id
        self.pet_id = pet_id
        self._sessions = sessions
        self._pending = pending
        self._clock = clock
        self._memory: DailySummaryCache | None = None
        self._listeners: list[CacheListener] = []

    def subscribe(self, listener: CacheListener) -> None:
        self._listeners.append(listener)

    async def _notify(self) -> None:
        for listener in list(self._listeners):
            await listener()

    async def for_date(self, day: date) -> DailySummaryCache:
        if self._memory is not None and self._memory.is_valid_for(day):
            return self._memory

        key = daily_summary_key(self.user_id, self.pet_id, day)
        raw = await redis_store.get(key)
        if raw:
            try:
                stored = DailySummaryCache.model_validate_json(raw)
            except ValidationError as exc:
                log.warning("daily_summary_unreadable", key=key, error=str(exc))
                await redis_store.delete(key)
            else:
                if stored.is_valid_for(day):
                    self._memory = stored
                    return stored
                log.warning("daily_summary_date_mismatch", key=key, stored_date=stored.date)

        cache = await self._rebuild(day)
        await redis_store.set_with_ttl(key, cache.model_dump_json(), DAILY_SUMMARY_TTL_SECONDS)
        self._memory = cache
        return cache

    async def _rebuild(self, day: date) -> DailySummaryCache:
        tz = self._clock.tz
        sessions = await self._sessions.list_sessions(self.pet_id, day)
        overlay = await self._pending.pending_sessions(day, tz)

        by_id: dict[str, LoggedSession] = {session.id: session for session in sessions}
        for session in overlay:
            by_id[session.id] = session

        cache = DailySummaryCache.from_sessions(day, by_id.values(), tz)
        log.info(
            "daily_summary_rebuilt",
            pet_id=self.pet_id,
            date=cache.date,
            stored_sessions=len(sessions),
            queued_sessions=len(overlay),
        )
        return cache

    async def invalidate(self) -> None:
        """Drop today's summary so the next read rebuilds it."""
        today = self._clock.now().date()
        self._memory = None
        await redis_store.delete(daily_summary_key(self.user_id, self.pet_id, today))
        await self._notify()

    async def invalidate_for_session(self, session: LoggedSession, *others: LoggedSession) -> None:
        """Drop every cached view derived from the given sessions, then notify listeners."""
        tz = self._clock.tz
        keys: list[str] = []
        for item in (session, *others):
            day = to_local(item.date_time, tz).date()
            keys.append(daily_summary_key(self.user_id, self.pet_id, day))
            keys.extend(aggregate_keys_for(self.pet_id, item, tz))
            if self._memory is not None and self._memory.is_valid_for(day):
                self._memory = None

        unique = list(dict.fromkeys(keys))
        await redis_store.delete(*unique)
        log.debug("summary_views_invalidated", pet_id=self.pet_id, keys=unique)
        await self._notify()

    async def apply_local(self, session: LoggedSession) -> None:
        """Fold a session that has not reached the store yet into the cached summary."""
        tz = self._clock.tz
        day = to_local(session.date_time, tz).date()
        if self._memory is not None and self._memory.is_valid_for(day):
            self._memory = self._memory.with_session(session, tz)
            await redis_store.set_with_ttl(
                daily_summary_key(self.user_id, self.pet_id, day),
                self._memory.model_dump_json(),
                DAILY_SUMMARY_TTL_SECONDS,
            )
        await self._notify()

    async def clear_expired(self) -> int:
        """Remove summaries stored for any date other than today."""
        today_key = daily_summary_key(self.user_id, self.pet_id, self._clock.now().date())
        keys = await redis_store.scan_keys(f"daily_summary:{self.user_id}:{self.pet_id}:*")
        stale = [key for key in keys if key != today_key]
        if stale:
            await redis_store.delete(*stale)
            log.info("daily_summaries_expired", pet_id=self.pet_id, removed=len(stale))
        if self._memory is not None and not self._memory.is_valid_for(self._clock.now().date()):
            self._memory = None
        return len(stale)
