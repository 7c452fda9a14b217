from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Callable

from src.core.clock import Clock, date_key
from src.core.logging import get_logger
from src.models.dashboard import DashboardState
from src.models.errors import CareEngineError
from src.services.derivation import DEFAULT_WINDOW, derive_pending
from src.services.schedule_set import ScheduleSet
from src.services.store_client import ScheduleStore
from src.services.summary_cache import DailyCacheService

log = get_logger(__name__)

StateMask = Callable[[DashboardState], DashboardState]
StateListener = Callable[[DashboardState], None]


class DashboardService:
    """Single recompute entry point for one pet's pending treatments.

    Recomputes are serialised by a lock and triggered by schedule changes,
    cache invalidations, explicit refreshes and app resume. Optimistic masks
    registered by an in-flight mutation are re-applied to every recompute
    until released.
    """

    def __init__(
        self,
        *,
        user_id: str,
        pet_id: str,
        schedules: ScheduleStore,
        cache: DailyCacheService,
        clock: Clock,
        window: timedelta = DEFAULT_WINDOW,
    ) -> None:
        self.user_id = user_id
        self.pet_id = pet_id
        self._schedules = schedules
        self._cache = cache
        self._clock = clock
        self._window = window
        self._schedule_set: ScheduleSet | None = None
        self._state = DashboardState(is_loading=True)
        self._last_computed_date: str | None = None
        self._masks: dict[str, StateMask] = {}
        self._listeners: list[StateListener] = []
        self._lock = asyncio.Lock()
        cache.subscribe(self.recompute)

    @property
    def state(self) -> DashboardState:
        return self._state

    @property
    def schedule_set(self) -> ScheduleSet | None:
        return self._schedule_set

    @property
    def last_computed_date(self) -> str | None:
        return self._last_computed_date

    @property
    def is_loaded(self) -> bool:
        return self._schedule_set is not None

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _publish(self, state: DashboardState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    def _annotate_failure(self, exc: CareEngineError, event: str) -> DashboardState:
        log.warning(event, pet_id=self.pet_id, error=exc.error, message=exc.message)
        self._publish(self._state.with_error(exc.user_message, exc.error))
        return self._state

    async def load(self) -> DashboardState:
        """Load schedules and today's summary in parallel, then derive.

        Either read failing keeps the previous state and attaches the error.
        """
        today = self._clock.now().date()
        try:
            schedule_set, _ = await asyncio.gather(
                self._schedules.get_active_schedules(self.pet_id),
                self._cache.for_date(today),
            )
        except CareEngineError as exc:
            return self._annotate_failure(exc, "dashboard_load_failed")

        self._schedule_set = schedule_set
        return await self.recompute()

    async def reload_schedules(self) -> DashboardState:
        try:
            schedule_set = await self._schedules.get_active_schedules(self.pet_id)
        except CareEngineError as exc:
            return self._annotate_failure(exc, "schedule_reload_failed")
        return await self.set_schedules(schedule_set)

    async def set_schedules(self, schedule_set: ScheduleSet) -> DashboardState:
        self._schedule_set = schedule_set
        return await self.recompute()

    async def recompute(self) -> DashboardState:
        if self._schedule_set is None:
            return await self.load()

        async with self._lock:
            now = self._clock.now()
            today = date_key(now)
            if self._last_computed_date is not None and self._last_computed_date != today:
                log.info("date_rollover", pet_id=self.pet_id, previous=self._last_computed_date, current=today)

            try:
                cache = await self._cache.for_date(now.date())
            except CareEngineError as exc:
                return self._annotate_failure(exc, "summary_load_failed")

            state = derive_pending(self._schedule_set, cache, now, self._clock.tz, window=self._window)
            for mask in self._masks.values():
                state = mask(state)

            self._last_computed_date = today
            self._publish(state)
            log.debug(
                "dashboard_recomputed",
                pet_id=self.pet_id,
                date=today,
                pending_medications=len(state.pending_medications),
                pending_fluid=state.pending_fluid is not None,
            )
            return state

    async def refresh(self) -> DashboardState:
        """Drop today's summary; the invalidation listener recomputes."""
        try:
            await self._cache.invalidate()
        except CareEngineError as exc:
            return self._annotate_failure(exc, "summary_invalidate_failed")
        return self._state

    async def on_app_resumed(self) -> DashboardState:
        try:
            await self._cache.clear_expired()
        except CareEngineError as exc:
            log.warning("summary_expiry_failed", pet_id=self.pet_id, error=exc.error, message=exc.message)
        today = date_key(self._clock.now())
        if today != self._last_computed_date:
            return await self.recompute()
        return self._state

    def apply_optimistic(self, mask_id: str, mask: StateMask) -> DashboardState:
        self._masks[mask_id] = mask
        self._publish(mask(self._state))
        return self._state

    def release_optimistic(self, mask_id: str) -> None:
        self._masks.pop(mask_id, None)
