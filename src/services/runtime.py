from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from src.core.clock import Clock, SystemClock
from src.core.config import Settings
from src.core.logging import get_logger
from src.models.errors import CareEngineError
from src.services.connectivity import ConnectivityMonitor
from src.services.coordinator import OptimisticMutationCoordinator
from src.services.dashboard import DashboardService
from src.services.offline_queue import DrainResult, OfflineQueue
from src.services.side_effects import SideEffectRunner, build_analytics_tracker, build_notification_scheduler
from src.services.store_client import HttpScheduleStore, HttpSessionStore, ScheduleStore, SessionStore
from src.services.summary_cache import DailyCacheService

log = get_logger(__name__)

_connectivity: ConnectivityMonitor | None = None
_side_effects: SideEffectRunner | None = None
_runtimes: dict[tuple[str, str], PetRuntime] = {}


def get_connectivity() -> ConnectivityMonitor:
    global _connectivity
    if _connectivity is None:
        _connectivity = ConnectivityMonitor()
    return _connectivity


def get_side_effects() -> SideEffectRunner:
    global _side_effects
    if _side_effects is None:
        _side_effects = SideEffectRunner()
    return _side_effects


@dataclass
class PetRuntime:
    user_id: str
    pet_id: str
    clock: Clock
    cache: DailyCacheService
    queue: OfflineQueue
    dashboard: DashboardService
    coordinator: OptimisticMutationCoordinator

    async def ensure_loaded(self) -> None:
        if not self.dashboard.is_loaded:
            await self.dashboard.load()

    async def drain_queue(self) -> DrainResult:
        try:
            result = await self.queue.drain(self.coordinator.execute)
        except CareEngineError as exc:
            log.warning("offline_queue_drain_aborted", pet_id=self.pet_id, error=exc.error, message=exc.message)
            return DrainResult(error=exc.message)
        log.info(
            "offline_queue_drained",
            pet_id=self.pet_id,
            replayed=result.replayed,
            remaining=result.remaining,
            error=result.error,
        )
        if result.replayed:
            try:
                await self.cache.invalidate()
            except CareEngineError as exc:
                log.warning("summary_invalidate_failed", pet_id=self.pet_id, error=exc.error, message=exc.message)
        return result


def build_runtime(
    settings: Settings,
    *,
    user_id: str,
    pet_id: str,
    clock: Clock | None = None,
    schedules: ScheduleStore | None = None,
    sessions: SessionStore | None = None,
    connectivity: ConnectivityMonitor | None = None,
    side_effects: SideEffectRunner | None = None,
) -> PetRuntime:
    clock = clock or SystemClock(settings.timezone)
    schedules = schedules or HttpScheduleStore(settings)
    sessions = sessions or HttpSessionStore(settings)
    connectivity = connectivity or get_connectivity()
    window = timedelta(minutes=settings.COMPLETION_WINDOW_MINUTES)

    queue = OfflineQueue(
        user_id=user_id,
        pet_id=pet_id,
        clock=clock,
        max_size=settings.OFFLINE_QUEUE_MAX_SIZE,
        warning_threshold=settings.OFFLINE_QUEUE_WARNING_THRESHOLD,
        ttl_days=settings.OFFLINE_OPERATION_TTL_DAYS,
    )
    cache = DailyCacheService(user_id=user_id, pet_id=pet_id, sessions=sessions, pending=queue, clock=clock)
    dashboard = DashboardService(
        user_id=user_id, pet_id=pet_id, schedules=schedules, cache=cache, clock=clock, window=window
    )
    coordinator = OptimisticMutationCoordinator(
        user_id=user_id,
        pet_id=pet_id,
        dashboard=dashboard,
        cache=cache,
        queue=queue,
        sessions=sessions,
        connectivity=connectivity,
        notifications=build_notification_scheduler(settings, user_id=user_id, pet_id=pet_id),
        analytics=build_analytics_tracker(settings),
        side_effects=side_effects or get_side_effects(),
        clock=clock,
        window=window,
    )
    runtime = PetRuntime(
        user_id=user_id,
        pet_id=pet_id,
        clock=clock,
        cache=cache,
        queue=queue,
        dashboard=dashboard,
        coordinator=coordinator,
    )
    connectivity.on_restored(runtime.drain_queue)
    return runtime


def get_runtime(settings: Settings, user_id: str, pet_id: str) -> PetRuntime:
    key = (user_id, pet_id)
    runtime = _runtimes.get(key)
    if runtime is None:
        runtime = build_runtime(settings, user_id=user_id, pet_id=pet_id)
        _runtimes[key] = runtime
        log.info("pet_runtime_created", user_id=user_id, pet_id=pet_id)
    return runtime


def reset_runtimes() -> None:
    global _connectivity, _side_effects
    _runtimes.clear()
    _connectivity = None
    _side_effects = None
