from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol

import httpx

from src.core.config import Settings
from src.core.logging import get_logger
from src.models.schedules import Schedule

diagnostics = get_logger("diagnostics")


class NotificationScheduler(Protocol):
    async def schedule_for(self, schedule: Schedule) -> int: ...

    async def cancel_for(self, schedule_id: str, scheduled_time: datetime | None = None) -> int:
        """Cancel the reminder for one slot, or every reminder of the schedule when no slot is given."""
        ...


class AnalyticsTracker(Protocol):
    async def track(self, event: dict[str, Any]) -> None: ...


def _count_from(data: Any) -> int:
    if isinstance(data, dict):
        try:
            return int(data.get("count", 0))
        except (TypeError, ValueError):
            return 0
    return 0


class HttpNotificationScheduler:
    def __init__(self, settings: Settings, *, user_id: str, pet_id: str):
        self.settings = settings
        self.user_id = user_id
        self.pet_id = pet_id

    async def _post(self, path: str, payload: dict[str, Any]) -> int:
        async with httpx.AsyncClient(timeout=5.0) as client:
            resp = await client.post(f"{self.settings.NOTIFICATIONS_URL}{path}", json=payload)
            resp.raise_for_status()
            return _count_from(resp.json() if resp.content else {})

    async def schedule_for(self, schedule: Schedule) -> int:
        return await self._post(
            "/reminders/schedule",
            {"user_id": self.user_id, "pet_id": self.pet_id, "schedule": schedule.model_dump(mode="json")},
        )

    async def cancel_for(self, schedule_id: str, scheduled_time: datetime | None = None) -> int:
        payload: dict[str, Any] = {"user_id": self.user_id, "pet_id": self.pet_id, "schedule_id": schedule_id}
        if scheduled_time is not None:
            payload["scheduled_time"] = scheduled_time.isoformat()
        return await self._post("/reminders/cancel", payload)


class NullNotificationScheduler:
    async def schedule_for(self, schedule: Schedule) -> int:
        return 0

    async def cancel_for(self, schedule_id: str, scheduled_time: datetime | None = None) -> int:
        return 0


class HttpAnalyticsTracker:
    def __init__(self, settings: Settings):
        self.settings = settings

    async def track(self, event: dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=5.0) as client:
            resp = await client.post(f"{self.settings.ANALYTICS_URL}/events", json=event)
            resp.raise_for_status()


class NullAnalyticsTracker:
    async def track(self, event: dict[str, Any]) -> None:
        return None


@dataclass(frozen=True)
class SideEffectOutcome:
    name: str
    ok: bool
    result: Any = None
    error: str | None = None
    latency_ms: float = 0.0


class SideEffectRunner:
    """Runs best-effort effects as detached tasks; outcomes only reach the diagnostics log."""

    def __init__(self, history_size: int = 100) -> None:
        self._tasks: set[asyncio.Task[SideEffectOutcome]] = set()
        self.outcomes: deque[SideEffectOutcome] = deque(maxlen=history_size)

    def fire(self, name: str, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task[SideEffectOutcome]:
        task = asyncio.get_running_loop().create_task(self._run(name, factory))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, factory: Callable[[], Awaitable[Any]]) -> SideEffectOutcome:
        start = time.perf_counter()
        try:
            result = await factory()
        except Exception as exc:
            outcome = SideEffectOutcome(
                name=name,
                ok=False,
                error=f"{type(exc).__name__}: {exc}",
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            diagnostics.warning("side_effect_failed", effect=name, error=outcome.error, latency_ms=outcome.latency_ms)
        else:
            outcome = SideEffectOutcome(
                name=name,
                ok=True,
                result=result,
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            diagnostics.debug("side_effect_done", effect=name, result=result, latency_ms=outcome.latency_ms)
        self.outcomes.append(outcome)
        return outcome

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


def build_notification_scheduler(settings: Settings, *, user_id: str, pet_id: str) -> NotificationScheduler:
    if not settings.NOTIFICATIONS_URL:
        return NullNotificationScheduler()
    return HttpNotificationScheduler(settings, user_id=user_id, pet_id=pet_id)


def build_analytics_tracker(settings: Settings) -> AnalyticsTracker:
    if not settings.ANALYTICS_URL:
        return NullAnalyticsTracker()
    return HttpAnalyticsTracker(settings)
