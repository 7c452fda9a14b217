from __future__ import annotations

import fnmatch
from datetime import date, datetime, timedelta
from typing import Any
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from src.core.clock import to_local
from src.core.config import Settings, get_settings
from src.models.schedules import Schedule
from src.models.sessions import FluidSession, LoggedSession, MedicationSession
from src.services.connectivity import ConnectionState, ConnectivityMonitor
from src.services.schedule_set import ScheduleSet
from src.services.side_effects import SideEffectRunner

TEST_SETTINGS = Settings(
    STORE_URL="http://test-store",
    STORE_API_KEY="test-store-key",
    REDIS_URL="redis://localhost:6379",
    LOG_LEVEL="debug",
    ENVIRONMENT="test",
    PET_TIMEZONE="America/Chicago",
)

TZ = ZoneInfo("America/Chicago")
TODAY = date(2026, 3, 10)
USER_ID = "user-1"
PET_ID = "pet-1"


def at(hour: int, minute: int = 0, second: int = 0, day: date = TODAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, second, tzinfo=TZ)


class FixedClock:
    def __init__(self, now: datetime, tz: ZoneInfo = TZ):
        self._now = now
        self._tz = tz

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs: float) -> None:
        self._now = self._now + timedelta(**kwargs)


class _FakePipeline:
    def __init__(self, redis: FakeRedis):
        self._redis = redis
        self._ops: list[tuple[str, tuple[Any, ...]]] = []

    async def __aenter__(self) -> _FakePipeline:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None

    def delete(self, *keys: str) -> None:
        self._ops.append(("delete", keys))

    def rpush(self, key: str, *values: str) -> None:
        self._ops.append(("rpush", (key, *values)))

    async def execute(self) -> list[Any]:
        results = []
        for name, args in self._ops:
            results.append(await getattr(self._redis, name)(*args))
        self._ops.clear()
        return results


class FakeRedis:
    """In-memory stand-in for the handful of redis.asyncio commands the app uses."""

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self.strings.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.strings[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.strings.pop(key, None) is not None:
                removed += 1
            if self.lists.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def scan_iter(self, match: str = "*"):
        for key in list(self.strings) + list(self.lists):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def rpush(self, key: str, *values: str) -> int:
        items = self.lists.setdefault(key, [])
        items.extend(values)
        return len(items)

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        items = self.lists.get(key, [])
        return list(items[start:] if end == -1 else items[start : end + 1])

    async def lindex(self, key: str, index: int) -> str | None:
        items = self.lists.get(key, [])
        return items[index] if -len(items) <= index < len(items) else None

    async def lset(self, key: str, index: int, value: str) -> bool:
        self.lists[key][index] = value
        return True

    async def lpop(self, key: str) -> str | None:
        items = self.lists.get(key)
        if not items:
            return None
        value = items.pop(0)
        if not items:
            del self.lists[key]
        return value

    async def llen(self, key: str) -> int:
        return len(self.lists.get(key, []))

    def pipeline(self, transaction: bool = True) -> _FakePipeline:
        return _FakePipeline(self)


class FakeScheduleStore:
    def __init__(self, schedules: list[Schedule] | None = None):
        self.schedules: list[Schedule] = list(schedules or [])
        self.error: Exception | None = None
        self.calls = 0

    async def get_active_schedules(self, pet_id: str) -> ScheduleSet:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return ScheduleSet.from_schedules(pet_id, self.schedules)

    async def create_schedule(self, pet_id: str, data: dict[str, Any]) -> Schedule:
        schedule = Schedule.model_validate(data)
        self.schedules.append(schedule)
        return schedule

    async def update_schedule(self, pet_id: str, schedule_id: str, patch: dict[str, Any]) -> Schedule:
        for index, schedule in enumerate(self.schedules):
            if schedule.id == schedule_id:
                updated = Schedule.model_validate({**schedule.model_dump(), **patch})
                self.schedules[index] = updated
                return updated
        raise KeyError(schedule_id)

    async def delete_schedule(self, pet_id: str, schedule_id: str) -> None:
        self.schedules = [schedule for schedule in self.schedules if schedule.id != schedule_id]


class FakeSessionStore:
    def __init__(self, tz: ZoneInfo = TZ):
        self.tz = tz
        self.sessions: dict[str, LoggedSession] = {}
        self.write_error: Exception | None = None
        self.read_error: Exception | None = None
        self.idempotency_keys: list[str | None] = []
        self.list_calls = 0

    async def list_sessions(self, pet_id: str, day: date) -> list[LoggedSession]:
        self.list_calls += 1
        if self.read_error is not None:
            raise self.read_error
        return [
            session
            for session in self.sessions.values()
            if session.pet_id == pet_id and to_local(session.date_time, self.tz).date() == day
        ]

    async def create_session(self, session: LoggedSession, *, idempotency_key: str | None = None) -> str:
        if self.write_error is not None:
            raise self.write_error
        self.idempotency_keys.append(idempotency_key)
        self.sessions[session.id] = session
        return session.id

    async def update_session(
        self, old_session: LoggedSession, new_session: LoggedSession, *, idempotency_key: str | None = None
    ) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.idempotency_keys.append(idempotency_key)
        self.sessions.pop(old_session.id, None)
        self.sessions[new_session.id] = new_session


def medication_schedule(
    schedule_id: str = "med-1",
    name: str = "Amlodipine",
    times: list[str] | None = None,
    **overrides: Any,
) -> Schedule:
    data: dict[str, Any] = {
        "id": schedule_id,
        "treatment_type": "medication",
        "reminder_times": ["08:00"] if times is None else times,
        "medication_name": name,
        "target_dosage": 1,
        "medication_unit": "pills",
        "created_at": at(0, day=date(2026, 3, 1)),
        "updated_at": at(0, day=date(2026, 3, 1)),
    }
    data.update(overrides)
    return Schedule.model_validate(data)


def fluid_schedule(
    schedule_id: str = "fluid-1",
    volume: float = 100,
    times: list[str] | None = None,
    **overrides: Any,
) -> Schedule:
    data: dict[str, Any] = {
        "id": schedule_id,
        "treatment_type": "fluid-therapy",
        "reminder_times": ["09:00", "21:00"] if times is None else times,
        "target_volume": volume,
        "created_at": at(0, day=date(2026, 3, 1)),
        "updated_at": at(0, day=date(2026, 3, 1)),
    }
    data.update(overrides)
    return Schedule.model_validate(data)


def medication_session(
    name: str = "Amlodipine",
    when: datetime | None = None,
    *,
    completed: bool = True,
    scheduled_time: datetime | None = None,
    **overrides: Any,
) -> MedicationSession:
    data: dict[str, Any] = {
        "pet_id": PET_ID,
        "user_id": USER_ID,
        "date_time": when or at(8),
        "scheduled_time": scheduled_time,
        "medication_name": name,
        "dosage_given": 1 if completed else 0,
        "dosage_scheduled": 1,
        "medication_unit": "pills",
        "completed": completed,
    }
    data.update(overrides)
    return MedicationSession(**data)


def fluid_session(volume: float = 100, when: datetime | None = None, **overrides: Any) -> FluidSession:
    data: dict[str, Any] = {
        "pet_id": PET_ID,
        "user_id": USER_ID,
        "date_time": when or at(9),
        "volume_given": volume,
        "injection_site": "shoulder_blade_left",
    }
    data.update(overrides)
    return FluidSession(**data)


@pytest.fixture(autouse=True)
def fake_redis():
    """Point the module-level Redis client at an in-memory double for every test."""
    import src.core.redis as redis_module

    client = FakeRedis()
    previous = redis_module._client
    redis_module._client = client  # type: ignore[assignment]
    yield client
    redis_module._client = previous


@pytest.fixture(autouse=True)
def _reset_runtimes():
    from src.services.runtime import reset_runtimes

    reset_runtimes()
    yield
    reset_runtimes()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(at(7, 59))


@pytest.fixture
def schedule_store() -> FakeScheduleStore:
    return FakeScheduleStore([medication_schedule()])


@pytest.fixture
def session_store() -> FakeSessionStore:
    return FakeSessionStore()


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    """Process-wide monitor, so PUT /connectivity reaches runtimes built in tests."""
    import src.services.runtime as runtime_module

    runtime_module._connectivity = ConnectivityMonitor(ConnectionState.CONNECTED)
    return runtime_module._connectivity


@pytest.fixture
def side_effects() -> SideEffectRunner:
    import src.services.runtime as runtime_module

    runtime_module._side_effects = SideEffectRunner()
    return runtime_module._side_effects


@pytest.fixture
def runtime(clock, schedule_store, session_store, connectivity, side_effects):
    from src.services.runtime import _runtimes, build_runtime

    built = build_runtime(
        TEST_SETTINGS,
        user_id=USER_ID,
        pet_id=PET_ID,
        clock=clock,
        schedules=schedule_store,
        sessions=session_store,
        connectivity=connectivity,
        side_effects=side_effects,
    )
    _runtimes[(USER_ID, PET_ID)] = built
    return built


@pytest.fixture
def client():
    from src.main import app

    # Patch at both levels: FastAPI DI and direct module calls (e.g. in lifespan)
    app.dependency_overrides[get_settings] = lambda: TEST_SETTINGS
    with patch("src.main.get_settings", return_value=TEST_SETTINGS):
        with TestClient(app) as c:
            yield c
    app.dependency_overrides.clear()
