from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Protocol

import httpx

from src.core.config import Settings
from src.core.logging import get_logger
from src.models.errors import StoreError, StoreRejectedError, StoreUnavailableError
from src.models.schedules import Schedule
from src.models.sessions import LoggedSession
from src.services.normalization import extract_list, parse_schedule, parse_schedules, parse_sessions
from src.services.schedule_set import ScheduleSet

log = get_logger(__name__)


class ScheduleStore(Protocol):
    async def get_active_schedules(self, pet_id: str) -> ScheduleSet: ...

    async def create_schedule(self, pet_id: str, data: dict[str, Any]) -> Schedule: ...

    async def update_schedule(self, pet_id: str, schedule_id: str, patch: dict[str, Any]) -> Schedule: ...

    async def delete_schedule(self, pet_id: str, schedule_id: str) -> None: ...


class SessionStore(Protocol):
    async def list_sessions(self, pet_id: str, day: date) -> list[LoggedSession]: ...

    async def create_session(self, session: LoggedSession, *, idempotency_key: str | None = None) -> str: ...

    async def update_session(
        self, old_session: LoggedSession, new_session: LoggedSession, *, idempotency_key: str | None = None
    ) -> None: ...


def _extract_fields(upstream_data: Any) -> list[dict[str, str]]:
    if not isinstance(upstream_data, dict):
        return []
    errors = upstream_data.get("errors")
    if not isinstance(errors, dict):
        return []

    normalized: list[dict[str, str]] = []
    for name, reasons in errors.items():
        if isinstance(reasons, list) and reasons:
            normalized.append({"name": str(name), "reason": str(reasons[0])})
        else:
            normalized.append({"name": str(name), "reason": "invalid"})
    return normalized


def _message_from_upstream(upstream_data: Any, fallback: str) -> str:
    if isinstance(upstream_data, dict):
        message = upstream_data.get("message")
        if isinstance(message, str) and message.strip():
            return message
    return fallback


def _normalize_http_error(status_code: int, upstream_data: Any) -> StoreError:
    if status_code == 401:
        return StoreRejectedError(
            _message_from_upstream(upstream_data, "Store rejected our credentials."),
            status_code=401,
            error="UNAUTHORIZED",
        )
    if status_code == 404:
        return StoreRejectedError(
            _message_from_upstream(upstream_data, "Requested record was not found."),
            status_code=404,
            error="NOT_FOUND",
        )
    if status_code == 409:
        return StoreRejectedError(
            _message_from_upstream(upstream_data, "Record was changed by someone else."),
            status_code=409,
            error="CONFLICT",
        )
    if status_code == 422:
        return StoreRejectedError(
            _message_from_upstream(upstream_data, "Validation failed."),
            status_code=422,
            error="VALIDATION_ERROR",
            fields=_extract_fields(upstream_data),
        )
    if status_code == 429:
        return StoreUnavailableError("The store is busy, please try again in a moment.")
    if status_code >= 500:
        return StoreUnavailableError("Store is temporarily unavailable.")

    return StoreError(_message_from_upstream(upstream_data, "Unexpected store error."))


async def call_store(
    *,
    method: str,
    path: str,
    settings: Settings,
    json_data: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> Any:
    request_headers: dict[str, str] = dict(headers or {})
    if settings.STORE_API_KEY:
        request_headers["Authorization"] = f"Bearer {settings.STORE_API_KEY}"

    try:
        async with httpx.AsyncClient(timeout=settings.STORE_TIMEOUT_SECONDS) as client:
            resp = await client.request(
                method=method,
                url=f"{settings.STORE_URL}{path}",
                headers=request_headers,
                json=json_data,
                params=params,
            )
    except httpx.RequestError as exc:
        log.warning("store_unreachable", method=method, path=path, error=str(exc))
        raise StoreUnavailableError("Store is unreachable.") from exc

    if 200 <= resp.status_code < 300:
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}

    try:
        upstream_data = resp.json()
    except ValueError:
        upstream_data = {"message": resp.text}

    error = _normalize_http_error(resp.status_code, upstream_data)
    log.warning("store_error", method=method, path=path, status=resp.status_code, error=error.error)
    raise error


class HttpScheduleStore:
    def __init__(self, settings: Settings):
        self.settings = settings

    async def get_fluid_schedule(self, pet_id: str) -> Schedule | None:
        data = await call_store(method="GET", path=f"/api/pets/{pet_id}/schedules/fluid", settings=self.settings)
        if isinstance(data, dict) and "data" in data:
            data = data["data"]
        if not data:
            return None
        return parse_schedule(data)

    async def get_medication_schedules(self, pet_id: str) -> list[Schedule]:
        data = await call_store(
            method="GET", path=f"/api/pets/{pet_id}/schedules/medications", settings=self.settings
        )
        return parse_schedules(extract_list(data))

    async def get_active_schedules(self, pet_id: str) -> ScheduleSet:
        # Either read failing aborts the combined load.
        fluid, medications = await asyncio.gather(
            self.get_fluid_schedule(pet_id),
            self.get_medication_schedules(pet_id),
        )
        schedules = [*medications] if fluid is None else [fluid, *medications]
        return ScheduleSet.from_schedules(pet_id, schedules)

    async def create_schedule(self, pet_id: str, data: dict[str, Any]) -> Schedule:
        created = await call_store(
            method="POST", path=f"/api/pets/{pet_id}/schedules", settings=self.settings, json_data=data
        )
        return parse_schedule(created.get("data", created) if isinstance(created, dict) else created)

    async def update_schedule(self, pet_id: str, schedule_id: str, patch: dict[str, Any]) -> Schedule:
        updated = await call_store(
            method="PATCH",
            path=f"/api/pets/{pet_id}/schedules/{schedule_id}",
            settings=self.settings,
            json_data=patch,
        )
        return parse_schedule(updated.get("data", updated) if isinstance(updated, dict) else updated)

    async def delete_schedule(self, pet_id: str, schedule_id: str) -> None:
        await call_store(
            method="DELETE", path=f"/api/pets/{pet_id}/schedules/{schedule_id}", settings=self.settings
        )


class HttpSessionStore:
    def __init__(self, settings: Settings):
        self.settings = settings

    async def list_sessions(self, pet_id: str, day: date) -> list[LoggedSession]:
        data = await call_store(
            method="GET",
            path=f"/api/pets/{pet_id}/sessions",
            settings=self.settings,
            params={"date": day.isoformat()},
        )
        return parse_sessions(extract_list(data))

    async def create_session(self, session: LoggedSession, *, idempotency_key: str | None = None) -> str:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        data = await call_store(
            method="POST",
            path=f"/api/pets/{session.pet_id}/sessions",
            settings=self.settings,
            json_data=session.model_dump(mode="json"),
            headers=headers,
        )
        if isinstance(data, dict):
            body = data.get("data", data)
            if isinstance(body, dict) and body.get("id"):
                return str(body["id"])
        return session.id

    async def update_session(
        self, old_session: LoggedSession, new_session: LoggedSession, *, idempotency_key: str | None = None
    ) -> None:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        await call_store(
            method="PUT",
            path=f"/api/pets/{new_session.pet_id}/sessions/{old_session.id}",
            settings=self.settings,
            json_data={
                "old": old_session.model_dump(mode="json"),
                "new": new_session.model_dump(mode="json"),
            },
            headers=headers,
        )


async def store_reachable(settings: Settings) -> bool:
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            resp = await client.get(f"{settings.STORE_URL}/api/version")
            return resp.status_code < 500
    except httpx.HTTPError:
        return False
