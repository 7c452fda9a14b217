"""Durable, ordered queue of session writes made while offline.

Records live in a Redis list per user and pet. ``drain`` replays them from
the head, one at a time, and stops at the first failure so the remaining
order is preserved.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from src.core import redis as redis_store
from src.core.clock import Clock, to_local
from src.core.logging import get_logger
from src.models.errors import CareEngineError, QueueFullError
from src.models.operations import EnqueueResult, OperationStatus, QueuedOperation
from src.models.sessions import LoggedSession

log = get_logger(__name__)

OperationExecutor = Callable[[QueuedOperation], Awaitable[None]]


@dataclass
class DrainResult:
    replayed: int = 0
    remaining: int = 0
    error: str | None = None

    @property
    def stopped_on_failure(self) -> bool:
        return self.error is not None


def queue_key(user_id: str, pet_id: str) -> str:
    return f"offline:queue:{user_id}:{pet_id}"


class OfflineQueue:
    def __init__(
        self,
        *,
        user_id: str,
        pet_id: str,
        clock: Clock,
        max_size: int = 200,
        warning_threshold: int = 50,
        ttl_days: int = 30,
    ) -> None:
        self.user_id = user_id
        self.pet_id = pet_id
        self.max_size = max_size
        self.warning_threshold = warning_threshold
        self.ttl_days = ttl_days
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def key(self) -> str:
        return queue_key(self.user_id, self.pet_id)

    async def pending(self) -> list[QueuedOperation]:
        raw_items = await redis_store.list_range(self.key)
        operations: list[QueuedOperation] = []
        for raw in raw_items:
            try:
                operations.append(QueuedOperation.model_validate_json(raw))
            except ValidationError as exc:
                log.error("offline_operation_unreadable", key=self.key, error=str(exc))
        return operations

    async def size(self) -> int:
        return await redis_store.list_length(self.key)

    async def _prune_expired(self) -> int:
        operations = await self.pending()
        now = self._clock.now()
        kept = [op for op in operations if not op.is_expired(now, self.ttl_days)]
        removed = len(operations) - len(kept)
        if removed:
            await redis_store.list_replace(self.key, [op.model_dump_json() for op in kept])
            log.info("offline_operations_expired", key=self.key, removed=removed)
        return removed

    async def enqueue(self, operation: QueuedOperation) -> EnqueueResult:
        """Persist ``operation`` at the tail before returning."""
        async with self._lock:
            await self._prune_expired()
            current = await self.size()
            if current >= self.max_size:
                log.warning("offline_queue_full", key=self.key, size=current)
                raise QueueFullError(current)

            size = await redis_store.list_push(self.key, operation.model_dump_json())

        warning = size >= self.warning_threshold
        log.info(
            "offline_operation_enqueued",
            key=self.key,
            operation_id=operation.id,
            type=operation.type.value,
            size=size,
            warning=warning,
        )
        return EnqueueResult(operation_id=operation.id, queue_size=size, warning=warning)

    async def drain(self, execute: OperationExecutor) -> DrainResult:
        """Replay queued operations in order; stop at the first failure."""
        result = DrainResult()
        async with self._lock:
            while True:
                raw = await redis_store.list_head(self.key)
                if raw is None:
                    break
                try:
                    operation = QueuedOperation.model_validate_json(raw)
                except ValidationError as exc:
                    log.error("offline_operation_dropped", key=self.key, error=str(exc))
                    await redis_store.list_pop_head(self.key)
                    continue

                try:
                    await execute(operation)
                except CareEngineError as exc:
                    failed = operation.model_copy(
                        update={
                            "status": OperationStatus.FAILED,
                            "retry_count": operation.retry_count + 1,
                            "last_error": exc.message,
                        }
                    )
                    await redis_store.list_set_head(self.key, failed.model_dump_json())
                    result.error = exc.message
                    log.warning(
                        "offline_replay_failed",
                        key=self.key,
                        operation_id=operation.id,
                        retry_count=failed.retry_count,
                        error=exc.message,
                    )
                    break

                await redis_store.list_pop_head(self.key)
                result.replayed += 1
                log.info("offline_operation_replayed", key=self.key, operation_id=operation.id)

            result.remaining = await self.size()
        return result

    async def pending_sessions(self, day: date, tz: ZoneInfo) -> list[LoggedSession]:
        """Sessions queued operations will leave in the store for ``day``."""
        sessions: list[LoggedSession] = []
        for operation in await self.pending():
            session = operation.resulting_session
            if session is not None and to_local(session.date_time, tz).date() == day:
                sessions.append(session)
        return sessions

    async def clear(self) -> None:
        await redis_store.delete(self.key)
