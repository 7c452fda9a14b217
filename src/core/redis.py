import functools
from typing import Awaitable, Callable, ParamSpec, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.core.config import get_settings
from src.models.errors import CacheUnavailableError

_client: aioredis.Redis | None = None

P = ParamSpec("P")
T = TypeVar("T")


async def get_redis() -> aioredis.Redis:
    global _client
    if _client is None:
        settings = get_settings()
        _client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def _unavailable_on_error(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Surface connection and command failures as a transient engine error."""

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await func(*args, **kwargs)
        except RedisError as exc:
            raise CacheUnavailableError(f"Local cache unavailable ({func.__name__}): {exc}") from exc

    return wrapper


@_unavailable_on_error
async def set_with_ttl(key: str, value: str, ttl: int) -> None:
    """Store a key with an expiry (seconds)."""
    r = await get_redis()
    await r.set(key, value, ex=ttl)


@_unavailable_on_error
async def get(key: str) -> str | None:
    """Retrieve a key's value, or None if missing/expired."""
    r = await get_redis()
    return await r.get(key)  # type: ignore[no-any-return]


@_unavailable_on_error
async def delete(*keys: str) -> None:
    """Delete one or more keys (no-op for keys already gone)."""
    if not keys:
        return
    r = await get_redis()
    await r.delete(*keys)


@_unavailable_on_error
async def scan_keys(pattern: str) -> list[str]:
    """Return every key matching a glob pattern, using SCAN rather than KEYS."""
    r = await get_redis()
    return [key async for key in r.scan_iter(match=pattern)]


@_unavailable_on_error
async def list_push(key: str, value: str) -> int:
    """Append to the tail of a list. Returns the new length."""
    r = await get_redis()
    return await r.rpush(key, value)  # type: ignore[no-any-return]


@_unavailable_on_error
async def list_range(key: str) -> list[str]:
    r = await get_redis()
    return await r.lrange(key, 0, -1)  # type: ignore[no-any-return]


@_unavailable_on_error
async def list_head(key: str) -> str | None:
    r = await get_redis()
    return await r.lindex(key, 0)  # type: ignore[no-any-return]


@_unavailable_on_error
async def list_set_head(key: str, value: str) -> None:
    """Overwrite the head element in place, keeping queue order."""
    r = await get_redis()
    await r.lset(key, 0, value)


@_unavailable_on_error
async def list_pop_head(key: str) -> str | None:
    r = await get_redis()
    return await r.lpop(key)  # type: ignore[no-any-return]


@_unavailable_on_error
async def list_length(key: str) -> int:
    r = await get_redis()
    return await r.llen(key)  # type: ignore[no-any-return]


@_unavailable_on_error
async def list_replace(key: str, values: list[str]) -> None:
    """Atomically replace a list's contents (used when pruning expired entries)."""
    r = await get_redis()
    async with r.pipeline(transaction=True) as pipe:
        pipe.delete(key)
        if values:
            pipe.rpush(key, *values)
        await pipe.execute()
