import logging
import re
import time
import uuid
from typing import Any, Awaitable, Callable, cast

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

SERVICE_NAME = "pending-care-engine"

_PET_PATH = re.compile(r"^/pets/([^/]+)")


def _service_fields(environment: str) -> Callable[[Any, str, dict[str, Any]], dict[str, Any]]:
    def processor(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("environment", environment)
        return event_dict

    return processor


def setup_logging(log_level: str = "info", environment: str = "production") -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _service_fields(environment),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level, format="%(message)s")
    # httpx and the redis client log every call at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return cast(structlog.BoundLogger, structlog.get_logger(name))


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Binds request, user and pet ids for every log line emitted while serving a request."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        pet_match = _PET_PATH.match(request.url.path)
        start = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            user_id=request.headers.get("X-User-ID"),
            pet_id=pet_match.group(1) if pet_match else None,
        )

        log = get_logger("http")
        try:
            response = await call_next(request)
        except Exception:
            log.exception(
                "request_failed",
                endpoint=request.url.path,
                method=request.method,
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise

        log.info(
            "request",
            endpoint=request.url.path,
            method=request.method,
            status=response.status_code,
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
            outcome="error" if response.status_code >= 400 else "ok",
        )

        response.headers["X-Request-ID"] = request_id
        return response
