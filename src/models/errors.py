import uuid
from typing import Any

from pydantic import BaseModel, Field


class ErrorField(BaseModel):
    name: str
    reason: str


class ErrorResponse(BaseModel):
    error: str
    message: str
    fields: list[ErrorField] = Field(default_factory=list)
    request_id: str


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


class CareEngineError(Exception):
    status_code = 500
    error = "INTERNAL_ERROR"
    user_message = "Something went wrong. Please try again."

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error: str | None = None,
        fields: list[dict[str, Any]] | None = None,
        request_id: str | None = None,
        extra: dict[str, Any] | None = None,
    ):
        if status_code is not None:
            self.status_code = status_code
        if error is not None:
            self.error = error
        payload: dict[str, Any] = {
            "error": self.error,
            "message": message,
            "fields": fields or [],
            "request_id": request_id or new_request_id(),
        }
        if extra:
            payload.update(extra)
        self.payload = payload
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self.payload["message"])


class DataFormatError(CareEngineError):
    """A schedule or session payload from the store could not be understood."""

    status_code = 422
    error = "DATA_FORMAT_ERROR"
    user_message = "Some of your treatment data looks damaged. Please review your schedules."


class StoreError(CareEngineError):
    status_code = 502
    error = "STORE_ERROR"
    transient = False


class StoreUnavailableError(StoreError):
    status_code = 503
    error = "STORE_UNAVAILABLE"
    transient = True
    user_message = "Unable to save right now. Your data is saved offline and will sync automatically."


class CacheUnavailableError(StoreUnavailableError):
    """Redis, which holds the daily summaries and the offline queue, could not be reached."""

    error = "CACHE_UNAVAILABLE"
    user_message = "Unable to load your treatment data right now. Please try again."


class StoreRejectedError(StoreError):
    """The store answered but refused the request (auth, missing record, validation)."""


class PreconditionError(CareEngineError):
    status_code = 409
    error = "PRECONDITION_FAILED"
    user_message = "User or pet not found. Please try again."


class MutationInProgressError(CareEngineError):
    status_code = 409
    error = "MUTATION_IN_PROGRESS"
    user_message = "Still saving your last change. Please try again in a moment."


class TreatmentNotPendingError(CareEngineError):
    status_code = 404
    error = "NOT_PENDING"
    user_message = "This treatment is no longer pending."


class SessionValidationError(CareEngineError):
    status_code = 422
    error = "VALIDATION_ERROR"
    user_message = "Please check your entries and try again."


class CommitFailedError(CareEngineError):
    status_code = 502
    error = "COMMIT_FAILED"
    user_message = "We couldn't save that treatment. Nothing was changed."


class QueueFullError(CareEngineError):
    status_code = 503
    error = "OFFLINE_QUEUE_FULL"

    def __init__(self, queue_size: int):
        self.queue_size = queue_size
        super().__init__(f"Offline queue full ({queue_size} operations)", extra={"queue_size": queue_size})

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return (
            f"Too many treatments waiting to sync ({self.queue_size}). "
            "Please connect to internet to free up space."
        )


def fields_from_validation(exc: Any) -> list[dict[str, str]]:
    """Flatten a pydantic ValidationError into ``{name, reason}`` entries."""
    normalized: list[dict[str, str]] = []
    for item in exc.errors():
        loc = ".".join(str(part) for part in item.get("loc", ())) or "payload"
        normalized.append({"name": loc, "reason": str(item.get("msg", "invalid"))})
    return normalized
