from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from src.models.sessions import LoggedSession


class OperationType(str, Enum):
    CREATE_SESSION = "create_session"
    UPDATE_SESSION = "update_session"


class OperationStatus(str, Enum):
    PENDING = "pending"
    FAILED = "failed"


class QueuedOperation(BaseModel):
    """A session write deferred until connectivity returns.

    ``id`` doubles as the idempotency key sent to the store on replay.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: OperationType
    user_id: str
    pet_id: str
    target_ids: list[str] = Field(default_factory=list)
    session: LoggedSession | None = None
    old_session: LoggedSession | None = None
    new_session: LoggedSession | None = None
    created_at: datetime
    status: OperationStatus = OperationStatus.PENDING
    retry_count: int = 0
    last_error: str | None = None

    @model_validator(mode="after")
    def check_payload(self) -> QueuedOperation:
        if self.type is OperationType.CREATE_SESSION and self.session is None:
            raise ValueError("create_session operations carry a session")
        if self.type is OperationType.UPDATE_SESSION and (self.old_session is None or self.new_session is None):
            raise ValueError("update_session operations carry old_session and new_session")
        return self

    @property
    def resulting_session(self) -> LoggedSession | None:
        """The session this operation leaves in the store once applied."""
        if self.type is OperationType.CREATE_SESSION:
            return self.session
        return self.new_session

    def is_expired(self, now: datetime, ttl_days: int) -> bool:
        return now - self.created_at > timedelta(days=ttl_days)


class EnqueueResult(BaseModel):
    operation_id: str
    queue_size: int
    warning: bool = False


class QueueStatus(BaseModel):
    size: int
    max_size: int
    warning: bool
    operations: list[QueuedOperation]
