from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from src.core.dependencies import care_error_response, get_pet_runtime
from src.models.dashboard import DashboardResponse
from src.models.errors import CareEngineError, ErrorResponse
from src.models.operations import QueueStatus
from src.models.treatments import (
    QUEUE_WARNING_MESSAGE,
    MedicationActionRequest,
    MutationResponse,
    SessionEditRequest,
)
from src.services.coordinator import MutationResult
from src.services.runtime import PetRuntime

router = APIRouter(tags=["treatments"])

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status: {"model": ErrorResponse} for status in (404, 409, 422, 502, 503)
}


def _to_response(result: MutationResult) -> MutationResponse:
    return MutationResponse(
        action=result.action,
        outcome=result.outcome.value,
        session_ids=[session.id for session in result.sessions],
        queue_size=result.queue.queue_size if result.queue else None,
        queue_warning=result.queue_warning,
        message=QUEUE_WARNING_MESSAGE if result.queue_warning else None,
        dashboard=DashboardResponse.from_state(result.state),
    )


@router.post(
    "/pets/{pet_id}/treatments/medications/confirm",
    operation_id="confirm_medication",
    response_model=MutationResponse,
    responses=_ERROR_RESPONSES,
    description="Mark a pending medication dose as given with the schedule's target dosage.",
)
async def confirm_medication(
    pet_id: str,
    payload: MedicationActionRequest,
    runtime: Annotated[PetRuntime, Depends(get_pet_runtime)],
) -> Any:
    await runtime.ensure_loaded()
    try:
        result = await runtime.coordinator.confirm_medication(payload.schedule_id, payload.scheduled_time)
    except CareEngineError as exc:
        return care_error_response(exc)
    return _to_response(result)


@router.post(
    "/pets/{pet_id}/treatments/medications/skip",
    operation_id="skip_medication",
    response_model=MutationResponse,
    responses=_ERROR_RESPONSES,
    description="Record that a pending medication dose was deliberately skipped.",
)
async def skip_medication(
    pet_id: str,
    payload: MedicationActionRequest,
    runtime: Annotated[PetRuntime, Depends(get_pet_runtime)],
) -> Any:
    await runtime.ensure_loaded()
    try:
        result = await runtime.coordinator.skip_medication(payload.schedule_id, payload.scheduled_time)
    except CareEngineError as exc:
        return care_error_response(exc)
    return _to_response(result)


@router.post(
    "/pets/{pet_id}/treatments/fluid/confirm",
    operation_id="confirm_fluid",
    response_model=MutationResponse,
    responses=_ERROR_RESPONSES,
    description="Log today's remaining fluid volume as one session.",
)
async def confirm_fluid(
    pet_id: str,
    runtime: Annotated[PetRuntime, Depends(get_pet_runtime)],
) -> Any:
    await runtime.ensure_loaded()
    try:
        result = await runtime.coordinator.confirm_fluid()
    except CareEngineError as exc:
        return care_error_response(exc)
    return _to_response(result)


@router.put(
    "/pets/{pet_id}/sessions/{session_id}",
    operation_id="edit_session",
    response_model=MutationResponse,
    responses=_ERROR_RESPONSES,
    description="Replace a logged session with a corrected version.",
)
async def edit_session(
    pet_id: str,
    session_id: str,
    payload: SessionEditRequest,
    runtime: Annotated[PetRuntime, Depends(get_pet_runtime)],
) -> Any:
    await runtime.ensure_loaded()
    if payload.old.id != session_id:
        return care_error_response(
            CareEngineError(
                "Path session id does not match the stored session.",
                status_code=422,
                error="VALIDATION_ERROR",
                fields=[{"name": "old.id", "reason": "must match the path session id"}],
            )
        )
    try:
        result = await runtime.coordinator.edit_session(payload.old, payload.new)
    except CareEngineError as exc:
        return care_error_response(exc)
    return _to_response(result)


@router.get(
    "/pets/{pet_id}/offline-queue",
    operation_id="get_offline_queue",
    response_model=QueueStatus,
    description="Operations recorded while offline and not yet replayed, oldest first.",
)
async def get_offline_queue(
    pet_id: str,
    runtime: Annotated[PetRuntime, Depends(get_pet_runtime)],
) -> Any:
    try:
        operations = await runtime.queue.pending()
    except CareEngineError as exc:
        return care_error_response(exc)
    return QueueStatus(
        size=len(operations),
        max_size=runtime.queue.max_size,
        warning=len(operations) >= runtime.queue.warning_threshold,
        operations=operations,
    )
