from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from src.core.dependencies import get_pet_runtime
from src.models.dashboard import DashboardResponse
from src.services.runtime import PetRuntime

router = APIRouter(tags=["dashboard"])


@router.get(
    "/pets/{pet_id}/dashboard",
    operation_id="get_dashboard",
    response_model=DashboardResponse,
    description="Treatments still due today for the pet, derived from its schedules and today's logged sessions.",
)
async def get_dashboard(runtime: Annotated[PetRuntime, Depends(get_pet_runtime)]) -> Any:
    await runtime.ensure_loaded()
    return DashboardResponse.from_state(runtime.dashboard.state)


@router.post(
    "/pets/{pet_id}/dashboard/refresh",
    operation_id="refresh_dashboard",
    response_model=DashboardResponse,
    description="Drop today's cached summary and recompute from the session store.",
)
async def refresh_dashboard(runtime: Annotated[PetRuntime, Depends(get_pet_runtime)]) -> Any:
    await runtime.ensure_loaded()
    state = await runtime.dashboard.refresh()
    return DashboardResponse.from_state(state)


@router.post(
    "/pets/{pet_id}/dashboard/resume",
    operation_id="resume_dashboard",
    response_model=DashboardResponse,
    description="Call when the app returns to the foreground: clears old daily caches and recomputes if the date changed.",
)
async def resume_dashboard(runtime: Annotated[PetRuntime, Depends(get_pet_runtime)]) -> Any:
    await runtime.ensure_loaded()
    state = await runtime.dashboard.on_app_resumed()
    return DashboardResponse.from_state(state)


@router.post(
    "/pets/{pet_id}/schedules/reload",
    operation_id="reload_schedules",
    response_model=DashboardResponse,
    description="Re-read the pet's active schedules after they changed and recompute.",
)
async def reload_schedules(runtime: Annotated[PetRuntime, Depends(get_pet_runtime)]) -> Any:
    state = await runtime.dashboard.reload_schedules()
    return DashboardResponse.from_state(state)
