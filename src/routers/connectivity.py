from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from src.services.connectivity import ConnectionState
from src.services.runtime import get_connectivity

router = APIRouter(tags=["connectivity"])


class ConnectivityUpdate(BaseModel):
    state: ConnectionState


class ConnectivityStatus(BaseModel):
    state: ConnectionState


@router.put(
    "/connectivity",
    operation_id="update_connectivity",
    response_model=ConnectivityStatus,
    description="Report a connectivity change. Moving to connected replays every pet's offline queue.",
)
async def update_connectivity(payload: ConnectivityUpdate) -> Any:
    monitor = get_connectivity()
    await monitor.update(payload.state)
    return ConnectivityStatus(state=monitor.state)


@router.get("/connectivity", operation_id="get_connectivity", response_model=ConnectivityStatus)
async def read_connectivity() -> Any:
    return ConnectivityStatus(state=get_connectivity().state)
