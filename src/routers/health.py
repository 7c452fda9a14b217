from importlib.metadata import PackageNotFoundError, version

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.core.config import Settings, get_settings
from src.services.runtime import get_connectivity
from src.services.store_client import store_reachable

router = APIRouter()


def _get_version() -> str:
    try:
        return version("pending-care-engine")
    except PackageNotFoundError:
        pass

    try:
        import tomllib

        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data["project"]["version"])
    except (OSError, KeyError, tomllib.TOMLDecodeError):
        return "unknown"


class HealthResponse(BaseModel):
    status: str
    version: str
    store_reachable: bool
    connectivity: str


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=_get_version(),
        store_reachable=await store_reachable(settings),
        connectivity=get_connectivity().state.value,
    )
