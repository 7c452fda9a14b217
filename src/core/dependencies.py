from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from src.core.config import Settings, get_settings
from src.models.errors import CareEngineError
from src.services.runtime import PetRuntime, get_runtime


async def get_user_id(
    request: Request,
    x_user_id: Annotated[str | None, Header(alias="X-User-ID")] = None,
) -> str:
    """Resolve the caller's user id from the X-User-ID header.

    Raises 401 when the header is absent or blank.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-ID header")
    request.state.user_id = user_id
    return user_id


async def get_pet_runtime(
    pet_id: str,
    user_id: Annotated[str, Depends(get_user_id)],
    settings: Settings = Depends(get_settings),
) -> PetRuntime:
    pet_id = pet_id.strip()
    if not pet_id:
        raise HTTPException(status_code=404, detail="Unknown pet")
    return get_runtime(settings, user_id, pet_id)


def care_error_response(exc: CareEngineError) -> JSONResponse:
    content = dict(exc.payload)
    content["user_message"] = exc.user_message
    return JSONResponse(status_code=exc.status_code, content=content)
