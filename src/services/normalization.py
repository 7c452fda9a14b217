from __future__ import annotations

import re
from typing import Any

from pydantic import ValidationError

from src.models.errors import DataFormatError, fields_from_validation
from src.models.schedules import Schedule
from src.models.sessions import LoggedSession, session_adapter

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

_TREATMENT_TYPE_ALIASES: dict[str, str] = {
    "medication": "medication",
    "fluid": "fluid-therapy",
    "fluidtherapy": "fluid-therapy",
    "fluid-therapy": "fluid-therapy",
    "fluid_therapy": "fluid-therapy",
}

_LOCATION_ALIASES: dict[str, str] = {
    "shoulderbladeleft": "shoulder_blade_left",
    "shoulderbladeright": "shoulder_blade_right",
    "shoulderblademiddle": "shoulder_blade_middle",
    "hipbonesleft": "hip_bones_left",
    "hipbonesright": "hip_bones_right",
}


def to_snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def snake_keys(raw: dict[str, Any]) -> dict[str, Any]:
    return {to_snake_case(str(key)): value for key, value in raw.items()}


def extract_list(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        return [item for item in data["data"] if isinstance(item, dict)]
    return []


def normalize_treatment_type(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return _TREATMENT_TYPE_ALIASES.get(value.strip().lower(), value)


def normalize_location(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    compact = value.replace("_", "").replace("-", "").strip().lower()
    return _LOCATION_ALIASES.get(compact, value)


def _infer_session_kind(data: dict[str, Any]) -> str | None:
    if "medication_name" in data:
        return "medication"
    if "volume_given" in data:
        return "fluid"
    return None


def parse_schedule(raw: Any) -> Schedule:
    if not isinstance(raw, dict):
        raise DataFormatError(
            "Schedule payload is not an object.",
            fields=[{"name": "schedule", "reason": f"expected object, got {type(raw).__name__}"}],
        )
    data = snake_keys(raw)
    if "treatment_type" in data:
        data["treatment_type"] = normalize_treatment_type(data["treatment_type"])
    if "preferred_location" in data:
        data["preferred_location"] = normalize_location(data["preferred_location"])
    if "id" in data and data["id"] is not None:
        data["id"] = str(data["id"])
    try:
        return Schedule.model_validate(data)
    except ValidationError as exc:
        raise DataFormatError(
            f"Schedule {data.get('id', '?')} is malformed.",
            fields=fields_from_validation(exc),
        ) from exc


def parse_schedules(items: list[dict[str, Any]]) -> list[Schedule]:
    return [parse_schedule(item) for item in items]


def parse_session(raw: Any) -> LoggedSession:
    if not isinstance(raw, dict):
        raise DataFormatError(
            "Session payload is not an object.",
            fields=[{"name": "session", "reason": f"expected object, got {type(raw).__name__}"}],
        )
    data = snake_keys(raw)
    data.setdefault("kind", _infer_session_kind(data))
    if "injection_site" in data:
        data["injection_site"] = normalize_location(data["injection_site"])
    for key in ("id", "pet_id", "user_id", "schedule_id"):
        if data.get(key) is not None:
            data[key] = str(data[key])
    try:
        return session_adapter.validate_python(data)
    except ValidationError as exc:
        raise DataFormatError(
            f"Session {data.get('id', '?')} is malformed.",
            fields=fields_from_validation(exc),
        ) from exc


def parse_sessions(items: list[dict[str, Any]]) -> list[LoggedSession]:
    return [parse_session(item) for item in items]
