import pytest

from src.models.errors import DataFormatError
from src.models.schedules import FluidLocation, TreatmentType
from src.models.sessions import FluidSession, MedicationSession
from src.services.normalization import (
    extract_list,
    normalize_location,
    normalize_treatment_type,
    parse_schedule,
    parse_session,
    to_snake_case,
)


def test_to_snake_case():
    assert to_snake_case("reminderTimes") == "reminder_times"
    assert to_snake_case("medicationStrengthAmount") == "medication_strength_amount"
    assert to_snake_case("already_snake") == "already_snake"


def test_extract_list_accepts_bare_and_wrapped_lists():
    assert extract_list([{"id": 1}, "junk"]) == [{"id": 1}]
    assert extract_list({"data": [{"id": 2}]}) == [{"id": 2}]
    assert extract_list({"data": None}) == []
    assert extract_list("nope") == []


@pytest.mark.parametrize("raw", ["fluid", "fluidTherapy", "fluid_therapy", "Fluid-Therapy"])
def test_normalize_treatment_type_aliases(raw):
    assert normalize_treatment_type(raw) == "fluid-therapy"


def test_normalize_treatment_type_leaves_unknown_values():
    assert normalize_treatment_type("injection") == "injection"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("shoulderBladeLeft", "shoulder_blade_left"),
        ("hip-bones-right", "hip_bones_right"),
        ("shoulder_blade_middle", "shoulder_blade_middle"),
    ],
)
def test_normalize_location(raw, expected):
    assert normalize_location(raw) == expected


def test_parse_schedule_from_camel_case():
    schedule = parse_schedule(
        {
            "id": 12,
            "treatmentType": "medication",
            "reminderTimes": ["20:00", "08:00", "08:00"],
            "medicationName": "Benazepril",
            "targetDosage": 0.5,
            "medicationUnit": "pills",
            "medicationStrengthAmount": "2.5",
            "medicationStrengthUnit": "mg",
        }
    )

    assert schedule.id == "12"
    assert schedule.treatment_type is TreatmentType.MEDICATION
    assert [t.hour for t in schedule.reminder_times] == [8, 20]
    assert schedule.formatted_strength == "2.5 mg"


def test_parse_schedule_rejects_non_object():
    with pytest.raises(DataFormatError) as exc_info:
        parse_schedule(["not", "an", "object"])

    assert exc_info.value.payload["fields"][0]["name"] == "schedule"


def test_parse_schedule_reports_missing_kind_fields():
    with pytest.raises(DataFormatError) as exc_info:
        parse_schedule({"id": "f", "treatmentType": "fluid", "reminderTimes": ["09:00"]})

    assert exc_info.value.message == "Schedule f is malformed."


def test_parse_session_infers_medication_kind():
    session = parse_session(
        {
            "id": 5,
            "petId": 1,
            "userId": 2,
            "dateTime": "2026-03-10T08:05:00-05:00",
            "medicationName": "Amlodipine",
            "dosageGiven": 1,
            "dosageScheduled": 1,
            "medicationUnit": "pills",
        }
    )

    assert isinstance(session, MedicationSession)
    assert (session.id, session.pet_id, session.user_id) == ("5", "1", "2")


def test_parse_session_infers_fluid_kind_and_location():
    session = parse_session(
        {
            "petId": "pet-1",
            "userId": "user-1",
            "dateTime": "2026-03-10T09:00:00-05:00",
            "volumeGiven": 120,
            "injectionSite": "hipBonesLeft",
        }
    )

    assert isinstance(session, FluidSession)
    assert session.injection_site is FluidLocation.HIP_BONES_LEFT


def test_parse_session_without_recognizable_kind_is_malformed():
    with pytest.raises(DataFormatError):
        parse_session({"petId": "pet-1", "userId": "user-1", "dateTime": "2026-03-10T09:00:00Z"})
