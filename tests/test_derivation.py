from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

from src.services.derivation import derive_pending, is_overdue, remaining_fluid_volume
from src.services.schedule_set import ScheduleSet
from src.services.summary_cache import DailySummaryCache
from tests.conftest import TODAY, TZ, at, fluid_schedule, fluid_session, medication_schedule, medication_session


def _set(*schedules):
    return ScheduleSet.from_schedules("pet-1", schedules)


def _cache(*sessions, day=TODAY):
    return DailySummaryCache.from_sessions(day, sessions, TZ)


def test_recompute_is_idempotent():
    schedule_set = _set(medication_schedule(times=["08:00", "20:00"]), fluid_schedule())
    cache = _cache(fluid_session(50))

    first = derive_pending(schedule_set, cache, at(12), TZ)
    second = derive_pending(schedule_set, cache, at(12), TZ)

    assert first == second


def test_timed_medication_emits_one_instance_per_reminder():
    state = derive_pending(_set(medication_schedule(times=["08:00", "20:00"])), _cache(), at(7), TZ)

    assert [item.scheduled_time for item in state.pending_medications] == [at(8), at(20)]
    assert state.date == "2026-03-10"
    assert state.error_message is None


def test_completed_session_within_window_removes_instance():
    schedule_set = _set(medication_schedule(times=["08:00"]))

    inside = derive_pending(schedule_set, _cache(medication_session(when=at(10))), at(11), TZ)
    outside = derive_pending(schedule_set, _cache(medication_session(when=at(10, 1))), at(11), TZ)

    assert inside.pending_medications == ()
    assert len(outside.pending_medications) == 1


def test_skip_does_not_complete_a_timed_reminder():
    state = derive_pending(
        _set(medication_schedule(times=["08:00"])),
        _cache(medication_session(when=at(8), completed=False)),
        at(9),
        TZ,
    )

    assert len(state.pending_medications) == 1


def test_overdue_threshold_is_strict():
    schedule_set = _set(medication_schedule(times=["08:00"]))

    at_two_hours = derive_pending(schedule_set, _cache(), at(10), TZ)
    just_past = derive_pending(schedule_set, _cache(), at(10, 0, 1), TZ)

    assert at_two_hours.pending_medications[0].is_overdue is False
    assert just_past.pending_medications[0].is_overdue is True


def test_is_overdue_helper():
    assert not is_overdue(at(8), at(10))
    assert is_overdue(at(8), at(10, 0, 1))
    assert not is_overdue(at(8), at(8, 30), timedelta(minutes=30))


def test_flexible_medication_is_pending_once_and_never_overdue():
    schedule_set = _set(medication_schedule(name="Mirtazapine", times=[]))

    state = derive_pending(schedule_set, _cache(), at(23, 59), TZ)

    assert len(state.pending_medications) == 1
    item = state.pending_medications[0]
    assert item.scheduled_time == at(0)
    assert item.is_overdue is False
    assert item.display_time == "Any time today"


def test_flexible_medication_disappears_after_any_session_and_returns_next_day():
    schedule_set = _set(medication_schedule(name="Mirtazapine", times=[]))
    skipped = medication_session(name="Mirtazapine", when=at(9), completed=False)

    today = derive_pending(schedule_set, _cache(skipped), at(10), TZ)
    tomorrow_day = date(2026, 3, 11)
    tomorrow = derive_pending(schedule_set, _cache(skipped, day=tomorrow_day), at(8, day=tomorrow_day), TZ)

    assert today.pending_medications == ()
    assert len(tomorrow.pending_medications) == 1


def test_flexible_schedules_sharing_a_name_are_conflated():
    schedule_set = _set(
        medication_schedule("low-dose", name="Gabapentin", times=[], target_dosage=0.5),
        medication_schedule("high-dose", name="Gabapentin", times=[], target_dosage=1),
    )

    state = derive_pending(schedule_set, _cache(medication_session(name="Gabapentin")), at(12), TZ)

    assert state.pending_medications == ()


def test_fluid_remaining_volume_accounts_for_logged_sessions():
    schedule_set = _set(fluid_schedule(volume=100, times=["09:00", "21:00"]))

    before = derive_pending(schedule_set, _cache(), at(8), TZ)
    after = derive_pending(schedule_set, _cache(fluid_session(120)), at(10), TZ)

    assert before.pending_fluid is not None
    assert before.pending_fluid.remaining_volume == 200
    assert before.pending_fluid.scheduled_times == (at(9), at(21))
    assert after.pending_fluid is not None
    assert after.pending_fluid.remaining_volume == 80


def test_fluid_remaining_volume_is_floored_at_zero():
    schedule = fluid_schedule(volume=100, times=["09:00", "21:00"])
    cache = _cache(fluid_session(150), fluid_session(100, when=at(20)))

    state = derive_pending(_set(schedule), cache, at(21), TZ)

    assert remaining_fluid_volume(schedule, cache, at(21), TZ) == 0
    assert state.pending_fluid is None


def test_fluid_overdue_when_any_reminder_is_past_threshold():
    schedule_set = _set(fluid_schedule(times=["09:00", "21:00"]))

    assert derive_pending(schedule_set, _cache(), at(11), TZ).pending_fluid.has_overdue_times is False
    assert derive_pending(schedule_set, _cache(), at(11, 1), TZ).pending_fluid.has_overdue_times is True


def test_inactive_and_off_day_schedules_are_not_pending():
    schedule_set = _set(
        medication_schedule("inactive", is_active=False),
        medication_schedule("off-day", frequency="everyOtherDay", created_at=at(8, day=date(2026, 3, 9))),
    )

    state = derive_pending(schedule_set, _cache(), at(9), TZ)

    assert state.pending_medications == ()


def test_stale_cache_yields_error_state():
    state = derive_pending(
        _set(medication_schedule()),
        _cache(day=date(2026, 3, 9)),
        at(9),
        TZ,
    )

    assert state.pending_medications == ()
    assert state.error_message
    assert state.error_code == "DERIVATION_ERROR"


def test_unexpected_collaborator_failure_becomes_error_state():
    schedule_set = MagicMock(spec=ScheduleSet)
    schedule_set.pet_id = "pet-1"
    schedule_set.medications_for.side_effect = RuntimeError("boom")

    state = derive_pending(schedule_set, _cache(), at(9), TZ)

    assert state.pending_medications == ()
    assert state.error_message is not None


def test_amlodipine_morning_reminder_end_to_end():
    schedule_set = _set(medication_schedule(name="Amlodipine", times=["08:00"]))

    early = derive_pending(schedule_set, _cache(), at(7, 59), TZ)
    late = derive_pending(schedule_set, _cache(), at(10, 1), TZ)
    confirmed_cache = _cache(medication_session(name="Amlodipine", when=at(10, 1), scheduled_time=at(8)))
    confirmed = derive_pending(schedule_set, confirmed_cache, at(10, 1), TZ)

    assert len(early.pending_medications) == 1
    assert early.pending_medications[0].is_overdue is False
    assert len(late.pending_medications) == 1
    assert late.pending_medications[0].is_overdue is True
    assert confirmed.pending_medications == ()
    assert "Amlodipine" in confirmed_cache.logged_names_today()


FALL_BACK = date(2026, 11, 1)


def test_overdue_counts_real_time_across_fall_back():
    reminder = at(0, 30, day=FALL_BACK)
    two_hours_later = datetime(2026, 11, 1, 1, 30, fold=1, tzinfo=TZ)
    just_past = datetime(2026, 11, 1, 1, 30, 1, fold=1, tzinfo=TZ)

    assert not is_overdue(reminder, two_hours_later)
    assert is_overdue(reminder, just_past)


def test_overdue_and_completion_window_agree_across_fall_back():
    schedule_set = _set(medication_schedule(times=["00:30"]))
    now = at(2, 30, day=FALL_BACK)
    cache = _cache(medication_session(when=now), day=FALL_BACK)

    state = derive_pending(schedule_set, cache, now, TZ)

    [item] = state.pending_medications
    assert item.is_overdue is True


def test_dose_logged_two_real_hours_after_reminder_on_fall_back_still_counts():
    schedule_set = _set(medication_schedule(times=["00:30"]))
    now = datetime(2026, 11, 1, 1, 30, fold=1, tzinfo=TZ)
    cache = _cache(medication_session(when=now), day=FALL_BACK)

    state = derive_pending(schedule_set, cache, now, TZ)

    assert state.pending_medications == ()
