from datetime import date

import pytest

from camp_transfers.errors import ScheduleWindowViolation
from camp_transfers.models import (
    CampType,
    ConstrainedWindow,
    FlexibleWindow,
    SchedulePolicy,
)
from camp_transfers.schedule import (
    DEFAULT_POLICY,
    normalize_time,
    resolve_window,
    select_policy,
    upcoming_slots,
    validate_dispatch,
)

MONDAY = date(2026, 10, 19)


def policy(
    policy_id: str, start: str, end: str, days: list[str], active: bool = True
) -> SchedulePolicy:
    return SchedulePolicy(
        id=policy_id,
        season_name=policy_id.title(),
        start_date=start,
        end_date=end,
        allowed_days=days,
        allowed_time_slots=["09:00", "09:30"],
        is_active=active,
    )


WINTER = policy("winter", "12-01", "02-28", ["Monday", "Thursday"])
SUMMER = policy("summer", "2025-06-01", "2025-09-15", ["Saturday"])


def test_select_policy_wraps_year_end() -> None:
    assert select_policy(date(2027, 1, 15), [WINTER]) is WINTER
    assert select_policy(date(2026, 12, 1), [WINTER]) is WINTER
    assert select_policy(date(2027, 2, 28), [WINTER]) is WINTER
    assert select_policy(date(2026, 11, 30), [WINTER]) is DEFAULT_POLICY


def test_select_policy_ignores_year_of_stored_dates() -> None:
    """Only the month-day of a policy range matters."""
    assert select_policy(date(2030, 7, 4), [SUMMER]) is SUMMER


def test_select_policy_skips_inactive() -> None:
    inactive = policy("closed", "01-01", "12-31", ["Friday"], active=False)
    assert select_policy(MONDAY, [inactive]) is DEFAULT_POLICY


def test_default_policy_window() -> None:
    window = resolve_window(MONDAY, CampType.REGULAR, CampType.REGULAR, [])
    assert isinstance(window, ConstrainedWindow)
    assert window.season_name == "Default"
    assert window.allowed_days == ["Tuesday", "Sunday"]
    assert window.allowed_time_slots[0] == "14:30"
    assert window.allowed_time_slots[-1] == "18:30"
    assert len(window.allowed_time_slots) == 9


@pytest.mark.parametrize(
    "source,target",
    [
        (CampType.INDUCTION, CampType.REGULAR),
        (CampType.INDUCTION, CampType.EXIT),
        (CampType.REGULAR, CampType.EXIT),
    ],
)
def test_flexible_routes(source: CampType, target: CampType) -> None:
    assert isinstance(resolve_window(MONDAY, source, target, [WINTER]), FlexibleWindow)


@pytest.mark.parametrize(
    "source,target",
    [
        (CampType.REGULAR, CampType.REGULAR),
        (CampType.EXIT, CampType.REGULAR),
        (CampType.REGULAR, CampType.PROJECT),
    ],
)
def test_constrained_routes(source: CampType, target: CampType) -> None:
    assert isinstance(resolve_window(MONDAY, source, target, []), ConstrainedWindow)


def test_disallowed_weekday_names_allowed_days() -> None:
    window = resolve_window(
        date(2026, 12, 10), CampType.REGULAR, CampType.REGULAR, [WINTER]
    )
    tuesday = date(2026, 12, 15)

    with pytest.raises(ScheduleWindowViolation) as exc_info:
        validate_dispatch(window, date(2026, 12, 10), tuesday, "09:00")

    error = exc_info.value
    assert error.kind == "validation"
    assert error.details["allowed_days"] == ["Monday", "Thursday"]
    assert error.details["season_name"] == "Winter"
    assert "Monday, Thursday" in error.message


def test_allowed_slot_passes() -> None:
    window = resolve_window(MONDAY, CampType.REGULAR, CampType.REGULAR, [])
    validate_dispatch(window, MONDAY, date(2026, 10, 25), "16:30:00")


def test_disallowed_time_slot() -> None:
    window = resolve_window(MONDAY, CampType.REGULAR, CampType.REGULAR, [])
    with pytest.raises(ScheduleWindowViolation) as exc_info:
        validate_dispatch(window, MONDAY, date(2026, 10, 20), "13:00")
    assert "allowed_time_slots" in exc_info.value.details


def test_past_dispatch_rejected_even_when_flexible() -> None:
    with pytest.raises(ScheduleWindowViolation):
        validate_dispatch(FlexibleWindow(), MONDAY, date(2026, 10, 18), None)


def test_flexible_window_accepts_any_day_and_time() -> None:
    validate_dispatch(FlexibleWindow(), MONDAY, MONDAY, "03:17")
    validate_dispatch(FlexibleWindow(), MONDAY, date(2026, 10, 23), None)


def test_normalize_time() -> None:
    assert normalize_time("15:00:00") == "15:00"
    assert normalize_time(" 09:30 ") == "09:30"
    assert normalize_time("") is None
    assert normalize_time(None) is None


def test_upcoming_slots() -> None:
    window = resolve_window(MONDAY, CampType.REGULAR, CampType.REGULAR, [])
    slots = upcoming_slots(window, MONDAY, horizon_days=7)

    assert {day for day, _ in slots} == {date(2026, 10, 20), date(2026, 10, 25)}
    assert len(slots) == 18
    assert slots[0] == (date(2026, 10, 20), "14:30")


def test_upcoming_slots_flexible_is_empty() -> None:
    assert upcoming_slots(FlexibleWindow(), MONDAY) == []


def test_dispatch_beyond_slot_horizon_rejected() -> None:
    window = resolve_window(MONDAY, CampType.REGULAR, CampType.REGULAR, [])
    # Sunday 29 November is the last day a 42 day horizon offers
    validate_dispatch(window, MONDAY, date(2026, 11, 29), "15:00", horizon_days=42)

    with pytest.raises(ScheduleWindowViolation) as exc_info:
        validate_dispatch(window, MONDAY, date(2026, 12, 1), "15:00", horizon_days=42)

    assert exc_info.value.details["horizon_days"] == 42
    last_offered = max(day for day, _ in upcoming_slots(window, MONDAY, 42))
    assert last_offered == date(2026, 11, 29)


def test_flexible_window_has_no_horizon() -> None:
    validate_dispatch(FlexibleWindow(), MONDAY, date(2027, 3, 2), None, horizon_days=42)
