"""Dispatch schedule windows.

Transfers out of an induction camp, and regular-to-exit transfers, may be
dispatched at any time. Everything else follows the seasonal policy whose
month-day range contains the reference date, or the built-in default policy.
All functions here are pure: the reference date and policies are passed in.
"""

from __future__ import annotations

from datetime import date, timedelta

from camp_transfers.errors import ScheduleWindowViolation
from camp_transfers.models import (
    CampType,
    ConstrainedWindow,
    FlexibleWindow,
    SchedulePolicy,
    ScheduleWindow,
)

WEEKDAYS = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

DEFAULT_POLICY = SchedulePolicy(
    id="default",
    season_name="Default",
    start_date="01-01",
    end_date="12-31",
    allowed_days=["Tuesday", "Sunday"],
    allowed_time_slots=[
        "14:30",
        "15:00",
        "15:30",
        "16:00",
        "16:30",
        "17:00",
        "17:30",
        "18:00",
        "18:30",
    ],
)

FLEXIBLE_ROUTES = frozenset(
    {
        (CampType.INDUCTION, CampType.REGULAR),
        (CampType.INDUCTION, CampType.EXIT),
        (CampType.REGULAR, CampType.EXIT),
    }
)


def is_flexible_route(source_type: CampType, target_type: CampType) -> bool:
    return (source_type, target_type) in FLEXIBLE_ROUTES


def _covers(policy: SchedulePolicy, month_day: str) -> bool:
    start, end = policy.start_month_day, policy.end_month_day
    if start <= end:
        return start <= month_day <= end
    # Wraps the year end, e.g. 12-01 to 02-28
    return month_day >= start or month_day <= end


def select_policy(as_of: date, policies: list[SchedulePolicy]) -> SchedulePolicy:
    """Return the first active policy covering ``as_of``, else the default."""
    month_day = as_of.strftime("%m-%d")
    for policy in policies:
        if policy.is_active and _covers(policy, month_day):
            return policy
    return DEFAULT_POLICY


def resolve_window(
    as_of: date,
    source_type: CampType,
    target_type: CampType,
    policies: list[SchedulePolicy],
) -> ScheduleWindow:
    if is_flexible_route(source_type, target_type):
        return FlexibleWindow()
    policy = select_policy(as_of, policies)
    return ConstrainedWindow(
        season_name=policy.season_name,
        allowed_days=list(policy.allowed_days) or list(DEFAULT_POLICY.allowed_days),
        allowed_time_slots=list(policy.allowed_time_slots)
        or list(DEFAULT_POLICY.allowed_time_slots),
    )


def normalize_time(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()[:5]


def validate_dispatch(
    window: ScheduleWindow,
    as_of: date,
    dispatch_date: date,
    dispatch_time: str | None,
    horizon_days: int | None = None,
) -> None:
    """Raise ``ScheduleWindowViolation`` if the dispatch slot is not allowed.

    With ``horizon_days`` set, constrained windows only accept dates that
    ``upcoming_slots`` would offer for the same horizon.
    """
    if dispatch_date < as_of:
        raise ScheduleWindowViolation(
            f"Dispatch date {dispatch_date.isoformat()} is in the past",
            scheduled_dispatch_date=dispatch_date.isoformat(),
            as_of=as_of.isoformat(),
        )
    if isinstance(window, FlexibleWindow):
        return

    horizon_end = None if horizon_days is None else as_of + timedelta(horizon_days)
    if horizon_end is not None and dispatch_date >= horizon_end:
        raise ScheduleWindowViolation(
            f"Dispatch date {dispatch_date.isoformat()} is more than "
            f"{horizon_days} days ahead",
            scheduled_dispatch_date=dispatch_date.isoformat(),
            as_of=as_of.isoformat(),
            horizon_days=horizon_days,
        )

    day_name = WEEKDAYS[dispatch_date.weekday()]
    if day_name not in window.allowed_days:
        raise ScheduleWindowViolation(
            f"Transfers under the {window.season_name} policy can only be "
            f"dispatched on {', '.join(window.allowed_days)}; "
            f"{dispatch_date.isoformat()} is a {day_name}",
            season_name=window.season_name,
            allowed_days=window.allowed_days,
            scheduled_dispatch_date=dispatch_date.isoformat(),
        )

    slot = normalize_time(dispatch_time)
    if slot not in window.allowed_time_slots:
        raise ScheduleWindowViolation(
            f"Dispatch time {dispatch_time!r} is not an allowed slot for the "
            f"{window.season_name} policy",
            season_name=window.season_name,
            allowed_time_slots=window.allowed_time_slots,
            scheduled_dispatch_time=dispatch_time,
        )


def upcoming_slots(
    window: ScheduleWindow, as_of: date, horizon_days: int = 42
) -> list[tuple[date, str]]:
    """Bookable (date, time) slots from ``as_of`` over the horizon.

    Flexible windows have no fixed slots and yield an empty list.
    """
    if isinstance(window, FlexibleWindow):
        return []
    slots = []
    for offset in range(horizon_days):
        day = as_of + timedelta(days=offset)
        if WEEKDAYS[day.weekday()] in window.allowed_days:
            slots.extend((day, time) for time in window.allowed_time_slots)
    return slots
