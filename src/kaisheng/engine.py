"""
Downtime activity engine.

Decides which downtime schedules are active at an instant and reduces them to
the single policy that gets enforced. Everything here is a pure function of
the schedules and the query instant.

Occurrences are computed in wall-clock time: a schedule's start and end
times-of-day are combined with a calendar day (and the query's tzinfo, if
any). A schedule whose end time-of-day is before its start time-of-day runs
into the next day. Weekday recurrence applies to the day an occurrence starts,
so a Friday 22:00-06:00 window is still active at 01:00 on Saturday.
"""

from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, Sequence

from kaisheng.schema import DowntimePolicy, DowntimeSchedule
from kaisheng.utils.time import weekday_name

LOOKAHEAD_DAYS = 8


def occurrence(
    schedule: DowntimeSchedule, day: date, tz: tzinfo | None = None
) -> tuple[datetime, datetime]:
    """Returns the (start, end) of the occurrence that starts on ``day``."""
    start = datetime.combine(day, schedule.start_time, tzinfo=tz)
    end = datetime.combine(day, schedule.end_time, tzinfo=tz)
    if schedule.crosses_midnight:
        end += timedelta(days=1)
    return start, end


def starts_on(schedule: DowntimeSchedule, day: date) -> bool:
    """Non-recurring schedules start every day; recurring ones on their listed weekdays."""
    if not schedule.is_recurring:
        return True
    return weekday_name(day) in schedule.recurring_days


def current_occurrence(
    schedule: DowntimeSchedule, at: datetime
) -> tuple[datetime, datetime] | None:
    """Returns the occurrence containing ``at`` (half-open), or None."""
    if not schedule.enabled:
        return None

    # Yesterday's occurrence may still be running if it crosses midnight.
    for offset in (0, 1):
        day = at.date() - timedelta(days=offset)
        if not starts_on(schedule, day):
            continue
        start, end = occurrence(schedule, day, at.tzinfo)
        if start <= at < end:
            return start, end
    return None


def is_schedule_active(schedule: DowntimeSchedule, at: datetime) -> bool:
    return current_occurrence(schedule, at) is not None


def active_schedules(
    schedules: Iterable[DowntimeSchedule], at: datetime
) -> list[DowntimeSchedule]:
    return [s for s in schedules if is_schedule_active(s, at)]


def restrictiveness(schedule: DowntimeSchedule) -> tuple[bool, int]:
    """Device-wide blocks outrank partial ones, then more blocked apps wins."""
    return schedule.block_entire_device, len(schedule.blocked_apps)


def most_restrictive(
    schedules: Sequence[DowntimeSchedule],
) -> DowntimeSchedule | None:
    # max() keeps the first of equal keys, so ties go to input order.
    if not schedules:
        return None
    return max(schedules, key=restrictiveness)


def resolve_policy(
    schedules: Iterable[DowntimeSchedule], at: datetime | None = None
) -> DowntimePolicy:
    """Resolves every active schedule at ``at`` into one enforced policy."""
    if at is None:
        at = datetime.now()

    active = active_schedules(schedules, at)
    winner = most_restrictive(active)
    ends_at = None
    if winner is not None:
        _, ends_at = current_occurrence(winner, at)

    return DowntimePolicy(
        at=at, active_schedules=active, schedule=winner, ends_at=ends_at
    )


def is_app_blocked(
    policy: DowntimePolicy, app_name: str, critical_apps: Iterable[str] = ()
) -> bool:
    """Checks whether ``app_name`` is blocked under ``policy``."""
    if not policy.in_downtime:
        return False

    name = app_name.casefold()
    if policy.block_entire_device:
        return name not in {a.casefold() for a in critical_apps}
    return name in {a.casefold() for a in policy.blocked_apps}


def next_start(
    schedules: Iterable[DowntimeSchedule], at: datetime | None = None
) -> tuple[DowntimeSchedule, datetime] | None:
    """Finds the earliest occurrence starting strictly after ``at``."""
    if at is None:
        at = datetime.now()

    best: tuple[DowntimeSchedule, datetime] | None = None
    for schedule in schedules:
        if not schedule.enabled or schedule.start_time == schedule.end_time:
            continue
        for offset in range(LOOKAHEAD_DAYS):
            day = at.date() + timedelta(days=offset)
            if not starts_on(schedule, day):
                continue
            start, _ = occurrence(schedule, day, at.tzinfo)
            if start > at:
                if best is None or start < best[1]:
                    best = (schedule, start)
                break
    return best
