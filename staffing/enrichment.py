"""
Derived, read-only fields for joined records.

Every function here is pure: the current time is an argument, nothing is
fetched, and inputs are not modified. Same inputs, same output.
"""

import math
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta

from staffing.models import Mission, Sector, Timeslot, Volunteer
from staffing.views import (
    AggregateStats,
    DeadlineInfo,
    EnrichedMission,
    PriorityInfo,
    SectorSummary,
    TeamInfo,
    TimeslotSummary,
    TimingInfo,
    VolunteerSummary,
)

DAY = timedelta(days=1)
HOUR = timedelta(hours=1)

HIGH_PRIORITIES = frozenset({"high", "haute"})
MEDIUM_PRIORITIES = frozenset({"medium", "moyenne"})


def _ceil_units(delta: timedelta, unit: timedelta) -> int:
    return math.ceil(delta / unit)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def timing_info(
    start: datetime | None, now: datetime, end: datetime | None = None
) -> TimingInfo | None:
    if start is None:
        return None
    days = _ceil_units(start - now, DAY)
    return TimingInfo(
        days_until_start=days,
        hours_until_start=_ceil_units(start - now, HOUR),
        is_today=days == 0,
        is_tomorrow=days == 1,
        is_this_week=0 <= days <= 7,
        is_past=days < 0,
        is_upcoming=days > 0,
        start_date=start,
        end_date=end,
    )


def deadline_info(deadline: datetime | None, now: datetime) -> DeadlineInfo | None:
    if deadline is None:
        return None
    days = _ceil_units(deadline - now, DAY)
    return DeadlineInfo(
        days_until_deadline=days,
        is_overdue=days < 0,
        is_due_today=days == 0,
        is_due_tomorrow=days == 1,
        is_due_this_week=0 <= days <= 7,
        is_urgent=0 <= days <= 2,
        deadline=deadline,
    )


def team_info(timeslot_ids: Iterable[str], team_sizes: Mapping[str, int]) -> TeamInfo:
    """Largest team among the given timeslots."""
    total = max((team_sizes.get(t, 0) for t in timeslot_ids), default=0)
    return TeamInfo(total_volunteers=total, is_team_work=total > 1)


def priority_info(priority: str | None) -> PriorityInfo:
    level = priority or "normal"
    key = level.casefold()
    return PriorityInfo(
        level=level,
        is_high=key in HIGH_PRIORITIES,
        is_medium=key in MEDIUM_PRIORITIES,
    )


def assigned_count(sector: Sector) -> int:
    return max(sector.total_volunteers - sector.total_needs, 0)


def sector_stats(sectors: Iterable[Sector]) -> AggregateStats:
    """
    Staffing figures over a set of sectors.

    ``totalVolunteers`` is a sector's target headcount and ``totalNeeds`` the
    part of it still unfilled.
    """
    sectors = list(sectors)
    needed = sum(s.total_volunteers for s in sectors)
    missing = sum(s.total_needs for s in sectors)
    assigned = sum(assigned_count(s) for s in sectors)
    rate = round_half_up(100 * assigned / needed) if needed else 0
    return AggregateStats(
        total_sectors=len(sectors),
        total_needed=needed,
        total_assigned=assigned,
        total_missing=missing,
        completion_rate=rate,
        sectors_with_shortage=sum(1 for s in sectors if s.total_needs != 0),
    )


def volunteer_summary(volunteer: Volunteer) -> VolunteerSummary:
    return VolunteerSummary(
        id=volunteer.id,
        name=volunteer.name,
        surname=volunteer.surname,
        email=volunteer.email,
        phone=volunteer.phone,
        role=volunteer.role,
        status=volunteer.status,
    )


def sector_summary(sector: Sector) -> SectorSummary:
    return SectorSummary(
        id=sector.id,
        name=sector.name,
        description=sector.description,
        color=sector.color,
        referent_ids=sector.referent_ids,
        total_volunteers=sector.total_volunteers,
        total_needs=sector.total_needs,
        total_assigned=assigned_count(sector),
    )


def timeslot_summary(
    timeslot: Timeslot, team_sizes: Mapping[str, int] | None = None
) -> TimeslotSummary:
    return TimeslotSummary(
        id=timeslot.id,
        name=timeslot.name,
        date_start=timeslot.date_start,
        date_end=timeslot.date_end,
        capacity=timeslot.capacity,
        team_size=(team_sizes or {}).get(timeslot.id, 0),
    )


def mission_deadline(mission: Mission) -> datetime | None:
    return mission.date_end or mission.date_start


def enrich_mission(mission: Mission, now: datetime) -> EnrichedMission:
    return EnrichedMission(
        id=mission.id,
        name=mission.name,
        description=mission.description,
        date_start=mission.date_start,
        date_end=mission.date_end,
        place=mission.place,
        status=mission.status,
        priority=priority_info(mission.priority),
        deadline=deadline_info(mission_deadline(mission), now),
        people_needed=mission.people_needed,
        people_assigned=len(mission.assigned_member_ids),
    )
