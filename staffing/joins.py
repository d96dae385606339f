"""
Relational joins over flat collections.

Each builder indexes its inputs once and resolves references through dict
lookups, so cost grows with collection size rather than with the number of
entity pairs. References to records that are not there (deleted since the
snapshot, or never existed) are logged and skipped.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime

from staffing.bulk import BulkDataset
from staffing.enrichment import (
    enrich_mission,
    mission_deadline,
    priority_info,
    sector_summary,
    team_info,
    timeslot_summary,
    timing_info,
    volunteer_summary,
)
from staffing.models import Assignment, Mission, Sector, Timeslot, Volunteer
from staffing.views import (
    EnrichedAssignment,
    SectorAssignment,
    SectorView,
    SectorVolunteer,
    TimeslotGroup,
    VolunteerMissionsView,
    VolunteerSummary,
    VolunteerTimeslot,
    VolunteerTimeslotsView,
    VolunteerView,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)

UNKNOWN_SECTOR_NAME = "Unknown sector"
UNDEFINED_STATUS = "Undefined"


def timeslot_sort_key(timeslot: Timeslot) -> tuple[bool, datetime, str]:
    """Start date ascending, undated last, name breaks ties."""
    return (
        timeslot.date_start is None,
        timeslot.date_start or _EPOCH,
        timeslot.name,
    )


def _resolve_timeslots(
    assignment: Assignment, timeslots_by_id: Mapping[str, Timeslot]
) -> list[Timeslot]:
    resolved = []
    for timeslot_id in assignment.timeslot_ids:
        timeslot = timeslots_by_id.get(timeslot_id)
        if timeslot is None:
            logger.warning(
                "assignment %s references missing timeslot %s",
                assignment.id,
                timeslot_id,
            )
            continue
        resolved.append(timeslot)
    return sorted(resolved, key=timeslot_sort_key)


def effective_sector_ids(
    assignment: Assignment, timeslots: Iterable[Timeslot]
) -> list[str]:
    """
    Sector ids of an assignment. The timeslots' own sector references win;
    the assignment's copy is only used when none of them has one.
    """
    ids: list[str] = []
    for timeslot in timeslots:
        for sector_id in timeslot.sector_ids:
            if sector_id not in ids:
                ids.append(sector_id)
    return ids or list(assignment.sector_ids)


# sector-centric


def sector_centric_view(sector: Sector, dataset: BulkDataset) -> SectorView:
    sector_timeslots = sorted(
        (t for t in dataset.timeslots if sector.id in t.sector_ids),
        key=timeslot_sort_key,
    )
    sector_timeslot_ids = {t.id for t in sector_timeslots}

    sector_assignments = [
        a
        for a in dataset.assignments
        if not sector_timeslot_ids.isdisjoint(a.timeslot_ids)
    ]

    # candidate volunteers, in order of first appearance
    candidate_ids = dict.fromkeys(
        vid for a in sector_assignments for vid in a.volunteer_ids
    )
    volunteers: dict[str, Volunteer] = {}
    for volunteer_id in candidate_ids:
        volunteer = dataset.volunteers_by_id.get(volunteer_id)
        if volunteer is None:
            logger.warning(
                "sector %s: assignment references missing volunteer %s",
                sector.id,
                volunteer_id,
            )
            continue
        volunteers[volunteer_id] = volunteer

    assignments_by_volunteer: dict[str, list[SectorAssignment]] = {
        vid: [] for vid in volunteers
    }
    members_by_timeslot: dict[str, dict[str, Volunteer]] = {
        tid: {} for tid in sector_timeslot_ids
    }
    for assignment in sector_assignments:
        present = [vid for vid in assignment.volunteer_ids if vid in volunteers]
        if not present:
            continue
        resolved = [
            dataset.timeslots_by_id[tid]
            for tid in assignment.timeslot_ids
            if tid in dataset.timeslots_by_id
        ]
        entry = SectorAssignment(
            id=assignment.id,
            status=assignment.status,
            raw_status=assignment.raw_status,
            timeslot_ids=[t.id for t in resolved],
            timeslot_names=[t.name for t in resolved],
        )
        for volunteer_id in present:
            assignments_by_volunteer[volunteer_id].append(entry)
            for timeslot_id in assignment.timeslot_ids:
                if timeslot_id in members_by_timeslot:
                    members_by_timeslot[timeslot_id].setdefault(
                        volunteer_id, volunteers[volunteer_id]
                    )

    groups = []
    for timeslot in sector_timeslots:
        members = [volunteer_summary(v) for v in members_by_timeslot[timeslot.id].values()]
        groups.append(
            TimeslotGroup(
                timeslot=timeslot_summary(timeslot, dataset.team_sizes),
                volunteers=members,
                headcount=len(members),
                missing=max(timeslot.capacity - len(members), 0),
            )
        )

    return SectorView(
        sector=sector_summary(sector),
        volunteers=[
            SectorVolunteer(
                **volunteer_summary(v).model_dump(),
                assignments=assignments_by_volunteer[vid],
            )
            for vid, v in volunteers.items()
        ],
        timeslot_groups=groups,
        total_volunteers=len(volunteers),
        total_timeslots=len(sector_timeslots),
    )


# volunteer-centric


def sector_ids_to_fetch(
    assignments: Iterable[Assignment], timeslots_by_id: Mapping[str, Timeslot]
) -> list[str]:
    ids: list[str] = []
    for assignment in assignments:
        timeslots = [
            timeslots_by_id[t] for t in assignment.timeslot_ids if t in timeslots_by_id
        ]
        for sector_id in effective_sector_ids(assignment, timeslots):
            if sector_id not in ids:
                ids.append(sector_id)
    return ids


def _next_timeslot(timeslots: list[Timeslot], now: datetime) -> Timeslot:
    for timeslot in timeslots:
        if timeslot.date_start is not None and timeslot.date_start >= now:
            return timeslot
    return timeslots[0]


def enrich_assignment(
    assignment: Assignment,
    timeslots: list[Timeslot],
    sectors_by_id: Mapping[str, Sector],
    team_sizes: Mapping[str, int],
    now: datetime,
) -> EnrichedAssignment:
    sector = None
    for sector_id in effective_sector_ids(assignment, timeslots):
        sector = sectors_by_id.get(sector_id)
        if sector is not None:
            break

    next_slot = _next_timeslot(timeslots, now)
    return EnrichedAssignment(
        id=assignment.id,
        status=assignment.status,
        raw_status=assignment.raw_status,
        sector=sector_summary(sector) if sector else None,
        timeslots=[timeslot_summary(t, team_sizes) for t in timeslots],
        next_timeslot=timeslot_summary(next_slot, team_sizes),
        timing=timing_info(next_slot.date_start, now, next_slot.date_end),
        team=team_info((t.id for t in timeslots), team_sizes),
        priority=priority_info(assignment.priority),
    )


def volunteer_centric_view(
    volunteer: Volunteer,
    assignments: Iterable[Assignment],
    timeslots_by_id: Mapping[str, Timeslot],
    sectors_by_id: Mapping[str, Sector],
    team_sizes: Mapping[str, int],
    now: datetime,
    *,
    dropped_references: int = 0,
) -> VolunteerView:
    enriched = []
    for assignment in assignments:
        timeslots = _resolve_timeslots(assignment, timeslots_by_id)
        if not timeslots:
            logger.warning(
                "volunteer %s: assignment %s has no existing timeslot, skipped",
                volunteer.id,
                assignment.id,
            )
            continue
        enriched.append(
            (
                timeslot_sort_key(_next_timeslot(timeslots, now)),
                enrich_assignment(
                    assignment, timeslots, sectors_by_id, team_sizes, now
                ),
            )
        )
    enriched.sort(key=lambda pair: pair[0])

    return VolunteerView(
        volunteer=volunteer_summary(volunteer),
        assignments=[item for _, item in enriched],
        mission_ids=volunteer.mission_ids,
        dropped_references=dropped_references,
    )


# volunteer timeslots, looked up by e-mail


def find_volunteer_by_email(dataset: BulkDataset, email: str) -> Volunteer | None:
    wanted = email.strip().casefold()
    if not wanted:
        return None
    for volunteer in dataset.volunteers:
        if volunteer.email and volunteer.email.casefold() == wanted:
            return volunteer
    return None


def volunteer_timeslot_listing(
    volunteer: Volunteer,
    dataset: BulkDataset,
    sectors_by_id: Mapping[str, Sector],
) -> VolunteerTimeslotsView:
    entries: list[tuple[Timeslot, VolunteerTimeslot]] = []
    for assignment in dataset.assignments:
        if volunteer.id not in assignment.volunteer_ids:
            continue
        for timeslot in _resolve_timeslots(assignment, dataset.timeslots_by_id):
            sector = next(
                (sectors_by_id[s] for s in timeslot.sector_ids if s in sectors_by_id),
                None,
            )
            entries.append(
                (
                    timeslot,
                    VolunteerTimeslot(
                        id=timeslot.id,
                        name=timeslot.name,
                        date_start=timeslot.date_start,
                        date_end=timeslot.date_end,
                        sector_name=sector.name if sector else UNKNOWN_SECTOR_NAME,
                        status=assignment.raw_status or UNDEFINED_STATUS,
                        role=assignment.role,
                        capacity=timeslot.capacity,
                        current_volunteers=dataset.team_sizes.get(timeslot.id, 0),
                        assignment_id=assignment.id,
                    ),
                )
            )
    entries.sort(key=lambda pair: timeslot_sort_key(pair[0]))
    return VolunteerTimeslotsView(
        volunteer=volunteer_summary(volunteer),
        timeslots=[entry for _, entry in entries],
    )


def listing_sector_ids(volunteer: Volunteer, dataset: BulkDataset) -> list[str]:
    ids: list[str] = []
    for assignment in dataset.assignments:
        if volunteer.id not in assignment.volunteer_ids:
            continue
        for timeslot_id in assignment.timeslot_ids:
            timeslot = dataset.timeslots_by_id.get(timeslot_id)
            if timeslot is None:
                continue
            for sector_id in timeslot.sector_ids:
                if sector_id not in ids:
                    ids.append(sector_id)
    return ids


# missions


def missions_view(
    volunteer: VolunteerSummary,
    missions: Iterable[Mission],
    now: datetime,
    *,
    dropped_references: int = 0,
) -> VolunteerMissionsView:
    ordered = sorted(
        missions,
        key=lambda m: (
            mission_deadline(m) is None,
            mission_deadline(m) or _EPOCH,
            m.name,
        ),
    )
    return VolunteerMissionsView(
        volunteer=volunteer,
        missions=[enrich_mission(m, now) for m in ordered],
        dropped_references=dropped_references,
    )
