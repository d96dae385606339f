"""
Payloads returned by the aggregation service. Serialized with camelCase keys.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from staffing.models import AssignmentStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VolunteerSummary(CamelModel):
    id: str
    name: str | None = None
    surname: str | None = None
    email: str | None = None
    phone: str | None = None
    role: str | None = None
    status: str | None = None


class SectorSummary(CamelModel):
    id: str
    name: str
    description: str | None = None
    color: str
    referent_ids: list[str] = Field(default_factory=list)
    total_volunteers: int = 0
    total_needs: int = 0
    total_assigned: int = 0


class TimeslotSummary(CamelModel):
    id: str
    name: str
    date_start: datetime | None = None
    date_end: datetime | None = None
    capacity: int = 0
    team_size: int = 0


class TimingInfo(CamelModel):
    days_until_start: int
    hours_until_start: int
    is_today: bool
    is_tomorrow: bool
    is_this_week: bool
    is_past: bool
    is_upcoming: bool
    start_date: datetime
    end_date: datetime | None = None


class DeadlineInfo(CamelModel):
    days_until_deadline: int
    is_overdue: bool
    is_due_today: bool
    is_due_tomorrow: bool
    is_due_this_week: bool
    is_urgent: bool
    deadline: datetime


class TeamInfo(CamelModel):
    total_volunteers: int
    is_team_work: bool


class PriorityInfo(CamelModel):
    level: str
    is_high: bool
    is_medium: bool


class EnrichedAssignment(CamelModel):
    id: str
    status: AssignmentStatus | None = None
    raw_status: str | None = None
    sector: SectorSummary | None = None
    timeslots: list[TimeslotSummary] = Field(default_factory=list)
    next_timeslot: TimeslotSummary | None = None
    timing: TimingInfo | None = None
    team: TeamInfo
    priority: PriorityInfo


class VolunteerView(CamelModel):
    volunteer: VolunteerSummary
    assignments: list[EnrichedAssignment] = Field(default_factory=list)
    mission_ids: list[str] = Field(default_factory=list)
    dropped_references: int = 0


class SectorAssignment(CamelModel):
    id: str
    status: AssignmentStatus | None = None
    raw_status: str | None = None
    timeslot_ids: list[str] = Field(default_factory=list)
    timeslot_names: list[str] = Field(default_factory=list)


class SectorVolunteer(VolunteerSummary):
    assignments: list[SectorAssignment] = Field(default_factory=list)


class TimeslotGroup(CamelModel):
    timeslot: TimeslotSummary
    volunteers: list[VolunteerSummary] = Field(default_factory=list)
    headcount: int = 0
    missing: int = 0


class SectorView(CamelModel):
    sector: SectorSummary
    volunteers: list[SectorVolunteer] = Field(default_factory=list)
    timeslot_groups: list[TimeslotGroup] = Field(default_factory=list)
    total_volunteers: int = 0
    total_timeslots: int = 0


class AggregateStats(CamelModel):
    total_sectors: int = 0
    total_needed: int = 0
    total_assigned: int = 0
    total_missing: int = 0
    completion_rate: int = 0
    sectors_with_shortage: int = 0


class VolunteerTimeslot(CamelModel):
    id: str
    name: str
    date_start: datetime | None = None
    date_end: datetime | None = None
    sector_name: str
    status: str
    role: str | None = None
    capacity: int = 0
    current_volunteers: int = 0
    assignment_id: str


class VolunteerTimeslotsView(CamelModel):
    volunteer: VolunteerSummary
    timeslots: list[VolunteerTimeslot] = Field(default_factory=list)


class EnrichedMission(CamelModel):
    id: str
    name: str
    description: str | None = None
    date_start: datetime | None = None
    date_end: datetime | None = None
    place: str | None = None
    status: str | None = None
    priority: PriorityInfo
    deadline: DeadlineInfo | None = None
    people_needed: int = 0
    people_assigned: int = 0


class VolunteerMissionsView(CamelModel):
    volunteer: VolunteerSummary
    missions: list[EnrichedMission] = Field(default_factory=list)
    dropped_references: int = 0


class CacheDiagnostics(CamelModel):
    result_cache_size: int
    in_flight: int
    bulk_age_seconds: float | None = None
    bulk_refreshing: bool = False
