"""
Records as returned by the store, and the entities built from them.

Field aliases are resolved here, once, so the joins only ever see the
canonical attribute.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, Field

from staffing.references import (
    coerce_count,
    first_truthy,
    parse_timestamp,
    text,
    to_id_list,
)

VOLUNTEER_ASSIGNMENT_ALIASES = ("affectations", "assignments", "assignedTxands")
VOLUNTEER_MISSION_ALIASES = ("missions", "tasks", "assignedTasks")
TIMESLOT_SECTOR_ALIASES = ("sector", "secteur", "pole")

DEFAULT_SECTOR_NAME = "Unnamed sector"
DEFAULT_SECTOR_COLOR = "#10b981"


class Collection(StrEnum):
    VOLUNTEERS = "volunteers"
    SECTORS = "sectors"
    TIMESLOTS = "timeslots"
    ASSIGNMENTS = "assignments"
    MISSIONS = "missions"


class RemoteRecord(BaseModel):
    id: str
    fields: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None


class AssignmentStatus(StrEnum):
    VALIDATED = "Validé"
    PENDING = "En attente"
    REFUSED = "Refusé"
    CANCELLED = "Annulé"

    @classmethod
    def parse(cls, value: Any) -> "AssignmentStatus | None":
        raw = text(value)
        if raw is None:
            return None
        return _STATUS_SPELLINGS.get(raw.casefold())


_STATUS_SPELLINGS = {
    "validé": AssignmentStatus.VALIDATED,
    "valide": AssignmentStatus.VALIDATED,
    "validated": AssignmentStatus.VALIDATED,
    "en attente": AssignmentStatus.PENDING,
    "pending": AssignmentStatus.PENDING,
    "refusé": AssignmentStatus.REFUSED,
    "refuse": AssignmentStatus.REFUSED,
    "refused": AssignmentStatus.REFUSED,
    "annulé": AssignmentStatus.CANCELLED,
    "annule": AssignmentStatus.CANCELLED,
    "cancelled": AssignmentStatus.CANCELLED,
    "canceled": AssignmentStatus.CANCELLED,
}


class Volunteer(BaseModel):
    id: str
    name: str | None = None
    surname: str | None = None
    email: str | None = None
    phone: str | None = None
    role: str | None = None
    status: str | None = None
    assignment_ids: list[str] = Field(default_factory=list)
    mission_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: RemoteRecord) -> Self:
        f = record.fields
        return cls(
            id=record.id,
            name=text(f.get("name")) or text(f.get("firstname")),
            surname=text(f.get("surname")),
            email=text(f.get("email")),
            phone=text(f.get("phone")),
            role=text(f.get("role")),
            status=text(f.get("status")),
            assignment_ids=to_id_list(
                first_truthy(f, VOLUNTEER_ASSIGNMENT_ALIASES)
            ),
            mission_ids=to_id_list(first_truthy(f, VOLUNTEER_MISSION_ALIASES)),
        )


class Sector(BaseModel):
    id: str
    name: str = DEFAULT_SECTOR_NAME
    description: str | None = None
    color: str = DEFAULT_SECTOR_COLOR
    referent_ids: list[str] = Field(default_factory=list)
    # target headcount
    total_volunteers: int = 0
    # headcount still missing
    total_needs: int = 0

    @classmethod
    def from_record(cls, record: RemoteRecord) -> Self:
        f = record.fields
        return cls(
            id=record.id,
            name=text(f.get("name")) or DEFAULT_SECTOR_NAME,
            description=text(f.get("description")),
            color=text(f.get("color")) or DEFAULT_SECTOR_COLOR,
            referent_ids=to_id_list(f.get("referent")),
            total_volunteers=coerce_count(f.get("totalVolunteers")),
            total_needs=coerce_count(f.get("totalNeeds")),
        )


class Timeslot(BaseModel):
    id: str
    name: str
    date_start: datetime | None = None
    date_end: datetime | None = None
    sector_ids: list[str] = Field(default_factory=list)
    capacity: int = 0
    details: str | None = None

    @classmethod
    def from_record(cls, record: RemoteRecord) -> Self:
        f = record.fields
        return cls(
            id=record.id,
            name=text(f.get("name")) or f"Timeslot {record.id[-6:]}",
            date_start=parse_timestamp(f.get("dateStart")),
            date_end=parse_timestamp(f.get("dateEnd")),
            sector_ids=to_id_list(first_truthy(f, TIMESLOT_SECTOR_ALIASES)),
            capacity=coerce_count(f.get("totalVolunteers")),
            details=text(f.get("details")),
        )


class Assignment(BaseModel):
    id: str
    volunteer_ids: list[str] = Field(default_factory=list)
    timeslot_ids: list[str] = Field(default_factory=list)
    sector_ids: list[str] = Field(default_factory=list)
    status: AssignmentStatus | None = None
    raw_status: str | None = None
    priority: str | None = None
    role: str | None = None

    @classmethod
    def from_record(cls, record: RemoteRecord) -> Self:
        f = record.fields
        return cls(
            id=record.id,
            volunteer_ids=to_id_list(f.get("volunteer")),
            timeslot_ids=to_id_list(f.get("txand")),
            sector_ids=to_id_list(f.get("pole")),
            status=AssignmentStatus.parse(f.get("status")),
            raw_status=text(f.get("status")),
            priority=text(f.get("priority")),
            role=text(f.get("role")),
        )


class Mission(BaseModel):
    id: str
    name: str
    description: str | None = None
    date_start: datetime | None = None
    date_end: datetime | None = None
    place: str | None = None
    priority: str | None = None
    status: str | None = None
    people_needed: int = 0
    assigned_member_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: RemoteRecord) -> Self:
        f = record.fields
        return cls(
            id=record.id,
            name=text(f.get("name")) or f"Mission {record.id[-6:]}",
            description=text(f.get("description")),
            date_start=parse_timestamp(f.get("dateStart")),
            date_end=parse_timestamp(f.get("dateEnd")),
            place=text(f.get("place")),
            priority=text(f.get("priority")),
            status=text(f.get("status")),
            people_needed=coerce_count(f.get("humanRessources")),
            assigned_member_ids=to_id_list(f.get("assignedMembers")),
        )
