import logging

import pytest

from staffing.bulk import BulkDataset
from staffing.database import InMemoryRecordStore
from staffing.enrichment import volunteer_summary
from staffing.joins import (
    effective_sector_ids,
    find_volunteer_by_email,
    listing_sector_ids,
    missions_view,
    sector_centric_view,
    volunteer_centric_view,
    volunteer_timeslot_listing,
)
from staffing.models import Assignment, Mission, Sector, Timeslot, Volunteer
from staffing.views import SectorVolunteer

from conftest import (
    A1,
    A2,
    A3,
    NOW,
    S1,
    S2,
    T1,
    T2,
    T3,
    T4,
    V1,
    V2,
    V3,
    V4,
    M1,
    M2,
    rec,
    seed_festival,
)


@pytest.fixture
def seeded() -> InMemoryRecordStore:
    store = InMemoryRecordStore()
    seed_festival(store)
    return store


@pytest.fixture
def dataset(seeded) -> BulkDataset:
    return BulkDataset(
        timeslots=[Timeslot.from_record(r) for r in seeded.all("timeslots")],
        assignments=[Assignment.from_record(r) for r in seeded.all("assignments")],
        volunteers=[Volunteer.from_record(r) for r in seeded.all("volunteers")],
    )


@pytest.fixture
def sectors(seeded) -> dict[str, Sector]:
    return {r.id: Sector.from_record(r) for r in seeded.all("sectors")}


def test_sector_view_groups_volunteers_by_timeslot(dataset, sectors) -> None:
    view = sector_centric_view(sectors[S1], dataset)

    assert [v.id for v in view.volunteers] == [V1, V2]
    assert view.total_volunteers == 2
    assert view.total_timeslots == 3

    alice = view.volunteers[0]
    assert isinstance(alice, SectorVolunteer)
    assert [a.id for a in alice.assignments] == [A1, A3]
    assert [a.timeslot_names for a in alice.assignments] == [
        ["Friday evening"],
        ["Saturday evening"],
    ]

    groups = {g.timeslot.id: g for g in view.timeslot_groups}
    assert [v.id for v in groups[T1].volunteers] == [V1, V2]
    assert [v.id for v in groups[T2].volunteers] == [V1]
    assert groups[T1].timeslot.team_size == 2
    assert groups[T1].missing == 0


def test_empty_timeslot_still_appears_with_its_shortfall(dataset, sectors) -> None:
    view = sector_centric_view(sectors[S1], dataset)

    setup = view.timeslot_groups[-1]
    assert setup.timeslot.id == T3
    assert setup.volunteers == []
    assert setup.headcount == 0
    assert setup.missing == 3


def test_timeslots_sort_by_start_with_undated_last(dataset, sectors) -> None:
    view = sector_centric_view(sectors[S1], dataset)
    assert [g.timeslot.id for g in view.timeslot_groups] == [T1, T2, T3]


def test_sector_read_through_alias_field(dataset, sectors) -> None:
    view = sector_centric_view(sectors[S2], dataset)

    assert [g.timeslot.id for g in view.timeslot_groups] == [T4]
    assert [v.id for v in view.volunteers] == [V4]
    assert view.sector.total_assigned == 4


def test_sector_view_skips_deleted_volunteer(seeded, sectors, caplog) -> None:
    seeded.put("assignments", rec("A9"), {"volunteer": rec("Vgone"), "txand": T3})
    dataset = BulkDataset(
        timeslots=[Timeslot.from_record(r) for r in seeded.all("timeslots")],
        assignments=[Assignment.from_record(r) for r in seeded.all("assignments")],
        volunteers=[Volunteer.from_record(r) for r in seeded.all("volunteers")],
    )

    with caplog.at_level(logging.WARNING, logger="staffing.joins"):
        view = sector_centric_view(sectors[S1], dataset)

    assert [v.id for v in view.volunteers] == [V1, V2]
    assert view.timeslot_groups[-1].volunteers == []
    assert "missing volunteer" in caplog.text


def test_sector_view_ignores_missing_timeslot_in_assignment(seeded, sectors) -> None:
    seeded.put(
        "assignments", rec("A9"), {"volunteer": [V3], "txand": [T3, rec("Tgone")]}
    )
    dataset = BulkDataset(
        timeslots=[Timeslot.from_record(r) for r in seeded.all("timeslots")],
        assignments=[Assignment.from_record(r) for r in seeded.all("assignments")],
        volunteers=[Volunteer.from_record(r) for r in seeded.all("volunteers")],
    )

    view = sector_centric_view(sectors[S1], dataset)

    assert [v.id for v in view.volunteers] == [V1, V2, V3]
    chloe = view.volunteers[2]
    assert [a.id for a in chloe.assignments] == [rec("A9")]
    assert chloe.assignments[0].timeslot_names == ["Setup"]
    assert chloe.assignments[0].timeslot_ids == [T3]

    groups = {g.timeslot.id: g for g in view.timeslot_groups}
    assert set(groups) == {T1, T2, T3}
    assert [v.id for v in groups[T3].volunteers] == [V3]
    assert groups[T3].headcount == 1
    assert groups[T3].missing == 2
    assert groups[T1].headcount == 2
    assert groups[T1].missing == 0


def test_sector_without_timeslots_is_an_empty_view(dataset) -> None:
    view = sector_centric_view(Sector(id=rec("S9"), name="Parking"), dataset)
    assert view.volunteers == []
    assert view.timeslot_groups == []
    assert view.sector.name == "Parking"


def test_timeslot_sector_wins_over_assignment_copy(dataset) -> None:
    stale = next(a for a in dataset.assignments if a.id == A3)
    assert stale.sector_ids == [S2]
    assert effective_sector_ids(stale, [dataset.timeslots_by_id[T2]]) == [S1]

    orphan = Timeslot(id=rec("T9"), name="No sector")
    assert effective_sector_ids(stale, [orphan]) == [S2]


def test_volunteer_view_enriches_each_assignment(dataset, sectors) -> None:
    alice = dataset.volunteers_by_id[V1]
    assignments = [a for a in dataset.assignments if a.id in (A3, A1)]

    view = volunteer_centric_view(
        alice,
        assignments,
        dataset.timeslots_by_id,
        sectors,
        dataset.team_sizes,
        NOW,
    )

    assert view.volunteer.name == "Alice"
    assert [a.id for a in view.assignments] == [A1, A3]

    friday, saturday = view.assignments
    assert friday.sector.id == S1
    assert saturday.sector.id == S1
    assert friday.timing.days_until_start == 3
    assert saturday.timing.days_until_start == 4
    assert friday.team.total_volunteers == 2
    assert friday.team.is_team_work
    assert not saturday.team.is_team_work
    assert friday.priority.level == "normal"


def test_volunteer_view_skips_assignment_without_existing_timeslot(
    dataset, sectors, caplog
) -> None:
    alice = dataset.volunteers_by_id[V1]
    broken = Assignment(id=rec("A9"), volunteer_ids=[V1], timeslot_ids=[rec("Tgone")])

    with caplog.at_level(logging.WARNING, logger="staffing.joins"):
        view = volunteer_centric_view(
            alice, [broken], dataset.timeslots_by_id, sectors, {}, NOW
        )

    assert view.assignments == []
    assert "missing timeslot" in caplog.text


def test_volunteer_view_without_sector_still_renders(dataset) -> None:
    bruno = dataset.volunteers_by_id[V2]
    a2 = next(a for a in dataset.assignments if a.id == A2)

    view = volunteer_centric_view(
        bruno, [a2], dataset.timeslots_by_id, {}, dataset.team_sizes, NOW
    )

    assert view.assignments[0].sector is None
    assert view.assignments[0].priority.is_high


def test_past_slots_fall_back_to_first_for_timing(dataset, sectors) -> None:
    alice = dataset.volunteers_by_id[V1]
    a1 = next(a for a in dataset.assignments if a.id == A1)
    later = NOW.replace(month=2)

    view = volunteer_centric_view(
        alice, [a1], dataset.timeslots_by_id, sectors, dataset.team_sizes, later
    )

    timing = view.assignments[0].timing
    assert timing.is_past
    assert view.assignments[0].next_timeslot.id == T1


def test_email_lookup_is_case_insensitive(dataset) -> None:
    assert find_volunteer_by_email(dataset, " bruno@example.ORG ").id == V2
    assert find_volunteer_by_email(dataset, "nobody@example.org") is None
    assert find_volunteer_by_email(dataset, "") is None


def test_timeslot_listing(dataset, sectors) -> None:
    alice = dataset.volunteers_by_id[V1]
    assert listing_sector_ids(alice, dataset) == [S1]

    view = volunteer_timeslot_listing(alice, dataset, sectors)

    assert [t.id for t in view.timeslots] == [T1, T2]
    assert [t.sector_name for t in view.timeslots] == ["Bar", "Bar"]
    assert view.timeslots[0].status == "Validé"
    assert view.timeslots[0].current_volunteers == 2
    assert view.timeslots[0].assignment_id == A1


def test_timeslot_listing_defaults_when_sector_unknown(dataset) -> None:
    alice = dataset.volunteers_by_id[V1]
    view = volunteer_timeslot_listing(alice, dataset, {})
    assert {t.sector_name for t in view.timeslots} == {"Unknown sector"}


def test_missions_sorted_by_deadline(seeded) -> None:
    alice = Volunteer.from_record(seeded.get("volunteers", V1))
    missions = [Mission.from_record(r) for r in seeded.all("missions")]

    view = missions_view(volunteer_summary(alice), missions, NOW)

    assert [m.id for m in view.missions] == [M2, M1]
    overdue, upcoming = view.missions
    assert overdue.deadline.is_overdue
    assert upcoming.deadline.is_due_tomorrow
    assert upcoming.priority.is_high
    assert upcoming.people_needed == 2
