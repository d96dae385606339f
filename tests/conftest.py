"""Shared fixtures: an in-memory record store seeded with a small festival."""

from datetime import UTC, datetime

import pytest

from staffing.config import Settings
from staffing.database import InMemoryRecordStore
from staffing.service import StaffingAggregator

NOW = datetime(2025, 1, 8, 12, 0, 0, tzinfo=UTC)


def rec(tag: str) -> str:
    """Build a well-formed record id, e.g. rec("V1") -> "recV1000000000000"."""
    return "rec" + tag.ljust(14, "0")


S1, S2 = rec("S1"), rec("S2")
T1, T2, T3, T4 = rec("T1"), rec("T2"), rec("T3"), rec("T4")
A1, A2, A3, A4 = rec("A1"), rec("A2"), rec("A3"), rec("A4")
V1, V2, V3, V4 = rec("V1"), rec("V2"), rec("V3"), rec("V4")
M1, M2 = rec("M1"), rec("M2")


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def seed_festival(store: InMemoryRecordStore) -> None:
    """
    S1 has T1 (Jan 10, capacity 2), T2 (Jan 11, capacity 1) and an empty T3.
    A1{V1,T1}, A2{V2,T1}, A3{V1,T2}. S2 has T4 with A4{V4,T4}.
    FK encodings are deliberately mixed between bare ids and arrays.
    """
    store.put(
        "sectors",
        S1,
        {
            "name": "Bar",
            "referent": V2,
            "totalVolunteers": 5,
            "totalNeeds": 2,
        },
    )
    store.put(
        "sectors",
        S2,
        {"name": "Entrance", "totalVolunteers": "4", "totalNeeds": [0]},
    )

    store.put(
        "timeslots",
        T1,
        {
            "name": "Friday evening",
            "dateStart": "2025-01-10T18:00:00.000Z",
            "dateEnd": "2025-01-10T23:00:00.000Z",
            "sector": [S1],
            "totalVolunteers": 2,
        },
    )
    store.put(
        "timeslots",
        T2,
        {
            "name": "Saturday evening",
            "dateStart": "2025-01-11T18:00:00.000Z",
            "sector": S1,
            "totalVolunteers": 1,
        },
    )
    store.put(
        "timeslots",
        T3,
        {"name": "Setup", "sector": [S1], "totalVolunteers": 3},
    )
    store.put(
        "timeslots",
        T4,
        {
            "name": "Doors",
            "dateStart": "2025-01-10T16:00:00.000Z",
            "secteur": [S2],
            "totalVolunteers": 2,
        },
    )

    store.put(
        "assignments",
        A1,
        {"volunteer": [V1], "txand": [T1], "pole": [S1], "status": "Validé"},
    )
    store.put(
        "assignments",
        A2,
        {"volunteer": V2, "txand": T1, "status": "En attente", "priority": "Haute"},
    )
    # stale denormalized sector on purpose; T2 says S1
    store.put(
        "assignments",
        A3,
        {"volunteer": [V1], "txand": [T2], "pole": [S2], "status": "Validé"},
    )
    store.put(
        "assignments",
        A4,
        {"volunteer": [V4], "txand": [T4], "pole": S2, "status": "Refusé"},
    )

    store.put(
        "volunteers",
        V1,
        {
            "name": "Alice",
            "surname": "Martin",
            "email": "alice@example.org",
            "affectations": [A1, A3],
            "missions": [M1, M2],
        },
    )
    store.put(
        "volunteers",
        V2,
        {"firstname": "Bruno", "email": "Bruno@Example.org", "assignments": [A2]},
    )
    store.put(
        "volunteers",
        V3,
        {"name": "Chloe", "affectations": [], "assignedTxands": ["badid", A1]},
    )
    store.put(
        "volunteers",
        V4,
        {"name": "Dmitri", "affectations": A4},
    )

    store.put(
        "missions",
        M1,
        {
            "name": "Print badges",
            "dateEnd": "2025-01-09T12:00:00.000Z",
            "priority": "Haute",
            "humanRessources": 2,
            "assignedMembers": [V1],
        },
    )
    store.put(
        "missions",
        M2,
        {"name": "Clean up", "dateEnd": "2025-01-07T12:00:00.000Z"},
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, backend="memory", log_level="DEBUG")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryRecordStore:
    store = InMemoryRecordStore()
    seed_festival(store)
    return store


@pytest.fixture
def aggregator(store, settings, clock) -> StaffingAggregator:
    return StaffingAggregator(
        store, settings=settings, now_fn=lambda: NOW, clock=clock
    )
