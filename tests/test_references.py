from datetime import UTC, datetime

import pytest

from staffing.errors import InvalidReference
from staffing.models import Assignment, RemoteRecord, Volunteer
from staffing.references import (
    check_record_id,
    coerce_count,
    first_truthy,
    parse_timestamp,
    split_valid_ids,
    to_id_list,
)

from conftest import rec


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, []),
        ("", []),
        ("recA", ["recA"]),
        (" recA ", ["recA"]),
        (["recA"], ["recA"]),
        (["recA", "recB", "recA"], ["recA", "recB"]),
        (["recA", None, 3, ""], ["recA"]),
        (42, []),
    ],
)
def test_to_id_list_normalizes_every_encoding(value, expected) -> None:
    assert to_id_list(value) == expected


def test_first_truthy_skips_empty_aliases() -> None:
    fields = {"affectations": [], "assignments": None, "assignedTxands": ["recX"]}
    assert first_truthy(fields, ("affectations", "assignments", "assignedTxands")) == [
        "recX"
    ]
    assert first_truthy({}, ("a", "b")) is None


def test_check_record_id() -> None:
    assert check_record_id(rec("A1")) == rec("A1")
    with pytest.raises(InvalidReference):
        check_record_id("badid")
    with pytest.raises(InvalidReference):
        check_record_id(None)


def test_split_valid_ids_drops_malformed_ids() -> None:
    valid, invalid = split_valid_ids(["badid", rec("A1"), 7])
    assert valid == [rec("A1")]
    assert invalid == ["badid", 7]


def test_split_valid_ids_honours_custom_pattern() -> None:
    valid, invalid = split_valid_ids(["A1", "nope!"], r"^[A-Z][0-9]+$")
    assert valid == ["A1"]
    assert invalid == ["nope!"]


@pytest.mark.parametrize(
    "value, expected",
    [
        (5, 5),
        (2.9, 2),
        ("4", 4),
        (" 3 ", 3),
        ([7], 7),
        (["2"], 2),
        ([1, 2], 0),
        ("lots", 0),
        (None, 0),
        (True, 0),
        (float("nan"), 0),
    ],
)
def test_coerce_count(value, expected) -> None:
    assert coerce_count(value) == expected


def test_parse_timestamp_variants() -> None:
    assert parse_timestamp("2025-01-10T18:00:00.000Z") == datetime(
        2025, 1, 10, 18, tzinfo=UTC
    )
    assert parse_timestamp("2025-01-10") == datetime(2025, 1, 10, tzinfo=UTC)
    assert parse_timestamp("2025-01-10T20:00:00+02:00") == datetime(
        2025, 1, 10, 18, tzinfo=UTC
    )
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None


def test_scalar_and_array_fk_build_identical_entities() -> None:
    as_array = Assignment.from_record(
        RemoteRecord(id="a", fields={"volunteer": ["v"], "txand": ["t"]})
    )
    as_scalar = Assignment.from_record(
        RemoteRecord(id="a", fields={"volunteer": "v", "txand": "t"})
    )
    assert as_array == as_scalar


def test_volunteer_aliases_resolve_once_at_ingestion() -> None:
    volunteer = Volunteer.from_record(
        RemoteRecord(
            id="v",
            fields={
                "firstname": "Bruno",
                "assignments": ["recA"],
                "tasks": "recM",
            },
        )
    )
    assert volunteer.name == "Bruno"
    assert volunteer.assignment_ids == ["recA"]
    assert volunteer.mission_ids == ["recM"]
