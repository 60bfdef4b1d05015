import pandas as pd
import pytest

from programme_model import (
    ACTIVITY_FRAME_COLUMNS,
    activities_frame,
    activity_from_record,
    normalize_id,
    programme_from_record,
    relationship_from_record,
    to_bool,
    to_timestamp,
)


def test_activity_record_accepts_camel_and_snake_case() -> None:
    camel = activity_from_record(
        {
            "id": 11,
            "programmeId": 3,
            "externalId": "A1000",
            "name": "Excavate shaft",
            "startDate": "2025-01-06T08:00:00Z",
            "endDate": "2025-01-17T17:00:00Z",
            "duration": 10,
            "isCritical": True,
            "totalFloat": None,
            "milestone": False,
        }
    )
    snake = activity_from_record(
        {
            "id": "11",
            "programme_id": "3",
            "external_id": "A1000",
            "name": "Excavate shaft",
            "start_date": "2025-01-06 08:00",
            "end_date": "2025-01-17 17:00",
            "duration": "10",
            "is_critical": "true",
        }
    )

    assert camel == snake
    assert camel.programme_id == "3"
    assert camel.start_date == pd.Timestamp("2025-01-06 08:00")
    assert camel.total_float is None


def test_activity_without_external_id_is_rejected() -> None:
    with pytest.raises(ValueError, match="externalId"):
        activity_from_record({"id": 1, "name": "No key"})


def test_activity_inherits_programme_id() -> None:
    activity = activity_from_record({"externalId": "A1"}, programme_id="9")

    assert activity.programme_id == "9"
    assert activity.id == "A1"


def test_programme_record_normalizes_fields() -> None:
    programme = programme_from_record(
        {
            "id": 4,
            "projectId": 1,
            "name": " Main Works ",
            "version": 2,
            "submissionDate": "2025-01-06",
            "status": "Accepted",
            "plannedCompletionDate": "2025-06-30",
            "fileType": "XER",
        }
    )

    assert programme.id == "4"
    assert programme.project_id == "1"
    assert programme.name == "Main Works"
    assert programme.version == "2"
    assert programme.status == "accepted"
    assert programme.file_type == "xer"
    assert programme.to_dict()["plannedCompletionDate"] == "2025-06-30T00:00:00"


def test_programme_record_requires_id() -> None:
    with pytest.raises(ValueError, match="id"):
        programme_from_record({"name": "Anonymous"})


@pytest.mark.parametrize(
    ("value", "expected"),
    [(12, "12"), (12.0, "12"), ("12.0", "12.0"), (" A-7 ", "A-7"), (None, None), ("", None), ("nan", None), (float("nan"), None)],
)
def test_normalize_id(value, expected) -> None:
    assert normalize_id(value) == expected


def test_to_timestamp_converts_offsets_to_utc() -> None:
    assert to_timestamp("2025-01-01T02:00:00+02:00") == pd.Timestamp("2025-01-01 00:00:00")
    assert to_timestamp("not a date") is None
    assert to_timestamp("") is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [(True, True), ("Y", True), ("yes", True), (1, True), (0, False), ("false", False), (None, False)],
)
def test_to_bool(value, expected) -> None:
    assert to_bool(value) is expected


def test_relationship_defaults_and_validation() -> None:
    rel = relationship_from_record({"predecessorId": 1, "successorId": 2})
    assert (rel.type, rel.lag, rel.id) == ("FS", 0.0, "1->2")

    with pytest.raises(ValueError, match="relationship type"):
        relationship_from_record({"predecessorId": 1, "successorId": 2, "type": "XX"})


def test_empty_activities_frame_keeps_columns() -> None:
    df = activities_frame([])

    assert list(df.columns) == ACTIVITY_FRAME_COLUMNS + ["_pos"]
    assert df.empty
