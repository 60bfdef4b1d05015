import json
from pathlib import Path

import pytest

from conftest import make_activity, make_programme
from programme_store import (
    STORE_PATH_ENV_VAR,
    ProgrammeStore,
    load_records,
    load_store_json,
    load_store_path,
    store_from_env,
)
from test_xer_import import SAMPLE_XER


STORE_DOC = {
    "programmes": [
        {
            "id": 1,
            "projectId": 7,
            "name": "Main Works",
            "version": "1",
            "status": "accepted",
            "submissionDate": "2025-01-06",
            "plannedCompletionDate": "2025-06-30",
            "activities": [
                {"id": 10, "externalId": "A1", "name": "Excavate", "startDate": "2025-01-06",
                 "endDate": "2025-01-17", "duration": 10, "isCritical": True, "totalFloat": 0},
            ],
            "relationships": [{"id": 1, "predecessorId": 10, "successorId": 11, "type": "FS", "lag": 0}],
        },
        {
            "id": 2,
            "projectId": 8,
            "name": "Depot",
            "version": "1",
            "plannedCompletionDate": "2025-09-30",
        },
    ],
    "activities": [
        {"id": 11, "programmeId": 1, "externalId": "A2", "name": "Line", "startDate": "2025-01-20",
         "endDate": "2025-02-14", "duration": 20},
    ],
}


def test_lookups_accept_int_or_str_ids() -> None:
    store = load_records(ProgrammeStore(), STORE_DOC)

    assert store.get_programme(1) is store.get_programme("1")
    assert store.get_programme(1).name == "Main Works"
    assert store.get_programme(99) is None
    assert store.get_programme(None) is None
    assert [a.external_id for a in store.get_programme_activities(1)] == ["A1", "A2"]
    assert store.get_programme_activities(2) == []
    assert len(store.get_activity_relationships("1")) == 1


def test_programmes_by_project() -> None:
    store = load_records(ProgrammeStore(), STORE_DOC)

    assert [p.id for p in store.get_programmes_by_project(7)] == ["1"]
    assert store.get_programmes_by_project("404") == []


def test_activity_lists_are_copies() -> None:
    store = ProgrammeStore()
    store.add_programme(make_programme("1"))
    store.add_activities("1", [make_activity("A1")])

    store.get_programme_activities("1").append(make_activity("A2"))

    assert len(store.get_programme_activities("1")) == 1


def test_adding_activities_to_unknown_programme_fails() -> None:
    with pytest.raises(KeyError):
        ProgrammeStore().add_activities("9", [make_activity("A1")])


def test_top_level_activity_needs_programme_id() -> None:
    doc = {"programmes": [], "activities": [{"externalId": "A1"}]}

    with pytest.raises(ValueError, match="programmeId"):
        load_records(ProgrammeStore(), doc)


def test_load_store_json_rejects_non_object(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(ValueError, match="JSON object"):
        load_store_json(path)


def test_load_store_path_reads_directory_of_json_and_xer(tmp_path: Path) -> None:
    (tmp_path / "programmes.json").write_text(json.dumps(STORE_DOC), encoding="utf-8")
    (tmp_path / "tunnel_rev2.xer").write_text(SAMPLE_XER, encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    store = load_store_path(tmp_path)

    assert len(store) == 3
    assert store.get_programme("tunnel_rev2").name == "TUNNEL"
    assert len(store.get_programme_activities("tunnel_rev2")) == 3


def test_store_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(STORE_PATH_ENV_VAR, raising=False)
    assert len(store_from_env()) == 0

    path = tmp_path / "programmes.json"
    path.write_text(json.dumps(STORE_DOC), encoding="utf-8")
    monkeypatch.setenv(STORE_PATH_ENV_VAR, str(path))

    assert len(store_from_env()) == 2
