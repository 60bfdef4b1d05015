from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any, Iterable, Mapping

from analytics_logging import get_logger
from programme_model import (
    Activity,
    ActivityRelationship,
    Programme,
    activity_from_record,
    normalize_id,
    programme_from_record,
    relationship_from_record,
)
import xer_import as xi


STORE_PATH_ENV_VAR = "PROGRAMME_STORE_PATH"


class ProgrammeStore:
    """
    In-memory programme repository.

    Readers get copies of the stored lists, so a comparison never sees a list that is
    being appended to by a concurrent loader.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._programmes: dict[str, Programme] = {}
        self._activities: dict[str, list[Activity]] = {}
        self._relationships: dict[str, list[ActivityRelationship]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._programmes)

    def add_programme(self, programme: Programme) -> Programme:
        with self._lock:
            self._programmes[programme.id] = programme
            self._activities.setdefault(programme.id, [])
            self._relationships.setdefault(programme.id, [])
        return programme

    def add_activities(self, programme_id: Any, activities: Iterable[Activity]) -> None:
        key = normalize_id(programme_id)
        with self._lock:
            if key not in self._programmes:
                raise KeyError(f"Programme {programme_id!r} is not in the store.")
            self._activities[key].extend(activities)

    def add_relationships(self, programme_id: Any, relationships: Iterable[ActivityRelationship]) -> None:
        key = normalize_id(programme_id)
        with self._lock:
            if key not in self._programmes:
                raise KeyError(f"Programme {programme_id!r} is not in the store.")
            self._relationships[key].extend(relationships)

    def get_programme(self, programme_id: Any) -> Programme | None:
        key = normalize_id(programme_id)
        if key is None:
            return None
        with self._lock:
            return self._programmes.get(key)

    def get_programmes_by_project(self, project_id: Any) -> list[Programme]:
        key = normalize_id(project_id)
        with self._lock:
            return [p for p in self._programmes.values() if p.project_id == key]

    def get_programme_activities(self, programme_id: Any) -> list[Activity]:
        key = normalize_id(programme_id)
        with self._lock:
            return list(self._activities.get(key, []))

    def get_activity_relationships(self, programme_id: Any) -> list[ActivityRelationship]:
        key = normalize_id(programme_id)
        with self._lock:
            return list(self._relationships.get(key, []))


def load_records(store: ProgrammeStore, data: Mapping[str, Any]) -> ProgrammeStore:
    """
    Load a JSON-style document into the store.

    Accepted shape:
      {"programmes": [{"id": 1, "name": ..., "activities": [...], "relationships": [...]}, ...]}
    Activities may also be given at the top level with a 'programmeId' each.
    """
    programmes = data.get("programmes", []) or []
    for rec in programmes:
        programme = store.add_programme(programme_from_record(rec))
        activities = [activity_from_record(a, programme_id=programme.id) for a in (rec.get("activities") or [])]
        store.add_activities(programme.id, activities)
        store.add_relationships(
            programme.id,
            [relationship_from_record(r) for r in (rec.get("relationships") or [])],
        )

    for rec in data.get("activities", []) or []:
        activity = activity_from_record(rec)
        if activity.programme_id is None:
            raise ValueError(f"Top-level activity {activity.external_id!r} has no 'programmeId'.")
        store.add_activities(activity.programme_id, [activity])

    return store


def load_store_json(path: str | Path, store: ProgrammeStore | None = None) -> ProgrammeStore:
    store = store or ProgrammeStore()
    with Path(path).open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object with a 'programmes' list.")
    return load_records(store, data)


def load_xer(path: str | Path, store: ProgrammeStore | None = None, **kwargs: Any) -> ProgrammeStore:
    store = store or ProgrammeStore()
    imported = xi.programme_from_xer(path, **kwargs)
    store.add_programme(imported.programme)
    store.add_activities(imported.programme.id, imported.activities)
    store.add_relationships(imported.programme.id, imported.relationships)
    return store


def load_store_path(path: str | Path) -> ProgrammeStore:
    """
    Build a store from a JSON file, an .XER file, or a directory holding either.

    XER files in a directory are keyed by file name (without extension).
    """
    logger = get_logger()
    path = Path(path)
    store = ProgrammeStore()
    if path.is_dir():
        for p in sorted(path.iterdir()):
            suffix = p.suffix.lower()
            if suffix == ".json":
                load_store_json(p, store)
            elif suffix == ".xer":
                load_xer(p, store)
    elif path.suffix.lower() == ".xer":
        load_xer(path, store)
    else:
        load_store_json(path, store)
    logger.info("Store loaded path=%s programmes=%s", path, len(store))
    return store


def store_from_env() -> ProgrammeStore:
    raw = (os.getenv(STORE_PATH_ENV_VAR) or "").strip()
    if not raw:
        get_logger().info("Store empty: %s not set", STORE_PATH_ENV_VAR)
        return ProgrammeStore()
    return load_store_path(raw)
