"""Shared fixtures for the programme variance tests."""

import os
import tempfile

import pytest

# Keep test runs from writing into the user's application-data log directory.
os.environ.setdefault("PROGRAMME_VARIANCE_LOG_DIR", tempfile.mkdtemp(prefix="programme_variance_logs_"))

from programme_model import Activity, Programme, to_timestamp  # noqa: E402
from programme_store import ProgrammeStore  # noqa: E402


def make_programme(
    pid: str,
    *,
    name: str = "Main Works Programme",
    version: str = "1",
    completion: str | None = "2025-06-30",
    project_id: str | None = "7",
) -> Programme:
    return Programme(
        id=pid,
        name=name,
        version=version,
        submission_date=to_timestamp("2025-01-06"),
        planned_completion_date=to_timestamp(completion),
        status="submitted",
        project_id=project_id,
    )


def make_activity(
    external_id: str,
    *,
    name: str | None = None,
    start: str | None = "2025-01-06",
    end: str | None = "2025-01-17",
    duration: float | None = 10,
    critical: bool = False,
    total_float: float | None = 5,
    activity_id: str | None = None,
) -> Activity:
    return Activity(
        id=activity_id or f"int-{external_id}",
        external_id=external_id,
        name=name or f"Activity {external_id}",
        start_date=to_timestamp(start),
        end_date=to_timestamp(end),
        duration=duration,
        is_critical=critical,
        total_float=total_float,
    )


@pytest.fixture
def baseline_activities() -> list[Activity]:
    return [
        make_activity("A1", critical=True, total_float=0),
        make_activity("A2", start="2025-01-20", end="2025-02-14", duration=20, critical=True, total_float=0),
        make_activity("A3", start="2025-02-17", end="2025-03-14", duration=20, total_float=10),
    ]


@pytest.fixture
def store(baseline_activities: list[Activity]) -> ProgrammeStore:
    s = ProgrammeStore()
    s.add_programme(make_programme("1"))
    s.add_activities("1", baseline_activities)
    s.add_programme(make_programme("2", version="2", completion="2025-07-14"))
    s.add_activities(
        "2",
        [
            make_activity("A1", total_float=2),
            make_activity("A2", start="2025-01-20", end="2025-02-21", duration=25, critical=True, total_float=0),
            make_activity("A3", start="2025-02-17", end="2025-03-14", duration=20, critical=True, total_float=0),
            make_activity("A4", name="Install ventilation", start="2025-03-17", end="2025-04-11", duration=20),
        ],
    )
    return s
