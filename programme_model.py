from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import pandas as pd


PROGRAMME_STATUSES = ("draft", "submitted", "accepted", "rejected", "superseded")
FILE_TYPES = ("msp", "xer", "xml")
RELATIONSHIP_TYPES = ("FS", "FF", "SS", "SF")

ACTIVITY_FRAME_COLUMNS = [
    "external_id",
    "name",
    "start_date",
    "end_date",
    "duration",
    "is_critical",
    "total_float",
]


def _norm_key(key: str) -> str:
    return re.sub(r"[^a-z0-9]", "", str(key).lower())


def _pick(record: Mapping[str, Any], candidates: list[str], default: Any = None) -> Any:
    """
    Return the first value whose key matches one of the candidates.

    Matching ignores case and separators so 'externalId', 'external_id' and
    'EXTERNAL-ID' are the same key.
    """
    keys = {_norm_key(k): k for k in record.keys()}
    for cand in candidates:
        k = keys.get(_norm_key(cand))
        if k is not None:
            return record[k]
    return default


def normalize_id(value: Any) -> str | None:
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    # 100.0 vs "100" when an id went through a numeric column; strings are kept as given.
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    s = str(value).strip()
    if not s or s.lower() in {"nan", "none", "null"}:
        return None
    return s


def to_timestamp(value: Any) -> pd.Timestamp | None:
    """
    Coerce a date-like value to a naive UTC Timestamp, or None when it does not parse.
    """
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    ts = pd.to_datetime(value, errors="coerce", utc=True)
    if pd.isna(ts):
        return None
    return pd.Timestamp(ts).tz_localize(None)


def to_number(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return float(value)
    num = pd.to_numeric(value, errors="coerce")
    if pd.isna(num):
        return None
    return float(num)


def to_bool(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return not pd.isna(value) and value != 0
    return str(value).strip().casefold() in {"true", "t", "yes", "y", "1"}


def _iso(ts: pd.Timestamp | None) -> str | None:
    return None if ts is None else ts.isoformat()


@dataclass(frozen=True)
class Programme:
    id: str
    name: str
    version: str
    submission_date: pd.Timestamp | None
    planned_completion_date: pd.Timestamp | None
    status: str = "draft"
    project_id: str | None = None
    acceptance_date: pd.Timestamp | None = None
    baseline_id: str | None = None
    file_type: str | None = None
    file_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "name": self.name,
            "version": self.version,
            "submissionDate": _iso(self.submission_date),
            "status": self.status,
            "acceptanceDate": _iso(self.acceptance_date),
            "plannedCompletionDate": _iso(self.planned_completion_date),
            "baselineId": self.baseline_id,
            "fileType": self.file_type,
            "fileUrl": self.file_url,
        }


@dataclass(frozen=True)
class Activity:
    id: str
    external_id: str
    name: str
    start_date: pd.Timestamp | None
    end_date: pd.Timestamp | None
    duration: float | None
    is_critical: bool = False
    total_float: float | None = None
    programme_id: str | None = None
    description: str | None = None
    percent_complete: int = 0
    wbs_code: str | None = None
    milestone: bool = False
    parent_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "programmeId": self.programme_id,
            "externalId": self.external_id,
            "name": self.name,
            "description": self.description,
            "startDate": _iso(self.start_date),
            "endDate": _iso(self.end_date),
            "duration": self.duration,
            "percentComplete": self.percent_complete,
            "isCritical": self.is_critical,
            "totalFloat": self.total_float,
            "parentId": self.parent_id,
            "wbsCode": self.wbs_code,
            "milestone": self.milestone,
        }


@dataclass(frozen=True)
class ActivityRelationship:
    id: str
    predecessor_id: str
    successor_id: str
    type: str = "FS"
    lag: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "predecessorId": self.predecessor_id,
            "successorId": self.successor_id,
            "type": self.type,
            "lag": self.lag,
        }


def programme_from_record(record: Mapping[str, Any]) -> Programme:
    pid = normalize_id(_pick(record, ["id", "programme_id"]))
    if pid is None:
        raise ValueError("Programme record is missing 'id'.")

    version_raw = _pick(record, ["version"])
    status = str(_pick(record, ["status"], "draft") or "draft").strip().lower()
    file_type = _pick(record, ["file_type"])

    return Programme(
        id=pid,
        name=str(_pick(record, ["name", "programme_name"], "") or "").strip(),
        version=("" if version_raw is None else str(version_raw).strip()),
        submission_date=to_timestamp(_pick(record, ["submission_date"])),
        planned_completion_date=to_timestamp(_pick(record, ["planned_completion_date", "completion_date"])),
        status=status,
        project_id=normalize_id(_pick(record, ["project_id"])),
        acceptance_date=to_timestamp(_pick(record, ["acceptance_date"])),
        baseline_id=normalize_id(_pick(record, ["baseline_id"])),
        file_type=(None if file_type is None else str(file_type).strip().lower()),
        file_url=_pick(record, ["file_url"]),
    )


def activity_from_record(record: Mapping[str, Any], *, programme_id: str | None = None) -> Activity:
    aid = normalize_id(_pick(record, ["id", "activity_id"]))
    external_id = normalize_id(_pick(record, ["external_id", "task_code"]))
    if external_id is None:
        raise ValueError(f"Activity record is missing 'externalId' (id={aid!r}).")

    percent = to_number(_pick(record, ["percent_complete"]))
    return Activity(
        id=aid or external_id,
        external_id=external_id,
        name=str(_pick(record, ["name", "activity_name", "task_name"], "") or "").strip(),
        start_date=to_timestamp(_pick(record, ["start_date", "start"])),
        end_date=to_timestamp(_pick(record, ["end_date", "finish_date", "end", "finish"])),
        duration=to_number(_pick(record, ["duration"])),
        is_critical=to_bool(_pick(record, ["is_critical", "critical"])),
        total_float=to_number(_pick(record, ["total_float"])),
        programme_id=normalize_id(_pick(record, ["programme_id"])) or programme_id,
        description=_pick(record, ["description"]),
        percent_complete=(0 if percent is None else int(percent)),
        wbs_code=_pick(record, ["wbs_code"]),
        milestone=to_bool(_pick(record, ["milestone", "is_milestone"])),
        parent_id=normalize_id(_pick(record, ["parent_id"])),
    )


def relationship_from_record(record: Mapping[str, Any]) -> ActivityRelationship:
    pred = normalize_id(_pick(record, ["predecessor_id", "pred_task_id"]))
    succ = normalize_id(_pick(record, ["successor_id", "task_id"]))
    if pred is None or succ is None:
        raise ValueError("Relationship record needs both 'predecessorId' and 'successorId'.")

    rel_type = str(_pick(record, ["type"], "FS") or "FS").strip().upper()
    if rel_type not in RELATIONSHIP_TYPES:
        raise ValueError(f"Unknown relationship type {rel_type!r} (expected one of {', '.join(RELATIONSHIP_TYPES)}).")

    lag = to_number(_pick(record, ["lag"]))
    return ActivityRelationship(
        id=normalize_id(_pick(record, ["id"])) or f"{pred}->{succ}",
        predecessor_id=pred,
        successor_id=succ,
        type=rel_type,
        lag=(0.0 if lag is None else lag),
    )


def activities_frame(activities: Iterable[Activity]) -> pd.DataFrame:
    """
    Tabulate activities for set-style comparison.

    '_pos' keeps the caller's ordering so name lists can be reported in input order.
    """
    rows = [
        {
            "external_id": a.external_id,
            "name": a.name,
            "start_date": a.start_date,
            "end_date": a.end_date,
            "duration": a.duration,
            "is_critical": bool(a.is_critical),
            "total_float": a.total_float,
        }
        for a in activities
    ]
    df = pd.DataFrame.from_records(rows, columns=ACTIVITY_FRAME_COLUMNS)
    df["start_date"] = pd.to_datetime(df["start_date"])
    df["end_date"] = pd.to_datetime(df["end_date"])
    df["duration"] = pd.to_numeric(df["duration"], errors="coerce")
    df["total_float"] = pd.to_numeric(df["total_float"], errors="coerce")
    df["is_critical"] = df["is_critical"].astype(bool)
    df["_pos"] = range(len(df))
    return df
