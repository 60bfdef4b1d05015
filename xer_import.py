from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping

import pandas as pd

from programme_model import Activity, ActivityRelationship, Programme, normalize_id, to_number


P6_HOURS_PER_DAY = 8.0

XER_TABLES = ["PROJECT", "TASK", "TASKPRED"]

_P6_RELATIONSHIP_TYPES = {"PR_FS": "FS", "PR_FF": "FF", "PR_SS": "SS", "PR_SF": "SF"}


@dataclass(frozen=True)
class XerProgramme:
    programme: Programme
    activities: list[Activity]
    relationships: list[ActivityRelationship]


def _finalize_table(
    tables: dict[str, pd.DataFrame],
    table_name: str | None,
    columns: list[str] | None,
    rows: list[list[str]],
    wanted: set[str],
) -> None:
    if not table_name or table_name not in wanted:
        return
    if not columns:
        tables[table_name] = pd.DataFrame()
        return
    width = len(columns)
    padded = [row[:width] + [""] * (width - len(row)) for row in rows]
    tables[table_name] = pd.DataFrame.from_records(padded, columns=columns)


def parse_xer_lines(lines: Iterable[str], table_names: Iterable[str]) -> dict[str, pd.DataFrame]:
    """
    Collect selected tables from the lines of a Primavera P6 .XER export.

    Each table section is laid out as:
      %T <TABLE_NAME>
      %F <col1> <col2> ...
      %R <val1> <val2> ... (repeated)
    and the file ends with %E.
    """
    wanted = {name.strip().upper() for name in table_names}
    tables: dict[str, pd.DataFrame] = {}

    current_table: str | None = None
    current_columns: list[str] | None = None
    current_rows: list[list[str]] = []

    for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if not line:
            continue
        parts = line.split("\t")
        rec_type = parts[0].strip()

        if rec_type == "%T" and len(parts) >= 2:
            _finalize_table(tables, current_table, current_columns, current_rows, wanted)
            current_table = parts[1].strip().upper()
            current_columns = None
            current_rows = []
            continue

        if rec_type == "%E":
            break

        if current_table not in wanted:
            continue

        if rec_type == "%F":
            current_columns = [c.strip() for c in parts[1:]]
        elif rec_type == "%R":
            current_rows.append(parts[1:])

    _finalize_table(tables, current_table, current_columns, current_rows, wanted)
    for name in wanted:
        tables.setdefault(name, pd.DataFrame())
    return tables


def read_xer_tables(xer_path: str | Path, table_names: Iterable[str] = XER_TABLES) -> dict[str, pd.DataFrame]:
    with Path(xer_path).open("r", encoding="utf-8", errors="replace") as f:
        return parse_xer_lines(f, table_names)


def _pick_col(df: pd.DataFrame, candidates: list[str]) -> str | None:
    cols_lower = {c.lower(): c for c in df.columns}
    for cand in candidates:
        if cand.lower() in cols_lower:
            return cols_lower[cand.lower()]
    return None


def parse_p6_datetime(value: Any) -> pd.Timestamp | None:
    if value is None:
        return None
    s = str(value).strip()
    if not s or s.lower() == "nan":
        return None

    # Common P6 exports: '2024-01-01 08:00', '01-JAN-24', sometimes without time.
    formats = [
        "%Y-%m-%d %H:%M",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d",
        "%d-%b-%y",
        "%d-%b-%Y",
        "%d-%b-%y %H:%M",
        "%d-%b-%Y %H:%M",
    ]
    for fmt in formats:
        ts = pd.to_datetime(s, format=fmt, errors="coerce")
        if pd.notna(ts):
            return pd.Timestamp(ts)

    ts = pd.to_datetime(s, errors="coerce", dayfirst=True)
    if pd.notna(ts):
        return pd.Timestamp(ts)
    return None


def detect_total_float_column(task_df: pd.DataFrame) -> str:
    if task_df is None or task_df.empty:
        raise ValueError("TASK table is empty; cannot detect a float column.")

    candidates = [
        "total_float_hr_cnt",
        "total_float",
        "total_float_cnt",
        "total_float_day_cnt",
        "float_total",
    ]
    col = _pick_col(task_df, candidates)
    if col:
        return col

    float_like = [c for c in task_df.columns if "float" in c.lower() and "free" not in c.lower()]
    if not float_like:
        raise ValueError("Could not find a total float column in TASK. Expected something like 'total_float_hr_cnt'.")

    # Pick the float-like column that looks most numeric.
    ratios = {c: float(pd.to_numeric(task_df[c], errors="coerce").notna().mean()) for c in float_like}
    return max(float_like, key=lambda c: ratios[c])


def float_series_to_days(float_col: str, values: pd.Series, *, hours_per_day: float = P6_HOURS_PER_DAY) -> pd.Series:
    """
    Convert a P6 total-float series to days when the source column is in hours.
    """
    if "hr" in str(float_col).lower():
        return values / float(hours_per_day)
    return values


def _select_project_row(project_df: pd.DataFrame, task_df: pd.DataFrame, project_hint: str | None) -> pd.Series | None:
    if project_df is None or project_df.empty:
        return None
    if len(project_df) == 1:
        return project_df.iloc[0]

    if project_hint:
        hint = project_hint.strip()
        for col in ["proj_short_name", "proj_name", "proj_id"]:
            if col in project_df.columns:
                match = project_df[project_df[col].astype(str).str.strip() == hint]
                if len(match) == 1:
                    return match.iloc[0]
        raise ValueError(f"No PROJECT row matches project_hint='{hint}'.")

    # Several projects in one export: the one owning most tasks wins.
    if "proj_id" in task_df.columns and "proj_id" in project_df.columns and not task_df.empty:
        dominant = task_df["proj_id"].astype(str).mode(dropna=True)
        if len(dominant) > 0:
            match = project_df[project_df["proj_id"].astype(str) == str(dominant.iloc[0])]
            if len(match) > 0:
                return match.iloc[0]
    return project_df.iloc[0]


def _first_date(row: pd.Series, cols: list[str | None]) -> pd.Timestamp | None:
    for col in cols:
        if not col:
            continue
        ts = parse_p6_datetime(row.get(col))
        if ts is not None:
            return ts
    return None


def _activities_from_task(
    task_df: pd.DataFrame,
    *,
    programme_id: str,
    hours_per_day: float,
) -> list[Activity]:
    if task_df is None or task_df.empty:
        return []

    task_id_col = _pick_col(task_df, ["task_id"])
    code_col = _pick_col(task_df, ["task_code", "activity_id"])
    if not code_col and not task_id_col:
        raise ValueError("TASK is missing an activity id column (expected 'task_code' or 'task_id').")
    name_col = _pick_col(task_df, ["task_name", "activity_name"])
    start_cols = [_pick_col(task_df, [c]) for c in ["act_start_date", "target_start_date", "early_start_date"]]
    end_cols = [_pick_col(task_df, [c]) for c in ["act_end_date", "target_end_date", "early_end_date"]]
    drtn_col = _pick_col(task_df, ["target_drtn_hr_cnt", "orig_drtn_hr_cnt"])
    type_col = _pick_col(task_df, ["task_type"])
    pct_col = _pick_col(task_df, ["phys_complete_pct", "complete_pct"])
    wbs_col = _pick_col(task_df, ["wbs_id"])

    try:
        float_col: str | None = detect_total_float_column(task_df)
    except ValueError:
        float_col = None
    float_days: pd.Series | None = None
    if float_col:
        numeric = pd.to_numeric(task_df[float_col], errors="coerce")
        float_days = float_series_to_days(float_col, numeric, hours_per_day=hours_per_day)

    out: list[Activity] = []
    for idx, row in task_df.iterrows():
        internal_id = normalize_id(row.get(task_id_col)) if task_id_col else None
        external_id = (normalize_id(row.get(code_col)) if code_col else None) or internal_id
        if external_id is None:
            continue

        start = _first_date(row, start_cols)
        end = _first_date(row, end_cols)

        duration = None
        if drtn_col:
            hours = to_number(row.get(drtn_col))
            duration = None if hours is None else hours / float(hours_per_day)
        if duration is None and start is not None and end is not None:
            duration = float((end.normalize() - start.normalize()).days)

        total_float = None
        if float_days is not None and pd.notna(float_days.loc[idx]):
            total_float = float(float_days.loc[idx])

        pct = to_number(row.get(pct_col)) if pct_col else None
        out.append(
            Activity(
                id=internal_id or external_id,
                external_id=external_id,
                name=(str(row.get(name_col)).strip() if name_col else external_id),
                start_date=start,
                end_date=end,
                duration=duration,
                # P6 default: critical when total float is less than or equal to zero.
                is_critical=(total_float is not None and total_float <= 0),
                total_float=total_float,
                programme_id=programme_id,
                percent_complete=(0 if pct is None else int(pct)),
                wbs_code=(normalize_id(row.get(wbs_col)) if wbs_col else None),
                milestone=(bool(type_col) and str(row.get(type_col)) in {"TT_FinMile", "TT_StartMile"}),
            )
        )
    return out


def _relationships_from_taskpred(
    taskpred_df: pd.DataFrame,
    activity_ids: set[str],
    *,
    hours_per_day: float,
) -> list[ActivityRelationship]:
    if taskpred_df is None or taskpred_df.empty:
        return []
    succ_col = _pick_col(taskpred_df, ["task_id"])
    pred_col = _pick_col(taskpred_df, ["pred_task_id"])
    if not succ_col or not pred_col:
        raise ValueError("TASKPRED is missing 'task_id'/'pred_task_id'.")
    id_col = _pick_col(taskpred_df, ["task_pred_id"])
    type_col = _pick_col(taskpred_df, ["pred_type"])
    lag_col = _pick_col(taskpred_df, ["lag_hr_cnt"])

    out: list[ActivityRelationship] = []
    for _, row in taskpred_df.iterrows():
        succ = normalize_id(row.get(succ_col))
        pred = normalize_id(row.get(pred_col))
        # Links to activities of other projects in the same export are dropped.
        if succ not in activity_ids or pred not in activity_ids:
            continue
        lag_hours = to_number(row.get(lag_col)) if lag_col else None
        out.append(
            ActivityRelationship(
                id=(normalize_id(row.get(id_col)) if id_col else None) or f"{pred}->{succ}",
                predecessor_id=pred,
                successor_id=succ,
                type=_P6_RELATIONSHIP_TYPES.get(str(row.get(type_col)).strip(), "FS") if type_col else "FS",
                lag=(0.0 if lag_hours is None else lag_hours / float(hours_per_day)),
            )
        )
    return out


def programme_from_tables(
    tables: Mapping[str, pd.DataFrame],
    *,
    programme_id: str,
    version: str = "1",
    project_hint: str | None = None,
    file_url: str | None = None,
    hours_per_day: float = P6_HOURS_PER_DAY,
) -> XerProgramme:
    def get(name: str) -> pd.DataFrame:
        for k, v in tables.items():
            if k.strip().upper() == name:
                return v
        return pd.DataFrame()

    project = get("PROJECT")
    task = get("TASK")
    taskpred = get("TASKPRED")

    project_row = _select_project_row(project, task, project_hint)
    if project_row is not None and "proj_id" in task.columns and "proj_id" in project_row.index:
        task = task[task["proj_id"].astype(str) == str(project_row.get("proj_id"))]

    activities = _activities_from_task(task, programme_id=programme_id, hours_per_day=hours_per_day)
    relationships = _relationships_from_taskpred(
        taskpred,
        {a.id for a in activities},
        hours_per_day=hours_per_day,
    )

    name = programme_id
    completion = None
    submitted = None
    if project_row is not None:
        for col in ["proj_short_name", "proj_name"]:
            if col in project_row.index and str(project_row.get(col)).strip():
                name = str(project_row.get(col)).strip()
                break
        completion = _first_date(project_row, ["scd_end_date", "plan_end_date"])
        # Prefer the P6 recalculation date; fall back to the data date.
        submitted = _first_date(project_row, ["last_recalc_date", "data_date"])
    if completion is None:
        ends = [a.end_date for a in activities if a.end_date is not None]
        completion = max(ends) if ends else None

    programme = Programme(
        id=programme_id,
        name=name,
        version=str(version),
        submission_date=submitted,
        planned_completion_date=completion,
        status="submitted",
        project_id=(None if project_row is None else normalize_id(project_row.get("proj_id"))),
        file_type="xer",
        file_url=file_url,
    )
    return XerProgramme(programme=programme, activities=activities, relationships=relationships)


def programme_from_xer(
    xer_path: str | Path,
    *,
    programme_id: str | None = None,
    version: str = "1",
    project_hint: str | None = None,
    hours_per_day: float = P6_HOURS_PER_DAY,
) -> XerProgramme:
    xer_path = Path(xer_path)
    tables = read_xer_tables(xer_path, XER_TABLES)
    return programme_from_tables(
        tables,
        programme_id=programme_id or xer_path.stem,
        version=version,
        project_hint=project_hint,
        file_url=str(xer_path),
        hours_per_day=hours_per_day,
    )


def _main() -> int:
    p = argparse.ArgumentParser(description="Convert a Primavera P6 .XER file into programme/activity records.")
    p.add_argument("xer_path", help="Path to the .XER file")
    p.add_argument("--programme-id", default=None, help="Programme id to assign (default: file name)")
    p.add_argument("--version", default="1", help="Programme version label")
    p.add_argument(
        "--project-hint",
        default=None,
        help="Optional project identifier to select the correct PROJECT row when multiple exist",
    )
    args = p.parse_args()

    imported = programme_from_xer(
        args.xer_path,
        programme_id=args.programme_id,
        version=args.version,
        project_hint=args.project_hint,
    )
    out = {
        "programme": imported.programme.to_dict(),
        "activities": [a.to_dict() for a in imported.activities],
        "relationships": [r.to_dict() for r in imported.relationships],
    }
    print(json.dumps(out, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
