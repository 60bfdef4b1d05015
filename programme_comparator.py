from __future__ import annotations

import argparse
import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import pandas as pd

from analytics_logging import get_logger
from programme_model import Activity, Programme, activities_frame, normalize_id
import programme_store as ps


_NS_PER_DAY = 24 * 60 * 60 * 1_000_000_000


class ProgrammeComparisonError(Exception):
    pass


class InvalidArgumentError(ProgrammeComparisonError, ValueError):
    pass


class NotFoundError(ProgrammeComparisonError, LookupError):
    pass


class ProgrammesNotFoundError(NotFoundError):
    def __init__(self, *, baseline_found: bool, current_found: bool) -> None:
        self.baseline_found = baseline_found
        self.current_found = current_found
        if not baseline_found and not current_found:
            self.side = "both"
        elif not baseline_found:
            self.side = "baseline"
        else:
            self.side = "current"
        super().__init__(f"Programme not found: {self.side}")


@dataclass(frozen=True)
class ProgrammeDifference:
    name: str
    version: str
    completion_date_delta: int


@dataclass(frozen=True)
class ActivityChanges:
    added: int
    removed: int
    modified: int
    unchanged: int


@dataclass(frozen=True)
class CriticalPathChanges:
    changed: bool
    newly_critical: tuple[str, ...]
    newly_non_critical: tuple[str, ...]


@dataclass(frozen=True)
class FloatTrend:
    decreased: int
    increased: int


@dataclass(frozen=True)
class ComparisonReport:
    programme_difference: ProgrammeDifference
    activities: ActivityChanges
    critical_path: CriticalPathChanges
    total_float: FloatTrend
    key_concerns: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "programmeDifference": {
                "name": self.programme_difference.name,
                "version": self.programme_difference.version,
                "completionDateDelta": self.programme_difference.completion_date_delta,
            },
            "activities": {
                "added": self.activities.added,
                "removed": self.activities.removed,
                "modified": self.activities.modified,
                "unchanged": self.activities.unchanged,
            },
            "criticalPath": {
                "changed": self.critical_path.changed,
                "newlyCritical": list(self.critical_path.newly_critical),
                "newlyNonCritical": list(self.critical_path.newly_non_critical),
            },
            "totalFloat": {
                "decreased": self.total_float.decreased,
                "increased": self.total_float.increased,
            },
            "keyConcerns": list(self.key_concerns),
        }


def completion_date_delta(baseline_date: pd.Timestamp | None, current_date: pd.Timestamp | None) -> int:
    """
    Whole days between two planned completion dates, rounded up.

    Positive when the current date is later (a delay). A missing date gives 0.
    """
    if baseline_date is None or current_date is None:
        return 0
    diff_ns = abs(int((current_date - baseline_date).value))
    days = -(-diff_ns // _NS_PER_DAY)
    return days if current_date > baseline_date else -days


def _same_value(a: pd.Series, b: pd.Series) -> pd.Series:
    return (a == b) | (a.isna() & b.isna())


def _warn_duplicates(df: pd.DataFrame, label: str) -> None:
    dupes = df.loc[df["external_id"].duplicated(), "external_id"].unique().tolist()
    if dupes:
        get_logger().warning("Duplicate externalId in %s programme ids=%s", label, dupes[:20])


def compare_metadata(baseline: Programme, current: Programme) -> ProgrammeDifference:
    return ProgrammeDifference(
        name="Unchanged" if baseline.name == current.name else "Changed",
        version="Unchanged" if baseline.version == current.version else "Changed",
        completion_date_delta=completion_date_delta(
            baseline.planned_completion_date,
            current.planned_completion_date,
        ),
    )


def derive_key_concerns(
    difference: ProgrammeDifference,
    activities: ActivityChanges,
    critical_path: CriticalPathChanges,
    total_float: FloatTrend,
) -> list[str]:
    concerns: list[str] = []
    if difference.completion_date_delta > 0:
        concerns.append(f"Completion date delayed by {difference.completion_date_delta} days")
    if critical_path.changed:
        concerns.append("Critical path has changed")
    if total_float.decreased > total_float.increased:
        concerns.append("Overall reduction in float across the programme")
    if activities.added > 0 and activities.removed > 0:
        concerns.append(
            f"Significant scope changes: {activities.added} activities added, {activities.removed} removed"
        )
    return concerns


def compare_snapshots(
    baseline: Programme,
    baseline_activities: Sequence[Activity],
    current: Programme,
    current_activities: Sequence[Activity],
) -> ComparisonReport:
    """
    Compare two resolved programme snapshots.

    Activities are matched on external id. When an id repeats on one side, each
    activity is matched against the first counterpart with that id on the other side.
    """
    base = activities_frame(baseline_activities)
    curr = activities_frame(current_activities)
    _warn_duplicates(base, "baseline")
    _warn_duplicates(curr, "current")

    base_first = base.drop_duplicates(subset=["external_id"], keep="first").drop(columns=["_pos"])
    curr_first = curr.drop_duplicates(subset=["external_id"], keep="first").drop(columns=["_pos"])

    # Current side: added / modified / unchanged, newly critical, float trend.
    fwd = curr.merge(base_first, on="external_id", how="left", suffixes=("", "_baseline"), indicator=True)
    fwd = fwd.sort_values("_pos", kind="stable")
    matched = fwd["_merge"] == "both"
    same = (
        _same_value(fwd["start_date"], fwd["start_date_baseline"])
        & _same_value(fwd["end_date"], fwd["end_date_baseline"])
        & _same_value(fwd["duration"], fwd["duration_baseline"])
    )

    # Baseline side: removed, newly non-critical.
    rev = base.merge(curr_first, on="external_id", how="left", suffixes=("", "_current"), indicator=True)
    rev = rev.sort_values("_pos", kind="stable")

    changes = ActivityChanges(
        added=int((~matched).sum()),
        removed=int((rev["_merge"] == "left_only").sum()),
        modified=int((matched & ~same).sum()),
        unchanged=int((matched & same).sum()),
    )

    baseline_critical = sorted(base.loc[base["is_critical"], "external_id"].tolist())
    current_critical = sorted(curr.loc[curr["is_critical"], "external_id"].tolist())
    newly_critical = fwd.loc[fwd["is_critical"] & ~fwd["is_critical_baseline"].eq(True), "name"]
    newly_non_critical = rev.loc[rev["is_critical"] & ~rev["is_critical_current"].eq(True), "name"]
    critical_path = CriticalPathChanges(
        changed=baseline_critical != current_critical,
        newly_critical=tuple(str(n) for n in newly_critical.tolist()),
        newly_non_critical=tuple(str(n) for n in newly_non_critical.tolist()),
    )

    # Missing float counts as zero float.
    float_now = fwd["total_float"].fillna(0.0)
    float_before = fwd["total_float_baseline"].fillna(0.0)
    total_float = FloatTrend(
        decreased=int((matched & (float_now < float_before)).sum()),
        increased=int((matched & (float_now > float_before)).sum()),
    )

    difference = compare_metadata(baseline, current)
    concerns = derive_key_concerns(difference, changes, critical_path, total_float)
    return ComparisonReport(
        programme_difference=difference,
        activities=changes,
        critical_path=critical_path,
        total_float=total_float,
        key_concerns=tuple(concerns),
    )


class ProgrammeComparator:
    """
    Resolves two programme ids through a store and compares the snapshots.

    The store needs `get_programme(id)` (None when absent) and
    `get_programme_activities(id)`.
    """

    def __init__(self, store: Any) -> None:
        self.store = store

    def compare(self, baseline_programme_id: Any, current_programme_id: Any) -> ComparisonReport:
        logger = get_logger()
        baseline_key = normalize_id(baseline_programme_id)
        current_key = normalize_id(current_programme_id)
        if baseline_key is None or current_key is None:
            raise InvalidArgumentError("Both baseline and current programme IDs are required")

        t0 = time.perf_counter()
        baseline = self.store.get_programme(baseline_key)
        current = self.store.get_programme(current_key)
        if baseline is None or current is None:
            logger.info(
                "Compare not_found baseline=%s found=%s current=%s found=%s",
                baseline_key,
                baseline is not None,
                current_key,
                current is not None,
            )
            raise ProgrammesNotFoundError(baseline_found=baseline is not None, current_found=current is not None)

        baseline_activities = self.store.get_programme_activities(baseline_key)
        current_activities = self.store.get_programme_activities(current_key)
        report = compare_snapshots(baseline, baseline_activities, current, current_activities)
        logger.info(
            "Compare ok baseline=%s current=%s activities=%s/%s concerns=%s total_s=%.3f",
            baseline_key,
            current_key,
            len(baseline_activities),
            len(current_activities),
            len(report.key_concerns),
            time.perf_counter() - t0,
        )
        return report


def _main() -> int:
    p = argparse.ArgumentParser(description="Compare a baseline programme against a current programme.")
    p.add_argument("baseline_xer", nargs="?", help="Path to baseline .XER (when not using --store)")
    p.add_argument("current_xer", nargs="?", help="Path to current .XER (when not using --store)")
    p.add_argument("--store", default=None, help="Programme store: JSON file, .XER file or directory")
    p.add_argument("--baseline-id", default=None, help="Baseline programme id in the store")
    p.add_argument("--current-id", default=None, help="Current programme id in the store")
    args = p.parse_args()

    if args.store:
        store = ps.load_store_path(args.store)
        baseline_id, current_id = args.baseline_id, args.current_id
    elif args.baseline_xer and args.current_xer:
        store = ps.ProgrammeStore()
        ps.load_xer(Path(args.baseline_xer), store, programme_id="baseline", version="baseline")
        ps.load_xer(Path(args.current_xer), store, programme_id="current", version="current")
        baseline_id, current_id = "baseline", "current"
    else:
        p.error("give two .XER paths, or --store with --baseline-id and --current-id")

    try:
        report = ProgrammeComparator(store).compare(baseline_id, current_id)
    except ProgrammeComparisonError as e:
        print(json.dumps({"message": str(e)}, indent=2))
        return 1
    print(json.dumps({"analysis": report.to_dict()}, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
