from __future__ import annotations

import argparse
import json
import math
from typing import Any, Literal, Sequence

from analytics_logging import get_logger
from programme_model import Activity, ActivityRelationship, Programme, normalize_id
from programme_comparator import InvalidArgumentError, NotFoundError
import programme_store as ps


BASE_QUALITY_SCORE = 70
NO_CRITICAL_PATH_PENALTY = 20
DISCONNECTED_WEIGHT = 30

RECOMMENDATIONS = [
    "Review network logic to ensure all activities are properly connected",
    "Ensure critical path is properly defined",
    "Add key milestones to track project progress",
    "Include total float values for all activities",
]


def schedule_risk(quality_score: int) -> Literal["low", "medium", "high"]:
    if quality_score >= 70:
        return "low"
    if quality_score >= 40:
        return "medium"
    return "high"


def analyze_snapshot(
    programme: Programme,
    activities: Sequence[Activity],
    relationships: Sequence[ActivityRelationship],
) -> dict[str, Any]:
    """
    Rule-based quality check of one programme.

    Scores open ends in the logic network and the absence of a critical path, and
    checks the NEC4 clause 31 essentials (activities, key dates, critical path).
    """
    total = len(activities)
    milestones = sum(1 for a in activities if a.milestone)
    critical = sum(1 for a in activities if a.is_critical)

    successors = {r.successor_id for r in relationships}
    predecessors = {r.predecessor_id for r in relationships}
    without_predecessors = sum(1 for a in activities if a.id not in successors)
    without_successors = sum(1 for a in activities if a.id not in predecessors)

    score = BASE_QUALITY_SCORE
    if total > 0:
        disconnected = (without_predecessors + without_successors) / (total * 2)
        # Half rounds up.
        score -= math.floor(disconnected * DISCONNECTED_WEIGHT + 0.5)
    if critical == 0:
        score -= NO_CRITICAL_PATH_PENALTY
    score = max(0, min(100, score))

    clause31 = total > 0 and milestones > 0 and critical > 0
    return {
        "programmeId": programme.id,
        "qualityScore": score,
        "criticalPathLength": critical,
        "scheduleRisk": schedule_risk(score),
        "issuesFound": [
            {
                "severity": "medium",
                "category": "Network Logic",
                "description": (
                    f"{without_predecessors} activities without predecessors and "
                    f"{without_successors} activities without successors."
                ),
                "activities": [],
            }
        ],
        "nec4Compliance": {
            "clause31": clause31,
            "clause32": True,
            "overallCompliant": clause31,
            "issues": (
                []
                if clause31
                else ["Programme missing required elements per clause 31 (critical path, key dates, etc.)"]
            ),
        },
        "recommendations": list(RECOMMENDATIONS),
    }


def analyze_programme(store: Any, programme_id: Any) -> dict[str, Any]:
    key = normalize_id(programme_id)
    if key is None:
        raise InvalidArgumentError("Programme ID is required")
    programme = store.get_programme(key)
    if programme is None:
        raise NotFoundError(f"Programme {key} not found")

    result = analyze_snapshot(
        programme,
        store.get_programme_activities(key),
        store.get_activity_relationships(key),
    )
    get_logger().info(
        "Analysis ok programme=%s score=%s risk=%s",
        key,
        result["qualityScore"],
        result["scheduleRisk"],
    )
    return result


def _main() -> int:
    p = argparse.ArgumentParser(description="Rule-based quality analysis of a stored programme.")
    p.add_argument("--store", required=True, help="Programme store: JSON file, .XER file or directory")
    p.add_argument("--programme-id", required=True, help="Programme id in the store")
    args = p.parse_args()

    store = ps.load_store_path(args.store)
    print(json.dumps(analyze_programme(store, args.programme_id), indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
