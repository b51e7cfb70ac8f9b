"""
Change Metrics: read-only aggregates over a project's change requests.

Provides:
    - summarize(changes)            → dashboard counters and averages
    - filter_changes(changes, ...)  → status / priority / text filtering, newest first
    - calculate_detailed_impact(change, project) → impact score and recommendation

All functions are pure; they never touch the store.
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import date, timedelta
from typing import Any, Iterable

from change_governance.models.change_request import ChangeRequest, ChangeStatus
from change_governance.services.project_mutator import ProjectState

PENDING_STATUSES = frozenset({
    ChangeStatus.SUBMITTED,
    ChangeStatus.IMPACT_ANALYSIS,
    ChangeStatus.READY_FOR_REVIEW,
    ChangeStatus.UNDER_REVIEW,
})

# Changes whose impact counts as committed to the project.
COMMITTED_STATUSES = frozenset({
    ChangeStatus.APPROVED,
    ChangeStatus.IMPLEMENTING,
    ChangeStatus.IMPLEMENTED,
})

DECIDED_STATUSES = frozenset({
    ChangeStatus.APPROVED,
    ChangeStatus.REJECTED,
    ChangeStatus.IMPLEMENTED,
})

IMPACT_WEIGHTS: dict[str, float] = {
    "cost_pct": 0.4,
    "delay_pct": 0.3,
    "scope": 15,
    "quality": 10,
    "resources": 5,
}

RECOMMENDATION_THRESHOLDS: dict[str, float] = {
    "reject_over": 50,
    "review_over": 30,
}


# ═════════════════════════════════════════════════════════════════════════════
# Dashboard aggregates
# ═════════════════════════════════════════════════════════════════════════════

def average_processing_days(changes: Iterable[ChangeRequest]) -> float:
    """Mean of whole days (rounded up) from creation to last update of decided changes."""
    decided = [c for c in changes if c.status in DECIDED_STATUSES]
    if not decided:
        return 0.0
    total = sum(
        math.ceil((c.updated_at - c.created_at).total_seconds() / 86400)
        for c in decided
    )
    return round(total / len(decided), 1)


def top_categories(changes: Iterable[ChangeRequest], limit: int = 3) -> list[tuple[str, int]]:
    counts = Counter(c.category.value for c in changes)
    return counts.most_common(limit)


def _implemented_on(change: ChangeRequest) -> date | None:
    entry = next((h for h in change.status_history if h.status == ChangeStatus.IMPLEMENTED), None)
    return entry.timestamp.date() if entry and entry.timestamp else None


def process_efficiency(changes: Iterable[ChangeRequest]) -> int:
    """Percentage of implemented changes finished by their expected date."""
    implemented = [c for c in changes if c.status == ChangeStatus.IMPLEMENTED]
    if not implemented:
        return 0
    on_time = 0
    for change in implemented:
        actual = _implemented_on(change)
        if change.expected_implementation_date and actual and actual <= change.expected_implementation_date:
            on_time += 1
    return round(on_time / len(implemented) * 100)


def summarize(changes: Iterable[ChangeRequest]) -> dict[str, Any]:
    changes = list(changes)
    by_status = Counter(c.status.value for c in changes)
    committed = [c for c in changes if c.status in COMMITTED_STATUSES]
    total = len(changes)
    approved_or_done = by_status[ChangeStatus.APPROVED.value] + by_status[ChangeStatus.IMPLEMENTED.value]

    return {
        "total": total,
        "by_status": {s.value: by_status.get(s.value, 0) for s in ChangeStatus},
        "pending": sum(1 for c in changes if c.status in PENDING_STATUSES),
        "under_review": by_status[ChangeStatus.UNDER_REVIEW.value],
        "approved": by_status[ChangeStatus.APPROVED.value],
        "implemented": by_status[ChangeStatus.IMPLEMENTED.value],
        "rejected": by_status[ChangeStatus.REJECTED.value],
        "approval_rate": round(approved_or_done / total * 100, 1) if total else 0.0,
        "total_cost_impact": sum(c.impact_cost for c in committed),
        "total_schedule_impact": sum(c.impact_schedule for c in committed),
        "avg_processing_days": average_processing_days(changes),
        "top_categories": [{"category": cat, "count": n} for cat, n in top_categories(changes)],
        "efficiency_pct": process_efficiency(changes),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Listing
# ═════════════════════════════════════════════════════════════════════════════

def filter_changes(
    changes: Iterable[ChangeRequest],
    status: str | None = None,
    priority: str | None = None,
    search: str | None = None,
) -> list[ChangeRequest]:
    """Filter by exact status / priority and case-insensitive text; newest first."""
    result = list(changes)
    if status:
        result = [c for c in result if c.status.value == status]
    if priority:
        result = [c for c in result if c.priority.value == priority]
    if search:
        needle = search.strip().lower()
        result = [
            c for c in result
            if needle in c.title.lower()
            or needle in c.description.lower()
            or needle in (c.requested_by or "").lower()
            or needle in c.change_number.lower()
        ]
    return sorted(result, key=lambda c: (c.created_at, c.sequence), reverse=True)


# ═════════════════════════════════════════════════════════════════════════════
# Detailed impact
# ═════════════════════════════════════════════════════════════════════════════

def calculate_detailed_impact(change: ChangeRequest, project: ProjectState) -> dict[str, Any]:
    """Weigh a change against its project's budget and timeline.

    score = cost% × 0.4 + delay% × 0.3 + 15 (scope) + 10 (quality) + 5 (resources);
    the qualitative terms count when the change describes that impact.
    """
    cost = change.impact_cost
    schedule = change.impact_schedule

    cost_pct = (cost / project.budget) * 100 if project.budget else 0.0
    remaining_budget = project.budget - cost if project.budget else 0.0

    new_end_date = None
    delay_pct = 0.0
    if project.end_date and schedule > 0:
        new_end_date = project.end_date + timedelta(days=math.ceil(schedule))
        if project.start_date:
            total_days = (project.end_date - project.start_date).days
            if total_days > 0:
                delay_pct = (schedule / total_days) * 100

    score = (
        cost_pct * IMPACT_WEIGHTS["cost_pct"]
        + delay_pct * IMPACT_WEIGHTS["delay_pct"]
        + (IMPACT_WEIGHTS["scope"] if change.impact_scope else 0)
        + (IMPACT_WEIGHTS["quality"] if change.impact_quality else 0)
        + (IMPACT_WEIGHTS["resources"] if change.impact_resources else 0)
    )

    if score > RECOMMENDATION_THRESHOLDS["reject_over"]:
        recommendation = "reject"
        reason = "Impact is too high; consider the alternatives."
    elif score > RECOMMENDATION_THRESHOLDS["review_over"]:
        recommendation = "review"
        reason = "Needs a detailed review of alternatives and benefits."
    else:
        recommendation = "approve"
        reason = "Impact is acceptable for the expected benefit."

    return {
        "change_id": change.id,
        "change_number": change.change_number,
        "cost": cost,
        "cost_pct": round(cost_pct, 1),
        "remaining_budget": round(remaining_budget, 2),
        "schedule": schedule,
        "new_end_date": new_end_date.isoformat() if new_end_date else None,
        "delay_pct": round(delay_pct, 1),
        "scope": change.impact_scope,
        "quality": change.impact_quality,
        "resources": change.impact_resources,
        "impact_score": round(score, 1),
        "recommendation": recommendation,
        "recommendation_reason": reason,
    }
