"""
Change Metrics Tests:
  - Dashboard summary counters, approval rate and committed impact
  - Processing days / efficiency
  - Filtering and ordering
  - Detailed impact score and recommendation
"""

from dataclasses import replace
from datetime import UTC, date, datetime, timedelta

import pytest

from change_governance.models.change_request import (
    ChangeCategory,
    ChangePriority,
    ChangeStatus,
    StatusHistoryEntry,
)
from change_governance.services.change_metrics import (
    average_processing_days,
    calculate_detailed_impact,
    filter_changes,
    process_efficiency,
    summarize,
    top_categories,
)
from change_governance.services.project_mutator import ProjectState

CREATED = datetime(2026, 2, 1, 8, 0, tzinfo=UTC)

PROJECT = ProjectState(id=1, budget=200_000, start_date=date(2026, 1, 1), end_date=date(2026, 12, 31))


def _with_status(change, status, *, days=0, **fields):
    return replace(
        change,
        status=status,
        created_at=CREATED,
        updated_at=CREATED + timedelta(days=days),
        **fields,
    )


@pytest.fixture()
def portfolio(make_change):
    return [
        _with_status(make_change(cost=1_000, category=ChangeCategory.COST), ChangeStatus.APPROVED, days=2),
        _with_status(make_change(cost=4_000, schedule=3, category=ChangeCategory.COST),
                     ChangeStatus.IMPLEMENTED, days=5),
        _with_status(make_change(cost=9_000, category=ChangeCategory.SCOPE), ChangeStatus.REJECTED, days=1),
        _with_status(make_change(cost=30_000), ChangeStatus.IMPACT_ANALYSIS),
        _with_status(make_change(cost=50_000), ChangeStatus.UNDER_REVIEW),
    ]


class TestSummary:

    def test_counters(self, portfolio):
        data = summarize(portfolio)
        assert data["total"] == 5
        assert data["pending"] == 2
        assert data["under_review"] == 1
        assert data["approved"] == 1
        assert data["implemented"] == 1
        assert data["rejected"] == 1
        assert data["by_status"]["impactAnalysis"] == 1
        assert data["by_status"]["cancelled"] == 0

    def test_approval_rate_and_committed_impact(self, portfolio):
        data = summarize(portfolio)
        assert data["approval_rate"] == 40.0
        assert data["total_cost_impact"] == 5_000
        assert data["total_schedule_impact"] == 3

    def test_empty(self):
        data = summarize([])
        assert data["total"] == 0
        assert data["approval_rate"] == 0.0
        assert data["avg_processing_days"] == 0.0
        assert data["top_categories"] == []

    def test_top_categories(self, portfolio):
        assert top_categories(portfolio, limit=2) == [("scope", 3), ("cost", 2)]


class TestProcessing:

    def test_average_days_rounds_each_change_up(self, make_change):
        changes = [
            replace(_with_status(make_change(), ChangeStatus.APPROVED),
                    updated_at=CREATED + timedelta(hours=30)),
            _with_status(make_change(), ChangeStatus.REJECTED, days=3),
            _with_status(make_change(), ChangeStatus.READY_FOR_REVIEW, days=40),
        ]
        assert average_processing_days(changes) == 2.5

    def test_efficiency(self, make_change):
        def implemented(on, expected):
            change = _with_status(make_change(), ChangeStatus.IMPLEMENTED, expected_implementation_date=expected)
            entry = StatusHistoryEntry(status=ChangeStatus.IMPLEMENTED, timestamp=on)
            return replace(change, status_history=change.status_history + (entry,))

        changes = [
            implemented(datetime(2026, 3, 1, tzinfo=UTC), date(2026, 3, 1)),
            implemented(datetime(2026, 3, 5, tzinfo=UTC), date(2026, 3, 1)),
            implemented(datetime(2026, 3, 5, tzinfo=UTC), None),
            implemented(datetime(2026, 2, 1, tzinfo=UTC), date(2026, 6, 1)),
        ]
        assert process_efficiency(changes) == 50
        assert process_efficiency([]) == 0


class TestFilter:

    def test_filter_by_status_and_priority(self, make_change):
        a = make_change(cost=1_000)
        b = replace(make_change(cost=30_000), priority=ChangePriority.HIGH)
        assert filter_changes([a, b], status="readyForReview") == [a]
        assert filter_changes([a, b], priority="high") == [b]

    def test_search_is_case_insensitive(self, make_change):
        a = replace(make_change(), title="Upgrade Database")
        b = replace(make_change(), requested_by="Finance Dept")
        assert filter_changes([a, b], search="database") == [a]
        assert filter_changes([a, b], search="FINANCE") == [b]
        assert filter_changes([a, b], search=b.change_number.lower()) == [b]

    def test_newest_first(self, make_change):
        old = replace(make_change(), created_at=CREATED)
        new = replace(make_change(), created_at=CREATED + timedelta(days=1))
        assert filter_changes([old, new]) == [new, old]


class TestDetailedImpact:

    def test_small_change_is_approvable(self, make_change):
        change = make_change(cost=20_000, schedule=0)
        impact = calculate_detailed_impact(change, PROJECT)
        assert impact["cost_pct"] == 10.0
        assert impact["remaining_budget"] == 180_000
        assert impact["new_end_date"] is None
        assert impact["impact_score"] == 4.0
        assert impact["recommendation"] == "approve"

    def test_schedule_delay(self, make_change):
        impact = calculate_detailed_impact(make_change(schedule=91), PROJECT)
        assert impact["new_end_date"] == "2027-04-01"
        assert impact["delay_pct"] == 25.0
        assert impact["impact_score"] == 7.5

    def test_qualitative_impacts_push_to_review(self, make_change):
        change = make_change(cost=20_000, impact_scope="Add module", impact_quality="Extra QA",
                             impact_resources="Two contractors")
        impact = calculate_detailed_impact(change, PROJECT)
        assert impact["impact_score"] == 34.0
        assert impact["recommendation"] == "review"

    def test_large_change_is_flagged_for_rejection(self, make_change):
        change = make_change(cost=110_000, impact_scope="Add module", impact_quality="Extra QA",
                             impact_resources="Two contractors")
        assert calculate_detailed_impact(change, PROJECT)["recommendation"] == "reject"

    def test_project_without_budget_or_dates(self, make_change):
        impact = calculate_detailed_impact(make_change(cost=5_000, schedule=10), ProjectState(id=1))
        assert impact["cost_pct"] == 0.0
        assert impact["delay_pct"] == 0.0
        assert impact["new_end_date"] is None

    def test_partial_day_delay_rounds_end_date_up(self, make_change):
        impact = calculate_detailed_impact(make_change(schedule=0.5), PROJECT)
        assert impact["new_end_date"] == "2027-01-01"
