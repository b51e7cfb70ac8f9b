"""
Authority Router Tests:
  - Cost tiers and their boundaries
  - Schedule escalation (never lowers, never reaches critical alone)
  - Monotonicity over a grid of impacts
  - needs_analysis / requires_committee gates
"""

import pytest

from change_governance.models.change_request import Approver, AuthorityLevel
from change_governance.services.authority_router import (
    THRESHOLDS,
    needs_analysis,
    requires_committee,
    route,
)


class TestCostTiers:

    @pytest.mark.parametrize("cost,level,approver", [
        (0, AuthorityLevel.LOW, Approver.PROJECT_MANAGER),
        (4_999.99, AuthorityLevel.LOW, Approver.PROJECT_MANAGER),
        (5_000, AuthorityLevel.MEDIUM, Approver.SPONSOR),
        (24_999, AuthorityLevel.MEDIUM, Approver.SPONSOR),
        (25_000, AuthorityLevel.MEDIUM, Approver.SPONSOR),
        (99_999, AuthorityLevel.MEDIUM, Approver.SPONSOR),
        (100_000, AuthorityLevel.HIGH, Approver.COMMITTEE),
        (100_000.01, AuthorityLevel.CRITICAL, Approver.EXECUTIVE_BOARD),
        (150_000, AuthorityLevel.CRITICAL, Approver.EXECUTIVE_BOARD),
    ])
    def test_cost_only(self, cost, level, approver):
        decision = route(cost, 0)
        assert decision.level == level
        assert decision.approver == approver

    def test_to_dict(self):
        assert route(100_000, 0).to_dict() == {"approver": "committee", "level": "high"}

    def test_thirty_thousand_over_five_days_goes_to_sponsor(self):
        decision = route(30_000, 5)
        assert decision.to_dict() == {"approver": "sponsor", "level": "medium"}
        assert needs_analysis(30_000, 5)
        assert not requires_committee(decision.level, decision.approver, 30_000, 5)


class TestScheduleEscalation:

    def test_fifteen_days_raises_low_to_medium(self):
        assert route(0, 14).level == AuthorityLevel.LOW
        assert route(0, 15).level == AuthorityLevel.MEDIUM

    def test_fifteen_days_does_not_raise_medium(self):
        assert route(10_000, 20).level == AuthorityLevel.MEDIUM

    def test_thirty_days_raises_to_high(self):
        assert route(0, 30).level == AuthorityLevel.HIGH
        assert route(10_000, 30).level == AuthorityLevel.HIGH

    def test_schedule_never_lowers_critical(self):
        assert route(200_000, 45).level == AuthorityLevel.CRITICAL

    def test_schedule_alone_never_reaches_critical(self):
        assert route(0, 10_000).level == AuthorityLevel.HIGH


class TestMonotonicity:

    COSTS = [0, 1_000, 4_999, 5_000, 10_000, 24_999, 25_000, 50_000, 99_999, 100_000, 100_001, 250_000]
    SCHEDULES = [0, 5, 14, 15, 20, 29, 30, 31, 90]

    def test_non_decreasing_in_cost(self):
        for schedule in self.SCHEDULES:
            ranks = [route(c, schedule).level.rank for c in self.COSTS]
            assert ranks == sorted(ranks), f"schedule={schedule}: {ranks}"

    def test_non_decreasing_in_schedule(self):
        for cost in self.COSTS:
            ranks = [route(cost, s).level.rank for s in self.SCHEDULES]
            assert ranks == sorted(ranks), f"cost={cost}: {ranks}"


class TestGates:

    @pytest.mark.parametrize("cost,schedule,expected", [
        (0, 0, False),
        (24_999, 14, False),
        (25_000, 0, True),
        (0, 15, True),
        (30_000, 5, True),
    ])
    def test_needs_analysis(self, cost, schedule, expected):
        assert needs_analysis(cost, schedule) is expected

    def test_needs_analysis_iff_formula(self):
        for cost in TestMonotonicity.COSTS:
            for schedule in TestMonotonicity.SCHEDULES:
                expected = cost >= THRESHOLDS["analysis_cost_min"] or schedule >= THRESHOLDS["analysis_schedule_min"]
                assert needs_analysis(cost, schedule) is expected

    def test_requires_committee(self):
        low = route(1_000, 0)
        assert not requires_committee(low.level, low.approver, 1_000, 0)
        high = route(50_000, 30)
        assert requires_committee(high.level, high.approver, 50_000, 30)
        critical = route(150_000, 0)
        assert requires_committee(critical.level, critical.approver, 150_000, 0)

    def test_boundary_cost_routes_to_committee(self):
        # Exactly 100,000 is below the strict raw-impact gate but the level catches it.
        boundary = route(100_000, 0)
        assert boundary.level == AuthorityLevel.HIGH
        assert requires_committee(boundary.level, boundary.approver, 100_000, 0)

    def test_requires_committee_on_raw_impact(self):
        assert requires_committee(AuthorityLevel.LOW, Approver.PROJECT_MANAGER, 100_001, 0)
        assert requires_committee(AuthorityLevel.LOW, Approver.PROJECT_MANAGER, 0, 31)
        assert not requires_committee(AuthorityLevel.MEDIUM, Approver.SPONSOR, 100_000, 30)
