"""
Project Mutator Tests:
  - Budget / end date / scope history entries on approval
  - Applying the same change twice is a no-op
  - Missing end date skips the schedule shift
  - SqlProjectMutator writes the projects row
"""

from datetime import UTC, date, datetime

import pytest

from change_governance.core.exceptions import NotFoundError
from change_governance.models import db
from change_governance.models.change_request import ChangeCategory
from change_governance.models.project import Project
from change_governance.services.project_mutator import (
    ProjectState,
    SqlProjectMutator,
    apply_approved_change,
)

APPLIED_AT = datetime(2026, 5, 4, 10, 30, tzinfo=UTC)

BASE = ProjectState(id=1, budget=200_000, start_date=date(2026, 1, 1), end_date=date(2026, 12, 31))


class TestApplyApprovedChange:

    def test_budget_and_schedule(self, make_change):
        change = make_change(cost=20_000, schedule=15, category=ChangeCategory.COST)
        after = apply_approved_change(change, BASE, applied_at=APPLIED_AT)

        assert after.budget == 220_000
        assert after.end_date == date(2027, 1, 15)
        assert after.budget_history == ({
            "date": APPLIED_AT.isoformat(),
            "amount": 20_000,
            "reason": f"Change {change.change_number}: {change.title}",
            "type": "change_request",
            "change_id": change.id,
        },)
        sched = after.schedule_history[0]
        assert sched["old_end_date"] == "2026-12-31"
        assert sched["new_end_date"] == "2027-01-15"
        assert sched["days"] == 15
        assert after.scope_changes == ()

    def test_partial_day_rounds_up(self, make_change):
        after = apply_approved_change(make_change(schedule=2.5), BASE, applied_at=APPLIED_AT)
        assert after.end_date == date(2027, 1, 3)
        assert after.schedule_history[0]["days"] == 3
        assert after.schedule_history[0]["new_end_date"] == "2027-01-03"

    def test_input_state_unchanged(self, make_change):
        apply_approved_change(make_change(cost=5_000), BASE)
        assert BASE.budget == 200_000
        assert BASE.applied_changes == ()

    def test_zero_impact_still_recorded_as_applied(self, make_change):
        change = make_change()
        after = apply_approved_change(change, BASE, applied_at=APPLIED_AT)
        assert after.budget == BASE.budget
        assert after.budget_history == ()
        assert after.schedule_history == ()
        assert after.applied_changes[0]["change_number"] == change.change_number
        assert after.applied_changes[0]["impact_summary"]["cost"] == 0

    def test_scope_change_recorded_for_scope_category(self, make_change):
        change = make_change(category=ChangeCategory.SCOPE, impact_scope="Add reporting module")
        after = apply_approved_change(change, BASE)
        assert after.scope_changes[0]["description"] == "Add reporting module"

    def test_scope_text_ignored_for_other_categories(self, make_change):
        change = make_change(category=ChangeCategory.QUALITY, impact_scope="Extra test cycle")
        assert apply_approved_change(change, BASE).scope_changes == ()

    def test_idempotent(self, make_change):
        change = make_change(cost=1_000, schedule=3)
        once = apply_approved_change(change, BASE)
        twice = apply_approved_change(change, once)
        assert twice is once
        assert twice.budget == 201_000

    def test_no_end_date_skips_schedule(self, make_change):
        state = ProjectState(id=1, budget=0)
        after = apply_approved_change(make_change(cost=100, schedule=10), state)
        assert after.end_date is None
        assert after.schedule_history == ()
        assert after.budget == 100


class TestSqlProjectMutator:

    def test_apply_writes_row(self, project, make_change):
        change = make_change(cost=20_000, schedule=15, category=ChangeCategory.SCOPE,
                             impact_scope="Extra plant")
        SqlProjectMutator().apply(change)
        db.session.commit()

        row = db.session.get(Project, project.id)
        assert row.budget == 220_000
        assert row.end_date == date(2027, 1, 15)
        assert len(row.budget_history) == 1
        assert len(row.schedule_history) == 1
        assert row.scope_changes[0]["description"] == "Extra plant"
        assert row.applied_changes[0]["change_id"] == change.id

    def test_second_apply_is_noop(self, project, make_change):
        change = make_change(cost=1_000)
        mutator = SqlProjectMutator()
        mutator.apply(change)
        mutator.apply(change)
        db.session.commit()
        assert db.session.get(Project, project.id).budget == 201_000

    def test_missing_project(self, make_change):
        with pytest.raises(NotFoundError):
            SqlProjectMutator().apply(make_change(cost=1_000))
