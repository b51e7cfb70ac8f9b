"""
Project Mutator: applies an approved change's impact to its project.

On approval the change's cost is added to the budget and its schedule
impact pushes the end date by whole days (rounded up), each with a history
row; scope-category changes are appended to the scope history, and every
applied change is recorded in ``applied_changes``. The mutation runs inside
the same unit of work as the approval, so either both persist or neither
does.

``apply_approved_change`` is pure and works on ``ProjectState``;
``SqlProjectMutator`` loads and writes the ``projects`` row around it.
"""

from __future__ import annotations

import json
import math
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta

from change_governance.core.exceptions import NotFoundError
from change_governance.models import db
from change_governance.models.change_request import ChangeCategory, ChangeRequest, utcnow
from change_governance.models.project import Project

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectState:
    id: int
    budget: float = 0.0
    start_date: date | None = None
    end_date: date | None = None
    budget_history: tuple[dict, ...] = ()
    schedule_history: tuple[dict, ...] = ()
    scope_changes: tuple[dict, ...] = ()
    applied_changes: tuple[dict, ...] = ()

    @classmethod
    def from_model(cls, project: Project) -> "ProjectState":
        return cls(
            id=project.id,
            budget=float(project.budget or 0),
            start_date=project.start_date,
            end_date=project.end_date,
            budget_history=tuple(project.budget_history),
            schedule_history=tuple(project.schedule_history),
            scope_changes=tuple(project.scope_changes),
            applied_changes=tuple(project.applied_changes),
        )

    def has_applied(self, change_id: str) -> bool:
        return any(entry.get("change_id") == change_id for entry in self.applied_changes)


def apply_approved_change(
    change: ChangeRequest,
    project: ProjectState,
    applied_at: datetime | None = None,
) -> ProjectState:
    """Return ``project`` with ``change``'s impact applied.

    A change that was already applied is returned unchanged.
    """
    if project.has_applied(change.id):
        logger.warning(
            "Change %s already applied to project %s",
            change.change_number, project.id,
            extra={"change_id": change.id, "project_id": project.id},
        )
        return project

    stamp = (applied_at or utcnow()).isoformat()
    reason = f"Change {change.change_number}: {change.title}"
    updates: dict = {}

    if change.impact_cost:
        updates["budget"] = project.budget + change.impact_cost
        updates["budget_history"] = project.budget_history + ({
            "date": stamp,
            "amount": change.impact_cost,
            "reason": reason,
            "type": "change_request",
            "change_id": change.id,
        },)

    if change.impact_schedule:
        if project.end_date is None:
            logger.warning(
                "Project %s has no end date; schedule impact of %s not applied",
                project.id, change.change_number,
                extra={"change_id": change.id, "project_id": project.id},
            )
        else:
            # Dates move in whole days; a partial day counts as a full one.
            days = math.ceil(change.impact_schedule)
            new_end = project.end_date + timedelta(days=days)
            updates["end_date"] = new_end
            updates["schedule_history"] = project.schedule_history + ({
                "date": stamp,
                "days": days,
                "reason": reason,
                "old_end_date": project.end_date.isoformat(),
                "new_end_date": new_end.isoformat(),
                "change_id": change.id,
            },)

    if change.category == ChangeCategory.SCOPE and change.impact_scope:
        updates["scope_changes"] = project.scope_changes + ({
            "date": stamp,
            "description": change.impact_scope,
            "reason": reason,
            "change_id": change.id,
        },)

    updates["applied_changes"] = project.applied_changes + ({
        "change_id": change.id,
        "change_number": change.change_number,
        "title": change.title,
        "applied_date": stamp,
        "impact_summary": {
            "cost": change.impact_cost,
            "schedule": change.impact_schedule,
            "scope": change.impact_scope,
            "quality": change.impact_quality,
            "resources": change.impact_resources,
        },
    },)

    return replace(project, **updates)


class SqlProjectMutator:
    """Applies approved changes to the ``projects`` table. Flushes only;
    the caller's unit of work commits."""

    def load(self, project_id: int) -> Project:
        project = db.session.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    def apply(self, change: ChangeRequest) -> ProjectState:
        project = self.load(change.project_id)
        before = ProjectState.from_model(project)
        after = apply_approved_change(change, before)
        if after is before:
            return after

        project.budget = after.budget
        project.end_date = after.end_date
        project.budget_history_json = json.dumps(list(after.budget_history), default=str)
        project.schedule_history_json = json.dumps(list(after.schedule_history), default=str)
        project.scope_changes_json = json.dumps(list(after.scope_changes), default=str)
        project.applied_changes_json = json.dumps(list(after.applied_changes), default=str)
        db.session.flush()

        logger.info(
            "Applied %s to project %s: budget %.2f -> %.2f, end %s -> %s",
            change.change_number, project.id, before.budget, after.budget,
            before.end_date, after.end_date,
            extra={"change_id": change.id, "project_id": project.id, "event_type": "project.apply_change"},
        )
        return after
