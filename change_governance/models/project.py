"""Project domain model: the budget and schedule that approved changes adjust."""

import json
from datetime import UTC, datetime

from change_governance.models import db


def _load_list(raw) -> list:
    try:
        value = json.loads(raw or "[]")
    except (json.JSONDecodeError, TypeError):
        return []
    return value if isinstance(value, list) else []


class Project(db.Model):
    """Project under change control. Belongs to one organization."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, nullable=False, index=True)
    code = db.Column(db.String(50), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(30), nullable=False, default="active")
    budget = db.Column(db.Float, nullable=False, default=0.0)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    # ── Change history (JSON lists, appended by approved changes) ──
    budget_history_json = db.Column(db.Text, default="[]")
    schedule_history_json = db.Column(db.Text, default="[]")
    scope_changes_json = db.Column(db.Text, default="[]")
    applied_changes_json = db.Column(db.Text, default="[]")

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        db.UniqueConstraint("organization_id", "code", name="uq_projects_org_code"),
    )

    @property
    def budget_history(self) -> list:
        return _load_list(self.budget_history_json)

    @property
    def schedule_history(self) -> list:
        return _load_list(self.schedule_history_json)

    @property
    def scope_changes(self) -> list:
        return _load_list(self.scope_changes_json)

    @property
    def applied_changes(self) -> list:
        return _load_list(self.applied_changes_json)

    def to_dict(self) -> dict:
        """Serialize core project fields for API responses."""
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "code": self.code,
            "name": self.name,
            "status": self.status,
            "budget": self.budget,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "budget_history": self.budget_history,
            "schedule_history": self.schedule_history,
            "scope_changes": self.scope_changes,
            "applied_changes": self.applied_changes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"
