"""
Change Governance Engine
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for governance events.
"""

import json
from datetime import UTC, datetime

from change_governance.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_CATEGORIES = {"change_request", "committee", "project"}

AUDIT_ACTIONS = {
    # Change request lifecycle
    "change_request.create",
    "change_request.route_submitted",
    "change_request.add_alternative",
    "change_request.record_impact_analysis",
    "change_request.submit_for_review",
    "change_request.approve",
    "change_request.reject",
    "change_request.escalate",
    "change_request.select_alternative",
    "change_request.implement",
    # Committee
    "committee.vote",
    "committee.decision",
    # Project mutation on approval
    "project.apply_change",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every governance event.

    One row per action. ``payload_json`` carries the event details
    (old/new status, vote, impact applied to the project, ...).
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, nullable=True)

    # Polymorphic entity reference
    category = db.Column(
        db.String(30), nullable=False,
        comment="change_request | committee | project",
    )
    entity_type = db.Column(db.String(30), nullable=False, default="change_request")
    entity_id = db.Column(
        db.String(36), nullable=False,
        comment="Change request UUID or project id as string",
    )

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="change_request.approve | committee.vote | …",
    )
    actor = db.Column(
        db.String(150), nullable=False, default="system",
        comment="Actor email, or 'system' for committee-driven events",
    )

    payload_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def payload(self) -> dict:
        """Deserialise *payload_json* to a Python dict."""
        try:
            return json.loads(self.payload_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "category": self.category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    category: str,
    entity_id: str,
    action: str,
    actor: str = "system",
    entity_type: str = "change_request",
    project_id: int | None = None,
    payload: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row. Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    log = AuditLog(
        project_id=project_id,
        category=category,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor or "system",
        payload_json=json.dumps(payload or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
