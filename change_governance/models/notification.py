"""
Change Governance Engine
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import UTC, datetime

from change_governance.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_EVENTS = {"approval_required", "committee_vote_required", "status_changed"}
NOTIFICATION_SEVERITIES = {"info", "warning", "error", "success"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, nullable=True, index=True)
    recipient = db.Column(db.String(150), nullable=False, index=True,
                          comment="User email, role key ('sponsor') or seat key ('ccb:pm')")
    event_kind = db.Column(db.String(40), nullable=False, default="status_changed")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    severity = db.Column(db.String(20), default="info")

    # Link to source change request
    change_id = db.Column(db.String(36), nullable=True, index=True)
    change_number = db.Column(db.String(30), nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(UTC)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "recipient": self.recipient,
            "event_kind": self.event_kind,
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "change_id": self.change_id,
            "change_number": self.change_number,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
