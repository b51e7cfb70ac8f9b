"""
Change Governance Engine
Notification Service.

Creates in-app notifications for change-control events:
    - approval_required        → the change's required approver
    - committee_vote_required  → one per committee seat
    - status_changed           → the change's creator
"""

import logging

from change_governance.models import db
from change_governance.models.change_request import ChangeRequest, ChangeStatus
from change_governance.models.notification import NOTIFICATION_EVENTS, Notification

logger = logging.getLogger(__name__)

_STATUS_SEVERITY = {
    ChangeStatus.APPROVED: "success",
    ChangeStatus.IMPLEMENTED: "success",
    ChangeStatus.REJECTED: "error",
}


def _render(event_kind: str, change: ChangeRequest) -> tuple[str, str, str]:
    """Return (title, message, severity) for an event."""
    if event_kind == "approval_required":
        return (
            f"Approval required: {change.change_number}",
            f"{change.title} needs {change.required_approver.value} approval "
            f"(cost {change.impact_cost:,.0f}, schedule {change.impact_schedule:g} days).",
            "warning",
        )
    if event_kind == "committee_vote_required":
        return (
            f"Committee vote required: {change.change_number}",
            f"{change.title} is under change control board review "
            f"(authority level {change.authority_level.value}).",
            "warning",
        )
    return (
        f"{change.change_number} is now {change.status.value}",
        change.title,
        _STATUS_SEVERITY.get(change.status, "info"),
    )


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, recipient, title, message="", event_kind="status_changed", severity="info",
               project_id=None, change_id=None, change_number=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            project_id=project_id,
            recipient=recipient,
            event_kind=event_kind,
            title=title,
            message=message,
            severity=severity,
            change_id=change_id,
            change_number=change_number,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def notify(event_kind, recipient, change):
        """Create the notification for ``event_kind`` about ``change``.

        Raises:
            ValueError: unknown event kind or empty recipient.
        """
        if event_kind not in NOTIFICATION_EVENTS:
            raise ValueError(
                f"Invalid event_kind '{event_kind}'. Allowed: {', '.join(sorted(NOTIFICATION_EVENTS))}"
            )
        if not recipient:
            raise ValueError("Notification recipient is required")

        title, message, severity = _render(event_kind, change)
        notif = NotificationService.create(
            recipient=recipient,
            title=title,
            message=message,
            event_kind=event_kind,
            severity=severity,
            project_id=change.project_id,
            change_id=change.id,
            change_number=change.change_number,
        )
        logger.debug(
            "Notification %s sent to %s", event_kind, recipient,
            extra={"change_id": change.id, "event_type": event_kind},
        )
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient, project_id=None, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter(Notification.recipient == recipient)
        if project_id:
            q = q.filter_by(project_id=project_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(offset).limit(limit).all()
        return items, total

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, project_id=None, recipients=None):
        """Mark a single notification as read.

        None if missing, in another project, or not addressed to one of
        ``recipients`` (when given).
        """
        notif = db.session.get(Notification, notification_id)
        if notif is None or (project_id is not None and notif.project_id != project_id):
            return None
        if recipients is not None and notif.recipient not in recipients:
            return None
        notif.mark_read()
        db.session.commit()
        return notif
