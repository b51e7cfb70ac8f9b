"""Audit trail: governance events appended to ``audit_logs`` after commit."""

import logging

from change_governance.models import db
from change_governance.models.audit import AUDIT_ACTIONS, write_audit

logger = logging.getLogger(__name__)


class AuditTrail:
    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def record(self, category: str, action: str, payload: dict) -> None:
        """Append and commit one audit row.

        ``payload`` must carry ``entity_id``; ``project_id`` and ``actor``
        are lifted into their own columns when present.
        """
        if not self.enabled:
            return
        if action not in AUDIT_ACTIONS:
            logger.warning("Unregistered audit action %s", action)

        data = dict(payload)
        try:
            write_audit(
                category=category,
                entity_type=data.pop("entity_type", "change_request"),
                entity_id=data.pop("entity_id"),
                action=action,
                actor=data.pop("actor", "system"),
                project_id=data.get("project_id"),
                payload=data,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
