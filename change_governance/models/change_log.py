"""
Change Governance Engine
Change log persistence model.

Models:
    - ProjectChangeLog: one versioned JSON document per project holding every
      change request of that project.

The ``version`` column is the optimistic-concurrency token: writers read it
with the document and must present it again when saving
(see ``services/change_store.py``).
"""

from datetime import UTC, datetime

from change_governance.models import db


class ProjectChangeLog(db.Model):
    __tablename__ = "project_change_logs"

    project_id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    version = db.Column(db.Integer, nullable=False, default=0)
    changes_json = db.Column(db.Text, nullable=False, default="[]")
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def __repr__(self):
        return f"<ProjectChangeLog project={self.project_id} v{self.version}>"
