"""
Membership Models: organization_members.

Each row binds a user (by email) to an organization with an organizational
role (owner | admin | member_write | member_read) and an optional functional
role (sponsor, project_manager, ...). Only ``status = 'active'`` rows count
when resolving the acting identity. Emails are stored trimmed and lower-cased.
"""

from datetime import UTC, datetime

from sqlalchemy.orm import validates

from change_governance.models import db


# ═══════════════════════════════════════════════════════════════
# ORGANIZATION_MEMBERS (User ↔ Organization assignment)
# ═══════════════════════════════════════════════════════════════
class OrganizationMember(db.Model):
    __tablename__ = "organization_members"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, nullable=False)
    user_id = db.Column(db.String(64), nullable=True)
    user_email = db.Column(db.String(255), nullable=False)
    user_name = db.Column(db.String(200), nullable=True)
    role = db.Column(db.String(40), nullable=False, default="member_read")
    functional_role = db.Column(db.String(40), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active")
    joined_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))

    __table_args__ = (
        db.UniqueConstraint("organization_id", "user_email", name="uq_organization_member"),
        db.Index("ix_organization_members_org", "organization_id"),
        db.Index("ix_organization_members_email", "user_email"),
    )

    @validates("user_email")
    def _normalize_email(self, key, value):
        return value.strip().lower() if isinstance(value, str) else value

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "user_name": self.user_name,
            "role": self.role,
            "functional_role": self.functional_role,
            "status": self.status,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }

    def __repr__(self):
        return f"<OrganizationMember {self.user_email} org={self.organization_id} role={self.role}>"
