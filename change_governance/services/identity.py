"""
Identity source: who is acting, and with which roles.

The engine never reads a current user from global state; every operation is
given an ``ActorContext``. ``resolve_actor`` builds one from the
organization's active membership rows. Unknown identities resolve with
``org_role = none``, which has no capabilities.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select

from change_governance.models import db
from change_governance.models.change_request import ActorSnapshot, FunctionalRole, OrgRole
from change_governance.models.membership import OrganizationMember

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActorContext:
    user_id: str | None
    email: str | None
    name: str | None = None
    org_role: OrgRole = OrgRole.NONE
    functional_role: FunctionalRole | None = None

    @property
    def label(self) -> str:
        return self.email or self.user_id or "anonymous"

    def snapshot(self) -> ActorSnapshot:
        return ActorSnapshot(
            user_id=self.user_id,
            name=self.name or self.email,
            email=self.email,
            org_role=self.org_role.value,
            functional_role=self.functional_role.value if self.functional_role else None,
        )

    @classmethod
    def build(cls, *, user_id=None, email=None, name=None, org_role=None, functional_role=None) -> "ActorContext":
        """Construct from raw strings, coercing both roles."""
        return cls(
            user_id=user_id,
            email=email,
            name=name,
            org_role=OrgRole.parse(org_role),
            functional_role=FunctionalRole.parse(functional_role),
        )


def resolve_actor(organization_id: int, email: str | None) -> ActorContext:
    """Look up the active membership of ``email`` in ``organization_id``.

    Matching ignores case; if case variants of one address are both active,
    the earliest row wins.
    """
    if not email:
        return ActorContext(user_id=None, email=None)

    normalized = email.strip().lower()
    member = db.session.execute(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == organization_id,
            func.lower(OrganizationMember.user_email) == normalized,
            OrganizationMember.status == "active",
        ).order_by(OrganizationMember.id).limit(1)
    ).scalars().first()

    if member is None:
        logger.info("No active membership for %s in organization %s", normalized, organization_id)
        return ActorContext(user_id=None, email=normalized)

    return ActorContext.build(
        user_id=member.user_id or str(member.id),
        email=normalized,
        name=member.user_name,
        org_role=member.role,
        functional_role=member.functional_role,
    )
