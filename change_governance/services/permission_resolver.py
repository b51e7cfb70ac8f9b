"""
Permission Resolver: (organizational role × functional role) → capabilities.

The permission table is an explicit two-key immutable lookup. Each org role
carries its own DEFAULT row, used when the functional role has no specific
row; owner/admin and none only have the DEFAULT row.

Resolution is pure, deterministic and never raises: unknown or missing org
roles degrade to the most restrictive row.

Usage:
    from change_governance.services.permission_resolver import resolve_capabilities

    caps = resolve_capabilities("member_write", "sponsor")
    caps.can_approve                 # True
    caps.approval_limit.cost         # 100000
    caps.allows_approval(30000, 5)   # True
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from change_governance.models.change_request import ChangeRequest, FunctionalRole, OrgRole

DEFAULT = None  # table key used when no functional-role row applies


# ═════════════════════════════════════════════════════════════════════════════
# Capability record
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ApprovalLimit:
    """Largest impact an approver may accept alone. ``math.inf`` means unbounded."""
    cost: float = 0.0
    schedule: float = 0.0

    def allows(self, cost: float, schedule: float) -> bool:
        return cost <= self.cost and schedule <= self.schedule

    def to_dict(self) -> dict:
        # JSON has no infinity; None reads as "unbounded"
        return {
            "cost": None if math.isinf(self.cost) else self.cost,
            "schedule": None if math.isinf(self.schedule) else self.schedule,
        }


@dataclass(frozen=True)
class Capabilities:
    """Derived capability set. Never persisted."""
    can_create: bool = False
    can_approve: bool = False
    can_reject: bool = False
    can_implement: bool = False
    can_vote_in_committee: bool = False
    can_assign: bool = False
    can_comment: bool = False
    can_view_all: bool = False
    approval_limit: ApprovalLimit = ApprovalLimit()
    resolved_role_label: str = "none"
    level: str = "none"

    def allows_approval(self, cost: float, schedule: float) -> bool:
        """True when the holder may approve a change of this impact directly."""
        return self.can_approve and self.approval_limit.allows(cost, schedule)

    def to_dict(self) -> dict:
        return {
            "can_create": self.can_create,
            "can_approve": self.can_approve,
            "can_reject": self.can_reject,
            "can_implement": self.can_implement,
            "can_vote_in_committee": self.can_vote_in_committee,
            "can_assign": self.can_assign,
            "can_comment": self.can_comment,
            "can_view_all": self.can_view_all,
            "approval_limit": self.approval_limit.to_dict(),
            "resolved_role_label": self.resolved_role_label,
            "level": self.level,
        }


_UNLIMITED = ApprovalLimit(cost=math.inf, schedule=math.inf)
_NO_LIMIT = ApprovalLimit()


def _caps(
    label: str,
    level: str,
    *,
    create: bool = True,
    approve: bool = False,
    reject: bool = False,
    implement: bool = False,
    vote: bool = False,
    assign: bool = False,
    comment: bool = True,
    view_all: bool = False,
    limit: ApprovalLimit = _NO_LIMIT,
) -> Capabilities:
    return Capabilities(
        can_create=create,
        can_approve=approve,
        can_reject=reject,
        can_implement=implement,
        can_vote_in_committee=vote,
        can_assign=assign,
        can_comment=comment,
        can_view_all=view_all,
        approval_limit=limit,
        resolved_role_label=label,
        level=level,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Permission table: org role × functional role
# ═════════════════════════════════════════════════════════════════════════════

_FULL_ACCESS = _caps(
    "executive_board", "unlimited",
    approve=True, reject=True, implement=True, vote=True, assign=True,
    view_all=True, limit=_UNLIMITED,
)

_NO_ACCESS = _caps("none", "none", create=False, comment=False)

_WRITE_ROWS: dict[FunctionalRole | None, Capabilities] = {
    DEFAULT: _caps("team_member", "basic", implement=True),
    FunctionalRole.EXECUTIVE: _caps(
        "executive_board", "executive",
        approve=True, reject=True, vote=True, assign=True, view_all=True,
        limit=_UNLIMITED,
    ),
    FunctionalRole.SPONSOR: _caps(
        "sponsor", "high",
        approve=True, reject=True, vote=True, assign=True, view_all=True,
        limit=ApprovalLimit(cost=100_000, schedule=30),
    ),
    FunctionalRole.PROJECT_MANAGER: _caps(
        "project_manager", "medium",
        approve=True, reject=True, implement=True, vote=True, assign=True, view_all=True,
        limit=ApprovalLimit(cost=25_000, schedule=15),
    ),
    FunctionalRole.FINANCE_MANAGER: _caps(
        "finance_manager", "specialized",
        approve=True, reject=True, vote=True, view_all=True,
        limit=ApprovalLimit(cost=100_000, schedule=0),
    ),
    FunctionalRole.QUALITY_MANAGER: _caps(
        "quality_manager", "specialized",
        approve=True, reject=True, vote=True, view_all=True,
    ),
    FunctionalRole.TECHNICAL_LEAD: _caps("technical_lead", "technical", implement=True, vote=True),
    FunctionalRole.PMO_ASSISTANT: _caps("pmo_assistant", "operational", implement=True),
    FunctionalRole.PROJECT_COORDINATOR: _caps("project_coordinator", "operational", implement=True),
    FunctionalRole.TEAM_MEMBER: _caps("team_member", "basic"),
}

_READ_ROWS: dict[FunctionalRole | None, Capabilities] = {
    DEFAULT: _caps("observer", "readonly"),
    FunctionalRole.AUDITOR: _caps("auditor", "audit", create=False, view_all=True),
}

PERMISSION_TABLE: Mapping[OrgRole, Mapping[FunctionalRole | None, Capabilities]] = MappingProxyType({
    OrgRole.OWNER: MappingProxyType({DEFAULT: _FULL_ACCESS}),
    OrgRole.ADMIN: MappingProxyType({DEFAULT: _FULL_ACCESS}),
    OrgRole.MEMBER_WRITE: MappingProxyType(_WRITE_ROWS),
    OrgRole.MEMBER_READ: MappingProxyType(_READ_ROWS),
    OrgRole.NONE: MappingProxyType({DEFAULT: _NO_ACCESS}),
})


# ═════════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════════

def resolve_capabilities(org_role, functional_role=None) -> Capabilities:
    """Return the capability set for an (org role, functional role) pair.

    Both arguments accept enum members or raw strings. Unknown org roles
    resolve as ``none``; unknown functional roles fall back to the org
    role's DEFAULT row.
    """
    rows = PERMISSION_TABLE[OrgRole.parse(org_role)]
    fr = FunctionalRole.parse(functional_role)
    return rows.get(fr) or rows[DEFAULT]


_ACTION_FLAGS = {
    "create": "can_create",
    "reject": "can_reject",
    "implement": "can_implement",
    "vote": "can_vote_in_committee",
    "assign": "can_assign",
    "comment": "can_comment",
    "view_all": "can_view_all",
}


def can_perform(
    capabilities: Capabilities,
    action: str,
    change: ChangeRequest | None = None,
) -> bool:
    """Boolean check for a named action.

    ``approve`` also checks the approval limits when a change is given.
    Unknown actions are never permitted.
    """
    if capabilities is None:
        return False
    if action == "approve":
        if change is None:
            return capabilities.can_approve
        return capabilities.allows_approval(change.impact_cost, change.impact_schedule)
    flag = _ACTION_FLAGS.get(action)
    return bool(flag and getattr(capabilities, flag))
