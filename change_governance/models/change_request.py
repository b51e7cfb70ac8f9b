"""
Change Governance Engine
Change request domain model.

Records:
    - ChangeRequest: a proposed project change and its governance state
    - Alternative: candidate way of implementing an approved change
    - CommitteeVote: one committee seat's vote
    - StatusHistoryEntry: one append-only lifecycle history row
    - ActorSnapshot: frozen copy of the acting identity

All records are frozen dataclasses. Lifecycle operations never mutate a
record; they build a new one with ``dataclasses.replace``. Collections are
stored as tuples for the same reason.

Persistence is JSON (``to_dict`` / ``from_dict``); the store keeps one
document per project (see ``models/change_log.py``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any


# ═════════════════════════════════════════════════════════════════════════════
# Closed vocabularies
# ═════════════════════════════════════════════════════════════════════════════

class OrgRole(str, Enum):
    """Organizational role of a member (organization_members.role)."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER_WRITE = "member_write"
    MEMBER_READ = "member_read"
    NONE = "none"

    @classmethod
    def parse(cls, value) -> "OrgRole":
        """Coerce a raw role string; unknown or missing values become NONE."""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.NONE
        raw = str(value).strip().lower()
        return _ORG_ROLE_ALIASES.get(raw) or cls._value2member_map_.get(raw, cls.NONE)


_ORG_ROLE_ALIASES = {
    "organization_member_write": OrgRole.MEMBER_WRITE,
    "organization_member_read": OrgRole.MEMBER_READ,
}


class FunctionalRole(str, Enum):
    """Functional role of a member (organization_members.functional_role)."""
    EXECUTIVE = "executive"
    SPONSOR = "sponsor"
    PROJECT_MANAGER = "project_manager"
    FINANCE_MANAGER = "finance_manager"
    QUALITY_MANAGER = "quality_manager"
    TECHNICAL_LEAD = "technical_lead"
    PMO_ASSISTANT = "pmo_assistant"
    PROJECT_COORDINATOR = "project_coordinator"
    TEAM_MEMBER = "team_member"
    AUDITOR = "auditor"

    @classmethod
    def parse(cls, value) -> "FunctionalRole | None":
        if isinstance(value, cls):
            return value
        if not value:
            return None
        return cls._value2member_map_.get(str(value).strip().lower())


class AuthorityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {
    AuthorityLevel.LOW: 0,
    AuthorityLevel.MEDIUM: 1,
    AuthorityLevel.HIGH: 2,
    AuthorityLevel.CRITICAL: 3,
}


class Approver(str, Enum):
    PROJECT_MANAGER = "project_manager"
    SPONSOR = "sponsor"
    COMMITTEE = "committee"
    EXECUTIVE_BOARD = "executive_board"


class ChangeStatus(str, Enum):
    SUBMITTED = "submitted"
    IMPACT_ANALYSIS = "impactAnalysis"
    READY_FOR_REVIEW = "readyForReview"
    UNDER_REVIEW = "underReview"
    APPROVED = "approved"
    IMPLEMENTING = "implementing"
    IMPLEMENTED = "implemented"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ChangeStatus.IMPLEMENTED,
    ChangeStatus.REJECTED,
    ChangeStatus.CANCELLED,
})


class ChangeCategory(str, Enum):
    SCOPE = "scope"
    SCHEDULE = "schedule"
    COST = "cost"
    QUALITY = "quality"
    RESOURCES = "resources"
    RISK = "risk"
    PROCUREMENT = "procurement"
    COMMUNICATION = "communication"


class ChangePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SeatId(str, Enum):
    """Committee seats. The roster itself is configured in committee_voting."""
    PM = "pm"
    TECH = "tech"
    FINANCE = "finance"
    QUALITY = "quality"
    SPONSOR = "sponsor"


class VoteValue(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    ABSTAIN = "abstain"


# ═════════════════════════════════════════════════════════════════════════════
# Serialization helpers
# ═════════════════════════════════════════════════════════════════════════════

def utcnow() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _parse_date(value) -> date | None:
    if not value:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# ═════════════════════════════════════════════════════════════════════════════
# Records
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ActorSnapshot:
    """Identity of whoever performed an action, captured at action time."""
    user_id: str | None
    name: str | None = None
    email: str | None = None
    org_role: str = OrgRole.NONE.value
    functional_role: str | None = None

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "org_role": self.org_role,
            "functional_role": self.functional_role,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "ActorSnapshot | None":
        if not data:
            return None
        return cls(
            user_id=data.get("user_id"),
            name=data.get("name"),
            email=data.get("email"),
            org_role=data.get("org_role") or OrgRole.NONE.value,
            functional_role=data.get("functional_role"),
        )


# Actor recorded on transitions the committee tally drives.
COMMITTEE_ACTOR = ActorSnapshot(user_id=None, name="Change Control Board")


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: ChangeStatus
    timestamp: datetime
    comments: str = ""
    actor: ActorSnapshot | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "timestamp": _iso(self.timestamp),
            "comments": self.comments,
            "actor": self.actor.to_dict() if self.actor else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StatusHistoryEntry":
        return cls(
            status=ChangeStatus(data["status"]),
            timestamp=_parse_dt(data.get("timestamp")),
            comments=data.get("comments") or "",
            actor=ActorSnapshot.from_dict(data.get("actor")),
        )


@dataclass(frozen=True)
class Alternative:
    id: str
    name: str
    description: str = ""
    cost: float = 0.0
    schedule: float = 0.0
    pros: tuple[str, ...] = ()
    cons: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "cost": self.cost,
            "schedule": self.schedule,
            "pros": list(self.pros),
            "cons": list(self.cons),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Alternative":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description") or "",
            cost=float(data.get("cost") or 0),
            schedule=float(data.get("schedule") or 0),
            pros=tuple(data.get("pros") or ()),
            cons=tuple(data.get("cons") or ()),
        )


@dataclass(frozen=True)
class CommitteeVote:
    seat_id: SeatId
    vote: VoteValue | None = None
    comments: str = ""
    voted_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "seat_id": self.seat_id.value,
            "vote": self.vote.value if self.vote else None,
            "comments": self.comments,
            "voted_at": _iso(self.voted_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CommitteeVote":
        vote = data.get("vote")
        return cls(
            seat_id=SeatId(data["seat_id"]),
            vote=VoteValue(vote) if vote else None,
            comments=data.get("comments") or "",
            voted_at=_parse_dt(data.get("voted_at")),
        )


@dataclass(frozen=True)
class ChangeRequest:
    """A proposed project change.

    ``status``, ``required_approver`` and ``authority_level`` are computed at
    creation and are never blank. ``committee_votes`` stays ``None`` until the
    change is sent to the committee.
    """
    id: str
    change_number: str
    project_id: int
    title: str
    description: str
    category: ChangeCategory
    priority: ChangePriority
    status: ChangeStatus
    required_approver: Approver
    authority_level: AuthorityLevel
    created_by: ActorSnapshot | None
    created_at: datetime
    updated_at: datetime
    justification: str = ""
    impact_cost: float = 0.0
    impact_schedule: float = 0.0
    impact_scope: str = ""
    impact_quality: str = ""
    impact_resources: str = ""
    requested_by: str = ""
    expected_implementation_date: date | None = None
    alternatives: tuple[Alternative, ...] = ()
    selected_alternative: int | None = None
    committee_votes: tuple[CommitteeVote, ...] | None = None
    impact_analysis_complete: bool = False
    impact_analysis_notes: str = ""
    status_history: tuple[StatusHistoryEntry, ...] = field(default_factory=tuple)

    @property
    def sequence(self) -> int:
        """Numeric part of the change number (CHG-0007 -> 7)."""
        return change_number_sequence(self.change_number)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "change_number": self.change_number,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "justification": self.justification,
            "category": self.category.value,
            "priority": self.priority.value,
            "impact_cost": self.impact_cost,
            "impact_schedule": self.impact_schedule,
            "impact_scope": self.impact_scope,
            "impact_quality": self.impact_quality,
            "impact_resources": self.impact_resources,
            "requested_by": self.requested_by,
            "expected_implementation_date": _iso(self.expected_implementation_date),
            "status": self.status.value,
            "required_approver": self.required_approver.value,
            "authority_level": self.authority_level.value,
            "alternatives": [a.to_dict() for a in self.alternatives],
            "selected_alternative": self.selected_alternative,
            "committee_votes": (
                [v.to_dict() for v in self.committee_votes]
                if self.committee_votes is not None else None
            ),
            "impact_analysis_complete": self.impact_analysis_complete,
            "impact_analysis_notes": self.impact_analysis_notes,
            "status_history": [h.to_dict() for h in self.status_history],
            "created_by": self.created_by.to_dict() if self.created_by else None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChangeRequest":
        votes = data.get("committee_votes")
        return cls(
            id=data["id"],
            change_number=data["change_number"],
            project_id=int(data["project_id"]),
            title=data["title"],
            description=data.get("description") or "",
            justification=data.get("justification") or "",
            category=ChangeCategory(data["category"]),
            priority=ChangePriority(data["priority"]),
            impact_cost=float(data.get("impact_cost") or 0),
            impact_schedule=float(data.get("impact_schedule") or 0),
            impact_scope=data.get("impact_scope") or "",
            impact_quality=data.get("impact_quality") or "",
            impact_resources=data.get("impact_resources") or "",
            requested_by=data.get("requested_by") or "",
            expected_implementation_date=_parse_date(data.get("expected_implementation_date")),
            status=ChangeStatus(data["status"]),
            required_approver=Approver(data["required_approver"]),
            authority_level=AuthorityLevel(data["authority_level"]),
            alternatives=tuple(Alternative.from_dict(a) for a in data.get("alternatives") or ()),
            selected_alternative=data.get("selected_alternative"),
            committee_votes=(
                tuple(CommitteeVote.from_dict(v) for v in votes) if votes is not None else None
            ),
            impact_analysis_complete=bool(data.get("impact_analysis_complete")),
            impact_analysis_notes=data.get("impact_analysis_notes") or "",
            status_history=tuple(
                StatusHistoryEntry.from_dict(h) for h in data.get("status_history") or ()
            ),
            created_by=ActorSnapshot.from_dict(data.get("created_by")),
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
        )


def format_change_number(sequence: int, prefix: str = "CHG") -> str:
    """Zero-padded per-project change number: ``format_change_number(7) == 'CHG-0007'``."""
    return f"{prefix}-{sequence:04d}"


def change_number_sequence(change_number: str | None) -> int:
    """Parse the trailing integer of a change number; 0 when absent."""
    if not change_number:
        return 0
    digits = str(change_number).rsplit("-", 1)[-1]
    return int(digits) if digits.isdigit() else 0
