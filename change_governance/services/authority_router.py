"""
Authority Router: change impact → required approver tier.

Cost sets the base tier; schedule can only escalate it, never lower it, and
can never on its own reach the critical tier.

Each cost threshold is the lower bound of its tier: under 5,000 the project
manager decides, the sponsor takes everything up to 100,000, a cost of
exactly 100,000 goes to the committee and anything above it to the
executive board.

Usage:
    from change_governance.services.authority_router import route, needs_analysis

    decision = route(cost=30_000, schedule=5)
    decision.level       # AuthorityLevel.MEDIUM
    decision.approver    # Approver.SPONSOR
    needs_analysis(30_000, 5)  # True
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from change_governance.models.change_request import Approver, AuthorityLevel, ChangeRequest


# ═════════════════════════════════════════════════════════════════════════════
# Threshold Configuration
# ═════════════════════════════════════════════════════════════════════════════

THRESHOLDS: dict[str, Any] = {
    # Cost tiers (lower bound of the tier, inclusive)
    "cost_medium_min": 5_000,
    "cost_high_min": 100_000,

    # Schedule escalation (days, inclusive)
    "schedule_medium_min": 15,
    "schedule_high_min": 30,

    # Impact analysis gate (inclusive)
    "analysis_cost_min": 25_000,
    "analysis_schedule_min": 15,

    # Committee gate (strictly greater)
    "committee_cost_over": 100_000,
    "committee_schedule_over": 30,
}

_TIER_APPROVER = {
    AuthorityLevel.LOW: Approver.PROJECT_MANAGER,
    AuthorityLevel.MEDIUM: Approver.SPONSOR,
    AuthorityLevel.HIGH: Approver.COMMITTEE,
    AuthorityLevel.CRITICAL: Approver.EXECUTIVE_BOARD,
}

_COMMITTEE_LEVELS = frozenset({AuthorityLevel.HIGH, AuthorityLevel.CRITICAL})
_COMMITTEE_APPROVERS = frozenset({Approver.COMMITTEE, Approver.EXECUTIVE_BOARD})


@dataclass(frozen=True)
class AuthorityDecision:
    approver: Approver
    level: AuthorityLevel

    def to_dict(self) -> dict:
        return {"approver": self.approver.value, "level": self.level.value}


def _cost_tier(cost: float) -> AuthorityLevel:
    if cost < THRESHOLDS["cost_medium_min"]:
        return AuthorityLevel.LOW
    if cost < THRESHOLDS["cost_high_min"]:
        return AuthorityLevel.MEDIUM
    # Only the boundary itself is high; above it the board decides.
    if cost == THRESHOLDS["cost_high_min"]:
        return AuthorityLevel.HIGH
    return AuthorityLevel.CRITICAL


def route(cost: float, schedule: float) -> AuthorityDecision:
    """Map (cost impact, schedule impact in days) to an approver tier."""
    level = _cost_tier(cost)

    if schedule >= THRESHOLDS["schedule_high_min"]:
        if level != AuthorityLevel.CRITICAL:
            level = AuthorityLevel.HIGH
    elif schedule >= THRESHOLDS["schedule_medium_min"] and level == AuthorityLevel.LOW:
        level = AuthorityLevel.MEDIUM

    return AuthorityDecision(approver=_TIER_APPROVER[level], level=level)


def needs_analysis(cost: float, schedule: float) -> bool:
    """True when the change must pass through impact analysis first."""
    return (
        cost >= THRESHOLDS["analysis_cost_min"]
        or schedule >= THRESHOLDS["analysis_schedule_min"]
    )


def requires_committee(
    level: AuthorityLevel,
    approver: Approver,
    cost: float,
    schedule: float,
) -> bool:
    """True when no single approver may decide and the committee must vote.

    The strict ``>`` on the cost/schedule bounds differs from the tier
    boundaries in ``route``; a cost of exactly 100,000 routes to the
    committee there, so the level check catches it first.
    """
    return (
        level in _COMMITTEE_LEVELS
        or approver in _COMMITTEE_APPROVERS
        or cost > THRESHOLDS["committee_cost_over"]
        or schedule > THRESHOLDS["committee_schedule_over"]
    )


def change_requires_committee(change: ChangeRequest) -> bool:
    """``requires_committee`` evaluated against a stored change request."""
    return requires_committee(
        change.authority_level,
        change.required_approver,
        change.impact_cost,
        change.impact_schedule,
    )
