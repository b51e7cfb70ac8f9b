"""
Change State Machine: lifecycle transitions for change requests.

Manages change request status transitions with:
  - Transition validation (CHANGE_TRANSITIONS)
  - Gate checks (impact analysis, committee requirement, approval limits)
  - Committee tally driving underReview → approved | rejected
  - Append-only status history (one entry per transition)

Every operation takes a ChangeRequest and returns a new one. All checks run
before the new record is built, so a failed check leaves the caller's record
exactly as it was.

Lifecycle:
    creation ──► impactAnalysis ──► readyForReview ──► approved ──► implementing ──► implemented
                 (needs analysis)       │    │            ▲
                                        │    └─► underReview (committee vote)
                                        └─► rejected      └─► rejected

Usage:
    from change_governance.services.change_state_machine import ChangeStateMachine

    machine = ChangeStateMachine()
    change = machine.complete_analysis(change, actor)
    change = machine.approve(change, capabilities, actor, comments="within budget")
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable

from change_governance.core.exceptions import (
    IncompleteAnalysis,
    InvalidTransition,
    PermissionDenied,
    ValidationError,
)
from change_governance.models.change_request import (
    COMMITTEE_ACTOR,
    ActorSnapshot,
    Alternative,
    ChangeRequest,
    ChangeStatus,
    StatusHistoryEntry,
    utcnow,
)
from change_governance.services.authority_router import (
    change_requires_committee,
    needs_analysis,
    route,
)
from change_governance.services.committee_voting import (
    CommitteeVotingEngine,
    TallyResult,
    VoteTally,
    empty_ballot,
)
from change_governance.services.permission_resolver import Capabilities

logger = logging.getLogger(__name__)

MIN_ALTERNATIVES = 3

CHANGE_TRANSITIONS: dict[ChangeStatus, frozenset[ChangeStatus]] = {
    ChangeStatus.SUBMITTED:        frozenset({ChangeStatus.IMPACT_ANALYSIS, ChangeStatus.READY_FOR_REVIEW}),
    ChangeStatus.IMPACT_ANALYSIS:  frozenset({ChangeStatus.READY_FOR_REVIEW}),
    ChangeStatus.READY_FOR_REVIEW: frozenset({
        ChangeStatus.APPROVED, ChangeStatus.REJECTED, ChangeStatus.UNDER_REVIEW,
    }),
    ChangeStatus.UNDER_REVIEW:     frozenset({ChangeStatus.APPROVED, ChangeStatus.REJECTED}),
    ChangeStatus.APPROVED:         frozenset({ChangeStatus.IMPLEMENTING}),
    ChangeStatus.IMPLEMENTING:     frozenset({ChangeStatus.IMPLEMENTED}),
    ChangeStatus.IMPLEMENTED:      frozenset(),
    ChangeStatus.REJECTED:         frozenset(),
    ChangeStatus.CANCELLED:        frozenset(),
}

# Statuses in which alternatives may still be added.
_ALTERNATIVE_EDIT_STATUSES = frozenset({
    ChangeStatus.SUBMITTED,
    ChangeStatus.IMPACT_ANALYSIS,
    ChangeStatus.READY_FOR_REVIEW,
    ChangeStatus.UNDER_REVIEW,
    ChangeStatus.APPROVED,
})


def validate_transition(old_status: ChangeStatus, new_status: ChangeStatus) -> bool:
    """Return True if the status change is an edge of the lifecycle graph."""
    return new_status in CHANGE_TRANSITIONS.get(old_status, frozenset())


def initial_status(cost: float, schedule: float) -> ChangeStatus:
    return ChangeStatus.IMPACT_ANALYSIS if needs_analysis(cost, schedule) else ChangeStatus.READY_FOR_REVIEW


def available_transitions(change: ChangeRequest) -> list[ChangeStatus]:
    """Statuses reachable from the change's current status by table.

    Gate conditions (capabilities, analysis, committee) are not evaluated.
    """
    return sorted(CHANGE_TRANSITIONS.get(change.status, frozenset()), key=lambda s: s.value)


def analysis_gaps(change: ChangeRequest) -> list[str]:
    """Unmet conditions for leaving impact analysis; empty when the gate is met."""
    missing = []
    if not change.impact_analysis_complete:
        missing.append("impact analysis not marked complete")
    if len(change.alternatives) < MIN_ALTERNATIVES:
        missing.append(
            f"{len(change.alternatives)} alternative(s) recorded, at least {MIN_ALTERNATIVES} required"
        )
    return missing


class ChangeStateMachine:
    """Validates and applies change request transitions."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    # ── Internals ────────────────────────────────────────────────────────

    def _require_status(self, change: ChangeRequest, expected: ChangeStatus, target: ChangeStatus) -> None:
        if change.status != expected:
            raise InvalidTransition(
                change.change_number, change.status.value, target.value,
                reason=f"change must be '{expected.value}'",
            )

    def _transition(
        self,
        change: ChangeRequest,
        target: ChangeStatus,
        actor: ActorSnapshot | None,
        comments: str = "",
        **fields,
    ) -> ChangeRequest:
        if not validate_transition(change.status, target):
            raise InvalidTransition(change.change_number, change.status.value, target.value)

        now = self._clock()
        entry = StatusHistoryEntry(
            status=target,
            timestamp=now,
            comments=(comments or "").strip(),
            actor=actor,
        )
        logger.info(
            "Change %s: %s -> %s",
            change.change_number, change.status.value, target.value,
            extra={"change_id": change.id, "project_id": change.project_id, "status": target.value},
        )
        return replace(
            change,
            status=target,
            updated_at=now,
            status_history=change.status_history + (entry,),
            **fields,
        )

    # ── Creation ─────────────────────────────────────────────────────────

    def create(
        self,
        *,
        change_id: str,
        change_number: str,
        project_id: int,
        actor: ActorSnapshot | None,
        title: str,
        description: str,
        category,
        priority,
        impact_cost: float = 0.0,
        impact_schedule: float = 0.0,
        **details,
    ) -> ChangeRequest:
        """Build a new change request with status and approver already routed.

        The initial status is recorded as the first history entry.
        """
        decision = route(impact_cost, impact_schedule)
        status = initial_status(impact_cost, impact_schedule)
        now = self._clock()
        return ChangeRequest(
            id=change_id,
            change_number=change_number,
            project_id=project_id,
            title=title,
            description=description,
            category=category,
            priority=priority,
            impact_cost=impact_cost,
            impact_schedule=impact_schedule,
            status=status,
            required_approver=decision.approver,
            authority_level=decision.level,
            created_by=actor,
            created_at=now,
            updated_at=now,
            status_history=(StatusHistoryEntry(status=status, timestamp=now, comments="Change submitted", actor=actor),),
            **details,
        )

    def route_submitted(self, change: ChangeRequest, actor: ActorSnapshot | None, comments: str = "") -> ChangeRequest:
        """Move a legacy ``submitted`` record to its computed initial status."""
        target = initial_status(change.impact_cost, change.impact_schedule)
        self._require_status(change, ChangeStatus.SUBMITTED, target)
        decision = route(change.impact_cost, change.impact_schedule)
        return self._transition(
            change, target, actor, comments or "Routed from legacy submission",
            required_approver=decision.approver,
            authority_level=decision.level,
        )

    # ── Analysis phase ───────────────────────────────────────────────────

    def add_alternative(self, change: ChangeRequest, alternative: Alternative) -> ChangeRequest:
        """Append an alternative. Not a transition; no history entry."""
        if change.status not in _ALTERNATIVE_EDIT_STATUSES:
            raise InvalidTransition(
                change.change_number, change.status.value, None,
                reason="alternatives are locked once implementation has started",
            )
        if any(a.id == alternative.id for a in change.alternatives):
            raise ValidationError(
                f"Alternative {alternative.id} already exists on {change.change_number}",
                details={"id": "duplicate"},
            )
        return replace(
            change,
            alternatives=change.alternatives + (alternative,),
            updated_at=self._clock(),
        )

    def record_impact_analysis(self, change: ChangeRequest, complete: bool, notes: str | None = None) -> ChangeRequest:
        """Set the analysis-complete flag (and notes). Only during impact analysis."""
        if change.status != ChangeStatus.IMPACT_ANALYSIS:
            raise InvalidTransition(
                change.change_number, change.status.value, None,
                reason="impact analysis can only be edited in 'impactAnalysis'",
            )
        return replace(
            change,
            impact_analysis_complete=bool(complete),
            impact_analysis_notes=change.impact_analysis_notes if notes is None else notes.strip(),
            updated_at=self._clock(),
        )

    def complete_analysis(self, change: ChangeRequest, actor: ActorSnapshot | None, comments: str = "") -> ChangeRequest:
        """impactAnalysis → readyForReview.

        Raises:
            InvalidTransition: change is not in impact analysis.
            IncompleteAnalysis: flag unset or fewer than three alternatives.
        """
        self._require_status(change, ChangeStatus.IMPACT_ANALYSIS, ChangeStatus.READY_FOR_REVIEW)
        missing = analysis_gaps(change)
        if missing:
            raise IncompleteAnalysis(change.change_number, missing)
        return self._transition(change, ChangeStatus.READY_FOR_REVIEW, actor, comments)

    # ── Review ───────────────────────────────────────────────────────────

    def approve(
        self,
        change: ChangeRequest,
        capabilities: Capabilities,
        actor: ActorSnapshot | None,
        comments: str = "",
    ) -> ChangeRequest:
        """readyForReview → approved by a single approver.

        Raises:
            InvalidTransition: wrong status, or the change requires the committee.
            PermissionDenied: no approve capability, or impact above the actor's limits.
        """
        self._require_status(change, ChangeStatus.READY_FOR_REVIEW, ChangeStatus.APPROVED)
        if change_requires_committee(change):
            raise InvalidTransition(
                change.change_number, change.status.value, ChangeStatus.APPROVED.value,
                reason=f"authority level '{change.authority_level.value}' requires committee review",
            )
        if not capabilities.can_approve:
            raise PermissionDenied("approve", reason=f"role '{capabilities.resolved_role_label}' cannot approve changes")
        limit = capabilities.approval_limit
        if not limit.allows(change.impact_cost, change.impact_schedule):
            raise PermissionDenied(
                "approve",
                reason=(
                    f"impact (cost {change.impact_cost:g}, schedule {change.impact_schedule:g}d) "
                    f"exceeds approval limit (cost {limit.cost:g}, schedule {limit.schedule:g}d)"
                ),
            )
        return self._transition(change, ChangeStatus.APPROVED, actor, comments)

    def reject(
        self,
        change: ChangeRequest,
        capabilities: Capabilities,
        actor: ActorSnapshot | None,
        comments: str = "",
    ) -> ChangeRequest:
        """readyForReview → rejected. Committee reviews are decided by vote only."""
        self._require_status(change, ChangeStatus.READY_FOR_REVIEW, ChangeStatus.REJECTED)
        if not capabilities.can_reject:
            raise PermissionDenied("reject", reason=f"role '{capabilities.resolved_role_label}' cannot reject changes")
        return self._transition(change, ChangeStatus.REJECTED, actor, comments)

    def escalate_to_committee(self, change: ChangeRequest, actor: ActorSnapshot | None, comments: str = "") -> ChangeRequest:
        """readyForReview → underReview, legal only when the committee is required."""
        self._require_status(change, ChangeStatus.READY_FOR_REVIEW, ChangeStatus.UNDER_REVIEW)
        if not change_requires_committee(change):
            raise InvalidTransition(
                change.change_number, change.status.value, ChangeStatus.UNDER_REVIEW.value,
                reason=f"authority level '{change.authority_level.value}' does not require committee review",
            )
        return self._transition(
            change, ChangeStatus.UNDER_REVIEW, actor, comments or "Sent to change control board",
            committee_votes=change.committee_votes if change.committee_votes is not None else empty_ballot(),
        )

    def record_vote(
        self,
        change: ChangeRequest,
        seat_id,
        value,
        actor,
        comments: str = "",
    ) -> tuple[ChangeRequest, VoteTally]:
        """Record a committee vote; resolve the change when the tally is final.

        ``actor`` needs a ``functional_role`` (ActorContext or ActorSnapshot);
        its snapshot is not written to history, the committee is.

        Raises:
            InvalidTransition: the change is not under committee review.
            InvalidVoter: the actor may not vote on ``seat_id``.
        """
        if change.status != ChangeStatus.UNDER_REVIEW:
            raise InvalidTransition(
                change.change_number, change.status.value, None,
                reason="votes are only accepted while the change is under committee review",
            )
        engine = CommitteeVotingEngine(change.committee_votes)
        engine.cast_vote(seat_id, value, actor, comments=comments, now=self._clock())
        tally = engine.tally()

        if tally.result == TallyResult.PENDING:
            return replace(change, committee_votes=engine.votes, updated_at=self._clock()), tally

        target = ChangeStatus.APPROVED if tally.result == TallyResult.APPROVED else ChangeStatus.REJECTED
        summary = (
            f"Committee {tally.result.value}: {tally.approve_count}/{tally.total_seats} approve, "
            f"{tally.reject_count} reject, {tally.abstain_count} abstain"
        )
        return self._transition(change, target, COMMITTEE_ACTOR, summary, committee_votes=engine.votes), tally

    # ── Implementation ───────────────────────────────────────────────────

    def select_alternative(
        self,
        change: ChangeRequest,
        index: int,
        actor: ActorSnapshot | None,
        comments: str = "",
    ) -> ChangeRequest:
        """approved → implementing, locking in the chosen alternative."""
        self._require_status(change, ChangeStatus.APPROVED, ChangeStatus.IMPLEMENTING)
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(change.alternatives):
            raise ValidationError(
                f"Alternative index {index!r} is out of range for {change.change_number}",
                details={"selected_alternative": f"must be between 0 and {len(change.alternatives) - 1}"
                         if change.alternatives else "no alternatives recorded"},
            )
        chosen = change.alternatives[index]
        return self._transition(
            change, ChangeStatus.IMPLEMENTING, actor,
            comments or f"Alternative selected: {chosen.name}",
            selected_alternative=index,
        )

    def mark_implemented(
        self,
        change: ChangeRequest,
        capabilities: Capabilities,
        actor: ActorSnapshot | None,
        comments: str = "",
    ) -> ChangeRequest:
        """implementing → implemented."""
        self._require_status(change, ChangeStatus.IMPLEMENTING, ChangeStatus.IMPLEMENTED)
        if not capabilities.can_implement:
            raise PermissionDenied(
                "implement", reason=f"role '{capabilities.resolved_role_label}' cannot implement changes",
            )
        return self._transition(change, ChangeStatus.IMPLEMENTED, actor, comments)
