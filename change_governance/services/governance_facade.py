"""
Governance Facade: entry point for every change-control operation.

Each command:
    1. loads the project's change set and version from the store
    2. resolves the actor's capabilities
    3. runs the state machine (pure; raises before anything is written)
    4. on approval, applies the change to the project in the same unit of work
    5. writes the change set back with the version it read (ConflictError if stale)
    6. after commit, records the audit trail and sends notifications; failures
       there are logged and never undo the committed operation

Queries (list, get, tally, metrics, impact) read without writing.

Usage:
    facade = GovernanceFacade.from_config(current_app.config)
    change = facade.create_change(project_id, actor, {"title": ..., ...})
    change = facade.approve(project_id, change.id, actor, comments="ok")
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import date
from typing import Any, Callable

from change_governance.core.exceptions import NotFoundError, PermissionDenied, ValidationError
from change_governance.models.change_request import (
    Alternative,
    ChangeCategory,
    ChangePriority,
    ChangeRequest,
    ChangeStatus,
    VoteValue,
    format_change_number,
)
from change_governance.services.audit_trail import AuditTrail
from change_governance.services.change_metrics import calculate_detailed_impact, filter_changes, summarize
from change_governance.services.change_state_machine import ChangeStateMachine, available_transitions
from change_governance.services.change_store import ChangeStore, SqlChangeStore
from change_governance.services.committee_voting import COMMITTEE_ROSTER, VoteTally, seat_for_role, tally_votes
from change_governance.services.identity import ActorContext
from change_governance.services.notification import NotificationService
from change_governance.services.permission_resolver import Capabilities, resolve_capabilities
from change_governance.services.project_mutator import ProjectState, SqlProjectMutator

logger = logging.getLogger(__name__)

TITLE_MAX = 300
_TEXT_FIELDS = ("justification", "impact_scope", "impact_quality", "impact_resources", "requested_by")
_ROSTER_SEATS = frozenset(seat.seat_id.value for seat in COMMITTEE_ROSTER)


# ═════════════════════════════════════════════════════════════════════════════
# Input validation
# ═════════════════════════════════════════════════════════════════════════════

def _non_negative(payload: dict, key: str, errors: dict) -> float:
    raw = payload.get(key)
    if raw is None or raw == "":
        return 0.0
    if isinstance(raw, bool):
        errors[key] = "must be a number"
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        errors[key] = "must be a number"
        return 0.0
    if math.isnan(value) or math.isinf(value) or value < 0:
        errors[key] = "must be a finite number >= 0"
        return 0.0
    return value


def _text(payload: dict, key: str, errors: dict, *, required: bool = False, max_len: int | None = None) -> str:
    raw = payload.get(key)
    if raw is None:
        raw = ""
    if not isinstance(raw, str):
        errors[key] = "must be a string"
        return ""
    value = raw.strip()
    if required and not value:
        errors[key] = "is required"
    elif max_len and len(value) > max_len:
        errors[key] = f"must be at most {max_len} characters"
    return value


def _string_list(payload: dict, key: str, errors: dict) -> tuple[str, ...]:
    raw = payload.get(key) or []
    if not isinstance(raw, (list, tuple)) or not all(isinstance(x, str) for x in raw):
        errors[key] = "must be a list of strings"
        return ()
    return tuple(x.strip() for x in raw if x.strip())


def parse_alternative(payload: dict) -> Alternative:
    """Validate an alternative payload.

    Raises:
        ValidationError: with per-field details.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Alternative must be an object")
    errors: dict[str, str] = {}
    name = _text(payload, "name", errors, required=True, max_len=TITLE_MAX)
    alternative = Alternative(
        id=str(payload.get("id") or uuid.uuid4()),
        name=name,
        description=_text(payload, "description", errors),
        cost=_non_negative(payload, "cost", errors),
        schedule=_non_negative(payload, "schedule", errors),
        pros=_string_list(payload, "pros", errors),
        cons=_string_list(payload, "cons", errors),
    )
    if errors:
        raise ValidationError("Invalid alternative", details=errors)
    return alternative


def parse_change_payload(payload: dict) -> dict[str, Any]:
    """Validate and coerce a change request creation payload.

    Returns the keyword arguments for ``ChangeStateMachine.create``.

    Raises:
        ValidationError: with per-field details.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    errors: dict[str, str] = {}
    fields: dict[str, Any] = {
        "title": _text(payload, "title", errors, required=True, max_len=TITLE_MAX),
        "description": _text(payload, "description", errors, required=True),
        "impact_cost": _non_negative(payload, "impact_cost", errors),
        "impact_schedule": _non_negative(payload, "impact_schedule", errors),
    }
    for key in _TEXT_FIELDS:
        fields[key] = _text(payload, key, errors)

    category = payload.get("category")
    if category not in ChangeCategory._value2member_map_:
        errors["category"] = f"must be one of: {', '.join(c.value for c in ChangeCategory)}"
    else:
        fields["category"] = ChangeCategory(category)

    priority = payload.get("priority") or ChangePriority.MEDIUM.value
    if priority not in ChangePriority._value2member_map_:
        errors["priority"] = f"must be one of: {', '.join(p.value for p in ChangePriority)}"
    else:
        fields["priority"] = ChangePriority(priority)

    raw_date = payload.get("expected_implementation_date")
    fields["expected_implementation_date"] = None
    if raw_date:
        try:
            fields["expected_implementation_date"] = date.fromisoformat(str(raw_date)[:10])
        except ValueError:
            errors["expected_implementation_date"] = "must be an ISO date (YYYY-MM-DD)"

    alternatives = []
    raw_alternatives = payload.get("alternatives") or []
    if not isinstance(raw_alternatives, list):
        errors["alternatives"] = "must be a list"
    else:
        for i, item in enumerate(raw_alternatives):
            try:
                alternatives.append(parse_alternative(item))
            except ValidationError as exc:
                errors[f"alternatives[{i}]"] = str(exc.details or exc)
    fields["alternatives"] = tuple(alternatives)

    if errors:
        raise ValidationError("Invalid change request", details=errors)
    return fields


# ═════════════════════════════════════════════════════════════════════════════
# Facade
# ═════════════════════════════════════════════════════════════════════════════

class GovernanceFacade:
    """Coordinates store, resolver, state machine, project mutator, audit and notifier."""

    def __init__(
        self,
        store: ChangeStore | None = None,
        project_mutator: SqlProjectMutator | None = None,
        notifier=None,
        audit: AuditTrail | None = None,
        state_machine: ChangeStateMachine | None = None,
        change_number_prefix: str = "CHG",
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.store = store or SqlChangeStore()
        self.project_mutator = project_mutator or SqlProjectMutator()
        self.notifier = notifier
        self.audit = audit
        self.machine = state_machine or ChangeStateMachine()
        self.change_number_prefix = change_number_prefix
        self._new_id = id_factory

    @classmethod
    def from_config(cls, config) -> "GovernanceFacade":
        return cls(
            notifier=NotificationService() if config.get("GOVERNANCE_NOTIFICATIONS_ENABLED", True) else None,
            audit=AuditTrail(enabled=config.get("GOVERNANCE_AUDIT_ENABLED", True)),
            change_number_prefix=config.get("CHANGE_NUMBER_PREFIX", "CHG"),
        )

    # ── Queries ──────────────────────────────────────────────────────────

    @staticmethod
    def capabilities_for(actor: ActorContext) -> Capabilities:
        return resolve_capabilities(actor.org_role, actor.functional_role)

    def _require_reader(self, actor: ActorContext) -> Capabilities:
        caps = self.capabilities_for(actor)
        if not (caps.can_view_all or caps.can_comment):
            raise PermissionDenied("view", reason=f"{actor.label} is not a member of this organization")
        return caps

    def list_changes(
        self,
        project_id: int,
        actor: ActorContext,
        *,
        status: str | None = None,
        priority: str | None = None,
        search: str | None = None,
    ) -> list[ChangeRequest]:
        self._require_reader(actor)
        return filter_changes(self.store.load_changes(project_id).changes, status, priority, search)

    def get_change(self, project_id: int, change_id: str, actor: ActorContext) -> ChangeRequest:
        self._require_reader(actor)
        return self.store.load_changes(project_id).find(change_id)

    def get_tally(self, project_id: int, change_id: str, actor: ActorContext) -> VoteTally:
        return tally_votes(self.get_change(project_id, change_id, actor).committee_votes)

    def get_metrics(self, project_id: int, actor: ActorContext) -> dict:
        self._require_reader(actor)
        return summarize(self.store.load_changes(project_id).changes)

    def get_available_transitions(self, project_id: int, change_id: str, actor: ActorContext) -> list[str]:
        return [s.value for s in available_transitions(self.get_change(project_id, change_id, actor))]

    def get_detailed_impact(self, project_id: int, change_id: str, actor: ActorContext) -> dict:
        change = self.get_change(project_id, change_id, actor)
        project = ProjectState.from_model(self.project_mutator.load(project_id))
        return calculate_detailed_impact(change, project)

    # ── Notifications ────────────────────────────────────────────────────

    def recipient_keys(self, actor: ActorContext) -> frozenset[str]:
        """Notification recipients the actor may read: own email, role and seat keys."""
        caps = self.capabilities_for(actor)
        if not (caps.can_view_all or caps.can_comment):
            return frozenset()
        keys = {f"role:{caps.resolved_role_label}"}
        if actor.email:
            keys.add(actor.email.lower())
        if actor.functional_role:
            keys.add(f"role:{actor.functional_role.value}")
        if caps.can_vote_in_committee:
            keys.add("role:committee")
        seat = seat_for_role(actor.functional_role)
        if seat in _ROSTER_SEATS:
            keys.add(f"ccb:{seat}")
        return frozenset(keys)

    def list_notifications(
        self,
        project_id: int,
        actor: ActorContext,
        recipient: str | None = None,
        *,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ):
        """Notifications addressed to ``recipient`` (default: the actor's email).

        Raises:
            PermissionDenied: the actor is not a member, or the recipient is
                not one of the actor's own keys.
        """
        self._require_reader(actor)
        recipient = (recipient or actor.email or "").strip().lower()
        if recipient not in self.recipient_keys(actor):
            raise PermissionDenied(
                "view_notifications", reason=f"{actor.label} cannot read notifications for {recipient or 'nobody'}",
            )
        return NotificationService.list_for_recipient(
            recipient, project_id=project_id, unread_only=unread_only, limit=limit, offset=offset,
        )

    def mark_notification_read(self, project_id: int, notification_id: int, actor: ActorContext):
        """Mark one of the actor's notifications read.

        Raises:
            PermissionDenied: the actor is not a member.
            NotFoundError: missing, in another project, or addressed to someone else.
        """
        self._require_reader(actor)
        notif = NotificationService.mark_read(
            notification_id, project_id=project_id, recipients=self.recipient_keys(actor),
        )
        if notif is None:
            raise NotFoundError("Notification", notification_id)
        return notif

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _require_participant(actor: ActorContext, caps: Capabilities, action: str) -> None:
        if not caps.can_comment:
            raise PermissionDenied(action, reason=f"{actor.label} is not a member of this organization")

    def _mutate(
        self,
        project_id: int,
        change_id: str,
        actor: ActorContext,
        action: str,
        operation: Callable[[ChangeRequest, Capabilities], tuple[ChangeRequest, Any]],
    ) -> tuple[ChangeRequest, ChangeRequest, Any]:
        """Load → check/transition → apply to project → versioned save, in one unit of work."""
        caps = self.capabilities_for(actor)
        with self.store.atomic():
            current = self.store.load_changes(project_id)
            before = current.find(change_id)
            after, extra = operation(before, caps)
            applied = after.status == ChangeStatus.APPROVED and before.status != ChangeStatus.APPROVED
            if applied:
                self.project_mutator.apply(after)
            self.store.save_changes(project_id, current.with_change(after), current.version)

        self._after_commit(action, actor, before, after, extra, project_applied=applied)
        return before, after, extra

    def _best_effort(self, what: str, change: ChangeRequest, fn: Callable, *args) -> None:
        try:
            fn(*args)
        except Exception:
            logger.warning(
                "%s failed for %s", what, change.change_number,
                exc_info=True,
                extra={"change_id": change.id, "project_id": change.project_id, "event_type": what},
            )

    def _after_commit(
        self,
        action: str,
        actor: ActorContext,
        before: ChangeRequest | None,
        after: ChangeRequest,
        extra: Any = None,
        *,
        project_applied: bool = False,
    ) -> None:
        previous = before.status if before else None
        logger.info(
            "Change %s %s by %s", after.change_number, action, actor.label,
            extra={
                "change_id": after.id,
                "project_id": after.project_id,
                "event_type": f"change_request.{action}",
                "status": after.status.value,
            },
        )

        if self.audit is not None:
            payload = {
                "entity_id": after.id,
                "project_id": after.project_id,
                "actor": actor.label,
                "change_number": after.change_number,
                "from_status": previous.value if previous else None,
                "to_status": after.status.value,
            }
            if isinstance(extra, dict):
                payload.update({k: v for k, v in extra.items() if not k.startswith("_")})
            category = "committee" if action == "vote" else "change_request"
            audit_action = "committee.vote" if action == "vote" else f"change_request.{action}"
            self._best_effort("audit", after, self.audit.record, category, audit_action, payload)
            if action == "vote" and previous != after.status:
                self._best_effort("audit", after, self.audit.record, "committee", "committee.decision", {
                    "entity_id": after.id, "project_id": after.project_id,
                    "change_number": after.change_number, "to_status": after.status.value,
                })
            if project_applied:
                self._best_effort("audit", after, self.audit.record, "project", "project.apply_change", {
                    "entity_type": "project",
                    "entity_id": str(after.project_id),
                    "project_id": after.project_id,
                    "actor": actor.label,
                    "change_id": after.id,
                    "change_number": after.change_number,
                    "impact_cost": after.impact_cost,
                    "impact_schedule": after.impact_schedule,
                })

        if self.notifier is None:
            return
        if after.status == ChangeStatus.READY_FOR_REVIEW and previous != after.status:
            self._best_effort(
                "notify", after, self.notifier.notify,
                "approval_required", f"role:{after.required_approver.value}", after,
            )
        if after.status == ChangeStatus.UNDER_REVIEW and previous != after.status:
            for seat in COMMITTEE_ROSTER:
                self._best_effort(
                    "notify", after, self.notifier.notify,
                    "committee_vote_required", f"ccb:{seat.seat_id.value}", after,
                )
        creator_email = after.created_by.email if after.created_by else None
        if previous is not None and previous != after.status and creator_email:
            self._best_effort("notify", after, self.notifier.notify, "status_changed", creator_email, after)

    # ── Commands ─────────────────────────────────────────────────────────

    def create_change(self, project_id: int, actor: ActorContext, payload: dict) -> ChangeRequest:
        """Validate, route and persist a new change request.

        Raises:
            PermissionDenied: actor cannot create changes.
            ValidationError: invalid payload.
            NotFoundError: unknown project.
        """
        caps = self.capabilities_for(actor)
        if not caps.can_create:
            raise PermissionDenied("create", reason=f"role '{caps.resolved_role_label}' cannot create changes")
        fields = parse_change_payload(payload)
        self.project_mutator.load(project_id)

        with self.store.atomic():
            current = self.store.load_changes(project_id)
            change = self.machine.create(
                change_id=self._new_id(),
                change_number=format_change_number(current.next_sequence, self.change_number_prefix),
                project_id=project_id,
                actor=actor.snapshot(),
                **fields,
            )
            self.store.save_changes(project_id, current.changes + (change,), current.version)

        self._after_commit("create", actor, None, change, {
            "authority_level": change.authority_level.value,
            "required_approver": change.required_approver.value,
        })
        return change

    def route_submitted(self, project_id: int, change_id: str, actor: ActorContext, comments: str = "") -> ChangeRequest:
        def op(change, caps):
            self._require_participant(actor, caps, "route")
            return self.machine.route_submitted(change, actor.snapshot(), comments), None
        return self._mutate(project_id, change_id, actor, "route_submitted", op)[1]

    def add_alternative(self, project_id: int, change_id: str, actor: ActorContext, payload: dict) -> ChangeRequest:
        alternative = parse_alternative(payload)

        def op(change, caps):
            self._require_participant(actor, caps, "add_alternative")
            return self.machine.add_alternative(change, alternative), {"alternative": alternative.name}
        return self._mutate(project_id, change_id, actor, "add_alternative", op)[1]

    def record_impact_analysis(
        self,
        project_id: int,
        change_id: str,
        actor: ActorContext,
        complete: bool,
        notes: str | None = None,
    ) -> ChangeRequest:
        def op(change, caps):
            self._require_participant(actor, caps, "record_impact_analysis")
            return (
                self.machine.record_impact_analysis(change, complete, notes),
                {"impact_analysis_complete": bool(complete)},
            )
        return self._mutate(project_id, change_id, actor, "record_impact_analysis", op)[1]

    def submit_for_review(self, project_id: int, change_id: str, actor: ActorContext, comments: str = "") -> ChangeRequest:
        def op(change, caps):
            self._require_participant(actor, caps, "submit_for_review")
            return self.machine.complete_analysis(change, actor.snapshot(), comments), None
        return self._mutate(project_id, change_id, actor, "submit_for_review", op)[1]

    def approve(self, project_id: int, change_id: str, actor: ActorContext, comments: str = "") -> ChangeRequest:
        def op(change, caps):
            return self.machine.approve(change, caps, actor.snapshot(), comments), {"comments": comments}
        return self._mutate(project_id, change_id, actor, "approve", op)[1]

    def reject(self, project_id: int, change_id: str, actor: ActorContext, comments: str = "") -> ChangeRequest:
        def op(change, caps):
            return self.machine.reject(change, caps, actor.snapshot(), comments), {"comments": comments}
        return self._mutate(project_id, change_id, actor, "reject", op)[1]

    def escalate(self, project_id: int, change_id: str, actor: ActorContext, comments: str = "") -> ChangeRequest:
        def op(change, caps):
            self._require_participant(actor, caps, "escalate")
            return self.machine.escalate_to_committee(change, actor.snapshot(), comments), None
        return self._mutate(project_id, change_id, actor, "escalate", op)[1]

    def cast_vote(
        self,
        project_id: int,
        change_id: str,
        actor: ActorContext,
        seat_id: str,
        vote: str,
        comments: str = "",
    ) -> tuple[ChangeRequest, VoteTally]:
        """Record a committee vote; the change resolves when the tally is final.

        Raises:
            ValidationError: unknown vote value.
            PermissionDenied: actor cannot vote in committee.
            InvalidVoter: actor's functional role does not hold ``seat_id``.
            InvalidTransition: change is not under committee review.
        """
        if vote not in VoteValue._value2member_map_:
            raise ValidationError(
                f"Invalid vote '{vote}'",
                details={"vote": f"must be one of: {', '.join(v.value for v in VoteValue)}"},
            )

        def op(change, caps):
            if not caps.can_vote_in_committee:
                raise PermissionDenied(
                    "vote", reason=f"role '{caps.resolved_role_label}' cannot vote in committee",
                )
            updated, tally = self.machine.record_vote(change, seat_id, vote, actor, comments)
            return updated, {"seat_id": seat_id, "vote": vote, "tally": tally.to_dict(), "_tally": tally}

        _, after, extra = self._mutate(project_id, change_id, actor, "vote", op)
        return after, extra["_tally"]

    def select_alternative(
        self,
        project_id: int,
        change_id: str,
        actor: ActorContext,
        index: int,
        comments: str = "",
    ) -> ChangeRequest:
        def op(change, caps):
            self._require_participant(actor, caps, "select_alternative")
            return (
                self.machine.select_alternative(change, index, actor.snapshot(), comments),
                {"selected_alternative": index},
            )
        return self._mutate(project_id, change_id, actor, "select_alternative", op)[1]

    def mark_implemented(self, project_id: int, change_id: str, actor: ActorContext, comments: str = "") -> ChangeRequest:
        def op(change, caps):
            return self.machine.mark_implemented(change, caps, actor.snapshot(), comments), None
        return self._mutate(project_id, change_id, actor, "implement", op)[1]
