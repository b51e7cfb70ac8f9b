"""
Change Control Blueprint.

HTTP endpoints for the change request lifecycle of a project. The acting
identity is taken from the ``X-User-Email`` header and resolved against the
project's organization; the facade derives every capability from it.

Endpoints (all under /api/v1/projects/<pid>):
    GET    /changes                              list (status, priority, search, limit, offset)
    POST   /changes                              create
    GET    /changes/metrics                      dashboard aggregates
    GET    /changes/permissions                  caller's capabilities
    GET    /changes/<cid>                        detail + available transitions
    GET    /changes/<cid>/impact                 detailed impact vs project budget/timeline
    POST   /changes/<cid>/alternatives           add alternative
    PUT    /changes/<cid>/impact-analysis        set analysis flag / notes
    POST   /changes/<cid>/route                  route a legacy 'submitted' record
    POST   /changes/<cid>/submit-review          impactAnalysis → readyForReview
    POST   /changes/<cid>/approve                readyForReview → approved
    POST   /changes/<cid>/reject                 readyForReview → rejected
    POST   /changes/<cid>/escalate               readyForReview → underReview
    GET    /changes/<cid>/votes                  committee ballot + tally
    POST   /changes/<cid>/votes                  cast a committee vote
    POST   /changes/<cid>/select-alternative     approved → implementing
    POST   /changes/<cid>/implement              implementing → implemented
    GET    /notifications                        caller's notifications (?recipient= own role/seat key)
    POST   /notifications/<nid>/read             mark one of the caller's as read

Layer contract:
    - Blueprint: parse input, resolve actor, call facade, return JSON.
    - NO db.session calls here; all writes owned by the services.
    - NO inline role/permission checks; the facade raises typed errors,
      mapped to HTTP statuses by the handlers below.
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from change_governance.blueprints import paginate_list
from change_governance.core.exceptions import (
    ConflictError,
    IncompleteAnalysis,
    InvalidTransition,
    InvalidVoter,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from change_governance.services.change_state_machine import available_transitions
from change_governance.services.committee_voting import tally_votes
from change_governance.services.governance_facade import GovernanceFacade
from change_governance.services.identity import resolve_actor
from change_governance.utils.errors import E, api_error

logger = logging.getLogger(__name__)

change_bp = Blueprint("changes", __name__, url_prefix="/api/v1")

ACTOR_HEADER = "X-User-Email"


# ── Error handlers ────────────────────────────────────────────────────────────


@change_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@change_bp.errorhandler(PermissionDenied)
def _handle_permission(error: PermissionDenied):
    return api_error(E.FORBIDDEN, str(error), details={"action": error.action})


@change_bp.errorhandler(InvalidVoter)
def _handle_invalid_voter(error: InvalidVoter):
    return api_error(
        E.INVALID_VOTER, str(error),
        details={"seat_id": error.seat_id, "functional_role": error.functional_role},
    )


@change_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@change_bp.errorhandler(InvalidTransition)
def _handle_invalid_transition(error: InvalidTransition):
    return api_error(
        E.INVALID_TRANSITION, str(error),
        details={"current_status": error.current_status, "target_status": error.target_status},
    )


@change_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(
        E.CONFLICT_VERSION, str(error),
        details={"expected_version": error.expected_version, "actual_version": error.actual_version},
    )


@change_bp.errorhandler(IncompleteAnalysis)
def _handle_incomplete(error: IncompleteAnalysis):
    return api_error(E.INCOMPLETE_ANALYSIS, str(error), details={"missing": error.missing})


@change_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in change_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _facade() -> GovernanceFacade:
    return GovernanceFacade.from_config(current_app.config)


def _context(project_id: int):
    """Return (facade, actor) for the project; NotFoundError for unknown projects."""
    facade = _facade()
    project = facade.project_mutator.load(project_id)
    actor = resolve_actor(project.organization_id, request.headers.get(ACTOR_HEADER))
    return facade, actor


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _comments(data: dict) -> str:
    value = data.get("comments") or ""
    if not isinstance(value, str):
        raise ValidationError("Invalid comments", details={"comments": "must be a string"})
    return value


def _detail(change) -> dict:
    result = change.to_dict()
    result["available_transitions"] = [s.value for s in available_transitions(change)]
    return result


# ═════════════════════════════════════════════════════════════════════════
# Collection
# ═════════════════════════════════════════════════════════════════════════


@change_bp.route("/projects/<int:project_id>/changes", methods=["GET"])
def list_changes(project_id: int):
    """List the project's change requests, newest first.

    Query params: status, priority, search, limit, offset
    """
    facade, actor = _context(project_id)
    changes = facade.list_changes(
        project_id,
        actor,
        status=request.args.get("status") or None,
        priority=request.args.get("priority") or None,
        search=request.args.get("search") or None,
    )
    page, total = paginate_list(changes)
    return jsonify({"items": [c.to_dict() for c in page], "total": total}), 200


@change_bp.route("/projects/<int:project_id>/changes", methods=["POST"])
def create_change(project_id: int):
    """Create a change request. Status and approver are routed from its impact."""
    facade, actor = _context(project_id)
    change = facade.create_change(project_id, actor, _body())
    return jsonify(_detail(change)), 201


@change_bp.route("/projects/<int:project_id>/changes/metrics", methods=["GET"])
def get_metrics(project_id: int):
    facade, actor = _context(project_id)
    return jsonify({"project_id": project_id, "metrics": facade.get_metrics(project_id, actor)}), 200


@change_bp.route("/projects/<int:project_id>/changes/permissions", methods=["GET"])
def get_permissions(project_id: int):
    """Capabilities of the caller in this project's organization."""
    facade, actor = _context(project_id)
    return jsonify({
        "actor": actor.snapshot().to_dict(),
        "capabilities": facade.capabilities_for(actor).to_dict(),
    }), 200


# ═════════════════════════════════════════════════════════════════════════
# Single change
# ═════════════════════════════════════════════════════════════════════════


@change_bp.route("/projects/<int:project_id>/changes/<change_id>", methods=["GET"])
def get_change(project_id: int, change_id: str):
    facade, actor = _context(project_id)
    return jsonify(_detail(facade.get_change(project_id, change_id, actor))), 200


@change_bp.route("/projects/<int:project_id>/changes/<change_id>/impact", methods=["GET"])
def get_impact(project_id: int, change_id: str):
    facade, actor = _context(project_id)
    return jsonify(facade.get_detailed_impact(project_id, change_id, actor)), 200


@change_bp.route("/projects/<int:project_id>/changes/<change_id>/alternatives", methods=["POST"])
def add_alternative(project_id: int, change_id: str):
    """Body: { name, description?, cost?, schedule?, pros?: [], cons?: [] }"""
    facade, actor = _context(project_id)
    change = facade.add_alternative(project_id, change_id, actor, _body())
    return jsonify(_detail(change)), 201


@change_bp.route("/projects/<int:project_id>/changes/<change_id>/impact-analysis", methods=["PUT"])
def record_impact_analysis(project_id: int, change_id: str):
    """Body: { complete: bool, notes?: str }"""
    facade, actor = _context(project_id)
    data = _body()
    complete = data.get("complete")
    if not isinstance(complete, bool):
        raise ValidationError("Invalid impact analysis", details={"complete": "must be a boolean"})
    notes = data.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("Invalid impact analysis", details={"notes": "must be a string"})
    change = facade.record_impact_analysis(project_id, change_id, actor, complete, notes)
    return jsonify(_detail(change)), 200


@change_bp.route("/projects/<int:project_id>/changes/<change_id>/route", methods=["POST"])
def route_submitted(project_id: int, change_id: str):
    facade, actor = _context(project_id)
    change = facade.route_submitted(project_id, change_id, actor, _comments(_body()))
    return jsonify(_detail(change)), 200


@change_bp.route("/projects/<int:project_id>/changes/<change_id>/submit-review", methods=["POST"])
def submit_for_review(project_id: int, change_id: str):
    facade, actor = _context(project_id)
    change = facade.submit_for_review(project_id, change_id, actor, _comments(_body()))
    return jsonify(_detail(change)), 200


@change_bp.route("/projects/<int:project_id>/changes/<change_id>/approve", methods=["POST"])
def approve_change(project_id: int, change_id: str):
    facade, actor = _context(project_id)
    change = facade.approve(project_id, change_id, actor, _comments(_body()))
    return jsonify(_detail(change)), 200


@change_bp.route("/projects/<int:project_id>/changes/<change_id>/reject", methods=["POST"])
def reject_change(project_id: int, change_id: str):
    facade, actor = _context(project_id)
    change = facade.reject(project_id, change_id, actor, _comments(_body()))
    return jsonify(_detail(change)), 200


@change_bp.route("/projects/<int:project_id>/changes/<change_id>/escalate", methods=["POST"])
def escalate_change(project_id: int, change_id: str):
    facade, actor = _context(project_id)
    change = facade.escalate(project_id, change_id, actor, _comments(_body()))
    return jsonify(_detail(change)), 200


# ═════════════════════════════════════════════════════════════════════════
# Committee
# ═════════════════════════════════════════════════════════════════════════


@change_bp.route("/projects/<int:project_id>/changes/<change_id>/votes", methods=["GET"])
def get_votes(project_id: int, change_id: str):
    facade, actor = _context(project_id)
    change = facade.get_change(project_id, change_id, actor)
    return jsonify({
        "change_id": change.id,
        "votes": [v.to_dict() for v in change.committee_votes or ()],
        "tally": tally_votes(change.committee_votes).to_dict(),
    }), 200


@change_bp.route("/projects/<int:project_id>/changes/<change_id>/votes", methods=["POST"])
def cast_vote(project_id: int, change_id: str):
    """Body: { seat_id: pm|tech|finance|quality|sponsor, vote: approve|reject|abstain, comments? }"""
    facade, actor = _context(project_id)
    data = _body()
    seat_id = (data.get("seat_id") or "").strip() if isinstance(data.get("seat_id"), str) else ""
    if not seat_id:
        raise ValidationError("Invalid vote", details={"seat_id": "is required"})
    change, tally = facade.cast_vote(
        project_id, change_id, actor, seat_id, data.get("vote"), _comments(data),
    )
    return jsonify({"change": _detail(change), "tally": tally.to_dict()}), 200


# ═════════════════════════════════════════════════════════════════════════
# Implementation
# ═════════════════════════════════════════════════════════════════════════


@change_bp.route("/projects/<int:project_id>/changes/<change_id>/select-alternative", methods=["POST"])
def select_alternative(project_id: int, change_id: str):
    """Body: { index: int, comments? }"""
    facade, actor = _context(project_id)
    data = _body()
    change = facade.select_alternative(project_id, change_id, actor, data.get("index"), _comments(data))
    return jsonify(_detail(change)), 200


@change_bp.route("/projects/<int:project_id>/changes/<change_id>/implement", methods=["POST"])
def implement_change(project_id: int, change_id: str):
    facade, actor = _context(project_id)
    change = facade.mark_implemented(project_id, change_id, actor, _comments(_body()))
    return jsonify(_detail(change)), 200


# ═════════════════════════════════════════════════════════════════════════
# Notifications
# ═════════════════════════════════════════════════════════════════════════


@change_bp.route("/projects/<int:project_id>/notifications", methods=["GET"])
def list_notifications(project_id: int):
    """Query params: recipient (defaults to the caller's email), unread_only, limit, offset

    The recipient must be the caller's own email or one of its role/seat keys.
    """
    facade, actor = _context(project_id)
    try:
        limit = min(int(request.args.get("limit", 50)), 200)
        offset = max(int(request.args.get("offset", 0)), 0)
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers")
    items, total = facade.list_notifications(
        project_id,
        actor,
        request.args.get("recipient"),
        unread_only=request.args.get("unread_only", "false").lower() == "true",
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total}), 200


@change_bp.route("/projects/<int:project_id>/notifications/<int:notification_id>/read", methods=["POST"])
def mark_notification_read(project_id: int, notification_id: int):
    facade, actor = _context(project_id)
    notif = facade.mark_notification_read(project_id, notification_id, actor)
    return jsonify(notif.to_dict()), 200
