"""Standardised API error responses.

Usage
-----
    from change_governance.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Change request not found")
    return api_error(E.INVALID_TRANSITION, "Committee review required")
    return api_error(E.INCOMPLETE_ANALYSIS, "Analysis incomplete", details={"missing": [...]})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • GOVERNANCE_ prefix for change-control rule violations
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_VERSION = "ERR_CONFLICT_VERSION"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"

    # Governance
    INVALID_TRANSITION = "GOVERNANCE_INVALID_TRANSITION"
    INCOMPLETE_ANALYSIS = "GOVERNANCE_INCOMPLETE_ANALYSIS"
    INVALID_VOTER = "GOVERNANCE_INVALID_VOTER"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_VERSION: 409,
    E.FORBIDDEN: 403,
    E.INTERNAL: 500,
    E.INVALID_TRANSITION: 409,
    E.INCOMPLETE_ANALYSIS: 422,
    E.INVALID_VOTER: 403,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (missing gate conditions, field errors, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
