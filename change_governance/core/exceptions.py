"""
Governance exception hierarchy.

Every check in the engine runs before any mutation. When a check fails the
change request is left untouched and one of these typed errors is raised;
the engine never degrades to a default transition and never retries.

The blueprint registers one handler per type and maps each to a stable
HTTP status and machine-readable code (see ``utils/errors.py``).

Usage:
    from change_governance.core.exceptions import InvalidTransition, PermissionDenied

    raise PermissionDenied("approve", reason="cost 30000 exceeds limit 25000")
    raise InvalidTransition("CHG-0003", "readyForReview", "approved",
                            reason="committee review required")
"""


class GovernanceError(Exception):
    """Base class for every error the governance engine raises."""


class NotFoundError(GovernanceError):
    """Raised when a project or change request does not exist.

    Args:
        resource: Human-readable entity name (e.g. "ChangeRequest", "Project").
        resource_id: The identifier that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(GovernanceError):
    """Raised when input is missing required fields or violates a field rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PermissionDenied(GovernanceError):
    """Raised when a capability is missing or an approval limit is exceeded.

    Args:
        action: The attempted action ("create", "approve", "reject", ...).
        reason: Optional detail (which capability or limit failed).
    """

    def __init__(self, action: str, reason: str | None = None) -> None:
        self.action = action
        self.reason = reason
        msg = f"Not permitted to '{action}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class InvalidTransition(GovernanceError):
    """Raised when a requested state change violates the state machine."""

    def __init__(
        self,
        change_number: str,
        current: str,
        target: str | None,
        reason: str | None = None,
    ) -> None:
        self.change_number = change_number
        self.current_status = current
        self.target_status = target
        self.reason = reason
        msg = f"Cannot move {change_number} from '{current}'"
        if target:
            msg += f" to '{target}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class IncompleteAnalysis(GovernanceError):
    """Raised when the impact-analysis gate is not met.

    Args:
        change_number: The change being moved out of impact analysis.
        missing: List of unmet gate conditions, for structured responses.
    """

    def __init__(self, change_number: str, missing: list[str]) -> None:
        self.change_number = change_number
        self.missing = missing
        super().__init__(
            f"Impact analysis for {change_number} is incomplete: {'; '.join(missing)}"
        )


class InvalidVoter(GovernanceError):
    """Raised when the actor's functional role does not map to the targeted seat."""

    def __init__(self, seat_id: str, functional_role: str | None) -> None:
        self.seat_id = seat_id
        self.functional_role = functional_role
        super().__init__(
            f"Functional role '{functional_role or 'none'}' cannot vote on committee seat '{seat_id}'"
        )


class ConflictError(GovernanceError):
    """Raised by the store when a write is based on a stale version.

    The caller must re-read the project's changes and retry; the engine
    never merges concurrent writes.

    Args:
        resource: Entity name.
        resource_id: The project whose change log was written.
        expected_version: Version the writer read.
        actual_version: Version currently stored, when known.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        msg = f"{resource} id={resource_id} was modified concurrently"
        if expected_version is not None:
            msg += f" (expected version {expected_version}"
            if actual_version is not None:
                msg += f", found {actual_version}"
            msg += ")"
        super().__init__(msg)
