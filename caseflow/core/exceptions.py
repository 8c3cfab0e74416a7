"""
Engine-wide exception hierarchy.

All services raise these types; the HTTP adapter registers one handler per
family and gets consistent status codes everywhere.

Usage:
    from caseflow.core.exceptions import NotFoundError, InvalidTransitionError

    raise NotFoundError(resource="WorkflowStep", resource_id=step_id)
    raise InvalidTransitionError("validate-will", "blocked", "complete")

Mapping (see caseflow.blueprints.workflow_bp):
    NotFoundError            → 404
    ValidationError          → 400
    CaseAccessDeniedError    → 403
    ConflictError (+ family) → 409
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant / cross-case
    lookups, so that a caller cannot probe for the existence of another
    tenant's steps.

    Args:
        resource: Human-readable model/entity name (e.g. "Case", "WorkflowStep").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional — the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when operator input is malformed (unknown override target,
    missing rationale, notes too long).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Base for state conflicts: the input was well-formed but the current
    case / step graph does not allow the operation. Maps to HTTP 409.

    Never retried automatically — every subclass is a deterministic outcome
    of the current graph.
    """

    code = "ERR_CONFLICT_STATE"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidCaseStateError(ConflictError):
    """Case has not reached a required precondition (no intake, no plan,
    terminal case status)."""

    code = "ERR_INVALID_CASE_STATE"


class PlanIntegrityError(InvalidCaseStateError):
    """Step graph is malformed: dangling dependency reference or a cycle."""

    code = "ERR_PLAN_INTEGRITY"


class InvalidTransitionError(ConflictError):
    """Requested status is not recognized or not reachable from the current one.

    Args:
        step_key: Catalog key of the step being transitioned.
        current: Current status value.
        target: Requested status value (or the raw token when unrecognized).
    """

    code = "ERR_INVALID_TRANSITION"

    def __init__(self, step_key: str | None, current: str | None, target: str | None,
                 message: str | None = None) -> None:
        self.step_key = step_key
        self.current = current
        self.target = target
        super().__init__(
            message or f"Invalid transition for step {step_key}: {current} → {target}",
            details={"step_key": step_key, "current_status": current, "target_status": target},
        )


class DependenciesNotSatisfiedError(InvalidTransitionError):
    """Transition rejected because predecessor steps are not complete or skipped.

    Kept distinct from InvalidTransitionError because it is actionable:
    completing the listed predecessors resolves it.
    """

    code = "ERR_DEPENDENCIES_NOT_SATISFIED"

    def __init__(self, step_key: str, current: str, target: str,
                 pending_step_keys: list[str]) -> None:
        self.pending_step_keys = list(pending_step_keys)
        super().__init__(
            step_key,
            current,
            target,
            message=(
                f"Step {step_key} cannot move to {target}: "
                f"waiting on {', '.join(self.pending_step_keys)}"
            ),
        )
        self.details["pending_step_keys"] = self.pending_step_keys


class ConcurrentModificationError(ConflictError):
    """A step row changed underneath this operation (row_version mismatch)."""

    code = "ERR_CONCURRENT_MODIFICATION"


class CaseAccessDeniedError(Exception):
    """Actor's effective case role is below the minimum for the action. Maps to 403.

    Args:
        action: Operation name (e.g. "GenerateCasePlan").
        required_role: Minimum case role for the action.
        actual_role: Resolved role, or None when the actor has no role on the case.
    """

    def __init__(self, action: str, required_role: str, actual_role: str | None) -> None:
        self.action = action
        self.required_role = required_role
        self.actual_role = actual_role
        super().__init__(
            f"{action} requires case role '{required_role}' (actual: {actual_role or 'none'})"
        )


class OperationCancelledError(Exception):
    """Cancellation was signalled before the operation committed."""
