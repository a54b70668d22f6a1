"""Error taxonomy shared by services and the HTTP layer.

Every service error carries the HTTP status the API should answer with, so
routes can let them propagate and the handlers registered in ``main`` render
a uniform ``{"error": ..., "detail": ...}`` body.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class FieldVerifyError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "detail": self.message}
        body.update(self.extra)
        return body


class ValidationError(FieldVerifyError):
    """Missing or invalid input; never retried."""

    status_code = 400
    code = "validation_failed"


class PermissionDeniedError(FieldVerifyError):
    status_code = 403
    code = "permission_denied"


class NotFoundError(FieldVerifyError):
    status_code = 404
    code = "not_found"


class InvalidTransitionError(FieldVerifyError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, case_id: str, current: str, target: str):
        super().__init__(
            f"Case {case_id} cannot move from '{current}' to '{target}'",
            current=current,
            target=target,
        )


class StaleRevisionError(FieldVerifyError):
    """The record changed since the caller last read it."""

    status_code = 409
    code = "stale_revision"

    def __init__(self, case_id: str, expected: Optional[int], actual: Optional[int]):
        super().__init__(
            f"Case {case_id} is at revision {actual}, expected {expected}",
            expected_rev=expected,
            actual_rev=actual,
        )


class IncompleteRequirementsError(FieldVerifyError):
    """Checklist not satisfied; blocks submission."""

    status_code = 422
    code = "incomplete_requirements"

    def __init__(self, missing: List[str]):
        super().__init__(
            "Requirements not met: " + ", ".join(missing),
            missing=list(missing),
        )
        self.missing = list(missing)


class MaintenanceModeError(FieldVerifyError):
    status_code = 503
    code = "maintenance_mode"


class TransientRemoteError(FieldVerifyError):
    """Network, storage or mail failure after retries were exhausted."""

    status_code = 502
    code = "remote_failure"


class ConsistencyWarning(FieldVerifyError):
    """Partial success: some writes of a batch failed."""

    status_code = 207
    code = "partial_success"
