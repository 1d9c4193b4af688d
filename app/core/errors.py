"""Error taxonomy shared by every trámite operation.

All errors derive from ``TramiteError`` which is a ``ValueError`` so callers
that only care about "the operation was rejected" can keep catching
``ValueError``. The HTTP layer serialises them with ``to_dict``.
"""
from __future__ import annotations

from typing import Any


class TramiteError(ValueError):
    code = "TRAMITE_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"error_code": self.code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class NotFound(TramiteError):
    """Referenced trámite, observation, document or user does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class PreconditionFailed(TramiteError):
    """Wrong actor, wrong current state, record already exists or capability missing."""

    code = "PRECONDITION_FAILED"
    status_code = 409


class ValidationFailed(TramiteError):
    """Bad input or a failed verification-code attempt."""

    code = "VALIDATION_FAILED"
    status_code = 400


class LockedOut(TramiteError):
    """The user is temporarily barred from code validation."""

    code = "LOCKED_OUT"
    status_code = 423


class DependencyFailure(TramiteError):
    """An external collaborator (email) failed; the operation can be retried."""

    code = "DEPENDENCY_FAILURE"
    status_code = 503
