from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class FieldError:
    """One problem with one field of client input."""

    field: str
    message: str

    def as_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


class PortalError(Exception):
    """
    Base for errors that are allowed to fail a request.

    status_code / code are what the HTTP layer reports; services never build
    HTTP responses themselves.
    """

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ReferenceValidationError(PortalError):
    status_code = 400
    code = "REFERENCE_VALIDATION_ERROR"

    def __init__(self, errors: List[FieldError], message: str = "Validation failed") -> None:
        super().__init__(message)
        self.errors = list(errors)

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["errors"] = [e.as_dict() for e in self.errors]
        return detail


class VoterNotFoundError(PortalError):
    status_code = 404
    code = "USER_NOT_FOUND"


class ReferenceNotFoundError(PortalError):
    status_code = 404
    code = "REFERENCE_NOT_FOUND"


class InvalidStatusTransition(PortalError):
    status_code = 409
    code = "INVALID_STATUS_TRANSITION"


class PersistenceError(PortalError):
    status_code = 500
    code = "PERSISTENCE_ERROR"


class DuplicateReferenceError(PersistenceError):
    """A (user, contact) pair was inserted by someone else after the dedup read."""

    code = "REFERENCE_CREATION_FAILED"
