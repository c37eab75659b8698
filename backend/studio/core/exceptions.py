# backend/studio/core/exceptions.py
"""
Domain-specific exceptions for the studio scheduling core.

Every failure of a scheduling or ledger operation surfaces as one of four kinds:
conflict, policy violation, not found, or transient store error. The API layer
converts them with ``to_http_exception``.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)
HTTP_423_LOCKED: int = getattr(status, "HTTP_423_LOCKED", 423)
HTTP_451_UNAVAILABLE_FOR_LEGAL_REASONS: int = getattr(
    status, "HTTP_451_UNAVAILABLE_FOR_LEGAL_REASONS", 451
)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when input validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a referenced room, staff member, occurrence, pass or registration is missing."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code or "NOT_FOUND", details=details)

    @classmethod
    def for_entity(cls, entity: str, entity_id: str) -> "NotFoundException":
        return cls(
            f"{entity} {entity_id} not found",
            details={"entity": entity, "entity_id": entity_id},
        )


class ConflictException(DomainException):
    """Raised when a write collides with existing state."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails unexpectedly."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Conflict kinds


class ResourceConflictException(ConflictException):
    """Raised when a room or staff member is already allocated for an overlapping interval."""

    def __init__(
        self,
        conflict_type: str,
        conflicting_entity_id: str,
        conflicting_entity_kind: str,
        conflicting_start: datetime,
        conflicting_end: datetime,
        message: Optional[str] = None,
    ):
        self.conflict_type = conflict_type
        self.conflicting_entity_id = conflicting_entity_id
        super().__init__(
            message=message or f"The {conflict_type} is already booked for an overlapping time",
            code="RESOURCE_CONFLICT",
            details={
                "conflict": True,
                "conflict_type": conflict_type,
                "conflicting_entity_id": conflicting_entity_id,
                "conflicting_entity_kind": conflicting_entity_kind,
                "conflicting_start": conflicting_start.isoformat(),
                "conflicting_end": conflicting_end.isoformat(),
            },
        )


class DuplicateRegistrationException(ConflictException):
    """Raised when a client already holds an active registration for an occurrence."""

    def __init__(self, occurrence_id: str, client_id: str, registration_id: Optional[str] = None):
        super().__init__(
            message="Client is already registered for this class",
            code="ALREADY_REGISTERED",
            details={
                "occurrence_id": occurrence_id,
                "client_id": client_id,
                "conflicting_entity_id": registration_id,
            },
        )


# Policy kinds


class PolicyViolationException(BusinessRuleException):
    """Raised when a request is well-formed but studio policy forbids it."""

    status_code = HTTP_451_UNAVAILABLE_FOR_LEGAL_REASONS

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code or "POLICY_VIOLATION", details=details)


class LockedResourceException(PolicyViolationException):
    """Raised when a cancellation falls inside the locked window."""

    status_code = HTTP_423_LOCKED

    def __init__(self, window_hours: int, hours_until_start: float):
        super().__init__(
            message=(
                f"Cancellation is locked less than {window_hours} hours before the class starts"
            ),
            code="CANCELLATION_LOCKED",
            details={
                "window_hours": window_hours,
                "hours_until_start": round(hours_until_start, 2),
            },
        )


class NoCreditsAvailableException(PolicyViolationException):
    """Raised when a deduction finds no eligible pass."""

    def __init__(self, client_id: str, credits_requested: int = 1):
        super().__init__(
            message="no credits available",
            code="NO_CREDITS_AVAILABLE",
            details={"client_id": client_id, "credits_requested": credits_requested},
        )


class TransientStoreException(DomainException):
    """
    Raised on lock-wait timeouts and deadlocks.

    The transaction was rolled back with zero mutations, so the caller may retry.
    """

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "The store is busy, please retry", **kwargs: Any):
        super().__init__(message, code="TRANSIENT_STORE_ERROR", details=kwargs or None)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={"message": self.message, "code": self.code, "details": self.details},
            headers={"Retry-After": "1"},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """


_TRANSIENT_PGCODES = {"40P01", "55P03", "40001"}
_TRANSIENT_SNIPPETS = (
    "deadlock detected",
    "lock timeout",
    "could not obtain lock",
    "could not serialize access",
    "database is locked",
    "database is busy",
    "database table is locked",
)


def is_transient_store_error(exc: BaseException) -> bool:
    """Check if a DB error is a lock-wait timeout, deadlock or serialization failure."""
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode in _TRANSIENT_PGCODES:
        return True
    message = str(exc).lower()
    return any(snippet in message for snippet in _TRANSIENT_SNIPPETS)
