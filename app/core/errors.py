"""
Domain errors raised by the class lifecycle and credit ledger services.

Services raise these; the route layer never has to translate them by hand
because ``app.main`` registers a single handler for ``DomainError``.
"""

from __future__ import annotations

from typing import Any

from fastapi import status


class DomainError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationError(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST


class InsufficientCreditsError(DomainError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, *, required: str, available: str) -> None:
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}",
            details={"required": required, "available": available},
        )


class NotAuthorizedError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN


class JoinWindowClosedError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateTransitionError(DomainError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, *, current: str | None = None, target: str | None = None) -> None:
        details: dict[str, Any] = {}
        if current is not None:
            details["current_status"] = current
        if target is not None:
            details["target_status"] = target
        super().__init__(message, details=details)


class AlreadyConvertedError(DomainError):
    status_code = status.HTTP_409_CONFLICT


class ConcurrencyConflictError(DomainError):
    """Optimistic write lost a race. Callers may retry once with fresh state."""

    status_code = status.HTTP_409_CONFLICT
