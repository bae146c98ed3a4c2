"""
Error taxonomy shared by all services.

Services raise subclasses of ServiceError; routers roll the session back and
turn them into HTTP responses via ``raise_http``. Each service module keeps
its own specific subclasses (e.g. InsufficientStockError) on top of these
kinds so callers can catch either the precise case or the general kind.
"""
from typing import Any, Optional

from fastapi import HTTPException


class ServiceError(Exception):
    """Base exception for all service-layer errors."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)

    def detail(self) -> Any:
        return self.message


class ValidationError(ServiceError):
    """Malformed or missing input. Carries optional per-field messages."""

    def __init__(self, message: str, errors: Optional[dict[str, str]] = None):
        super().__init__(message, 400)
        self.errors = errors or {}

    def detail(self) -> Any:
        if not self.errors:
            return self.message
        return {"message": self.message, "errors": self.errors}


class UnauthenticatedError(ServiceError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, 401)


class ForbiddenError(ServiceError):
    """
    Caller is known but not allowed.

    ``reason`` is machine-readable: pending_moderation, account_blocked,
    profile_incomplete, insufficient_role or account_inactive.
    """

    def __init__(self, message: str, reason: str, **extra: Any):
        super().__init__(message, 403)
        self.reason = reason
        self.extra = extra

    def detail(self) -> Any:
        return {"message": self.message, "reason": self.reason, **self.extra}


class NotFoundError(ServiceError):
    def __init__(self, message: str):
        super().__init__(message, 404)


class ConflictError(ServiceError):
    """State does not allow the operation (stock, balance, transition)."""

    def __init__(self, message: str):
        super().__init__(message, 409)


class InternalError(ServiceError):
    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, 500)


def raise_http(e: ServiceError):
    """Convert a service exception to an HTTPException."""
    raise HTTPException(status_code=e.status_code, detail=e.detail())
