"""
Application errors.

Services raise these; the handlers registered in ``backend.app.main`` turn
them into the ``{"success": false, "error": ...}`` envelope.
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class DomainError(AppError):
    """Business rule violation, reported as a client error."""

    status_code = 400


class MovementValidationError(DomainError):
    pass


class InsufficientStockError(DomainError):
    pass


class AlreadyReceivedError(DomainError):
    pass


class MissingDestinationError(DomainError):
    pass


class OrderLockedError(DomainError):
    pass


class OrderNotPendingError(DomainError):
    pass
