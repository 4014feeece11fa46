"""
errors.py — error taxonomy for the tax computation and approval workflow.

Every error raised by taxcore derives from TaxCoreError. main.py maps each class
onto the standard {error: {code, message, details}} envelope:

  InvalidInputError      → 422 VALIDATION_ERROR
  InvalidTransitionError → 409 CONFLICT
  PermissionDeniedError  → 403 FORBIDDEN
  NotFoundError          → 404 NOT_FOUND
  PersistenceError       → 503 PERSISTENCE_ERROR
"""
from __future__ import annotations

from typing import Any, Optional


class TaxCoreError(Exception):
    """Base class for all taxcore errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[list[dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class InvalidInputError(TaxCoreError, ValueError):
    """Non-numeric or malformed input reached the engine or serializer."""

    code = "VALIDATION_ERROR"
    status_code = 422


class InvalidTransitionError(TaxCoreError):
    """Requested status change is not an edge of the lifecycle graph."""

    code = "CONFLICT"
    status_code = 409


class PermissionDeniedError(TaxCoreError):
    """Actor lacks the role or ownership needed for the operation."""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(TaxCoreError, LookupError):
    code = "NOT_FOUND"
    status_code = 404


class PersistenceError(TaxCoreError):
    """The record store failed. Always chained to the store's own exception."""

    code = "PERSISTENCE_ERROR"
    status_code = 503


__all__ = [
    "TaxCoreError",
    "InvalidInputError",
    "InvalidTransitionError",
    "PermissionDeniedError",
    "NotFoundError",
    "PersistenceError",
]
