"""Domain error taxonomy.

Each error maps onto one HTTP status; the global handler in
``portal.middleware.error_handler`` renders them as JSON.
"""

from __future__ import annotations

from typing import Any


class PortalError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, detail: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.errors = errors or []

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.detail}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(PortalError):
    """Malformed payload, config shape mismatch or date ordering violation."""

    status_code = 422


class NotFoundError(PortalError):
    """Missing entity, or a challenge outside its active window."""

    status_code = 404


class ConflictError(PortalError):
    """State conflict the caller must reconcile before retrying."""

    status_code = 409


class ForbiddenError(PortalError):
    """Requester may not perform this mutation."""

    status_code = 403


class ExternalIOError(PortalError):
    """Object storage failure. Never aborts a compensating sequence."""

    status_code = 502


def field_error(field: str, message: str) -> dict[str, str]:
    """Build one field-level error entry."""
    return {"field": field, "message": message}
