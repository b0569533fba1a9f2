"""Typed failures raised by the marketplace core.

Routers never catch these; ``api.main`` maps each class to a status code.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for every error the core reports to its caller."""

    status_code = 400

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        body = {"detail": self.message}
        body.update({k: v for k, v in self.extra.items() if v is not None})
        return body


class ValidationError(MarketplaceError):
    """Bad or missing input. ``fields`` names every offending field."""

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message, fields=list(fields or []))
        self.fields = list(fields or [])


class ConflictError(MarketplaceError):
    status_code = 409

    def __init__(self, message: str, existing_id: int | None = None):
        super().__init__(message, existing_id=existing_id)
        self.existing_id = existing_id


class NotFoundError(MarketplaceError):
    status_code = 404


class InvalidStateError(MarketplaceError):
    def __init__(self, message: str, current_status: str | None = None):
        super().__init__(message, current_status=current_status)
        self.current_status = current_status


class InfrastructureError(MarketplaceError):
    """Store or credential backend unavailable. Safe to retry."""

    status_code = 500

    def to_dict(self) -> dict:
        return {"detail": "Internal server error"}


class AuthenticationError(MarketplaceError):
    status_code = 401


class InvalidTokenError(AuthenticationError):
    pass


class ExpiredTokenError(InvalidTokenError):
    pass


class DeliveryError(MarketplaceError):
    status_code = 500
