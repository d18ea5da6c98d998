"""
Error taxonomy for the storefront API.

Services raise these; main.py renders them as
{"success": false, "error": <message>, "details": [...]}.
"""
from typing import Any, List, Optional


class StorefrontError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[List[Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(StorefrontError):
    """Malformed or incomplete request."""
    status_code = 400


class ForbiddenError(StorefrontError):
    status_code = 403


class NotFoundError(StorefrontError):
    """Referenced order, product, variant or code is absent."""
    status_code = 404


class ConflictError(StorefrontError):
    """Duplicate unique key."""
    status_code = 409


class UpstreamError(StorefrontError):
    """The admin service was unreachable or answered non-2xx."""
    status_code = 502

    def __init__(self, message: str, details: Optional[List[Any]] = None, upstream_status: Optional[int] = None):
        super().__init__(message, details)
        self.upstream_status = upstream_status

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.upstream_status is not None:
            body["adminStatus"] = self.upstream_status
        return body


class PersistenceError(StorefrontError):
    status_code = 500
