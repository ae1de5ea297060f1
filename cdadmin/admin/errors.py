# cdadmin/admin/errors.py
"""
Typed domain errors for the admin application services.

Each error maps to a specific HTTP status code.  The transport layer
catches ``AdminError`` subtypes and converts them to the error envelope
without embedding business logic in the route handlers.
"""
from __future__ import annotations


class AdminError(Exception):
    """Base class for all admin domain errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ValidationError(AdminError):
    """Invalid request payload (400)."""

    status_code = 400


class NeedLoginError(AdminError):
    """Caller identity missing or unknown (401)."""

    status_code = 401


class NoPermissionError(AdminError):
    """Caller lacks the credential or role the operation needs (403)."""

    status_code = 403


class NotFoundError(AdminError):
    """Resource not found (404)."""

    status_code = 404


class RemoteInvocationError(AdminError):
    """Worker function call failed after its retry (502)."""

    status_code = 502
