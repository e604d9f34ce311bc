"""Typed failures raised by the delegated-credential services."""
from __future__ import annotations

from typing import Optional


class DelegationError(RuntimeError):
    """Base class for failures surfaced to the HTTP boundary."""

    code = "DELEGATION_ERROR"


class Unauthenticated(DelegationError):
    """Raised when the bearer token is missing, malformed, forged or expired."""

    code = "UNAUTHENTICATED"


class DriveDisconnected(DelegationError):
    """Raised when the principal never linked a Google Drive credential."""

    code = "DRIVE_DISCONNECTED"

    def __init__(self, principal_id: str):
        super().__init__("Google Drive is not connected for this account")
        self.principal_id = principal_id


class ReauthRequired(DelegationError):
    """Raised when the stored refresh token is revoked, invalid or missing."""

    code = "REAUTH_REQUIRED"

    def __init__(self, principal_id: str, reason: str = "Google Drive access must be reconnected"):
        super().__init__(reason)
        self.principal_id = principal_id


class RemoteWriteError(DelegationError):
    """Raised for transient provider failures and post-write persistence failures.

    When ``remote_id`` is set, the Drive object was created but the local record
    was not, and the object needs manual reconciliation.
    """

    code = "REMOTE_WRITE_FAILED"

    def __init__(self, message: str, remote_id: Optional[str] = None):
        super().__init__(message)
        self.remote_id = remote_id
