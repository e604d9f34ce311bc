"""Persistent delegated-credential store backed by StorageService."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from services.exceptions import DriveDisconnected
from services.identity import Principal
from services.logging_safety import safe_log_identifier
from services.storage import DelegatedCredential, StorageService

logger = logging.getLogger(__name__)


class CredentialStore:
    """One live Google credential per principal, never losing a refresh token."""

    def __init__(self, storage: StorageService):
        self._storage = storage

    async def upsert(
        self,
        principal: Principal,
        access_token: str,
        refresh_token: Optional[str] = None,
        scope: str = "",
        expires_at: Optional[datetime] = None,
    ) -> None:
        """Store or replace the principal's credential (sign-in or reconnect)."""

        if not access_token:
            raise ValueError("access_token is required")
        await self._storage.upsert_credential(
            principal.id,
            principal.email,
            access_token,
            refresh_token,
            scope,
            expires_at,
        )
        logger.info(
            "credential.stored principal_id=%s refresh_token_supplied=%s",
            safe_log_identifier(principal.id, prefix="pid"),
            bool(refresh_token),
        )

    async def get(self, principal_id: str) -> DelegatedCredential:
        """Return the stored credential or raise DriveDisconnected."""

        credential = await self._storage.get_credential(principal_id)
        if credential is None:
            raise DriveDisconnected(principal_id)
        return credential

    async def update_tokens(
        self,
        principal_id: str,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> None:
        """Write back a provider-issued refresh result."""

        updated = await self._storage.update_credential_tokens(
            principal_id,
            access_token,
            refresh_token,
            expires_at,
        )
        if not updated:
            # The row disappeared between read and write (admin disconnect).
            raise DriveDisconnected(principal_id)

    async def delete(self, principal_id: str) -> bool:
        """Disconnect Drive for a principal."""

        return await self._storage.delete_credential(principal_id)
