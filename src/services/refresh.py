"""Single-flight refresh of delegated Google credentials.

``ensure_valid`` hands out an access token that is not known to be expired.
When a refresh is needed, the first caller for a principal leads a flight:
it re-reads the stored credential, talks to the token endpoint if it still
has to, and publishes the outcome on a future. Callers arriving while the
flight is open await that future and get the same token or the same error,
so a revoked grant or a slow endpoint is hit once per flight. Flights for
different principals are independent.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Protocol

from services.credentials import CredentialStore
from services.exceptions import ReauthRequired, RemoteWriteError
from services.google_oauth import TokenEndpointError, TokenGrant, TokenRevokedError
from services.identity import Principal
from services.logging_safety import safe_log_identifier
from services.storage import DelegatedCredential

logger = logging.getLogger(__name__)


class TokenRefresher(Protocol):
    async def refresh(self, refresh_token: str) -> TokenGrant: ...


class _Lease:
    __slots__ = ("flight", "holders")

    def __init__(self) -> None:
        self.flight: Optional[asyncio.Future[str]] = None
        self.holders = 0


class RefreshCoordinator:
    """Owns when and how a principal's credential is refreshed."""

    def __init__(
        self,
        credentials: CredentialStore,
        oauth: Optional[TokenRefresher],
        leeway_seconds: int = 0,
    ) -> None:
        self._credentials = credentials
        self._oauth = oauth
        self._leeway_seconds = leeway_seconds
        self._leases: dict[str, _Lease] = {}

    @property
    def active_leases(self) -> int:
        return len(self._leases)

    @asynccontextmanager
    async def _lease(self, principal_id: str) -> AsyncIterator[_Lease]:
        lease = self._leases.get(principal_id)
        if lease is None:
            lease = self._leases[principal_id] = _Lease()
        lease.holders += 1
        try:
            yield lease
        finally:
            lease.holders -= 1
            if lease.holders == 0 and self._leases.get(principal_id) is lease:
                del self._leases[principal_id]

    def _usable(self, credential: DelegatedCredential) -> bool:
        return not credential.is_expired(leeway_seconds=self._leeway_seconds)

    async def ensure_valid(
        self,
        principal: Principal,
        *,
        force: bool = False,
        rejected_token: Optional[str] = None,
    ) -> str:
        """Return an access token for ``principal``, refreshing it if needed.

        ``force`` skips the expiry check; it is used after the provider rejected
        ``rejected_token`` even though it looked valid.
        """

        credential = await self._credentials.get(principal.id)
        if not force and self._usable(credential):
            return credential.access_token

        async with self._lease(principal.id) as lease:
            while lease.flight is not None:
                flight = lease.flight
                try:
                    token = await asyncio.shield(flight)
                except asyncio.CancelledError:
                    # The leader was cancelled; this caller leads the next flight.
                    if flight.cancelled():
                        continue
                    raise
                if not (force and token == rejected_token):
                    return token
            return await self._lead(lease, principal, force, rejected_token)

    async def _lead(
        self,
        lease: _Lease,
        principal: Principal,
        force: bool,
        rejected_token: Optional[str],
    ) -> str:
        flight = lease.flight = asyncio.get_running_loop().create_future()
        try:
            token = await self._revalidate(principal, force, rejected_token)
        except asyncio.CancelledError:
            flight.cancel()
            raise
        except Exception as exc:
            flight.set_exception(exc)
            # Mark retrieved so a flight nobody joined is not reported by asyncio.
            flight.exception()
            raise
        else:
            flight.set_result(token)
            return token
        finally:
            lease.flight = None

    async def _revalidate(self, principal: Principal, force: bool, rejected_token: Optional[str]) -> str:
        # An earlier flight may have refreshed while this caller was on its way in.
        current = await self._credentials.get(principal.id)
        if force:
            if rejected_token is not None and current.access_token != rejected_token:
                return current.access_token
        elif self._usable(current):
            return current.access_token
        return await self._refresh(principal, current)

    async def _refresh(self, principal: Principal, credential: DelegatedCredential) -> str:
        safe_principal_id = safe_log_identifier(principal.id, prefix="pid")
        if not credential.refresh_token:
            logger.warning("credential.refresh_impossible principal_id=%s reason=no_refresh_token", safe_principal_id)
            raise ReauthRequired(principal.id)
        if self._oauth is None:
            raise RemoteWriteError("Google OAuth client is not configured; cannot refresh access token")

        try:
            grant = await self._oauth.refresh(credential.refresh_token)
        except TokenRevokedError as exc:
            logger.warning(
                "credential.refresh_rejected principal_id=%s reason=%s",
                safe_principal_id,
                exc,
            )
            raise ReauthRequired(principal.id) from exc
        except TokenEndpointError as exc:
            logger.error("credential.refresh_failed principal_id=%s", safe_principal_id, exc_info=exc)
            raise RemoteWriteError(f"Unable to refresh Google access token: {exc}") from exc

        await self._credentials.update_tokens(
            principal.id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=grant.expires_at,
        )
        logger.info(
            "credential.refreshed principal_id=%s new_refresh_token=%s",
            safe_principal_id,
            bool(grant.refresh_token),
        )
        return grant.access_token
