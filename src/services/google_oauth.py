"""Client for Google's OAuth token endpoint (refresh-token grant)."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

# Token endpoint error codes that mean the refresh token will never work again.
REVOKED_GRANT_ERRORS = frozenset({"invalid_grant", "unauthorized_client", "invalid_client"})


class TokenRevokedError(RuntimeError):
    """The provider rejected the refresh token itself."""


class TokenEndpointError(RuntimeError):
    """The token endpoint could not be reached or answered with a server error."""


@dataclass(frozen=True)
class TokenGrant:
    """Access token issued by a refresh-token grant."""

    access_token: str
    refresh_token: Optional[str]
    expires_at: Optional[datetime]
    scope: str = ""


class GoogleOAuthService:
    """Exchanges stored refresh tokens for fresh access tokens."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_uri: str,
        timeout: float = 30.0,
    ) -> None:
        if not client_id or not client_secret:
            raise ValueError("Google OAuth client is not fully configured")
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_uri = token_uri
        self._timeout = timeout

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Redeem ``refresh_token`` for a new access token."""

        token_params = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._token_uri, data=token_params, headers=headers)
        except httpx.TimeoutException as exc:
            raise TokenEndpointError("Token endpoint timed out") from exc
        except httpx.HTTPError as exc:
            raise TokenEndpointError(f"Token endpoint unreachable: {exc}") from exc

        payload = self._json(response)
        if response.status_code in (400, 401):
            error = str(payload.get("error") or "")
            if error in REVOKED_GRANT_ERRORS or not error:
                raise TokenRevokedError(error or f"HTTP {response.status_code}")
            raise TokenEndpointError(f"Token endpoint rejected request: {error}")
        if response.status_code >= 400:
            raise TokenEndpointError(f"Token endpoint returned HTTP {response.status_code}")

        access_token = payload.get("access_token")
        if not access_token:
            raise TokenEndpointError("Token endpoint response did not include an access token")
        expires_at = None
        expires_in = payload.get("expires_in")
        if expires_in is not None:
            try:
                lifetime = int(expires_in)
            except (TypeError, ValueError) as exc:
                raise TokenEndpointError(f"Token endpoint returned invalid expires_in: {expires_in!r}") from exc
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=lifetime)
        return TokenGrant(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or None,
            expires_at=expires_at,
            scope=payload.get("scope") or "",
        )

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
