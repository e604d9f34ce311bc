"""Bearer-token verification for Firebase-authenticated callers."""
from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx
from google.auth import exceptions as google_auth_exceptions
from google.auth import jwt

from services.exceptions import Unauthenticated
from services.logging_safety import safe_log_identifier

FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"
_MAX_AGE_PATTERN = re.compile(r"max-age=(\d+)")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Verified identity of the calling user."""

    id: str
    email: Optional[str] = None


def extract_bearer(authorization: Optional[str]) -> str:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""

    if not authorization:
        raise Unauthenticated("Missing bearer token")
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise Unauthenticated("Malformed authorization header")
    return token


class PublicKeyCache:
    """Process-wide cache of the identity provider's signing certificates.

    The cache honours the provider's ``Cache-Control: max-age`` and falls back
    to ``ttl_seconds``. Concurrent cold lookups share a single fetch. A lookup
    for a key id the cache does not hold refetches early, at most once every
    ``min_refetch_seconds``, so rotated keys are picked up before ``max-age``.
    """

    def __init__(
        self,
        certs_url: str,
        *,
        ttl_seconds: int = 3600,
        timeout: float = 10.0,
        min_refetch_seconds: float = 60.0,
    ) -> None:
        self._certs_url = certs_url
        self._ttl_seconds = ttl_seconds
        self._timeout = timeout
        self._min_refetch_seconds = min_refetch_seconds
        self._certs: dict[str, str] = {}
        self._expires_at = 0.0
        self._fetched_at: Optional[float] = None
        self._lock = asyncio.Lock()

    def _serves(self, key_id: Optional[str]) -> bool:
        now = time.monotonic()
        if not self._certs or now >= self._expires_at:
            return False
        if key_id is None or key_id in self._certs:
            return True
        return self._fetched_at is not None and now - self._fetched_at < self._min_refetch_seconds

    async def get(self, key_id: Optional[str] = None) -> Mapping[str, str]:
        """Return the current key-id to certificate mapping."""

        if self._serves(key_id):
            return self._certs
        async with self._lock:
            if self._serves(key_id):
                return self._certs
            certs, max_age = await self._fetch()
            self._certs = certs
            self._fetched_at = time.monotonic()
            self._expires_at = self._fetched_at + max_age
            logger.info("identity.keys_refreshed count=%d max_age=%d", len(certs), max_age)
            return self._certs

    async def _fetch(self) -> tuple[dict[str, str], int]:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.get(self._certs_url)
            resp.raise_for_status()
            data = resp.json()
        if not isinstance(data, dict) or not data:
            raise ValueError("Identity provider returned an empty key set")
        max_age = self._ttl_seconds
        match = _MAX_AGE_PATTERN.search(resp.headers.get("cache-control", ""))
        if match:
            max_age = int(match.group(1))
        return {str(key): str(value) for key, value in data.items()}, max_age


def _unverified_key_id(token: str) -> Optional[str]:
    """Read ``kid`` from the JWT header; used only to pick a certificate."""

    segment = token.split(".", 1)[0]
    try:
        header = json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))
    except ValueError:
        return None
    key_id = header.get("kid") if isinstance(header, dict) else None
    return key_id if isinstance(key_id, str) else None


class TokenVerifier(ABC):
    """Provider-neutral token verification interface."""

    @abstractmethod
    async def verify(self, token: str) -> Principal:
        """Verify token and return the principal built from its claims."""


class FirebaseTokenVerifier(TokenVerifier):
    """Verifies Firebase ID tokens against Google's published certificates."""

    def __init__(self, project_id: str, key_cache: PublicKeyCache, clock_skew_seconds: int = 0) -> None:
        if not project_id:
            raise ValueError("Firebase project id is not configured")
        self._project_id = project_id
        self._key_cache = key_cache
        self._clock_skew_seconds = clock_skew_seconds

    async def verify(self, token: str) -> Principal:
        if not token:
            raise Unauthenticated("Missing bearer token")
        try:
            certs = await self._key_cache.get(_unverified_key_id(token))
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("identity.keys_unavailable", exc_info=exc)
            raise Unauthenticated("Unable to verify bearer token") from exc

        try:
            claims = jwt.decode(
                token,
                certs=certs,
                audience=self._project_id,
                clock_skew_in_seconds=self._clock_skew_seconds,
            )
        except (ValueError, google_auth_exceptions.GoogleAuthError) as exc:
            logger.warning("identity.rejected reason=%s", type(exc).__name__)
            raise Unauthenticated("Invalid bearer token") from exc

        if claims.get("iss") != f"{FIREBASE_ISSUER_PREFIX}{self._project_id}":
            raise Unauthenticated("Invalid bearer token issuer")
        subject = str(claims.get("sub") or "").strip()
        if not subject or len(subject) > 128:
            raise Unauthenticated("Bearer token missing user identity")
        auth_time = claims.get("auth_time")
        if isinstance(auth_time, (int, float)) and auth_time > time.time() + self._clock_skew_seconds:
            raise Unauthenticated("Bearer token authenticated in the future")

        principal = Principal(id=subject, email=claims.get("email"))
        logger.debug("identity.accepted principal_id=%s", safe_log_identifier(subject, prefix="pid"))
        return principal


class MockTokenVerifier(TokenVerifier):
    """Accepts deterministic test tokens only.

    Expected token format:
    - ``test:<user_id>``
    - ``test:<user_id>:<email>``
    """

    async def verify(self, token: str) -> Principal:
        parts = token.split(":", 2)
        if len(parts) not in (2, 3) or parts[0] != "test":
            raise Unauthenticated("Invalid bearer token")

        user_id = parts[1].strip()
        email = parts[2].strip() if len(parts) == 3 else None
        if not user_id:
            raise Unauthenticated("Bearer token missing user identity")
        return Principal(id=user_id, email=email or None)
