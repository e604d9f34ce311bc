"""Reusable test fakes and helpers."""
from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from services.credentials import CredentialStore
from services.google_drive import DriveAuthError, DriveFile
from services.google_oauth import TokenGrant
from services.identity import Principal
from services.storage import StorageService


def utc_in(seconds: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


async def make_storage(tmp_path) -> StorageService:
    storage = StorageService(f"sqlite+aiosqlite:///{tmp_path / 'letters.db'}")
    await storage.initialize()
    return storage


async def seed_credential(
    store: CredentialStore,
    principal: Principal,
    access_token: str,
    refresh_token: Optional[str],
    expires_at: Optional[datetime],
) -> None:
    await store.upsert(principal, access_token, refresh_token=refresh_token, scope="drive.file", expires_at=expires_at)


class FakeOAuth:
    """Token endpoint stand-in that counts refresh calls."""

    def __init__(
        self,
        access_token: str = "a2",
        refresh_token: Optional[str] = None,
        expires_in: int = 3600,
        error: Optional[Exception] = None,
        delay: float = 0.01,
    ) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.expires_in = expires_in
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    async def refresh(self, refresh_token: str) -> TokenGrant:
        self.calls.append(refresh_token)
        # Yield so concurrent callers pile up behind the lease.
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return TokenGrant(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=utc_in(self.expires_in),
        )


class FakeDrive:
    """Records create calls; rejects tokens listed in ``rejected_tokens``."""

    def __init__(self, rejected_tokens: Optional[set[str]] = None, error: Optional[Exception] = None) -> None:
        self.rejected_tokens = rejected_tokens or set()
        self.error = error
        self.calls: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def create_text_file(self, access_token: str, title: str, content: str) -> DriveFile:
        with self._lock:
            self.calls.append((access_token, title, content))
            remote_id = f"drive-{len(self.calls)}"
        if access_token in self.rejected_tokens:
            raise DriveAuthError("HTTP 401")
        if self.error is not None:
            raise self.error
        return DriveFile(id=remote_id, web_view_link=f"https://drive.google.com/file/d/{remote_id}/view")
