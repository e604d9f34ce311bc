"""Persistence layer powered by SQLite via aiosqlite with Alembic migrations."""
from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiosqlite

from services.migrations import run_migrations


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class DelegatedCredential:
    """The Google OAuth credential a principal delegated to the service."""

    principal_id: str
    access_token: str
    refresh_token: Optional[str]
    expires_at: Optional[datetime]
    scope: str
    updated_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None, leeway_seconds: int = 0) -> bool:
        """Return True only when a known expiry has passed.

        Credentials without an expiry are treated as valid until the provider
        rejects them.
        """
        if self.expires_at is None:
            return False
        current = now or _utcnow()
        return (self.expires_at - current).total_seconds() <= leeway_seconds


@dataclass(frozen=True)
class DocumentRecord:
    """Local reference to a document created in the principal's Drive."""

    id: str
    principal_id: str
    remote_id: str
    remote_link: Optional[str]
    title: str
    content: str
    created_at: datetime


class StorageService:
    """Async storage abstraction over SQLite."""

    def __init__(self, db_url: str):
        if not db_url.startswith("sqlite"):
            raise ValueError("Only SQLite URLs are supported by StorageService")
        path = db_url.split("///")[-1]
        self._db_path = Path(path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_lock = asyncio.Lock()
        self._initialized = False

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Run Alembic migrations idempotently."""

        async with self._init_lock:
            if self._initialized:
                return
            await asyncio.to_thread(run_migrations, self._db_path)
            self._initialized = True

    @asynccontextmanager
    async def _connection(self, *, row_factory: bool = False):
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute("PRAGMA foreign_keys = ON")
            if row_factory:
                db.row_factory = aiosqlite.Row
            yield db

    async def _execute(self, query: str, params: Any = ()) -> int:
        async with self._connection() as db:
            cursor = await db.execute(query, params)
            await db.commit()
            return cursor.rowcount

    async def _fetchone(self, query: str, params: Any = ()) -> Optional[aiosqlite.Row]:
        async with self._connection(row_factory=True) as db:
            async with db.execute(query, params) as cursor:
                return await cursor.fetchone()

    async def _fetchall(self, query: str, params: Any = ()) -> list[aiosqlite.Row]:
        async with self._connection(row_factory=True) as db:
            async with db.execute(query, params) as cursor:
                return await cursor.fetchall()

    @staticmethod
    def _row_to_credential(row: aiosqlite.Row) -> DelegatedCredential:
        return DelegatedCredential(
            principal_id=row["principal_id"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"] or None,
            expires_at=_parse_datetime(row["expires_at"]),
            scope=row["scope"] or "",
            updated_at=_parse_datetime(row["updated_at"]),
        )

    @staticmethod
    def _row_to_document(row: aiosqlite.Row) -> DocumentRecord:
        return DocumentRecord(
            id=row["id"],
            principal_id=row["principal_id"],
            remote_id=row["remote_id"],
            remote_link=row["remote_link"],
            title=row["title"],
            content=row["content"],
            created_at=_parse_datetime(row["created_at"]) or _utcnow(),
        )

    async def upsert_credential(
        self,
        principal_id: str,
        email: Optional[str],
        access_token: str,
        refresh_token: Optional[str],
        scope: str,
        expires_at: Optional[datetime],
    ) -> None:
        """Insert or replace the principal's credential in one transaction.

        An empty ``refresh_token`` or ``scope`` keeps the stored value.
        """

        now = _format_datetime(_utcnow())
        async with self._connection() as db:
            await db.execute("BEGIN")
            await db.execute(
                """
                INSERT INTO principals (id, email, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET email=COALESCE(excluded.email, principals.email),
                                             updated_at=excluded.updated_at
                """,
                (principal_id, email, now, now),
            )
            await db.execute(
                """
                INSERT INTO delegated_credentials
                       (principal_id, access_token, refresh_token, expires_at, scope, updated_at)
                VALUES (?, ?, NULLIF(?, ''), ?, ?, ?)
                ON CONFLICT(principal_id) DO UPDATE SET
                       access_token=excluded.access_token,
                       refresh_token=COALESCE(excluded.refresh_token, delegated_credentials.refresh_token),
                       expires_at=excluded.expires_at,
                       scope=COALESCE(NULLIF(excluded.scope, ''), delegated_credentials.scope),
                       updated_at=excluded.updated_at
                """,
                (principal_id, access_token, refresh_token or "", _format_datetime(expires_at), scope or "", now),
            )
            await db.commit()

    async def get_credential(self, principal_id: str) -> Optional[DelegatedCredential]:
        """Fetch the credential stored for a principal, if any."""

        row = await self._fetchone(
            "SELECT * FROM delegated_credentials WHERE principal_id = ?",
            (principal_id,),
        )
        if not row:
            return None
        return self._row_to_credential(row)

    async def update_credential_tokens(
        self,
        principal_id: str,
        access_token: Optional[str],
        refresh_token: Optional[str],
        expires_at: Optional[datetime],
    ) -> bool:
        """Apply a partial token update; empty values never clear stored ones.

        ``expires_at`` is only written together with a new access token.
        Returns False when the principal has no credential row.
        """

        rowcount = await self._execute(
            """
            UPDATE delegated_credentials
               SET access_token = COALESCE(NULLIF(:access_token, ''), access_token),
                   refresh_token = COALESCE(NULLIF(:refresh_token, ''), refresh_token),
                   expires_at = CASE WHEN NULLIF(:access_token, '') IS NULL THEN expires_at
                                     ELSE :expires_at END,
                   updated_at = :updated_at
             WHERE principal_id = :principal_id
            """,
            {
                "access_token": access_token or "",
                "refresh_token": refresh_token or "",
                "expires_at": _format_datetime(expires_at),
                "updated_at": _format_datetime(_utcnow()),
                "principal_id": principal_id,
            },
        )
        return rowcount > 0

    async def delete_credential(self, principal_id: str) -> bool:
        """Forget a principal's credential; documents are kept."""

        rowcount = await self._execute(
            "DELETE FROM delegated_credentials WHERE principal_id = ?",
            (principal_id,),
        )
        return rowcount > 0

    async def create_document(
        self,
        principal_id: str,
        remote_id: str,
        remote_link: Optional[str],
        title: str,
        content: str,
    ) -> DocumentRecord:
        """Insert one document row and return it."""

        record = DocumentRecord(
            id=str(uuid.uuid4()),
            principal_id=principal_id,
            remote_id=remote_id,
            remote_link=remote_link,
            title=title,
            content=content,
            created_at=_utcnow(),
        )
        await self._execute(
            """
            INSERT INTO documents (id, principal_id, remote_id, remote_link, title, content, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.principal_id,
                record.remote_id,
                record.remote_link,
                record.title,
                record.content,
                _format_datetime(record.created_at),
            ),
        )
        return record

    async def list_documents(self, principal_id: str, limit: int = 50) -> list[DocumentRecord]:
        """Return a principal's documents, newest first."""

        rows = await self._fetchall(
            """
            SELECT * FROM documents
             WHERE principal_id = ?
          ORDER BY created_at DESC
             LIMIT ?
            """,
            (principal_id, limit),
        )
        return [self._row_to_document(row) for row in rows]
