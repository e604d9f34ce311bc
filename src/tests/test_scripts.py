"""Smoke tests for administrative scripts."""

from __future__ import annotations

import aiosqlite
import pytest

from scripts.clear_tokens import clear_tokens
from services.storage import StorageService


async def _credential_count(db_path) -> int:
    async with aiosqlite.connect(db_path) as db:
        async with db.execute("SELECT COUNT(*) FROM delegated_credentials") as cursor:
            (count,) = await cursor.fetchone()
    return count


@pytest.mark.asyncio
async def test_clear_tokens_disconnects_one_or_all_principals(tmp_path, capsys):
    db_path = tmp_path / "letters.db"
    storage = StorageService(f"sqlite+aiosqlite:///{db_path}")
    await storage.initialize()
    await storage.upsert_credential("u1", None, "a1", "r1", "", None)
    await storage.upsert_credential("u2", None, "b1", "s1", "", None)
    await storage.create_document("u1", "drive-1", None, "Kept", "")

    assert await clear_tokens(sqlite_path=db_path, principal_id="u1") == 1
    assert await _credential_count(db_path) == 1
    assert await storage.get_credential("u2") is not None

    assert await clear_tokens(sqlite_path=db_path) == 1
    assert await _credential_count(db_path) == 0
    assert len(await storage.list_documents("u1")) == 1

    out = capsys.readouterr().out
    assert "Cleared 1 delegated credential(s)" in out


@pytest.mark.asyncio
async def test_clear_tokens_handles_missing_database(tmp_path, capsys):
    assert await clear_tokens(sqlite_path=tmp_path / "missing.db") == 0
    assert "SQLite database not found" in capsys.readouterr().out
