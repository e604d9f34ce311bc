"""Script to disconnect Google Drive by deleting stored delegated credentials."""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Optional

import aiosqlite


async def clear_tokens(
    sqlite_path: str | Path = "./data/letters.db",
    principal_id: Optional[str] = None,
) -> int:
    """Remove delegated credentials from SQLite and return how many were deleted.

    With ``principal_id`` only that user is disconnected; letters already
    written stay in the documents table.
    """

    db_path = Path(sqlite_path)
    if not db_path.exists():
        print("! SQLite database not found (this is normal if nobody has connected Drive yet)")
        return 0

    try:
        async with aiosqlite.connect(db_path) as db:
            if principal_id:
                cursor = await db.execute(
                    "DELETE FROM delegated_credentials WHERE principal_id = ?",
                    (principal_id,),
                )
            else:
                cursor = await db.execute("DELETE FROM delegated_credentials")
            await db.commit()
            deleted = cursor.rowcount
    except aiosqlite.Error as exc:  # pragma: no cover - printed for visibility
        print(f"! Failed to clear SQLite credentials: {exc}")
        return 0
    print(f"✓ Cleared {deleted} delegated credential(s) ({db_path})")
    return deleted


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--db", default="./data/letters.db", help="Path to the SQLite database")
    parser.add_argument("--principal", default=None, help="Only disconnect this principal id")
    args = parser.parse_args()
    asyncio.run(clear_tokens(args.db, args.principal))


if __name__ == "__main__":
    main()
