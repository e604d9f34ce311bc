"""Introduce principal, delegated credential and document tables"""
from __future__ import annotations

from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import text
from sqlalchemy.engine import Connection

# revision identifiers, used by Alembic.
revision = "20250301_01_delegated_credentials"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    from alembic import op  # type: ignore

    apply_schema(op.get_bind())


def downgrade() -> None:
    from alembic import op  # type: ignore

    connection = op.get_bind()
    connection.execute(text("DROP TRIGGER IF EXISTS trg_credentials_touch_principal"))
    connection.execute(text("DROP TABLE IF EXISTS documents"))
    connection.execute(text("DROP TABLE IF EXISTS delegated_credentials"))
    connection.execute(text("DROP TABLE IF EXISTS principals"))


def _column_names(inspector: sa.Inspector, table_name: str) -> set[str]:
    """Return the set of column names for ``table_name`` or an empty set if missing."""

    try:
        return {col["name"] for col in inspector.get_columns(table_name)}
    except sa.exc.NoSuchTableError:
        return set()


def apply_schema(connection: Connection) -> None:
    inspector = sa.inspect(connection)
    connection.execute(text("PRAGMA foreign_keys=ON"))

    connection.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS principals (
                id TEXT PRIMARY KEY,
                email TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
    )

    connection.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS delegated_credentials (
                principal_id TEXT PRIMARY KEY,
                access_token TEXT NOT NULL,
                refresh_token TEXT,
                expires_at TEXT,
                scope TEXT NOT NULL DEFAULT '',
                updated_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY(principal_id) REFERENCES principals(id) ON DELETE CASCADE
            )
            """
        )
    )

    connection.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                principal_id TEXT NOT NULL,
                remote_id TEXT NOT NULL,
                remote_link TEXT,
                title TEXT NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY(principal_id) REFERENCES principals(id) ON DELETE CASCADE
            )
            """
        )
    )
    connection.execute(
        text("CREATE INDEX IF NOT EXISTS ix_documents_principal ON documents(principal_id, created_at)")
    )
    connection.execute(text("CREATE UNIQUE INDEX IF NOT EXISTS ux_documents_remote ON documents(remote_id)"))

    connection.execute(
        text(
            """
            CREATE TRIGGER IF NOT EXISTS trg_credentials_touch_principal
            AFTER UPDATE ON delegated_credentials
            BEGIN
                UPDATE principals SET updated_at = NEW.updated_at WHERE id = NEW.principal_id;
            END;
            """
        )
    )

    # Rows written by the earlier Express service kept the Drive token on the user row.
    legacy_columns = _column_names(inspector, "users")
    if {"uid", "drive_access_token"} <= legacy_columns:
        has_refresh = "drive_refresh_token" in legacy_columns
        select_refresh = ", drive_refresh_token" if has_refresh else ""
        rows = connection.execute(
            text(f"SELECT uid, email, drive_access_token{select_refresh} FROM users")
        ).fetchall()
        now = datetime.now(timezone.utc).isoformat()
        for row in rows:
            if not row.drive_access_token:
                continue
            connection.execute(
                text(
                    "INSERT OR IGNORE INTO principals (id, email, created_at, updated_at)"
                    " VALUES (:id, :email, :now, :now)"
                ),
                {"id": row.uid, "email": row.email, "now": now},
            )
            connection.execute(
                text(
                    "INSERT OR IGNORE INTO delegated_credentials"
                    " (principal_id, access_token, refresh_token, expires_at, scope, updated_at)"
                    " VALUES (:principal_id, :access_token, :refresh_token, NULL, '', :now)"
                ),
                {
                    "principal_id": row.uid,
                    "access_token": row.drive_access_token,
                    "refresh_token": (row.drive_refresh_token or None) if has_refresh else None,
                    "now": now,
                },
            )
