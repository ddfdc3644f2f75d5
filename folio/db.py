"""
Database layer for Folio.

Uses sqlite3. Every table is CREATE IF NOT EXISTS so init_db() is safe to call
on every startup. JSON columns (metadata, spec, fields, details) are stored
as text and decoded by the service that owns the table.

StoreHandle
-----------
The "authenticated store" the rest of the package passes around: a database
location plus the acting user's id. Services take `store=None` to mean "not
authenticated" and degrade (empty read) or raise AuthRequired (write).

The elevated store returned by get_service_store() carries no user id. It is
used for exactly one write: persisting a renamed file's new location when the
caller had no store of its own.

Single active config version
-----------------------------
baseline_configs has a partial unique index on (user_id) WHERE is_active = 1.
Even if two writers race, SQLite refuses a second active row for the same
user instead of letting the invariant break silently.
"""
import logging
import os
import sqlite3
from contextlib import contextmanager

from folio.config import get_settings
from folio.errors import StorageError

logger = logging.getLogger(__name__)


def get_connection(db_path: str | None = None):
    # Settings are read fresh each call so test fixtures can point FOLIO_DB_PATH
    # at a temp file with monkeypatch.setenv.
    path = db_path or get_settings().db_path
    conn = sqlite3.connect(path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def db(db_path: str | None = None):
    conn = get_connection(db_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: str | None = None):
    """Create all tables. Safe to call on every startup."""
    with db(db_path) as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS policies (
                user_id     TEXT NOT NULL,
                policy_id   TEXT NOT NULL,
                api_version TEXT NOT NULL DEFAULT 'folio/v1',
                kind        TEXT NOT NULL DEFAULT 'Policy',
                metadata    TEXT NOT NULL,
                spec        TEXT NOT NULL,
                enabled     INTEGER NOT NULL DEFAULT 1,
                priority    INTEGER NOT NULL DEFAULT 100,
                created_at  TEXT DEFAULT (datetime('now')),
                updated_at  TEXT DEFAULT (datetime('now')),
                PRIMARY KEY (user_id, policy_id)
            );

            CREATE TABLE IF NOT EXISTS baseline_configs (
                id         TEXT PRIMARY KEY,
                user_id    TEXT NOT NULL,
                version    INTEGER NOT NULL,
                context    TEXT,
                fields     TEXT NOT NULL DEFAULT '[]',
                is_active  INTEGER NOT NULL DEFAULT 0,
                created_at TEXT DEFAULT (datetime('now')),
                UNIQUE (user_id, version)
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_baseline_configs_one_active
                ON baseline_configs (user_id) WHERE is_active = 1;

            CREATE TABLE IF NOT EXISTS ingestions (
                id            TEXT PRIMARY KEY,
                user_id       TEXT NOT NULL,
                source        TEXT NOT NULL DEFAULT 'upload',
                filename      TEXT NOT NULL,
                storage_path  TEXT,
                status        TEXT NOT NULL DEFAULT 'pending',
                policy_id     TEXT,
                created_at    TEXT DEFAULT (datetime('now')),
                updated_at    TEXT DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS processing_events (
                id           TEXT PRIMARY KEY,
                ingestion_id TEXT,
                user_id      TEXT,
                event_type   TEXT NOT NULL
                             CHECK (event_type IN ('info', 'analysis', 'action', 'error')),
                agent_state  TEXT,
                details      TEXT,
                created_at   TEXT DEFAULT (datetime('now'))
            );
        """)


class StoreHandle:
    """
    A data-store session for one user.

    Args:
        db_path  - SQLite database file
        user_id  - acting user; None for the elevated service store
        elevated - True only for the handle returned by get_service_store()
    """

    def __init__(self, db_path: str, user_id: str | None = None, elevated: bool = False):
        self.db_path = db_path
        self.user_id = user_id
        self.elevated = elevated

    def connect(self):
        return db(self.db_path)

    def __repr__(self) -> str:
        role = "service" if self.elevated else f"user={self.user_id!r}"
        return f"StoreHandle({self.db_path!r}, {role})"


def get_service_store() -> StoreHandle | None:
    """Return the elevated store, or None when FOLIO_SERVICE_DB_PATH is not set."""
    path = get_settings().service_db_path
    if not path:
        return None
    return StoreHandle(path, elevated=True)


def update_ingestion_location(store: StoreHandle, ingestion_id: str, path: str, filename: str) -> bool:
    """
    Point an ingestion record at a renamed/moved file so re-runs don't use a stale path.

    Returns True if a row was updated, False if no ingestion has that id.

    Raises:
        StorageError - the update itself failed
    """
    try:
        with store.connect() as conn:
            cursor = conn.execute(
                "UPDATE ingestions SET storage_path = ?, filename = ?, updated_at = datetime('now') "
                "WHERE id = ?",
                (path, filename, ingestion_id),
            )
            updated = cursor.rowcount > 0
    except sqlite3.Error as e:
        raise StorageError(f"Failed to update ingestion {ingestion_id}: {e}") from e
    if not updated:
        logger.warning("No ingestion %s to update after moving file to %s", ingestion_id, os.path.basename(path))
    return updated
