"""SQLite schema and connection management for the local store index."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

SQLITE_TIMEOUT_SECONDS = 30.0


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables if they don't exist.

    Args:
        db_path: Path of the SQLite index file
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with get_db_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                hash TEXT PRIMARY KEY,
                size INTEGER NOT NULL,
                stored_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS streams (
                stream_id TEXT PRIMARY KEY,
                size INTEGER NOT NULL,
                chunk_count INTEGER NOT NULL,
                committed_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS stream_refs (
                stream_id TEXT NOT NULL,
                chunk_hash TEXT NOT NULL,
                PRIMARY KEY(stream_id, chunk_hash),
                FOREIGN KEY(stream_id) REFERENCES streams(stream_id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_stream_refs_chunk ON stream_refs(chunk_hash)
        """)

        conn.commit()


@contextmanager
def get_db_connection(db_path: Path) -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager for database connections.

    Uncommitted changes are rolled back when the connection closes.
    """
    conn = sqlite3.connect(str(db_path), timeout=SQLITE_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()
