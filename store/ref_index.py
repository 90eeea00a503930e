"""Reference index: chunk inventory, stream -> chunk references, and in-flight pins."""

import sqlite3
import threading
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from common.logging_config import get_logger
from common.types import Stream
from store.database import get_db_connection, init_database

logger = get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReferenceIndex:
    """
    Persistent reverse index (SQLite) plus an in-memory pin table.

    Persistent rows record which chunks exist and which committed streams
    reference them. Pins are process-local reference counts held by
    in-flight syncs; they vanish with the process, which is what a crash
    should do to them.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._pins: Counter = Counter()
        self._pin_lock = threading.Lock()

    def init(self) -> None:
        init_database(self.db_path)

    def connection(self):
        """Open a connection; callers commit explicitly."""
        return get_db_connection(self.db_path)

    def record_chunk(self, chunk_hash: str, size: int) -> None:
        """Record a newly written chunk blob."""
        with self.connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO chunks (hash, size, stored_at) VALUES (?, ?, ?)",
                (chunk_hash, size, _now())
            )
            conn.commit()

    def forget_chunk(self, conn: sqlite3.Connection, chunk_hash: str) -> None:
        conn.execute("DELETE FROM chunks WHERE hash = ?", (chunk_hash,))

    def known_chunks(self) -> set[str]:
        with self.connection() as conn:
            return {row["hash"] for row in conn.execute("SELECT hash FROM chunks")}

    def add_stream(self, conn: sqlite3.Connection, stream: Stream) -> None:
        """
        Insert a stream row and its chunk references (caller commits).

        Args:
            conn: Open connection whose transaction also covers the manifest write
            stream: Stream being committed
        """
        conn.execute(
            "INSERT OR REPLACE INTO streams (stream_id, size, chunk_count, committed_at) VALUES (?, ?, ?, ?)",
            (stream.stream_id, stream.size, len(stream.chunks), _now())
        )
        conn.executemany(
            "INSERT OR IGNORE INTO stream_refs (stream_id, chunk_hash) VALUES (?, ?)",
            [(stream.stream_id, h) for h in stream.unique_chunks()]
        )

    def remove_stream(self, conn: sqlite3.Connection, stream_id: str) -> int:
        """Delete a stream row and its references (caller commits). Returns refs removed."""
        cursor = conn.execute("DELETE FROM stream_refs WHERE stream_id = ?", (stream_id,))
        removed = cursor.rowcount
        conn.execute("DELETE FROM streams WHERE stream_id = ?", (stream_id,))
        return removed

    def has_stream(self, stream_id: str) -> bool:
        with self.connection() as conn:
            row = conn.execute("SELECT 1 FROM streams WHERE stream_id = ?", (stream_id,)).fetchone()
            return row is not None

    def known_streams(self) -> set[str]:
        with self.connection() as conn:
            return {row["stream_id"] for row in conn.execute("SELECT stream_id FROM streams")}

    def referencing_streams(self, chunk_hash: str) -> set[str]:
        """Return the IDs of committed streams that reference a chunk."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT stream_id FROM stream_refs WHERE chunk_hash = ?", (chunk_hash,)
            ).fetchall()
            return {row["stream_id"] for row in rows}

    def unreferenced_chunks(self, conn: sqlite3.Connection) -> list[str]:
        """Chunks that no committed stream references."""
        rows = conn.execute("""
            SELECT hash FROM chunks
            WHERE NOT EXISTS (SELECT 1 FROM stream_refs WHERE stream_refs.chunk_hash = chunks.hash)
        """).fetchall()
        return [row["hash"] for row in rows]

    def totals(self) -> tuple[int, int, int]:
        """Return (chunk_count, stored_bytes, stream_count)."""
        with self.connection() as conn:
            chunk_count, stored_bytes = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(size), 0) FROM chunks"
            ).fetchone()
            stream_count = conn.execute("SELECT COUNT(*) FROM streams").fetchone()[0]
            return chunk_count, stored_bytes, stream_count

    def pin(self, hashes: Iterable[str]) -> None:
        with self._pin_lock:
            self._pins.update(hashes)

    def unpin(self, hashes: Iterable[str]) -> None:
        with self._pin_lock:
            self._pins.subtract(hashes)
            for h in [h for h, count in self._pins.items() if count <= 0]:
                del self._pins[h]

    def is_pinned(self, chunk_hash: str) -> bool:
        with self._pin_lock:
            return self._pins[chunk_hash] > 0

    def pinned(self) -> set[str]:
        """Point-in-time snapshot of pinned hashes."""
        with self._pin_lock:
            return {h for h, count in self._pins.items() if count > 0}
