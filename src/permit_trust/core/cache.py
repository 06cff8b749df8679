# SPDX-License-Identifier: MPL-2.0
"""
Device-local storage for offline verification.

:class:`VerificationCache` keeps the last known snapshot of each record so that
credentials can still be classified without connectivity.  Snapshots are never
expired by age; a record revoked upstream stays valid offline until the cache
is refreshed or cleared.

:class:`PendingScanLogQueue` holds scan logs that could not be delivered to
the authority, for later synchronization.  Both share the same SQLite file.
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .exceptions import DatabaseError
from .models import PermitRecord, ScanLogEntry, VerificationCacheEntry, now_millis
from .sources import RecordSource

logger = logging.getLogger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS cached_records (
        record_id TEXT PRIMARY KEY,
        data TEXT NOT NULL,
        cached_at INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pending_scan_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        data TEXT NOT NULL
    )
    """,
]


class _SQLiteStore:
    """One serialized connection per store instance."""

    def __init__(self, db_path: Union[str, Path] = ":memory:") -> None:
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise DatabaseError(f"Cannot open {self.db_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.execute("PRAGMA busy_timeout = 5000")
            for stmt in SCHEMA:
                self._conn.execute(stmt)
            self._conn.commit()

    def _execute(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                cursor = self._conn.execute(sql, params)
                rows = cursor.fetchall()
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                logger.error("Database error on %s: %s", self.db_path, e)
                raise DatabaseError(f"Database error: {e}") from e
        return rows

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class VerificationCache(_SQLiteStore):
    """Record snapshots keyed by record id; a :class:`RecordSource`."""

    def __init__(self, db_path: Union[str, Path] = ":memory:", clock=now_millis) -> None:
        super().__init__(db_path)
        self.clock = clock

    def put(self, record: PermitRecord) -> None:
        """Insert or replace the snapshot for ``record``."""
        self._execute(
            "INSERT OR REPLACE INTO cached_records (record_id, data, cached_at) VALUES (?, ?, ?)",
            (record.record_id, json.dumps(record.to_dict()), self.clock()),
        )

    def entry(self, record_id: str) -> Optional[VerificationCacheEntry]:
        rows = self._execute(
            "SELECT data, cached_at FROM cached_records WHERE record_id = ?",
            (record_id,),
        )
        if not rows:
            return None
        try:
            record = PermitRecord.from_dict(json.loads(rows[0]["data"]))
        except (ValueError, KeyError, TypeError) as e:
            raise DatabaseError(f"Corrupt cache entry for {record_id}: {e}") from e
        return VerificationCacheEntry(record_id=record_id, record=record, cached_at=rows[0]["cached_at"])

    def get(self, record_id: str) -> Optional[PermitRecord]:
        entry = self.entry(record_id)
        return entry.record if entry is not None else None

    def fetch_record(self, record_id: str) -> Optional[PermitRecord]:
        return self.get(record_id)

    def clear(self) -> None:
        self._execute("DELETE FROM cached_records")
        logger.info("Verification cache cleared")

    def record_ids(self) -> List[str]:
        return [row["record_id"] for row in self._execute("SELECT record_id FROM cached_records ORDER BY record_id")]

    def refresh_from(self, source: RecordSource, record_ids: Iterable[str]) -> int:
        """Prefetch snapshots from ``source``.

        Records the source no longer knows are evicted.  Returns the number of
        snapshots written.

        Raises:
            InfrastructureFailure: If ``source`` cannot be reached.
        """
        written = 0
        for record_id in record_ids:
            record = source.fetch_record(record_id)
            if record is None:
                self._execute("DELETE FROM cached_records WHERE record_id = ?", (record_id,))
                continue
            self.put(record)
            written += 1
        logger.info("Refreshed %d cached records", written)
        return written

    def __len__(self) -> int:
        return self._execute("SELECT COUNT(*) AS n FROM cached_records")[0]["n"]


class PendingScanLogQueue(_SQLiteStore):
    """Scan logs waiting to be sent to the authority; a ``ScanLogSink``."""

    def append_scan_log(self, entry: ScanLogEntry) -> None:
        self._execute("INSERT INTO pending_scan_logs (data) VALUES (?)", (json.dumps(entry.to_dict()),))

    def pending(self) -> List[ScanLogEntry]:
        rows = self._execute("SELECT data FROM pending_scan_logs ORDER BY id ASC")
        return [ScanLogEntry.from_dict(json.loads(row["data"])) for row in rows]

    def drain(self, sink) -> int:
        """Deliver queued entries to ``sink`` in order, oldest first.

        Stops at the first delivery failure and leaves the remaining entries
        queued; the failure propagates.  Returns the number delivered.
        """
        delivered = 0
        rows = self._execute("SELECT id, data FROM pending_scan_logs ORDER BY id ASC")
        for row in rows:
            sink.append_scan_log(ScanLogEntry.from_dict(json.loads(row["data"])))
            self._execute("DELETE FROM pending_scan_logs WHERE id = ?", (row["id"],))
            delivered += 1
        if delivered:
            logger.info("Delivered %d queued scan logs", delivered)
        return delivered

    def __len__(self) -> int:
        return self._execute("SELECT COUNT(*) AS n FROM pending_scan_logs")[0]["n"]
