# SPDX-License-Identifier: MPL-2.0
"""
Database module for the issuing authority's record store using SQLite.

The store holds permit records, the card most recently issued for each, and
the scan log trail reported by verifying devices.  It is the online
:class:`~permit_trust.core.sources.RecordSource` and the server-side
:class:`~permit_trust.core.sources.ScanLogSink`.
"""

import logging
import sqlite3
import threading
import uuid
from pathlib import Path
from typing import List, Optional, Union

from .exceptions import DatabaseError, EntryNotFoundError
from .models import CardRef, PermitRecord, ScanLogEntry, SignedCredential, parse_expiration_date

logger = logging.getLogger(__name__)

# Database schema version
SCHEMA_VERSION = 1

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS records (
        record_id TEXT PRIMARY KEY,
        holder_name TEXT NOT NULL,
        serial_number TEXT NOT NULL,
        zone TEXT NOT NULL,
        permit_type TEXT NOT NULL,
        expiration_date TEXT NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cards (
        card_id TEXT PRIMARY KEY,
        record_id TEXT NOT NULL REFERENCES records(record_id) ON DELETE CASCADE,
        payload_encoded TEXT NOT NULL,
        signature TEXT NOT NULL,
        version INTEGER NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_cards_record_id ON cards(record_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS scan_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        credential_id TEXT,
        agent_id TEXT,
        timestamp INTEGER NOT NULL,
        outcome TEXT NOT NULL,
        mode TEXT NOT NULL,
        reason TEXT
    )
    """,
]


class RecordStore:
    """
    Thread-safe SQLite store for permit records, cards and scan logs.

    Attributes:
        db_path: Path to the SQLite database file
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file, or ":memory:" for in-memory DB.
        """
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise DatabaseError(f"Cannot open record store {self.db_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema and ensure proper configuration."""
        with self._lock:
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA synchronous = NORMAL")
            self._conn.execute("PRAGMA busy_timeout = 5000")

            for stmt in SCHEMA:
                self._conn.execute(stmt)

            self._conn.execute(
                "INSERT OR REPLACE INTO metadata (key, value) VALUES ('schema_version', ?)",
                (str(SCHEMA_VERSION),),
            )
            self._conn.commit()

    def _execute(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                rows = self._conn.execute(sql, params).fetchall()
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                logger.error(f"Database error: {e}")
                raise DatabaseError(f"Database error: {e}") from e
        return rows

    def put_record(self, record: PermitRecord) -> PermitRecord:
        """Insert or update a record.  An attached card is stored as well."""
        with self._lock:
            self._execute(
                """
                INSERT INTO records (record_id, holder_name, serial_number, zone, permit_type, expiration_date)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(record_id) DO UPDATE SET
                    holder_name=excluded.holder_name,
                    serial_number=excluded.serial_number,
                    zone=excluded.zone,
                    permit_type=excluded.permit_type,
                    expiration_date=excluded.expiration_date
                """,
                (
                    record.record_id,
                    record.holder_name,
                    record.serial_number,
                    record.zone,
                    record.permit_type,
                    record.expiration_date.isoformat(),
                ),
            )
            if record.card is not None:
                self._insert_card(record.record_id, record.card)
        logger.debug("Stored record %s", record.record_id)
        return self.fetch_record(record.record_id) or record

    def fetch_record(self, record_id: str) -> Optional[PermitRecord]:
        rows = self._execute("SELECT * FROM records WHERE record_id = ?", (record_id,))
        if not rows:
            return None
        row = rows[0]
        return PermitRecord(
            record_id=row["record_id"],
            holder_name=row["holder_name"],
            serial_number=row["serial_number"],
            zone=row["zone"],
            permit_type=row["permit_type"],
            expiration_date=parse_expiration_date(row["expiration_date"]),
            card=self.get_card(record_id),
        )

    def list_records(self) -> List[PermitRecord]:
        rows = self._execute("SELECT record_id FROM records ORDER BY created_at, record_id")
        return [r for r in (self.fetch_record(row["record_id"]) for row in rows) if r is not None]

    def attach_card(self, record_id: str, credential: SignedCredential) -> CardRef:
        """Persist a newly issued credential as the record's current card.

        Raises:
            EntryNotFoundError: If the record does not exist.
        """
        with self._lock:
            if not self._execute("SELECT 1 FROM records WHERE record_id = ?", (record_id,)):
                raise EntryNotFoundError(f"Record {record_id} not found", {"record_id": record_id})
            current = self.get_card(record_id)
            card = CardRef(
                card_id=str(uuid.uuid4()),
                payload_encoded=credential.payload_encoded,
                signature=credential.signature,
                version=current.version + 1 if current is not None else 1,
            )
            self._insert_card(record_id, card)
        return card

    def _insert_card(self, record_id: str, card: CardRef) -> None:
        self._execute(
            """
            INSERT OR REPLACE INTO cards (card_id, record_id, payload_encoded, signature, version)
            VALUES (?, ?, ?, ?, ?)
            """,
            (card.card_id, record_id, card.payload_encoded, card.signature, card.version),
        )

    def get_card(self, record_id: str) -> Optional[CardRef]:
        rows = self._execute(
            "SELECT * FROM cards WHERE record_id = ? ORDER BY version DESC LIMIT 1",
            (record_id,),
        )
        if not rows:
            return None
        row = rows[0]
        return CardRef(
            card_id=row["card_id"],
            payload_encoded=row["payload_encoded"],
            signature=row["signature"],
            version=row["version"],
        )

    def append_scan_log(self, entry: ScanLogEntry) -> None:
        data = entry.to_dict()
        self._execute(
            """
            INSERT INTO scan_logs (credential_id, agent_id, timestamp, outcome, mode, reason)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                data["credential_id"],
                data["agent_id"],
                data["timestamp"],
                data["outcome"],
                data["mode"],
                data["reason"],
            ),
        )

    def list_scan_logs(self, limit: int = 100, offset: int = 0) -> List[ScanLogEntry]:
        """Return scan logs, newest first."""
        rows = self._execute(
            "SELECT * FROM scan_logs ORDER BY id DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [ScanLogEntry.from_dict(dict(row)) for row in rows]

    def get_stats(self) -> dict:
        rows = self._execute(
            "SELECT outcome, COUNT(*) AS n FROM scan_logs GROUP BY outcome"
        )
        stats = {"records": self._execute("SELECT COUNT(*) AS n FROM records")[0]["n"]}
        stats.update({f"scans_{row['outcome']}": row["n"] for row in rows})
        return stats

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

