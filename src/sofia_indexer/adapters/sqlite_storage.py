"""SQLite storage adapter.

Implements the core RecordStorePort and AtomRegistryPort (SQLiteStorage) and
the CheckpointPort (SQLiteCheckpoint) on a single SQLite database, so records
and the cursor survive restarts together.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from dataclasses import asdict
from typing import Iterator, Optional

from sofia_indexer.core.checkpoint import check_advance
from sofia_indexer.core.errors import CheckpointError, StorageError
from sofia_indexer.core.models import AtomEntry, AtomMetadata, IndexedRecord, OutcomeCounts

# Columns added after the first release; init_db adds them to older databases.
_ADDED_COLUMNS = {
    "checkpoint": (
        ("admitted", "INTEGER NOT NULL DEFAULT 0"),
        ("rejected", "INTEGER NOT NULL DEFAULT 0"),
        ("skipped", "INTEGER NOT NULL DEFAULT 0"),
    ),
    "records": (("metadata", "TEXT NOT NULL DEFAULT '[]'"),),
    "atoms": (("metadata", "TEXT"),),
}


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the record store and atom registry contracts."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    @property
    def db_path(self) -> str:
        return self._db_path

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise StorageError(f"cannot open {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.DatabaseError as exc:
            raise StorageError(f"storage failure in {self._db_path}: {exc}") from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - checkpoint: single row with the last fully processed block and
          lifetime outcome totals
        - records: admitted records keyed by transaction hash + log index
        - atoms: atom term id -> off-chain locator and cached verdict
        """

        with self.connect() as conn:
            # checkpoint holds exactly one row (id = 1) so the cursor can be
            # resumed after a restart.
            # Fields:
            # - last_block: highest block whose logs are all terminal
            # - updated_at: when the last chunk was committed
            # - admitted / rejected / skipped: outcomes of all committed chunks
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS checkpoint (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    last_block INTEGER NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    admitted INTEGER NOT NULL DEFAULT 0,
                    rejected INTEGER NOT NULL DEFAULT 0,
                    skipped INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            # records is written with upserts; replays after a crash rewrite
            # the same row instead of adding a new one.
            # Fields:
            # - id: "<transaction_hash>:<log_index>" (PRIMARY KEY)
            # - sub_identifiers / matched_locators: JSON arrays
            # - metadata: JSON array of the signed atoms' name/description/url
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    id TEXT PRIMARY KEY,
                    transaction_hash TEXT NOT NULL,
                    log_index INTEGER NOT NULL,
                    block_number INTEGER NOT NULL,
                    timestamp INTEGER NOT NULL,
                    kind TEXT NOT NULL,
                    record_identifier TEXT NOT NULL,
                    sub_identifiers TEXT NOT NULL,
                    creator TEXT NOT NULL,
                    matched_locators TEXT NOT NULL,
                    verified INTEGER NOT NULL,
                    metadata TEXT NOT NULL DEFAULT '[]'
                )
                """
            )
            # atoms lets triples resolve locators of atoms created in earlier
            # cycles or runs. verified is NULL until the locator was checked;
            # metadata is a JSON object for signed atoms only.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS atoms (
                    term_id TEXT PRIMARY KEY,
                    locator TEXT,
                    verified INTEGER,
                    metadata TEXT
                )
                """
            )
            for table, columns in _ADDED_COLUMNS.items():
                existing = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}
                for name, definition in columns:
                    if name not in existing:
                        conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {definition}")

    def upsert(self, record: IndexedRecord) -> None:
        """Insert or replace the record with the same id."""

        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO records (
                    id,
                    transaction_hash,
                    log_index,
                    block_number,
                    timestamp,
                    kind,
                    record_identifier,
                    sub_identifiers,
                    creator,
                    matched_locators,
                    verified,
                    metadata
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    block_number = excluded.block_number,
                    timestamp = excluded.timestamp,
                    kind = excluded.kind,
                    record_identifier = excluded.record_identifier,
                    sub_identifiers = excluded.sub_identifiers,
                    creator = excluded.creator,
                    matched_locators = excluded.matched_locators,
                    verified = excluded.verified,
                    metadata = excluded.metadata
                """,
                (
                    record.id,
                    record.transaction_hash,
                    record.log_index,
                    record.block_number,
                    record.timestamp,
                    record.kind,
                    record.record_identifier,
                    json.dumps(list(record.sub_identifiers)),
                    record.creator,
                    json.dumps(list(record.matched_locators)),
                    int(record.verified),
                    json.dumps([asdict(item) for item in record.metadata]),
                ),
            )

    def get(self, record_id: str) -> Optional[IndexedRecord]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM records WHERE id = ?",
                (record_id.lower(),),
            ).fetchone()
        return self._record_from_row(row) if row else None

    def list(self) -> list[IndexedRecord]:
        """Return all records ordered by block number and log index."""

        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM records ORDER BY block_number, log_index"
            ).fetchall()
        return [self._record_from_row(row) for row in rows]

    def count(self) -> int:
        with self.connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM records").fetchone()
        return int(row["total"])

    def get_atom(self, term_id: str) -> Optional[AtomEntry]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT term_id, locator, verified, metadata FROM atoms WHERE term_id = ?",
                (term_id.lower(),),
            ).fetchone()
        if not row:
            return None
        verified = None if row["verified"] is None else bool(row["verified"])
        metadata = None
        if row["metadata"]:
            metadata = _metadata_from_json(row["metadata"], f"atom {row['term_id']}")
        return AtomEntry(
            term_id=row["term_id"],
            locator=row["locator"],
            verified=verified,
            metadata=metadata,
        )

    def put_atom(self, entry: AtomEntry) -> None:
        verified = None if entry.verified is None else int(entry.verified)
        metadata = None if entry.metadata is None else json.dumps(asdict(entry.metadata))
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO atoms (term_id, locator, verified, metadata)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(term_id) DO UPDATE SET
                    locator = excluded.locator,
                    verified = excluded.verified,
                    metadata = excluded.metadata
                """,
                (entry.term_id.lower(), entry.locator, verified, metadata),
            )

    @staticmethod
    def _record_from_row(row: sqlite3.Row) -> IndexedRecord:
        try:
            sub_identifiers = tuple(json.loads(row["sub_identifiers"]))
            matched_locators = tuple(json.loads(row["matched_locators"]))
            metadata = tuple(AtomMetadata(**item) for item in json.loads(row["metadata"]))
        except (TypeError, ValueError) as exc:
            raise StorageError(f"corrupt record {row['id']}") from exc
        return IndexedRecord(
            id=row["id"],
            transaction_hash=row["transaction_hash"],
            log_index=int(row["log_index"]),
            block_number=int(row["block_number"]),
            timestamp=int(row["timestamp"]),
            kind=row["kind"],
            record_identifier=row["record_identifier"],
            sub_identifiers=sub_identifiers,
            creator=row["creator"],
            matched_locators=matched_locators,
            verified=bool(row["verified"]),
            metadata=metadata,
        )


def _metadata_from_json(raw: str, owner: str) -> AtomMetadata:
    try:
        return AtomMetadata(**json.loads(raw))
    except (TypeError, ValueError) as exc:
        raise StorageError(f"corrupt metadata for {owner}") from exc


class SQLiteCheckpoint:
    """CheckpointPort backed by the single-row checkpoint table."""

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    def get(self) -> Optional[int]:
        """Return the last processed block, or None before initialization."""

        with self._storage.connect() as conn:
            row = conn.execute("SELECT last_block FROM checkpoint WHERE id = 1").fetchone()
        return int(row["last_block"]) if row else None

    def initialize(self, block_number: int) -> None:
        """Store the first checkpoint value; fails if one already exists."""

        with self._storage.connect() as conn:
            try:
                conn.execute(
                    "INSERT INTO checkpoint (id, last_block, updated_at) VALUES (1, ?, ?)",
                    (block_number, datetime.now(timezone.utc).isoformat()),
                )
            except sqlite3.IntegrityError as exc:
                raise CheckpointError("checkpoint already initialized") from exc

    def advance(self, to_block: int, counts: Optional[OutcomeCounts] = None) -> None:
        """Move the checkpoint forward and add `counts` to the totals.

        Both land in one transaction. Moving backwards is a fatal bug.
        """

        counts = counts or OutcomeCounts()
        with self._storage.connect() as conn:
            row = conn.execute("SELECT last_block FROM checkpoint WHERE id = 1").fetchone()
            check_advance(int(row["last_block"]) if row else None, to_block)
            conn.execute(
                """
                UPDATE checkpoint SET
                    last_block = ?,
                    updated_at = ?,
                    admitted = admitted + ?,
                    rejected = rejected + ?,
                    skipped = skipped + ?
                WHERE id = 1
                """,
                (
                    to_block,
                    datetime.now(timezone.utc).isoformat(),
                    counts.admitted,
                    counts.rejected,
                    counts.skipped,
                ),
            )

    def totals(self) -> OutcomeCounts:
        """Return the outcome totals of every committed chunk."""

        with self._storage.connect() as conn:
            row = conn.execute(
                "SELECT admitted, rejected, skipped FROM checkpoint WHERE id = 1"
            ).fetchone()
        if not row:
            return OutcomeCounts()
        return OutcomeCounts(
            admitted=int(row["admitted"]),
            rejected=int(row["rejected"]),
            skipped=int(row["skipped"]),
        )

    def last_updated_at(self) -> Optional[datetime]:
        """Return when the checkpoint was last written."""

        with self._storage.connect() as conn:
            row = conn.execute("SELECT updated_at FROM checkpoint WHERE id = 1").fetchone()
        return datetime.fromisoformat(row["updated_at"]) if row else None
