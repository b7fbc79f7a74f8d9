"""In-memory record store and atom registry (core domain).

Backs the store ports in tests. The SQLite adapter offers the same contract
with durability.
"""

from __future__ import annotations

from typing import Optional

from sofia_indexer.core.models import AtomEntry, IndexedRecord


class InMemoryRecordStore:
    """Records keyed by (transaction_hash, log_index); upsert never duplicates."""

    def __init__(self) -> None:
        self._records: dict[str, IndexedRecord] = {}

    def upsert(self, record: IndexedRecord) -> None:
        self._records[record.id] = record

    def get(self, record_id: str) -> Optional[IndexedRecord]:
        return self._records.get(record_id.lower())

    def list(self) -> list[IndexedRecord]:
        return sorted(self._records.values(), key=lambda r: (r.block_number, r.log_index))

    def count(self) -> int:
        return len(self._records)


class InMemoryAtomRegistry:
    def __init__(self) -> None:
        self._atoms: dict[str, AtomEntry] = {}

    def get_atom(self, term_id: str) -> Optional[AtomEntry]:
        return self._atoms.get(term_id.lower())

    def put_atom(self, entry: AtomEntry) -> None:
        self._atoms[entry.term_id.lower()] = entry
