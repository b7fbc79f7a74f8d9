"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for chain access, off-chain verification
and storage so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from sofia_indexer.core.models import (
    AtomEntry,
    IndexedRecord,
    OutcomeCounts,
    RawEventLog,
    Verification,
)


class ChainClientPort(Protocol):
    """Read-only chain access required by the scanner and pipeline."""

    async def head_block(self) -> int:
        ...

    async def logs(self, from_block: int, to_block: int) -> Sequence[RawEventLog]:
        ...

    async def block_timestamp(self, block_number: int) -> int:
        ...


class ProvenanceVerifierPort(Protocol):
    """Off-chain signature check for a content locator."""

    async def check(self, locator: str) -> Verification:
        ...


class CheckpointPort(Protocol):
    """Cursor over the last fully processed block, with lifetime outcome totals."""

    def get(self) -> Optional[int]:
        ...

    def initialize(self, block_number: int) -> None:
        ...

    def advance(self, to_block: int, counts: Optional[OutcomeCounts] = None) -> None:
        ...

    def totals(self) -> OutcomeCounts:
        ...


class RecordStorePort(Protocol):
    """Queryable collection of admitted records."""

    def upsert(self, record: IndexedRecord) -> None:
        ...

    def get(self, record_id: str) -> Optional[IndexedRecord]:
        ...

    def list(self) -> list[IndexedRecord]:
        ...

    def count(self) -> int:
        ...


class AtomRegistryPort(Protocol):
    """Term id -> locator map built from AtomCreated logs."""

    def get_atom(self, term_id: str) -> Optional[AtomEntry]:
        ...

    def put_atom(self, entry: AtomEntry) -> None:
        ...
