"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any RPC- or storage-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

ATOM = "atom"
TRIPLE = "triple"
ROLES = ("subject", "predicate", "object")


@dataclass(frozen=True)
class RawEventLog:
    """A contract log as returned by eth_getLogs, with hex fields normalized."""

    block_number: int
    transaction_hash: str
    log_index: int
    address: str
    topics: Tuple[str, ...]
    data: str
    block_timestamp: Optional[int] = None

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)

    @property
    def record_id(self) -> str:
        return make_record_id(self.transaction_hash, self.log_index)


@dataclass(frozen=True)
class DecodedEvent:
    """Typed projection of an AtomCreated or TripleCreated log."""

    kind: str
    creator: str
    record_identifier: str
    sub_identifiers: Tuple[str, ...] = ()
    locator: Optional[str] = None


@dataclass(frozen=True)
class AtomMetadata:
    """Descriptive fields of a signed atom's off-chain document."""

    term_id: str
    locator: str
    name: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_document(
        cls, term_id: str, locator: str, document: Optional[Mapping[str, Any]]
    ) -> "AtomMetadata":
        document = document or {}

        def text(key: str) -> Optional[str]:
            value = document.get(key)
            return value if isinstance(value, str) else None

        return cls(term_id, locator, text("name"), text("description"), text("url"))


@dataclass(frozen=True)
class Verification:
    """Result of a provenance check; `document` is the fetched JSON object, if any."""

    matched: bool
    document: Optional[dict] = None


@dataclass(frozen=True)
class AtomEntry:
    """Registry entry mapping an atom term id to its off-chain locator.

    `verified` is None until the locator has been checked. `metadata` is only
    kept for signed atoms.
    """

    term_id: str
    locator: Optional[str]
    verified: Optional[bool] = None
    metadata: Optional[AtomMetadata] = None


@dataclass(frozen=True)
class IndexedRecord:
    """Admitted record; identity is (transaction_hash, log_index)."""

    id: str
    transaction_hash: str
    log_index: int
    block_number: int
    timestamp: int
    kind: str
    record_identifier: str
    sub_identifiers: Tuple[str, ...]
    creator: str
    matched_locators: Tuple[str, ...]
    verified: bool = True
    metadata: Tuple[AtomMetadata, ...] = ()

    def role_of(self, term_id: str) -> str:
        """Position of an atom in this record: subject, predicate, object or atom."""

        for role, sub_id in zip(ROLES, self.sub_identifiers):
            if sub_id == term_id:
                return role
        return ATOM


class OutcomeKind(str, Enum):
    ADMITTED = "admitted"
    REJECTED_UNVERIFIED = "rejected"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Outcome:
    """Terminal result of processing a single log."""

    kind: OutcomeKind
    reason: Optional[str] = None
    record: Optional[IndexedRecord] = None

    @classmethod
    def admitted(cls, record: IndexedRecord) -> "Outcome":
        return cls(OutcomeKind.ADMITTED, record=record)

    @classmethod
    def rejected(cls, reason: str) -> "Outcome":
        return cls(OutcomeKind.REJECTED_UNVERIFIED, reason=reason)

    @classmethod
    def skipped(cls, reason: str) -> "Outcome":
        return cls(OutcomeKind.SKIPPED, reason=reason)


@dataclass
class OutcomeCounts:
    """Admitted/rejected/skipped counters."""

    admitted: int = 0
    rejected: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.admitted + self.rejected + self.skipped

    def add(self, outcome: Outcome) -> None:
        if outcome.kind is OutcomeKind.ADMITTED:
            self.admitted += 1
        elif outcome.kind is OutcomeKind.REJECTED_UNVERIFIED:
            self.rejected += 1
        else:
            self.skipped += 1

    def merge(self, other: "OutcomeCounts") -> None:
        self.admitted += other.admitted
        self.rejected += other.rejected
        self.skipped += other.skipped


@dataclass(frozen=True)
class CycleSummary:
    """What one completed scan cycle did."""

    from_block: int
    to_block: int
    logs: int
    counts: OutcomeCounts
    finished_at: datetime


@dataclass
class IndexerStatus:
    """Operator-facing snapshot of the indexer."""

    state: str
    checkpoint: Optional[int]
    records: int
    totals: OutcomeCounts = field(default_factory=OutcomeCounts)
    cycles: int = 0
    last_cycle_at: Optional[datetime] = None
    consecutive_failures: int = 0


def make_record_id(transaction_hash: str, log_index: int) -> str:
    """Return the idempotency key of a log."""

    return f"{transaction_hash.lower()}:{log_index}"
