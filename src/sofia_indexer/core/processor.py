"""Core record processing pipeline.

This module is integration-agnostic. It only relies on ports for chain
access, verification and storage, so the same pipeline runs against the live
JSON-RPC/IPFS adapters and against test fakes.

Each log goes through a strict order:
1) Decode (untracked events are skipped quietly)
2) Register atom locators so later triples in the batch can resolve them
3) Verify provenance through the retry policy
4) Upsert the admitted record keyed by (transaction_hash, log_index)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Optional, Sequence

from sofia_indexer.core.decoding import decode_event
from sofia_indexer.core.errors import DecodeError, RetryExhausted
from sofia_indexer.core.models import (
    ATOM,
    AtomEntry,
    AtomMetadata,
    DecodedEvent,
    IndexedRecord,
    Outcome,
    RawEventLog,
    Verification,
)
from sofia_indexer.core.ports import (
    AtomRegistryPort,
    ChainClientPort,
    ProvenanceVerifierPort,
    RecordStorePort,
)
from sofia_indexer.core.retry import RetryPolicy, Sleep

LOGGER = logging.getLogger(__name__)

_BLOCK_TIME_CACHE_SIZE = 1024


class RecordPipeline:
    """Turns raw logs into terminal outcomes, admitting verified records."""

    def __init__(
        self,
        chain: ChainClientPort,
        verifier: ProvenanceVerifierPort,
        store: RecordStorePort,
        atoms: AtomRegistryPort,
        retry_policy: RetryPolicy,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self._chain = chain
        self._verifier = verifier
        self._store = store
        self._atoms = atoms
        self._retry = retry_policy
        self._sleep = sleep
        self._block_times: dict[int, int] = {}

    async def process(self, log: RawEventLog) -> Outcome:
        """Process one log and return its terminal outcome.

        Transient chain errors raised while admitting propagate so the caller
        retries the whole range.
        """

        try:
            event = decode_event(log)
        except DecodeError as exc:
            LOGGER.debug("Skipping %s: %s", log.record_id, exc)
            return Outcome.skipped(f"not a tracked event: {exc}")

        if event.kind == ATOM:
            return await self._process_atom(log, event)
        return await self._process_triple(log, event)

    def register_atom(self, log: RawEventLog) -> bool:
        """Record an atom's locator without verifying it (look-back warm-up)."""

        try:
            event = decode_event(log)
        except DecodeError:
            return False
        if event.kind != ATOM:
            return False
        existing = self._atoms.get_atom(event.record_identifier)
        if existing and existing.locator == event.locator:
            return False
        verified = False if event.locator is None else None
        self._atoms.put_atom(AtomEntry(event.record_identifier, event.locator, verified))
        return True

    async def _process_atom(self, log: RawEventLog, event: DecodedEvent) -> Outcome:
        term_id = event.record_identifier
        if event.locator is None:
            self._atoms.put_atom(AtomEntry(term_id, None, False))
            LOGGER.debug("Atom ignored (not IPFS): %s", term_id)
            return Outcome.rejected("atom data is not an IPFS locator")

        # A replayed log reuses the verdict recorded the first time around.
        existing = self._atoms.get_atom(term_id)
        if existing and existing.locator == event.locator and existing.verified is not None:
            checked = existing
        else:
            entry = AtomEntry(term_id, event.locator, None)
            self._atoms.put_atom(entry)
            try:
                checked = await self._check_atom(entry)
            except RetryExhausted as exc:
                return self._degraded(log, exc)

        if not checked.verified:
            LOGGER.debug("Atom ignored (no signature): %s", term_id)
            return Outcome.rejected("no provenance signature")

        record = await self._admit(log, event, [checked])
        return Outcome.admitted(record)

    async def _process_triple(self, log: RawEventLog, event: DecodedEvent) -> Outcome:
        term_ids = list(dict.fromkeys(event.sub_identifiers))
        entries = [self._atoms.get_atom(term_id) for term_id in term_ids]
        results = await asyncio.gather(
            *(self._resolved_atom(entry) for entry in entries),
            return_exceptions=True,
        )

        matched: list[AtomEntry] = []
        degraded: Optional[RetryExhausted] = None
        for result in results:
            if isinstance(result, RetryExhausted):
                degraded = degraded or result
                continue
            if isinstance(result, BaseException):
                raise result
            if result is not None and result.verified:
                matched.append(result)

        if matched:
            record = await self._admit(log, event, matched)
            return Outcome.admitted(record)
        if degraded is not None:
            return self._degraded(log, degraded)
        LOGGER.debug("Not a signed triple: %s", event.record_identifier)
        return Outcome.rejected("no referenced atom carries a provenance signature")

    async def _resolved_atom(self, entry: Optional[AtomEntry]) -> Optional[AtomEntry]:
        if entry is None or entry.locator is None:
            return None
        if entry.verified is not None:
            return entry
        return await self._check_atom(entry)

    async def _check_atom(self, entry: AtomEntry) -> AtomEntry:
        """Verify an atom's locator and cache the verdict (and metadata if signed)."""

        assert entry.locator is not None
        result = await self._verify(entry.locator)
        metadata = None
        if result.matched:
            metadata = AtomMetadata.from_document(entry.term_id, entry.locator, result.document)
        checked = replace(entry, verified=result.matched, metadata=metadata)
        self._atoms.put_atom(checked)
        return checked

    async def _verify(self, locator: str) -> Verification:
        return await self._retry.call(
            lambda: self._verifier.check(locator),
            description=f"verify {locator}",
            sleep=self._sleep,
        )

    async def _admit(
        self,
        log: RawEventLog,
        event: DecodedEvent,
        matched: Sequence[AtomEntry],
    ) -> IndexedRecord:
        record = IndexedRecord(
            id=log.record_id,
            transaction_hash=log.transaction_hash.lower(),
            log_index=log.log_index,
            block_number=log.block_number,
            timestamp=await self._timestamp(log),
            kind=event.kind,
            record_identifier=event.record_identifier,
            sub_identifiers=event.sub_identifiers,
            creator=event.creator,
            matched_locators=tuple(entry.locator for entry in matched if entry.locator),
            metadata=tuple(entry.metadata for entry in matched if entry.metadata is not None),
        )
        # Upsert keeps replays of the same log idempotent.
        self._store.upsert(record)
        LOGGER.info(
            "Signed %s admitted: id=%s block=%s tx=%s",
            record.kind,
            record.record_identifier,
            record.block_number,
            record.transaction_hash,
        )
        for metadata in record.metadata:
            LOGGER.info(
                "  %s: name=%r description=%r url=%r ipfs=%s",
                record.role_of(metadata.term_id),
                metadata.name,
                metadata.description,
                metadata.url,
                metadata.locator,
            )
        return record

    async def _timestamp(self, log: RawEventLog) -> int:
        if log.block_timestamp is not None:
            return log.block_timestamp
        cached = self._block_times.get(log.block_number)
        if cached is not None:
            return cached
        timestamp = await self._chain.block_timestamp(log.block_number)
        if len(self._block_times) >= _BLOCK_TIME_CACHE_SIZE:
            self._block_times.clear()
        self._block_times[log.block_number] = timestamp
        return timestamp

    @staticmethod
    def _degraded(log: RawEventLog, exc: RetryExhausted) -> Outcome:
        LOGGER.warning(
            "Verification degraded: skipping %s at block %s after %s attempts (%s)",
            log.record_id,
            log.block_number,
            exc.attempts,
            exc.last_error,
        )
        return Outcome.skipped(f"verification unavailable: {exc.last_error}")
