from __future__ import annotations

import asyncio
import logging
from typing import Optional

from factories import (
    FakeChain,
    FakeVerifier,
    atom_log,
    flaky,
    foreign_log,
    no_sleep,
    term,
    triple_log,
)
from sofia_indexer.core.models import ATOM, TRIPLE, AtomEntry, AtomMetadata, OutcomeKind
from sofia_indexer.core.processor import RecordPipeline
from sofia_indexer.core.retry import RetryPolicy
from sofia_indexer.core.store import InMemoryAtomRegistry, InMemoryRecordStore


def _pipeline(
    verifier: FakeVerifier,
    *,
    chain: Optional[FakeChain] = None,
    max_attempts: int = 3,
) -> tuple[RecordPipeline, InMemoryRecordStore, InMemoryAtomRegistry]:
    store = InMemoryRecordStore()
    atoms = InMemoryAtomRegistry()
    pipeline = RecordPipeline(
        chain=chain or FakeChain(),
        verifier=verifier,
        store=store,
        atoms=atoms,
        retry_policy=RetryPolicy(max_attempts=max_attempts, base_delay=1, max_delay=1),
        sleep=no_sleep,
    )
    return pipeline, store, atoms


def test_signed_atom_is_admitted() -> None:
    pipeline, store, atoms = _pipeline(FakeVerifier({"ipfs://signed": True}))
    log = atom_log(term(1), "ipfs://signed", block=120, log_index=3)

    outcome = asyncio.run(pipeline.process(log))

    assert outcome.kind is OutcomeKind.ADMITTED
    record = store.get(log.record_id)
    assert record is not None
    assert record.kind == ATOM
    assert record.block_number == 120
    assert record.log_index == 3
    assert record.timestamp == 1_700_000_000
    assert record.matched_locators == ("ipfs://signed",)
    assert atoms.get_atom(term(1)).verified is True


def test_unsigned_atom_is_rejected_and_not_stored() -> None:
    pipeline, store, atoms = _pipeline(FakeVerifier({"ipfs://plain": False}))

    outcome = asyncio.run(pipeline.process(atom_log(term(1), "ipfs://plain")))

    assert outcome.kind is OutcomeKind.REJECTED_UNVERIFIED
    assert store.count() == 0
    assert atoms.get_atom(term(1)).verified is False


def test_non_ipfs_atom_is_rejected_without_a_gateway_call() -> None:
    verifier = FakeVerifier()
    pipeline, store, atoms = _pipeline(verifier)

    outcome = asyncio.run(pipeline.process(atom_log(term(1), "Alice")))

    assert outcome.kind is OutcomeKind.REJECTED_UNVERIFIED
    assert verifier.calls == []
    assert atoms.get_atom(term(1)) == AtomEntry(term(1), None, False)


def test_replayed_log_is_stored_once() -> None:
    verifier = FakeVerifier({"ipfs://signed": True})
    pipeline, store, _ = _pipeline(verifier)
    log = atom_log(term(1), "ipfs://signed")

    first = asyncio.run(pipeline.process(log))
    second = asyncio.run(pipeline.process(log))

    assert first.kind is OutcomeKind.ADMITTED
    assert second.kind is OutcomeKind.ADMITTED
    assert first.record == second.record
    assert store.count() == 1
    # The cached verdict is reused on replay.
    assert verifier.calls == ["ipfs://signed"]


def test_triple_admitted_when_any_atom_is_signed() -> None:
    verifier = FakeVerifier({"ipfs://subject": False, "ipfs://predicate": True, "ipfs://object": False})
    pipeline, store, _ = _pipeline(verifier)
    logs = [
        atom_log(term(1), "ipfs://subject", log_index=0),
        atom_log(term(2), "ipfs://predicate", log_index=1),
        atom_log(term(3), "ipfs://object", log_index=2),
        triple_log(term(10), term(1), term(2), term(3), log_index=3),
    ]

    outcomes = [asyncio.run(pipeline.process(log)) for log in logs]

    assert outcomes[-1].kind is OutcomeKind.ADMITTED
    record = outcomes[-1].record
    assert record.kind == TRIPLE
    assert record.sub_identifiers == (term(1), term(2), term(3))
    assert record.matched_locators == ("ipfs://predicate",)
    assert store.count() == 2


def test_triple_with_unknown_atoms_is_rejected() -> None:
    pipeline, store, _ = _pipeline(FakeVerifier())

    outcome = asyncio.run(pipeline.process(triple_log(term(10), term(1), term(2), term(3))))

    assert outcome.kind is OutcomeKind.REJECTED_UNVERIFIED
    assert store.count() == 0


def test_triple_verifies_registered_but_unchecked_atoms() -> None:
    verifier = FakeVerifier({"ipfs://object": True})
    pipeline, store, atoms = _pipeline(verifier)
    assert pipeline.register_atom(atom_log(term(3), "ipfs://object", block=50))

    outcome = asyncio.run(pipeline.process(triple_log(term(10), term(1), term(2), term(3))))

    assert outcome.kind is OutcomeKind.ADMITTED
    assert verifier.calls == ["ipfs://object"]
    assert atoms.get_atom(term(3)).verified is True


def test_verification_outage_skips_the_log() -> None:
    verifier = FakeVerifier({"ipfs://down": flaky(5, True)})
    pipeline, store, atoms = _pipeline(verifier, max_attempts=3)

    outcome = asyncio.run(pipeline.process(atom_log(term(1), "ipfs://down")))

    assert outcome.kind is OutcomeKind.SKIPPED
    assert "verification unavailable" in outcome.reason
    assert len(verifier.calls) == 3
    assert store.count() == 0
    assert atoms.get_atom(term(1)).verified is None


def test_transient_verifier_error_recovers_within_attempts() -> None:
    verifier = FakeVerifier({"ipfs://slow": flaky(2, True)})
    pipeline, store, _ = _pipeline(verifier, max_attempts=3)

    outcome = asyncio.run(pipeline.process(atom_log(term(1), "ipfs://slow")))

    assert outcome.kind is OutcomeKind.ADMITTED
    assert len(verifier.calls) == 3


def test_triple_outage_without_any_match_is_skipped() -> None:
    verifier = FakeVerifier({"ipfs://a": False, "ipfs://b": flaky(5, True)})
    pipeline, store, _ = _pipeline(verifier, max_attempts=2)
    pipeline.register_atom(atom_log(term(1), "ipfs://a"))
    pipeline.register_atom(atom_log(term(2), "ipfs://b"))

    outcome = asyncio.run(pipeline.process(triple_log(term(10), term(1), term(2), term(2))))

    assert outcome.kind is OutcomeKind.SKIPPED


def test_untracked_log_is_skipped() -> None:
    pipeline, store, _ = _pipeline(FakeVerifier())

    outcome = asyncio.run(pipeline.process(foreign_log()))

    assert outcome.kind is OutcomeKind.SKIPPED
    assert store.count() == 0


def test_missing_block_timestamp_is_fetched_from_chain() -> None:
    chain = FakeChain()
    pipeline, store, _ = _pipeline(FakeVerifier({"ipfs://signed": True}), chain=chain)

    outcome = asyncio.run(pipeline.process(atom_log(term(1), "ipfs://signed", block=42, timestamp=None)))

    assert outcome.record.timestamp == 1_600_000_042
    assert chain.timestamp_calls == [42]


def test_register_atom_ignores_triples_and_repeats() -> None:
    pipeline, _, atoms = _pipeline(FakeVerifier())

    assert pipeline.register_atom(triple_log(term(10), term(1), term(2), term(3))) is False
    assert pipeline.register_atom(atom_log(term(1), "ipfs://a")) is True
    assert pipeline.register_atom(atom_log(term(1), "ipfs://a")) is False
    assert atoms.get_atom(term(1)) == AtomEntry(term(1), "ipfs://a", None)


def test_signed_triple_record_carries_atom_metadata(caplog) -> None:
    verifier = FakeVerifier(
        {"ipfs://subject": True, "ipfs://object": True},
        documents={
            "ipfs://subject": {
                "name": "Alice",
                "description": "Profile | Sofia",
                "url": "https://alice.test",
            },
            "ipfs://object": {"name": "Rust", "description": "Language | Sofia", "url": 42},
        },
    )
    pipeline, store, atoms = _pipeline(verifier)
    pipeline.register_atom(atom_log(term(1), "ipfs://subject", block=50))
    pipeline.register_atom(atom_log(term(2), "ipfs://predicate", block=50, log_index=1))
    pipeline.register_atom(atom_log(term(3), "ipfs://object", block=50, log_index=2))

    with caplog.at_level(logging.INFO, logger="sofia_indexer.core.processor"):
        outcome = asyncio.run(pipeline.process(triple_log(term(10), term(1), term(2), term(3))))

    record = store.get(outcome.record.id)
    assert record.metadata == (
        AtomMetadata(term(1), "ipfs://subject", "Alice", "Profile | Sofia", "https://alice.test"),
        AtomMetadata(term(3), "ipfs://object", "Rust", "Language | Sofia", None),
    )
    assert atoms.get_atom(term(1)).metadata == record.metadata[0]
    assert atoms.get_atom(term(2)).metadata is None
    messages = [entry.getMessage() for entry in caplog.records]
    assert any(message.startswith("  subject: name='Alice'") for message in messages)
    assert any(message.startswith("  object: name='Rust'") for message in messages)


def test_later_triple_reuses_cached_atom_metadata() -> None:
    verifier = FakeVerifier(
        {"ipfs://signed": True},
        documents={"ipfs://signed": {"name": "Alice", "description": "Profile | Sofia"}},
    )
    pipeline, store, _ = _pipeline(verifier)

    atom = asyncio.run(pipeline.process(atom_log(term(1), "ipfs://signed", log_index=0)))
    triple = asyncio.run(pipeline.process(triple_log(term(10), term(2), term(4), term(1), log_index=1)))

    assert atom.record.metadata == (AtomMetadata(term(1), "ipfs://signed", "Alice", "Profile | Sofia"),)
    assert triple.record.metadata == atom.record.metadata
    assert triple.record.role_of(term(1)) == "object"
    assert verifier.calls == ["ipfs://signed"]
