from __future__ import annotations

from dataclasses import replace

import pytest
from eth_utils import encode_hex, keccak

from factories import CREATOR, atom_log, foreign_log, term, triple_log
from sofia_indexer.core.decoding import (
    ATOM_CREATED_TOPIC,
    TRIPLE_CREATED_TOPIC,
    decode_event,
    extract_locator,
)
from sofia_indexer.core.errors import DecodeError
from sofia_indexer.core.models import ATOM, TRIPLE


def test_topics_are_event_signature_hashes() -> None:
    assert ATOM_CREATED_TOPIC == encode_hex(keccak(text="AtomCreated(address,bytes32,bytes,address)"))
    assert TRIPLE_CREATED_TOPIC == encode_hex(
        keccak(text="TripleCreated(address,bytes32,bytes32,bytes32,bytes32)")
    )


def test_decode_atom_with_ipfs_locator() -> None:
    event = decode_event(atom_log(term(1), "ipfs://bafyatom"))

    assert event.kind == ATOM
    assert event.record_identifier == term(1)
    assert event.creator == CREATOR
    assert event.locator == "ipfs://bafyatom"
    assert event.sub_identifiers == ()


def test_decode_atom_with_plain_text_has_no_locator() -> None:
    event = decode_event(atom_log(term(2), "just a label"))

    assert event.kind == ATOM
    assert event.locator is None


def test_decode_triple_returns_sub_identifiers_in_order() -> None:
    event = decode_event(triple_log(term(10), term(1), term(2), term(3)))

    assert event.kind == TRIPLE
    assert event.record_identifier == term(10)
    assert event.sub_identifiers == (term(1), term(2), term(3))
    assert event.locator is None


def test_untracked_event_is_a_decode_error() -> None:
    with pytest.raises(DecodeError):
        decode_event(foreign_log())


def test_missing_topics_is_a_decode_error() -> None:
    log = replace(atom_log(term(1), "ipfs://x"), topics=(ATOM_CREATED_TOPIC,))

    with pytest.raises(DecodeError):
        decode_event(log)


def test_truncated_payload_is_a_decode_error() -> None:
    log = replace(triple_log(term(10), term(1), term(2), term(3)), data="0x" + "00" * 40)

    with pytest.raises(DecodeError):
        decode_event(log)


def test_extract_locator_rejects_invalid_utf8() -> None:
    assert extract_locator(b"\xff\xfe") is None
    assert extract_locator(b"  ipfs://bafy  ") == "ipfs://bafy"
    assert extract_locator(b"https://example.com") is None
