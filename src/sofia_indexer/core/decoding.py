"""Event decoding for the multivault contract (core domain).

Only two events matter to the indexer:

    AtomCreated(address indexed creator, bytes32 indexed termId,
                bytes atomData, address atomWallet)
    TripleCreated(address indexed creator, bytes32 indexed termId,
                  bytes32 subjectId, bytes32 predicateId, bytes32 objectId)

Anything else that shows up in a log batch is reported as a DecodeError so the
pipeline can skip it quietly.
"""

from __future__ import annotations

from typing import Optional

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import decode_hex, encode_hex, keccak, to_checksum_address

from sofia_indexer.core.errors import DecodeError
from sofia_indexer.core.models import ATOM, TRIPLE, DecodedEvent, RawEventLog

ATOM_CREATED_SIGNATURE = "AtomCreated(address,bytes32,bytes,address)"
TRIPLE_CREATED_SIGNATURE = "TripleCreated(address,bytes32,bytes32,bytes32,bytes32)"

ATOM_CREATED_TOPIC = encode_hex(keccak(text=ATOM_CREATED_SIGNATURE))
TRIPLE_CREATED_TOPIC = encode_hex(keccak(text=TRIPLE_CREATED_SIGNATURE))

TRACKED_TOPICS = (ATOM_CREATED_TOPIC, TRIPLE_CREATED_TOPIC)

IPFS_SCHEME = "ipfs://"


def _address_from_topic(topic: str) -> str:
    # Indexed addresses are left-padded to 32 bytes.
    try:
        return to_checksum_address("0x" + topic[-40:])
    except ValueError as exc:
        raise DecodeError(f"invalid address topic {topic}") from exc


def _data_bytes(log: RawEventLog) -> bytes:
    try:
        return decode_hex(log.data or "0x")
    except ValueError as exc:
        raise DecodeError(f"invalid data hex in {log.record_id}") from exc


def extract_locator(atom_data: bytes) -> Optional[str]:
    """Return the IPFS URI stored in raw atom data, if it is one."""

    try:
        text = atom_data.decode("utf-8").strip()
    except UnicodeDecodeError:
        return None
    if not text.startswith(IPFS_SCHEME):
        return None
    return text


def decode_event(log: RawEventLog) -> DecodedEvent:
    """Decode a raw log into a DecodedEvent or raise DecodeError."""

    if len(log.topics) < 3:
        raise DecodeError(f"unexpected topic count {len(log.topics)} in {log.record_id}")

    topic0 = log.topics[0].lower()
    creator = _address_from_topic(log.topics[1])
    term_id = log.topics[2].lower()
    data = _data_bytes(log)

    try:
        if topic0 == ATOM_CREATED_TOPIC:
            atom_data, _atom_wallet = decode(["bytes", "address"], data)
            return DecodedEvent(
                kind=ATOM,
                creator=creator,
                record_identifier=term_id,
                locator=extract_locator(atom_data),
            )
        if topic0 == TRIPLE_CREATED_TOPIC:
            subject_id, predicate_id, object_id = decode(["bytes32", "bytes32", "bytes32"], data)
            return DecodedEvent(
                kind=TRIPLE,
                creator=creator,
                record_identifier=term_id,
                sub_identifiers=tuple(encode_hex(value) for value in (subject_id, predicate_id, object_id)),
            )
    except DecodingError as exc:
        raise DecodeError(f"malformed {topic0} payload in {log.record_id}: {exc}") from exc

    raise DecodeError(f"untracked event {topic0} in {log.record_id}")
