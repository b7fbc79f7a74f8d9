"""Checkpoint helpers (core domain).

The checkpoint is the last block through which every log has been terminally
handled. It only ever moves forward.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from sofia_indexer.core.config import StartBlock
from sofia_indexer.core.errors import CheckpointError, ConfigError
from sofia_indexer.core.models import OutcomeCounts
from sofia_indexer.core.ports import ChainClientPort, CheckpointPort

LOGGER = logging.getLogger(__name__)


def check_advance(current: Optional[int], to_block: int) -> None:
    """Raise CheckpointError if moving from `current` to `to_block` is unsafe."""

    if current is None:
        raise CheckpointError("checkpoint advanced before initialization")
    if to_block < current:
        raise CheckpointError(f"checkpoint cannot move backwards ({current} -> {to_block})")


class MemoryCheckpoint:
    """In-process checkpoint satisfying the CheckpointPort contract."""

    def __init__(self, last_processed_block: Optional[int] = None) -> None:
        self._value = last_processed_block
        self._totals = OutcomeCounts()

    def get(self) -> Optional[int]:
        return self._value

    def initialize(self, block_number: int) -> None:
        if self._value is not None:
            raise CheckpointError("checkpoint already initialized")
        self._value = block_number

    def advance(self, to_block: int, counts: Optional[OutcomeCounts] = None) -> None:
        check_advance(self._value, to_block)
        self._value = to_block
        if counts is not None:
            self._totals.merge(counts)

    def totals(self) -> OutcomeCounts:
        return replace(self._totals)


async def initialize_checkpoint(
    checkpoint: CheckpointPort,
    chain: ChainClientPort,
    start_block: StartBlock,
) -> bool:
    """Resume or initialize the checkpoint; return True when freshly initialized.

    A persisted value always wins. Otherwise "latest" pins the cursor to the
    current head (history is skipped) and an explicit block N makes scanning
    start at N.
    """

    current = checkpoint.get()
    if current is not None:
        LOGGER.info("Resuming from checkpoint %s", current)
        return False

    if start_block == "latest":
        initial = await chain.head_block()
    elif isinstance(start_block, int) and start_block >= 0:
        initial = start_block - 1
    else:
        raise ConfigError(f"invalid start block: {start_block!r}")

    checkpoint.initialize(initial)
    LOGGER.info("Checkpoint initialized at block %s", initial)
    return True
