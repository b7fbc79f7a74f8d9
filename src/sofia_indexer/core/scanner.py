"""Event scanner: the resumable poll loop.

State machine:

    IDLE -> SCANNING -> APPLYING -> IDLE
    IDLE -> SCANNING -> BACKOFF -> IDLE

A cycle reads the checkpoint, asks the chain for its head and walks the new
range in chunks of at most `max_block_range` blocks. Each chunk is fetched,
fed to the pipeline in (block, log index) order and only then committed by
advancing the checkpoint to the chunk's last block. Cycles never overlap, and
a transient failure leaves the checkpoint at the last committed chunk so the
rest of the range is retried after a backoff delay.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterator, List, Optional, Tuple

from sofia_indexer.core.config import ScanConfig
from sofia_indexer.core.errors import CheckpointError, FatalError, RangeTooLarge, TransientError
from sofia_indexer.core.models import (
    CycleSummary,
    IndexerStatus,
    Outcome,
    OutcomeCounts,
    RawEventLog,
)
from sofia_indexer.core.ports import ChainClientPort, CheckpointPort, RecordStorePort
from sofia_indexer.core.processor import RecordPipeline
from sofia_indexer.core.retry import RetryPolicy

LOGGER = logging.getLogger(__name__)

# Consecutive failed cycles before backoff warnings escalate to errors.
ESCALATE_AFTER = 5


class ScanState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    APPLYING = "applying"
    BACKOFF = "backoff"
    STOPPED = "stopped"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventScanner:
    """Drives scan cycles and owns checkpoint advancement."""

    def __init__(
        self,
        chain: ChainClientPort,
        pipeline: RecordPipeline,
        checkpoint: CheckpointPort,
        store: RecordStorePort,
        config: ScanConfig,
        backoff: RetryPolicy,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._chain = chain
        self._pipeline = pipeline
        self._checkpoint = checkpoint
        self._store = store
        self._config = config
        self._backoff = backoff
        self._clock = clock
        self._state = ScanState.IDLE
        self._in_cycle = False
        self._stop = asyncio.Event()
        self._next_delay = config.poll_interval_seconds
        self._consecutive_failures = 0
        self._totals = OutcomeCounts()
        self._cycles = 0
        self._last_cycle_at: Optional[datetime] = None

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def next_delay(self) -> float:
        """Seconds to wait before the next cycle."""

        return self._next_delay

    def status(self) -> IndexerStatus:
        return IndexerStatus(
            state=self._state.value,
            checkpoint=self._checkpoint.get(),
            records=self._store.count(),
            totals=replace(self._totals),
            cycles=self._cycles,
            last_cycle_at=self._last_cycle_at,
            consecutive_failures=self._consecutive_failures,
        )

    def stop(self) -> None:
        """Request a cooperative shutdown after the in-flight cycle."""

        if not self._stop.is_set():
            LOGGER.info("Stop requested; finishing the current cycle")
        self._stop.set()

    async def run(self) -> None:
        """Run cycles until stop() is called."""

        while not self._stop.is_set():
            await self.run_cycle()
            if self._stop.is_set():
                break
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._next_delay)
            except asyncio.TimeoutError:
                pass
        self._state = ScanState.STOPPED

    async def warm_up(self, lookback_blocks: int) -> int:
        """Register atoms announced in the look-back window before the checkpoint.

        Returns the number of atoms registered. A failure or a stop request
        ends the scan early and keeps what was registered so far; the checkpoint
        is never touched.
        """

        current = self._checkpoint.get()
        if current is None or lookback_blocks <= 0:
            return 0
        start = max(current - lookback_blocks + 1, 0)
        if start > current:
            return 0

        LOGGER.info("Scanning blocks %s to %s for existing atoms", start, current)
        registered = 0
        for chunk_start, chunk_end in self._chunks(start, current):
            if self._stop.is_set():
                LOGGER.info("Look-back scan interrupted at block %s", chunk_start)
                break
            try:
                logs = await self._fetch_range(chunk_start, chunk_end)
            except TransientError as exc:
                LOGGER.warning("Look-back scan failed, continuing without it: %s", exc)
                break
            for log in sorted(logs, key=lambda item: item.sort_key):
                if self._pipeline.register_atom(log):
                    registered += 1
        LOGGER.info("Loaded %s atoms from the last %s blocks", registered, lookback_blocks)
        return registered

    async def run_cycle(self) -> Optional[CycleSummary]:
        """Run one scan cycle.

        Returns the summary of a completed cycle, or None when there was
        nothing new or the cycle backed off.
        """

        if self._in_cycle:
            raise RuntimeError("scan cycle already in flight")
        self._in_cycle = True
        try:
            return await self._cycle()
        except TransientError as exc:
            self._enter_backoff(exc)
            return None
        finally:
            self._in_cycle = False

    async def _cycle(self) -> Optional[CycleSummary]:
        self._state = ScanState.SCANNING
        current = self._checkpoint.get()
        if current is None:
            raise CheckpointError("scan started before the checkpoint was initialized")

        from_block = current + 1
        to_block = await self._chain.head_block()
        if from_block > to_block:
            self._finish_idle()
            return None

        counts = OutcomeCounts()
        total_logs = 0
        for start, end in self._chunks(from_block, to_block):
            self._state = ScanState.SCANNING
            logs = await self._fetch_range(start, end)

            self._state = ScanState.APPLYING
            chunk_counts = OutcomeCounts()
            for log in sorted(logs, key=lambda item: item.sort_key):
                chunk_counts.add(await self._handle(log))

            # Every log in the chunk is terminal now; only then move the cursor.
            self._checkpoint.advance(end, chunk_counts)
            self._totals.merge(chunk_counts)
            counts.merge(chunk_counts)
            total_logs += len(logs)
            if end < to_block:
                LOGGER.debug("Committed blocks %s-%s (%s logs)", start, end, len(logs))

        summary = CycleSummary(
            from_block=from_block,
            to_block=to_block,
            logs=total_logs,
            counts=counts,
            finished_at=self._clock(),
        )
        self._cycles += 1
        self._last_cycle_at = summary.finished_at
        if self._consecutive_failures:
            LOGGER.info("Recovered after %s failed cycles", self._consecutive_failures)
        LOGGER.info(
            "Blocks %s-%s: %s logs, %s admitted, %s rejected, %s skipped",
            from_block,
            to_block,
            total_logs,
            counts.admitted,
            counts.rejected,
            counts.skipped,
        )
        self._finish_idle()
        return summary

    async def _handle(self, log: RawEventLog) -> Outcome:
        try:
            return await self._pipeline.process(log)
        except (TransientError, FatalError):
            raise
        except Exception as exc:
            # Poison log: surface it, count it as skipped, keep the cycle going.
            LOGGER.exception(
                "Processing failed for %s at block %s; log skipped",
                log.record_id,
                log.block_number,
            )
            return Outcome.skipped(f"processing error: {exc}")

    def _chunks(self, from_block: int, to_block: int) -> Iterator[Tuple[int, int]]:
        max_range = max(1, self._config.max_block_range)
        start = from_block
        while start <= to_block:
            end = min(to_block, start + max_range - 1)
            yield start, end
            start = end + 1

    async def _fetch_range(self, from_block: int, to_block: int) -> List[RawEventLog]:
        pending = [(from_block, to_block)]
        logs: List[RawEventLog] = []
        while pending:
            start, end = pending.pop()
            try:
                logs.extend(await self._chain.logs(start, end))
            except RangeTooLarge:
                if start == end:
                    raise
                middle = (start + end) // 2
                LOGGER.info("Range %s-%s too large for provider; splitting", start, end)
                pending.append((middle + 1, end))
                pending.append((start, middle))
        return logs

    def _finish_idle(self) -> None:
        self._consecutive_failures = 0
        self._next_delay = self._config.poll_interval_seconds
        self._state = ScanState.IDLE

    def _enter_backoff(self, exc: TransientError) -> None:
        self._consecutive_failures += 1
        self._next_delay = self._backoff.delay_for(self._consecutive_failures)
        self._state = ScanState.BACKOFF
        current = self._checkpoint.get()
        if self._consecutive_failures >= ESCALATE_AFTER:
            LOGGER.error(
                "Scan still failing after %s consecutive cycles (checkpoint %s): %s; retrying in %.1fs",
                self._consecutive_failures,
                current,
                exc,
                self._next_delay,
            )
        else:
            LOGGER.warning(
                "Scan cycle failed (checkpoint %s, attempt %s): %s; retrying in %.1fs",
                current,
                self._consecutive_failures,
                exc,
                self._next_delay,
            )
