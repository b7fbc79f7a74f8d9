"""Shared operator report formatting helpers.

Keeping formatting here prevents drift between the CLI, the final shutdown
summary and the textual viewer.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sofia_indexer.core.config import ChainConfig
from sofia_indexer.core.models import IndexedRecord, IndexerStatus

DIVIDER = "──────────────"


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "never"
    return value.astimezone().strftime("%H:%M:%S %d-%m-%Y").strip()


def format_block_time(timestamp: int) -> str:
    return format_timestamp(datetime.fromtimestamp(timestamp, tz=timezone.utc))


def format_status(status: IndexerStatus, chain: Optional[ChainConfig] = None) -> str:
    """Multi-line operator status report."""

    checkpoint = "uninitialized" if status.checkpoint is None else str(status.checkpoint)
    lines = ["SOFIA INDEXER STATUS", DIVIDER]
    if chain is not None:
        lines.append(f"Chain:      {chain.name} ({chain.chain_id})")
        lines.append(f"Contract:   {chain.contract_address}")
    lines.extend(
        [
            f"State:      {status.state}",
            f"Checkpoint: {checkpoint}",
            f"Records:    {status.records}",
            f"Last cycle: {format_timestamp(status.last_cycle_at)}",
        ]
    )
    totals = status.totals
    if status.cycles:
        lines.append(f"Cycles:     {status.cycles}")
    if status.cycles or totals.total:
        lines.append(
            f"Outcomes:   {totals.admitted} admitted, {totals.rejected} rejected, {totals.skipped} skipped"
        )
    if status.consecutive_failures:
        lines.append(f"Failing:    {status.consecutive_failures} consecutive cycles")
    lines.append(DIVIDER)
    return "\n".join(lines)


def format_record_line(record: IndexedRecord) -> str:
    return (
        f"{record.id}  block={record.block_number}  {record.kind}={record.record_identifier}"
    )


def format_record(record: IndexedRecord, chain: Optional[ChainConfig] = None) -> str:
    """Detailed, human-readable view of one admitted record."""

    lines = [
        f"Signed {record.kind} {record.record_identifier}",
        DIVIDER,
        f"TX hash:  {record.transaction_hash}",
        f"Log:      {record.log_index}",
        f"Block:    {record.block_number}",
        f"Time:     {format_block_time(record.timestamp)}",
        f"Creator:  {record.creator}",
    ]
    if record.sub_identifiers:
        labels = ("Subject", "Predicate", "Object")
        for label, term_id in zip(labels, record.sub_identifiers):
            lines.append(f"{label + ':':<10}{term_id}")
    for locator in record.matched_locators:
        lines.append(f"Signed:   {locator}")
    for metadata in record.metadata:
        lines.append(f"{record.role_of(metadata.term_id).capitalize()} metadata ({metadata.term_id})")
        lines.append(f"  Name:        {metadata.name or '-'}")
        lines.append(f"  Description: {metadata.description or '-'}")
        lines.append(f"  URL:         {metadata.url or '-'}")
        lines.append(f"  IPFS:        {metadata.locator}")
    if chain is not None and chain.explorer_url:
        lines.append(f"Explorer: {chain.explorer_url.rstrip('/')}/tx/{record.transaction_hash}")
    lines.append(DIVIDER)
    return "\n".join(lines)
