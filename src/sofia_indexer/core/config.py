"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

StartBlock = Union[int, str]


@dataclass(frozen=True)
class NativeCurrency:
    """Native currency metadata of the watched chain."""

    name: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class ChainConfig:
    """Immutable description of the chain/contract pair being indexed."""

    chain_id: int
    name: str
    network: str
    rpc_url: str
    contract_address: str
    explorer_url: Optional[str]
    native_currency: NativeCurrency


@dataclass(frozen=True)
class ScanConfig:
    """Poll loop settings consumed by the event scanner."""

    poll_interval_seconds: float
    start_block: StartBlock
    lookback_blocks: int
    max_block_range: int


@dataclass(frozen=True)
class VerifierConfig:
    """Off-chain provenance check settings."""

    gateway_url: str
    signature_field: str
    signature_marker: str
    concurrency: int
    timeout_seconds: float
    max_attempts: int


@dataclass(frozen=True)
class RetryConfig:
    """Exponential backoff settings shared by every retried boundary."""

    base_delay_seconds: float
    max_delay_seconds: float
    multiplier: float = 2.0
