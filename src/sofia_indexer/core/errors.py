"""Error taxonomy shared by the core and adapters.

Errors fall into three families and the scan loop reacts to the family, not
the concrete class:
- TransientError: retry later, never advance the checkpoint.
- Per-item terminal errors (DecodeError, RetryExhausted): record the outcome
  and move on.
- FatalError: halt the process.
"""

from __future__ import annotations


class IndexerError(Exception):
    """Base class for all indexer errors."""


class TransientError(IndexerError):
    """A retryable failure of an external dependency."""


class NetworkError(TransientError):
    """Transport failure, timeout or non-2xx response."""


class RpcRateLimited(TransientError):
    """The RPC provider or gateway asked us to slow down."""


class RangeTooLarge(TransientError):
    """The provider refused a log query because the block range is too wide."""


class RpcError(TransientError):
    """A JSON-RPC error response that does not fit a narrower class."""

    def __init__(self, code: int | None, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.rpc_message = message


class DecodeError(IndexerError):
    """A log that is not one of the tracked events (or is malformed)."""


class RetryExhausted(IndexerError):
    """All attempts of a retried call failed with transient errors."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class FatalError(IndexerError):
    """An unsafe state that must stop the process."""


class CheckpointError(FatalError):
    """Checkpoint monotonicity violation or misuse."""


class ConfigError(FatalError):
    """Missing or invalid configuration."""


class StorageError(FatalError):
    """Persistent storage is unreadable or inconsistent."""
