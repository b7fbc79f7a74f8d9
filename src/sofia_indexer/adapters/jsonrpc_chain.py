"""JSON-RPC chain adapter.

Implements the core ChainClientPort over plain HTTP JSON-RPC with httpx and
maps provider failures onto the core error taxonomy. Retrying is the caller's
job; this adapter makes exactly one request per call.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Optional, Sequence

import httpx

from sofia_indexer.core.decoding import TRACKED_TOPICS
from sofia_indexer.core.errors import NetworkError, RangeTooLarge, RpcError, RpcRateLimited
from sofia_indexer.core.models import RawEventLog

LOGGER = logging.getLogger(__name__)

# Provider phrasing for "your eth_getLogs query is too wide" varies a lot.
_RANGE_HINTS = (
    "block range",
    "range is too large",
    "too many",
    "limit exceeded",
    "more than",
    "response size",
    "query timeout",
)
_RANGE_ERROR_CODES = {-32005, -32602}
_RATE_LIMIT_CODES = {-32029, 429}
# Checked before the range hints: "too many requests" is throttling, not an
# oversized query.
_RATE_LIMIT_HINTS = ("rate limit", "rate-limit", "ratelimit", "too many requests", "throttl")


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ValueError(f"not a quantity: {value!r}")


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return _to_int(value)


def parse_log(raw: dict) -> RawEventLog:
    """Build a RawEventLog from one eth_getLogs result entry."""

    return RawEventLog(
        block_number=_to_int(raw["blockNumber"]),
        transaction_hash=str(raw["transactionHash"]).lower(),
        log_index=_to_int(raw["logIndex"]),
        address=str(raw.get("address", "")).lower(),
        topics=tuple(str(topic).lower() for topic in raw.get("topics", [])),
        data=str(raw.get("data") or "0x"),
        block_timestamp=_optional_int(raw.get("blockTimestamp")),
    )


def classify_rpc_error(error: dict) -> Exception:
    """Map a JSON-RPC error object to a core exception."""

    code = error.get("code")
    message = str(error.get("message", ""))
    lowered = message.lower()
    if code in _RATE_LIMIT_CODES or any(hint in lowered for hint in _RATE_LIMIT_HINTS):
        return RpcRateLimited(f"RPC rate limited: {message}")
    if any(hint in lowered for hint in _RANGE_HINTS) or (
        code in _RANGE_ERROR_CODES and "range" in lowered
    ):
        return RangeTooLarge(message)
    return RpcError(code, message)


class JsonRpcChainClient:
    """Thin eth_* client bound to one contract address."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        http_client: httpx.AsyncClient,
        topics: Sequence[str] = TRACKED_TOPICS,
    ) -> None:
        self._rpc_url = rpc_url
        self._address = contract_address.lower()
        self._http = http_client
        self._topics = [topic.lower() for topic in topics]
        self._ids = itertools.count(1)

    async def head_block(self) -> int:
        """Return the current chain head (eth_blockNumber)."""

        return _to_int(await self._call("eth_blockNumber", []))

    async def logs(self, from_block: int, to_block: int) -> list[RawEventLog]:
        """Return tracked logs of the contract in [from_block, to_block]."""

        if from_block > to_block:
            raise ValueError(f"from_block {from_block} is after to_block {to_block}")
        params = [
            {
                "address": self._address,
                "fromBlock": hex(from_block),
                "toBlock": hex(to_block),
                "topics": [self._topics],
            }
        ]
        result = await self._call("eth_getLogs", params)
        return [parse_log(entry) for entry in result or [] if not entry.get("removed", False)]

    async def block_timestamp(self, block_number: int) -> int:
        """Return a block's timestamp in seconds (eth_getBlockByNumber)."""

        block = await self._call("eth_getBlockByNumber", [hex(block_number), False])
        if not block:
            raise NetworkError(f"block {block_number} not available yet")
        return _to_int(block["timestamp"])

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _call(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._http.post(self._rpc_url, json=payload)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"{method} timed out") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} failed: {exc}") from exc

        if response.status_code == 429:
            raise RpcRateLimited(f"{method} rate limited (HTTP 429)")
        if response.status_code >= 400:
            # Some providers report oversized queries as HTTP errors with a JSON body.
            error = self._error_from_body(response)
            if error is not None:
                raise classify_rpc_error(error)
            raise NetworkError(f"{method} returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise NetworkError(f"{method} returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise NetworkError(f"{method} returned an unexpected body")
        if body.get("error"):
            raise classify_rpc_error(body["error"])
        return body.get("result")

    @staticmethod
    def _error_from_body(response: httpx.Response) -> Optional[dict]:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return body["error"]
        return None
