"""Client factories for the indexer.

We explicitly construct the chain client and the gateway client here and hand
them to the core, so it is obvious when connections are opened and the entry
point alone decides when they are closed. Nothing else in the process holds a
shared transport.
"""

from __future__ import annotations

import logging

import httpx

from sofia_indexer.adapters.ipfs_verifier import DescriptionMarker, IpfsProvenanceVerifier
from sofia_indexer.adapters.jsonrpc_chain import JsonRpcChainClient
from sofia_indexer.settings import Settings

USER_AGENT = "sofia-indexer"


def _http_client(timeout_seconds: float, max_connections: int) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max(1, max_connections // 2),
        ),
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
    )


def build_chain_client(settings: Settings) -> JsonRpcChainClient:
    """Create the JSON-RPC client for the configured chain/contract pair."""

    logging.getLogger(__name__).info(
        "Initializing RPC client for %s (%s)", settings.chain.name, settings.chain.chain_id
    )
    return JsonRpcChainClient(
        rpc_url=settings.chain.rpc_url,
        contract_address=settings.chain.contract_address,
        http_client=_http_client(settings.rpc_timeout_seconds, max_connections=4),
    )


def build_verifier(settings: Settings) -> IpfsProvenanceVerifier:
    """Create the gateway-backed provenance verifier."""

    config = settings.verifier
    return IpfsProvenanceVerifier(
        http_client=_http_client(config.timeout_seconds, max_connections=config.concurrency),
        gateway_url=config.gateway_url,
        predicate=DescriptionMarker(marker=config.signature_marker, field=config.signature_field),
        concurrency=config.concurrency,
    )
