"""IPFS provenance verifier adapter.

Resolves content locators against an HTTP gateway, fetches the JSON document
and applies a signature predicate. The fetched document travels with the
verdict so signed atoms keep their name, description and url. Transport
problems become NetworkError so the pipeline's retry policy can deal with
them; a document that does not have the expected shape simply does not match.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from sofia_indexer.core.errors import NetworkError, RpcRateLimited
from sofia_indexer.core.models import Verification

LOGGER = logging.getLogger(__name__)


class SignaturePredicate(Protocol):
    def __call__(self, document: dict) -> bool:
        ...


@dataclass(frozen=True)
class DescriptionMarker:
    """Match when a string field of the document contains a marker.

    Anyone can embed the marker, so this is a weak signature scheme; it is kept
    configurable so a stronger predicate can replace it.
    """

    marker: str
    field: str = "description"

    def __call__(self, document: dict) -> bool:
        value = document.get(self.field)
        return isinstance(value, str) and self.marker in value


def resolve_locator(locator: str, gateway_url: str) -> Optional[str]:
    """Return the HTTP URL for a locator, or None if it cannot be fetched."""

    value = locator.strip()
    gateway = gateway_url.rstrip("/") + "/"
    if value.startswith("ipfs://"):
        path = value[len("ipfs://"):]
        if path.startswith("ipfs/"):
            path = path[len("ipfs/"):]
    elif value.startswith("/ipfs/"):
        path = value[len("/ipfs/"):]
    elif value.startswith(("https://", "http://")):
        return value
    else:
        return None
    path = path.lstrip("/")
    if not path:
        return None
    return gateway + path


class IpfsProvenanceVerifier:
    """ProvenanceVerifierPort implementation backed by an IPFS HTTP gateway."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        gateway_url: str,
        predicate: SignaturePredicate,
        concurrency: int = 4,
    ) -> None:
        self._http = http_client
        self._gateway_url = gateway_url
        self._predicate = predicate
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    async def check(self, locator: str) -> Verification:
        """Fetch the referenced document and test it for the signature."""

        url = resolve_locator(locator, self._gateway_url)
        if url is None:
            LOGGER.debug("Unresolvable locator %s", locator)
            return Verification(matched=False)
        document = await self._fetch(url)
        if not isinstance(document, dict):
            LOGGER.debug("Document at %s is not a JSON object", url)
            return Verification(matched=False)
        return Verification(matched=self._predicate(document), document=document)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _fetch(self, url: str) -> Any:
        async with self._semaphore:
            try:
                response = await self._http.get(url)
            except httpx.TimeoutException as exc:
                raise NetworkError(f"gateway timed out for {url}") from exc
            except httpx.HTTPError as exc:
                raise NetworkError(f"gateway request failed for {url}: {exc}") from exc

        if response.status_code == 429:
            raise RpcRateLimited(f"gateway rate limited for {url}")
        if not response.is_success:
            raise NetworkError(f"gateway returned HTTP {response.status_code} for {url}")
        try:
            return response.json()
        except ValueError:
            return None
