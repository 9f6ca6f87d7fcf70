"""
Accredit — Metadata Store Client

Publishes credential documents to IPFS through the Pinata pinning API
and resolves pointers back to documents through an ordered list of
public gateways.

Resolution:
  - ``ipfs://<cid>`` and bare cids are substituted into each gateway in turn
  - ``http(s)://`` pointers are fetched directly
  - each gateway gets one attempt with a bounded timeout; a timeout, an
    HTTP error, an unparseable URL, or a body that is not a credential
    document advances to the next
  - a malformed ``{cid}`` gateway template is skipped with a warning
  - the first successful parse wins; no retries beyond the list

Batch callers use ``resolve_or_unresolved`` so one bad pointer yields an
UNRESOLVED sentinel instead of failing the batch.

Lifecycle: construct → use → close(). Mirrors the other clients.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from accredit.errors import PublishFailed, ResolutionFailed
from accredit.primitives.credential import (
    CredentialDocument,
    CredentialDraft,
    ResolvedMetadata,
    content_id,
    is_http_url,
    to_pointer,
)

if TYPE_CHECKING:
    from accredit.config import MetadataConfig

logger = structlog.get_logger("accredit.clients.metadata_store")


def gateway_url(gateway: str, cid: str) -> str:
    """Substitute a cid into a gateway base URL or ``{cid}`` template."""
    if "{cid}" in gateway:
        try:
            return gateway.format(cid=cid)
        except (KeyError, IndexError, ValueError) as exc:
            raise ValueError(f"invalid gateway template {gateway!r}") from exc
    return f"{gateway.rstrip('/')}/{cid}"


class MetadataStoreClient:
    """
    Async IPFS metadata client.

    The httpx client is injectable so tests can mount a MockTransport.
    """

    def __init__(self, config: MetadataConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._owns_client = client is None
        self._logger = logger.bind(component="metadata_store")

    @property
    def gateways(self) -> list[str]:
        return list(self._config.gateways)

    # ─── Publish ────────────────────────────────────────────────────

    async def publish(self, draft: CredentialDraft) -> str:
        """
        Pin the draft's document. Returns ``ipfs://<cid>``.

        Raises ValidationError before any network call when a required
        field is missing.
        """
        document = draft.to_document(image=self._config.placeholder_image)
        return await self.publish_document(document)

    async def publish_document(self, document: CredentialDocument) -> str:
        headers = {
            "pinata_api_key": self._config.pinata_api_key,
            "pinata_secret_api_key": self._config.pinata_secret_api_key,
        }
        try:
            response = await self._client.post(
                self._config.pin_url,
                json=document.to_wire(),
                headers=headers,
                timeout=self._config.publish_timeout_s,
            )
        except httpx.HTTPError as exc:
            self._logger.error("publish_unreachable", error=str(exc))
            raise PublishFailed(f"pinning service unreachable: {exc}") from exc

        if response.status_code >= 400:
            self._logger.warning("publish_rejected", status=response.status_code)
            raise PublishFailed(
                f"pinning service refused document ({response.status_code}): {response.text[:200]}"
            )

        try:
            cid = response.json()["IpfsHash"]
        except (ValueError, KeyError, TypeError) as exc:
            raise PublishFailed("pinning response carried no IpfsHash") from exc

        pointer = to_pointer(str(cid))
        self._logger.info("metadata_published", pointer=pointer)
        return pointer

    # ─── Resolve ────────────────────────────────────────────────────

    def candidate_urls(self, pointer: str) -> list[str]:
        if is_http_url(pointer):
            return [pointer.strip()]
        cid = content_id(pointer)
        if not cid:
            return []
        urls: list[str] = []
        for gateway in self._config.gateways:
            try:
                urls.append(gateway_url(gateway, cid))
            except ValueError as exc:
                self._logger.warning("gateway_template_invalid", gateway=gateway, error=str(exc))
        return urls

    async def resolve(self, pointer: str) -> CredentialDocument:
        attempts: list[tuple[str, str]] = []

        for url in self.candidate_urls(pointer):
            try:
                payload = await self._fetch_json(url)
                document = _parse_document(payload)
            except _GatewayFailure as exc:
                self._logger.warning("gateway_failed", url=url, reason=exc.reason)
                attempts.append((url, exc.reason))
                continue
            return document

        self._logger.warning("resolution_failed", pointer=pointer, attempts=len(attempts))
        raise ResolutionFailed(pointer, attempts)

    async def resolve_or_unresolved(self, pointer: str) -> ResolvedMetadata:
        try:
            document = await self.resolve(pointer)
        except ResolutionFailed as exc:
            return ResolvedMetadata.unresolved(pointer, str(exc))
        return ResolvedMetadata.resolved(pointer, document)

    async def _fetch_json(self, url: str) -> dict[str, Any]:
        try:
            response = await self._client.get(url, timeout=self._config.gateway_timeout_s)
        except httpx.TimeoutException as exc:
            raise _GatewayFailure("timeout") from exc
        except httpx.HTTPError as exc:
            raise _GatewayFailure(f"transport: {exc}") from exc
        except httpx.InvalidURL as exc:
            raise _GatewayFailure(f"invalid url: {exc}") from exc

        if response.status_code != 200:
            raise _GatewayFailure(f"status {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise _GatewayFailure("body is not JSON") from exc
        if not isinstance(payload, dict):
            raise _GatewayFailure("body is not a JSON object")
        return payload

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _parse_document(payload: dict[str, Any]) -> CredentialDocument:
    try:
        return CredentialDocument.from_wire(payload)
    except PydanticValidationError as exc:
        raise _GatewayFailure(f"malformed document: {exc.error_count()} error(s)") from exc


class _GatewayFailure(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
