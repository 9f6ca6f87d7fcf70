"""
Accredit — Credential Verification

Read-only checks over minted credentials: who owns a token and what its
metadata says, and which credentials a beneficiary holds.

Metadata failures never fail a verification. The token's ledger facts are
authoritative; its document is attached as RESOLVED or UNRESOLVED.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from accredit.errors import ValidationError
from accredit.primitives.common import is_valid_address, normalize_address

if TYPE_CHECKING:
    from accredit.clients.ledger import LedgerClient
    from accredit.clients.metadata_store import MetadataStoreClient
    from accredit.primitives.credential import ResolvedMetadata

logger = structlog.get_logger("accredit.systems.verification")


@dataclass(frozen=True, slots=True)
class VerifiedCredential:
    token_id: int
    owner: str
    metadata_uri: str
    metadata: ResolvedMetadata


class CredentialVerifier:
    def __init__(self, ledger: LedgerClient, metadata: MetadataStoreClient) -> None:
        self._ledger = ledger
        self._metadata = metadata
        self._logger = logger.bind(system="verification")

    async def verify(self, token_id: int) -> VerifiedCredential:
        """
        Look up one token. An unknown token id surfaces the ledger's
        LedgerRejected.
        """
        if token_id < 1:
            raise ValidationError(f"token id must be positive: {token_id}", fields=["token_id"])
        owner = await self._ledger.owner_of(token_id)
        uri = await self._ledger.token_uri(token_id)
        resolved = await self._metadata.resolve_or_unresolved(uri)
        self._logger.info(
            "credential_verified",
            token_id=token_id,
            owner=owner,
            metadata=resolved.status.value,
        )
        return VerifiedCredential(token_id=token_id, owner=owner, metadata_uri=uri, metadata=resolved)

    async def credentials_of(self, owner: str) -> list[VerifiedCredential]:
        """Every credential currently held by ``owner``, ordered by token id."""
        if not is_valid_address(owner):
            raise ValidationError(f"not a valid address: {owner}", fields=["owner"])
        owner = normalize_address(owner)

        tokens = await self._ledger.tokens_of(owner)
        documents = await asyncio.gather(
            *(self._metadata.resolve_or_unresolved(token.metadata_uri) for token in tokens)
        )
        return sorted(
            (
                VerifiedCredential(
                    token_id=token.token_id,
                    owner=token.owner,
                    metadata_uri=token.metadata_uri,
                    metadata=resolved,
                )
                for token, resolved in zip(tokens, documents)
            ),
            key=lambda c: c.token_id,
        )
