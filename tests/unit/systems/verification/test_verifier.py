"""
Unit tests for the CredentialVerifier.
"""

from __future__ import annotations

import httpx
import pytest

from accredit.clients.memory_ledger import InMemoryLedger
from accredit.clients.metadata_store import MetadataStoreClient
from accredit.config import MetadataConfig
from accredit.errors import LedgerRejected, ValidationError
from accredit.primitives.common import same_address
from accredit.primitives.credential import MetadataStatus
from accredit.systems.verification.service import CredentialVerifier

ADMIN = "0x" + "a0" * 20
UNI_A = "0x" + "a1" * 20
UNI_B = "0x" + "a2" * 20
STUDENT = "0x" + "55" * 20
OTHER_STUDENT = "0x" + "66" * 20

DOCUMENTS = {
    "QmDiploma": {
        "name": "BSc Physics - Marie Curie",
        "issuedBy": "Sorbonne",
        "timestamp": "1903-06-25T00:00:00+00:00",
        "attributes": [
            {"trait_type": "Degree", "value": "BSc Physics"},
            {"trait_type": "Issued To", "value": "Marie Curie"},
            {"trait_type": "Honours", "value": "First"},
        ],
    },
}


def gateway(request: httpx.Request) -> httpx.Response:
    cid = request.url.path.rsplit("/", 1)[-1]
    if cid in DOCUMENTS:
        return httpx.Response(200, json=DOCUMENTS[cid])
    return httpx.Response(504)


def make_verifier(ledger: InMemoryLedger) -> CredentialVerifier:
    config = MetadataConfig(gateways=["https://gw.test/ipfs/"])
    metadata = MetadataStoreClient(config, client=httpx.AsyncClient(transport=httpx.MockTransport(gateway)))
    return CredentialVerifier(ledger.session(STUDENT), metadata)


async def mint(ledger: InMemoryLedger, beneficiary: str, uri: str) -> int:
    proposal_id = await ledger.session(UNI_A).propose(beneficiary, uri)
    await ledger.session(UNI_B).vote(proposal_id, True)
    return await ledger.session(UNI_A).mint(proposal_id)


async def make_ledger() -> InMemoryLedger:
    ledger = InMemoryLedger(admin=ADMIN, threshold=1)
    for uni in (UNI_A, UNI_B):
        await ledger.session(ADMIN).add_eligible_voter(uni)
    return ledger


class TestVerify:
    @pytest.mark.asyncio
    async def test_verify_resolves_document(self):
        ledger = await make_ledger()
        token_id = await mint(ledger, STUDENT, "ipfs://QmDiploma")

        credential = await make_verifier(ledger).verify(token_id)

        assert same_address(credential.owner, STUDENT)
        assert credential.metadata_uri == "ipfs://QmDiploma"
        document = credential.metadata.document
        assert document.degree == "BSc Physics"
        assert document.subject_name == "Marie Curie"
        assert document.institution == "Sorbonne"  # falls back to issuedBy
        assert document.trait("Honours") == "First"

    @pytest.mark.asyncio
    async def test_unreachable_metadata_still_verifies_ownership(self):
        ledger = await make_ledger()
        token_id = await mint(ledger, STUDENT, "ipfs://QmGone")

        credential = await make_verifier(ledger).verify(token_id)

        assert same_address(credential.owner, STUDENT)
        assert credential.metadata.status == MetadataStatus.UNRESOLVED
        assert credential.metadata.document is None

    @pytest.mark.asyncio
    async def test_unknown_token(self):
        ledger = await make_ledger()
        with pytest.raises(LedgerRejected):
            await make_verifier(ledger).verify(9)

    @pytest.mark.asyncio
    async def test_non_positive_token_id(self):
        ledger = await make_ledger()
        with pytest.raises(ValidationError):
            await make_verifier(ledger).verify(0)


class TestCredentialsOf:
    @pytest.mark.asyncio
    async def test_lists_only_the_owners_tokens(self):
        ledger = await make_ledger()
        await mint(ledger, STUDENT, "ipfs://QmDiploma")
        await mint(ledger, OTHER_STUDENT, "ipfs://QmDiploma")
        await mint(ledger, STUDENT, "ipfs://QmGone")

        held = await make_verifier(ledger).credentials_of(STUDENT)

        assert [c.token_id for c in held] == [1, 3]
        assert held[0].metadata.is_resolved
        assert not held[1].metadata.is_resolved

    @pytest.mark.asyncio
    async def test_invalid_owner(self):
        ledger = await make_ledger()
        with pytest.raises(ValidationError):
            await make_verifier(ledger).credentials_of("0xnope")
