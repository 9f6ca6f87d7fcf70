"""
Accredit — Ledger Client Contract

The thin, stateless adapter every ledger backend implements. Method names
are Pythonic; the contract calls they map to are noted on each method.

Implementations:
  Web3LedgerClient  — CredentialNFT on an EVM node (production)
  InMemoryLedger    — deterministic in-process ledger (simulation, tests)

Failure contract:
  LedgerUnavailable — no response from the ledger
  LedgerRejected    — the ledger refused the state change; carries reason
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from accredit.primitives.ledger import CredentialToken, LedgerEvent, Proposal


class LedgerClient(ABC):
    """Async read/write surface of the credential ledger."""

    # ── Queries ──────────────────────────────────────────────────

    @abstractmethod
    async def block_number(self) -> int:
        """Current ledger height."""

    @abstractmethod
    async def proposal_count(self) -> int:
        """``proposalCount()``. Ids are dense: 1..count."""

    @abstractmethod
    async def get_proposal(self, proposal_id: int) -> Proposal:
        """``getProposalInfo(id)``, stamped with the height it was read at."""

    @abstractmethod
    async def has_voted(self, proposal_id: int, voter: str) -> bool:
        """``hasVoted(id, voter)``. Unsupported on some deployments."""

    @abstractmethod
    async def is_eligible_voter(self, address: str) -> bool:
        """``isUniversity(addr)``."""

    @abstractmethod
    async def owner_of(self, token_id: int) -> str:
        """``ownerOf(tokenId)``."""

    @abstractmethod
    async def token_uri(self, token_id: int) -> str:
        """``tokenURI(tokenId)``."""

    @abstractmethod
    async def tokens_of(self, owner: str) -> list[CredentialToken]:
        """Tokens currently held by ``owner``, from ``Transfer`` events filtered by recipient."""

    # ── Mutations ────────────────────────────────────────────────

    @abstractmethod
    async def add_eligible_voter(self, address: str) -> None:
        """``addUniversity(addr)``. Admin only."""

    @abstractmethod
    async def propose(self, beneficiary: str, metadata_uri: str) -> int:
        """``proposeCredential(student, metadataURI)``. Returns the new proposal id."""

    @abstractmethod
    async def vote(self, proposal_id: int, approve: bool) -> None:
        """``voteOnCredential(id, approve)``."""

    @abstractmethod
    async def mint(self, proposal_id: int) -> int:
        """``mintCredential(id)``. Returns the minted token id."""

    # ── Events ───────────────────────────────────────────────────

    @abstractmethod
    def events(self, from_block: int | None = None) -> AsyncIterator[LedgerEvent]:
        """
        ``CredentialVoted`` and ``Transfer`` events in ledger order, starting
        at ``from_block`` (or the next block when None). Runs until cancelled;
        raises LedgerUnavailable when the subscription is lost.
        """

    async def close(self) -> None:
        """Release transport resources."""
