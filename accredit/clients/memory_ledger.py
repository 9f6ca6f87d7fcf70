"""
Accredit — In-Memory Ledger

A deterministic, in-process stand-in for the CredentialNFT contract.
It enforces the same rules the contract does and emits the same events,
so the workflow can be simulated end to end without an EVM node.

One ``InMemoryLedger`` holds the state; ``session(sender)`` returns a
LedgerClient bound to a sender identity, the way a signer-connected
contract handle is bound to one account.

Every mutation advances the block height by one, so snapshots and
events can be ordered the way they are on a real chain.

Simulation controls:
  offline               — every call raises LedgerUnavailable
  drop_subscriptions()  — end every live event stream with LedgerUnavailable
  redeliver(event)      — push an already-emitted event again (duplicate delivery)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import structlog

from accredit.clients.ledger import LedgerClient
from accredit.errors import LedgerRejected, LedgerUnavailable
from accredit.primitives.common import ZERO_ADDRESS, is_valid_address, normalize_address, same_address
from accredit.primitives.ledger import (
    CredentialToken,
    LedgerEvent,
    Proposal,
    TokenTransferred,
    VoteCast,
)
from accredit.systems.quorum.decision import mintable

logger = structlog.get_logger("accredit.clients.memory_ledger")


class _Disconnect:
    def __init__(self, reason: str) -> None:
        self.reason = reason


class InMemoryLedger:
    """Shared state of a simulated CredentialNFT deployment."""

    def __init__(self, admin: str, threshold: int = 2) -> None:
        self.admin = normalize_address(admin)
        self.threshold = threshold
        self.offline = False
        self.height = 0

        self._eligible: set[str] = set()
        self._proposals: dict[int, Proposal] = {}
        self._votes: dict[tuple[int, str], bool] = {}
        self._owners: dict[int, str] = {}
        self._token_uris: dict[int, str] = {}
        self._log: list[LedgerEvent] = []
        self._subscribers: list[asyncio.Queue[LedgerEvent | _Disconnect]] = []
        self._logger = logger.bind(component="memory_ledger")

    def session(self, sender: str) -> InMemoryLedgerSession:
        return InMemoryLedgerSession(self, normalize_address(sender))

    # ─── Simulation controls ────────────────────────────────────────

    def drop_subscriptions(self, reason: str = "subscription lost") -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(_Disconnect(reason))

    def redeliver(self, event: LedgerEvent) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    @property
    def event_log(self) -> list[LedgerEvent]:
        return list(self._log)

    # ─── Contract rules ─────────────────────────────────────────────

    def _ensure_online(self) -> None:
        if self.offline:
            raise LedgerUnavailable("in-memory ledger is offline")

    def _require(self, condition: bool, reason: str) -> None:
        if not condition:
            raise LedgerRejected(reason)

    def _is_eligible(self, address: str) -> bool:
        return address.lower() in self._eligible

    def _proposal(self, proposal_id: int) -> Proposal:
        proposal = self._proposals.get(proposal_id)
        self._require(proposal is not None, "Proposal does not exist")
        assert proposal is not None
        return proposal

    def _emit(self, event: LedgerEvent) -> None:
        self._log.append(event)
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    def add_university(self, sender: str, address: str) -> None:
        self._ensure_online()
        self._require(same_address(sender, self.admin), "Only admin can add universities")
        self._require(
            is_valid_address(address) and not same_address(address, ZERO_ADDRESS),
            "Invalid university address",
        )
        self._require(not self._is_eligible(address), "Already a university")
        self.height += 1
        self._eligible.add(address.lower())

    def propose_credential(self, sender: str, student: str, metadata_uri: str) -> int:
        self._ensure_online()
        self._require(self._is_eligible(sender), "Only universities can propose")
        self._require(
            is_valid_address(student) and not same_address(student, ZERO_ADDRESS),
            "Invalid student address",
        )
        self._require(bool(metadata_uri), "Metadata URI required")
        self.height += 1
        proposal_id = len(self._proposals) + 1
        self._proposals[proposal_id] = Proposal(
            id=proposal_id,
            proposer=sender,
            beneficiary=normalize_address(student),
            metadata_uri=metadata_uri,
        )
        return proposal_id

    def vote_on_credential(self, sender: str, proposal_id: int, approve: bool) -> None:
        self._ensure_online()
        self._require(self._is_eligible(sender), "Only universities can vote")
        proposal = self._proposal(proposal_id)
        self._require(not proposal.minted, "Already minted")
        key = (proposal_id, sender.lower())
        self._require(key not in self._votes, "Already voted")

        self.height += 1
        self._votes[key] = approve
        self._proposals[proposal_id] = proposal.model_copy(update={
            "approvals": proposal.approvals + (1 if approve else 0),
            "rejections": proposal.rejections + (0 if approve else 1),
        })
        self._emit(VoteCast(
            proposal_id=proposal_id,
            voter=sender,
            approved=approve,
            block_number=self.height,
        ))

    def mint_credential(self, sender: str, proposal_id: int) -> int:
        self._ensure_online()
        self._require(self._is_eligible(sender), "Only universities can mint")
        proposal = self._proposal(proposal_id)
        self._require(not proposal.minted, "Already minted")
        self._require(
            mintable(proposal.approvals, proposal.rejections, proposal.minted, self.threshold),
            "Not enough approvals",
        )

        self.height += 1
        token_id = len(self._owners) + 1
        self._owners[token_id] = proposal.beneficiary
        self._token_uris[token_id] = proposal.metadata_uri
        self._proposals[proposal_id] = proposal.model_copy(update={"minted": True})
        self._emit(TokenTransferred(
            token_id=token_id,
            sender=ZERO_ADDRESS,
            recipient=proposal.beneficiary,
            block_number=self.height,
        ))
        self._logger.debug("credential_minted", proposal_id=proposal_id, token_id=token_id)
        return token_id

    def proposal_info(self, proposal_id: int) -> Proposal:
        self._ensure_online()
        return self._proposal(proposal_id).model_copy(update={"as_of_block": self.height})

    def has_voted(self, proposal_id: int, voter: str) -> bool:
        self._ensure_online()
        return (proposal_id, voter.lower()) in self._votes

    def is_university(self, address: str) -> bool:
        self._ensure_online()
        return self._is_eligible(address)

    def owner_of(self, token_id: int) -> str:
        self._ensure_online()
        owner = self._owners.get(token_id)
        self._require(owner is not None, "ERC721: invalid token ID")
        assert owner is not None
        return owner

    def token_uri(self, token_id: int) -> str:
        self._ensure_online()
        self._require(token_id in self._token_uris, "ERC721: invalid token ID")
        return self._token_uris[token_id]

    def proposal_count(self) -> int:
        self._ensure_online()
        return len(self._proposals)

    async def stream(self, from_block: int | None) -> AsyncIterator[LedgerEvent]:
        self._ensure_online()
        start = self.height + 1 if from_block is None else from_block
        backlog = [e for e in self._log if (e.block_number or 0) >= start]
        queue: asyncio.Queue[LedgerEvent | _Disconnect] = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            for event in backlog:
                yield event
            while True:
                item = await queue.get()
                if isinstance(item, _Disconnect):
                    raise LedgerUnavailable(item.reason)
                yield item
        finally:
            self._subscribers.remove(queue)


class InMemoryLedgerSession(LedgerClient):
    """LedgerClient over an InMemoryLedger, sending as ``sender``."""

    def __init__(self, ledger: InMemoryLedger, sender: str) -> None:
        self._ledger = ledger
        self.sender = sender

    async def block_number(self) -> int:
        await asyncio.sleep(0)
        self._ledger._ensure_online()
        return self._ledger.height

    async def proposal_count(self) -> int:
        await asyncio.sleep(0)
        return self._ledger.proposal_count()

    async def get_proposal(self, proposal_id: int) -> Proposal:
        await asyncio.sleep(0)
        return self._ledger.proposal_info(proposal_id)

    async def has_voted(self, proposal_id: int, voter: str) -> bool:
        await asyncio.sleep(0)
        return self._ledger.has_voted(proposal_id, voter)

    async def is_eligible_voter(self, address: str) -> bool:
        await asyncio.sleep(0)
        return self._ledger.is_university(address)

    async def owner_of(self, token_id: int) -> str:
        await asyncio.sleep(0)
        return self._ledger.owner_of(token_id)

    async def token_uri(self, token_id: int) -> str:
        await asyncio.sleep(0)
        return self._ledger.token_uri(token_id)

    async def tokens_of(self, owner: str) -> list[CredentialToken]:
        await asyncio.sleep(0)
        self._ledger._ensure_online()
        received = [
            e.token_id for e in self._ledger.event_log
            if isinstance(e, TokenTransferred) and same_address(e.recipient, owner)
        ]
        tokens: list[CredentialToken] = []
        for token_id in dict.fromkeys(received):
            current = self._ledger.owner_of(token_id)
            if same_address(current, owner):
                tokens.append(CredentialToken(
                    token_id=token_id,
                    owner=current,
                    metadata_uri=self._ledger.token_uri(token_id),
                ))
        return tokens

    async def add_eligible_voter(self, address: str) -> None:
        await asyncio.sleep(0)
        self._ledger.add_university(self.sender, address)

    async def propose(self, beneficiary: str, metadata_uri: str) -> int:
        await asyncio.sleep(0)
        return self._ledger.propose_credential(self.sender, beneficiary, metadata_uri)

    async def vote(self, proposal_id: int, approve: bool) -> None:
        await asyncio.sleep(0)
        self._ledger.vote_on_credential(self.sender, proposal_id, approve)

    async def mint(self, proposal_id: int) -> int:
        await asyncio.sleep(0)
        return self._ledger.mint_credential(self.sender, proposal_id)

    def events(self, from_block: int | None = None) -> AsyncIterator[LedgerEvent]:
        return self._ledger.stream(from_block)
