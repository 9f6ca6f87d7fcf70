"""
Accredit — Issuance Service

The caller-side actions of the approval workflow: publish metadata,
propose a credential, vote, mint.

Every action validates locally first and never contacts the ledger when
that fails. On success it asks the SyncService (when one is attached) to
re-read the affected proposal instead of editing the cache itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from accredit.errors import LedgerError, LedgerRejected, ValidationError
from accredit.primitives.common import ZERO_ADDRESS, is_valid_address, normalize_address, same_address
from accredit.primitives.credential import CredentialDraft
from accredit.primitives.ledger import Proposal, VoteStatus
from accredit.systems.quorum.decision import QuorumDecision, decide
from accredit.systems.quorum.guard import VoteDedupGuard

if TYPE_CHECKING:
    from accredit.clients.ledger import LedgerClient
    from accredit.clients.metadata_store import MetadataStoreClient
    from accredit.systems.sync.service import SyncService

logger = structlog.get_logger("accredit.systems.issuance")


@dataclass(frozen=True, slots=True)
class AvailableActions:
    """What the bound actor may do with one proposal right now."""

    proposal_id: int
    can_vote: bool
    can_mint: bool
    vote_status: VoteStatus
    decision: QuorumDecision


class IssuanceService:
    system_id: str = "issuance"

    def __init__(
        self,
        ledger: LedgerClient,
        metadata: MetadataStoreClient,
        actor: str,
        threshold: int,
        guard: VoteDedupGuard | None = None,
        sync: SyncService | None = None,
    ) -> None:
        self._ledger = ledger
        self._metadata = metadata
        self._actor = normalize_address(actor)
        self._threshold = threshold
        self._sync = sync
        if guard is None:
            guard = sync.guard if sync is not None else VoteDedupGuard()
        self._guard = guard
        self._logger = logger.bind(system="issuance", actor=self._actor)

    @property
    def actor(self) -> str:
        return self._actor

    @property
    def guard(self) -> VoteDedupGuard:
        return self._guard

    # ─── Publish / propose ──────────────────────────────────────────

    async def publish_credential(self, draft: CredentialDraft) -> str:
        """Pin the credential metadata. Returns the ``ipfs://`` pointer."""
        return await self._metadata.publish(draft)

    async def propose(self, beneficiary: str, pointer: str) -> int:
        """
        Record a proposal on the ledger.

        Raises ValidationError (nothing sent) for a malformed or zero
        beneficiary or an empty pointer.
        """
        problems: list[str] = []
        if not is_valid_address(beneficiary) or same_address(beneficiary, ZERO_ADDRESS):
            problems.append("beneficiary")
        if not pointer or not pointer.strip():
            problems.append("metadata_uri")
        if problems:
            raise ValidationError(f"invalid proposal input: {', '.join(problems)}", fields=problems)

        proposal_id = await self._ledger.propose(normalize_address(beneficiary), pointer.strip())
        self._logger.info("credential_proposed", proposal_id=proposal_id, beneficiary=beneficiary)
        self._refresh(proposal_id)
        return proposal_id

    async def submit_credential(self, draft: CredentialDraft) -> tuple[str, int]:
        """Publish then propose, for the draft's beneficiary."""
        draft.check()
        pointer = await self.publish_credential(draft)
        proposal_id = await self.propose(draft.beneficiary, pointer)
        return pointer, proposal_id

    # ─── Vote / mint ────────────────────────────────────────────────

    async def cast_vote(self, proposal_id: int, approve: bool) -> None:
        """
        Vote on a proposal.

        Raises AlreadyVoted without contacting the ledger when the actor is
        known to have voted. When the status is unknown, the ledger is asked
        first (best effort) and then left to judge.
        """
        if self._guard.status(proposal_id, self._actor) == VoteStatus.UNKNOWN:
            await self._ask_vote_status(proposal_id)
        self._guard.check(proposal_id, self._actor)

        try:
            await self._ledger.vote(proposal_id, approve)
        except LedgerRejected as exc:
            if exc.reason == "Already voted":
                self._guard.record_vote(proposal_id, self._actor)
            raise

        self._guard.record_vote(proposal_id, self._actor)
        self._logger.info("vote_cast", proposal_id=proposal_id, approve=approve)
        self._refresh(proposal_id)

    async def mint(self, proposal_id: int) -> int:
        """Mint the credential. The ledger enforces quorum; its reason is surfaced."""
        token_id = await self._ledger.mint(proposal_id)
        self._logger.info("credential_minted", proposal_id=proposal_id, token_id=token_id)
        self._refresh(proposal_id)
        return token_id

    # ─── Offered actions ────────────────────────────────────────────

    async def available_actions(self, proposal_id: int) -> AvailableActions:
        proposal = await self._current(proposal_id)
        status = self._guard.status(proposal_id, self._actor)
        if status == VoteStatus.UNKNOWN and self._sync is None:
            status = await self._ask_vote_status(proposal_id)

        decision = decide(proposal, self._threshold)
        return AvailableActions(
            proposal_id=proposal_id,
            can_vote=not proposal.minted and status != VoteStatus.VOTED,
            can_mint=decision.mintable and proposal.authored_by(self._actor),
            vote_status=status,
            decision=decision,
        )

    async def _current(self, proposal_id: int) -> Proposal:
        if self._sync is not None:
            entry = self._sync.get(proposal_id)
            if entry is not None:
                return entry.proposal
        return await self._ledger.get_proposal(proposal_id)

    async def _ask_vote_status(self, proposal_id: int) -> VoteStatus:
        try:
            voted = await self._ledger.has_voted(proposal_id, self._actor)
        except LedgerError as exc:
            self._logger.warning("vote_status_unknown", proposal_id=proposal_id, error=str(exc))
            return VoteStatus.UNKNOWN
        status = VoteStatus.VOTED if voted else VoteStatus.NOT_VOTED
        self._guard.seed(proposal_id, self._actor, status)
        return status

    def _refresh(self, proposal_id: int) -> None:
        if self._sync is not None:
            self._sync.request_refresh(proposal_id)
