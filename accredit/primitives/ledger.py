"""
Accredit — Ledger Primitives

Projections of the CredentialNFT contract state: proposals, the two
event kinds the workflow consumes, and minted credential tokens.
"""

from __future__ import annotations

import enum

from pydantic import Field

from accredit.primitives.common import ZERO_ADDRESS, AccreditBaseModel, same_address


class VoteStatus(enum.StrEnum):
    """Whether an actor has voted on a proposal, as far as we know."""

    VOTED = "voted"
    NOT_VOTED = "not_voted"
    UNKNOWN = "unknown"


class Proposal(AccreditBaseModel):
    """
    A pending request to issue a credential.

    ``as_of_block`` is the ledger height the snapshot was read at. It lets
    the cache tell which streamed votes the counts already include.
    """

    id: int = Field(ge=1)
    proposer: str
    beneficiary: str
    approvals: int = Field(default=0, ge=0)
    rejections: int = Field(default=0, ge=0)
    minted: bool = False
    metadata_uri: str = ""
    as_of_block: int | None = None

    def authored_by(self, actor: str | None) -> bool:
        return same_address(self.proposer, actor)


class VoteCast(AccreditBaseModel):
    """``CredentialVoted(proposalId, voter, approved)``."""

    proposal_id: int
    voter: str
    approved: bool
    block_number: int | None = None
    log_index: int = 0

    @property
    def key(self) -> tuple[int, str]:
        return (self.proposal_id, self.voter.lower())


class TokenTransferred(AccreditBaseModel):
    """``Transfer(from, to, tokenId)``. A transfer from the zero address is a mint."""

    token_id: int
    sender: str
    recipient: str
    block_number: int | None = None
    log_index: int = 0

    @property
    def is_mint(self) -> bool:
        return same_address(self.sender, ZERO_ADDRESS)


LedgerEvent = VoteCast | TokenTransferred


class CredentialToken(AccreditBaseModel):
    """A minted credential, owned by its beneficiary."""

    token_id: int
    owner: str
    metadata_uri: str
