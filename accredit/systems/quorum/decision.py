"""
Accredit — Quorum Decision Engine

Pure decision over a proposal's tally and the shared approval threshold.
No I/O, no state: the same inputs always give the same answer.

A proposal is mintable iff it is not minted, approvals reach the
threshold, and approvals strictly exceed rejections. A tie blocks.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from accredit.primitives.ledger import Proposal


class DecisionReason(enum.StrEnum):
    MINTABLE = "mintable"
    MINTED = "minted"
    BELOW_THRESHOLD = "below_threshold"
    NOT_AHEAD = "not_ahead"  # rejections >= approvals


@dataclass(frozen=True, slots=True)
class QuorumDecision:
    mintable: bool
    reason: DecisionReason
    approvals: int
    rejections: int
    threshold: int

    @property
    def approvals_needed(self) -> int:
        return max(self.threshold - self.approvals, 0)


def mintable(approvals: int, rejections: int, minted: bool, threshold: int) -> bool:
    return not minted and approvals >= threshold and approvals > rejections


def decide(proposal: Proposal, threshold: int) -> QuorumDecision:
    if proposal.minted:
        reason = DecisionReason.MINTED
    elif proposal.approvals < threshold:
        reason = DecisionReason.BELOW_THRESHOLD
    elif proposal.approvals <= proposal.rejections:
        reason = DecisionReason.NOT_AHEAD
    else:
        reason = DecisionReason.MINTABLE

    return QuorumDecision(
        mintable=mintable(proposal.approvals, proposal.rejections, proposal.minted, threshold),
        reason=reason,
        approvals=proposal.approvals,
        rejections=proposal.rejections,
        threshold=threshold,
    )
