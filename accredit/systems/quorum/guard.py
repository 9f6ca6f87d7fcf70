"""
Accredit — Vote Dedup Guard

At most one vote per (proposal, voter). The guard refuses a second vote
locally, before the ledger is contacted.

Status per pair:
  VOTED      — refuse with AlreadyVoted
  NOT_VOTED  — allow
  UNKNOWN    — allow; the ledger is the final judge (hasVoted failed or
               was never asked)
"""

from __future__ import annotations

import structlog

from accredit.errors import AlreadyVoted
from accredit.primitives.ledger import VoteStatus

logger = structlog.get_logger("accredit.systems.quorum.guard")


class VoteDedupGuard:
    def __init__(self) -> None:
        self._status: dict[tuple[int, str], VoteStatus] = {}
        self._logger = logger.bind(component="vote_guard")

    @staticmethod
    def _key(proposal_id: int, voter: str) -> tuple[int, str]:
        return (proposal_id, voter.lower())

    def status(self, proposal_id: int, voter: str) -> VoteStatus:
        return self._status.get(self._key(proposal_id, voter), VoteStatus.UNKNOWN)

    def seed(self, proposal_id: int, voter: str, status: VoteStatus) -> None:
        """Record what a full load learned. Never downgrades a known vote."""
        key = self._key(proposal_id, voter)
        if self._status.get(key) == VoteStatus.VOTED:
            return
        self._status[key] = status

    def check(self, proposal_id: int, voter: str) -> None:
        if self.status(proposal_id, voter) == VoteStatus.VOTED:
            self._logger.info("vote_refused_locally", proposal_id=proposal_id, voter=voter)
            raise AlreadyVoted(proposal_id, voter)

    def record_vote(self, proposal_id: int, voter: str) -> None:
        self._status[self._key(proposal_id, voter)] = VoteStatus.VOTED

    def voted_ids(self, voter: str) -> set[int]:
        needle = voter.lower()
        return {
            pid for (pid, who), status in self._status.items()
            if who == needle and status == VoteStatus.VOTED
        }

    def clear(self) -> None:
        self._status.clear()

    def __len__(self) -> int:
        return len(self._status)
