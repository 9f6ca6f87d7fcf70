"""
Accredit — Proposal Cache

The session's mirror of ledger proposal state: one entry per proposal id,
written by full load and by incremental event merge. Only the SyncService
writes it; everything else reads.

Each entry keeps the ledger snapshot it was built from (stamped with the
block it was read at) and the votes streamed since. The projected tally
is the snapshot's counts plus every merged vote from a later block, which
makes the merge:

  idempotent   — a (proposal, voter) pair is merged at most once
  commutative  — snapshots and events can land in either order; an older
                 snapshot never replaces a newer one
  replayable   — votes for an id not yet cached are queued and replayed
                 when the entry is created
"""

from __future__ import annotations

from collections import defaultdict

import structlog

from accredit.primitives.credential import MetadataStatus, ResolvedMetadata
from accredit.primitives.ledger import Proposal, VoteCast
from accredit.systems.sync.views import authored_by, awaiting_review

logger = structlog.get_logger("accredit.systems.sync.cache")


class CachedProposal:
    """Ledger snapshot plus the streamed votes merged on top of it."""

    __slots__ = ("snapshot", "metadata", "_votes")

    def __init__(self, snapshot: Proposal, metadata: ResolvedMetadata) -> None:
        self.snapshot = snapshot
        self.metadata = metadata
        self._votes: dict[str, VoteCast] = {}

    def _after_snapshot(self, event: VoteCast) -> bool:
        if self.snapshot.as_of_block is None or event.block_number is None:
            return True
        return event.block_number > self.snapshot.as_of_block

    @property
    def proposal(self) -> Proposal:
        approvals = self.snapshot.approvals
        rejections = self.snapshot.rejections
        for event in self._votes.values():
            if not self._after_snapshot(event):
                continue
            if event.approved:
                approvals += 1
            else:
                rejections += 1
        return self.snapshot.model_copy(update={"approvals": approvals, "rejections": rejections})

    @property
    def merged_voters(self) -> list[str]:
        return list(self._votes)

    def merge(self, event: VoteCast) -> bool:
        """Record a vote. True when it changed the projected tally."""
        self._votes[event.voter.lower()] = event
        return self._after_snapshot(event)

    def rebase(self, snapshot: Proposal) -> bool:
        """Adopt a fresher snapshot. True when the projection changed."""
        old_block = self.snapshot.as_of_block
        if old_block is not None and snapshot.as_of_block is not None and snapshot.as_of_block < old_block:
            return False
        before = self.proposal.model_dump(exclude={"as_of_block"})
        self.snapshot = snapshot
        return self.proposal.model_dump(exclude={"as_of_block"}) != before


class ProposalCache:
    def __init__(self) -> None:
        self._entries: dict[int, CachedProposal] = {}
        self._merged: set[tuple[int, str]] = set()
        self._pending: dict[int, dict[str, VoteCast]] = defaultdict(dict)
        self._logger = logger.bind(component="proposal_cache")

    # ─── Writes (SyncService only) ──────────────────────────────────

    def upsert(self, proposal: Proposal, metadata: ResolvedMetadata | None = None) -> bool:
        """
        Insert or rebase the entry for ``proposal.id``, then replay any
        votes queued for it. True when the projection changed.
        """
        entry = self._entries.get(proposal.id)
        if entry is None:
            entry = CachedProposal(
                proposal,
                metadata or ResolvedMetadata.pending(proposal.metadata_uri),
            )
            self._entries[proposal.id] = entry
            changed = True
        else:
            changed = entry.rebase(proposal)
            if metadata is not None:
                entry.metadata = metadata

        queued = self._pending.pop(proposal.id, {})
        for event in queued.values():
            changed = self.apply_vote(event) or changed
        if queued:
            self._logger.debug("queued_votes_replayed", proposal_id=proposal.id, count=len(queued))
        return changed

    def apply_vote(self, event: VoteCast) -> bool:
        """
        Merge a streamed vote. Votes for unknown ids are queued. A pair
        already merged is a no-op. True when the projected tally changed.
        """
        entry = self._entries.get(event.proposal_id)
        if entry is None:
            self._pending[event.proposal_id].setdefault(event.voter.lower(), event)
            self._logger.debug("vote_queued", proposal_id=event.proposal_id, voter=event.voter)
            return False

        if event.key in self._merged:
            self._logger.debug("duplicate_vote_ignored", proposal_id=event.proposal_id, voter=event.voter)
            return False

        self._merged.add(event.key)
        return entry.merge(event)

    def drop_pending(self, proposal_id: int) -> int:
        """Discard votes queued for an id. Returns how many were dropped."""
        return len(self._pending.pop(proposal_id, {}))

    def set_metadata(self, proposal_id: int, metadata: ResolvedMetadata) -> bool:
        entry = self._entries.get(proposal_id)
        if entry is None:
            return False
        entry.metadata = metadata
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._merged.clear()
        self._pending.clear()

    # ─── Reads ─────────────────────────────────────────────────────

    def __contains__(self, proposal_id: object) -> bool:
        return proposal_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, proposal_id: int) -> CachedProposal | None:
        return self._entries.get(proposal_id)

    def ids(self) -> list[int]:
        return sorted(self._entries)

    def entries(self) -> list[CachedProposal]:
        return [self._entries[pid] for pid in self.ids()]

    def proposals(self) -> list[Proposal]:
        return [entry.proposal for entry in self.entries()]

    def pending_ids(self) -> set[int]:
        return {pid for pid, votes in self._pending.items() if votes}

    def ids_with_metadata(self, status: MetadataStatus) -> list[int]:
        return [pid for pid in self.ids() if self._entries[pid].metadata.status == status]

    def authored_by(self, actor: str) -> list[Proposal]:
        return authored_by(self.proposals(), actor)

    def awaiting_review(self, actor: str) -> list[Proposal]:
        return awaiting_review(self.proposals(), actor)
