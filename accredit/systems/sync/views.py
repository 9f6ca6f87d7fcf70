"""
Accredit — Proposal Views

The two partitions institutions work from. These are projections over
whatever proposals the caller holds (cache entries or raw ledger reads),
never a separate store.
"""

from __future__ import annotations

from collections.abc import Iterable

from accredit.primitives.ledger import Proposal


def authored_by(proposals: Iterable[Proposal], actor: str) -> list[Proposal]:
    """Proposals the actor submitted, minted or not."""
    return sorted((p for p in proposals if p.authored_by(actor)), key=lambda p: p.id)


def awaiting_review(proposals: Iterable[Proposal], actor: str) -> list[Proposal]:
    """Other institutions' proposals that are still open."""
    return sorted(
        (p for p in proposals if not p.authored_by(actor) and not p.minted),
        key=lambda p: p.id,
    )
