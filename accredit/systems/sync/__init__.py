"""
Accredit — Synchronization

Proposal Cache, its partition views, and the loop that keeps it
consistent with the ledger's event stream.
"""

from accredit.systems.sync.cache import CachedProposal, ProposalCache
from accredit.systems.sync.service import SyncService
from accredit.systems.sync.types import (
    CacheChange,
    ChangeCallback,
    ChangeKind,
    MetadataResult,
    RefreshProposal,
    SubscriptionLost,
    SyncState,
)
from accredit.systems.sync.views import authored_by, awaiting_review

__all__ = [
    "SyncService",
    "ProposalCache",
    "CachedProposal",
    "SyncState",
    "ChangeKind",
    "CacheChange",
    "ChangeCallback",
    "RefreshProposal",
    "MetadataResult",
    "SubscriptionLost",
    "authored_by",
    "awaiting_review",
]
