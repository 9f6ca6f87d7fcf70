"""
Accredit — Sync Type Definitions

Loop states, cache change notifications, and the commands the sync
inbox carries alongside ledger events.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from accredit.primitives.credential import ResolvedMetadata


class SyncState(enum.StrEnum):
    IDLE = "idle"        # no actor bound
    LOADING = "loading"  # full load in progress
    LIVE = "live"        # cache installed, consuming events
    STOPPED = "stopped"  # torn down; cache discarded


class ChangeKind(enum.StrEnum):
    LOADED = "loaded"
    PROPOSAL_UPDATED = "proposal_updated"
    VOTE_MERGED = "vote_merged"
    METADATA_RESOLVED = "metadata_resolved"
    TOKEN_MINTED = "token_minted"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class CacheChange:
    kind: ChangeKind
    proposal_id: int | None = None
    detail: str = ""


# Observer signature: async def on_change(change: CacheChange) -> None
ChangeCallback = Callable[[CacheChange], Coroutine[Any, Any, None]]


# ─── Inbox commands ───────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class RefreshProposal:
    proposal_id: int


@dataclass(frozen=True, slots=True)
class MetadataResult:
    proposal_id: int
    metadata: ResolvedMetadata


@dataclass(frozen=True, slots=True)
class SubscriptionLost:
    reason: str
