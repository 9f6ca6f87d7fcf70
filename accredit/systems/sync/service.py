"""
Accredit — Sync Service

Keeps the Proposal Cache consistent with the ledger for one bound actor.

States:
  IDLE ──bind──▶ LOADING ──ok──▶ LIVE ──unbind / stream lost──▶ STOPPED
                    │                                              │
                    └──SyncFailed──▶ IDLE              bind ◀──────┘

Full load:
  Reads the head block and proposalCount(), then fetches every proposal
  concurrently (bounded): the snapshot, the actor's vote status (best
  effort; UNKNOWN on failure) and its metadata (UNRESOLVED sentinel on
  failure). Any ledger failure aborts the load; in-flight fetches are
  cancelled and nothing is installed.

Live:
  One inbox, one consumer. The event pump forwards ledger events in
  delivery order; IssuanceService posts refresh requests; background
  metadata resolutions post their results. Only the loop task writes the
  cache, so no locks are needed.

  A vote for a proposal not yet cached is queued in the cache and the
  proposal is fetched; the vote is replayed when the entry lands. A
  ledger rejection of that fetch drops the queued votes; a transient
  failure keeps them for the next retry_unresolved().

Teardown cancels the pump, the loop, any in-flight load and resolutions,
and discards the cache. A later bind starts from scratch.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

from accredit.errors import LedgerError, LedgerRejected, LedgerUnavailable, SyncFailed, ValidationError
from accredit.primitives.common import normalize_address, same_address
from accredit.primitives.credential import MetadataStatus, ResolvedMetadata
from accredit.primitives.ledger import LedgerEvent, Proposal, TokenTransferred, VoteCast, VoteStatus
from accredit.systems.quorum.decision import QuorumDecision, decide
from accredit.systems.quorum.guard import VoteDedupGuard
from accredit.systems.sync.cache import CachedProposal, ProposalCache
from accredit.systems.sync.types import (
    CacheChange,
    ChangeCallback,
    ChangeKind,
    MetadataResult,
    RefreshProposal,
    SubscriptionLost,
    SyncState,
)

if TYPE_CHECKING:
    from accredit.clients.ledger import LedgerClient
    from accredit.clients.metadata_store import MetadataStoreClient
    from accredit.config import SyncConfig

logger = structlog.get_logger("accredit.systems.sync")

InboxItem = LedgerEvent | RefreshProposal | MetadataResult | SubscriptionLost
LoadedEntry = tuple[Proposal, VoteStatus, ResolvedMetadata]


class SyncService:
    """Single-writer synchronization loop between the ledger and the cache."""

    system_id: str = "sync"

    def __init__(
        self,
        config: SyncConfig,
        threshold: int,
        ledger: LedgerClient,
        metadata: MetadataStoreClient,
    ) -> None:
        self._config = config
        self._threshold = threshold
        self._ledger = ledger
        self._metadata = metadata
        self._logger = logger.bind(system="sync")

        self._state = SyncState.IDLE
        self._actor: str | None = None
        self._cache = ProposalCache()
        self._guard = VoteDedupGuard()
        self._observers: list[ChangeCallback] = []

        self._inbox: asyncio.Queue[InboxItem] | None = None
        self._load_task: asyncio.Task[tuple[int, list[LoadedEntry]]] | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._resolutions: dict[int, asyncio.Task[None]] = {}

        # Metrics
        self._events_received: int = 0
        self._refresh_failures: int = 0
        self._observer_timeouts: int = 0

    # ─── Lifecycle ──────────────────────────────────────────────────

    async def bind(self, actor: str) -> None:
        """Bind an actor: full load, then go live."""
        if self._state in (SyncState.LOADING, SyncState.LIVE):
            raise RuntimeError(f"sync already bound to {self._actor}")
        try:
            actor = normalize_address(actor)
        except ValueError as exc:
            raise ValidationError(str(exc), fields=["actor"]) from exc

        self._actor = actor
        self._state = SyncState.LOADING
        self._logger.info("sync_loading", actor=actor)

        self._load_task = asyncio.create_task(self._full_load(actor))
        try:
            snapshot_block, entries = await self._load_task
        except asyncio.CancelledError:
            if self._state == SyncState.STOPPED:
                raise SyncFailed("full load abandoned by unbind") from None
            self._reset(SyncState.IDLE)
            raise
        except LedgerError as exc:
            self._reset(SyncState.IDLE)
            self._logger.error("sync_load_failed", actor=actor, error=str(exc))
            raise SyncFailed(f"full load failed: {exc}") from exc
        except Exception as exc:
            self._reset(SyncState.IDLE)
            self._logger.exception("sync_load_crashed", actor=actor)
            raise SyncFailed(f"full load failed: {type(exc).__name__}: {exc}") from exc
        finally:
            self._load_task = None

        # Install cache and guard together; nothing was visible before this.
        for proposal, status, resolved in entries:
            self._cache.upsert(proposal, resolved)
            self._guard.seed(proposal.id, actor, status)

        inbox: asyncio.Queue[InboxItem] = asyncio.Queue()
        self._inbox = inbox
        self._state = SyncState.LIVE
        self._loop_task = asyncio.create_task(self._run_loop(inbox))
        self._pump_task = asyncio.create_task(self._pump_events(snapshot_block + 1, inbox))

        unresolved = self._cache.ids_with_metadata(MetadataStatus.UNRESOLVED)
        self._logger.info(
            "sync_live",
            actor=actor,
            proposals=len(self._cache),
            unresolved_metadata=len(unresolved),
            from_block=snapshot_block + 1,
        )
        await self._notify(CacheChange(ChangeKind.LOADED, detail=f"{len(self._cache)} proposals"))

    async def unbind(self) -> None:
        """Explicit teardown. Safe to call in any state."""
        if self._state in (SyncState.IDLE, SyncState.STOPPED):
            return
        await self._teardown("unbind")

    async def _teardown(self, reason: str) -> None:
        self._state = SyncState.STOPPED
        current = asyncio.current_task()
        tasks = [
            t for t in (self._pump_task, self._loop_task, self._load_task, *self._resolutions.values())
            if t is not None and t is not current
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        actor = self._actor
        self._reset(SyncState.STOPPED)
        self._logger.info("sync_stopped", actor=actor, reason=reason)
        await self._notify(CacheChange(ChangeKind.STOPPED, detail=reason))

    def _reset(self, state: SyncState) -> None:
        self._state = state
        self._actor = None
        self._cache.clear()
        self._guard.clear()
        self._inbox = None
        self._pump_task = None
        self._loop_task = None
        self._resolutions.clear()

    # ─── Full load ──────────────────────────────────────────────────

    async def _full_load(self, actor: str) -> tuple[int, list[LoadedEntry]]:
        snapshot_block = await self._ledger.block_number()
        count = await self._ledger.proposal_count()
        semaphore = asyncio.Semaphore(self._config.max_concurrent_fetches)

        tasks = [
            asyncio.create_task(self._load_entry(proposal_id, actor, semaphore))
            for proposal_id in range(1, count + 1)
        ]
        try:
            entries = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return snapshot_block, list(entries)

    async def _load_entry(
        self,
        proposal_id: int,
        actor: str,
        semaphore: asyncio.Semaphore,
    ) -> LoadedEntry:
        async with semaphore:
            proposal = await self._ledger.get_proposal(proposal_id)
            status = await self._vote_status(proposal_id, actor)
            resolved = await self._resolve(proposal_id, proposal.metadata_uri)
        if not resolved.is_resolved:
            self._logger.warning("metadata_unresolved", proposal_id=proposal_id, pointer=resolved.pointer)
        return proposal, status, resolved

    async def _vote_status(self, proposal_id: int, actor: str) -> VoteStatus:
        try:
            voted = await self._ledger.has_voted(proposal_id, actor)
        except LedgerError as exc:
            self._logger.warning("vote_status_unknown", proposal_id=proposal_id, error=str(exc))
            return VoteStatus.UNKNOWN
        return VoteStatus.VOTED if voted else VoteStatus.NOT_VOTED

    # ─── Live loop ──────────────────────────────────────────────────

    async def _pump_events(self, from_block: int, inbox: asyncio.Queue[InboxItem]) -> None:
        try:
            async for event in self._ledger.events(from_block=from_block):
                self._events_received += 1
                await inbox.put(event)
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
        else:
            reason = "event stream ended"
        self._logger.error("subscription_lost", reason=reason)
        await inbox.put(SubscriptionLost(reason))

    async def _run_loop(self, inbox: asyncio.Queue[InboxItem]) -> None:
        while True:
            item = await inbox.get()
            try:
                if isinstance(item, SubscriptionLost):
                    await self._teardown(f"subscription lost: {item.reason}")
                    return
                await self._handle(item)
            except LedgerError as exc:
                self._refresh_failures += 1
                self._logger.warning("inbox_item_failed", item=type(item).__name__, error=str(exc))
            except Exception as exc:
                self._logger.exception("sync_loop_crashed", item=type(item).__name__)
                await self._teardown(f"loop failed: {type(exc).__name__}: {exc}")
                return
            finally:
                inbox.task_done()

    async def _handle(self, item: InboxItem) -> None:
        if isinstance(item, VoteCast):
            await self._on_vote(item)
        elif isinstance(item, TokenTransferred):
            await self._on_transfer(item)
        elif isinstance(item, RefreshProposal):
            if item.proposal_id in self._cache.pending_ids():
                await self._fetch_queued(item.proposal_id)
            else:
                await self._refresh(item.proposal_id)
        elif isinstance(item, MetadataResult):
            if self._cache.set_metadata(item.proposal_id, item.metadata):
                await self._notify(CacheChange(
                    ChangeKind.METADATA_RESOLVED,
                    proposal_id=item.proposal_id,
                    detail=item.metadata.status.value,
                ))

    async def _on_vote(self, event: VoteCast) -> None:
        assert self._actor is not None
        if same_address(event.voter, self._actor):
            self._guard.record_vote(event.proposal_id, self._actor)

        if event.proposal_id in self._cache:
            if self._cache.apply_vote(event):
                await self._notify(CacheChange(ChangeKind.VOTE_MERGED, proposal_id=event.proposal_id))
            return

        # Not cached yet: queue the vote, then fetch the proposal (and any
        # ids below it we have never seen, since ids are dense).
        self._cache.apply_vote(event)
        known = self._cache.ids()
        first_missing = (known[-1] + 1) if known else 1
        for proposal_id in range(min(first_missing, event.proposal_id), event.proposal_id + 1):
            if proposal_id not in self._cache:
                await self._fetch_queued(proposal_id)

    async def _fetch_queued(self, proposal_id: int) -> None:
        """Fetch an uncached proposal. Queued votes survive a transient failure."""
        try:
            await self._refresh(proposal_id)
        except LedgerRejected as exc:
            dropped = self._cache.drop_pending(proposal_id)
            self._logger.warning(
                "queued_votes_dropped",
                proposal_id=proposal_id,
                votes=dropped,
                reason=exc.reason,
            )
        except LedgerUnavailable as exc:
            self._refresh_failures += 1
            self._logger.warning("queued_fetch_deferred", proposal_id=proposal_id, error=str(exc))

    async def _on_transfer(self, event: TokenTransferred) -> None:
        if not event.is_mint:
            return
        try:
            uri: str | None = await self._ledger.token_uri(event.token_id)
        except LedgerError as exc:
            self._logger.warning("token_uri_unavailable", token_id=event.token_id, error=str(exc))
            uri = None

        candidates = [
            entry.snapshot.id for entry in self._cache.entries()
            if not entry.snapshot.minted and (uri is None or entry.snapshot.metadata_uri == uri)
        ]
        for proposal_id in candidates:
            await self._refresh(proposal_id)
        await self._notify(CacheChange(ChangeKind.TOKEN_MINTED, detail=str(event.token_id)))

    async def _refresh(self, proposal_id: int) -> None:
        assert self._actor is not None
        proposal = await self._ledger.get_proposal(proposal_id)
        is_new = proposal_id not in self._cache
        if is_new:
            self._guard.seed(proposal_id, self._actor, await self._vote_status(proposal_id, self._actor))

        changed = self._cache.upsert(proposal)
        if is_new:
            self._schedule_resolution(proposal_id, proposal.metadata_uri)
        if changed:
            await self._notify(CacheChange(ChangeKind.PROPOSAL_UPDATED, proposal_id=proposal_id))

    def _schedule_resolution(self, proposal_id: int, pointer: str) -> None:
        existing = self._resolutions.get(proposal_id)
        if existing is not None and not existing.done():
            return
        if self._inbox is None:
            return
        task = asyncio.create_task(self._resolve_into(proposal_id, pointer, self._inbox))
        self._resolutions[proposal_id] = task

        def _forget(done: asyncio.Task[None]) -> None:
            if self._resolutions.get(proposal_id) is done:
                del self._resolutions[proposal_id]

        task.add_done_callback(_forget)

    async def _resolve_into(
        self,
        proposal_id: int,
        pointer: str,
        inbox: asyncio.Queue[InboxItem],
    ) -> None:
        resolved = await self._resolve(proposal_id, pointer)
        await inbox.put(MetadataResult(proposal_id, resolved))

    async def _resolve(self, proposal_id: int, pointer: str) -> ResolvedMetadata:
        try:
            return await self._metadata.resolve_or_unresolved(pointer)
        except Exception as exc:
            self._logger.exception("metadata_resolution_crashed", proposal_id=proposal_id, pointer=pointer)
            return ResolvedMetadata.unresolved(pointer, f"{type(exc).__name__}: {exc}")

    # ─── Requests from other components ─────────────────────────────

    def request_refresh(self, proposal_id: int) -> bool:
        """Ask the loop to re-read one proposal. False when not live."""
        if self._state != SyncState.LIVE or self._inbox is None:
            return False
        self._inbox.put_nowait(RefreshProposal(proposal_id))
        return True

    def retry_unresolved(self) -> int:
        """
        Re-run resolution for every entry whose metadata is unresolved, and
        re-request proposals that still have queued votes. Returns how many
        retries were started.
        """
        if self._state != SyncState.LIVE or self._inbox is None:
            return 0
        ids = self._cache.ids_with_metadata(MetadataStatus.UNRESOLVED)
        for proposal_id in ids:
            entry = self._cache.get(proposal_id)
            if entry is not None:
                self._schedule_resolution(proposal_id, entry.snapshot.metadata_uri)
        queued = sorted(self._cache.pending_ids())
        for proposal_id in queued:
            self._inbox.put_nowait(RefreshProposal(proposal_id))
        return len(ids) + len(queued)

    async def settle(self) -> None:
        """Wait until every item queued so far has been handled."""
        if self._inbox is None or self._loop_task is None:
            return
        join = asyncio.ensure_future(self._inbox.join())
        try:
            await asyncio.wait({join, self._loop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            join.cancel()

    # ─── Observers ──────────────────────────────────────────────────

    def subscribe(self, callback: ChangeCallback) -> None:
        self._observers.append(callback)

    def unsubscribe(self, callback: ChangeCallback) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    async def _notify(self, change: CacheChange) -> None:
        """Dispatch to observers with per-callback timeout protection."""
        for callback in list(self._observers):
            try:
                await asyncio.wait_for(callback(change), timeout=self._config.observer_timeout_s)
            except TimeoutError:
                self._observer_timeouts += 1
                self._logger.warning(
                    "observer_timeout",
                    change=change.kind.value,
                    callback=getattr(callback, "__name__", str(callback)),
                )
            except Exception as exc:
                self._logger.error("observer_error", change=change.kind.value, error=str(exc))

    # ─── Reads ──────────────────────────────────────────────────────

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def actor(self) -> str | None:
        return self._actor

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def guard(self) -> VoteDedupGuard:
        return self._guard

    def proposals(self) -> list[Proposal]:
        return self._cache.proposals()

    def get(self, proposal_id: int) -> CachedProposal | None:
        return self._cache.get(proposal_id)

    def authored(self) -> list[Proposal]:
        return self._cache.authored_by(self._actor) if self._actor else []

    def awaiting_review(self) -> list[Proposal]:
        return self._cache.awaiting_review(self._actor) if self._actor else []

    def vote_status(self, proposal_id: int) -> VoteStatus:
        if self._actor is None:
            return VoteStatus.UNKNOWN
        return self._guard.status(proposal_id, self._actor)

    def decision(self, proposal_id: int) -> QuorumDecision | None:
        entry = self._cache.get(proposal_id)
        if entry is None:
            return None
        return decide(entry.proposal, self._threshold)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "actor": self._actor,
            "proposals": len(self._cache),
            "queued_vote_ids": sorted(self._cache.pending_ids()),
            "events_received": self._events_received,
            "refresh_failures": self._refresh_failures,
            "observer_timeouts": self._observer_timeouts,
            "resolutions_in_flight": len(self._resolutions),
        }
