"""
Accredit — Error Hierarchy

Every exception raised by the approval workflow. Adapters translate
library exceptions (httpx, web3) into these at the boundary, so nothing
above the clients layer needs to know which transport is in use.

Propagation guide:
  ValidationError    LOCAL     -- malformed input; the action is never issued
  AlreadyVoted       LOCAL     -- dedup refusal; the ledger is never contacted
  LedgerRejected     SURFACED  -- the ledger executed and refused; carries reason
  ResolutionFailed   SURFACED  -- every gateway failed for one pointer
  PublishFailed      SURFACED  -- pinning service unreachable or refused
  LedgerUnavailable  ABORT     -- no ledger response; aborts a full load
  SyncFailed         ABORT     -- full load could not complete; re-bind to retry

Nothing here is retried automatically.
"""

from __future__ import annotations


class AccreditError(RuntimeError):
    """Base for all Accredit errors."""


class ValidationError(AccreditError):
    """
    Input failed local validation before any network call.

    Recovery: fix the input; nothing was sent.
    """

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


# ─── Ledger ───────────────────────────────────────────────────────


class LedgerError(AccreditError):
    """Base for failures reported by a LedgerClient."""


class LedgerUnavailable(LedgerError):
    """
    The ledger did not answer (connection refused, timeout, RPC down).

    Recovery: caller decides. During a full load this aborts the load.
    """


class LedgerRejected(LedgerError):
    """
    The ledger executed the call but refused the state change: a double
    vote, a non-eligible proposer, a mint below quorum, a bad beneficiary.

    Recovery: none automatic. The reason is surfaced verbatim.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


# ─── Metadata store ───────────────────────────────────────────────


class MetadataError(AccreditError):
    """Base for content-addressed metadata store failures."""


class PublishFailed(MetadataError):
    """The pinning service was unreachable or refused the document."""


class ResolutionFailed(MetadataError):
    """
    Every configured gateway failed to return a parseable document.

    ``attempts`` lists ``(url, reason)`` in the order tried.
    """

    def __init__(self, pointer: str, attempts: list[tuple[str, str]]) -> None:
        summary = "; ".join(f"{url}: {reason}" for url, reason in attempts) or "no gateways"
        super().__init__(f"could not resolve {pointer} ({summary})")
        self.pointer = pointer
        self.attempts = attempts


# ─── Workflow ─────────────────────────────────────────────────────


class AlreadyVoted(AccreditError):
    """The actor is already recorded as having voted on this proposal."""

    def __init__(self, proposal_id: int, voter: str) -> None:
        super().__init__(f"{voter} already voted on proposal {proposal_id}")
        self.proposal_id = proposal_id
        self.voter = voter


class SyncFailed(AccreditError):
    """
    The full load could not complete.

    Recovery: explicit re-bind. Partial ledger truth is never installed.
    """
