"""
Accredit — Primitives

Data types shared by every client and system.
"""

from accredit.primitives.common import (
    ZERO_ADDRESS,
    AccreditBaseModel,
    is_valid_address,
    normalize_address,
    same_address,
    utc_now,
)
from accredit.primitives.credential import (
    CredentialDocument,
    CredentialDraft,
    CredentialTrait,
    MetadataStatus,
    ResolvedMetadata,
    content_id,
    to_pointer,
)
from accredit.primitives.ledger import (
    CredentialToken,
    LedgerEvent,
    Proposal,
    TokenTransferred,
    VoteCast,
    VoteStatus,
)

__all__ = [
    "ZERO_ADDRESS",
    "AccreditBaseModel",
    "is_valid_address",
    "normalize_address",
    "same_address",
    "utc_now",
    "CredentialDocument",
    "CredentialDraft",
    "CredentialTrait",
    "MetadataStatus",
    "ResolvedMetadata",
    "content_id",
    "to_pointer",
    "CredentialToken",
    "LedgerEvent",
    "Proposal",
    "TokenTransferred",
    "VoteCast",
    "VoteStatus",
]
