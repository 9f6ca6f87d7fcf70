"""
Accredit — Common Primitives

Shared base model, time and address helpers used across all systems.
"""

from __future__ import annotations

from datetime import datetime, timezone

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def is_valid_address(value: str | None) -> bool:
    """True for a 20-byte hex address (any casing)."""
    return bool(value) and is_address(value)


def normalize_address(value: str) -> str:
    """Return the EIP-55 checksum form. Raises ValueError for non-addresses."""
    if not is_valid_address(value):
        raise ValueError(f"not an address: {value!r}")
    return to_checksum_address(value)


def same_address(a: str | None, b: str | None) -> bool:
    """Case-insensitive address equality. ``None`` never matches."""
    if not a or not b:
        return False
    return a.lower() == b.lower()


class AccreditBaseModel(BaseModel):
    """Base model for all Accredit primitives."""

    model_config = {"populate_by_name": True, "from_attributes": True}
