"""
Accredit — Credential Metadata Primitives

The descriptive document behind every proposal, as pinned to IPFS.

Wire shape (content-addressed JSON):
  { name, description, image, issuedBy, timestamp,
    attributes: [{trait_type, value}, ...] }

Recognized traits map onto typed optional fields. ``None`` means unset.
Anything else is kept, in order, in ``extra_attributes`` so documents
written by newer issuers survive a round trip.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import Field, field_validator

from accredit.errors import ValidationError
from accredit.primitives.common import AccreditBaseModel, is_valid_address, utc_now

IPFS_SCHEME = "ipfs://"

# trait_type -> CredentialDocument field
TRAIT_FIELDS: dict[str, str] = {
    "Degree": "degree",
    "Year": "year",
    "CGPA": "score",
    "Issued To": "subject_name",
    "Student Address": "beneficiary",
    "University": "institution",
}


def content_id(pointer: str) -> str:
    """``ipfs://<cid>`` or a bare cid -> ``<cid>``."""
    value = pointer.strip()
    if value.startswith(IPFS_SCHEME):
        value = value[len(IPFS_SCHEME):]
    return value.strip("/")


def to_pointer(cid: str) -> str:
    return f"{IPFS_SCHEME}{content_id(cid)}"


def is_http_url(pointer: str) -> bool:
    return pointer.strip().lower().startswith(("http://", "https://"))


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class CredentialTrait(AccreditBaseModel):
    """One ``{trait_type, value}`` pair."""

    name: str
    value: str | None = None


class CredentialDocument(AccreditBaseModel):
    """A resolved credential document. Immutable once published."""

    title: str | None = None
    subject_name: str | None = None
    degree: str | None = None
    year: str | None = None
    score: str | None = None
    institution: str | None = None
    issued_by: str | None = None
    issued_at: str | None = None
    beneficiary: str | None = None
    description: str | None = None
    image: str | None = None
    extra_attributes: list[CredentialTrait] = Field(default_factory=list)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> CredentialDocument:
        """
        Parse the wire JSON. Tolerates missing, unknown and malformed
        trait entries and an absent ``attributes`` array. The first
        occurrence of a recognized trait wins; repeats go to extras.
        """
        fields: dict[str, Any] = {
            "title": _text(data.get("name")),
            "description": _text(data.get("description")),
            "image": _text(data.get("image")),
            "issued_by": _text(data.get("issuedBy")),
            "issued_at": _text(data.get("timestamp")),
        }
        extras: list[CredentialTrait] = []

        attributes = data.get("attributes")
        if isinstance(attributes, list):
            for entry in attributes:
                if not isinstance(entry, dict):
                    continue
                trait = _text(entry.get("trait_type"))
                if trait is None:
                    continue
                value = _text(entry.get("value"))
                field = TRAIT_FIELDS.get(trait)
                if field is not None and fields.get(field) is None:
                    fields[field] = value
                else:
                    extras.append(CredentialTrait(name=trait, value=value))

        if fields.get("institution") is None:
            fields["institution"] = fields["issued_by"]

        return cls(**fields, extra_attributes=extras)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the wire JSON. Unset fields are omitted."""
        attributes: list[dict[str, Any]] = []
        for trait, field in TRAIT_FIELDS.items():
            value = getattr(self, field)
            if value is not None:
                attributes.append({"trait_type": trait, "value": value})
        attributes.extend(
            {"trait_type": extra.name, "value": extra.value}
            for extra in self.extra_attributes
        )

        wire: dict[str, Any] = {
            "name": self.title,
            "description": self.description,
            "image": self.image,
            "issuedBy": self.issued_by or self.institution,
            "timestamp": self.issued_at,
        }
        wire = {k: v for k, v in wire.items() if v is not None}
        wire["attributes"] = attributes
        return wire

    def trait(self, name: str) -> str | None:
        """Look up a trait by wire name, recognized or extra."""
        field = TRAIT_FIELDS.get(name)
        if field is not None:
            return getattr(self, field)
        for extra in self.extra_attributes:
            if extra.name == name:
                return extra.value
        return None


class CredentialDraft(AccreditBaseModel):
    """What an institution fills in before a credential is pinned."""

    name: str = ""
    degree: str = ""
    year: str = ""
    score: str = ""
    beneficiary: str = ""
    institution: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    def check(self) -> None:
        """Raise ValidationError naming every missing field."""
        missing = [
            field
            for field in ("name", "degree", "year", "score", "beneficiary", "institution")
            if not getattr(self, field)
        ]
        if missing:
            raise ValidationError(
                f"missing required fields: {', '.join(missing)}", fields=missing
            )
        if not is_valid_address(self.beneficiary):
            raise ValidationError(
                f"beneficiary is not a valid address: {self.beneficiary}",
                fields=["beneficiary"],
            )

    def to_document(self, image: str | None = None, issued_at: datetime | None = None) -> CredentialDocument:
        self.check()
        return CredentialDocument(
            title=f"{self.degree} - {self.name}",
            description=f"Credential issued by {self.institution}, {self.year}",
            image=image,
            subject_name=self.name,
            degree=self.degree,
            year=self.year,
            score=self.score,
            beneficiary=self.beneficiary,
            institution=self.institution,
            issued_by=self.institution,
            issued_at=(issued_at or utc_now()).isoformat(),
        )


class MetadataStatus(enum.StrEnum):
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"  # every gateway failed
    PENDING = "pending"        # resolution not attempted yet


class ResolvedMetadata(AccreditBaseModel):
    """
    Outcome of resolving one proposal's pointer.

    ``UNRESOLVED`` is the failure sentinel. A genuinely empty document is
    ``RESOLVED`` with every field unset, so the two never collide.
    """

    pointer: str
    status: MetadataStatus
    document: CredentialDocument | None = None
    error: str | None = None

    @classmethod
    def resolved(cls, pointer: str, document: CredentialDocument) -> ResolvedMetadata:
        return cls(pointer=pointer, status=MetadataStatus.RESOLVED, document=document)

    @classmethod
    def unresolved(cls, pointer: str, reason: str) -> ResolvedMetadata:
        return cls(pointer=pointer, status=MetadataStatus.UNRESOLVED, error=reason)

    @classmethod
    def pending(cls, pointer: str) -> ResolvedMetadata:
        return cls(pointer=pointer, status=MetadataStatus.PENDING)

    @property
    def is_resolved(self) -> bool:
        return self.status == MetadataStatus.RESOLVED
