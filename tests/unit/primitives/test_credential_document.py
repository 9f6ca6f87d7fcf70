"""
Unit tests for the credential metadata primitives.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from accredit.errors import ValidationError
from accredit.primitives.credential import (
    CredentialDocument,
    CredentialDraft,
    ResolvedMetadata,
    content_id,
    to_pointer,
)

STUDENT = "0x" + "55" * 20


class TestPointers:
    def test_content_id(self):
        assert content_id("ipfs://QmAbc") == "QmAbc"
        assert content_id(" QmAbc ") == "QmAbc"
        assert to_pointer("QmAbc") == "ipfs://QmAbc"
        assert to_pointer("ipfs://QmAbc") == "ipfs://QmAbc"


class TestFromWire:
    def test_recognized_traits(self):
        document = CredentialDocument.from_wire({
            "name": "MSc - Alan",
            "issuedBy": "Manchester",
            "attributes": [
                {"trait_type": "Degree", "value": "MSc"},
                {"trait_type": "Year", "value": 1936},
                {"trait_type": "CGPA", "value": "3.7"},
                {"trait_type": "Issued To", "value": "Alan"},
                {"trait_type": "Student Address", "value": STUDENT},
                {"trait_type": "University", "value": "Cambridge"},
            ],
        })
        assert document.title == "MSc - Alan"
        assert document.year == "1936"
        assert document.score == "3.7"
        assert document.beneficiary == STUDENT
        assert document.institution == "Cambridge"
        assert document.issued_by == "Manchester"
        assert document.extra_attributes == []

    def test_tolerates_malformed_entries(self):
        document = CredentialDocument.from_wire({
            "attributes": [
                "junk",
                {"value": "no trait type"},
                {"trait_type": "Degree", "value": "BA"},
                {"trait_type": "Degree", "value": "BA again"},
                {"trait_type": "Club", "value": "Chess"},
            ],
        })
        assert document.degree == "BA"
        assert [(t.name, t.value) for t in document.extra_attributes] == [
            ("Degree", "BA again"),
            ("Club", "Chess"),
        ]

    def test_missing_attributes_array(self):
        document = CredentialDocument.from_wire({"name": "x", "attributes": "nope"})
        assert document.title == "x"
        assert document.degree is None


class TestToWire:
    def test_unset_fields_omitted_and_extras_kept(self):
        document = CredentialDocument.from_wire({
            "attributes": [{"trait_type": "Degree", "value": "BA"}, {"trait_type": "Club", "value": "Chess"}],
        })
        wire = document.to_wire()
        assert "name" not in wire
        assert wire["attributes"] == [
            {"trait_type": "Degree", "value": "BA"},
            {"trait_type": "Club", "value": "Chess"},
        ]
        assert CredentialDocument.from_wire(wire) == document


class TestDraft:
    def test_to_document_shapes_title_and_description(self):
        draft = CredentialDraft(
            name="Ada", degree="BSc", year=2024, score=3.9,
            beneficiary=STUDENT, institution="Uni X",
        )
        issued_at = datetime(2024, 6, 1, tzinfo=timezone.utc)
        document = draft.to_document(image="https://img.test/x.png", issued_at=issued_at)

        assert document.title == "BSc - Ada"
        assert document.description == "Credential issued by Uni X, 2024"
        assert document.year == "2024"
        assert document.score == "3.9"
        assert document.issued_at == issued_at.isoformat()
        assert document.image == "https://img.test/x.png"

    def test_check_names_every_missing_field(self):
        with pytest.raises(ValidationError) as exc_info:
            CredentialDraft(name="Ada").check()
        assert exc_info.value.fields == ["degree", "year", "score", "beneficiary", "institution"]

    def test_check_rejects_bad_address(self):
        draft = CredentialDraft(
            name="Ada", degree="BSc", year="2024", score="3.9",
            beneficiary="0x123", institution="Uni X",
        )
        with pytest.raises(ValidationError) as exc_info:
            draft.check()
        assert exc_info.value.fields == ["beneficiary"]


class TestResolvedMetadata:
    def test_sentinel_distinct_from_empty_document(self):
        empty = ResolvedMetadata.resolved("ipfs://QmA", CredentialDocument())
        missing = ResolvedMetadata.unresolved("ipfs://QmA", "all gateways failed")
        assert empty.is_resolved
        assert not missing.is_resolved
        assert missing.document is None
        assert missing.error == "all gateways failed"
