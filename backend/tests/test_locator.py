"""Tests for locating document references inside step data."""

from types import SimpleNamespace

import pytest

from app.storage.locator import (
    extract_document_references,
    is_document_reference,
    locate_documents,
)
from app.storage.references import ReferencePatterns

PATTERNS = ReferencePatterns(
    object_storage_host="r2.cloudflarestorage.com",
    legacy_blob_host="blob.vercel-storage.com",
    bucket="solar-documents",
)

R2_URL = "https://acct.r2.cloudflarestorage.com/solar-documents/ws/c1/aadhaar/1_a.pdf"
LEGACY_URL = "https://abc.public.blob.vercel-storage.com/c1_pan_1_pan.pdf"
KEY = "ws/c1/electricity_bill/2_bill.pdf"


def step(number, data):
    return {"step_number": number, "data": data}


class TestIsDocumentReference:
    @pytest.mark.parametrize("value", [R2_URL, LEGACY_URL, KEY])
    def test_matches(self, value):
        assert is_document_reference(value, PATTERNS)

    @pytest.mark.parametrize(
        "value",
        ["yes", "2024-03-01", "https://maps.google.com/?q=18.5,73.8", "SBI Pune"],
    )
    def test_rejects(self, value):
        assert not is_document_reference(value, PATTERNS)


class TestExtractDocumentReferences:
    def test_empty_inputs(self):
        assert extract_document_references([], PATTERNS) == set()
        assert extract_document_references([step(1, {})], PATTERNS) == set()
        assert extract_document_references([step(1, None)], PATTERNS) == set()

    def test_direct_nested_and_array_values(self):
        steps = [
            step(3, {"aadhaar_card": R2_URL, "bank_name": "SBI"}),
            step(7, {"photos": [KEY, "not a doc", 42], "details": {"deep": {"pan": LEGACY_URL}}}),
        ]
        assert extract_document_references(steps, PATTERNS) == {R2_URL, KEY, LEGACY_URL}

    def test_scalars_are_ignored(self):
        steps = [step(6, {"amount": 50000, "paid": True, "note": None, "ratio": 0.5})]
        assert extract_document_references(steps, PATTERNS) == set()

    def test_objects_inside_arrays_are_walked(self):
        steps = [step(9, {"panel": {"items": [{"serial_photo": KEY, "maker": "Tata"}]}})]
        assert extract_document_references(steps, PATTERNS) == {KEY}

    def test_arrays_inside_arrays_are_not_scanned(self):
        steps = [step(9, {"matrix": [[KEY]]})]
        assert extract_document_references(steps, PATTERNS) == set()

    def test_reference_in_two_steps_counts_once(self):
        steps = [step(3, {"doc": KEY}), step(4, {"copy": KEY})]
        assert extract_document_references(steps, PATTERNS) == {KEY}

    def test_idempotent(self):
        steps = [step(3, {"doc": KEY, "more": [R2_URL]})]
        first = extract_document_references(steps, PATTERNS)
        assert extract_document_references(steps, PATTERNS) == first

    def test_step_order_does_not_matter(self):
        steps = [
            step(1, {"site_photo": KEY}),
            step(3, {"aadhaar": R2_URL, "photos": [KEY, "ws/c1/photos/4_c.jpg"]}),
            step(5, {"pan": LEGACY_URL}),
        ]
        expected = extract_document_references(steps, PATTERNS)
        assert extract_document_references(list(reversed(steps)), PATTERNS) == expected
        assert extract_document_references([steps[1], steps[2], steps[0]], PATTERNS) == expected
        assert len(expected) == 4

    def test_orm_like_steps(self):
        steps = [SimpleNamespace(step_number=2, data={"site_photo": KEY})]
        assert extract_document_references(steps, PATTERNS) == {KEY}


class TestLocateDocuments:
    def test_category_and_index(self):
        other = "ws/c1/photos/3_b.jpg"
        hits = locate_documents(
            [step(1, {"site_photos": [KEY, other], "aadhaar_card": R2_URL})], PATTERNS
        )
        assert [(h.reference, h.category, h.index, h.step_number) for h in hits] == [
            (KEY, "site_photos", 1, 1),
            (other, "site_photos", 2, 1),
            (R2_URL, "aadhaar_card", None, 1),
        ]

    def test_single_element_array_has_no_index(self):
        hits = locate_documents([step(1, {"photos": [KEY]})], PATTERNS)
        assert hits[0].index is None

    def test_first_occurrence_wins(self):
        hits = locate_documents([step(3, {"bill": KEY}), step(5, {"copy": KEY})], PATTERNS)
        assert len(hits) == 1
        assert hits[0].category == "bill"
        assert hits[0].step_number == 3
