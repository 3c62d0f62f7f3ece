"""Locate stored-document references inside customers' step data.

Step payloads are arbitrary JSON. A string leaf is a document reference
when it is:
  - a URL on the object-storage host (or the bucket's public domain),
  - a tenant-scoped storage key (contains "/" and has no URL scheme), or
  - a URL on the legacy blob host.

Objects are walked without a depth limit. Arrays are scanned one level:
string elements are tested, object elements are walked, anything else
(including nested arrays) is ignored. Numbers, booleans and nulls are
never references.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from app.storage.references import ReferencePatterns, has_url_scheme


@dataclass(frozen=True)
class DocumentHit:
    """One reference found in step data, with where it came from."""
    reference: str
    category: str
    step_number: int | None = None
    index: int | None = None  # 1-based, set when the field holds several documents


def is_document_reference(value: str, patterns: ReferencePatterns) -> bool:
    if patterns.is_object_storage_url(value):
        return True
    if "/" in value and not has_url_scheme(value):
        return True
    return patterns.is_legacy_url(value)


def _step_fields(step: Any) -> tuple[int | None, Any]:
    if isinstance(step, dict):
        return step.get("step_number"), step.get("data")
    return getattr(step, "step_number", None), getattr(step, "data", None)


def _walk_object(
    obj: dict,
    step_number: int | None,
    patterns: ReferencePatterns,
) -> Iterator[DocumentHit]:
    for field, value in obj.items():
        if isinstance(value, str):
            if is_document_reference(value, patterns):
                yield DocumentHit(value, field, step_number)
        elif isinstance(value, list):
            refs = [
                item for item in value
                if isinstance(item, str) and is_document_reference(item, patterns)
            ]
            numbered = len(refs) > 1
            for position, ref in enumerate(refs, start=1):
                yield DocumentHit(ref, field, step_number, position if numbered else None)
            for item in value:
                if isinstance(item, dict):
                    yield from _walk_object(item, step_number, patterns)
        elif isinstance(value, dict):
            yield from _walk_object(value, step_number, patterns)


def iter_document_hits(
    steps: Iterable[Any],
    patterns: ReferencePatterns | None = None,
) -> Iterator[DocumentHit]:
    """Yield every reference occurrence, duplicates included, in walk order."""
    patterns = patterns or ReferencePatterns.from_settings()
    for step in steps:
        step_number, data = _step_fields(step)
        if isinstance(data, dict):
            yield from _walk_object(data, step_number, patterns)


def locate_documents(
    steps: Iterable[Any],
    patterns: ReferencePatterns | None = None,
) -> list[DocumentHit]:
    """Unique references in discovery order; the first occurrence wins."""
    seen: set[str] = set()
    hits: list[DocumentHit] = []
    for hit in iter_document_hits(steps, patterns):
        if hit.reference in seen:
            continue
        seen.add(hit.reference)
        hits.append(hit)
    return hits


def extract_document_references(
    steps: Iterable[Any],
    patterns: ReferencePatterns | None = None,
) -> set[str]:
    """Every document reference held anywhere in the given steps' data."""
    return {hit.reference for hit in iter_document_hits(steps, patterns)}
