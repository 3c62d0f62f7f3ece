"""Backup archive builder.

Layout of the zip handed to the operator:

    customer-report.html      rendered report (app.services.report)
    customer-data.json        {customer, steps, exported_at, exported_by}
    documents/<name>.<ext>    one file per document that could be downloaded

Documents are named `{customer}_{category}[_{index}].{ext}` and made
unique case-insensitively. A document that cannot be fetched, or whose
key belongs to another workspace, is skipped and counted; only a failure
to write the zip itself is fatal.
"""

from __future__ import annotations

import io
import json
import logging
import os
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Sequence

from app.schemas.backup import CustomerOut, StepDataOut
from app.services.report import render_customer_report
from app.storage.adapters import ObjectStorage
from app.storage.locator import DocumentHit, locate_documents
from app.storage.references import ReferencePatterns, belongs_to_workspace

logger = logging.getLogger(__name__)

REPORT_FILENAME = "customer-report.html"
SNAPSHOT_FILENAME = "customer-data.json"
DOCUMENTS_DIR = "documents"

MAX_NAME_LENGTH = 30

CONTENT_TYPE_EXTENSIONS = {
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}
DEFAULT_EXTENSION = "bin"

_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,5}$")


@dataclass
class BackupArchive:
    content: bytes
    documents_included: list[str] = field(default_factory=list)
    documents_skipped: list[str] = field(default_factory=list)


# ── Naming ──────────────────────────────────────────────────

def sanitize_customer_name(name: str) -> str:
    cleaned = re.sub(r"\s+", "_", (name or "").strip())
    cleaned = re.sub(r"[^a-zA-Z0-9_-]", "", cleaned)
    return cleaned[:MAX_NAME_LENGTH] or "customer"


def file_extension(filename: str | None, content_type: str | None) -> str:
    """Extension from the original filename, else from the media type."""
    if filename:
        suffix = os.path.splitext(filename)[1].lstrip(".").lower()
        if _EXTENSION_RE.match(suffix):
            return suffix
    if content_type:
        media_type = content_type.split(";", 1)[0].strip().lower()
        return CONTENT_TYPE_EXTENSIONS.get(media_type, DEFAULT_EXTENSION)
    return DEFAULT_EXTENSION


def document_base_name(customer_name: str, hit: DocumentHit) -> str:
    base = f"{sanitize_customer_name(customer_name)}_{hit.category}"
    if hit.index is not None:
        base = f"{base}_{hit.index}"
    return base


def unique_filename(base: str, ext: str, taken: set[str]) -> str:
    """First of base.ext, base_1.ext, base_2.ext ... not already in `taken`.

    `taken` holds lower-cased names and is updated with the result.
    """
    candidate = f"{base}.{ext}"
    counter = 1
    while candidate.lower() in taken:
        candidate = f"{base}_{counter}.{ext}"
        counter += 1
    taken.add(candidate.lower())
    return candidate


def backup_filename(customer_name: str, on_date: date) -> str:
    slug = (customer_name or "").lower().replace(" ", "-")
    slug = re.sub(r"[^a-z0-9-]", "", slug) or "customer"
    return f"backup-{slug}-{on_date.isoformat()}.zip"


# ── Snapshot ────────────────────────────────────────────────

def build_snapshot(
    customer: Any,
    steps: Sequence[Any],
    *,
    exported_by: str,
    exported_at: datetime,
) -> str:
    snapshot = {
        "customer": CustomerOut.model_validate(customer).model_dump(mode="json"),
        "steps": [StepDataOut.model_validate(s).model_dump(mode="json") for s in steps],
        "exported_at": exported_at.isoformat(),
        "exported_by": exported_by,
    }
    return json.dumps(snapshot, indent=2, ensure_ascii=False)


# ── Builder ─────────────────────────────────────────────────

async def build_backup_archive(
    customer: Any,
    steps: Sequence[Any],
    storage: ObjectStorage,
    *,
    exported_by: str,
    exported_at: datetime,
    patterns: ReferencePatterns | None = None,
    workspace_id: str | None = None,
) -> BackupArchive:
    customer_name = customer.name
    archive = BackupArchive(content=b"")
    taken: set[str] = set()

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(
            REPORT_FILENAME,
            render_customer_report(
                customer, steps, exported_by=exported_by, generated_at=exported_at
            ),
        )
        zf.writestr(
            SNAPSHOT_FILENAME,
            build_snapshot(customer, steps, exported_by=exported_by, exported_at=exported_at),
        )

        for hit in locate_documents(steps, patterns):
            if workspace_id and not belongs_to_workspace(hit.reference, workspace_id, patterns):
                logger.warning(
                    "Skipping %s: outside workspace %s", hit.reference, workspace_id
                )
                archive.documents_skipped.append(hit.reference)
                continue
            try:
                stored = await storage.get_object(hit.reference)
            except Exception:
                logger.exception("Failed to download document %s", hit.reference)
                stored = None
            if stored is None:
                archive.documents_skipped.append(hit.reference)
                continue

            name = unique_filename(
                document_base_name(customer_name, hit),
                file_extension(stored.filename, stored.content_type),
                taken,
            )
            zf.writestr(f"{DOCUMENTS_DIR}/{name}", stored.content)
            archive.documents_included.append(name)

    archive.content = buffer.getvalue()
    logger.info(
        "Built backup archive for %s: %d documents, %d skipped, %d bytes",
        customer_name,
        len(archive.documents_included),
        len(archive.documents_skipped),
        len(archive.content),
    )
    return archive
