"""Move legacy blob-store documents into the R2 bucket.

For every step-data row that still references a legacy blob URL:
  1. download the blob
  2. upload it under {workspace}/{customer}/{category}/{ts}_{filename}
  3. replace the URL with the new key inside the step's JSON

A URL seen twice (same document in two steps) is copied once. Documents
that fail to copy keep their legacy URL and are reported; the legacy
blobs themselves are left in place.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.step_data import StepData
from app.storage.adapters import LegacyBlobStorage, R2Storage
from app.storage.locator import locate_documents
from app.storage.references import (
    LegacyUrl,
    ReferencePatterns,
    build_object_key,
    parse_reference,
)

logger = logging.getLogger(__name__)


@dataclass
class MigrationStats:
    steps_scanned: int = 0
    steps_updated: int = 0
    migrated: int = 0
    failed: int = 0
    total_bytes: int = 0
    failed_urls: list[str] = field(default_factory=list)


def rewrite_references(value: Any, replacements: dict[str, str]) -> Any:
    """Copy of a JSON value with every string in `replacements` swapped."""
    if isinstance(value, str):
        return replacements.get(value, value)
    if isinstance(value, list):
        return [rewrite_references(item, replacements) for item in value]
    if isinstance(value, dict):
        return {k: rewrite_references(v, replacements) for k, v in value.items()}
    return value


async def migrate_legacy_documents(
    db: AsyncSession,
    r2: R2Storage,
    legacy: LegacyBlobStorage,
    *,
    workspace_id: str | None = None,
    dry_run: bool = False,
    patterns: ReferencePatterns | None = None,
) -> MigrationStats:
    patterns = patterns or ReferencePatterns.from_settings()
    stats = MigrationStats()
    copied: dict[str, str] = {}

    query = select(StepData).order_by(StepData.customer_id, StepData.step_number)
    if workspace_id:
        query = query.where(StepData.workspace_id == workspace_id)
    steps = (await db.execute(query)).scalars().all()

    for step in steps:
        stats.steps_scanned += 1
        legacy_hits = [
            hit for hit in locate_documents([step], patterns)
            if isinstance(parse_reference(hit.reference, patterns), LegacyUrl)
        ]
        if not legacy_hits:
            continue

        replacements: dict[str, str] = {}
        for hit in legacy_hits:
            if hit.reference in copied:
                replacements[hit.reference] = copied[hit.reference]
                continue
            if dry_run:
                logger.info("[dry-run] would migrate %s", hit.reference)
                copied[hit.reference] = hit.reference
                stats.migrated += 1
                continue

            ref = LegacyUrl(hit.reference)
            stored = await legacy.get(ref)
            if stored is None:
                stats.failed += 1
                stats.failed_urls.append(hit.reference)
                continue

            key = build_object_key(
                step.workspace_id,
                step.customer_id,
                hit.category,
                stored.filename,
                int(time.time() * 1000),
            )
            try:
                await r2.put(key, stored.content, stored.content_type)
            except (ClientError, BotoCoreError) as e:
                logger.error("Upload of %s to %s failed: %s", hit.reference, key, e)
                stats.failed += 1
                stats.failed_urls.append(hit.reference)
                continue

            logger.info("Migrated %s -> %s", hit.reference, key)
            copied[hit.reference] = key
            replacements[hit.reference] = key
            stats.migrated += 1
            stats.total_bytes += len(stored.content)

        if replacements and not dry_run:
            step.data = rewrite_references(step.data, replacements)
            stats.steps_updated += 1

    if not dry_run:
        await db.flush()
    return stats
