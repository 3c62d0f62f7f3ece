#!/usr/bin/env python
"""Copy legacy blob-store documents into R2 and rewrite step-data references.

This script:
1. Scans step_data for references to the legacy blob store
2. Downloads each blob and uploads it under its tenant key in R2
3. Rewrites the step's JSON to point at the new key
4. Reports migrated/failed documents

Usage:
    python scripts/migrate_legacy_blobs.py --dry-run
    python scripts/migrate_legacy_blobs.py --workspace <workspace_id>
    python scripts/migrate_legacy_blobs.py --yes

Environment variables:
    DATABASE_URL, R2_*, BLOB_READ_WRITE_TOKEN
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config import settings
from app.database import async_session, engine
from app.services.legacy_migration import migrate_legacy_documents
from app.storage.adapters import LegacyBlobStorage, R2Storage


async def main():
    parser = argparse.ArgumentParser(description="Migrate legacy blob documents to R2")
    parser.add_argument(
        "--workspace",
        help="Migrate only this workspace",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List what would be migrated without copying or writing anything",
    )
    parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Skip confirmation prompt",
    )
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(message)s")

    print("=" * 70)
    print("  Legacy Blob → R2 Migration")
    print("=" * 70)
    print()
    print(f"Bucket:    {settings.r2_bucket_name}")
    print(f"Workspace: {args.workspace or 'all'}")
    print(f"Mode:      {'dry run' if args.dry_run else 'copy + rewrite'}")
    print()

    if not args.dry_run and not args.yes:
        response = input("Continue with migration? [y/N]: ")
        if response.lower() != "y":
            print("Migration cancelled.")
            return

    start_time = datetime.now()
    try:
        async with async_session() as session:
            stats = await migrate_legacy_documents(
                session,
                R2Storage(),
                LegacyBlobStorage(),
                workspace_id=args.workspace,
                dry_run=args.dry_run,
            )
            if not args.dry_run:
                await session.commit()
    finally:
        await engine.dispose()

    duration = (datetime.now() - start_time).total_seconds()

    print()
    print("=" * 70)
    print("  Migration Summary")
    print("=" * 70)
    print()
    print(f"Steps scanned:  {stats.steps_scanned}")
    print(f"Steps updated:  {stats.steps_updated}")
    print(f"✓ Migrated:     {stats.migrated}")
    print(f"✗ Failed:       {stats.failed}")
    print(f"Copied:         {stats.total_bytes / 1024 / 1024:.2f} MB")
    print(f"Duration:       {duration:.2f}s")

    if stats.failed_urls:
        print()
        print("Failed documents:")
        for url in stats.failed_urls:
            print(f"  - {url}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
