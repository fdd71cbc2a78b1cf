#!/usr/bin/env python3
"""Policy seeding.

Chunks every Markdown policy file in a directory, embeds the chunks with
the configured embedding provider and upserts them for one tenant.

Usage:
    python -m scripts.seed_policies policies/
    python -m scripts.seed_policies policies/ --tenant 00000000-0000-0000-0000-000000000002
    python -m scripts.seed_policies policies/ --dry-run
"""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

import structlog

from listing_review.core.config import settings
from listing_review.core.database import build_engine, build_session_factory
from listing_review.modules.pipeline.embedding import build_embedding_service
from listing_review.modules.policies.chunker import chunk_policy
from listing_review.modules.policies.repository import PolicyRepository
from listing_review.modules.policies.service import ingest_policy

logger = structlog.get_logger()


async def seed(directory: Path, tenant_id: str, dry_run: bool = False) -> None:
    files = sorted(directory.glob("*.md"))
    logger.info("seed_started", directory=str(directory), files=len(files), tenant_id=tenant_id)

    if dry_run:
        for path in files:
            chunks = chunk_policy(path.name, path.read_text(encoding="utf-8"))
            logger.info("seed_dry_run", source_file=path.name, chunks=len(chunks))
        return

    engine = build_engine(settings)
    try:
        repository = PolicyRepository(build_session_factory(engine))
        embedding_service = build_embedding_service(settings)
        total = 0
        for path in files:
            total += await ingest_policy(
                repository,
                embedding_service,
                tenant_id,
                path.name,
                path.read_text(encoding="utf-8"),
            )
        logger.info("seed_complete", files=len(files), chunks=total)
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed tenant policy chunks")
    parser.add_argument("directory", type=Path, help="Directory of Markdown policy files")
    parser.add_argument(
        "--tenant",
        default=settings.default_tenant_id,
        help="Tenant id to seed (defaults to DEFAULT_TENANT_ID)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Chunk only; don't embed or store",
    )
    args = parser.parse_args()

    asyncio.run(seed(args.directory, args.tenant, dry_run=args.dry_run))


if __name__ == "__main__":
    main()
