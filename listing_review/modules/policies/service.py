"""Policy ingestion: chunk a document, embed every chunk, store the result."""

from __future__ import annotations

import structlog

from listing_review.core.errors import ValidationError
from listing_review.modules.pipeline.embedding import EmbeddingService
from listing_review.modules.policies.chunker import chunk_policy
from listing_review.modules.policies.repository import PolicyRepository

logger = structlog.get_logger()

EMBED_BATCH_SIZE = 64


async def ingest_policy(
    repository: PolicyRepository,
    embedding_service: EmbeddingService,
    tenant_id: str,
    source_file: str,
    text: str,
) -> int:
    chunks = chunk_policy(source_file, text)
    if not chunks:
        logger.warning("Policy document is empty", source_file=source_file)
        return 0

    embeddings: list[list[float]] = []
    for i in range(0, len(chunks), EMBED_BATCH_SIZE):
        batch = chunks[i : i + EMBED_BATCH_SIZE]
        embeddings.extend(await embedding_service.embed([c.content for c in batch]))

    if len(embeddings) != len(chunks):
        raise ValidationError(
            f"chunks/embeddings length mismatch: {len(chunks)} chunks vs {len(embeddings)} embeddings"
        )

    for chunk, vector in zip(chunks, embeddings):
        chunk.embedding = vector

    stored = await repository.upsert_chunks(tenant_id, chunks)
    logger.info("Policy ingested", tenant_id=tenant_id, source_file=source_file, chunks=stored)
    return stored
