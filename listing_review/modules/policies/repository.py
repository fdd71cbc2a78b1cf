"""Read-side repositories the policy router depends on, plus chunk upserts
used by policy ingestion."""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from listing_review.core.database import as_uuid
from listing_review.core.errors import ValidationError
from listing_review.modules.pipeline.embedding import EMBEDDING_DIMENSIONS
from listing_review.modules.pipeline.schemas import (
    AgentConfig,
    AgentOptions,
    PolicyChunk,
    PolicyMatch,
)
from listing_review.modules.policies.models import AgentConfigRecord, TenantPolicyChunk

logger = structlog.get_logger()


def to_agent_config(record: AgentConfigRecord) -> AgentConfig:
    return AgentConfig(
        id=str(record.id),
        tenant_id=str(record.tenant_id),
        name=record.name,
        display_name=record.display_name,
        system_prompt_template=record.system_prompt_template,
        policy_source_files=list(record.policy_source_files or []),
        options=AgentOptions.model_validate(record.options or {}),
        is_active=record.is_active,
    )


class AgentConfigRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_active_by_tenant(self, tenant_id: str) -> list[AgentConfig]:
        query = (
            select(AgentConfigRecord)
            .where(
                AgentConfigRecord.tenant_id == as_uuid(tenant_id, "tenant_id"),
                AgentConfigRecord.is_active.is_(True),
            )
            .order_by(AgentConfigRecord.name)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [to_agent_config(r) for r in result.scalars().all()]


class PolicyRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def search(
        self,
        tenant_id: str,
        query_vector: list[float],
        source_files: Sequence[str],
        limit: int,
    ) -> list[PolicyMatch]:
        """Nearest chunks by cosine distance; ``similarity = 1 - distance``.

        An empty ``source_files`` searches every policy of the tenant.
        """
        if not query_vector:
            raise ValidationError("Query vector must not be empty")
        if len(query_vector) != EMBEDDING_DIMENSIONS:
            raise ValidationError(
                f"Query vector has {len(query_vector)} dimensions, expected {EMBEDDING_DIMENSIONS}"
            )

        distance = TenantPolicyChunk.embedding.cosine_distance(query_vector)
        query = select(
            TenantPolicyChunk.source_file,
            TenantPolicyChunk.content,
            distance.label("distance"),
        ).where(TenantPolicyChunk.tenant_id == as_uuid(tenant_id, "tenant_id"))
        if source_files:
            query = query.where(TenantPolicyChunk.source_file.in_(list(source_files)))
        query = query.order_by(distance).limit(limit)

        async with self._session_factory() as session:
            rows = (await session.execute(query)).all()

        return [
            PolicyMatch(
                source_file=row.source_file,
                content=row.content,
                similarity=1.0 - float(row.distance),
            )
            for row in rows
        ]

    async def upsert_chunks(
        self,
        tenant_id: str,
        chunks: Sequence[PolicyChunk],
    ) -> int:
        """Insert or replace chunks by (tenant, source file, chunk index) in one transaction."""
        if not chunks:
            return 0
        missing = [c.chunk_index for c in chunks if not c.embedding]
        if missing:
            raise ValidationError(f"Chunks without embeddings: {missing}")

        tenant_uuid = as_uuid(tenant_id, "tenant_id")
        stmt = insert(TenantPolicyChunk.__table__).values(
            [
                {
                    "tenant_id": tenant_uuid,
                    "source_file": c.source_file,
                    "chunk_index": c.chunk_index,
                    "content": c.content,
                    "embedding": c.embedding,
                    "metadata": {"sections": c.sections},
                }
                for c in chunks
            ]
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_tenant_policy_chunks_position",
            set_={
                "content": stmt.excluded["content"],
                "embedding": stmt.excluded["embedding"],
                "metadata": stmt.excluded["metadata"],
            },
        )

        async with self._session_factory() as session, session.begin():
            await session.execute(stmt)

        logger.info("Policy chunks upserted", tenant_id=tenant_id, count=len(chunks))
        return len(chunks)
