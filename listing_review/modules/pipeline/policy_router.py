"""Policy Router: decides which agents run and which policy text each sees.

  active AgentConfigs (tenant)  ─┐
  embed(title + description)    ─┼─> per-config similarity search ─> AgentDispatchPlan[]
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog

from listing_review.core.errors import InvariantError
from listing_review.modules.pipeline.embedding import EmbeddingService
from listing_review.modules.pipeline.schemas import (
    AgentConfig,
    AgentDispatchPlan,
    Listing,
    PolicyMatch,
)

logger = structlog.get_logger()

DEFAULT_SEARCH_LIMIT = 10


class AgentConfigSource(Protocol):
    async def get_active_by_tenant(self, tenant_id: str) -> list[AgentConfig]: ...


class PolicySearch(Protocol):
    async def search(
        self,
        tenant_id: str,
        query_vector: list[float],
        source_files: list[str],
        limit: int,
    ) -> list[PolicyMatch]: ...


class PolicyRouter:
    def __init__(
        self,
        agent_configs: AgentConfigSource,
        policies: PolicySearch,
        embedding_service: EmbeddingService,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> None:
        self.agent_configs = agent_configs
        self.policies = policies
        self.embedding_service = embedding_service
        self.search_limit = search_limit

    async def plan_dispatch(self, listing: Listing, tenant_id: str) -> list[AgentDispatchPlan]:
        """One plan per active agent config, in config order."""
        configs = await self.agent_configs.get_active_by_tenant(tenant_id)
        if not configs:
            raise InvariantError(f"No active agent configs for tenant {tenant_id}")

        vectors = await self.embedding_service.embed([f"{listing.title} {listing.description}"])
        if not vectors or not vectors[0]:
            raise InvariantError("Embedding service returned no vector for listing")
        query_vector = vectors[0]

        matches = await asyncio.gather(
            *(
                self.policies.search(
                    tenant_id, query_vector, list(config.policy_source_files), self.search_limit
                )
                for config in configs
            )
        )

        plans = [
            AgentDispatchPlan(agent_config=config, relevant_policies=list(found))
            for config, found in zip(configs, matches)
        ]
        logger.info(
            "Dispatch planned",
            listing_id=listing.id,
            tenant_id=tenant_id,
            agents=[p.agent_config.name for p in plans],
            policies=[len(p.relevant_policies) for p in plans],
        )
        return plans
