"""Composition root.

Builds every service handle once from explicit settings and hands them
down. Nothing below this module reaches for global state.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from listing_review.core.config import Settings
from listing_review.core.database import build_engine, build_session_factory
from listing_review.modules.pipeline.agents.factory import AgentFactory
from listing_review.modules.pipeline.embedding import EmbeddingService, build_embedding_service
from listing_review.modules.pipeline.explainer import Explainer
from listing_review.modules.pipeline.guardrails.circuit_breaker import CircuitBreaker
from listing_review.modules.pipeline.llm import LLMClient
from listing_review.modules.pipeline.orchestrator import ReviewPipeline
from listing_review.modules.pipeline.policy_router import PolicyRouter
from listing_review.modules.pipeline.queue import (
    InMemoryReviewQueue,
    RedisReviewQueue,
    build_review_queue,
)
from listing_review.modules.policies.repository import AgentConfigRepository, PolicyRepository
from listing_review.modules.reviews.repository import ListingRepository, ReviewRepository
from listing_review.modules.reviews.service import ReviewService

logger = structlog.get_logger()


@dataclass
class Container:
    settings: Settings
    engine: AsyncEngine
    queue: InMemoryReviewQueue | RedisReviewQueue
    reviews: ReviewRepository
    listings: ListingRepository
    agent_configs: AgentConfigRepository
    policies: PolicyRepository
    review_service: ReviewService
    embedding_service: EmbeddingService | None = None
    pipeline: ReviewPipeline | None = None

    async def close(self) -> None:
        if isinstance(self.queue, RedisReviewQueue):
            await self.queue.close()
        await self.engine.dispose()
        logger.info("Container closed")


def build_pipeline(
    settings: Settings,
    reviews: ReviewRepository,
    listings: ListingRepository,
    agent_configs: AgentConfigRepository,
    policies: PolicyRepository,
    embedding_service: EmbeddingService,
) -> ReviewPipeline:
    breaker = CircuitBreaker(
        "anthropic",
        failure_threshold=settings.circuit_failure_threshold,
        window_size=settings.circuit_window_size,
        recovery_timeout_seconds=settings.circuit_recovery_timeout_seconds,
    )
    llm = LLMClient(
        settings.anthropic_api_key,
        model=settings.llm_model,
        timeout_seconds=settings.llm_timeout_seconds,
        max_attempts=settings.llm_max_attempts,
        base_delay_seconds=settings.llm_retry_base_delay_seconds,
        default_max_tokens=settings.llm_default_max_tokens,
        circuit_breaker=breaker,
    )
    router = PolicyRouter(
        agent_configs, policies, embedding_service, search_limit=settings.policy_search_limit
    )
    return ReviewPipeline(
        reviews,
        listings,
        router,
        AgentFactory(llm),
        Explainer(llm),
        token_budget=settings.token_budget,
    )


def build_container(settings: Settings, *, with_pipeline: bool = False) -> Container:
    """Wire repositories, queue and services.

    The HTTP app only needs submission/status; the worker asks for the
    pipeline too, which requires LLM and embedding credentials.
    """
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)

    reviews = ReviewRepository(session_factory)
    listings = ListingRepository(session_factory)
    agent_configs = AgentConfigRepository(session_factory)
    policies = PolicyRepository(session_factory)
    queue = build_review_queue(settings)

    review_service = ReviewService(
        reviews,
        listings,
        queue,
        settings.default_tenant_id,
        stale_after_seconds=settings.stale_review_seconds,
    )

    container = Container(
        settings=settings,
        engine=engine,
        queue=queue,
        reviews=reviews,
        listings=listings,
        agent_configs=agent_configs,
        policies=policies,
        review_service=review_service,
    )
    if with_pipeline:
        container.embedding_service = build_embedding_service(settings)
        container.pipeline = build_pipeline(
            settings, reviews, listings, agent_configs, policies, container.embedding_service
        )

    logger.info(
        "Container built",
        queue=settings.queue_provider,
        embedding=settings.embedding_provider if with_pipeline else None,
        pipeline=with_pipeline,
    )
    return container
