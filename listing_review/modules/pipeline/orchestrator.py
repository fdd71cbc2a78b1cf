"""Review Pipeline Orchestrator.

Pure Python controller around the LLM-backed stages. One call to
``process_review`` is one run over one Review:

  pending -> routing -> scanning -> aggregating -> complete
                |          |            |
                +----------+------------+---------> failed

Stages (each recorded as a NodeTrace, whether it succeeds or raises):
  fetch        load Review + Listing
  routing      PolicyRouter.plan_dispatch
  scanning     run every dispatched agent concurrently, drop failed ones
  aggregating  aggregate()
  explaining   Explainer.explain
  persist      verdict, explanation, trace and violations in one transaction

Any exception marks the Review ``failed`` (best effort) and is re-raised
so the queue worker sees the failure.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog

from listing_review.core.errors import DatabaseError, InvariantError, TokenBudgetExceededError
from listing_review.modules.pipeline.agents.factory import AgentFactory, AgentInput
from listing_review.modules.pipeline.aggregator import aggregate
from listing_review.modules.pipeline.explainer import Explainer
from listing_review.modules.pipeline.guardrails.budget import DEFAULT_TOKEN_BUDGET, TokenTracker
from listing_review.modules.pipeline.policy_router import PolicyRouter
from listing_review.modules.pipeline.schemas import (
    AgentDispatchPlan,
    AgentViolation,
    Listing,
    NodeTrace,
    PipelineResult,
    Review,
    ReviewStatus,
    SubAgentResult,
    Verdict,
)

logger = structlog.get_logger()


class ReviewStore(Protocol):
    async def get_by_id(self, review_id: str) -> Review | None: ...

    async def update_status(
        self, review_id: str, status: ReviewStatus, trace: dict[str, Any] | None = None
    ) -> Review: ...

    async def update_verdict(
        self,
        review_id: str,
        verdict: Verdict,
        confidence: float,
        explanation: str,
        trace: dict[str, Any],
        violations: Sequence[AgentViolation] = (),
    ) -> Review: ...


class ListingStore(Protocol):
    async def get_by_id(self, listing_id: str) -> Listing | None: ...


@contextmanager
def track_stage(traces: list[NodeTrace], name: str) -> Iterator[None]:
    """Append a NodeTrace for the wrapped block, also when it raises."""
    started_at = datetime.now(timezone.utc)
    start = time.monotonic()
    try:
        yield
    except BaseException as e:
        traces.append(
            NodeTrace(
                node_name=name,
                started_at=started_at,
                duration_ms=int((time.monotonic() - start) * 1000),
                error=str(e) or type(e).__name__,
            )
        )
        raise
    traces.append(
        NodeTrace(
            node_name=name,
            started_at=started_at,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
    )


def _dump_traces(traces: list[NodeTrace]) -> list[dict[str, Any]]:
    return [t.model_dump(mode="json") for t in traces]


class ReviewPipeline:
    """Sequences the pipeline stages for one review and owns its status."""

    def __init__(
        self,
        reviews: ReviewStore,
        listings: ListingStore,
        router: PolicyRouter,
        agent_factory: AgentFactory,
        explainer: Explainer,
        token_budget: int = DEFAULT_TOKEN_BUDGET,
    ) -> None:
        self.reviews = reviews
        self.listings = listings
        self.router = router
        self.agent_factory = agent_factory
        self.explainer = explainer
        self.token_budget = token_budget

    async def process_review(self, review_id: str, tenant_id: str) -> PipelineResult:
        traces: list[NodeTrace] = []
        tracker = TokenTracker(self.token_budget)
        start = time.time()
        log = logger.bind(review_id=review_id, tenant_id=tenant_id)

        try:
            await self.reviews.update_status(review_id, "routing")

            with track_stage(traces, "fetch"):
                listing = await self._fetch_listing(review_id)

            with track_stage(traces, "routing"):
                plans = await self.router.plan_dispatch(listing, tenant_id)

            await self.reviews.update_status(review_id, "scanning")
            with track_stage(traces, "scanning"):
                results = await self._run_agents(plans, AgentInput(listing, tracker), log)

            await self.reviews.update_status(review_id, "aggregating")
            with track_stage(traces, "aggregating"):
                decision = aggregate(results)

            with track_stage(traces, "explaining"):
                explanation = await self.explainer.explain(decision, listing, results, tracker)

            with track_stage(traces, "persist"):
                await self.reviews.update_verdict(
                    review_id,
                    decision.verdict,
                    decision.confidence,
                    explanation,
                    {"traces": _dump_traces(traces), "tokens_used": tracker.total},
                    decision.violations,
                )
        except Exception as e:
            error = str(e) or type(e).__name__
            log.error(
                "Review pipeline failed",
                error=error,
                stage=traces[-1].node_name if traces else None,
                tokens_used=tracker.total,
            )
            try:
                await self.reviews.update_status(
                    review_id, "failed", {"traces": _dump_traces(traces), "error": error}
                )
            except Exception as write_error:
                log.error("Could not mark review failed", error=str(write_error))
            raise

        log.info(
            "Review pipeline complete",
            verdict=decision.verdict,
            confidence=round(decision.confidence, 4),
            agents=len(results),
            violations=len(decision.violations),
            tokens_used=tracker.total,
            duration_ms=int((time.time() - start) * 1000),
        )
        return PipelineResult(
            review_id=review_id,
            verdict=decision.verdict,
            confidence=decision.confidence,
            explanation=explanation,
            violations=decision.violations,
            traces=traces,
            tokens_used=tracker.total,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _fetch_listing(self, review_id: str) -> Listing:
        review = await self.reviews.get_by_id(review_id)
        if review is None:
            raise DatabaseError(f"Review not found: {review_id}")

        listing = await self.listings.get_by_id(review.listing_id)
        if listing is None:
            raise DatabaseError(f"Listing not found: {review.listing_id}")
        return listing

    async def _run_agents(
        self,
        plans: Sequence[AgentDispatchPlan],
        agent_input: AgentInput,
        log: Any,
    ) -> list[SubAgentResult]:
        """Run all agents, wait for every one to settle, keep the successes.

        A token budget breach aborts the run instead of being dropped.
        """
        agents = [
            self.agent_factory.create_policy_agent(plan.agent_config, plan.relevant_policies)
            for plan in plans
        ]
        outcomes = await asyncio.gather(
            *(agent(agent_input) for agent in agents), return_exceptions=True
        )

        results: list[SubAgentResult] = []
        for plan, outcome in zip(plans, outcomes):
            if isinstance(outcome, TokenBudgetExceededError):
                raise outcome
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                log.warning(
                    "Policy agent failed, dropping result",
                    agent=plan.agent_config.name,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                continue
            results.append(outcome)

        if not results:
            raise InvariantError("All agents failed")

        log.info("Agents settled", succeeded=len(results), failed=len(plans) - len(results))
        return results
