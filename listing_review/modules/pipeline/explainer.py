"""Explainer: turns an aggregated decision into a short human-readable note."""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from listing_review.modules.pipeline.guardrails.budget import TokenTracker
from listing_review.modules.pipeline.llm import LLMClient
from listing_review.modules.pipeline.schemas import (
    AggregatedDecision,
    Listing,
    SubAgentResult,
)

logger = structlog.get_logger()

EXPLANATION_MAX_TOKENS = 256

EXPLAINER_SYSTEM_PROMPT = (
    "You are a marketplace compliance assistant. Given a listing, the review "
    "decision, any policy violations and the individual agent analyses, write a "
    "clear 2-3 sentence explanation of the decision for the seller. Be factual "
    "and specific; do not speculate beyond the analyses provided."
)


def build_explanation_prompt(
    decision: AggregatedDecision,
    listing: Listing,
    agent_results: Sequence[SubAgentResult],
) -> str:
    if decision.violations:
        violation_lines = "\n".join(
            f"- [{v.severity}] {v.policy_section}: {v.description}"
            for v in decision.violations
        )
    else:
        violation_lines = "None"

    agent_lines = "\n".join(
        f"{r.agent_name}: {r.verdict} (confidence: {r.confidence:.2f}) - {r.reasoning}"
        for r in agent_results
    )

    return (
        f"Listing: {listing.title}\n"
        f"Description: {listing.description}\n"
        f"Category: {listing.category}\n\n"
        f"Decision: {decision.verdict} (confidence: {decision.confidence:.2f})\n\n"
        f"Violations:\n{violation_lines}\n\n"
        f"Agent Analysis:\n{agent_lines}"
    )


class Explainer:
    def __init__(self, llm: LLMClient) -> None:
        self.llm = llm

    async def explain(
        self,
        decision: AggregatedDecision,
        listing: Listing,
        agent_results: Sequence[SubAgentResult],
        tracker: TokenTracker | None = None,
    ) -> str:
        result = await self.llm.complete_text(
            EXPLAINER_SYSTEM_PROMPT,
            build_explanation_prompt(decision, listing, agent_results),
            max_tokens=EXPLANATION_MAX_TOKENS,
        )
        if tracker is not None:
            tracker.add(result.tokens_used)

        logger.info("Explanation generated", listing_id=listing.id, tokens_used=result.tokens_used)
        return result.text
