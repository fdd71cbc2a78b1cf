"""Policy Agent Factory.

Builds one async callable per (AgentConfig, retrieved policies) pair:

  AgentInput -> LLM structured call -> SubAgentResult

System prompt resolution:
  - template contains {{POLICY_CONTEXT}}  -> marker replaced by policy context
  - otherwise                             -> "Relevant Policies:" section appended
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from listing_review.modules.pipeline.guardrails.budget import TokenTracker
from listing_review.modules.pipeline.llm import LLMClient
from listing_review.modules.pipeline.schemas import (
    AgentAnalysis,
    AgentConfig,
    Listing,
    PolicyMatch,
    SubAgentResult,
)

logger = structlog.get_logger()

POLICY_PLACEHOLDER = "{{POLICY_CONTEXT}}"
NO_POLICIES_MESSAGE = "No specific policies loaded."


@dataclass
class AgentInput:
    """What every agent of one run receives."""

    listing: Listing
    token_tracker: TokenTracker | None = None


PolicyAgent = Callable[[AgentInput], Awaitable[SubAgentResult]]


# ---------------------------------------------------------------------------
# Prompt building
# ---------------------------------------------------------------------------


def format_policy_context(policies: list[PolicyMatch]) -> str:
    if not policies:
        return NO_POLICIES_MESSAGE
    return "\n\n".join(f"[{p.source_file}] {p.content}" for p in policies)


def resolve_system_prompt(template: str, policies: list[PolicyMatch]) -> str:
    policy_context = format_policy_context(policies)
    if POLICY_PLACEHOLDER in template:
        return template.replace(POLICY_PLACEHOLDER, policy_context, 1)
    return f"{template}\n\nRelevant Policies:\n{policy_context}"


def build_tool_name(agent_name: str) -> str:
    """'prohibited-items' -> 'submit_prohibited_items_analysis'."""
    return f"submit_{agent_name.replace('-', '_')}_analysis"


def build_user_prompt(listing: Listing) -> str:
    return (
        f"Listing Title: {listing.title}\n"
        f"Description: {listing.description}\n"
        f"Category: {listing.category}"
    )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class AgentFactory:
    """Creates policy agents bound to one shared LLM client."""

    def __init__(self, llm: LLMClient) -> None:
        self.llm = llm

    def create_policy_agent(
        self,
        config: AgentConfig,
        policies: list[PolicyMatch],
    ) -> PolicyAgent:
        system_prompt = resolve_system_prompt(config.system_prompt_template, policies)
        tool_name = build_tool_name(config.name)
        llm = self.llm

        async def run_agent(agent_input: AgentInput) -> SubAgentResult:
            result = await llm.complete_structured(
                system_prompt,
                build_user_prompt(agent_input.listing),
                AgentAnalysis,
                tool_name,
                skip_redaction=config.options.skip_redaction,
                max_tokens=config.options.max_tokens,
            )

            if agent_input.token_tracker is not None:
                agent_input.token_tracker.add(result.tokens_used)

            analysis = result.data
            logger.info(
                "Policy agent finished",
                agent=config.name,
                verdict=analysis.verdict,
                confidence=analysis.confidence,
                violations=len(analysis.violations),
                tokens_used=result.tokens_used,
            )

            return SubAgentResult(
                agent_name=config.name,
                verdict=analysis.verdict,
                confidence=analysis.confidence,
                violations=analysis.violations,
                reasoning=analysis.reasoning,
            )

        run_agent.__name__ = f"policy_agent_{config.name.replace('-', '_')}"
        return run_agent
