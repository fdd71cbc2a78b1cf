"""Review pipeline contracts: Pydantic models passed between pipeline stages.

  Router       -> Orchestrator:  AgentDispatchPlan
  Policy agent -> Orchestrator:  SubAgentResult
  Aggregator   -> Orchestrator:  AggregatedDecision
  Orchestrator -> Repository:    NodeTrace (persisted inside the review trace)

Review status and verdict are two separate vocabularies: a review can be
``complete`` with verdict ``escalated``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Verdict = Literal["approved", "rejected", "escalated"]
Severity = Literal["low", "medium", "high", "critical"]
ReviewStatus = Literal[
    "pending", "routing", "scanning", "aggregating", "complete", "escalated", "failed"
]

TERMINAL_STATUSES: frozenset[str] = frozenset({"complete", "escalated", "failed"})

SEVERITY_RANK: dict[str, int] = {
    "low": 1,
    "medium": 2,
    "high": 3,
    "critical": 4,
}


# ---------------------------------------------------------------------------
# Inputs: listing, review, agent configuration
# ---------------------------------------------------------------------------


class Listing(BaseModel):
    """A marketplace listing submitted for review. Immutable once created."""

    id: str
    tenant_id: str
    title: str
    description: str
    category: str
    image_urls: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class Review(BaseModel):
    """One review run over one listing."""

    id: str
    listing_id: str
    status: ReviewStatus = "pending"
    verdict: Verdict | None = None
    confidence: float | None = None
    explanation: str | None = None
    trace: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime | None = None


class AgentOptions(BaseModel):
    """Per-agent switches stored alongside the agent configuration."""

    model_config = ConfigDict(populate_by_name=True)

    skip_redaction: bool = Field(default=False, alias="skipRedaction")
    max_tokens: int | None = Field(default=None, gt=0, alias="maxTokens")


class AgentConfig(BaseModel):
    """Runtime-loaded definition of one policy agent for a tenant."""

    id: str
    tenant_id: str
    name: str = Field(..., description="Unique per tenant, e.g. 'prohibited-items'")
    display_name: str
    system_prompt_template: str = Field(
        ..., description="May contain {{POLICY_CONTEXT}} once"
    )
    policy_source_files: list[str] = Field(
        default_factory=list,
        description="Scopes policy retrieval; empty means all tenant policies",
    )
    options: AgentOptions = Field(default_factory=AgentOptions)
    is_active: bool = True


# ---------------------------------------------------------------------------
# Policy retrieval
# ---------------------------------------------------------------------------


class PolicyChunk(BaseModel):
    """One overlapping window of a policy document."""

    source_file: str
    chunk_index: int
    content: str
    sections: list[str] = Field(default_factory=list)
    embedding: list[float] | None = None


class PolicyMatch(BaseModel):
    """A policy chunk returned by similarity search (higher = more relevant)."""

    source_file: str
    content: str
    similarity: float


class AgentDispatchPlan(BaseModel):
    """One agent config paired with the policy text retrieved for it."""

    agent_config: AgentConfig
    relevant_policies: list[PolicyMatch] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Agent output
# ---------------------------------------------------------------------------


class AgentViolation(BaseModel):
    """A policy violation reported by an agent."""

    policy_section: str = Field(..., description="Policy section identifier, e.g. '1.1'")
    severity: Severity
    description: str


class AgentAnalysis(BaseModel):
    """Structured result the model must submit through its tool call."""

    verdict: Verdict
    confidence: float = Field(..., ge=0.0, le=1.0)
    violations: list[AgentViolation] = Field(default_factory=list)
    reasoning: str


class SubAgentResult(BaseModel):
    """Output of one successfully executed policy agent."""

    agent_name: str
    verdict: Verdict
    confidence: float = Field(..., ge=0.0, le=1.0)
    violations: list[AgentViolation] = Field(default_factory=list)
    reasoning: str


class AggregatedDecision(BaseModel):
    """The fused decision persisted for a review."""

    verdict: Verdict
    confidence: float
    violations: list[AgentViolation] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


class NodeTrace(BaseModel):
    """Timing record of one pipeline stage."""

    node_name: str
    started_at: datetime
    duration_ms: int
    error: str | None = None


class ReviewJob(BaseModel):
    """Queue payload: identifiers only, never listing content."""

    review_id: str
    listing_id: str
    tenant_id: str


class PipelineResult(BaseModel):
    """What a successful run decided and persisted."""

    review_id: str
    verdict: Verdict
    confidence: float
    explanation: str
    violations: list[AgentViolation] = Field(default_factory=list)
    traces: list[NodeTrace] = Field(default_factory=list)
    tokens_used: int = 0
