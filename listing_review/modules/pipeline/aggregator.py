"""Aggregator: fuses agent results into one decision.

Pure Python, no LLM calls. Decision rule, evaluated in order:

  1. any rejected result with confidence > 0.7
       -> rejected, mean confidence of those rejecting results
  2. all results approved and mean confidence > 0.8
       -> approved, mean confidence
  3. otherwise
       -> escalated, mean confidence

Both thresholds are exclusive: a result sitting exactly on a threshold
escalates. Violations are merged by policy section, keeping the most
severe instance.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

import structlog

from listing_review.core.errors import InvariantError
from listing_review.modules.pipeline.schemas import (
    SEVERITY_RANK,
    AgentViolation,
    AggregatedDecision,
    SubAgentResult,
)

logger = structlog.get_logger()

REJECT_CONFIDENCE_THRESHOLD = 0.7
APPROVE_CONFIDENCE_THRESHOLD = 0.8


def _mean(values: Sequence[float]) -> float:
    return math.fsum(values) / len(values)


def merge_violations(results: Sequence[SubAgentResult]) -> list[AgentViolation]:
    """Deduplicate by policy section, highest severity wins.

    Output keeps the order in which sections were first reported; on equal
    severity the first reported instance is kept.
    """
    merged: dict[str, AgentViolation] = {}
    for result in results:
        for violation in result.violations:
            current = merged.get(violation.policy_section)
            if current is None or SEVERITY_RANK[violation.severity] > SEVERITY_RANK[current.severity]:
                merged[violation.policy_section] = violation
    return list(merged.values())


def aggregate(results: Sequence[SubAgentResult]) -> AggregatedDecision:
    if not results:
        raise InvariantError("Cannot aggregate an empty result set")

    violations = merge_violations(results)

    rejecting = [
        r for r in results
        if r.verdict == "rejected" and r.confidence > REJECT_CONFIDENCE_THRESHOLD
    ]
    if rejecting:
        decision = AggregatedDecision(
            verdict="rejected",
            confidence=_mean([r.confidence for r in rejecting]),
            violations=violations,
        )
    else:
        mean_confidence = _mean([r.confidence for r in results])
        all_approved = all(r.verdict == "approved" for r in results)
        verdict = (
            "approved"
            if all_approved and mean_confidence > APPROVE_CONFIDENCE_THRESHOLD
            else "escalated"
        )
        decision = AggregatedDecision(
            verdict=verdict, confidence=mean_confidence, violations=violations
        )

    logger.info(
        "Aggregated agent results",
        agents=len(results),
        verdict=decision.verdict,
        confidence=round(decision.confidence, 4),
        violations=len(decision.violations),
    )
    return decision
