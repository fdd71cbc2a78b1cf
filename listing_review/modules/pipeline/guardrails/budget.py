"""Per-run token budget.

One TokenTracker belongs to exactly one pipeline run and is shared by the
concurrently running agents of that run plus the explainer. It is never
persisted; its total is reported in the review trace.
"""

from __future__ import annotations

import threading

import structlog

from listing_review.core.errors import TokenBudgetExceededError

logger = structlog.get_logger()

DEFAULT_TOKEN_BUDGET = 50_000


class TokenTracker:
    """Accumulates token usage and fails the instant it exceeds the budget."""

    def __init__(self, budget: int = DEFAULT_TOKEN_BUDGET) -> None:
        self.budget = budget
        self._used = 0
        self._lock = threading.Lock()

    def add(self, tokens: int) -> None:
        with self._lock:
            self._used += tokens
            used = self._used

        if used > self.budget:
            logger.error("Token budget exceeded", used=used, budget=self.budget)
            raise TokenBudgetExceededError(used, self.budget)

    @property
    def total(self) -> int:
        return self._used

    @property
    def remaining(self) -> int:
        return max(self.budget - self._used, 0)
