"""Error taxonomy shared by the review pipeline and its adapters.

Every error carries a stable ``code`` so the HTTP layer and the review
trace can report failures without exposing stack traces.
"""

from __future__ import annotations


class AppError(Exception):
    """Base exception for application errors."""

    code: str = "APP_ERROR"

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ConfigurationError(AppError):
    """A required setting (API key, connection string) is missing."""

    code = "CONFIG_MISSING"

    def __init__(self, variable: str) -> None:
        super().__init__(f"{variable} is required")
        self.variable = variable


class ValidationError(AppError):
    """Malformed caller input; rejected immediately, never retried."""

    code = "VALIDATION_FAILED"


class InvariantError(AppError):
    """An internal precondition of the pipeline was broken; aborts the run."""

    code = "INVARIANT_VIOLATED"


class TokenBudgetExceededError(InvariantError):
    """Cumulative token usage of one run went over its budget."""

    def __init__(self, used: int, budget: int) -> None:
        super().__init__(f"Token budget exceeded: {used} > {budget}")
        self.used = used
        self.budget = budget


class DependencyError(AppError):
    """A remote dependency kept failing after retries were exhausted."""

    code = "DEPENDENCY_FAILED"


class CircuitOpenError(DependencyError):
    """The circuit breaker rejected the call without attempting it."""

    code = "CIRCUIT_OPEN"


class DatabaseError(AppError):
    """An expected write or read returned no row."""

    code = "DB_UNEXPECTED"


class NotFoundError(AppError):
    """The requested entity does not exist."""

    code = "NOT_FOUND"
