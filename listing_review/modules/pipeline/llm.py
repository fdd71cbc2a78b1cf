"""LLM client for the review pipeline (Anthropic Messages API).

Every call:
  1. Redacts the user prompt unless the caller opts out (skip_redaction)
  2. Runs through the process-wide circuit breaker
  3. Retries transient failures (5xx, 429, timeouts, network) with
     exponential backoff plus jitter; other 4xx errors fail fast
  4. Reports tokens used (input + output) so the caller can charge its run

A response missing the expected text or tool_use block is an invariant
violation, raised after the retry loop and never retried.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import anthropic
import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from listing_review.core.errors import ConfigurationError, DependencyError, InvariantError
from listing_review.modules.pipeline.guardrails.circuit_breaker import CircuitBreaker
from listing_review.modules.pipeline.guardrails.redactor import redact

logger = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_TOKENS = 1024

_TOOL_DESCRIPTION = "Submit the structured analysis result"


@dataclass
class LLMTextResult:
    text: str
    tokens_used: int


@dataclass
class LLMStructuredResult(Generic[M]):
    data: M
    tokens_used: int


def is_retryable(error: Exception) -> bool:
    """4xx responses other than 429 are caller errors and are not retried."""
    if isinstance(error, anthropic.APIStatusError):
        status = error.status_code
        return not (400 <= status < 500 and status != 429)
    return True


class LLMClient:
    """Resilient wrapper around ``anthropic.AsyncAnthropic``."""

    def __init__(
        self,
        api_key: str = "",
        *,
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        circuit_breaker: CircuitBreaker | None = None,
        client: Any = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise ConfigurationError("ANTHROPIC_API_KEY")
            # Retries are handled here, not by the SDK.
            client = anthropic.AsyncAnthropic(
                api_key=api_key,
                timeout=timeout_seconds,
                max_retries=0,
            )

        self._client = client
        self.model = model
        self.max_attempts = max(1, max_attempts)
        self.base_delay_seconds = base_delay_seconds
        self.default_max_tokens = default_max_tokens
        self.circuit_breaker = circuit_breaker or CircuitBreaker("anthropic")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        skip_redaction: bool = False,
        max_tokens: int | None = None,
    ) -> LLMTextResult:
        """Free-text completion."""
        response = await self._create(
            system=system_prompt,
            messages=[{"role": "user", "content": self._prepare(user_prompt, skip_redaction)}],
            max_tokens=max_tokens or self.default_max_tokens,
        )

        return LLMTextResult(
            text=self._extract_text(response),
            tokens_used=self._tokens_used(response),
        )

    async def complete_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: type[M],
        tool_name: str,
        *,
        skip_redaction: bool = False,
        max_tokens: int | None = None,
    ) -> LLMStructuredResult[M]:
        """Completion forced through a single tool whose input is ``schema``."""
        response = await self._create(
            system=system_prompt,
            messages=[{"role": "user", "content": self._prepare(user_prompt, skip_redaction)}],
            max_tokens=max_tokens or self.default_max_tokens,
            tools=[
                {
                    "name": tool_name,
                    "description": _TOOL_DESCRIPTION,
                    "input_schema": schema.model_json_schema(),
                }
            ],
            tool_choice={"type": "tool", "name": tool_name},
        )

        tool_input = self._extract_tool_input(response, tool_name)
        try:
            data = schema.model_validate(tool_input)
        except PydanticValidationError as e:
            raise InvariantError(
                f"LLM tool '{tool_name}' returned malformed input: {e.error_count()} error(s)",
                original_error=e,
            ) from e

        return LLMStructuredResult(data=data, tokens_used=self._tokens_used(response))

    # ------------------------------------------------------------------
    # Call plumbing: circuit breaker around retry loop
    # ------------------------------------------------------------------

    @staticmethod
    def _prepare(user_prompt: str, skip_redaction: bool) -> str:
        return user_prompt if skip_redaction else redact(user_prompt)

    async def _create(self, **kwargs: Any) -> Any:
        start = time.time()
        response = await self.circuit_breaker.execute(
            lambda: self._with_retry(
                lambda: self._client.messages.create(model=self.model, **kwargs)
            )
        )
        duration_ms = int((time.time() - start) * 1000)

        usage = getattr(response, "usage", None)
        logger.info(
            "Anthropic call",
            model=self.model,
            tool=kwargs.get("tool_choice", {}).get("name"),
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            duration_ms=duration_ms,
        )
        return response

    async def _with_retry(self, call: Any) -> Any:
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await call()
            except Exception as e:
                if not is_retryable(e):
                    logger.warning(
                        "Anthropic call rejected, not retrying",
                        status=getattr(e, "status_code", None),
                        error=str(e),
                    )
                    raise
                last_error = e

            if attempt < self.max_attempts:
                delay = self.base_delay_seconds * (2 ** (attempt - 1))
                delay *= 0.5 + random.random()
                logger.warning(
                    f"Anthropic call failed (attempt {attempt}/{self.max_attempts})",
                    error=str(last_error),
                    retry_in_s=round(delay, 2),
                )
                await asyncio.sleep(delay)

        raise DependencyError(
            f"LLM call failed after {self.max_attempts} attempts: {last_error}",
            original_error=last_error,
        ) from last_error

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_text(response: Any) -> str:
        for block in response.content:
            if getattr(block, "type", None) == "text":
                return block.text
        raise InvariantError("LLM response did not contain text content")

    @staticmethod
    def _extract_tool_input(response: Any, tool_name: str) -> Any:
        for block in response.content:
            if getattr(block, "type", None) == "tool_use":
                return block.input
        raise InvariantError(f"LLM response did not contain a '{tool_name}' tool_use block")

    @staticmethod
    def _tokens_used(response: Any) -> int:
        usage = response.usage
        return (usage.input_tokens or 0) + (usage.output_tokens or 0)
