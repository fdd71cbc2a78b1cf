"""Unit tests for the resilient Anthropic wrapper.

The SDK client is replaced by a MagicMock whose ``messages.create`` is an
AsyncMock, and the retry base delay is 0 so no test sleeps.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from listing_review.core.errors import (
    CircuitOpenError,
    ConfigurationError,
    DependencyError,
    InvariantError,
)
from listing_review.modules.pipeline.guardrails.circuit_breaker import CircuitBreaker
from listing_review.modules.pipeline.llm import LLMClient, is_retryable
from listing_review.modules.pipeline.schemas import AgentAnalysis

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _usage(inp: int = 100, out: int = 50) -> SimpleNamespace:
    return SimpleNamespace(input_tokens=inp, output_tokens=out)


def text_response(text: str = "Looks fine.") -> SimpleNamespace:
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)], usage=_usage())


def tool_response(payload: dict[str, Any]) -> SimpleNamespace:
    return SimpleNamespace(
        content=[SimpleNamespace(type="tool_use", name="submit_x_analysis", input=payload)],
        usage=_usage(200, 80),
    )


def status_error(status: int) -> anthropic.APIStatusError:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    response = httpx.Response(status, request=request)
    return anthropic.APIStatusError(f"HTTP {status}", response=response, body=None)


def make_client(*responses: Any, **kwargs: Any) -> tuple[LLMClient, AsyncMock]:
    sdk = MagicMock()
    sdk.messages.create = AsyncMock(side_effect=list(responses))
    kwargs.setdefault("base_delay_seconds", 0)
    return LLMClient(client=sdk, **kwargs), sdk.messages.create


VALID_ANALYSIS = {
    "verdict": "rejected",
    "confidence": 0.92,
    "violations": [{"policy_section": "2.3", "severity": "high", "description": "Weapon"}],
    "reasoning": "Listing sells a prohibited item.",
}


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def test_missing_api_key_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError) as exc:
        LLMClient(api_key="")
    assert exc.value.variable == "ANTHROPIC_API_KEY"


# ---------------------------------------------------------------------------
# Text + structured completions
# ---------------------------------------------------------------------------


async def test_complete_text_returns_text_and_tokens() -> None:
    client, create = make_client(text_response("All good."))
    result = await client.complete_text("system", "user prompt")
    assert result.text == "All good."
    assert result.tokens_used == 150
    assert create.await_args.kwargs["system"] == "system"


async def test_user_prompt_is_redacted_by_default() -> None:
    client, create = make_client(text_response())
    await client.complete_text("system", "mail me at a@b.com")
    content = create.await_args.kwargs["messages"][0]["content"]
    assert content == "mail me at [EMAIL]"


async def test_skip_redaction_sends_prompt_verbatim() -> None:
    client, create = make_client(text_response())
    await client.complete_text("system", "mail me at a@b.com", skip_redaction=True)
    assert create.await_args.kwargs["messages"][0]["content"] == "mail me at a@b.com"


async def test_complete_structured_forces_tool_and_validates() -> None:
    client, create = make_client(tool_response(VALID_ANALYSIS))
    result = await client.complete_structured(
        "system", "user", AgentAnalysis, "submit_x_analysis", max_tokens=512
    )
    assert result.data.verdict == "rejected"
    assert result.data.violations[0].policy_section == "2.3"
    assert result.tokens_used == 280

    kwargs = create.await_args.kwargs
    assert kwargs["tool_choice"] == {"type": "tool", "name": "submit_x_analysis"}
    assert kwargs["tools"][0]["name"] == "submit_x_analysis"
    assert kwargs["max_tokens"] == 512


async def test_missing_tool_block_is_invariant_error_not_retried() -> None:
    client, create = make_client(text_response("no tool here"))
    with pytest.raises(InvariantError):
        await client.complete_structured("s", "u", AgentAnalysis, "submit_x_analysis")
    assert create.await_count == 1


async def test_missing_text_block_is_invariant_error() -> None:
    client, _ = make_client(tool_response(VALID_ANALYSIS))
    with pytest.raises(InvariantError):
        await client.complete_text("s", "u")


async def test_malformed_tool_input_is_invariant_error() -> None:
    client, _ = make_client(tool_response({"verdict": "maybe"}))
    with pytest.raises(InvariantError):
        await client.complete_structured("s", "u", AgentAnalysis, "submit_x_analysis")


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("status", "retryable"),
    [(400, False), (401, False), (404, False), (429, True), (500, True), (529, True)],
)
def test_is_retryable(status: int, retryable: bool) -> None:
    assert is_retryable(status_error(status)) is retryable


def test_network_errors_are_retryable() -> None:
    assert is_retryable(ConnectionError("reset")) is True


async def test_retries_transient_errors_then_succeeds() -> None:
    client, create = make_client(status_error(503), status_error(429), text_response("ok"))
    result = await client.complete_text("s", "u")
    assert result.text == "ok"
    assert create.await_count == 3


async def test_client_error_fails_fast() -> None:
    client, create = make_client(status_error(400), text_response())
    with pytest.raises(anthropic.APIStatusError):
        await client.complete_text("s", "u")
    assert create.await_count == 1


async def test_gives_up_after_max_attempts() -> None:
    client, create = make_client(
        status_error(500), status_error(500), status_error(500), text_response()
    )
    with pytest.raises(DependencyError) as exc:
        await client.complete_text("s", "u")
    assert create.await_count == 3
    assert isinstance(exc.value.original_error, anthropic.APIStatusError)


# ---------------------------------------------------------------------------
# Circuit breaker integration
# ---------------------------------------------------------------------------


async def test_open_circuit_short_circuits_calls() -> None:
    breaker = CircuitBreaker("llm", window_size=1, recovery_timeout_seconds=60)
    client, create = make_client(
        status_error(500), status_error(500), status_error(500),
        circuit_breaker=breaker,
    )
    with pytest.raises(DependencyError):
        await client.complete_text("s", "u")
    assert breaker.state == "open"

    with pytest.raises(CircuitOpenError):
        await client.complete_text("s", "u")
    assert create.await_count == 3
