"""Unit tests for the embedding providers (SDK clients mocked)."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from listing_review.core.config import Settings
from listing_review.core.errors import ConfigurationError
from listing_review.modules.pipeline.embedding import (
    EMBEDDING_DIMENSIONS,
    GeminiEmbeddingService,
    OpenAIEmbeddingService,
    build_embedding_service,
)


async def test_openai_orders_results_by_index() -> None:
    client = MagicMock()
    client.embeddings.create = AsyncMock(
        return_value=SimpleNamespace(
            data=[
                SimpleNamespace(index=1, embedding=[0.2, 0.2]),
                SimpleNamespace(index=0, embedding=[0.1, 0.1]),
            ]
        )
    )
    service = OpenAIEmbeddingService(client=client, model="text-embedding-3-small")

    vectors = await service.embed(["first", "second"])

    assert vectors == [[0.1, 0.1], [0.2, 0.2]]
    client.embeddings.create.assert_awaited_once_with(
        model="text-embedding-3-small", input=["first", "second"]
    )


async def test_openai_empty_input_skips_call() -> None:
    client = MagicMock()
    client.embeddings.create = AsyncMock()
    assert await OpenAIEmbeddingService(client=client).embed([]) == []
    client.embeddings.create.assert_not_awaited()


async def test_gemini_requests_column_width() -> None:
    client = MagicMock()
    client.aio.models.embed_content = AsyncMock(
        return_value=SimpleNamespace(embeddings=[SimpleNamespace(values=[0.5, 0.6])])
    )
    service = GeminiEmbeddingService(client=client)

    assert await service.embed(["text"]) == [[0.5, 0.6]]
    config = client.aio.models.embed_content.await_args.kwargs["config"]
    assert config.output_dimensionality == EMBEDDING_DIMENSIONS


def test_openai_requires_key() -> None:
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        OpenAIEmbeddingService(api_key="")


def test_factory_rejects_unknown_provider() -> None:
    with pytest.raises(ValueError):
        build_embedding_service(Settings(embedding_provider="cohere"))


def test_factory_builds_openai_service() -> None:
    service = build_embedding_service(Settings(embedding_provider="openai", openai_api_key="sk-test"))
    assert isinstance(service, OpenAIEmbeddingService)
