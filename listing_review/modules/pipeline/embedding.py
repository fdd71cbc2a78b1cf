"""Embedding providers used by the policy router.

Providers supported:
  - openai (text-embedding-3-small, default)
  - google (Gemini embedding models via google-genai)

Both return one vector per input text, in input order.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog

from listing_review.core.config import Settings
from listing_review.core.errors import ConfigurationError

logger = structlog.get_logger()

DEFAULT_OPENAI_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_GOOGLE_EMBEDDING_MODEL = "gemini-embedding-001"

# Width of the policy-chunk vector column; both providers are asked for it.
EMBEDDING_DIMENSIONS = 1536


class EmbeddingService(Protocol):
    async def embed(self, texts: list[str]) -> list[list[float]]: ...


class OpenAIEmbeddingService:
    """Embeddings through ``openai.AsyncOpenAI``."""

    def __init__(
        self,
        api_key: str = "",
        model: str = DEFAULT_OPENAI_EMBEDDING_MODEL,
        client: Any = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise ConfigurationError("OPENAI_API_KEY")
            import openai

            client = openai.AsyncOpenAI(api_key=api_key)
        self._client = client
        self.model = model

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        response = await self._client.embeddings.create(model=self.model, input=texts)
        ordered = sorted(response.data, key=lambda item: item.index)
        logger.debug("Embedded texts", provider="openai", count=len(ordered))
        return [list(item.embedding) for item in ordered]


class GeminiEmbeddingService:
    """Embeddings through the google-genai async client."""

    def __init__(
        self,
        api_key: str = "",
        model: str = DEFAULT_GOOGLE_EMBEDDING_MODEL,
        client: Any = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise ConfigurationError("GOOGLE_AI_API_KEY")
            from google import genai

            client = genai.Client(api_key=api_key)
        self._client = client
        self.model = model

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        from google.genai import types

        response = await self._client.aio.models.embed_content(
            model=self.model,
            contents=texts,
            config=types.EmbedContentConfig(output_dimensionality=EMBEDDING_DIMENSIONS),
        )
        embeddings = response.embeddings or []
        logger.debug("Embedded texts", provider="google", count=len(embeddings))
        return [list(e.values or []) for e in embeddings]


def build_embedding_service(settings: Settings) -> EmbeddingService:
    """Factory: pick the embedding provider named in settings."""
    provider = settings.embedding_provider
    if provider == "openai":
        return OpenAIEmbeddingService(
            api_key=settings.openai_api_key,
            model=settings.embedding_model or DEFAULT_OPENAI_EMBEDDING_MODEL,
        )
    if provider == "google":
        model = settings.embedding_model
        if not model or model == DEFAULT_OPENAI_EMBEDDING_MODEL:
            model = DEFAULT_GOOGLE_EMBEDDING_MODEL
        return GeminiEmbeddingService(api_key=settings.google_ai_api_key, model=model)
    raise ValueError(f"Unsupported embedding provider: {provider}")
