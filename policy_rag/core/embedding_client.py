"""Text embedding client.

Turns text into fixed-dimension vectors for the policy vector index. Two
providers are supported: an Ollama embedding model (``nomic-embed-text``) and
a local SentenceTransformer model (``all-mpnet-base-v2``). Both produce 768
dimensions by default; any other length is rejected before it reaches the
index.
"""

import asyncio
from typing import List, Optional

from policy_rag.core.config import EmbeddingSettings, LLMSettings
from policy_rag.core.exceptions import (
    APIClientError,
    ConfigurationError,
    DimensionMismatchError,
)
from policy_rag.core.ollama_client import OllamaClient
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)

OLLAMA_PROVIDER = "ollama"
SENTENCE_TRANSFORMERS_PROVIDER = "sentence_transformers"


class EmbeddingClient:
    """Embeds text with the configured embedding provider."""

    def __init__(
        self,
        provider: str = OLLAMA_PROVIDER,
        model: str = "nomic-embed-text",
        dimensions: int = 768,
        ollama_client: Optional[OllamaClient] = None,
    ):
        provider = provider.lower()
        if provider not in (OLLAMA_PROVIDER, SENTENCE_TRANSFORMERS_PROVIDER):
            raise ConfigurationError(f"Unsupported embedding provider: {provider}")
        if provider == OLLAMA_PROVIDER and ollama_client is None:
            raise ConfigurationError("An Ollama client is required for the ollama embedding provider")

        self.provider = provider
        self.model_name = model
        self.dimensions = dimensions
        self.ollama_client = ollama_client
        self._model = None

        LOGGER.info(
            f"Initialized embedding client ({provider}, model={model}, dimensions={dimensions})"
        )

    @property
    def model(self):
        """Lazy loader for the SentenceTransformer model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            LOGGER.info(f"Loading embedding model: {self.model_name}")
            self._model = SentenceTransformer(self.model_name)
        return self._model

    async def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Embed texts in order.

        Raises:
            APIClientError: If the provider fails
            DimensionMismatchError: If a vector has the wrong length
        """
        if not texts:
            return []

        if self.provider == SENTENCE_TRANSFORMERS_PROVIDER:
            try:
                encoded = await asyncio.to_thread(
                    self.model.encode, texts, show_progress_bar=False
                )
            except (RuntimeError, ValueError, OSError) as e:
                raise APIClientError(f"Embedding model failed: {e}", original_error=e) from e
            vectors = [list(map(float, vector)) for vector in encoded.tolist()]
        else:
            vectors = await self.ollama_client.embed(texts, model=self.model_name)

        if len(vectors) != len(texts):
            raise APIClientError(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} texts"
            )

        for vector in vectors:
            if len(vector) != self.dimensions:
                raise DimensionMismatchError(expected=self.dimensions, actual=len(vector))

        LOGGER.debug(
            "Embedded texts",
            extra={"provider": self.provider, "count": len(texts)}
        )
        return vectors


def create_embedding_client_from_settings(
    embedding_settings: EmbeddingSettings,
    llm_settings: LLMSettings,
) -> EmbeddingClient:
    """Create an embedding client from configuration settings."""
    provider = embedding_settings.provider.lower()

    if provider == SENTENCE_TRANSFORMERS_PROVIDER:
        return EmbeddingClient(
            provider=provider,
            model=embedding_settings.sentence_transformer_model,
            dimensions=embedding_settings.dimensions,
        )

    ollama_client = OllamaClient(
        model=embedding_settings.ollama_model,
        base_url=llm_settings.ollama_base_url,
        timeout=embedding_settings.timeout,
        max_retries=llm_settings.max_retries,
    )
    return EmbeddingClient(
        provider=provider,
        model=embedding_settings.ollama_model,
        dimensions=embedding_settings.dimensions,
        ollama_client=ollama_client,
    )
