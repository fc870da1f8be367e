"""Unified LLM client factory.

Provides one ``complete(messages, temperature, max_tokens)`` interface over the
supported text-generation providers, selected by configuration.
"""

from enum import Enum
from typing import Dict, List, Optional, Union

from policy_rag.core.config import LLMSettings
from policy_rag.core.ollama_client import OllamaClient
from policy_rag.core.openrouter_client import OpenRouterClient
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OLLAMA = "ollama"
    OPENROUTER = "openrouter"


class UnifiedLLMClient:
    """Provider-agnostic text generation client."""

    def __init__(
        self,
        provider: Union[str, LLMProvider],
        model: str,
        api_key: str = "",
        base_url: Optional[str] = None,
        timeout: int = 120,
        max_retries: int = 3,
    ):
        """Initialize unified LLM client.

        Args:
            provider: "ollama" or "openrouter"
            model: Model name to use
            api_key: API key (unused for Ollama)
            base_url: Optional base URL override
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
        """
        self.provider = LLMProvider(provider)
        self.model = model

        if self.provider == LLMProvider.OLLAMA:
            self.client = OllamaClient(
                model=model,
                base_url=base_url or "http://localhost:11434",
                timeout=timeout,
                max_retries=max_retries,
            )
        elif self.provider == LLMProvider.OPENROUTER:
            self.client = OpenRouterClient(
                api_key=api_key,
                model=model,
                base_url=base_url or "https://openrouter.ai/api/v1/chat/completions",
                timeout=timeout,
                max_retries=max_retries,
            )
        else:
            raise ValueError(f"Unsupported provider: {provider}")

        LOGGER.info(f"Initialized unified LLM with {self.provider.value} provider (model: {model})")

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Generate text for an ordered system/user/assistant message list.

        Raises:
            APIClientError: If generation fails
        """
        return await self.client.complete(
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )


def create_llm_client_from_settings(llm_settings: LLMSettings) -> UnifiedLLMClient:
    """Create a unified LLM client from configuration settings.

    Raises:
        ValueError: If a required API key is missing for the selected provider
    """
    provider = LLMProvider(llm_settings.provider.lower())

    if provider == LLMProvider.OPENROUTER:
        api_key = llm_settings.openrouter_api_key.strip()
        if not api_key:
            raise ValueError(
                "openrouter_api_key required when provider='openrouter'. "
                "Please set OPENROUTER_API_KEY environment variable."
            )
        return UnifiedLLMClient(
            provider=provider,
            model=llm_settings.openrouter_model,
            api_key=api_key,
            base_url=llm_settings.openrouter_api_url,
            timeout=llm_settings.timeout,
            max_retries=llm_settings.max_retries,
        )

    return UnifiedLLMClient(
        provider=provider,
        model=llm_settings.ollama_model,
        base_url=llm_settings.ollama_base_url,
        timeout=llm_settings.timeout,
        max_retries=llm_settings.max_retries,
    )
