"""OpenRouter LLM client implementation."""

from typing import Any, Dict, List, Optional

from policy_rag.core.base_llm_client import BaseLLMClient
from policy_rag.core.exceptions import APIClientError
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)


class OpenRouterClient:
    """Chat completions over OpenRouter's OpenAI-compatible HTTP API."""

    def __init__(
        self,
        api_key: str,
        model: str = "google/gemini-2.0-flash-001",
        base_url: str = "https://openrouter.ai/api/v1/chat/completions",
        timeout: int = 60,
        max_retries: int = 3,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries

        self.client = BaseLLMClient(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries
        )

        LOGGER.info(f"Initialized OpenRouter client with model {self.model}")

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Run a chat completion.

        Raises:
            APIClientError: If the request fails or the response is malformed
        """
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": 0.0 if temperature is None else temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        response = await self.client.call_api(endpoint="", method="POST", payload=payload)

        choices = response.get("choices") or []
        if not choices:
            LOGGER.error(f"Unexpected OpenRouter response format: {response}")
            raise APIClientError("Invalid response format from OpenRouter")

        content = choices[0].get("message", {}).get("content", "")
        if not content:
            LOGGER.warning("Empty response from OpenRouter")
            return ""
        return content
