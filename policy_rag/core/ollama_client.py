"""Ollama client for chat completions and embeddings."""

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import ollama

from policy_rag.core.exceptions import APIClientError, APITimeoutError
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)


def normalize_ollama_host(base_url: str) -> str:
    """Strip protocol and trailing paths; the Ollama client wants host:port."""
    host = base_url
    if host.startswith("http://"):
        host = host[7:]
    elif host.startswith("https://"):
        host = host[8:]
    if "/" in host:
        host = host.split("/")[0]
    return host


class OllamaClient:
    """Wrapper for the Ollama async API."""

    def __init__(
        self,
        model: str = "llama3.1:8b",
        base_url: str = "http://localhost:11434",
        timeout: int = 120,
        max_retries: int = 3,
    ):
        """Initialize Ollama client.

        Args:
            model: Chat model name
            base_url: Ollama API base URL
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
        """
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries

        host = normalize_ollama_host(base_url)
        self.client = ollama.AsyncClient(host=host, timeout=timeout)
        LOGGER.info(f"Initialized Ollama client with model {self.model} at {host} (timeout: {timeout}s)")

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Run a chat completion.

        Args:
            messages: Ordered ``{"role", "content"}`` messages
            temperature: Sampling temperature (defaults to 0.0)
            max_tokens: Maximum tokens to generate (Ollama ``num_predict``)

        Returns:
            Generated text

        Raises:
            APIClientError: If generation fails after retries
        """
        options: Dict[str, Any] = {"temperature": 0.0 if temperature is None else temperature}
        if max_tokens is not None:
            options["num_predict"] = max_tokens

        for attempt in range(self.max_retries):
            try:
                LOGGER.debug(
                    f"Ollama chat attempt {attempt + 1}/{self.max_retries}",
                    extra={"model": self.model, "message_count": len(messages), "options": options}
                )
                response = await asyncio.wait_for(
                    self.client.chat(model=self.model, messages=messages, options=options),
                    timeout=self.timeout,
                )
                content = response.message.content if response.message else None
                if not content or not content.strip():
                    LOGGER.warning(
                        f"Empty response from Ollama (Attempt {attempt + 1}/{self.max_retries})",
                        extra={"model": self.model}
                    )
                    if attempt < self.max_retries - 1:
                        continue
                    return ""

                LOGGER.info(
                    "Ollama response received",
                    extra={"model": self.model, "content_length": len(content)}
                )
                return content

            except asyncio.TimeoutError as e:
                LOGGER.warning(f"Ollama chat timed out after {self.timeout}s (Attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise APITimeoutError(f"Ollama chat timed out after {self.timeout}s", original_error=e) from e
            except (ollama.ResponseError, httpx.HTTPError, ConnectionError, OSError) as e:
                LOGGER.warning(f"Ollama API error (Attempt {attempt + 1}/{self.max_retries}): {e}")
                if attempt == self.max_retries - 1:
                    raise APIClientError(f"Ollama generation failed: {e}", original_error=e) from e

            await asyncio.sleep(2 ** attempt)

        raise APIClientError("Ollama generation failed")

    async def embed(self, texts: List[str], model: str) -> List[List[float]]:
        """Embed a batch of texts with an Ollama embedding model."""
        try:
            response = await asyncio.wait_for(
                self.client.embed(model=model, input=texts),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise APITimeoutError(f"Ollama embedding timed out after {self.timeout}s", original_error=e) from e
        except (ollama.ResponseError, httpx.HTTPError, ConnectionError, OSError) as e:
            raise APIClientError(f"Ollama embedding failed: {e}", original_error=e) from e

        return [list(vector) for vector in response.embeddings]
