"""Retrying JSON-over-HTTP transport shared by hosted model providers."""

import asyncio
from typing import Any, Dict, Optional

import httpx

from policy_rag.core.exceptions import APIClientError, APITimeoutError
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
MAX_RETRY_AFTER_SECONDS = 60.0


class BaseLLMClient:
    """Sends authenticated JSON requests and retries transient failures.

    Timeouts, transport errors and the status codes in
    ``RETRYABLE_STATUS_CODES`` are retried with exponential backoff; a
    ``Retry-After`` header overrides the computed delay. Any other HTTP error
    fails on the first attempt.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 3,
        retry_delay: float = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            api_key: Bearer token sent with every request
            base_url: Endpoint URL, or prefix when ``endpoint`` is passed to ``call_api``
            timeout: Per-request timeout in seconds
            max_retries: Total attempts per call
            retry_delay: Backoff base in seconds
            transport: Optional httpx transport, e.g. ``httpx.MockTransport``
        """
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.transport = transport

    def _headers(self, extra: Optional[Dict[str, str]]) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        headers.update(extra or {})
        return headers

    async def call_api(
        self,
        endpoint: str = "",
        method: str = "POST",
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Send one request, retrying transient failures.

        ``GET`` sends ``payload`` as query parameters; every other method
        sends it as a JSON body.

        Returns:
            Decoded JSON body

        Raises:
            APITimeoutError: If every attempt timed out
            APIClientError: On a non-retryable status, or when retries run out
        """
        url = f"{self.base_url}{endpoint}"
        method = method.upper()
        request_kwargs: Dict[str, Any] = {"headers": self._headers(headers)}
        if method == "GET":
            request_kwargs["params"] = payload
        else:
            request_kwargs["json"] = payload

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            attempt = 0
            while True:
                attempt += 1
                try:
                    response = await client.request(method, url, **request_kwargs)
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as e:
                    status_code = e.response.status_code
                    LOGGER.warning(
                        f"{method} {url} returned {status_code} (attempt {attempt}/{self.max_retries})",
                        extra={"status_code": status_code, "error_body": e.response.text[:500]}
                    )
                    if status_code not in RETRYABLE_STATUS_CODES:
                        raise APIClientError(
                            f"API Client Error {status_code}: {e.response.text}", original_error=e
                        ) from e
                    if attempt >= self.max_retries:
                        raise APIClientError(
                            f"API HTTP Error {status_code} after {attempt} attempts", original_error=e
                        ) from e
                    delay = self._retry_after(e.response)
                except httpx.TimeoutException as e:
                    LOGGER.warning(f"{method} {url} timed out (attempt {attempt}/{self.max_retries})")
                    if attempt >= self.max_retries:
                        raise APITimeoutError(
                            f"API Timeout after {attempt} attempts", original_error=e
                        ) from e
                    delay = None
                except httpx.HTTPError as e:
                    LOGGER.warning(
                        f"{method} {url} failed (attempt {attempt}/{self.max_retries})",
                        extra={"error": str(e)}
                    )
                    if attempt >= self.max_retries:
                        raise APIClientError(f"API Error: {e}", original_error=e) from e
                    delay = None

                if delay is None:
                    delay = self.retry_delay * (2 ** (attempt - 1))
                await asyncio.sleep(delay)

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        """Seconds requested by a ``Retry-After`` header, capped."""
        value = response.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return min(max(float(value), 0.0), MAX_RETRY_AFTER_SECONDS)
        except ValueError:
            return None
