"""Unit tests for BaseLLMClient retry behavior."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from policy_rag.core.base_llm_client import BaseLLMClient
from policy_rag.core.exceptions import APIClientError, APITimeoutError


def _make_client(responses, max_retries=3):
    """Client whose transport replays ``responses`` (status, headers) in order."""
    calls = []

    def handler(request):
        calls.append(request)
        item = responses[min(len(calls) - 1, len(responses) - 1)]
        if isinstance(item, Exception):
            raise item
        status, headers = item
        return httpx.Response(status, headers=headers, json={"ok": status == 200})

    client = BaseLLMClient(
        api_key="key",
        base_url="https://models.test/v1/chat",
        max_retries=max_retries,
        retry_delay=1,
        transport=httpx.MockTransport(handler),
    )
    return client, calls


@pytest.fixture
def sleep():
    with patch("policy_rag.core.base_llm_client.asyncio.sleep", new=AsyncMock()) as mock_sleep:
        yield mock_sleep


class TestCallApi:
    """Tests for BaseLLMClient.call_api."""

    @pytest.mark.asyncio
    async def test_sends_bearer_json(self, sleep):
        client, calls = _make_client([(200, {})])

        body = await client.call_api(payload={"model": "m"})

        assert body == {"ok": True}
        assert calls[0].headers["Authorization"] == "Bearer key"
        assert b'"model"' in calls[0].content
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_server_errors_with_backoff(self, sleep):
        client, calls = _make_client([(503, {}), (502, {}), (200, {})])

        assert await client.call_api(payload={}) == {"ok": True}

        assert len(calls) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_honors_retry_after(self, sleep):
        client, _ = _make_client([(429, {"Retry-After": "7"}), (200, {})])

        await client.call_api(payload={})

        sleep.assert_awaited_once_with(7.0)

    @pytest.mark.asyncio
    async def test_client_error_fails_immediately(self, sleep):
        client, calls = _make_client([(401, {})])

        with pytest.raises(APIClientError, match="401"):
            await client.call_api(payload={})

        assert len(calls) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, sleep):
        client, calls = _make_client([(500, {})], max_retries=2)

        with pytest.raises(APIClientError, match="after 2 attempts"):
            await client.call_api(payload={})

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_timeouts_raise_timeout_error(self, sleep):
        client, calls = _make_client([httpx.ReadTimeout("slow")], max_retries=2)

        with pytest.raises(APITimeoutError):
            await client.call_api(payload={})

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_connection_errors_raise_client_error(self, sleep):
        client, _ = _make_client([httpx.ConnectError("refused")], max_retries=1)

        with pytest.raises(APIClientError):
            await client.call_api(payload={})
